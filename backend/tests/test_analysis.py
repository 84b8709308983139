# backend/tests/test_analysis.py
import json

import pytest

from conversly.errors import AnalysisError, StorageError, UpstreamUnavailable
from conversly.pipelines.analysis import (
    SUMMARY_FALLBACK,
    calculate_rating,
    merge_reviews,
    normalize_scoring_response,
)
from conversly.pipelines.post_call import normalize_transcript
from conversly.schemas import ConversationStatus, ReviewedTurn, TranscriptTurn, TurnReview


def _turns(n):
    return [
        TranscriptTurn(index=i, role="agent" if i % 2 == 0 else "user", message=f"message {i}")
        for i in range(n)
    ]


class TestNormalizeScoringResponse:

    def test_object_with_reviews_and_summary(self):
        raw = {"reviews": [{"index": 1, "review": "Good question", "category": "compliment"}], "summary": "Nice"}
        result = normalize_scoring_response(raw)
        assert result.summary == "Nice"
        assert result.reviews == [TurnReview(index=1, review="Good question", category="compliment")]

    def test_json_string_is_decoded(self):
        raw = json.dumps({"reviews": [{"index": 0, "review": "Try asking back", "category": "improvement"}]})
        result = normalize_scoring_response(raw)
        assert result.reviews[0].category == "improvement"
        assert result.summary is None

    def test_bare_list_is_accepted(self):
        result = normalize_scoring_response([{"index": 2, "review": "Warm tone"}])
        assert result.reviews == [TurnReview(index=2, review="Warm tone", category=None)]

    def test_provider_spelling_complement_is_normalized(self):
        result = normalize_scoring_response([{"index": 0, "review": "x", "category": "complement"}])
        assert result.reviews[0].category == "compliment"

    def test_unknown_category_becomes_none(self):
        result = normalize_scoring_response([{"index": 0, "review": "x", "category": "neutral"}])
        assert result.reviews[0].category is None

    def test_invalid_items_are_dropped(self):
        raw = [
            {"index": "1", "review": "string index"},
            {"index": 1, "review": ""},
            {"index": True, "review": "bool index"},
            "not an object",
            {"index": 3, "review": "kept"},
        ]
        result = normalize_scoring_response(raw)
        assert [r.index for r in result.reviews] == [3]

    def test_indexes_outside_transcript_are_dropped(self):
        raw = [{"index": 1, "review": "in range"}, {"index": 99, "review": "out of range"}]
        result = normalize_scoring_response(raw, valid_indexes=[0, 1, 2])
        assert [r.index for r in result.reviews] == [1]

    @pytest.mark.parametrize("raw", [42, None, {"summary": "no reviews key"}, {"reviews": "nope"}, "not json"])
    def test_unusable_shapes_raise(self, raw):
        with pytest.raises(AnalysisError):
            normalize_scoring_response(raw)


class TestMergeReviews:

    def test_one_entry_per_turn_in_order(self):
        turns = _turns(3)
        merged = merge_reviews(turns, [TurnReview(index=1, review="Nice", category="compliment")])
        assert [m.index for m in merged] == [0, 1, 2]
        assert [m.review for m in merged] == [None, "Nice", None]
        assert merged[1].category == "compliment"
        assert merged[1].message == "message 1"

    def test_first_review_wins_on_duplicate_index(self):
        reviews = [
            TurnReview(index=1, review="first", category="improvement"),
            TurnReview(index=1, review="second", category="compliment"),
        ]
        merged = merge_reviews(_turns(2), reviews)
        assert merged[1].review == "first"
        assert merged[1].category == "improvement"

    def test_empty_reviews(self):
        merged = merge_reviews(_turns(2), [])
        assert all(m.review is None for m in merged)


class TestCalculateRating:

    def _reviewed(self, *categories):
        return [
            ReviewedTurn(index=i, role="user", message="m", review="r" if c else None, category=c)
            for i, c in enumerate(categories)
        ]

    def test_compliments_minus_improvements(self):
        assert calculate_rating(self._reviewed("compliment", "compliment", "improvement", None)) == 1

    def test_negative_rating(self):
        assert calculate_rating(self._reviewed("improvement", "improvement")) == -2

    def test_zero_when_no_reviews(self):
        assert calculate_rating([]) == 0
        assert calculate_rating(self._reviewed(None, None)) == 0


class TestAnalysisPipeline:

    @pytest.fixture
    def completed_conversation(self, store, make_conversation, three_turns):
        conversation = make_conversation("conv_pipeline")
        return store.save_webhook_result(conversation.id, normalize_transcript(three_turns), None)

    @pytest.mark.asyncio
    async def test_success_persists_review_status_and_next_steps(self, store, pipeline, hub, completed_conversation):
        queue = await hub.subscribe("conv_pipeline")

        outcome = await pipeline.run(completed_conversation)

        assert outcome.succeeded
        assert outcome.status == ConversationStatus.ANALYZED
        review = store.get_review_by_conversation_id(completed_conversation.id)
        assert review.id == outcome.review.id
        assert review.overall_rating == 1
        assert len(review.transcript_with_reviews) == 3
        assert store.get_conversation(completed_conversation.id).status == ConversationStatus.ANALYZED

        next_steps = store.get_next_steps_by_conversation_id(completed_conversation.id)
        assert next_steps.review_id == review.id
        assert len(next_steps.steps) == 2

        event = queue.get_nowait()
        assert event == {"type": "review_ready", "conversationId": "conv_pipeline", "dbConversationId": completed_conversation.id}

    @pytest.mark.asyncio
    async def test_missing_summary_uses_fallback(self, store, pipeline, llm_responses, completed_conversation):
        llm_responses["conversation_coach"] = json.dumps({"reviews": []})

        outcome = await pipeline.run(completed_conversation)

        assert outcome.review.summary == SUMMARY_FALLBACK
        assert outcome.review.overall_rating == 0

    @pytest.mark.asyncio
    async def test_upstream_failure_marks_analysis_failed(self, store, pipeline, hub, llm_responses, completed_conversation):
        llm_responses["conversation_coach"] = UpstreamUnavailable("boom", provider="openai")
        queue = await hub.subscribe("conv_pipeline")

        outcome = await pipeline.run(completed_conversation)

        assert not outcome.succeeded
        assert outcome.status == ConversationStatus.ANALYSIS_FAILED
        assert store.get_review_by_conversation_id(completed_conversation.id) is None
        assert store.get_conversation(completed_conversation.id).status == ConversationStatus.ANALYSIS_FAILED
        assert queue.get_nowait()["type"] == "analysis_failed"

    @pytest.mark.asyncio
    async def test_next_steps_failure_keeps_review(self, store, pipeline, llm_responses, completed_conversation):
        llm_responses["next_steps"] = json.dumps({"steps": [{"step": "ok"}, {"oops": 1}]})

        outcome = await pipeline.run(completed_conversation)

        assert outcome.succeeded
        assert store.get_conversation(completed_conversation.id).status == ConversationStatus.ANALYZED
        assert store.get_next_steps_by_conversation_id(completed_conversation.id) is None

    @pytest.mark.asyncio
    async def test_existing_review_is_reported_as_duplicate(self, store, pipeline, completed_conversation):
        first = await pipeline.run(completed_conversation)
        second = await pipeline.run(completed_conversation)

        assert second.duplicate
        assert second.review.id == first.review.id

    @pytest.mark.asyncio
    async def test_replace_swaps_review(self, store, pipeline, llm_responses, completed_conversation):
        first = await pipeline.run(completed_conversation)
        llm_responses["conversation_coach"] = json.dumps(
            {"reviews": [{"index": 1, "review": "Could share more", "category": "improvement"}], "summary": "Again"}
        )

        second = await pipeline.run(store.get_conversation(completed_conversation.id), replace=True)

        assert second.succeeded
        assert second.review.id != first.review.id
        assert store.get_review_by_conversation_id(completed_conversation.id).overall_rating == -1
        assert store.get_review(first.review.id) is None

    @pytest.mark.asyncio
    async def test_failed_replace_keeps_previous_review(self, store, pipeline, monkeypatch, completed_conversation):
        first = await pipeline.run(completed_conversation)

        def failing_replace_review(**kwargs):
            raise StorageError("Database error during replace review: connection lost")

        monkeypatch.setattr(store, "replace_review", failing_replace_review)

        second = await pipeline.run(store.get_conversation(completed_conversation.id), replace=True)

        assert not second.succeeded
        assert second.status == ConversationStatus.ANALYZED
        assert store.get_review_by_conversation_id(completed_conversation.id).id == first.review.id
        assert store.get_next_steps_by_conversation_id(completed_conversation.id) is not None
        assert store.get_conversation(completed_conversation.id).status == ConversationStatus.ANALYZED

    @pytest.mark.asyncio
    async def test_review_save_failure_marks_analysis_failed(self, store, pipeline, hub, monkeypatch, completed_conversation):
        queue = await hub.subscribe("conv_pipeline")

        def failing_create_review(**kwargs):
            raise StorageError("Database error during create review: disk I/O error")

        monkeypatch.setattr(store, "create_review", failing_create_review)

        outcome = await pipeline.run(completed_conversation)

        assert not outcome.succeeded
        assert outcome.status == ConversationStatus.ANALYSIS_FAILED
        assert store.get_conversation(completed_conversation.id).status == ConversationStatus.ANALYSIS_FAILED
        assert queue.get_nowait()["type"] == "analysis_failed"

    @pytest.mark.asyncio
    async def test_conversation_in_final_status_is_not_scored(self, store, pipeline, fake_openai, make_conversation, three_turns):
        conversation = make_conversation("conv_final")
        store.set_status(conversation.id, ConversationStatus.EMPTY_TRANSCRIPT)
        transcript = store.create_transcript(normalize_transcript(three_turns))
        conversation = store.update_conversation(conversation.id, transcript_id=transcript.id)

        outcome = await pipeline.run(conversation)

        assert not outcome.succeeded
        assert outcome.status == ConversationStatus.EMPTY_TRANSCRIPT
        assert store.get_review_by_conversation_id(conversation.id) is None
        assert store.get_conversation(conversation.id).status == ConversationStatus.EMPTY_TRANSCRIPT
        fake_openai.generate_json.assert_not_called()
