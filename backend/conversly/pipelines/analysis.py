# backend/conversly/pipelines/analysis.py
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Set

from conversly.agents.conversation_coach import ConversationCoachAgent
from conversly.agents.next_steps_agent import NextStepsAgent
from conversly.errors import AnalysisError, DuplicateReviewError, InvalidStatusTransition, StorageError
from conversly.schemas import (
    ConversationRecord,
    ConversationStatus,
    ReviewedTurn,
    ReviewRecord,
    ScoringResult,
    TranscriptTurn,
    TurnReview,
)
from conversly.services.notification_hub import (
    NotificationHub,
    analysis_failed_event,
    review_ready_event,
)
from conversly.storage.base import ConversationStore
from conversly.utils.logger import logger


SUMMARY_FALLBACK = "Summary not available"

_CATEGORY_ALIASES = {
    "compliment": "compliment",
    "complement": "compliment",
    "improvement": "improvement",
}


# -----------------------------
# Helpers
# -----------------------------

def _normalize_category(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return _CATEGORY_ALIASES.get(value.strip().lower())


def _parse_review_item(item: Any, position: int) -> Optional[TurnReview]:
    if not isinstance(item, dict):
        logger.warning(f"Dropping review item {position}: not an object")
        return None

    index = item.get("index")
    # bool is an int subclass; a "true" index is never meaningful
    if isinstance(index, bool) or not isinstance(index, int):
        logger.warning(f"Dropping review item {position}: index {index!r} is not an integer")
        return None

    review = item.get("review")
    if not isinstance(review, str) or not review.strip():
        logger.warning(f"Dropping review item {position}: empty review text")
        return None

    return TurnReview(index=index, review=review.strip(), category=_normalize_category(item.get("category")))


def normalize_scoring_response(raw: Any, valid_indexes: Optional[Iterable[int]] = None) -> ScoringResult:
    """
    Decode whatever the scoring model returned into a ScoringResult.

    Accepted shapes: {"reviews": [...], "summary": ...}, a bare list of review
    items, or either of those encoded as a JSON string. Anything else raises
    AnalysisError. Individual bad items are dropped, as are items pointing at
    indexes outside valid_indexes (when given).
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise AnalysisError(f"Scoring response is not valid JSON: {e}") from e

    summary: Optional[str] = None
    if isinstance(raw, dict):
        items = raw.get("reviews")
        if not isinstance(items, list):
            raise AnalysisError("Scoring response has no reviews list")
        if isinstance(raw.get("summary"), str) and raw["summary"].strip():
            summary = raw["summary"].strip()
    elif isinstance(raw, list):
        items = raw
    else:
        raise AnalysisError(f"Unexpected scoring response type: {type(raw).__name__}")

    allowed: Optional[Set[int]] = set(valid_indexes) if valid_indexes is not None else None

    reviews: List[TurnReview] = []
    for position, item in enumerate(items):
        parsed = _parse_review_item(item, position)
        if parsed is None:
            continue
        if allowed is not None and parsed.index not in allowed:
            logger.warning(f"Dropping review for unknown transcript index {parsed.index}")
            continue
        reviews.append(parsed)

    return ScoringResult(reviews=reviews, summary=summary)


def merge_reviews(turns: List[TranscriptTurn], reviews: List[TurnReview]) -> List[ReviewedTurn]:
    """One ReviewedTurn per transcript turn, in transcript order. First review per index wins."""
    by_index = {}
    for r in reviews:
        by_index.setdefault(r.index, r)

    merged: List[ReviewedTurn] = []
    for turn in turns:
        match = by_index.get(turn.index)
        merged.append(
            ReviewedTurn(
                **turn.model_dump(),
                review=match.review if match else None,
                category=match.category if match else None,
            )
        )
    return merged


def calculate_rating(reviewed: Iterable[Any]) -> int:
    compliments = improvements = 0
    for r in reviewed:
        if r.category == "compliment":
            compliments += 1
        elif r.category == "improvement":
            improvements += 1
    return compliments - improvements


@dataclass
class AnalysisOutcome:
    status: str
    review: Optional[ReviewRecord] = None
    duplicate: bool = False

    @property
    def succeeded(self) -> bool:
        return self.review is not None


# -----------------------------
# Pipeline
# -----------------------------

class AnalysisPipeline:
    """
    Scores a conversation's transcript and persists the result.

    analyze() is the unit of work (score, save review, mark analyzed, next
    steps, notify). run() wraps it with failure handling: anything short of a
    saved review leaves the conversation in analysis_failed.
    """

    def __init__(
        self,
        store: ConversationStore,
        coach: ConversationCoachAgent,
        next_steps_agent: NextStepsAgent,
        hub: NotificationHub,
    ):
        self.store = store
        self.coach = coach
        self.next_steps_agent = next_steps_agent
        self.hub = hub

    def load_turns(self, conversation: ConversationRecord) -> List[TranscriptTurn]:
        if not conversation.transcript_id:
            return []
        transcript = self.store.get_transcript(conversation.transcript_id)
        return list(transcript.turns) if transcript else []

    async def analyze(self, conversation: ConversationRecord, replace: bool = False) -> Optional[ReviewRecord]:
        """
        Returns the saved review, or None when scoring failed (nothing persisted).
        DuplicateReviewError propagates when another delivery saved a review first.
        InvalidStatusTransition propagates, before any scoring, when the
        conversation can no longer become analyzed.
        """
        current = self.store.get_conversation(conversation.id) or conversation
        if not ConversationStatus.can_transition(current.status, ConversationStatus.ANALYZED):
            raise InvalidStatusTransition(current.status, ConversationStatus.ANALYZED)

        turns = self.load_turns(conversation)
        if not turns:
            raise AnalysisError(f"Conversation {conversation.id} has no transcript to analyze")

        try:
            raw = await self.coach.score(turns)
            result = normalize_scoring_response(raw, valid_indexes=[t.index for t in turns])
        except Exception as e:
            logger.error(
                f"❌ step=analysis conversation_id={conversation.id} "
                f"external_id={conversation.external_id}: {e}"
            )
            return None

        reviewed = merge_reviews(turns, result.reviews)
        rating = calculate_rating(reviewed)
        summary = result.summary or SUMMARY_FALLBACK

        save = self.store.replace_review if replace else self.store.create_review
        review = save(
            conversation_id=conversation.id,
            summary=summary,
            overall_rating=rating,
            transcript_with_reviews=reviewed,
        )
        logger.info(
            f"✅ Review {review.id} saved for conversation {conversation.id} "
            f"({len(result.reviews)} comments, rating {rating})"
        )

        try:
            self.store.set_status(conversation.id, ConversationStatus.ANALYZED)
        except StorageError as e:
            logger.error(f"❌ step=status_update conversation_id={conversation.id} external_id={conversation.external_id}: {e}")

        await self._generate_next_steps(conversation, review)
        await self._notify(conversation, review_ready_event(conversation.external_id, conversation.id))
        return review

    async def run(self, conversation: ConversationRecord, replace: bool = False) -> AnalysisOutcome:
        try:
            review = await self.analyze(conversation, replace=replace)
        except DuplicateReviewError:
            existing = self.store.get_review_by_conversation_id(conversation.id)
            logger.info(f"Review for conversation {conversation.id} was saved by a concurrent delivery")
            return AnalysisOutcome(status=ConversationStatus.ANALYZED, review=existing, duplicate=True)
        except InvalidStatusTransition as e:
            logger.warning(f"⚠️ Not analyzing conversation {conversation.id}: {e}")
            return AnalysisOutcome(status=e.current)
        except (AnalysisError, StorageError) as e:
            logger.error(f"❌ step=review_save conversation_id={conversation.id} external_id={conversation.external_id}: {e}")
            review = None

        if review is not None:
            return AnalysisOutcome(status=ConversationStatus.ANALYZED, review=review)

        if replace:
            # the previous review is still in place
            logger.warning(f"⚠️ Re-analysis failed for conversation {conversation.id}; keeping existing review")
            return AnalysisOutcome(status=conversation.status)

        status = self._mark_failed(conversation)
        await self._notify(conversation, analysis_failed_event(conversation.external_id, conversation.id, status))
        return AnalysisOutcome(status=status)

    def _mark_failed(self, conversation: ConversationRecord) -> str:
        try:
            updated = self.store.set_status(conversation.id, ConversationStatus.ANALYSIS_FAILED)
            logger.warning(f"⚠️ Conversation {conversation.id} marked analysis_failed")
            return updated.status
        except StorageError as e:
            logger.error(f"❌ step=status_update conversation_id={conversation.id} external_id={conversation.external_id}: {e}")
            current = self.store.get_conversation(conversation.id)
            return current.status if current else conversation.status

    async def _generate_next_steps(self, conversation: ConversationRecord, review: ReviewRecord) -> None:
        steps = await self.next_steps_agent.generate(
            review.transcript_with_reviews, review.summary, conversation_id=conversation.id
        )
        if not steps:
            return
        try:
            self.store.create_next_steps(conversation.id, review.id, steps)
        except StorageError as e:
            logger.error(f"❌ step=next_steps conversation_id={conversation.id} external_id={conversation.external_id}: {e}")

    async def _notify(self, conversation: ConversationRecord, event: dict) -> None:
        if not conversation.external_id:
            return
        try:
            await self.hub.publish(conversation.external_id, event)
        except Exception as e:
            logger.error(f"❌ step=notify conversation_id={conversation.id} external_id={conversation.external_id}: {e}")
