# backend/tests/test_post_call.py
import pytest

from conversly.pipelines.post_call import (
    InvalidPayload,
    extract_post_call_payload,
    normalize_transcript,
)


class TestNormalizeTranscript:

    def test_list_items_get_positional_indexes(self):
        turns = normalize_transcript([
            {"role": "agent", "message": "Hello", "time_in_call_secs": 0},
            {"role": "user", "message": "Hi", "time_in_call_secs": 2.5},
        ])
        assert [(t.index, t.role, t.message) for t in turns] == [(0, "agent", "Hello"), (1, "user", "Hi")]
        assert turns[1].time_in_call_secs == 2.5

    def test_empty_items_dropped_before_indexing(self):
        turns = normalize_transcript([
            {"role": "agent", "message": "Hello"},
            {"role": "user", "message": "   "},
            {"role": "user", "message": None},
            {"role": "user", "message": "Still here"},
        ])
        assert [(t.index, t.message) for t in turns] == [(0, "Hello"), (1, "Still here")]

    @pytest.mark.parametrize("role", ["assistant", "AI", "Agent"])
    def test_assistant_roles_map_to_agent(self, role):
        assert normalize_transcript([{"role": role, "message": "x"}])[0].role == "agent"

    def test_plain_text_transcript(self):
        text = "Agent: Welcome in!\nUser: Thanks, busy day?\nit has been a long one\n\nAgent: Very."
        turns = normalize_transcript(text)
        assert [(t.index, t.role) for t in turns] == [(0, "agent"), (1, "user"), (2, "agent")]
        assert turns[1].message == "Thanks, busy day? it has been a long one"

    @pytest.mark.parametrize("raw", [None, [], "", "   \n  "])
    def test_empty_inputs(self, raw):
        assert normalize_transcript(raw) == []

    def test_non_list_transcript_rejected(self):
        with pytest.raises(InvalidPayload):
            normalize_transcript({"role": "user"})


class TestExtractPayload:

    def test_bare_payload(self):
        payload = extract_post_call_payload({
            "conversation_id": "conv_1",
            "transcript": [{"role": "user", "message": "hi"}],
            "audio_url": "https://cdn.example.com/a.mp3",
        })
        assert payload.conversation_id == "conv_1"
        assert payload.audio_url == "https://cdn.example.com/a.mp3"
        assert len(payload.turns) == 1

    def test_provider_envelope(self):
        payload = extract_post_call_payload({
            "type": "post_call_transcription",
            "event_timestamp": 1750000000,
            "data": {
                "agent_id": "agent_01jyfb9fh8f67agfzvv09tvg3t",
                "conversation_id": "conv_2",
                "status": "done",
                "transcript": [{"role": "agent", "message": "hello"}],
                "metadata": {"call_duration_secs": 42},
            },
        })
        assert payload.conversation_id == "conv_2"
        assert payload.provider_metadata["agent_id"] == "agent_01jyfb9fh8f67agfzvv09tvg3t"
        assert payload.provider_metadata["call_duration_secs"] == 42
        assert payload.audio_url is None

    @pytest.mark.parametrize("body", [{}, {"conversation_id": ""}, {"data": {"transcript": []}}, [1, 2]])
    def test_missing_conversation_id(self, body):
        with pytest.raises(InvalidPayload):
            extract_post_call_payload(body)
