# backend/conversly/pipelines/post_call.py
"""
Post-call webhook processing.

The route verifies the signature and decodes JSON; everything after that lives
here so it can be driven directly from tests:

    payload = extract_post_call_payload(body)
    result = await process_post_call(store, pipeline, payload)
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from conversly.errors import NotFoundError, StorageError
from conversly.pipelines.analysis import AnalysisPipeline
from conversly.schemas import ConversationStatus, TranscriptTurn
from conversly.storage.base import ConversationStore
from conversly.utils.logger import logger


POST_CALL_EVENT = "post_call_transcription"

_ROLE_ALIASES = {
    "agent": "agent",
    "assistant": "agent",
    "ai": "agent",
    "bot": "agent",
    "user": "user",
    "human": "user",
}

_LINE_RE = re.compile(r"^\s*([A-Za-z]+)\s*:\s*(.*)$")

# provider fields kept on the conversation's metadata
_METADATA_KEYS = ("agent_id", "status", "call_duration_secs", "start_time_unix_secs", "cost", "termination_reason")

# statuses a delivery with turns may still save and analyze from
_ANALYZABLE_STATUSES = (ConversationStatus.PENDING, ConversationStatus.COMPLETED, ConversationStatus.ANALYSIS_FAILED)


class InvalidPayload(ValueError):
    pass


@dataclass
class PostCallPayload:
    conversation_id: str
    turns: List[TranscriptTurn] = field(default_factory=list)
    audio_url: Optional[str] = None
    provider_metadata: Dict[str, Any] = field(default_factory=dict)


# -----------------------------
# Transcript normalization
# -----------------------------

def _normalize_role(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return _ROLE_ALIASES.get(value.strip().lower())


def _as_seconds(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _turns_from_text(text: str) -> List[TranscriptTurn]:
    """'Agent: hi' / 'User: hello' lines. Lines without a known role continue the previous turn."""
    turns: List[TranscriptTurn] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        m = _LINE_RE.match(line)
        role = _normalize_role(m.group(1)) if m else None
        if role:
            message = m.group(2).strip()
            if message:
                turns.append(TranscriptTurn(index=len(turns), role=role, message=message))
        elif turns:
            last = turns[-1]
            turns[-1] = last.model_copy(update={"message": f"{last.message} {line.strip()}"})
    return turns


def normalize_transcript(raw: Any) -> List[TranscriptTurn]:
    """
    Provider transcript -> ordered turns.

    A list of {role, message, time_in_call_secs} items is the usual shape; the
    provider may omit index, so positions are reassigned by order after empty
    items are dropped. A plain string is parsed as "Role: text" lines.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        return _turns_from_text(raw)
    if not isinstance(raw, list):
        raise InvalidPayload("transcript must be a list or a string")

    turns: List[TranscriptTurn] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        message = item.get("message")
        if not isinstance(message, str) or not message.strip():
            continue
        role = _normalize_role(item.get("role"))
        if role is None:
            logger.warning(f"Dropping transcript item with unknown role {item.get('role')!r}")
            continue
        turns.append(
            TranscriptTurn(
                index=len(turns),
                role=role,
                message=message.strip(),
                time_in_call_secs=_as_seconds(item.get("time_in_call_secs")),
            )
        )
    return turns


def extract_post_call_payload(body: Any) -> PostCallPayload:
    """Accepts the bare payload or the {type, data: {...}} envelope."""
    if not isinstance(body, dict):
        raise InvalidPayload("payload must be a JSON object")

    data = body
    if isinstance(body.get("data"), dict) and "conversation_id" not in body:
        event_type = body.get("type")
        if event_type and event_type != POST_CALL_EVENT:
            logger.info(f"Webhook event type {event_type!r} handled as post-call transcription")
        data = body["data"]

    conversation_id = data.get("conversation_id")
    if not isinstance(conversation_id, str) or not conversation_id.strip():
        raise InvalidPayload("Missing conversation_id")

    audio_url = data.get("audio_url")
    if not isinstance(audio_url, str) or not audio_url.strip():
        audio_url = None

    provider_metadata = {k: data[k] for k in _METADATA_KEYS if k in data}
    if isinstance(data.get("metadata"), dict):
        provider_metadata.update(data["metadata"])

    return PostCallPayload(
        conversation_id=conversation_id.strip(),
        turns=normalize_transcript(data.get("transcript")),
        audio_url=audio_url,
        provider_metadata=provider_metadata,
    )


# -----------------------------
# Processing
# -----------------------------

def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


async def process_post_call(
    store: ConversationStore,
    pipeline: AnalysisPipeline,
    payload: PostCallPayload,
) -> Dict[str, Any]:
    """
    Raises NotFoundError for an unknown conversation and StorageError when the
    transcript cannot be saved. Analysis failures are recorded on the
    conversation and never raised.
    """
    started = time.perf_counter()
    external_id = payload.conversation_id

    conversation = store.get_conversation_by_external_id(external_id)
    if not conversation:
        raise NotFoundError(f"Conversation not found for {external_id}")

    logger.info(
        f"📞 Post-call webhook for conversation {conversation.id} "
        f"(status={conversation.status}, turns={len(payload.turns)}, audio={'yes' if payload.audio_url else 'no'})"
    )

    if store.get_review_by_conversation_id(conversation.id):
        logger.info(f"Conversation {conversation.id} already analyzed; ignoring duplicate delivery")
        return {
            "success": True,
            "duplicate": True,
            "conversationId": conversation.id,
            "status": conversation.status,
            "analysisPerformed": False,
            "processingTime": _elapsed_ms(started),
        }

    if not payload.turns:
        status = conversation.status
        if conversation.status == ConversationStatus.PENDING:
            status = store.set_status(conversation.id, ConversationStatus.EMPTY_TRANSCRIPT).status
        else:
            logger.warning(f"Empty transcript for conversation {conversation.id} in status {conversation.status}; unchanged")
        return {
            "success": True,
            "conversationId": conversation.id,
            "status": status,
            "analysisPerformed": False,
            "processingTime": _elapsed_ms(started),
        }

    if conversation.status not in _ANALYZABLE_STATUSES:
        logger.warning(
            f"⚠️ Transcript for conversation {conversation.id} ignored: status {conversation.status} is final"
        )
        return {
            "success": True,
            "conversationId": conversation.id,
            "status": conversation.status,
            "analysisPerformed": False,
            "processingTime": _elapsed_ms(started),
        }

    try:
        conversation = store.save_webhook_result(
            conversation.id, payload.turns, payload.audio_url, payload.provider_metadata
        )
    except StorageError as e:
        logger.error(f"❌ step=transcript_save conversation_id={conversation.id} external_id={external_id}: {e}")
        raise

    outcome = await pipeline.run(conversation)
    processing_time = _elapsed_ms(started)
    logger.info(f"✅ Webhook processed for conversation {conversation.id} in {processing_time}ms (status={outcome.status})")

    result = {
        "success": True,
        "conversationId": conversation.id,
        "status": outcome.status,
        "analysisPerformed": outcome.succeeded,
        "processingTime": processing_time,
    }
    if outcome.duplicate:
        result["duplicate"] = True
    return result
