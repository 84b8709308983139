# backend/conversly/api/conversations.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict

from conversly.api.deps import get_current_user, get_pipeline, get_store
from conversly.errors import DuplicateError
from conversly.pipelines.analysis import AnalysisPipeline
from conversly.schemas import (
    ConversationRecord,
    NextStepsRecord,
    ReviewRecord,
    TranscriptRecord,
    UserRecord,
)
from conversly.storage.base import ConversationStore
from conversly.utils.logger import logger

router = APIRouter(prefix="/api", tags=["conversations"])


# -----------------------------
# Serializers (camelCase for the web client)
# -----------------------------

def _iso(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def user_to_dict(u: UserRecord) -> Dict[str, Any]:
    return {"id": u.id, "email": u.email, "authProvider": u.auth_provider, "createdAt": _iso(u.created_at)}


def conversation_to_dict(c: ConversationRecord) -> Dict[str, Any]:
    return {
        "id": c.id,
        "userId": c.user_id,
        "elevenlabsConversationId": c.external_id,
        "status": c.status,
        "transcriptId": c.transcript_id,
        "audioUrl": c.audio_url,
        "metadata": c.metadata or {},
        "createdAt": _iso(c.created_at),
    }


def review_to_dict(r: Optional[ReviewRecord]) -> Optional[Dict[str, Any]]:
    if r is None:
        return None
    return {
        "id": r.id,
        "conversationId": r.conversation_id,
        "summary": r.summary,
        "overallRating": r.overall_rating,
        "transcriptWithReviews": [t.model_dump() for t in r.transcript_with_reviews],
        "createdAt": _iso(r.created_at),
    }


def transcript_to_dict(t: Optional[TranscriptRecord]) -> Optional[Dict[str, Any]]:
    if t is None:
        return None
    return {"id": t.id, "transcriptData": [turn.model_dump() for turn in t.turns], "createdAt": _iso(t.created_at)}


def next_steps_to_dict(n: Optional[NextStepsRecord]) -> Optional[Dict[str, Any]]:
    if n is None:
        return None
    return {
        "id": n.id,
        "conversationId": n.conversation_id,
        "reviewId": n.review_id,
        "steps": [s.model_dump() for s in n.steps],
        "createdAt": _iso(n.created_at),
    }


def _get_conversation_or_404(store: ConversationStore, conversation_id: int) -> ConversationRecord:
    conversation = store.get_conversation(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


class ConversationCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    elevenlabsConversationId: Optional[str] = None
    externalId: Optional[str] = None
    agentId: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


# -----------------------------
# Routes
# -----------------------------

@router.get("/user")
def get_user(user: UserRecord = Depends(get_current_user)):
    return user_to_dict(user)


@router.get("/conversations")
def list_conversations(
    user: UserRecord = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    out = []
    for c in store.list_conversations(user.id):
        item = conversation_to_dict(c)
        item["review"] = review_to_dict(c.review)
        out.append(item)
    return out


@router.post("/conversations", status_code=201)
def create_conversation(
    payload: ConversationCreate,
    user: UserRecord = Depends(get_current_user),
    store: ConversationStore = Depends(get_store),
):
    external_id = (payload.elevenlabsConversationId or payload.externalId or "").strip() or None
    metadata = dict(payload.metadata or {})
    if payload.agentId:
        metadata.setdefault("agentId", payload.agentId)

    try:
        conversation = store.create_conversation(user.id, external_id=external_id, metadata=metadata)
    except DuplicateError:
        raise HTTPException(status_code=409, detail="Conversation already exists for this ElevenLabs conversation id")

    logger.info(f"🆕 Conversation {conversation.id} created (external_id={external_id})")
    return conversation_to_dict(conversation)


@router.get("/conversations/{conversation_id}")
def get_conversation(conversation_id: int, store: ConversationStore = Depends(get_store)):
    """Conversation with its review, transcript and next steps (each null until available)."""
    conversation = _get_conversation_or_404(store, conversation_id)

    transcript = store.get_transcript(conversation.transcript_id) if conversation.transcript_id else None
    out = conversation_to_dict(conversation)
    out["review"] = review_to_dict(store.get_review_by_conversation_id(conversation.id))
    out["transcript"] = transcript_to_dict(transcript)
    out["nextSteps"] = next_steps_to_dict(store.get_next_steps_by_conversation_id(conversation.id))
    return out


@router.post("/conversations/{conversation_id}/analyze")
async def analyze_conversation(
    conversation_id: int,
    force: bool = False,
    store: ConversationStore = Depends(get_store),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """
    Manual (re-)analysis. Used to recover conversations left in analysis_failed.
    An existing review is only replaced with ?force=true.
    """
    conversation = _get_conversation_or_404(store, conversation_id)

    if not pipeline.load_turns(conversation):
        raise HTTPException(status_code=400, detail="Conversation has no transcript to analyze")

    existing = store.get_review_by_conversation_id(conversation.id)
    if existing and not force:
        raise HTTPException(status_code=409, detail="Review already exists; pass force=true to re-analyze")

    logger.info(f"🔁 Manual analysis requested for conversation {conversation.id} (force={force})")
    outcome = await pipeline.run(conversation, replace=existing is not None)

    if outcome.duplicate:
        raise HTTPException(status_code=409, detail="Review already exists")
    if not outcome.succeeded:
        raise HTTPException(status_code=502, detail="Conversation analysis failed")

    return {"success": True, "status": outcome.status, "review": review_to_dict(outcome.review)}


@router.get("/conversations/{conversation_id}/review")
def get_conversation_review(conversation_id: int, store: ConversationStore = Depends(get_store)):
    _get_conversation_or_404(store, conversation_id)
    review = store.get_review_by_conversation_id(conversation_id)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review_to_dict(review)


@router.get("/conversations/{conversation_id}/next-steps")
def get_conversation_next_steps(conversation_id: int, store: ConversationStore = Depends(get_store)):
    _get_conversation_or_404(store, conversation_id)
    next_steps = store.get_next_steps_by_conversation_id(conversation_id)
    if not next_steps:
        raise HTTPException(status_code=404, detail="Next steps not found")
    return next_steps_to_dict(next_steps)


@router.get("/reviews/{review_id}")
def get_review(review_id: int, store: ConversationStore = Depends(get_store)):
    review = store.get_review(review_id)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review_to_dict(review)


@router.get("/transcripts/{transcript_id}")
def get_transcript(transcript_id: int, store: ConversationStore = Depends(get_store)):
    transcript = store.get_transcript(transcript_id)
    if not transcript:
        raise HTTPException(status_code=404, detail="Transcript not found")
    return transcript_to_dict(transcript)


@router.get("/next-steps/{next_steps_id}")
def get_next_steps(next_steps_id: int, store: ConversationStore = Depends(get_store)):
    next_steps = store.get_next_steps(next_steps_id)
    if not next_steps:
        raise HTTPException(status_code=404, detail="Next steps not found")
    return next_steps_to_dict(next_steps)
