# backend/conversly/api/feedback.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from conversly.api.deps import get_store
from conversly.storage.base import ConversationStore
from conversly.utils.logger import logger
from conversly.utils.validators import contains_suspicious_content, is_valid_email, strip_html_tags

router = APIRouter(prefix="/api/feedback", tags=["feedback"])

MAX_NAME_LENGTH = 200
MAX_EMAIL_LENGTH = 200
MAX_FEEDBACK_LENGTH = 3000


class FeedbackCreate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    feedback: Optional[str] = None
    conversationId: Optional[int] = None


def _clean(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip():
        return None
    return strip_html_tags(value.strip()) or None


@router.post("", status_code=201)
def create_feedback(payload: FeedbackCreate, store: ConversationStore = Depends(get_store)):
    name, email, text = payload.name, payload.email, payload.feedback

    if not (name or email or text):
        raise HTTPException(status_code=400, detail="At least one field (name, email, or feedback) must be provided")

    if name and len(name) > MAX_NAME_LENGTH:
        raise HTTPException(status_code=400, detail=f"Name must be {MAX_NAME_LENGTH} characters or less")
    if email and len(email) > MAX_EMAIL_LENGTH:
        raise HTTPException(status_code=400, detail=f"Email must be {MAX_EMAIL_LENGTH} characters or less")
    if text and len(text) > MAX_FEEDBACK_LENGTH:
        raise HTTPException(status_code=400, detail=f"Feedback must be {MAX_FEEDBACK_LENGTH} characters or less")

    if email and not is_valid_email(email):
        raise HTTPException(status_code=400, detail="Please provide a valid email address")

    if contains_suspicious_content([name, email, text]):
        logger.warning("Rejected feedback containing script-like content")
        raise HTTPException(status_code=400, detail="Content contains potentially malicious code and cannot be processed")

    if payload.conversationId and not store.get_conversation(payload.conversationId):
        raise HTTPException(status_code=400, detail="Invalid conversation ID")

    created = store.create_feedback(
        name=_clean(name),
        email=_clean(email),
        feedback=_clean(text),
        conversation_id=payload.conversationId or None,
    )
    logger.info(f"📝 Feedback {created.id} received")
    return {
        "message": "Feedback submitted successfully",
        "feedback": {"id": created.id, "createdAt": created.created_at.isoformat() if created.created_at else None},
    }


@router.get("/{feedback_id}")
def get_feedback(feedback_id: int, store: ConversationStore = Depends(get_store)):
    fb = store.get_feedback(feedback_id)
    if not fb:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return {
        "id": fb.id,
        "name": fb.name,
        "email": fb.email,
        "feedback": fb.feedback,
        "conversationId": fb.conversation_id,
        "createdAt": fb.created_at.isoformat() if fb.created_at else None,
    }
