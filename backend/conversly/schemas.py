# backend/conversly/schemas.py
"""
Typed records shared by both store implementations and the post-call pipeline.

Records are what the store hands out; ORM rows never leave the database store.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConversationStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    ANALYZED = "analyzed"
    ANALYSIS_FAILED = "analysis_failed"
    EMPTY_TRANSCRIPT = "empty_transcript"

    ALL = (PENDING, COMPLETED, ANALYZED, ANALYSIS_FAILED, EMPTY_TRANSCRIPT)

    # analysis_failed -> analyzed is the manual-analyze recovery path
    TRANSITIONS = {
        PENDING: {COMPLETED, EMPTY_TRANSCRIPT},
        COMPLETED: {ANALYZED, ANALYSIS_FAILED},
        ANALYSIS_FAILED: {ANALYZED},
        ANALYZED: set(),
        EMPTY_TRANSCRIPT: set(),
    }

    @classmethod
    def can_transition(cls, current: str, new: str) -> bool:
        if current == new:
            return True
        return new in cls.TRANSITIONS.get(current, set())


ReviewCategory = Literal["compliment", "improvement"]


class TranscriptTurn(BaseModel):
    index: int
    role: Literal["agent", "user"]
    message: str
    time_in_call_secs: float = 0


class TurnReview(BaseModel):
    index: int
    review: str
    category: Optional[ReviewCategory] = None


class ReviewedTurn(TranscriptTurn):
    review: Optional[str] = None
    category: Optional[ReviewCategory] = None


class ScoringResult(BaseModel):
    reviews: List[TurnReview] = Field(default_factory=list)
    summary: Optional[str] = None


class Step(BaseModel):
    step: str


class StepsPayload(BaseModel):
    steps: List[Step]


# ---------------------------------------------------------------------------
# Store records
# ---------------------------------------------------------------------------

class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UserRecord(_Record):
    id: int
    email: str
    auth_provider: str = "local"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TranscriptRecord(_Record):
    id: int
    turns: List[TranscriptTurn] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class ReviewRecord(_Record):
    id: int
    conversation_id: int
    summary: str
    overall_rating: int = 0
    transcript_with_reviews: List[ReviewedTurn] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class NextStepsRecord(_Record):
    id: int
    conversation_id: int
    review_id: Optional[int] = None
    steps: List[Step] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class ConversationRecord(_Record):
    id: int
    user_id: int
    external_id: Optional[str] = None
    status: str = ConversationStatus.PENDING
    transcript_id: Optional[int] = None
    audio_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class ConversationWithReview(ConversationRecord):
    review: Optional[ReviewRecord] = None


class FeedbackRecord(_Record):
    id: int
    name: Optional[str] = None
    email: Optional[str] = None
    feedback: Optional[str] = None
    conversation_id: Optional[int] = None
    created_at: Optional[datetime] = None
