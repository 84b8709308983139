# backend/conversly/storage/memory.py
"""Dict-backed store for demo mode and tests. Nothing survives a restart."""
from __future__ import annotations

import threading
from datetime import datetime
from itertools import count
from typing import Any, Dict, List, Optional

from conversly.errors import DuplicateError, DuplicateReviewError
from conversly.schemas import (
    ConversationRecord,
    ConversationStatus,
    ConversationWithReview,
    FeedbackRecord,
    NextStepsRecord,
    ReviewedTurn,
    ReviewRecord,
    Step,
    TranscriptRecord,
    TranscriptTurn,
    UserRecord,
)
from conversly.storage.base import ConversationStore


class MemoryStore(ConversationStore):

    def __init__(self, demo_user_email: Optional[str] = None):
        # RLock: ensure_user/save_webhook_result call back into locked methods
        self._lock = threading.RLock()

        self._users: Dict[int, UserRecord] = {}
        self._conversations: Dict[int, ConversationRecord] = {}
        self._transcripts: Dict[int, TranscriptRecord] = {}
        self._reviews: Dict[int, ReviewRecord] = {}
        self._next_steps: Dict[int, NextStepsRecord] = {}
        self._feedback: Dict[int, FeedbackRecord] = {}

        self._ids = {name: count(1) for name in ("user", "conversation", "transcript", "review", "next_steps", "feedback")}

        if demo_user_email:
            self.create_user(demo_user_email)

    def _next_id(self, name: str) -> int:
        return next(self._ids[name])

    # ---------------- users ----------------
    def get_user(self, user_id: int) -> Optional[UserRecord]:
        return self._users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        return next((u for u in self._users.values() if u.email == email), None)

    def create_user(self, email: str, auth_provider: str = "local") -> UserRecord:
        with self._lock:
            if self.get_user_by_email(email):
                raise DuplicateError(f"User with email {email} already exists")
            now = datetime.utcnow()
            user = UserRecord(
                id=self._next_id("user"),
                email=email,
                auth_provider=auth_provider,
                created_at=now,
                updated_at=now,
            )
            self._users[user.id] = user
            return user

    # ---------------- transcripts ----------------
    def get_transcript(self, transcript_id: int) -> Optional[TranscriptRecord]:
        return self._transcripts.get(transcript_id)

    def create_transcript(self, turns: List[TranscriptTurn]) -> TranscriptRecord:
        with self._lock:
            transcript = TranscriptRecord(
                id=self._next_id("transcript"),
                turns=list(turns),
                created_at=datetime.utcnow(),
            )
            self._transcripts[transcript.id] = transcript
            return transcript

    def update_transcript(self, transcript_id: int, turns: List[TranscriptTurn]) -> Optional[TranscriptRecord]:
        with self._lock:
            existing = self._transcripts.get(transcript_id)
            if not existing:
                return None
            updated = existing.model_copy(update={"turns": list(turns)})
            self._transcripts[transcript_id] = updated
            return updated

    # ---------------- conversations ----------------
    def get_conversation(self, conversation_id: int) -> Optional[ConversationRecord]:
        return self._conversations.get(conversation_id)

    def get_conversation_by_external_id(self, external_id: str) -> Optional[ConversationRecord]:
        if not external_id:
            return None
        return next((c for c in self._conversations.values() if c.external_id == external_id), None)

    def list_conversations(self, user_id: int) -> List[ConversationWithReview]:
        rows = sorted(
            (c for c in self._conversations.values() if c.user_id == user_id),
            key=lambda c: (c.created_at, c.id),
            reverse=True,
        )
        return [
            ConversationWithReview(**c.model_dump(), review=self.get_review_by_conversation_id(c.id))
            for c in rows
        ]

    def create_conversation(
        self,
        user_id: int,
        external_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        status: str = ConversationStatus.PENDING,
    ) -> ConversationRecord:
        with self._lock:
            if external_id and self.get_conversation_by_external_id(external_id):
                raise DuplicateError(f"Conversation with external id {external_id} already exists")
            conversation = ConversationRecord(
                id=self._next_id("conversation"),
                user_id=user_id,
                external_id=external_id,
                status=status,
                metadata=dict(metadata or {}),
                created_at=datetime.utcnow(),
            )
            self._conversations[conversation.id] = conversation
            return conversation

    def update_conversation(self, conversation_id: int, **fields: Any) -> Optional[ConversationRecord]:
        with self._lock:
            existing = self._conversations.get(conversation_id)
            if not existing:
                return None
            updated = existing.model_copy(update=fields)
            self._conversations[conversation_id] = updated
            return updated

    # ---------------- reviews ----------------
    def get_review(self, review_id: int) -> Optional[ReviewRecord]:
        return self._reviews.get(review_id)

    def get_review_by_conversation_id(self, conversation_id: int) -> Optional[ReviewRecord]:
        return next((r for r in self._reviews.values() if r.conversation_id == conversation_id), None)

    def create_review(
        self,
        conversation_id: int,
        summary: str,
        overall_rating: int,
        transcript_with_reviews: List[ReviewedTurn],
    ) -> ReviewRecord:
        with self._lock:
            # check-and-set under the lock, same guarantee as the unique column
            if self.get_review_by_conversation_id(conversation_id):
                raise DuplicateReviewError(conversation_id)
            review = ReviewRecord(
                id=self._next_id("review"),
                conversation_id=conversation_id,
                summary=summary,
                overall_rating=overall_rating,
                transcript_with_reviews=list(transcript_with_reviews),
                created_at=datetime.utcnow(),
            )
            self._reviews[review.id] = review
            return review

    def replace_review(
        self,
        conversation_id: int,
        summary: str,
        overall_rating: int,
        transcript_with_reviews: List[ReviewedTurn],
    ) -> ReviewRecord:
        with self._lock:
            review = ReviewRecord(
                id=self._next_id("review"),
                conversation_id=conversation_id,
                summary=summary,
                overall_rating=overall_rating,
                transcript_with_reviews=list(transcript_with_reviews),
                created_at=datetime.utcnow(),
            )
            old = self.get_review_by_conversation_id(conversation_id)
            steps = self.get_next_steps_by_conversation_id(conversation_id)
            if steps:
                del self._next_steps[steps.id]
            if old:
                del self._reviews[old.id]
            self._reviews[review.id] = review
            return review

    # ---------------- next steps ----------------
    def get_next_steps(self, next_steps_id: int) -> Optional[NextStepsRecord]:
        return self._next_steps.get(next_steps_id)

    def get_next_steps_by_conversation_id(self, conversation_id: int) -> Optional[NextStepsRecord]:
        return next((n for n in self._next_steps.values() if n.conversation_id == conversation_id), None)

    def create_next_steps(self, conversation_id: int, review_id: Optional[int], steps: List[Step]) -> NextStepsRecord:
        with self._lock:
            if self.get_next_steps_by_conversation_id(conversation_id):
                raise DuplicateError(f"Next steps already exist for conversation {conversation_id}")
            record = NextStepsRecord(
                id=self._next_id("next_steps"),
                conversation_id=conversation_id,
                review_id=review_id,
                steps=list(steps),
                created_at=datetime.utcnow(),
            )
            self._next_steps[record.id] = record
            return record

    # ---------------- feedback ----------------
    def create_feedback(
        self,
        name: Optional[str],
        email: Optional[str],
        feedback: Optional[str],
        conversation_id: Optional[int] = None,
    ) -> FeedbackRecord:
        with self._lock:
            record = FeedbackRecord(
                id=self._next_id("feedback"),
                name=name,
                email=email,
                feedback=feedback,
                conversation_id=conversation_id,
                created_at=datetime.utcnow(),
            )
            self._feedback[record.id] = record
            return record

    def get_feedback(self, feedback_id: int) -> Optional[FeedbackRecord]:
        return self._feedback.get(feedback_id)
