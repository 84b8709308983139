# backend/conversly/storage/base.py
"""
Storage interface for users, conversations, transcripts, reviews, next steps and feedback.

Two implementations exist: MemoryStore (demo mode and tests) and DatabaseStore
(SQLAlchemy). Both must enforce the same uniqueness rules:

- one user per email
- one conversation per external (ElevenLabs) conversation id
- at most one review per conversation
- at most one next-steps record per conversation
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from conversly.errors import InvalidStatusTransition, NotFoundError
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


class ConversationStore(ABC):

    # ---------------- users ----------------
    @abstractmethod
    def get_user(self, user_id: int) -> Optional[UserRecord]: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[UserRecord]: ...

    @abstractmethod
    def create_user(self, email: str, auth_provider: str = "local") -> UserRecord: ...

    def ensure_user(self, email: str, auth_provider: str = "local") -> UserRecord:
        user = self.get_user_by_email(email)
        if user:
            return user
        return self.create_user(email, auth_provider)

    # ---------------- transcripts ----------------
    @abstractmethod
    def get_transcript(self, transcript_id: int) -> Optional[TranscriptRecord]: ...

    @abstractmethod
    def create_transcript(self, turns: List[TranscriptTurn]) -> TranscriptRecord: ...

    @abstractmethod
    def update_transcript(self, transcript_id: int, turns: List[TranscriptTurn]) -> Optional[TranscriptRecord]: ...

    # ---------------- conversations ----------------
    @abstractmethod
    def get_conversation(self, conversation_id: int) -> Optional[ConversationRecord]: ...

    @abstractmethod
    def get_conversation_by_external_id(self, external_id: str) -> Optional[ConversationRecord]: ...

    @abstractmethod
    def list_conversations(self, user_id: int) -> List[ConversationWithReview]:
        """Newest first, each with its review (if any) embedded."""

    @abstractmethod
    def create_conversation(
        self,
        user_id: int,
        external_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        status: str = ConversationStatus.PENDING,
    ) -> ConversationRecord: ...

    @abstractmethod
    def update_conversation(self, conversation_id: int, **fields: Any) -> Optional[ConversationRecord]: ...

    def set_status(self, conversation_id: int, status: str) -> ConversationRecord:
        conversation = self.get_conversation(conversation_id)
        if not conversation:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        if not ConversationStatus.can_transition(conversation.status, status):
            raise InvalidStatusTransition(conversation.status, status)
        if conversation.status == status:
            return conversation
        return self.update_conversation(conversation_id, status=status)

    def save_webhook_result(
        self,
        conversation_id: int,
        turns: List[TranscriptTurn],
        audio_url: Optional[str],
        provider_metadata: Optional[Dict[str, Any]] = None,
    ) -> ConversationRecord:
        """
        Create or replace the transcript, attach the audio reference and merge provider
        metadata under the "elevenlabs" key, then mark the conversation completed.
        """
        conversation = self.get_conversation(conversation_id)
        if not conversation:
            raise NotFoundError(f"Conversation {conversation_id} not found")

        if conversation.transcript_id:
            self.update_transcript(conversation.transcript_id, turns)
            transcript_id = conversation.transcript_id
        else:
            transcript_id = self.create_transcript(turns).id

        metadata = dict(conversation.metadata or {})
        if provider_metadata:
            merged = dict(metadata.get("elevenlabs") or {})
            merged.update(provider_metadata)
            metadata["elevenlabs"] = merged

        fields: Dict[str, Any] = {
            "transcript_id": transcript_id,
            "audio_url": audio_url or conversation.audio_url,
            "metadata": metadata,
        }
        if conversation.status == ConversationStatus.PENDING:
            fields["status"] = ConversationStatus.COMPLETED
        return self.update_conversation(conversation_id, **fields)

    # ---------------- reviews ----------------
    @abstractmethod
    def get_review(self, review_id: int) -> Optional[ReviewRecord]: ...

    @abstractmethod
    def get_review_by_conversation_id(self, conversation_id: int) -> Optional[ReviewRecord]: ...

    @abstractmethod
    def create_review(
        self,
        conversation_id: int,
        summary: str,
        overall_rating: int,
        transcript_with_reviews: List[ReviewedTurn],
    ) -> ReviewRecord:
        """Raises DuplicateReviewError if the conversation already has a review."""

    @abstractmethod
    def replace_review(
        self,
        conversation_id: int,
        summary: str,
        overall_rating: int,
        transcript_with_reviews: List[ReviewedTurn],
    ) -> ReviewRecord:
        """
        Drop the current review and next steps of a conversation and save the new
        review, all or nothing: on failure the previous review is still there.
        """

    # ---------------- next steps ----------------
    @abstractmethod
    def get_next_steps(self, next_steps_id: int) -> Optional[NextStepsRecord]: ...

    @abstractmethod
    def get_next_steps_by_conversation_id(self, conversation_id: int) -> Optional[NextStepsRecord]: ...

    @abstractmethod
    def create_next_steps(self, conversation_id: int, review_id: Optional[int], steps: List[Step]) -> NextStepsRecord: ...

    # ---------------- feedback ----------------
    @abstractmethod
    def create_feedback(
        self,
        name: Optional[str],
        email: Optional[str],
        feedback: Optional[str],
        conversation_id: Optional[int] = None,
    ) -> FeedbackRecord: ...

    @abstractmethod
    def get_feedback(self, feedback_id: int) -> Optional[FeedbackRecord]: ...

    # ---------------- health ----------------
    def ping(self) -> bool:
        return True
