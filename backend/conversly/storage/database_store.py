# backend/conversly/storage/database_store.py
"""SQLAlchemy-backed store. One session per operation; uniqueness enforced by the schema."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from conversly.database import SessionLocal, get_db_context, safe_commit
from conversly.errors import DuplicateError, DuplicateReviewError, StorageError
from conversly.models import Conversation, Feedback, NextSteps, Review, Transcript, User
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
from conversly.utils.logger import logger


def _conversation_record(row: Conversation) -> ConversationRecord:
    return ConversationRecord(
        id=row.id,
        user_id=row.user_id,
        external_id=row.external_id,
        status=row.status,
        transcript_id=row.transcript_id,
        audio_url=row.audio_url,
        metadata=row.metadata_ or {},
        created_at=row.created_at,
    )


def _transcript_record(row: Transcript) -> TranscriptRecord:
    return TranscriptRecord(id=row.id, turns=row.transcript_data or [], created_at=row.created_at)


def _review_record(row: Review) -> ReviewRecord:
    return ReviewRecord(
        id=row.id,
        conversation_id=row.conversation_id,
        summary=row.summary,
        overall_rating=row.overall_rating or 0,
        transcript_with_reviews=row.transcript_with_reviews or [],
        created_at=row.created_at,
    )


def _next_steps_record(row: NextSteps) -> NextStepsRecord:
    return NextStepsRecord(
        id=row.id,
        conversation_id=row.conversation_id,
        review_id=row.review_id,
        steps=row.steps or [],
        created_at=row.created_at,
    )


class DatabaseStore(ConversationStore):

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    @contextmanager
    def _session(self, operation: str = "database operation") -> Generator[Session, None, None]:
        # IntegrityError is translated inside the block; anything else escaping is a storage fault
        with get_db_context(self._session_factory) as db:
            try:
                yield db
            except SQLAlchemyError as e:
                logger.error(f"Database error during {operation}: {str(e)[:200]}")
                raise StorageError(f"Database error during {operation}: {str(e)[:200]}") from e

    def _commit(self, db: Session, operation: str) -> None:
        ok, error = safe_commit(db, operation)
        if not ok:
            raise StorageError(error)

    # ---------------- users ----------------
    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self._session() as db:
            row = db.get(User, user_id)
            return UserRecord.model_validate(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self._session() as db:
            row = db.query(User).filter(User.email == email).first()
            return UserRecord.model_validate(row) if row else None

    def create_user(self, email: str, auth_provider: str = "local") -> UserRecord:
        with self._session() as db:
            row = User(email=email, auth_provider=auth_provider)
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise DuplicateError(f"User with email {email} already exists")
            db.refresh(row)
            return UserRecord.model_validate(row)

    # ---------------- transcripts ----------------
    def get_transcript(self, transcript_id: int) -> Optional[TranscriptRecord]:
        with self._session() as db:
            row = db.get(Transcript, transcript_id)
            return _transcript_record(row) if row else None

    def create_transcript(self, turns: List[TranscriptTurn]) -> TranscriptRecord:
        with self._session() as db:
            row = Transcript(transcript_data=[t.model_dump() for t in turns])
            db.add(row)
            self._commit(db, "create transcript")
            db.refresh(row)
            return _transcript_record(row)

    def update_transcript(self, transcript_id: int, turns: List[TranscriptTurn]) -> Optional[TranscriptRecord]:
        with self._session() as db:
            row = db.get(Transcript, transcript_id)
            if not row:
                return None
            row.transcript_data = [t.model_dump() for t in turns]
            self._commit(db, "update transcript")
            db.refresh(row)
            return _transcript_record(row)

    # ---------------- conversations ----------------
    def get_conversation(self, conversation_id: int) -> Optional[ConversationRecord]:
        with self._session() as db:
            row = db.get(Conversation, conversation_id)
            return _conversation_record(row) if row else None

    def get_conversation_by_external_id(self, external_id: str) -> Optional[ConversationRecord]:
        if not external_id:
            return None
        with self._session("lookup by external id") as db:
            row = db.query(Conversation).filter(Conversation.external_id == external_id).first()
            return _conversation_record(row) if row else None

    def list_conversations(self, user_id: int) -> List[ConversationWithReview]:
        with self._session() as db:
            rows = (
                db.query(Conversation, Review)
                .outerjoin(Review, Review.conversation_id == Conversation.id)
                .filter(Conversation.user_id == user_id)
                .order_by(Conversation.created_at.desc(), Conversation.id.desc())
                .all()
            )
            return [
                ConversationWithReview(
                    **_conversation_record(conv).model_dump(),
                    review=_review_record(review) if review else None,
                )
                for conv, review in rows
            ]

    def create_conversation(
        self,
        user_id: int,
        external_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        status: str = ConversationStatus.PENDING,
    ) -> ConversationRecord:
        with self._session() as db:
            row = Conversation(
                user_id=user_id,
                external_id=external_id,
                status=status,
                metadata_=dict(metadata or {}),
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise DuplicateError(f"Conversation with external id {external_id} already exists")
            db.refresh(row)
            return _conversation_record(row)

    def update_conversation(self, conversation_id: int, **fields: Any) -> Optional[ConversationRecord]:
        with self._session() as db:
            row = db.get(Conversation, conversation_id)
            if not row:
                return None
            for key, value in fields.items():
                setattr(row, "metadata_" if key == "metadata" else key, value)
            self._commit(db, f"update conversation {conversation_id}")
            db.refresh(row)
            return _conversation_record(row)

    # ---------------- reviews ----------------
    def get_review(self, review_id: int) -> Optional[ReviewRecord]:
        with self._session() as db:
            row = db.get(Review, review_id)
            return _review_record(row) if row else None

    def get_review_by_conversation_id(self, conversation_id: int) -> Optional[ReviewRecord]:
        with self._session() as db:
            row = db.query(Review).filter(Review.conversation_id == conversation_id).first()
            return _review_record(row) if row else None

    def create_review(
        self,
        conversation_id: int,
        summary: str,
        overall_rating: int,
        transcript_with_reviews: List[ReviewedTurn],
    ) -> ReviewRecord:
        with self._session(f"create review for conversation {conversation_id}") as db:
            row = Review(
                conversation_id=conversation_id,
                summary=summary,
                overall_rating=overall_rating,
                transcript_with_reviews=[t.model_dump() for t in transcript_with_reviews],
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise DuplicateReviewError(conversation_id)
            db.refresh(row)
            return _review_record(row)

    def replace_review(
        self,
        conversation_id: int,
        summary: str,
        overall_rating: int,
        transcript_with_reviews: List[ReviewedTurn],
    ) -> ReviewRecord:
        with self._session(f"replace review for conversation {conversation_id}") as db:
            db.query(NextSteps).filter(NextSteps.conversation_id == conversation_id).delete()
            db.query(Review).filter(Review.conversation_id == conversation_id).delete()
            row = Review(
                conversation_id=conversation_id,
                summary=summary,
                overall_rating=overall_rating,
                transcript_with_reviews=[t.model_dump() for t in transcript_with_reviews],
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise DuplicateReviewError(conversation_id)
            db.refresh(row)
            return _review_record(row)

    # ---------------- next steps ----------------
    def get_next_steps(self, next_steps_id: int) -> Optional[NextStepsRecord]:
        with self._session() as db:
            row = db.get(NextSteps, next_steps_id)
            return _next_steps_record(row) if row else None

    def get_next_steps_by_conversation_id(self, conversation_id: int) -> Optional[NextStepsRecord]:
        with self._session() as db:
            row = db.query(NextSteps).filter(NextSteps.conversation_id == conversation_id).first()
            return _next_steps_record(row) if row else None

    def create_next_steps(self, conversation_id: int, review_id: Optional[int], steps: List[Step]) -> NextStepsRecord:
        with self._session() as db:
            row = NextSteps(
                conversation_id=conversation_id,
                review_id=review_id,
                steps=[s.model_dump() for s in steps],
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise DuplicateError(f"Next steps already exist for conversation {conversation_id}")
            db.refresh(row)
            return _next_steps_record(row)

    # ---------------- feedback ----------------
    def create_feedback(
        self,
        name: Optional[str],
        email: Optional[str],
        feedback: Optional[str],
        conversation_id: Optional[int] = None,
    ) -> FeedbackRecord:
        with self._session() as db:
            row = Feedback(name=name, email=email, feedback=feedback, conversation_id=conversation_id)
            db.add(row)
            self._commit(db, "create feedback")
            db.refresh(row)
            return FeedbackRecord.model_validate(row)

    def get_feedback(self, feedback_id: int) -> Optional[FeedbackRecord]:
        with self._session() as db:
            row = db.get(Feedback, feedback_id)
            return FeedbackRecord.model_validate(row) if row else None

    # ---------------- health ----------------
    def ping(self) -> bool:
        try:
            with self._session() as db:
                db.execute(text("SELECT 1"))
            return True
        except StorageError as e:
            logger.error(f"[Health Check] Database failed: {e}")
            return False
