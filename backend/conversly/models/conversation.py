# backend/conversly/models/conversation.py
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from conversly.database import Base


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    transcript_id = Column(Integer, ForeignKey("transcripts.id", ondelete="SET NULL"), nullable=True)

    # ElevenLabs conversation id; the webhook looks conversations up by it
    external_id = Column(String(100), unique=True, index=True, nullable=True)

    audio_url = Column(String(500))
    status = Column(String(50), nullable=False, server_default="pending", index=True)

    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="conversations")
    transcript = relationship("Transcript")
    review = relationship("Review", back_populates="conversation", uselist=False)
