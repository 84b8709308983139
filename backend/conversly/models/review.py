# backend/conversly/models/review.py
from sqlalchemy import Column, Integer, Text, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from conversly.database import Base


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # unique: at most one review per conversation, even under duplicate webhooks
    conversation_id = Column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    summary = Column(Text, nullable=False)
    overall_rating = Column(Integer, nullable=False, server_default="0")  # +1 per compliment, -1 per improvement
    transcript_with_reviews = Column(JSON, nullable=False)

    created_at = Column(DateTime, server_default=func.now())

    conversation = relationship("Conversation", back_populates="review")
