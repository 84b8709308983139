# backend/conversly/models/next_steps.py
from sqlalchemy import Column, Integer, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func

from conversly.database import Base


class NextSteps(Base):
    __tablename__ = "next_steps"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    conversation_id = Column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    review_id = Column(Integer, ForeignKey("reviews.id", ondelete="CASCADE"), nullable=True)

    # [{step: "..."}, ...]
    steps = Column(JSON, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
