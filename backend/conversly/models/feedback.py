# backend/conversly/models/feedback.py
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.sql import func

from conversly.database import Base


class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200))
    email = Column(String(200))
    feedback = Column(Text)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
