# backend/conversly/models/transcript.py
from sqlalchemy import Column, Integer, DateTime, JSON
from sqlalchemy.sql import func

from conversly.database import Base


class Transcript(Base):
    __tablename__ = "transcripts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # [{index, role, message, time_in_call_secs}, ...]
    transcript_data = Column(JSON, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
