# backend/conversly/api/deps.py
"""
Request-scoped access to the objects built at startup (see conversly.main).

Tests swap any of these with app.dependency_overrides.
"""
from fastapi import Depends, HTTPException, Request

from conversly.config import settings
from conversly.pipelines.analysis import AnalysisPipeline
from conversly.schemas import UserRecord
from conversly.services.elevenlabs_service import ElevenLabsService
from conversly.services.notification_hub import NotificationHub
from conversly.storage.base import ConversationStore


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


def get_elevenlabs(request: Request) -> ElevenLabsService:
    return request.app.state.elevenlabs


def get_pipeline(request: Request) -> AnalysisPipeline:
    return request.app.state.pipeline


def get_hub(request: Request) -> NotificationHub:
    return request.app.state.hub


def get_current_user(store: ConversationStore = Depends(get_store)) -> UserRecord:
    """Single-user mode: every request acts as the demo user."""
    user = store.get_user_by_email(settings.DEMO_USER_EMAIL)
    if not user:
        raise HTTPException(status_code=500, detail="Demo user is not provisioned")
    return user
