# backend/conversly/errors.py
"""
Exception types shared by the store, the provider clients and the post-call pipeline.

The API layer translates these into HTTP status codes; nothing below the API
layer raises HTTPException.
"""

from typing import Optional


class ConverslyError(Exception):
    """Base class for application errors."""
    pass


class UpstreamUnavailable(ConverslyError):
    """An external provider (voice or scoring) is unconfigured or failed."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class AnalysisError(ConverslyError):
    """Scoring call failed or returned a response that cannot be used."""
    pass


class InvalidSignatureError(ConverslyError):
    """Webhook signature header missing, malformed, stale or not matching."""

    def __init__(self, reason: str):
        super().__init__(f"Invalid webhook signature: {reason}")
        self.reason = reason


class StorageError(ConverslyError):
    """Persistence layer fault."""
    pass


class NotFoundError(StorageError):
    pass


class DuplicateError(StorageError):
    """A uniqueness constraint was violated."""
    pass


class DuplicateReviewError(DuplicateError):
    def __init__(self, conversation_id: int):
        super().__init__(f"Review already exists for conversation {conversation_id}")
        self.conversation_id = conversation_id


class InvalidStatusTransition(StorageError):
    def __init__(self, current: str, new: str):
        super().__init__(f"Cannot move conversation from '{current}' to '{new}'")
        self.current = current
        self.new = new
