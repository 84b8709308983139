# backend/conversly/api/health.py
"""
Health check endpoints.

Reports storage connectivity, which providers are configured and how many
live notification subscribers are connected.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends

from conversly.api.deps import get_hub, get_store
from conversly.config import get_config_status
from conversly.services.notification_hub import NotificationHub
from conversly.storage.base import ConversationStore
from conversly.utils.logger import logger

router = APIRouter(tags=["health"])


def check_storage(store: ConversationStore) -> Dict[str, Any]:
    try:
        ok = store.ping()
        return {
            "status": "healthy" if ok else "unhealthy",
            "backend": type(store).__name__,
        }
    except Exception as e:
        logger.error(f"[Health Check] Storage failed: {e}")
        return {"status": "unhealthy", "backend": type(store).__name__, "error": str(e)}


def build_health_report(store: ConversationStore, hub: NotificationHub) -> Dict[str, Any]:
    storage = check_storage(store)
    return {
        "status": "healthy" if storage["status"] == "healthy" else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "database": storage,
        "config": get_config_status(),
        "notifications": {"subscribers": hub.subscriber_count()},
    }


@router.get("/health")
def health(store: ConversationStore = Depends(get_store), hub: NotificationHub = Depends(get_hub)):
    return build_health_report(store, hub)


@router.get("/api/health")
def api_health(store: ConversationStore = Depends(get_store), hub: NotificationHub = Depends(get_hub)):
    return build_health_report(store, hub)
