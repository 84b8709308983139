# backend/conversly/storage/__init__.py
from conversly.storage.base import ConversationStore
from conversly.storage.memory import MemoryStore
from conversly.storage.database_store import DatabaseStore

__all__ = ['ConversationStore', 'MemoryStore', 'DatabaseStore', 'build_store']


def build_store(backend: str, demo_user_email: str) -> ConversationStore:
    """Create the configured store and make sure the demo user exists."""
    if backend == "memory":
        return MemoryStore(demo_user_email=demo_user_email)

    from conversly.database import init_db

    init_db()
    store = DatabaseStore()
    store.ensure_user(demo_user_email)
    return store
