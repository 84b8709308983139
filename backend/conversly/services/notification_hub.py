# backend/conversly/services/notification_hub.py
"""
Best-effort "review ready" push channel.

Subscribers register under the ElevenLabs conversation id they started. Messages
published while nobody is listening are dropped; clients fall back to polling
GET /api/conversations/{id}, which is the source of truth.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Set

from conversly.utils.logger import logger


class NotificationHub:

    def __init__(self, max_queue_size: int = 16) -> None:
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()
        self._max_queue_size = max_queue_size

    async def subscribe(self, conversation_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        async with self._lock:
            self._subscribers.setdefault(conversation_id, set()).add(queue)
        logger.info(f"📡 Subscriber registered for {conversation_id} ({self.subscriber_count(conversation_id)} total)")
        return queue

    async def unsubscribe(self, conversation_id: str, queue: asyncio.Queue) -> None:
        async with self._lock:
            queues = self._subscribers.get(conversation_id)
            if not queues:
                return
            queues.discard(queue)
            if not queues:
                del self._subscribers[conversation_id]
        logger.info(f"📡 Subscriber removed for {conversation_id}")

    async def publish(self, conversation_id: str, message: Dict[str, Any]) -> int:
        """Deliver to every current subscriber. Returns how many received it; never raises."""
        async with self._lock:
            queues: List[asyncio.Queue] = list(self._subscribers.get(conversation_id, ()))

        if not queues:
            logger.info(f"No subscribers for {conversation_id}; dropping {message.get('type')} event")
            return 0

        delivered = 0
        for queue in queues:
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full for {conversation_id}; event dropped")
        return delivered

    def subscriber_count(self, conversation_id: str = "") -> int:
        if conversation_id:
            return len(self._subscribers.get(conversation_id, ()))
        return sum(len(q) for q in self._subscribers.values())


def review_ready_event(external_id: str, conversation_id: int) -> Dict[str, Any]:
    return {"type": "review_ready", "conversationId": external_id, "dbConversationId": conversation_id}


def analysis_failed_event(external_id: str, conversation_id: int, status: str) -> Dict[str, Any]:
    return {
        "type": "analysis_failed",
        "conversationId": external_id,
        "dbConversationId": conversation_id,
        "status": status,
    }
