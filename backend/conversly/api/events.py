# backend/conversly/api/events.py
from __future__ import annotations

import asyncio
import contextlib
import json
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from conversly.api.deps import get_hub
from conversly.config import settings
from conversly.services.notification_hub import NotificationHub
from conversly.utils.logger import logger

router = APIRouter(tags=["events"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse(message: Dict[str, Any]) -> str:
    return f"data: {json.dumps(message)}\n\n"


async def sse_stream(
    hub: NotificationHub,
    conversation_id: str,
    request: Optional[Request] = None,
    keepalive_seconds: Optional[float] = None,
):
    """
    Yields a "connected" event, then every hub event for conversation_id.
    A comment line is sent when nothing happened for keepalive_seconds.
    """
    keepalive = keepalive_seconds if keepalive_seconds is not None else settings.SSE_KEEPALIVE_SECONDS
    queue = await hub.subscribe(conversation_id)
    try:
        yield _sse({"type": "connected", "conversationId": conversation_id})
        while True:
            if request is not None and await request.is_disconnected():
                break
            try:
                msg = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield _sse(msg)
    finally:
        await hub.unsubscribe(conversation_id, queue)


@router.get("/api/events/{conversation_id}")
async def conversation_events(
    conversation_id: str,
    request: Request,
    hub: NotificationHub = Depends(get_hub),
):
    """Server-sent events for one ElevenLabs conversation id."""
    logger.info(f"📡 SSE connection opened for {conversation_id}")
    return StreamingResponse(
        sse_stream(hub, conversation_id, request=request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def _forward(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        msg = await queue.get()
        await websocket.send_json(msg)


def _log_forwarder_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(f"⚠️ WebSocket forwarder stopped: {exc}")


def _start_forwarder(websocket: WebSocket, queue: asyncio.Queue) -> asyncio.Task:
    task = asyncio.create_task(_forward(websocket, queue))
    task.add_done_callback(_log_forwarder_exit)
    return task


async def _stop_forwarder(task: asyncio.Task) -> None:
    task.cancel()
    # a send failure was already reported by _log_forwarder_exit
    with contextlib.suppress(asyncio.CancelledError, Exception):
        await task


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Client sends {"type": "register", "conversationId": ...}; events for that
    conversation are forwarded until the socket closes. {"type": "ping"} -> pong.
    """
    hub: NotificationHub = websocket.app.state.hub
    await websocket.accept()

    conversation_id: Optional[str] = None
    queue: Optional[asyncio.Queue] = None
    forwarder: Optional[asyncio.Task] = None

    try:
        while True:
            data = await websocket.receive_text()

            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json(
                    {"type": "error", "message": "Invalid JSON format", "timestamp": datetime.now().isoformat()}
                )
                continue
            if not isinstance(msg, dict):
                continue

            if msg.get("type") == "ping":
                await websocket.send_json({"type": "pong", "timestamp": datetime.now().isoformat()})

            elif msg.get("type") == "register":
                new_id = msg.get("conversationId")
                if not isinstance(new_id, str) or not new_id:
                    await websocket.send_json({"type": "error", "message": "conversationId is required"})
                    continue

                # one registration per socket; re-register moves it
                if forwarder:
                    await _stop_forwarder(forwarder)
                if queue is not None and conversation_id:
                    await hub.unsubscribe(conversation_id, queue)

                conversation_id = new_id
                queue = await hub.subscribe(conversation_id)
                forwarder = _start_forwarder(websocket, queue)
                await websocket.send_json({"type": "registered", "conversationId": conversation_id})

    except WebSocketDisconnect:
        logger.info(f"🔌 WebSocket disconnected ({conversation_id or 'unregistered'})")
    except Exception as e:
        logger.error(f"❌ WebSocket fatal error: {e}")
    finally:
        if forwarder:
            await _stop_forwarder(forwarder)
        if queue is not None and conversation_id:
            await hub.unsubscribe(conversation_id, queue)
