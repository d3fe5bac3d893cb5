"""Live delivery of notifications over WebSocket connections.

Services run in FastAPI's worker threads, so ``emit`` is synchronous and
hands the send over to the event loop that owns the sockets, waiting at
most the configured timeout.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import threading
import uuid
from typing import Any, Protocol

from fastapi import WebSocket

from app.core.config import get_settings


logger = logging.getLogger("app.notifications.channel")


class LiveChannel(Protocol):
    def emit(self, user_id: uuid.UUID, event: str, payload: dict[str, Any]) -> bool: ...


class ConnectionManager:
    """Tracks open sockets per user."""

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self._connections: dict[uuid.UUID, set[WebSocket]] = {}
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timeout_seconds = timeout_seconds
        self._pending: set[asyncio.Task[int]] = set()

    async def connect(self, websocket: WebSocket, user_id: uuid.UUID) -> None:
        await websocket.accept()
        self._loop = asyncio.get_running_loop()
        with self._lock:
            self._connections.setdefault(user_id, set()).add(websocket)
        logger.info("ws.connected", extra={"user_id": str(user_id)})

    async def disconnect(self, websocket: WebSocket, user_id: uuid.UUID) -> None:
        with self._lock:
            sockets = self._connections.get(user_id)
            if sockets is not None:
                sockets.discard(websocket)
                if not sockets:
                    del self._connections[user_id]
        logger.info("ws.disconnected", extra={"user_id": str(user_id)})

    def is_connected(self, user_id: uuid.UUID) -> bool:
        with self._lock:
            return bool(self._connections.get(user_id))

    def get_connected_count(self, user_id: uuid.UUID) -> int:
        with self._lock:
            return len(self._connections.get(user_id, set()))

    async def send_to_user(self, user_id: uuid.UUID, message: dict[str, Any]) -> int:
        """Send to every socket of the user and return how many accepted it."""

        with self._lock:
            sockets = set(self._connections.get(user_id, set()))
        if not sockets:
            return 0

        data = json.dumps(message, default=str)
        delivered = 0
        closed: list[WebSocket] = []
        for websocket in sockets:
            try:
                await websocket.send_text(data)
                delivered += 1
            except Exception:
                closed.append(websocket)

        if closed:
            with self._lock:
                remaining = self._connections.get(user_id)
                if remaining is not None:
                    remaining.difference_update(closed)
                    if not remaining:
                        del self._connections[user_id]
        return delivered

    def emit(self, user_id: uuid.UUID, event: str, payload: dict[str, Any]) -> bool:
        if not self.is_connected(user_id):
            return False
        loop = self._loop
        if loop is None or loop.is_closed():
            return False

        message = {"event": event, "data": payload}
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            task = loop.create_task(self.send_to_user(user_id, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return True

        timeout = self._timeout_seconds
        if timeout is None:
            timeout = get_settings().notification_live_timeout_seconds
        future = asyncio.run_coroutine_threadsafe(self.send_to_user(user_id, message), loop)
        try:
            return future.result(timeout=timeout) > 0
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.warning("ws.emit_timeout", extra={"user_id": str(user_id), "event_name": event})
            return False


manager = ConnectionManager()
