"""Per-user real-time channels.

Every authenticated socket joins the channel of its own user id and nothing else.
Two push primitives exist:

* ``emit_volatile`` sends to the sockets connected right now and drops the event
  otherwise. Used for ``message:new`` and ``conversationUpdate`` so a client that
  reconnects mid-flight never receives the same message twice.
* ``emit_reliable`` sends when connected and otherwise keeps the event in a short,
  bounded per-user buffer that is flushed on the next connect.

Neither mode is durable; clients reconcile through the inbox and message list after
reconnecting.
"""

from collections import deque
from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from typing import Deque, Dict, Set, Tuple
import logging
import os
import time

logger = logging.getLogger(__name__)

RELIABLE_BUFFER_SECONDS = float(os.getenv("RELIABLE_BUFFER_SECONDS", "30"))
RELIABLE_BUFFER_SIZE = int(os.getenv("RELIABLE_BUFFER_SIZE", "100"))


class DeliveryRouter:
    def __init__(
        self,
        buffer_seconds: float = RELIABLE_BUFFER_SECONDS,
        buffer_size: int = RELIABLE_BUFFER_SIZE,
        clock=time.monotonic,
    ):
        self.active_connections: Dict[int, Set[WebSocket]] = {}
        self.buffer_seconds = buffer_seconds
        self.buffer_size = buffer_size
        self._clock = clock
        self._pending: Dict[int, Deque[Tuple[float, dict]]] = {}

    async def connect(self, websocket: WebSocket, user_id: int, accept: bool = True):
        if accept:
            await websocket.accept()
        self.active_connections.setdefault(user_id, set()).add(websocket)
        await self._flush_pending(user_id, websocket)

    def disconnect(self, websocket: WebSocket, user_id: int):
        sockets = self.active_connections.get(user_id)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.active_connections[user_id]

    def is_connected(self, user_id: int) -> bool:
        return bool(self.active_connections.get(user_id))

    def pending_count(self, user_id: int) -> int:
        self._prune(user_id)
        return len(self._pending.get(user_id, ()))

    async def emit_volatile(self, user_id: int, event: str, payload) -> int:
        """Push to the user's live sockets; returns how many received it (0 means dropped)."""
        return await self._send(user_id, _frame(event, payload))

    async def emit_reliable(self, user_id: int, event: str, payload) -> bool:
        """Push now, or buffer until the user reconnects; returns True when sent immediately."""
        frame = _frame(event, payload)
        if await self._send(user_id, frame):
            return True
        self._buffer(user_id, frame)
        return False

    async def _send(self, user_id: int, frame: dict) -> int:
        delivered = 0
        for websocket in list(self.active_connections.get(user_id, ())):
            try:
                await websocket.send_json(frame)
                delivered += 1
            except Exception as exc:
                logger.warning("Dropping dead socket for user %s: %s", user_id, exc)
                self.disconnect(websocket, user_id)
        return delivered

    def _buffer(self, user_id: int, frame: dict):
        # Users who never come back would otherwise keep their buffer forever
        for pending_user in list(self._pending):
            self._prune(pending_user)
        pending = self._pending.setdefault(user_id, deque(maxlen=self.buffer_size))
        pending.append((self._clock(), frame))

    def _prune(self, user_id: int):
        pending = self._pending.get(user_id)
        if not pending:
            return
        cutoff = self._clock() - self.buffer_seconds
        while pending and pending[0][0] < cutoff:
            pending.popleft()
        if not pending:
            del self._pending[user_id]

    async def _flush_pending(self, user_id: int, websocket: WebSocket):
        self._prune(user_id)
        pending = self._pending.pop(user_id, None)
        while pending:
            _, frame = pending.popleft()
            try:
                await websocket.send_json(frame)
            except Exception as exc:
                logger.warning("Flush to user %s failed, keeping %d events: %s", user_id, len(pending) + 1, exc)
                pending.appendleft((self._clock(), frame))
                self._pending[user_id] = pending
                self.disconnect(websocket, user_id)
                return


def _frame(event: str, payload) -> dict:
    return {"event": event, "data": jsonable_encoder(payload)}


manager = DeliveryRouter()


def get_delivery_router() -> DeliveryRouter:
    return manager
