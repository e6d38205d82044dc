from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class SessionWebSocketHub:
    """Fan-out of moderator events to the browser clients watching a session.

    The browser does the TTS and renders the status light, so every
    `narrate`, `sound`, `status` and `state_updated` event goes through here.
    Events are not queued for absent clients. The one exception is the most
    recent `status` event: it is replayed on connect, so a client that
    reconnects mid-batch still shows "processing" instead of a stale idle light.
    """

    def __init__(self) -> None:
        self._by_session: dict[str, set[WebSocket]] = defaultdict(set)
        self._last_status: dict[str, dict[str, object]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._by_session[session_id].add(websocket)
            last_status = self._last_status.get(session_id)

        if last_status is not None:
            await self._send(session_id, websocket, last_status)

    async def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self._by_session.get(session_id)
            if not conns:
                return
            conns.discard(websocket)
            if not conns:
                self._by_session.pop(session_id, None)

    def forget(self, session_id: str) -> None:
        """Drop remembered status for a session that no longer exists."""

        self._last_status.pop(session_id, None)

    async def broadcast(self, session_id: str, payload: dict[str, object]) -> None:
        async with self._lock:
            if payload.get("type") == "status":
                self._last_status[session_id] = payload
            conns = list(self._by_session.get(session_id, set()))

        dead = [ws for ws in conns if not await self._send(session_id, ws, payload)]
        if dead:
            async with self._lock:
                for ws in dead:
                    self._by_session.get(session_id, set()).discard(ws)

    async def _send(self, session_id: str, websocket: WebSocket, payload: dict[str, object]) -> bool:
        try:
            await websocket.send_json(payload)
        except Exception:
            logger.debug("Dropping dead websocket for session %s", session_id)
            return False
        return True


hub = SessionWebSocketHub()
