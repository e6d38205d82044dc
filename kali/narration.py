from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from enum import StrEnum
from typing import Any, Protocol

from kali.websocket_hub import SessionWebSocketHub, hub

logger = logging.getLogger(__name__)


class ActivityState(StrEnum):
    IDLE = "idle"
    LISTENING = "listening"
    ACTIVE = "active"
    PROCESSING = "processing"
    SPEAKING = "speaking"


class Narrator(Protocol):
    async def speak(self, text: str) -> None:  # pragma: no cover
        ...

    def play_sound(self, effect_name: str) -> None:  # pragma: no cover
        ...


class StatusReporter(Protocol):
    def set_state(self, activity: ActivityState) -> None:  # pragma: no cover
        ...


# Strong refs so fire-and-forget broadcasts aren't garbage collected mid-flight.
_background: set[asyncio.Task[None]] = set()


def _fire_and_forget(make: Callable[[], Coroutine[Any, Any, None]]) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug("No running event loop; dropping broadcast")
        return
    task = loop.create_task(make())
    _background.add(task)
    task.add_done_callback(_background.discard)


class HubNarrator:
    """Speaks by broadcasting text to the session's browser clients, which do the TTS."""

    def __init__(self, *, session_id: str, ws_hub: SessionWebSocketHub = hub) -> None:
        self.session_id = session_id
        self._hub = ws_hub

    async def speak(self, text: str) -> None:
        logger.info("Narrate [%s]: %s", self.session_id, text)
        await self._hub.broadcast(self.session_id, {"type": "narrate", "text": text})

    def play_sound(self, effect_name: str) -> None:
        payload: dict[str, object] = {"type": "sound", "effect": effect_name}
        _fire_and_forget(lambda: self._hub.broadcast(self.session_id, payload))


class HubStatusReporter:
    def __init__(self, *, session_id: str, ws_hub: SessionWebSocketHub = hub) -> None:
        self.session_id = session_id
        self._hub = ws_hub
        self.state = ActivityState.IDLE

    def set_state(self, activity: ActivityState) -> None:
        self.state = activity
        payload: dict[str, object] = {"type": "status", "state": activity.value}
        _fire_and_forget(lambda: self._hub.broadcast(self.session_id, payload))
