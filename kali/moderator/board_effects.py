from __future__ import annotations

import json
import logging
import re
from collections.abc import Awaitable, Callable, Mapping

from kali.moderator.types import ExecutionContext, StateStore, is_number

logger = logging.getLogger(__name__)

POSITION_PATH_RE = re.compile(r"^players\.[^.]+\.position$")

ProcessTranscript = Callable[[str, ExecutionContext], Awaitable[object]]


def square_effect_transcript(*, position: int | float, square: Mapping) -> str:
    return (
        f"[SYSTEM: Current player just landed on square {position}. "
        f"Square data: {json.dumps(square)}. "
        "You MUST process this square's effect now according to game rules.]"
    )


class BoardEffectsResolver:
    """Board mechanics that follow a write to `players.<id>.position`.

    Moves (ladders/snakes) are applied silently. Special squares hand control
    back to the generator through `process_transcript` one level deeper.
    """

    def __init__(self, store: StateStore, process_transcript: ProcessTranscript) -> None:
        self._store = store
        self._process_transcript = process_transcript
        # Counter rather than bool: nested effects keep the flag raised.
        self._effects_in_progress = 0

    @property
    def is_processing_effect(self) -> bool:
        return self._effects_in_progress > 0

    def check_and_apply_board_moves(self, path: str) -> None:
        if not POSITION_PATH_RE.match(path):
            return

        position = self._store.get(path)
        if not is_number(position):
            return

        moves = self._store.get("board.moves")
        if not isinstance(moves, Mapping):
            return

        destination = moves.get(_square_key(position))
        if not is_number(destination) or destination == position:
            return

        kind = "ladder" if destination > position else "snake"
        logger.info("Board move (%s) at %s: %s -> %s", kind, path, position, destination)
        self._store.set(path, destination)

    async def check_and_apply_square_effects(self, path: str, context: ExecutionContext) -> None:
        if not POSITION_PATH_RE.match(path):
            return

        position = self._store.get(path)
        if not is_number(position):
            return

        squares = self._store.get("board.squares")
        if not isinstance(squares, Mapping):
            return

        square = squares.get(_square_key(position))
        if not isinstance(square, Mapping) or not square:
            return

        if not context.can_escalate:
            logger.warning(
                "Skipping square effect at %s: depth %s of %s reached",
                position,
                context.depth,
                context.max_depth,
            )
            return

        logger.info("Square effect at %s: %s", position, square)
        self._effects_in_progress += 1
        try:
            await self._process_transcript(
                square_effect_transcript(position=position, square=square),
                context.deeper(),
            )
        finally:
            self._effects_in_progress -= 1


def _square_key(position: int | float) -> str:
    """Board maps are keyed by the decimal string of the position ("5", not "5.0")."""

    if isinstance(position, float) and position.is_integer():
        return str(int(position))
    return str(position)
