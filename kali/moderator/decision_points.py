from __future__ import annotations

import logging
from collections.abc import Mapping

from kali.moderator.board_effects import ProcessTranscript
from kali.moderator.types import (
    DecisionPoint,
    ExecutionContext,
    StateStore,
    decision_points_from_state,
    find_pending_decision,
)

logger = logging.getLogger(__name__)


def decision_transcript(*, name: str, player_id: str, position: int | float, dp: DecisionPoint) -> str:
    return (
        f"[SYSTEM: {name} ({player_id}) is at position {position} and MUST choose "
        f"'{dp.required_field}' before proceeding. Ask them: \"{dp.prompt}\"]"
    )


class DecisionPointEnforcer:
    """Makes the generator ask for a pending decision before play moves on."""

    def __init__(self, store: StateStore, process_transcript: ProcessTranscript) -> None:
        self._store = store
        self._process_transcript = process_transcript

    async def enforce_decision_points(self, context: ExecutionContext) -> None:
        try:
            await self._enforce(context)
        except Exception:
            logger.exception("Decision point enforcement failed")

    async def _enforce(self, context: ExecutionContext) -> None:
        state = self._store.get_state()
        turn = self._store.get_by_path(state, "game.turn")
        if not isinstance(turn, str) or not turn:
            return

        player = self._store.get_by_path(state, f"players.{turn}")
        if not isinstance(player, Mapping):
            return

        position = player.get("position")
        dp = find_pending_decision(
            player=player,
            position=position,
            decision_points=decision_points_from_state(state),
        )
        if dp is None:
            return

        if not context.can_escalate:
            logger.warning(
                "Skipping decision prompt for %s at %s: depth %s of %s reached",
                turn,
                position,
                context.depth,
                context.max_depth,
            )
            return

        logger.info("Decision pending for %s at %s: %s", turn, position, dp.required_field)
        name = player.get("name") or turn
        await self._process_transcript(
            decision_transcript(name=name, player_id=turn, position=position, dp=dp),
            context.deeper(),
        )
