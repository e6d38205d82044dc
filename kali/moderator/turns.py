from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from kali.moderator.errors import EngineInvariantError
from kali.moderator.types import (
    GamePhase,
    GameState,
    StateStore,
    TurnAdvance,
    decision_points_from_state,
    find_pending_decision,
    is_number,
)
from kali.moderator.validators import player_id_from_path

logger = logging.getLogger(__name__)


def _player_record(state: GameState, player_id: Any) -> Mapping[str, Any] | None:
    players = state.get("players")
    if not isinstance(players, Mapping) or not isinstance(player_id, str):
        return None
    player = players.get(player_id)
    return player if isinstance(player, Mapping) else None


def _has_pending_decision(state: GameState, player_id: Any) -> bool:
    player = _player_record(state, player_id)
    if player is None:
        return False
    dp = find_pending_decision(
        player=player,
        position=player.get("position"),
        decision_points=decision_points_from_state(state),
    )
    return dp is not None


class TurnManager:
    """The only code path allowed to move `game.turn` outside SETUP."""

    def __init__(self, store: StateStore) -> None:
        self._store = store

    def has_pending_decisions(self) -> bool:
        """True when the active player sits on an unresolved decision point."""

        state = self._store.get_state()
        game = state.get("game") or {}
        return _has_pending_decision(state, game.get("turn"))

    def advance_turn(self, is_processing_effect: bool = False) -> TurnAdvance | None:
        """Hand the turn to the next id in `game.playerOrder`, wrapping around.

        Returns None (and writes nothing) when the game isn't being played,
        is already won, has no turn/order, is mid square effect, or the
        active player still owes a decision.
        """

        state = self._store.get_state()
        game = state.get("game") or {}

        if game.get("phase") != GamePhase.PLAYING:
            logger.debug("Turn not advanced: phase=%s", game.get("phase"))
            return None
        if game.get("winner"):
            logger.debug("Turn not advanced: winner=%s", game.get("winner"))
            return None

        current = game.get("turn")
        order = game.get("playerOrder") or []
        if not current or not order:
            logger.debug("Turn not advanced: turn=%s playerOrder=%s", current, order)
            return None
        if is_processing_effect:
            logger.debug("Turn not advanced: square effect in progress")
            return None
        if _has_pending_decision(state, current):
            logger.info("Turn not advanced: %s has a pending decision", current)
            return None

        # A turn that isn't in the order restarts the rotation.
        idx = order.index(current) + 1 if current in order else 0
        next_id = order[idx % len(order)]
        self._store.set("game.turn", next_id)

        player = _player_record(state, next_id) or {}
        position = player.get("position")
        advance = TurnAdvance(
            player_id=next_id,
            name=player.get("name") or next_id,
            position=position if is_number(position) else 0,
        )
        logger.info("Turn advanced %s -> %s (%s)", current, next_id, advance.name)
        return advance

    def assert_player_turn_ownership(self, path: str) -> None:
        """Last line of defence before a `players.<id>.*` write.

        Validation should already have rejected anything that fails here, so
        a failure means a bug in the engine, not a generator mistake.
        """

        player_id = player_id_from_path(path)
        if player_id is None:
            return

        state = self._store.get_state()
        game = state.get("game") or {}
        if game.get("phase") == GamePhase.SETUP:
            return

        current = game.get("turn")
        if player_id == current:
            return

        if current:
            message = f"Turn ownership violated: cannot modify players.{player_id} when it's {current}'s turn"
        else:
            message = f"Turn ownership violated: cannot modify players.{player_id} when no player has the turn"
        logger.critical(message)
        raise EngineInvariantError(message)
