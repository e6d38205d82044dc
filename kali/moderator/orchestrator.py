from __future__ import annotations

import copy
import logging
import os
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from kali.fsm import PhaseFSM
from kali.lock import BusyError, SingleFlightLock
from kali.moderator.board_effects import BoardEffectsResolver
from kali.moderator.decision_points import DecisionPointEnforcer
from kali.moderator.errors import EngineInvariantError, SideEffectError, UpstreamFailure
from kali.moderator.turns import TurnManager
from kali.moderator.types import (
    ActionGenerator,
    ExecutionContext,
    GamePhase,
    GameState,
    Narrate,
    PlayerAnswered,
    PlayerRolled,
    PrimitiveAction,
    ResetGame,
    SetState,
    StateStore,
    TurnAdvance,
    action_to_wire,
    is_number,
    parse_action,
)
from kali.moderator.validators import validate_actions
from kali.narration import ActivityState, Narrator, StatusReporter
from kali.state_store import get_by_path, path_exists

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 5
DEFAULT_FAILURE_NOTICE = "I couldn't process that."


def get_max_depth() -> int:
    raw = os.environ.get("KALI_MAX_DEPTH")
    if not raw:
        return DEFAULT_MAX_DEPTH
    value = int(raw)
    if value < 1:
        raise ValueError("KALI_MAX_DEPTH must be >= 1")
    return value


@dataclass(frozen=True, slots=True)
class OrchestratorConfig:
    max_depth: int = DEFAULT_MAX_DEPTH
    failure_notice: str = DEFAULT_FAILURE_NOTICE

    @classmethod
    def from_env(cls) -> OrchestratorConfig:
        return cls(max_depth=get_max_depth())


class ActionOrchestrator:
    """Runs generator output against the game state.

    One top-level call at a time (`handle_transcript` / `handle_actions`);
    anything arriving while a call is in flight is dropped. Within a call the
    batch is validated as a whole, then executed action by action. Square
    effects and pending decisions re-enter the pipeline one level deeper
    without taking the lock again.
    """

    def __init__(
        self,
        *,
        generator: ActionGenerator,
        store: StateStore,
        narrator: Narrator,
        status: StatusReporter,
        initial_state: GameState,
        config: OrchestratorConfig | None = None,
    ) -> None:
        self._generator = generator
        self._store = store
        self._narrator = narrator
        self._status = status
        self._template = copy.deepcopy(initial_state)
        self.config = config or OrchestratorConfig()

        self._lock = SingleFlightLock()
        self._turns = TurnManager(store)
        self._board = BoardEffectsResolver(store, self._process_transcript)
        self._decisions = DecisionPointEnforcer(store, self._process_transcript)

    def is_locked(self) -> bool:
        return self._lock.held

    def is_processing_effect(self) -> bool:
        return self._board.is_processing_effect

    async def handle_transcript(self, transcript: str) -> bool:
        """Ask the generator what `transcript` means for the game and apply it.

        Returns True when a batch was validated and executed.
        """

        return await self._run_top_level(
            lambda context: self._process_transcript(transcript, context),
            label=f"transcript {transcript!r}",
        )

    async def handle_actions(self, actions: Any) -> bool:
        """Same pipeline as `handle_transcript`, minus the generator call."""

        return await self._run_top_level(
            lambda context: self._process_actions(actions, context),
            label="pre-built actions",
        )

    async def _run_top_level(
        self,
        process: Callable[[ExecutionContext], Awaitable[bool]],
        *,
        label: str,
    ) -> bool:
        if self._lock.held:
            logger.warning("Orchestrator busy, dropping %s", label)
            return False

        with self._lock.acquire():
            self._status.set_state(ActivityState.PROCESSING)
            try:
                context = ExecutionContext(depth=0, max_depth=self.config.max_depth)
                ok = await process(context)
                if ok:
                    await self._decisions.enforce_decision_points(context)
                    self._turns.advance_turn(self._board.is_processing_effect)
                return ok
            except Exception:
                logger.exception("Unexpected failure while processing %s", label)
                await self._speak_failure()
                return False
            finally:
                self._status.set_state(ActivityState.LISTENING)

    async def _process_transcript(self, transcript: str, context: ExecutionContext) -> bool:
        logger.info("Processing transcript (depth %s): %s", context.depth, transcript)
        state = self._store.get_state()
        logger.debug("State snapshot: %s", state)

        try:
            actions = await self._generator.get_actions(transcript, state)
        except Exception as e:
            failure = UpstreamFailure(f"Action generator failed: {e}")
            logger.error("%s", failure, exc_info=True)
            await self._speak_failure()
            return False

        logger.debug("Generator returned: %s", actions)
        if not actions:
            logger.warning("Generator returned no actions for: %s", transcript)
            await self._speak_failure()
            return False

        return await self._process_actions(actions, context, state=state)

    async def _process_actions(
        self,
        actions: Any,
        context: ExecutionContext,
        *,
        state: GameState | None = None,
    ) -> bool:
        snapshot = state if state is not None else self._store.get_state()
        result = validate_actions(
            actions,
            snapshot,
            self._store,
            is_processing_effect=self._board.is_processing_effect,
        )
        if not result.valid:
            logger.error("Validation failed (depth %s): %s", context.depth, result.error)
            await self._speak_failure()
            return False

        return await self._execute_actions(actions, context)

    async def _execute_actions(self, actions: list[Any], context: ExecutionContext) -> bool:
        if context.exhausted:
            logger.warning("Max execution depth (%s) reached, not executing", context.max_depth)
            return False

        for raw in actions:
            action = parse_action(raw)
            try:
                await self._run_action(action, context)
            except EngineInvariantError:
                logger.critical("Aborting batch after ownership violation on %s", action_to_wire(action))
                return False
            except SideEffectError:
                logger.exception("Failed to execute action %s", action_to_wire(action))
        return True

    async def _run_action(self, action: PrimitiveAction, context: ExecutionContext) -> None:
        try:
            await self._execute_action(action, context)
        except (EngineInvariantError, SideEffectError):
            raise
        except Exception as e:
            raise SideEffectError(f"{action.type.value} failed: {e}", action=action) from e

    async def _execute_action(self, action: PrimitiveAction, context: ExecutionContext) -> None:
        match action:
            case Narrate(text=text, sound_effect=sound):
                self._status.set_state(ActivityState.SPEAKING)
                if sound:
                    self._narrator.play_sound(sound)
                await self._narrator.speak(text)

            case SetState(path=path, value=value):
                self._turns.assert_player_turn_ownership(path)
                logger.info("SET_STATE %s = %r", path, value)
                self._store.set(path, value)
                await self._after_position_write(path, context)

            case PlayerRolled(value=roll):
                await self._apply_roll(action, roll, context)

            case PlayerAnswered(answer=answer):
                logger.info("PLAYER_ANSWERED %r", answer)
                self._store.set("game.lastAnswer", answer)

            case ResetGame(keep_player_names=keep):
                self._reset_game(keep_player_names=keep)

            case _:
                raise ValueError(f"Unhandled action type: {action!r}")

    async def _apply_roll(self, action: PlayerRolled, roll: int | float, context: ExecutionContext) -> None:
        turn = self._store.get("game.turn")
        if not isinstance(turn, str) or not turn:
            raise SideEffectError("PLAYER_ROLLED with no active player", action=action)
        if self._store.get(f"players.{turn}") is None:
            raise SideEffectError(f"PLAYER_ROLLED for unknown player {turn}", action=action)

        path = f"players.{turn}.position"
        self._turns.assert_player_turn_ownership(path)

        self._store.set("game.lastRoll", roll)
        current = self._store.get(path)
        new_position = (current if is_number(current) else 0) + roll
        logger.info("PLAYER_ROLLED %s: %s + %s -> %s", turn, current, roll, new_position)
        self._store.set(path, new_position)
        await self._after_position_write(path, context)

    async def _after_position_write(self, path: str, context: ExecutionContext) -> None:
        self._board.check_and_apply_board_moves(path)
        await self._board.check_and_apply_square_effects(path, context)

    def _reset_game(self, *, keep_player_names: bool) -> None:
        logger.info("Resetting game state (keepPlayerNames=%s)", keep_player_names)

        names: dict[str, str] = {}
        if keep_player_names:
            players = self._store.get("players")
            if isinstance(players, Mapping):
                for pid, record in players.items():
                    if isinstance(record, Mapping) and isinstance(record.get("name"), str):
                        names[pid] = record["name"]

        self._store.reset_state(self._template)
        if not names:
            return

        fresh = self._store.get_state()
        order = get_by_path(fresh, "game.playerOrder")
        if not isinstance(order, list) or not order:
            order = list((fresh.get("players") or {}).keys())

        for pid in order:
            if pid in names and path_exists(fresh, f"players.{pid}"):
                self._store.set(f"players.{pid}.name", names[pid])

    async def _speak_failure(self) -> None:
        self._status.set_state(ActivityState.SPEAKING)
        try:
            await self._narrator.speak(self.config.failure_notice)
        except Exception:
            logger.exception("Failed to speak failure notice")

    # Orchestrator-owned writes. Refused while a top-level call is running.

    def _ensure_idle(self) -> None:
        if self._lock.held:
            raise BusyError("Orchestrator is busy")

    def setup_players(self, names: list[str]) -> GameState:
        """Create `p1..pN` from the template's player record and hand the turn to p1."""

        self._ensure_idle()
        cleaned = [n.strip() for n in names]
        if not cleaned:
            raise ValueError("At least one player name is required")
        if any(not n for n in cleaned):
            raise ValueError("Player names must be non-empty")

        template_players = self._template.get("players")
        base: Mapping[str, Any] = {}
        if isinstance(template_players, Mapping):
            first = next(iter(template_players.values()), None)
            if isinstance(first, Mapping):
                base = first

        players: dict[str, dict[str, Any]] = {}
        for i, name in enumerate(cleaned, start=1):
            pid = f"p{i}"
            record = copy.deepcopy(dict(base))
            record.update(id=pid, name=name, position=0)
            players[pid] = record

        self._store.set("players", players)
        self._store.set("game.playerOrder", list(players))
        self._store.set("game.turn", "p1")
        logger.info("Players set up: %s", ", ".join(f"{pid}={p['name']}" for pid, p in players.items()))
        return self._store.get_state()

    def transition_phase(self, phase: GamePhase | str) -> bool:
        """Move `game.phase` along the phase graph. Returns False if already there."""

        self._ensure_idle()
        target = GamePhase(phase)
        fsm = PhaseFSM(self._store.get("game.phase"))
        previous = fsm.phase
        if not fsm.transition_to(target):
            return False

        if target == GamePhase.SETUP and self._store.get("game.winner") is not None:
            self._store.set("game.winner", None)
        self._store.set("game.phase", target.value)
        logger.info("Phase %s -> %s", previous.value, target.value)
        return True

    def declare_winner(self, player_id: str) -> None:
        self._ensure_idle()
        if not path_exists(self._store.get_state(), f"players.{player_id}"):
            raise ValueError(f"Unknown player: {player_id}")

        # Check the transition before writing anything.
        PhaseFSM(self._store.get("game.phase")).transition_to(GamePhase.FINISHED)

        self._store.set("game.winner", player_id)
        logger.info("Winner: %s", player_id)
        self.transition_phase(GamePhase.FINISHED)

    def advance_turn(self) -> TurnAdvance | None:
        return self._turns.advance_turn(self._board.is_processing_effect)
