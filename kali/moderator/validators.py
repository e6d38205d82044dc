"""Batch validation for generator-issued primitive actions.

Each action runs through a small pipeline of checks chosen by its `action`
discriminator: structure first, then semantics, then authority. The batch is
validated against a simulated state that already includes the effect of the
earlier actions in the same batch, so "choose path B, then move" is accepted
in one utterance. The first failing check rejects the whole batch.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from kali import state_store
from kali.moderator.errors import ActionRejected, AuthorityViolation, StructuralError
from kali.moderator.types import (
    ActionType,
    GamePhase,
    GameState,
    ValidationResult,
    decision_points_from_state,
    find_pending_decision,
    is_number,
)


class PathOracle(Protocol):
    def path_exists(self, state: GameState, path: str) -> bool:  # pragma: no cover
        ...

    def get_by_path(self, state: GameState, path: str) -> Any:  # pragma: no cover
        ...


class _StorePaths:
    def path_exists(self, state: GameState, path: str) -> bool:
        return state_store.path_exists(state, path)

    def get_by_path(self, state: GameState, path: str) -> Any:
        return state_store.get_by_path(state, path)


DEFAULT_PATHS: PathOracle = _StorePaths()

# Only these kinds change the simulated snapshot; everything else leaves it as is.
SIMULATED_ACTION_TYPES = frozenset({ActionType.SET_STATE, ActionType.PLAYER_ROLLED})

PROTECTED_FIELDS: dict[str, str] = {
    "game.phase": "Cannot manually change game.phase - orchestrator manages phase transitions",
    "game.winner": "Cannot manually set game.winner - orchestrator detects and sets winners",
    "game.turn": "Cannot manually change game.turn - orchestrator automatically advances turns",
}

# Writable by the generator while the game is still being set up.
SETUP_WRITABLE_FIELDS = frozenset({"game.turn"})


def player_id_from_path(path: str) -> str | None:
    """`players.p1.hearts` -> `p1`; None for non-player paths."""

    parts = path.split(".")
    if len(parts) < 2 or parts[0] != "players" or not parts[1]:
        return None
    return parts[1]


def is_position_path(path: str) -> bool:
    parts = path.split(".")
    return len(parts) == 3 and parts[0] == "players" and bool(parts[1]) and parts[2] == "position"


def is_player_record_path(path: str) -> bool:
    parts = path.split(".")
    return len(parts) == 2 and parts[0] == "players" and bool(parts[1])


def _in_setup(state: GameState, paths: PathOracle) -> bool:
    return paths.get_by_path(state, "game.phase") == GamePhase.SETUP.value


@dataclass(frozen=True, slots=True)
class ValidationContext:
    """Inputs available to checks for a single action."""

    index: int
    action: str
    paths: PathOracle
    is_processing_effect: bool = False

    @property
    def label(self) -> str:
        return f"{self.action} at index {self.index}"


class ActionCheck(ABC):
    """A small, composable validation unit for one action."""

    @abstractmethod
    def validate(self, *, ctx: ValidationContext, action: Mapping[str, Any], state: GameState) -> None:
        raise NotImplementedError


_FIELD_KINDS = {
    "string": lambda v: isinstance(v, str),
    "number": is_number,
    "boolean": lambda v: isinstance(v, bool),
    "any": lambda v: True,
}


@dataclass(frozen=True, slots=True)
class FieldCheck(ActionCheck):
    """Presence and JSON type of one field."""

    name: str
    kind: str = "any"
    required: bool = True
    nullable: bool = False

    def validate(self, *, ctx: ValidationContext, action: Mapping[str, Any], state: GameState) -> None:
        if self.name not in action:
            if self.required:
                raise StructuralError(f"{ctx.label} missing '{self.name}' field", index=ctx.index)
            return

        value = action[self.name]
        if value is None and self.nullable:
            return
        if not _FIELD_KINDS[self.kind](value):
            raise StructuralError(f"{ctx.label} has invalid '{self.name}' field type", index=ctx.index)


@dataclass(frozen=True, slots=True)
class PositiveNumberCheck(ActionCheck):
    name: str

    def validate(self, *, ctx: ValidationContext, action: Mapping[str, Any], state: GameState) -> None:
        if not action[self.name] > 0:
            raise StructuralError(f"{ctx.label} must have a positive value (got {action[self.name]})", index=ctx.index)


@dataclass(frozen=True, slots=True)
class NonBlankStringCheck(ActionCheck):
    name: str

    def validate(self, *, ctx: ValidationContext, action: Mapping[str, Any], state: GameState) -> None:
        if not action[self.name].strip():
            raise StructuralError(f"{ctx.label} must have a non-empty {self.name}", index=ctx.index)


@dataclass(frozen=True, slots=True)
class SquareEffectContextCheck(ActionCheck):
    """Deny new rolls while a square effect is still being resolved."""

    def validate(self, *, ctx: ValidationContext, action: Mapping[str, Any], state: GameState) -> None:
        if ctx.is_processing_effect:
            raise AuthorityViolation(
                f"{ctx.label} is not allowed during square effect processing: "
                "the current square effect must be resolved first",
                index=ctx.index,
            )


@dataclass(frozen=True, slots=True)
class ProtectedFieldCheck(ActionCheck):
    """Orchestrator-owned fields (and any subtree containing them) are off limits.

    Outside SETUP the `players` map and whole player records are too: only
    individual fields may be written.
    """

    def validate(self, *, ctx: ValidationContext, action: Mapping[str, Any], state: GameState) -> None:
        path: str = action["path"]
        setup = _in_setup(state, ctx.paths)

        for field, message in PROTECTED_FIELDS.items():
            if setup and field in SETUP_WRITABLE_FIELDS:
                continue
            if path == field:
                raise AuthorityViolation(f"{ctx.label}: {message}", index=ctx.index)
            if field.startswith(path + "."):
                raise AuthorityViolation(
                    f"{ctx.label}: Cannot overwrite {path} - it contains orchestrator-managed {field}",
                    index=ctx.index,
                )

        if path == "players" and not setup:
            raise AuthorityViolation(
                f"{ctx.label}: Cannot overwrite players outside SETUP - only the current player may be modified",
                index=ctx.index,
            )
        if is_player_record_path(path) and not setup:
            raise AuthorityViolation(
                f"{ctx.label}: Cannot overwrite {path} outside SETUP - set individual fields instead",
                index=ctx.index,
            )


@dataclass(frozen=True, slots=True)
class TurnOwnershipCheck(ActionCheck):
    """Only the player named by `game.turn` may be mutated (any player during SETUP)."""

    def validate(self, *, ctx: ValidationContext, action: Mapping[str, Any], state: GameState) -> None:
        player_id = player_id_from_path(action["path"])
        if player_id is None or _in_setup(state, ctx.paths):
            return

        current_turn = ctx.paths.get_by_path(state, "game.turn")
        if not current_turn:
            raise AuthorityViolation(
                f"{ctx.label}: Cannot modify players.{player_id} when no player has the turn",
                index=ctx.index,
            )
        if player_id != current_turn:
            raise AuthorityViolation(
                f"{ctx.label}: Cannot modify players.{player_id} when it's {current_turn}'s turn",
                index=ctx.index,
            )


@dataclass(frozen=True, slots=True)
class PathExistsCheck(ActionCheck):
    """The generator may overwrite existing paths but never invent new ones."""

    def validate(self, *, ctx: ValidationContext, action: Mapping[str, Any], state: GameState) -> None:
        path: str = action["path"]
        if not ctx.paths.path_exists(state, path):
            raise StructuralError(f"{ctx.label} references non-existent path: {path}", index=ctx.index)


@dataclass(frozen=True, slots=True)
class DecisionGateCheck(ActionCheck):
    """A player parked on a decision point can't be moved until the decision is recorded."""

    def validate(self, *, ctx: ValidationContext, action: Mapping[str, Any], state: GameState) -> None:
        path: str = action["path"]
        if not is_position_path(path):
            return

        player = ctx.paths.get_by_path(state, path.rsplit(".", 1)[0])
        if not isinstance(player, Mapping):
            return

        position = player.get("position")
        dp = find_pending_decision(
            player=player,
            position=position,
            decision_points=decision_points_from_state(state),
        )
        if dp is not None:
            raise AuthorityViolation(
                f"{ctx.label}: Cannot move from position {position}: must choose '{dp.required_field}' first",
                index=ctx.index,
            )


@dataclass(frozen=True, slots=True)
class ActionPipeline:
    checks: tuple[ActionCheck, ...]

    def validate(self, *, ctx: ValidationContext, action: Mapping[str, Any], state: GameState) -> None:
        for check in self.checks:
            check.validate(ctx=ctx, action=action, state=state)


# Structure -> semantics -> authority, per action kind.
ACTION_PIPELINES: dict[ActionType, ActionPipeline] = {
    ActionType.NARRATE: ActionPipeline(
        checks=(
            FieldCheck("text", "string"),
            FieldCheck("soundEffect", "string", required=False, nullable=True),
        )
    ),
    ActionType.SET_STATE: ActionPipeline(
        checks=(
            FieldCheck("path", "string"),
            FieldCheck("value"),
            ProtectedFieldCheck(),
            TurnOwnershipCheck(),
            PathExistsCheck(),
            DecisionGateCheck(),
        )
    ),
    ActionType.PLAYER_ROLLED: ActionPipeline(
        checks=(
            FieldCheck("value", "number"),
            PositiveNumberCheck("value"),
            SquareEffectContextCheck(),
        )
    ),
    ActionType.PLAYER_ANSWERED: ActionPipeline(
        checks=(
            FieldCheck("answer", "string"),
            NonBlankStringCheck("answer"),
        )
    ),
    ActionType.RESET_GAME: ActionPipeline(
        checks=(FieldCheck("keepPlayerNames", "boolean"),),
    ),
}


def pipeline_for_action(raw: Any, *, index: int) -> tuple[ActionType, ActionPipeline]:
    if not isinstance(raw, Mapping):
        raise StructuralError(f"Action at index {index} is not an object", index=index)
    if "action" not in raw:
        raise StructuralError(f"Action at index {index} missing 'action' field", index=index)

    kind = raw["action"]
    try:
        action_type = ActionType(kind)
    except ValueError:
        # Retired kinds (ADD_STATE, ROLL_DICE, ...) land here on purpose.
        raise StructuralError(f"Action at index {index} has invalid action type: {kind}", index=index) from None
    return action_type, ACTION_PIPELINES[action_type]


def simulate_action(state: GameState, action: Mapping[str, Any], paths: PathOracle = DEFAULT_PATHS) -> GameState:
    """Return the snapshot after `action`, without touching `state`.

    Only SET_STATE and PLAYER_ROLLED are simulated. Board moves and square
    effects are not: they depend on the executor and the generator.
    """

    kind = action.get("action")
    if kind not in SIMULATED_ACTION_TYPES:
        return state

    if kind == ActionType.SET_STATE:
        return state_store.set_by_path(state, action["path"], action["value"])

    turn = paths.get_by_path(state, "game.turn")
    if not isinstance(turn, str) or not paths.path_exists(state, f"players.{turn}"):
        return state

    roll = action["value"]
    new_state = state_store.set_by_path(state, "game.lastRoll", roll)
    current = paths.get_by_path(new_state, f"players.{turn}.position")
    base = current if is_number(current) else 0
    return state_store.set_by_path(new_state, f"players.{turn}.position", base + roll)


def check_actions(
    actions: Any,
    state: GameState,
    paths: PathOracle | None = None,
    *,
    is_processing_effect: bool = False,
) -> None:
    """Raise ActionRejected for the first invalid action in the batch."""

    if not isinstance(actions, list):
        raise StructuralError("Actions must be a list")

    oracle = paths or DEFAULT_PATHS
    simulated = state
    for idx, raw in enumerate(actions):
        action_type, pipeline = pipeline_for_action(raw, index=idx)
        ctx = ValidationContext(
            index=idx,
            action=action_type.value,
            paths=oracle,
            is_processing_effect=is_processing_effect,
        )
        pipeline.validate(ctx=ctx, action=raw, state=simulated)
        simulated = simulate_action(simulated, raw, oracle)


def validate_actions(
    actions: Any,
    state: GameState,
    paths: PathOracle | None = None,
    *,
    is_processing_effect: bool = False,
) -> ValidationResult:
    try:
        check_actions(actions, state, paths, is_processing_effect=is_processing_effect)
    except ActionRejected as e:
        return ValidationResult(valid=False, error=str(e))
    return ValidationResult(valid=True)
