from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

GameState = dict[str, Any]


class GamePhase(StrEnum):
    SETUP = "SETUP"
    PLAYING = "PLAYING"
    FINISHED = "FINISHED"


class ActionType(StrEnum):
    NARRATE = "NARRATE"
    SET_STATE = "SET_STATE"
    PLAYER_ROLLED = "PLAYER_ROLLED"
    PLAYER_ANSWERED = "PLAYER_ANSWERED"
    RESET_GAME = "RESET_GAME"


# Earlier protocol generations. Rejected by the validator like any unknown kind.
RETIRED_ACTION_TYPES = frozenset({"ADD_STATE", "SUBTRACT_STATE", "READ_STATE", "ROLL_DICE"})


@dataclass(frozen=True, slots=True)
class Narrate:
    text: str
    sound_effect: str | None = None
    type: ActionType = ActionType.NARRATE


@dataclass(frozen=True, slots=True)
class SetState:
    path: str
    value: Any
    type: ActionType = ActionType.SET_STATE


@dataclass(frozen=True, slots=True)
class PlayerRolled:
    value: int | float
    type: ActionType = ActionType.PLAYER_ROLLED


@dataclass(frozen=True, slots=True)
class PlayerAnswered:
    answer: str
    type: ActionType = ActionType.PLAYER_ANSWERED


@dataclass(frozen=True, slots=True)
class ResetGame:
    keep_player_names: bool
    type: ActionType = ActionType.RESET_GAME


PrimitiveAction = Narrate | SetState | PlayerRolled | PlayerAnswered | ResetGame


def parse_action(raw: Mapping[str, Any]) -> PrimitiveAction:
    """Build the typed action for an already-validated wire object.

    Unknown fields are ignored. Raises ValueError for an unknown discriminator.
    """

    kind = raw.get("action")
    if kind == ActionType.NARRATE:
        return Narrate(text=raw["text"], sound_effect=raw.get("soundEffect") or None)
    if kind == ActionType.SET_STATE:
        return SetState(path=raw["path"], value=raw["value"])
    if kind == ActionType.PLAYER_ROLLED:
        return PlayerRolled(value=raw["value"])
    if kind == ActionType.PLAYER_ANSWERED:
        return PlayerAnswered(answer=raw["answer"])
    if kind == ActionType.RESET_GAME:
        return ResetGame(keep_player_names=raw["keepPlayerNames"])
    raise ValueError(f"Unknown action type: {kind}")


def action_to_wire(action: PrimitiveAction) -> dict[str, Any]:
    """Inverse of `parse_action`, used for logging."""

    match action:
        case Narrate(text=text, sound_effect=sound):
            out: dict[str, Any] = {"action": action.type.value, "text": text}
            if sound:
                out["soundEffect"] = sound
            return out
        case SetState(path=path, value=value):
            return {"action": action.type.value, "path": path, "value": value}
        case PlayerRolled(value=value):
            return {"action": action.type.value, "value": value}
        case PlayerAnswered(answer=answer):
            return {"action": action.type.value, "answer": answer}
        case ResetGame(keep_player_names=keep):
            return {"action": action.type.value, "keepPlayerNames": keep}
    raise ValueError(f"Unknown action: {action!r}")


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Recursion budget threaded through every re-entrant pipeline call."""

    depth: int = 0
    max_depth: int = 5

    def deeper(self) -> ExecutionContext:
        return ExecutionContext(depth=self.depth + 1, max_depth=self.max_depth)

    @property
    def can_escalate(self) -> bool:
        return self.depth < self.max_depth - 1

    @property
    def exhausted(self) -> bool:
        return self.depth >= self.max_depth


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class TurnAdvance:
    player_id: str
    name: str
    position: int | float


class DecisionPoint(BaseModel):
    """A board position that can't be left until `required_field` is set on the player."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    position: int | float
    required_field: str = Field(alias="requiredField", min_length=1)
    prompt: str = ""


def decision_points_from_state(state: Mapping[str, Any]) -> list[DecisionPoint]:
    """Parse `decisionPoints` from the state tree, skipping malformed entries."""

    raw = state.get("decisionPoints")
    if not isinstance(raw, list):
        return []

    out: list[DecisionPoint] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        try:
            out.append(DecisionPoint.model_validate(item))
        except ValidationError:
            continue
    return out


def find_pending_decision(
    *, player: Mapping[str, Any], position: Any, decision_points: list[DecisionPoint]
) -> DecisionPoint | None:
    """Return the decision point gating `position` for `player`, if still unresolved."""

    if not is_number(position):
        return None
    for dp in decision_points:
        if dp.position == position:
            return dp if player.get(dp.required_field) is None else None
    return None


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class ActionGenerator(Protocol):
    """Upstream producer of primitive actions (normally an LLM)."""

    async def get_actions(self, transcript: str, state: GameState) -> list[Any]:  # pragma: no cover
        ...


class StateStore(Protocol):
    """Mutable game-state tree addressed by dot paths."""

    def get(self, path: str) -> Any:  # pragma: no cover
        ...

    def set(self, path: str, value: Any) -> None:  # pragma: no cover
        ...

    def get_state(self) -> GameState:  # pragma: no cover
        ...

    def reset_state(self, template: GameState) -> None:  # pragma: no cover
        ...

    def path_exists(self, state: GameState, path: str) -> bool:  # pragma: no cover
        ...

    def get_by_path(self, state: GameState, path: str) -> Any:  # pragma: no cover
        ...
