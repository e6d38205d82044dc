from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from kali.moderator.types import GamePhase


class SessionCreateRequest(BaseModel):
    initial_state: dict[str, Any]
    rules: str = ""


class SessionResponse(BaseModel):
    session_id: str
    state: dict[str, Any]


class SessionListResponse(BaseModel):
    session_ids: list[str]


class TranscriptRequest(BaseModel):
    transcript: str = Field(..., min_length=1, max_length=4000)


class ActionsRequest(BaseModel):
    # Raw wire objects; validation happens in the orchestrator, not here.
    actions: list[Any]


class BatchResponse(BaseModel):
    success: bool
    state: dict[str, Any]


class PlayersRequest(BaseModel):
    names: list[str] = Field(..., min_length=1, max_length=12)


class PhaseRequest(BaseModel):
    phase: GamePhase


class WinnerRequest(BaseModel):
    player_id: str = Field(..., min_length=1)


class NextPlayer(BaseModel):
    player_id: str
    name: str
    position: int | float


class TurnAdvanceResponse(BaseModel):
    advanced: bool
    next_player: NextPlayer | None = None
