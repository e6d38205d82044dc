from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
import redis

from kali.api.deps import get_generator_factory, get_redis
from kali.api.models import (
    ActionsRequest,
    BatchResponse,
    NextPlayer,
    PhaseRequest,
    PlayersRequest,
    SessionCreateRequest,
    SessionListResponse,
    SessionResponse,
    TranscriptRequest,
    TurnAdvanceResponse,
    WinnerRequest,
)
from kali.infra.redis_client import redis_available
from kali.lock import BusyError
from kali.sessions import GameSession, GeneratorFactory, SessionNotFoundError, registry
from kali.state_store import list_session_ids
from kali.websocket_hub import hub

router = APIRouter()


def _require_session(session_id: str, r: redis.Redis, factory: GeneratorFactory) -> GameSession:
    try:
        return registry.get(session_id, r=r, generator_factory=factory)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found") from e


async def _state_updated(session: GameSession) -> dict:
    state = session.store.get_state()
    await hub.broadcast(session.session_id, {"type": "state_updated", "session_id": session.session_id, "state": state})
    return state


@router.websocket("/ws/sessions/{session_id}")
async def session_updates_ws(websocket: WebSocket, session_id: str) -> None:
    await hub.connect(session_id, websocket)

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(session_id, websocket)
    except Exception:
        await hub.disconnect(session_id, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck(r: redis.Redis = Depends(get_redis)) -> dict[str, str]:
    if not redis_available(r):
        return {"status": "degraded", "redis": "unavailable"}
    return {"status": "ok", "redis": "ok"}


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session_route(
    payload: SessionCreateRequest,
    r: redis.Redis = Depends(get_redis),
    factory: GeneratorFactory = Depends(get_generator_factory),
) -> SessionResponse:
    session = registry.create(r=r, initial_state=payload.initial_state, rules=payload.rules, generator_factory=factory)
    return SessionResponse(session_id=session.session_id, state=session.store.get_state())


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions_route(r: redis.Redis = Depends(get_redis)) -> SessionListResponse:
    return SessionListResponse(session_ids=list_session_ids(r=r))


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    factory: GeneratorFactory = Depends(get_generator_factory),
) -> SessionResponse:
    session = _require_session(session_id, r, factory)
    return SessionResponse(session_id=session_id, state=session.store.get_state())


@router.post("/sessions/{session_id}/transcript", response_model=BatchResponse)
async def transcript_route(
    session_id: str,
    payload: TranscriptRequest,
    r: redis.Redis = Depends(get_redis),
    factory: GeneratorFactory = Depends(get_generator_factory),
) -> BatchResponse:
    session = _require_session(session_id, r, factory)
    success = await session.orchestrator.handle_transcript(payload.transcript)
    return BatchResponse(success=success, state=await _state_updated(session))


@router.post("/sessions/{session_id}/actions", response_model=BatchResponse)
async def actions_route(
    session_id: str,
    payload: ActionsRequest,
    r: redis.Redis = Depends(get_redis),
    factory: GeneratorFactory = Depends(get_generator_factory),
) -> BatchResponse:
    """Debug endpoint: run a pre-built action batch through the same pipeline."""

    session = _require_session(session_id, r, factory)
    success = await session.orchestrator.handle_actions(payload.actions)
    return BatchResponse(success=success, state=await _state_updated(session))


@router.post("/sessions/{session_id}/players", response_model=SessionResponse)
async def setup_players_route(
    session_id: str,
    payload: PlayersRequest,
    r: redis.Redis = Depends(get_redis),
    factory: GeneratorFactory = Depends(get_generator_factory),
) -> SessionResponse:
    session = _require_session(session_id, r, factory)
    try:
        session.orchestrator.setup_players(payload.names)
    except BusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    return SessionResponse(session_id=session_id, state=await _state_updated(session))


@router.post("/sessions/{session_id}/phase", response_model=SessionResponse)
async def phase_route(
    session_id: str,
    payload: PhaseRequest,
    r: redis.Redis = Depends(get_redis),
    factory: GeneratorFactory = Depends(get_generator_factory),
) -> SessionResponse:
    session = _require_session(session_id, r, factory)
    try:
        session.orchestrator.transition_phase(payload.phase)
    except BusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    return SessionResponse(session_id=session_id, state=await _state_updated(session))


@router.post("/sessions/{session_id}/winner", response_model=SessionResponse)
async def winner_route(
    session_id: str,
    payload: WinnerRequest,
    r: redis.Redis = Depends(get_redis),
    factory: GeneratorFactory = Depends(get_generator_factory),
) -> SessionResponse:
    session = _require_session(session_id, r, factory)
    try:
        session.orchestrator.declare_winner(payload.player_id)
    except BusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    return SessionResponse(session_id=session_id, state=await _state_updated(session))


@router.post("/sessions/{session_id}/turn/advance", response_model=TurnAdvanceResponse)
async def advance_turn_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    factory: GeneratorFactory = Depends(get_generator_factory),
) -> TurnAdvanceResponse:
    session = _require_session(session_id, r, factory)
    if session.orchestrator.is_locked():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Orchestrator is busy")

    advance = session.orchestrator.advance_turn()
    if advance is None:
        return TurnAdvanceResponse(advanced=False)

    await _state_updated(session)
    return TurnAdvanceResponse(
        advanced=True,
        next_player=NextPlayer(player_id=advance.player_id, name=advance.name, position=advance.position),
    )
