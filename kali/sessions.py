from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

import redis

from kali.moderator.orchestrator import ActionOrchestrator, OrchestratorConfig
from kali.moderator.types import ActionGenerator, GameState
from kali.narration import HubNarrator, HubStatusReporter
from kali.state_store import RedisStateStore
from kali.websocket_hub import hub

logger = logging.getLogger(__name__)

# rules -> generator with those rules loaded
GeneratorFactory = Callable[[str], ActionGenerator]


class SessionNotFoundError(KeyError):
    pass


@dataclass(slots=True)
class GameSession:
    session_id: str
    orchestrator: ActionOrchestrator
    generator: ActionGenerator
    store: RedisStateStore


class SessionRegistry:
    """Process-wide map of live sessions.

    Orchestrators hold the lock and recursion state, so they live in memory.
    Everything needed to rebuild one (state, template, rules) lives in Redis.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, GameSession] = {}

    def create(
        self,
        *,
        r: redis.Redis,
        initial_state: GameState,
        rules: str,
        generator_factory: GeneratorFactory,
        config: OrchestratorConfig | None = None,
    ) -> GameSession:
        session_id = str(uuid4())
        store = RedisStateStore(r=r, session_id=session_id)
        store.save_template(initial_state)
        store.save_rules(rules)
        store.reset_state(initial_state)

        session = self._build(
            store=store,
            template=initial_state,
            rules=rules,
            generator_factory=generator_factory,
            config=config,
        )
        logger.info("Created session %s", session_id)
        return session

    def get(
        self,
        session_id: str,
        *,
        r: redis.Redis,
        generator_factory: GeneratorFactory,
        config: OrchestratorConfig | None = None,
    ) -> GameSession:
        session = self._sessions.get(session_id)
        if session is not None:
            return session

        store = RedisStateStore(r=r, session_id=session_id)
        if not store.exists():
            raise SessionNotFoundError(session_id)

        template = store.get_template()
        if template is None:
            template = store.get_state()
        logger.info("Rebuilding session %s from redis", session_id)
        return self._build(
            store=store,
            template=template,
            rules=store.get_rules(),
            generator_factory=generator_factory,
            config=config,
        )

    def clear(self) -> None:
        for session_id in self._sessions:
            hub.forget(session_id)
        self._sessions.clear()

    def _build(
        self,
        *,
        store: RedisStateStore,
        template: GameState,
        rules: str,
        generator_factory: GeneratorFactory,
        config: OrchestratorConfig | None,
    ) -> GameSession:
        generator = generator_factory(rules)
        orchestrator = ActionOrchestrator(
            generator=generator,
            store=store,
            narrator=HubNarrator(session_id=store.session_id),
            status=HubStatusReporter(session_id=store.session_id),
            initial_state=template,
            config=config or OrchestratorConfig.from_env(),
        )
        session = GameSession(
            session_id=store.session_id,
            orchestrator=orchestrator,
            generator=generator,
            store=store,
        )
        self._sessions[store.session_id] = session
        return session


registry = SessionRegistry()
