from __future__ import annotations

import redis

from kali.agents.factory import create_action_generator
from kali.infra.redis_client import create_redis
from kali.sessions import GeneratorFactory

_client: redis.Redis | None = None


def get_redis() -> redis.Redis:
    # Sessions keep their store between requests, so the client is shared, not per request.
    global _client
    if _client is None:
        _client = create_redis()
    return _client


def _llm_generator(rules: str):
    return create_action_generator(rules=rules)


def get_generator_factory() -> GeneratorFactory:
    return _llm_generator
