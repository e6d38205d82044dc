from __future__ import annotations

import os
from pathlib import Path

import pytest


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs (PyCharm/CLI).

    This makes OPENAI_BASE_URL / OPENAI_MODEL available to tests without needing
    to manually export them in your shell.

    In CI, we *don't* auto-load `.env` by default, so integration tests that require
    a live LLM endpoint stay skipped unless explicitly opted-in.
    """

    # Don't implicitly enable external integration tests in CI.
    # Opt-in locally with: KALI_LOAD_DOTENV_FOR_TESTS=1
    if os.environ.get("CI") and os.environ.get("KALI_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)

    # If using a local OpenAI-compatible endpoint, some clients require a key string.
    if os.environ.get("OPENAI_BASE_URL") and not os.environ.get("OPENAI_API_KEY"):
        os.environ["OPENAI_API_KEY"] = "ollama"


@pytest.fixture()
def r():
    import fakeredis

    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def client_and_redis():
    """FastAPI TestClient plus the fakeredis instance behind it.

    Sessions get a ScriptedGenerator instead of an LLM; reach it through
    `session_generator(...)` to queue batches.
    """

    import fakeredis
    from fastapi.testclient import TestClient

    from kali.api.deps import get_generator_factory, get_redis
    from kali.main import app
    from kali.sessions import registry
    from tests.fakes import ScriptedGenerator

    r = fakeredis.FakeRedis(decode_responses=True)

    def _factory(rules: str) -> ScriptedGenerator:
        return ScriptedGenerator(rules=rules)

    app.dependency_overrides[get_redis] = lambda: r
    app.dependency_overrides[get_generator_factory] = lambda: _factory
    registry.clear()
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
    registry.clear()
