from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from autogen import LLMConfig

DEFAULT_MODEL = "gpt-4o-mini"


@dataclass(frozen=True, slots=True)
class OpenAICompatibleSettings:
    model: str
    base_url: str | None
    api_key: str | None


def settings_from_env(*, default_model: str = DEFAULT_MODEL) -> OpenAICompatibleSettings:
    return OpenAICompatibleSettings(
        model=os.environ.get("OPENAI_MODEL", default_model),
        # For Ollama, typically http://127.0.0.1:11434/v1
        base_url=os.environ.get("OPENAI_BASE_URL"),
        api_key=os.environ.get("OPENAI_API_KEY"),
    )


def llm_configured() -> bool:
    s = settings_from_env()
    return bool(s.api_key or s.base_url)


def llm_config_from_env(*, default_model: str = DEFAULT_MODEL) -> LLMConfig:
    s = settings_from_env(default_model=default_model)

    # Many OpenAI-compatible servers ignore the key but some SDKs require it.
    api_key = s.api_key or ("ollama" if s.base_url else None)

    if not api_key:
        raise RuntimeError(
            "Set OPENAI_API_KEY for hosted OpenAI, or set OPENAI_BASE_URL for a local OpenAI-compatible server"
        )

    # AG2 expects a 'config_list' similar to OAI_CONFIG_LIST.
    config: dict[str, Any] = {"model": s.model, "api_key": api_key}
    if s.base_url:
        config["base_url"] = s.base_url

    return LLMConfig(config_list=[config])
