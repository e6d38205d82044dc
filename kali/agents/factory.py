from __future__ import annotations

from typing import cast

from kali.agents.action_generator import LLMActionGenerator
from kali.agents.ag2_backend import Ag2ChatAgent
from kali.agents.autogen_config import settings_from_env
from kali.agents.base import Agent


def create_default_agent(*, name: str) -> Agent:
    """Create the default LLM-backed agent.

    Currently uses AG2/autogen and reads model configuration from env.
    """

    return cast(Agent, Ag2ChatAgent(name=name, model=settings_from_env().model))


def create_action_generator(*, rules: str, name: str = "kali-moderator") -> LLMActionGenerator:
    generator = LLMActionGenerator(create_default_agent(name=name))
    generator.set_game_rules(rules)
    return generator
