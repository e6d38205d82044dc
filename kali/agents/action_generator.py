from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from kali.agents.base import Agent
from kali.agents.json_schema import MODERATOR_ACTIONS_SCHEMA, RESPONSE_ANALYSIS_SCHEMA, JsonSchema
from kali.context import RenderedContext, compose_context
from kali.moderator.types import GameState
from kali.prompts import load_prompt
from kali.state_text import format_state_context

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")

_NAME_CTX = RenderedContext(
    system_prompt="You extract people's names from short spoken phrases. Reply with the name only, or null."
)
_ANALYSIS_CTX = RenderedContext(
    system_prompt="You check whether a spoken reply answers the question it was given. Reply with JSON only."
)


class ActionParseError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class ResponseAnalysis:
    is_on_topic: bool
    urgent_message: str | None = None


def strip_code_fence(text: str) -> str:
    m = _FENCE_RE.search(text)
    return m.group(1).strip() if m else text.strip()


def parse_actions(text: str) -> list[Any]:
    """Parse model output into a raw action list.

    Accepts a bare JSON array or an object with an `actions` array, optionally
    wrapped in a markdown code fence. Individual actions are not checked here.
    """

    try:
        data = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as e:
        raise ActionParseError(f"Invalid JSON: {e}") from e

    if isinstance(data, dict) and isinstance(data.get("actions"), list):
        return data["actions"]
    if isinstance(data, list):
        return data
    raise ActionParseError("Expected a JSON array of actions")


class LLMActionGenerator:
    """Turns a transcript plus a state snapshot into primitive actions via an LLM agent."""

    def __init__(
        self,
        agent: Agent,
        *,
        max_attempts: int = 3,
        retry_delays: Sequence[float] = (0.5, 1.0, 2.0),
        dedup_window_s: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._agent = agent
        self._max_attempts = max_attempts
        self._retry_delays = tuple(retry_delays)
        self._dedup_window_s = dedup_window_s
        self._clock = clock
        self._sleep = sleep

        self._ctx: RenderedContext | None = None
        self._last_transcript = ""
        self._last_transcript_at: float | None = None

    @property
    def rules_set(self) -> bool:
        return self._ctx is not None

    def set_game_rules(self, rules: str) -> None:
        self._ctx = compose_context(base_prompt=load_prompt("moderator.txt"), rules=rules)
        logger.info("System prompt updated with game rules")

    async def get_actions(self, transcript: str, state: GameState) -> list[Any]:
        if self._ctx is None:
            raise RuntimeError("Game rules not set. Call set_game_rules() first.")

        if self._is_duplicate(transcript):
            logger.debug("Duplicate transcript within %ss, ignoring: %s", self._dedup_window_s, transcript)
            return []

        prompt = f'{format_state_context(state)}\n\nUser Command: "{transcript}"'

        last_err: Exception | None = None
        for attempt in range(self._max_attempts):
            try:
                content = await self._propose(prompt=prompt, ctx=self._ctx, structured_output=MODERATOR_ACTIONS_SCHEMA)
                actions = parse_actions(content)
            except Exception as e:
                last_err = e
                logger.error("LLM attempt %s/%s failed: %s", attempt + 1, self._max_attempts, e)
            else:
                if actions:
                    self._record(transcript)
                    return actions
                logger.info("LLM returned no actions (attempt %s/%s)", attempt + 1, self._max_attempts)

            if attempt < self._max_attempts - 1:
                await self._sleep(self._retry_delays[min(attempt, len(self._retry_delays) - 1)])

        logger.warning("All LLM retries exhausted (last error: %s)", last_err)
        return []

    async def extract_name(self, transcript: str) -> str | None:
        """Pull a display name out of "call me X" / "my name is X" / a bare name."""

        prompt = (
            "Extract the person's name from this text. If someone says 'call me X', 'my name is X', "
            "'I am X', or similar, return ONLY the name X as plain text. If the text is just a name "
            'with no preamble, return that name. If unclear or no name present, return the word "null". '
            "Do not explain.\n\n"
            f'Text: "{transcript}"\n\n'
            "Name:"
        )
        try:
            content = await self._propose(prompt=prompt, ctx=_NAME_CTX)
        except Exception:
            logger.exception("extract_name failed")
            return None

        name = content.strip().strip("\"'.").strip()
        if not name or name.lower() == "null" or len(name) > 50:
            return None
        return name

    async def analyze_response(self, transcript: str, expected_context: str) -> ResponseAnalysis:
        """Flag replies that are off-topic or urgent (an injury, a complaint) rather than an answer."""

        prompt = (
            f"Context: {expected_context}\n\n"
            f'User said: "{transcript}"\n\n'
            "If the reply expresses something urgent, unexpected, or unrelated to the context, return "
            'isOnTopic=false and a brief urgentMessage summarizing it. If it is a reasonable reply (even a '
            "wrong one), return isOnTopic=true.\n\n"
            'Return ONLY JSON: {"isOnTopic": true} or {"isOnTopic": false, "urgentMessage": "..."}'
        )
        try:
            content = await self._propose(prompt=prompt, ctx=_ANALYSIS_CTX, structured_output=RESPONSE_ANALYSIS_SCHEMA)
            data = json.loads(strip_code_fence(content))
        except Exception:
            logger.exception("analyze_response failed")
            return ResponseAnalysis(is_on_topic=True)

        if not isinstance(data, dict):
            return ResponseAnalysis(is_on_topic=True)
        urgent = data.get("urgentMessage")
        return ResponseAnalysis(
            is_on_topic=data.get("isOnTopic") is not False,
            urgent_message=urgent if isinstance(urgent, str) and urgent else None,
        )

    async def _propose(self, *, prompt: str, ctx: RenderedContext, structured_output: JsonSchema | None = None) -> str:
        # If the agent supports structured output, pass schema; otherwise rely on prompt+parser.
        propose = getattr(self._agent, "propose_action")
        if structured_output is None:
            action = await propose(prompt=prompt, ctx=ctx)
        else:
            try:
                action = await propose(prompt=prompt, ctx=ctx, structured_output=structured_output)  # type: ignore[arg-type]
            except TypeError:
                action = await propose(prompt=prompt, ctx=ctx)  # type: ignore[misc]
        return action.content

    def _is_duplicate(self, transcript: str) -> bool:
        if self._last_transcript_at is None:
            return False
        recent = self._clock() - self._last_transcript_at < self._dedup_window_s
        return recent and transcript.lower() == self._last_transcript.lower()

    def _record(self, transcript: str) -> None:
        self._last_transcript = transcript
        self._last_transcript_at = self._clock()
