from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from autogen import ConversableAgent

from kali.agents.autogen_config import llm_config_from_env
from kali.agents.base import AgentAction
from kali.agents.json_schema import JsonSchema
from kali.context import RenderedContext


def _extract_last_content(messages: object) -> str:
    """Extract the last message content from AG2 chat history."""

    if not isinstance(messages, list):
        return ""

    for msg in reversed(messages):
        if isinstance(msg, dict):
            content = msg.get("content")
            if isinstance(content, str) and content.strip():
                return content.strip()
    return ""


def _response_format(schema: JsonSchema) -> dict[str, Any]:
    return {
        "type": "json_schema",
        "json_schema": {
            "name": schema.name,
            "schema": schema.schema,
            "strict": schema.strict,
        },
    }


@dataclass(slots=True)
class Ag2ChatAgent:
    """AG2 agent wrapper using the documented `autogen` API.

    Context stacking is handled by our code (RenderedContext); LLM transport
    and config are handled by AG2 (`autogen`).

    Environment variables supported:
    - OPENAI_MODEL
    - OPENAI_API_KEY (optional if OPENAI_BASE_URL is set)
    - OPENAI_BASE_URL (for OpenAI-compatible servers like Ollama, e.g. http://127.0.0.1:11434/v1)
    """

    name: str
    model: str

    async def propose_action(
        self,
        *,
        prompt: str,
        ctx: RenderedContext,
        structured_output: JsonSchema | None = None,
    ) -> AgentAction:
        """Send one prompt under the stacked system context.

        AG2's run loop is synchronous, so it runs in a worker thread to keep
        the event loop (and connected websockets) responsive.
        """

        text = await asyncio.to_thread(self._run, prompt, ctx, structured_output)
        metadata: dict[str, Any] = {"model": self.model}
        if structured_output is not None:
            metadata["structured"] = True
        return AgentAction(kind="chat", content=text, metadata=metadata)

    def _run(self, prompt: str, ctx: RenderedContext, structured_output: JsonSchema | None) -> str:
        agent = ConversableAgent(
            name=self.name,
            system_message=ctx.system_prompt,
            llm_config=llm_config_from_env(default_model=self.model),
            human_input_mode="NEVER",
        )

        # AG2 forwards unknown kwargs through to the OpenAI client.
        extra: dict[str, Any] = {}
        if structured_output is not None:
            extra["response_format"] = _response_format(structured_output)

        result = agent.run(message=prompt, max_turns=1, **extra)
        result.process()

        text = _extract_last_content(list(result.messages))
        if not text:
            # Fallback: attempt to use summary if provided.
            summary = result.summary
            if isinstance(summary, str):
                text = summary.strip()
        return text
