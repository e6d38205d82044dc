from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RenderedContext:
    """Final, merged context passed into the LLM agent."""

    system_prompt: str

    def as_messages(self) -> list[dict[str, str]]:
        return [{"role": "system", "content": self.system_prompt}]


def compose_context(*, base_prompt: str, rules: str = "") -> RenderedContext:
    """Stack the moderator instructions and the game's own rules."""

    parts = [base_prompt.strip()]
    if rules.strip():
        parts.append("GAME RULES:\n" + rules.strip())
    return RenderedContext(system_prompt="\n\n".join(parts).strip())
