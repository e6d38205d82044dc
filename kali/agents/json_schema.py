from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class JsonSchema:
    """Minimal JSON Schema wrapper for OpenAI-style structured outputs."""

    name: str
    schema: dict[str, Any]
    strict: bool = True


def _action(kind: str, properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {"action": {"const": kind}, **properties},
        "required": ["action", *required],
    }


# Not strict: SET_STATE values are arbitrary JSON, which strict mode can't express.
# The validator is the real gate either way.
MODERATOR_ACTIONS_SCHEMA = JsonSchema(
    name="moderator_actions",
    schema={
        "type": "object",
        "properties": {
            "actions": {
                "type": "array",
                "items": {
                    "anyOf": [
                        _action(
                            "NARRATE",
                            {"text": {"type": "string"}, "soundEffect": {"type": ["string", "null"]}},
                            ["text"],
                        ),
                        _action("SET_STATE", {"path": {"type": "string"}, "value": {}}, ["path", "value"]),
                        _action("PLAYER_ROLLED", {"value": {"type": "number", "exclusiveMinimum": 0}}, ["value"]),
                        _action("PLAYER_ANSWERED", {"answer": {"type": "string", "minLength": 1}}, ["answer"]),
                        _action("RESET_GAME", {"keepPlayerNames": {"type": "boolean"}}, ["keepPlayerNames"]),
                    ]
                },
            }
        },
        "required": ["actions"],
    },
    strict=False,
)

RESPONSE_ANALYSIS_SCHEMA = JsonSchema(
    name="response_analysis",
    schema={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "isOnTopic": {"type": "boolean"},
            "urgentMessage": {"type": ["string", "null"]},
        },
        "required": ["isOnTopic", "urgentMessage"],
    },
    strict=True,
)
