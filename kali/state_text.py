from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any


def _player_label(player_id: str, record: Mapping[str, Any]) -> str:
    name = record.get("name")
    return f"{name} ({player_id})" if name else player_id


def _ordered_player_ids(game: Mapping[str, Any], players: Mapping[str, Any]) -> list[str]:
    """playerOrder first, then any player records it doesn't mention."""

    order = game.get("playerOrder")
    ids = [pid for pid in order if pid in players] if isinstance(order, list) else []
    ids.extend(pid for pid in players if pid not in ids)
    return ids


def _format_summary(state: Mapping[str, Any]) -> str:
    game = state.get("game")
    game = game if isinstance(game, Mapping) else {}
    players = state.get("players")
    players = players if isinstance(players, Mapping) else {}

    lines = [
        "CURRENT GAME STATE:",
        f"- phase: {game.get('phase') or 'unknown'}",
        f"- turn: {game.get('turn') or 'none'}",
    ]
    if game.get("winner"):
        lines.append(f"- winner: {game['winner']}")

    for pid in _ordered_player_ids(game, players):
        record = players[pid]
        if not isinstance(record, Mapping):
            continue
        lines.append(f"- {_player_label(pid, record)} at position {record.get('position', 0)}")
    return "\n".join(lines)


def format_state_context(state: Mapping[str, Any]) -> str:
    """LLM-friendly rendering of the state tree: a short summary, then the full JSON."""

    return "\n\n".join(
        [
            _format_summary(state),
            "FULL STATE (JSON):\n" + json.dumps(state, indent=2, ensure_ascii=False),
        ]
    )
