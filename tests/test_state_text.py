from __future__ import annotations

import json

from kali.state_text import format_state_context
from tests.fakes import make_state


def test_summary_lists_phase_turn_and_positions() -> None:
    state = make_state()
    state["players"]["p2"]["position"] = 12

    text = format_state_context(state)

    assert "- phase: PLAYING" in text
    assert "- turn: p1" in text
    assert "- Ana (p1) at position 0" in text
    assert "- Bo (p2) at position 12" in text


def test_full_json_is_embedded() -> None:
    state = make_state()

    text = format_state_context(state)
    payload = text.split("FULL STATE (JSON):\n", 1)[1]

    assert json.loads(payload) == state


def test_tolerates_sparse_state() -> None:
    text = format_state_context({})

    assert "- phase: unknown" in text
    assert "- turn: none" in text
