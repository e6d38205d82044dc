from __future__ import annotations

import pytest

from kali.moderator.errors import EngineInvariantError
from kali.moderator.turns import TurnManager
from kali.state_store import RedisStateStore
from tests.fakes import make_state


def _manager(r, state) -> tuple[TurnManager, RedisStateStore]:
    store = RedisStateStore(r=r, session_id="turns")
    store.reset_state(state)
    return TurnManager(store), store


def test_advance_wraps_around_player_order(r) -> None:
    turns, store = _manager(r, make_state(turn="p2"))

    advance = turns.advance_turn()

    assert advance is not None
    assert advance.player_id == "p1"
    assert advance.name == "Ana"
    assert advance.position == 0
    assert store.get("game.turn") == "p1"


def test_advance_moves_to_next_player(r) -> None:
    turns, store = _manager(r, make_state(turn="p1"))

    assert turns.advance_turn().player_id == "p2"
    assert turns.advance_turn().player_id == "p1"


def test_turn_missing_from_order_restarts_rotation(r) -> None:
    turns, store = _manager(r, make_state(turn="p7"))

    assert turns.advance_turn().player_id == "p1"


def test_name_and_position_fall_back(r) -> None:
    state = make_state()
    state["players"]["p2"] = {"id": "p2"}
    turns, _ = _manager(r, state)

    advance = turns.advance_turn()

    assert advance.name == "p2"
    assert advance.position == 0


@pytest.mark.parametrize(
    "mutate",
    [
        lambda s: s["game"].update(phase="SETUP"),
        lambda s: s["game"].update(phase="FINISHED"),
        lambda s: s["game"].update(winner="p1"),
        lambda s: s["game"].update(turn=None),
        lambda s: s["game"].update(playerOrder=[]),
        lambda s: s.update(decisionPoints=[{"position": 0, "requiredField": "pathChoice", "prompt": "?"}]),
    ],
    ids=["setup", "finished", "winner", "no-turn", "no-order", "pending-decision"],
)
def test_advance_blocked(r, mutate) -> None:
    state = make_state()
    mutate(state)
    turns, store = _manager(r, state)

    assert turns.advance_turn() is None
    assert store.get("game.turn") == state["game"]["turn"]


def test_advance_blocked_while_square_effect_resolves(r) -> None:
    turns, store = _manager(r, make_state())

    assert turns.advance_turn(is_processing_effect=True) is None
    assert store.get("game.turn") == "p1"


def test_has_pending_decisions(r) -> None:
    state = make_state()
    state["decisionPoints"] = [{"position": 0, "requiredField": "pathChoice", "prompt": "?"}]
    turns, store = _manager(r, state)

    assert turns.has_pending_decisions()

    store.set("players.p1.pathChoice", "B")
    assert not turns.has_pending_decisions()


def test_malformed_decision_points_are_ignored(r) -> None:
    state = make_state()
    state["decisionPoints"] = [{"position": 0}, "junk", {"requiredField": "pathChoice"}]
    turns, _ = _manager(r, state)

    assert not turns.has_pending_decisions()
    assert turns.advance_turn() is not None


def test_ownership_assertion_names_both_players(r) -> None:
    turns, _ = _manager(r, make_state(turn="p1"))

    with pytest.raises(EngineInvariantError) as e:
        turns.assert_player_turn_ownership("players.p2.hearts")

    assert "players.p2" in str(e.value)
    assert "p1's turn" in str(e.value)


def test_ownership_assertion_passes_for_current_player_and_non_player_paths(r) -> None:
    turns, _ = _manager(r, make_state(turn="p1"))

    turns.assert_player_turn_ownership("players.p1.position")
    turns.assert_player_turn_ownership("board.moves")


def test_ownership_assertion_skipped_during_setup(r) -> None:
    turns, _ = _manager(r, make_state(phase="SETUP", turn=None))

    turns.assert_player_turn_ownership("players.p2.name")
