from __future__ import annotations

import copy

import pytest

from kali.moderator.errors import AuthorityViolation, StructuralError
from kali.moderator.types import RETIRED_ACTION_TYPES
from kali.moderator.validators import (
    ValidationContext,
    check_actions,
    pipeline_for_action,
    simulate_action,
    validate_actions,
)
from tests.fakes import make_state


def _error(actions, state=None, **kwargs) -> str:
    result = validate_actions(actions, state if state is not None else make_state(), **kwargs)
    assert not result.valid
    assert result.error
    return result.error


def test_non_list_is_rejected() -> None:
    assert _error({"action": "NARRATE", "text": "hi"}) == "Actions must be a list"


def test_empty_list_is_structurally_valid() -> None:
    assert validate_actions([], make_state()).valid


def test_null_element_is_rejected_by_index() -> None:
    assert _error([{"action": "NARRATE", "text": "ok"}, None]) == "Action at index 1 is not an object"


def test_missing_discriminator() -> None:
    assert _error([{"text": "hi"}]) == "Action at index 0 missing 'action' field"


@pytest.mark.parametrize("kind", sorted(RETIRED_ACTION_TYPES) + ["DANCE"])
def test_retired_and_unknown_kinds_are_invalid_action_types(kind: str) -> None:
    err = _error([{"action": kind, "path": "players.p1.position", "value": 1}])
    assert err == f"Action at index 0 has invalid action type: {kind}"


def test_missing_and_mistyped_fields() -> None:
    assert _error([{"action": "NARRATE"}]) == "NARRATE at index 0 missing 'text' field"
    assert _error([{"action": "NARRATE", "text": 5}]) == "NARRATE at index 0 has invalid 'text' field type"
    assert _error([{"action": "SET_STATE", "path": "players.p1.hearts"}]) == "SET_STATE at index 0 missing 'value' field"
    assert (
        _error([{"action": "RESET_GAME", "keepPlayerNames": "yes"}])
        == "RESET_GAME at index 0 has invalid 'keepPlayerNames' field type"
    )


def test_narrate_sound_effect_may_be_null_but_not_a_number() -> None:
    assert validate_actions([{"action": "NARRATE", "text": "hi", "soundEffect": None}], make_state()).valid
    assert "soundEffect" in _error([{"action": "NARRATE", "text": "hi", "soundEffect": 3}])


def test_extra_fields_are_tolerated() -> None:
    assert validate_actions([{"action": "NARRATE", "text": "hi", "mood": "cheerful"}], make_state()).valid


@pytest.mark.parametrize("value", [0, -2, True])
def test_roll_must_be_a_positive_number(value) -> None:
    err = _error([{"action": "PLAYER_ROLLED", "value": value}])
    assert err.startswith("PLAYER_ROLLED at index 0")


def test_blank_answer_is_rejected() -> None:
    err = _error([{"action": "PLAYER_ANSWERED", "answer": "   "}])
    assert err == "PLAYER_ANSWERED at index 0 must have a non-empty answer"


@pytest.mark.parametrize(
    ("path", "needle"),
    [
        ("game.phase", "Cannot manually change game.phase"),
        ("game.winner", "Cannot manually set game.winner"),
        ("game.turn", "Cannot manually change game.turn"),
    ],
)
def test_protected_fields(path: str, needle: str) -> None:
    assert needle in _error([{"action": "SET_STATE", "path": path, "value": "p2"}])


def test_overwriting_a_subtree_holding_protected_fields_is_rejected() -> None:
    err = _error([{"action": "SET_STATE", "path": "game", "value": {"phase": "FINISHED"}}])
    assert "Cannot overwrite game" in err


def test_turn_is_writable_during_setup_but_phase_is_not() -> None:
    state = make_state(phase="SETUP")

    assert validate_actions([{"action": "SET_STATE", "path": "game.turn", "value": "p2"}], state).valid
    assert "game.phase" in _error([{"action": "SET_STATE", "path": "game.phase", "value": "PLAYING"}], state)


def test_only_current_player_may_be_modified() -> None:
    err = _error([{"action": "SET_STATE", "path": "players.p2.hearts", "value": 99}])

    assert "players.p2" in err
    assert "p1's turn" in err


def test_any_player_may_be_modified_during_setup() -> None:
    state = make_state(phase="SETUP")
    actions = [{"action": "SET_STATE", "path": "players.p2.name", "value": "Bea"}]

    assert validate_actions(actions, state).valid


def test_player_mutation_without_a_turn_is_rejected_outside_setup() -> None:
    err = _error([{"action": "SET_STATE", "path": "players.p1.hearts", "value": 1}], make_state(turn=None))
    assert "no player has the turn" in err


def test_set_state_path_must_exist() -> None:
    err = _error([{"action": "SET_STATE", "path": "players.p1.gold", "value": 5}])
    assert err == "SET_STATE at index 0 references non-existent path: players.p1.gold"


def test_null_leaf_counts_as_existing() -> None:
    actions = [{"action": "SET_STATE", "path": "players.p1.pathChoice", "value": "A"}]
    assert validate_actions(actions, make_state()).valid


def _state_with_decision_point():
    state = make_state()
    state["decisionPoints"] = [{"position": 0, "requiredField": "pathChoice", "prompt": "Path A or B?"}]
    return state


def test_decision_gate_blocks_moving_off_unresolved_point() -> None:
    err = _error([{"action": "SET_STATE", "path": "players.p1.position", "value": 3}], _state_with_decision_point())

    assert "pathChoice" in err
    assert "Cannot move from position 0" in err


def test_sequential_simulation_lets_choice_then_move_pass() -> None:
    actions = [
        {"action": "SET_STATE", "path": "players.p1.pathChoice", "value": "A"},
        {"action": "SET_STATE", "path": "players.p1.position", "value": 3},
    ]
    assert validate_actions(actions, _state_with_decision_point()).valid


def test_simulated_roll_feeds_later_checks() -> None:
    state = make_state()
    state["decisionPoints"] = [{"position": 4, "requiredField": "pathChoice", "prompt": "Which way?"}]
    actions = [
        {"action": "PLAYER_ROLLED", "value": 4},
        {"action": "SET_STATE", "path": "players.p1.position", "value": 9},
    ]

    err = _error(actions, state)
    assert err.startswith("SET_STATE at index 1")
    assert "position 4" in err


def test_roll_blocked_while_square_effect_resolves() -> None:
    err = _error([{"action": "PLAYER_ROLLED", "value": 3}], is_processing_effect=True)
    assert "square effect" in err


def test_narrate_and_set_state_allowed_while_square_effect_resolves() -> None:
    actions = [
        {"action": "SET_STATE", "path": "players.p1.hearts", "value": 2},
        {"action": "NARRATE", "text": "Ouch"},
    ]
    assert validate_actions(actions, make_state(), is_processing_effect=True).valid


def test_first_failure_wins() -> None:
    actions = [
        {"action": "SET_STATE", "path": "game.winner", "value": "p1"},
        {"action": "DANCE"},
    ]
    assert "game.winner" in _error(actions)


def test_validation_does_not_touch_input_state() -> None:
    state = make_state()
    validate_actions([{"action": "SET_STATE", "path": "players.p1.hearts", "value": 0}], state)

    assert state["players"]["p1"]["hearts"] == 3


def test_check_actions_raises_typed_errors() -> None:
    with pytest.raises(StructuralError) as e:
        check_actions([{"action": "NARRATE"}], make_state())
    assert e.value.index == 0

    with pytest.raises(AuthorityViolation):
        check_actions([{"action": "SET_STATE", "path": "players.p2.hearts", "value": 1}], make_state())


def test_custom_path_oracle_is_used() -> None:
    class _EverythingExists:
        def path_exists(self, state, path) -> bool:
            return True

        def get_by_path(self, state, path):
            return "p1" if path == "game.turn" else None

    actions = [{"action": "SET_STATE", "path": "players.p1.gold", "value": 5}]
    assert validate_actions(actions, make_state(), _EverythingExists()).valid


def test_pipeline_lookup_matches_validation_context_label() -> None:
    action_type, pipeline = pipeline_for_action({"action": "NARRATE", "text": "x"}, index=2)
    ctx = ValidationContext(index=2, action=action_type.value, paths=None)  # type: ignore[arg-type]

    assert ctx.label == "NARRATE at index 2"
    pipeline.validate(ctx=ctx, action={"action": "NARRATE", "text": "x"}, state=make_state())


def test_whole_player_record_cannot_be_overwritten_outside_setup() -> None:
    record = {"id": "p1", "name": "Ana", "position": 3, "hearts": 3, "pathChoice": None}
    err = _error([{"action": "SET_STATE", "path": "players.p1", "value": record}], _state_with_decision_point())

    assert err == "SET_STATE at index 0: Cannot overwrite players.p1 outside SETUP - set individual fields instead"


def test_whole_player_record_is_writable_during_setup() -> None:
    record = {"id": "p2", "name": "Bea", "position": 0, "hearts": 3, "pathChoice": None}
    actions = [{"action": "SET_STATE", "path": "players.p2", "value": record}]

    assert validate_actions(actions, make_state(phase="SETUP")).valid


@pytest.mark.parametrize(
    "action",
    [
        {"action": "NARRATE", "text": "hi"},
        {"action": "PLAYER_ANSWERED", "answer": "B"},
        {"action": "RESET_GAME", "keepPlayerNames": True},
    ],
)
def test_unsimulated_kinds_return_the_same_snapshot(action) -> None:
    state = make_state()
    before = copy.deepcopy(state)

    assert simulate_action(state, action) is state
    assert state == before


@pytest.mark.parametrize("turn", [None, "p9"])
def test_simulated_roll_without_a_turn_player_changes_nothing(turn) -> None:
    state = make_state(turn=turn)
    before = copy.deepcopy(state)

    assert simulate_action(state, {"action": "PLAYER_ROLLED", "value": 4}) is state
    assert state == before


def test_simulated_roll_and_set_state_leave_the_input_alone() -> None:
    state = make_state()

    rolled = simulate_action(state, {"action": "PLAYER_ROLLED", "value": 4})
    written = simulate_action(state, {"action": "SET_STATE", "path": "players.p1.hearts", "value": 1})

    assert rolled["players"]["p1"]["position"] == 4
    assert rolled["game"]["lastRoll"] == 4
    assert written["players"]["p1"]["hearts"] == 1
    assert state == make_state()


class _SetupOracle:
    """Reports SETUP and a turn for p2 regardless of the snapshot."""

    def path_exists(self, state, path) -> bool:
        return True

    def get_by_path(self, state, path):
        return {"game.phase": "SETUP", "game.turn": "p2"}.get(path)


def test_setup_check_goes_through_the_path_oracle() -> None:
    actions = [{"action": "SET_STATE", "path": "players.p2.hearts", "value": 1}]

    assert not validate_actions(actions, make_state()).valid
    assert validate_actions(actions, make_state(), _SetupOracle()).valid


def test_simulated_roll_reads_the_turn_through_the_path_oracle() -> None:
    rolled = simulate_action(make_state(), {"action": "PLAYER_ROLLED", "value": 2}, _SetupOracle())

    assert rolled["players"]["p2"]["position"] == 2
    assert rolled["players"]["p1"]["position"] == 0
