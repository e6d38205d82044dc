from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from kali.moderator.types import GamePhase


class PhaseFSM(StateMachine):
    """Guards `game.phase` transitions.

    setup -> playing -> finished, with a way back to setup from either
    later phase. The orchestrator writes the resulting phase into the state
    tree; the FSM never touches the store itself.
    """

    setting_up = State(GamePhase.SETUP.value, value=GamePhase.SETUP.value, initial=True)
    playing = State(GamePhase.PLAYING.value, value=GamePhase.PLAYING.value)
    finished = State(GamePhase.FINISHED.value, value=GamePhase.FINISHED.value)

    start_game = setting_up.to(playing)
    finish = playing.to(finished)
    restart = playing.to(setting_up) | finished.to(setting_up)

    def __init__(self, phase: GamePhase | str | None) -> None:
        start = GamePhase(phase) if phase else GamePhase.SETUP
        super().__init__(start_value=start.value)

    @property
    def phase(self) -> GamePhase:
        return GamePhase(str(self.current_state.value))

    def transition_to(self, target: GamePhase) -> bool:
        """Move to `target`. Returns False when already there.

        Raises ValueError for transitions the phase graph doesn't allow.
        """

        if self.phase == target:
            return False

        event = _EVENT_FOR_TARGET[target]
        try:
            self.send(event)
        except TransitionNotAllowed as e:
            raise ValueError(f"Cannot transition phase from {self.phase.value} to {target.value}") from e
        return True


_EVENT_FOR_TARGET: dict[GamePhase, str] = {
    GamePhase.PLAYING: "start_game",
    GamePhase.FINISHED: "finish",
    GamePhase.SETUP: "restart",
}
