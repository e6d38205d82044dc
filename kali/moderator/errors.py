from __future__ import annotations


class ModeratorError(Exception):
    """Base class for orchestrator errors."""


class ActionRejected(ModeratorError, ValueError):
    """A generator-issued batch failed validation. Nothing was executed."""

    def __init__(self, message: str, *, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class StructuralError(ActionRejected):
    """Malformed action: wrong container, missing field, wrong field type, unknown kind."""


class AuthorityViolation(ActionRejected):
    """Well-formed action that breaches turn ownership, a protected field or a decision gate."""


class EngineInvariantError(ModeratorError):
    """A mutation reached the executor that validation should have rejected.

    Always a programming bug, never a generator mistake.
    """


class SideEffectError(ModeratorError):
    """One action failed while executing; the rest of the batch still runs."""

    def __init__(self, message: str, *, action: object | None = None) -> None:
        super().__init__(message)
        self.action = action


class UpstreamFailure(ModeratorError):
    """The action generator raised or produced nothing usable."""
