from __future__ import annotations


class AssessmentError(Exception):
    """Base class for every error raised by the session engine."""

    retryable = False


class InvalidSelection(AssessmentError):
    """Subject selection does not match the mode's arity."""


class SelectionInvalid(InvalidSelection):
    """The backend rejected the subject selection."""


class InvalidReference(AssessmentError):
    """A question or option id that is not part of the active catalog."""


class SessionClosed(AssessmentError):
    """A write was attempted after the session stopped accepting answers."""


class InvalidTransition(AssessmentError):
    """The requested transition is not allowed from the current status."""


class Unavailable(AssessmentError):
    """Network or server failure while talking to the assessment backend."""

    retryable = True

    def __init__(self, message: str = "Assessment service unavailable", *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
