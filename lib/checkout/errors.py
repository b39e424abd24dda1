"""Error taxonomy for checkout automation.

Stage handlers raise these; the navigator turns every one of them into a log
entry and a terminal stage. None of them ever reaches the caller.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Why a run (or a stage) stopped short of checkout."""

    LAUNCH_FAILURE = "LaunchFailure"
    NAVIGATION_TIMEOUT = "NavigationTimeout"
    ELEMENT_NOT_FOUND = "ElementNotFound"
    VERIFICATION_FAILURE = "VerificationFailure"
    DEADLINE_EXCEEDED = "DeadlineExceeded"


class CheckoutError(Exception):
    """Base class for automation errors. Carries an ErrorKind."""

    kind: ErrorKind

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)


class LaunchFailure(CheckoutError):
    """Browser process could not start. Fatal for the run."""

    kind = ErrorKind.LAUNCH_FAILURE


class NavigationTimeout(CheckoutError):
    """A navigation did not complete within its timeout."""

    kind = ErrorKind.NAVIGATION_TIMEOUT


class ElementNotFound(CheckoutError):
    """No ranked candidate resolved to a usable element."""

    kind = ErrorKind.ELEMENT_NOT_FOUND


class VerificationFailure(CheckoutError):
    """A click or fill appeared to do nothing, even with the alternate technique."""

    kind = ErrorKind.VERIFICATION_FAILURE


class DeadlineExceeded(CheckoutError):
    """The watchdog closed the browser because the run ran out of time."""

    kind = ErrorKind.DEADLINE_EXCEEDED
