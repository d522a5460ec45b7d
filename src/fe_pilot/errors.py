"""Exception hierarchy shared by the pilot components."""

from __future__ import annotations

from typing import Any, Optional


class PilotError(RuntimeError):
    """Base class for all errors raised by fe-pilot."""


class ValidationError(PilotError):
    """Raised for malformed scenario, action or decision input."""

    def __init__(self, message: str, errors: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class ActionError(PilotError):
    """Raised when a single action cannot be executed."""

    def __init__(self, message: str, *, selector: Optional[str] = None) -> None:
        super().__init__(message)
        self.selector = selector
        self.attempts = 1

    def with_attempts(self, attempts: int) -> "ActionError":
        """Return a copy of the error annotated with the retry attempt count."""

        error = type(self)(
            f"Action failed after {attempts} attempts: {self}",
            selector=self.selector,
        )
        error.attempts = attempts
        return error


class ElementNotFound(ActionError):
    """No alternative of a target resolved to a visible element."""


class ElementDisabled(ActionError):
    """The target resolved but every candidate was disabled."""


class ActionTimeout(ActionError):
    """The action or a required wait condition did not finish in time."""


class RepeatedActionLimit(ActionError):
    """The same action was requested too many times in a row."""


class AssertionFailed(ActionError):
    """An assert step evaluated to false."""

    def __init__(
        self,
        message: str,
        *,
        selector: Optional[str] = None,
        result: Optional[Any] = None,
    ) -> None:
        super().__init__(message, selector=selector)
        self.result = result


class ObstacleError(PilotError):
    """Base class for blocking UI elements that could not be cleared."""


class ObstacleUnresolved(ObstacleError):
    """An obstacle remained after every resolution strategy was tried."""


class CaptchaBlocker(ObstacleError):
    """A CAPTCHA was detected; it cannot be solved automatically."""


class ExchangeTimeout(PilotError):
    """The decision-maker did not respond within the configured timeout."""


class BudgetExceeded(PilotError):
    """A per-session cost or step ceiling was reached."""


class AdvisorError(PilotError):
    """The obstacle advisor could not produce usable advice."""


class FormNotFound(PilotError):
    """The page has no form to analyse or test."""
