"""Shared models used across fe-pilot."""

from __future__ import annotations

import enum
import re
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _check_pattern(pattern: str, what: str) -> None:
    try:
        re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"{what} is not a valid regular expression: {exc}") from exc


def _is_count(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value >= 0
    if isinstance(value, float):
        return value.is_integer() and value >= 0
    return isinstance(value, str) and value.strip().isdigit()


class ActionType(str, enum.Enum):
    """Closed set of interface operations the executor understands."""

    NAVIGATE = "navigate"
    CLICK = "click"
    TYPE = "type"
    SELECT = "select"
    SELECT_OPTION = "select_option"
    FILL_DATE = "fill_date"
    UPLOAD = "upload"
    WAIT = "wait"
    SCROLL = "scroll"
    HOVER = "hover"
    ASSERT = "assert"
    FILL_FIELD = "fill_field"
    TOGGLE = "toggle"
    CLEAR = "clear"
    FOCUS = "focus"
    BLUR = "blur"
    PRESS_KEY = "press_key"
    SCREENSHOT = "screenshot"
    CHECK_FORM = "check_form"


class WaitConditionType(str, enum.Enum):
    """Conditions that can be awaited after an action completes."""

    NETWORK_IDLE = "network_idle"
    ELEMENT_VISIBLE = "element_visible"
    ELEMENT_HIDDEN = "element_hidden"
    ELEMENT_ENABLED = "element_enabled"
    URL_CONTAINS = "url_contains"
    URL_MATCHES = "url_matches"
    TEXT_VISIBLE = "text_visible"
    NO_LOADING = "no_loading"
    FORM_READY = "form_ready"


class ExpectationType(str, enum.Enum):
    """Post-step checks attached to an action."""

    ELEMENT_VISIBLE = "element_visible"
    ELEMENT_HIDDEN = "element_hidden"
    URL_CHANGED = "url_changed"
    ELEMENT_TEXT = "element_text"
    NO_VALIDATION_ERRORS = "no_validation_errors"
    NO_CONSOLE_ERRORS = "no_console_errors"
    NETWORK_SUCCESS = "network_success"


class AssertionType(str, enum.Enum):
    """Assertions available to ``assert`` steps."""

    ELEMENT_VISIBLE = "element_visible"
    ELEMENT_HIDDEN = "element_hidden"
    ELEMENT_TEXT = "element_text"
    ELEMENT_VALUE = "element_value"
    ELEMENT_COUNT = "element_count"
    URL_IS = "url_is"
    URL_CONTAINS = "url_contains"
    URL_MATCHES = "url_matches"
    TITLE_IS = "title_is"
    TITLE_CONTAINS = "title_contains"
    NO_CONSOLE_ERRORS = "no_console_errors"
    NO_VALIDATION_ERRORS = "no_validation_errors"
    FORM_VALID = "form_valid"
    NETWORK_SUCCESS = "network_success"
    COOKIE_EXISTS = "cookie_exists"
    LOCALSTORAGE_HAS = "localstorage_has"


class RetryPolicy(BaseModel):
    """Retry settings for a single action."""

    model_config = ConfigDict(populate_by_name=True)

    max_attempts: int = Field(default=1, ge=1, alias="maxAttempts")
    backoff: float = Field(default=1.0, ge=0, description="Delay between attempts in seconds.")

    @model_validator(mode="before")
    @classmethod
    def _convert_backoff_ms(cls, data: Any) -> Any:
        if isinstance(data, dict) and "backoffMs" in data and "backoff" not in data:
            data = dict(data)
            data["backoff"] = float(data.pop("backoffMs")) / 1000
        return data


class WaitFor(BaseModel):
    """A condition awaited after an action."""

    condition: WaitConditionType
    selector: Optional[str] = None
    value: Optional[str] = None
    timeout: Optional[float] = Field(default=None, description="Timeout in seconds.")
    required: bool = Field(
        default=False,
        description="When True an unsatisfied condition fails the action.",
    )

    @model_validator(mode="after")
    def _check_arguments(self) -> "WaitFor":
        needs_selector = {
            WaitConditionType.ELEMENT_VISIBLE,
            WaitConditionType.ELEMENT_HIDDEN,
            WaitConditionType.ELEMENT_ENABLED,
        }
        needs_value = {
            WaitConditionType.URL_CONTAINS,
            WaitConditionType.URL_MATCHES,
            WaitConditionType.TEXT_VISIBLE,
        }
        if self.condition in needs_selector and not self.selector:
            raise ValueError(f"{self.condition.value} wait requires a selector")
        if self.condition in needs_value and not self.value:
            raise ValueError(f"{self.condition.value} wait requires a value")
        if self.condition == WaitConditionType.URL_MATCHES and self.value:
            _check_pattern(self.value, "url_matches value")
        return self


class Expectation(BaseModel):
    """A check evaluated after a step finishes."""

    type: ExpectationType
    selector: Optional[str] = None
    url: Optional[str] = None
    pattern: Optional[str] = None
    contains: Optional[str] = None

    @field_validator("pattern")
    @classmethod
    def _check_regex(cls, value: Optional[str]) -> Optional[str]:
        if value:
            _check_pattern(value, "pattern")
        return value


_TARGETED = {
    ActionType.CLICK,
    ActionType.TYPE,
    ActionType.HOVER,
    ActionType.FOCUS,
    ActionType.BLUR,
    ActionType.CLEAR,
    ActionType.TOGGLE,
    ActionType.FILL_FIELD,
    ActionType.UPLOAD,
}


class Action(BaseModel):
    """One discrete interface operation."""

    action: ActionType
    selector: Optional[str] = Field(
        default=None,
        description="Locator, or comma separated fallback chain of locators.",
    )
    element: Optional[str] = Field(
        default=None,
        description="Natural language element description used when no selector is given.",
    )
    value: Optional[str] = None
    url: Optional[str] = None
    duration: Optional[float] = Field(default=None, description="Wait duration in seconds.")
    description: Optional[str] = None
    observe: bool = False
    expect: list[Expectation] = Field(default_factory=list)
    wait_after: Optional[float] = Field(default=None, description="Pause after the action in seconds.")
    retry: Optional[RetryPolicy] = None
    wait_for: Optional[Union[WaitFor, list[WaitFor]]] = None
    dropdown: Optional[str] = None
    option: Optional[str] = None
    option_index: Optional[int] = None
    date: Optional[str] = None
    date_format: Optional[str] = None
    assert_type: Optional[AssertionType] = None
    expected: Optional[Union[bool, int, float, str]] = None
    key: Optional[str] = None
    modifiers: list[str] = Field(default_factory=list)
    timeout: Optional[float] = Field(default=None, description="Timeout override in seconds.")

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @model_validator(mode="after")
    def _check_required_fields(self) -> "Action":
        kind = self.action
        if kind == ActionType.NAVIGATE and not self.url:
            raise ValueError("navigate needs url")
        if kind in _TARGETED and not self.target:
            raise ValueError(f"{kind.value} needs selector")
        if kind == ActionType.TYPE and self.value is None:
            raise ValueError("type needs value")
        if kind == ActionType.SELECT and (not self.target or self.value is None):
            raise ValueError("select needs selector and value")
        if kind == ActionType.SELECT_OPTION:
            if not (self.selector or self.dropdown):
                raise ValueError("select_option needs selector/dropdown")
            if self.option is None and self.option_index is None:
                raise ValueError("select_option needs option/option_index")
        if kind == ActionType.FILL_DATE:
            if not self.target:
                raise ValueError("fill_date needs selector")
            if not (self.date or self.value):
                raise ValueError("fill_date needs date/value")
        if kind == ActionType.WAIT and self.duration is None and not self.target:
            raise ValueError("wait needs duration or selector")
        if kind == ActionType.ASSERT and self.assert_type is None:
            raise ValueError("assert needs assert_type")
        if self.assert_type == AssertionType.URL_MATCHES and self.expected is not None:
            _check_pattern(str(self.expected), "url_matches expected")
        if self.assert_type == AssertionType.ELEMENT_COUNT and not _is_count(self.expected):
            raise ValueError("element_count expected must be a whole number")
        if kind == ActionType.PRESS_KEY and not (self.key or self.value):
            raise ValueError("press_key needs key/value")
        if kind == ActionType.UPLOAD and not self.value:
            raise ValueError("upload needs value")
        return self

    @property
    def target(self) -> Optional[str]:
        """Locator string the executor resolves, if any."""

        if self.selector:
            return self.selector
        if self.element:
            return f"text={self.element}"
        return None

    def fingerprint(self) -> str:
        """Identity used by the repetition guard."""

        target = self.target or self.url or ""
        return f"{self.action.value}:{target}:{self.value or ''}"

    def wait_conditions(self) -> list[WaitFor]:
        if self.wait_for is None:
            return []
        if isinstance(self.wait_for, list):
            return list(self.wait_for)
        return [self.wait_for]

    def summary(self) -> str:
        parts = [self.action.value]
        if self.description:
            parts.append(self.description)
        elif self.target:
            parts.append(self.target)
        elif self.url:
            parts.append(self.url)
        return " ".join(parts)


class Credentials(BaseModel):
    """Login credentials used to get past login walls."""

    username: str
    password: str

    @classmethod
    def parse(cls, raw: str) -> "Credentials":
        """Parse ``username:password`` as accepted on the command line."""

        username, _, password = raw.partition(":")
        if not username or not password:
            raise ValueError("Invalid credentials format. Use: username:password")
        return cls(username=username, password=password)


class AssertionResult(BaseModel):
    """Outcome of evaluating a single assertion."""

    type: AssertionType
    passed: bool = False
    expected: Optional[Any] = None
    actual: Optional[Any] = None
    message: Optional[str] = None


class DecisionTag(str, enum.Enum):
    """Continuation tag returned by the decision-maker."""

    CONTINUE = "continue"
    GOAL_ACHIEVED = "goal_achieved"
    STUCK = "stuck"
    ABORT = "abort"


class BugSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class BugReport(BaseModel):
    """Defect evidence attached to a decision."""

    model_config = ConfigDict(populate_by_name=True)

    bug_found: bool = Field(default=True, alias="bugFound")
    severity: BugSeverity = BugSeverity.MEDIUM
    type: str = "console_error"
    description: str = ""
    evidence: dict[str, Any] = Field(default_factory=dict)
    suggested_fix: Optional[dict[str, Any]] = Field(default=None, alias="suggestedFix")


class Decision(BaseModel):
    """Structured response of the decision-maker at a checkpoint."""

    model_config = ConfigDict(populate_by_name=True)

    decision: DecisionTag
    reasoning: str = ""
    action: Optional[Action] = None
    actions: Optional[list[Action]] = None
    stop_on_error: bool = Field(default=True, alias="stopOnError")
    concerns: list[str] = Field(default_factory=list)
    bug_report: Optional[BugReport] = Field(default=None, alias="bugReport")
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def batch(self) -> list[Action]:
        """Return the ordered list of actions to execute before the next checkpoint."""

        if self.actions:
            return list(self.actions)
        if self.action is not None:
            return [self.action]
        return []


class NotificationLevel(str, enum.Enum):
    """Severity of notification events."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class NotificationEvent(BaseModel):
    """Event emitted to notify users."""

    type: str
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ActionFailure(BaseModel):
    """An action of a batch or scenario that did not complete."""

    index: int
    action: Action
    error_type: str
    message: str
    attempts: int = 1
