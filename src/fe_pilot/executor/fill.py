"""Type-aware field filling with ordered, verified strategies."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ..browser.base import BrowserDriver, DriverError, ElementHandle
from ..errors import ActionError

LOGGER = logging.getLogger(__name__)

CLASSIFY_SCRIPT = """
(el) => ({
  tag: el.tagName.toLowerCase(),
  type: (el.getAttribute('type') || '').toLowerCase(),
  editable: !!el.isContentEditable,
  role: el.getAttribute('role'),
})
"""

OPTIONS_SCRIPT = "(el) => Array.from(el.options || []).map((o) => ({value: o.value, label: o.text.trim()}))"

FIELD_TEXT_SCRIPT = """
(el) => (el.value !== undefined && el.value !== null)
  ? String(el.value)
  : (el.innerText || el.textContent || '').trim()
"""

NESTED_INPUT = "input:not([type=\"hidden\"]), textarea, [contenteditable=\"true\"]"

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
)

_TRUTHY = {"true", "1", "yes", "on", "checked"}

_DATE_INPUT_TYPES = {"date", "datetime-local", "month", "week", "time"}
_TEXT_INPUT_TYPES = {"", "text", "email", "password", "search", "tel", "url", "number"}


class FieldKind(str, enum.Enum):
    TEXT = "text"
    SELECT = "select"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    DATE = "date"
    FILE = "file"
    CUSTOM = "custom"


@dataclass
class FillOutcome:
    kind: FieldKind
    strategy: str
    attempted: list[str] = field(default_factory=list)


Strategy = Callable[[ElementHandle, str], bool]


def normalize_date(raw: str, date_format: Optional[str] = None) -> str:
    """Return ``raw`` as an ISO ``YYYY-MM-DD`` string.

    ``date_format`` (a :func:`~datetime.datetime.strptime` pattern) takes
    precedence; otherwise a small list of common formats is tried in order,
    so ambiguous day/month inputs are read day first.
    """

    candidates = (date_format,) if date_format else DATE_FORMATS
    for pattern in candidates:
        try:
            return datetime.strptime(raw.strip(), pattern).date().isoformat()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date: {raw!r}")


def classify_field(element: ElementHandle) -> FieldKind:
    info = element.evaluate(CLASSIFY_SCRIPT) or {}
    tag = info.get("tag", "")
    input_type = info.get("type", "")
    if tag == "select":
        return FieldKind.SELECT
    if tag == "textarea":
        return FieldKind.TEXT
    if tag == "input":
        if input_type == "checkbox":
            return FieldKind.CHECKBOX
        if input_type == "radio":
            return FieldKind.RADIO
        if input_type in _DATE_INPUT_TYPES:
            return FieldKind.DATE
        if input_type == "file":
            return FieldKind.FILE
        if input_type in _TEXT_INPUT_TYPES:
            return FieldKind.TEXT
    return FieldKind.CUSTOM


class SmartFieldFiller:
    """Fill a form field by trying strategies suited to its kind in order."""

    def __init__(
        self,
        driver: BrowserDriver,
        *,
        typing_delay: float = 0.05,
        timeout: Optional[float] = None,
    ) -> None:
        self._driver = driver
        self._typing_delay = typing_delay
        self._timeout = timeout

    def fill(
        self,
        element: ElementHandle,
        value: str,
        *,
        date_format: Optional[str] = None,
        selector: Optional[str] = None,
    ) -> FillOutcome:
        kind = classify_field(element)
        if kind == FieldKind.DATE:
            value = self._date_value(value, date_format)
        return self._run(kind, self._strategies(kind), element, value, selector)

    def fill_date(
        self,
        element: ElementHandle,
        value: str,
        *,
        date_format: Optional[str] = None,
        selector: Optional[str] = None,
    ) -> FillOutcome:
        """Fill a native date input with an ISO value, or type into a picker widget."""

        if classify_field(element) == FieldKind.DATE:
            return self.fill(element, value, date_format=date_format, selector=selector)
        return self._run(
            FieldKind.DATE,
            [("type_date", self._type_and_confirm)],
            element,
            value,
            selector,
        )

    def _run(
        self,
        kind: FieldKind,
        strategies: list[tuple[str, Strategy]],
        element: ElementHandle,
        value: str,
        selector: Optional[str],
    ) -> FillOutcome:
        outcome = FillOutcome(kind=kind, strategy="")
        errors: list[str] = []
        for name, strategy in strategies:
            outcome.attempted.append(name)
            try:
                if strategy(element, value):
                    outcome.strategy = name
                    LOGGER.debug("Filled %s field with strategy %s", kind.value, name)
                    return outcome
                errors.append(f"{name}: value not applied")
            except DriverError as exc:
                errors.append(f"{name}: {exc}")
        raise ActionError(
            f"Could not fill {kind.value} field ({'; '.join(errors)})",
            selector=selector,
        )

    def _strategies(self, kind: FieldKind) -> list[tuple[str, Strategy]]:
        if kind == FieldKind.TEXT:
            return [("clear_then_set", self._clear_then_set), ("type_sequentially", self._type_sequentially)]
        if kind == FieldKind.SELECT:
            return [
                ("select_by_label", self._select_by_label),
                ("select_by_value", self._select_by_value),
                ("select_by_substring", self._select_by_substring),
            ]
        if kind in {FieldKind.CHECKBOX, FieldKind.RADIO}:
            return [("set_checked", self._set_checked), ("click_toggle", self._click_toggle)]
        if kind == FieldKind.DATE:
            return [("iso_date", self._clear_then_set), ("type_date", self._type_and_confirm)]
        if kind == FieldKind.FILE:
            return [("set_files", self._set_files)]
        return [
            ("click_then_type", self._click_then_type),
            ("nested_input", self._nested_input),
            ("keyboard", self._keyboard),
        ]

    def _date_value(self, value: str, date_format: Optional[str]) -> str:
        try:
            return normalize_date(value, date_format)
        except ValueError:
            LOGGER.debug("Keeping date %s as given", value)
            return value

    # text

    def _clear_then_set(self, element: ElementHandle, value: str) -> bool:
        element.fill("", timeout=self._timeout)
        element.fill(value, timeout=self._timeout)
        return element.input_value() == value

    def _type_sequentially(self, element: ElementHandle, value: str) -> bool:
        element.fill("", timeout=self._timeout)
        element.type(value, delay=self._typing_delay, timeout=self._timeout)
        return element.input_value() == value

    def _type_and_confirm(self, element: ElementHandle, value: str) -> bool:
        element.click(timeout=self._timeout)
        element.fill("", timeout=self._timeout)
        element.type(value, delay=self._typing_delay, timeout=self._timeout)
        element.press("Enter", timeout=self._timeout)
        self._driver.press_key("Escape")
        return bool(element.input_value())

    # select

    def _options(self, element: ElementHandle) -> list[dict[str, str]]:
        return list(element.evaluate(OPTIONS_SCRIPT) or [])

    def _select(self, element: ElementHandle, option_value: str) -> bool:
        element.select_option(value=option_value, timeout=self._timeout)
        return element.input_value() == option_value

    def _select_by_label(self, element: ElementHandle, value: str) -> bool:
        wanted = value.strip().lower()
        for option in self._options(element):
            if option.get("label", "").lower() == wanted:
                return self._select(element, option["value"])
        return False

    def _select_by_value(self, element: ElementHandle, value: str) -> bool:
        for option in self._options(element):
            if option.get("value") == value:
                return self._select(element, value)
        return False

    def _select_by_substring(self, element: ElementHandle, value: str) -> bool:
        wanted = value.strip().lower()
        if not wanted:
            return False
        for option in self._options(element):
            if wanted in option.get("label", "").lower():
                return self._select(element, option["value"])
        return False

    # checkbox / radio

    def _set_checked(self, element: ElementHandle, value: str) -> bool:
        desired = value.strip().lower() in _TRUTHY
        if element.is_checked() != desired:
            if desired:
                element.check(timeout=self._timeout)
            else:
                element.uncheck(timeout=self._timeout)
        return element.is_checked() == desired

    def _click_toggle(self, element: ElementHandle, value: str) -> bool:
        desired = value.strip().lower() in _TRUTHY
        if element.is_checked() != desired:
            element.click(timeout=self._timeout)
        return element.is_checked() == desired

    # file

    def _set_files(self, element: ElementHandle, value: str) -> bool:
        element.set_input_files([part.strip() for part in value.split(",") if part.strip()])
        return True

    # custom widgets

    def _current_text(self, element: ElementHandle) -> str:
        return str(element.evaluate(FIELD_TEXT_SCRIPT) or "")

    def _click_then_type(self, element: ElementHandle, value: str) -> bool:
        element.click(timeout=self._timeout)
        element.type(value, delay=self._typing_delay, timeout=self._timeout)
        return value in self._current_text(element)

    def _nested_input(self, element: ElementHandle, value: str) -> bool:
        nested = element.locate(NESTED_INPUT)
        if nested.count() == 0:
            return False
        inner = nested.nth(0)
        inner.fill(value, timeout=self._timeout)
        return value in self._current_text(inner)

    def _keyboard(self, element: ElementHandle, value: str) -> bool:
        element.focus(timeout=self._timeout)
        self._driver.keyboard_type(value, delay=self._typing_delay)
        return value in self._current_text(element)
