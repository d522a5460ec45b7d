"""Assertions and post-step expectations evaluated against the live page."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from ..browser.base import BrowserDriver, DriverError, DriverTimeout
from ..models import Action, AssertionResult, AssertionType, Expectation, ExpectationType
from ..observer.dom import FORM_VALIDATION_SCRIPT, VALIDATION_MESSAGES_SCRIPT, FormValidation

LOGGER = logging.getLogger(__name__)

COUNT_SCRIPT = "(selector) => document.querySelectorAll(selector).length"
COOKIE_SCRIPT = (
    "(name) => document.cookie.split(';').some((c) => c.trim().startsWith(name + '='))"
)
LOCAL_STORAGE_SCRIPT = "(key) => window.localStorage.getItem(key) !== null"


class ErrorFeed(Protocol):
    """Read access to console and network errors not yet observed."""

    def pending_console_errors(self) -> list[Any]: ...

    def pending_network_errors(self) -> list[Any]: ...


@dataclass
class ExpectationReport:
    passed: bool
    failures: list[str] = field(default_factory=list)


class AssertionEngine:
    def __init__(
        self,
        driver: BrowserDriver,
        error_feed: Optional[ErrorFeed] = None,
        *,
        default_timeout: float = 10.0,
    ) -> None:
        self._driver = driver
        self._error_feed = error_feed
        self._default_timeout = default_timeout

    def run(self, assertion: AssertionType, action: Action) -> AssertionResult:
        """Evaluate ``assertion`` for ``action``; driver failures fail the assertion."""

        result = AssertionResult(type=assertion, expected=action.expected)
        timeout = action.timeout if action.timeout is not None else self._default_timeout
        try:
            self._evaluate(assertion, action, timeout, result)
        except (DriverError, ValueError, re.error) as exc:
            result.passed = False
            result.message = f"Assertion error: {exc}"
        LOGGER.debug("Assertion %s passed=%s", assertion.value, result.passed)
        return result

    def _evaluate(
        self,
        assertion: AssertionType,
        action: Action,
        timeout: float,
        result: AssertionResult,
    ) -> None:
        selector = action.target
        expected = action.expected
        if assertion in _NEEDS_SELECTOR and not selector:
            result.message = f"{assertion.value} requires a selector"
            return

        if assertion == AssertionType.ELEMENT_VISIBLE:
            try:
                self._driver.locate(selector).wait_for("visible", timeout=timeout)
                result.passed = True
            except DriverTimeout:
                result.passed = False
            result.message = "Element visible" if result.passed else f"Element not visible: {selector}"
        elif assertion == AssertionType.ELEMENT_HIDDEN:
            result.passed = not self._driver.locate(selector).is_visible()
            result.message = "Element hidden" if result.passed else f"Element still visible: {selector}"
        elif assertion == AssertionType.ELEMENT_TEXT:
            text = self._driver.locate(selector).text_content() or ""
            result.actual = text
            result.passed = str(expected) in text if expected is not None else bool(text)
            result.message = "Text matches" if result.passed else f'Expected "{expected}", got "{text}"'
        elif assertion == AssertionType.ELEMENT_VALUE:
            value = self._driver.locate(selector).input_value()
            result.actual = value
            result.passed = value == _as_text(expected)
            result.message = "Value matches" if result.passed else f'Expected "{expected}", got "{value}"'
        elif assertion == AssertionType.ELEMENT_COUNT:
            count = int(self._driver.evaluate(COUNT_SCRIPT, selector) or 0)
            result.actual = count
            result.passed = expected is not None and count == int(expected)
            result.message = "Count matches" if result.passed else f"Expected {expected} elements, found {count}"
        elif assertion in _URL_ASSERTIONS:
            url = self._driver.url
            result.actual = url
            result.passed = _compare(assertion, url, expected)
            result.message = "URL matches" if result.passed else f'URL "{url}" does not satisfy {assertion.value} "{expected}"'
        elif assertion in _TITLE_ASSERTIONS:
            title = self._driver.title()
            result.actual = title
            result.passed = _compare(assertion, title, expected)
            result.message = "Title matches" if result.passed else f'Title "{title}" does not satisfy {assertion.value} "{expected}"'
        elif assertion == AssertionType.NO_CONSOLE_ERRORS:
            errors = self._error_feed.pending_console_errors() if self._error_feed else []
            result.actual = len(errors)
            result.passed = not errors
            result.message = "No console errors" if result.passed else f"{len(errors)} console error(s): {errors[0].text}"
        elif assertion == AssertionType.NETWORK_SUCCESS:
            failed = self._error_feed.pending_network_errors() if self._error_feed else []
            result.actual = len(failed)
            result.passed = not failed
            result.message = (
                "All requests succeeded"
                if result.passed
                else f"{len(failed)} failed request(s): {failed[0].status} {failed[0].url}"
            )
        elif assertion == AssertionType.NO_VALIDATION_ERRORS:
            errors = self.detect_validation_errors()
            result.actual = errors
            result.passed = not errors
            result.message = "No validation errors" if result.passed else f"Errors: {', '.join(errors)}"
        elif assertion == AssertionType.FORM_VALID:
            form = self.check_form_validity(action.selector or "form")
            result.passed = form.is_valid
            result.message = (
                "Form valid"
                if result.passed
                else "Form errors: " + ", ".join(e.message for e in form.validation_errors)
            )
        elif assertion == AssertionType.COOKIE_EXISTS:
            name = _as_text(expected) or action.value or ""
            result.passed = bool(self._driver.evaluate(COOKIE_SCRIPT, name))
            result.message = f'Cookie "{name}" exists' if result.passed else f'Cookie "{name}" missing'
        elif assertion == AssertionType.LOCALSTORAGE_HAS:
            key = _as_text(expected) or action.value or ""
            result.passed = bool(self._driver.evaluate(LOCAL_STORAGE_SCRIPT, key))
            result.message = f'Key "{key}" exists' if result.passed else f'Key "{key}" missing'

    def detect_validation_errors(self) -> list[str]:
        return [str(message) for message in self._driver.evaluate(VALIDATION_MESSAGES_SCRIPT) or []]

    def check_form_validity(self, selector: str = "form") -> FormValidation:
        raw = self._driver.evaluate(FORM_VALIDATION_SCRIPT, selector)
        if not raw:
            return FormValidation()
        return FormValidation.model_validate(raw)

    def verify_expectations(
        self,
        expectations: list[Expectation],
        *,
        url_before: Optional[str] = None,
    ) -> ExpectationReport:
        failures: list[str] = []
        for expectation in expectations:
            try:
                failure = self._check_expectation(expectation, url_before)
            except (DriverError, re.error) as exc:
                failure = f"Check failed: {expectation.type.value} ({exc})"
            if failure:
                failures.append(failure)
        return ExpectationReport(passed=not failures, failures=failures)

    def _check_expectation(self, expectation: Expectation, url_before: Optional[str]) -> Optional[str]:
        kind = expectation.type
        if kind == ExpectationType.ELEMENT_VISIBLE and expectation.selector:
            if not self._driver.locate(expectation.selector).is_visible():
                return f"Element not visible: {expectation.selector}"
        elif kind == ExpectationType.ELEMENT_HIDDEN and expectation.selector:
            if self._driver.locate(expectation.selector).is_visible():
                return f"Element still visible: {expectation.selector}"
        elif kind == ExpectationType.URL_CHANGED:
            url = self._driver.url
            if expectation.pattern and not re.search(expectation.pattern, url):
                return f"URL doesn't match: {expectation.pattern}"
            if expectation.url and expectation.url not in url:
                return f"URL doesn't contain: {expectation.url}"
            if not (expectation.pattern or expectation.url) and url_before is not None and url == url_before:
                return f"URL did not change from {url_before}"
        elif kind == ExpectationType.ELEMENT_TEXT and expectation.selector:
            text = self._driver.locate(expectation.selector).text_content() or ""
            if expectation.contains and expectation.contains not in text:
                return f'Text doesn\'t contain "{expectation.contains}"'
        elif kind == ExpectationType.NO_VALIDATION_ERRORS:
            errors = self.detect_validation_errors()
            if errors:
                return f"Validation errors: {', '.join(errors)}"
        elif kind == ExpectationType.NO_CONSOLE_ERRORS and self._error_feed:
            errors = self._error_feed.pending_console_errors()
            if errors:
                return f"Console errors: {len(errors)}"
        elif kind == ExpectationType.NETWORK_SUCCESS and self._error_feed:
            failed = self._error_feed.pending_network_errors()
            if failed:
                return f"Failed requests: {', '.join(f'{e.status} {e.url}' for e in failed)}"
        return None


_NEEDS_SELECTOR = {
    AssertionType.ELEMENT_VISIBLE,
    AssertionType.ELEMENT_HIDDEN,
    AssertionType.ELEMENT_TEXT,
    AssertionType.ELEMENT_VALUE,
    AssertionType.ELEMENT_COUNT,
}
_URL_ASSERTIONS = {AssertionType.URL_IS, AssertionType.URL_CONTAINS, AssertionType.URL_MATCHES}
_TITLE_ASSERTIONS = {AssertionType.TITLE_IS, AssertionType.TITLE_CONTAINS}


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _compare(assertion: AssertionType, actual: str, expected: Any) -> bool:
    wanted = _as_text(expected)
    if wanted is None:
        return True
    if assertion in {AssertionType.URL_IS, AssertionType.TITLE_IS}:
        return actual == wanted
    if assertion in {AssertionType.URL_CONTAINS, AssertionType.TITLE_CONTAINS}:
        return wanted in actual
    return re.search(wanted, actual) is not None
