"""Execution of single actions with retries, fallbacks and a repetition guard."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from ..browser.base import BrowserDriver, DriverError, DriverTimeout, ElementState
from ..config import ExecutorConfig
from ..errors import (
    ActionError,
    ActionTimeout,
    AssertionFailed,
    ElementNotFound,
    RepeatedActionLimit,
    ValidationError,
)
from ..models import Action, ActionType, AssertionResult, RetryPolicy
from ..observer.dom import FormValidation
from .assertions import AssertionEngine, ErrorFeed
from .fill import FillOutcome, SmartFieldFiller
from .targets import ResolvedTarget, TargetResolver
from .waits import WaitConditionSet, WaitOutcome

LOGGER = logging.getLogger(__name__)

SCROLL_SCRIPT = """
(amount) => {
  if (amount > 0) window.scrollBy(0, amount);
  else window.scrollTo(0, document.body.scrollHeight);
}
"""

OPTION_SELECTORS = (
    'text="{option}"',
    '[role="option"]:has-text("{option}")',
    'li:has-text("{option}")',
    '[class*="option"]:has-text("{option}")',
)

_DROPDOWN_SETTLE = 0.3


@dataclass
class ActionResult:
    """What happened while executing one action."""

    action: Action
    attempts: int = 1
    duration: float = 0.0
    resolved_selector: Optional[str] = None
    fill: Optional[FillOutcome] = None
    assertion: Optional[AssertionResult] = None
    form_validation: Optional[FormValidation] = None
    waits: list[WaitOutcome] = field(default_factory=list)


Handler = Callable[[Action, ActionResult], None]


class ActionExecutor:
    """Turn :class:`Action` descriptions into driver operations.

    One executor serves one session; actions run strictly one after another.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        config: Optional[ExecutorConfig] = None,
        *,
        error_feed: Optional[ErrorFeed] = None,
    ) -> None:
        self._driver = driver
        self._config = config or ExecutorConfig()
        self._targets = TargetResolver(driver, fallback_timeout=self._config.fallback_timeout)
        self._filler = SmartFieldFiller(driver, typing_delay=self._config.typing_delay)
        self._waits = WaitConditionSet(
            driver,
            default_timeout=self._config.default_timeout,
            poll_interval=self._config.wait_poll_interval,
        )
        self.assertions = AssertionEngine(
            driver, error_feed, default_timeout=self._config.default_timeout
        )
        self._last_fingerprint: Optional[str] = None
        self._repeat_count = 0
        self._handlers: dict[ActionType, Handler] = {
            ActionType.NAVIGATE: self._navigate,
            ActionType.CLICK: self._click,
            ActionType.TYPE: self._type,
            ActionType.SELECT: self._select,
            ActionType.SELECT_OPTION: self._select_option,
            ActionType.FILL_DATE: self._fill_date,
            ActionType.UPLOAD: self._upload,
            ActionType.WAIT: self._wait,
            ActionType.SCROLL: self._scroll,
            ActionType.HOVER: self._hover,
            ActionType.ASSERT: self._assert,
            ActionType.FILL_FIELD: self._fill_field,
            ActionType.TOGGLE: self._toggle,
            ActionType.CLEAR: self._clear,
            ActionType.FOCUS: self._focus,
            ActionType.BLUR: self._blur,
            ActionType.PRESS_KEY: self._press_key,
            ActionType.SCREENSHOT: self._screenshot,
            ActionType.CHECK_FORM: self._check_form,
        }

    def execute(self, action: Action) -> ActionResult:
        """Execute ``action`` honouring its retry policy.

        Raises an :class:`~fe_pilot.errors.ActionError` subclass on failure.
        When several attempts were made the final error keeps its class and
        is annotated with the attempt count.
        """

        self._guard_repetition(action)
        policy = action.retry or RetryPolicy()
        started = time.monotonic()
        attempt = 1
        while True:
            try:
                result = self._execute_once(action)
            except ActionError as exc:
                if attempt >= policy.max_attempts:
                    if attempt > 1:
                        raise exc.with_attempts(attempt) from exc
                    raise
                LOGGER.info(
                    "Attempt %s/%s of %s failed, retrying: %s",
                    attempt,
                    policy.max_attempts,
                    action.summary(),
                    exc,
                )
                self._driver.pause(policy.backoff)
                attempt += 1
                continue
            result.attempts = attempt
            result.duration = time.monotonic() - started
            return result

    def _guard_repetition(self, action: Action) -> None:
        fingerprint = action.fingerprint()
        if fingerprint == self._last_fingerprint:
            self._repeat_count += 1
        else:
            self._last_fingerprint = fingerprint
            self._repeat_count = 1
        if self._repeat_count >= self._config.max_action_repeats:
            raise RepeatedActionLimit(
                f"Action repeated {self._repeat_count} times: {action.summary()}",
                selector=action.target,
            )

    def _execute_once(self, action: Action) -> ActionResult:
        result = ActionResult(action=action)
        LOGGER.debug("Executing %s", action.summary())
        try:
            self._handlers[action.action](action, result)
            if action.wait_after:
                self._driver.pause(action.wait_after)
        except DriverTimeout as exc:
            raise ActionTimeout(str(exc), selector=action.target) from exc
        except DriverError as exc:
            raise ActionError(str(exc), selector=action.target) from exc
        conditions = action.wait_conditions()
        if conditions:
            result.waits = self._waits.wait_for_all(conditions)
        return result

    def _timeout(self, action: Action) -> float:
        if action.timeout is not None:
            return action.timeout
        return self._config.default_timeout

    def _resolve(
        self,
        action: Action,
        result: ActionResult,
        *,
        target: Optional[str] = None,
        require_enabled: bool = False,
        state: ElementState = "visible",
    ) -> ResolvedTarget:
        resolved = self._targets.resolve(
            target or action.target or "",
            self._timeout(action),
            require_enabled=require_enabled,
            state=state,
        )
        result.resolved_selector = resolved.selector
        return resolved

    def _navigate(self, action: Action, result: ActionResult) -> None:
        timeout = action.timeout if action.timeout is not None else self._config.navigation_timeout
        self._driver.navigate(action.url or "", timeout=timeout)

    def _click(self, action: Action, result: ActionResult) -> None:
        resolved = self._resolve(action, result, require_enabled=True)
        resolved.element.click(timeout=self._timeout(action))

    def _type(self, action: Action, result: ActionResult) -> None:
        resolved = self._resolve(action, result, require_enabled=True)
        timeout = self._timeout(action)
        resolved.element.fill("", timeout=timeout)
        resolved.element.type(action.value or "", delay=self._config.typing_delay, timeout=timeout)

    def _select(self, action: Action, result: ActionResult) -> None:
        resolved = self._resolve(action, result, require_enabled=True)
        result.fill = self._filler.fill(
            resolved.element, action.value or "", selector=resolved.selector
        )

    def _select_option(self, action: Action, result: ActionResult) -> None:
        trigger = action.dropdown or action.selector or ""
        resolved = self._resolve(action, result, target=trigger, require_enabled=True)
        timeout = self._timeout(action)
        if resolved.element.tag_name() == "select":
            if action.option is not None:
                resolved.element.select_option(label=action.option, timeout=timeout)
            else:
                resolved.element.select_option(index=action.option_index, timeout=timeout)
            return

        resolved.element.click(timeout=timeout)
        self._driver.pause(_DROPDOWN_SETTLE)
        if action.option is None:
            option = self._driver.locate(f'[role="option"] >> nth={action.option_index}')
            option.click(timeout=timeout)
            return
        for template in OPTION_SELECTORS:
            option = self._driver.locate(template.format(option=action.option))
            try:
                if option.is_visible():
                    option.click(timeout=self._config.fallback_timeout)
                    return
            except DriverError as exc:
                LOGGER.debug("Option locator %s failed: %s", template, exc)
        raise ElementNotFound(f'Could not find option "{action.option}"', selector=trigger)

    def _fill_date(self, action: Action, result: ActionResult) -> None:
        resolved = self._resolve(action, result, require_enabled=True)
        result.fill = self._filler.fill_date(
            resolved.element,
            action.date or action.value or "",
            date_format=action.date_format,
            selector=resolved.selector,
        )

    def _upload(self, action: Action, result: ActionResult) -> None:
        paths = [part.strip() for part in (action.value or "").split(",") if part.strip()]
        missing = [path for path in paths if not Path(path).exists()]
        if missing:
            raise ValidationError(f"Upload file not found: {', '.join(missing)}")
        # file inputs are usually hidden behind a styled button
        resolved = self._resolve(action, result, state="attached")
        resolved.element.set_input_files(paths, timeout=self._timeout(action))

    def _wait(self, action: Action, result: ActionResult) -> None:
        if action.target:
            self._resolve(action, result)
        elif action.duration:
            self._driver.pause(action.duration)

    def _scroll(self, action: Action, result: ActionResult) -> None:
        if action.target:
            resolved = self._resolve(action, result)
            resolved.element.scroll_into_view(timeout=self._timeout(action))
            return
        try:
            amount = int(action.value) if action.value else 0
        except ValueError as exc:
            raise ValidationError(f"scroll value must be a pixel amount, got {action.value!r}") from exc
        self._driver.evaluate(SCROLL_SCRIPT, amount)

    def _hover(self, action: Action, result: ActionResult) -> None:
        resolved = self._resolve(action, result)
        resolved.element.hover(timeout=self._timeout(action))

    def _focus(self, action: Action, result: ActionResult) -> None:
        resolved = self._resolve(action, result)
        resolved.element.focus(timeout=self._timeout(action))

    def _blur(self, action: Action, result: ActionResult) -> None:
        resolved = self._resolve(action, result)
        resolved.element.blur(timeout=self._timeout(action))

    def _clear(self, action: Action, result: ActionResult) -> None:
        resolved = self._resolve(action, result, require_enabled=True)
        resolved.element.fill("", timeout=self._timeout(action))

    def _toggle(self, action: Action, result: ActionResult) -> None:
        resolved = self._resolve(action, result, require_enabled=True)
        if action.value is None:
            resolved.element.click(timeout=self._timeout(action))
            return
        result.fill = self._filler.fill(resolved.element, action.value, selector=resolved.selector)

    def _fill_field(self, action: Action, result: ActionResult) -> None:
        resolved = self._resolve(action, result, require_enabled=True)
        result.fill = self._filler.fill(
            resolved.element,
            action.value or "",
            date_format=action.date_format,
            selector=resolved.selector,
        )

    def _assert(self, action: Action, result: ActionResult) -> None:
        if action.assert_type is None:
            raise ValidationError("assert needs assert_type")
        result.assertion = self.assertions.run(action.assert_type, action)
        if not result.assertion.passed:
            raise AssertionFailed(
                f"Assertion failed: {result.assertion.message}",
                selector=action.target,
                result=result.assertion,
            )

    def _press_key(self, action: Action, result: ActionResult) -> None:
        combo = "+".join([*action.modifiers, action.key or action.value or ""])
        if action.target:
            resolved = self._resolve(action, result)
            resolved.element.press(combo, timeout=self._timeout(action))
        else:
            self._driver.press_key(combo)

    def _screenshot(self, action: Action, result: ActionResult) -> None:
        LOGGER.debug("Screenshot requested; captured with the next observation")

    def _check_form(self, action: Action, result: ActionResult) -> None:
        form = self.assertions.check_form_validity(action.selector or "form")
        result.form_validation = form
        for issue in form.validation_errors:
            LOGGER.warning("Form validation error on %s: %s", issue.field, issue.message)
