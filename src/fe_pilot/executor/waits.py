"""Post-action wait conditions polled side by side with independent deadlines."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable

from ..browser.base import BrowserDriver, DriverError
from ..errors import ActionTimeout
from ..models import WaitConditionType, WaitFor

LOGGER = logging.getLogger(__name__)

LOADING_SELECTORS = (
    ".loading",
    ".spinner",
    "[class*=\"loading\" i]",
    "[aria-busy=\"true\"]",
)

FORM_READY_SCRIPT = """
(selector) => {
  const form = document.querySelector(selector || 'form');
  if (!form) return false;
  if (form.querySelector('[aria-busy="true"]')) return false;
  return Array.from(form.elements).some((el) => !el.disabled);
}
"""


@dataclass
class WaitOutcome:
    condition: WaitFor
    satisfied: bool
    elapsed: float


class WaitConditionSet:
    """Poll several wait conditions in one round-robin loop.

    The driver is single threaded, so conditions are checked in turn on every
    poll and each keeps its own deadline. A condition that times out is only
    fatal when it is marked ``required``.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        *,
        default_timeout: float = 10.0,
        poll_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._driver = driver
        self._default_timeout = default_timeout
        self._poll_interval = poll_interval
        self._clock = clock

    def wait_for_all(self, conditions: list[WaitFor]) -> list[WaitOutcome]:
        if not conditions:
            return []
        start = self._clock()
        pending = [
            (index, condition, start + self._timeout_for(condition))
            for index, condition in enumerate(conditions)
        ]
        outcomes: dict[int, WaitOutcome] = {}
        while pending:
            remaining = []
            for index, condition, deadline in pending:
                satisfied = self._check(condition)
                now = self._clock()
                if satisfied or now >= deadline:
                    outcomes[index] = WaitOutcome(condition, satisfied, now - start)
                else:
                    remaining.append((index, condition, deadline))
            pending = remaining
            if pending:
                self._driver.pause(self._poll_interval)

        results = [outcomes[index] for index in range(len(conditions))]
        for outcome in results:
            if outcome.satisfied:
                continue
            condition = outcome.condition
            message = (
                f"Wait condition {condition.condition.value} not met within "
                f"{self._timeout_for(condition)}s"
            )
            if condition.required:
                raise ActionTimeout(message, selector=condition.selector)
            LOGGER.warning(message)
        return results

    def _timeout_for(self, condition: WaitFor) -> float:
        if condition.timeout is not None:
            return condition.timeout
        return self._default_timeout

    def _check(self, condition: WaitFor) -> bool:
        try:
            return self._evaluate(condition)
        except (DriverError, re.error) as exc:
            LOGGER.debug("Wait condition %s check failed: %s", condition.condition.value, exc)
            return False

    def _evaluate(self, condition: WaitFor) -> bool:
        kind = condition.condition
        if kind == WaitConditionType.NETWORK_IDLE:
            return self._driver.is_network_idle()
        if kind == WaitConditionType.ELEMENT_VISIBLE:
            return self._driver.locate(condition.selector or "").is_visible()
        if kind == WaitConditionType.ELEMENT_HIDDEN:
            return not self._driver.locate(condition.selector or "").is_visible()
        if kind == WaitConditionType.ELEMENT_ENABLED:
            element = self._driver.locate(condition.selector or "")
            return element.is_visible() and element.is_enabled()
        if kind == WaitConditionType.URL_CONTAINS:
            return (condition.value or "") in self._driver.url
        if kind == WaitConditionType.URL_MATCHES:
            return re.search(condition.value or "", self._driver.url) is not None
        if kind == WaitConditionType.TEXT_VISIBLE:
            return self._driver.locate(f"text={condition.value}").is_visible()
        if kind == WaitConditionType.NO_LOADING:
            return not any_visible(self._driver, LOADING_SELECTORS)
        if kind == WaitConditionType.FORM_READY:
            return bool(self._driver.evaluate(FORM_READY_SCRIPT, condition.selector or "form"))
        raise ValueError(f"Unsupported wait condition: {kind}")


def any_visible(driver: BrowserDriver, selectors: tuple[str, ...]) -> bool:
    for selector in selectors:
        try:
            if driver.locate(selector).is_visible():
                return True
        except DriverError:
            continue
    return False

