"""Resolution of fallback chains of locators to a live element."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..browser.base import BrowserDriver, DriverError, DriverTimeout, ElementHandle, ElementState
from ..errors import ElementDisabled, ElementNotFound

LOGGER = logging.getLogger(__name__)

_OPENERS = {"(": ")", "[": "]", "{": "}"}


def split_target(target: str) -> list[str]:
    """Split a fallback chain on top-level commas.

    Commas inside quotes, brackets or parentheses belong to the locator
    (``input[name="a,b"]``, ``:is(a, b)``) and do not split it.
    """

    parts: list[str] = []
    current: list[str] = []
    closers: list[str] = []
    quote: Optional[str] = None
    for char in target:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in {'"', "'"}:
            quote = char
        elif char in _OPENERS:
            closers.append(_OPENERS[char])
        elif closers and char == closers[-1]:
            closers.pop()
        elif char == "," and not closers:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return [part.strip() for part in parts if part.strip()]


@dataclass
class ResolvedTarget:
    element: ElementHandle
    selector: str
    alternative: int


class TargetResolver:
    """Try each alternative of a target in order and return the first usable one."""

    def __init__(self, driver: BrowserDriver, *, fallback_timeout: float = 2.0) -> None:
        self._driver = driver
        self._fallback_timeout = fallback_timeout

    def resolve(
        self,
        target: str,
        timeout: float,
        *,
        require_enabled: bool = False,
        state: ElementState = "visible",
    ) -> ResolvedTarget:
        alternatives = split_target(target)
        if not alternatives:
            raise ElementNotFound("Empty target", selector=target)
        per_alternative = timeout if len(alternatives) == 1 else min(timeout, self._fallback_timeout)
        disabled: list[str] = []
        for index, selector in enumerate(alternatives):
            element = self._driver.locate(selector)
            try:
                element.wait_for(state=state, timeout=per_alternative)
            except DriverTimeout:
                LOGGER.debug("Alternative %s did not become %s", selector, state)
                continue
            except DriverError as exc:
                LOGGER.debug("Alternative %s is not usable: %s", selector, exc)
                continue
            if require_enabled and not element.is_enabled():
                disabled.append(selector)
                continue
            if index:
                LOGGER.info("Resolved %s via fallback alternative %s", target, selector)
            return ResolvedTarget(element=element, selector=selector, alternative=index)
        if disabled:
            raise ElementDisabled(
                f"Element is disabled: {', '.join(disabled)}",
                selector=target,
            )
        raise ElementNotFound(f"No element found for: {target}", selector=target)

    def try_resolve(
        self,
        target: str,
        timeout: float,
        *,
        require_enabled: bool = False,
    ) -> Optional[ResolvedTarget]:
        try:
            return self.resolve(target, timeout, require_enabled=require_enabled)
        except (ElementNotFound, ElementDisabled):
            return None
