"""Clear cookie banners, login walls and popups before interacting with a page."""

from __future__ import annotations

import logging
from typing import Optional

from ..browser.base import BrowserDriver, DriverError
from ..config import ObstacleConfig
from ..errors import (
    AdvisorError,
    BudgetExceeded,
    CaptchaBlocker,
    ObstacleError,
    ObstacleUnresolved,
)
from ..models import Credentials
from .advisor import AdvisorStep, ObstacleAdvice, ObstacleAdvisor, ObstacleContext
from .detection import OBSTACLE_DETECTION_SCRIPT, Obstacle, ObstacleType

LOGGER = logging.getLogger(__name__)

ACCEPT_SELECTORS = (
    'button:has-text("Accept")',
    'button:has-text("OK")',
    'button:has-text("I agree")',
    'button:has-text("Agree")',
    '[class*="accept" i]',
)

SKIP_LOGIN_SELECTORS = (
    'button:has-text("Skip")',
    'button:has-text("Guest")',
    'button:has-text("Continue as guest")',
    'button:has-text("No thanks")',
    'a:has-text("Skip")',
)

CLOSE_SELECTORS = (
    ".close",
    ".modal-close",
    'button[aria-label="Close"]',
    '[aria-label="Close"]',
    '[data-dismiss="modal"]',
    'button:has-text("×")',
    'button:has-text("✕")',
)

USERNAME_SELECTORS = (
    'input[type="email"]',
    'input[type="text"][name*="email"]',
    'input[name*="username"]',
    'input[placeholder*="email" i]',
)

PASSWORD_SELECTORS = ('input[type="password"]',)

SUBMIT_SELECTORS = (
    'button[type="submit"]',
    'button:has-text("Login")',
    'button:has-text("Log in")',
    'button:has-text("Sign in")',
    'input[type="submit"]',
)

_CLICK_TIMEOUT = 2.0
_LOGIN_SETTLE = 2.0


class ObstacleResolver:
    """Detect and clear obstacles, rules first, optional advisor second."""

    def __init__(
        self,
        driver: BrowserDriver,
        config: Optional[ObstacleConfig] = None,
        *,
        credentials: Optional[Credentials] = None,
        advisor: Optional[ObstacleAdvisor] = None,
    ) -> None:
        self._driver = driver
        self._config = config or ObstacleConfig()
        self._credentials = credentials
        self._advisor = advisor
        self.cleared = 0
        self.encountered: list[Obstacle] = []
        self.advice: list[ObstacleAdvice] = []
        self.ai_calls = 0
        self.ai_cost = 0.0

    def detect(self) -> Optional[Obstacle]:
        """Return the topmost obstacle, or None when the page looks clear.

        A detection script that fails twice in a row (navigation in flight,
        closed page) is treated as a clear page.
        """

        try:
            raw = self._driver.evaluate(OBSTACLE_DETECTION_SCRIPT)
        except DriverError as exc:
            LOGGER.warning("Obstacle detection failed, retrying: %s", exc)
            self._driver.pause(self._config.settle_delay)
            try:
                raw = self._driver.evaluate(OBSTACLE_DETECTION_SCRIPT)
            except DriverError as retry_exc:
                LOGGER.warning("Obstacle detection unavailable: %s", retry_exc)
                return None
        if not raw:
            return None
        return Obstacle.model_validate(raw)

    def ensure_clear(self) -> int:
        """Clear every obstacle on the page and return how many were cleared.

        Raises :class:`CaptchaBlocker` for a CAPTCHA, :class:`BudgetExceeded`
        when the advisor is needed but its budget is spent, and
        :class:`ObstacleUnresolved` otherwise.
        """

        if not self._config.enabled:
            return 0
        cleared = 0
        for _ in range(self._config.max_iterations):
            obstacle = self.detect()
            if obstacle is None:
                return cleared
            self.encountered.append(obstacle)
            LOGGER.warning("Obstacle detected: %s (%s)", obstacle.description, obstacle.element)
            if obstacle.type == ObstacleType.CAPTCHA:
                raise CaptchaBlocker(
                    f"CAPTCHA detected at {obstacle.element}; disable it in the test environment"
                )
            if not self._resolve(obstacle):
                raise ObstacleUnresolved(
                    f"Could not clear {obstacle.type.value} obstacle ({obstacle.element})"
                )
            cleared += 1
            self.cleared += 1
            LOGGER.info("Obstacle cleared: %s", obstacle.type.value)
            self._driver.pause(self._config.settle_delay)
        if self.detect() is None:
            return cleared
        raise ObstacleUnresolved(f"Too many obstacles ({self._config.max_iterations}), giving up")

    def clear_obstacles(self) -> bool:
        """Return True when the page is clear, False when a blocker remains."""

        try:
            self.ensure_clear()
        except (ObstacleError, BudgetExceeded) as exc:
            LOGGER.warning("Obstacle blocks the page: %s", exc)
            return False
        return True

    def _resolve(self, obstacle: Obstacle) -> bool:
        advisor = self._advisor if self._config.ai_mode != "disabled" else None
        if advisor is None or self._config.ai_mode != "always":
            if self._resolve_with_rules(obstacle):
                LOGGER.debug("Handled %s with rules", obstacle.type.value)
                return True
        if advisor is not None:
            return self._resolve_with_advisor(advisor, obstacle)
        return False

    def _resolve_with_rules(self, obstacle: Obstacle) -> bool:
        if obstacle.type == ObstacleType.COOKIE_CONSENT:
            return self._accept_cookies(obstacle)
        if obstacle.type == ObstacleType.LOGIN:
            if self._credentials:
                return self._fill_login(self._credentials)
            return self._skip_login(obstacle)
        if obstacle.type in {ObstacleType.MODAL, ObstacleType.POPUP}:
            return self._close_modal(obstacle)
        return False

    def _accept_cookies(self, obstacle: Obstacle) -> bool:
        if self._click_first(ACCEPT_SELECTORS):
            return True
        return self._click_first(_scoped(obstacle, (".close", '[aria-label="Close"]')))

    def _fill_login(self, credentials: Credentials) -> bool:
        LOGGER.info("Credentials provided, attempting login as %s", credentials.username)
        username = self._first_visible(USERNAME_SELECTORS)
        password = self._first_visible(PASSWORD_SELECTORS)
        try:
            if username:
                self._driver.locate(username).fill(credentials.username, timeout=_CLICK_TIMEOUT)
            if password:
                self._driver.locate(password).fill(credentials.password, timeout=_CLICK_TIMEOUT)
        except DriverError as exc:
            LOGGER.warning("Login form could not be filled: %s", exc)
            return False
        if not self._click_first(SUBMIT_SELECTORS, settle=_LOGIN_SETTLE):
            return False
        return True

    def _skip_login(self, obstacle: Obstacle) -> bool:
        LOGGER.info("No credentials, looking for a skip or guest option")
        if self._click_first(SKIP_LOGIN_SELECTORS):
            return True
        return self._close_modal(obstacle)

    def _close_modal(self, obstacle: Obstacle) -> bool:
        if self._click_first(_scoped(obstacle, CLOSE_SELECTORS)):
            return True
        self._driver.press_key("Escape")
        self._driver.pause(self._config.settle_delay)
        try:
            return not self._driver.locate(obstacle.element).is_visible()
        except DriverError:
            return True

    def _resolve_with_advisor(self, advisor: ObstacleAdvisor, obstacle: Obstacle) -> bool:
        spend = self.ai_cost + self._config.cost_per_call
        if self._config.max_ai_cost is not None and spend > self._config.max_ai_cost:
            raise BudgetExceeded(
                f"Obstacle advisor budget exhausted (${self.ai_cost:.2f} of ${self._config.max_ai_cost:.2f})"
            )
        context = ObstacleContext(
            url=self._driver.url,
            title=self._driver.title(),
            obstacle=obstacle,
            username=self._credentials.username if self._credentials else None,
            screenshot=self._driver.screenshot(),
        )
        self.ai_calls += 1
        self.ai_cost = spend
        try:
            advice = advisor.advise(context)
        except AdvisorError as exc:
            LOGGER.warning("Obstacle advisor failed: %s", exc)
            return False
        self.advice.append(advice)
        LOGGER.info("Advisor suggests %s: %s", advice.action, advice.reasoning)
        if advice.action == "report_blocker":
            return False
        try:
            self._run_steps(advice.steps)
            return True
        except DriverError as exc:
            LOGGER.warning("Advisor steps failed: %s", exc)
        if advice.fallback is None:
            return False
        LOGGER.info("Trying advisor fallback %s", advice.fallback.action)
        try:
            self._run_steps(advice.fallback.steps)
        except DriverError as exc:
            LOGGER.warning("Advisor fallback failed: %s", exc)
            return False
        return True

    def _run_steps(self, steps: list[AdvisorStep]) -> None:
        for step in steps:
            if step.type == "click" and step.selector:
                self._driver.locate(step.selector).click(timeout=_CLICK_TIMEOUT)
            elif step.type == "type" and step.selector and step.value is not None:
                self._driver.locate(step.selector).fill(step.value, timeout=_CLICK_TIMEOUT)
            elif step.type == "wait":
                self._driver.pause(step.duration if step.duration is not None else 1.0)
            elif step.type == "press" and step.key:
                self._driver.press_key(step.key)

    def _first_visible(self, selectors: tuple[str, ...]) -> Optional[str]:
        for selector in selectors:
            try:
                if self._driver.locate(selector).is_visible():
                    return selector
            except DriverError:
                continue
        return None

    def _click_first(self, selectors: tuple[str, ...], *, settle: Optional[float] = None) -> bool:
        selector = self._first_visible(selectors)
        if selector is None:
            return False
        try:
            self._driver.locate(selector).click(timeout=_CLICK_TIMEOUT)
        except DriverError as exc:
            LOGGER.debug("Clicking %s failed: %s", selector, exc)
            return False
        self._driver.pause(self._config.settle_delay if settle is None else settle)
        return True


def _scoped(obstacle: Obstacle, selectors: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(f"{obstacle.element} {selector}" for selector in selectors)
