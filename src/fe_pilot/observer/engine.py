"""Observation capture: turns live page state into immutable snapshots."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ..browser.base import BrowserDriver
from ..config import ObserverConfig
from ..models import Action, ActionFailure, ActionType
from .dom import (
    DOM_SUMMARY_SCRIPT,
    FORM_VALIDATION_SCRIPT,
    PERFORMANCE_SCRIPT,
    FormValidation,
    PageSummary,
    PerformanceMetrics,
    build_page_summary,
)
from .events import ConsoleEntry, EventRecorder, NetworkEntry, Severity

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    console_errors: int = 0
    network_errors: int = 0


class Observation(BaseModel):
    """Immutable snapshot of page state at a checkpoint."""

    model_config = ConfigDict(frozen=True)

    step_number: int
    timestamp: float
    action: Optional[Action] = None
    current_url: str = ""
    title: str = ""
    url_before: str = ""
    url_after: str = ""
    url_changed: bool = False
    page: Optional[PageSummary] = None
    form_validation: Optional[FormValidation] = None
    performance: Optional[PerformanceMetrics] = None
    new_console: list[ConsoleEntry] = Field(default_factory=list)
    new_network: list[NetworkEntry] = Field(default_factory=list)
    new_errors: ErrorCounts = Field(default_factory=ErrorCounts)
    screenshot: Optional[str] = None
    omitted_sections: list[str] = Field(default_factory=list)
    failures: list[ActionFailure] = Field(default_factory=list)

    def with_failures(self, failures: list[ActionFailure]) -> "Observation":
        """Return a copy carrying the failures of the batch that led here."""

        return self.model_copy(update={"failures": list(failures)})

    @property
    def has_new_errors(self) -> bool:
        return bool(self.new_errors.console_errors or self.new_errors.network_errors)


class CategorizedError(BaseModel):
    type: str
    message: str
    source: str
    count: int = 1
    first_seen: float
    last_seen: float


class ErrorCategory(BaseModel):
    count: int = 0
    items: list[CategorizedError] = Field(default_factory=list)


class ErrorSummary(BaseModel):
    critical: ErrorCategory = Field(default_factory=ErrorCategory)
    warning: ErrorCategory = Field(default_factory=ErrorCategory)
    info: ErrorCategory = Field(default_factory=ErrorCategory)


class Observer:
    """Capture observations and the console/network delta since the last one."""

    def __init__(
        self,
        driver: BrowserDriver,
        screenshot_dir: Path,
        *,
        config: Optional[ObserverConfig] = None,
    ) -> None:
        self._driver = driver
        self._screenshot_dir = screenshot_dir
        self._config = config or ObserverConfig()
        self.events = EventRecorder(driver)
        self._console_cursor = self.events.console.cursor()
        self._network_cursor = self.events.network.cursor()
        self._last_url: Optional[str] = None

    def capture_observation(
        self,
        step_number: int,
        action: Optional[Action] = None,
        *,
        screenshot: bool = False,
    ) -> Observation:
        """Snapshot the page and drain the console/network delta.

        A screenshot is written when ``screenshot`` is set or the action asks
        for one. Sections that fail are listed in ``omitted_sections``.
        """

        omitted: list[str] = []
        current_url = self._section("url", lambda: self._driver.url, omitted) or ""
        title = self._section("title", self._driver.title, omitted) or ""
        wants_screenshot = screenshot or (
            action is not None and (action.action == ActionType.SCREENSHOT or action.observe)
        )
        screenshot_path = None
        if wants_screenshot:
            screenshot_path = self._section(
                "screenshot", lambda: self._capture_screenshot(step_number), omitted
            )
        page = self._section("dom", self._capture_page, omitted)
        form_validation = self._section("form_validation", self._capture_form_validation, omitted)
        performance = self._section("performance", self._capture_performance, omitted)

        new_console = self._console_cursor.drain()
        new_network = self._network_cursor.drain()
        url_before = self._last_url if self._last_url is not None else current_url
        self._last_url = current_url

        return Observation(
            step_number=step_number,
            timestamp=time.time(),
            action=action,
            current_url=current_url,
            title=title,
            url_before=url_before,
            url_after=current_url,
            url_changed=url_before != current_url,
            page=page,
            form_validation=form_validation,
            performance=performance,
            new_console=new_console,
            new_network=new_network,
            new_errors=ErrorCounts(
                console_errors=sum(1 for entry in new_console if entry.is_error),
                network_errors=sum(1 for entry in new_network if entry.is_error),
            ),
            screenshot=screenshot_path,
            omitted_sections=omitted,
        )

    def pending_console_errors(self) -> list[ConsoleEntry]:
        """Console errors recorded since the last observation, without consuming them."""

        return [entry for entry in self._console_cursor.peek() if entry.is_error]

    def pending_network_errors(self) -> list[NetworkEntry]:
        return [entry for entry in self._network_cursor.peek() if entry.is_error]

    def error_summary(self) -> ErrorSummary:
        """Group every console event of the session by severity."""

        entries = self.events.console.entries()
        return ErrorSummary(
            critical=_categorize(e for e in entries if e.severity == Severity.CRITICAL),
            warning=_categorize(e for e in entries if e.severity == Severity.WARNING),
            info=_categorize(
                e for e in entries if e.severity in {Severity.INFO, Severity.DEBUG}
            ),
        )

    def _section(self, name: str, capture: Callable[[], T], omitted: list[str]) -> Optional[T]:
        try:
            return capture()
        except Exception as exc:  # degrade to a partial observation
            LOGGER.warning("Observation section %s failed: %s", name, exc)
            omitted.append(name)
            return None

    def _capture_page(self) -> PageSummary:
        raw = self._driver.evaluate(DOM_SUMMARY_SCRIPT, self._config.max_text)
        return build_page_summary(raw or {}, self._config)

    def _capture_form_validation(self) -> Optional[FormValidation]:
        raw = self._driver.evaluate(FORM_VALIDATION_SCRIPT, "form")
        if not raw:
            return None
        return FormValidation.model_validate(raw)

    def _capture_performance(self) -> Optional[PerformanceMetrics]:
        raw = self._driver.evaluate(PERFORMANCE_SCRIPT)
        if not raw:
            return None
        return PerformanceMetrics.model_validate(raw)

    def _capture_screenshot(self, step_number: int) -> str:
        self._screenshot_dir.mkdir(parents=True, exist_ok=True)
        path = self._screenshot_dir / f"step-{step_number}-{int(time.time() * 1000)}.png"
        self._driver.screenshot(path=str(path), full_page=self._config.full_page_screenshots)
        return str(path)


def _categorize(entries) -> ErrorCategory:
    items: dict[str, CategorizedError] = {}
    for entry in entries:
        key = f"{entry.source.value}:{entry.text[:100]}"
        existing = items.get(key)
        if existing:
            existing.count += 1
            existing.last_seen = entry.timestamp
            continue
        items[key] = CategorizedError(
            type=entry.type,
            message=entry.text,
            source=entry.source.value,
            first_seen=entry.timestamp,
            last_seen=entry.timestamp,
        )
    return ErrorCategory(count=len(items), items=list(items.values()))
