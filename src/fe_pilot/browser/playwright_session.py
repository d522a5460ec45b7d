"""Playwright-powered browser driver implementation."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from playwright.sync_api import Error, Locator, sync_playwright
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from ..config import BrowserConfig
from .base import (
    BrowserDriver,
    ConsoleMessage,
    DriverError,
    DriverTimeout,
    ElementHandle,
    ElementState,
    NetworkResponse,
    PageError,
)

LOGGER = logging.getLogger(__name__)


def _to_timeout(timeout: Optional[float]) -> Optional[float]:
    if timeout is None:
        return None
    return timeout * 1000


def _translate(exc: Error) -> DriverError:
    if isinstance(exc, PlaywrightTimeoutError):
        return DriverTimeout(str(exc))
    return DriverError(str(exc))


class PlaywrightElement(ElementHandle):
    """Element handle backed by a Playwright locator."""

    def __init__(self, locator: Locator) -> None:
        self._locator = locator

    def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return getattr(self._locator, method)(*args, **kwargs)
        except Error as exc:
            raise _translate(exc) from exc

    def wait_for(self, state: ElementState = "visible", timeout: Optional[float] = None) -> None:
        self._call("wait_for", state=state, timeout=_to_timeout(timeout))

    def count(self) -> int:
        return self._call("count")

    def nth(self, index: int) -> "PlaywrightElement":
        return PlaywrightElement(self._locator.nth(index))

    def locate(self, selector: str) -> "PlaywrightElement":
        return PlaywrightElement(self._locator.locator(selector).first)

    def is_visible(self) -> bool:
        return self._call("is_visible")

    def is_enabled(self) -> bool:
        return self._call("is_enabled")

    def is_checked(self) -> bool:
        return self._call("is_checked")

    def click(self, timeout: Optional[float] = None) -> None:
        self._call("click", timeout=_to_timeout(timeout))

    def fill(self, value: str, timeout: Optional[float] = None) -> None:
        self._call("fill", value, timeout=_to_timeout(timeout))

    def type(self, text: str, delay: float = 0.0, timeout: Optional[float] = None) -> None:
        self._call("press_sequentially", text, delay=delay * 1000, timeout=_to_timeout(timeout))

    def press(self, key: str, timeout: Optional[float] = None) -> None:
        self._call("press", key, timeout=_to_timeout(timeout))

    def hover(self, timeout: Optional[float] = None) -> None:
        self._call("hover", timeout=_to_timeout(timeout))

    def focus(self, timeout: Optional[float] = None) -> None:
        self._call("focus", timeout=_to_timeout(timeout))

    def blur(self, timeout: Optional[float] = None) -> None:
        self._call("blur", timeout=_to_timeout(timeout))

    def check(self, timeout: Optional[float] = None) -> None:
        self._call("check", timeout=_to_timeout(timeout))

    def uncheck(self, timeout: Optional[float] = None) -> None:
        self._call("uncheck", timeout=_to_timeout(timeout))

    def select_option(
        self,
        *,
        value: Optional[str] = None,
        label: Optional[str] = None,
        index: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> list[str]:
        return self._call(
            "select_option",
            value=value,
            label=label,
            index=index,
            timeout=_to_timeout(timeout),
        )

    def set_input_files(self, paths: Sequence[str], timeout: Optional[float] = None) -> None:
        self._call("set_input_files", list(paths), timeout=_to_timeout(timeout))

    def scroll_into_view(self, timeout: Optional[float] = None) -> None:
        self._call("scroll_into_view_if_needed", timeout=_to_timeout(timeout))

    def get_attribute(self, name: str) -> Optional[str]:
        return self._call("get_attribute", name)

    def text_content(self) -> Optional[str]:
        return self._call("text_content")

    def input_value(self) -> str:
        return self._call("input_value")

    def evaluate(self, script: str, arg: Any = None) -> Any:
        return self._call("evaluate", script, arg)


class PlaywrightBrowserDriver(BrowserDriver):
    """Browser driver backed by Playwright's synchronous API."""

    def __init__(self, config: Optional[BrowserConfig] = None) -> None:
        self._config = config or BrowserConfig()
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._console_callbacks: list[Callable[[ConsoleMessage], None]] = []
        self._response_callbacks: list[Callable[[NetworkResponse], None]] = []
        self._error_callbacks: list[Callable[[PageError], None]] = []
        self._navigation_callbacks: list[Callable[[str], None]] = []
        self._inflight: set[Any] = set()
        self._last_network_activity = time.monotonic()

    def start(self) -> None:
        LOGGER.debug("Starting Playwright browser driver")
        self._playwright = sync_playwright().start()
        browser_type = getattr(self._playwright, self._config.browser)
        launch_kwargs: dict[str, Any] = {
            "headless": self._config.headless,
            "slow_mo": self._config.slow_mo * 1000,
        }
        if self._config.browser == "chromium":
            launch_kwargs["args"] = ["--no-sandbox", "--disable-dev-shm-usage"]
        viewport = {"width": self._config.viewport_width, "height": self._config.viewport_height}
        user_data_dir: Optional[Path] = self._config.profile_path
        if user_data_dir:
            user_data_dir.mkdir(parents=True, exist_ok=True)
            self._context = browser_type.launch_persistent_context(
                str(user_data_dir),
                **launch_kwargs,
                viewport=viewport,
            )
            pages = self._context.pages
            self._page = pages[0] if pages else self._context.new_page()
        else:
            self._browser = browser_type.launch(**launch_kwargs)
            self._context = self._browser.new_context(viewport=viewport)
            self._page = self._context.new_page()
        self._attach_listeners()

    def stop(self) -> None:
        LOGGER.debug("Stopping Playwright browser driver")
        try:
            if self._context:
                self._context.close()
        finally:
            if self._browser:
                self._browser.close()
            if self._playwright:
                self._playwright.stop()
        self._context = None
        self._browser = None
        self._playwright = None
        self._page = None

    @property
    def page(self):
        if not self._page:
            raise DriverError("Browser driver is not started")
        return self._page

    @property
    def url(self) -> str:
        return self.page.url

    def title(self) -> str:
        try:
            return self.page.title()
        except Error as exc:
            raise _translate(exc) from exc

    def navigate(self, url: str, timeout: Optional[float] = None, wait_until: str = "load") -> None:
        LOGGER.info("Navigating to %s", url)
        try:
            self.page.goto(url, wait_until=wait_until, timeout=_to_timeout(timeout))
        except Error as exc:
            raise _translate(exc) from exc

    def locate(self, selector: str) -> PlaywrightElement:
        return PlaywrightElement(self.page.locator(selector).first)

    def evaluate(self, script: str, arg: Any = None) -> Any:
        try:
            return self.page.evaluate(script, arg)
        except Error as exc:
            raise _translate(exc) from exc

    def screenshot(self, path: Optional[str] = None, full_page: bool = False) -> bytes:
        try:
            return self.page.screenshot(path=path, full_page=full_page)
        except Error as exc:
            raise _translate(exc) from exc

    def wait_for_selector(
        self,
        selector: str,
        state: ElementState = "visible",
        timeout: Optional[float] = None,
    ) -> None:
        try:
            self.page.wait_for_selector(selector, state=state, timeout=_to_timeout(timeout))
        except Error as exc:
            raise _translate(exc) from exc

    def wait_for_load_state(self, state: str = "load", timeout: Optional[float] = None) -> None:
        try:
            self.page.wait_for_load_state(state, timeout=_to_timeout(timeout))
        except Error as exc:
            raise _translate(exc) from exc

    def press_key(self, key: str) -> None:
        try:
            self.page.keyboard.press(key)
        except Error as exc:
            raise _translate(exc) from exc

    def keyboard_type(self, text: str, delay: float = 0.0) -> None:
        try:
            self.page.keyboard.type(text, delay=delay * 1000)
        except Error as exc:
            raise _translate(exc) from exc

    def pause(self, seconds: float) -> None:
        # wait_for_timeout keeps dispatching page events, time.sleep would not
        self.page.wait_for_timeout(seconds * 1000)

    def is_network_idle(self, quiet_period: float = 0.5) -> bool:
        if self._inflight:
            return False
        return time.monotonic() - self._last_network_activity >= quiet_period

    def on_console(self, callback: Callable[[ConsoleMessage], None]) -> None:
        self._console_callbacks.append(callback)

    def on_response(self, callback: Callable[[NetworkResponse], None]) -> None:
        self._response_callbacks.append(callback)

    def on_page_error(self, callback: Callable[[PageError], None]) -> None:
        self._error_callbacks.append(callback)

    def on_navigation(self, callback: Callable[[str], None]) -> None:
        self._navigation_callbacks.append(callback)

    def _attach_listeners(self) -> None:
        page = self.page
        page.on("console", self._handle_console)
        page.on("pageerror", self._handle_page_error)
        page.on("response", self._handle_response)
        page.on("framenavigated", self._handle_navigation)
        page.on("request", self._handle_request_started)
        page.on("requestfinished", self._handle_request_done)
        page.on("requestfailed", self._handle_request_done)

    def _handle_console(self, message: Any) -> None:
        location = message.location or {}
        where = None
        if location.get("url"):
            where = f"{location['url']}:{location.get('lineNumber', 0)}"
        event = ConsoleMessage(type=message.type, text=message.text, location=where)
        for callback in self._console_callbacks:
            callback(event)

    def _handle_page_error(self, error: Any) -> None:
        event = PageError(message=getattr(error, "message", str(error)))
        for callback in self._error_callbacks:
            callback(event)

    def _handle_response(self, response: Any) -> None:
        request = response.request
        timing = request.timing or {}
        duration = 0.0
        if timing.get("responseEnd", -1) >= 0 and timing.get("requestStart", -1) >= 0:
            duration = timing["responseEnd"] - timing["requestStart"]
        event = NetworkResponse(
            url=request.url,
            method=request.method,
            status=response.status,
            status_text=response.status_text,
            resource_type=request.resource_type,
            duration_ms=duration,
        )
        for callback in self._response_callbacks:
            callback(event)

    def _handle_navigation(self, frame: Any) -> None:
        if self._page is None or frame != self._page.main_frame:
            return
        for callback in self._navigation_callbacks:
            callback(frame.url)

    def _handle_request_started(self, request: Any) -> None:
        self._inflight.add(request)
        self._last_network_activity = time.monotonic()

    def _handle_request_done(self, request: Any) -> None:
        self._inflight.discard(request)
        self._last_network_activity = time.monotonic()
