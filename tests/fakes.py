"""In-memory browser driver used by the test-suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from fe_pilot.browser.base import (
    BrowserDriver,
    ConsoleMessage,
    DriverError,
    DriverTimeout,
    ElementHandle,
    NetworkResponse,
    PageError,
)
from fe_pilot.executor.fill import CLASSIFY_SCRIPT, FIELD_TEXT_SCRIPT, OPTIONS_SCRIPT
from fe_pilot.models import NotificationEvent
from fe_pilot.notifications.base import Notifier

TAG_SCRIPT = "el => el.tagName.toLowerCase()"


class FakeElement(ElementHandle):
    def __init__(
        self,
        driver: "FakeDriver",
        selector: str,
        *,
        tag: str = "input",
        input_type: str = "text",
        visible: bool = True,
        attached: bool = True,
        enabled: bool = True,
        checked: bool = False,
        value: str = "",
        text: str = "",
        options: Optional[list[dict[str, str]]] = None,
        accepts_fill: bool = True,
        on_click: Optional[Callable[["FakeDriver"], None]] = None,
    ) -> None:
        self.driver = driver
        self.selector = selector
        self.tag = tag
        self.input_type = input_type
        self.visible = visible
        self.attached = attached
        self.enabled = enabled
        self.checked = checked
        self.value = value
        self.text = text
        self.options = options or []
        self.accepts_fill = accepts_fill
        self.on_click = on_click
        self.files: list[str] = []
        self.attributes: dict[str, str] = {}
        self.children: dict[str, FakeElement] = {}

    def _record(self, name: str, *args: Any) -> None:
        self.driver.calls.append((name, self.selector, *args))

    def _require(self) -> None:
        if not self.attached:
            raise DriverTimeout(f"Timeout waiting for {self.selector}")

    def wait_for(self, state="visible", timeout=None) -> None:
        self.driver.waits.append((self.selector, state, timeout))
        if state == "attached" and not self.attached:
            raise DriverTimeout(f"{self.selector} not attached")
        if state == "visible" and not self.is_visible():
            raise DriverTimeout(f"{self.selector} not visible")
        if state == "hidden" and self.is_visible():
            raise DriverTimeout(f"{self.selector} still visible")

    def count(self) -> int:
        return 1 if self.attached else 0

    def nth(self, index: int) -> "FakeElement":
        return self

    def locate(self, selector: str) -> "FakeElement":
        return self.children.get(selector) or FakeElement(
            self.driver, selector, visible=False, attached=False
        )

    def is_visible(self) -> bool:
        return self.attached and self.visible

    def is_enabled(self) -> bool:
        return self.enabled

    def is_checked(self) -> bool:
        return self.checked

    def click(self, timeout=None) -> None:
        self._require()
        self._record("click")
        if self.tag == "input" and self.input_type in {"checkbox", "radio"}:
            self.checked = not self.checked
        if self.on_click:
            self.on_click(self.driver)

    def fill(self, value: str, timeout=None) -> None:
        self._require()
        self._record("fill", value)
        if self.accepts_fill or value == "":
            self.value = value

    def type(self, text: str, delay: float = 0.0, timeout=None) -> None:
        self._require()
        self._record("type", text)
        self.value += text

    def press(self, key: str, timeout=None) -> None:
        self._record("press", key)

    def hover(self, timeout=None) -> None:
        self._require()
        self._record("hover")

    def focus(self, timeout=None) -> None:
        self._record("focus")
        self.driver.focused = self

    def blur(self, timeout=None) -> None:
        self._record("blur")

    def check(self, timeout=None) -> None:
        self._record("check")
        self.checked = True

    def uncheck(self, timeout=None) -> None:
        self._record("uncheck")
        self.checked = False

    def select_option(self, *, value=None, label=None, index=None, timeout=None) -> list[str]:
        self._record("select_option", value, label, index)
        for position, option in enumerate(self.options):
            if (
                (value is not None and option["value"] == value)
                or (label is not None and option["label"] == label)
                or (index is not None and position == index)
            ):
                self.value = option["value"]
                return [self.value]
        raise DriverError(f"No option matches value={value} label={label} index={index}")

    def set_input_files(self, paths: Sequence[str], timeout=None) -> None:
        self._record("set_input_files", list(paths))
        self.files = list(paths)

    def scroll_into_view(self, timeout=None) -> None:
        self._record("scroll_into_view")

    def get_attribute(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    def text_content(self) -> Optional[str]:
        return self.text

    def input_value(self) -> str:
        return self.value

    def evaluate(self, script: str, arg: Any = None) -> Any:
        if script == TAG_SCRIPT:
            return self.tag
        if script == CLASSIFY_SCRIPT:
            return {"tag": self.tag, "type": self.input_type}
        if script == OPTIONS_SCRIPT:
            return list(self.options)
        if script == FIELD_TEXT_SCRIPT:
            return self.value or self.text
        return None


class FakeDriver(BrowserDriver):
    """Scriptable stand-in for a browser page.

    Elements are registered by selector with :meth:`add`; anything else
    resolves to a detached element. ``scripts`` maps page scripts to a value
    or a callable receiving the script argument.
    """

    def __init__(self, url: str = "about:blank", title: str = "") -> None:
        self.current_url = url
        self.page_title = title
        self.elements: dict[str, FakeElement] = {}
        self.scripts: dict[str, Any] = {}
        self.routes: dict[str, Callable[["FakeDriver"], None]] = {}
        self.calls: list[tuple] = []
        self.waits: list[tuple] = []
        self.pauses: list[float] = []
        self.keys: list[str] = []
        self.typed: list[str] = []
        self.navigations: list[str] = []
        self.screenshots: list[str] = []
        self.focused: Optional[FakeElement] = None
        self.network_idle = True
        self.started = False
        self.stopped = False
        self.fail_navigation: Optional[Exception] = None
        self._console_callbacks: list[Callable[[ConsoleMessage], None]] = []
        self._response_callbacks: list[Callable[[NetworkResponse], None]] = []
        self._page_error_callbacks: list[Callable[[PageError], None]] = []
        self._navigation_callbacks: list[Callable[[str], None]] = []

    def add(self, selector: str, **kwargs: Any) -> FakeElement:
        element = FakeElement(self, selector, **kwargs)
        self.elements[selector] = element
        return element

    def remove(self, selector: str) -> None:
        self.elements.pop(selector, None)

    # events

    def emit_console(self, message_type: str, text: str) -> None:
        for callback in self._console_callbacks:
            callback(ConsoleMessage(type=message_type, text=text))

    def emit_response(self, url: str, status: int, method: str = "GET") -> None:
        for callback in self._response_callbacks:
            callback(NetworkResponse(url=url, method=method, status=status))

    def emit_page_error(self, message: str) -> None:
        for callback in self._page_error_callbacks:
            callback(PageError(message=message))

    def set_url(self, url: str) -> None:
        self.current_url = url
        for callback in self._navigation_callbacks:
            callback(url)

    # BrowserDriver

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    @property
    def url(self) -> str:
        return self.current_url

    def title(self) -> str:
        return self.page_title

    def navigate(self, url: str, timeout=None, wait_until: str = "load") -> None:
        self.navigations.append(url)
        if self.fail_navigation is not None:
            raise self.fail_navigation
        self.set_url(url)
        route = self.routes.get(url)
        if route:
            route(self)

    def locate(self, selector: str) -> FakeElement:
        return self.elements.get(selector) or FakeElement(
            self, selector, visible=False, attached=False
        )

    def evaluate(self, script: str, arg: Any = None) -> Any:
        handler = self.scripts.get(script)
        if callable(handler):
            return handler(arg)
        return handler

    def screenshot(self, path=None, full_page: bool = False) -> bytes:
        if path:
            Path(path).write_bytes(b"png")
            self.screenshots.append(path)
        return b"png"

    def wait_for_selector(self, selector, state="visible", timeout=None) -> None:
        self.locate(selector).wait_for(state=state, timeout=timeout)

    def wait_for_load_state(self, state: str = "load", timeout=None) -> None:
        return None

    def press_key(self, key: str) -> None:
        self.keys.append(key)

    def keyboard_type(self, text: str, delay: float = 0.0) -> None:
        self.typed.append(text)
        if self.focused is not None:
            self.focused.value += text

    def pause(self, seconds: float) -> None:
        self.pauses.append(seconds)

    def is_network_idle(self, quiet_period: float = 0.5) -> bool:
        return self.network_idle

    def on_console(self, callback) -> None:
        self._console_callbacks.append(callback)

    def on_response(self, callback) -> None:
        self._response_callbacks.append(callback)

    def on_page_error(self, callback) -> None:
        self._page_error_callbacks.append(callback)

    def on_navigation(self, callback) -> None:
        self._navigation_callbacks.append(callback)


class CollectingNotifier(Notifier):
    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.type for event in self.events]
