"""Browser driver abstractions consumed by the executor and observer."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional, Sequence

ElementState = Literal["attached", "detached", "visible", "hidden"]


@dataclass
class ConsoleMessage:
    """Console output emitted by the page."""

    type: str
    text: str
    location: Optional[str] = None


@dataclass
class NetworkResponse:
    """A network response observed by the page."""

    url: str
    method: str
    status: int
    status_text: str = ""
    resource_type: str = ""
    duration_ms: float = 0.0


@dataclass
class PageError:
    """An uncaught exception thrown by page scripts."""

    message: str


class DriverError(RuntimeError):
    """Raised when a driver operation fails."""


class DriverTimeout(DriverError):
    """Raised when a driver operation exceeds its timeout."""


class ElementHandle(ABC):
    """A lazily resolved element on the current page.

    Timeouts are expressed in seconds; ``None`` means the driver default.
    """

    @abstractmethod
    def wait_for(self, state: ElementState = "visible", timeout: Optional[float] = None) -> None:
        """Block until the element reaches ``state`` or raise :class:`DriverTimeout`."""

    @abstractmethod
    def count(self) -> int:
        """Return how many elements currently match."""

    @abstractmethod
    def nth(self, index: int) -> "ElementHandle":
        """Return the ``index``-th match."""

    @abstractmethod
    def locate(self, selector: str) -> "ElementHandle":
        """Return a handle for a descendant of this element."""

    @abstractmethod
    def is_visible(self) -> bool: ...

    @abstractmethod
    def is_enabled(self) -> bool: ...

    @abstractmethod
    def is_checked(self) -> bool: ...

    @abstractmethod
    def click(self, timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    def fill(self, value: str, timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    def type(self, text: str, delay: float = 0.0, timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    def press(self, key: str, timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    def hover(self, timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    def focus(self, timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    def blur(self, timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    def check(self, timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    def uncheck(self, timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    def select_option(
        self,
        *,
        value: Optional[str] = None,
        label: Optional[str] = None,
        index: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> list[str]:
        """Select an option of a native ``<select>`` and return the selected values."""

    @abstractmethod
    def set_input_files(self, paths: Sequence[str], timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    def scroll_into_view(self, timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    def get_attribute(self, name: str) -> Optional[str]: ...

    @abstractmethod
    def text_content(self) -> Optional[str]: ...

    @abstractmethod
    def input_value(self) -> str: ...

    @abstractmethod
    def evaluate(self, script: str, arg: Any = None) -> Any:
        """Evaluate ``script`` (a JS function receiving the element) in the page."""

    def tag_name(self) -> str:
        return str(self.evaluate("el => el.tagName.toLowerCase()") or "")


class BrowserDriver(ABC):
    """Interface for an automation-capable browser page."""

    @abstractmethod
    def start(self) -> None:
        """Launch the browser."""

    @abstractmethod
    def stop(self) -> None:
        """Terminate the browser."""

    @property
    @abstractmethod
    def url(self) -> str:
        """Current page URL."""

    @abstractmethod
    def title(self) -> str: ...

    @abstractmethod
    def navigate(self, url: str, timeout: Optional[float] = None, wait_until: str = "load") -> None: ...

    @abstractmethod
    def locate(self, selector: str) -> ElementHandle:
        """Return a handle for the first element matching ``selector``."""

    @abstractmethod
    def evaluate(self, script: str, arg: Any = None) -> Any: ...

    @abstractmethod
    def screenshot(self, path: Optional[str] = None, full_page: bool = False) -> bytes: ...

    @abstractmethod
    def wait_for_selector(
        self,
        selector: str,
        state: ElementState = "visible",
        timeout: Optional[float] = None,
    ) -> None: ...

    @abstractmethod
    def wait_for_load_state(self, state: str = "load", timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    def press_key(self, key: str) -> None:
        """Press a key (or ``Modifier+Key`` combination) on the focused element."""

    @abstractmethod
    def keyboard_type(self, text: str, delay: float = 0.0) -> None:
        """Type raw text into whatever currently has focus."""

    @abstractmethod
    def pause(self, seconds: float) -> None:
        """Wait while still dispatching driver events."""

    @abstractmethod
    def is_network_idle(self, quiet_period: float = 0.5) -> bool:
        """Return True when no request has been in flight for ``quiet_period`` seconds."""

    @abstractmethod
    def on_console(self, callback: Callable[[ConsoleMessage], None]) -> None: ...

    @abstractmethod
    def on_response(self, callback: Callable[[NetworkResponse], None]) -> None: ...

    @abstractmethod
    def on_page_error(self, callback: Callable[[PageError], None]) -> None: ...

    @abstractmethod
    def on_navigation(self, callback: Callable[[str], None]) -> None:
        """Subscribe to main-frame navigations."""
