"""Append-only logs of console and network events with monotonic read cursors."""

from __future__ import annotations

import enum
import re
import threading
import time
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

from ..browser.base import BrowserDriver, ConsoleMessage, NetworkResponse, PageError


class Severity(str, enum.Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"
    DEBUG = "debug"


class EventSource(str, enum.Enum):
    SCRIPT = "script"
    NETWORK = "network"
    SECURITY = "security"
    FRAMEWORK = "framework"
    BROWSER = "browser"


class NetworkErrorKind(str, enum.Enum):
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"


class ConsoleEntry(BaseModel):
    """A console message or uncaught page error."""

    model_config = ConfigDict(frozen=True)

    seq: int
    type: str
    text: str
    timestamp: float
    location: Optional[str] = None
    severity: Severity = Severity.INFO
    source: EventSource = EventSource.SCRIPT

    @property
    def is_error(self) -> bool:
        return self.type == "error"


class NetworkEntry(BaseModel):
    """A network response."""

    model_config = ConfigDict(frozen=True)

    seq: int
    url: str
    method: str
    status: int
    status_text: str = ""
    resource_type: str = ""
    duration_ms: float = 0.0
    timestamp: float
    error_kind: Optional[NetworkErrorKind] = None

    @property
    def is_error(self) -> bool:
        return self.status >= 400


_CRITICAL_PATTERNS = [re.compile(p, re.I) for p in (r"uncaught", r"fatal", r"TypeError", r"ReferenceError")]
_BENIGN_WARNING_PATTERNS = [
    re.compile(p, re.I) for p in (r"react-dom", r"deprecated", r"devtools", r"hydration")
]


def classify_severity(message_type: str, text: str) -> Severity:
    """Map a console message type and text to a severity bucket."""

    if message_type == "error":
        return Severity.CRITICAL
    if message_type in {"warn", "warning"}:
        if any(pattern.search(text) for pattern in _BENIGN_WARNING_PATTERNS):
            return Severity.INFO
        return Severity.WARNING
    if message_type == "debug":
        return Severity.DEBUG
    return Severity.INFO


def classify_source(text: str) -> EventSource:
    if re.search(r"CORS|cross-origin|blocked|Content Security Policy", text, re.I):
        return EventSource.SECURITY
    if re.search(r"fetch|XMLHttpRequest|net::ERR_|Failed to load resource", text, re.I):
        return EventSource.NETWORK
    if re.search(r"\b(react|vue|angular|next|svelte)\b", text, re.I):
        return EventSource.FRAMEWORK
    if re.search(r"\[(Violation|Intervention|Deprecation)\]", text):
        return EventSource.BROWSER
    return EventSource.SCRIPT


def classify_status(status: int) -> Optional[NetworkErrorKind]:
    if status >= 500:
        return NetworkErrorKind.SERVER_ERROR
    if status >= 400:
        return NetworkErrorKind.CLIENT_ERROR
    return None


T = TypeVar("T")


class EventLog(Generic[T]):
    """Append-only arena. Entries are never removed or reordered."""

    def __init__(self) -> None:
        self._entries: list[T] = []
        self._lock = threading.Lock()

    def append(self, entry: T) -> None:
        with self._lock:
            self._entries.append(entry)

    def next_seq(self) -> int:
        with self._lock:
            return len(self._entries)

    def slice_from(self, position: int) -> tuple[list[T], int]:
        """Return entries from ``position`` and the end position, atomically."""

        with self._lock:
            end = len(self._entries)
            return list(self._entries[position:end]), end

    def entries(self) -> list[T]:
        with self._lock:
            return list(self._entries)

    def cursor(self) -> "EventCursor[T]":
        return EventCursor(self)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class EventCursor(Generic[T]):
    """Monotonic read position into an :class:`EventLog`."""

    def __init__(self, log: EventLog[T]) -> None:
        self._log = log
        self._position = 0

    @property
    def position(self) -> int:
        return self._position

    def drain(self) -> list[T]:
        """Return every entry not yet returned and advance past them."""

        entries, end = self._log.slice_from(self._position)
        self._position = end
        return entries

    def peek(self) -> list[T]:
        entries, _ = self._log.slice_from(self._position)
        return entries


class EventRecorder:
    """Subscribe to driver events and record them in append-only logs."""

    def __init__(self, driver: BrowserDriver) -> None:
        self.console: EventLog[ConsoleEntry] = EventLog()
        self.network: EventLog[NetworkEntry] = EventLog()
        self.page_errors: EventLog[str] = EventLog()
        self.navigations: EventLog[str] = EventLog()
        self._seq_lock = threading.Lock()
        driver.on_console(self.record_console)
        driver.on_page_error(self.record_page_error)
        driver.on_response(self.record_response)
        driver.on_navigation(self.navigations.append)

    def record_console(self, message: ConsoleMessage) -> None:
        with self._seq_lock:
            self.console.append(
                ConsoleEntry(
                    seq=self.console.next_seq(),
                    type=message.type,
                    text=message.text,
                    timestamp=time.time(),
                    location=message.location,
                    severity=classify_severity(message.type, message.text),
                    source=classify_source(message.text),
                )
            )

    def record_page_error(self, error: PageError) -> None:
        self.page_errors.append(error.message)
        with self._seq_lock:
            self.console.append(
                ConsoleEntry(
                    seq=self.console.next_seq(),
                    type="error",
                    text=error.message,
                    timestamp=time.time(),
                    severity=Severity.CRITICAL,
                    source=EventSource.SCRIPT,
                )
            )

    def record_response(self, response: NetworkResponse) -> None:
        with self._seq_lock:
            self.network.append(
                NetworkEntry(
                    seq=self.network.next_seq(),
                    url=response.url,
                    method=response.method,
                    status=response.status,
                    status_text=response.status_text,
                    resource_type=response.resource_type,
                    duration_ms=response.duration_ms,
                    timestamp=time.time(),
                    error_kind=classify_status(response.status),
                )
            )
