"""Notification channels for session and scenario progress."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from rich.console import Console

from ..models import NotificationEvent, NotificationLevel

LOGGER = logging.getLogger(__name__)

_STYLES = {
    NotificationLevel.INFO: "cyan",
    NotificationLevel.WARNING: "yellow",
    NotificationLevel.ERROR: "red",
    NotificationLevel.SUCCESS: "green",
}

_LOG_LEVELS = {
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.WARNING: logging.WARNING,
    NotificationLevel.ERROR: logging.ERROR,
    NotificationLevel.SUCCESS: logging.INFO,
}


class Notifier(ABC):
    """Interface for reporting pilot events to a person watching the run."""

    @abstractmethod
    def notify(self, event: NotificationEvent) -> None:
        """Send a notification event."""


class ConsoleNotifier(Notifier):
    """Print events to the terminal using Rich."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self._console = console or Console()

    def notify(self, event: NotificationEvent) -> None:
        style = _STYLES.get(event.level, "white")
        self._console.print(f"[{event.level.value.upper()}] {event.message}", style=style, markup=False)
        for key, value in event.data.items():
            self._console.print(f"  {key}: {value}", style="dim", markup=False)


class LoggingNotifier(Notifier):
    """Forward events to the standard logging system."""

    def notify(self, event: NotificationEvent) -> None:
        LOGGER.log(_LOG_LEVELS.get(event.level, logging.INFO), "%s: %s", event.type, event.message)


class CompositeNotifier(Notifier):
    """Fan-out notifier that propagates events to multiple notifiers."""

    def __init__(self, notifiers: Iterable[Notifier]) -> None:
        self._notifiers = list(notifiers)

    def notify(self, event: NotificationEvent) -> None:
        for notifier in self._notifiers:
            notifier.notify(event)
