"""Factories for constructing components from configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .browser.playwright_session import PlaywrightBrowserDriver
from .config import BrowserConfig, ExchangeConfig, NotificationConfig, ObstacleConfig
from .exchange.base import DecisionChannel
from .exchange.files import FileExchange
from .exchange.mock import ScriptedDecisionChannel
from .notifications.base import CompositeNotifier, ConsoleNotifier, LoggingNotifier, Notifier
from .obstacles.advisor import ObstacleAdvisor, OpenAIObstacleAdvisor


def build_driver(config: BrowserConfig) -> PlaywrightBrowserDriver:
    return PlaywrightBrowserDriver(config)


def build_channel(config: ExchangeConfig, session_dir: Path) -> DecisionChannel:
    channel = config.channel.lower()
    if channel == "files":
        return FileExchange(
            session_dir,
            fmt=config.format,
            poll_interval=config.poll_interval,
            timeout=config.decision_timeout,
        )
    if channel == "scripted":
        return ScriptedDecisionChannel(config.decisions)
    raise ValueError(f"Unsupported exchange channel: {config.channel}")


def build_advisor(config: ObstacleConfig) -> Optional[ObstacleAdvisor]:
    """Return the obstacle advisor, or ``None`` when AI assistance is off."""

    if config.ai_mode == "disabled" or not config.advisor.model:
        return None
    provider = config.advisor.provider.lower()
    if provider in {"openai", "azure", "openai-compatible"}:
        return OpenAIObstacleAdvisor(config.advisor)
    raise ValueError(f"Unsupported advisor provider: {config.advisor.provider}")


def build_notifier(config: NotificationConfig) -> Notifier:
    channel = config.channel.lower()
    if channel == "console":
        return ConsoleNotifier()
    if channel == "log":
        return LoggingNotifier()
    if channel == "both":
        return CompositeNotifier([ConsoleNotifier(), LoggingNotifier()])
    raise ValueError(f"Unsupported notification channel: {config.channel}")
