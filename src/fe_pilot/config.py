"""Configuration models for fe-pilot."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Credentials


class LLMConfig(BaseModel):
    """Settings for the optional obstacle advisor model."""

    provider: str = Field(default="openai")
    model: Optional[str] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class BrowserConfig(BaseModel):
    """Settings for the browser backend."""

    browser: Literal["chromium", "firefox", "webkit"] = "chromium"
    profile_path: Optional[Path] = None
    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 720
    slow_mo: float = Field(default=0.0, description="Delay between driver operations in seconds.")


class ExecutorConfig(BaseModel):
    """Timeouts and limits for the action executor."""

    default_timeout: float = 10.0
    navigation_timeout: float = 30.0
    fallback_timeout: float = Field(
        default=2.0,
        description="Per-alternative timeout when a target lists several locators.",
    )
    max_action_repeats: int = Field(default=3, ge=2)
    wait_poll_interval: float = 0.1
    typing_delay: float = 0.05


class ObserverConfig(BaseModel):
    """Caps applied to the DOM summary of each observation."""

    max_text: int = 50
    max_links: int = 20
    max_buttons: int = 50
    max_inputs: int = 50
    full_page_screenshots: bool = False


class ExchangeConfig(BaseModel):
    """Settings for the decision exchange."""

    channel: Literal["files", "scripted"] = "files"
    decisions: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Decisions served in order by the scripted channel.",
    )
    format: Literal["json", "yaml"] = "json"
    decision_timeout: float = Field(default=300.0, description="Seconds to wait for a decision.")
    poll_interval: float = 1.0


class ObstacleConfig(BaseModel):
    """Settings for clearing blocking UI elements."""

    enabled: bool = True
    max_iterations: int = 5
    ai_mode: Literal["disabled", "hybrid", "always"] = "disabled"
    max_ai_cost: Optional[float] = Field(
        default=None,
        description="Upper bound on estimated advisor spend per session.",
    )
    cost_per_call: float = 0.02
    settle_delay: float = 0.5
    advisor: LLMConfig = Field(default_factory=LLMConfig)


class ExplorationConfig(BaseModel):
    """Budgets for autonomous exploration."""

    max_steps: int = Field(default=50, ge=1)
    max_checkpoints: Optional[int] = Field(default=None, ge=1)
    sessions_dir: Path = Path("fe-pilot-sessions")
    max_invalid_decisions: int = 3


class FormConfig(BaseModel):
    """Settings for form analysis and testing."""

    mode: Literal["quick", "standard", "full"] = "standard"
    settle_delay: float = Field(
        default=0.5,
        description="Seconds to wait for validation feedback after leaving a field.",
    )
    submit_timeout: float = Field(default=5.0, description="Seconds to wait for network idle after submit.")


class NotificationConfig(BaseModel):
    """Notification channel settings."""

    channel: str = Field(default="console")
    target: Optional[str] = None
    options: dict[str, Any] = Field(default_factory=dict)


class PilotConfig(BaseSettings):
    """Top-level configuration for scenario runs and explorations."""

    model_config = SettingsConfigDict(
        env_prefix="FE_PILOT_",
        env_file=(".env",),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    observer: ObserverConfig = Field(default_factory=ObserverConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    obstacles: ObstacleConfig = Field(default_factory=ObstacleConfig)
    exploration: ExplorationConfig = Field(default_factory=ExplorationConfig)
    forms: FormConfig = Field(default_factory=FormConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    output_dir: Path = Path("fe-pilot-results")
    credentials: Optional[Credentials] = None


def load_config(
    path: Path | None = None,
    *,
    env_file: Path | None = None,
    **overrides: object,
) -> PilotConfig:
    """Load configuration from an optional file and overrides."""

    data: dict[str, Any] = {}
    if path:
        import yaml

        data = yaml.safe_load(path.read_text()) or {}
    if overrides:
        _deep_update(data, overrides)
    settings_kwargs: dict[str, object] = {}
    if env_file is not None:
        settings_kwargs["_env_file"] = env_file
    config = PilotConfig(**data, **settings_kwargs)
    if not data:
        return config

    merged = config.model_dump(mode="python")
    _deep_update(merged, data)
    return PilotConfig.model_validate(merged)


def _deep_update(target: dict[str, Any], updates: Mapping[str, Any]) -> None:
    """Recursively merge ``updates`` into ``target`` in-place."""

    for key, value in updates.items():
        if (
            isinstance(value, Mapping)
            and isinstance(existing := target.get(key), Mapping)
        ):
            nested: dict[str, Any]
            if isinstance(existing, dict):
                nested = existing
            else:
                nested = dict(existing)
            _deep_update(nested, value)
            target[key] = nested
        else:
            target[key] = value
