"""Optional model-backed advice for obstacles the rules cannot clear."""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, Optional

import httpx
import pydantic
from pydantic import BaseModel, Field

from ..config import LLMConfig
from ..errors import AdvisorError
from ..exchange.json_parser import extract_json_object
from .detection import Obstacle

_PROMPT = """You are a browser automation assistant. An obstacle is blocking access to the page.

Context:
- URL: {url}
- Page title: {title}
- Obstacle type: {obstacle_type}
- Description: {description}
- Obstacle element: {element}
- Credentials available: {credentials}

How should the obstacle be handled? Choose one action: close_modal, fill_login,
dismiss_popup, accept_cookies, wait or report_blocker.

Respond with a JSON object only:
{{
  "action": "close_modal",
  "reasoning": "short explanation",
  "steps": [{{"type": "click", "selector": "button.close"}}, {{"type": "wait", "duration": 0.5}}],
  "confidence": 0.9,
  "fallback": null
}}
Step types are click (selector), type (selector, value), wait (duration in seconds)
and press (key)."""


class AdvisorStep(BaseModel):
    type: Literal["click", "type", "wait", "press"]
    selector: Optional[str] = None
    value: Optional[str] = None
    key: Optional[str] = None
    duration: Optional[float] = Field(default=None, description="Seconds to wait.")


class ObstacleAdvice(BaseModel):
    action: Literal[
        "close_modal",
        "fill_login",
        "dismiss_popup",
        "accept_cookies",
        "wait",
        "report_blocker",
    ]
    reasoning: str = ""
    steps: list[AdvisorStep] = Field(default_factory=list)
    confidence: float = 0.0
    fallback: Optional["ObstacleAdvice"] = None


@dataclass
class ObstacleContext:
    """What the advisor is told about the blocked page."""

    url: str
    title: str
    obstacle: Obstacle
    username: Optional[str] = None
    screenshot: Optional[bytes] = None


class ObstacleAdvisor(ABC):
    """Interface for services that suggest how to clear an obstacle."""

    @abstractmethod
    def advise(self, context: ObstacleContext) -> ObstacleAdvice:
        """Return advice or raise :class:`~fe_pilot.errors.AdvisorError`."""


class OpenAIObstacleAdvisor(ObstacleAdvisor):
    """Ask an OpenAI-compatible chat completion API, attaching a screenshot."""

    def __init__(self, config: LLMConfig) -> None:
        if not config.model:
            raise ValueError("Advisor model must be specified for OpenAIObstacleAdvisor")
        self._config = config
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self._client = httpx.Client(
            base_url=config.base_url or "https://api.openai.com/v1",
            timeout=config.parameters.get("timeout", 60),
            headers=headers,
        )
        self._temperature = config.parameters.get("temperature", 0.3)
        self._max_tokens = config.parameters.get("max_tokens", 500)

    def advise(self, context: ObstacleContext) -> ObstacleAdvice:
        payload = {
            "model": self._config.model,
            "messages": [{"role": "user", "content": self._build_content(context)}],
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }
        try:
            response = self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AdvisorError(f"Advisor request failed: {exc}") from exc
        data = response.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError) as exc:
            raise AdvisorError(f"Unexpected response format: {data}") from exc
        return parse_advice(content)

    def _build_content(self, context: ObstacleContext) -> list[dict[str, object]]:
        prompt = _PROMPT.format(
            url=context.url,
            title=context.title,
            obstacle_type=context.obstacle.type.value,
            description=context.obstacle.description,
            element=context.obstacle.element,
            credentials=f"yes (username: {context.username})" if context.username else "no",
        )
        content: list[dict[str, object]] = [{"type": "text", "text": prompt}]
        if context.screenshot:
            encoded = base64.b64encode(context.screenshot).decode("ascii")
            content.append(
                {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encoded}"}}
            )
        return content


def parse_advice(text: str) -> ObstacleAdvice:
    try:
        return ObstacleAdvice.model_validate(extract_json_object(text))
    except (ValueError, pydantic.ValidationError) as exc:
        raise AdvisorError(f"Unusable advisor response: {exc}") from exc
