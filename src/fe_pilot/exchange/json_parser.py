"""Utilities for parsing decision payloads written by the decision-maker."""

from __future__ import annotations

import json
from typing import Any

import pydantic
import yaml

from ..errors import ValidationError
from ..models import Decision


def extract_json_object(text: str) -> dict[str, Any]:
    """Extract the first JSON object found in *text* and return it as a dict."""

    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _strip_code_fence(cleaned)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise ValueError("No JSON object found in response")
    return json.loads(cleaned[start : end + 1])


def load_payload(text: str, fmt: str = "json") -> dict[str, Any]:
    """Decode a decision file in ``fmt``; JSON may be wrapped in a code fence."""

    if fmt == "yaml":
        body = _strip_code_fence(text.strip()) if text.lstrip().startswith("```") else text
        try:
            data = yaml.safe_load(body)
        except yaml.YAMLError as exc:
            raise ValueError(f"Malformed decision YAML: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("Decision YAML must be a mapping")
        return data
    return extract_json_object(text)


def parse_decision(text: str, fmt: str = "json") -> Decision:
    """Parse raw decision text into a :class:`Decision`.

    Raises :class:`ValueError` when the payload is not decodable yet (for
    example a partially written file) and :class:`ValidationError` when it
    decodes but does not describe a valid decision.
    """

    data = load_payload(text, fmt)
    try:
        return Decision.model_validate(data)
    except pydantic.ValidationError as exc:
        errors = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        raise ValidationError(f"Invalid decision: {'; '.join(errors)}", errors) from exc


def _strip_code_fence(block: str) -> str:
    parts = block.split("```")
    if len(parts) >= 3:
        body = parts[1]
        first_line, _, rest = body.partition("\n")
        if first_line.strip().isalpha():
            return rest
        return body
    return block.strip("`")
