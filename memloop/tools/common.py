"""Shared helpers for tool handlers."""

from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict


class ToolArgs(BaseModel):
    """Base for tool argument models: unknown keys ignored, aliases accepted."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def as_mapping(value: Any, key: str = "result") -> dict[str, Any]:
    """Backends occasionally answer with a list or plain text; wrap it."""
    if isinstance(value, dict):
        return value
    return {key: value}


def number(value: Any, default: float) -> float:
    """value as a float, or default when it is missing or not numeric."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def segment(value: str) -> str:
    """Quote a value for use as one URL path segment."""
    return quote(str(value), safe="")


def kebab(name: str) -> str:
    return name.replace("_", "-")
