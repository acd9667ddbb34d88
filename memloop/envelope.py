"""Tool response envelope.

Every tool call ends in a ToolResponse: one text block plus an error flag.
Structured payloads are rendered as pretty-printed JSON, optionally behind
a human-readable banner.
"""

import json
from dataclasses import dataclass
from typing import Any


@dataclass
class ToolResponse:
    """Result of one tool call.

    Attributes:
        text: The single text block returned to the host
        is_error: Whether the host should treat the call as failed
        data: Structured result the text was rendered from, if any
    """

    text: str
    is_error: bool = False
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        envelope: dict[str, Any] = {"content": [{"type": "text", "text": self.text}]}
        if self.is_error:
            envelope["isError"] = True
        return envelope


def to_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str)


def text_response(text: str, data: Any = None) -> ToolResponse:
    return ToolResponse(text=text, data=data)


def json_response(payload: Any, banner: str | None = None) -> ToolResponse:
    """Render payload as JSON, preceded by banner when given."""
    body = to_json(payload)
    text = f"{banner}\n\n{body}" if banner else body
    return ToolResponse(text=text, data=payload)


def error_response(message: str, data: Any = None) -> ToolResponse:
    return ToolResponse(text=f"Error: {message}", is_error=True, data=data)
