"""Tests for the dispatcher boundary."""

from typing import Any

import pytest
import respx
from httpx import Response
from pydantic import Field

from memloop.dispatch import Dispatcher
from memloop.envelope import ToolResponse
from memloop.registry import Registry, define_tool
from memloop.tools import build_registry
from memloop.tools.common import ToolArgs


def sample_value(schema: dict[str, Any]) -> Any:
    """Smallest value satisfying a property schema."""
    if "enum" in schema:
        return schema["enum"][0]
    kind = schema.get("type")
    if kind == "string":
        return "x"
    if kind == "integer":
        return max(1, schema.get("minimum", 1))
    if kind == "number":
        return 0.5
    if kind == "boolean":
        return True
    if kind == "array":
        item = sample_value(schema.get("items", {"type": "string"}))
        return [item, f"{item}-2"] if isinstance(item, str) else [item, item]
    if kind == "object":
        return minimal_arguments(schema)
    return "x"


def minimal_arguments(schema: dict[str, Any]) -> dict[str, Any]:
    """Only the required arguments, each with a valid sample value."""
    properties = schema.get("properties", {})
    return {name: sample_value(properties[name]) for name in schema.get("required", [])}


class _Args(ToolArgs):
    query: str = Field(..., min_length=1)


async def _explode(ctx, args):
    raise RuntimeError("handler blew up")


class TestEnvelope:
    """Tests for response envelopes."""

    def test_success_envelope(self):
        assert ToolResponse("hi").to_dict() == {"content": [{"type": "text", "text": "hi"}]}

    def test_error_envelope(self):
        assert ToolResponse("Error: x", is_error=True).to_dict() == {
            "content": [{"type": "text", "text": "Error: x"}],
            "isError": True,
        }


class TestDispatcher:
    """Tests for Dispatcher.execute."""

    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher):
        """Unknown names become an error envelope."""
        response = await dispatcher.execute("no_such_tool", {})

        assert response.is_error
        assert response.text == "Error: Unknown tool: no_such_tool"

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_required_argument_makes_no_request(self, dispatcher):
        """Validation fails before any backend call."""
        response = await dispatcher.execute("search_memory", {"limit": 5})

        assert response.is_error
        assert "query" in response.text
        assert respx.calls.call_count == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_conversation_rejected_locally(self, dispatcher):
        response = await dispatcher.execute("send_full_conversation", {"conversation": [], "session_id": "s-1"})

        assert response.is_error
        assert "conversation" in response.text
        assert respx.calls.call_count == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_consolidate_needs_two_patterns(self, dispatcher):
        response = await dispatcher.execute("consolidate", {"pattern_ids": ["p-1"]})

        assert response.is_error
        assert "pattern_ids" in response.text

    @pytest.mark.asyncio
    async def test_non_object_arguments(self, dispatcher):
        response = await dispatcher.execute("greet", ["not", "an", "object"])
        assert response.is_error

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error_envelope(self, context):
        """Unexpected handler failures never escape."""
        registry = Registry([define_tool("explode", "always fails", _Args, _explode)])
        dispatcher = Dispatcher(registry, context)

        response = await dispatcher.execute("explode", {"query": "x"})

        assert response.is_error
        assert response.text == "Error: handler blew up"

    @pytest.mark.asyncio
    async def test_greet_needs_no_backend(self, dispatcher):
        response = await dispatcher.execute("greet", {"name": "Ada"})

        assert not response.is_error
        assert "Hello Ada" in response.text

    @pytest.mark.asyncio
    @respx.mock
    async def test_every_tool_returns_an_envelope(self, dispatcher):
        """With every backend failing, each tool still answers with an envelope."""
        respx.route().mock(return_value=Response(500, text="backend down"))

        for tool in build_registry().list_tools():
            response = await dispatcher.execute(tool.name, minimal_arguments(tool.schema()))
            assert isinstance(response, ToolResponse), tool.name
            assert isinstance(response.text, str) and response.text, tool.name
            assert set(response.to_dict()) <= {"content", "isError"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_backend_failure_surfaces_as_error(self, dispatcher):
        """Write tools report backend errors with isError."""
        respx.post("http://memory.test/api/v1/secrets/store").mock(return_value=Response(503, text="overloaded"))

        response = await dispatcher.execute("store_secret", {"service": "github", "value": "v"})

        assert response.is_error
        assert "503" in response.text
        assert "overloaded" in response.text
