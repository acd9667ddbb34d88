"""Tests for the MCP stdio layer."""

from importlib.metadata import version

import pytest
from mcp import types

from memloop.config import ConfigurationError, DeploymentMode
from memloop.envelope import ToolResponse, error_response
from memloop.server import (
    EXIT_CONFIG_ERROR,
    EXIT_STARTUP_ERROR,
    create_server,
    main,
    to_call_tool_result,
    to_mcp_tool,
)
from memloop.tools import build_registry


class TestConversion:
    """Envelope to MCP type conversion."""

    def test_success_result(self):
        result = to_call_tool_result(ToolResponse(text="hello"))
        assert result.isError is False
        assert result.content[0].type == "text"
        assert result.content[0].text == "hello"

    def test_error_result(self):
        result = to_call_tool_result(error_response("boom"))
        assert result.isError is True
        assert result.content[0].text == "Error: boom"

    def test_tool_carries_schema(self):
        tool = to_mcp_tool(build_registry(DeploymentMode.DIRECT).get("search_memory"))
        assert tool.name == "search_memory"
        assert tool.inputSchema["required"] == ["query"]


class TestHandlers:
    """Requests routed through the low-level server's handlers."""

    def test_installed_sdk_has_decorator_api(self):
        """The handlers below use the 1.x low-level decorators."""
        assert version("mcp").split(".")[0] == "1"

    @pytest.mark.asyncio
    async def test_list_tools_matches_registry(self, dispatcher):
        server = create_server(dispatcher.registry, dispatcher)

        result = await server.request_handlers[types.ListToolsRequest](types.ListToolsRequest(method="tools/list"))

        names = [tool.name for tool in result.root.tools]
        assert names == dispatcher.registry.names()

    @pytest.mark.asyncio
    async def test_list_resources_is_empty(self, dispatcher):
        server = create_server(dispatcher.registry, dispatcher)

        result = await server.request_handlers[types.ListResourcesRequest](
            types.ListResourcesRequest(method="resources/list")
        )

        assert result.root.resources == []

    @pytest.mark.asyncio
    async def test_call_tool_goes_through_dispatcher(self, dispatcher):
        server = create_server(dispatcher.registry, dispatcher)
        request = types.CallToolRequest(
            method="tools/call",
            params=types.CallToolRequestParams(name="greet", arguments={"name": "Ada"}),
        )

        result = await server.request_handlers[types.CallToolRequest](request)

        assert result.root.isError is False
        assert result.root.content[0].text.startswith("Hello Ada!")

    @pytest.mark.asyncio
    async def test_unknown_tool_is_error_result(self, dispatcher):
        server = create_server(dispatcher.registry, dispatcher)
        request = types.CallToolRequest(
            method="tools/call",
            params=types.CallToolRequestParams(name="does_not_exist", arguments={}),
        )

        result = await server.request_handlers[types.CallToolRequest](request)

        assert result.root.isError is True
        assert result.root.content[0].text == "Error: Unknown tool: does_not_exist"


class TestMain:
    """Process exit codes."""

    def test_configuration_error_exits_2(self, monkeypatch):
        def broken_config():
            raise ConfigurationError("MEMLOOP_MODE must be one of: direct, proxied")

        monkeypatch.setattr("memloop.server.load_config", broken_config)

        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == EXIT_CONFIG_ERROR

    def test_missing_credentials_exit_2(self, monkeypatch, config):
        config.token = None
        monkeypatch.setattr("memloop.server.load_config", lambda: config)

        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == EXIT_CONFIG_ERROR

    def test_startup_failure_exits_1(self, monkeypatch, config):
        async def failing_serve(_config):
            raise OSError("stdin closed")

        monkeypatch.setattr("memloop.server.load_config", lambda: config)
        monkeypatch.setattr("memloop.server.serve", failing_serve)

        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == EXIT_STARTUP_ERROR
