"""MCP stdio server.

Adapts the dispatcher to the Model Context Protocol using the SDK's
low-level Server: tools/list returns the registry as built, tools/call goes
through Dispatcher.execute, resources/list is always empty. stdout carries
protocol frames only; logging goes to stderr.
"""

import asyncio
import sys

from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from memloop import __version__
from memloop.config import Config, ConfigurationError, load_config
from memloop.dispatch import Dispatcher, ToolContext
from memloop.envelope import ToolResponse
from memloop.log_config import get_logger
from memloop.registry import Registry, ToolDefinition
from memloop.tools import build_registry

log = get_logger("server")

SERVER_NAME = "memloop"

EXIT_CONFIG_ERROR = 2
EXIT_STARTUP_ERROR = 1


def to_mcp_tool(tool: ToolDefinition) -> types.Tool:
    return types.Tool(name=tool.name, description=tool.description, inputSchema=tool.schema())


def to_call_tool_result(response: ToolResponse) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=response.text)],
        isError=response.is_error,
    )


def create_server(registry: Registry, dispatcher: Dispatcher) -> Server:
    """Build the MCP server for a registry and dispatcher."""
    server = Server(SERVER_NAME, version=__version__)
    tools = [to_mcp_tool(tool) for tool in registry.list_tools()]

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return tools

    @server.list_resources()
    async def list_resources() -> list[types.Resource]:
        return []

    # Arguments are validated by the dispatcher against the tool's model.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict | None) -> types.CallToolResult:
        response = await dispatcher.execute(name, arguments or {})
        return to_call_tool_result(response)

    return server


async def serve(config: Config) -> None:
    """Run the stdio server until the host closes the stream."""
    registry = build_registry(config.mode)
    context = ToolContext.from_config(config)
    dispatcher = Dispatcher(registry, context)
    server = create_server(registry, dispatcher)

    log.info(
        f"memloop v{__version__} starting: mode={config.mode.value}, "
        f"{len(registry)} tools, memory={config.memory_url}"
    )
    await context.store.start()
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await context.store.stop()
        await context.aclose()
        log.info("memloop stopped")


def main() -> None:
    """Entry point for the memloop-mcp console script."""
    try:
        config = load_config()
        config.validate()
    except ConfigurationError as e:
        log.error(f"Configuration error: {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        log.info("Interrupted")
    except Exception as e:
        log.exception(f"Server failed: {e}")
        sys.exit(EXIT_STARTUP_ERROR)


if __name__ == "__main__":
    main()
