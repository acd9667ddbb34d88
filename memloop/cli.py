"""memloop CLI with Rich output.

Provides commands for:
- Running the MCP stdio server
- Inspecting the tool catalog and configuration
- Calling a single tool against the configured backends

Usage:
    memloop serve                          # Run the MCP server on stdio
    memloop tools --mode proxied           # List tools a deployment exposes
    memloop config                         # Show resolved configuration
    memloop call greet --args '{"name": "Ada"}'
"""

import asyncio
import json

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from memloop import __version__
from memloop.config import ConfigurationError, DeploymentMode, load_config
from memloop.dispatch import Dispatcher, ToolContext
from memloop.envelope import ToolResponse
from memloop.server import EXIT_CONFIG_ERROR, serve as serve_stdio
from memloop.tools import build_registry

app = typer.Typer(
    name="memloop",
    help="memloop - MCP bridge to an agent memory backend",
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def print_banner():
    banner = Text()
    banner.append("memloop", style="bold cyan")
    banner.append(f" v{__version__}", style="cyan")
    console.print(Panel(banner, border_style="cyan", box=box.ROUNDED))


def _load_or_exit(validate: bool = True):
    try:
        config = load_config()
        if validate:
            config.validate()
    except ConfigurationError as e:
        err_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    return config


@app.command()
def serve():
    """Run the MCP server on stdin/stdout."""
    config = _load_or_exit()
    try:
        asyncio.run(serve_stdio(config))
    except KeyboardInterrupt:
        pass


@app.command()
def tools(
    mode: DeploymentMode = typer.Option(
        DeploymentMode.DIRECT, "--mode", "-m", help="Deployment mode to list tools for"
    ),
    schemas: bool = typer.Option(False, "--schemas", help="Print full JSON schemas"),
):
    """List the tools exposed to the host."""
    registry = build_registry(mode)
    if schemas:
        console.print_json(registry.catalog_json())
        return

    print_banner()
    table = Table(title=f"Tools ({mode.value} mode)", box=box.ROUNDED)
    table.add_column("Tool", style="cyan")
    table.add_column("Required", style="green")
    table.add_column("Alias of", style="dim")
    table.add_column("Description")
    for tool in registry.list_tools():
        required = ", ".join(tool.input_schema["required"]) or "-"
        table.add_row(tool.name, required, tool.alias_of or "-", tool.description[:70])
    console.print(table)
    console.print(f"\n[bold]{len(registry)}[/bold] tools")


@app.command()
def config():
    """Show the resolved configuration, credentials masked."""
    settings = _load_or_exit(validate=False)
    print_banner()
    table = Table(title="Configuration", box=box.ROUNDED)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in settings.describe().items():
        table.add_row(key, value)
    console.print(table)

    try:
        settings.validate()
    except ConfigurationError as e:
        console.print(f"\n[red]Invalid:[/red] {e}")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    console.print("\n[green]Configuration is valid[/green]")


async def _call_once(name: str, arguments: dict) -> ToolResponse:
    settings = _load_or_exit()
    context = ToolContext.from_config(settings)
    dispatcher = Dispatcher(build_registry(settings.mode), context)
    try:
        return await dispatcher.execute(name, arguments)
    finally:
        await context.aclose()


@app.command()
def call(
    name: str = typer.Argument(..., help="Tool name"),
    args: str = typer.Option("{}", "--args", "-a", help="Tool arguments as a JSON object"),
):
    """Call one tool and print its response."""
    try:
        arguments = json.loads(args)
    except json.JSONDecodeError as e:
        err_console.print(f"[red]--args is not valid JSON:[/red] {e}")
        raise typer.Exit(1)

    response = asyncio.run(_call_once(name, arguments))
    style = "red" if response.is_error else "green"
    console.print(Panel(response.text, title=name, border_style=style, box=box.ROUNDED))
    if response.is_error:
        raise typer.Exit(1)


def main():
    app()


if __name__ == "__main__":
    main()
