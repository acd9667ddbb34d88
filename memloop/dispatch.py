"""Tool dispatch.

Dispatcher.execute is the single boundary between the host and the tool
handlers: it resolves the tool, validates arguments against the tool's
model, runs the handler and turns every outcome, including failures, into
a ToolResponse.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from memloop.audit import AuditTrail
from memloop.client import BackendClient, RestClient
from memloop.config import Config, DeploymentMode
from memloop.correlation import CorrelationStore
from memloop.envelope import ToolResponse, error_response
from memloop.log_config import get_logger, log_timing
from memloop.registry import Registry

log = get_logger("dispatch")


class UnknownToolError(Exception):
    """No tool is registered under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ToolArgumentError(Exception):
    """Arguments failed validation; no backend call was made."""

    def __init__(self, tool: str, message: str):
        self.tool = tool
        super().__init__(f"Invalid arguments for {tool}: {message}")


class RestUnavailableError(Exception):
    """A handler needs the REST interface but none is configured."""


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for issue in error.errors():
        location = ".".join(str(p) for p in issue.get("loc", ())) or "arguments"
        parts.append(f"{location}: {issue.get('msg', 'invalid value')}")
    return "; ".join(parts)


@dataclass
class ToolContext:
    """Everything a handler may touch."""

    config: Config
    memory: BackendClient
    echo: BackendClient
    store: CorrelationStore
    audit: AuditTrail
    rest: RestClient | None = None
    clock: Callable[[], float] = field(default=time.time)

    @classmethod
    def from_config(cls, config: Config, store: CorrelationStore | None = None) -> "ToolContext":
        """Build backend clients for the configured mode."""
        memory_headers = {}
        if config.mode is DeploymentMode.PROXIED and config.user_id:
            memory_headers["X-User-Id"] = config.user_id
        memory = BackendClient(
            config.memory_url,
            token=config.memory_credential,
            headers=memory_headers,
            timeout=config.request_timeout,
            name="memory",
        )
        echo = BackendClient(
            config.echo_url,
            token=config.echo_token,
            timeout=config.request_timeout,
            name="echo",
        )
        rest = None
        if config.rest_enabled:
            rest = RestClient(config.rest_url, config.token, timeout=config.request_timeout)
        store = store or CorrelationStore(
            retention_seconds=config.retention_seconds,
            sweep_interval_seconds=config.sweep_interval_seconds,
        )
        audit = AuditTrail(memory, rest=rest, user_id=config.user_id)
        return cls(config=config, memory=memory, echo=echo, store=store, audit=audit, rest=rest, clock=store.clock)

    @property
    def user_id(self) -> str:
        return self.config.effective_user_id

    def require_rest(self) -> RestClient:
        if self.rest is None:
            raise RestUnavailableError("REST interface is not configured")
        return self.rest

    async def aclose(self) -> None:
        await self.audit.drain()
        for client in (self.memory, self.echo, self.rest):
            if client is not None:
                await client.close()


class Dispatcher:
    """Routes tool calls to handlers and normalizes their results."""

    def __init__(self, registry: Registry, context: ToolContext):
        self.registry = registry
        self.context = context

    async def execute(self, name: str, raw_args: dict[str, Any] | None = None) -> ToolResponse:
        """Run one tool call. Never raises."""
        try:
            with log_timing(f"Tool {name}", log):
                return await self._execute(name, raw_args or {})
        except (UnknownToolError, ToolArgumentError) as e:
            log.warning(str(e))
            return error_response(str(e))
        except Exception as e:
            log.exception(f"Tool {name} failed: {e}")
            return error_response(str(e) or e.__class__.__name__)

    async def _execute(self, name: str, raw_args: dict[str, Any]) -> ToolResponse:
        tool = self.registry.get(name)
        if tool is None:
            raise UnknownToolError(name)

        if not isinstance(raw_args, dict):
            raise ToolArgumentError(name, "arguments must be an object")
        try:
            args = tool.args_model.model_validate(raw_args)
        except ValidationError as e:
            raise ToolArgumentError(name, _format_validation_error(e)) from e

        log.info(f"Tool: {name} called")
        result = await tool.handler(self.context, args)
        if isinstance(result, ToolResponse):
            return result
        return tool.render(result)
