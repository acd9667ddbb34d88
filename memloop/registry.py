"""Tool catalog.

A ToolDefinition pairs a name and description with the pydantic model that
validates its arguments. The JSON schema advertised to the host is
generated from that model once, at definition time, so listing tools never
does any work beyond returning the same objects.
"""

import copy
import json
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel

from memloop.envelope import ToolResponse, json_response

Handler = Callable[[Any, BaseModel], Awaitable[Any]]
Renderer = Callable[[Any], ToolResponse]


def _clean_schema(node: Any, defs: dict[str, Any]) -> Any:
    """Inline $refs, collapse Optional[X] to X and drop pydantic titles."""
    if isinstance(node, list):
        return [_clean_schema(item, defs) for item in node]
    if not isinstance(node, dict):
        return node

    if "$ref" in node:
        target = defs[node["$ref"].rsplit("/", 1)[-1]]
        merged = {**target, **{k: v for k, v in node.items() if k != "$ref"}}
        return _clean_schema(merged, defs)

    any_of = node.get("anyOf")
    if any_of:
        non_null = [s for s in any_of if s.get("type") != "null"]
        if len(non_null) == 1:
            node = {**{k: v for k, v in node.items() if k != "anyOf"}, **non_null[0]}

    cleaned: dict[str, Any] = {}
    for key, value in node.items():
        if key in ("title", "$defs"):
            continue
        if key == "default" and value is None:
            continue
        if key == "properties":
            cleaned[key] = {name: _clean_schema(sub, defs) for name, sub in value.items()}
        else:
            cleaned[key] = _clean_schema(value, defs)
    return cleaned


def schema_for(model: type[BaseModel]) -> dict[str, Any]:
    """JSON schema for a tool's argument model, as advertised to the host."""
    raw = model.model_json_schema(by_alias=True)
    schema = _clean_schema(raw, raw.get("$defs", {}))
    schema["type"] = "object"
    schema.setdefault("properties", {})
    schema.setdefault("required", [])
    return schema


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, MappingProxyType):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class ToolDefinition:
    """One advertised tool and the code behind it.

    Attributes:
        name: Unique tool name
        description: Human-readable description shown to the host
        args_model: Pydantic model validating the arguments
        handler: Coroutine taking (context, args); returns a ToolResponse or
            result data for render
        render: Turns handler data into a ToolResponse
        requires_rest: Only available when the REST interface is configured
        alias_of: Canonical tool name when this is an alias
        input_schema: Read-only JSON schema generated from args_model
    """

    name: str
    description: str
    args_model: type[BaseModel]
    handler: Handler
    render: Renderer
    requires_rest: bool
    alias_of: str | None
    input_schema: MappingProxyType

    def schema(self) -> dict[str, Any]:
        """A mutable copy of the input schema."""
        return _thaw(self.input_schema)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.schema()}


def define_tool(
    name: str,
    description: str,
    args_model: type[BaseModel],
    handler: Handler,
    render: Renderer | None = None,
    requires_rest: bool = False,
    alias_of: str | None = None,
) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=description,
        args_model=args_model,
        handler=handler,
        render=render or json_response,
        requires_rest=requires_rest,
        alias_of=alias_of,
        input_schema=_freeze(copy.deepcopy(schema_for(args_model))),
    )


def alias(canonical: ToolDefinition, name: str, description: str, render: Renderer | None = None) -> ToolDefinition:
    """Another name for canonical with the same handler and arguments."""
    return ToolDefinition(
        name=name,
        description=description,
        args_model=canonical.args_model,
        handler=canonical.handler,
        render=render or canonical.render,
        requires_rest=canonical.requires_rest,
        alias_of=canonical.name,
        input_schema=canonical.input_schema,
    )


class Registry:
    """Immutable, ordered set of tool definitions."""

    def __init__(self, tools: Iterable[ToolDefinition]):
        ordered = tuple(tools)
        index: dict[str, ToolDefinition] = {}
        for tool in ordered:
            if tool.name in index:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            index[tool.name] = tool
        self._tools = ordered
        self._index = MappingProxyType(index)

    def list_tools(self) -> tuple[ToolDefinition, ...]:
        return self._tools

    def get(self, name: str) -> ToolDefinition | None:
        return self._index.get(name)

    def names(self) -> list[str]:
        return [tool.name for tool in self._tools]

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __len__(self) -> int:
        return len(self._tools)

    def catalog_json(self) -> str:
        """Serialized catalog, stable across calls."""
        return json.dumps([tool.to_dict() for tool in self._tools], sort_keys=False)
