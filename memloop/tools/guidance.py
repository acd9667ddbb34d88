"""Checks an agent runs before or after acting: connectivity, grounding,
conflicts with directives, and recent activity."""

from typing import Any

from pydantic import Field

from memloop import __version__
from memloop.audit import utc_iso
from memloop.dispatch import ToolContext
from memloop.envelope import ToolResponse, text_response
from memloop.registry import define_tool
from memloop.tools.common import ToolArgs, as_mapping

REFLEX_TAGS = {"grounded": "GROUNDED", "conflict": "CONFLICT"}


class GreetArgs(ToolArgs):
    name: str = Field("there", description="Who is connecting")


class ReflexArgs(ToolArgs):
    request: str = Field(..., min_length=1, description="The user's request")
    proposed_answer: str = Field(..., min_length=1, description="The answer you intend to give")
    user_id: str | None = Field(None, description="User ID for personal memories")


class CheckConflictArgs(ToolArgs):
    proposed_action: str = Field(..., min_length=1, description='What you want to do, e.g. "delete all files in /tmp"')
    scope: str | None = Field(None, description='Optional scope filter, e.g. "deployment"')
    include_patterns: bool = Field(True, description="Include pattern conflicts")


class SessionSummaryArgs(ToolArgs):
    time_window_seconds: int = Field(300, ge=1, description="Look back N seconds")
    session_id: str | None = Field(None, description="Only events from this session")


async def greet(ctx: ToolContext, args: GreetArgs) -> ToolResponse:
    text = (
        f"Hello {args.name}!\n\n"
        f"memloop MCP server v{__version__} is running and responding.\n"
        f"Time: {utc_iso()}\n\n"
        "Try search_memory, get_directives or recall_pattern next."
    )
    return text_response(text)


def _numbered(title: str, items: list[Any]) -> list[str]:
    if not items:
        return []
    return [f"{title}:", *(f"  {i}. {item}" for i, item in enumerate(items, 1)), ""]


async def reflex(ctx: ToolContext, args: ReflexArgs) -> ToolResponse:
    result = as_mapping(
        await ctx.memory.post(
            "/api/v1/reflex/check",
            {
                "request": args.request,
                "proposed_answer": args.proposed_answer,
                "context": {"user_id": args.user_id or ctx.user_id},
            },
        )
    )
    tag = REFLEX_TAGS.get(result.get("status"), "SPECULATIVE")
    lines = [
        f"[REFLEX] {tag}",
        f"[REFLEX] Support: {result.get('support_score', 0)}/100 | Confidence: {result.get('confidence', 0)}/100",
        "",
        str(result.get("recommendation") or ""),
        "",
    ]
    lines += _numbered("Supporting evidence", result.get("evidence") or [])
    lines += _numbered("Conflicts detected", result.get("conflicts") or [])
    return text_response("\n".join(lines).rstrip(), data=result)


async def check_conflict(ctx: ToolContext, args: CheckConflictArgs) -> Any:
    return await ctx.memory.post(
        "/api/v1/reflex/check",
        {
            "proposed_action": args.proposed_action,
            "scope": args.scope,
            "include_patterns": args.include_patterns,
            "user_id": ctx.user_id,
        },
    )


async def session_summary(ctx: ToolContext, args: SessionSummaryArgs) -> Any:
    params: dict[str, Any] = {"time_window": args.time_window_seconds}
    if args.session_id:
        params["session_id"] = args.session_id
    return await ctx.memory.get("/api/v1/session/summary", params=params)


TOOLS = [
    define_tool("greet", "Check that the memory server is connected and responding.", GreetArgs, greet),
    define_tool(
        "reflex",
        "Check a proposed answer against memory before giving it: grounded, conflicting or speculative.",
        ReflexArgs,
        reflex,
    ),
    define_tool(
        "check_conflict",
        "Check whether an action conflicts with user directives or patterns before taking it.",
        CheckConflictArgs,
        check_conflict,
    ),
    define_tool(
        "session_summary",
        "Summarize recent memory activity.",
        SessionSummaryArgs,
        session_summary,
    ),
]
