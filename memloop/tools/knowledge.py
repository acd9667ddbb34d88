"""Read-only lookups: directives, patterns, signals, graph, layers, code.

Each lookup tries its backends in order and, when all of them fail,
answers with a documented empty result instead of an error so the agent
can keep going.
"""

from datetime import timedelta
from typing import Any, Literal

from pydantic import Field

from memloop.audit import utc_iso
from memloop.client import BackendError, ilike_any
from memloop.dispatch import ToolContext
from memloop.envelope import ToolResponse, json_response, text_response
from memloop.log_config import get_logger
from memloop.registry import alias, define_tool
from memloop.tools.common import ToolArgs, as_mapping, segment

log = get_logger("tools.knowledge")

SIGNAL_PREVIEW = 10

SignalType = Literal[
    "all",
    "user_correction_observed",
    "pattern_applied",
    "pattern_failed",
    "preference_violated",
    "annoying_repeat_prevented",
    "pattern_saved",
    "pattern_retrieved",
]


class DirectivesArgs(ToolArgs):
    user_id: str | None = Field(None, alias="userId", description="User whose directives to load")
    window_hours: int = Field(72, ge=1, alias="windowHours", description="Look-back window in hours")


class RecallPatternArgs(ToolArgs):
    pattern: str = Field(..., min_length=1, description="Pattern key, ID or name")


class QuerySignalsArgs(ToolArgs):
    signal_type: SignalType = Field(..., alias="signalType", description="Signal type to query")
    hours: int = Field(24, ge=1, description="Look-back window in hours")
    limit: int = Field(20, ge=1, le=500, description="Maximum signals to return")


class KnowledgeGraphArgs(ToolArgs):
    query: str = Field(..., min_length=1, description="What to search for")
    search_type: Literal["nodes", "facts", "both"] = Field(
        "nodes", alias="searchType", description="Search entities, relationships or both"
    )
    limit: int = Field(10, ge=1, le=100, description="Maximum results")


class LayerInfoArgs(ToolArgs):
    pass


class CodebaseArgs(ToolArgs):
    query: str = Field(..., min_length=1, description="What to search for in the codebase")
    limit: int = Field(10, ge=1, le=100, description="Max results")
    file_types: list[str] | None = Field(None, description='File extensions to include, e.g. ["py", "toml"]')


class ContextArgs(ToolArgs):
    task: str = Field(..., min_length=1, description="Task description")
    user_id: str | None = Field(None, alias="userId", description="User ID")
    max_episodes: int = Field(5, ge=0, le=50, alias="maxEpisodes")
    max_patterns: int = Field(5, ge=0, le=50, alias="maxPatterns")


# ═══════════════════════════════════════════════════════════════════════════════
# DIRECTIVES / PATTERNS
# ═══════════════════════════════════════════════════════════════════════════════


async def get_directives(ctx: ToolContext, args: DirectivesArgs) -> dict[str, Any]:
    user_id = args.user_id or ctx.user_id
    try:
        result = await ctx.memory.get(
            "/api/v1/memory/directives",
            params={"userId": user_id, "windowHours": args.window_hours},
        )
        return {**as_mapping(result, "directives"), "userId": user_id, "windowHours": args.window_hours, "source": "memory-api"}
    except BackendError as e:
        log.warning(f"Directives from memory backend failed: {e}")

    try:
        result = await ctx.echo.get("/api/asi/scan")
        return {**as_mapping(result, "directives"), "source": "echo-api"}
    except BackendError as e:
        log.warning(f"Directives from echo backend failed: {e}")

    return {
        "userId": user_id,
        "windowHours": args.window_hours,
        "success": True,
        "count": 0,
        "directives": [],
        "MUST": [],
        "NEVER": [],
        "PREFER": [],
        "AVOID": [],
        "note": "No directives found",
    }


async def recall_pattern(ctx: ToolContext, args: RecallPatternArgs) -> Any:
    try:
        found = await ctx.memory.get(f"/api/v1/patterns/{segment(args.pattern)}")
        if isinstance(found, dict) and found.get("pattern_id"):
            return {
                "pattern_id": found["pattern_id"],
                "title": found.get("title"),
                "content": found.get("content"),
                "guidance": found.get("guidance"),
                "success_rate": found.get("success_rate"),
                "works_when": found.get("works_when") or [],
                "anti_patterns": found.get("anti_patterns") or [],
            }
    except BackendError as e:
        log.debug(f"Pattern lookup by key failed, searching: {e}")

    try:
        results = as_mapping(await ctx.memory.post("/api/v1/patterns/query", {"query": args.pattern, "k": 1}))
        matches = results.get("patterns") or results.get("items") or []
        if matches:
            return matches[0]
    except BackendError as e:
        log.warning(f"Pattern search failed: {e}")

    return text_response(f'Pattern "{args.pattern}" not found in memory.', data=None)


# ═══════════════════════════════════════════════════════════════════════════════
# SIGNALS
# ═══════════════════════════════════════════════════════════════════════════════


async def _load_signals(ctx: ToolContext, args: QuerySignalsArgs) -> list[dict[str, Any]]:
    rest = ctx.require_rest()
    try:
        result = await rest.rpc(
            "query_signals",
            {"p_signal_type": args.signal_type, "p_hours": args.hours, "p_limit": args.limit},
        )
    except BackendError as e:
        log.warning(f"query_signals rpc failed, reading table: {e}")
        cutoff = ctx.clock() - timedelta(hours=args.hours).total_seconds()
        filters = {"created_at": f"gt.{utc_iso(cutoff)}"}
        if args.signal_type != "all":
            filters["signal_type"] = f"eq.{args.signal_type}"
        result = await rest.select("learning_signals", filters=filters, order="created_at.desc", limit=args.limit)
    return [s for s in result if isinstance(s, dict)] if isinstance(result, list) else []


async def query_signals(ctx: ToolContext, args: QuerySignalsArgs) -> Any:
    try:
        signals = await _load_signals(ctx, args)
    except BackendError as e:
        return text_response(
            f"Error querying signals: {e}. Try search_memory with a query like "
            f'"recent {args.signal_type}" instead.'
        )

    by_type: dict[str, int] = {}
    for signal in signals:
        kind = signal.get("signal_type") or "unknown"
        by_type[kind] = by_type.get(kind, 0) + 1

    result: dict[str, Any] = {
        "query": {"signalType": args.signal_type, "hours": args.hours, "limit": args.limit},
        "total": len(signals),
        "by_type": by_type,
        "signals": [
            {
                "type": s.get("signal_type"),
                "pattern_id": s.get("pattern_id"),
                "context": s.get("context"),
                "created_at": s.get("created_at"),
            }
            for s in signals[:SIGNAL_PREVIEW]
        ],
    }
    if len(signals) > SIGNAL_PREVIEW:
        result["note"] = f"Showing {SIGNAL_PREVIEW} of {len(signals)} signals"
    return result


# ═══════════════════════════════════════════════════════════════════════════════
# GRAPH / LAYERS / CODE
# ═══════════════════════════════════════════════════════════════════════════════


async def search_knowledge_graph(ctx: ToolContext, args: KnowledgeGraphArgs) -> Any:
    try:
        return await ctx.memory.post(
            "/api/v1/memory/semantic/search",
            {"query": args.query, "limit": args.limit, "search_type": args.search_type},
        )
    except BackendError as e:
        log.warning(f"Knowledge graph search failed: {e}")
        return {
            "query": args.query,
            "search_type": args.search_type,
            "results": [],
            "note": f"Knowledge graph unavailable: {e}",
        }


LAYER_LINES = (
    ("working", "Working", "messages (last 24h)"),
    ("episodic", "Episodic", "episodes"),
    ("semantic", "Semantic", "entries"),
    ("patterns", "Pattern", "patterns"),
    ("procedural", "Procedural", "workflows"),
    ("collective", "Collective", "events (last 7 days)"),
    ("meta", "Meta", "records"),
    ("codebase", "Codebase", "files"),
    ("directives", "Directives", "rules (MUST/NEVER/PREFER/AVOID)"),
    ("conflicts", "Conflicts", "resolutions"),
)


async def get_memory_layer_info(ctx: ToolContext, args: LayerInfoArgs) -> ToolResponse:
    try:
        stats = as_mapping(await ctx.memory.get("/api/v1/memory/metrics"))
    except BackendError as e:
        return text_response(
            "**Memory Layer Info Unavailable**\n\n"
            f"Error: {e}\n\n"
            "Check that the memory backend is reachable and the credential is configured."
        )

    lines = ["**Memory Layer Statistics**", ""]
    for position, (key, label, unit) in enumerate(LAYER_LINES, 1):
        lines.append(f"- Layer {position} ({label}): {stats.get(key) or 0} {unit}")
    lines.append("")
    lines.append("Directive priority: MUST > NEVER > PREFER > AVOID")
    lines.append(f"**Last Updated:** {stats.get('timestamp') or utc_iso()}")
    return text_response("\n".join(lines), data=stats)


async def search_codebase(ctx: ToolContext, args: CodebaseArgs) -> Any:
    try:
        return await ctx.memory.post(
            "/api/v1/codebase/search",
            {"query": args.query, "limit": args.limit, "file_types": args.file_types, "user_id": ctx.user_id},
        )
    except BackendError as e:
        log.warning(f"Codebase search failed: {e}")
        return {"query": args.query, "results": [], "note": f"Codebase search unavailable: {e}"}


async def get_context(ctx: ToolContext, args: ContextArgs) -> dict[str, Any]:
    rest = ctx.require_rest()
    user_id = args.user_id or ctx.user_id
    personal = user_id != "system"

    pattern_filters = {"quarantined": "eq.false"}
    match = ilike_any(["title", "content"], args.task)
    if personal:
        pattern_filters["and"] = f"(or{match},or(user_id.eq.{user_id},user_id.is.null))"
    else:
        pattern_filters["or"] = match
    patterns = await rest.select(
        "patterns", filters=pattern_filters, order="success_rate.desc", limit=args.max_patterns
    )

    episode_filters = {"or": ilike_any(["problem", "solution"], args.task)}
    if personal:
        episode_filters["user_id"] = f"eq.{user_id}"
    episodes = await rest.select("episodic_memory", filters=episode_filters, limit=args.max_episodes)

    return {
        "userId": user_id,
        "task": args.task,
        "patterns": patterns,
        "episodes": episodes,
        "metadata": {"patternsCount": len(patterns), "episodesCount": len(episodes)},
    }


GET_MEMORY_LAYER_INFO = define_tool(
    "get_memory_layer_info",
    "Show how many records each memory layer currently holds.",
    LayerInfoArgs,
    get_memory_layer_info,
)

TOOLS = [
    define_tool(
        "get_directives",
        "Load the user's active MUST / NEVER / PREFER / AVOID rules.",
        DirectivesArgs,
        get_directives,
    ),
    define_tool(
        "recall_pattern",
        "Fetch one pattern by key or ID, falling back to the closest match.",
        RecallPatternArgs,
        recall_pattern,
    ),
    define_tool(
        "query_signals",
        "Summarize recent learning signals (corrections, applied or failed patterns...).",
        QuerySignalsArgs,
        query_signals,
        requires_rest=True,
    ),
    define_tool(
        "search_knowledge_graph",
        "Search semantic memory for entities and facts.",
        KnowledgeGraphArgs,
        search_knowledge_graph,
    ),
    GET_MEMORY_LAYER_INFO,
    alias(GET_MEMORY_LAYER_INFO, "get_memory_stats", "Same as get_memory_layer_info."),
    define_tool(
        "search_codebase",
        "Search indexed project code for relevant files and snippets.",
        CodebaseArgs,
        search_codebase,
    ),
    define_tool(
        "get_context",
        "Collect the patterns and past episodes most relevant to a task.",
        ContextArgs,
        get_context,
        requires_rest=True,
    ),
]
