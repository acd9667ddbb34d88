"""Memory search: one retrieval across every memory layer.

The memory backend returns each layer in its own shape. Items are mapped to
a common Memory shape, scored as relevance * confidence, merged, and the
top results are remembered in the correlation store so later calls can
refer to them by retrieval_id.
"""

from typing import Any, Literal

from pydantic import Field, field_validator

from memloop.client import BackendError, ilike_any
from memloop.correlation import new_retrieval_id
from memloop.dispatch import ToolContext
from memloop.envelope import ToolResponse, json_response
from memloop.log_config import get_logger
from memloop.registry import alias, define_tool
from memloop.tools.common import ToolArgs, number

log = get_logger("tools.search")

LAYERS = ("patterns", "directives", "episodic", "semantic", "procedural", "collective", "codebase")

SOURCE_LAYERS: dict[str, tuple[str, ...]] = {
    "all": LAYERS,
    "patterns": ("patterns", "directives"),
    "graph": ("semantic",),
    "signals": ("collective",),
}

BANNER_TITLES = 5
DEFAULT_SUCCESS_RATE = 0.8

Source = Literal["patterns", "graph", "signals", "all"]


class SearchArgs(ToolArgs):
    query: str = Field(..., min_length=1, description="What to search for")
    limit: int = Field(10, ge=1, le=100, description="Maximum number of memories to return")
    sources: list[Source] = Field(
        default_factory=lambda: ["all"],
        description="Which memory sources to search",
    )

    @field_validator("sources", mode="before")
    @classmethod
    def _wrap_single_source(cls, value):
        if isinstance(value, str):
            return [value]
        return value


def include_layers(sources: list[str]) -> list[str]:
    selected: set[str] = set()
    for source in sources:
        selected.update(SOURCE_LAYERS[source])
    return [layer for layer in LAYERS if layer in selected]


# ═══════════════════════════════════════════════════════════════════════════════
# LAYER TRANSFORMS
# ═══════════════════════════════════════════════════════════════════════════════


def _memory(
    type_: str,
    id_: Any,
    title: str,
    content: str,
    relevance: float,
    confidence: float,
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": id_,
        "type": type_,
        "title": title,
        "content": content,
        "relevance": relevance,
        "confidence": confidence,
        "effectiveness": confidence,
        "composite_score": relevance * confidence,
        **extra,
    }


def _success_rate(item: dict[str, Any]) -> float | None:
    """The item's own success rate, or None when it has none."""
    value = item.get("success_rate")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _pattern(item: dict[str, Any]) -> dict[str, Any]:
    success_rate = _success_rate(item)
    return _memory(
        "pattern",
        item.get("pattern_id"),
        item.get("title") or "Pattern",
        item.get("content") or item.get("guidance") or "",
        number(item.get("relevance_score"), 0.7),
        0.5 if success_rate is None else success_rate,
        success_rate=success_rate,
        works_when=item.get("works_when") or [],
        problem=item.get("problem") or "",
        solution=item.get("solution") or "",
    )


def _episode(item: dict[str, Any]) -> dict[str, Any]:
    return _memory(
        "episodic",
        item.get("conversation_id"),
        item.get("query_preview") or "Episode",
        item.get("response_preview") or item.get("query_preview") or "",
        number(item.get("relevance_score"), 0.5),
        0.7,
        timestamp=item.get("timestamp"),
    )


def _semantic(item: dict[str, Any]) -> dict[str, Any]:
    return _memory(
        "semantic",
        item.get("id"),
        item.get("title") or "Semantic Entry",
        item.get("summary") or "",
        number(item.get("relevance_score"), 0.5),
        0.7,
        tags=item.get("tags") or [],
    )


def _procedure(item: dict[str, Any]) -> dict[str, Any]:
    steps = item.get("steps") or []
    return _memory(
        "procedural",
        item.get("workflow_id"),
        item.get("title") or "Workflow",
        "\n".join(str(step) for step in steps),
        0.7,
        number(item.get("success_rate"), 0.5),
        success_rate=_success_rate(item),
        steps=steps,
        trigger_conditions=item.get("trigger_conditions") or [],
    )


def _collective(item: dict[str, Any]) -> dict[str, Any]:
    return _memory(
        "collective",
        item.get("pattern_id"),
        item.get("title") or "Collective Pattern",
        item.get("solution") or "",
        0.8,
        number(item.get("consensus_score"), 0.7),
        models_validated=item.get("models_validated") or [],
    )


def _codebase(item: dict[str, Any]) -> dict[str, Any]:
    return _memory(
        "codebase",
        item.get("file_path"),
        item.get("file_path") or "Code Snippet",
        item.get("content_preview") or "",
        number(item.get("relevance_score"), 0.5),
        0.7,
    )


TRANSFORMS = {
    "patterns": _pattern,
    "episodic": _episode,
    "semantic": _semantic,
    "procedural": _procedure,
    "collective": _collective,
    "codebase": _codebase,
}


def transform_layers(layers: dict[str, Any]) -> dict[str, list[dict[str, Any]]]:
    """Map every known layer's raw items to memories. Unknown layers are ignored."""
    transformed: dict[str, list[dict[str, Any]]] = {}
    for layer, transform in TRANSFORMS.items():
        items = layers.get(layer) or []
        transformed[layer] = [transform(item) for item in items if isinstance(item, dict)]
    return transformed


def rank(by_layer: dict[str, list[dict[str, Any]]], limit: int) -> list[dict[str, Any]]:
    """Merge in layer order, stable-sort by composite score, keep the top limit."""
    merged = [memory for layer in TRANSFORMS for memory in by_layer.get(layer, [])]
    return sorted(merged, key=lambda m: m["composite_score"], reverse=True)[:limit]


# ═══════════════════════════════════════════════════════════════════════════════
# RETRIEVAL
# ═══════════════════════════════════════════════════════════════════════════════


async def _retrieve(ctx: ToolContext, args: SearchArgs, now: float) -> dict[str, Any]:
    body = {
        "query": args.query,
        "user_id": ctx.user_id,
        "session_id": f"mcp-{int(now * 1000)}",
        "include_layers": include_layers(args.sources),
        "max_per_layer": args.limit,
    }
    result = await ctx.memory.post("/api/v1/context/retrieve", body)
    if not isinstance(result, dict):
        raise ValueError("Unexpected retrieval response")
    return result


async def _fallback(ctx: ToolContext, args: SearchArgs, now: float) -> dict[str, Any]:
    """Pattern-only search against the REST interface."""
    patterns: list[dict[str, Any]] = []
    if ctx.rest is None:
        log.warning("Search fallback unavailable: REST interface not configured")
    else:
        try:
            rows = await ctx.rest.select(
                "patterns",
                columns="pattern_id,title,content,success_rate,tags",
                filters={
                    "or": ilike_any(["title", "content"], args.query),
                    "quarantined": "eq.false",
                },
                order="success_rate.desc",
                limit=args.limit,
            )
        except BackendError as e:
            log.warning(f"Search fallback failed: {e}")
            rows = []
        patterns = [
            {
                "pattern_id": row.get("pattern_id"),
                "title": row.get("title"),
                "problem": "",
                "solution": row.get("content"),
                "content": row.get("content"),
                "success_rate": row.get("success_rate"),
                "relevance_score": 0.5,
                "tags": row.get("tags") or [],
            }
            for row in rows
        ]

    layers: dict[str, Any] = {layer: [] for layer in LAYERS}
    layers["patterns"] = patterns
    return {
        "retrieval_id": new_retrieval_id(now, fallback=True),
        "layers": layers,
        "conflicts": [],
    }


async def search_memory(ctx: ToolContext, args: SearchArgs) -> dict[str, Any]:
    now = ctx.clock()
    fallback = False
    try:
        retrieved = await _retrieve(ctx, args, now)
    except (BackendError, ValueError) as e:
        log.warning(f"Primary retrieval failed, using pattern fallback: {e}")
        retrieved = await _fallback(ctx, args, now)
        fallback = True

    by_layer = transform_layers(retrieved.get("layers") or {})
    memories = rank(by_layer, args.limit)
    retrieval_id = retrieved.get("retrieval_id") or new_retrieval_id(now)
    memory_ids = [memory["id"] for memory in memories]

    ctx.store.put_retrieval(retrieval_id, len(memories), memory_ids, now=now)

    pattern_ids = [str(memory["id"]) for memory in memories if memory["type"] == "pattern" and memory["id"]]
    ctx.audit.spawn(ctx.audit.log_retrieval(args.query, retrieval_id, pattern_ids))

    return {
        "query": args.query,
        "retrieval_id": retrieval_id,
        "total_memories": len(memories),
        "memories": memories,
        "sources": [
            {"type": layer, "count": len(items)} for layer, items in by_layer.items()
        ],
        "conflicts": retrieved.get("conflicts") or [],
        "layers_queried": include_layers(args.sources),
        "fallback": fallback,
    }


def average_success_rate(memories: list[dict[str, Any]]) -> int:
    """Mean success rate as a rounded percentage, 0 when there are no memories.

    Memories without a success rate of their own count as 0.8.
    """
    if not memories:
        return 0
    mean = sum(number(m.get("success_rate"), DEFAULT_SUCCESS_RATE) for m in memories) / len(memories)
    return round(mean * 100)


def apply_reminder(retrieval_id: str, tag: str) -> str:
    return (
        f"When you use one of these patterns, include {tag} with the pattern title "
        f"and track it with retrieval_id {retrieval_id}."
    )


def render_search(result: dict[str, Any]) -> ToolResponse:
    memories = result["memories"]
    titles = [m["title"] for m in memories[:BANNER_TITLES]]
    lines = [f"**[RETRIEVE]** Found {result['total_memories']} memories"]
    if titles:
        lines.append(f"**[INJECT]** Loaded: {', '.join(titles)}")
        lines.append(f"**[INJECT]** Average success rate: {average_success_rate(memories)}%")
    else:
        lines.append("**[INJECT]** No patterns to inject")
    lines.append(apply_reminder(result["retrieval_id"], "**[APPLY]**"))
    return json_response(result, banner="\n".join(lines))


def render_ekko(result: dict[str, Any]) -> ToolResponse:
    memories = result["memories"]
    lines = [f"[RETRIEVE] {result['total_memories']} memories for \"{result['query']}\""]
    for memory in memories[:BANNER_TITLES]:
        lines.append(f"  - {memory['title']} ({memory['type']}, score {memory['composite_score']:.2f})")
    lines.append(apply_reminder(result["retrieval_id"], "[APPLY]"))
    return json_response(result, banner="\n".join(lines))


SEARCH_MEMORY = define_tool(
    "search_memory",
    "Search every memory layer (patterns, episodes, semantic facts, procedures, "
    "collective patterns, code) and return the best matches ranked by relevance "
    "times confidence. Keep the returned retrieval_id to track which memories you apply.",
    SearchArgs,
    search_memory,
    render=render_search,
)

TOOLS = [
    SEARCH_MEMORY,
    alias(SEARCH_MEMORY, "ekko", "Short form of search_memory.", render=render_ekko),
]
