"""Turning experience into memory: forged patterns, directives, consolidation."""

import hashlib
import re
from typing import Any, Literal

from pydantic import Field

from memloop.audit import utc_iso
from memloop.client import BackendError
from memloop.dispatch import ToolContext
from memloop.envelope import ToolResponse, text_response
from memloop.log_config import get_logger
from memloop.registry import alias, define_tool
from memloop.tools.common import ToolArgs, as_mapping

log = get_logger("tools.learning")

PATTERN_KEY_MAX = 50
INITIAL_SUCCESS_RATE = 0.8
EMBEDDING_DIM = 1536
PREVIEW_CHARS = 150


class ForgeInsightArgs(ToolArgs):
    title: str = Field(..., min_length=1, description="Short name for the insight")
    problem: str = Field(..., min_length=1, description="The problem that was solved")
    solution: str = Field(..., min_length=1, description="What solved it")
    works_when: list[str] = Field(default_factory=list, description="Conditions where the solution applies")
    anti_patterns: list[str] = Field(default_factory=list, description="Approaches that did not work")
    tags: list[str] = Field(default_factory=list, description="Tags for filtering")
    source: str = Field("memloop", description="Where the insight comes from")


class ConsolidateArgs(ToolArgs):
    pattern_ids: list[str] = Field(..., min_length=2, description="Patterns to merge (at least 2)")
    keep_pattern_id: str | None = Field(None, description="Pattern to keep and merge the others into")
    promote_to_team: bool = Field(False, description="Make the merged pattern available to the team")


class ForgeDirectiveArgs(ToolArgs):
    type: Literal["MUST", "NEVER", "PREFER", "AVOID"] = Field(..., description="Directive type")
    rule: str = Field(..., min_length=1, description='The rule, e.g. "use strict type checking"')
    scope: str = Field("global", description='"global", "project" or a specific scope')
    reason: str | None = Field(None, description="Why the rule exists")
    priority: int = Field(50, ge=1, le=100, description="Priority 1-100, higher is more important")


def pattern_key(title: str) -> str:
    """Lowercase slug of title, at most 50 characters."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:PATTERN_KEY_MAX]


def pattern_content(problem: str, solution: str) -> str:
    return f"## Problem\n{problem}\n\n## Solution\n{solution}"


# ═══════════════════════════════════════════════════════════════════════════════
# FORGE
# ═══════════════════════════════════════════════════════════════════════════════


async def _attach_embedding(ctx: ToolContext, pattern_id: str, text: str) -> bool:
    if ctx.rest is None:
        return False
    embedding = as_mapping(
        await ctx.memory.post(
            "/api/v1/memory/embeddings/generate",
            {"text": text, "type": "pattern", "entityId": pattern_id, "dim": EMBEDDING_DIM},
        )
    )
    if not (embedding.get("ok") and embedding.get("embedding")):
        return False
    await ctx.rest.update(
        "patterns",
        {"pattern_id": f"eq.{pattern_id}"},
        {"embedding_vector": embedding["embedding"], "updated_at": utc_iso()},
    )
    return True


async def forge_insight(ctx: ToolContext, args: ForgeInsightArgs) -> dict[str, Any]:
    content = pattern_content(args.problem, args.solution)
    tags = ["forged-insight", args.source, *args.tags]
    row = {
        "title": args.title,
        "content": content,
        "content_hash": hashlib.sha256(content.encode("utf-8")).hexdigest(),
        "pattern_key": pattern_key(args.title),
        "works_when": args.works_when,
        "anti_patterns": args.anti_patterns,
        "tags": tags,
        "source": args.source,
        "success_rate": INITIAL_SUCCESS_RATE,
        "applied_count": 0,
        "user_id": ctx.config.user_id,
    }

    if ctx.rest is not None:
        now = utc_iso()
        created = await ctx.rest.insert("patterns", {**row, "created_at": now, "updated_at": now})
    else:
        created = as_mapping(await ctx.memory.post("/api/v1/patterns", row))
    pattern_id = (created or {}).get("pattern_id")

    embedded = False
    if pattern_id:
        try:
            embedded = await _attach_embedding(ctx, pattern_id, f"{args.title}\n\n{content}")
        except BackendError as e:
            log.warning(f"Embedding for {pattern_id} failed, pattern stays text-only: {e}")

    await ctx.audit.emit_signal(
        "pattern_forged",
        {
            "pattern_id": pattern_id,
            "title": args.title,
            "source": args.source,
            "tags": args.tags,
            "embedding_generated": embedded,
        },
    )

    return {
        "pattern_id": pattern_id,
        "title": args.title,
        "pattern_key": row["pattern_key"],
        "content_hash": row["content_hash"],
        "tags": tags,
        "embedding_generated": embedded,
        "problem": args.problem,
        "solution": args.solution,
    }


def render_forge(result: dict[str, Any]) -> ToolResponse:
    searchable = "Searchable (embedding generated)" if result["embedding_generated"] else "Text-only (no embedding)"
    text = "\n".join(
        [
            f'**[LEARN]** Forged: "{result["title"]}"',
            f"**[LEARN]** Pattern ID: {result['pattern_id'] or 'pending'}",
            f"**[LEARN]** {searchable}",
            "",
            f"**Problem:** {result['problem'][:PREVIEW_CHARS]}",
            f"**Solution:** {result['solution'][:PREVIEW_CHARS]}",
            f"**Tags:** {', '.join(result['tags'])}",
        ]
    )
    return text_response(text, data=result)


def render_crystallize(result: dict[str, Any]) -> ToolResponse:
    text = (
        f'[LEARN] Crystallized: "{result["title"]}"\n'
        f"[LEARN] Pattern ID: {result['pattern_id'] or 'pending'}"
    )
    return text_response(text, data=result)


# ═══════════════════════════════════════════════════════════════════════════════
# CONSOLIDATE / DIRECTIVES
# ═══════════════════════════════════════════════════════════════════════════════


async def consolidate(ctx: ToolContext, args: ConsolidateArgs) -> ToolResponse:
    lines = [
        f"Consolidating {len(args.pattern_ids)} patterns",
        "",
        f"Pattern IDs: {', '.join(args.pattern_ids)}",
    ]
    if args.keep_pattern_id:
        lines.append(f"Keeping: {args.keep_pattern_id}, merging the others into it")
    else:
        lines.append("Creating a new merged pattern")
    if args.promote_to_team:
        lines.append("Promoting the result to team canon")
    lines += [
        "",
        "Plan:",
        "  1. Analyze patterns for commonalities",
        "  2. Merge works_when conditions",
        "  3. Combine anti-pattern lists",
        "  4. Average success rates",
        "  5. Archive redundant patterns",
    ]
    return text_response("\n".join(lines), data=args.model_dump())


async def forge_directive(ctx: ToolContext, args: ForgeDirectiveArgs) -> ToolResponse:
    rest = ctx.require_rest()
    created = await rest.insert(
        "directives",
        {
            "type": args.type,
            "rule": args.rule,
            "scope": args.scope,
            "reason": args.reason,
            "priority": args.priority,
            "user_id": ctx.config.user_id,
            "status": "active",
        },
    )
    text = f"Directive created: {args.type} - {args.rule}\nPriority: {args.priority}\nScope: {args.scope}"
    return text_response(text, data=created)


FORGE_INSIGHT = define_tool(
    "forge_insight",
    "Save a solved problem as a reusable pattern so future agents can find it.",
    ForgeInsightArgs,
    forge_insight,
    render=render_forge,
)

TOOLS = [
    FORGE_INSIGHT,
    alias(FORGE_INSIGHT, "forge_pattern", "Same as forge_insight."),
    alias(FORGE_INSIGHT, "crystallize", "Short form of forge_insight for an explicit decision.", render=render_crystallize),
    define_tool(
        "consolidate",
        "Plan the merge of two or more overlapping patterns.",
        ConsolidateArgs,
        consolidate,
    ),
    define_tool(
        "forge_directive",
        'Create a MUST / NEVER / PREFER / AVOID rule when the user says "always", "never" or "I prefer".',
        ForgeDirectiveArgs,
        forge_directive,
        requires_rest=True,
    ),
]
