"""Apply and outcome tracking.

track_memory_application opens an ApplicationRecord for memories the agent
decided to use; record_memory_outcome closes it with success or failure and
reports the result to the backend for every pattern involved.
"""

from typing import Any

from pydantic import Field

from memloop.audit import utc_iso
from memloop.client import BackendError
from memloop.correlation import ApplicationRecord, new_application_id, new_task_id
from memloop.dispatch import ToolContext
from memloop.envelope import ToolResponse, json_response, text_response, to_json
from memloop.log_config import get_logger
from memloop.registry import alias, define_tool
from memloop.tools.common import ToolArgs

log = get_logger("tools.tracking")

DEFAULT_MODEL = "unknown"
MATCHED_SCORE = 0.8
SOURCE = "memloop"
OUTCOME_PATH = "/api/v1/patterns/record-outcome"
NOT_FOUND_ERROR = (
    "Application ID not found. It may have expired (1 hour retention) or was never tracked."
)


class TrackApplicationArgs(ToolArgs):
    retrieval_id: str = Field(..., min_length=1, description="retrieval_id returned by search_memory")
    memory_ids: list[str] = Field(..., min_length=1, description="IDs of the memories being applied")
    context: dict[str, Any] = Field(
        default_factory=dict,
        description="Task context, e.g. task_description and model_used",
    )
    model_used: str | None = Field(None, description="Model applying the memories")


class RecordOutcomeArgs(ToolArgs):
    application_id: str = Field(..., min_length=1, description="application_id from track_memory_application")
    success: bool = Field(..., description="Whether applying the memories worked")
    model_used: str | None = Field(None, description="Model that applied the memories")
    metrics: dict[str, Any] = Field(default_factory=dict, description="Optional outcome metrics")


class TraceArgs(ToolArgs):
    retrieval_id: str = Field(..., min_length=1, description="retrieval_id to explain")
    memory_ids: list[str] = Field(default_factory=list, description="Only explain these memories")


class DetectUsageArgs(ToolArgs):
    response: str = Field(..., min_length=1, description="Your response text, scanned for applied patterns")
    retrieval_id: str = Field(..., min_length=1, description="retrieval_id of the search")
    query: str | None = Field(None, description="The original user query")


# ═══════════════════════════════════════════════════════════════════════════════
# APPLY
# ═══════════════════════════════════════════════════════════════════════════════


async def track_application(ctx: ToolContext, args: TrackApplicationArgs) -> dict[str, Any]:
    now = ctx.clock()
    application_id = new_application_id()
    model = args.model_used or args.context.get("model_used") or DEFAULT_MODEL
    retrieval = ctx.store.get_retrieval(args.retrieval_id)
    total = retrieval.total_memories if retrieval else len(args.memory_ids)

    record = ApplicationRecord(
        application_id=application_id,
        pattern_ids=tuple(args.memory_ids),
        retrieval_id=args.retrieval_id,
        context=args.context,
        model_used=model,
        task_id=new_task_id(now),
        session_id=f"mcp-{args.retrieval_id}",
        started_at=now,
        memories_retrieved_total=total,
        created_at=now,
    )
    ctx.store.put_application(record)

    await ctx.audit.emit_decision_event(
        "task.start",
        record.task_id,
        record.session_id,
        {
            "started_at": utc_iso(now),
            "user_query": args.context.get("task_description") or "memory application",
            "model_used": model,
            "source": SOURCE,
        },
    )
    await ctx.audit.emit_decision_event(
        "memory.usage",
        record.task_id,
        record.session_id,
        {
            "memories_retrieved_total": total,
            "memories_retrieved_by_type": {
                "patterns": len(args.memory_ids),
                "procedures": 0,
                "semantic": 0,
                "episodes": 0,
            },
            "memories_injected_count": len(args.memory_ids),
            "patterns_applied_count": 0,
            "had_memory": True,
            "pattern_ids": ",".join(args.memory_ids),
            "model_used": model,
        },
    )

    registered = 0
    for pattern_id in args.memory_ids:
        try:
            await ctx.memory.post(
                OUTCOME_PATH,
                {
                    "pattern_id": pattern_id,
                    "trace_id": application_id,
                    "matched_score": MATCHED_SCORE,
                    "outcome_success": None,
                    "reasoning": "Pattern applied, outcome pending",
                },
            )
            registered += 1
        except BackendError as e:
            log.warning(f"Could not register application of {pattern_id}: {e}")

    return {
        "application_id": application_id,
        "retrieval_id": args.retrieval_id,
        "tracked": len(args.memory_ids),
        "registered": registered,
        "memories_retrieved_total": total,
        "model_used": model,
    }


def render_track(result: dict[str, Any]) -> ToolResponse:
    banner = (
        f"**[APPLY]** Tracking {result['tracked']} memories "
        f"(application_id {result['application_id']}, "
        f"{result['registered']}/{result['tracked']} registered). "
        "Call record_memory_outcome when the task is done."
    )
    return json_response(result, banner=banner)


# ═══════════════════════════════════════════════════════════════════════════════
# OUTCOME
# ═══════════════════════════════════════════════════════════════════════════════


async def record_outcome(ctx: ToolContext, args: RecordOutcomeArgs) -> dict[str, Any]:
    record = ctx.store.get_application(args.application_id)
    if record is None:
        return {
            "recorded": False,
            "application_id": args.application_id,
            "error": NOT_FOUND_ERROR,
            "message": "Track the application again with track_memory_application.",
        }

    try:
        now = ctx.clock()
        duration_ms = max(0, int((now - record.started_at) * 1000))
        model = args.model_used or record.model_used
        outcome = "success" if args.success else "failure"
        applied = len(record.pattern_ids) if args.success else 0

        await ctx.audit.emit_decision_event(
            "task.end",
            record.task_id,
            record.session_id,
            {
                "ended_at": utc_iso(now),
                "outcome": outcome,
                "duration_ms": duration_ms,
                "patterns_applied": list(record.pattern_ids),
                "patterns_applied_count": applied,
                "memories_retrieved_total": record.memories_retrieved_total,
                "memories_injected_count": len(record.pattern_ids),
                "model_used": model,
                "metrics": args.metrics,
                "source": SOURCE,
            },
            duration_ms=duration_ms,
        )

        updated: list[str] = []
        failed: list[str] = []
        for pattern_id in record.pattern_ids:
            try:
                await ctx.memory.post(
                    OUTCOME_PATH,
                    {
                        "pattern_id": pattern_id,
                        "trace_id": record.application_id,
                        "matched_score": MATCHED_SCORE,
                        "outcome_success": args.success,
                        "model_used": model,
                        "reasoning": f"Task {outcome}",
                        "metrics": args.metrics,
                        "outcome_recorded_at": utc_iso(now),
                    },
                )
                updated.append(pattern_id)
            except BackendError as e:
                log.warning(f"Could not record outcome for {pattern_id}: {e}")
                failed.append(pattern_id)
    finally:
        ctx.store.delete_application(args.application_id)

    return {
        "recorded": True,
        "application_id": record.application_id,
        "outcome": outcome,
        "duration_ms": duration_ms,
        "patterns_applied_count": applied,
        "patterns_updated": updated,
        "patterns_failed": failed,
        "memories_retrieved_total": record.memories_retrieved_total,
        "model_used": model,
    }


def render_outcome(result: dict[str, Any]) -> ToolResponse:
    if not result["recorded"]:
        return text_response(to_json(result), data=result)
    lines = [
        f"**[OUTCOME]** {result['outcome'].upper()} recorded for {result['application_id']}",
        f"Updated {len(result['patterns_updated'])} pattern(s) in {result['duration_ms']}ms",
    ]
    if result["patterns_failed"]:
        lines.append(f"Failed to update: {', '.join(result['patterns_failed'])}")
    return json_response(result, banner="\n".join(lines))


# ═══════════════════════════════════════════════════════════════════════════════
# TRACE / USAGE
# ═══════════════════════════════════════════════════════════════════════════════


async def trace(ctx: ToolContext, args: TraceArgs) -> ToolResponse:
    retrieval = ctx.store.get_retrieval(args.retrieval_id)
    if retrieval is None:
        return text_response(
            f"Retrieval {args.retrieval_id} not found. Retrievals are kept for one hour.",
            data={"found": False, "retrieval_id": args.retrieval_id},
        )

    ids = list(retrieval.memory_ids)
    if args.memory_ids:
        wanted = set(args.memory_ids)
        ids = [memory_id for memory_id in ids if memory_id in wanted]
    lines = [
        f"**[TRACE]** Retrieval {retrieval.retrieval_id}",
        f"Returned {retrieval.total_memories} memories at {utc_iso(retrieval.created_at)}",
    ]
    lines.extend(f"  {position}. {memory_id}" for position, memory_id in enumerate(ids, 1))
    data = {
        "found": True,
        "retrieval_id": retrieval.retrieval_id,
        "total_memories": retrieval.total_memories,
        "memory_ids": ids,
        "created_at": utc_iso(retrieval.created_at),
    }
    return text_response("\n".join(lines), data=data)


async def detect_usage(ctx: ToolContext, args: DetectUsageArgs) -> Any:
    return await ctx.memory.post(
        "/api/v1/learning/detect-usage",
        {
            "response": args.response,
            "retrieval_id": args.retrieval_id,
            "query": args.query,
            "user_id": ctx.user_id,
        },
    )


TRACK_MEMORY_APPLICATION = define_tool(
    "track_memory_application",
    "Record that you are applying memories from a search. Returns an application_id "
    "for record_memory_outcome.",
    TrackApplicationArgs,
    track_application,
    render=render_track,
)

RECORD_MEMORY_OUTCOME = define_tool(
    "record_memory_outcome",
    "Report whether applied memories worked. Updates the success rate of every "
    "pattern in the application.",
    RecordOutcomeArgs,
    record_outcome,
    render=render_outcome,
)

TOOLS = [
    TRACK_MEMORY_APPLICATION,
    RECORD_MEMORY_OUTCOME,
    alias(TRACK_MEMORY_APPLICATION, "track_application", "Same as track_memory_application."),
    alias(RECORD_MEMORY_OUTCOME, "record_outcome", "Same as record_memory_outcome."),
    define_tool(
        "trace",
        "Explain what a previous search returned, by retrieval_id.",
        TraceArgs,
        trace,
    ),
    define_tool(
        "detect_usage",
        "Scan a response for patterns from a retrieval that were actually used.",
        DetectUsageArgs,
        detect_usage,
    ),
]
