"""Agent plans: structured task steps stored in agent_plans, plus the
LLM-backed plan operations delegated to the memory backend."""

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from memloop.dispatch import ToolContext
from memloop.registry import define_tool
from memloop.tools.common import ToolArgs, kebab

PlanStatus = Literal["draft", "in_progress", "completed", "archived"]


class PlanNotFoundError(Exception):
    def __init__(self, plan_id: str):
        super().__init__(f"Plan not found: {plan_id}")


class PlanStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    label: str
    description: str | None = None
    pattern_id: str | None = Field(None, alias="patternId")


class CreatePlanArgs(ToolArgs):
    title: str = Field(..., min_length=1, description="Plan title")
    steps: list[PlanStep] = Field(..., description="Plan steps, in order")
    context: str | None = Field(None, description="Context for this plan")
    source: Literal["cursor", "vscode", "claude", "windsurf", "other"] = "vscode"


class ListPlansArgs(ToolArgs):
    limit: int = Field(20, ge=1, le=200)
    offset: int = Field(0, ge=0)
    status: PlanStatus | None = None
    include_templates: bool = False


class UpdatePlanStatusArgs(ToolArgs):
    plan_id: str = Field(..., min_length=1)
    status: PlanStatus


class UpdatePlanStepArgs(ToolArgs):
    plan_id: str = Field(..., min_length=1)
    step_index: int = Field(..., ge=0)
    completed: bool


class GeneratePlanArgs(ToolArgs):
    context: str = Field(..., min_length=1, description="Task context or code to plan for")
    patterns: list[dict[str, Any]] = Field(default_factory=list, description="Retrieved patterns to use")


class SaveTemplateArgs(ToolArgs):
    plan_id: str = Field(..., min_length=1)
    category: str | None = Field(None, description='Template category, e.g. "api", "auth", "debugging"')


class ListTemplatesArgs(ToolArgs):
    category: str | None = None
    limit: int = Field(20, ge=1, le=200)


class TemplatePlanArgs(ToolArgs):
    template_id: str = Field(..., min_length=1)
    context: str | None = Field(None, description="Context for the new plan")


def _owner_filter(ctx: ToolContext) -> dict[str, str]:
    if ctx.user_id == "system":
        return {}
    return {"or": f"(user_id.eq.{ctx.user_id},user_id.is.null)"}


def _load_steps(raw: Any) -> list[dict[str, Any]]:
    if isinstance(raw, str):
        raw = json.loads(raw or "[]")
    return list(raw or [])


async def create_plan(ctx: ToolContext, args: CreatePlanArgs) -> dict[str, Any]:
    rest = ctx.require_rest()
    steps = [step.model_dump(by_alias=True, exclude_none=True) for step in args.steps]
    created = await rest.insert(
        "agent_plans",
        {
            "title": args.title,
            "steps": json.dumps(steps),
            "context": args.context,
            "source": args.source,
            "user_id": ctx.config.user_id,
            "status": "draft",
        },
    )
    created = created or {}
    return {"success": True, "plan_id": created.get("id"), **created}


async def list_plans(ctx: ToolContext, args: ListPlansArgs) -> dict[str, Any]:
    rest = ctx.require_rest()
    filters = _owner_filter(ctx)
    if args.status:
        filters["status"] = f"eq.{args.status}"
    if not args.include_templates:
        filters["template_category"] = "is.null"
    plans = await rest.select("agent_plans", filters=filters, limit=args.limit, offset=args.offset)
    return {"plans": plans}


async def update_plan_status(ctx: ToolContext, args: UpdatePlanStatusArgs) -> dict[str, Any]:
    rest = ctx.require_rest()
    rows = await rest.update("agent_plans", {"id": f"eq.{args.plan_id}"}, {"status": args.status})
    if not rows:
        raise PlanNotFoundError(args.plan_id)
    return {"success": True, "plan": rows[0]}


async def update_plan_step(ctx: ToolContext, args: UpdatePlanStepArgs) -> dict[str, Any]:
    rest = ctx.require_rest()
    found = await rest.select("agent_plans", columns="steps", filters={"id": f"eq.{args.plan_id}"}, limit=1)
    if not found:
        raise PlanNotFoundError(args.plan_id)

    steps = _load_steps(found[0].get("steps"))
    if args.step_index >= len(steps):
        raise ValueError(f"step_index {args.step_index} out of range (plan has {len(steps)} steps)")
    steps[args.step_index]["completed"] = args.completed

    rows = await rest.update("agent_plans", {"id": f"eq.{args.plan_id}"}, {"steps": json.dumps(steps)})
    return {"success": True, "plan": rows[0] if rows else None}


def _delegate(tool_name: str):
    """Handler that forwards the arguments to /api/v1/plans/<tool-name>."""

    async def handler(ctx: ToolContext, args: ToolArgs) -> Any:
        body = {**args.model_dump(exclude_none=True), "user_id": ctx.user_id}
        return await ctx.memory.post(f"/api/v1/plans/{kebab(tool_name)}", body)

    handler.__name__ = tool_name
    return handler


TOOLS = [
    define_tool("create_plan", "Create an agent plan: structured steps for a task.", CreatePlanArgs, create_plan, requires_rest=True),
    define_tool("list_plans", "List agent plans for the current user.", ListPlansArgs, list_plans, requires_rest=True),
    define_tool(
        "update_plan_status",
        "Set a plan's status (draft, in_progress, completed, archived).",
        UpdatePlanStatusArgs,
        update_plan_status,
        requires_rest=True,
    ),
    define_tool(
        "update_plan_step",
        "Mark a plan step complete or incomplete.",
        UpdatePlanStepArgs,
        update_plan_step,
        requires_rest=True,
    ),
    define_tool(
        "generate_plan_llm",
        "Generate a plan from task context and retrieved patterns.",
        GeneratePlanArgs,
        _delegate("generate_plan_llm"),
    ),
    define_tool("save_plan_template", "Save a plan as a reusable template.", SaveTemplateArgs, _delegate("save_plan_template")),
    define_tool("list_plan_templates", "List available plan templates.", ListTemplatesArgs, _delegate("list_plan_templates")),
    define_tool(
        "create_plan_from_template",
        "Create a new plan from a template.",
        TemplatePlanArgs,
        _delegate("create_plan_from_template"),
    ),
]
