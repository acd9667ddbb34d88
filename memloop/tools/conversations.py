"""Conversation ingestion and recall."""

import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field

from memloop.audit import utc_iso
from memloop.client import BackendError
from memloop.dispatch import ToolContext
from memloop.envelope import ToolResponse, error_response, text_response
from memloop.log_config import get_logger
from memloop.registry import alias, define_tool
from memloop.tools.common import ToolArgs, as_mapping, segment

log = get_logger("tools.conversations")

WORKING_MEMORY_TTL_SECONDS = 86400

Role = Literal["user", "assistant"]


class ConversationMessage(BaseModel):
    role: Role = Field(..., description="Message role")
    content: str = Field(..., description="Message content")
    timestamp: str | None = Field(None, description="ISO timestamp")


class SendConversationArgs(ToolArgs):
    conversation: list[ConversationMessage] = Field(
        ..., min_length=1, description="Conversation messages, oldest first"
    )
    session_id: str = Field(..., min_length=1, description="Session the conversation belongs to")
    metadata: dict[str, Any] | None = Field(None, description="Extra metadata, e.g. source")


class WorkingMemoryArgs(ToolArgs):
    source: str = Field("external", description="Platform the message comes from")
    role: Role = Field(..., description="Message role")
    content: str = Field(..., min_length=1, description="Message content")
    timestamp: str | None = Field(None, description="ISO timestamp, defaults to now")
    session_id: str = Field(..., min_length=1, description="Session ID")
    user_id: str | None = Field(None, description="User ID, defaults to the configured user")


class RecallConversationsArgs(ToolArgs):
    query: str = Field(..., min_length=1, description="What to look for in past conversations")
    k: int = Field(3, ge=1, le=50, description="Number of conversations to return")
    threshold: float = Field(0.35, ge=0, le=1, description="Minimum similarity (0-1)")


class SaveConversationArgs(ToolArgs):
    conversation_id: str = Field(..., min_length=1, alias="conversationId", description="Unique ID for this conversation")
    title: str = Field("Untitled", description="Brief title describing the conversation")
    messages: list[dict[str, Any]] = Field(..., description="Conversation messages (role and content)")
    patterns: list[dict[str, Any]] = Field(default_factory=list, description="Patterns discovered in the conversation")
    tags: list[str] = Field(default_factory=list, description="Tags for filtering")


class CaptureEventArgs(ToolArgs):
    user_id: str = Field(..., min_length=1, alias="userId")
    session_id: str = Field(..., min_length=1, alias="sessionId")
    source: Literal["vscode", "web", "cli", "api", "agent"]
    type: Literal["code_change", "chat_turn", "command", "file_opened", "error", "success"]
    content: str = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════════
# INGESTION
# ═══════════════════════════════════════════════════════════════════════════════


async def send_full_conversation(ctx: ToolContext, args: SendConversationArgs) -> ToolResponse:
    body = {
        "conversation": [m.model_dump(exclude_none=True) for m in args.conversation],
        "session_id": args.session_id,
        "metadata": args.metadata or {"source": "memloop"},
    }
    try:
        result = as_mapping(await ctx.echo.post("/api/v1/memory/conversation", body))
    except BackendError as e:
        return error_response(f"Failed to send conversation: {e}")

    stats = result.get("stats") or {}
    lines = [
        "Conversation ingested",
        "",
        f"Session ID: {result.get('session_id', args.session_id)}",
        "",
        "Extraction stats:",
    ]
    for key, label in (
        ("messages", "Messages"),
        ("learning_points", "Learning points"),
        ("patterns", "Patterns"),
        ("semantic_entries", "Semantic entries"),
        ("commands", "Commands"),
        ("files", "Files"),
        ("errors", "Errors catalogued"),
    ):
        lines.append(f"- {label}: {stats.get(key, 0)}")
    lines.append("")
    lines.append("The ingestion pipeline processes it within a few minutes.")
    return text_response("\n".join(lines), data=result)


async def write_working_memory(ctx: ToolContext, args: WorkingMemoryArgs) -> ToolResponse:
    user_id = args.user_id or ctx.user_id
    timestamp = args.timestamp or utc_iso()
    message = {
        "source": args.source,
        "role": args.role,
        "content": args.content,
        "timestamp": timestamp,
        "session_id": args.session_id,
        "platform": "external_ai",
        "status": "pending_ingestion",
    }
    try:
        result = await ctx.memory.post(
            f"/api/v1/memory/working/{segment(user_id)}/{segment(args.session_id)}",
            {"message": message, "ttl": WORKING_MEMORY_TTL_SECONDS},
        )
    except BackendError as e:
        return error_response(f"Failed to write to working memory: {e}")

    text = (
        "Message written to working memory\n\n"
        f"Source: {args.source}\n"
        f"Role: {args.role}\n"
        f"Session: {args.session_id}\n"
        f"Timestamp: {timestamp}\n\n"
        "It will be validated and moved to episodic and semantic memory by the ingestion pipeline."
    )
    return text_response(text, data=result)


async def save_conversation(ctx: ToolContext, args: SaveConversationArgs) -> ToolResponse:
    result = await ctx.memory.post(
        "/api/v1/memory",
        {
            "conversation_id": args.conversation_id,
            "title": args.title,
            "messages": args.messages,
            "patterns_discovered": args.patterns,
            "tags": ["conversation", *args.tags],
            "source": "memloop-save-conversation",
        },
    )
    text = (
        "Conversation saved to semantic memory\n\n"
        f"ID: {args.conversation_id}\n"
        f"Title: {args.title}\n"
        f"Messages: {len(args.messages)}\n"
        f"Patterns: {len(args.patterns)}"
    )
    return text_response(text, data=result)


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


async def capture_event(ctx: ToolContext, args: CaptureEventArgs) -> dict[str, Any]:
    rest = ctx.require_rest()
    conversation_id = args.session_id if _is_uuid(args.session_id) else str(uuid.uuid4())

    existing = await rest.select("chat_conversations", columns="id", filters={"id": f"eq.{conversation_id}"}, limit=1)
    if not existing:
        await rest.insert(
            "chat_conversations",
            {
                "id": conversation_id,
                "user_id": args.user_id,
                "title": f"Event: {args.type}",
                "conversation_type": "general",
            },
            returning=False,
        )

    row = await rest.insert(
        "chat_messages",
        {
            "conversation_id": conversation_id,
            "role": "system",
            "content": args.content,
            "platform": args.source,
            "metadata": {**args.metadata, "type": args.type, "captured_via": "memloop"},
        },
    )
    return {
        "success": True,
        "eventId": (row or {}).get("id"),
        "conversationId": conversation_id,
        "userId": args.user_id,
        "message": "Event captured",
    }


# ═══════════════════════════════════════════════════════════════════════════════
# RECALL
# ═══════════════════════════════════════════════════════════════════════════════


async def recall_conversations(ctx: ToolContext, args: RecallConversationsArgs) -> ToolResponse:
    try:
        results = as_mapping(
            await ctx.memory.post(
                "/api/v1/memory/episodic/search",
                {"query": args.query, "limit": args.k, "min_similarity": args.threshold},
            )
        )
        episodes = results.get("episodes") or results.get("results") or []
    except BackendError as e:
        log.warning(f"Episodic search failed: {e}")
        episodes = []

    if not episodes:
        return text_response(
            f'No past conversations found for: "{args.query}"\n\n'
            "Either this topic is new, nothing scored above "
            f"{args.threshold * 100:.0f}% similarity, or no conversations are saved yet.",
            data={"episodes": []},
        )

    blocks = []
    for position, episode in enumerate(episodes, 1):
        similarity = episode.get("similarity") or episode.get("score") or 0
        title = episode.get("title") or episode.get("slug") or "Episode"
        body = episode.get("content") or episode.get("summary") or ""
        tags = ", ".join(episode.get("tags") or []) or "none"
        blocks.append(f"## Match {position}: {title} ({similarity * 100:.0f}% similar)\n\n{body}\n\n**Tags:** {tags}")
    text = f"Found {len(episodes)} relevant past conversation(s):\n\n" + "\n\n---\n\n".join(blocks)
    return text_response(text, data={"episodes": episodes})


RECALL_CONVERSATIONS = define_tool(
    "recall_conversations",
    "Find past conversations similar to a query.",
    RecallConversationsArgs,
    recall_conversations,
)

TOOLS = [
    define_tool(
        "send_full_conversation",
        "Send a complete conversation for extraction of learning points, patterns "
        "and semantic knowledge.",
        SendConversationArgs,
        send_full_conversation,
    ),
    define_tool(
        "write_working_memory",
        "Write one message from another AI platform into working memory for ingestion.",
        WorkingMemoryArgs,
        write_working_memory,
    ),
    RECALL_CONVERSATIONS,
    alias(RECALL_CONVERSATIONS, "recall_conversation", "Same as recall_conversations."),
    define_tool(
        "save_conversation",
        "Save the current conversation to semantic memory so it can be recalled later.",
        SaveConversationArgs,
        save_conversation,
    ),
    define_tool(
        "capture_event",
        "Capture a memory event (code change, chat turn, command...).",
        CaptureEventArgs,
        capture_event,
        requires_rest=True,
    ),
]
