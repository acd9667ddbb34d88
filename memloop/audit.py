"""Best-effort audit trail.

Decision events, retrieval logs and learning signals are side records: a
failure to write one is logged and never fails the tool call that caused
it. Every operation here goes through best_effort so that rule lives in
one place.
"""

import asyncio
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import Any

from memloop.client import BackendClient, RestClient
from memloop.log_config import get_logger

log = get_logger("audit")


def utc_iso(epoch: float | None = None) -> str:
    moment = datetime.now(timezone.utc) if epoch is None else datetime.fromtimestamp(epoch, timezone.utc)
    return moment.isoformat()


async def best_effort(label: str, operation: Awaitable[Any]) -> bool:
    """Await operation, logging and discarding any failure.

    Returns:
        True when the operation completed
    """
    try:
        await operation
        return True
    except Exception as e:
        log.warning(f"{label} failed (ignored): {e}")
        return False


class AuditTrail:
    """Writes decision events, retrieval logs and signals."""

    def __init__(
        self,
        memory: BackendClient,
        rest: RestClient | None = None,
        user_id: str | None = None,
    ):
        self.memory = memory
        self.rest = rest
        self.user_id = user_id
        self._pending: set[asyncio.Task] = set()

    async def emit_decision_event(
        self,
        event_type: str,
        task_id: str,
        session_id: str,
        payload: dict[str, Any],
        duration_ms: int | None = None,
    ) -> bool:
        """Insert a row into decision_events (REST interface only)."""
        if self.rest is None:
            log.debug(f"Decision event {event_type} skipped: REST interface not configured")
            return False
        row = {
            "event_type": event_type,
            "task_id": task_id,
            "session_id": session_id,
            "timestamp": utc_iso(),
            "payload": payload,
            "duration_ms": duration_ms,
        }
        return await best_effort(
            f"decision event {event_type}",
            self.rest.insert("decision_events", row, returning=False),
        )

    async def log_retrieval(
        self,
        query: str,
        retrieval_id: str,
        pattern_ids: list[str],
    ) -> bool:
        """Record which patterns a search returned, for the configured user."""
        if self.rest is None or not self.user_id:
            return False
        row = {
            "user_id": self.user_id,
            "query": query,
            "pattern_count": len(pattern_ids),
            "session_id": retrieval_id,
            "retrieved_patterns": pattern_ids,
            "created_at": utc_iso(),
        }
        return await best_effort(
            f"retrieval log {retrieval_id}",
            self.rest.insert("pattern_retrievals", row, returning=False),
        )

    async def emit_signal(self, signal_type: str, payload: dict[str, Any]) -> bool:
        return await best_effort(
            f"signal {signal_type}",
            self.memory.post("/api/v1/cns/signal", {"signal_type": signal_type, "payload": payload}),
        )

    def spawn(self, operation: Awaitable[Any]) -> asyncio.Task:
        """Run a best-effort operation without waiting for it."""
        task = asyncio.ensure_future(operation)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for spawned operations to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
