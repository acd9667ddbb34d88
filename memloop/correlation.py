"""Short-lived correlation store for the retrieve / apply / outcome workflow.

A search stores a RetrievalRecord; applying memories stores an
ApplicationRecord that points back to it; recording the outcome consumes
the ApplicationRecord. Nothing is persisted: records live in memory and a
background sweep drops anything older than the retention window.
"""

from __future__ import annotations

import asyncio
import secrets
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from memloop.config import DEFAULT_RETENTION_SECONDS, DEFAULT_SWEEP_INTERVAL_SECONDS
from memloop.log_config import get_logger

log = get_logger("correlation")

Clock = Callable[[], float]


def _millis(now: float) -> int:
    return int(now * 1000)


def new_application_id() -> str:
    """Nanosecond timestamp plus 64 random bits."""
    return f"app-{time.time_ns()}-{secrets.token_hex(8)}"


def new_retrieval_id(now: float, fallback: bool = False) -> str:
    prefix = "mcp-fallback" if fallback else "mcp"
    return f"{prefix}-{_millis(now)}-{secrets.token_hex(4)}"


def new_task_id(now: float) -> str:
    return f"mcp-task-{_millis(now)}"


@dataclass(frozen=True)
class RetrievalRecord:
    """What one search returned, keyed by retrieval_id."""

    retrieval_id: str
    total_memories: int
    memory_ids: tuple[Any, ...]
    created_at: float


@dataclass(frozen=True)
class ApplicationRecord:
    """A pending application of memories, waiting for its outcome."""

    application_id: str
    pattern_ids: tuple[str, ...]
    retrieval_id: str
    context: dict[str, Any]
    model_used: str
    task_id: str
    session_id: str
    started_at: float
    memories_retrieved_total: int
    created_at: float


@dataclass
class CorrelationStore:
    """Two TTL mappings guarded by a single lock.

    Records are only removed by sweep() (both mappings) and by
    delete_application() (applications). Reads never check expiry, so a
    record stays visible until the sweep that follows its retention window.
    """

    retention_seconds: float = DEFAULT_RETENTION_SECONDS
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS
    clock: Clock = time.time
    _retrievals: dict[str, RetrievalRecord] = field(default_factory=dict, init=False)
    _applications: dict[str, ApplicationRecord] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _task: asyncio.Task | None = field(default=None, init=False)
    _running: bool = field(default=False, init=False)

    # ═══════════════════════════════════════════════════════════════════════════════
    # RETRIEVALS
    # ═══════════════════════════════════════════════════════════════════════════════

    def put_retrieval(
        self,
        retrieval_id: str,
        total_memories: int,
        memory_ids: Iterable[Any],
        now: float | None = None,
    ) -> RetrievalRecord:
        record = RetrievalRecord(
            retrieval_id=retrieval_id,
            total_memories=total_memories,
            memory_ids=tuple(memory_ids),
            created_at=self.clock() if now is None else now,
        )
        with self._lock:
            self._retrievals[retrieval_id] = record
        log.debug(f"Stored retrieval {retrieval_id} ({total_memories} memories)")
        return record

    def get_retrieval(self, retrieval_id: str) -> RetrievalRecord | None:
        with self._lock:
            return self._retrievals.get(retrieval_id)

    # ═══════════════════════════════════════════════════════════════════════════════
    # APPLICATIONS
    # ═══════════════════════════════════════════════════════════════════════════════

    def put_application(self, record: ApplicationRecord) -> None:
        with self._lock:
            self._applications[record.application_id] = record
        log.debug(f"Stored application {record.application_id} ({len(record.pattern_ids)} patterns)")

    def get_application(self, application_id: str) -> ApplicationRecord | None:
        with self._lock:
            return self._applications.get(application_id)

    def delete_application(self, application_id: str) -> bool:
        """Remove an application record. Returns False if it was already gone."""
        with self._lock:
            removed = self._applications.pop(application_id, None)
        return removed is not None

    # ═══════════════════════════════════════════════════════════════════════════════
    # EVICTION
    # ═══════════════════════════════════════════════════════════════════════════════

    def sweep(self, now: float | None = None) -> tuple[int, int]:
        """Drop records created before now - retention.

        Returns:
            (retrievals evicted, applications evicted)
        """
        cutoff = (self.clock() if now is None else now) - self.retention_seconds
        with self._lock:
            stale_retrievals = [k for k, r in self._retrievals.items() if r.created_at < cutoff]
            for key in stale_retrievals:
                del self._retrievals[key]
            stale_applications = [k for k, a in self._applications.items() if a.created_at < cutoff]
            for key in stale_applications:
                del self._applications[key]
        if stale_retrievals or stale_applications:
            log.info(
                f"Swept {len(stale_retrievals)} retrievals, "
                f"{len(stale_applications)} applications"
            )
        return len(stale_retrievals), len(stale_applications)

    def counts(self) -> dict[str, int]:
        with self._lock:
            return {"retrievals": len(self._retrievals), "applications": len(self._applications)}

    async def start(self) -> None:
        """Start the periodic sweep task."""
        if self._running:
            log.warning("Correlation sweep already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        log.info(
            f"Correlation sweep started (every {self.sweep_interval_seconds:g}s, "
            f"retention {self.retention_seconds:g}s)"
        )

    async def stop(self) -> None:
        """Stop the sweep task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info("Correlation sweep stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.sweep_interval_seconds)
                if not self._running:
                    break
                self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                log.error(f"Correlation sweep error: {e}")
