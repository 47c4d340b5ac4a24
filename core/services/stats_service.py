"""
Usage statistics: per-context use counters, per-tenant answered/unanswered
counters and the request log read by the reporting dashboard.

Counters are bumped with ``INSERT ... ON CONFLICT DO UPDATE`` so concurrent
requests for the same row never lose an increment. Writes run on a
background queue (``UsageStatsRecorder``) and never touch the request path.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.request_log import RagRequestLog
from models.usage_stats import ContextUsageStats, SummaryStats

logger = logging.getLogger(__name__)


@dataclass
class UsageEvent:
    """Everything recorded about one retrieval request."""

    tenant_id: str
    endpoint: str
    query: Optional[str]
    context_ids: List[UUID]
    latency_ms: float
    retrieval_method: Optional[str] = None
    intent_scope: Optional[str] = None
    intent_action: Optional[str] = None
    intent_detail: Optional[str] = None
    intent_strategy: Optional[str] = None
    profile_id: Optional[str] = None
    prompt_key: Optional[str] = None
    prompt_params: Optional[Dict[str, Any]] = None
    request_body: Optional[Dict[str, Any]] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def answered(self) -> bool:
        return bool(self.context_ids)


class StatsService:
    """Writes usage counters and request log rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def increment_context_uses(
        self, tenant_id: str, context_ids: List[UUID], used_at: Optional[datetime] = None
    ) -> None:
        """Add one use to each distinct context."""
        used_at = used_at or datetime.now(timezone.utc)
        for context_id in dict.fromkeys(context_ids):
            stmt = pg_insert(ContextUsageStats).values(
                tenant_id=tenant_id,
                context_id=context_id,
                used_count=1,
                last_used_at=used_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[ContextUsageStats.tenant_id, ContextUsageStats.context_id],
                set_={
                    "used_count": ContextUsageStats.used_count + 1,
                    "last_used_at": used_at,
                },
            )
            await self.db.execute(stmt)

    async def increment_summary_outcome(
        self, tenant_id: str, answered: bool, updated_at: Optional[datetime] = None
    ) -> None:
        """Count a request as answered (at least one context) or unanswered."""
        updated_at = updated_at or datetime.now(timezone.utc)
        stmt = pg_insert(SummaryStats).values(
            tenant_id=tenant_id,
            answered_count=1 if answered else 0,
            unanswered_count=0 if answered else 1,
            updated_at=updated_at,
        )
        column = SummaryStats.answered_count if answered else SummaryStats.unanswered_count
        stmt = stmt.on_conflict_do_update(
            index_elements=[SummaryStats.tenant_id],
            set_={column.key: column + 1, "updated_at": updated_at},
        )
        await self.db.execute(stmt)

    async def log_request(self, event: UsageEvent) -> RagRequestLog:
        entry = RagRequestLog(
            tenant_id=event.tenant_id,
            endpoint=event.endpoint,
            query=event.query,
            answer_status=event.answered,
            latency_ms=int(round(event.latency_ms)),
            contexts_used=[str(cid) for cid in event.context_ids],
            intent_scope=event.intent_scope,
            intent_action=event.intent_action,
            intent_detail=event.intent_detail,
            intent_strategy=event.intent_strategy,
            retrieval_method=event.retrieval_method,
            profile_id=event.profile_id,
            prompt_key=event.prompt_key,
            prompt_params=event.prompt_params,
            request_body=event.request_body,
            created_at=event.occurred_at,
        )
        self.db.add(entry)
        return entry

    async def record_event(self, event: UsageEvent) -> None:
        """Apply every write for one event in a single transaction.

        This method commits its own transaction.
        """
        if event.context_ids:
            await self.increment_context_uses(event.tenant_id, event.context_ids, event.occurred_at)
        await self.increment_summary_outcome(event.tenant_id, event.answered, event.occurred_at)
        await self.log_request(event)
        await self.db.commit()


class UsageStatsRecorder:
    """
    Fire-and-forget writer for usage events.

    ``record()`` never blocks and never raises for a full queue; events that do
    not fit are dropped with a warning. Workers swallow (and log) write
    failures so they can never reach a caller.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        maxsize: int = 1000,
        workers: int = 1,
    ):
        self.session_factory = session_factory
        self.maxsize = maxsize
        self.worker_count = workers
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"usage-stats-{i}") for i in range(self.worker_count)
        ]
        logger.info(f"Usage stats recorder started with {self.worker_count} worker(s)")

    async def stop(self) -> None:
        """Drain queued events, then stop the workers."""
        if not self.running:
            return
        await self._queue.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("Usage stats recorder stopped")

    def record(self, event: UsageEvent) -> bool:
        """Queue an event. Returns False if it was dropped."""
        if self._queue is None:
            logger.warning(f"Usage stats recorder not running, dropping event for tenant {event.tenant_id}")
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Usage stats queue full, dropping event for tenant {event.tenant_id}")
            return False
        return True

    async def write(self, event: UsageEvent) -> None:
        async with self.session_factory() as session:
            await StatsService(session).record_event(event)

    async def _worker(self, index: int) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.write(event)
            except Exception:
                logger.exception(f"Failed to record usage stats for tenant {event.tenant_id}")
            finally:
                self._queue.task_done()
