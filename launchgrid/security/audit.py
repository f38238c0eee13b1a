"""Append-only audit log writer fed through an in-process queue."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from ..constants import (
    DEFAULT_AUDIT_BATCH_SIZE,
    DEFAULT_AUDIT_MAX_RETRIES,
    DEFAULT_AUDIT_QUEUE_SIZE,
)
from ..events import DomainEvent
from ..persistence import WorkflowRepository
from ..utils.retry import Backoff, schedule_retry

logger = logging.getLogger(__name__)


class AuditLogWriter:
    """Event sink that persists events off the request path.

    ``publish`` only enqueues; a background task drains the queue in batches
    and retries failed writes a bounded number of times. Events are dropped
    with a warning when the queue is full or retries are exhausted, so audit
    problems never fail the operation that produced the event.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        queue_size: int = DEFAULT_AUDIT_QUEUE_SIZE,
        batch_size: int = DEFAULT_AUDIT_BATCH_SIZE,
        max_retries: int = DEFAULT_AUDIT_MAX_RETRIES,
        backoff: Optional[Backoff] = None,
    ) -> None:
        self._repository = repository
        self._queue: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=queue_size)
        self._batch_size = batch_size
        self._max_retries = max_retries
        self._backoff = backoff
        self._worker: Optional[asyncio.Task] = None
        self.dropped = 0

    async def publish(self, event: DomainEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Audit queue full; dropped {event.type.value} for {event.aggregate_id}")
            return
        self._ensure_worker()

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            batch: List[DomainEvent] = [await self._queue.get()]
            while len(batch) < self._batch_size and not self._queue.empty():
                batch.append(self._queue.get_nowait())
            try:
                await self._write(batch)
            finally:
                for _ in batch:
                    self._queue.task_done()

    async def _write(self, batch: List[DomainEvent]) -> None:
        pending = list(batch)
        for attempt in range(self._max_retries + 1):
            try:
                while pending:
                    await self._repository.record_event(pending[0])
                    pending.pop(0)
                return
            except Exception as exc:
                if attempt >= self._max_retries:
                    self.dropped += len(pending)
                    logger.error(
                        f"Dropping {len(pending)} audit events after {attempt + 1} attempts: {exc}"
                    )
                    return
                logger.warning(f"Audit write failed (attempt {attempt + 1}): {exc}")
                await schedule_retry(attempt, self._backoff)

    async def flush(self) -> None:
        """Wait until every queued event was written or dropped."""
        if self._queue.empty() and (self._worker is None or self._worker.done()):
            return
        self._ensure_worker()
        await self._queue.join()

    async def close(self) -> None:
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
