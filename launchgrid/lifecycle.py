"""Task status state machine and create-or-update-on-rerun semantics."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, FrozenSet, Optional

from .constants import DEFAULT_LEASE_MINUTES
from .contracts import Step, StepOutcome, StepResult, Task, TaskStatus
from .errors import BusinessRuleError, ConflictError, NotFoundError
from .events import EventType
from .persistence import WorkflowRepository
from .security.context import ServiceContext
from .service import BaseService
from .utils.clock import new_id, utcnow

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.FAILED, TaskStatus.CANCELLED}
    ),
    TaskStatus.IN_PROGRESS: frozenset(
        {
            TaskStatus.REVIEW_NEEDED,
            TaskStatus.COMPLETED,
            TaskStatus.EXTENSION_QUEUED,
            TaskStatus.FAILED,
            TaskStatus.CANCELLED,
        }
    ),
    TaskStatus.EXTENSION_QUEUED: frozenset(
        {TaskStatus.REVIEW_NEEDED, TaskStatus.FAILED, TaskStatus.CANCELLED}
    ),
    # Re-entering review_needed tolerates duplicate extension reports
    TaskStatus.REVIEW_NEEDED: frozenset(
        {
            TaskStatus.REVIEW_NEEDED,
            TaskStatus.COMPLETED,
            TaskStatus.FAILED,
            TaskStatus.CANCELLED,
        }
    ),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)

_FINISHING = frozenset(
    {
        TaskStatus.COMPLETED,
        TaskStatus.REVIEW_NEEDED,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    }
)

_OUTCOME_STATUS = {
    StepOutcome.COMPLETED: TaskStatus.COMPLETED,
    StepOutcome.REVIEW_NEEDED: TaskStatus.REVIEW_NEEDED,
    StepOutcome.AWAITING_APPROVAL: TaskStatus.REVIEW_NEEDED,
    StepOutcome.EXTENSION_QUEUED: TaskStatus.EXTENSION_QUEUED,
}

_STATUS_EVENTS = {
    TaskStatus.IN_PROGRESS: EventType.TASK_STARTED,
    TaskStatus.COMPLETED: EventType.TASK_COMPLETED,
    TaskStatus.REVIEW_NEEDED: EventType.TASK_QUEUED,
    TaskStatus.EXTENSION_QUEUED: EventType.EXTENSION_TASK_QUEUED,
    TaskStatus.FAILED: EventType.TASK_FAILED,
    TaskStatus.CANCELLED: EventType.TASK_CANCELLED,
}

# Extension reports may arrive while another write is in flight
_REPORT_ATTEMPTS = 3


def status_for(outcome: StepOutcome) -> TaskStatus:
    return _OUTCOME_STATUS[outcome]


class TaskLifecycleManager(BaseService):
    """Owns every status change of a task."""

    def __init__(
        self,
        repository: WorkflowRepository,
        ctx: ServiceContext,
        lease_minutes: int = DEFAULT_LEASE_MINUTES,
    ) -> None:
        super().__init__(repository, ctx)
        self.lease = timedelta(minutes=lease_minutes)

    async def get_task(self, task_id: str) -> Task:
        task = await self._repository.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def current_task(self, step: Step) -> Optional[Task]:
        if step.current_task_id:
            task = await self._repository.get_task(step.current_task_id)
            if task is not None:
                return task
        return await self._repository.latest_task(step.id)

    def is_stale(self, task: Task, now: Optional[datetime] = None) -> bool:
        """An in_progress task older than the lease window was abandoned."""
        started = task.started_at or task.created_at
        return started + self.lease <= (now or utcnow())

    # ------------------------------------------------------------------
    async def begin(self, step: Step, project_id: str, rerun: bool = False) -> Task:
        """Return an ``in_progress`` task for ``step``.

        A pending current task is updated in place. Anything else gets a new
        row so that earlier attempts stay in the history. A fresh
        ``in_progress`` task means another run owns the step.
        """
        current = await self.current_task(step)
        if current is not None:
            if current.status == TaskStatus.IN_PROGRESS:
                if not self.is_stale(current):
                    raise ConflictError(
                        f"Step {step.id} is already running as task {current.id}",
                        details={"step_id": step.id, "task_id": current.id},
                    )
                logger.warning(f"Task {current.id} abandoned; starting a new attempt")
                current = await self.transition(
                    current,
                    TaskStatus.FAILED,
                    error_message="Abandoned before completion",
                )
            elif rerun and current.status in (
                TaskStatus.PENDING,
                TaskStatus.EXTENSION_QUEUED,
            ):
                current = await self.transition(
                    current, TaskStatus.CANCELLED, error_message="Superseded by rerun"
                )
            elif current.status == TaskStatus.PENDING:
                return await self.transition(current, TaskStatus.IN_PROGRESS)
            elif current.status == TaskStatus.EXTENSION_QUEUED:
                raise BusinessRuleError(
                    f"Task {current.id} is waiting for the browser extension",
                    code="TASK_AWAITING_EXTENSION",
                    details={"task_id": current.id},
                )
        return await self._start_new_task(step, project_id, current)

    async def _start_new_task(
        self, step: Step, project_id: str, previous: Optional[Task]
    ) -> Task:
        task_id = new_id()
        claimed = await self._repository.claim_step(step, task_id)
        if claimed is None:
            raise ConflictError(
                f"Step {step.id} was claimed by a concurrent run",
                details={"step_id": step.id},
            )

        retry_count = 0
        if previous is not None and previous.status == TaskStatus.FAILED:
            retry_count = previous.retry_count + 1
        now = utcnow()
        task = await self._repository.insert_task(
            Task(
                id=task_id,
                step_id=step.id,
                project_id=project_id,
                status=TaskStatus.IN_PROGRESS,
                retry_count=retry_count,
                started_at=now,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(f"Created task {task.id} for step {step.id} (retry {retry_count})")
        await self.ctx.emit(
            EventType.TASK_CREATED,
            task.id,
            "task",
            {"step_id": step.id, "project_id": project_id, "retry_count": retry_count},
        )
        return task

    async def transition(self, task: Task, target: TaskStatus, **fields: Any) -> Task:
        """Move ``task`` to ``target`` if nobody changed it since it was read."""
        if target not in TRANSITIONS[task.status]:
            raise BusinessRuleError(
                f"Cannot move task {task.id} from {task.status.value} to {target.value}",
                code="INVALID_STATUS_TRANSITION",
                details={"task_id": task.id, "from": task.status.value, "to": target.value},
            )

        now = utcnow()
        patch: Dict[str, Any] = {"status": target, "updated_at": now, **fields}
        if target == TaskStatus.IN_PROGRESS:
            patch["started_at"] = now
        if target == TaskStatus.EXTENSION_QUEUED:
            patch["queued_at"] = now
        if target in _FINISHING:
            patch["completed_at"] = now
            patch["lease_expires_at"] = None

        updated = await self._repository.update_task(
            task.id, patch, expected={"status": task.status}
        )
        if updated is None:
            raise ConflictError(
                f"Task {task.id} changed while moving to {target.value}",
                details={"task_id": task.id},
            )

        logger.info(f"Task {task.id}: {task.status.value} -> {target.value}")
        payload: Dict[str, Any] = {"step_id": task.step_id, "from": task.status.value}
        if updated.error_message and target == TaskStatus.FAILED:
            payload["error"] = updated.error_message
        await self.ctx.emit(_STATUS_EVENTS[target], task.id, "task", payload)
        return updated

    # ------------------------------------------------------------------
    async def apply_result(self, task: Task, result: StepResult) -> Task:
        return await self.transition(
            task, status_for(result.outcome), output_data=result.output
        )

    async def fail(self, task: Task, error: BaseException | str) -> Task:
        message = getattr(error, "message", None) or str(error)
        return await self.transition(task, TaskStatus.FAILED, error_message=message)

    async def approve(self, task_id: str) -> Task:
        task = await self.get_task(task_id)
        if task.status != TaskStatus.REVIEW_NEEDED:
            raise BusinessRuleError(
                f"Task {task_id} is not awaiting review",
                code="TASK_NOT_REVIEWABLE",
                details={"status": task.status.value},
            )
        return await self.transition(task, TaskStatus.COMPLETED)

    async def reject(self, task_id: str, reason: Optional[str] = None) -> Task:
        task = await self.get_task(task_id)
        if task.status != TaskStatus.REVIEW_NEEDED:
            raise BusinessRuleError(
                f"Task {task_id} is not awaiting review",
                code="TASK_NOT_REVIEWABLE",
                details={"status": task.status.value},
            )
        return await self.transition(
            task, TaskStatus.CANCELLED, error_message=reason or "Rejected by reviewer"
        )

    async def report_extension_result(
        self,
        task_id: str,
        result: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error: Optional[str] = None,
    ) -> Task:
        """Record what the browser extension reported for a queued task.

        Duplicate reports are expected from network retries: the last write
        wins while the task is ``review_needed``, and reports for tasks that
        were already approved, rejected or failed are ignored.
        """
        attempt = 0
        while True:
            attempt += 1
            task = await self.get_task(task_id)
            # Only tasks that were handed to the extension accept its reports
            if task.queued_at is None:
                raise BusinessRuleError(
                    f"Task {task_id} was never queued for the extension",
                    code="TASK_NOT_QUEUED",
                    details={"status": task.status.value},
                )
            if task.status in TERMINAL_STATUSES:
                logger.warning(
                    f"Ignoring extension report for task {task_id} in status {task.status.value}"
                )
                return task
            if task.status not in (TaskStatus.EXTENSION_QUEUED, TaskStatus.REVIEW_NEEDED):
                raise BusinessRuleError(
                    f"Task {task_id} is not waiting for an extension result",
                    code="TASK_NOT_QUEUED",
                    details={"status": task.status.value},
                )
            try:
                if not success:
                    return await self.transition(
                        task,
                        TaskStatus.FAILED,
                        error_message=error or "Extension reported a failure",
                    )
                updated = await self.transition(
                    task,
                    TaskStatus.REVIEW_NEEDED,
                    output_data=dict(result or {}),
                    error_message=None,
                )
            except ConflictError:
                if attempt >= _REPORT_ATTEMPTS:
                    raise
                continue
            await self.ctx.emit(
                EventType.EXTENSION_TASK_COMPLETED, task_id, "task", {"step_id": task.step_id}
            )
            return updated
