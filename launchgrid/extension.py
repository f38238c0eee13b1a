"""Poll/report protocol served to the browser extension."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

from .constants import (
    DEFAULT_EXTENSION_URL,
    DEFAULT_JOB_POLL_LIMIT,
    DEFAULT_LEASE_MINUTES,
    DEFAULT_PLATFORM,
)
from .contracts import EngagementJob, EngagementMetrics, ExtensionTask, Task, TaskStatus
from .engagement import EngagementScheduler
from .errors import BusinessRuleError, ConflictError, NotFoundError
from .lifecycle import TaskLifecycleManager
from .persistence import WorkflowRepository
from .security.context import ServiceContext
from .service import BaseService
from .utils.clock import utcnow

logger = logging.getLogger(__name__)

_URL_KEYS = ("url", "targetUrl", "target_url", "postUrl", "post_url")


class ExtensionBridge(BaseService):
    """Hands ``extension_queued`` tasks and due engagement jobs to the worker.

    The extension cannot accept inbound connections, so it pulls work. A
    served task keeps its ``extension_queued`` status but is leased for a
    while so that concurrent polls do not receive it twice.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        ctx: ServiceContext,
        lifecycle: Optional[TaskLifecycleManager] = None,
        engagement: Optional[EngagementScheduler] = None,
        platform: str = DEFAULT_PLATFORM,
        fallback_url: str = DEFAULT_EXTENSION_URL,
        lease_minutes: int = DEFAULT_LEASE_MINUTES,
    ) -> None:
        super().__init__(repository, ctx)
        self.lifecycle = lifecycle or TaskLifecycleManager(repository, ctx, lease_minutes)
        self.engagement = engagement or EngagementScheduler(repository, ctx)
        self.platform = platform
        self.fallback_url = fallback_url
        self.lease = timedelta(minutes=lease_minutes)

    async def poll_task(self) -> Optional[ExtensionTask]:
        """Lease and return the oldest queued task, or ``None``."""
        now = utcnow()
        for task in await self._repository.find_tasks(TaskStatus.EXTENSION_QUEUED):
            if task.lease_expires_at is not None and task.lease_expires_at > now:
                continue
            leased = await self._repository.update_task(
                task.id,
                {"lease_expires_at": now + self.lease, "updated_at": now},
                expected={
                    "status": TaskStatus.EXTENSION_QUEUED,
                    "lease_expires_at": task.lease_expires_at,
                },
            )
            if leased is None:
                continue
            logger.info(f"Leased task {task.id} to the extension")
            return await self._payload(leased)
        return None

    async def _payload(self, task: Task) -> ExtensionTask:
        step = await self._repository.get_step(task.step_id)
        if step is None:
            raise NotFoundError("Step", task.step_id)
        config: Dict[str, Any] = {**step.config, **(task.output_data or {})}
        config["url"] = next(
            (config[k] for k in _URL_KEYS if config.get(k)), self.fallback_url
        )
        return ExtensionTask(
            task_id=task.id,
            type=step.type_name,
            platform=str(config.get("platform") or self.platform),
            config=config,
        )

    async def submit_result(
        self,
        task_id: str,
        result: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error: Optional[str] = None,
    ) -> Task:
        return await self.lifecycle.report_extension_result(
            task_id, result, success=success, error=error
        )

    async def update_progress(self, task_id: str, progress: Mapping[str, Any]) -> Task:
        """Heartbeat from the extension while it works on a task."""
        task = await self.lifecycle.get_task(task_id)
        if task.status != TaskStatus.EXTENSION_QUEUED:
            raise BusinessRuleError(
                f"Task {task_id} is not being processed by the extension",
                code="TASK_NOT_QUEUED",
                details={"status": task.status.value},
            )
        now = utcnow()
        output = dict(task.output_data or {})
        output["progress_info"] = dict(progress)
        output["last_heartbeat"] = now.isoformat()
        updated = await self._repository.update_task(
            task_id,
            {"output_data": output, "lease_expires_at": now + self.lease, "updated_at": now},
            expected={"status": TaskStatus.EXTENSION_QUEUED},
        )
        if updated is None:
            raise ConflictError(f"Task {task_id} changed during progress update")
        return updated

    async def poll_jobs(self, limit: int = DEFAULT_JOB_POLL_LIMIT) -> List[EngagementJob]:
        return await self.engagement.poll_jobs(limit)

    async def report_job_metrics(
        self, job_id: str, metrics: EngagementMetrics | Mapping[str, Any]
    ) -> EngagementJob:
        return await self.engagement.report_metrics(job_id, metrics)
