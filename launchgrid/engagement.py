"""Engagement tracking jobs polled by the browser extension."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .constants import (
    DEFAULT_CHECK_INTERVAL_MINUTES,
    DEFAULT_ENGAGEMENT_DURATION_DAYS,
    DEFAULT_JOB_POLL_LIMIT,
    MAX_JOB_POLL_LIMIT,
    METRIC_HISTORY_LIMIT,
)
from .contracts import EngagementJob, EngagementMetrics, JobStatus
from .errors import BusinessRuleError, ConflictError, NotFoundError, ValidationError
from .events import EventType
from .persistence import WorkflowRepository
from .security.context import ServiceContext
from .service import BaseService
from .utils.clock import utcnow

logger = logging.getLogger(__name__)

_URL = TypeAdapter(AnyHttpUrl)


class EngagementScheduler(BaseService):
    """Create, poll, report on and stop engagement jobs.

    Expiry is evaluated lazily whenever a job is read through this service;
    there is no background timer.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        ctx: ServiceContext,
        check_interval_minutes: int = DEFAULT_CHECK_INTERVAL_MINUTES,
        default_duration_days: int = DEFAULT_ENGAGEMENT_DURATION_DAYS,
    ) -> None:
        super().__init__(repository, ctx)
        self.check_interval_minutes = check_interval_minutes
        self.default_duration_days = default_duration_days

    async def create_job(
        self,
        project_id: str,
        target_url: str,
        source_task_id: Optional[str] = None,
        duration_days: Optional[int] = None,
    ) -> EngagementJob:
        await self._verify_project_access(project_id)
        try:
            _URL.validate_python(target_url)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid target URL: {target_url}", details={"target_url": target_url}
            ) from exc
        duration_days = duration_days if duration_days is not None else self.default_duration_days
        if duration_days <= 0:
            raise ValidationError(
                "duration_days must be positive", details={"duration_days": duration_days}
            )

        now = utcnow()
        job = await self._repository.insert_job(
            EngagementJob(
                project_id=project_id,
                target_url=target_url,
                source_task_id=source_task_id,
                duration_days=duration_days,
                check_interval_minutes=self.check_interval_minutes,
                started_at=now,
                expires_at=now + timedelta(days=duration_days),
                next_poll_at=now,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(f"Engagement job {job.id} tracking {target_url} for {duration_days} days")
        await self.ctx.emit(
            EventType.ENGAGEMENT_JOB_CREATED,
            job.id,
            "engagement_job",
            {"project_id": project_id, "target_url": target_url, "source_task_id": source_task_id},
        )
        return job

    async def get_job(self, job_id: str) -> EngagementJob:
        job = await self._repository.get_job(job_id)
        if job is None:
            raise NotFoundError("Engagement job", job_id)
        await self._verify_project_access(job.project_id)
        return await self._expire_if_due(job)

    async def list_jobs(self, project_id: str) -> List[EngagementJob]:
        await self._verify_project_access(project_id)
        jobs = await self._repository.list_jobs(project_id=project_id)
        return [await self._expire_if_due(job) for job in jobs]

    async def poll_jobs(self, limit: int = DEFAULT_JOB_POLL_LIMIT) -> List[EngagementJob]:
        """Active jobs due for a check-in, oldest due first."""
        if limit < 1:
            raise ValidationError("limit must be at least 1", details={"limit": limit})
        limit = min(limit, MAX_JOB_POLL_LIMIT)

        owned: Optional[set] = None
        if not self.ctx.is_system:
            owned = {p.id for p in await self._repository.list_projects(self.ctx.user_id)}

        now = utcnow()
        due: List[EngagementJob] = []
        for job in await self._repository.list_jobs(
            status=JobStatus.ACTIVE, order_by="next_poll_at"
        ):
            if owned is not None and job.project_id not in owned:
                continue
            job = await self._expire_if_due(job, now)
            if job.status != JobStatus.ACTIVE:
                continue
            if job.next_poll_at <= now and len(due) < limit:
                due.append(job)
        return due

    async def report_metrics(
        self, job_id: str, metrics: Union[EngagementMetrics, Mapping[str, Any]]
    ) -> EngagementJob:
        """Store ``metrics`` as the latest snapshot, replacing the previous one."""
        if not isinstance(metrics, EngagementMetrics):
            try:
                metrics = EngagementMetrics.model_validate(dict(metrics))
            except PydanticValidationError as exc:
                raise ValidationError(
                    "Invalid engagement metrics",
                    details={"errors": exc.errors(include_url=False, include_context=False)},
                ) from exc

        job = await self.get_job(job_id)
        now = utcnow()
        patch: Dict[str, Any] = {
            "metrics": metrics,
            "metric_history": [*job.metric_history, metrics][-METRIC_HISTORY_LIMIT:],
            "last_checked_at": now,
            "updated_at": now,
        }
        if job.status == JobStatus.ACTIVE:
            patch["next_poll_at"] = now + timedelta(minutes=job.check_interval_minutes)
        else:
            logger.info(f"Metrics reported for {job.status.value} job {job_id}")

        updated = await self._repository.update_job(
            job_id, patch, expected={"status": job.status}
        )
        if updated is None:
            raise ConflictError(f"Engagement job {job_id} changed during report")
        await self.ctx.emit(
            EventType.ENGAGEMENT_METRICS_REPORTED,
            job_id,
            "engagement_job",
            metrics.model_dump(mode="json"),
        )
        return updated

    async def trigger_now(self, job_id: str) -> EngagementJob:
        job = await self.get_job(job_id)
        if job.status != JobStatus.ACTIVE:
            raise BusinessRuleError(
                f"Cannot trigger a {job.status.value} engagement job",
                code="JOB_NOT_ACTIVE",
                details={"job_id": job_id, "status": job.status.value},
            )
        now = utcnow()
        updated = await self._repository.update_job(
            job_id, {"next_poll_at": now, "updated_at": now}, expected={"status": JobStatus.ACTIVE}
        )
        if updated is None:
            raise ConflictError(f"Engagement job {job_id} changed during trigger")
        return updated

    async def stop_job(self, job_id: str) -> EngagementJob:
        """Stop tracking. There is no way back to ``active``."""
        job = await self.get_job(job_id)
        if job.status == JobStatus.STOPPED:
            return job
        if job.status == JobStatus.EXPIRED:
            raise BusinessRuleError(
                "Engagement job already expired",
                code="JOB_NOT_ACTIVE",
                details={"job_id": job_id, "status": job.status.value},
            )
        updated = await self._repository.update_job(
            job_id,
            {"status": JobStatus.STOPPED, "updated_at": utcnow()},
            expected={"status": JobStatus.ACTIVE},
        )
        if updated is None:
            raise ConflictError(f"Engagement job {job_id} changed while stopping")
        logger.info(f"Engagement job {job_id} stopped")
        await self.ctx.emit(EventType.ENGAGEMENT_JOB_STOPPED, job_id, "engagement_job")
        return updated

    async def _expire_if_due(self, job: EngagementJob, now=None) -> EngagementJob:
        now = now or utcnow()
        if job.status != JobStatus.ACTIVE or job.expires_at > now:
            return job
        updated = await self._repository.update_job(
            job.id,
            {"status": JobStatus.EXPIRED, "updated_at": now},
            expected={"status": JobStatus.ACTIVE},
        )
        if updated is None:
            # Someone stopped or expired it first
            return await self._repository.get_job(job.id) or job
        logger.info(f"Engagement job {job.id} expired")
        await self.ctx.emit(EventType.ENGAGEMENT_JOB_EXPIRED, job.id, "engagement_job")
        return updated
