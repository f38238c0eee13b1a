"""Typed access to LaunchGrid records on top of a :class:`Store`."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel

from ..contracts import (
    EngagementJob,
    JobStatus,
    Pillar,
    Project,
    Step,
    Task,
    TaskStatus,
    Workflow,
)
from ..events import DomainEvent
from .base import Row, Store

ModelT = TypeVar("ModelT", bound=BaseModel)


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    return value


def to_row(model: BaseModel) -> Row:
    """Flatten a model into a store row, keeping top-level datetimes."""
    return {name: _encode(value) for name, value in model}


def encode_values(values: Mapping[str, Any]) -> Row:
    return {key: _encode(value) for key, value in values.items()}


class WorkflowRepository:
    """CRUD over projects, workflows, steps, tasks and engagement jobs."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def _get(self, table: str, model: Type[ModelT], row_id: str) -> Optional[ModelT]:
        rows = await self.store.find(table, {"id": row_id}, limit=1)
        return model.model_validate(rows[0]) if rows else None

    async def _find(
        self,
        table: str,
        model: Type[ModelT],
        filters: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> List[ModelT]:
        rows = await self.store.find(table, encode_values(filters or {}), **kwargs)
        return [model.model_validate(r) for r in rows]

    async def _insert(self, table: str, model: ModelT) -> ModelT:
        row = await self.store.insert(table, to_row(model))
        return type(model).model_validate(row)

    async def _update(
        self,
        table: str,
        model: Type[ModelT],
        row_id: str,
        patch: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Optional[ModelT]:
        row = await self.store.update(
            table,
            row_id,
            encode_values(patch),
            expected=encode_values(expected) if expected else None,
        )
        return model.model_validate(row) if row is not None else None

    # ------------------------------------------------------------------
    # Projects, pillars and workflows
    async def create_project(self, project: Project) -> Project:
        return await self._insert("projects", project)

    async def get_project(self, project_id: str) -> Optional[Project]:
        return await self._get("projects", Project, project_id)

    async def list_projects(self, user_id: Optional[str] = None) -> List[Project]:
        filters = {"user_id": user_id} if user_id else {}
        return await self._find("projects", Project, filters, order_by="created_at")

    async def create_pillar(self, pillar: Pillar) -> Pillar:
        return await self._insert("pillars", pillar)

    async def get_pillar(self, pillar_id: str) -> Optional[Pillar]:
        return await self._get("pillars", Pillar, pillar_id)

    async def list_pillars(self, project_id: str) -> List[Pillar]:
        return await self._find("pillars", Pillar, {"project_id": project_id})

    async def create_workflow(self, workflow: Workflow) -> Workflow:
        return await self._insert("workflows", workflow)

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        return await self._get("workflows", Workflow, workflow_id)

    async def list_workflows(self, project_id: str) -> List[Workflow]:
        return await self._find(
            "workflows", Workflow, {"project_id": project_id}, order_by="created_at"
        )

    async def update_workflow_config(
        self, workflow_id: str, config: Mapping[str, Any]
    ) -> Optional[Workflow]:
        return await self._update(
            "workflows", Workflow, workflow_id, {"config": dict(config)}
        )

    # ------------------------------------------------------------------
    # Steps
    async def add_step(self, step: Step) -> Step:
        return await self._insert("steps", step)

    async def get_step(self, step_id: str) -> Optional[Step]:
        return await self._get("steps", Step, step_id)

    async def list_steps(self, workflow_id: str) -> List[Step]:
        return await self._find(
            "steps", Step, {"workflow_id": workflow_id}, order_by="position"
        )

    async def claim_step(
        self, step: Step, current_task_id: Optional[str]
    ) -> Optional[Step]:
        """Move the step's task pointer if nobody else has since ``step`` was read."""
        return await self._update(
            "steps",
            Step,
            step.id,
            {"current_task_id": current_task_id, "version": step.version + 1},
            expected={"version": step.version},
        )

    async def update_step(self, step_id: str, patch: Mapping[str, Any]) -> Optional[Step]:
        return await self._update("steps", Step, step_id, patch)

    async def delete_step(self, step_id: str) -> Dict[str, int]:
        """Remove a step together with its task history."""
        task_ids = [t.id for t in await self.list_tasks([step_id])]
        await self._detach_jobs(task_ids)
        return {
            "tasks": await self.store.delete("tasks", {"id": task_ids}) if task_ids else 0,
            "steps": await self.store.delete("steps", {"id": step_id}),
        }

    # ------------------------------------------------------------------
    # Tasks
    async def insert_task(self, task: Task) -> Task:
        return await self._insert("tasks", task)

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await self._get("tasks", Task, task_id)

    async def list_tasks(self, step_ids: Iterable[str]) -> List[Task]:
        ids = list(step_ids)
        if not ids:
            return []
        return await self._find("tasks", Task, {"step_id": ids}, order_by="created_at")

    async def latest_task(self, step_id: str) -> Optional[Task]:
        tasks = await self._find(
            "tasks",
            Task,
            {"step_id": step_id},
            order_by="created_at",
            descending=True,
            limit=1,
        )
        return tasks[0] if tasks else None

    async def find_tasks(
        self, status: TaskStatus, limit: Optional[int] = None
    ) -> List[Task]:
        """Tasks in ``status``, oldest first."""
        return await self._find(
            "tasks", Task, {"status": status}, order_by="created_at", limit=limit
        )

    async def update_task(
        self,
        task_id: str,
        patch: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Task]:
        return await self._update("tasks", Task, task_id, patch, expected)

    # ------------------------------------------------------------------
    # Engagement jobs
    async def insert_job(self, job: EngagementJob) -> EngagementJob:
        return await self._insert("engagement_jobs", job)

    async def get_job(self, job_id: str) -> Optional[EngagementJob]:
        return await self._get("engagement_jobs", EngagementJob, job_id)

    async def list_jobs(
        self,
        *,
        project_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
        order_by: str = "created_at",
        limit: Optional[int] = None,
    ) -> List[EngagementJob]:
        filters: Dict[str, Any] = {}
        if project_id is not None:
            filters["project_id"] = project_id
        if status is not None:
            filters["status"] = status
        return await self._find(
            "engagement_jobs", EngagementJob, filters, order_by=order_by, limit=limit
        )

    async def update_job(
        self,
        job_id: str,
        patch: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Optional[EngagementJob]:
        return await self._update("engagement_jobs", EngagementJob, job_id, patch, expected)

    # ------------------------------------------------------------------
    # Strategy regeneration
    async def delete_strategy(self, project_id: str) -> Dict[str, int]:
        """Remove pillars, workflows, steps and tasks of a project.

        Children are deleted before parents. Engagement jobs survive and
        lose their link to deleted tasks.
        """
        workflows = await self.list_workflows(project_id)
        workflow_ids = [w.id for w in workflows]
        steps = (
            await self._find("steps", Step, {"workflow_id": workflow_ids})
            if workflow_ids
            else []
        )
        step_ids = [s.id for s in steps]
        tasks = await self.list_tasks(step_ids)
        task_ids = [t.id for t in tasks]

        await self._detach_jobs(task_ids)
        counts = {
            "tasks": await self.store.delete("tasks", {"id": task_ids}) if task_ids else 0,
            "steps": await self.store.delete("steps", {"id": step_ids}) if step_ids else 0,
            "workflows": await self.store.delete("workflows", {"project_id": project_id}),
            "pillars": await self.store.delete("pillars", {"project_id": project_id}),
        }
        return counts

    async def _detach_jobs(self, task_ids: List[str]) -> None:
        if not task_ids:
            return
        for job in await self._find(
            "engagement_jobs", EngagementJob, {"source_task_id": task_ids}
        ):
            await self.update_job(job.id, {"source_task_id": None})

    # ------------------------------------------------------------------
    # Audit log
    async def record_event(self, event: DomainEvent) -> None:
        row = to_row(event)
        row["event_type"] = row.pop("type")
        await self.store.insert("audit_logs", row)

    async def list_audit_logs(self, aggregate_id: Optional[str] = None) -> List[Row]:
        filters = {"aggregate_id": aggregate_id} if aggregate_id else {}
        return await self.store.find("audit_logs", filters, order_by="occurred_at")
