"""Editing the steps of a workflow: add, remove and reorder."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .contracts import Step, StepType, TaskStatus, Workflow
from .errors import BusinessRuleError, NotFoundError, ValidationError
from .events import EventType
from .service import BaseService

logger = logging.getLogger(__name__)

# A step whose current task is in one of these states is still being worked on
_BUSY = frozenset({TaskStatus.IN_PROGRESS, TaskStatus.EXTENSION_QUEUED})


class StepManager(BaseService):
    """Tenant-checked step editing.

    Steps appended to a finished workflow become the next step the runner
    resolves.
    """

    async def _load_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        await self._verify_project_access(workflow.project_id)
        return workflow

    async def _load_step(self, step_id: str) -> Tuple[Step, Workflow]:
        step = await self._repository.get_step(step_id)
        if step is None:
            raise NotFoundError("Step", step_id)
        return step, await self._load_workflow(step.workflow_id)

    async def list_steps(self, workflow_id: str) -> List[Step]:
        await self._load_workflow(workflow_id)
        return await self._repository.list_steps(workflow_id)

    async def add_step(
        self,
        workflow_id: str,
        step_type: StepType | str,
        config: Optional[Dict[str, Any]] = None,
        position: Optional[int] = None,
        dependency_ids: Optional[Sequence[str]] = None,
    ) -> Step:
        """Insert a step; without ``position`` it goes after the last one.

        Steps at or after an explicit ``position`` move down by one.
        """
        async with self._timed("add_step"):
            await self._load_workflow(workflow_id)
            try:
                step_type = StepType(step_type)
            except ValueError as exc:
                raise ValidationError(
                    f"Unknown step type: {step_type}", details={"type": str(step_type)}
                ) from exc

            existing = await self._repository.list_steps(workflow_id)
            known = {s.id for s in existing}
            unknown = [d for d in dependency_ids or [] if d not in known]
            if unknown:
                raise ValidationError(
                    "Dependencies must name steps of the same workflow",
                    details={"dependency_ids": unknown},
                )

            last = max((s.position for s in existing), default=0)
            if position is None:
                position = last + 1
            elif position < 1:
                raise ValidationError(
                    "position must be at least 1", details={"position": position}
                )
            else:
                for other in existing:
                    if other.position >= position:
                        await self._repository.update_step(
                            other.id, {"position": other.position + 1}
                        )

            step = await self._repository.add_step(
                Step(
                    workflow_id=workflow_id,
                    type=step_type,
                    position=position,
                    config=dict(config or {}),
                    dependency_ids=list(dependency_ids or []),
                )
            )
            logger.info(f"Added {step.type_name} step {step.id} to workflow {workflow_id}")
            await self.ctx.emit(
                EventType.STEP_CREATED,
                step.id,
                "step",
                {"workflow_id": workflow_id, "type": step.type_name, "position": position},
            )
            return step

    async def remove_step(self, step_id: str) -> None:
        """Delete a step and its task history.

        Other steps stop depending on it. A step that is still running or
        waiting for the extension cannot be removed.
        """
        async with self._timed("remove_step"):
            step, workflow = await self._load_step(step_id)
            if step.current_task_id:
                current = await self._repository.get_task(step.current_task_id)
                if current is not None and current.status in _BUSY:
                    raise BusinessRuleError(
                        f"Step {step_id} has an active task",
                        code="STEP_BUSY",
                        details={"task_id": current.id, "status": current.status.value},
                    )

            for other in await self._repository.list_steps(workflow.id):
                if step_id in other.dependency_ids:
                    await self._repository.update_step(
                        other.id,
                        {"dependency_ids": [d for d in other.dependency_ids if d != step_id]},
                    )
            counts = await self._repository.delete_step(step_id)
            logger.info(f"Removed step {step_id} from workflow {workflow.id} ({counts})")
            await self.ctx.emit(
                EventType.STEP_REMOVED,
                step_id,
                "step",
                {"workflow_id": workflow.id, "tasks_deleted": counts["tasks"]},
            )

    async def reorder_steps(self, workflow_id: str, step_ids: Sequence[str]) -> List[Step]:
        """Renumber the workflow's steps 1..n in the order of ``step_ids``."""
        async with self._timed("reorder_steps"):
            await self._load_workflow(workflow_id)
            existing = await self._repository.list_steps(workflow_id)
            ordered = list(step_ids)
            if len(set(ordered)) != len(ordered) or set(ordered) != {s.id for s in existing}:
                raise ValidationError(
                    "Reorder must list every step of the workflow exactly once",
                    details={"step_ids": ordered},
                )

            positions = {s.id: s.position for s in existing}
            for position, step_id in enumerate(ordered, start=1):
                if positions[step_id] != position:
                    await self._repository.update_step(step_id, {"position": position})
            await self.ctx.emit(
                EventType.STEPS_REORDERED,
                workflow_id,
                "workflow",
                {"step_ids": ordered},
            )
            return await self._repository.list_steps(workflow_id)
