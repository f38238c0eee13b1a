"""Workflow graph resolution: which step runs next, and with what input."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from .contracts import ExecutableStep, Step, Task, Workflow


class WorkflowGraph:
    """Ordered steps of one workflow together with their task history.

    A step is *done* when its current task is ``completed`` or
    ``review_needed``. The current task is the one the step points at, or
    the most recently created task when the step carries no pointer.
    """

    def __init__(self, workflow: Workflow, steps: Iterable[Step], tasks: Iterable[Task]) -> None:
        self.workflow = workflow
        self.steps: List[Step] = sorted(steps, key=lambda s: s.position)
        self._by_id: Dict[str, Step] = {s.id: s for s in self.steps}
        self._index: Dict[str, int] = {s.id: i for i, s in enumerate(self.steps)}
        self._tasks_by_id: Dict[str, Task] = {}
        self._history: Dict[str, List[Task]] = defaultdict(list)
        for task in sorted(tasks, key=lambda t: t.created_at):
            self._tasks_by_id[task.id] = task
            self._history[task.step_id].append(task)

    def get_step(self, step_id: str) -> Optional[Step]:
        return self._by_id.get(step_id)

    def history(self, step: Step) -> List[Task]:
        return list(self._history.get(step.id, []))

    def current_task(self, step: Step) -> Optional[Task]:
        if step.current_task_id:
            task = self._tasks_by_id.get(step.current_task_id)
            if task is not None:
                return task
        history = self._history.get(step.id)
        return history[-1] if history else None

    def is_done(self, step: Step) -> bool:
        task = self.current_task(step)
        return task is not None and task.is_done

    def dependencies(self, step: Step) -> List[str]:
        """Explicit dependencies, else the positional predecessor."""
        if step.dependency_ids:
            return list(step.dependency_ids)
        index = self._index[step.id]
        return [self.steps[index - 1].id] if index > 0 else []

    def dependency_state(self, step: Step) -> Tuple[List[str], List[str]]:
        """Return ``(blocked_by, completed)`` in dependency order.

        A dependency naming a step outside this workflow is never satisfied.
        """
        blocked: List[str] = []
        completed: List[str] = []
        for dep_id in self.dependencies(step):
            dep = self._by_id.get(dep_id)
            if dep is not None and self.is_done(dep):
                completed.append(dep_id)
            else:
                blocked.append(dep_id)
        return blocked, completed

    def describe(self, step: Step) -> ExecutableStep:
        blocked, completed = self.dependency_state(step)
        return ExecutableStep(
            step=step,
            can_execute=not blocked,
            blocked_by=blocked,
            completed_dependencies=completed,
        )

    def next_step(self) -> Optional[ExecutableStep]:
        """First step by position that is not done, or ``None`` when finished."""
        for step in self.steps:
            if not self.is_done(step):
                return self.describe(step)
        return None

    def is_finished(self) -> bool:
        return self.next_step() is None

    def chained_output(self, step: Step) -> Optional[dict]:
        """Output of the most recent satisfied predecessor of ``step``."""
        _, completed = self.dependency_state(step)
        if not completed:
            return None
        latest = max((self._by_id[i] for i in completed), key=lambda s: s.position)
        task = self.current_task(latest)
        return task.output_data if task is not None else None

    def progress(self) -> int:
        """Percentage of done steps."""
        if not self.steps:
            return 100
        done = sum(1 for s in self.steps if self.is_done(s))
        return round(100 * done / len(self.steps))


def resolve_next(
    workflow: Workflow, steps: Iterable[Step], tasks: Iterable[Task]
) -> Optional[ExecutableStep]:
    """Compute the next executable step of ``workflow``."""
    return WorkflowGraph(workflow, steps, tasks).next_step()
