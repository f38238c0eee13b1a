from datetime import timedelta

import pytest

from launchgrid.contracts import Step, StepType, Task, TaskStatus, Workflow
from launchgrid.execute import WorkflowRunner
from launchgrid.resolver import WorkflowGraph, resolve_next
from launchgrid.steps import StepManager
from launchgrid.utils.clock import utcnow


def _workflow() -> Workflow:
    return Workflow(id="wf", project_id="p", name="Flow")


def _steps(*types):
    return [
        Step(id=f"s{i}", workflow_id="wf", type=t, position=i)
        for i, t in enumerate(types, start=1)
    ]


def _task(step_id, status, minutes=0, output=None, task_id=None):
    created = utcnow() + timedelta(minutes=minutes)
    return Task(
        id=task_id or f"{step_id}-{minutes}",
        step_id=step_id,
        project_id="p",
        status=status,
        output_data=output,
        created_at=created,
    )


def test_first_step_is_executable_without_tasks():
    steps = _steps(StepType.GENERATE_DRAFT, StepType.REVIEW_CONTENT)
    target = resolve_next(_workflow(), steps, [])
    assert target is not None
    assert target.step.id == "s1"
    assert target.can_execute
    assert target.blocked_by == []


def test_review_needed_counts_as_done():
    steps = _steps(StepType.GENERATE_DRAFT, StepType.REVIEW_CONTENT)
    tasks = [_task("s1", TaskStatus.REVIEW_NEEDED)]
    target = resolve_next(_workflow(), steps, tasks)
    assert target.step.id == "s2"
    assert target.completed_dependencies == ["s1"]


def test_finished_workflow_resolves_to_none():
    steps = _steps(StepType.GENERATE_DRAFT, StepType.REVIEW_CONTENT)
    tasks = [_task("s1", TaskStatus.COMPLETED), _task("s2", TaskStatus.REVIEW_NEEDED)]
    graph = WorkflowGraph(_workflow(), steps, tasks)
    assert graph.next_step() is None
    assert graph.is_finished()
    assert graph.progress() == 100


def test_latest_task_decides_when_step_has_no_pointer():
    steps = _steps(StepType.GENERATE_DRAFT)
    tasks = [
        _task("s1", TaskStatus.COMPLETED, minutes=0),
        _task("s1", TaskStatus.FAILED, minutes=1),
    ]
    graph = WorkflowGraph(_workflow(), steps, tasks)
    assert graph.current_task(steps[0]).status == TaskStatus.FAILED
    assert graph.next_step().step.id == "s1"
    assert len(graph.history(steps[0])) == 2


def test_step_pointer_wins_over_creation_order():
    steps = _steps(StepType.GENERATE_DRAFT)
    steps[0].current_task_id = "old"
    tasks = [
        _task("s1", TaskStatus.COMPLETED, minutes=0, task_id="old"),
        _task("s1", TaskStatus.FAILED, minutes=1, task_id="new"),
    ]
    graph = WorkflowGraph(_workflow(), steps, tasks)
    assert graph.current_task(steps[0]).id == "old"
    assert graph.is_finished()


def test_explicit_dependency_blocks_step():
    steps = _steps(StepType.SCAN_FEED, StepType.SELECT_TARGETS, StepType.GENERATE_REPLIES)
    steps[2].dependency_ids = ["s1", "s2"]
    tasks = [
        _task("s1", TaskStatus.COMPLETED),
        _task("s2", TaskStatus.COMPLETED),
    ]
    graph = WorkflowGraph(_workflow(), steps, tasks)
    described = graph.describe(steps[2])
    assert described.can_execute
    assert described.completed_dependencies == ["s1", "s2"]

    graph = WorkflowGraph(_workflow(), steps, tasks[:1])
    described = graph.describe(steps[2])
    assert not described.can_execute
    assert described.blocked_by == ["s2"]


def test_unknown_dependency_is_never_satisfied():
    steps = _steps(StepType.GENERATE_DRAFT, StepType.REVIEW_CONTENT)
    steps[1].dependency_ids = ["missing"]
    graph = WorkflowGraph(_workflow(), steps, [_task("s1", TaskStatus.COMPLETED)])
    target = graph.next_step()
    assert target.step.id == "s2"
    assert target.blocked_by == ["missing"]


def test_chained_output_uses_highest_positioned_dependency():
    steps = _steps(StepType.SCAN_FEED, StepType.SELECT_TARGETS, StepType.GENERATE_REPLIES)
    steps[2].dependency_ids = ["s2", "s1"]
    tasks = [
        _task("s1", TaskStatus.COMPLETED, output={"found_items": [1]}),
        _task("s2", TaskStatus.REVIEW_NEEDED, output={"selected_items": [1]}),
    ]
    graph = WorkflowGraph(_workflow(), steps, tasks)
    assert graph.chained_output(steps[2]) == {"selected_items": [1]}
    assert graph.chained_output(steps[0]) is None


def test_progress_rounds_percentage():
    steps = _steps(StepType.SCAN_FEED, StepType.SELECT_TARGETS, StepType.GENERATE_REPLIES)
    graph = WorkflowGraph(_workflow(), steps, [_task("s1", TaskStatus.COMPLETED)])
    assert graph.progress() == 33
    assert WorkflowGraph(_workflow(), [], []).progress() == 100


def test_steps_are_ordered_by_position():
    steps = list(reversed(_steps(StepType.GENERATE_DRAFT, StepType.REVIEW_CONTENT)))
    graph = WorkflowGraph(_workflow(), steps, [])
    assert [s.id for s in graph.steps] == ["s1", "s2"]
    assert graph.dependencies(graph.steps[1]) == ["s1"]
    assert graph.dependencies(graph.steps[0]) == []


def test_finished_graph_keeps_resolving_to_none():
    steps = _steps(StepType.GENERATE_DRAFT, StepType.REVIEW_CONTENT)
    tasks = [_task("s1", TaskStatus.COMPLETED), _task("s2", TaskStatus.COMPLETED)]
    graph = WorkflowGraph(_workflow(), steps, tasks)

    assert [graph.next_step() for _ in range(3)] == [None, None, None]
    assert graph.is_finished()


@pytest.mark.asyncio
async def test_step_appended_after_completion_runs_next(repository, ctx, provider, seed):
    _, workflow, steps = await seed([StepType.GENERATE_DRAFT])
    runner = WorkflowRunner(repository, ctx, providers=lambda provider_id: provider)
    await runner.execute(workflow.id)
    assert (await runner.execute(workflow.id)).status == "completed"

    appended = await StepManager(repository, ctx).add_step(workflow.id, StepType.REVIEW_CONTENT)
    assert appended.position == len(steps) + 1

    result = await runner.execute(workflow.id)
    assert result.step_id == appended.id
    assert result.status == "awaiting_approval"
