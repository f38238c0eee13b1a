"""Command line interface for operating LaunchGrid workflows."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import typer

from .errors import LaunchGridError, NotFoundError
from .runtime import Runtime
from .security.context import ServiceContext

T = TypeVar("T")

app = typer.Typer(help="CLI for LaunchGrid workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for running and inspecting workflows")
task_app = typer.Typer(help="Commands for reviewing tasks")
job_app = typer.Typer(help="Commands for engagement tracking jobs")
strategy_app = typer.Typer(help="Commands for project strategies")
step_app = typer.Typer(help="Commands for editing workflow steps")

app.add_typer(workflow_app, name="workflow")
app.add_typer(task_app, name="task")
app.add_typer(job_app, name="job")
app.add_typer(strategy_app, name="strategy")
app.add_typer(step_app, name="step")

_runtime_instance: Optional[Runtime] = None

def _user_option() -> Any:
    return typer.Option(
        None, "--user", envvar="LAUNCHGRID_USER_ID", help="Act on behalf of this user id"
    )


def get_runtime() -> Runtime:
    global _runtime_instance
    if _runtime_instance is None:
        _runtime_instance = Runtime()
    return _runtime_instance


def _context(runtime: Runtime, user: Optional[str]) -> ServiceContext:
    return runtime.context(user) if user else runtime.system_context()


def _run(operation: Callable[[Runtime], Awaitable[T]]) -> T:
    runtime = get_runtime()

    async def runner() -> T:
        try:
            return await operation(runtime)
        finally:
            if runtime.audit is not None:
                await runtime.audit.flush()

    try:
        return asyncio.run(runner())
    except LaunchGridError as exc:
        typer.secho(f"Error [{exc.code}]: {exc.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


@app.callback()
def main() -> None:
    """LaunchGrid CLI entry point."""
    pass


@workflow_app.command("run")
def workflow_run(
    workflow_id: str,
    rerun_step: Optional[str] = typer.Option(None, help="Re-execute this step id"),
    user: Optional[str] = _user_option(),
) -> None:
    """
    Advance a workflow by one step.

    Resolves the next runnable step, executes it and prints the resulting
    task status. Steps that need the browser extension are left queued.

    Example:
        launchgrid workflow run wf-123 --user user-1
        launchgrid workflow run wf-123 --rerun-step step-2
    """
    result = _run(
        lambda rt: rt.runner(_context(rt, user)).execute(workflow_id, rerun_step_id=rerun_step)
    )
    typer.echo(f"Workflow {workflow_id}: {result.status}")
    if result.task_id:
        typer.echo(f"Task: {result.task_id} (step {result.step_id})")
    if result.message:
        typer.echo(result.message)
    if result.output:
        _echo_json(result.output)


@workflow_app.command("show")
def workflow_show(workflow_id: str, user: Optional[str] = _user_option()) -> None:
    """
    Show progress and per-step status of a workflow.

    Example:
        launchgrid workflow show wf-123
        # Output: Workflow wf-123 (Reply Growth): 40%
        #         - 1 scan_feed: completed
        #         - 2 select_targets: review_needed
    """
    state = _run(lambda rt: rt.runner(_context(rt, user)).execution_state(workflow_id))
    typer.echo(f"Workflow {state.workflow_id} ({state.name}): {state.progress}%")
    for step in state.steps:
        status = step.status.value if step.status else "not started"
        typer.echo(f"- {step.position} {step.type}: {status}")
    if state.is_finished:
        typer.echo("All steps completed")
    elif not state.can_execute:
        typer.echo(f"Blocked by: {', '.join(state.blocked_by)}")


@task_app.command("approve")
def task_approve(task_id: str, user: Optional[str] = _user_option()) -> None:
    """Approve a task that is waiting for review."""
    task = _run(lambda rt: rt.runner(_context(rt, user)).approve_task(task_id))
    typer.echo(f"Task {task.id}: {task.status.value}")


@task_app.command("reject")
def task_reject(
    task_id: str,
    reason: Optional[str] = typer.Option(None, help="Why the output was rejected"),
    user: Optional[str] = _user_option(),
) -> None:
    """Reject a task that is waiting for review."""
    task = _run(lambda rt: rt.runner(_context(rt, user)).reject_task(task_id, reason))
    typer.echo(f"Task {task.id}: {task.status.value}")


@job_app.command("list")
def job_list(project_id: str, user: Optional[str] = _user_option()) -> None:
    """List engagement jobs of a project, newest first."""
    jobs = _run(lambda rt: rt.engagement(_context(rt, user)).list_jobs(project_id))
    if not jobs:
        typer.echo("No engagement jobs found")
        return
    for job in jobs:
        typer.echo(f"{job.id}\t{job.status.value}\t{job.target_url}")


@job_app.command("stop")
def job_stop(job_id: str, user: Optional[str] = _user_option()) -> None:
    """Stop tracking an engagement job."""
    job = _run(lambda rt: rt.engagement(_context(rt, user)).stop_job(job_id))
    typer.echo(f"Job {job.id}: {job.status.value}")


@strategy_app.command("regenerate")
def strategy_regenerate(project_id: str, user: Optional[str] = _user_option()) -> None:
    """
    Replace a project's pillars and workflows with a fresh AI blueprint.

    Existing pillars, workflows, steps and tasks of the project are removed.
    """

    async def regenerate(rt: Runtime):
        ctx = _context(rt, user)
        project = await rt.repository.get_project(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        provider_id = project.context.ai_provider
        return await rt.strategy(ctx).regenerate(
            project_id, rt.provider(provider_id), rt.credentials.get(provider_id)
        )

    workflows = _run(regenerate)
    typer.echo(f"Created {len(workflows)} workflows")
    for workflow in workflows:
        typer.echo(f"{workflow.id}\t{workflow.name}")


@step_app.command("add")
def step_add(
    workflow_id: str,
    step_type: str,
    position: Optional[int] = typer.Option(None, help="Insert at this position instead of appending"),
    user: Optional[str] = _user_option(),
) -> None:
    """
    Add a step to a workflow.

    Example:
        launchgrid step add wf-123 GENERATE_DRAFT
        # Output: Added step st-456 at position 3
    """
    step = _run(
        lambda rt: rt.steps(_context(rt, user)).add_step(workflow_id, step_type, position=position)
    )
    typer.echo(f"Added step {step.id} at position {step.position}")


@step_app.command("remove")
def step_remove(step_id: str, user: Optional[str] = _user_option()) -> None:
    """Remove a step and its task history."""
    _run(lambda rt: rt.steps(_context(rt, user)).remove_step(step_id))
    typer.echo(f"Removed step {step_id}")


@step_app.command("reorder")
def step_reorder(
    workflow_id: str, step_ids: List[str], user: Optional[str] = _user_option()
) -> None:
    """Put the steps of a workflow in the given order."""
    steps = _run(lambda rt: rt.steps(_context(rt, user)).reorder_steps(workflow_id, step_ids))
    for step in steps:
        typer.echo(f"{step.position}\t{step.id}\t{step.type_name}")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from .api import create_app

    uvicorn.run(create_app(get_runtime()), host=host, port=port)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
