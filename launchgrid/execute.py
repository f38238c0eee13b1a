"""Workflow runner: advances a workflow by one step per invocation."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from .constants import DEFAULT_GENERATION_TIMEOUT_SECONDS
from .contracts import (
    ContentDraft,
    ExecutionResult,
    Project,
    PromptContext,
    ProviderId,
    Step,
    StepOutcome,
    StepState,
    StepType,
    Task,
    TaskStatus,
    Workflow,
    WorkflowState,
)
from .dispatch import StepContext, StepHandlerDispatch
from .engagement import EngagementScheduler
from .errors import LaunchGridError, NotFoundError, WorkflowError
from .events import EventType
from .lifecycle import TaskLifecycleManager
from .persistence import WorkflowRepository
from .providers import ContentProvider
from .resolver import WorkflowGraph
from .security.context import ServiceContext
from .security.credentials import ProviderCredentials
from .service import BaseService

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderId], ContentProvider]

POST_STEP_TYPES = frozenset(
    {StepType.POST_API, StepType.POST_REPLY, StepType.POST_EXTENSION}
)
_POST_URL_KEYS = ("post_url", "postUrl", "url")


class WorkflowRunner(BaseService):
    """Resolve the next step, claim a task for it, dispatch and persist.

    All coordination state is re-read from the repository on every call, so
    invoking ``execute`` again after a failure or a crash resumes the
    workflow instead of duplicating work.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        ctx: ServiceContext,
        providers: ProviderFactory,
        credentials: Optional[ProviderCredentials] = None,
        dispatch: Optional[StepHandlerDispatch] = None,
        lifecycle: Optional[TaskLifecycleManager] = None,
        engagement: Optional[EngagementScheduler] = None,
        generation_timeout: Optional[float] = DEFAULT_GENERATION_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(repository, ctx)
        self._providers = providers
        self.credentials = credentials or ProviderCredentials()
        self.dispatch = dispatch or StepHandlerDispatch()
        self.lifecycle = lifecycle or TaskLifecycleManager(repository, ctx)
        self.engagement = engagement or EngagementScheduler(repository, ctx)
        self.generation_timeout = generation_timeout

    async def _load(self, workflow_id: str) -> Tuple[Workflow, Project, WorkflowGraph]:
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        project = await self._verify_project_access(workflow.project_id)
        steps = await self._repository.list_steps(workflow.id)
        tasks = await self._repository.list_tasks(s.id for s in steps)
        return workflow, project, WorkflowGraph(workflow, steps, tasks)

    async def execute(
        self, workflow_id: str, rerun_step_id: Optional[str] = None
    ) -> ExecutionResult:
        """Run the next step of ``workflow_id``, or rerun a specific step."""
        async with self._timed("execute"):
            workflow, project, graph = await self._load(workflow_id)

            if rerun_step_id is not None:
                step = graph.get_step(rerun_step_id)
                if step is None:
                    raise NotFoundError("Step", rerun_step_id)
                target = graph.describe(step)
            else:
                target = graph.next_step()
                if target is None:
                    logger.info(f"Workflow {workflow_id} has no remaining steps")
                    await self.ctx.emit(EventType.WORKFLOW_COMPLETED, workflow_id, "workflow")
                    return ExecutionResult(
                        status="completed", message="Workflow completed", progress=100
                    )
                step = target.step

            if not target.can_execute:
                raise WorkflowError(
                    f"Step {step.id} is blocked by unfinished dependencies",
                    workflow_id=workflow_id,
                    blocked_by=target.blocked_by,
                )

            current = graph.current_task(step)
            if (
                rerun_step_id is None
                and current is not None
                and current.status == TaskStatus.EXTENSION_QUEUED
            ):
                return ExecutionResult(
                    status="extension_queued",
                    task_id=current.id,
                    step_id=step.id,
                    output=current.output_data,
                    message="Waiting for browser extension",
                    progress=graph.progress(),
                )

            task = await self.lifecycle.begin(
                step, project.id, rerun=rerun_step_id is not None
            )
            try:
                context = await self._build_context(project, workflow, step, graph)
                result = await self.dispatch.execute(step, context)
            except Exception as exc:
                logger.error(f"Step {step.id} failed in task {task.id}: {exc}")
                await self.lifecycle.fail(task, exc)
                raise

            task = await self.lifecycle.apply_result(task, result)
            status = (
                "awaiting_approval"
                if result.outcome == StepOutcome.AWAITING_APPROVAL
                else task.status.value
            )
            return ExecutionResult(
                status=status,
                task_id=task.id,
                step_id=step.id,
                output=task.output_data,
                message=result.message,
            )

    async def _build_context(
        self, project: Project, workflow: Workflow, step: Step, graph: WorkflowGraph
    ) -> StepContext:
        pillar = None
        if workflow.pillar_id:
            pillar = await self._repository.get_pillar(workflow.pillar_id)
        provider_id = project.context.ai_provider
        return StepContext(
            project=project,
            workflow=workflow,
            pillar=pillar,
            previous_output=graph.chained_output(step),
            generate=self._generator(provider_id),
            provider_id=provider_id,
            emit=self.ctx.emit,
            timeout=workflow.config.timeout_seconds or self.generation_timeout,
        )

    def _generator(self, provider_id: ProviderId):
        api_key = self.credentials.get(provider_id)

        async def generate(prompt: PromptContext) -> ContentDraft:
            provider = self._providers(provider_id)
            return await provider.generate_content(prompt, api_key=api_key)

        return generate

    # ------------------------------------------------------------------
    async def execution_state(self, workflow_id: str) -> WorkflowState:
        workflow, _, graph = await self._load(workflow_id)
        target = graph.next_step()
        steps = []
        for step in graph.steps:
            task = graph.current_task(step)
            steps.append(
                StepState(
                    step_id=step.id,
                    type=step.type_name,
                    position=step.position,
                    task_id=task.id if task else None,
                    status=task.status if task else None,
                    attempts=len(graph.history(step)),
                )
            )
        return WorkflowState(
            workflow_id=workflow.id,
            name=workflow.name,
            progress=graph.progress(),
            is_finished=target is None,
            next_step_id=target.step.id if target else None,
            can_execute=target.can_execute if target else False,
            blocked_by=target.blocked_by if target else [],
            steps=steps,
        )

    async def _load_task(self, task_id: str) -> Task:
        task = await self.lifecycle.get_task(task_id)
        await self._verify_project_access(task.project_id)
        return task

    async def approve_task(self, task_id: str) -> Task:
        """Approve reviewed output; posted content may start engagement tracking."""
        await self._load_task(task_id)
        task = await self.lifecycle.approve(task_id)
        await self._track_if_posted(task)
        return task

    async def reject_task(self, task_id: str, reason: Optional[str] = None) -> Task:
        await self._load_task(task_id)
        return await self.lifecycle.reject(task_id, reason)

    async def _track_if_posted(self, task: Task) -> None:
        step = await self._repository.get_step(task.step_id)
        if step is None or step.type not in POST_STEP_TYPES:
            return
        workflow = await self._repository.get_workflow(step.workflow_id)
        if workflow is None or not workflow.config.auto_track_engagement:
            return
        output = task.output_data or {}
        url = next((output[k] for k in _POST_URL_KEYS if output.get(k)), None)
        if not url:
            return
        try:
            job = await self.engagement.create_job(
                task.project_id, str(url), source_task_id=task.id
            )
        except LaunchGridError as exc:
            # The approval is already stored; tracking is best effort
            logger.warning(f"Could not track engagement for task {task.id}: {exc.message}")
            return
        logger.info(f"Auto-tracking engagement for task {task.id} as job {job.id}")

