"""Step handler dispatch for LaunchGrid workflows.

Handlers never persist anything. They return a :class:`StepResult` that the
lifecycle manager turns into a task status.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .constants import EXTENSION_PLACEHOLDER, SELECTION_RATIONALE, SIMULATED_REPLY
from .contracts import (
    ContentDraft,
    GenerationRecord,
    Pillar,
    Project,
    PromptContext,
    ProviderId,
    Step,
    StepOutcome,
    StepResult,
    StepType,
    Workflow,
)
from .errors import (
    ConfigurationError,
    GenerationFailed,
    LaunchGridError,
    NoTargets,
    ProviderError,
    UnsupportedStepType,
)
from .events import EventType

logger = logging.getLogger(__name__)

GenerateFn = Callable[[PromptContext], Awaitable[ContentDraft]]
EmitFn = Callable[..., Awaitable[None]]
Handler = Callable[[Step, "StepContext"], Awaitable[StepResult]]

REPLY_CALIBRATION = {
    "pure_engagement": (
        "Engage deeply with the post. Do not mention your own product; "
        "add value or a unique perspective as a helpful peer."
    ),
    "subtle_hint": (
        "Engage with the post first. Only hint at your product if it is "
        "genuinely relevant, without links or a sales pitch."
    ),
    "direct_promo": (
        "Reply helpfully and mention your product as a solution when it fits."
    ),
}


@dataclass
class StepContext:
    """Everything a handler may read while executing one step."""

    project: Project
    workflow: Workflow
    pillar: Optional[Pillar] = None
    previous_output: Optional[Dict[str, Any]] = None
    generate: Optional[GenerateFn] = None
    provider_id: ProviderId = ProviderId.GEMINI
    emit: Optional[EmitFn] = None
    timeout: Optional[float] = None

    @property
    def review_outcome(self) -> StepOutcome:
        if self.workflow.config.requires_approval:
            return StepOutcome.REVIEW_NEEDED
        return StepOutcome.COMPLETED


def build_prompt_context(
    step: Step,
    context: StepContext,
    target: Optional[Dict[str, Any]] = None,
    custom_prompt: Optional[str] = None,
) -> PromptContext:
    project_context = context.project.context
    return PromptContext(
        project_name=context.project.name,
        description=project_context.description,
        audience=project_context.audience or "General Audience",
        pain_points=project_context.pain_points,
        budget=project_context.budget,
        pillar_name=context.pillar.name if context.pillar else "Unknown",
        workflow_name=context.workflow.name,
        workflow_description=context.workflow.description,
        step_type=step.type_name,
        step_config=step.config,
        strictness=context.workflow.config.ai_strictness,
        previous_output=context.previous_output,
        target=target,
        custom_prompt=custom_prompt,
    )


class StepHandlerDispatch:
    """Routes each step to the handler for its type."""

    def __init__(self) -> None:
        self._handlers: Dict[StepType, Handler] = {
            StepType.GENERATE_DRAFT: self._generate_content,
            StepType.GENERATE_OUTLINE: self._generate_content,
            StepType.SCAN_FEED: self._scan_feed,
            StepType.SELECT_TARGETS: self._select_targets,
            StepType.GENERATE_REPLIES: self._generate_replies,
            StepType.REVIEW_CONTENT: self._review,
            StepType.WAIT_APPROVAL: self._review,
            StepType.POST_API: self._post,
            StepType.POST_REPLY: self._post,
            StepType.POST_EXTENSION: self._post,
        }

    def register(self, step_type: StepType, handler: Handler) -> None:
        """Install or replace the handler for ``step_type``."""
        self._handlers[step_type] = handler

    def supports(self, step_type: Any) -> bool:
        return step_type in self._handlers

    async def execute(self, step: Step, context: StepContext) -> StepResult:
        handler = self._handlers.get(step.type)
        if handler is None:
            raise UnsupportedStepType(step.type)
        logger.info(f"Dispatching step {step.id} ({step.type_name})")
        return await handler(step, context)

    # ------------------------------------------------------------------
    # AI access
    async def _call_provider(
        self,
        prompt: PromptContext,
        context: StepContext,
        step: Step,
        records: List[GenerationRecord],
    ) -> ContentDraft:
        if context.generate is None:
            raise ConfigurationError("No content generator configured")
        started = time.perf_counter()
        error: Optional[BaseException] = None
        try:
            draft = await asyncio.wait_for(context.generate(prompt), timeout=context.timeout)
        except asyncio.TimeoutError as exc:
            error = exc
            message = f"Generation timed out after {context.timeout}s"
        except Exception as exc:
            error = exc
            message = f"Generation failed: {exc}"

        duration_ms = int((time.perf_counter() - started) * 1000)
        payload = {
            "provider": context.provider_id.value,
            "step_id": step.id,
            "step_type": step.type_name,
            "duration_ms": duration_ms,
        }
        records.append(
            GenerationRecord(
                provider=context.provider_id, duration_ms=duration_ms, success=error is None
            )
        )
        if error is not None:
            logger.warning(f"{message} (step {step.id}, provider {context.provider_id.value})")
            await self._emit(context, EventType.AI_GENERATION_FAILED, step, {**payload, "error": str(error)})
            if isinstance(error, LaunchGridError) and not isinstance(error, ProviderError):
                raise error
            raise GenerationFailed(message, details=payload) from error

        await self._emit(context, EventType.AI_GENERATION_COMPLETED, step, payload)
        return draft

    async def _emit(
        self, context: StepContext, event_type: EventType, step: Step, payload: dict
    ) -> None:
        if context.emit is not None:
            await context.emit(event_type, step.id, "step", payload)

    # ------------------------------------------------------------------
    # Handlers
    async def _generate_content(self, step: Step, context: StepContext) -> StepResult:
        records: List[GenerationRecord] = []
        draft = await self._call_provider(
            build_prompt_context(step, context), context, step, records
        )
        output = draft.model_dump()
        output["provider"] = context.provider_id.value
        return StepResult(
            outcome=context.review_outcome,
            output=output,
            message=draft.title or "Content generated",
            generations=records,
        )

    async def _scan_feed(self, step: Step, context: StepContext) -> StepResult:
        return StepResult(
            outcome=StepOutcome.EXTENSION_QUEUED,
            output={
                "pending_extension": True,
                "info": EXTENSION_PLACEHOLDER,
                "max_items": context.workflow.config.feed_scan_count,
            },
            message="Task queued for browser extension",
        )

    async def _select_targets(self, step: Step, context: StepContext) -> StepResult:
        previous = context.previous_output or {}
        output: Dict[str, Any] = {
            "selected_items": list(previous.get("found_items") or []),
            "rationale": SELECTION_RATIONALE,
        }
        if "is_mock" in previous:
            output["is_mock"] = previous["is_mock"]
        return StepResult(
            outcome=context.review_outcome,
            output=output,
            message=f"Selected {len(output['selected_items'])} targets",
        )

    async def _generate_replies(self, step: Step, context: StepContext) -> StepResult:
        previous = context.previous_output or {}
        targets = list(previous.get("selected_items") or [])
        if not targets:
            raise NoTargets(details={"step_id": step.id})

        if previous.get("is_mock"):
            # Upstream is simulated data; never spend provider calls on it
            replies = [
                {
                    "target_id": target.get("id"),
                    "author": _author(target),
                    "reply": SIMULATED_REPLY.format(author=_author(target)),
                }
                for target in targets
            ]
            return StepResult(
                outcome=context.review_outcome,
                output={
                    "replies": replies,
                    "title": f"Drafted {len(replies)} Replies (SIMULATED)",
                    "is_mock": True,
                },
                message="Simulated replies drafted",
            )

        calibration = step.config.get("reply_calibration", "subtle_hint")
        instructions = REPLY_CALIBRATION.get(calibration, REPLY_CALIBRATION["subtle_hint"])
        tone = step.config.get("tone")
        if tone:
            instructions = f"{instructions} Tone: {tone}."

        records: List[GenerationRecord] = []
        drafts = await _gather_or_cancel(
            [
                self._call_provider(
                    build_prompt_context(step, context, target=target, custom_prompt=instructions),
                    context,
                    step,
                    records,
                )
                for target in targets
            ]
        )
        replies = [
            {"target_id": target.get("id"), "author": _author(target), "reply": draft.content}
            for target, draft in zip(targets, drafts)
        ]
        return StepResult(
            outcome=context.review_outcome,
            output={"replies": replies, "title": f"Drafted {len(replies)} Replies"},
            message=f"Drafted {len(replies)} replies",
            generations=records,
        )

    async def _review(self, step: Step, context: StepContext) -> StepResult:
        return StepResult(
            outcome=StepOutcome.AWAITING_APPROVAL,
            output=dict(context.previous_output or {}),
            message="Awaiting human review",
        )

    async def _post(self, step: Step, context: StepContext) -> StepResult:
        # Posting always waits for a human; nothing is published from here
        output = dict(context.previous_output or {})
        output["pending_action"] = step.type_name
        return StepResult(
            outcome=StepOutcome.AWAITING_APPROVAL,
            output=output,
            message="Awaiting approval before posting",
        )


def _author(target: Dict[str, Any]) -> str:
    return str(target.get("author") or target.get("username") or "there")


async def _gather_or_cancel(calls: List[Awaitable[ContentDraft]]) -> List[ContentDraft]:
    """Run ``calls`` concurrently; the first failure cancels the others."""
    tasks = [asyncio.ensure_future(call) for call in calls]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
