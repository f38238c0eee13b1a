"""Turning an AI blueprint into pillars, workflows and default steps."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from .contracts import (
    Blueprint,
    Pillar,
    PillarType,
    Step,
    StepType,
    Workflow,
)
from .events import EventType
from .providers import ContentProvider
from .service import BaseService

logger = logging.getLogger(__name__)

StepTemplate = Tuple[StepType, Dict[str, Any]]

ENGAGEMENT_PATTERN = re.compile(r"engage|reply|growth|interact|comment", re.IGNORECASE)

CONTENT_SEO_STEPS: List[StepTemplate] = [
    (StepType.GENERATE_OUTLINE, {"prompt_type": "outline"}),
    (StepType.GENERATE_DRAFT, {"prompt_type": "full_article"}),
    (StepType.REVIEW_CONTENT, {}),
    (StepType.POST_API, {}),
]

PAID_ADS_STEPS: List[StepTemplate] = [
    (StepType.GENERATE_HOOKS, {"count": 5}),
    (StepType.GENERATE_IMAGE, {"style": "cinematic"}),
    (StepType.REVIEW_CONTENT, {}),
]

ENGAGEMENT_STEPS: List[StepTemplate] = [
    (StepType.SCAN_FEED, {"source": "keywords", "criteria": "high_engagement"}),
    (StepType.SELECT_TARGETS, {"max_select": 3}),
    (StepType.GENERATE_REPLIES, {"tone": "insightful"}),
    (StepType.REVIEW_CONTENT, {}),
    (StepType.POST_REPLY, {}),
]

STANDARD_STEPS: List[StepTemplate] = [
    (StepType.GENERATE_DRAFT, {"prompt_template": "standard_v1"}),
    (StepType.REVIEW_CONTENT, {}),
    (StepType.POST_API, {}),
]


def default_steps(pillar_type: str, name: str, goal: str = "") -> List[StepTemplate]:
    """Step templates for a new workflow of the given pillar type."""
    if pillar_type == PillarType.CONTENT_SEO.value:
        return CONTENT_SEO_STEPS
    if pillar_type == PillarType.PAID_ADS.value:
        return PAID_ADS_STEPS
    if ENGAGEMENT_PATTERN.search(f"{name} {goal}"):
        return ENGAGEMENT_STEPS
    return STANDARD_STEPS


def _pillar_type(value: str) -> PillarType:
    try:
        return PillarType(value)
    except ValueError:
        logger.warning(f"Unknown pillar type {value!r}; using custom")
        return PillarType.CUSTOM


class StrategyService(BaseService):
    """Applies blueprints to projects, replacing any earlier strategy."""

    async def apply_blueprint(self, project_id: str, blueprint: Blueprint) -> List[Workflow]:
        await self._verify_project_access(project_id)
        removed = await self._repository.delete_strategy(project_id)
        logger.info(f"Cleared previous strategy of project {project_id}: {removed}")

        pillars: Dict[str, Pillar] = {}
        for item in blueprint.active_pillars:
            pillars[item.id] = await self._repository.create_pillar(
                Pillar(project_id=project_id, type=_pillar_type(item.type), name=item.name)
            )

        workflows: List[Workflow] = []
        for item in blueprint.workflows:
            pillar = pillars.get(item.pillar_ref)
            if pillar is None:
                logger.warning(
                    f"Workflow {item.name!r} references unknown pillar {item.pillar_ref!r}"
                )
                continue
            workflow = await self._repository.create_workflow(
                Workflow(
                    project_id=project_id,
                    pillar_id=pillar.id,
                    name=item.name,
                    description=item.description or item.goal,
                )
            )
            for position, (step_type, config) in enumerate(
                default_steps(pillar.type.value, item.name, item.goal), start=1
            ):
                await self._repository.add_step(
                    Step(
                        workflow_id=workflow.id,
                        type=step_type,
                        position=position,
                        config=dict(config),
                    )
                )
            workflows.append(workflow)

        await self.ctx.emit(
            EventType.STRATEGY_REGENERATED,
            project_id,
            "project",
            {"pillars": len(pillars), "workflows": len(workflows)},
        )
        return workflows

    async def regenerate(
        self, project_id: str, provider: ContentProvider, api_key: Optional[str] = None
    ) -> List[Workflow]:
        """Ask ``provider`` for a fresh blueprint and apply it."""
        project = await self._verify_project_access(project_id)
        blueprint = await provider.generate_blueprint(project, api_key=api_key)
        return await self.apply_blueprint(project_id, blueprint)
