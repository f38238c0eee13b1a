from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pytest

from launchgrid.contracts import Pillar, PillarType, Project, Step, StepType, Workflow, WorkflowConfig
from launchgrid.events import InMemoryEventSink
from launchgrid.persistence import InMemoryStore, WorkflowRepository
from launchgrid.providers import StaticContentProvider
from launchgrid.security.context import ServiceContext

StepSpec = Union[StepType, str, Tuple[Union[StepType, str], Dict[str, Any]]]


@pytest.fixture
def repository() -> WorkflowRepository:
    return WorkflowRepository(InMemoryStore())


@pytest.fixture
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def ctx(sink) -> ServiceContext:
    return ServiceContext.for_user("user-1", "org-1", sink=sink)


@pytest.fixture
def provider() -> StaticContentProvider:
    return StaticContentProvider()


@pytest.fixture
def seed(repository):
    """Create a project, pillar and workflow with the given steps."""

    async def _seed(
        step_specs: Sequence[StepSpec],
        *,
        user_id: str = "user-1",
        config: Optional[Dict[str, Any]] = None,
        name: str = "Reply Growth",
    ) -> Tuple[Project, Workflow, List[Step]]:
        project = await repository.create_project(
            Project(user_id=user_id, organization_id="org-1", name="Journal App")
        )
        pillar = await repository.create_pillar(
            Pillar(project_id=project.id, type=PillarType.SOCIAL_ORGANIC, name="Social")
        )
        workflow = await repository.create_workflow(
            Workflow(
                project_id=project.id,
                pillar_id=pillar.id,
                name=name,
                description="Grow by helping people",
                config=WorkflowConfig(**(config or {})),
            )
        )
        steps = []
        for position, spec in enumerate(step_specs, start=1):
            step_type, step_config = spec if isinstance(spec, tuple) else (spec, {})
            steps.append(
                await repository.add_step(
                    Step(
                        workflow_id=workflow.id,
                        type=step_type,
                        position=position,
                        config=step_config,
                    )
                )
            )
        return project, workflow, steps

    return _seed
