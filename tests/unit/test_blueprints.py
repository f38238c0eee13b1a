import pytest

from launchgrid.blueprints import (
    CONTENT_SEO_STEPS,
    ENGAGEMENT_STEPS,
    PAID_ADS_STEPS,
    STANDARD_STEPS,
    StrategyService,
    default_steps,
)
from launchgrid.contracts import (
    Blueprint,
    BlueprintPillar,
    BlueprintWorkflow,
    PillarType,
    StepType,
    Task,
)
from launchgrid.errors import NotFoundError
from launchgrid.events import EventType
from launchgrid.security.context import ServiceContext


def test_default_steps_by_pillar_and_goal():
    assert default_steps("content_seo", "Weekly Article") is CONTENT_SEO_STEPS
    assert default_steps("paid_ads", "Launch Ads") is PAID_ADS_STEPS
    assert default_steps("social_organic", "Reply Growth") is ENGAGEMENT_STEPS
    assert default_steps("community", "Weekly", "comment on threads") is ENGAGEMENT_STEPS
    assert default_steps("social_organic", "Daily Tips") is STANDARD_STEPS


@pytest.mark.asyncio
async def test_regenerate_replaces_previous_strategy(repository, ctx, sink, seed, provider):
    project, old_workflow, old_steps = await seed([StepType.GENERATE_DRAFT])
    await repository.insert_task(Task(step_id=old_steps[0].id, project_id=project.id))
    service = StrategyService(repository, ctx)

    workflows = await service.regenerate(project.id, provider)

    assert [w.name for w in workflows] == ["Reply Growth", "Weekly Article"]
    assert await repository.get_workflow(old_workflow.id) is None
    assert await repository.list_tasks([old_steps[0].id]) == []

    pillars = await repository.list_pillars(project.id)
    assert {p.type for p in pillars} == {PillarType.SOCIAL_ORGANIC, PillarType.CONTENT_SEO}

    reply_steps = await repository.list_steps(workflows[0].id)
    assert [s.type for s in reply_steps] == [t for t, _ in ENGAGEMENT_STEPS]
    assert [s.position for s in reply_steps] == [1, 2, 3, 4, 5]
    assert reply_steps[1].config == {"max_select": 3}

    article_steps = await repository.list_steps(workflows[1].id)
    assert article_steps[0].type == StepType.GENERATE_OUTLINE
    assert len(sink.of_type(EventType.STRATEGY_REGENERATED)) == 1


@pytest.mark.asyncio
async def test_apply_blueprint_skips_dangling_workflows(repository, ctx, seed):
    project, _, _ = await seed([])
    blueprint = Blueprint(
        active_pillars=[BlueprintPillar(id="p1", type="podcasts", name="Audio")],
        workflows=[
            BlueprintWorkflow(workflow_id="w1", pillar_ref="p1", name="Episode Notes"),
            BlueprintWorkflow(workflow_id="w2", pillar_ref="p9", name="Orphan"),
        ],
    )

    workflows = await StrategyService(repository, ctx).apply_blueprint(project.id, blueprint)

    assert [w.name for w in workflows] == ["Episode Notes"]
    [pillar] = await repository.list_pillars(project.id)
    assert pillar.type == PillarType.CUSTOM


@pytest.mark.asyncio
async def test_strategy_is_scoped_to_project_owner(repository, sink, seed, provider):
    project, _, _ = await seed([])
    stranger = ServiceContext.for_user("user-2", sink=sink)
    with pytest.raises(NotFoundError):
        await StrategyService(repository, stranger).regenerate(project.id, provider)
