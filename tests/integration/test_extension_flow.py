import pytest

from launchgrid.constants import DEFAULT_EXTENSION_URL
from launchgrid.contracts import StepType, TaskStatus
from launchgrid.engagement import EngagementScheduler
from launchgrid.errors import BusinessRuleError, NoTargets, StoreError, WorkflowError
from launchgrid.events import EventType
from launchgrid.execute import WorkflowRunner
from launchgrid.extension import ExtensionBridge
from launchgrid.security.context import ServiceContext

ENGAGEMENT_FLOW = [
    (StepType.SCAN_FEED, {"source": "keywords"}),
    (StepType.SELECT_TARGETS, {"max_select": 3}),
    (StepType.GENERATE_REPLIES, {"tone": "insightful"}),
    StepType.REVIEW_CONTENT,
    StepType.POST_REPLY,
]

FOUND = [
    {"id": "t1", "author": "ann", "text": "Journaling never sticks for me"},
    {"id": "t2", "author": "bob", "text": "Any tips for a daily habit?"},
]


@pytest.fixture
def runner(repository, ctx, provider):
    return WorkflowRunner(repository, ctx, providers=lambda provider_id: provider)


@pytest.fixture
def bridge(repository, sink):
    return ExtensionBridge(repository, ServiceContext.system(sink=sink))


@pytest.mark.asyncio
async def test_engagement_workflow_end_to_end(runner, bridge, repository, provider, sink, seed):
    _, workflow, steps = await seed(ENGAGEMENT_FLOW, config={"feed_scan_count": 10})

    queued = await runner.execute(workflow.id)
    assert queued.status == "extension_queued"
    assert provider.calls == 0

    # Re-invoking while the extension works is a no-op
    waiting = await runner.execute(workflow.id)
    assert waiting.status == "extension_queued"
    assert waiting.task_id == queued.task_id
    assert len(await repository.list_tasks([steps[0].id])) == 1

    payload = await bridge.poll_task()
    assert payload.task_id == queued.task_id
    assert payload.type == "SCAN_FEED"
    assert payload.platform == "twitter"
    assert payload.config["url"] == DEFAULT_EXTENSION_URL
    assert payload.config["max_items"] == 10
    assert payload.config["source"] == "keywords"
    assert payload.model_dump(by_alias=True)["taskId"] == queued.task_id

    # Leased tasks are not handed out twice
    assert await bridge.poll_task() is None

    await bridge.update_progress(queued.task_id, {"scanned": 4})
    reported = await bridge.submit_result(queued.task_id, {"found_items": FOUND})
    assert reported.status == TaskStatus.REVIEW_NEEDED
    assert reported.lease_expires_at is None

    selected = await runner.execute(workflow.id)
    assert selected.status == "review_needed"
    assert selected.step_id == steps[1].id
    assert selected.output["selected_items"] == FOUND

    replies = await runner.execute(workflow.id)
    assert replies.status == "review_needed"
    assert replies.output["title"] == "Drafted 2 Replies"
    assert provider.calls == 2

    review = await runner.execute(workflow.id)
    assert review.status == "awaiting_approval"
    assert review.output["replies"] == replies.output["replies"]

    post = await runner.execute(workflow.id)
    assert post.status == "awaiting_approval"
    assert post.output["pending_action"] == "POST_REPLY"

    done = await runner.execute(workflow.id)
    assert done.status == "completed"
    assert done.progress == 100
    assert len(sink.of_type(EventType.WORKFLOW_COMPLETED)) == 1


@pytest.mark.asyncio
async def test_duplicate_extension_reports_are_idempotent(runner, bridge, repository, seed):
    _, workflow, steps = await seed(ENGAGEMENT_FLOW)
    queued = await runner.execute(workflow.id)

    await bridge.submit_result(queued.task_id, {"found_items": FOUND})
    await bridge.submit_result(queued.task_id, {"found_items": FOUND[:1]})

    tasks = await repository.list_tasks([steps[0].id])
    assert len(tasks) == 1
    assert tasks[0].output_data == {"found_items": FOUND[:1]}

    selected = await runner.execute(workflow.id)
    assert selected.output["selected_items"] == FOUND[:1]


@pytest.mark.asyncio
async def test_empty_scan_fails_reply_generation(runner, bridge, repository, seed):
    _, workflow, steps = await seed(ENGAGEMENT_FLOW)
    queued = await runner.execute(workflow.id)
    await bridge.submit_result(queued.task_id, {"found_items": []})
    await runner.execute(workflow.id)

    with pytest.raises(NoTargets):
        await runner.execute(workflow.id)

    [failed] = await repository.list_tasks([steps[2].id])
    assert failed.status == TaskStatus.FAILED
    assert failed.error_message == "No targets to reply to."


@pytest.mark.asyncio
async def test_mock_scan_produces_simulated_replies(runner, bridge, provider, seed):
    _, workflow, _ = await seed(ENGAGEMENT_FLOW)
    queued = await runner.execute(workflow.id)
    await bridge.submit_result(queued.task_id, {"found_items": FOUND, "is_mock": True})
    await runner.execute(workflow.id)

    replies = await runner.execute(workflow.id)
    assert replies.output["is_mock"] is True
    assert replies.output["title"] == "Drafted 2 Replies (SIMULATED)"
    assert provider.calls == 0


@pytest.mark.asyncio
async def test_extension_failure_allows_retry(runner, bridge, repository, seed):
    _, workflow, steps = await seed(ENGAGEMENT_FLOW)
    queued = await runner.execute(workflow.id)
    await bridge.submit_result(queued.task_id, success=False, error="rate limited")

    retried = await runner.execute(workflow.id)
    assert retried.status == "extension_queued"
    assert retried.task_id != queued.task_id

    tasks = await repository.list_tasks([steps[0].id])
    assert [t.status for t in tasks] == [TaskStatus.FAILED, TaskStatus.EXTENSION_QUEUED]
    assert tasks[1].retry_count == 1


@pytest.mark.asyncio
async def test_rerun_supersedes_queued_scan(runner, repository, seed):
    _, workflow, steps = await seed(ENGAGEMENT_FLOW)
    first = await runner.execute(workflow.id)

    again = await runner.execute(workflow.id, rerun_step_id=steps[0].id)

    assert again.status == "extension_queued"
    assert again.task_id != first.task_id
    assert (await repository.get_task(first.task_id)).status == TaskStatus.CANCELLED


@pytest.mark.asyncio
async def test_rerun_of_blocked_step_is_rejected(runner, seed):
    _, workflow, steps = await seed(ENGAGEMENT_FLOW)
    with pytest.raises(WorkflowError) as exc:
        await runner.execute(workflow.id, rerun_step_id=steps[2].id)
    assert exc.value.blocked_by == [steps[1].id]


@pytest.mark.asyncio
async def test_approved_post_starts_engagement_tracking(runner, repository, seed):
    project, workflow, steps = await seed([StepType.GENERATE_DRAFT, StepType.POST_API])
    await runner.execute(workflow.id)
    post = await runner.execute(workflow.id)
    await repository.update_task(
        post.task_id, {"output_data": {**post.output, "post_url": "https://x.com/a/status/9"}}
    )

    approved = await runner.approve_task(post.task_id)

    assert approved.status == TaskStatus.COMPLETED
    [job] = await repository.list_jobs(project_id=project.id)
    assert job.source_task_id == post.task_id
    assert job.target_url == "https://x.com/a/status/9"


@pytest.mark.asyncio
async def test_engagement_job_poll_and_report(bridge, repository, ctx, seed):
    project, _, _ = await seed([])
    job = await EngagementScheduler(repository, ctx).create_job(
        project.id, "https://x.com/a/status/1"
    )

    [due] = await bridge.poll_jobs()
    assert due.id == job.id

    updated = await bridge.report_job_metrics(job.id, {"views": 10, "likes": 2})
    assert updated.metrics.views == 10
    assert await bridge.poll_jobs() == []


@pytest.mark.asyncio
async def test_extension_cannot_overwrite_generated_draft(runner, bridge, repository, seed):
    _, workflow, _ = await seed([StepType.GENERATE_DRAFT])
    draft = await runner.execute(workflow.id)

    with pytest.raises(BusinessRuleError) as exc:
        await bridge.submit_result(draft.task_id, {"found_items": []})
    assert exc.value.code == "TASK_NOT_QUEUED"

    stored = await repository.get_task(draft.task_id)
    assert stored.status == TaskStatus.REVIEW_NEEDED
    assert stored.output_data == draft.output


@pytest.mark.asyncio
async def test_approval_survives_invalid_post_url(runner, repository, seed):
    project, workflow, _ = await seed([StepType.GENERATE_DRAFT, StepType.POST_API])
    await runner.execute(workflow.id)
    post = await runner.execute(workflow.id)
    await repository.update_task(
        post.task_id, {"output_data": {**post.output, "url": "x.com/status/1"}}
    )

    approved = await runner.approve_task(post.task_id)

    assert approved.status == TaskStatus.COMPLETED
    assert (await repository.get_task(post.task_id)).status == TaskStatus.COMPLETED
    assert await repository.list_jobs(project_id=project.id) == []


@pytest.mark.asyncio
async def test_context_failure_fails_task_instead_of_blocking_step(
    runner, repository, seed, monkeypatch
):
    _, workflow, steps = await seed([StepType.GENERATE_DRAFT])

    async def broken_pillar_lookup(pillar_id):
        raise StoreError("connection reset")

    with monkeypatch.context() as patch:
        patch.setattr(repository, "get_pillar", broken_pillar_lookup)
        with pytest.raises(StoreError):
            await runner.execute(workflow.id)

    [failed] = await repository.list_tasks([steps[0].id])
    assert failed.status == TaskStatus.FAILED
    assert failed.error_message == "connection reset"

    retried = await runner.execute(workflow.id)
    assert retried.status == "review_needed"
    assert retried.task_id != failed.id
