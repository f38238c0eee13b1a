import pytest
from pydantic_ai.models.test import TestModel

from launchgrid.contracts import (
    Blueprint,
    ContentDraft,
    Project,
    ProjectContext,
    PromptContext,
    ProviderId,
)
from launchgrid.errors import ProviderError
from launchgrid.providers import AgentContentProvider, StaticContentProvider
from launchgrid.providers.base import render_blueprint_prompt, render_content_prompt


def _prompt(**overrides) -> PromptContext:
    values = dict(
        project_name="Journal App",
        audience="Busy parents",
        workflow_name="Weekly Article",
        step_type="GENERATE_DRAFT",
    )
    values.update(overrides)
    return PromptContext(**values)


def test_content_prompt_mentions_context():
    text = render_content_prompt(
        _prompt(previous_output={"outline": "1. Intro"}, target={"author": "ann", "text": "help"})
    )
    assert "Journal App" in text
    assert "Busy parents" in text
    assert "GENERATE_DRAFT" in text
    assert "1. Intro" in text
    assert "ann" in text


def test_blueprint_prompt_mentions_project():
    project = Project(
        user_id="u",
        name="Journal App",
        context=ProjectContext(description="Guided journaling", budget=500),
    )
    text = render_blueprint_prompt(project)
    assert "Guided journaling" in text
    assert "500" in text


@pytest.mark.asyncio
async def test_agent_provider_returns_structured_draft():
    provider = AgentContentProvider(ProviderId.GEMINI, "test")
    draft = await provider.generate_content(_prompt())
    assert isinstance(draft, ContentDraft)


@pytest.mark.asyncio
async def test_agent_provider_returns_blueprint():
    provider = AgentContentProvider(ProviderId.OPENAI, TestModel())
    blueprint = await provider.generate_blueprint(Project(user_id="u", name="Journal App"))
    assert isinstance(blueprint, Blueprint)


def test_agent_provider_model_resolution():
    provider = AgentContentProvider(ProviderId.ANTHROPIC, "claude-3-5-haiku-latest")
    assert provider._resolve_model(None) == "anthropic:claude-3-5-haiku-latest"
    assert AgentContentProvider(ProviderId.OPENAI, "openai:gpt-4o")._resolve_model(None) == "openai:gpt-4o"
    assert AgentContentProvider(ProviderId.OPENAI, "test")._resolve_model("key") == "test"


@pytest.mark.asyncio
async def test_agent_provider_wraps_failures():
    class ExplodingModel(TestModel):
        async def request(self, *args, **kwargs):
            raise RuntimeError("upstream 500")

    provider = AgentContentProvider(ProviderId.GEMINI, ExplodingModel())
    with pytest.raises(ProviderError) as exc:
        await provider.generate_content(_prompt())
    assert exc.value.details == {"provider": "gemini"}


@pytest.mark.asyncio
async def test_static_provider_records_calls():
    provider = StaticContentProvider()
    draft = await provider.generate_content(_prompt(), api_key="k1")
    reply = await provider.generate_content(_prompt(target={"author": "bob"}))

    assert draft.title.startswith("Generate_Draft")
    assert reply.content == "Reply to bob about Journal App"
    assert provider.api_keys == ["k1", None]
    assert provider.calls == 2
