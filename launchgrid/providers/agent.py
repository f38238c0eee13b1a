"""Content provider backed by a pydantic-ai agent."""

from __future__ import annotations

import logging
from typing import Any, Optional, Type, TypeVar

from pydantic_ai import Agent

from ..contracts import Blueprint, ContentDraft, Project, PromptContext, ProviderId
from ..errors import ProviderError
from .base import ContentProvider, render_blueprint_prompt, render_content_prompt

logger = logging.getLogger(__name__)

OutputT = TypeVar("OutputT")

CONTENT_INSTRUCTIONS = (
    "You are a marketing copywriter. Write content for the described task "
    "that speaks to the target audience in a natural voice."
)
BLUEPRINT_INSTRUCTIONS = (
    "You are a marketing strategist. Pillar types must be one of "
    "social_organic, community, paid_ads, email, content_seo or custom."
)

_MODEL_PREFIX = {
    ProviderId.GEMINI: "google-gla",
    ProviderId.OPENAI: "openai",
    ProviderId.ANTHROPIC: "anthropic",
}


def build_model(provider_id: ProviderId, model_name: str, api_key: str) -> Any:
    """Instantiate a pydantic-ai model bound to an explicit API key."""
    if provider_id == ProviderId.OPENAI:
        from pydantic_ai.models.openai import OpenAIChatModel
        from pydantic_ai.providers.openai import OpenAIProvider

        return OpenAIChatModel(model_name, provider=OpenAIProvider(api_key=api_key))
    if provider_id == ProviderId.ANTHROPIC:
        from pydantic_ai.models.anthropic import AnthropicModel
        from pydantic_ai.providers.anthropic import AnthropicProvider

        return AnthropicModel(model_name, provider=AnthropicProvider(api_key=api_key))
    from pydantic_ai.models.google import GoogleModel
    from pydantic_ai.providers.google import GoogleProvider

    return GoogleModel(model_name, provider=GoogleProvider(api_key=api_key))


class AgentContentProvider(ContentProvider):
    """Runs a fresh agent per call so each call can use the caller's key.

    ``model`` may be a bare model name, a ``provider:model`` string, ``"test"``
    or a pydantic-ai model instance.
    """

    def __init__(self, provider_id: ProviderId, model: Any) -> None:
        self.provider_id = provider_id
        self._model = model

    def _resolve_model(self, api_key: Optional[str]) -> Any:
        model = self._model
        if not isinstance(model, str) or model == "test":
            return model
        if api_key:
            return build_model(self.provider_id, model.split(":", 1)[-1], api_key)
        return model if ":" in model else f"{_MODEL_PREFIX[self.provider_id]}:{model}"

    async def _run(
        self,
        output_type: Type[OutputT],
        instructions: str,
        prompt: str,
        api_key: Optional[str],
    ) -> OutputT:
        try:
            agent = Agent(
                self._resolve_model(api_key),
                output_type=output_type,
                system_prompt=instructions,
            )
            result = await agent.run(prompt)
        except Exception as exc:
            logger.warning(f"{self.provider_id.value} request failed: {exc}")
            raise ProviderError(
                f"{self.provider_id.value} request failed: {exc}",
                details={"provider": self.provider_id.value},
            ) from exc
        return result.output

    async def generate_content(
        self, prompt: PromptContext, api_key: Optional[str] = None
    ) -> ContentDraft:
        return await self._run(
            ContentDraft, CONTENT_INSTRUCTIONS, render_content_prompt(prompt), api_key
        )

    async def generate_blueprint(
        self, project: Project, api_key: Optional[str] = None
    ) -> Blueprint:
        return await self._run(
            Blueprint, BLUEPRINT_INSTRUCTIONS, render_blueprint_prompt(project), api_key
        )
