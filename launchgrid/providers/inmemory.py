"""Deterministic provider for tests and offline runs."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from ..contracts import (
    Blueprint,
    BlueprintPillar,
    BlueprintWorkflow,
    ContentDraft,
    Project,
    PromptContext,
    ProviderId,
)
from ..errors import ProviderError
from .base import ContentProvider


class StaticContentProvider(ContentProvider):
    """Returns canned drafts and records every prompt it receives."""

    def __init__(
        self,
        provider_id: ProviderId = ProviderId.GEMINI,
        delay: float = 0,
        fail_with: Optional[str] = None,
    ) -> None:
        self.provider_id = provider_id
        self.delay = delay
        self.fail_with = fail_with
        self.prompts: List[PromptContext] = []
        self.api_keys: List[Optional[str]] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate_content(
        self, prompt: PromptContext, api_key: Optional[str] = None
    ) -> ContentDraft:
        self.prompts.append(prompt)
        self.api_keys.append(api_key)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with:
            raise ProviderError(self.fail_with)
        if prompt.target is not None:
            author = prompt.target.get("author") or "there"
            return ContentDraft(content=f"Reply to {author} about {prompt.project_name}")
        return ContentDraft(
            title=f"{prompt.step_type.title()} for {prompt.workflow_name}",
            content=f"Draft for {prompt.project_name}: {prompt.workflow_description}",
        )

    async def generate_blueprint(
        self, project: Project, api_key: Optional[str] = None
    ) -> Blueprint:
        if self.fail_with:
            raise ProviderError(self.fail_with)
        return Blueprint(
            active_pillars=[
                BlueprintPillar(id="p1", type="social_organic", name="Social"),
                BlueprintPillar(id="p2", type="content_seo", name="Blog"),
            ],
            workflows=[
                BlueprintWorkflow(
                    workflow_id="w1",
                    pillar_ref="p1",
                    name="Reply Growth",
                    goal="Grow by engaging with relevant posts",
                ),
                BlueprintWorkflow(
                    workflow_id="w2", pillar_ref="p2", name="Weekly Article", goal="SEO traffic"
                ),
            ],
        )
