"""Base interface for AI content providers."""

from __future__ import annotations

import abc
import json
from typing import Optional

from ..contracts import Blueprint, ContentDraft, Project, PromptContext, ProviderId


class ContentProvider(metaclass=abc.ABCMeta):
    """Turns prompt context into drafts and project context into blueprints."""

    provider_id: ProviderId

    @abc.abstractmethod
    async def generate_content(
        self, prompt: PromptContext, api_key: Optional[str] = None
    ) -> ContentDraft:
        """Produce a single content draft. Raises ``ProviderError`` on failure."""
        raise NotImplementedError

    @abc.abstractmethod
    async def generate_blueprint(
        self, project: Project, api_key: Optional[str] = None
    ) -> Blueprint:
        """Propose pillars and workflows for ``project``."""
        raise NotImplementedError


def render_content_prompt(prompt: PromptContext) -> str:
    lines = [
        f"Project: {prompt.project_name}",
        f"Description: {prompt.description}",
        f"Target audience: {prompt.audience}",
        f"Pain points: {prompt.pain_points}",
        f"Channel: {prompt.pillar_name}",
        f"Workflow: {prompt.workflow_name} - {prompt.workflow_description}",
        f"Task: {prompt.step_type}",
        f"Strictness: {prompt.strictness}",
    ]
    if prompt.step_config:
        lines.append(f"Settings: {json.dumps(prompt.step_config, default=str)}")
    if prompt.previous_output:
        lines.append(f"Previous step output: {json.dumps(prompt.previous_output, default=str)}")
    if prompt.target:
        lines.append(f"Reply to this post: {json.dumps(prompt.target, default=str)}")
    if prompt.custom_prompt:
        lines.append(prompt.custom_prompt)
    return "\n".join(lines)


def render_blueprint_prompt(project: Project) -> str:
    context = project.context
    return "\n".join(
        [
            f"Project: {project.name}",
            f"Description: {context.description}",
            f"Target audience: {context.audience}",
            f"Pain points: {context.pain_points}",
            f"Monthly budget: {context.budget}",
            "Propose the marketing pillars worth pursuing and one or more "
            "workflows for each pillar.",
        ]
    )
