"""AI content provider factory and initialization."""

from __future__ import annotations

from typing import Optional, Union

from ..config import LaunchGridConfig, load_config
from ..contracts import ProviderId
from ..errors import ConfigurationError
from ..security.credentials import parse_provider_id
from .agent import AgentContentProvider
from .base import ContentProvider
from .inmemory import StaticContentProvider


def get_provider(
    provider_id: Union[ProviderId, str, None] = None,
    config: Optional[LaunchGridConfig] = None,
) -> ContentProvider:
    """Factory function to get the configured content provider."""

    config = config or load_config()
    if provider_id is None:
        provider_id = config.ai.default_provider
    if not isinstance(provider_id, ProviderId):
        provider_id = parse_provider_id(provider_id)

    model = config.ai.models.get(provider_id.value)
    if not model:
        raise ConfigurationError(f"No model configured for provider: {provider_id.value}")
    return AgentContentProvider(provider_id, model)


__all__ = [
    "AgentContentProvider",
    "ContentProvider",
    "StaticContentProvider",
    "get_provider",
]
