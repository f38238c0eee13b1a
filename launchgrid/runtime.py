"""Wires services together from configuration."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from .blueprints import StrategyService
from .config import LaunchGridConfig, load_config
from .contracts import ProviderId
from .engagement import EngagementScheduler
from .events import EventSink, InMemoryEventSink
from .execute import ProviderFactory, WorkflowRunner
from .extension import ExtensionBridge
from .lifecycle import TaskLifecycleManager
from .persistence import WorkflowRepository, get_repository
from .providers import ContentProvider, get_provider
from .security.audit import AuditLogWriter
from .security.context import ServiceContext
from .security.credentials import CredentialCipher, ProviderCredentials
from .steps import StepManager

logger = logging.getLogger(__name__)


class Runtime:
    """Holds process-wide collaborators and builds per-request services."""

    def __init__(
        self,
        config: Optional[LaunchGridConfig] = None,
        repository: Optional[WorkflowRepository] = None,
        providers: Optional[ProviderFactory] = None,
        sink: Optional[EventSink] = None,
    ) -> None:
        self.config = config or load_config()
        self.repository = repository or get_repository(config=self.config)
        self.audit: Optional[AuditLogWriter] = None
        if sink is None and self.config.audit.enabled:
            self.audit = AuditLogWriter(
                self.repository,
                queue_size=self.config.audit.queue_size,
                batch_size=self.config.audit.batch_size,
                max_retries=self.config.audit.max_retries,
            )
        self.sink: EventSink = sink or self.audit or InMemoryEventSink()

        cipher = (
            CredentialCipher(self.config.encryption_key)
            if self.config.encryption_key
            else None
        )
        self.credentials = ProviderCredentials.from_mapping(self.config.ai.api_keys, cipher)
        self._providers = providers
        self._provider_cache: Dict[ProviderId, ContentProvider] = {}

    def provider(self, provider_id: ProviderId) -> ContentProvider:
        if self._providers is not None:
            return self._providers(provider_id)
        if provider_id not in self._provider_cache:
            self._provider_cache[provider_id] = get_provider(provider_id, self.config)
        return self._provider_cache[provider_id]

    # ------------------------------------------------------------------
    def context(
        self,
        user_id: Optional[str],
        organization_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> ServiceContext:
        return ServiceContext.for_user(
            user_id, organization_id, sink=self.sink, request_id=request_id
        )

    def system_context(self) -> ServiceContext:
        return ServiceContext.system(sink=self.sink)

    def lifecycle(self, ctx: ServiceContext) -> TaskLifecycleManager:
        return TaskLifecycleManager(
            self.repository, ctx, lease_minutes=self.config.extension.lease_minutes
        )

    def engagement(self, ctx: ServiceContext) -> EngagementScheduler:
        return EngagementScheduler(
            self.repository,
            ctx,
            check_interval_minutes=self.config.engagement.check_interval_minutes,
            default_duration_days=self.config.engagement.duration_days,
        )

    def runner(self, ctx: ServiceContext) -> WorkflowRunner:
        return WorkflowRunner(
            self.repository,
            ctx,
            providers=self.provider,
            credentials=self.credentials,
            lifecycle=self.lifecycle(ctx),
            engagement=self.engagement(ctx),
            generation_timeout=self.config.ai.timeout_seconds,
        )

    def bridge(self, ctx: Optional[ServiceContext] = None) -> ExtensionBridge:
        ctx = ctx or self.system_context()
        return ExtensionBridge(
            self.repository,
            ctx,
            lifecycle=self.lifecycle(ctx),
            engagement=self.engagement(ctx),
            platform=self.config.extension.platform,
            fallback_url=self.config.extension.fallback_url,
            lease_minutes=self.config.extension.lease_minutes,
        )

    def strategy(self, ctx: ServiceContext) -> StrategyService:
        return StrategyService(self.repository, ctx)

    def steps(self, ctx: ServiceContext) -> StepManager:
        return StepManager(self.repository, ctx)

    async def close(self) -> None:
        if self.audit is not None:
            await self.audit.close()
        await self.repository.store.close()
