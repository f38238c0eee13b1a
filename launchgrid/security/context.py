"""Tenant and service context passed explicitly into every service."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import AuthenticationError
from ..events import DomainEvent, EventSink, EventType, InMemoryEventSink, publish_safely
from ..utils.clock import new_id

SYSTEM_USER = "system"


class TenantContext(BaseModel):
    """Identity of the already-authenticated caller.

    Authentication happens upstream; the engine only needs to know which
    user and organization a request is scoped to.
    """

    user_id: str = Field(..., min_length=1)
    organization_id: Optional[str] = None


class ServiceContext(BaseModel):
    """Carries tenant scope, request correlation and the event sink."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    tenant: TenantContext
    request_id: str = Field(default_factory=new_id)
    sink: Any = Field(default_factory=InMemoryEventSink)

    @classmethod
    def for_user(
        cls,
        user_id: Optional[str],
        organization_id: Optional[str] = None,
        *,
        sink: Optional[EventSink] = None,
        request_id: Optional[str] = None,
    ) -> "ServiceContext":
        if not user_id:
            raise AuthenticationError("Missing tenant user id")
        kwargs: Dict[str, Any] = {
            "tenant": TenantContext(user_id=user_id, organization_id=organization_id)
        }
        if sink is not None:
            kwargs["sink"] = sink
        if request_id:
            kwargs["request_id"] = request_id
        return cls(**kwargs)

    @classmethod
    def system(cls, sink: Optional[EventSink] = None) -> "ServiceContext":
        """Context for trusted callers such as the browser extension bridge."""
        return cls.for_user(SYSTEM_USER, sink=sink)

    @property
    def user_id(self) -> str:
        return self.tenant.user_id

    @property
    def is_system(self) -> bool:
        return self.tenant.user_id == SYSTEM_USER

    async def emit(
        self,
        event_type: EventType,
        aggregate_id: str,
        aggregate_type: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        event = DomainEvent(
            type=event_type,
            aggregate_id=aggregate_id,
            aggregate_type=aggregate_type,
            organization_id=self.tenant.organization_id,
            user_id=self.tenant.user_id,
            payload=payload or {},
            correlation_id=self.request_id,
        )
        await publish_safely(self.sink, event)
