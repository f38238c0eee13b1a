"""Domain events and the sink interface services publish them to."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from .utils.clock import new_id, utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    TASK_CREATED = "TASK_CREATED"
    TASK_STARTED = "TASK_STARTED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_FAILED = "TASK_FAILED"
    TASK_QUEUED = "TASK_QUEUED"
    TASK_CANCELLED = "TASK_CANCELLED"
    EXTENSION_TASK_QUEUED = "EXTENSION_TASK_QUEUED"
    EXTENSION_TASK_COMPLETED = "EXTENSION_TASK_COMPLETED"
    AI_GENERATION_COMPLETED = "AI_GENERATION_COMPLETED"
    AI_GENERATION_FAILED = "AI_GENERATION_FAILED"
    WORKFLOW_COMPLETED = "WORKFLOW_COMPLETED"
    ENGAGEMENT_JOB_CREATED = "ENGAGEMENT_JOB_CREATED"
    ENGAGEMENT_METRICS_REPORTED = "ENGAGEMENT_METRICS_REPORTED"
    ENGAGEMENT_JOB_STOPPED = "ENGAGEMENT_JOB_STOPPED"
    ENGAGEMENT_JOB_EXPIRED = "ENGAGEMENT_JOB_EXPIRED"
    STEP_CREATED = "STEP_CREATED"
    STEP_REMOVED = "STEP_REMOVED"
    STEPS_REORDERED = "STEPS_REORDERED"
    STRATEGY_REGENERATED = "STRATEGY_REGENERATED"


class DomainEvent(BaseModel):
    id: str = Field(default_factory=new_id)
    type: EventType
    aggregate_id: str
    aggregate_type: str
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None
    source: str = "launchgrid"
    occurred_at: datetime = Field(default_factory=utcnow)


class EventSink(Protocol):
    """Fire-and-forget destination for domain events."""

    async def publish(self, event: DomainEvent) -> None:
        """Accept ``event`` for delivery."""


class InMemoryEventSink:
    """Collects events in a list. Useful for tests and local runs."""

    def __init__(self) -> None:
        self.events: List[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[DomainEvent]:
        return [e for e in self.events if e.type == event_type]


async def publish_safely(sink: Optional[EventSink], event: DomainEvent) -> None:
    """Publish ``event`` without ever failing the caller."""
    if sink is None:
        return
    try:
        await sink.publish(event)
    except Exception as exc:
        logger.warning(f"Dropped event {event.type.value} for {event.aggregate_id}: {exc}")
