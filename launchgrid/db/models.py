from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


def _timestamp(nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


class ProjectRow(SQLModel, table=True):
    """A marketing blueprint owned by a user."""

    __tablename__ = "projects"

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    organization_id: Optional[str] = None
    name: str
    context: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(sa_column=_timestamp())


class PillarRow(SQLModel, table=True):
    __tablename__ = "pillars"

    id: str = Field(primary_key=True)
    project_id: str = Field(foreign_key="projects.id", index=True)
    type: str
    name: str
    created_at: datetime = Field(sa_column=_timestamp())


class WorkflowRow(SQLModel, table=True):
    __tablename__ = "workflows"

    id: str = Field(primary_key=True)
    project_id: str = Field(foreign_key="projects.id", index=True)
    pillar_id: Optional[str] = Field(default=None, foreign_key="pillars.id")
    name: str
    description: str = ""
    config: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(sa_column=_timestamp())


class StepRow(SQLModel, table=True):
    """Declared step; ``version`` guards the ``current_task_id`` pointer."""

    __tablename__ = "steps"

    id: str = Field(primary_key=True)
    workflow_id: str = Field(foreign_key="workflows.id", index=True)
    type: str
    position: int
    config: dict = Field(default_factory=dict, sa_column=Column(JSON))
    dependency_ids: list = Field(default_factory=list, sa_column=Column(JSON))
    current_task_id: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(sa_column=_timestamp())


class TaskRow(SQLModel, table=True):
    """Append-only execution history of a step."""

    __tablename__ = "tasks"

    id: str = Field(primary_key=True)
    step_id: str = Field(foreign_key="steps.id", index=True)
    project_id: str = Field(index=True)
    status: str = Field(default="pending", index=True)
    output_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = None
    retry_count: int = 0
    lease_expires_at: Optional[datetime] = Field(default=None, sa_column=_timestamp(True))
    queued_at: Optional[datetime] = Field(default=None, sa_column=_timestamp(True))
    started_at: Optional[datetime] = Field(default=None, sa_column=_timestamp(True))
    completed_at: Optional[datetime] = Field(default=None, sa_column=_timestamp(True))
    created_at: datetime = Field(sa_column=_timestamp())
    updated_at: datetime = Field(sa_column=_timestamp())


class EngagementJobRow(SQLModel, table=True):
    __tablename__ = "engagement_jobs"

    id: str = Field(primary_key=True)
    project_id: str = Field(index=True)
    target_url: str
    # Provenance only; deleting the task nulls this column
    source_task_id: Optional[str] = None
    status: str = Field(default="active", index=True)
    duration_days: int
    check_interval_minutes: int
    started_at: datetime = Field(sa_column=_timestamp())
    expires_at: datetime = Field(sa_column=_timestamp())
    last_checked_at: Optional[datetime] = Field(default=None, sa_column=_timestamp(True))
    next_poll_at: datetime = Field(sa_column=_timestamp())
    metrics: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    metric_history: list = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(sa_column=_timestamp())
    updated_at: datetime = Field(sa_column=_timestamp())


class AuditLogRow(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(primary_key=True)
    event_type: str = Field(index=True)
    aggregate_id: str = Field(index=True)
    aggregate_type: str
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON))
    correlation_id: Optional[str] = None
    source: str = "launchgrid"
    occurred_at: datetime = Field(sa_column=_timestamp())


ROW_MODELS = {
    model.__tablename__: model
    for model in (
        ProjectRow,
        PillarRow,
        WorkflowRow,
        StepRow,
        TaskRow,
        EngagementJobRow,
        AuditLogRow,
    )
}
