from .models import (
    AuditLogRow,
    EngagementJobRow,
    PillarRow,
    ProjectRow,
    StepRow,
    TaskRow,
    WorkflowRow,
)
from .store import SQLStore, normalize_database_url

__all__ = [
    "AuditLogRow",
    "EngagementJobRow",
    "PillarRow",
    "ProjectRow",
    "StepRow",
    "TaskRow",
    "WorkflowRow",
    "SQLStore",
    "normalize_database_url",
]
