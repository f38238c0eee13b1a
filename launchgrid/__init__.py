"""LaunchGrid: step-by-step execution engine for marketing workflows."""

from .contracts import (
    EngagementJob,
    ExecutionResult,
    Project,
    Step,
    StepType,
    Task,
    TaskStatus,
    Workflow,
)
from .engagement import EngagementScheduler
from .execute import WorkflowRunner
from .extension import ExtensionBridge
from .lifecycle import TaskLifecycleManager
from .persistence import get_repository
from .runtime import Runtime

__version__ = "0.1.0"
__all__ = [
    "EngagementJob",
    "EngagementScheduler",
    "ExecutionResult",
    "ExtensionBridge",
    "Project",
    "Runtime",
    "Step",
    "StepType",
    "Task",
    "TaskLifecycleManager",
    "TaskStatus",
    "Workflow",
    "WorkflowRunner",
    "get_repository",
]
