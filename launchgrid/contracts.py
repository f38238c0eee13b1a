"""Core data contracts for the LaunchGrid workflow engine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .utils.clock import new_id, utcnow


class StepType(str, Enum):
    """Closed set of step kinds a workflow may declare."""

    GENERATE_DRAFT = "GENERATE_DRAFT"
    GENERATE_OUTLINE = "GENERATE_OUTLINE"
    GENERATE_HOOKS = "GENERATE_HOOKS"
    GENERATE_IMAGE = "GENERATE_IMAGE"
    SCAN_FEED = "SCAN_FEED"
    SELECT_TARGETS = "SELECT_TARGETS"
    GENERATE_REPLIES = "GENERATE_REPLIES"
    REVIEW_CONTENT = "REVIEW_CONTENT"
    POST_API = "POST_API"
    POST_REPLY = "POST_REPLY"
    POST_EXTENSION = "POST_EXTENSION"
    TRACK_ENGAGEMENT = "TRACK_ENGAGEMENT"
    EMAIL_SEQ = "EMAIL_SEQ"
    COMMUNITY_SYNC = "COMMUNITY_SYNC"
    WAIT_APPROVAL = "WAIT_APPROVAL"
    CUSTOM = "CUSTOM"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REVIEW_NEEDED = "review_needed"
    EXTENSION_QUEUED = "extension_queued"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Statuses that let the resolver advance past a step
DONE_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.REVIEW_NEEDED})


class JobStatus(str, Enum):
    ACTIVE = "active"
    STOPPED = "stopped"
    EXPIRED = "expired"


class ProviderId(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class PillarType(str, Enum):
    SOCIAL_ORGANIC = "social_organic"
    COMMUNITY = "community"
    PAID_ADS = "paid_ads"
    EMAIL = "email"
    CONTENT_SEO = "content_seo"
    CUSTOM = "custom"


class StepOutcome(str, Enum):
    """What a handler asks the lifecycle manager to do with its task."""

    COMPLETED = "completed"
    REVIEW_NEEDED = "review_needed"
    EXTENSION_QUEUED = "extension_queued"
    AWAITING_APPROVAL = "awaiting_approval"


class ProjectContext(BaseModel):
    description: str = ""
    audience: str = ""
    pain_points: str = ""
    budget: float = 0
    ai_provider: ProviderId = ProviderId.GEMINI


class Project(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    organization_id: Optional[str] = None
    name: str
    context: ProjectContext = Field(default_factory=ProjectContext)
    created_at: datetime = Field(default_factory=utcnow)


class Pillar(BaseModel):
    """A content channel grouping workflows within a project."""

    id: str = Field(default_factory=new_id)
    project_id: str
    type: PillarType = PillarType.CUSTOM
    name: str
    created_at: datetime = Field(default_factory=utcnow)


class WorkflowConfig(BaseModel):
    """Free-form workflow settings with typed defaults."""

    model_config = ConfigDict(extra="allow")

    requires_approval: bool = True
    max_retries: int = Field(default=3, ge=0)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    ai_strictness: Literal["low", "medium", "high"] = "medium"
    feed_scan_count: int = Field(default=20, ge=5, le=100)
    auto_track_engagement: bool = True


class Workflow(BaseModel):
    id: str = Field(default_factory=new_id)
    project_id: str
    pillar_id: Optional[str] = None
    name: str
    description: str = ""
    config: WorkflowConfig = Field(default_factory=WorkflowConfig)
    created_at: datetime = Field(default_factory=utcnow)


class Step(BaseModel):
    """One declared unit of work in a workflow.

    ``current_task_id`` points at the active task of the step and
    ``version`` guards that pointer against concurrent claims. Unknown
    ``type`` strings are kept as-is so dispatch can reject them.
    """

    id: str = Field(default_factory=new_id)
    workflow_id: str
    type: Union[StepType, str] = Field(union_mode="left_to_right")
    position: int = Field(ge=0)
    config: Dict[str, Any] = Field(default_factory=dict)
    dependency_ids: List[str] = Field(default_factory=list)
    current_task_id: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def type_name(self) -> str:
        return getattr(self.type, "value", self.type)


class Task(BaseModel):
    """One concrete execution attempt for a step."""

    id: str = Field(default_factory=new_id)
    step_id: str
    project_id: str
    status: TaskStatus = TaskStatus.PENDING
    output_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    lease_expires_at: Optional[datetime] = None
    # Set once the task is handed to the browser extension
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_done(self) -> bool:
        return self.status in DONE_STATUSES


class EngagementMetrics(BaseModel):
    """Platform-reported snapshot; counters are not required to grow."""

    views: Optional[int] = Field(default=None, ge=0)
    likes: Optional[int] = Field(default=None, ge=0)
    replies: Optional[int] = Field(default=None, ge=0)
    retweets: Optional[int] = Field(default=None, ge=0)
    timestamp: datetime = Field(default_factory=utcnow)


class EngagementJob(BaseModel):
    id: str = Field(default_factory=new_id)
    project_id: str
    target_url: str
    source_task_id: Optional[str] = None
    status: JobStatus = JobStatus.ACTIVE
    duration_days: int
    check_interval_minutes: int
    started_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    last_checked_at: Optional[datetime] = None
    next_poll_at: datetime
    metrics: Optional[EngagementMetrics] = None
    metric_history: List[EngagementMetrics] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ExecutableStep(BaseModel):
    """Resolver answer for the next step of a workflow."""

    step: Step
    can_execute: bool
    blocked_by: List[str] = Field(default_factory=list)
    completed_dependencies: List[str] = Field(default_factory=list)


class PromptContext(BaseModel):
    """Everything the AI provider sees for a single generation."""

    project_name: str
    description: str = ""
    audience: str = ""
    pain_points: str = ""
    budget: float = 0
    pillar_name: str = "Unknown"
    workflow_name: str
    workflow_description: str = ""
    step_type: str
    step_config: Dict[str, Any] = Field(default_factory=dict)
    strictness: str = "medium"
    previous_output: Optional[Dict[str, Any]] = None
    target: Optional[Dict[str, Any]] = None
    custom_prompt: Optional[str] = None


class ContentDraft(BaseModel):
    title: Optional[str] = None
    content: str
    hashtags: List[str] = Field(default_factory=list)
    suggested_image_prompt: Optional[str] = None


class BlueprintPillar(BaseModel):
    id: str
    type: str
    name: str


class BlueprintWorkflow(BaseModel):
    workflow_id: str
    pillar_ref: str
    name: str
    goal: str = ""
    frequency: str = ""
    description: str = ""


class Blueprint(BaseModel):
    """AI-proposed set of pillars and workflows for a project."""

    active_pillars: List[BlueprintPillar] = Field(default_factory=list)
    workflows: List[BlueprintWorkflow] = Field(default_factory=list)


class GenerationRecord(BaseModel):
    """Attribution for one AI call made while running a step."""

    provider: ProviderId
    duration_ms: int
    success: bool = True


class StepResult(BaseModel):
    outcome: StepOutcome
    output: Dict[str, Any] = Field(default_factory=dict)
    message: Optional[str] = None
    generations: List[GenerationRecord] = Field(default_factory=list)


class ExecutionResult(BaseModel):
    """Response of a single ``execute`` invocation."""

    status: Literal["completed", "extension_queued", "awaiting_approval", "review_needed"]
    task_id: Optional[str] = None
    step_id: Optional[str] = None
    output: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    progress: Optional[int] = None


class StepState(BaseModel):
    step_id: str
    type: str
    position: int
    task_id: Optional[str] = None
    status: Optional[TaskStatus] = None
    attempts: int = 0


class WorkflowState(BaseModel):
    """Snapshot of where a workflow stands, for display."""

    workflow_id: str
    name: str
    progress: int
    is_finished: bool
    next_step_id: Optional[str] = None
    can_execute: bool = False
    blocked_by: List[str] = Field(default_factory=list)
    steps: List[StepState] = Field(default_factory=list)


class ExtensionTask(BaseModel):
    """Payload served to the browser extension."""

    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="taskId")
    type: str
    platform: str
    config: Dict[str, Any] = Field(default_factory=dict)
