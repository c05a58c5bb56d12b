"""Pydantic models for structured data throughout the agent."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Lifecycle enums
# ---------------------------------------------------------------------------


class EnhancementStatus(str, Enum):
    """Lifecycle states of an enhancement request."""

    PENDING = "pending"
    PROCESSING = "processing"
    PLANNING = "planning"
    IMPLEMENTING = "implementing"
    REVIEWING = "reviewing"
    COPILOT_REVIEWING = "copilot_reviewing"
    PR_CREATED = "pr_created"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES: tuple[EnhancementStatus, ...] = (
    EnhancementStatus.PROCESSING,
    EnhancementStatus.PLANNING,
    EnhancementStatus.IMPLEMENTING,
    EnhancementStatus.REVIEWING,
    EnhancementStatus.COPILOT_REVIEWING,
)


class DeploymentStatus(str, Enum):
    """Lifecycle states of a scheduled deployment."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DEPLOYED = "deployed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# AI service payloads
# ---------------------------------------------------------------------------


class _WireModel(BaseModel):
    """Accept both camelCase wire keys and snake_case attribute names."""

    model_config = ConfigDict(populate_by_name=True)


class TaskType(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    TEST = "test"
    CONFIG = "config"


class PlanTask(_WireModel):
    """One unit of work inside a plan."""

    id: str
    title: str
    description: str = ""
    type: TaskType = TaskType.MODIFY
    files: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _coerce_dependencies(cls, value: Any) -> list[str]:
        return [str(item) for item in (value or [])]


class RiskSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Risk(_WireModel):
    description: str
    severity: RiskSeverity = RiskSeverity.MEDIUM
    mitigation: str = ""


class EnhancementPlan(_WireModel):
    """Ordered implementation plan produced by the planner."""

    tasks: list[PlanTask] = Field(default_factory=list)
    risks: list[Risk] = Field(default_factory=list)
    estimated_files: list[str] = Field(default_factory=list, alias="estimatedFiles")
    summary: str = ""
    estimated_effort: str = Field(default="", alias="estimatedEffort")

    @model_validator(mode="after")
    def _unique_task_ids(self) -> EnhancementPlan:
        seen: set[str] = set()
        for task in self.tasks:
            if task.id in seen:
                raise ValueError(f"duplicate task id {task.id!r}")
            seen.add(task.id)
        return self

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class FileOperation(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class CodeGenResult(_WireModel):
    """A single file change emitted by the code generator."""

    file_path: str = Field(alias="filePath")
    content: str = ""
    operation: FileOperation
    explanation: str = ""

    @model_validator(mode="after")
    def _content_for_writes(self) -> CodeGenResult:
        if self.operation is FileOperation.DELETE:
            self.content = ""
        return self


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ReviewIssue(_WireModel):
    severity: IssueSeverity = IssueSeverity.INFO
    file: str = ""
    line: int | None = None
    message: str


class CodeReview(_WireModel):
    """Verdict of the internal AI review."""

    approved: bool = False
    issues: list[ReviewIssue] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    summary: str = ""


class PRContent(_WireModel):
    """AI-written pull request title and body."""

    title: str
    body: str


# ---------------------------------------------------------------------------
# Review bot
# ---------------------------------------------------------------------------


class BotReviewResult(BaseModel):
    """Outcome of waiting for the external review bot."""

    responded: bool = False
    approved: bool = False
    suggestions: list[str] = Field(default_factory=list)
    raw_response: str | None = None


class ReviewOutcome(BaseModel):
    """Combined result of the review phase; the phase never blocks delivery."""

    internal: CodeReview
    bot: BotReviewResult = Field(default_factory=BotReviewResult)
    used_fallback: bool = False
    review_passed: bool = True


# ---------------------------------------------------------------------------
# Repository host
# ---------------------------------------------------------------------------


class PullRequestRef(BaseModel):
    number: int
    url: str = ""
    html_url: str = ""


class IssueComment(BaseModel):
    id: int
    body: str = ""
    user_login: str = ""
    user_type: str = ""
    created_at: str = ""

    @property
    def is_bot(self) -> bool:
        return self.user_type.lower() == "bot"


class CheckRun(BaseModel):
    name: str
    status: str = ""
    conclusion: str | None = None


class PRStatus(BaseModel):
    """Live snapshot of a pull request used by the merge gate."""

    number: int
    state: str = "open"
    merged: bool = False
    mergeable: bool | None = None
    head_sha: str = ""
    checks: list[CheckRun] = Field(default_factory=list)

    @property
    def failed_checks(self) -> list[CheckRun]:
        return [c for c in self.checks if (c.conclusion or "") in {"failure", "cancelled"}]


# ---------------------------------------------------------------------------
# Store views
# ---------------------------------------------------------------------------


class EnhancementRecord(BaseModel):
    """Detached snapshot of an enhancement row."""

    id: int
    title: str
    description: str = ""
    status: EnhancementStatus = EnhancementStatus.PENDING
    priority: int = 5
    requested_by: str = ""
    assigned_to: str | None = None
    branch_name: str | None = None
    pr_number: int | None = None
    pr_url: str | None = None
    plan_json: str | None = None
    error_message: str | None = None
    notes: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None
    started_at: dt.datetime | None = None
    completed_at: dt.datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    def plan(self) -> EnhancementPlan | None:
        if not self.plan_json:
            return None
        return EnhancementPlan.model_validate_json(self.plan_json)


class DueDeployment(BaseModel):
    """A pending deployment joined with the fields of its enhancement."""

    id: int
    enhancement_id: int
    scheduled_date: dt.datetime
    status: DeploymentStatus = DeploymentStatus.PENDING
    notes: str | None = None
    title: str = ""
    description: str = ""
    requested_by: str = ""
    branch_name: str | None = None
    pr_number: int | None = None


class DeploymentResult(BaseModel):
    deployment_id: int
    enhancement_id: int
    status: DeploymentStatus
    message: str = ""


class SchedulerSummary(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[DeploymentResult] = Field(default_factory=list)
