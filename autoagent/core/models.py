"""All Pydantic data models for AutoAgent.

Defines the data contracts shared by the policy engine, the approval
broker, the action router, the execution loop and the audit sinks.
Every persisted row and every planner message has a model here.
"""

from __future__ import annotations

import enum
import json
import uuid
from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    WAITING_APPROVAL = "waiting_approval"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ProjectStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CriticalityLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ToolName(str, enum.Enum):
    """Closed set of tools the planner may name.

    Values are the wire names used in planner responses.
    """

    READ_FILE = "readFile"
    WRITE_FILE = "writeFile"
    DELETE_FILE = "deleteFile"
    CREATE_DIRECTORY = "createDirectory"
    LIST_DIRECTORY = "listDirectory"
    EXECUTE_COMMAND = "executeCommand"
    INSTALL_PACKAGES = "installPackages"
    GIT_INIT = "gitInit"
    GIT_COMMIT = "gitCommit"
    GIT_STATUS = "gitStatus"
    GIT_CREATE_BRANCH = "gitCreateBranch"
    GIT_PUSH = "gitPush"
    MAKE_API_CALL = "makeApiCall"
    DETECT_LANGUAGE = "detectLanguage"
    ANALYZE_DEPENDENCIES = "analyzeDependencies"
    SUGGEST_PROJECT_STRUCTURE = "suggestProjectStructure"

    @classmethod
    def lookup(cls, name: str) -> Optional["ToolName"]:
        """Return the member for a wire name, or None if the tool is unknown."""
        try:
            return cls(name)
        except ValueError:
            return None


class ActionKind(str, enum.Enum):
    """Policy category an action falls into."""

    PATH_READ = "path_read"
    PATH_WRITE = "path_write"
    DELETE = "delete"
    EXECUTE = "execute"
    INSTALL_PACKAGE = "install_package"
    GIT = "git"
    GIT_PUSH = "git_push"
    API_CALL = "api_call"
    ANALYSIS = "analysis"


class FailureKind(str, enum.Enum):
    """Expected failure modes. These are values, never raised."""

    POLICY_DENIED = "policy_denied"
    APPROVAL_REJECTED = "approval_rejected"
    APPROVAL_TIMEOUT = "approval_timeout"
    TOOL_FAILURE = "tool_failure"
    UNKNOWN_TOOL = "unknown_tool"
    INVALID_PARAMETERS = "invalid_parameters"
    PLANNING_UNPARSEABLE = "planning_unparseable"
    ITERATION_BUDGET_EXHAUSTED = "iteration_budget_exhausted"
    UNRECOVERABLE = "unrecoverable"


# ---------------------------------------------------------------------------
# Database row models
# ---------------------------------------------------------------------------

class Project(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    name: str
    type: str = "other"
    path: str
    status: ProjectStatus = ProjectStatus.ACTIVE
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)


class Task(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    title: str
    description: str
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    project_id: Optional[uuid.UUID] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    completed_at: Optional[datetime] = None


class ApprovalRequest(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    task_id: uuid.UUID
    action: str
    description: str = ""
    status: ApprovalStatus = ApprovalStatus.PENDING
    requested_at: datetime = Field(default_factory=_now)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING


class ActionLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=_new_uuid)
    task_id: Optional[uuid.UUID] = None
    tool: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] = Field(default_factory=dict)
    approved: bool = False
    approved_by: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


# ---------------------------------------------------------------------------
# Loop-internal models
# ---------------------------------------------------------------------------

class Action(BaseModel):
    """A single proposed tool invocation, valid for one loop iteration."""

    model_config = ConfigDict(frozen=True)

    tool: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    criticality: CriticalityLevel = CriticalityLevel.LOW
    requires_approval: bool = False

    def describe(self) -> str:
        """Short human-readable description used in approval prompts."""
        return json.dumps(self.parameters, sort_keys=True, default=str)


class ActionOutcome(BaseModel):
    """Normalized result of an executed, denied or rejected action."""

    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ActionOutcome":
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        kind: FailureKind = FailureKind.TOOL_FAILURE,
        data: Any = None,
    ) -> "ActionOutcome":
        return cls(success=False, error=error, failure_kind=kind, data=data)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# ---------------------------------------------------------------------------
# Planner message models
# ---------------------------------------------------------------------------

class ProposedAction(BaseModel):
    tool: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class PlannerResponse(BaseModel):
    """One planner turn: either a proposed action or a completion report."""

    model_config = ConfigDict(populate_by_name=True)

    thought: Optional[str] = None
    action: Optional[ProposedAction] = None
    completed: bool = False
    summary: Optional[str] = None
    files_created: list[str] = Field(default_factory=list, alias="filesCreated")
    next_steps: list[str] = Field(default_factory=list, alias="nextSteps")
    needs_approval: bool = Field(default=False, alias="needsApproval")
    criticality_level: Optional[CriticalityLevel] = Field(default=None, alias="criticalityLevel")
    degraded: bool = False  # set when the raw reply could not be parsed


class RecoveryAdvice(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error_type: str = Field(default="other", alias="errorType")
    root_cause: Optional[str] = Field(default=None, alias="rootCause")
    solution: Optional[str] = None
    alternative_approach: Optional[str] = Field(default=None, alias="alternativeApproach")
    needs_human_intervention: bool = Field(default=True, alias="needsHumanIntervention")


class AnalysisStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    description: str
    tool: Optional[str] = None
    estimated_complexity: Optional[str] = Field(default=None, alias="estimatedComplexity")
    dependencies: list[int] = Field(default_factory=list)
    criticality_level: Optional[str] = Field(default=None, alias="criticalityLevel")


class TaskAnalysis(BaseModel):
    """Up-front decomposition of a user request."""

    model_config = ConfigDict(populate_by_name=True)

    objective: str
    project_type: str = Field(default="other", alias="projectType")
    technologies: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    steps: list[AnalysisStep] = Field(default_factory=list)
    estimated_files: list[str] = Field(default_factory=list, alias="estimatedFiles")
    risks: list[str] = Field(default_factory=list)
