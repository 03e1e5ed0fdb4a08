"""The narrow persistence interface the execution core depends on.

Both the in-memory sink and the PostgreSQL Repository satisfy it.
"""

from __future__ import annotations

import uuid
from typing import Optional, Protocol, runtime_checkable

from autoagent.core.models import (
    ActionLogEntry,
    ApprovalRequest,
    ApprovalStatus,
    Project,
    Task,
    TaskStatus,
)


@runtime_checkable
class AuditSink(Protocol):
    # Core interface
    def record_approval(self, request: ApprovalRequest) -> ApprovalRequest: ...

    def resolve_approval(
        self, approval_id: uuid.UUID, status: ApprovalStatus, resolver: str
    ) -> bool:
        """Move a pending request to a terminal status.

        Returns False without touching anything if the request is missing
        or no longer pending.
        """
        ...

    def append_log(self, entry: ActionLogEntry) -> ActionLogEntry: ...

    def get_pending_approvals(self) -> list[ApprovalRequest]: ...

    def get_approval(self, approval_id: uuid.UUID) -> Optional[ApprovalRequest]: ...

    # Tasks and projects
    def create_task(self, task: Task) -> Task: ...

    def get_task(self, task_id: uuid.UUID) -> Optional[Task]: ...

    def update_task_status(
        self, task_id: uuid.UUID, status: TaskStatus, metadata: Optional[dict] = None
    ) -> None: ...

    def list_tasks(self, status: Optional[TaskStatus] = None) -> list[Task]: ...

    def create_project(self, project: Project) -> Project: ...

    def get_project(self, project_id: uuid.UUID) -> Optional[Project]: ...

    def get_project_by_name(self, name: str) -> Optional[Project]: ...

    def list_projects(self) -> list[Project]: ...

    # Audit queries
    def get_action_logs(
        self, task_id: Optional[uuid.UUID] = None, limit: int = 100
    ) -> list[ActionLogEntry]: ...

    def clear_all_data(self) -> None: ...
