"""In-process AuditSink.

Thread-safe: every read and write happens under one lock, so the
conditional resolve is atomic against concurrent resolvers.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import UTC, datetime
from typing import Optional

from autoagent.core.models import (
    ActionLogEntry,
    ApprovalRequest,
    ApprovalStatus,
    Project,
    Task,
    TaskStatus,
)

logger = logging.getLogger("autoagent.db.memory")


class InMemoryAuditSink:
    """Dictionary-backed sink. Returned models are copies, never live state."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._approvals: dict[uuid.UUID, ApprovalRequest] = {}
        self._logs: list[ActionLogEntry] = []
        self._tasks: dict[uuid.UUID, Task] = {}
        self._projects: dict[uuid.UUID, Project] = {}

    # -------------------------------------------------------------------
    # Approvals
    # -------------------------------------------------------------------

    def record_approval(self, request: ApprovalRequest) -> ApprovalRequest:
        with self._lock:
            self._approvals[request.id] = request.model_copy()
        return request

    def resolve_approval(
        self, approval_id: uuid.UUID, status: ApprovalStatus, resolver: str
    ) -> bool:
        if status == ApprovalStatus.PENDING:
            raise ValueError("Cannot resolve an approval to 'pending'")
        with self._lock:
            current = self._approvals.get(approval_id)
            if current is None or current.status != ApprovalStatus.PENDING:
                return False
            self._approvals[approval_id] = current.model_copy(
                update={
                    "status": status,
                    "resolved_at": datetime.now(UTC),
                    "resolved_by": resolver,
                }
            )
            return True

    def get_approval(self, approval_id: uuid.UUID) -> Optional[ApprovalRequest]:
        with self._lock:
            found = self._approvals.get(approval_id)
            return found.model_copy() if found else None

    def get_pending_approvals(self) -> list[ApprovalRequest]:
        with self._lock:
            pending = [a.model_copy() for a in self._approvals.values() if a.is_pending]
        return sorted(pending, key=lambda a: a.requested_at)

    # -------------------------------------------------------------------
    # Action log
    # -------------------------------------------------------------------

    def append_log(self, entry: ActionLogEntry) -> ActionLogEntry:
        with self._lock:
            self._logs.append(entry)
        return entry

    def get_action_logs(
        self, task_id: Optional[uuid.UUID] = None, limit: int = 100
    ) -> list[ActionLogEntry]:
        """Newest first."""
        with self._lock:
            entries = [e for e in reversed(self._logs) if task_id is None or e.task_id == task_id]
        # stable sort: equal timestamps keep newest-appended first
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    # -------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------

    def create_task(self, task: Task) -> Task:
        with self._lock:
            self._tasks[task.id] = task.model_copy()
        return task

    def get_task(self, task_id: uuid.UUID) -> Optional[Task]:
        with self._lock:
            found = self._tasks.get(task_id)
            return found.model_copy() if found else None

    def update_task_status(
        self, task_id: uuid.UUID, status: TaskStatus, metadata: Optional[dict] = None
    ) -> None:
        now = datetime.now(UTC)
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                logger.warning("update_task_status: unknown task %s", task_id)
                return
            update: dict = {"status": status, "updated_at": now}
            if status == TaskStatus.COMPLETED:
                update["completed_at"] = now
            if metadata:
                update["metadata"] = {**current.metadata, **metadata}
            self._tasks[task_id] = current.model_copy(update=update)

    def list_tasks(self, status: Optional[TaskStatus] = None) -> list[Task]:
        """Newest first, optionally filtered by status."""
        with self._lock:
            tasks = [t.model_copy() for t in self._tasks.values()
                     if status is None or t.status == status]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    # -------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------

    def create_project(self, project: Project) -> Project:
        with self._lock:
            self._projects[project.id] = project.model_copy()
        return project

    def get_project(self, project_id: uuid.UUID) -> Optional[Project]:
        with self._lock:
            found = self._projects.get(project_id)
            return found.model_copy() if found else None

    def get_project_by_name(self, name: str) -> Optional[Project]:
        with self._lock:
            for project in self._projects.values():
                if project.name == name:
                    return project.model_copy()
        return None

    def list_projects(self) -> list[Project]:
        with self._lock:
            projects = [p.model_copy() for p in self._projects.values()]
        return sorted(projects, key=lambda p: p.created_at, reverse=True)

    def clear_all_data(self) -> None:
        with self._lock:
            self._approvals.clear()
            self._logs.clear()
            self._tasks.clear()
            self._projects.clear()
        logger.warning("All in-memory data cleared")
