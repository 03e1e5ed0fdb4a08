"""PostgreSQL AuditSink.

All SQL lives here. Callers get Pydantic models back, never rows.
Approval resolution is a single conditional UPDATE, so the first
resolver wins even when resolvers live in different processes.
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Optional

from autoagent.core.models import (
    ActionLogEntry,
    ApprovalRequest,
    ApprovalStatus,
    Project,
    ProjectStatus,
    Task,
    TaskPriority,
    TaskStatus,
)
from autoagent.db.engine import DatabaseEngine


class Repository:
    """Data access layer wrapping DatabaseEngine with typed methods."""

    def __init__(self, engine: DatabaseEngine):
        self.engine = engine

    # -------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------

    def create_project(self, project: Project) -> Project:
        self.engine.execute(
            """INSERT INTO projects (id, name, type, path, status, metadata, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s)""",
            [
                str(project.id),
                project.name,
                project.type,
                project.path,
                project.status.value,
                json.dumps(project.metadata, default=str),
                project.created_at,
            ],
        )
        return project

    def get_project(self, project_id: uuid.UUID) -> Optional[Project]:
        row = self.engine.fetch_one("SELECT * FROM projects WHERE id = %s", [str(project_id)])
        if row is None:
            return None
        return _row_to_project(row)

    def get_project_by_name(self, name: str) -> Optional[Project]:
        row = self.engine.fetch_one("SELECT * FROM projects WHERE name = %s", [name])
        if row is None:
            return None
        return _row_to_project(row)

    def list_projects(self) -> list[Project]:
        rows = self.engine.fetch_all("SELECT * FROM projects ORDER BY created_at DESC")
        return [_row_to_project(r) for r in rows]

    # -------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------

    def create_task(self, task: Task) -> Task:
        self.engine.execute(
            """INSERT INTO tasks (id, project_id, title, description, status, priority,
                                  metadata, created_at, updated_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            [
                str(task.id),
                str(task.project_id) if task.project_id else None,
                task.title,
                task.description,
                task.status.value,
                task.priority.value,
                json.dumps(task.metadata, default=str),
                task.created_at,
                task.updated_at,
            ],
        )
        return task

    def get_task(self, task_id: uuid.UUID) -> Optional[Task]:
        row = self.engine.fetch_one("SELECT * FROM tasks WHERE id = %s", [str(task_id)])
        if row is None:
            return None
        return _row_to_task(row)

    def update_task_status(
        self, task_id: uuid.UUID, status: TaskStatus, metadata: Optional[dict] = None
    ) -> None:
        completed_at = datetime.now(UTC) if status == TaskStatus.COMPLETED else None
        self.engine.execute(
            """UPDATE tasks
               SET status = %s,
                   updated_at = now(),
                   completed_at = COALESCE(%s::timestamptz, completed_at),
                   metadata = metadata || %s::jsonb
               WHERE id = %s""",
            [status.value, completed_at, json.dumps(metadata or {}, default=str), str(task_id)],
        )

    def list_tasks(self, status: Optional[TaskStatus] = None) -> list[Task]:
        """Newest first, optionally filtered by status."""
        if status is None:
            rows = self.engine.fetch_all("SELECT * FROM tasks ORDER BY created_at DESC")
        else:
            rows = self.engine.fetch_all(
                "SELECT * FROM tasks WHERE status = %s ORDER BY created_at DESC",
                [status.value],
            )
        return [_row_to_task(r) for r in rows]

    # -------------------------------------------------------------------
    # Approvals
    # -------------------------------------------------------------------

    def record_approval(self, request: ApprovalRequest) -> ApprovalRequest:
        self.engine.execute(
            """INSERT INTO approvals (id, task_id, action, description, status, requested_at)
               VALUES (%s, %s, %s, %s, %s, %s)""",
            [
                str(request.id),
                str(request.task_id),
                request.action,
                request.description,
                request.status.value,
                request.requested_at,
            ],
        )
        return request

    def resolve_approval(
        self, approval_id: uuid.UUID, status: ApprovalStatus, resolver: str
    ) -> bool:
        if status == ApprovalStatus.PENDING:
            raise ValueError("Cannot resolve an approval to 'pending'")
        row = self.engine.fetch_one(
            """UPDATE approvals
               SET status = %s, resolved_at = now(), resolved_by = %s
               WHERE id = %s AND status = 'pending'
               RETURNING id""",
            [status.value, resolver, str(approval_id)],
        )
        return row is not None

    def get_approval(self, approval_id: uuid.UUID) -> Optional[ApprovalRequest]:
        row = self.engine.fetch_one("SELECT * FROM approvals WHERE id = %s", [str(approval_id)])
        if row is None:
            return None
        return _row_to_approval(row)

    def get_pending_approvals(self) -> list[ApprovalRequest]:
        rows = self.engine.fetch_all(
            "SELECT * FROM approvals WHERE status = 'pending' ORDER BY requested_at ASC"
        )
        return [_row_to_approval(r) for r in rows]

    # -------------------------------------------------------------------
    # Action log
    # -------------------------------------------------------------------

    def append_log(self, entry: ActionLogEntry) -> ActionLogEntry:
        self.engine.execute(
            """INSERT INTO action_logs (id, task_id, tool, parameters, result,
                                        approved, approved_by, timestamp)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s)""",
            [
                str(entry.id),
                str(entry.task_id) if entry.task_id else None,
                entry.tool,
                json.dumps(entry.parameters, default=str),
                json.dumps(entry.result, default=str),
                entry.approved,
                entry.approved_by,
                entry.timestamp,
            ],
        )
        return entry

    def get_action_logs(
        self, task_id: Optional[uuid.UUID] = None, limit: int = 100
    ) -> list[ActionLogEntry]:
        """Newest first."""
        if task_id is None:
            rows = self.engine.fetch_all(
                "SELECT * FROM action_logs ORDER BY timestamp DESC LIMIT %s", [limit]
            )
        else:
            rows = self.engine.fetch_all(
                """SELECT * FROM action_logs WHERE task_id = %s
                   ORDER BY timestamp DESC LIMIT %s""",
                [str(task_id), limit],
            )
        return [_row_to_log(r) for r in rows]

    # -------------------------------------------------------------------
    # Bulk erase
    # -------------------------------------------------------------------

    def clear_all_data(self) -> None:
        with self.engine.transaction() as cur:
            cur.execute("DELETE FROM action_logs")
            cur.execute("DELETE FROM approvals")
            cur.execute("DELETE FROM tasks")
            cur.execute("DELETE FROM projects")


# ---------------------------------------------------------------------------
# Row → model converters
# ---------------------------------------------------------------------------

def _opt_uuid(value) -> Optional[uuid.UUID]:
    return uuid.UUID(str(value)) if value else None


def _row_to_project(row: dict) -> Project:
    return Project(
        id=uuid.UUID(str(row["id"])),
        name=row["name"],
        type=row.get("type") or "other",
        path=row["path"],
        status=ProjectStatus(row.get("status") or "active"),
        metadata=row.get("metadata") or {},
        created_at=row.get("created_at", datetime.now(UTC)),
    )


def _row_to_task(row: dict) -> Task:
    return Task(
        id=uuid.UUID(str(row["id"])),
        project_id=_opt_uuid(row.get("project_id")),
        title=row["title"],
        description=row["description"],
        status=TaskStatus(row["status"]),
        priority=TaskPriority(row.get("priority") or "medium"),
        metadata=row.get("metadata") or {},
        created_at=row.get("created_at", datetime.now(UTC)),
        updated_at=row.get("updated_at", datetime.now(UTC)),
        completed_at=row.get("completed_at"),
    )


def _row_to_approval(row: dict) -> ApprovalRequest:
    return ApprovalRequest(
        id=uuid.UUID(str(row["id"])),
        task_id=uuid.UUID(str(row["task_id"])),
        action=row["action"],
        description=row.get("description") or "",
        status=ApprovalStatus(row["status"]),
        requested_at=row.get("requested_at", datetime.now(UTC)),
        resolved_at=row.get("resolved_at"),
        resolved_by=row.get("resolved_by"),
    )


def _row_to_log(row: dict) -> ActionLogEntry:
    return ActionLogEntry(
        id=uuid.UUID(str(row["id"])),
        task_id=_opt_uuid(row.get("task_id")),
        tool=row["tool"],
        parameters=row.get("parameters") or {},
        result=row.get("result") or {},
        approved=bool(row.get("approved")),
        approved_by=row.get("approved_by"),
        timestamp=row.get("timestamp", datetime.now(UTC)),
    )
