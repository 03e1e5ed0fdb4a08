"""Tests for autoagent/db/repository.py against a real PostgreSQL."""

from __future__ import annotations

import uuid

from autoagent.core.models import (
    ActionLogEntry,
    ApprovalRequest,
    ApprovalStatus,
    Project,
    Task,
    TaskStatus,
)
from autoagent.db.sink import AuditSink
from tests.conftest import requires_postgres

pytestmark = requires_postgres


def _task(repository) -> Task:
    return repository.create_task(Task(title="Build API", description="Express REST API"))


class TestProjects:
    def test_create_and_get(self, repository):
        project = repository.create_project(Project(name=f"p-{uuid.uuid4()}", path="/ws/p", type="web"))
        assert repository.get_project(project.id).path == "/ws/p"
        assert repository.get_project_by_name(project.name).id == project.id

    def test_list_projects_newest_first(self, repository):
        older = repository.create_project(Project(name=f"old-{uuid.uuid4()}", path="/ws/old"))
        newer = repository.create_project(Project(name=f"new-{uuid.uuid4()}", path="/ws/new"))
        ids = [p.id for p in repository.list_projects()]
        assert ids.index(newer.id) < ids.index(older.id)


class TestTasks:
    def test_roundtrip_and_status(self, repository):
        task = _task(repository)
        repository.update_task_status(task.id, TaskStatus.IN_PROGRESS, {"step": 1})
        repository.update_task_status(task.id, TaskStatus.COMPLETED, {"summary": "ok"})
        stored = repository.get_task(task.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.metadata == {"step": 1, "summary": "ok"}
        assert stored.completed_at is not None

    def test_list_by_status(self, repository):
        task = _task(repository)
        repository.update_task_status(task.id, TaskStatus.FAILED)
        assert task.id in [t.id for t in repository.list_tasks(TaskStatus.FAILED)]
        assert task.id not in [t.id for t in repository.list_tasks(TaskStatus.PENDING)]


class TestApprovals:
    def test_satisfies_audit_sink(self, repository):
        assert isinstance(repository, AuditSink)

    def test_conditional_resolve(self, repository):
        task = _task(repository)
        req = repository.record_approval(ApprovalRequest(task_id=task.id, action="gitPush"))
        assert req.id in [a.id for a in repository.get_pending_approvals()]

        assert repository.resolve_approval(req.id, ApprovalStatus.REJECTED, "op1") is True
        assert repository.resolve_approval(req.id, ApprovalStatus.APPROVED, "op2") is False

        stored = repository.get_approval(req.id)
        assert stored.status == ApprovalStatus.REJECTED
        assert stored.resolved_by == "op1"
        assert req.id not in [a.id for a in repository.get_pending_approvals()]

    def test_resolve_missing(self, repository):
        assert repository.resolve_approval(uuid.uuid4(), ApprovalStatus.APPROVED, "op") is False


class TestLogs:
    def test_append_and_query(self, repository):
        task = _task(repository)
        repository.append_log(ActionLogEntry(
            task_id=task.id, tool="writeFile", parameters={"path": "a.js"},
            result={"success": True}, approved=True, approved_by="policy",
        ))
        logs = repository.get_action_logs(task.id)
        assert len(logs) == 1
        assert logs[0].parameters == {"path": "a.js"}
        assert logs[0].approved_by == "policy"

    def test_clear_all_data(self, repository):
        task = _task(repository)
        repository.append_log(ActionLogEntry(task_id=task.id, tool="readFile"))
        repository.clear_all_data()
        assert repository.get_task(task.id) is None
        assert repository.get_action_logs(task.id) == []
