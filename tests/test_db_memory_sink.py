"""Tests for autoagent/db/memory.py: the in-process AuditSink."""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from autoagent.core.models import (
    ActionLogEntry,
    ApprovalRequest,
    ApprovalStatus,
    Project,
    Task,
    TaskStatus,
)
from autoagent.db.memory import InMemoryAuditSink
from autoagent.db.sink import AuditSink


class TestProtocol:
    def test_satisfies_audit_sink(self, sink: InMemoryAuditSink):
        assert isinstance(sink, AuditSink)


class TestApprovals:
    def test_conditional_resolve(self, sink: InMemoryAuditSink, sample_task: Task):
        req = sink.record_approval(ApprovalRequest(task_id=sample_task.id, action="deleteFile"))
        assert sink.resolve_approval(req.id, ApprovalStatus.APPROVED, "op1") is True
        assert sink.resolve_approval(req.id, ApprovalStatus.REJECTED, "op2") is False

        stored = sink.get_approval(req.id)
        assert stored.status == ApprovalStatus.APPROVED
        assert stored.resolved_by == "op1"
        assert stored.resolved_at is not None

    def test_resolve_missing(self, sink: InMemoryAuditSink):
        assert sink.resolve_approval(uuid.uuid4(), ApprovalStatus.APPROVED, "op") is False

    def test_resolve_to_pending_is_an_error(self, sink: InMemoryAuditSink, sample_task: Task):
        req = sink.record_approval(ApprovalRequest(task_id=sample_task.id, action="x"))
        with pytest.raises(ValueError):
            sink.resolve_approval(req.id, ApprovalStatus.PENDING, "op")

    def test_pending_list(self, sink: InMemoryAuditSink, sample_task: Task):
        a = sink.record_approval(ApprovalRequest(task_id=sample_task.id, action="a"))
        b = sink.record_approval(ApprovalRequest(task_id=sample_task.id, action="b"))
        sink.resolve_approval(a.id, ApprovalStatus.REJECTED, "op")
        assert [p.id for p in sink.get_pending_approvals()] == [b.id]

    def test_returned_models_are_copies(self, sink: InMemoryAuditSink, sample_task: Task):
        req = sink.record_approval(ApprovalRequest(task_id=sample_task.id, action="a"))
        copy = sink.get_approval(req.id)
        copy.status = ApprovalStatus.APPROVED
        assert sink.get_approval(req.id).is_pending

    def test_racing_resolvers(self, sink: InMemoryAuditSink, sample_task: Task):
        req = sink.record_approval(ApprovalRequest(task_id=sample_task.id, action="a"))
        wins: list[bool] = []
        barrier = threading.Barrier(10)

        def _go(i: int):
            barrier.wait()
            wins.append(sink.resolve_approval(req.id, ApprovalStatus.APPROVED, f"op{i}"))

        threads = [threading.Thread(target=_go, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert wins.count(True) == 1


class TestLogs:
    def test_newest_first_and_filtered(self, sink: InMemoryAuditSink, sample_task: Task):
        other = uuid.uuid4()
        first = sink.append_log(ActionLogEntry(task_id=sample_task.id, tool="readFile"))
        second = sink.append_log(ActionLogEntry(task_id=sample_task.id, tool="writeFile"))
        sink.append_log(ActionLogEntry(task_id=other, tool="gitInit"))

        logs = sink.get_action_logs(sample_task.id)
        assert [e.id for e in logs] == [second.id, first.id]
        assert len(sink.get_action_logs()) == 3
        assert len(sink.get_action_logs(limit=1)) == 1


class TestTasksAndProjects:
    def test_status_update_merges_metadata(self, sink: InMemoryAuditSink):
        task = sink.create_task(Task(title="t", description="d", metadata={"a": 1}))
        sink.update_task_status(task.id, TaskStatus.IN_PROGRESS, {"b": 2})
        stored = sink.get_task(task.id)
        assert stored.status == TaskStatus.IN_PROGRESS
        assert stored.metadata == {"a": 1, "b": 2}

    def test_list_tasks_by_status(self, sink: InMemoryAuditSink):
        a = sink.create_task(Task(title="a", description="d"))
        sink.create_task(Task(title="b", description="d"))
        sink.update_task_status(a.id, TaskStatus.IN_PROGRESS)
        assert [t.id for t in sink.list_tasks(TaskStatus.IN_PROGRESS)] == [a.id]
        assert len(sink.list_tasks()) == 2

    def test_update_unknown_task_is_ignored(self, sink: InMemoryAuditSink):
        sink.update_task_status(uuid.uuid4(), TaskStatus.FAILED)

    def test_projects(self, sink: InMemoryAuditSink):
        project = sink.create_project(Project(name="todo", path="/ws/todo", type="web"))
        assert sink.get_project(project.id).name == "todo"
        assert sink.get_project_by_name("todo").id == project.id
        assert sink.get_project_by_name("other") is None

    def test_list_projects_newest_first(self, sink: InMemoryAuditSink):
        now = datetime.now(timezone.utc)
        old = sink.create_project(Project(name="old", path="/ws/old", created_at=now - timedelta(hours=1)))
        new = sink.create_project(Project(name="new", path="/ws/new", created_at=now))
        listed = sink.list_projects()
        assert [p.id for p in listed] == [new.id, old.id]
        listed[0].name = "mutated"
        assert sink.get_project(new.id).name == "new"

    def test_clear_all_data(self, sink: InMemoryAuditSink, sample_task: Task):
        sink.record_approval(ApprovalRequest(task_id=sample_task.id, action="a"))
        sink.append_log(ActionLogEntry(tool="readFile"))
        sink.create_project(Project(name="p", path="/p"))
        sink.clear_all_data()
        assert sink.list_tasks() == []
        assert sink.get_pending_approvals() == []
        assert sink.get_action_logs() == []
        assert sink.get_project_by_name("p") is None
