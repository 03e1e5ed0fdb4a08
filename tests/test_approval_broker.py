"""Tests for autoagent/approval/broker.py: the approval rendezvous."""

from __future__ import annotations

import threading
import time
import uuid

import pytest

from autoagent.approval.broker import (
    CANCEL_RESOLVER,
    TIMEOUT_RESOLVER,
    ApprovalBroker,
    DecisionCell,
    ResolveOutcome,
)
from autoagent.core.exceptions import ApprovalNotFoundError
from autoagent.core.models import ApprovalStatus, Task
from autoagent.db.memory import InMemoryAuditSink


def _resolve_later(broker: ApprovalBroker, approval_id, decision, resolver="op1", delay=0.05):
    def _run():
        time.sleep(delay)
        broker.resolve(approval_id, decision, resolver)

    t = threading.Thread(target=_run)
    t.start()
    return t


class TestDecisionCell:
    def test_take_once(self):
        cell = DecisionCell()
        assert cell.offer(True)
        assert not cell.offer(False)
        assert cell.value is True

    def test_closed_cell_drops_offers(self):
        cell = DecisionCell()
        cell.close()
        assert not cell.offer(True)
        assert cell.value is None
        assert cell.wait(0)


class TestRequest:
    def test_persists_pending_request(self, broker: ApprovalBroker, sink: InMemoryAuditSink, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile", '{"path": "a.txt"}')
        record = sink.get_approval(approval_id)
        assert record is not None
        assert record.is_pending
        assert record.action == "deleteFile"
        assert broker.has_waiter(approval_id)
        assert [a.id for a in broker.pending()] == [approval_id]


class TestAwaitDecision:
    def test_approved_before_deadline(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile")
        t = _resolve_later(broker, approval_id, "approved")
        assert broker.await_decision(approval_id, timeout=2.0) is True
        t.join()
        record = broker.get(approval_id)
        assert record.status == ApprovalStatus.APPROVED
        assert record.resolved_by == "op1"
        assert not broker.has_waiter(approval_id)

    def test_rejected(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "gitPush")
        t = _resolve_later(broker, approval_id, False)
        assert broker.await_decision(approval_id, timeout=2.0) is False
        t.join()
        assert broker.get(approval_id).status == ApprovalStatus.REJECTED

    def test_timeout_resolves_to_rejected(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile")
        started = time.monotonic()
        assert broker.await_decision(approval_id, timeout=0.1) is False
        assert time.monotonic() - started < 1.0
        record = broker.get(approval_id)
        assert record.status == ApprovalStatus.REJECTED
        assert record.resolved_by == TIMEOUT_RESOLVER
        assert broker.pending() == []

    def test_late_resolve_after_timeout_is_ignored(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile")
        broker.await_decision(approval_id, timeout=0.05)
        assert broker.resolve(approval_id, "approved", "op1") == ResolveOutcome.ALREADY_RESOLVED
        assert broker.get(approval_id).status == ApprovalStatus.REJECTED

    def test_already_resolved_returns_immediately(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile")
        assert broker.resolve(approval_id, ApprovalStatus.APPROVED, "op1") == ResolveOutcome.RESOLVED
        started = time.monotonic()
        assert broker.await_decision(approval_id, timeout=5.0) is True
        assert time.monotonic() - started < 1.0

    def test_unknown_id_raises(self, broker: ApprovalBroker):
        with pytest.raises(ApprovalNotFoundError):
            broker.await_decision(uuid.uuid4(), timeout=0.1)

    def test_external_resolution_is_polled(self, broker: ApprovalBroker, sink: InMemoryAuditSink, sample_task: Task):
        """A decision written straight to the sink (another process) still wakes the waiter."""
        approval_id = broker.request(sample_task.id, "deleteFile")

        def _external():
            time.sleep(0.1)
            sink.resolve_approval(approval_id, ApprovalStatus.APPROVED, "other-process")

        t = threading.Thread(target=_external)
        t.start()
        assert broker.await_decision(approval_id, timeout=2.0) is True
        t.join()
        assert broker.get(approval_id).resolved_by == "other-process"

    def test_abandon_wakes_waiter_and_rejects_as_cancelled(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile")
        result: dict = {}

        def _wait():
            result["approved"] = broker.await_decision(approval_id, timeout=5.0)

        t = threading.Thread(target=_wait)
        t.start()
        time.sleep(0.05)
        broker.abandon(approval_id)
        t.join(timeout=2.0)

        assert not t.is_alive()
        assert result["approved"] is False
        record = broker.get(approval_id)
        assert record.status == ApprovalStatus.REJECTED
        assert record.resolved_by == CANCEL_RESOLVER
        assert broker.resolve(approval_id, "approved", "op1") == ResolveOutcome.ALREADY_RESOLVED

    def test_abandoned_request_does_not_outlive_its_deadline(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile")
        t = threading.Thread(target=broker.await_decision, args=(approval_id, 0.2))
        t.start()
        time.sleep(0.05)
        broker.abandon(approval_id)
        t.join(timeout=2.0)
        time.sleep(0.3)
        assert broker.pending() == []

    def test_abandon_keeps_an_earlier_decision(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile")
        broker.resolve(approval_id, True, "op1")
        assert broker.abandon(approval_id) == ResolveOutcome.ALREADY_RESOLVED
        assert broker.get(approval_id).status == ApprovalStatus.APPROVED


class TestResolve:
    def test_double_resolve(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile")
        assert broker.resolve(approval_id, "approved", "op1") == ResolveOutcome.RESOLVED
        assert broker.resolve(approval_id, "rejected", "op2") == ResolveOutcome.ALREADY_RESOLVED
        record = broker.get(approval_id)
        assert record.status == ApprovalStatus.APPROVED
        assert record.resolved_by == "op1"

    def test_unknown_id(self, broker: ApprovalBroker):
        assert broker.resolve(uuid.uuid4(), "approved", "op1") == ResolveOutcome.NOT_FOUND

    def test_pending_is_not_a_decision(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile")
        with pytest.raises(ValueError):
            broker.resolve(approval_id, ApprovalStatus.PENDING, "op1")

    def test_unknown_decision_string(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile")
        with pytest.raises(ValueError):
            broker.resolve(approval_id, "maybe", "op1")

    def test_concurrent_resolvers_single_winner(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile")
        barrier = threading.Barrier(8)
        outcomes: list[ResolveOutcome] = []
        lock = threading.Lock()

        def _resolver(i: int):
            barrier.wait()
            outcome = broker.resolve(approval_id, i % 2 == 0, f"op{i}")
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=_resolver, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(ResolveOutcome.RESOLVED) == 1
        assert outcomes.count(ResolveOutcome.ALREADY_RESOLVED) == 7

        winner = broker.get(approval_id)
        assert not winner.is_pending
        assert broker.await_decision(approval_id) is (winner.status == ApprovalStatus.APPROVED)

    def test_get_is_idempotent(self, broker: ApprovalBroker, sample_task: Task):
        approval_id = broker.request(sample_task.id, "deleteFile")
        broker.resolve(approval_id, True, "op1")
        assert broker.get(approval_id) == broker.get(approval_id)
