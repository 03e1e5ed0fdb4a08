"""Approval rendezvous between a blocked loop and its decision sources.

A gated action creates a pending ApprovalRequest. The loop thread then
blocks in ``await_decision`` until one of the following happens:

- ``resolve`` is called in this process (CLI handler, notifier callback),
- another process resolves the request through the shared AuditSink
  (picked up by polling),
- the deadline passes, which resolves the request to rejected, or
- the waiter is abandoned, which rejects it as cancelled.

Every waiter gets exactly one decision. The AuditSink's conditional
resolve picks the winner; the DecisionCell makes delivery take-once.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
import uuid
from typing import Optional, Union

from autoagent.core.exceptions import ApprovalNotFoundError
from autoagent.core.models import ApprovalRequest, ApprovalStatus
from autoagent.db.sink import AuditSink

logger = logging.getLogger("autoagent.approval.broker")

TIMEOUT_RESOLVER = "timeout"
CANCEL_RESOLVER = "cancelled"


class ResolveOutcome(str, enum.Enum):
    RESOLVED = "resolved"
    ALREADY_RESOLVED = "already_resolved"
    NOT_FOUND = "not_found"


class DecisionCell:
    """Take-once slot holding a single approval decision.

    ``offer`` succeeds only for the first caller. ``close`` marks the
    waiter as gone and wakes it; later offers are dropped.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._value: Optional[bool] = None
        self._closed = False

    def offer(self, approved: bool) -> bool:
        with self._lock:
            if self._closed or self._value is not None:
                return False
            self._value = approved
            self._event.set()
            return True

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._event.set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)

    @property
    def value(self) -> Optional[bool]:
        return self._value

    @property
    def decided(self) -> bool:
        return self._value is not None

    @property
    def closed(self) -> bool:
        return self._closed


def _coerce_decision(decision: Union[ApprovalStatus, str, bool]) -> ApprovalStatus:
    if isinstance(decision, bool):
        return ApprovalStatus.APPROVED if decision else ApprovalStatus.REJECTED
    status = ApprovalStatus(decision)
    if status == ApprovalStatus.PENDING:
        raise ValueError("A decision must be 'approved' or 'rejected'")
    return status


class ApprovalBroker:
    def __init__(
        self,
        sink: AuditSink,
        default_timeout: float = 300.0,
        poll_interval: float = 1.0,
    ):
        self.sink = sink
        self.default_timeout = default_timeout
        self.poll_interval = poll_interval
        self._waiters: dict[uuid.UUID, DecisionCell] = {}
        self._lock = threading.Lock()

    def request(self, task_id: uuid.UUID, action: str, description: str = "") -> uuid.UUID:
        """Persist a pending request and register a waiter slot for it."""
        req = ApprovalRequest(task_id=task_id, action=action, description=description)
        self.sink.record_approval(req)
        with self._lock:
            self._waiters[req.id] = DecisionCell()
        logger.info("Approval requested %s for task %s: %s %s",
                    req.id, task_id, action, description)
        return req.id

    def await_decision(self, approval_id: uuid.UUID, timeout: Optional[float] = None) -> bool:
        """Block until the request is decided or the deadline passes.

        Returns True only for an approval. A timeout resolves the request
        to rejected and returns False, as does abandonment.
        """
        record = self.sink.get_approval(approval_id)
        if record is None:
            raise ApprovalNotFoundError(approval_id)
        if not record.is_pending:
            with self._lock:
                self._waiters.pop(approval_id, None)
            return record.status == ApprovalStatus.APPROVED

        with self._lock:
            cell = self._waiters.setdefault(approval_id, DecisionCell())

        budget = self.default_timeout if timeout is None else timeout
        deadline = time.monotonic() + budget
        try:
            while not cell.decided and not cell.closed:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                if cell.wait(min(self.poll_interval, remaining)):
                    break
                self._poll_sink(approval_id, cell)

            if not cell.decided and not cell.closed:
                logger.warning("Approval %s timed out after %.1fs", approval_id, budget)
                self.resolve(approval_id, ApprovalStatus.REJECTED, TIMEOUT_RESOLVER)

            return cell.value is True
        finally:
            with self._lock:
                if self._waiters.get(approval_id) is cell:
                    del self._waiters[approval_id]

    def resolve(
        self,
        approval_id: uuid.UUID,
        decision: Union[ApprovalStatus, str, bool],
        resolver: str,
    ) -> ResolveOutcome:
        """Record a decision. Only the first call for an id has any effect."""
        status = _coerce_decision(decision)

        if self.sink.resolve_approval(approval_id, status, resolver):
            logger.info("Approval %s %s by %s", approval_id, status.value, resolver)
            self._deliver(approval_id, status == ApprovalStatus.APPROVED)
            return ResolveOutcome.RESOLVED

        existing = self.sink.get_approval(approval_id)
        if existing is None:
            logger.warning("Decision for unknown approval %s from %s", approval_id, resolver)
            return ResolveOutcome.NOT_FOUND

        # Lost the race: hand the waiter the winning decision if it has none yet
        self._deliver(approval_id, existing.status == ApprovalStatus.APPROVED)
        logger.info("Approval %s already resolved (%s); ignoring %s from %s",
                    approval_id, existing.status.value, status.value, resolver)
        return ResolveOutcome.ALREADY_RESOLVED

    def abandon(self, approval_id: uuid.UUID) -> ResolveOutcome:
        """Detach the waiter and reject the request as cancelled.

        The slot is closed rather than dropped, so a wait that starts after
        abandonment returns at once instead of blocking until the deadline.
        A decision that already landed is kept.
        """
        with self._lock:
            cell = self._waiters.setdefault(approval_id, DecisionCell())
        cell.close()
        logger.info("Waiter for approval %s abandoned", approval_id)
        return self.resolve(approval_id, ApprovalStatus.REJECTED, CANCEL_RESOLVER)

    def get(self, approval_id: uuid.UUID) -> Optional[ApprovalRequest]:
        return self.sink.get_approval(approval_id)

    def pending(self) -> list[ApprovalRequest]:
        return self.sink.get_pending_approvals()

    def has_waiter(self, approval_id: uuid.UUID) -> bool:
        with self._lock:
            cell = self._waiters.get(approval_id)
            return cell is not None and not cell.closed

    def _deliver(self, approval_id: uuid.UUID, approved: bool) -> None:
        with self._lock:
            cell = self._waiters.get(approval_id)
        if cell is not None:
            cell.offer(approved)

    def _poll_sink(self, approval_id: uuid.UUID, cell: DecisionCell) -> None:
        current = self.sink.get_approval(approval_id)
        if current is not None and not current.is_pending:
            logger.info("Approval %s resolved externally (%s by %s)",
                        approval_id, current.status.value, current.resolved_by)
            cell.offer(current.status == ApprovalStatus.APPROVED)
