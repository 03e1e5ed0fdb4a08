"""Task state machine for AutoAgent.

Enforces the status graph:
  pending → in_progress ⇄ waiting_approval → completed | failed | cancelled
Terminal states accept no further transitions.
"""

from __future__ import annotations

import logging
from typing import Optional

from autoagent.core.exceptions import TaskStateError
from autoagent.core.models import Task, TaskStatus
from autoagent.db.sink import AuditSink

logger = logging.getLogger("autoagent.orchestrator.task_router")

# Legal state transitions; each key maps to the set of states it can move to
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED},
    TaskStatus.IN_PROGRESS: {
        TaskStatus.WAITING_APPROVAL,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    },
    TaskStatus.WAITING_APPROVAL: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    },
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
    TaskStatus.CANCELLED: set(),
}


class TaskRouter:
    """Routes every task status change through validation and the sink."""

    def __init__(self, sink: AuditSink):
        self.sink = sink

    def transition(
        self,
        task: Task,
        new_status: TaskStatus,
        reason: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Task:
        """Move a task to a new status.

        Raises:
            TaskStateError: If the transition is not allowed.
        """
        if not self.can_transition(task.status, new_status):
            raise TaskStateError(
                f"Invalid transition: {task.status.value} → {new_status.value} "
                f"for task '{task.title}' ({task.id})"
            )

        old_status = task.status
        self.sink.update_task_status(task.id, new_status, metadata)
        task.status = new_status
        if metadata:
            task.metadata.update(metadata)

        log_msg = f"Task '{task.title}': {old_status.value} → {new_status.value}"
        if reason:
            log_msg += f" ({reason})"
        logger.info(log_msg)

        return task

    def can_transition(self, from_status: TaskStatus, to_status: TaskStatus) -> bool:
        return to_status in VALID_TRANSITIONS.get(from_status, set())

    def mark_failed(self, task: Task, reason: str) -> Task:
        return self.transition(task, TaskStatus.FAILED, reason=reason, metadata={"failure_reason": reason})

    def mark_completed(self, task: Task, summary: Optional[str] = None) -> Task:
        return self.transition(
            task, TaskStatus.COMPLETED, reason="completed", metadata={"summary": summary} if summary else None
        )
