"""Policy-gated execution loop for AutoAgent.

Each iteration runs:
  Planning → Validating → [Awaiting approval] → Executing → Logging

The loop owns the task and the conversation history for the duration of
a run. Expected failures (policy denials, rejections, timeouts, tool
errors) are recorded and fed back to the planner as observations; only
unexpected exceptions trigger the single error-recovery pass.
"""

from __future__ import annotations

import enum
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from autoagent.approval.broker import TIMEOUT_RESOLVER, ApprovalBroker
from autoagent.approval.notifier import ApprovalNotifier
from autoagent.core.exceptions import LLMError, ToolError
from autoagent.core.models import (
    Action,
    ActionLogEntry,
    ActionOutcome,
    CriticalityLevel,
    FailureKind,
    PlannerResponse,
    Project,
    Task,
    TaskStatus,
)
from autoagent.db.sink import AuditSink
from autoagent.llm.client import LLMMessage
from autoagent.llm.planner import Planner
from autoagent.orchestrator.task_router import TaskRouter
from autoagent.security.policy import PolicyEngine, criticality_for
from autoagent.tools import git_ops
from autoagent.tools.router import ActionRouter

logger = logging.getLogger("autoagent.orchestrator.loop")

POLICY_RESOLVER = "policy"
PLANNER_LOG_TOOL = "planner"
MAX_OBSERVATION_CHARS = 8000


class LoopPhase(str, enum.Enum):
    IDLE = "idle"
    PLANNING = "planning"
    VALIDATING = "validating"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    LOGGING = "logging"
    COMPLETED = "completed"
    FAILED = "failed"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass
class LoopResult:
    task_id: uuid.UUID
    status: TaskStatus
    iterations: int
    summary: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    files_created: list[str] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED


class ExecutionLoop:
    """Plan → validate → (approve) → execute → log, up to a fixed budget.

    Injected dependencies:
        planner: Produces the next step from the conversation history.
        policy: Pure allow / deny / gate decisions.
        broker: Approval rendezvous for gated actions.
        router: Executes the tool behind each allowed action.
        sink: Durable audit log and task store.
        notifier: Fans approval prompts out to operator channels.
    """

    def __init__(
        self,
        planner: Planner,
        policy: PolicyEngine,
        broker: ApprovalBroker,
        router: ActionRouter,
        sink: AuditSink,
        notifier: Optional[ApprovalNotifier] = None,
        max_iterations: int = 50,
        approval_timeout: Optional[float] = None,
        analyze_task: bool = False,
        workspace_dir: Optional[Path] = None,
        progress_callback: Optional[Callable[[str], None]] = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.planner = planner
        self.policy = policy
        self.broker = broker
        self.router = router
        self.sink = sink
        self.notifier = notifier
        self.max_iterations = max_iterations
        self.approval_timeout = approval_timeout
        self.analyze_task = analyze_task
        self.workspace_dir = workspace_dir or router.workspace_dir
        self.task_router = TaskRouter(sink)
        self._progress_callback = progress_callback

        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._pending_approval: Optional[uuid.UUID] = None
        self._last_action: Optional[Action] = None

        self.iteration = 0
        self.history: list[LLMMessage] = []
        self.phase = LoopPhase.IDLE
        self.current_task: Optional[Task] = None
        self.reset()

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    def reset(self) -> None:
        """Clear the iteration count and conversation so the loop can be reused."""
        self.iteration = 0
        self.history = [LLMMessage(role="system", content=self.planner.system_prompt())]
        self.phase = LoopPhase.IDLE
        self.current_task = None
        self._last_action = None
        self._cancelled.clear()
        with self._lock:
            self._pending_approval = None

    def cancel(self) -> None:
        """Stop the current run at the next safe point.

        Safe to call from any thread. An in-flight approval wait is
        abandoned immediately and the request is rejected as cancelled.
        """
        self._cancelled.set()
        with self._lock:
            approval_id = self._pending_approval
        if approval_id is not None:
            self.broker.abandon(approval_id)
        logger.info("Cancellation requested")

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _notify(self, message: str) -> None:
        if self._progress_callback is not None:
            self._progress_callback(message)

    # -------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------

    def run(self, request: str, project_name: Optional[str] = None) -> LoopResult:
        """Execute one task end to end and return its terminal result."""
        if self.current_task is not None:
            self.reset()

        task = self._create_task(request, project_name)
        self.current_task = task
        self._notify(f"[TASK] {task.title} ({task.id})")

        if self.cancelled:
            return self._finish_cancelled(task)
        self.task_router.transition(task, TaskStatus.IN_PROGRESS, reason="run started")

        while self.iteration < self.max_iterations:
            if self.cancelled:
                return self._finish_cancelled(task)

            self.iteration += 1
            logger.info("Task %s iteration %d/%d", task.id, self.iteration, self.max_iterations)
            self._notify(f"[ITER] {self.iteration}/{self.max_iterations}")

            try:
                result = self._iterate(task)
            except Exception as e:
                if self.cancelled:
                    return self._finish_cancelled(task)
                logger.warning("Iteration %d raised %s: %s", self.iteration, type(e).__name__, e)
                if not self._recover(task, e):
                    return self._finish_failed(task, f"Unrecoverable error: {e}", FailureKind.UNRECOVERABLE)
                continue

            if result is not None:
                return result

        self.phase = LoopPhase.EXHAUSTED
        reason = f"Iteration budget of {self.max_iterations} exhausted without completion"
        logger.warning("Task %s: %s", task.id, reason)
        return self._finish_failed(task, reason, FailureKind.ITERATION_BUDGET_EXHAUSTED)

    def _iterate(self, task: Task) -> Optional[LoopResult]:
        self.phase = LoopPhase.PLANNING
        self._last_action = None
        response = self.planner.next_step(list(self.history))

        if response.degraded:
            self._notify("[PLANNER] reply was not valid JSON; using degraded parse")
            self.sink.append_log(ActionLogEntry(
                task_id=task.id,
                tool=PLANNER_LOG_TOOL,
                parameters={"thought": (response.thought or "")[:MAX_OBSERVATION_CHARS]},
                result=ActionOutcome.failure(
                    "Planner reply could not be parsed", FailureKind.PLANNING_UNPARSEABLE
                ).to_record(),
                approved=False,
            ))

        if response.completed:
            return self._finish_completed(task, response)

        if response.action is None:
            self.history.append(LLMMessage(role="assistant", content=response.thought or ""))
            self.history.append(LLMMessage(
                role="user",
                content="No action was given. Reply with one JSON object containing "
                        "either an action or \"completed\": true.",
            ))
            return None

        self.history.append(LLMMessage(role="assistant", content=_render_proposal(response)))

        # Validating
        self.phase = LoopPhase.VALIDATING
        decision = self.policy.decide(response.action)
        action = Action(
            tool=response.action.tool,
            parameters=response.action.parameters,
            criticality=_raised(criticality_for(response.action.tool), response.criticality_level),
            requires_approval=decision.requires_approval
            or (decision.allowed and response.needs_approval),
        )
        self._last_action = action

        if not decision.allowed:
            logger.info("Policy denied %s: %s", action.tool, decision.reason)
            self._notify(f"[DENIED] {action.tool}: {decision.reason}")
            outcome = ActionOutcome.failure(decision.reason, FailureKind.POLICY_DENIED)
            self._record(task, action, outcome, approved=False, approved_by=None)
            return None

        approved_by = POLICY_RESOLVER
        if action.requires_approval:
            reason = decision.reason if decision.requires_approval else "planner requested approval"
            verdict = self._await_approval(task, action, reason)
            if verdict is None:
                return self._finish_cancelled(task)
            approved, resolver = verdict
            if not approved:
                if resolver == TIMEOUT_RESOLVER:
                    outcome = ActionOutcome.failure(
                        "Approval timed out; action not executed", FailureKind.APPROVAL_TIMEOUT
                    )
                else:
                    outcome = ActionOutcome.failure(
                        f"Action rejected by {resolver}", FailureKind.APPROVAL_REJECTED
                    )
                self._notify(f"[REJECTED] {action.tool}")
                self._record(task, action, outcome, approved=False, approved_by=resolver)
                return None
            approved_by = resolver or POLICY_RESOLVER

        # Executing
        self.phase = LoopPhase.EXECUTING
        self._notify(f"[ACTION] {action.tool} {action.describe()}")
        outcome = self.router.execute(action.tool, action.parameters)
        self._notify(f"[RESULT] {'ok' if outcome.success else outcome.error}")

        self.phase = LoopPhase.LOGGING
        self._record(task, action, outcome, approved=True, approved_by=approved_by)
        return None

    # -------------------------------------------------------------------
    # Approval
    # -------------------------------------------------------------------

    def _await_approval(
        self, task: Task, action: Action, reason: str
    ) -> Optional[tuple[bool, Optional[str]]]:
        """Block on the broker. Returns None if the run was cancelled."""
        self.phase = LoopPhase.AWAITING_APPROVAL
        self.task_router.transition(task, TaskStatus.WAITING_APPROVAL, reason=reason)

        approval_id = self.broker.request(task.id, action.tool, action.describe())
        with self._lock:
            self._pending_approval = approval_id
        try:
            if self.cancelled:
                self.broker.abandon(approval_id)
                return None

            request = self.broker.get(approval_id)
            if self.notifier is not None and request is not None:
                self.notifier.notify(request)
            self._notify(f"[APPROVAL] {approval_id} {action.tool} ({action.criticality.value}): {reason}")

            approved = self.broker.await_decision(approval_id, timeout=self.approval_timeout)
        finally:
            with self._lock:
                self._pending_approval = None

        if self.cancelled:
            return None

        record = self.broker.get(approval_id)
        resolver = record.resolved_by if record is not None else None
        self.task_router.transition(task, TaskStatus.IN_PROGRESS, reason=f"approval {approval_id} resolved")
        return approved, resolver

    # -------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------

    def _record(
        self,
        task: Task,
        action: Action,
        outcome: ActionOutcome,
        approved: bool,
        approved_by: Optional[str],
    ) -> None:
        self.sink.append_log(ActionLogEntry(
            task_id=task.id,
            tool=action.tool,
            parameters=action.parameters,
            result=outcome.to_record(),
            approved=approved,
            approved_by=approved_by,
        ))
        self.history.append(LLMMessage(role="user", content=_render_observation(action, outcome)))

    # -------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------

    def _recover(self, task: Task, error: Exception) -> bool:
        """One recovery pass. Returns True if the loop may keep going."""
        tool = self._last_action.tool if self._last_action else "unknown"
        params = self._last_action.parameters if self._last_action else {}
        try:
            advice = self.planner.analyze_error(str(error), tool=tool, parameters=params)
        except Exception as e:
            logger.error("Error analysis failed for task %s: %s", task.id, e)
            return False

        if advice.needs_human_intervention:
            logger.warning("Recovery for task %s needs human intervention: %s",
                           task.id, advice.root_cause or advice.solution)
            return False

        logger.info("Recovering task %s: %s", task.id, advice.solution)
        self._notify(f"[RECOVER] {advice.solution}")
        if task.status == TaskStatus.WAITING_APPROVAL:
            self.task_router.transition(task, TaskStatus.IN_PROGRESS, reason="recovered")
        self.history.append(LLMMessage(
            role="user",
            content=f"The previous step failed with an error: {error}\n"
                    f"Suggested fix: {advice.solution or 'none'}\n"
                    f"Alternative: {advice.alternative_approach or 'none'}",
        ))
        return True

    # -------------------------------------------------------------------
    # Task creation and termination
    # -------------------------------------------------------------------

    def _create_task(self, request: str, project_name: Optional[str]) -> Task:
        title = request.strip().splitlines()[0][:80] if request.strip() else "Untitled task"
        metadata: dict[str, Any] = {}
        project_type = "other"

        if self.analyze_task:
            try:
                analysis = self.planner.analyze_task(request)
            except LLMError as e:
                logger.warning("Task analysis failed, continuing without it: %s", e)
            else:
                title = analysis.objective[:200] or title
                project_type = analysis.project_type
                metadata["analysis"] = analysis.model_dump(mode="json", by_alias=True)

        project_id: Optional[uuid.UUID] = None
        if project_name:
            project = self.sink.get_project_by_name(project_name)
            if project is None:
                project = self.sink.create_project(self._new_project(project_name, project_type))
                logger.info("Created project %s at %s", project.name, project.path)
            project_id = project.id
            metadata["project_path"] = project.path

        task = self.sink.create_task(Task(
            title=title,
            description=request,
            project_id=project_id,
            metadata=metadata,
        ))

        parts = [f"Task: {request}"]
        if "project_path" in metadata:
            parts.append(f"Project directory: {metadata['project_path']}")
        if "analysis" in metadata:
            parts.append("Analysis:\n" + json.dumps(metadata["analysis"], indent=2))
        self.history.append(LLMMessage(role="user", content="\n\n".join(parts)))
        return task

    def _new_project(self, name: str, project_type: str) -> Project:
        """Create the project directory and put it under git when possible."""
        path = Path(self.workspace_dir) / name
        path.mkdir(parents=True, exist_ok=True)
        try:
            git_ops.init_repo(str(path))
            git = True
        except ToolError as e:
            logger.warning("Project %s left without a git repository: %s", name, e)
            git = False
        return Project(name=name, type=project_type, path=str(path), metadata={"git": git})

    def _finish_completed(self, task: Task, response: PlannerResponse) -> LoopResult:
        self.phase = LoopPhase.COMPLETED
        self.task_router.mark_completed(task, response.summary)
        logger.info("Task %s completed after %d iterations", task.id, self.iteration)
        self._notify(f"[DONE] {response.summary or ''}")
        return LoopResult(
            task_id=task.id,
            status=TaskStatus.COMPLETED,
            iterations=self.iteration,
            summary=response.summary,
            files_created=list(response.files_created),
            next_steps=list(response.next_steps),
        )

    def _finish_failed(self, task: Task, reason: str, kind: FailureKind) -> LoopResult:
        if self.phase != LoopPhase.EXHAUSTED:
            self.phase = LoopPhase.FAILED
        self.task_router.mark_failed(task, reason)
        self._notify(f"[FAILED] {reason}")
        return LoopResult(
            task_id=task.id,
            status=TaskStatus.FAILED,
            iterations=self.iteration,
            summary=reason,
            failure_kind=kind,
        )

    def _finish_cancelled(self, task: Task) -> LoopResult:
        self.phase = LoopPhase.CANCELLED
        if not task.status.is_terminal:
            self.task_router.transition(task, TaskStatus.CANCELLED, reason="cancelled")
        self._notify("[CANCELLED]")
        return LoopResult(
            task_id=task.id,
            status=TaskStatus.CANCELLED,
            iterations=self.iteration,
            summary="cancelled",
        )


def _render_proposal(response: PlannerResponse) -> str:
    assert response.action is not None
    return json.dumps({
        "thought": response.thought,
        "action": {"tool": response.action.tool, "parameters": response.action.parameters},
    }, default=str)


def _render_observation(action: Action, outcome: ActionOutcome) -> str:
    body = json.dumps(outcome.to_record(), default=str)
    if len(body) > MAX_OBSERVATION_CHARS:
        body = body[:MAX_OBSERVATION_CHARS] + "... [truncated]"
    return f"Observation for {action.tool}: {body}"


_CRITICALITY_RANK = {CriticalityLevel.LOW: 0, CriticalityLevel.MEDIUM: 1, CriticalityLevel.HIGH: 2}


def _raised(base: CriticalityLevel, declared: Optional[CriticalityLevel]) -> CriticalityLevel:
    """The planner may raise a tool's criticality but never lower it."""
    if declared is None or _CRITICALITY_RANK[declared] <= _CRITICALITY_RANK[base]:
        return base
    return declared
