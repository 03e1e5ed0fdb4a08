"""CLI entrypoint for AutoAgent."""

from __future__ import annotations

import json
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional
from uuid import UUID

import click

from autoagent.approval.broker import ApprovalBroker, ResolveOutcome
from autoagent.approval.notifier import ConsoleChannel
from autoagent.core.models import ApprovalRequest, ApprovalStatus, ProposedAction, TaskStatus

CLI_RESOLVER = "cli-user"
REDACTED = "***"

logger = logging.getLogger("autoagent.cli")

# Track the active loop for graceful shutdown
_active_loop: Any = None


def _sigint_handler(signum: int, frame: Any) -> None:
    """Handle Ctrl+C with a short summary instead of a bare traceback."""
    click.echo("\n")
    click.echo(click.style("Interrupted.", fg="yellow", bold=True))
    loop = _active_loop
    if loop is not None:
        task = loop.current_task
        loop.cancel()
        if task is not None:
            click.echo(f"  Task ID:    {task.id}")
            click.echo(f"  Iteration:  {loop.iteration}/{loop.max_iterations}")
            if not task.status.is_terminal:
                loop.task_router.transition(task, TaskStatus.CANCELLED, reason="interrupted")
            click.echo(f"  Status:     {task.status.value}")
    sys.exit(130)


def _setup_logging(verbose: bool = False) -> None:
    """Apply logging configuration from config/default.yaml."""
    from autoagent.core.config import load_config
    from autoagent.core.exceptions import ConfigError

    try:
        config = load_config()
        level_name = config.logging.level
        fmt = config.logging.format
    except ConfigError:
        level_name = "INFO"
        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr)


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose (DEBUG) logging.")
@click.option("--env", required=False, default=None, help="Optional config overlay environment.")
@click.option(
    "--config-dir",
    required=False,
    default=None,
    type=click.Path(path_type=Path, file_okay=False),
    help="Directory holding default.yaml and overlays.",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, env: Optional[str], config_dir: Optional[Path]) -> None:
    """AutoAgent: a policy-gated autonomous task executor."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["env"] = env
    ctx.obj["config_dir"] = config_dir
    _setup_logging(verbose=verbose)


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

class PromptingConsoleChannel(ConsoleChannel):
    """Console channel that also asks the operator for a decision.

    One daemon worker owns the terminal prompt, so the broker's deadline
    still applies while the operator is typing. An answer always goes to
    the newest request that is still pending; the prompt text names no
    action because the request may change while the question is open.
    """

    name = "console-prompt"

    def __init__(self, broker: ApprovalBroker):
        super().__init__(err=True)
        self.broker = broker
        self._lock = threading.Lock()
        self._current: Optional[ApprovalRequest] = None
        self._wakeup = threading.Event()
        self._worker: Optional[threading.Thread] = None

    def push_approval_prompt(self, request: ApprovalRequest) -> None:
        super().push_approval_prompt(request)
        with self._lock:
            self._current = request
            if self._worker is None:
                self._worker = threading.Thread(
                    target=self._prompt_loop, name="approval-prompt", daemon=True
                )
                self._worker.start()
        self._wakeup.set()

    def answer(self, approved: bool) -> Optional[ResolveOutcome]:
        """Apply an operator answer to the live request, if there is one."""
        target = self._live_request()
        if target is None:
            click.echo("  (no pending approval; answer ignored)", err=True)
            return None
        return self.broker.resolve(target.id, approved, CLI_RESOLVER)

    def _live_request(self) -> Optional[ApprovalRequest]:
        with self._lock:
            current = self._current
        if current is None:
            return None
        record = self.broker.get(current.id)
        if record is None or not record.is_pending:
            return None
        return current

    def _prompt_loop(self) -> None:
        while True:
            self._wakeup.wait()
            self._wakeup.clear()
            if self._live_request() is None:
                continue
            approved = click.confirm("Approve the pending action above?", default=False, err=True)
            self.answer(approved)


@cli.command("run")
@click.argument("request")
@click.option("--project", "project_name", required=False, default=None, help="Project name.")
@click.option("--max-iterations", required=False, default=None, type=click.IntRange(min=1))
@click.option("--approval-timeout", required=False, default=None, type=click.FloatRange(min=0, min_open=True),
              help="Seconds to wait for each approval.")
@click.option("--interactive/--no-interactive", default=True, show_default=True,
              help="Prompt for approvals in this terminal.")
@click.pass_context
def run_cmd(
    ctx: click.Context,
    request: str,
    project_name: Optional[str],
    max_iterations: Optional[int],
    approval_timeout: Optional[float],
    interactive: bool,
) -> None:
    """Run REQUEST through the execution loop."""
    global _active_loop

    factory = _load_component_factory()
    bundle = factory.create(config_dir=ctx.obj.get("config_dir"), env=ctx.obj.get("env"), channels=[])
    channel = PromptingConsoleChannel(bundle.broker) if interactive else ConsoleChannel()
    bundle.notifier.register(channel)

    def _progress(message: str) -> None:
        click.echo(message)

    loop = factory.build_loop(
        bundle,
        max_iterations=max_iterations,
        approval_timeout=approval_timeout,
        progress_callback=_progress,
    )
    _active_loop = loop
    signal.signal(signal.SIGINT, _sigint_handler)
    try:
        result = loop.run(request, project_name=project_name)
    finally:
        _active_loop = None
        factory.close(bundle)

    _echo_json({
        "task_id": str(result.task_id),
        "status": result.status.value,
        "iterations": result.iterations,
        "summary": result.summary,
        "failure_kind": result.failure_kind.value if result.failure_kind else None,
        "files_created": result.files_created,
        "next_steps": result.next_steps,
    })
    if result.status != TaskStatus.COMPLETED:
        sys.exit(1)


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------

def _decide(ctx: click.Context, approval_id: str, decision: ApprovalStatus) -> None:
    approval_uuid = _parse_uuid(approval_id, "approval_id")
    with _sink_session(ctx) as session:
        broker = ApprovalBroker(session.sink)
        outcome = broker.resolve(approval_uuid, decision, CLI_RESOLVER)
        if outcome == ResolveOutcome.NOT_FOUND:
            raise click.ClickException(f"Approval not found: {approval_id}")
        if outcome == ResolveOutcome.ALREADY_RESOLVED:
            existing = broker.get(approval_uuid)
            status = existing.status.value if existing else "unknown"
            click.echo(f"Approval {approval_id} already resolved ({status})")
            return
        click.echo(click.style(f"Approval {approval_id} {decision.value}", fg="green"))


@cli.command("approve")
@click.argument("approval_id")
@click.pass_context
def approve(ctx: click.Context, approval_id: str) -> None:
    """Approve a pending action."""
    _decide(ctx, approval_id, ApprovalStatus.APPROVED)


@cli.command("reject")
@click.argument("approval_id")
@click.pass_context
def reject(ctx: click.Context, approval_id: str) -> None:
    """Reject a pending action."""
    _decide(ctx, approval_id, ApprovalStatus.REJECTED)


@cli.command("list-approvals")
@click.pass_context
def list_approvals(ctx: click.Context) -> None:
    """List pending approvals."""
    with _sink_session(ctx) as session:
        pending = session.sink.get_pending_approvals()
    _echo_json({
        "approvals": [
            {
                "id": str(a.id),
                "task_id": str(a.task_id),
                "action": a.action,
                "description": a.description,
                "requested_at": _iso(a.requested_at),
            }
            for a in pending
        ],
        "count": len(pending),
    })


# ---------------------------------------------------------------------------
# Tasks, projects and logs
# ---------------------------------------------------------------------------

@cli.command("tasks")
@click.option("--status", required=False, default=None,
              type=click.Choice([s.value for s in TaskStatus]), help="Filter by status.")
@click.pass_context
def tasks_cmd(ctx: click.Context, status: Optional[str]) -> None:
    """List tasks, newest first."""
    with _sink_session(ctx) as session:
        tasks = session.sink.list_tasks(TaskStatus(status) if status else None)
    _echo_json({
        "tasks": [
            {
                "id": str(t.id),
                "title": t.title,
                "status": t.status.value,
                "priority": t.priority.value,
                "project_id": str(t.project_id) if t.project_id else None,
                "created_at": _iso(t.created_at),
                "completed_at": _iso(t.completed_at),
            }
            for t in tasks
        ],
        "count": len(tasks),
    })


@cli.command("list-projects")
@click.pass_context
def list_projects(ctx: click.Context) -> None:
    """List projects, newest first."""
    with _sink_session(ctx) as session:
        projects = session.sink.list_projects()
    _echo_json({
        "projects": [
            {
                "id": str(p.id),
                "name": p.name,
                "type": p.type,
                "path": p.path,
                "status": p.status.value,
                "created_at": _iso(p.created_at),
            }
            for p in projects
        ],
        "count": len(projects),
    })


@cli.command("logs")
@click.option("--task-id", required=False, default=None, help="Only entries for this task.")
@click.option("--limit", required=False, default=50, show_default=True, type=click.IntRange(min=1))
@click.pass_context
def logs_cmd(ctx: click.Context, task_id: Optional[str], limit: int) -> None:
    """Show action log entries, newest first."""
    task_uuid = _parse_uuid(task_id, "task_id") if task_id else None
    with _sink_session(ctx) as session:
        entries = session.sink.get_action_logs(task_uuid, limit)
    _echo_json({
        "logs": [
            {
                "id": str(e.id),
                "task_id": str(e.task_id) if e.task_id else None,
                "tool": e.tool,
                "parameters": e.parameters,
                "result": e.result,
                "approved": e.approved,
                "approved_by": e.approved_by,
                "timestamp": _iso(e.timestamp),
            }
            for e in entries
        ],
        "count": len(entries),
    })


# ---------------------------------------------------------------------------
# Status, config and model checks
# ---------------------------------------------------------------------------

@cli.command("status")
@click.option("--check-model/--no-check-model", default=True, show_default=True,
              help="Ask the LLM provider whether the configured model is served.")
@click.pass_context
def status_cmd(ctx: click.Context, check_model: bool) -> None:
    """Summarize tasks, projects, pending approvals and model availability."""
    with _sink_session(ctx) as session:
        tasks = session.sink.list_tasks()
        projects = session.sink.list_projects()
        pending = session.sink.get_pending_approvals()
        database: dict[str, Any] = {"backend": session.config.database.backend}
        if session.db_engine is not None:
            database["reachable"] = session.db_engine.ping()
        config = session.config

    counts = {s.value: 0 for s in TaskStatus}
    for task in tasks:
        counts[task.status.value] += 1

    _echo_json({
        "tasks": {"total": len(tasks), "by_status": counts},
        "projects": len(projects),
        "pending_approvals": len(pending),
        "database": database,
        "model": _model_report(config.llm) if check_model else {"model": config.llm.model},
    })


@cli.command("check-model")
@click.pass_context
def check_model_cmd(ctx: click.Context) -> None:
    """Check that the LLM provider is reachable and serves the configured model."""
    from autoagent.core.config import load_config

    config = load_config(config_dir=ctx.obj.get("config_dir"), env=ctx.obj.get("env"))
    report = _model_report(config.llm)
    _echo_json(report)
    if not report["available"]:
        sys.exit(1)


@cli.command("config")
@click.pass_context
def config_cmd(ctx: click.Context) -> None:
    """Print the effective configuration with secrets redacted."""
    from autoagent.core.config import load_config

    config = load_config(config_dir=ctx.obj.get("config_dir"), env=ctx.obj.get("env"))
    data = config.model_dump(mode="json")
    data["database"]["password"] = REDACTED
    if data["llm"].get("api_key"):
        data["llm"]["api_key"] = REDACTED
    _echo_json(data)


def _model_report(llm_config: Any) -> dict[str, Any]:
    from autoagent.core.exceptions import LLMError
    from autoagent.llm.client import ChatClient

    report: dict[str, Any] = {
        "base_url": llm_config.base_url,
        "model": llm_config.model,
        "reachable": False,
        "available": False,
        "models": [],
    }
    client = ChatClient(config=llm_config)
    try:
        models = client.list_models()
    except LLMError as e:
        logger.warning("Model check failed: %s", e)
        report["error"] = str(e)
        return report
    finally:
        client.close()
    report.update(reachable=True, available=llm_config.model in models, models=models)
    return report


# ---------------------------------------------------------------------------
# Policy dry run
# ---------------------------------------------------------------------------

@cli.command("check-policy")
@click.argument("tool")
@click.option("-p", "--param", "params", multiple=True, help="Parameter as key=value (value may be JSON).")
@click.pass_context
def check_policy(ctx: click.Context, tool: str, params: tuple[str, ...]) -> None:
    """Dry-run the policy engine for TOOL with the given parameters."""
    from autoagent.core.config import load_config
    from autoagent.security.policy import PolicyEngine, criticality_for

    config = load_config(config_dir=ctx.obj.get("config_dir"), env=ctx.obj.get("env"))
    engine = PolicyEngine(config.permissions)
    decision = engine.decide(ProposedAction(tool=tool, parameters=_parse_params(params)))
    _echo_json({
        "tool": tool,
        "verdict": decision.verdict.value,
        "allowed": decision.allowed,
        "requires_approval": decision.requires_approval,
        "reason": decision.reason,
        "criticality": criticality_for(tool).value,
    })


# ---------------------------------------------------------------------------
# Bulk erase
# ---------------------------------------------------------------------------

@cli.command("clear-data")
@click.option("--yes", is_flag=True, default=False, help="Confirm the irreversible erase.")
@click.pass_context
def clear_data(ctx: click.Context, yes: bool) -> None:
    """Erase all projects, tasks, approvals and action logs."""
    if not yes:
        raise click.ClickException("Refusing to erase data without --yes")
    with _sink_session(ctx) as session:
        session.sink.clear_all_data()
    click.echo(click.style("All data erased.", fg="red", bold=True))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@dataclass
class _SinkSession:
    config: Any
    sink: Any
    db_engine: Any = None


@contextmanager
def _sink_session(ctx: click.Context) -> Iterator[_SinkSession]:
    """Audit sink for one command; a PostgreSQL connection closes on exit."""
    from autoagent.core.config import load_config
    from autoagent.db.memory import InMemoryAuditSink

    config = load_config(config_dir=ctx.obj.get("config_dir"), env=ctx.obj.get("env"))
    if config.database.backend != "postgresql":
        click.echo(
            click.style("Warning: in-memory backend; nothing persists between commands. "
                        "Set DATABASE_URL to use PostgreSQL.", fg="yellow"),
            err=True,
        )
        yield _SinkSession(config=config, sink=InMemoryAuditSink())
        return

    from autoagent.db.engine import DatabaseEngine
    from autoagent.db.repository import Repository

    with DatabaseEngine(config.database, initialize_schema=True) as db_engine:
        yield _SinkSession(config=config, sink=Repository(db_engine), db_engine=db_engine)


def _load_component_factory():
    from autoagent.core.factory import ComponentFactory

    return ComponentFactory


def _parse_params(raw: tuple[str, ...]) -> dict[str, Any]:
    params: dict[str, Any] = {}
    for item in raw:
        if "=" not in item:
            raise click.BadParameter(f"Expected key=value, got {item!r}", param_hint="--param")
        key, value = item.split("=", 1)
        try:
            params[key] = json.loads(value)
        except json.JSONDecodeError:
            params[key] = value
    return params


def _parse_uuid(raw: Optional[str], field_name: str) -> UUID:
    if raw is None:
        raise click.ClickException(f"Missing required UUID value for {field_name}")
    try:
        return UUID(str(raw))
    except ValueError as exc:
        raise click.ClickException(f"Invalid UUID for {field_name}: {raw}") from exc


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _echo_json(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=True, default=str))


def main() -> None:
    """Entry point used by the `autoagent` console script."""
    from dotenv import load_dotenv
    load_dotenv(Path.cwd() / ".env")
    cli()


if __name__ == "__main__":
    main()
