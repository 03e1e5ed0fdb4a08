"""Component factory for AutoAgent.

Builds and wires every collaborator of the execution loop from one
configuration snapshot, so the CLI and tests get fully initialized
dependencies from a single call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from autoagent.approval.broker import ApprovalBroker
from autoagent.approval.notifier import ApprovalChannel, ApprovalNotifier, LoggingChannel
from autoagent.core.config import AppConfig, PromptLoader, load_config
from autoagent.db.engine import DatabaseEngine
from autoagent.db.memory import InMemoryAuditSink
from autoagent.db.repository import Repository
from autoagent.db.sink import AuditSink
from autoagent.llm.client import ChatClient
from autoagent.llm.planner import LLMPlanner
from autoagent.llm.prompts import PromptSet
from autoagent.orchestrator.loop import ExecutionLoop
from autoagent.security.policy import PolicyEngine, RequestRateLimiter
from autoagent.tools.router import ActionRouter

logger = logging.getLogger("autoagent.factory")


@dataclass
class ComponentBundle:
    """Container for all initialized components.

    The policy, sink and rate limiter are shared by every loop built from
    the bundle; each loop gets its own conversation and task state.
    """

    config: AppConfig
    base_dir: Path
    workspace_dir: Path
    sink: AuditSink
    policy: PolicyEngine
    rate_limiter: RequestRateLimiter
    broker: ApprovalBroker
    router: ActionRouter
    llm_client: ChatClient
    planner: LLMPlanner
    notifier: ApprovalNotifier
    db_engine: Optional[DatabaseEngine] = None


class ComponentFactory:
    """Factory for creating and wiring all AutoAgent infrastructure.

    Usage:
        bundle = ComponentFactory.create(config_dir=Path("config"))
        loop = ComponentFactory.build_loop(bundle)
        result = loop.run("Create a hello world script")
        ComponentFactory.close(bundle)
    """

    @staticmethod
    def create(
        config_dir: Optional[Path] = None,
        env: Optional[str] = None,
        config: Optional[AppConfig] = None,
        initialize_schema: bool = True,
        base_dir: Optional[Path] = None,
        channels: Optional[list[ApprovalChannel]] = None,
    ) -> ComponentBundle:
        """Create and wire all components.

        Args:
            config_dir: Path to config/ directory. Default: project root/config.
            env: Environment name for config overlay (e.g., "test").
            config: Pre-built config; skips loading when given.
            initialize_schema: Whether to run schema.sql for the postgresql backend.
            base_dir: Directory that relative paths resolve against. Default: cwd.
            channels: Approval channels. Default: a LoggingChannel.
        """
        logger.info("Initializing components...")

        # --- Config ---
        config = config or load_config(config_dir=config_dir, env=env)
        base_dir = (base_dir or Path.cwd()).resolve()

        workspace_dir = Path(config.agent.workspace_path).expanduser()
        if not workspace_dir.is_absolute():
            workspace_dir = base_dir / workspace_dir
        workspace_dir = workspace_dir.resolve()
        workspace_dir.mkdir(parents=True, exist_ok=True)

        # --- Persistence ---
        db_engine: Optional[DatabaseEngine] = None
        sink: AuditSink
        if config.database.backend == "postgresql":
            # held open for the bundle's lifetime; ComponentFactory.close releases it
            db_engine = DatabaseEngine(config.database, initialize_schema=initialize_schema).open()
            sink = Repository(db_engine)
            logger.info("Audit sink: PostgreSQL (%s)", config.database.host)
        else:
            sink = InMemoryAuditSink()
            logger.info("Audit sink: in-memory")

        # --- Policy ---
        policy = PolicyEngine(config.permissions, base_dir=base_dir)
        rate_limiter = RequestRateLimiter.from_config(config.permissions.rate_limits)

        # --- Approvals ---
        broker = ApprovalBroker(
            sink,
            default_timeout=config.agent.approval_timeout_seconds,
            poll_interval=config.agent.approval_poll_interval_seconds,
        )
        notifier = ApprovalNotifier(broker, channels if channels is not None else [LoggingChannel()])

        # --- Tools ---
        router = ActionRouter(
            workspace_dir=workspace_dir,
            base_dir=base_dir,
            shell_config=config.shell,
            rate_limiter=rate_limiter,
        )

        # --- LLM ---
        llm_client = ChatClient(config=config.llm)
        prompts_dir = config_dir / "prompts" if config_dir else None
        planner = LLMPlanner(
            llm_client,
            config=config.llm,
            prompts=PromptSet(PromptLoader(prompts_dir)),
            workspace=str(workspace_dir),
        )
        logger.info("LLM client configured (base_url=%s, model=%s)",
                    config.llm.base_url, config.llm.model)

        logger.info("All components initialized")
        return ComponentBundle(
            config=config,
            base_dir=base_dir,
            workspace_dir=workspace_dir,
            sink=sink,
            policy=policy,
            rate_limiter=rate_limiter,
            broker=broker,
            router=router,
            llm_client=llm_client,
            planner=planner,
            notifier=notifier,
            db_engine=db_engine,
        )

    @staticmethod
    def build_loop(
        bundle: ComponentBundle,
        max_iterations: Optional[int] = None,
        approval_timeout: Optional[float] = None,
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> ExecutionLoop:
        agent = bundle.config.agent
        return ExecutionLoop(
            planner=bundle.planner,
            policy=bundle.policy,
            broker=bundle.broker,
            router=bundle.router,
            sink=bundle.sink,
            notifier=bundle.notifier,
            max_iterations=max_iterations or agent.max_iterations,
            approval_timeout=approval_timeout or agent.approval_timeout_seconds,
            analyze_task=agent.analyze_task,
            workspace_dir=bundle.workspace_dir,
            progress_callback=progress_callback,
        )

    @staticmethod
    def close(bundle: ComponentBundle) -> None:
        """Cleanly shut down all components."""
        bundle.llm_client.close()
        if bundle.db_engine is not None:
            bundle.db_engine.close()
        logger.info("All components shut down")
