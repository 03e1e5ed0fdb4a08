"""Shared fixtures for AutoAgent tests.

All tests use REAL dependencies: real files, real subprocesses, real git,
httpx.MockTransport in place of the network. Tests requiring PostgreSQL
use a skip marker when it is unavailable.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load .env from project root so DATABASE_URL is available
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from autoagent.approval.broker import ApprovalBroker
from autoagent.core.config import AppConfig, DatabaseConfig, PolicyConfig, load_config
from autoagent.core.models import Task
from autoagent.db.memory import InMemoryAuditSink
from autoagent.security.policy import PolicyEngine


# ---------------------------------------------------------------------------
# Service availability checks
# ---------------------------------------------------------------------------

def _get_db_config() -> DatabaseConfig:
    """Build a DatabaseConfig from DATABASE_URL or defaults."""
    db_url = os.getenv("DATABASE_URL")
    if db_url and db_url.startswith("postgresql://"):
        from urllib.parse import urlparse
        parsed = urlparse(db_url)
        return DatabaseConfig(
            backend="postgresql",
            host=parsed.hostname or "localhost",
            port=parsed.port or 5432,
            dbname=(parsed.path[1:] if parsed.path and len(parsed.path) > 1 else "autoagent"),
            user=parsed.username or "autoagent",
            password=parsed.password or "autoagent",
        )
    return DatabaseConfig(backend="postgresql")


def _postgres_available() -> bool:
    if not os.getenv("DATABASE_URL"):
        return False
    try:
        import psycopg
        conn = psycopg.connect(_get_db_config().connection_string, connect_timeout=5)
        conn.close()
        return True
    except Exception:
        return False


requires_postgres = pytest.mark.skipif(
    not _postgres_available(),
    reason="PostgreSQL not available (set DATABASE_URL)",
)

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------

_CONFIG_ENV_VARS = (
    "WORKSPACE_PATH",
    "LLM_BASE_URL",
    "LLM_MODEL",
    "LLM_API_KEY",
    "ENABLE_COMMAND_EXECUTION",
    "ENABLE_API_CALLS",
    "REQUIRE_APPROVAL_FOR_DELETE",
    "REQUIRE_APPROVAL_FOR_EXEC",
    "REQUIRE_APPROVAL_FOR_API",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Strip config-affecting env vars so defaults are observable."""
    for var in _CONFIG_ENV_VARS + ("DATABASE_URL",):
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


@pytest.fixture
def git_identity(monkeypatch):
    monkeypatch.setenv("GIT_AUTHOR_NAME", "AutoAgent Tests")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "tests@autoagent.local")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "AutoAgent Tests")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "tests@autoagent.local")
    return monkeypatch


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config_dir() -> Path:
    return Path(__file__).parent.parent / "config"


@pytest.fixture
def app_config(config_dir: Path, clean_env) -> AppConfig:
    return load_config(config_dir=config_dir)


# ---------------------------------------------------------------------------
# Workspace and policy fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws


@pytest.fixture
def policy_config(workspace: Path) -> PolicyConfig:
    return PolicyConfig(allowed_paths=(str(workspace),))


@pytest.fixture
def policy(policy_config: PolicyConfig, tmp_path: Path) -> PolicyEngine:
    return PolicyEngine(policy_config, base_dir=tmp_path)


# ---------------------------------------------------------------------------
# Persistence and approval fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def broker(sink: InMemoryAuditSink) -> ApprovalBroker:
    return ApprovalBroker(sink, default_timeout=2.0, poll_interval=0.05)


@pytest.fixture
def sample_task(sink: InMemoryAuditSink) -> Task:
    return sink.create_task(Task(title="Build a todo app", description="Create a React todo app"))


@pytest.fixture
def db_config() -> DatabaseConfig:
    return _get_db_config()


@pytest.fixture
def db_engine(db_config):
    """Real PostgreSQL engine: creates schema, yields, wipes data, closes."""
    from autoagent.db.engine import DatabaseEngine
    from autoagent.db.repository import Repository
    with DatabaseEngine(db_config, initialize_schema=True) as engine:
        yield engine
        Repository(engine).clear_all_data()


@pytest.fixture
def repository(db_engine):
    from autoagent.db.repository import Repository
    return Repository(db_engine)
