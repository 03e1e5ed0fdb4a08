"""Connection handling for the PostgreSQL audit store.

A DatabaseEngine owns exactly one psycopg connection. It is opened as a
context manager by short-lived callers (CLI commands) and held open by
the ComponentFactory for the life of a run:

    with DatabaseEngine(config.database, initialize_schema=True) as engine:
        sink = Repository(engine)
        ...

Every psycopg error leaves this module as a DatabaseError subclass.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

from autoagent.core.config import DatabaseConfig
from autoagent.core.exceptions import ConnectionError, DatabaseError, SchemaInitError

logger = logging.getLogger("autoagent.db.engine")

SCHEMA_PATH = Path(__file__).parent / "schema.sql"
CONNECT_TIMEOUT_SECONDS = 5

Params = Optional[Sequence[Any]]


def _statement_label(query: str) -> str:
    return " ".join(query.split())[:60]


class DatabaseEngine:
    def __init__(self, config: DatabaseConfig, initialize_schema: bool = False):
        self.config = config
        self._initialize_on_open = initialize_schema
        self._conn: Optional[psycopg.Connection] = None

    def __enter__(self) -> "DatabaseEngine":
        return self.open()

    def open(self) -> "DatabaseEngine":
        """Connect and, if requested at construction, ensure the schema."""
        self.connect()
        if self._initialize_on_open:
            self.initialize_schema()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._conn is None or self._conn.closed

    def connect(self) -> psycopg.Connection:
        """Open the connection if needed; autocommit with dict rows."""
        if not self.closed:
            assert self._conn is not None
            return self._conn
        try:
            self._conn = psycopg.connect(
                self.config.connection_string,
                row_factory=dict_row,
                autocommit=True,
                connect_timeout=CONNECT_TIMEOUT_SECONDS,
            )
        except psycopg.OperationalError as e:
            raise ConnectionError(
                f"Cannot reach PostgreSQL at {self.config.host}:{self.config.port}: {e}"
            ) from e
        logger.info("Audit store connected (%s:%s/%s)",
                    self.config.host, self.config.port, self.config.dbname)
        return self._conn

    def initialize_schema(self) -> None:
        """Apply schema.sql. The script is idempotent."""
        try:
            script = SCHEMA_PATH.read_text()
        except OSError as e:
            raise SchemaInitError(f"Cannot read {SCHEMA_PATH.name}: {e}") from e
        try:
            self.connect().execute(script)
        except psycopg.Error as e:
            raise SchemaInitError(f"Applying {SCHEMA_PATH.name} failed: {e}") from e
        logger.debug("Audit schema ensured")

    @contextmanager
    def cursor(self, query: str = "") -> Iterator[psycopg.Cursor]:
        """Cursor whose psycopg errors surface as DatabaseError."""
        conn = self.connect()
        try:
            with conn.cursor() as cur:
                yield cur
        except psycopg.Error as e:
            label = _statement_label(query) if query else "statement"
            raise DatabaseError(f"{label} failed: {e}") from e

    def execute(self, query: str, params: Params = None) -> int:
        """Run a statement; returns the affected row count."""
        with self.cursor(query) as cur:
            cur.execute(query, params)
            return cur.rowcount

    def fetch_one(self, query: str, params: Params = None) -> Optional[dict[str, Any]]:
        with self.cursor(query) as cur:
            cur.execute(query, params)
            return cur.fetchone()

    def fetch_all(self, query: str, params: Params = None) -> list[dict[str, Any]]:
        with self.cursor(query) as cur:
            cur.execute(query, params)
            return cur.fetchall()

    @contextmanager
    def transaction(self) -> Iterator[psycopg.Cursor]:
        """All statements on the yielded cursor commit together or not at all."""
        conn = self.connect()
        try:
            with conn.transaction(), conn.cursor() as cur:
                yield cur
        except psycopg.Error as e:
            raise DatabaseError(f"Transaction rolled back: {e}") from e

    def ping(self) -> bool:
        """True when the server answers a trivial query."""
        try:
            return self.fetch_one("SELECT 1 AS ok") == {"ok": 1}
        except DatabaseError:
            return False

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
            logger.info("Audit store connection closed")
        self._conn = None
