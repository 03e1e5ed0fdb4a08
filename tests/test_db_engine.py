"""Tests for autoagent/db/engine.py connection lifecycle."""

from __future__ import annotations

import pytest

from autoagent.core.config import DatabaseConfig
from autoagent.core.exceptions import ConnectionError, DatabaseError
from autoagent.db.engine import DatabaseEngine
from tests.conftest import requires_postgres


class TestLifecycleWithoutServer:
    def test_close_before_open_is_noop(self):
        engine = DatabaseEngine(DatabaseConfig(backend="postgresql"))
        assert engine.closed
        engine.close()
        engine.close()
        assert engine.closed

    def test_unreachable_server_raises_connection_error(self):
        engine = DatabaseEngine(DatabaseConfig(backend="postgresql", host="127.0.0.1", port=1))
        with pytest.raises(ConnectionError, match="127.0.0.1:1"):
            with engine:
                pass
        assert engine.closed


@requires_postgres
class TestLifecycleWithServer:
    def test_context_manager_closes(self, db_config):
        with DatabaseEngine(db_config, initialize_schema=True) as engine:
            assert not engine.closed
            assert engine.ping()
        assert engine.closed
        engine.close()

    def test_reopens_after_close(self, db_engine):
        db_engine.close()
        assert db_engine.fetch_one("SELECT 2 AS n") == {"n": 2}

    def test_bad_statement_is_database_error(self, db_engine):
        with pytest.raises(DatabaseError, match="SELECT nope"):
            db_engine.fetch_all("SELECT nope FROM missing_table")
        assert db_engine.ping()

    def test_transaction_rolls_back(self, db_engine):
        db_engine.execute("CREATE TEMP TABLE scratch (n int)")
        with pytest.raises(DatabaseError):
            with db_engine.transaction() as cur:
                cur.execute("INSERT INTO scratch VALUES (1)")
                cur.execute("INSERT INTO scratch VALUES ('not a number')")
        assert db_engine.fetch_one("SELECT count(*) AS n FROM scratch") == {"n": 0}
