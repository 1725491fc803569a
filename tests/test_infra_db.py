"""Tests for database layer."""

import os
from unittest.mock import MagicMock, patch

import pytest


class TestGetConn:
    """Tests for get_conn() - no real DB needed."""

    def test_missing_database_url(self):
        from vilo.infra.db import get_conn

        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                get_conn()

    def test_connects_with_dsn(self):
        from vilo.infra.db import get_conn

        env = {"DATABASE_URL": "postgresql://u:p@h/db"}
        with patch.dict(os.environ, env, clear=True), \
             patch("vilo.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with("postgresql://u:p@h/db")


class TestTxn:
    """Tests for txn() commit/rollback handling."""

    def test_commits_and_closes_owned_connection(self):
        from vilo.infra.db import txn

        conn = MagicMock()
        with patch("vilo.infra.db.get_conn", return_value=conn):
            with txn() as cur:
                cur.execute("SELECT 1")

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        conn.close.assert_called_once()

    def test_rolls_back_on_error(self):
        from vilo.infra.db import txn

        conn = MagicMock()
        with patch("vilo.infra.db.get_conn", return_value=conn):
            with pytest.raises(ValueError):
                with txn():
                    raise ValueError("boom")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        conn.close.assert_called_once()

    def test_passed_connection_left_open(self):
        from vilo.infra.db import txn

        conn = MagicMock()
        with txn(conn):
            pass

        conn.commit.assert_called_once()
        conn.close.assert_not_called()

    def test_fetchone_helper(self):
        from vilo.infra.db import fetchone

        cur = MagicMock()
        cur.fetchone.return_value = (3,)
        assert fetchone(cur, "SELECT %s", (3,)) == (3,)
        cur.execute.assert_called_once_with("SELECT %s", (3,))


# Skip integration tests if DATABASE_URL is not set
_skip_no_db = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB integration tests",
)


@_skip_no_db
class TestTxnIntegration:
    def test_select_one(self):
        from vilo.infra.db import txn

        with txn() as cur:
            cur.execute("SELECT 1")
            assert cur.fetchone() == (1,)
