"""Tests for aikotoba.db.connection with a mocked psycopg2 pool."""

from unittest.mock import MagicMock, patch

import psycopg2
import psycopg2.pool
import pytest

from aikotoba.config import reset_config
from aikotoba.db import connection


@pytest.fixture
def pool(clean_env):
    reset_config()
    connection._pool = None
    fake = MagicMock()
    fake.closed = False
    conn = MagicMock()
    conn.closed = 0
    fake.getconn.return_value = conn
    with patch("aikotoba.db.connection.psycopg2.pool.ThreadedConnectionPool", return_value=fake) as ctor:
        yield ctor, fake, conn
    connection._pool = None
    reset_config()


class TestGetPool:
    def test_created_once_from_config(self, pool, monkeypatch):
        ctor, fake, _ = pool
        assert connection.get_pool() is fake
        assert connection.get_pool() is fake
        ctor.assert_called_once()
        minconn, maxconn = ctor.call_args.args
        assert (minconn, maxconn) == (1, 10)
        assert ctor.call_args.kwargs["application_name"] == "aikotoba"

    def test_unreachable_database(self, clean_env):
        reset_config()
        connection._pool = None
        with patch(
            "aikotoba.db.connection.psycopg2.pool.ThreadedConnectionPool",
            side_effect=psycopg2.OperationalError("refused"),
        ), pytest.raises(ConnectionError, match="PostgreSQL unreachable"):
            connection.get_pool()


class TestGetConnection:
    def test_commits_and_returns(self, pool):
        _, fake, conn = pool
        with connection.get_connection() as c:
            assert c is conn
        conn.commit.assert_called_once()
        fake.putconn.assert_called_once_with(conn, close=False)

    def test_rolls_back_on_error(self, pool):
        _, fake, conn = pool
        with pytest.raises(RuntimeError), connection.get_connection():
            raise RuntimeError("boom")
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        fake.putconn.assert_called_once_with(conn, close=False)

    def test_broken_connection_discarded(self, pool):
        _, fake, conn = pool
        conn.rollback.side_effect = psycopg2.InterfaceError("connection already closed")
        with pytest.raises(RuntimeError), connection.get_connection():
            raise RuntimeError("boom")
        fake.putconn.assert_called_once_with(conn, close=True)

    def test_exhausted_pool(self, pool):
        _, fake, _ = pool
        fake.getconn.side_effect = psycopg2.pool.PoolError("connection pool exhausted")
        with pytest.raises(ConnectionError, match="exhausted"), connection.get_connection():
            pass


class TestClosePool:
    def test_close(self, pool):
        _, fake, _ = pool
        connection.get_pool()
        connection.close_pool()
        fake.closeall.assert_called_once()
        assert connection._pool is None
