"""Database access: a connection pool and transactions on top of it."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any, Optional, Union

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql.elements import TextClause

Statement = Union[str, TextClause]
Params = Optional[Mapping[str, Any]]


class NoRowsError(LookupError):
    """A query expected to return a row returned none."""

    def __init__(self, message: str = "no rows in result set") -> None:
        super().__init__(message)


def _statement(sql: Statement) -> TextClause:
    return text(sql) if isinstance(sql, str) else sql


class Database:
    """Runs SQL with named ``:param`` placeholders.

    Bound to an engine, every statement runs in its own short transaction.
    Bound to a connection (inside :meth:`transaction`), statements share that
    connection's transaction.
    """

    def __init__(self, bind: Union[Engine, Connection]) -> None:
        self._bind = bind

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        if isinstance(self._bind, Connection):
            yield self._bind
        else:
            with self._bind.begin() as conn:
                yield conn

    def execute(self, sql: Statement, params: Params = None) -> int:
        """Run a statement and return the number of rows it affected."""
        with self._connection() as conn:
            result = conn.execute(_statement(sql), dict(params or {}))
            return result.rowcount

    def fetch_all(self, sql: Statement, params: Params = None) -> list[tuple]:
        """Run a query and return all its rows as tuples."""
        with self._connection() as conn:
            result = conn.execute(_statement(sql), dict(params or {}))
            return [tuple(row) for row in result]

    def fetch_one(self, sql: Statement, params: Params = None) -> tuple:
        """Run a query and return its first row; raise NoRowsError if empty."""
        with self._connection() as conn:
            result = conn.execute(_statement(sql), dict(params or {}))
            row = result.first()
        if row is None:
            raise NoRowsError()
        return tuple(row)

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Open a transaction, committed on success and rolled back on error."""
        if isinstance(self._bind, Connection):
            raise RuntimeError("already inside a transaction")
        with self._bind.connect() as conn:
            with conn.begin():
                yield Database(conn)

    def close(self) -> None:
        """Release the pool's connections; a transaction's handle is left alone."""
        if isinstance(self._bind, Engine):
            self._bind.dispose()


def connect(url: str, max_connections: int = 10) -> Database:
    """Open a pool of at most ``max_connections`` and check that it works."""
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:"):
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            url,
            pool_size=max_connections,
            max_overflow=0,
            pool_pre_ping=True,
        )
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        engine.dispose()
        raise
    return Database(engine)