"""Blocking database handles backed by asyncpg."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Protocol, Sequence, TypeVar, runtime_checkable
from urllib.parse import urlsplit

import asyncpg

from .detail import ConnectionDetail, parse_details
from .errors import (
    ClosedHandleError,
    ConnectionRefused,
    ExecutionError,
    InvalidURIError,
    ParseError,
    PingFailed,
)

LOG = logging.getLogger(__name__)

T = TypeVar("T")

DRIVER_SCHEMES = ("postgresql", "postgres")


@runtime_checkable
class DataProvider(Protocol):
    """Anything that can run statements: a handle or an open transaction."""

    def query(self, sql: str, *args: object) -> list[asyncpg.Record]:
        """Run ``sql`` and return every row."""

    def query_row(self, sql: str, *args: object) -> asyncpg.Record | None:
        """Run ``sql`` and return its first row, if any."""

    def exec(self, sql: str, *args: object) -> str:
        """Run ``sql`` and return the command status."""


class _LoopThread:
    """Private event loop running on a daemon thread."""

    def __init__(self) -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever,
            name="pgkit-asyncpg-loop",
            daemon=True,
        )
        self._thread.start()

    def run(self, coro: Awaitable[T]) -> T:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def shutdown(self) -> None:
        if not self._loop.is_running():
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=1)
        if not self._loop.is_running():
            self._loop.close()


class _Statements:
    """Query/exec plumbing shared by handles and transactions."""

    def _execute(self, call: Callable[..., Awaitable[T]], sql: str, args: Sequence[object]) -> T:
        self._ensure_usable()
        try:
            return self._loop.run(call(sql, *args))
        except Exception as exc:
            raise ExecutionError(str(exc)) from exc

    def query(self, sql: str, *args: object) -> list[asyncpg.Record]:
        return self._execute(self._conn.fetch, sql, args)

    def query_row(self, sql: str, *args: object) -> asyncpg.Record | None:
        return self._execute(self._conn.fetchrow, sql, args)

    def exec(self, sql: str, *args: object) -> str:
        return self._execute(self._conn.execute, sql, args)

    def _ensure_usable(self) -> None:  # pragma: no cover - overridden
        raise NotImplementedError

    _conn: Any
    _loop: _LoopThread


class DB(_Statements):
    """A live connection paired with the details used to open it."""

    def __init__(self, conn: Any, connection: ConnectionDetail, loop: _LoopThread) -> None:
        self._conn = conn
        self._loop = loop
        self._closed = False
        self.connection = connection

    @property
    def closed(self) -> bool:
        return self._closed

    def ping(self) -> None:
        """Round-trip a trivial query to confirm the session is alive."""

        self._ensure_usable()
        self._loop.run(self._conn.fetchval("SELECT 1"))

    def begin(self) -> Transaction:
        """Start a transaction on this handle's connection."""

        self._ensure_usable()
        tx = self._conn.transaction()
        try:
            self._loop.run(tx.start())
        except Exception as exc:
            raise ExecutionError(f"Failed to begin transaction: {exc}") from exc
        return Transaction(self, tx)

    def close(self) -> None:
        """Release the connection. Calling it again is a no-op."""

        if self._closed:
            return
        self._closed = True
        try:
            self._loop.run(self._conn.close())
        except Exception as exc:
            raise ExecutionError(f"Failed to close connection: {exc}") from exc
        finally:
            self._loop.shutdown()
        LOG.debug("Closed connection to %s", self.connection.redacted())

    def __enter__(self) -> DB:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_usable(self) -> None:
        if self._closed:
            raise ClosedHandleError("Database handle is closed.")


class Transaction(_Statements):
    """An in-flight transaction on a :class:`DB` connection."""

    def __init__(self, db: DB, tx: Any) -> None:
        self._db = db
        self._tx = tx
        self._conn = db._conn
        self._loop = db._loop
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def rollback(self) -> None:
        """Discard the transaction's changes. A finished transaction is left alone."""

        if self._done or self._db.closed:
            self._done = True
            return
        self._done = True
        try:
            self._loop.run(self._tx.rollback())
        except Exception as exc:
            raise ExecutionError(f"Failed to roll back transaction: {exc}") from exc

    def commit(self) -> None:
        self._ensure_usable()
        self._done = True
        try:
            self._loop.run(self._tx.commit())
        except Exception as exc:
            raise ExecutionError(f"Failed to commit transaction: {exc}") from exc

    def _ensure_usable(self) -> None:
        if self._done:
            raise ClosedHandleError("Transaction has already finished.")
        if self._db.closed:
            raise ClosedHandleError("Database handle is closed.")


def open_database(uri: str, *, connect_timeout: float = 5.0) -> DB:
    """Open a connection to the database described by ``uri`` and ping it.

    Every failure surfaces as a :class:`~pgkit.errors.DatabaseConnectionError`;
    the subclass says whether the URI, the connection or the ping failed.
    """

    try:
        detail = parse_details(uri)
    except ParseError as exc:
        raise InvalidURIError(f"Invalid connection URI: {exc}") from exc
    scheme = urlsplit(uri).scheme
    if scheme not in DRIVER_SCHEMES:
        raise InvalidURIError(f"Unsupported URI scheme {scheme!r}, expected one of {DRIVER_SCHEMES}")

    loop = _LoopThread()
    try:
        conn = loop.run(asyncpg.connect(dsn=uri, timeout=connect_timeout))
    except ValueError as exc:
        # asyncpg's ClientConfigurationError subclasses ValueError.
        loop.shutdown()
        raise InvalidURIError(f"Driver rejected {detail.redacted()}: {exc}") from exc
    except Exception as exc:
        loop.shutdown()
        raise ConnectionRefused(f"Failed to connect to {detail.redacted()}: {exc}") from exc

    db = DB(conn, detail, loop)
    try:
        db.ping()
    except Exception as exc:
        try:
            db.close()
        except Exception:  # pragma: no cover - best effort cleanup
            LOG.debug("Ignoring close failure after failed ping", exc_info=True)
        raise PingFailed(f"Liveness check against {detail.redacted()} failed: {exc}") from exc

    LOG.debug("Opened connection to %s", detail.redacted())
    return db


__all__ = ["DB", "DRIVER_SCHEMES", "DataProvider", "Transaction", "open_database"]
