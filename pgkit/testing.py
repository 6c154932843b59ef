"""Test isolation helpers: rolled-back transactions and throwaway databases."""

from __future__ import annotations

import logging
import secrets
import string
from contextlib import contextmanager
from typing import Callable, Iterator, NoReturn, Protocol

import asyncpg
import pytest

from .db import DB, DataProvider, open_database
from .errors import DatabaseConnectionError, ExecutionError, PgkitError

LOG = logging.getLogger(__name__)

NAME_ALPHABET = string.ascii_lowercase
DEFAULT_NAME_LENGTH = 12

_TABLES_QUERY = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = $1
"""


class Reporter(Protocol):
    """Where helpers send failures and cleanup steps."""

    def fatal(self, message: str) -> NoReturn:
        """Abort the current test."""

    def error(self, message: str) -> None:
        """Record a failure but keep going."""

    def cleanup(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` when the current test finishes."""


class PytestReporter:
    """Reporter that maps failures onto pytest outcomes."""

    def __init__(self) -> None:
        self.failures: list[str] = []
        self._callbacks: list[Callable[[], None]] = []

    def fatal(self, message: str) -> NoReturn:
        pytest.fail(message, pytrace=False)

    def error(self, message: str) -> None:
        LOG.error(message)
        self.failures.append(message)

    def cleanup(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def finish(self) -> None:
        """Run cleanup callbacks newest first, then fail on recorded errors."""

        while self._callbacks:
            callback = self._callbacks.pop()
            try:
                callback()
            except Exception as exc:
                self.error(f"Cleanup step failed: {exc}")
        if self.failures:
            pytest.fail("; ".join(self.failures), pytrace=False)


class RestrictedProvider:
    """Exposes only query/query_row/exec of the wrapped provider."""

    __slots__ = ("_provider",)

    def __init__(self, provider: DataProvider) -> None:
        self._provider = provider

    def query(self, sql: str, *args: object) -> list[asyncpg.Record]:
        return self._provider.query(sql, *args)

    def query_row(self, sql: str, *args: object) -> asyncpg.Record | None:
        return self._provider.query_row(sql, *args)

    def exec(self, sql: str, *args: object) -> str:
        return self._provider.exec(sql, *args)


def generate_random_name(length: int = DEFAULT_NAME_LENGTH) -> str:
    """Return ``length`` random lowercase letters for naming temporary objects."""

    return "".join(secrets.choice(NAME_ALPHABET) for _ in range(length))


def open_test_database(reporter: Reporter, url: str, *, connect_timeout: float = 5.0) -> DB:
    """Open a handle for a test and close it when the test finishes."""

    try:
        db = open_database(url, connect_timeout=connect_timeout)
    except DatabaseConnectionError as exc:
        reporter.fatal(str(exc))
    reporter.cleanup(db.close)
    return db


@contextmanager
def transaction_sandbox(db: DB, reporter: Reporter | None = None) -> Iterator[RestrictedProvider]:
    """Yield a provider inside a transaction that is always rolled back."""

    owned = PytestReporter() if reporter is None else None
    reporter = reporter or owned
    try:
        tx = db.begin()
    except PgkitError as exc:
        reporter.fatal(str(exc))
    completed = False
    try:
        yield RestrictedProvider(tx)
        completed = True
    finally:
        try:
            tx.rollback()
        except PgkitError as exc:
            reporter.error(f"Failed to roll back transaction: {exc}")
        if owned is not None and completed:
            owned.finish()


def run_in_transaction(
    db: DB,
    fn: Callable[[RestrictedProvider], object],
    reporter: Reporter | None = None,
) -> None:
    """Call ``fn`` inside a transaction, then roll the transaction back."""

    with transaction_sandbox(db, reporter) as provider:
        fn(provider)


@contextmanager
def disposable_database(
    db: DB,
    reporter: Reporter | None = None,
    *,
    name_length: int = DEFAULT_NAME_LENGTH,
) -> Iterator[DB]:
    """Create a uniquely named database, yield a handle to it, then drop it.

    The scratch handle is closed before the drop, since PostgreSQL refuses to
    drop a database with active sessions.
    """

    owned = PytestReporter() if reporter is None else None
    reporter = reporter or owned
    name = generate_random_name(name_length)
    try:
        db.exec(f"CREATE DATABASE {name}")
    except PgkitError as exc:
        reporter.fatal(f"Failed to create database {name}: {exc}")
    LOG.info("Created disposable database %s", name)

    scratch: DB | None = None
    completed = False
    try:
        detail = db.connection.copy()
        detail.database = name
        try:
            scratch = open_database(str(detail))
        except DatabaseConnectionError as exc:
            reporter.fatal(str(exc))
        yield scratch
        completed = True
    finally:
        if scratch is not None:
            try:
                scratch.close()
            except PgkitError as exc:
                reporter.error(f"Failed to close connection to {name}: {exc}")
        try:
            db.exec(f"DROP DATABASE {name}")
        except PgkitError as exc:
            reporter.error(f"Failed to drop database {name}: {exc}")
        else:
            LOG.info("Dropped disposable database %s", name)
        if owned is not None and completed:
            owned.finish()


def run_in_disposable_database(
    db: DB,
    fn: Callable[[DB], object],
    reporter: Reporter | None = None,
    *,
    name_length: int = DEFAULT_NAME_LENGTH,
) -> None:
    """Call ``fn`` with a handle to a freshly created database that is dropped afterwards."""

    with disposable_database(db, reporter, name_length=name_length) as scratch:
        fn(scratch)


def list_tables(
    provider: DataProvider,
    schema_name: str,
    reporter: Reporter | None = None,
) -> list[str]:
    """Names of the tables in ``schema_name``, in the order the catalog returns them."""

    try:
        rows = provider.query(_TABLES_QUERY, schema_name)
    except ExecutionError as exc:
        (reporter or PytestReporter()).fatal(f"Failed to list tables: {exc}")
    return [str(row["table_name"]) for row in rows]


__all__ = [
    "DEFAULT_NAME_LENGTH",
    "PytestReporter",
    "Reporter",
    "RestrictedProvider",
    "disposable_database",
    "generate_random_name",
    "list_tables",
    "open_test_database",
    "run_in_disposable_database",
    "run_in_transaction",
    "transaction_sandbox",
]
