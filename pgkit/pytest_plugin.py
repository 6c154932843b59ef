"""pytest fixtures wiring the isolation helpers into test suites."""

from __future__ import annotations

from typing import Iterator

import pytest

from .config import URL_ENV, PgkitConfig, load_config
from .db import DB, open_database
from .errors import DatabaseConnectionError
from .testing import PytestReporter, RestrictedProvider, disposable_database, transaction_sandbox


@pytest.fixture(scope="session")
def pgkit_config() -> PgkitConfig:
    return load_config()


@pytest.fixture(scope="session")
def pgkit_db(pgkit_config: PgkitConfig) -> Iterator[DB]:
    """Session-wide handle to the configured test server."""

    if not pgkit_config.url:
        pytest.skip(f"{URL_ENV} is not configured")
    try:
        db = open_database(pgkit_config.url, connect_timeout=pgkit_config.connect_timeout)
    except DatabaseConnectionError as exc:
        pytest.fail(str(exc), pytrace=False)
    yield db
    db.close()


@pytest.fixture
def pgkit_reporter() -> Iterator[PytestReporter]:
    reporter = PytestReporter()
    yield reporter
    reporter.finish()


@pytest.fixture
def pgkit_transaction(pgkit_db: DB, pgkit_reporter: PytestReporter) -> Iterator[RestrictedProvider]:
    """Provider whose changes are rolled back after the test."""

    with transaction_sandbox(pgkit_db, pgkit_reporter) as provider:
        yield provider


@pytest.fixture
def pgkit_disposable_db(
    pgkit_db: DB,
    pgkit_config: PgkitConfig,
    pgkit_reporter: PytestReporter,
) -> Iterator[DB]:
    """Handle to a fresh database that is dropped after the test."""

    with disposable_database(pgkit_db, pgkit_reporter, name_length=pgkit_config.name_length) as scratch:
        yield scratch
