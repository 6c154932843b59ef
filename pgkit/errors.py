"""Exception hierarchy shared by the pgkit modules."""

from __future__ import annotations


class PgkitError(Exception):
    """Base class for every error raised by pgkit."""


class ParseError(PgkitError, ValueError):
    """Raised when a connection URI cannot be parsed."""


class DatabaseConnectionError(PgkitError):
    """Raised when a database handle cannot be opened."""


class InvalidURIError(DatabaseConnectionError):
    """The connection URI was malformed."""


class ConnectionRefused(DatabaseConnectionError):
    """The driver could not establish a session with the server."""


class PingFailed(DatabaseConnectionError):
    """The session was established but the liveness check failed."""


class ExecutionError(PgkitError):
    """Raised when a statement fails to execute."""


class ClosedHandleError(PgkitError):
    """Raised when a closed handle or finished transaction is used."""


__all__ = [
    "ClosedHandleError",
    "ConnectionRefused",
    "DatabaseConnectionError",
    "ExecutionError",
    "InvalidURIError",
    "ParseError",
    "PgkitError",
    "PingFailed",
]
