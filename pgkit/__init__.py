"""PostgreSQL connection details, blocking handles and test isolation helpers."""

from .detail import SCHEME, ConnectionDetail, parse_details
from .db import DB, DataProvider, Transaction, open_database
from .errors import (
    ClosedHandleError,
    ConnectionRefused,
    DatabaseConnectionError,
    ExecutionError,
    InvalidURIError,
    ParseError,
    PgkitError,
    PingFailed,
)

__version__ = "0.1.0"

__all__ = [
    "ClosedHandleError",
    "ConnectionDetail",
    "ConnectionRefused",
    "DB",
    "DataProvider",
    "DatabaseConnectionError",
    "ExecutionError",
    "InvalidURIError",
    "ParseError",
    "PgkitError",
    "PingFailed",
    "SCHEME",
    "Transaction",
    "open_database",
    "parse_details",
]
