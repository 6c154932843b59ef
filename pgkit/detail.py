"""Connection details extracted from, and rendered back into, PostgreSQL URIs."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from urllib.parse import parse_qsl, unquote, urlsplit

from .errors import ParseError

SCHEME = "postgresql://"

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_PORT = re.compile(r"[0-9]*")
_INTEGER = re.compile(r"[+-]?[0-9]+")


@dataclass(slots=True)
class ConnectionDetail:
    """The pieces of a connection URI.

    Construction never validates; call :meth:`is_valid` to check that the
    values can describe a usable connection.
    """

    user: str = ""
    password: str = field(default="", repr=False)
    location: str = ""
    port: str = ""
    database: str = ""
    options: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, uri: str) -> ConnectionDetail:
        """Extract the connection details out of ``uri``."""

        return parse_details(uri)

    def copy(self) -> ConnectionDetail:
        """Return an independent copy that can be modified freely."""

        return replace(self, options=dict(self.options))

    def is_valid(self) -> bool:
        """Whether the details can be used to construct a valid connection."""

        if self.password and not self.user:
            return False
        if self.port and not self.location:
            return False
        if "" in self.options:
            return False
        if self.port and not _INTEGER.fullmatch(self.port):
            return False
        return True

    def to_uri(self) -> str:
        """Render the details as a URI.

        Values are written as-is, without escaping, so the result is not
        guaranteed to parse. A port is only written alongside a location.
        """

        parts = [SCHEME]
        if self.user:
            parts.append(self.user)
            if self.password:
                parts.append(f":{self.password}")
            parts.append("@")
        if self.location:
            parts.append(f"[{self.location}]" if ":" in self.location else self.location)
            if self.port:
                parts.append(f":{self.port}")
        if self.database:
            parts.append(f"/{self.database}")
        if self.options:
            parts.append("?")
            parts.append("&".join(f"{key}={value}" for key, value in self.options.items()))
        return "".join(parts)

    def redacted(self) -> str:
        """URI form with the password masked, suitable for logs."""

        if not self.password:
            return self.to_uri()
        masked = self.copy()
        masked.password = "***"
        return masked.to_uri()

    def __str__(self) -> str:
        return self.to_uri()


def parse_details(uri: str) -> ConnectionDetail:
    """Extract the connection details out of a connection URI.

    The scheme is not checked beyond being present. Repeated option keys keep
    the value of their last occurrence.
    """

    if _CONTROL_CHARS.search(uri):
        raise ParseError("invalid control character in URI")
    if _BAD_ESCAPE.search(uri):
        raise ParseError("invalid percent escape in URI")
    if uri.startswith(":"):
        raise ParseError("missing protocol scheme")
    try:
        parts = urlsplit(uri)
    except ValueError as exc:
        raise ParseError(str(exc)) from exc

    detail = ConnectionDetail()
    userinfo, _, hostport = parts.netloc.rpartition("@")
    detail.location, detail.port = _split_host_port(hostport)
    try:
        if userinfo:
            user, has_password, password = userinfo.partition(":")
            detail.user = unquote(user, errors="strict")
            if has_password:
                detail.password = unquote(password, errors="strict")

        path = unquote(parts.path, errors="strict")
        detail.database = path[1:] if path.startswith("/") else path

        detail.options = dict(parse_qsl(parts.query, keep_blank_values=True, errors="strict"))
    except UnicodeDecodeError as exc:
        raise ParseError(f"percent escape is not valid UTF-8: {exc.reason}") from exc
    return detail


def _split_host_port(hostport: str) -> tuple[str, str]:
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise ParseError("missing ']' in host")
        host, rest = hostport[1:end], hostport[end + 1 :]
        if rest and not rest.startswith(":"):
            raise ParseError(f"unexpected {rest!r} after host")
        port = rest[1:]
    else:
        host, _, port = hostport.partition(":")
    if not _PORT.fullmatch(port):
        raise ParseError(f"invalid port {port!r}")
    return host, port


__all__ = ["ConnectionDetail", "SCHEME", "parse_details"]
