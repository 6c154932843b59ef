"""Test-suite configuration loading helpers."""

from __future__ import annotations

import os
from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, ValidationError

CONFIG_FILE = Path.home() / ".config" / "pgkit" / "config.toml"

URL_ENV = "PGKIT_TEST_URL"
TIMEOUT_ENV = "PGKIT_CONNECT_TIMEOUT"


class PgkitConfig(BaseModel):
    """Shape of the configuration file."""

    url: str | None = None
    connect_timeout: float = Field(default=5.0, gt=0)
    schema_name: str = "public"
    name_length: int = Field(default=12, ge=8)

    def with_url(self, url: str) -> PgkitConfig:
        """Return a copy pointing at another server."""

        return self.model_copy(update={"url": url})


def load_config() -> PgkitConfig:
    """Load configuration from disk and the environment; fall back to defaults."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        data = {}
    except (tomllib.TOMLDecodeError, OSError):
        data = {}

    url = os.environ.get(URL_ENV)
    if url:
        data["url"] = url
    timeout = os.environ.get(TIMEOUT_ENV)
    if timeout:
        data["connect_timeout"] = timeout

    try:
        return PgkitConfig(**data)
    except ValidationError as exc:
        # Out-of-range values fall back to their defaults; the rest is kept.
        for error in exc.errors():
            if error["loc"]:
                data.pop(str(error["loc"][0]), None)
        return PgkitConfig(**data)


def save_config(config: PgkitConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = []
    if config.url:
        lines.append(f'url = "{config.url}"')
    lines.append(f"connect_timeout = {config.connect_timeout}")
    lines.append(f'schema_name = "{config.schema_name}"')
    lines.append(f"name_length = {config.name_length}")
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    for key in ("url", "schema_name"):
        value = raw.get(key)
        if isinstance(value, str):
            data[key] = value
    timeout = raw.get("connect_timeout")
    if isinstance(timeout, (int, float)) and not isinstance(timeout, bool):
        data["connect_timeout"] = float(timeout)
    name_length = raw.get("name_length")
    if isinstance(name_length, int) and not isinstance(name_length, bool):
        data["name_length"] = name_length
    return data


__all__ = ["CONFIG_FILE", "PgkitConfig", "TIMEOUT_ENV", "URL_ENV", "load_config", "save_config"]
