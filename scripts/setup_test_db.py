"""Start a throwaway PostgreSQL Docker container for the pgkit test suite."""

from __future__ import annotations

import argparse
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pgkit.config import CONFIG_FILE, URL_ENV, PgkitConfig, load_config, save_config
from pgkit.detail import ConnectionDetail

DEFAULT_CONTAINER = "pgkit-test-db"
DEFAULT_PORT = 5544
DEFAULT_PASSWORD = "pgkit"
DEFAULT_DB = "postgres"
DEFAULT_USER = "pgkit"
DOCKER_IMAGE = "postgres:16-alpine"


class DockerError(RuntimeError):
    """A docker command failed or the server never became ready."""


def docker(*args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    result = subprocess.run(["docker", *args], text=True, capture_output=True)
    if check and result.returncode != 0:
        raise DockerError(f"docker {args[0]} failed: {result.stderr.strip() or result.returncode}")
    return result


def container_state(name: str) -> str | None:
    """Return the container's status (``running``, ``exited``...) or None if it does not exist."""

    result = docker("inspect", "--format", "{{.State.Status}}", name, check=False)
    if result.returncode != 0:
        return None
    return result.stdout.strip()


def ensure_container(args: argparse.Namespace) -> None:
    state = container_state(args.container)
    if state is not None and args.replace:
        print(f"Removing container '{args.container}'.")
        docker("rm", "--force", args.container)
        state = None

    if state is None:
        print(f"Creating container '{args.container}' from {DOCKER_IMAGE} on port {args.port}.")
        docker(
            "run",
            "--detach",
            "--name",
            args.container,
            "--env",
            f"POSTGRES_USER={args.user}",
            "--env",
            f"POSTGRES_PASSWORD={args.password}",
            "--publish",
            f"{args.port}:5432",
            DOCKER_IMAGE,
        )
    elif state != "running":
        print(f"Starting stopped container '{args.container}'.")
        docker("start", args.container)
    else:
        print(f"Container '{args.container}' is already running.")


def wait_until_ready(name: str, user: str, timeout: float) -> None:
    deadline = time.monotonic() + timeout
    while True:
        if docker("exec", name, "pg_isready", "--quiet", "--username", user, check=False).returncode == 0:
            return
        if time.monotonic() >= deadline:
            raise DockerError(f"server in '{name}' was not ready after {timeout:g}s")
        time.sleep(0.5)


def build_url(port: int, user: str, password: str, database: str) -> str:
    detail = ConnectionDetail(
        user=user,
        password=password,
        location="localhost",
        port=str(port),
        database=database,
        options={"sslmode": "disable"},
    )
    return detail.to_uri()


def update_config(url: str) -> None:
    try:
        config = load_config()
    except Exception:
        config = PgkitConfig()
    save_config(config.with_url(url))
    print(f"Stored test URL in {CONFIG_FILE}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose Postgres on")
    parser.add_argument("--password", default=DEFAULT_PASSWORD, help="Postgres password")
    parser.add_argument("--database", default=DEFAULT_DB, help="Database the suite connects to")
    parser.add_argument("--user", default=DEFAULT_USER, help="Database superuser")
    parser.add_argument("--timeout", type=float, default=30.0, help="Seconds to wait for the server")
    parser.add_argument("--replace", action="store_true", help="Recreate the container if it exists")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        ensure_container(args)
        wait_until_ready(args.container, args.user, args.timeout)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    except DockerError as exc:
        print(f"Error: {exc}")
        return 1
    url = build_url(args.port, args.user, args.password, args.database)
    update_config(url)
    print(f"Test database is ready. Export {URL_ENV}={url} to override the config file.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
