"""Utility that launches a sample Oracle Database Free container for oraconnect."""

from __future__ import annotations

import argparse
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from oraconnect.config import CONFIG_FILE, ConnectionProfileConfig, load_config, save_config
from oraconnect.models import ConnectionDescriptor

DEFAULT_CONTAINER = "oraconnect-free"
DEFAULT_PORT = 1521
DEFAULT_ADMIN_PASSWORD = "oraconnect"
DEFAULT_USER = "app_user"
DEFAULT_SERVICE = "FREEPDB1"
DOCKER_IMAGE = "gvenzl/oracle-free:23-slim"
PROFILE_NAME = "Docker Free"


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(name: str, port: int, admin_password: str, user: str, user_password: str) -> None:
    if container_exists(name):
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(
            [
                "docker",
                "run",
                "-d",
                "--name",
                name,
                "-e",
                f"ORACLE_PASSWORD={admin_password}",
                "-e",
                f"APP_USER={user}",
                "-e",
                f"APP_USER_PASSWORD={user_password}",
                "-p",
                f"{port}:1521",
                DOCKER_IMAGE,
            ]
        )
    wait_for_start(name)


def wait_for_start(name: str, retries: int = 60, delay: float = 5.0) -> None:
    # First start creates the database and takes a few minutes.
    for _ in range(retries):
        result = subprocess.run(["docker", "exec", name, "healthcheck.sh"], text=True, capture_output=True)
        if result.returncode == 0:
            return
        time.sleep(delay)
    print("Warning: database did not report ready state; continuing anyway.")


def update_config(port: int, user: str) -> None:
    config = load_config()
    if any(profile.name == PROFILE_NAME for profile in config.profiles):
        print(f"Profile '{PROFILE_NAME}' already present in config; leaving as-is.")
        return
    descriptor = ConnectionDescriptor(host="localhost", port=port, service_name=DEFAULT_SERVICE)
    save_config(config.with_profile(ConnectionProfileConfig(name=PROFILE_NAME, dsn=str(descriptor), user=user)))
    print(f"Added '{PROFILE_NAME}' profile to {CONFIG_FILE}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose the listener on")
    parser.add_argument("--admin-password", default=DEFAULT_ADMIN_PASSWORD, help="SYS/SYSTEM password")
    parser.add_argument("--user", default=DEFAULT_USER, help="Application user created in FREEPDB1")
    parser.add_argument("--user-password", default=DEFAULT_ADMIN_PASSWORD, help="Application user password")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        start_container(args.container, args.port, args.admin_password, args.user, args.user_password)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    update_config(args.port, args.user)
    print(
        f"Sample database is ready. Export ORACLE_USER={args.user} and ORACLE_PASSWORD, then run "
        f"`oraconnect --profile '{PROFILE_NAME}' check`."
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
