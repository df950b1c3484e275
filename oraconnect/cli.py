"""Command line entry point for oraconnect."""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from typing import Sequence

from .checklist import Checklist, StepResult
from .config import (
    AppConfig,
    ConfigError,
    ConnectionProfileConfig,
    env_template,
    load_config,
    load_environment,
    resolve_descriptor,
    resolve_profile,
    save_config,
)
from .connections import (
    AsyncOracledbConnectionBackend,
    ConnectionBackend,
    ConnectionBackendError,
    DemoConnectionBackend,
    OracledbConnectionBackend,
)
from .diagnostics import TROUBLESHOOTING, Diagnosis, diagnose_code
from .listener import ListenerStatus, check_listener
from .models import ConnectionDescriptor, DescriptorError
from .provision import build_user_statements, create_user

LOG = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

ENV_NEW_PASSWORD = "ORACLE_NEW_PASSWORD"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oraconnect",
        description="Check and troubleshoot connections to a local Oracle Database.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    parser.add_argument("--profile", help="Profile name from config.toml (default: active profile)")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Run the config, listener and connect checks")
    check.add_argument("--timeout", type=float, help="Listener/connect timeout in seconds")
    check.add_argument("--async", dest="use_async", action="store_true", help="Probe with connect_async")
    check.add_argument("--demo", action="store_true", help="Skip the database and use canned results")

    ping = sub.add_parser("ping", help="Connect once and run SELECT 1")
    ping.add_argument("--timeout", type=float, help="Connect timeout in seconds")
    ping.add_argument("--async", dest="use_async", action="store_true", help="Probe with connect_async")
    ping.add_argument("--demo", action="store_true", help="Skip the database and use canned results")

    listener = sub.add_parser("listener", help="Check that the listener port accepts TCP connections")
    listener.add_argument("--timeout", type=float, help="Timeout in seconds")

    env = sub.add_parser("env", help="Print the environment variables to set")
    env.add_argument("--powershell", action="store_true", help="Print PowerShell syntax")

    sub.add_parser("profiles", help="List configured profiles")

    save = sub.add_parser("save-profile", help="Add or replace a profile in config.toml")
    save.add_argument("name")
    save.add_argument("dsn", help="host:port/service")
    save.add_argument("--user")
    save.add_argument("--activate", action="store_true", help="Make this the active profile")

    user_sql = sub.add_parser("user-sql", help="Print (or run) SQL that creates an application user")
    user_sql.add_argument("username")
    user_sql.add_argument("--tablespace", default="USERS")
    user_sql.add_argument("--grant", action="append", dest="grants", help="Privilege to grant (repeatable)")
    user_sql.add_argument("--execute", action="store_true", help="Run the statements as the resolved profile")

    troubleshoot = sub.add_parser("troubleshoot", help="Show remedies for known error codes")
    troubleshoot.add_argument("code", nargs="?", help="e.g. ORA-12541")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    load_environment()
    config = load_config()
    level = "DEBUG" if args.verbose else config.log_level
    logging.basicConfig(level=level, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    LOG.debug("Running command", extra={"command": args.command, "profile": args.profile})
    handler = _COMMANDS[args.command]
    try:
        return handler(args, config)
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        print("Run `oraconnect env` for the variables to set.", file=sys.stderr)
        return EXIT_USAGE
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except ConnectionBackendError as exc:
        print(f"FAILED: {exc}")
        _print_diagnosis(exc.diagnosis)
        return EXIT_FAILED


def _cmd_check(args: argparse.Namespace, config: AppConfig) -> int:
    timeout = args.timeout or config.connect_timeout
    backend = _backend_for(args, timeout)
    checklist = Checklist(backend=backend, listener_timeout=timeout)
    if args.demo:
        checklist.listener_check = _demo_listener
    checklist.subscribe(_print_step)
    try:
        report = checklist.run(config, profile_name=args.profile)
    finally:
        _shutdown(backend)
    failed = report.failed_step
    if failed is not None and failed.diagnosis is not None:
        _print_diagnosis(failed.diagnosis)
    for step in report.steps:
        if step.skipped:
            _print_step(step)
    print("Connection check PASSED" if report.ok else "Connection check FAILED")
    return EXIT_OK if report.ok else EXIT_FAILED


def _cmd_ping(args: argparse.Namespace, config: AppConfig) -> int:
    profile = resolve_profile(config, args.profile)
    backend = _backend_for(args, args.timeout or config.connect_timeout)
    print(f"Connecting as {profile.user}@{profile.dsn}...")
    try:
        result = backend.probe(profile)
    finally:
        _shutdown(backend)
    print(f"OK: SELECT 1 returned {result.row} in {result.latency_ms} ms")
    if result.server_version:
        print(f"Server version: {result.server_version}")
    return EXIT_OK


def _cmd_listener(args: argparse.Namespace, config: AppConfig) -> int:
    descriptor = resolve_descriptor(config, args.profile)
    status = check_listener(descriptor.host, descriptor.port, timeout=args.timeout or config.connect_timeout)
    if status.reachable:
        print(f"OK: listener at {status.host}:{status.port} accepted a connection in {status.latency_ms} ms")
        return EXIT_OK
    print(f"FAILED: {status.host}:{status.port} unreachable: {status.error}")
    if status.diagnosis is not None:
        _print_diagnosis(status.diagnosis)
    return EXIT_FAILED


def _cmd_env(args: argparse.Namespace, config: AppConfig) -> int:
    if args.profile:
        profile = config.profile_named(args.profile)
    elif config.active_profile:
        profile = config.profile_named(config.active_profile)
    else:
        profile = config.profiles[0]
    print(env_template(profile, powershell=args.powershell))
    return EXIT_OK


def _cmd_profiles(args: argparse.Namespace, config: AppConfig) -> int:
    active = config.active_profile or (config.profiles[0].name if config.profiles else None)
    for profile in config.profiles:
        marker = "*" if profile.name == active else " "
        try:
            dsn = str(profile.descriptor())
        except DescriptorError as exc:
            dsn = f"<invalid: {exc}>"
        user = f" user={profile.user}" if profile.user else ""
        print(f"{marker} {profile.name}: {dsn}{user}")
    return EXIT_OK


def _cmd_save_profile(args: argparse.Namespace, config: AppConfig) -> int:
    descriptor = ConnectionDescriptor.parse(args.dsn)
    entry = ConnectionProfileConfig(name=args.name, dsn=str(descriptor), user=args.user)
    updated = config.with_profile(entry)
    if args.activate:
        updated = updated.with_active_profile(args.name)
    save_config(updated)
    print(f"Saved profile '{args.name}' ({descriptor})")
    return EXIT_OK


def _cmd_user_sql(args: argparse.Namespace, config: AppConfig) -> int:
    password = os.environ.get(ENV_NEW_PASSWORD) or getpass.getpass(f"Password for {args.username}: ")
    kwargs: dict[str, object] = {"tablespace": args.tablespace}
    if args.grants:
        kwargs["grants"] = tuple(args.grants)
    statements = build_user_statements(args.username, password, **kwargs)
    if not args.execute:
        for statement in statements:
            print(f"{statement.display};")
        return EXIT_OK
    admin = resolve_profile(config, args.profile)
    executed = create_user(admin, statements, connect_timeout=config.connect_timeout)
    print(f"Executed {executed} statement(s) as {admin.user}@{admin.dsn}")
    return EXIT_OK


def _cmd_troubleshoot(args: argparse.Namespace, config: AppConfig) -> int:
    if args.code:
        _print_diagnosis(diagnose_code(args.code))
        return EXIT_OK
    for code, entry in TROUBLESHOOTING.items():
        print(f"{code:<10} {entry.category.value:<22} {entry.summary}")
    return EXIT_OK


def _backend_for(args: argparse.Namespace, timeout: float) -> ConnectionBackend:
    if args.demo:
        return DemoConnectionBackend()
    if args.use_async:
        return AsyncOracledbConnectionBackend(connect_timeout=timeout)
    return OracledbConnectionBackend(connect_timeout=timeout)


def _shutdown(backend: ConnectionBackend) -> None:
    if isinstance(backend, AsyncOracledbConnectionBackend):
        backend.shutdown()


def _demo_listener(host: str, port: int, *, timeout: float) -> ListenerStatus:
    return ListenerStatus(host=host, port=port, reachable=True, latency_ms=0)


def _print_step(step: StepResult) -> None:
    if step.skipped:
        print(f"[SKIP] {step.name}")
        return
    label = "OK" if step.ok else "FAIL"
    print(f"[{label:>4}] {step.name}: {step.detail}")


def _print_diagnosis(diagnosis: Diagnosis) -> None:
    code = f" ({diagnosis.code})" if diagnosis.code else ""
    print(f"  Cause{code}: {diagnosis.category.value}: {diagnosis.message}")
    print(f"  Remedy: {diagnosis.remedy}")


_COMMANDS = {
    "check": _cmd_check,
    "ping": _cmd_ping,
    "listener": _cmd_listener,
    "env": _cmd_env,
    "profiles": _cmd_profiles,
    "save-profile": _cmd_save_profile,
    "user-sql": _cmd_user_sql,
    "troubleshoot": _cmd_troubleshoot,
}


__all__ = ["build_parser", "main"]
