"""App configuration loading helpers."""

from __future__ import annotations

import json
import os
from pathlib import Path

import tomllib

from typing import Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .models import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_SERVICE,
    ConnectionDescriptor,
    ConnectionProfile,
    DescriptorError,
    parse_port,
)

CONFIG_FILE = Path.home() / ".config" / "oraconnect" / "config.toml"

ENV_HOST = "ORACLE_HOST"
ENV_PORT = "ORACLE_PORT"
ENV_SERVICE = "ORACLE_SERVICE"
ENV_USER = "ORACLE_USER"
ENV_PASSWORD = "ORACLE_PASSWORD"
ENV_DSN = "ORACLE_DSN"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(RuntimeError):
    """Raised when a usable connection profile cannot be assembled."""


class ConnectionProfileConfig(BaseModel):
    """Connection profile configuration stored in config.toml (no secrets)."""

    name: str
    dsn: str | None = None
    host: str | None = None
    port: int | None = None
    service_name: str | None = None
    user: str | None = None

    def descriptor(self) -> ConnectionDescriptor:
        """Descriptor for this profile; ``dsn`` wins over the split fields."""

        if self.dsn:
            return ConnectionDescriptor.parse(self.dsn)
        return ConnectionDescriptor(
            host=self.host or DEFAULT_HOST,
            port=self.port if self.port is not None else DEFAULT_PORT,
            service_name=self.service_name or DEFAULT_SERVICE,
        )


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    profiles: list[ConnectionProfileConfig] = Field(default_factory=lambda: list(_default_profiles()))
    active_profile: str | None = None
    connect_timeout: float = 5.0
    log_level: str = "WARNING"

    def profile_named(self, name: str) -> ConnectionProfileConfig:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        raise ConfigError(f"Profile '{name}' not found.")

    def with_active_profile(self, name: str) -> AppConfig:
        """Return a copy with the active profile updated."""

        return self.model_copy(update={"active_profile": name})

    def with_profile(self, profile: ConnectionProfileConfig) -> AppConfig:
        """Return a copy with ``profile`` added, replacing one of the same name."""

        profiles = [entry for entry in self.profiles if entry.name != profile.name]
        profiles.append(profile)
        return self.model_copy(update={"profiles": profiles})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()

    profiles_data = data.get("profiles")
    profiles: list[ConnectionProfileConfig] | None = None
    if isinstance(profiles_data, list):
        profiles = [
            ConnectionProfileConfig(**profile)
            for profile in profiles_data  # type: ignore[list-item]
            if isinstance(profile, dict)
        ]

    return AppConfig(
        profiles=profiles if profiles else list(_default_profiles()),
        active_profile=data.get("active_profile"),
        connect_timeout=data.get("connect_timeout", AppConfig.model_fields["connect_timeout"].default),
        log_level=data.get("log_level", AppConfig.model_fields["log_level"].default),
    )


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk. Passwords are never written."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f"connect_timeout = {config.connect_timeout}",
        f"log_level = {_toml_str(config.log_level)}",
    ]
    if config.active_profile:
        lines.append(f"active_profile = {_toml_str(config.active_profile)}")
    if config.profiles:
        lines.append("")
        for profile in config.profiles:
            lines.append("[[profiles]]")
            lines.append(f"name = {_toml_str(profile.name)}")
            if profile.dsn:
                lines.append(f"dsn = {_toml_str(profile.dsn)}")
            if profile.host:
                lines.append(f"host = {_toml_str(profile.host)}")
            if profile.port is not None:
                lines.append(f"port = {profile.port}")
            if profile.service_name:
                lines.append(f"service_name = {_toml_str(profile.service_name)}")
            if profile.user:
                lines.append(f"user = {_toml_str(profile.user)}")
            lines.append("")
    CONFIG_FILE.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _toml_str(value: str) -> str:
    # JSON escapes are valid TOML; TOML also forbids a raw DEL.
    return json.dumps(value, ensure_ascii=False).replace("\x7f", "\\u007f")


def load_environment(dotenv_path: Path | None = None) -> bool:
    """Load a ``.env`` file without overriding variables already set."""

    if dotenv_path is None:
        dotenv_path = Path.cwd() / ".env"
    return load_dotenv(dotenv_path, override=False)


def resolve_profile(
    config: AppConfig,
    name: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ConnectionProfile:
    """Combine a configured profile with environment overrides and credentials."""

    env = os.environ if environ is None else environ
    base = _base_profile(config, name)
    descriptor = resolve_descriptor(config, name, env)

    user = _env_value(env, ENV_USER) or base.user
    password = _env_value(env, ENV_PASSWORD)
    missing = []
    if not user:
        missing.append(ENV_USER)
    if not password:
        missing.append(ENV_PASSWORD)
    if missing:
        raise ConfigError(f"Missing environment variables: {', '.join(missing)}")
    return ConnectionProfile(name=base.name, descriptor=descriptor, user=user, password=password)


def resolve_descriptor(
    config: AppConfig,
    name: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ConnectionDescriptor:
    """Descriptor for a profile after environment overrides; needs no credentials."""

    env = os.environ if environ is None else environ
    base = _base_profile(config, name)
    try:
        return _descriptor_from_env(base, env)
    except DescriptorError as exc:
        raise ConfigError(str(exc)) from exc


def env_template(profile: ConnectionProfileConfig, *, powershell: bool = False) -> str:
    """Render the variables an operator sets before running a probe."""

    descriptor = profile.descriptor()
    values = (
        (ENV_HOST, descriptor.host),
        (ENV_PORT, str(descriptor.port)),
        (ENV_SERVICE, descriptor.service_name),
        (ENV_USER, profile.user or "app_user"),
        (ENV_PASSWORD, "<password>"),
    )
    if powershell:
        return "\n".join(f'$env:{key} = "{value}"' for key, value in values)
    return "\n".join(f"export {key}='{value}'" for key, value in values)


def _base_profile(config: AppConfig, name: str | None) -> ConnectionProfileConfig:
    if name:
        return config.profile_named(name)
    if config.active_profile:
        return config.profile_named(config.active_profile)
    if config.profiles:
        return config.profiles[0]
    return _default_profiles()[0]


def _descriptor_from_env(base: ConnectionProfileConfig, env: Mapping[str, str]) -> ConnectionDescriptor:
    dsn = _env_value(env, ENV_DSN)
    if dsn:
        return ConnectionDescriptor.parse(dsn)
    descriptor = base.descriptor()
    port_text = _env_value(env, ENV_PORT)
    return ConnectionDescriptor(
        host=_env_value(env, ENV_HOST) or descriptor.host,
        port=parse_port(port_text) if port_text else descriptor.port,
        service_name=_env_value(env, ENV_SERVICE) or descriptor.service_name,
    )


def _env_value(env: Mapping[str, str], key: str) -> str | None:
    value = env.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    if isinstance(raw, dict):
        active_profile = raw.get("active_profile")
        if isinstance(active_profile, str):
            data["active_profile"] = active_profile
        timeout = raw.get("connect_timeout")
        if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) and timeout > 0:
            data["connect_timeout"] = float(timeout)
        log_level = raw.get("log_level")
        if isinstance(log_level, str) and log_level.upper() in _LOG_LEVELS:
            data["log_level"] = log_level.upper()
        profiles = raw.get("profiles")
        if isinstance(profiles, list):
            parsed_profiles: list[dict[str, object]] = []
            for profile in profiles:
                if not isinstance(profile, dict):
                    continue
                parsed: dict[str, object] = {}
                for key in ("name", "dsn", "host", "service_name", "user"):
                    value = profile.get(key)
                    if isinstance(value, str):
                        parsed[key] = value
                port = profile.get("port")
                if isinstance(port, int) and not isinstance(port, bool):
                    parsed["port"] = port
                if parsed.get("name"):
                    parsed_profiles.append(parsed)
            if parsed_profiles:
                data["profiles"] = parsed_profiles
    return data


def _default_profiles() -> tuple[ConnectionProfileConfig, ...]:
    """Default profile used before config is customized."""

    return (
        ConnectionProfileConfig(
            name="Local Oracle",
            host=DEFAULT_HOST,
            port=DEFAULT_PORT,
            service_name=DEFAULT_SERVICE,
        ),
    )


__all__ = [
    "CONFIG_FILE",
    "ENV_DSN",
    "ENV_HOST",
    "ENV_PASSWORD",
    "ENV_PORT",
    "ENV_SERVICE",
    "ENV_USER",
    "AppConfig",
    "ConfigError",
    "ConnectionProfileConfig",
    "env_template",
    "load_config",
    "load_environment",
    "resolve_descriptor",
    "resolve_profile",
    "save_config",
]
