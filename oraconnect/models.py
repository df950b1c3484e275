"""Shared dataclasses used across config/connection modules."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 1521
DEFAULT_SERVICE = "FREEPDB1"

_PORT_TEXT = re.compile(r"[0-9]{1,5}")


class DescriptorError(ValueError):
    """Raised when a connection descriptor is malformed."""


@dataclass(frozen=True, slots=True)
class ConnectionDescriptor:
    """Address of a database service behind a listener: ``host:port/service``."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    service_name: str = DEFAULT_SERVICE

    def __post_init__(self) -> None:
        if not isinstance(self.host, str) or not self.host.strip():
            raise DescriptorError("Descriptor host must not be empty.")
        if not isinstance(self.service_name, str) or not self.service_name.strip():
            raise DescriptorError("Descriptor service name must not be empty.")
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise DescriptorError(f"Descriptor port must be an integer, got {self.port!r}.")
        if not 1 <= self.port <= 65535:
            raise DescriptorError(f"Descriptor port {self.port} is outside 1-65535.")

    @classmethod
    def parse(cls, text: str) -> ConnectionDescriptor:
        """Parse ``host:port/service`` (port optional, leading ``//`` allowed)."""

        raw = (text or "").strip()
        if raw.startswith("//"):
            raw = raw[2:]
        if not raw:
            raise DescriptorError("Descriptor is empty.")
        address, sep, service = raw.partition("/")
        if not sep or not service.strip():
            raise DescriptorError(f"Descriptor '{text}' has no service name (expected host:port/service).")
        host, port_text = _split_address(address, text)
        port = DEFAULT_PORT if port_text is None else parse_port(port_text)
        return cls(host=host, port=port, service_name=service.strip())

    def __str__(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}/{self.service_name}"


@dataclass(frozen=True, slots=True)
class ConnectionProfile:
    """Runtime representation of a connection profile with credentials."""

    name: str
    descriptor: ConnectionDescriptor
    user: str
    password: str = field(default="", repr=False)

    @property
    def dsn(self) -> str:
        return str(self.descriptor)


def parse_port(value: object) -> int:
    """Convert a port from config or the environment, validating its range."""

    if isinstance(value, bool):
        raise DescriptorError(f"Invalid port {value!r}.")
    if isinstance(value, int):
        port = value
    else:
        text = str(value).strip()
        if not _PORT_TEXT.fullmatch(text):
            raise DescriptorError(f"Invalid port '{value}'.")
        port = int(text)
    if not 1 <= port <= 65535:
        raise DescriptorError(f"Port {port} is outside 1-65535.")
    return port


def _split_address(address: str, original: str) -> tuple[str, str | None]:
    address = address.strip()
    if address.startswith("["):
        end = address.find("]")
        if end == -1:
            raise DescriptorError(f"Descriptor '{original}' has an unterminated IPv6 host.")
        host = address[1:end]
        rest = address[end + 1 :]
        if not rest:
            return host, None
        if not rest.startswith(":"):
            raise DescriptorError(f"Descriptor '{original}' has junk after the IPv6 host.")
        return host, rest[1:]
    if address.count(":") > 1:
        raise DescriptorError(f"Descriptor '{original}': wrap IPv6 hosts in brackets.")
    host, sep, port = address.partition(":")
    if not host:
        raise DescriptorError(f"Descriptor '{original}' has no host.")
    return host, (port if sep else None)


__all__ = [
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "DEFAULT_SERVICE",
    "ConnectionDescriptor",
    "ConnectionProfile",
    "DescriptorError",
    "parse_port",
]
