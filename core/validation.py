# ============================================================================
# INPUT VALIDATION
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core - Allow-list validators
# PURPOSE: Reject untrusted values before they reach SQL text or shell commands
# CREATED: 03 OCT 2026
# ============================================================================
"""
Input Validation

Everything read from the registry, the deploy config or the command line
is untrusted. Values that end up inside registry SQL or remote shell
command lines go through one of these allow-list checks first.

Each validator returns the value unchanged on success and raises
UnsafeValueError otherwise, so they compose inline:

    server_id = validate_server_id(server_id)
"""

import ipaddress
import re
from typing import Iterable, List

from core.errors import UnsafeValueError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_CONTAINER_ID_RE = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")
_HOSTNAME_RE = re.compile(
    r"^(?=.{1,253}$)[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*\.?$"
)
_WIREGUARD_KEY_RE = re.compile(r"^[A-Za-z0-9+/]{43}=$")
_METADATA_KEY_RE = re.compile(r"^[a-z][a-z0-9_]{0,63}$")


def validate_identifier(value: str, kind: str = "identifier") -> str:
    """Project, service and server identifiers: [A-Za-z0-9._-], 1-128 chars."""
    if not isinstance(value, str) or not _IDENTIFIER_RE.match(value):
        raise UnsafeValueError(f"Invalid {kind}: {value!r}")
    return value


def validate_server_id(value: str) -> str:
    return validate_identifier(value, "server id")


def validate_service_name(value: str) -> str:
    return validate_identifier(value, "service name")


def validate_project_name(value: str) -> str:
    return validate_identifier(value, "project name")


def validate_container_id(value: str) -> str:
    """Container ids (full or prefix)."""
    if not isinstance(value, str) or not _CONTAINER_ID_RE.match(value):
        raise UnsafeValueError(f"Invalid container id: {value!r}")
    return value


def validate_hostname(value: str) -> str:
    """DNS hostname or IP literal."""
    if not isinstance(value, str):
        raise UnsafeValueError(f"Invalid hostname: {value!r}")
    if is_ip_address(value) or _HOSTNAME_RE.match(value):
        return value
    raise UnsafeValueError(f"Invalid hostname: {value!r}")


def is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def validate_ip(value: str, allow_empty: bool = False) -> str:
    """IPv4 or IPv6 address."""
    if allow_empty and value == "":
        return value
    if not isinstance(value, str) or not is_ip_address(value):
        raise UnsafeValueError(f"Invalid IP address: {value!r}")
    return value


def validate_cidr(value: str, allow_empty: bool = False) -> str:
    """Network in CIDR notation (host bits may be set, e.g. 10.210.1.1/24)."""
    if allow_empty and value == "":
        return value
    if not isinstance(value, str) or "/" not in value:
        raise UnsafeValueError(f"Invalid CIDR: {value!r}")
    try:
        ipaddress.ip_network(value, strict=False)
    except ValueError:
        raise UnsafeValueError(f"Invalid CIDR: {value!r}") from None
    return value


def validate_endpoint(value: str) -> str:
    """ip:port or [ipv6]:port."""
    if not isinstance(value, str):
        raise UnsafeValueError(f"Invalid endpoint: {value!r}")
    if value.startswith("["):
        host, _, port = value[1:].partition("]:")
    else:
        host, _, port = value.rpartition(":")
    if not port.isdigit() or not 1 <= int(port) <= 65535 or not is_ip_address(host):
        raise UnsafeValueError(f"Invalid endpoint: {value!r}")
    return value


def validate_endpoints(values: Iterable[str]) -> List[str]:
    return [validate_endpoint(v) for v in values]


def validate_wireguard_key(value: str, allow_empty: bool = False) -> str:
    """Base64 public key, 44 chars ending in '='."""
    if allow_empty and value == "":
        return value
    if not isinstance(value, str) or not _WIREGUARD_KEY_RE.match(value):
        raise UnsafeValueError(f"Invalid WireGuard public key: {value!r}")
    return value


def validate_metadata_key(value: str) -> str:
    if not isinstance(value, str) or not _METADATA_KEY_RE.match(value):
        raise UnsafeValueError(f"Invalid metadata key: {value!r}")
    return value


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "validate_identifier",
    "validate_server_id",
    "validate_service_name",
    "validate_project_name",
    "validate_container_id",
    "validate_hostname",
    "is_ip_address",
    "validate_ip",
    "validate_cidr",
    "validate_endpoint",
    "validate_endpoints",
    "validate_wireguard_key",
    "validate_metadata_key",
]
