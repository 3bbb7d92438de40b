# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for SSH, fanout, locking, registry, GC, audit
# CREATED: 02 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides defaults for the cluster coordination layer.
These can be overridden via JIJI_* environment variables or the deploy
configuration file (see core.config.loader).

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class SSHDefaults:
    """
    Defaults for SSH connections.

    Connection attempts are bounded separately from command fanout.
    """
    user: str = "root"
    port: int = 22
    key_path: Optional[str] = None
    connect_timeout: int = 15  # seconds, passed to ssh -o ConnectTimeout
    server_alive_interval: int = 30

    # Connection pool
    max_connections: int = 30
    connect_retries: int = 3
    connect_retry_delay: float = 1.0  # doubled per attempt

    # Commands per connection run one at a time
    max_sessions_per_host: int = 1

    # ControlMaster multiplexing
    control_persist: int = 60  # seconds
    control_dir: str = "~/.ssh/jiji"

    @classmethod
    def from_env(cls) -> "SSHDefaults":
        """Create from environment variables."""
        return cls(
            user=os.getenv("JIJI_SSH_USER", "root"),
            port=int(os.getenv("JIJI_SSH_PORT", 22)),
            key_path=os.getenv("JIJI_SSH_KEY") or None,
            connect_timeout=int(os.getenv("JIJI_SSH_CONNECT_TIMEOUT", 15)),
            max_connections=int(os.getenv("JIJI_SSH_MAX_CONNECTIONS", 30)),
            connect_retries=int(os.getenv("JIJI_SSH_CONNECT_RETRIES", 3)),
        )


@dataclass(frozen=True)
class FanoutDefaults:
    """
    Defaults for host fanout.

    No implicit retry; retry is opt-in per call site.
    """
    max_concurrency: int = 50
    operation_timeout: Optional[float] = None  # seconds, None = unbounded
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    @classmethod
    def from_env(cls) -> "FanoutDefaults":
        """Create from environment variables."""
        timeout = os.getenv("JIJI_FANOUT_TIMEOUT")
        return cls(
            max_concurrency=int(os.getenv("JIJI_FANOUT_MAX_CONCURRENCY", 50)),
            operation_timeout=float(timeout) if timeout else None,
            retry_attempts=int(os.getenv("JIJI_RETRY_ATTEMPTS", 3)),
            retry_base_delay=float(os.getenv("JIJI_RETRY_BASE_DELAY", 1.0)),
        )


@dataclass(frozen=True)
class LockDefaults:
    """
    Defaults for deployment locks.

    Lock files live under the SSH user's home directory on each host.
    """
    state_dir: str = ".jiji"
    lock_file: str = "deploy.lock"
    command_timeout: float = 30.0

    def lock_dir(self, project: str) -> str:
        """Directory holding the lock for a project."""
        return f"{self.state_dir}/{project}"

    def lock_path(self, project: str) -> str:
        """Full lock file path for a project."""
        return f"{self.lock_dir(project)}/{self.lock_file}"

    @classmethod
    def from_env(cls) -> "LockDefaults":
        """Create from environment variables."""
        return cls(
            state_dir=os.getenv("JIJI_STATE_DIR", ".jiji"),
            command_timeout=float(os.getenv("JIJI_LOCK_TIMEOUT", 30.0)),
        )


@dataclass(frozen=True)
class RegistryDefaults:
    """
    Defaults for the Corrosion-backed service registry.
    """
    install_dir: str = "/opt/jiji/corrosion"
    binary_name: str = "corrosion"
    config_name: str = "config.toml"

    # Readiness polling
    sync_timeout_seconds: int = 300
    sync_poll_interval_seconds: float = 2.0
    sync_log_interval_seconds: float = 5.0

    # Heartbeat window for "active" servers
    active_window_ms: int = 300_000

    command_timeout: float = 60.0

    @property
    def binary_path(self) -> str:
        return f"{self.install_dir}/{self.binary_name}"

    @property
    def config_path(self) -> str:
        return f"{self.install_dir}/{self.config_name}"

    @classmethod
    def from_env(cls) -> "RegistryDefaults":
        """Create from environment variables."""
        return cls(
            install_dir=os.getenv("JIJI_CORROSION_DIR", "/opt/jiji/corrosion"),
            sync_timeout_seconds=int(os.getenv("JIJI_CORROSION_SYNC_TIMEOUT", 300)),
            sync_poll_interval_seconds=float(os.getenv("JIJI_CORROSION_SYNC_POLL", 2.0)),
        )


@dataclass(frozen=True)
class GCDefaults:
    """
    Defaults for registry garbage collection.

    Dry-run is the default everywhere; deletes need an explicit force.
    """
    stale_threshold_seconds: int = 180
    offline_threshold_seconds: int = 600
    delete_batch_size: int = 200

    @classmethod
    def from_env(cls) -> "GCDefaults":
        """Create from environment variables."""
        return cls(
            stale_threshold_seconds=int(os.getenv("JIJI_GC_STALE_THRESHOLD", 180)),
            offline_threshold_seconds=int(os.getenv("JIJI_GC_OFFLINE_THRESHOLD", 600)),
        )


@dataclass(frozen=True)
class AuditDefaults:
    """
    Defaults for the per-host audit trail.
    """
    state_dir: str = ".jiji"
    audit_file: str = "audit.txt"
    default_lines: int = 20
    command_timeout: float = 30.0

    def audit_path(self, project: str) -> str:
        """Full audit file path for a project."""
        return f"{self.state_dir}/{project}/{self.audit_file}"

    @classmethod
    def from_env(cls) -> "AuditDefaults":
        """Create from environment variables."""
        return cls(
            state_dir=os.getenv("JIJI_STATE_DIR", ".jiji"),
            default_lines=int(os.getenv("JIJI_AUDIT_LINES", 20)),
        )


@dataclass(frozen=True)
class DnsDefaults:
    """
    Defaults for the DNS projection collaborator.
    """
    install_dir: str = "/opt/jiji/dns"
    update_script: str = "update-hosts.sh"
    service_domain: str = "jiji"
    enabled: bool = True

    @property
    def update_script_path(self) -> str:
        return f"{self.install_dir}/{self.update_script}"

    @classmethod
    def from_env(cls) -> "DnsDefaults":
        """Create from environment variables."""
        return cls(
            install_dir=os.getenv("JIJI_DNS_DIR", "/opt/jiji/dns"),
            service_domain=os.getenv("JIJI_SERVICE_DOMAIN", "jiji"),
            enabled=_env_bool("JIJI_DNS_ENABLED", True),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    ssh: SSHDefaults = field(default_factory=SSHDefaults)
    fanout: FanoutDefaults = field(default_factory=FanoutDefaults)
    lock: LockDefaults = field(default_factory=LockDefaults)
    registry: RegistryDefaults = field(default_factory=RegistryDefaults)
    gc: GCDefaults = field(default_factory=GCDefaults)
    audit: AuditDefaults = field(default_factory=AuditDefaults)
    dns: DnsDefaults = field(default_factory=DnsDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            ssh=SSHDefaults.from_env(),
            fanout=FanoutDefaults.from_env(),
            lock=LockDefaults.from_env(),
            registry=RegistryDefaults.from_env(),
            gc=GCDefaults.from_env(),
            audit=AuditDefaults.from_env(),
            dns=DnsDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "SSHDefaults",
    "FanoutDefaults",
    "LockDefaults",
    "RegistryDefaults",
    "GCDefaults",
    "AuditDefaults",
    "DnsDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
