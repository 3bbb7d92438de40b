# ============================================================================
# AUDIT TRAIL SERVICE
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core - Audit emission and retrieval
# PURPOSE: Append-only per-host audit log, cross-host aggregation
# CREATED: 07 OCT 2026
# ============================================================================
"""
Audit Trail Service

Every host keeps ~/.jiji/<project>/audit.txt. Writes are fire-and-forget:
a failure on one host is logged as a warning and never blocks the other
hosts or the caller. The audit trail is telemetry, not a correctness
mechanism.

Reading seeks from the end of the file counting real entry lines (lines
starting with '['), so "last N" returns N entries even when detail lines
are interleaved.

Cross-host aggregation merges every host's entries and orders them by
timestamp. That order is only as good as the hosts' clock sync.
"""

import logging
import shlex
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from core.config.defaults import get_defaults
from core.contracts import AuditStatus
from core.models.audit import AuditEntry, AuditFilter, parse_audit_lines
from core.validation import validate_project_name
from infrastructure.fanout import FanoutResult, HostError, HostFanout
from infrastructure.remote_shell import Shell

logger = logging.getLogger(__name__)

HEREDOC_MARKER = "JIJI_AUDIT"
FILE_FORMAT = "[TIMESTAMP] [STATUS] ACTION - MESSAGE"

# Action names used by the helper emitters
ACTION_DEPLOYMENT_LOCK = "deployment_lock"
ACTION_SERVER_INIT = "server_init"
ACTION_SERVICE_DEPLOY = "service_deploy"
ACTION_SERVICE_ROLLBACK = "service_rollback"
ACTION_CONTAINER = "container"
ACTION_NETWORK_GC = "network_gc"
ACTION_CUSTOM_COMMAND = "custom_command"


@dataclass
class AuditReadResult:
    """Entries read from one host."""
    host: str
    entries: List[AuditEntry] = field(default_factory=list)
    unparsed: List[str] = field(default_factory=list)


@dataclass
class AuditAggregate:
    """Merged, ordered view across hosts."""
    entries: List[AuditEntry] = field(default_factory=list)
    per_host: List[AuditReadResult] = field(default_factory=list)
    unreachable: List[HostError] = field(default_factory=list)

    @property
    def unparsed_count(self) -> int:
        return sum(len(r.unparsed) for r in self.per_host)


class AuditTrail:
    """Service for writing and reading the per-host audit trail."""

    def __init__(self, project: str, fanout: Optional[HostFanout] = None):
        """
        Initialize audit trail.

        Args:
            project: Project name (scopes the audit file path)
            fanout: HostFanout for per-host writes and reads
        """
        defaults = get_defaults().audit
        self.project = validate_project_name(project)
        self.fanout = fanout or HostFanout.from_defaults()
        self.command_timeout = defaults.command_timeout
        self.default_lines = defaults.default_lines
        self.audit_path = defaults.audit_path(self.project)

    # =========================================================================
    # SHELL COMMANDS
    # =========================================================================

    def _append_command(self, entry: AuditEntry, host: str) -> str:
        path = shlex.quote(self.audit_path)
        directory = shlex.quote(self.audit_path.rsplit("/", 1)[0])
        header = [
            "# Jiji Audit Trail",
            f"# Generated on {datetime.now(timezone.utc).isoformat(timespec='seconds').replace('+00:00', 'Z')}",
            f"# Server: {host}",
            f"# Format: {FILE_FORMAT}",
            "",
        ]
        header_args = " ".join(shlex.quote(line) for line in header)
        body = "\n".join(entry.format_lines())
        return (
            f"mkdir -p {directory} || exit 1\n"
            f"[ -f {path} ] || printf '%s\\n' {header_args} > {path}\n"
            f"cat >> {path} <<'{HEREDOC_MARKER}'\n"
            f"{body}\n"
            f"{HEREDOC_MARKER}"
        )

    def _read_command(self, limit: Optional[int]) -> str:
        path = shlex.quote(self.audit_path)
        if limit is None:
            return f"[ -f {path} ] || exit 0; grep -v -e '^#' -e '^[[:space:]]*$' {path} || true"
        # Start at the line of the Nth-from-last entry so detail lines come along
        return (
            f"[ -f {path} ] || exit 0; "
            f"start=$(grep -n '^\\[' {path} | tail -n {int(limit)} | head -n 1 | cut -d: -f1); "
            f"[ -n \"$start\" ] && tail -n +\"$start\" {path} | grep -v -e '^#' -e '^[[:space:]]*$' || true"
        )

    # =========================================================================
    # CORE EMIT METHOD
    # =========================================================================

    async def log(
        self,
        shells: Sequence[Shell],
        action: str,
        status: AuditStatus,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[FanoutResult]:
        """
        Append an entry on every host. Fire-and-forget - logs errors but doesn't raise.

        Args:
            shells: Hosts to write to
            action: Action name (upper-cased in the file)
            status: Entry status
            message: Single-line message
            details: Optional JSON-serializable details

        Returns:
            FanoutResult of the writes, or None if the write could not start
        """
        try:
            entry = AuditEntry.create(action=action, status=status, message=message, details=details)

            async def _append(shell: Shell) -> str:
                await shell.run(self._append_command(entry, shell.host), timeout=self.command_timeout)
                return shell.host

            result = await self.fanout.map(shells, _append)
            for host_error in result.host_errors:
                logger.warning(f"Failed to write audit entry {entry.action} on {host_error}")
            logger.debug(f"Audit {entry.action} [{status.value}] written to {result.success_count} host(s)")
            return result

        except Exception as e:
            # Fire-and-forget - log but don't raise
            logger.warning(f"Failed to write audit entry {action}: {e}")
            return None

    # =========================================================================
    # READING
    # =========================================================================

    async def read(self, shell: Shell, limit: Optional[int] = None) -> AuditReadResult:
        """
        Last `limit` entries from one host (all entries when None).

        Raises:
            CommandError: If the host could not be read
        """
        result = await shell.run(self._read_command(limit), timeout=self.command_timeout)
        entries, unparsed = parse_audit_lines(result.stdout.splitlines(), host=shell.host)
        if limit is not None and len(entries) > limit:
            entries = entries[-limit:]
        if unparsed:
            logger.debug(f"{len(unparsed)} unparsable audit line(s) on {shell.host}")
        return AuditReadResult(host=shell.host, entries=entries, unparsed=unparsed)

    async def read_raw(self, shell: Shell, limit: Optional[int] = None) -> List[str]:
        """Entry and detail lines as stored, comments and blanks removed."""
        result = await shell.run(self._read_command(limit), timeout=self.command_timeout)
        return result.stdout.splitlines()

    async def aggregate(
        self,
        shells: Sequence[Shell],
        limit: Optional[int] = None,
        audit_filter: Optional[AuditFilter] = None,
    ) -> AuditAggregate:
        """
        Merge entries from every host in timestamp order.

        Filtering happens before the final cut, so with a filter each host's
        whole file is read. Unreachable hosts are reported, not fatal.

        Args:
            shells: Hosts to read
            limit: Keep the last N merged entries (None = all)
            audit_filter: Optional entry filter
        """
        per_host_limit = None if audit_filter else limit
        result = await self.fanout.map(shells, lambda shell: self.read(shell, per_host_limit))

        for host_error in result.host_errors:
            logger.warning(f"Could not read audit trail on {host_error}")

        merged: List[AuditEntry] = []
        for read_result in result.results:
            merged.extend(read_result.entries)

        # Stable: equal timestamps keep host order
        merged.sort(key=lambda entry: entry.parsed_timestamp)

        if audit_filter:
            merged = [entry for entry in merged if audit_filter.matches(entry)]
        if limit is not None:
            merged = merged[-limit:] if limit > 0 else []

        return AuditAggregate(entries=merged, per_host=list(result.results), unreachable=list(result.host_errors))

    # =========================================================================
    # LOCK EVENTS
    # =========================================================================

    async def log_lock_acquired(self, shells: Sequence[Shell], message: str, acquired_by: Optional[str] = None) -> None:
        await self.log(
            shells, ACTION_DEPLOYMENT_LOCK, AuditStatus.SUCCESS,
            f"Lock acquired: {message}",
            {"hosts": [s.host for s in shells], "acquiredBy": acquired_by} if acquired_by else None,
        )

    async def log_lock_released(self, shells: Sequence[Shell]) -> None:
        await self.log(shells, ACTION_DEPLOYMENT_LOCK, AuditStatus.SUCCESS, "Lock released")

    async def log_lock_failure(self, shells: Sequence[Shell], reason: str) -> None:
        await self.log(shells, ACTION_DEPLOYMENT_LOCK, AuditStatus.FAILED, f"Lock operation failed: {reason}")

    # =========================================================================
    # SERVER / SERVICE EVENTS
    # =========================================================================

    async def log_server_init(
        self,
        shells: Sequence[Shell],
        status: AuditStatus,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        default_messages = {
            AuditStatus.STARTED: "Server initialization started",
            AuditStatus.SUCCESS: "Server initialization completed",
            AuditStatus.FAILED: "Server initialization failed",
        }
        await self.log(shells, ACTION_SERVER_INIT, status, message or default_messages.get(status, ""), details)

    async def log_service_deploy(
        self,
        shells: Sequence[Shell],
        service: str,
        status: AuditStatus,
        version: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        message = f"Deploy {service}" + (f" version {version}" if version else "") + f": {status.value}"
        await self.log(shells, ACTION_SERVICE_DEPLOY, status, message, details)

    async def log_service_rollback(
        self,
        shells: Sequence[Shell],
        service: str,
        to_version: str,
        status: AuditStatus,
    ) -> None:
        await self.log(
            shells, ACTION_SERVICE_ROLLBACK, status,
            f"Rollback {service} to {to_version}: {status.value}",
            {"service": service, "version": to_version},
        )

    async def log_container_event(
        self,
        shells: Sequence[Shell],
        event: str,
        container_id: str,
        service: Optional[str] = None,
        status: AuditStatus = AuditStatus.SUCCESS,
    ) -> None:
        message = f"Container {container_id[:12]} {event}" + (f" ({service})" if service else "")
        await self.log(shells, f"{ACTION_CONTAINER}_{event}", status, message)

    async def log_gc_run(self, shells: Sequence[Shell], summary: str, details: Dict[str, Any], dry_run: bool) -> None:
        await self.log(
            shells, ACTION_NETWORK_GC,
            AuditStatus.WARNING if dry_run else AuditStatus.SUCCESS,
            ("Dry run: " if dry_run else "") + summary,
            details,
        )

    async def log_custom_command(self, shells: Sequence[Shell], command: str, status: AuditStatus) -> None:
        await self.log(shells, ACTION_CUSTOM_COMMAND, status, f"Executed: {command}")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["AuditTrail", "AuditReadResult", "AuditAggregate"]
