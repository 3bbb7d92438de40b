# ============================================================================
# DISTRIBUTED LOCKING SERVICE
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Infrastructure - Concurrency control
# PURPOSE: Advisory deployment lock replicated as one file per host
# CREATED: 04 OCT 2026
# ============================================================================
"""
Distributed Locking Service

A deployment lock is one JSON file per targeted host at
~/.jiji/<project>/deploy.lock. There is no cluster-wide lock object and no
consensus: the cluster counts as locked when ANY targeted host reports
LOCKED.

Acquisition protocol:
- Read status on every host (fanout)
- Any LOCKED host and not forced: abort, write nothing, report conflicts
- Otherwise write the record on every host
  - non-forced writes are create-exclusive (noclobber / O_EXCL), so two
    operators racing past the status check cannot both succeed on a host
  - forced writes go to a temp file and are renamed over the old lock
- Any write failed: release on the hosts that did succeed (rollback)

Status is fail-open: a missing, unreadable or corrupt lock file reads as
UNLOCKED. Corrupt content is still surfaced (LockStatus.parse_error plus a
warning) so an operator can see it.

Usage:
    from infrastructure.locking import DistributedLock

    lock = DistributedLock(project="shop")

    result = await lock.acquire("deploy v2", shells)
    if not result.acquired:
        for conflict in result.conflicts:
            print(conflict.host, conflict.message, conflict.acquired_by)

    async with lock.hold("deploy v2", shells):
        await deploy()
"""

import getpass
import logging
import os
import shlex
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from __version__ import __version__
from core.config.defaults import get_defaults
from core.contracts import LockState
from core.errors import CommandError, ContentionError
from core.logging import log_checkpoint, log_context
from core.models.lock import LockRecord, LockStatus
from core.validation import validate_project_name
from infrastructure.fanout import FanoutResult, HostError, HostFanout
from infrastructure.remote_shell import Shell

logger = logging.getLogger(__name__)

HEREDOC_MARKER = "JIJI_LOCK"

ProcessProbe = Callable[[Shell, int], Awaitable[bool]]


# ============================================================================
# RESULTS
# ============================================================================

class LockNotAcquired(ContentionError):
    """Raised by DistributedLock.hold() when the lock could not be taken."""


@dataclass
class LockAcquireResult:
    """
    Outcome of a lock acquisition.

    Attributes:
        acquired: True only if every targeted host persisted the record
        statuses: Pre-acquisition status per host
        conflicts: Hosts already LOCKED (non-empty means nothing was written
                   unless forced)
        locked_hosts: Hosts where the record was written
        host_errors: Per-host write failures
        rolled_back: Hosts released again after a partial failure
        forced: Whether existing locks were overridden
    """
    acquired: bool
    statuses: List[LockStatus] = field(default_factory=list)
    conflicts: List[LockStatus] = field(default_factory=list)
    locked_hosts: List[str] = field(default_factory=list)
    host_errors: List[HostError] = field(default_factory=list)
    rolled_back: List[str] = field(default_factory=list)
    forced: bool = False

    @property
    def reason(self) -> str:
        if self.acquired:
            return f"Lock acquired on {len(self.locked_hosts)} host(s)"
        if self.conflicts and not self.forced:
            return f"Lock already held on {', '.join(c.host for c in self.conflicts)}"
        failed = ", ".join(str(e) for e in self.host_errors)
        return f"Lock acquisition failed: {failed}"


@dataclass
class LockReleaseResult:
    """Per-host outcome of a release. Release never raises."""
    released: List[str] = field(default_factory=list)
    already_absent: List[str] = field(default_factory=list)
    host_errors: List[HostError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.host_errors


# ============================================================================
# DISTRIBUTED LOCK
# ============================================================================

class DistributedLock:
    """
    Per-host file lock for one project.

    Args:
        project: Project name (scopes the lock path)
        fanout: HostFanout to run per-host operations through
        acquired_by: Recorded owner (defaults to the local user)
        command_timeout: Per-command timeout in seconds
    """

    def __init__(
        self,
        project: str,
        fanout: Optional[HostFanout] = None,
        acquired_by: Optional[str] = None,
        command_timeout: Optional[float] = None,
    ):
        defaults = get_defaults().lock
        self.project = validate_project_name(project)
        self.fanout = fanout or HostFanout.from_defaults()
        self.acquired_by = acquired_by or getpass.getuser()
        self.command_timeout = command_timeout or defaults.command_timeout
        self.lock_dir = defaults.lock_dir(self.project)
        self.lock_path = defaults.lock_path(self.project)

    # =========================================================================
    # SHELL COMMANDS
    # =========================================================================

    def _read_command(self) -> str:
        return f"cat {shlex.quote(self.lock_path)} 2>/dev/null || true"

    def _write_command(self, record: LockRecord, force: bool) -> str:
        lock_dir = shlex.quote(self.lock_dir)
        lock_path = shlex.quote(self.lock_path)
        body = record.to_json()

        if force:
            tmp_path = lock_path + ".tmp.$$"
            return (
                f"mkdir -p {lock_dir} || exit 1\n"
                f"cat > {tmp_path} <<'{HEREDOC_MARKER}'\n"
                f"{body}\n"
                f"{HEREDOC_MARKER}\n"
                f"mv -f {tmp_path} {lock_path} && echo acquired"
            )

        # noclobber makes the redirection O_CREAT|O_EXCL
        return (
            f"mkdir -p {lock_dir} || exit 1\n"
            f"if (set -C; cat > {lock_path}) 2>/dev/null <<'{HEREDOC_MARKER}'\n"
            f"{body}\n"
            f"{HEREDOC_MARKER}\n"
            f"then echo acquired\n"
            f"elif [ -e {lock_path} ]; then echo exists; cat {lock_path}\n"
            f"else echo 'cannot create lock file' >&2; exit 1\n"
            f"fi"
        )

    def _release_command(self) -> str:
        lock_path = shlex.quote(self.lock_path)
        return f"if [ -f {lock_path} ]; then rm -f {lock_path} && echo released; else echo absent; fi"

    # =========================================================================
    # PER-HOST OPERATIONS
    # =========================================================================

    async def _read(self, shell: Shell) -> LockStatus:
        result = await shell.run(self._read_command(), timeout=self.command_timeout)
        status = LockStatus.from_content(shell.host, result.stdout)
        if status.parse_error:
            logger.warning(f"Corrupt lock file on {shell.host} treated as unlocked: {status.parse_error}")
        return status

    async def _write(self, shell: Shell, message: str, force: bool) -> str:
        record = LockRecord.create(
            message=message,
            host=shell.host,
            acquired_by=self.acquired_by,
            pid=os.getpid(),
            version=__version__,
        )
        result = await shell.run(self._write_command(record, force), timeout=self.command_timeout)
        outcome, _, existing = result.stdout.partition("\n")
        if outcome.strip() != "exists":
            return shell.host

        # Status reads these files as unlocked, so they must not block a write
        current = LockStatus.from_content(shell.host, existing)
        if current.locked:
            raise ContentionError("Lock file created concurrently by another operator", host=shell.host)
        reason = current.parse_error or "no lock held"
        logger.warning(f"Replacing lock file on {shell.host} that holds no lock ({reason})")
        await shell.run(self._write_command(record, force=True), timeout=self.command_timeout)
        return shell.host

    async def _release(self, shell: Shell) -> str:
        result = await shell.run(self._release_command(), timeout=self.command_timeout)
        outcome = result.stdout.strip()
        if outcome not in ("released", "absent"):
            raise CommandError(
                f"Unexpected release output: {outcome[:100]!r}",
                host=shell.host,
                command=result.command,
            )
        return outcome

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def status(self, shells: Sequence[Shell]) -> List[LockStatus]:
        """
        Lock status on every host, in input order.

        Fail-open: a host that cannot be read reports UNLOCKED with error set.
        """
        result = await self.fanout.map(shells, self._read)
        by_host: Dict[str, LockStatus] = {s.host: s for s in result.results}
        for host_error in result.host_errors:
            logger.warning(f"Could not read lock status on {host_error.host}: {host_error.message}")
            by_host[host_error.host] = LockStatus.unlocked(host_error.host, error=host_error.message)
        return [by_host[shell.host] for shell in shells]

    async def is_locked(self, shells: Sequence[Shell]) -> bool:
        """True iff any host reports LOCKED."""
        return any(s.locked for s in await self.status(shells))

    async def acquire(self, message: str, shells: Sequence[Shell], force: bool = False) -> LockAcquireResult:
        """
        Acquire the lock on every host.

        Args:
            message: Why the lock is held (shown to other operators)
            shells: Target hosts
            force: Override existing locks

        Returns:
            LockAcquireResult; acquired is True only if every host persisted
            the record
        """
        with log_context(operation="lock_acquire", project=self.project):
            statuses = await self.status(shells)
            conflicts = [s for s in statuses if s.state == LockState.LOCKED]
            log_checkpoint("lock_status_checked", {
                "hosts": len(shells),
                "conflicts": [c.host for c in conflicts],
            }, logger=logger)

            if conflicts and not force:
                logger.warning(
                    f"Lock for {self.project} already held on {len(conflicts)} host(s): "
                    f"{', '.join(c.host for c in conflicts)}"
                )
                return LockAcquireResult(acquired=False, statuses=statuses, conflicts=conflicts)

            if conflicts:
                logger.warning(f"Forcing lock over existing locks on {', '.join(c.host for c in conflicts)}")

            writes: FanoutResult = await self.fanout.map(
                shells, lambda shell: self._write(shell, message, force)
            )

            if writes.all_succeeded:
                log_checkpoint("lock_acquired", {"hosts": writes.succeeded_hosts, "forced": force}, logger=logger)
                logger.info(f"Lock acquired for {self.project} on {writes.success_count} host(s)")
                return LockAcquireResult(
                    acquired=True,
                    statuses=statuses,
                    conflicts=conflicts,
                    locked_hosts=list(writes.succeeded_hosts),
                    forced=force,
                )

            logger.error(writes.summary("Lock acquisition"))
            rolled_back = await self._rollback(shells, writes.succeeded_hosts)
            return LockAcquireResult(
                acquired=False,
                statuses=statuses,
                conflicts=conflicts,
                locked_hosts=[],
                host_errors=writes.host_errors,
                rolled_back=rolled_back,
                forced=force,
            )

    async def _rollback(self, shells: Sequence[Shell], hosts: Sequence[str]) -> List[str]:
        targets = [shell for shell in shells if shell.host in set(hosts)]
        if not targets:
            return []
        log_checkpoint("lock_rollback_started", {"hosts": [s.host for s in targets]}, logger=logger)
        released = await self.release(targets)
        if released.host_errors:
            logger.error(
                "Rollback left lock files behind on: "
                + ", ".join(str(e) for e in released.host_errors)
            )
        return released.released + released.already_absent

    async def release(self, shells: Sequence[Shell]) -> LockReleaseResult:
        """
        Remove the lock file on every host. Best-effort; never raises.

        Releasing a host that holds no lock is not an error (already_absent).
        """
        with log_context(operation="lock_release", project=self.project):
            result = await self.fanout.map(shells, self._release)

            outcome = LockReleaseResult(host_errors=list(result.host_errors))
            for host, state in result.items():
                if state == "released":
                    outcome.released.append(host)
                else:
                    outcome.already_absent.append(host)

            for host_error in result.host_errors:
                logger.warning(f"Failed to release lock on {host_error}")
            logger.info(result.summary("Lock release"))
            return outcome

    async def cleanup_stale_locks(
        self,
        shells: Sequence[Shell],
        probe: Optional[ProcessProbe] = None,
    ) -> List[str]:
        """
        Release locks whose recorded process is gone.

        The pid is checked by probe(shell, pid), which defaults to asking
        the lock's own host. A pid only means something on the machine that
        acquired the lock, so pass a local probe when the lock was taken from
        this machine.

        Returns:
            Hosts whose lock was released
        """
        probe = probe or (lambda shell, pid: shell.process_running(pid))
        statuses = await self.status(shells)
        shell_by_host = {shell.host: shell for shell in shells}

        stale: List[Shell] = []
        for status in statuses:
            if not status.locked or not status.record or not status.record.pid:
                continue
            shell = shell_by_host[status.host]
            try:
                running = await probe(shell, status.record.pid)
            except Exception as e:
                logger.warning(f"Could not probe pid {status.record.pid} on {status.host}: {e}")
                continue
            if not running:
                logger.info(f"Lock on {status.host} held by dead pid {status.record.pid}, releasing")
                stale.append(shell)

        if not stale:
            return []
        released = await self.release(stale)
        return released.released

    @asynccontextmanager
    async def hold(self, message: str, shells: Sequence[Shell], force: bool = False):
        """
        Acquire for the duration of a block, always releasing afterwards.

        Raises:
            LockNotAcquired: On conflict or failed acquisition
        """
        result = await self.acquire(message, shells, force=force)
        if not result.acquired:
            raise LockNotAcquired(result.reason, conflicts=result.conflicts)
        try:
            yield result
        finally:
            await self.release(shells)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "DistributedLock",
    "LockAcquireResult",
    "LockReleaseResult",
    "LockNotAcquired",
]
