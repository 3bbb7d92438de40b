# ============================================================================
# CONNECTION POOL
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Infrastructure - SSH connection management
# PURPOSE: Connect to many hosts with bounded concurrency and per-host retry
# LAST_REVIEWED: 12 OCT 2026
# EXPORTS: ConnectionPool
# DEPENDENCIES: asyncio
# ============================================================================
"""
Connection Pool

Opens one RemoteShell per host. Connection attempts are bounded by the
pool's own semaphore (default 30), sized independently from command
fanout, so a large cluster does not open hundreds of SSH handshakes at
once.

Usage:
    async with ConnectionPool(settings) as pool:
        connected = await pool.connect_all(hosts)
        for host_error in connected.host_errors:
            logger.warning(f"Unreachable: {host_error}")
        shells = connected.results
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence

from core.config.defaults import get_defaults
from infrastructure.fanout import FanoutResult, HostFanout
from infrastructure.remote_shell import RemoteShell, Shell, SSHSettings

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Per-invocation set of connected shells, keyed by host.

    Args:
        settings: SSH settings shared by every host
        max_connections: Concurrent connection attempts
        connect_retries: Attempts per host
        retry_delay: First retry delay, doubled per attempt
        shell_factory: Builds the shell for a host (RemoteShell by default)
    """

    def __init__(
        self,
        settings: Optional[SSHSettings] = None,
        max_connections: Optional[int] = None,
        connect_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        shell_factory: Optional[Callable[[str], Shell]] = None,
    ):
        defaults = get_defaults().ssh
        self.settings = settings or SSHSettings()
        self.max_connections = max_connections or defaults.max_connections
        self.connect_retries = connect_retries or defaults.connect_retries
        self.retry_delay = retry_delay if retry_delay is not None else defaults.connect_retry_delay
        self._shell_factory = shell_factory or (lambda host: RemoteShell(host, self.settings))
        self._semaphore = asyncio.Semaphore(self.max_connections)
        self._shells: Dict[str, Shell] = {}
        self._in_flight = 0

    async def connect_all(self, hosts: Sequence[str]) -> FanoutResult:
        """
        Connect to every host.

        Returns:
            FanoutResult whose results are connected shells (host order
            preserved) and whose host_errors are the unreachable hosts
        """
        fanout = HostFanout()
        result = await fanout.map(list(hosts), self._connect_one, host_of=lambda host: host)
        logger.info(
            f"Connected to {result.success_count}/{result.total_count} host(s)"
            + (f", unreachable: {', '.join(result.failed_hosts)}" if result.host_errors else "")
        )
        return result

    async def _connect_one(self, host: str) -> Shell:
        if host in self._shells:
            return self._shells[host]

        async with self._semaphore:
            self._in_flight += 1
            try:
                shell = self._shell_factory(host)
                await shell.connect(retries=self.connect_retries, retry_delay=self.retry_delay)
            finally:
                self._in_flight -= 1

        self._shells[host] = shell
        return shell

    def get(self, host: str) -> Optional[Shell]:
        return self._shells.get(host)

    @property
    def shells(self) -> List[Shell]:
        return list(self._shells.values())

    def stats(self) -> Dict[str, int]:
        return {
            "max_connections": self.max_connections,
            "connected": len(self._shells),
            "in_flight": self._in_flight,
            "available": self.max_connections - self._in_flight,
        }

    async def close(self) -> None:
        """Close every shell; failures are logged, never raised."""
        shells, self._shells = list(self._shells.values()), {}
        if not shells:
            return
        result = await HostFanout().map(shells, lambda shell: shell.close())
        for host_error in result.host_errors:
            logger.debug(f"Error closing connection to {host_error}")

    async def __aenter__(self) -> "ConnectionPool":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["ConnectionPool"]
