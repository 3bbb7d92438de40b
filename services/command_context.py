# ============================================================================
# COMMAND CONTEXT
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Service - Per-invocation wiring
# PURPOSE: Config + connections + services for one CLI command
# CREATED: 09 OCT 2026
# ============================================================================
"""
Command Context

One CLI invocation = one CommandContext. It loads the deploy file,
resolves target hosts, connects to them and hands out the services that
operate on the connected shells. Connections are closed on exit.

Partial connectivity is allowed by default: unreachable hosts are logged
and skipped. The context refuses to start only when no host is reachable
(or when allow_partial=False and any host is).

Usage:
    async with CommandContext.open(config_path, services=["web"]) as ctx:
        statuses = await ctx.lock.status(ctx.shells)
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable, List, Optional, Sequence

from core.config.loader import DeployConfig, load_config
from core.errors import ConnectivityError
from infrastructure.connection_pool import ConnectionPool
from infrastructure.fanout import HostError, HostFanout
from infrastructure.locking import DistributedLock
from infrastructure.remote_shell import Shell, SSHSettings
from repositories.corrosion import CorrosionClient
from repositories.registry_repo import RegistryRepository
from services.audit_service import AuditTrail
from services.dns import DnsProjection
from services.registry_service import ServiceRegistry

logger = logging.getLogger(__name__)


class CommandContext:
    """Connected shells plus the services built on them."""

    def __init__(
        self,
        config: DeployConfig,
        hosts: Sequence[str],
        pool: ConnectionPool,
        fanout: Optional[HostFanout] = None,
    ):
        self.config = config
        self.hosts = list(hosts)
        self.pool = pool
        self.fanout = fanout or HostFanout.from_defaults()
        self.unreachable: List[HostError] = []

        self.lock = DistributedLock(config.project, fanout=self.fanout)
        self.audit = AuditTrail(config.project, fanout=self.fanout)
        self.dns = DnsProjection(config.project, service_domain=config.network.service_domain)
        self.registry = ServiceRegistry(config.project, dns=self.dns, fanout=self.fanout, audit=self.audit)

    @property
    def project(self) -> str:
        return self.config.project

    @property
    def shells(self) -> List[Shell]:
        """Connected shells in configured host order."""
        return [shell for shell in (self.pool.get(h) for h in self.hosts) if shell is not None]

    def repository(self, shell: Shell) -> RegistryRepository:
        return RegistryRepository(CorrosionClient(shell))

    def repositories(self) -> List[RegistryRepository]:
        return [self.repository(shell) for shell in self.shells]

    async def connect(self, allow_partial: bool = True) -> None:
        """
        Connect to every target host.

        Raises:
            ConnectivityError: No host reachable, or any host unreachable
                when allow_partial is False
        """
        result = await self.pool.connect_all(self.hosts)
        self.unreachable = list(result.host_errors)

        for host_error in self.unreachable:
            logger.warning(f"Skipping unreachable host {host_error}")

        if result.all_failed:
            raise ConnectivityError(f"None of the {len(self.hosts)} target host(s) is reachable")
        if self.unreachable and not allow_partial:
            raise ConnectivityError(f"Unreachable host(s): {', '.join(result.failed_hosts)}")

    async def close(self) -> None:
        await self.pool.close()

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        config_path: Optional[str] = None,
        services: Optional[Sequence[str]] = None,
        hosts: Optional[Sequence[str]] = None,
        allow_partial: bool = True,
        shell_factory: Optional[Callable[[str], Shell]] = None,
        config: Optional[DeployConfig] = None,
    ):
        """
        Load config, connect and yield a ready context.

        Args:
            config_path: Deploy file (default $JIJI_CONFIG or .jiji/deploy.yml)
            services: Restrict to these services' hosts
            hosts: Restrict to these hosts
            allow_partial: Continue when some hosts are unreachable
            shell_factory: Shell builder override (tests, local runs)
            config: Already-loaded config (skips config_path)
        """
        config = config or load_config(config_path)
        target_hosts = config.resolve_hosts(services=services, hosts=hosts)
        pool = ConnectionPool(
            settings=SSHSettings.from_config(config.ssh),
            max_connections=config.ssh.max_connections,
            shell_factory=shell_factory,
        )
        context = cls(config, target_hosts, pool)
        try:
            await context.connect(allow_partial=allow_partial)
            yield context
        finally:
            await context.close()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["CommandContext"]
