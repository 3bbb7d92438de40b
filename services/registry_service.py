# ============================================================================
# SERVICE REGISTRY
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Service - Container registration and discovery
# PURPOSE: Register containers in the replicated registry and project DNS
# CREATED: 07 OCT 2026
# ============================================================================
"""
Service Registry

Container (de)registration on top of RegistryRepository, plus the DNS
projection side effects.

Consistency:
- Any reachable host answers reads, eventually consistent
- register_container_cluster_wide() issues the same write to every
  reachable host so a new container resolves everywhere immediately
  instead of waiting for gossip
- DNS projection is best-effort: failures are logged, never raised
- With an AuditTrail, (de)registrations are recorded on the writing host

Usage:
    registry = ServiceRegistry(project="shop")
    await registry.register_container_in_network(
        shell, service="web", server_id="srv-1",
        container_id="3f2a9c...", ip="10.210.1.5",
    )
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from core.contracts import ContainerEngine
from core.models.registry import ContainerRecord
from core.validation import validate_container_id, validate_ip, validate_server_id, validate_service_name
from infrastructure.fanout import FanoutResult, HostFanout
from infrastructure.remote_shell import Shell
from repositories.corrosion import CorrosionClient
from repositories.registry_repo import RegistryRepository, now_ms
from services.audit_service import AuditTrail
from services.dns import DnsProjection

logger = logging.getLogger(__name__)

IP_INSPECT_FORMAT = "{{range .NetworkSettings.Networks}}{{.IPAddress}}{{end}}"


@dataclass
class ContainerRegistration:
    """Everything needed to register one container."""
    service: str
    server_id: str
    container_id: str
    ip: str
    healthy: bool = True
    instance_id: Optional[str] = None
    started_at: Optional[int] = None

    def validate(self) -> None:
        """Raise UnsafeValueError before anything is written."""
        validate_service_name(self.service)
        validate_server_id(self.server_id)
        validate_container_id(self.container_id)
        validate_ip(self.ip, allow_empty=True)
        if self.instance_id is not None:
            validate_container_id(self.instance_id)

    def to_record(self) -> ContainerRecord:
        return ContainerRecord(
            id=self.container_id,
            service=self.service,
            server_id=self.server_id,
            ip=self.ip,
            healthy=self.healthy,
            instance_id=self.instance_id,
            started_at=self.started_at or now_ms(),
        )


class ServiceRegistry:
    """Container registration across the cluster."""

    def __init__(
        self,
        project: str,
        dns: Optional[DnsProjection] = None,
        fanout: Optional[HostFanout] = None,
        repository_factory: Optional[Callable[[Shell], RegistryRepository]] = None,
        audit: Optional[AuditTrail] = None,
    ):
        """
        Args:
            project: Project that owns the services
            dns: DNS projection (None disables the side effects)
            fanout: HostFanout for cluster-wide writes
            repository_factory: Builds a repository for a host's shell
            audit: Audit trail for container events (None disables)
        """
        self.project = project
        self.dns = dns
        self.fanout = fanout or HostFanout.from_defaults()
        self.audit = audit
        self._repository_factory = repository_factory or (lambda shell: RegistryRepository(CorrosionClient(shell)))

    def repository(self, shell: Shell) -> RegistryRepository:
        return self._repository_factory(shell)

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    async def register_container_in_network(
        self,
        shell: Shell,
        service: str,
        server_id: str,
        container_id: str,
        ip: str,
        healthy: bool = True,
        instance_id: Optional[str] = None,
        started_at: Optional[int] = None,
    ) -> ContainerRecord:
        """
        Register the service (if new) and the container through one host.

        Raises:
            UnsafeValueError: If a value fails validation
            CommandError: If the registry write fails
        """
        registration = ContainerRegistration(
            service=service,
            server_id=server_id,
            container_id=container_id,
            ip=ip,
            healthy=healthy,
            instance_id=instance_id,
            started_at=started_at,
        )
        record = await self._register(shell, registration)
        logger.info(f"Registered {service} container {container_id[:12]} ({ip}) on {server_id}")
        if self.audit:
            await self.audit.log_container_event([shell], "registered", container_id, service)

        if self.dns and self.dns.enabled:
            await self._project_dns(shell, lambda: self.dns.register_hostname(service, instance_id))
        return record

    async def _register(self, shell: Shell, registration: ContainerRegistration) -> ContainerRecord:
        registration.validate()
        repo = self.repository(shell)
        record = registration.to_record()
        await repo.register_service(registration.service, self.project)
        await repo.register_container(record)
        return record

    async def unregister_container_from_network(
        self,
        shell: Shell,
        container_id: str,
        service: Optional[str] = None,
        instance_id: Optional[str] = None,
    ) -> None:
        await self.repository(shell).unregister_container(container_id)
        logger.info(f"Unregistered container {container_id[:12]}")
        if self.audit:
            await self.audit.log_container_event([shell], "unregistered", container_id, service)

        if service and self.dns and self.dns.enabled:
            await self._project_dns(shell, lambda: self.dns.unregister_hostname(service, instance_id))

    async def register_container_cluster_wide(
        self,
        shells: Sequence[Shell],
        registration: ContainerRegistration,
    ) -> FanoutResult:
        """
        Issue the same registration on every host.

        Per-host failures are logged as warnings and returned; they do not
        raise.
        """
        result = await self.fanout.map(shells, lambda shell: self._register(shell, registration))
        if result.host_errors:
            for host_error in result.host_errors:
                logger.warning(f"Cluster-wide registration of {registration.container_id[:12]} failed on {host_error}")
            logger.warning(result.summary(f"Registration of {registration.service}"))
        return result

    async def _project_dns(self, shell: Shell, names: Callable[[], object]) -> None:
        try:
            names()
            await self.dns.trigger_hosts_update(shell)
        except Exception as e:
            logger.warning(f"DNS update on {shell.host} failed (registry write kept): {e}")

    # =========================================================================
    # HEALTH / INSPECTION
    # =========================================================================

    async def update_container_health(self, shell: Shell, container_id: str, healthy: bool) -> None:
        await self.repository(shell).update_container_health(container_id, healthy)
        logger.debug(f"Container {container_id[:12]} marked {'healthy' if healthy else 'unhealthy'}")

    async def get_container_ip(
        self,
        shell: Shell,
        container_id: str,
        engine: ContainerEngine = ContainerEngine.DOCKER,
    ) -> Optional[str]:
        """
        Container IP as reported by the engine on its host.

        Returns:
            IP address, or None if the container has none or inspect failed
        """
        validate_container_id(container_id)
        command = f"{ContainerEngine(engine).value} inspect -f '{IP_INSPECT_FORMAT}' {container_id}"
        result = await shell.execute(command, timeout=30)
        if not result.success:
            logger.warning(f"Could not inspect {container_id[:12]} on {shell.host}: {result.stderr.strip()}")
            return None

        ip = result.stdout.strip()
        if not ip:
            return None
        try:
            return validate_ip(ip)
        except ValueError:
            logger.warning(f"Engine reported an invalid IP for {container_id[:12]}: {ip!r}")
            return None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["ServiceRegistry", "ContainerRegistration"]
