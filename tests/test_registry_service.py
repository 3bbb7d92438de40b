# ============================================================================
# SERVICE REGISTRY TESTS
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Tests - Registration, DNS projection and topology
# PURPOSE: Verify registration side effects and topology loading
# CREATED: 11 OCT 2026
# ============================================================================
"""
Service Registry Tests

Covers:
1. register_container_in_network writes service + container rows
2. DNS projection runs after registration; its failure keeps the write
3. Cluster-wide registration reports per-host failures without raising
4. Unregistration and health updates; container events reach the audit trail
5. get_container_ip parses engine output and rejects garbage
6. DNS hostnames
7. load_topology: uninitialized -> None, initialized -> topology,
   unreadable host -> None; load_topology_from_any falls through

Run with:
    pytest tests/test_registry_service.py -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.config.defaults import DnsDefaults
from core.contracts import ContainerEngine, DiscoveryMode
from core.errors import CommandError, UnsafeValueError
from core.models.registry import ServerRecord
from infrastructure.remote_shell import CommandResult
from repositories.corrosion import CorrosionClient
from repositories.registry_repo import RegistryRepository
from services.audit_service import AuditTrail
from services.dns import DnsProjection
from services.registry_service import ContainerRegistration, ServiceRegistry
from services.topology_service import load_topology, load_topology_from_any

from conftest import SqliteRegistryShell


CID = "3f2a9c0e4b5d"


def fresh_registry_shell(host):
    shell = SqliteRegistryShell(host=host)
    asyncio.run(RegistryRepository(CorrosionClient(shell)).apply_schema())
    return shell


# ============================================================================
# REGISTRATION
# ============================================================================

class TestRegistration:

    def test_register_writes_service_and_container(self, registry, registry_shell):
        service_registry = ServiceRegistry("shop")

        record = asyncio.run(service_registry.register_container_in_network(
            registry_shell, service="web", server_id="srv-1", container_id=CID, ip="10.210.1.5",
            instance_id="blue", started_at=1000,
        ))

        assert record.id == CID
        assert registry_shell.conn.execute("SELECT name, project FROM services").fetchall() == [("web", "shop")]
        row = registry_shell.conn.execute("SELECT service, server_id, ip, instance_id, started_at FROM containers").fetchone()
        assert row == ("web", "srv-1", "10.210.1.5", "blue", 1000)

    def test_invalid_values_never_reach_the_registry(self, registry, registry_shell):
        before = len(registry_shell.statements)
        with pytest.raises(UnsafeValueError):
            asyncio.run(ServiceRegistry("shop").register_container_in_network(
                registry_shell, service="web", server_id="srv-1", container_id="x'; DROP TABLE containers;--",
                ip="10.210.1.5",
            ))
        assert len(registry_shell.statements) == before

    def test_dns_update_triggered(self, registry, registry_shell):
        dns = DnsProjection("shop")
        dns.trigger_hosts_update = AsyncMock()

        asyncio.run(ServiceRegistry("shop", dns=dns).register_container_in_network(
            registry_shell, service="web", server_id="srv-1", container_id=CID, ip="10.210.1.5",
        ))

        dns.trigger_hosts_update.assert_awaited_once_with(registry_shell)

    def test_dns_failure_keeps_registration(self, registry, registry_shell):
        dns = DnsProjection("shop")
        dns.trigger_hosts_update = AsyncMock(side_effect=CommandError("update-hosts.sh: not found"))

        asyncio.run(ServiceRegistry("shop", dns=dns).register_container_in_network(
            registry_shell, service="web", server_id="srv-1", container_id=CID, ip="10.210.1.5",
        ))

        assert registry_shell.conn.execute("SELECT COUNT(*) FROM containers").fetchone() == (1,)

    def test_dns_disabled(self, registry, registry_shell):
        dns = DnsProjection("shop", defaults=DnsDefaults(enabled=False))
        dns.trigger_hosts_update = AsyncMock()

        asyncio.run(ServiceRegistry("shop", dns=dns).register_container_in_network(
            registry_shell, service="web", server_id="srv-1", container_id=CID, ip="10.210.1.5",
        ))

        dns.trigger_hosts_update.assert_not_awaited()

    def test_container_events_are_audited(self, registry, registry_shell):
        audit = AuditTrail("shop")
        audit.log_container_event = AsyncMock()
        service_registry = ServiceRegistry("shop", audit=audit)

        async def _register_then_unregister():
            await service_registry.register_container_in_network(
                registry_shell, service="web", server_id="srv-1", container_id=CID, ip="10.210.1.5",
            )
            await service_registry.unregister_container_from_network(registry_shell, CID, service="web")

        asyncio.run(_register_then_unregister())

        assert [c.args for c in audit.log_container_event.await_args_list] == [
            ([registry_shell], "registered", CID, "web"),
            ([registry_shell], "unregistered", CID, "web"),
        ]

    def test_unregister(self, registry, registry_shell):
        service_registry = ServiceRegistry("shop")
        asyncio.run(service_registry.register_container_in_network(
            registry_shell, service="web", server_id="srv-1", container_id=CID, ip="10.210.1.5",
        ))

        asyncio.run(service_registry.unregister_container_from_network(registry_shell, CID, service="web"))

        assert registry_shell.conn.execute("SELECT COUNT(*) FROM containers").fetchone() == (0,)

    def test_health_update(self, registry, registry_shell):
        service_registry = ServiceRegistry("shop")
        asyncio.run(service_registry.register_container_in_network(
            registry_shell, service="web", server_id="srv-1", container_id=CID, ip="10.210.1.5",
        ))

        asyncio.run(service_registry.update_container_health(registry_shell, CID, healthy=False))

        healthy, since = registry_shell.conn.execute("SELECT healthy, unhealthy_since FROM containers").fetchone()
        assert healthy == 0
        assert since > 0


class TestClusterWide:

    def test_same_write_on_every_host(self):
        shells = [fresh_registry_shell("web-1"), fresh_registry_shell("web-2")]
        registration = ContainerRegistration(
            service="web", server_id="srv-1", container_id=CID, ip="10.210.1.5", started_at=1000,
        )

        result = asyncio.run(ServiceRegistry("shop").register_container_cluster_wide(shells, registration))

        assert result.all_succeeded
        for shell in shells:
            assert shell.conn.execute("SELECT id FROM containers").fetchall() == [(CID,)]

    def test_partial_failure_is_reported_not_raised(self):
        good = fresh_registry_shell("web-1")
        bad = fresh_registry_shell("web-2")
        bad.fail_with = "Error: no such table"
        registration = ContainerRegistration(service="web", server_id="srv-1", container_id=CID, ip="10.210.1.5")

        result = asyncio.run(ServiceRegistry("shop").register_container_cluster_wide([good, bad], registration))

        assert result.succeeded_hosts == ["web-1"]
        assert result.failed_hosts == ["web-2"]


# ============================================================================
# CONTAINER IP
# ============================================================================

class TestContainerIp:

    def make_shell(self, exit_code=0, stdout=""):
        shell = MagicMock()
        shell.host = "web-1"
        shell.execute = AsyncMock(return_value=CommandResult(
            host="web-1", command="inspect", exit_code=exit_code, stdout=stdout, stderr="No such object",
        ))
        return shell

    def test_parses_ip(self):
        shell = self.make_shell(stdout="10.210.1.5\n")
        ip = asyncio.run(ServiceRegistry("shop").get_container_ip(shell, CID, engine=ContainerEngine.PODMAN))

        assert ip == "10.210.1.5"
        command = shell.execute.await_args.args[0]
        assert command.startswith("podman inspect")
        assert command.endswith(CID)

    def test_inspect_failure(self):
        assert asyncio.run(ServiceRegistry("shop").get_container_ip(self.make_shell(exit_code=1), CID)) is None

    @pytest.mark.parametrize("stdout", ["", "not-an-ip"])
    def test_no_or_invalid_ip(self, stdout):
        assert asyncio.run(ServiceRegistry("shop").get_container_ip(self.make_shell(stdout=stdout), CID)) is None

    def test_rejects_unsafe_id(self):
        with pytest.raises(UnsafeValueError):
            asyncio.run(ServiceRegistry("shop").get_container_ip(self.make_shell(), "abc; reboot"))


# ============================================================================
# DNS PROJECTION
# ============================================================================

class TestDnsProjection:

    def test_hostnames(self):
        dns = DnsProjection("shop", service_domain="internal")
        assert dns.hostnames("web") == ["shop-web.internal"]
        assert dns.hostnames("web", "blue") == ["shop-web.internal", "shop-web-blue.internal"]

    def test_trigger_runs_update_script(self):
        shell = MagicMock()
        shell.host = "web-1"
        shell.run = AsyncMock()

        asyncio.run(DnsProjection("shop").trigger_hosts_update(shell))

        assert "/opt/jiji/dns/update-hosts.sh" in shell.run.await_args.args[0]


# ============================================================================
# TOPOLOGY
# ============================================================================

class TestTopology:

    def test_uninitialized_cluster(self, registry):
        assert asyncio.run(load_topology(registry)) is None

    def test_initialized_cluster(self, registry):
        async def _init():
            await registry.initialize_cluster_metadata("10.210.0.0/16", "jiji", DiscoveryMode.CORROSION)
            await registry.register_server(ServerRecord(id="srv-1", hostname="web-1", last_seen=1))

        asyncio.run(_init())
        topology = asyncio.run(load_topology(registry))

        assert topology.cluster_cidr == "10.210.0.0/16"
        assert topology.service_domain == "jiji"
        assert topology.uses_registry
        assert topology.created_at.endswith("Z")
        assert topology.server_by_id("srv-1").hostname == "web-1"
        assert topology.server_by_id("srv-2") is None

    def test_unreadable_host_yields_none(self, registry, registry_shell):
        registry_shell.fail_with = "corrosion: connection refused"
        assert asyncio.run(load_topology(registry)) is None

    def test_from_any_falls_through(self, registry):
        asyncio.run(registry.initialize_cluster_metadata("10.210.0.0/16", "jiji"))
        broken_shell = SqliteRegistryShell(host="broken")
        broken_shell.fail_with = "connection refused"
        broken = RegistryRepository(CorrosionClient(broken_shell))

        topology = asyncio.run(load_topology_from_any([broken, registry]))

        assert topology is not None
        assert topology.discovery == DiscoveryMode.CORROSION
