# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core - Business logic layer
# PURPOSE: Audit, registry, GC, topology and per-command wiring
# CREATED: 07 OCT 2026
# ============================================================================
"""
Services Module

Business logic for cluster coordination.
Services coordinate between repositories and the host fanout.

Usage:
    from services import CommandContext, GarbageCollector

    async with CommandContext.open() as ctx:
        gc = GarbageCollector(ctx.repository(ctx.shells[0]))
        report = await gc.run(force=False)
"""

from .audit_service import AuditTrail, AuditReadResult, AuditAggregate
from .dns import DnsProjection
from .registry_service import ServiceRegistry, ContainerRegistration
from .gc_service import GarbageCollector, GCPlan, GCReport, format_duration
from .topology_service import load_topology, load_topology_from_any
from .command_context import CommandContext

__all__ = [
    "AuditTrail",
    "AuditReadResult",
    "AuditAggregate",
    "DnsProjection",
    "ServiceRegistry",
    "ContainerRegistration",
    "GarbageCollector",
    "GCPlan",
    "GCReport",
    "format_duration",
    "load_topology",
    "load_topology_from_any",
    "CommandContext",
]
