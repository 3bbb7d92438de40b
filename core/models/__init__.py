# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# LAST_REVIEWED: 11 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

Registry table models define SQL metadata via __sql_* ClassVar attributes
for DDL generation (core.schema.RegistrySchema).
"""

from core.models.lock import LockRecord, LockStatus
from core.models.audit import AuditEntry, AuditFilter, parse_audit_lines
from core.models.registry import (
    ClusterMetadataRecord,
    ServerRecord,
    ServiceRecord,
    ContainerRecord,
    ContainerDetails,
    StaleContainer,
    OfflineServer,
    DbStats,
)
from core.models.topology import NetworkTopology

__all__ = [
    # Lock
    "LockRecord",
    "LockStatus",
    # Audit
    "AuditEntry",
    "AuditFilter",
    "parse_audit_lines",
    # Registry
    "ClusterMetadataRecord",
    "ServerRecord",
    "ServiceRecord",
    "ContainerRecord",
    "ContainerDetails",
    "StaleContainer",
    "OfflineServer",
    "DbStats",
    # Topology
    "NetworkTopology",
]
