# ============================================================================
# SERVICE REGISTRY MODELS
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core model - Replicated registry rows
# PURPOSE: Servers, services and containers as stored in the gossip registry
# LAST_REVIEWED: 11 OCT 2026
# EXPORTS: ServerRecord, ServiceRecord, ContainerRecord, ClusterMetadataRecord,
#          ContainerDetails, StaleContainer, OfflineServer, DbStats
# DEPENDENCIES: pydantic
# ============================================================================
"""
Service Registry Models

Pydantic models are the single source of truth for the registry schema.
Table models carry __sql_* metadata read by core.schema.RegistrySchema;
field aliases give the column name where it differs from the field name.

Every write replaces the whole row by primary key; concurrent writers
converge on last-writer-wins. Timestamps are epoch milliseconds.

Rows come back from the registry CLI as pipe-delimited strings; each
model's from_row() turns one split row into a typed instance.
"""

import json
from typing import Any, ClassVar, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator

from core.contracts import ContainerData, ContainerHealth, HostData
from core.errors import DataFormatError


def _to_int(value: str, default: int = 0) -> int:
    value = (value or "").strip()
    if not value:
        return default
    try:
        return int(float(value))
    except ValueError:
        raise DataFormatError(f"Expected integer, got {value!r}", raw=value) from None


def _to_optional(value: str) -> Optional[str]:
    value = (value or "").strip()
    return value or None


# ============================================================================
# TABLE MODELS
# ============================================================================

class ClusterMetadataRecord(BaseModel):
    """Cluster-wide key/value settings (cluster_cidr, service_domain, ...)."""

    __sql_table__: ClassVar[str] = "cluster_metadata"
    __sql_primary_key__: ClassVar[List[str]] = ["key"]
    __sql_indexes__: ClassVar[List[tuple]] = []

    key: str
    value: str = ""


class ServerRecord(HostData):
    """
    A server that joined the private network.

    Created at cluster join, last_seen refreshed by heartbeat. The core
    never hard-deletes server rows.
    """

    __sql_table__: ClassVar[str] = "servers"
    __sql_primary_key__: ClassVar[List[str]] = ["id"]
    __sql_indexes__: ClassVar[List[tuple]] = [
        ("idx_servers_last_seen", ["last_seen"]),
    ]

    subnet: str = ""
    overlay_ip: str = Field(default="", alias="wireguard_ip")
    overlay_pubkey: str = Field(default="", alias="wireguard_pubkey")
    management_ip: str = ""
    endpoints: List[str] = Field(default_factory=list)
    last_seen: int = Field(default=0, ge=0)

    model_config = {"populate_by_name": True, "frozen": False}

    @field_validator("endpoints", mode="before")
    @classmethod
    def parse_endpoints(cls, v):
        """Stored as JSON text; accept a raw list too."""
        if v is None or v == "":
            return []
        if isinstance(v, str):
            try:
                decoded = json.loads(v)
            except json.JSONDecodeError:
                raise ValueError(f"endpoints is not JSON: {v[:60]}") from None
            return decoded if isinstance(decoded, list) else []
        return v

    COLUMNS: ClassVar[List[str]] = [
        "id", "hostname", "subnet", "wireguard_ip", "wireguard_pubkey",
        "management_ip", "endpoints", "last_seen",
    ]

    @classmethod
    def from_row(cls, row: Sequence[str]) -> "ServerRecord":
        return cls(
            id=row[0],
            hostname=row[1],
            subnet=row[2],
            wireguard_ip=row[3],
            wireguard_pubkey=row[4],
            management_ip=row[5],
            endpoints=row[6],
            last_seen=_to_int(row[7]),
        )

    def endpoints_json(self) -> str:
        return json.dumps(self.endpoints)


class ServiceRecord(BaseModel):
    """A deployed service. Upserted on first container registration."""

    __sql_table__: ClassVar[str] = "services"
    __sql_primary_key__: ClassVar[List[str]] = ["name"]
    __sql_indexes__: ClassVar[List[tuple]] = []

    name: str = Field(..., max_length=128)
    project: str = ""


class ContainerRecord(ContainerData):
    """
    A running container instance.

    unhealthy_since records the healthy -> unhealthy transition time; 0
    means healthy or never recorded (rows written before the column
    existed).
    """

    __sql_table__: ClassVar[str] = "containers"
    __sql_primary_key__: ClassVar[List[str]] = ["id"]
    __sql_indexes__: ClassVar[List[tuple]] = [
        ("idx_containers_server_id", ["server_id"]),
        ("idx_containers_service", ["service"]),
        ("idx_containers_healthy", ["healthy"]),
        ("idx_containers_health_status", ["health_status"]),
    ]
    # Columns added after the first schema; apply_migrations adds them in place
    __sql_migrations__: ClassVar[List[str]] = [
        "health_status",
        "last_health_check",
        "consecutive_failures",
        "health_port",
        "unhealthy_since",
    ]

    ip: str = ""
    healthy: bool = True
    started_at: int = Field(default=0, ge=0)
    instance_id: Optional[str] = None
    health_status: ContainerHealth = ContainerHealth.UNKNOWN
    last_health_check: int = 0
    consecutive_failures: int = 0
    health_port: Optional[int] = None
    unhealthy_since: int = 0

    model_config = {"frozen": False}

    COLUMNS: ClassVar[List[str]] = [
        "id", "service", "server_id", "ip", "healthy", "started_at", "instance_id",
    ]

    @classmethod
    def from_row(cls, row: Sequence[str]) -> "ContainerRecord":
        return cls(
            id=row[0],
            service=row[1],
            server_id=row[2],
            ip=row[3],
            healthy=_to_int(row[4], default=1) == 1,
            started_at=_to_int(row[5]),
            instance_id=_to_optional(row[6]),
        )


# ============================================================================
# QUERY RESULT MODELS
# ============================================================================

class ContainerDetails(BaseModel):
    """Container row joined with its server's hostname."""
    id: str
    service: str
    server_id: str
    ip: str
    healthy: bool
    started_at: int = 0
    instance_id: Optional[str] = None
    server_hostname: str = "unknown"

    @classmethod
    def from_row(cls, row: Sequence[str]) -> "ContainerDetails":
        return cls(
            id=row[0],
            service=row[1],
            server_id=row[2],
            ip=row[3],
            healthy=_to_int(row[4], default=1) == 1,
            started_at=_to_int(row[5]),
            instance_id=_to_optional(row[6]),
            server_hostname=row[7] or "unknown",
        )

    @property
    def short_id(self) -> str:
        return self.id[:12]


class StaleContainer(BaseModel):
    """
    Unhealthy container past the GC threshold.

    inferred is True when no transition time was recorded and the
    duration was measured from started_at instead.
    """
    id: str
    service: str
    server_id: str
    started_at: int = 0
    unhealthy_since: int = 0
    unhealthy_for_seconds: int = 0
    inferred: bool = False


class OfflineServer(BaseModel):
    """Server whose last heartbeat is older than the offline threshold."""
    id: str
    hostname: str = ""
    last_seen: int = 0
    container_count: int = 0


class DbStats(BaseModel):
    """Row counts for `network stats`."""
    server_count: int = 0
    active_server_count: int = 0
    container_count: int = 0
    healthy_container_count: int = 0
    unhealthy_container_count: int = 0
    service_count: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump()


REGISTRY_TABLES = [ClusterMetadataRecord, ServerRecord, ServiceRecord, ContainerRecord]


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ClusterMetadataRecord",
    "ServerRecord",
    "ServiceRecord",
    "ContainerRecord",
    "ContainerDetails",
    "StaleContainer",
    "OfflineServer",
    "DbStats",
    "REGISTRY_TABLES",
]
