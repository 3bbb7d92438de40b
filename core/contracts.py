# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Foundation - Core enums and base contracts
# PURPOSE: Status enums and identity contracts shared by every component
# LAST_REVIEWED: 09 OCT 2026
# EXPORTS: LockState, AuditStatus, DiscoveryMode, ContainerEngine,
#          ContainerHealth, HostData, ContainerData
# DEPENDENCIES: enum, pydantic
# ============================================================================
"""
Base contracts for Jiji cluster coordination.

These define the minimal identity fields that cross boundaries:
- Registry (Corrosion / SQLite rows)
- Remote files (lock records, audit logs)
- Python (internal processing)

Boundary-specific models inherit from these contracts.
"""

from enum import Enum
from pydantic import BaseModel, Field


# ============================================================================
# STATUS ENUMS
# ============================================================================

class LockState(str, Enum):
    """
    Per-host lock state.

    There is no cluster-wide lock object. The cluster is "locked" when
    any targeted host reports LOCKED.
    """
    UNLOCKED = "unlocked"
    LOCKED = "locked"


class AuditStatus(str, Enum):
    """
    Outcome recorded on an audit entry.

    State transitions (per action):
        STARTED -> SUCCESS
                -> FAILED
                -> WARNING
    """
    STARTED = "started"
    SUCCESS = "success"
    FAILED = "failed"
    WARNING = "warning"


class DiscoveryMode(str, Enum):
    """How cluster members find services."""
    STATIC = "static"
    CORROSION = "corrosion"


class ContainerEngine(str, Enum):
    """Container engines a host may run."""
    DOCKER = "docker"
    PODMAN = "podman"


class ContainerHealth(str, Enum):
    """Granular health state stored next to the boolean healthy flag."""
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


# ============================================================================
# BASE DATA CONTRACTS
# ============================================================================

class HostData(BaseModel):
    """
    Essential server identity.
    """
    id: str = Field(..., max_length=128, description="Opaque stable server identifier")
    hostname: str = Field(default="", max_length=253)

    model_config = {"frozen": False}


class ContainerData(BaseModel):
    """
    Essential container identity - what the registry keys on.
    """
    id: str = Field(..., max_length=128, description="Engine-assigned container id")
    service: str = Field(..., max_length=128)
    server_id: str = Field(..., max_length=128)

    model_config = {"frozen": False}


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "LockState",
    "AuditStatus",
    "DiscoveryMode",
    "ContainerEngine",
    "ContainerHealth",
    "HostData",
    "ContainerData",
]
