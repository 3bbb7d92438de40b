# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core module initialization
# PURPOSE: Export core contracts, errors, models, and schema utilities
# LAST_REVIEWED: 11 OCT 2026
# ============================================================================

from core.contracts import LockState, AuditStatus, DiscoveryMode, ContainerEngine, ContainerHealth
from core.errors import (
    JijiError,
    ConfigurationError,
    ConnectivityError,
    ContentionError,
    ConsistencyError,
    DataFormatError,
    CommandError,
    CommandTimeoutError,
    UnsafeValueError,
)
from core.models import (
    LockRecord,
    LockStatus,
    AuditEntry,
    ServerRecord,
    ServiceRecord,
    ContainerRecord,
    NetworkTopology,
)
from core.schema import RegistrySchema

__all__ = [
    # Enums
    "LockState",
    "AuditStatus",
    "DiscoveryMode",
    "ContainerEngine",
    "ContainerHealth",
    # Errors
    "JijiError",
    "ConfigurationError",
    "ConnectivityError",
    "ContentionError",
    "ConsistencyError",
    "DataFormatError",
    "CommandError",
    "CommandTimeoutError",
    "UnsafeValueError",
    # Models
    "LockRecord",
    "LockStatus",
    "AuditEntry",
    "ServerRecord",
    "ServiceRecord",
    "ContainerRecord",
    "NetworkTopology",
    # Schema
    "RegistrySchema",
]
