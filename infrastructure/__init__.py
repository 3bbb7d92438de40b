# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Infrastructure - Host access and coordination primitives
# PURPOSE: Shell execution, connection pooling, host fanout and locking
# CREATED: 04 OCT 2026
# ============================================================================
"""
Infrastructure module for Jiji cluster coordination.

Provides:
- RemoteShell / LocalShell: run commands on a host
- ConnectionPool: connect to many hosts with bounded concurrency
- HostFanout: run per-host operations concurrently, partition outcomes
- DistributedLock: per-host deployment lock files

Usage:
    from infrastructure import ConnectionPool, DistributedLock, SSHSettings

    async with ConnectionPool(SSHSettings(user="deploy")) as pool:
        connected = await pool.connect_all(["10.0.1.10", "10.0.1.11"])
        lock = DistributedLock(project="shop")
        result = await lock.acquire("deploy v2", connected.results)
"""

from infrastructure.remote_shell import (
    Shell,
    RemoteShell,
    LocalShell,
    CommandResult,
    SSHSettings,
)
from infrastructure.fanout import (
    HostFanout,
    HostOperation,
    FanoutResult,
    HostError,
    with_retry,
    retrying,
    create_error_summary,
)
from infrastructure.connection_pool import ConnectionPool
from infrastructure.locking import (
    DistributedLock,
    LockAcquireResult,
    LockReleaseResult,
    LockNotAcquired,
)

__all__ = [
    # Shells
    "Shell",
    "RemoteShell",
    "LocalShell",
    "CommandResult",
    "SSHSettings",
    # Fanout
    "HostFanout",
    "HostOperation",
    "FanoutResult",
    "HostError",
    "with_retry",
    "retrying",
    "create_error_summary",
    # Connections
    "ConnectionPool",
    # Locking
    "DistributedLock",
    "LockAcquireResult",
    "LockReleaseResult",
    "LockNotAcquired",
]
