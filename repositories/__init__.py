# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core - Registry access layer
# PURPOSE: CRUD operations for registry entities
# CREATED: 05 OCT 2026
# ============================================================================
"""
Repositories Module

Provides registry access for servers, services, containers and cluster
metadata. All SQL goes through the registry CLI on one host's shell.

Usage:
    from repositories import CorrosionClient, RegistryRepository

    repo = RegistryRepository(CorrosionClient(shell))
    ips = await repo.query_service_containers("web")
"""

from .sql import bind_params, sql_literal, like_prefix
from .corrosion import CorrosionClient, RegistryBusyError, parse_rows
from .registry_repo import RegistryRepository

__all__ = [
    "bind_params",
    "sql_literal",
    "like_prefix",
    "CorrosionClient",
    "RegistryBusyError",
    "parse_rows",
    "RegistryRepository",
]
