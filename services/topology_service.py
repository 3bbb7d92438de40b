# ============================================================================
# TOPOLOGY SERVICE
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Service - Cluster network view
# PURPOSE: Assemble NetworkTopology from registry metadata and servers
# CREATED: 08 OCT 2026
# ============================================================================
"""
Topology Service

The topology exists once `server init` has written cluster metadata.
Loading never raises: an uninitialized cluster, or a host whose registry
cannot be queried, yields None (the failure is logged).
"""

import logging
from typing import Optional, Sequence

from core.contracts import DiscoveryMode
from core.errors import JijiError
from core.models.topology import (
    META_CLUSTER_CIDR,
    META_CREATED_AT,
    META_DISCOVERY,
    META_SERVICE_DOMAIN,
    NetworkTopology,
)
from repositories.registry_repo import RegistryRepository

logger = logging.getLogger(__name__)


async def load_topology(repository: RegistryRepository) -> Optional[NetworkTopology]:
    """
    Load the topology through one host's registry.

    Returns:
        NetworkTopology, or None when uninitialized or unreadable
    """
    try:
        cluster_cidr = await repository.get_cluster_metadata(META_CLUSTER_CIDR)
        service_domain = await repository.get_cluster_metadata(META_SERVICE_DOMAIN)
        if not cluster_cidr or not service_domain:
            logger.debug(f"No cluster metadata on {repository.host}")
            return None

        discovery = await repository.get_cluster_metadata(META_DISCOVERY)
        created_at = await repository.get_cluster_metadata(META_CREATED_AT)
        servers = await repository.query_all_servers()

        return NetworkTopology(
            cluster_cidr=cluster_cidr,
            service_domain=service_domain,
            discovery=DiscoveryMode(discovery) if discovery else DiscoveryMode.CORROSION,
            created_at=created_at or None,
            servers=servers,
        )
    except (JijiError, ValueError) as e:
        logger.warning(f"Failed to load topology from {repository.host}: {e}")
        return None


async def load_topology_from_any(repositories: Sequence[RegistryRepository]) -> Optional[NetworkTopology]:
    """First topology any host can provide, trying hosts in order."""
    for repository in repositories:
        topology = await load_topology(repository)
        if topology is not None:
            return topology
    return None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["load_topology", "load_topology_from_any"]
