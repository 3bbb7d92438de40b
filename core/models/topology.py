# ============================================================================
# NETWORK TOPOLOGY MODEL
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core model - Cluster network view
# PURPOSE: Cluster metadata plus member servers, read from the registry
# CREATED: 11 OCT 2026
# ============================================================================
"""
Network Topology Model

Assembled by services.topology_service.load_topology() from the
cluster_metadata table and the servers table.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from core.contracts import DiscoveryMode
from core.models.registry import ServerRecord

# cluster_metadata keys
META_CLUSTER_CIDR = "cluster_cidr"
META_SERVICE_DOMAIN = "service_domain"
META_DISCOVERY = "discovery"
META_CREATED_AT = "created_at"


class NetworkTopology(BaseModel):
    """Cluster-wide network settings and every registered server."""
    cluster_cidr: str
    service_domain: str
    discovery: DiscoveryMode = DiscoveryMode.CORROSION
    created_at: Optional[str] = None
    servers: List[ServerRecord] = Field(default_factory=list)

    model_config = {"frozen": False}

    def server_by_id(self, server_id: str) -> Optional[ServerRecord]:
        for server in self.servers:
            if server.id == server_id:
                return server
        return None

    @property
    def uses_registry(self) -> bool:
        return self.discovery == DiscoveryMode.CORROSION


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "NetworkTopology",
    "META_CLUSTER_CIDR",
    "META_SERVICE_DOMAIN",
    "META_DISCOVERY",
    "META_CREATED_AT",
]
