# ============================================================================
# REGISTRY GARBAGE COLLECTOR
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Service - Registry reconciliation
# PURPOSE: Find and (on explicit confirmation) delete dead container records
# CREATED: 08 OCT 2026
# ============================================================================
"""
Registry Garbage Collector

Two independent criteria select container records for removal:
- stale: unhealthy for longer than the stale threshold
- orphaned: registered under a server whose heartbeat is older than the
  offline threshold

A container can match both, so the plan de-duplicates by id before any
delete is issued. Staleness is judged by this machine's clock against
timestamps stored in the registry; the registry enforces no expiry.

Dry-run is the default and issues zero deletes. Deleting requires
run(force=True).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.config.defaults import get_defaults
from core.models.registry import OfflineServer, StaleContainer
from core.logging import ComponentType, get_logger, log_checkpoint
from repositories.registry_repo import RegistryRepository, now_ms

logger = get_logger(__name__, ComponentType.GC)


def format_duration(seconds: int) -> str:
    """Compact human duration: 45s, 12m 5s, 3h 20m, 2d 4h."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {seconds}s" if seconds else f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h" if hours else f"{days}d"


@dataclass
class GCPlan:
    """What a GC run would delete."""
    stale_containers: List[StaleContainer] = field(default_factory=list)
    offline_servers: List[OfflineServer] = field(default_factory=list)
    orphaned_container_ids: Dict[str, List[str]] = field(default_factory=dict)
    deletion_ids: List[str] = field(default_factory=list)
    stale_threshold_seconds: int = 0
    offline_threshold_seconds: int = 0

    @property
    def empty(self) -> bool:
        return not self.deletion_ids

    @property
    def overlap_count(self) -> int:
        """Containers matched by both criteria."""
        stale_ids = {c.id for c in self.stale_containers}
        orphaned = {cid for ids in self.orphaned_container_ids.values() for cid in ids}
        return len(stale_ids & orphaned)

    def summary(self) -> str:
        orphaned = sum(len(ids) for ids in self.orphaned_container_ids.values())
        return (
            f"{len(self.stale_containers)} stale container(s), "
            f"{len(self.offline_servers)} offline server(s) with {orphaned} container(s), "
            f"{len(self.deletion_ids)} distinct record(s) to delete"
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stale": [c.model_dump() for c in self.stale_containers],
            "offline_servers": [s.model_dump() for s in self.offline_servers],
            "orphaned_container_ids": self.orphaned_container_ids,
            "deletion_ids": self.deletion_ids,
            "stale_threshold_seconds": self.stale_threshold_seconds,
            "offline_threshold_seconds": self.offline_threshold_seconds,
        }


@dataclass
class GCReport:
    """Outcome of a GC run."""
    plan: GCPlan
    dry_run: bool
    deleted_count: int = 0

    def summary(self) -> str:
        if self.plan.empty:
            return "Registry is clean, nothing to collect"
        if self.dry_run:
            return f"Dry run: {self.plan.summary()}. Re-run with --force to delete."
        return f"Deleted {self.deleted_count} container record(s) ({self.plan.summary()})"


class GarbageCollector:
    """
    Plan and run registry garbage collection through one host.

    Args:
        repository: Registry repository on a reachable host
        stale_threshold_seconds: Unhealthy duration before a container is stale
        offline_threshold_seconds: Heartbeat age before a server is offline
    """

    def __init__(
        self,
        repository: RegistryRepository,
        stale_threshold_seconds: Optional[int] = None,
        offline_threshold_seconds: Optional[int] = None,
    ):
        defaults = get_defaults().gc
        self.repository = repository
        self.stale_threshold_seconds = (
            stale_threshold_seconds if stale_threshold_seconds is not None else defaults.stale_threshold_seconds
        )
        self.offline_threshold_seconds = (
            offline_threshold_seconds if offline_threshold_seconds is not None else defaults.offline_threshold_seconds
        )

    async def plan(self, current_ms: Optional[int] = None) -> GCPlan:
        """Collect both criteria and de-duplicate by container id. Read-only."""
        current = current_ms or now_ms()

        stale = await self.repository.query_stale_containers(self.stale_threshold_seconds, current)
        offline = await self.repository.query_offline_servers(self.offline_threshold_seconds * 1000, current)

        orphaned: Dict[str, List[str]] = {}
        for server in offline:
            if server.container_count == 0:
                continue
            containers = await self.repository.query_containers_by_server(server.id)
            orphaned[server.id] = [c.id for c in containers]

        seen: Dict[str, None] = {}
        for container in stale:
            seen.setdefault(container.id, None)
        for ids in orphaned.values():
            for container_id in ids:
                seen.setdefault(container_id, None)

        plan = GCPlan(
            stale_containers=stale,
            offline_servers=offline,
            orphaned_container_ids=orphaned,
            deletion_ids=list(seen),
            stale_threshold_seconds=self.stale_threshold_seconds,
            offline_threshold_seconds=self.offline_threshold_seconds,
        )
        if plan.overlap_count:
            logger.debug(f"{plan.overlap_count} container(s) matched both GC criteria")
        return plan

    async def run(self, force: bool = False, current_ms: Optional[int] = None) -> GCReport:
        """
        Plan, then delete only when forced.

        Args:
            force: Actually delete. Without it nothing is written.
            current_ms: Clock override (epoch ms)
        """
        plan = await self.plan(current_ms)
        log_checkpoint("gc_planned", {"deletions": len(plan.deletion_ids), "force": force}, logger=logger)

        if plan.empty or not force:
            report = GCReport(plan=plan, dry_run=not force)
            logger.info(report.summary())
            return report

        deleted = await self.repository.delete_containers_by_ids(plan.deletion_ids)
        report = GCReport(plan=plan, dry_run=False, deleted_count=deleted)
        log_checkpoint("gc_completed", {"deleted": deleted}, logger=logger)
        logger.info(report.summary())
        return report


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["GarbageCollector", "GCPlan", "GCReport", "format_duration"]
