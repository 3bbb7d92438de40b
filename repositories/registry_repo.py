# ============================================================================
# REGISTRY REPOSITORY
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core - Service registry CRUD operations
# PURPOSE: Servers, services, containers and cluster metadata in the registry
# CREATED: 06 OCT 2026
# ============================================================================
"""
Registry Repository

CRUD and query operations over the replicated registry, through one
host's CorrosionClient.

Every value is checked by an allow-list validator (core.validation) and
then bound as a literal by repositories.sql.bind_params; nothing is
concatenated into SQL text.

Writes replace the whole row by primary key (INSERT OR REPLACE), so
concurrent writers converge on last-writer-wins once gossip settles.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from core.config.defaults import get_defaults
from core.contracts import ContainerHealth, DiscoveryMode
from core.errors import CommandError
from core.models.registry import (
    ContainerDetails,
    ContainerRecord,
    DbStats,
    OfflineServer,
    ServerRecord,
    StaleContainer,
)
from core.models.topology import (
    META_CLUSTER_CIDR,
    META_CREATED_AT,
    META_DISCOVERY,
    META_SERVICE_DOMAIN,
)
from core.schema import RegistrySchema
from core.validation import (
    validate_cidr,
    validate_container_id,
    validate_endpoints,
    validate_hostname,
    validate_ip,
    validate_metadata_key,
    validate_project_name,
    validate_server_id,
    validate_service_name,
    validate_wireguard_key,
)
from repositories.corrosion import CorrosionClient
from repositories.sql import like_prefix

logger = logging.getLogger(__name__)

_DETAIL_COLUMNS = """
    c.id, c.service, c.server_id, c.ip, c.healthy, c.started_at, c.instance_id,
    COALESCE(s.hostname, 'unknown')
"""


def now_ms() -> int:
    return int(time.time() * 1000)


class RegistryRepository:
    """Repository for registry rows, bound to one host's registry agent."""

    def __init__(self, client: CorrosionClient, schema: Optional[RegistrySchema] = None):
        self.client = client
        self.schema = schema or RegistrySchema()

    @property
    def host(self) -> str:
        return self.client.host

    # =========================================================================
    # SCHEMA
    # =========================================================================

    async def apply_schema(self) -> int:
        """
        Create tables if missing, add migration columns, then indexes.

        Indexes come last because some cover migration columns that a
        table created by an older release does not have yet.

        Returns:
            Number of statements executed
        """
        tables = [self.schema.generate_table(model) for model in self.schema.models]
        for statement in tables:
            await self.client.execute(statement)
        added = await self.apply_migrations()
        indexes = [s for model in self.schema.models for s in self.schema.generate_indexes(model)]
        for statement in indexes:
            await self.client.execute(statement)
        statements = tables + indexes
        logger.info(f"Registry schema applied on {self.host} ({len(statements)} statements, {len(added)} migrations)")
        return len(statements) + len(added)

    async def apply_migrations(self) -> List[str]:
        """
        Add columns introduced after the first schema. Idempotent.

        Returns:
            Names of the columns added
        """
        added: List[str] = []
        for model in self.schema.models:
            table = self.schema.get_model_metadata(model)["table"]
            if not self.schema.get_model_metadata(model)["migrations"]:
                continue
            rows = await self.client.query_rows(
                "SELECT name FROM pragma_table_info(%(table)s)", {"table": table}
            )
            existing = [row[0] for row in rows]
            for statement in self.schema.generate_migrations(model, existing):
                try:
                    await self.client.execute(statement)
                except CommandError as e:
                    # Another host may have added it between our check and the ALTER
                    if "duplicate column" in (e.stderr or e.message).lower():
                        continue
                    raise
                column = statement.split("ADD COLUMN ", 1)[1].split(" ", 1)[0]
                added.append(column)
                logger.info(f"Added column {table}.{column} on {self.host}")
        return added

    # =========================================================================
    # SERVERS
    # =========================================================================

    async def register_server(self, server: ServerRecord) -> None:
        """Insert or replace a server row."""
        validate_server_id(server.id)
        if server.hostname:
            validate_hostname(server.hostname)
        validate_cidr(server.subnet, allow_empty=True)
        validate_ip(server.overlay_ip, allow_empty=True)
        validate_wireguard_key(server.overlay_pubkey, allow_empty=True)
        validate_ip(server.management_ip, allow_empty=True)
        validate_endpoints(server.endpoints)

        await self.client.execute(
            """
            INSERT OR REPLACE INTO servers
                (id, hostname, subnet, wireguard_ip, wireguard_pubkey, management_ip, endpoints, last_seen)
            VALUES
                (%(id)s, %(hostname)s, %(subnet)s, %(overlay_ip)s, %(overlay_pubkey)s,
                 %(management_ip)s, %(endpoints)s, %(last_seen)s)
            """,
            {
                "id": server.id,
                "hostname": server.hostname,
                "subnet": server.subnet,
                "overlay_ip": server.overlay_ip,
                "overlay_pubkey": server.overlay_pubkey,
                "management_ip": server.management_ip,
                "endpoints": server.endpoints_json(),
                "last_seen": server.last_seen or now_ms(),
            },
        )
        logger.debug(f"Registered server {server.id} ({server.hostname})")

    async def update_server_endpoints(self, server_id: str, endpoints: Sequence[str]) -> None:
        validate_server_id(server_id)
        validate_endpoints(endpoints)
        await self.client.execute(
            "UPDATE servers SET endpoints = %(endpoints)s WHERE id = %(id)s",
            {"endpoints": ServerRecord(id=server_id, endpoints=list(endpoints)).endpoints_json(), "id": server_id},
        )

    async def update_server_heartbeat(self, server_id: str, timestamp_ms: Optional[int] = None) -> None:
        validate_server_id(server_id)
        await self.client.execute(
            "UPDATE servers SET last_seen = %(last_seen)s WHERE id = %(id)s",
            {"last_seen": timestamp_ms or now_ms(), "id": server_id},
        )

    async def query_all_servers(self) -> List[ServerRecord]:
        columns = ", ".join(ServerRecord.COLUMNS)
        rows = await self.client.query_rows(
            f"SELECT {columns} FROM servers ORDER BY hostname, id",
            ncols=len(ServerRecord.COLUMNS),
        )
        return [ServerRecord.from_row(row) for row in rows]

    async def query_active_servers(
        self,
        window_ms: Optional[int] = None,
        current_ms: Optional[int] = None,
    ) -> List[ServerRecord]:
        """Servers whose heartbeat is within the window (default 5 minutes)."""
        window_ms = window_ms if window_ms is not None else get_defaults().registry.active_window_ms
        cutoff = (current_ms or now_ms()) - window_ms
        columns = ", ".join(ServerRecord.COLUMNS)
        rows = await self.client.query_rows(
            f"SELECT {columns} FROM servers WHERE last_seen > %(cutoff)s ORDER BY hostname, id",
            {"cutoff": cutoff},
            ncols=len(ServerRecord.COLUMNS),
        )
        return [ServerRecord.from_row(row) for row in rows]

    # =========================================================================
    # SERVICES
    # =========================================================================

    async def register_service(self, name: str, project: str) -> None:
        validate_service_name(name)
        validate_project_name(project)
        await self.client.execute(
            "INSERT OR REPLACE INTO services (name, project) VALUES (%(name)s, %(project)s)",
            {"name": name, "project": project},
        )

    # =========================================================================
    # CONTAINERS
    # =========================================================================

    async def register_container(self, container: ContainerRecord) -> None:
        """
        Insert or replace a container row.

        An unhealthy registration records unhealthy_since as now.
        """
        validate_container_id(container.id)
        validate_service_name(container.service)
        validate_server_id(container.server_id)
        validate_ip(container.ip, allow_empty=True)
        if container.instance_id is not None:
            validate_container_id(container.instance_id)

        unhealthy_since = 0 if container.healthy else (container.unhealthy_since or now_ms())
        await self.client.execute(
            """
            INSERT OR REPLACE INTO containers
                (id, service, server_id, ip, healthy, started_at, instance_id, health_status, unhealthy_since)
            VALUES
                (%(id)s, %(service)s, %(server_id)s, %(ip)s, %(healthy)s, %(started_at)s,
                 %(instance_id)s, %(health_status)s, %(unhealthy_since)s)
            """,
            {
                "id": container.id,
                "service": container.service,
                "server_id": container.server_id,
                "ip": container.ip,
                "healthy": container.healthy,
                "started_at": container.started_at or now_ms(),
                "instance_id": container.instance_id,
                "health_status": container.health_status.value,
                "unhealthy_since": unhealthy_since,
            },
        )
        logger.debug(f"Registered container {container.id[:12]} ({container.service}) on {container.server_id}")

    async def unregister_container(self, container_id: str) -> None:
        validate_container_id(container_id)
        await self.client.execute("DELETE FROM containers WHERE id = %(id)s", {"id": container_id})
        logger.debug(f"Unregistered container {container_id[:12]}")

    async def update_container_health(self, container_id: str, healthy: bool, timestamp_ms: Optional[int] = None) -> None:
        """
        Set the healthy flag.

        unhealthy_since is stamped on the healthy -> unhealthy transition,
        kept while the container stays unhealthy, and reset to 0 when it
        recovers. SQLite evaluates SET expressions against the old row.
        """
        validate_container_id(container_id)
        stamp = timestamp_ms or now_ms()
        await self.client.execute(
            """
            UPDATE containers SET
                unhealthy_since = CASE
                    WHEN %(healthy)s = 1 THEN 0
                    WHEN healthy = 1 OR unhealthy_since = 0 THEN %(now)s
                    ELSE unhealthy_since
                END,
                healthy = %(healthy)s,
                health_status = %(health_status)s,
                last_health_check = %(now)s,
                consecutive_failures = CASE WHEN %(healthy)s = 1 THEN 0 ELSE consecutive_failures + 1 END
            WHERE id = %(id)s
            """,
            {
                "healthy": healthy,
                "now": stamp,
                "health_status": (ContainerHealth.HEALTHY if healthy else ContainerHealth.UNHEALTHY).value,
                "id": container_id,
            },
        )

    async def query_service_containers(self, service: str) -> List[str]:
        """IPs of the healthy containers of a service."""
        validate_service_name(service)
        rows = await self.client.query_rows(
            "SELECT ip FROM containers WHERE service = %(service)s AND healthy = 1 ORDER BY ip",
            {"service": service},
        )
        return [row[0] for row in rows if row[0]]

    async def query_server_service_containers(self, service: str, server_id: str) -> List[ContainerRecord]:
        validate_service_name(service)
        validate_server_id(server_id)
        columns = ", ".join(ContainerRecord.COLUMNS)
        rows = await self.client.query_rows(
            f"SELECT {columns} FROM containers WHERE service = %(service)s AND server_id = %(server_id)s",
            {"service": service, "server_id": server_id},
            ncols=len(ContainerRecord.COLUMNS),
        )
        return [ContainerRecord.from_row(row) for row in rows]

    async def query_containers_by_server(self, server_id: str) -> List[ContainerRecord]:
        validate_server_id(server_id)
        columns = ", ".join(ContainerRecord.COLUMNS)
        rows = await self.client.query_rows(
            f"SELECT {columns} FROM containers WHERE server_id = %(server_id)s ORDER BY service, id",
            {"server_id": server_id},
            ncols=len(ContainerRecord.COLUMNS),
        )
        return [ContainerRecord.from_row(row) for row in rows]

    async def query_all_containers_with_details(self, service_filter: Optional[str] = None) -> List[ContainerDetails]:
        """Every container joined with its server hostname ('unknown' if missing)."""
        params: Dict[str, str] = {}
        where = ""
        if service_filter:
            params["service"] = validate_service_name(service_filter)
            where = "WHERE c.service = %(service)s"

        rows = await self.client.query_rows(
            f"""
            SELECT {_DETAIL_COLUMNS}
            FROM containers c LEFT JOIN servers s ON c.server_id = s.id
            {where}
            ORDER BY c.service, s.hostname, c.id
            """,
            params,
            ncols=8,
        )
        return [ContainerDetails.from_row(row) for row in rows]

    async def query_container_by_id(self, id_prefix: str) -> Optional[ContainerDetails]:
        """First container whose id starts with the prefix, or None."""
        validate_container_id(id_prefix)
        rows = await self.client.query_rows(
            f"""
            SELECT {_DETAIL_COLUMNS}
            FROM containers c LEFT JOIN servers s ON c.server_id = s.id
            WHERE c.id LIKE %(pattern)s ESCAPE '\\'
            ORDER BY c.id
            LIMIT 1
            """,
            {"pattern": like_prefix(id_prefix)},
            ncols=8,
        )
        return ContainerDetails.from_row(rows[0]) if rows else None

    # =========================================================================
    # CLUSTER METADATA
    # =========================================================================

    async def set_cluster_metadata(self, key: str, value: str) -> None:
        validate_metadata_key(key)
        await self.client.execute(
            "INSERT OR REPLACE INTO cluster_metadata (key, value) VALUES (%(key)s, %(value)s)",
            {"key": key, "value": value},
        )

    async def get_cluster_metadata(self, key: str) -> Optional[str]:
        """Value for key, None when the key is not set."""
        validate_metadata_key(key)
        rows = await self.client.query_rows(
            "SELECT value FROM cluster_metadata WHERE key = %(key)s", {"key": key}
        )
        return rows[0][0] if rows else None

    async def initialize_cluster_metadata(
        self,
        cluster_cidr: str,
        service_domain: str,
        discovery: DiscoveryMode = DiscoveryMode.CORROSION,
    ) -> None:
        validate_cidr(cluster_cidr)
        validate_hostname(service_domain)
        await self.set_cluster_metadata(META_CLUSTER_CIDR, cluster_cidr)
        await self.set_cluster_metadata(META_SERVICE_DOMAIN, service_domain)
        await self.set_cluster_metadata(META_DISCOVERY, DiscoveryMode(discovery).value)
        await self.set_cluster_metadata(
            META_CREATED_AT,
            datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        )
        logger.info(f"Initialized cluster metadata ({cluster_cidr}, {service_domain}, {discovery})")

    # =========================================================================
    # GARBAGE COLLECTION QUERIES
    # =========================================================================

    async def query_stale_containers(self, threshold_seconds: int, current_ms: Optional[int] = None) -> List[StaleContainer]:
        """
        Unhealthy containers past the threshold.

        Reference time is unhealthy_since when recorded, otherwise
        started_at (an over-estimate, flagged as inferred). A lower
        threshold never returns fewer containers.
        """
        current = current_ms or now_ms()
        cutoff = current - int(threshold_seconds) * 1000
        rows = await self.client.query_rows(
            """
            SELECT id, service, server_id, started_at, unhealthy_since
            FROM containers
            WHERE healthy = 0
              AND (CASE WHEN unhealthy_since > 0 THEN unhealthy_since ELSE started_at END) < %(cutoff)s
            ORDER BY service, id
            """,
            {"cutoff": cutoff},
            ncols=5,
        )

        stale = []
        for container_id, service, server_id, started_raw, since_raw in rows:
            started_at = int(started_raw or 0)
            unhealthy_since = int(since_raw or 0)
            reference = unhealthy_since if unhealthy_since > 0 else started_at
            stale.append(StaleContainer(
                id=container_id,
                service=service,
                server_id=server_id,
                started_at=started_at,
                unhealthy_since=unhealthy_since,
                unhealthy_for_seconds=max(0, (current - reference) // 1000),
                inferred=unhealthy_since == 0,
            ))
        return stale

    async def query_offline_servers(self, threshold_ms: int, current_ms: Optional[int] = None) -> List[OfflineServer]:
        """Servers whose last heartbeat is older than the threshold, with container counts."""
        cutoff = (current_ms or now_ms()) - int(threshold_ms)
        rows = await self.client.query_rows(
            """
            SELECT s.id, s.hostname, s.last_seen,
                   (SELECT COUNT(*) FROM containers c WHERE c.server_id = s.id)
            FROM servers s
            WHERE s.last_seen < %(cutoff)s
            ORDER BY s.hostname, s.id
            """,
            {"cutoff": cutoff},
            ncols=4,
        )
        return [
            OfflineServer(
                id=row[0],
                hostname=row[1],
                last_seen=int(row[2] or 0),
                container_count=int(row[3] or 0),
            )
            for row in rows
        ]

    async def delete_containers_by_ids(self, container_ids: Sequence[str], batch_size: Optional[int] = None) -> int:
        """
        Delete containers by id in batches.

        Returns:
            Number of ids submitted for deletion
        """
        ids = [validate_container_id(cid) for cid in container_ids]
        if not ids:
            return 0
        batch_size = batch_size or get_defaults().gc.delete_batch_size
        for start in range(0, len(ids), batch_size):
            batch = ids[start:start + batch_size]
            await self.client.execute("DELETE FROM containers WHERE id IN (%(ids)s)", {"ids": batch})
        logger.info(f"Deleted {len(ids)} container record(s) via {self.host}")
        return len(ids)

    async def delete_containers_by_server(self, server_id: str) -> int:
        """
        Delete every container registered under a server.

        Returns:
            Number of rows matched before the delete
        """
        validate_server_id(server_id)
        count = await self.client.query_scalar(
            "SELECT COUNT(*) FROM containers WHERE server_id = %(server_id)s", {"server_id": server_id}
        )
        await self.client.execute("DELETE FROM containers WHERE server_id = %(server_id)s", {"server_id": server_id})
        return int(count or 0)

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================

    async def get_db_stats(self, current_ms: Optional[int] = None) -> DbStats:
        cutoff = (current_ms or now_ms()) - get_defaults().registry.active_window_ms
        rows = await self.client.query_rows(
            """
            SELECT
                (SELECT COUNT(*) FROM servers),
                (SELECT COUNT(*) FROM servers WHERE last_seen > %(cutoff)s),
                (SELECT COUNT(*) FROM containers),
                (SELECT COUNT(*) FROM containers WHERE healthy = 1),
                (SELECT COUNT(*) FROM containers WHERE healthy = 0),
                (SELECT COUNT(*) FROM services)
            """,
            {"cutoff": cutoff},
            ncols=6,
        )
        if not rows:
            return DbStats()
        values = [int(v or 0) for v in rows[0]]
        return DbStats(
            server_count=values[0],
            active_server_count=values[1],
            container_count=values[2],
            healthy_container_count=values[3],
            unhealthy_container_count=values[4],
            service_count=values[5],
        )

    async def execute_raw_query(self, sql: str) -> str:
        """Operator-supplied read query; output returned verbatim."""
        return await self.client.query_raw(sql)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["RegistryRepository", "now_ms"]
