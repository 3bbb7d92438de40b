#!/usr/bin/env python3
# ============================================================================
# JIJI COORDINATION CLI
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Tool - Operator command line
# PURPOSE: lock / audit / network commands over the configured hosts
# CREATED: 09 OCT 2026
# ============================================================================
"""
Operator CLI for deployment locks, the audit trail and the service registry.

Usage:
    # Deployment lock
    jiji lock acquire "deploying web v2"
    jiji lock status --json
    jiji -S web lock release

    # Audit trail across hosts
    jiji audit -n 50 --filter deploy --status failed --since 2026-10-01

    # Registry
    jiji network status
    jiji network inspect 3f2a9c
    jiji network gc                 # dry run
    jiji network gc --force

Exit codes:
    0  success (a GC dry run with pending deletions included)
    1  no host reachable, lock conflict, failed acquisition, or any other
       unrecoverable error
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from __version__ import __version__
from core.config.defaults import get_defaults
from core.contracts import AuditStatus
from core.errors import JijiError
from core.logging import ComponentType, configure_logging, get_logger, log_context
from core.models.audit import AuditFilter
from core.models.lock import LockStatus
from infrastructure.remote_shell import LocalShell, Shell
from services.audit_service import ACTION_DEPLOYMENT_LOCK
from services.command_context import CommandContext
from services.gc_service import GarbageCollector, format_duration
from services.topology_service import load_topology_from_any

logger = get_logger("jiji", ComponentType.CLI)

EXIT_OK = 0
EXIT_FAILURE = 1


# ============================================================================
# OUTPUT HELPERS
# ============================================================================

def format_ms(timestamp_ms: int) -> str:
    """Epoch ms as an ISO-8601 UTC string ("-" when unset)."""
    if not timestamp_ms:
        return "-"
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="seconds").replace("+00:00", "Z")


def age_ms(timestamp_ms: int, now_ms: int) -> str:
    if not timestamp_ms:
        return "never"
    return f"{format_duration((now_ms - timestamp_ms) // 1000)} ago"


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def describe_lock(status: LockStatus) -> str:
    if status.error:
        return f"{status.host}: unreachable ({status.error})"
    if not status.locked:
        suffix = f" (unreadable lock file: {status.parse_error})" if status.parse_error else ""
        return f"{status.host}: unlocked{suffix}"
    return (
        f"{status.host}: LOCKED by {status.acquired_by or 'unknown'} "
        f"at {status.acquired_at or 'unknown'} - {status.message or ''}"
    )


# ============================================================================
# LOCK COMMANDS
# ============================================================================

async def cmd_lock_acquire(ctx: CommandContext, args) -> int:
    if ctx.unreachable:
        reason = (
            f"Lock not acquired: {len(ctx.unreachable)} target host(s) unreachable: "
            f"{', '.join(e.host for e in ctx.unreachable)}"
        )
        await ctx.audit.log_lock_failure(ctx.shells, reason)
        print(reason, file=sys.stderr)
        for host_error in ctx.unreachable:
            print(f"  {host_error}", file=sys.stderr)
        return EXIT_FAILURE

    result = await ctx.lock.acquire(args.message, ctx.shells, force=args.force)

    if result.acquired:
        await ctx.audit.log_lock_acquired(ctx.shells, args.message, acquired_by=ctx.lock.acquired_by)
        print(f"Lock acquired on {len(result.locked_hosts)} host(s)" + (" (forced)" if result.forced else ""))
        return EXIT_OK

    await ctx.audit.log_lock_failure(ctx.shells, result.reason)
    print(result.reason, file=sys.stderr)
    for conflict in result.conflicts:
        print(f"  {describe_lock(conflict)}", file=sys.stderr)
    for host_error in result.host_errors:
        print(f"  {host_error}", file=sys.stderr)
    if result.rolled_back:
        print(f"  Rolled back on: {', '.join(result.rolled_back)}", file=sys.stderr)
    return EXIT_FAILURE


async def cmd_lock_release(ctx: CommandContext, args) -> int:
    result = await ctx.lock.release(ctx.shells)
    if result.released:
        await ctx.audit.log_lock_released(ctx.shells)
    print(f"Released on {len(result.released)} host(s), already free on {len(result.already_absent)}")
    for host_error in result.host_errors:
        print(f"  {host_error}", file=sys.stderr)
    return EXIT_OK if result.success else EXIT_FAILURE


async def cmd_lock_status(ctx: CommandContext, args) -> int:
    statuses = await ctx.lock.status(ctx.shells)
    if args.json:
        print_json([s.model_dump(mode="json", by_alias=True) for s in statuses])
        return EXIT_OK

    locked = [s for s in statuses if s.locked]
    if not locked:
        print(f"Unlocked on all {len(statuses)} host(s)")
    else:
        print(f"Locked on {len(locked)}/{len(statuses)} host(s)")
    for status in statuses:
        print(f"  {describe_lock(status)}")
    return EXIT_OK


async def cmd_lock_show(ctx: CommandContext, args) -> int:
    statuses = await ctx.lock.status(ctx.shells)
    for status in statuses:
        print(f"{status.host}:")
        if status.record is None:
            print(f"  {describe_lock(status)}")
            continue
        record = status.record
        print(f"  Message:     {record.message or ''}")
        print(f"  Acquired by: {record.acquired_by or 'unknown'}")
        print(f"  Acquired at: {record.acquired_at or 'unknown'}")
        print(f"  Host:        {record.host or 'unknown'}")
        print(f"  PID:         {record.pid if record.pid is not None else 'unknown'}")
        print(f"  Version:     {record.version or 'unknown'}")
    return EXIT_OK


async def cmd_lock_cleanup(ctx: CommandContext, args) -> int:
    probe = None
    if args.local:
        local = LocalShell()

        async def probe(shell: Shell, pid: int) -> bool:
            return await local.process_running(pid)

    released = await ctx.lock.cleanup_stale_locks(ctx.shells, probe=probe)
    if released:
        await ctx.audit.log(
            ctx.shells, ACTION_DEPLOYMENT_LOCK, AuditStatus.SUCCESS,
            f"Stale lock removed on {', '.join(released)}")
        print(f"Removed stale lock on: {', '.join(released)}")
    else:
        print("No stale locks found")
    return EXIT_OK


# ============================================================================
# AUDIT COMMAND
# ============================================================================

async def cmd_audit(ctx: CommandContext, args) -> int:
    try:
        audit_filter = AuditFilter.build(args.filter, args.status, args.since, args.until)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_FAILURE
    has_filter = any([args.filter, args.status, args.since, args.until])
    limit = args.lines

    if args.raw:
        for shell in ctx.shells:
            print(f"=== {shell.host} ===")
            for line in await ctx.audit.read_raw(shell, limit):
                print(line)
        return EXIT_OK

    aggregate = await ctx.audit.aggregate(ctx.shells, limit=limit, audit_filter=audit_filter if has_filter else None)

    if args.json:
        print_json({
            "entries": [e.model_dump(mode="json") for e in aggregate.entries],
            "unreachable": [str(e) for e in aggregate.unreachable],
            "unparsed": aggregate.unparsed_count,
        })
        return EXIT_OK

    if args.per_host:
        for read_result in aggregate.per_host:
            entries = [e for e in read_result.entries if not has_filter or audit_filter.matches(e)]
            entries = entries[-limit:] if limit else entries
            print(f"=== {read_result.host} ({len(entries)} entries) ===")
            for entry in entries:
                for line in entry.format_lines():
                    print(line)
    else:
        if not aggregate.entries:
            print("No audit entries found")
        for entry in aggregate.entries:
            print(entry.format_with_host())
            if entry.details:
                print(entry.format_lines()[-1])

    if aggregate.unparsed_count:
        print(f"({aggregate.unparsed_count} unparsable line(s) skipped)", file=sys.stderr)
    for host_error in aggregate.unreachable:
        print(f"Could not read {host_error}", file=sys.stderr)
    return EXIT_OK


# ============================================================================
# NETWORK COMMANDS
# ============================================================================

async def cmd_network_status(ctx: CommandContext, args) -> int:
    topology = await load_topology_from_any(ctx.repositories())
    if topology is None:
        print("Private network not initialized (no cluster metadata found)", file=sys.stderr)
        return EXIT_FAILURE

    now = int(datetime.now(timezone.utc).timestamp() * 1000)
    window = get_defaults().registry.active_window_ms
    print(f"Cluster CIDR:   {topology.cluster_cidr}")
    print(f"Service domain: {topology.service_domain}")
    print(f"Discovery:      {topology.discovery.value}")
    print(f"Created at:     {topology.created_at or 'unknown'}")
    print(f"Servers ({len(topology.servers)}):")
    for server in topology.servers:
        state = "active" if server.last_seen and now - server.last_seen <= window else "inactive"
        print(
            f"  {server.id:<16} {server.hostname:<20} {server.subnet:<18} "
            f"{server.overlay_ip:<15} {state:<8} last seen {age_ms(server.last_seen, now)}"
        )
    return EXIT_OK


async def cmd_network_inspect(ctx: CommandContext, args) -> int:
    repository = ctx.repository(ctx.shells[0])

    if args.container_id:
        container = await repository.query_container_by_id(args.container_id)
        if container is None:
            print(f"No container matches '{args.container_id}'", file=sys.stderr)
            return EXIT_FAILURE
        print_json(container.model_dump())
        return EXIT_OK

    containers = await repository.query_all_containers_with_details(args.service)
    if not containers:
        print("No containers registered")
        return EXIT_OK
    current_service = None
    for container in containers:
        if container.service != current_service:
            current_service = container.service
            print(f"{current_service}:")
        health = "healthy" if container.healthy else "UNHEALTHY"
        print(
            f"  {container.short_id}  {container.ip:<15} {container.server_hostname:<20} "
            f"{health:<10} started {format_ms(container.started_at)}"
        )
    return EXIT_OK


async def cmd_network_gc(ctx: CommandContext, args) -> int:
    topology = await load_topology_from_any(ctx.repositories())
    if topology is None:
        print("Private network not initialized, nothing to collect", file=sys.stderr)
        return EXIT_FAILURE
    if not topology.uses_registry:
        print(f"GC requires corrosion discovery (cluster uses {topology.discovery.value})", file=sys.stderr)
        return EXIT_FAILURE

    collector = GarbageCollector(
        ctx.repository(ctx.shells[0]),
        stale_threshold_seconds=args.stale_threshold,
        offline_threshold_seconds=args.offline_threshold,
    )
    with log_context(operation="network_gc", project=ctx.project):
        report = await collector.run(force=args.force)

    plan = report.plan
    for container in plan.stale_containers:
        note = " (since start)" if container.inferred else ""
        print(
            f"  stale    {container.id[:12]}  {container.service:<16} "
            f"unhealthy for {format_duration(container.unhealthy_for_seconds)}{note}"
        )
    for server in plan.offline_servers:
        print(f"  offline  {server.id:<16} {server.hostname:<20} {server.container_count} container(s)")
    print(report.summary())

    if not plan.empty:
        await ctx.audit.log_gc_run(ctx.shells, plan.summary(), {"deleted": report.deleted_count}, report.dry_run)
    return EXIT_OK


async def cmd_network_dns(ctx: CommandContext, args) -> int:
    for service in ctx.config.services:
        print(f"{service}: {', '.join(ctx.dns.hostnames(service))}")

    result = await ctx.fanout.map(ctx.shells, ctx.dns.trigger_hosts_update)
    print(result.summary("Hosts file update"))
    for host_error in result.host_errors:
        print(f"  {host_error}", file=sys.stderr)
    return EXIT_OK if result.all_succeeded else EXIT_FAILURE


async def cmd_network_stats(ctx: CommandContext, args) -> int:
    stats = await ctx.repository(ctx.shells[0]).get_db_stats()
    data = {**stats.as_dict(), "connections": ctx.pool.stats()}
    if args.json:
        print_json(data)
        return EXIT_OK
    for key, value in stats.as_dict().items():
        print(f"{key.replace('_', ' ').capitalize():<28} {value}")
    return EXIT_OK


# ============================================================================
# PARSER
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jiji",
        description="Cluster coordination: deployment locks, audit trail, service registry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s lock acquire "deploying web v2"
  %(prog)s -H 10.0.1.10 lock status
  %(prog)s audit -n 50 --status failed
  %(prog)s network gc --force
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", "-c", help="Deploy file (default: $JIJI_CONFIG or .jiji/deploy.yml)")
    parser.add_argument("--hosts", "-H", help="Comma-separated target hosts")
    parser.add_argument("--services", "-S", help="Comma-separated target services (trailing * allowed)")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON")

    commands = parser.add_subparsers(dest="command", required=True)

    # lock
    lock = commands.add_parser("lock", help="Deployment lock")
    lock_commands = lock.add_subparsers(dest="lock_command", required=True)

    acquire = lock_commands.add_parser("acquire", help="Acquire the lock on every target host")
    acquire.add_argument("message", help="Why the lock is held")
    acquire.add_argument("--force", "-f", action="store_true", help="Override existing locks")
    acquire.set_defaults(handler=cmd_lock_acquire)

    release = lock_commands.add_parser("release", help="Release the lock on every target host")
    release.set_defaults(handler=cmd_lock_release)

    status = lock_commands.add_parser("status", help="Lock state per host")
    status.add_argument("--json", action="store_true", help="JSON output")
    status.set_defaults(handler=cmd_lock_status)

    show = lock_commands.add_parser("show", help="Full lock record per host")
    show.set_defaults(handler=cmd_lock_show)

    cleanup = lock_commands.add_parser("cleanup", help="Remove locks whose process is gone")
    cleanup.add_argument(
        "--local", action="store_true",
        help="Check lock pids on this machine instead of on each host",
    )
    cleanup.set_defaults(handler=cmd_lock_cleanup)

    # audit
    audit = commands.add_parser("audit", help="Show the audit trail")
    audit.add_argument(
        "-n", "--lines", type=int, default=get_defaults().audit.default_lines,
        help="Number of entries (default: %(default)s)",
    )
    audit.add_argument("--filter", help="Action substring")
    audit.add_argument("--status", help="Entry status (started, success, failed, warning)")
    audit.add_argument("--since", help="Only entries at or after this date")
    audit.add_argument("--until", help="Only entries at or before this date")
    audit.add_argument("--raw", action="store_true", help="Print stored lines per host")
    audit.add_argument("--json", action="store_true", help="JSON output")
    audit.add_argument("--per-host", action="store_true", help="Group entries by host")
    audit.set_defaults(handler=cmd_audit)

    # network
    network = commands.add_parser("network", help="Private network and service registry")
    network_commands = network.add_subparsers(dest="network_command", required=True)

    net_status = network_commands.add_parser("status", help="Cluster topology")
    net_status.set_defaults(handler=cmd_network_status)

    inspect = network_commands.add_parser("inspect", help="Registered containers")
    inspect.add_argument("container_id", nargs="?", help="Container id or prefix")
    inspect.add_argument("--service", help="Only this service")
    inspect.set_defaults(handler=cmd_network_inspect)

    gc = network_commands.add_parser("gc", help="Collect stale and orphaned container records")
    gc.add_argument("--force", action="store_true", help="Delete (default is a dry run)")
    gc.add_argument(
        "--stale-threshold", type=int, default=get_defaults().gc.stale_threshold_seconds,
        help="Seconds unhealthy before a container is stale (default: %(default)s)",
    )
    gc.add_argument(
        "--offline-threshold", type=int, default=get_defaults().gc.offline_threshold_seconds,
        help="Seconds without heartbeat before a server is offline (default: %(default)s)",
    )
    gc.set_defaults(handler=cmd_network_gc)

    dns = network_commands.add_parser("dns", help="Service hostnames and hosts-file refresh")
    dns.set_defaults(handler=cmd_network_dns)

    stats = network_commands.add_parser("stats", help="Registry row counts")
    stats.add_argument("--json", action="store_true", help="JSON output")
    stats.set_defaults(handler=cmd_network_stats)

    return parser


def _split(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


# ============================================================================
# ENTRY POINT
# ============================================================================

async def run(args, shell_factory: Optional[Callable[[str], Shell]] = None) -> int:
    command = " ".join(filter(None, [args.command, getattr(args, "lock_command", None),
                                     getattr(args, "network_command", None)]))
    try:
        async with CommandContext.open(
            config_path=args.config,
            services=_split(args.services),
            hosts=_split(args.hosts),
            shell_factory=shell_factory,
        ) as ctx:
            with log_context(project=ctx.project, command=command):
                return await args.handler(ctx, args)
    except JijiError as e:
        logger.debug(f"{command} failed: {e!r}")
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_FAILURE


def main(argv: Optional[Sequence[str]] = None, shell_factory: Optional[Callable[[str], Shell]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, json_output=args.json_logs)
    return asyncio.run(run(args, shell_factory=shell_factory))


if __name__ == "__main__":
    sys.exit(main())
