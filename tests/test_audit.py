# ============================================================================
# AUDIT TRAIL TESTS
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Tests - Audit format, parsing and multi-host aggregation
# PURPOSE: Verify entries are written, read back and merged correctly
# CREATED: 10 OCT 2026
# ============================================================================
"""
Audit Trail Tests

Covers:
1. Entry line grammar: format and parse (with and without host)
2. Detail lines attach to the entry above them
3. Unparsable lines are reported separately, not guessed
4. AuditFilter matching and input validation
5. AuditTrail.log writes header + entries on every host
6. read(limit) returns exactly the last N entries with their details
7. aggregate merges hosts in timestamp order, reports unreachable hosts
8. log never raises, even when every host fails
9. Typed helpers (lock, server init, deploy, rollback, container, gc, custom)

Run with:
    pytest tests/test_audit.py -v
"""

import asyncio
from pathlib import Path
from typing import Optional
from unittest.mock import AsyncMock

import pytest

from core.contracts import AuditStatus
from core.models.audit import AuditEntry, AuditFilter, normalize_action, parse_audit_lines
from infrastructure.remote_shell import CommandResult, Shell
from services.audit_service import AuditTrail


class BrokenShell(Shell):
    """Every command fails."""

    def __init__(self, host: str = "broken-1"):
        self.host = host

    async def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        return CommandResult(host=self.host, command=command, exit_code=1, stderr="Permission denied")

    async def process_running(self, pid: int) -> bool:
        return False


def audit_file(shell) -> Path:
    return Path(shell.cwd) / ".jiji" / "shop" / "audit.txt"


# ============================================================================
# ENTRY FORMAT
# ============================================================================

class TestEntryFormat:

    def test_format_line(self):
        entry = AuditEntry.create(
            "deployment_lock", AuditStatus.SUCCESS, "Lock acquired: deploy v2",
            timestamp="2026-10-01T12:00:00.000Z",
        )
        assert entry.format_lines() == [
            "[2026-10-01T12:00:00.000Z] [SUCCESS ] DEPLOYMENT_LOCK - Lock acquired: deploy v2"
        ]

    def test_details_line_is_compact_json(self):
        entry = AuditEntry.create(
            "service_deploy", AuditStatus.STARTED, "Deploy web",
            details={"service": "web", "version": "v2"},
            timestamp="2026-10-01T12:00:00.000Z",
        )
        assert entry.format_lines()[1] == '    Details: {"service":"web","version":"v2"}'

    def test_message_is_single_line(self):
        entry = AuditEntry.create("x", AuditStatus.SUCCESS, "one\ntwo   three")
        assert entry.message == "one two three"

    def test_normalize_action(self):
        assert normalize_action("Service Deploy!") == "service_deploy"
        assert normalize_action("   ") == "unknown"

    def test_parse_round_trip(self):
        entry = AuditEntry.create(
            "server_init", AuditStatus.FAILED, "Server initialization failed",
            timestamp="2026-10-01T12:00:00.000Z",
        )
        parsed = AuditEntry.parse(entry.format_lines()[0], host="web-1")

        assert parsed.action == "server_init"
        assert parsed.status == AuditStatus.FAILED
        assert parsed.message == "Server initialization failed"
        assert parsed.host == "web-1"

    def test_parse_embedded_host_wins(self):
        line = "[2026-10-01T12:00:00.000Z] [SUCCESS ] [web-2] DEPLOYMENT_LOCK - Lock released"
        parsed = AuditEntry.parse(line, host="web-1")
        assert parsed.host == "web-2"
        assert parsed.action == "deployment_lock"
        assert parsed.message == "Lock released"

    def test_parse_without_message(self):
        parsed = AuditEntry.parse("[2026-10-01T12:00:00Z] [STARTED] SERVER_INIT")
        assert parsed.action == "server_init"
        assert parsed.message == ""

    def test_message_may_contain_dashes_and_brackets(self):
        parsed = AuditEntry.parse("[2026-10-01T12:00:00Z] [FAILED  ] SERVICE_DEPLOY - web [v2] - exit 1")
        assert parsed.message == "web [v2] - exit 1"

    @pytest.mark.parametrize("line", [
        "garbage",
        "[not-a-date] [SUCCESS ] X - y",
        "[2026-10-01T12:00:00Z] [EXPLODED] X - y",
    ])
    def test_unparsable(self, line):
        assert AuditEntry.parse(line) is None


class TestParseLines:

    def test_details_attach_and_garbage_is_reported(self):
        lines = [
            "# Jiji Audit Trail",
            "",
            "[2026-10-01T12:00:00.000Z] [STARTED ] SERVICE_DEPLOY - Deploy web",
            '    Details: {"service":"web"}',
            "something unexpected",
            "[2026-10-01T12:01:00.000Z] [SUCCESS ] SERVICE_DEPLOY - Deploy web: success",
            "    Details: not json",
        ]
        entries, unparsed = parse_audit_lines(lines, host="web-1")

        assert len(entries) == 2
        assert entries[0].details == {"service": "web"}
        assert entries[1].details == {"raw": "not json"}
        assert unparsed == ["something unexpected"]
        assert all(e.host == "web-1" for e in entries)


class TestAuditFilter:

    @pytest.fixture
    def entries(self):
        return [
            AuditEntry.create("deployment_lock", AuditStatus.SUCCESS, timestamp="2026-10-01T10:00:00Z"),
            AuditEntry.create("service_deploy", AuditStatus.FAILED, timestamp="2026-10-02T10:00:00Z"),
            AuditEntry.create("service_rollback", AuditStatus.SUCCESS, timestamp="2026-10-03T10:00:00Z"),
        ]

    def test_action_substring_case_insensitive(self, entries):
        audit_filter = AuditFilter.build(action="SERVICE")
        assert [e.action for e in entries if audit_filter.matches(e)] == ["service_deploy", "service_rollback"]

    def test_status(self, entries):
        audit_filter = AuditFilter.build(status="FAILED")
        assert [e.action for e in entries if audit_filter.matches(e)] == ["service_deploy"]

    def test_date_bounds_inclusive(self, entries):
        audit_filter = AuditFilter.build(since="2026-10-02T10:00:00Z", until="2026-10-03T10:00:00Z")
        assert [e.action for e in entries if audit_filter.matches(e)] == ["service_deploy", "service_rollback"]

    def test_invalid_input(self):
        with pytest.raises(ValueError):
            AuditFilter.build(status="exploded")
        with pytest.raises(ValueError):
            AuditFilter.build(since="yesterday-ish")


# ============================================================================
# AUDIT TRAIL OVER SHELLS
# ============================================================================

class TestAuditTrail:

    def test_log_writes_header_and_entry_on_every_host(self, local_hosts):
        shells = local_hosts(2)
        trail = AuditTrail("shop")

        result = asyncio.run(trail.log(shells, "deployment_lock", AuditStatus.SUCCESS, "Lock acquired: x"))

        assert result.all_succeeded
        for shell in shells:
            content = audit_file(shell).read_text()
            assert content.startswith("# Jiji Audit Trail\n")
            assert f"# Server: {shell.host}" in content
            assert "DEPLOYMENT_LOCK - Lock acquired: x" in content

    def test_header_written_once(self, local_hosts):
        (shell,) = local_hosts(1)
        trail = AuditTrail("shop")

        asyncio.run(trail.log([shell], "a", AuditStatus.STARTED))
        asyncio.run(trail.log([shell], "a", AuditStatus.SUCCESS))

        assert audit_file(shell).read_text().count("# Jiji Audit Trail") == 1

    def test_message_with_quotes_and_dollar_is_stored_verbatim(self, local_hosts):
        (shell,) = local_hosts(1)
        trail = AuditTrail("shop")
        asyncio.run(trail.log([shell], "custom_command", AuditStatus.SUCCESS, "it's $HOME `id`"))
        assert "it's $HOME `id`" in audit_file(shell).read_text()

    def test_read_returns_last_n_entries_with_details(self, local_hosts):
        (shell,) = local_hosts(1)
        trail = AuditTrail("shop")

        async def _write():
            for i in range(6):
                await trail.log([shell], "step", AuditStatus.SUCCESS, f"step {i}", details={"i": i})

        asyncio.run(_write())
        result = asyncio.run(trail.read(shell, limit=3))

        assert [e.message for e in result.entries] == ["step 3", "step 4", "step 5"]
        assert [e.details["i"] for e in result.entries] == [3, 4, 5]
        assert result.unparsed == []

    def test_read_missing_file(self, local_hosts):
        (shell,) = local_hosts(1)
        result = asyncio.run(AuditTrail("shop").read(shell, limit=5))
        assert result.entries == []

    def test_aggregate_orders_by_timestamp_across_hosts(self, local_hosts):
        shells = local_hosts(2)
        audit_file(shells[0]).parent.mkdir(parents=True)
        audit_file(shells[1]).parent.mkdir(parents=True)
        audit_file(shells[0]).write_text(
            "[2026-10-01T10:00:00.000Z] [SUCCESS ] A - first\n"
            "[2026-10-01T12:00:00.000Z] [SUCCESS ] C - third\n"
        )
        audit_file(shells[1]).write_text(
            "[2026-10-01T11:00:00.000Z] [FAILED  ] B - second\n"
            "[2026-10-01T13:00:00.000Z] [SUCCESS ] D - fourth\n"
        )

        aggregate = asyncio.run(AuditTrail("shop").aggregate(shells, limit=3))

        assert [e.action for e in aggregate.entries] == ["b", "c", "d"]
        assert [e.host for e in aggregate.entries] == ["host-2", "host-1", "host-2"]

    def test_aggregate_filters_before_limit(self, local_hosts):
        shells = local_hosts(2)
        trail = AuditTrail("shop")
        for shell in shells:
            audit_file(shell).parent.mkdir(parents=True)
        audit_file(shells[0]).write_text(
            "[2026-10-01T10:00:00.000Z] [FAILED  ] DEPLOY - old failure\n"
            + "".join(f"[2026-10-01T11:0{i}:00.000Z] [SUCCESS ] DEPLOY - ok {i}\n" for i in range(5))
        )

        aggregate = asyncio.run(trail.aggregate(shells, limit=1, audit_filter=AuditFilter.build(status="failed")))

        assert [e.message for e in aggregate.entries] == ["old failure"]

    def test_aggregate_reports_unreachable(self, local_hosts):
        shells = local_hosts(1) + [BrokenShell()]
        trail = AuditTrail("shop")
        asyncio.run(trail.log(shells[:1], "a", AuditStatus.SUCCESS, "ok"))

        aggregate = asyncio.run(trail.aggregate(shells, limit=10))

        assert len(aggregate.entries) == 1
        assert [e.host for e in aggregate.unreachable] == ["broken-1"]

    def test_log_never_raises(self):
        trail = AuditTrail("shop")
        result = asyncio.run(trail.log([BrokenShell("b1"), BrokenShell("b2")], "a", AuditStatus.SUCCESS))
        assert result.all_failed

    def test_log_survives_fanout_crash(self):
        trail = AuditTrail("shop")
        trail.fanout.map = AsyncMock(side_effect=RuntimeError("boom"))
        assert asyncio.run(trail.log([BrokenShell()], "a", AuditStatus.SUCCESS)) is None

    def test_gc_helper_marks_dry_run_as_warning(self, local_hosts):
        (shell,) = local_hosts(1)
        trail = AuditTrail("shop")
        asyncio.run(trail.log_gc_run([shell], "3 records", {"deleted": 0}, dry_run=True))

        result = asyncio.run(trail.read(shell))
        assert result.entries[0].status == AuditStatus.WARNING
        assert result.entries[0].message == "Dry run: 3 records"

    @pytest.mark.parametrize("emit, action, status, message", [
        (lambda t, s: t.log_server_init(s, AuditStatus.STARTED),
         "server_init", AuditStatus.STARTED, "Server initialization started"),
        (lambda t, s: t.log_service_deploy(s, "web", AuditStatus.SUCCESS, version="v2"),
         "service_deploy", AuditStatus.SUCCESS, "Deploy web version v2: success"),
        (lambda t, s: t.log_service_rollback(s, "web", "v1", AuditStatus.FAILED),
         "service_rollback", AuditStatus.FAILED, "Rollback web to v1: failed"),
        (lambda t, s: t.log_container_event(s, "stopped", "3f2a9c0e4b5d7788", service="web"),
         "container_stopped", AuditStatus.SUCCESS, "Container 3f2a9c0e4b5d stopped (web)"),
        (lambda t, s: t.log_custom_command(s, "df -h", AuditStatus.SUCCESS),
         "custom_command", AuditStatus.SUCCESS, "Executed: df -h"),
    ])
    def test_event_helpers(self, local_hosts, emit, action, status, message):
        (shell,) = local_hosts(1)
        trail = AuditTrail("shop")
        asyncio.run(emit(trail, [shell]))

        (entry,) = asyncio.run(trail.read(shell)).entries
        assert entry.action.lower() == action
        assert entry.status == status
        assert entry.message == message
