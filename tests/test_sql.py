# ============================================================================
# SQL BINDING TESTS
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Tests - Parameter binding and row parsing
# PURPOSE: Verify values reach the registry as literals, never as SQL
# CREATED: 10 OCT 2026
# ============================================================================
"""
SQL Binding Tests

Covers:
1. sql_literal for every supported type and the rejected ones
2. bind_params substitution, quoting and missing parameters
3. like_prefix escaping of LIKE wildcards
4. parse_rows column splitting and short-row errors
5. CorrosionClient command shape, busy retry and readiness polling

Run with:
    pytest tests/test_sql.py -v
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from core.contracts import ContainerHealth
from core.errors import CommandError, CommandTimeoutError, DataFormatError, UnsafeValueError
from infrastructure.remote_shell import CommandResult
from repositories.corrosion import CorrosionClient, RegistryBusyError, parse_rows
from repositories.sql import bind_params, compact_sql, like_prefix, sql_literal

from conftest import SqliteRegistryShell


class TestSqlLiteral:

    def test_scalars(self):
        assert sql_literal(None) == "NULL"
        assert sql_literal(True) == "1"
        assert sql_literal(False) == "0"
        assert sql_literal(42) == "42"
        assert sql_literal(1.5) == "1.5"

    def test_string_quotes_are_doubled(self):
        assert sql_literal("o'brien") == "'o''brien'"

    def test_injection_attempt_stays_inside_literal(self):
        literal = sql_literal("x'; DROP TABLE containers; --")
        assert literal == "'x''; DROP TABLE containers; --'"

    def test_enum_uses_value(self):
        assert sql_literal(ContainerHealth.HEALTHY) == "'healthy'"

    def test_list_renders_for_in_clause(self):
        assert sql_literal(["a", "b", 3]) == "'a', 'b', 3"

    @pytest.mark.parametrize("value", [[], float("nan"), float("inf"), "nul\x00byte", object()])
    def test_rejected_values(self, value):
        with pytest.raises(UnsafeValueError):
            sql_literal(value)


class TestBindParams:

    def test_substitutes_every_placeholder(self):
        sql = bind_params(
            "SELECT ip FROM containers WHERE service = %(service)s AND healthy = %(healthy)s",
            {"service": "web", "healthy": True},
        )
        assert sql == "SELECT ip FROM containers WHERE service = 'web' AND healthy = 1"

    def test_repeated_placeholder(self):
        assert bind_params("%(x)s + %(x)s", {"x": 2}) == "2 + 2"

    def test_value_containing_placeholder_text_is_not_rebound(self):
        sql = bind_params("VALUES (%(a)s, %(b)s)", {"a": "%(b)s", "b": "x"})
        assert sql == "VALUES ('%(b)s', 'x')"

    def test_missing_parameter_raises(self):
        with pytest.raises(KeyError):
            bind_params("SELECT %(missing)s", {})

    def test_no_params(self):
        assert bind_params("SELECT 1") == "SELECT 1"

    def test_compact_sql(self):
        assert compact_sql("SELECT a,\n    b\n  FROM t") == "SELECT a, b FROM t"


class TestLikePrefix:

    def test_plain_prefix(self):
        assert like_prefix("3f2a") == "3f2a%"

    def test_wildcards_are_escaped(self):
        assert like_prefix("web_1%") == "web\\_1\\%%"

    def test_backslash_is_escaped_first(self):
        assert like_prefix("a\\b") == "a\\\\b%"


class TestParseRows:

    def test_splits_columns(self):
        rows = parse_rows("a|b|c\nd|e|f\n", 3)
        assert rows == [["a", "b", "c"], ["d", "e", "f"]]

    def test_null_is_empty_string(self):
        assert parse_rows("a||c", 3) == [["a", "", "c"]]

    def test_last_column_absorbs_pipes(self):
        assert parse_rows('1|["x|y"]', 2) == [["1", '["x|y"]']]

    def test_blank_lines_skipped(self):
        assert parse_rows("\n1\n\n2\n", 1) == [["1"], ["2"]]

    def test_short_row_raises(self):
        with pytest.raises(DataFormatError) as exc_info:
            parse_rows("a|b", 3, host="srv-1")
        assert exc_info.value.host == "srv-1"
        assert exc_info.value.raw == "a|b"


class FlakyShell(SqliteRegistryShell):
    """Reports SQLITE_BUSY for the first `busy_for` commands."""

    def __init__(self, busy_for: int):
        super().__init__()
        self.busy_for = busy_for

    async def execute(self, command, timeout=None):
        if self.busy_for > 0:
            self.busy_for -= 1
            self.commands.append(command)
            return CommandResult(host=self.host, command=command, exit_code=1, stderr="Error: database is locked")
        return await super().execute(command, timeout)


class StallingShell(SqliteRegistryShell):
    """Raises the given errors for the first commands, then answers."""

    def __init__(self, *errors):
        super().__init__()
        self.errors = list(errors)

    async def execute(self, command, timeout=None):
        if self.errors:
            raise self.errors.pop(0)
        return await super().execute(command, timeout)


class TestCorrosionClient:

    def test_command_quotes_statement(self, registry_shell):
        client = CorrosionClient(registry_shell)
        asyncio.run(client.query("SELECT %(v)s", {"v": "it's"}))

        command = registry_shell.commands[-1]
        assert command.startswith("/opt/jiji/corrosion/corrosion query --config /opt/jiji/corrosion/config.toml ")
        assert registry_shell.statements[-1] == "SELECT 'it''s'"

    def test_busy_write_is_retried(self):
        shell = FlakyShell(busy_for=2)
        client = CorrosionClient(shell)

        with patch("infrastructure.fanout.asyncio.sleep", new=AsyncMock()):
            asyncio.run(client.execute("CREATE TABLE t (x INTEGER)"))

        assert len(shell.commands) == 3
        assert shell.writes("CREATE") == ["CREATE TABLE t (x INTEGER)"]

    def test_busy_gives_up(self):
        shell = FlakyShell(busy_for=10)

        with patch("infrastructure.fanout.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(RegistryBusyError):
                asyncio.run(CorrosionClient(shell).execute("CREATE TABLE t (x INTEGER)"))

        assert len(shell.commands) == 3

    def test_other_failures_are_not_retried(self, registry_shell):
        with pytest.raises(CommandError):
            asyncio.run(CorrosionClient(registry_shell).execute("INSERT INTO missing VALUES (1)"))
        assert len(registry_shell.commands) == 1

    def test_wait_until_ready(self, registry_shell):
        assert asyncio.run(CorrosionClient(registry_shell).wait_until_ready(timeout=1, poll_interval=0))

    def test_wait_until_ready_times_out(self, registry_shell):
        registry_shell.fail_with = "connection refused"
        assert not asyncio.run(CorrosionClient(registry_shell).wait_until_ready(timeout=0, poll_interval=0))

    def test_wait_until_ready_survives_slow_checks(self):
        shell = StallingShell(
            CommandTimeoutError("Command timed out after 30s", host="registry-host"),
            OSError("ssh: not found"),
        )
        assert asyncio.run(CorrosionClient(shell).wait_until_ready(timeout=5, poll_interval=0))
        assert not shell.errors

    def test_wait_until_ready_times_out_on_errors(self):
        shell = StallingShell(*[OSError("ssh: not found")] * 3)
        assert not asyncio.run(CorrosionClient(shell).wait_until_ready(timeout=0, poll_interval=0))
