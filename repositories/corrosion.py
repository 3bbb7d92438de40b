# ============================================================================
# CORROSION CLIENT
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core - Registry access layer
# PURPOSE: Run SQL against the gossip-replicated registry through its CLI
# CREATED: 05 OCT 2026
# ============================================================================
"""
Corrosion Client

Corrosion replicates a SQLite database between cluster hosts. Each host
runs the agent; queries go through its CLI on whichever host we have a
shell on:

    /opt/jiji/corrosion/corrosion query --config /opt/jiji/corrosion/config.toml '<sql>'
    /opt/jiji/corrosion/corrosion exec  --config /opt/jiji/corrosion/config.toml '<sql>'

Query output is one row per line, columns separated by '|', NULL as an
empty string.

Reads are eventually consistent: a write on one host becomes visible on
the others after gossip propagation.
"""

import asyncio
import logging
import shlex
import time
from typing import Any, List, Mapping, Optional

from core.config.defaults import RegistryDefaults, get_defaults
from core.errors import CommandError, CommandTimeoutError, DataFormatError
from infrastructure.fanout import with_retry
from infrastructure.remote_shell import CommandResult, Shell
from repositories.sql import bind_params, compact_sql

logger = logging.getLogger(__name__)

BUSY_MARKER = "database is locked"


class RegistryBusyError(CommandError):
    """A write hit SQLITE_BUSY because another writer held the database."""


def parse_rows(stdout: str, ncols: int, host: Optional[str] = None) -> List[List[str]]:
    """
    Split pipe-delimited query output into rows.

    The last column absorbs any extra '|' characters.

    Raises:
        DataFormatError: If a row has fewer than ncols columns
    """
    rows = []
    for line in stdout.splitlines():
        if not line.strip():
            continue
        values = line.split("|", ncols - 1) if ncols > 1 else [line]
        if len(values) < ncols:
            raise DataFormatError(
                f"Expected {ncols} columns, got {len(values)}",
                raw=line,
                host=host,
            )
        rows.append([v.strip() for v in values])
    return rows


class CorrosionClient:
    """
    SQL access to the registry through one host's shell.

    Args:
        shell: Shell on a cluster host running the registry agent
        defaults: Registry defaults (paths, timeouts)
    """

    def __init__(self, shell: Shell, defaults: Optional[RegistryDefaults] = None):
        self.shell = shell
        self.defaults = defaults or get_defaults().registry

    @property
    def host(self) -> str:
        return self.shell.host

    def _command(self, verb: str, statement: str) -> str:
        return (
            f"{self.defaults.binary_path} {verb} --config {self.defaults.config_path} "
            f"{shlex.quote(statement)}"
        )

    async def query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> str:
        """
        Run a read query.

        Returns:
            Raw stdout

        Raises:
            CommandError: If the CLI exits non-zero
        """
        statement = bind_params(compact_sql(sql), params)
        result = await self.shell.run(self._command("query", statement), timeout=self.defaults.command_timeout)
        return result.stdout

    async def query_raw(self, statement: str) -> str:
        """Run an operator-written statement as-is (no placeholder binding)."""
        result = await self.shell.run(self._command("query", statement), timeout=self.defaults.command_timeout)
        return result.stdout

    async def query_rows(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        ncols: int = 1,
    ) -> List[List[str]]:
        """Run a read query and split the output into ncols-wide rows."""
        return parse_rows(await self.query(sql, params), ncols, host=self.host)

    async def query_scalar(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> str:
        """First column of the first row, '' when no rows."""
        rows = await self.query_rows(sql, params, ncols=1)
        return rows[0][0] if rows else ""

    async def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> CommandResult:
        """
        Run a write statement.

        Raises:
            CommandError: If the CLI exits non-zero
        """
        statement = bind_params(compact_sql(sql), params)
        return await with_retry(lambda: self._exec_once(statement), retry_on=(RegistryBusyError,))

    async def _exec_once(self, statement: str) -> CommandResult:
        result = await self.shell.execute(self._command("exec", statement), timeout=self.defaults.command_timeout)
        if not result.success and BUSY_MARKER in result.stderr.lower():
            raise RegistryBusyError(
                "Registry database busy",
                host=self.host,
                command=result.command,
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result.check()

    # =========================================================================
    # READINESS
    # =========================================================================

    async def wait_until_ready(
        self,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> bool:
        """
        Poll `SELECT 1` until the agent answers.

        Args:
            timeout: Seconds to wait (default 300)
            poll_interval: Seconds between probes (default 2)

        Returns:
            True when the agent answered, False on timeout
        """
        timeout = timeout if timeout is not None else self.defaults.sync_timeout_seconds
        poll_interval = poll_interval if poll_interval is not None else self.defaults.sync_poll_interval_seconds

        deadline = time.monotonic() + timeout
        started = time.monotonic()
        next_log = started + self.defaults.sync_log_interval_seconds

        while True:
            try:
                result = await self.shell.execute(self._command("query", "SELECT 1"), timeout=poll_interval + 30)
            except (CommandTimeoutError, OSError) as e:
                logger.debug(f"Registry readiness check on {self.host} failed: {e}")
                result = None
            if result is not None and result.success and result.stdout.strip() == "1":
                logger.info(f"Registry ready on {self.host} after {time.monotonic() - started:.1f}s")
                return True

            now = time.monotonic()
            if now >= deadline:
                logger.warning(f"Registry on {self.host} not ready after {timeout}s")
                return False
            if now >= next_log:
                logger.info(f"Waiting for registry on {self.host} ({now - started:.0f}s elapsed)")
                next_log = now + self.defaults.sync_log_interval_seconds

            await asyncio.sleep(poll_interval)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["CorrosionClient", "RegistryBusyError", "parse_rows"]
