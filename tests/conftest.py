# ============================================================================
# SHARED TEST FIXTURES
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Tests - Fakes and fixtures
# PURPOSE: Temp-dir hosts and an in-memory registry behind a shell
# CREATED: 10 OCT 2026
# ============================================================================
"""
Shared fixtures.

- local_hosts: factory for LocalShells, each rooted in its own temp dir,
  so lock and audit files land in separate "hosts"
- SqliteRegistryShell: answers registry CLI commands from an in-memory
  SQLite database, rendering rows the way the CLI does ('|' separated,
  NULL as empty)
"""

import shlex
import sqlite3
from typing import List, Optional

import pytest

from core.config.defaults import reset_defaults
from infrastructure.remote_shell import CommandResult, LocalShell, Shell
from repositories.corrosion import CorrosionClient
from repositories.registry_repo import RegistryRepository


class SqliteRegistryShell(Shell):
    """Shell whose registry CLI is backed by sqlite3."""

    def __init__(self, host: str = "fake-1", conn: Optional[sqlite3.Connection] = None):
        self.host = host
        self.conn = conn or sqlite3.connect(":memory:")
        self.statements: List[str] = []
        self.commands: List[str] = []
        self.fail_with: Optional[str] = None

    async def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        self.commands.append(command)
        if self.fail_with:
            return CommandResult(host=self.host, command=command, exit_code=1, stderr=self.fail_with)

        args = shlex.split(command)
        if len(args) < 2 or not args[0].endswith("corrosion") or args[1] not in ("query", "exec"):
            return CommandResult(host=self.host, command=command, exit_code=0)

        statement = args[-1]
        self.statements.append(statement)
        try:
            rows = self.conn.execute(statement).fetchall()
            self.conn.commit()
        except sqlite3.Error as e:
            return CommandResult(host=self.host, command=command, exit_code=1, stderr=str(e))

        stdout = "\n".join(
            "|".join("" if value is None else str(value) for value in row)
            for row in rows
        )
        return CommandResult(host=self.host, command=command, exit_code=0, stdout=stdout)

    async def process_running(self, pid: int) -> bool:
        return False

    def writes(self, prefix: str) -> List[str]:
        return [s for s in self.statements if s.upper().startswith(prefix.upper())]


@pytest.fixture(autouse=True)
def fresh_defaults(monkeypatch):
    """Defaults are cached process-wide; rebuild them for every test."""
    for name in ("JIJI_STATE_DIR", "JIJI_CONFIG", "LOG_FORMAT"):
        monkeypatch.delenv(name, raising=False)
    reset_defaults()
    yield
    reset_defaults()


@pytest.fixture
def local_hosts(tmp_path):
    """Factory: local_hosts(n) -> n LocalShells in separate temp dirs."""
    def _make(count: int = 2, prefix: str = "host") -> List[LocalShell]:
        shells = []
        for i in range(1, count + 1):
            root = tmp_path / f"{prefix}-{i}"
            root.mkdir(exist_ok=True)
            shells.append(LocalShell(host=f"{prefix}-{i}", cwd=str(root)))
        return shells
    return _make


@pytest.fixture
def registry_shell():
    shell = SqliteRegistryShell()
    yield shell
    shell.conn.close()


@pytest.fixture
def registry(registry_shell):
    """RegistryRepository over an in-memory database with the schema applied."""
    import asyncio

    repo = RegistryRepository(CorrosionClient(registry_shell))
    asyncio.run(repo.apply_schema())
    return repo
