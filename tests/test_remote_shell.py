# ============================================================================
# REMOTE SHELL TESTS
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Tests - Command execution and connection pooling
# PURPOSE: Verify command results, timeouts, ssh argv and connect retry
# CREATED: 11 OCT 2026
# ============================================================================
"""
Remote Shell Tests

Covers:
1. LocalShell captures stdout/stderr/exit code; non-zero is not raised
2. run() raises CommandError; check() carries host and exit code
3. Timeout kills the command and raises CommandTimeoutError; so does a
   fanout timeout or cancellation (local child and remote command)
4. process_running via psutil
5. SSHSettings.base_args (multiplexing, key, batch mode)
6. RemoteShell.connect retries on ssh connection failure only
7. ConnectionPool partitions reachable and unreachable hosts

Run with:
    pytest tests/test_remote_shell.py -v
"""

import asyncio
import os
import time
from unittest.mock import AsyncMock, patch

import pytest

from core.errors import CommandError, CommandTimeoutError, ConnectivityError
from infrastructure.connection_pool import ConnectionPool
from infrastructure.fanout import HostFanout
from infrastructure.remote_shell import (
    CommandResult, LocalShell, RemoteShell, SSHSettings, SSH_CONNECTION_FAILED,
)


def result(exit_code=0, stdout="", stderr="", host="web-1"):
    return CommandResult(host=host, command="true", exit_code=exit_code, stdout=stdout, stderr=stderr)


# ============================================================================
# LOCAL SHELL
# ============================================================================

class TestLocalShell:

    def test_execute_captures_output(self, tmp_path):
        shell = LocalShell(host="local", cwd=str(tmp_path))
        out = asyncio.run(shell.execute("echo hello; echo oops >&2; exit 3"))

        assert out.exit_code == 3
        assert out.stdout == "hello\n"
        assert out.stderr == "oops\n"
        assert not out.success
        assert out.host == "local"

    def test_runs_in_cwd(self, tmp_path):
        shell = LocalShell(cwd=str(tmp_path))
        out = asyncio.run(shell.execute("pwd"))
        assert os.path.realpath(out.stdout.strip()) == os.path.realpath(str(tmp_path))

    def test_run_raises_on_failure(self):
        shell = LocalShell(host="local")
        with pytest.raises(CommandError) as exc_info:
            asyncio.run(shell.run("echo broken >&2; exit 2"))

        assert exc_info.value.host == "local"
        assert exc_info.value.exit_code == 2
        assert "broken" in str(exc_info.value)

    def test_timeout_kills_command(self):
        shell = LocalShell(host="local")
        start = time.monotonic()

        with pytest.raises(CommandTimeoutError):
            asyncio.run(shell.execute("sleep 10", timeout=0.2))

        assert time.monotonic() - start < 5

    def test_fanout_timeout_stops_command(self, tmp_path):
        shell = LocalShell(host="local", cwd=str(tmp_path))
        fanout = HostFanout(timeout=0.3)

        result = asyncio.run(fanout.map([shell], lambda s: s.execute("sleep 1.5; touch marker")))

        assert isinstance(result.host_errors[0].error, CommandTimeoutError)
        time.sleep(2.5)
        assert not (tmp_path / "marker").exists()

    def test_process_running(self):
        shell = LocalShell()
        assert asyncio.run(shell.process_running(os.getpid()))
        assert not asyncio.run(shell.process_running(4_000_000))


class TestCommandResult:

    def test_check_returns_self(self):
        ok = result(stdout="fine")
        assert ok.check() is ok

    def test_check_prefers_stderr_detail(self):
        with pytest.raises(CommandError, match="disk full"):
            result(exit_code=1, stdout="partial", stderr="disk full").check()

    def test_check_without_output(self):
        with pytest.raises(CommandError, match="no output"):
            result(exit_code=1).check()


# ============================================================================
# SSH SETTINGS
# ============================================================================

class TestSSHSettings:

    def test_base_args(self):
        settings = SSHSettings(user="deploy", port=2222, key_path="/keys/id", connect_timeout=7)
        args = settings.base_args("10.0.1.10")

        assert args[0] == "ssh"
        assert args[-1] == "deploy@10.0.1.10"
        assert ["-p", "2222"] == args[1:3]
        assert "BatchMode=yes" in args
        assert "ConnectTimeout=7" in args
        assert "ControlMaster=auto" in args
        assert args[args.index("-i") + 1] == "/keys/id"

    def test_no_key_by_default(self):
        assert "-i" not in SSHSettings(key_path=None).base_args("web-1")

    def test_defaults_from_env(self, monkeypatch):
        from core.config.defaults import reset_defaults

        monkeypatch.setenv("JIJI_SSH_USER", "ops")
        monkeypatch.setenv("JIJI_SSH_PORT", "2200")
        reset_defaults()

        settings = SSHSettings()
        assert settings.user == "ops"
        assert settings.port == 2200


# ============================================================================
# REMOTE SHELL CONNECT
# ============================================================================

class HangingProcess:
    """Stands in for an ssh child that never finishes."""

    def __init__(self):
        self.returncode = None
        self.killed = False

    async def communicate(self):
        await asyncio.sleep(3600)

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


class TestRemoteShellConnect:

    @pytest.fixture
    def shell(self, tmp_path):
        return RemoteShell("web-1", SSHSettings(control_dir=str(tmp_path / "ctl")))

    def test_connect_success(self, shell):
        with patch.object(shell, "_run_ssh", new=AsyncMock(return_value=result(stdout="jiji-ok\n"))):
            asyncio.run(shell.connect(retries=3, retry_delay=0))
        assert shell.connected

    def test_connect_retries_connection_failures(self, shell):
        outcomes = [
            result(exit_code=SSH_CONNECTION_FAILED, stderr="Connection refused"),
            result(stdout="jiji-ok\n"),
        ]
        with patch.object(shell, "_run_ssh", new=AsyncMock(side_effect=outcomes)) as run_ssh:
            asyncio.run(shell.connect(retries=3, retry_delay=0))

        assert run_ssh.await_count == 2
        assert shell.connected

    def test_connect_gives_up_after_retries(self, shell):
        failure = result(exit_code=SSH_CONNECTION_FAILED, stderr="No route to host")
        with patch.object(shell, "_run_ssh", new=AsyncMock(return_value=failure)) as run_ssh:
            with pytest.raises(ConnectivityError, match="No route to host"):
                asyncio.run(shell.connect(retries=3, retry_delay=0))

        assert run_ssh.await_count == 3
        assert not shell.connected

    def test_check_command_failure_is_not_retried(self, shell):
        failure = result(exit_code=127, stderr="sh: not found")
        with patch.object(shell, "_run_ssh", new=AsyncMock(return_value=failure)) as run_ssh:
            with pytest.raises(ConnectivityError) as exc_info:
                asyncio.run(shell.connect(retries=3, retry_delay=0))

        assert run_ssh.await_count == 1
        assert exc_info.value.host == "web-1"

    def test_process_running_parses_output(self, shell):
        with patch.object(shell, "_run_ssh", new=AsyncMock(return_value=result(stdout="running\n"))):
            assert asyncio.run(shell.process_running(42))
        with patch.object(shell, "_run_ssh", new=AsyncMock(return_value=result(stdout="stopped\n"))):
            assert not asyncio.run(shell.process_running(42))

    def test_cancel_kills_local_ssh_and_remote_command(self, shell):
        proc = HangingProcess()

        async def _cancel():
            task = asyncio.create_task(shell.execute("sleep 600"))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        with patch("infrastructure.remote_shell.asyncio.create_subprocess_exec", new=AsyncMock(return_value=proc)), \
                patch.object(shell, "_kill_remote", new=AsyncMock()) as kill_remote:
            asyncio.run(_cancel())

        assert proc.killed
        kill_remote.assert_awaited_once()
        assert kill_remote.await_args.args[0].startswith("/tmp/jiji-")


# ============================================================================
# CONNECTION POOL
# ============================================================================

class UnreachableShell(LocalShell):

    async def connect(self, retries: int = 1, retry_delay: float = 0.0) -> None:
        raise ConnectivityError("SSH connection failed after 1 attempt(s): timed out", host=self.host)


class TestConnectionPool:

    def test_partitions_reachable_hosts(self):
        def factory(host):
            return UnreachableShell(host) if host.startswith("dead") else LocalShell(host)

        async def _connect():
            async with ConnectionPool(shell_factory=factory, max_connections=2) as pool:
                connected = await pool.connect_all(["web-1", "dead-1", "web-2"])
                return connected, pool.stats(), pool.get("web-2")

        connected, stats, shell = asyncio.run(_connect())

        assert connected.succeeded_hosts == ["web-1", "web-2"]
        assert connected.failed_hosts == ["dead-1"]
        assert isinstance(connected.host_errors[0].error, ConnectivityError)
        assert stats["connected"] == 2
        assert stats["in_flight"] == 0
        assert shell.host == "web-2"

    def test_reuses_connected_shell(self):
        created = []

        def factory(host):
            created.append(host)
            return LocalShell(host)

        async def _connect():
            pool = ConnectionPool(shell_factory=factory)
            await pool.connect_all(["web-1"])
            await pool.connect_all(["web-1"])
            await pool.close()
            return pool

        pool = asyncio.run(_connect())
        assert created == ["web-1"]
        assert pool.shells == []
