# ============================================================================
# REMOTE SHELL
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Infrastructure - Command execution on cluster hosts
# PURPOSE: Run shell commands on a host over the system OpenSSH client
# LAST_REVIEWED: 12 OCT 2026
# EXPORTS: Shell, RemoteShell, LocalShell, CommandResult, SSHSettings
# DEPENDENCIES: asyncio, psutil
# ============================================================================
"""
Remote Shell

Every cluster operation is "run this command on that host". RemoteShell
wraps the system `ssh` binary with connection multiplexing
(ControlMaster), so one TCP/SSH session per host is reused by every
command of a CLI invocation.

Guarantees:
- Commands on one shell are serialized (session semaphore)
- A command that exceeds its timeout is killed locally AND on the host:
  each command records its remote shell pid in a temp file, and the
  timeout path kills that pid's children and the pid itself
- Non-zero exit codes are returned, not raised; call result.check()
  where a failure should abort

LocalShell offers the same interface for the operator's machine (and for
tests against a temp directory).

Usage:
    from infrastructure.remote_shell import RemoteShell, SSHSettings

    shell = RemoteShell("10.0.1.10", SSHSettings(user="deploy"))
    await shell.connect()
    result = await shell.execute("uptime", timeout=10)
    print(result.stdout)
    await shell.close()
"""

import asyncio
import logging
import os
import shlex
import signal
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

import psutil

from core.config.defaults import get_defaults
from core.errors import CommandError, CommandTimeoutError, ConnectivityError

logger = logging.getLogger(__name__)

# ssh exits 255 when the connection itself failed
SSH_CONNECTION_FAILED = 255
CONNECT_PROBE = "echo jiji-ok"


# ============================================================================
# RESULT
# ============================================================================

@dataclass
class CommandResult:
    """Outcome of one command on one host."""
    host: str
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def check(self) -> "CommandResult":
        """
        Raise CommandError unless the command exited 0.

        Returns:
            self, for chaining
        """
        if not self.success:
            detail = self.stderr.strip() or self.stdout.strip() or "no output"
            raise CommandError(
                f"Command failed with exit code {self.exit_code}: {detail[:300]}",
                host=self.host,
                command=self.command,
                exit_code=self.exit_code,
                stderr=self.stderr,
            )
        return self


# ============================================================================
# SETTINGS
# ============================================================================

@dataclass
class SSHSettings:
    """How to reach hosts over SSH."""
    user: str = field(default_factory=lambda: get_defaults().ssh.user)
    port: int = field(default_factory=lambda: get_defaults().ssh.port)
    key_path: Optional[str] = field(default_factory=lambda: get_defaults().ssh.key_path)
    connect_timeout: int = field(default_factory=lambda: get_defaults().ssh.connect_timeout)
    server_alive_interval: int = field(default_factory=lambda: get_defaults().ssh.server_alive_interval)
    control_persist: int = field(default_factory=lambda: get_defaults().ssh.control_persist)
    control_dir: str = field(default_factory=lambda: get_defaults().ssh.control_dir)
    max_sessions_per_host: int = field(default_factory=lambda: get_defaults().ssh.max_sessions_per_host)
    ssh_binary: str = "ssh"
    extra_options: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, ssh_config) -> "SSHSettings":
        """Build from the deploy file's ssh section (core.config.SSHConfig)."""
        return cls(
            user=ssh_config.user,
            port=ssh_config.port,
            key_path=ssh_config.key_path,
            connect_timeout=ssh_config.connect_timeout,
        )

    def base_args(self, host: str) -> List[str]:
        """ssh argv up to and including the destination."""
        control_path = os.path.join(os.path.expanduser(self.control_dir), "%C")
        args = [
            self.ssh_binary,
            "-p", str(self.port),
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", f"ServerAliveInterval={self.server_alive_interval}",
            "-o", "StrictHostKeyChecking=accept-new",
            "-o", "ControlMaster=auto",
            "-o", f"ControlPath={control_path}",
            "-o", f"ControlPersist={self.control_persist}",
        ]
        if self.key_path:
            args.extend(["-i", os.path.expanduser(self.key_path)])
        for option in self.extra_options:
            args.extend(["-o", option])
        args.append(f"{self.user}@{host}")
        return args


# ============================================================================
# SHELL INTERFACE
# ============================================================================

class Shell(ABC):
    """
    A place to run shell commands.

    Attributes:
        host: Host identifier used in logs, errors and summaries
    """

    host: str

    @abstractmethod
    async def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """Run a command and capture its output. Non-zero exit is not an error."""

    @abstractmethod
    async def process_running(self, pid: int) -> bool:
        """Whether a process with this pid exists on the host."""

    async def run(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """execute() then check(): raises CommandError on non-zero exit."""
        result = await self.execute(command, timeout=timeout)
        return result.check()

    async def connect(self, retries: int = 1, retry_delay: float = 0.0) -> None:
        return None

    async def close(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.host!r})"


# ============================================================================
# REMOTE SHELL
# ============================================================================

class RemoteShell(Shell):
    """
    Command execution on one host over the system ssh client.

    One instance per host per invocation. Commands are serialized through
    a session semaphore sized by max_sessions_per_host.
    """

    def __init__(self, host: str, settings: Optional[SSHSettings] = None):
        self.host = host
        self.settings = settings or SSHSettings()
        self.connected = False
        self._session = asyncio.Semaphore(max(1, self.settings.max_sessions_per_host))

    # ------------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------------

    async def connect(self, retries: int = 3, retry_delay: float = 1.0) -> None:
        """
        Open the multiplexed master connection.

        Args:
            retries: Attempts before giving up
            retry_delay: Delay before the second attempt; doubled each time

        Raises:
            ConnectivityError: If every attempt failed
        """
        os.makedirs(os.path.expanduser(self.settings.control_dir), mode=0o700, exist_ok=True)

        last_error = "unknown error"
        attempts = max(1, retries)
        for attempt in range(1, attempts + 1):
            try:
                result = await self._run_ssh(CONNECT_PROBE, timeout=self.settings.connect_timeout + 5)
                if result.success and "jiji-ok" in result.stdout:
                    self.connected = True
                    logger.debug(f"Connected to {self.host} (attempt {attempt}/{attempts})")
                    return
                last_error = result.stderr.strip() or f"exit code {result.exit_code}"
                if result.exit_code != SSH_CONNECTION_FAILED:
                    # Reached the host but the probe failed; retrying will not help
                    break
            except CommandTimeoutError:
                last_error = f"timed out after {self.settings.connect_timeout + 5}s"
            except OSError as e:
                last_error = str(e)

            if attempt < attempts:
                delay = retry_delay * (2 ** (attempt - 1))
                logger.debug(f"Connect to {self.host} failed ({last_error}), retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

        raise ConnectivityError(f"SSH connection failed after {attempts} attempt(s): {last_error}", host=self.host)

    async def close(self) -> None:
        """Tear down the control master. Safe to call more than once."""
        if not self.connected:
            return
        self.connected = False

        args = self.settings.base_args(self.host)
        args[1:1] = ["-O", "exit"]
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await asyncio.wait_for(proc.wait(), timeout=10)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Control master teardown for {self.host} failed: {e}")

    # ------------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------------

    async def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """
        Run a command on the host.

        Args:
            command: POSIX shell command line
            timeout: Seconds before the command is killed (local and remote)

        Returns:
            CommandResult

        Raises:
            CommandTimeoutError: If the timeout expired
            OSError: If the ssh binary cannot be started
        """
        async with self._session:
            return await self._run_ssh(command, timeout=timeout)

    async def process_running(self, pid: int) -> bool:
        result = await self.execute(f"kill -0 {int(pid)} 2>/dev/null && echo running || echo stopped", timeout=30)
        return result.stdout.strip() == "running"

    async def _run_ssh(self, command: str, timeout: Optional[float]) -> CommandResult:
        pid_file = f"/tmp/jiji-{uuid.uuid4().hex[:12]}.pid"
        wrapped = f"echo $$ > {pid_file}; trap 'rm -f {pid_file}' EXIT; {command}"
        args = self.settings.base_args(self.host) + ["sh -c " + shlex.quote(wrapped)]

        start = time.monotonic()
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._abandon(proc, pid_file)
            raise CommandTimeoutError(
                f"Command timed out after {timeout}s",
                host=self.host,
                command=command,
            ) from None
        except asyncio.CancelledError:
            # Fanout timeouts and callers cancel; the command must not outlive them
            await self._abandon(proc, pid_file)
            raise

        return CommandResult(
            host=self.host,
            command=command,
            exit_code=proc.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    async def _abandon(self, proc: asyncio.subprocess.Process, pid_file: str) -> None:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        await self._kill_remote(pid_file)

    async def _kill_remote(self, pid_file: str) -> None:
        """Kill an abandoned command's process tree on the host."""
        kill = (
            f"if [ -f {pid_file} ]; then p=$(cat {pid_file}); "
            f"pkill -TERM -P \"$p\" 2>/dev/null; kill -TERM \"$p\" 2>/dev/null; rm -f {pid_file}; fi"
        )
        args = self.settings.base_args(self.host) + [kill]
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await asyncio.wait_for(proc.wait(), timeout=self.settings.connect_timeout + 5)
            logger.warning(f"Killed abandoned remote command on {self.host}")
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Could not kill abandoned remote command on {self.host}: {e}")


# ============================================================================
# LOCAL SHELL
# ============================================================================

class LocalShell(Shell):
    """
    Same interface as RemoteShell, run on this machine via `sh -c`.

    Each command runs in its own session so a timeout kills the whole
    process group.
    """

    def __init__(self, host: str = "localhost", cwd: Optional[str] = None):
        self.host = host
        self.cwd = cwd
        self._session = asyncio.Semaphore(1)

    async def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        async with self._session:
            start = time.monotonic()
            proc = await asyncio.create_subprocess_exec(
                "sh", "-c", command,
                cwd=self.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            except asyncio.TimeoutError:
                await self._kill_group(proc)
                raise CommandTimeoutError(
                    f"Command timed out after {timeout}s",
                    host=self.host,
                    command=command,
                ) from None
            except asyncio.CancelledError:
                await self._kill_group(proc)
                raise

            return CommandResult(
                host=self.host,
                command=command,
                exit_code=proc.returncode,
                stdout=stdout.decode(errors="replace"),
                stderr=stderr.decode(errors="replace"),
                duration_ms=int((time.monotonic() - start) * 1000),
            )

    async def _kill_group(self, proc: asyncio.subprocess.Process) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        await proc.wait()

    async def process_running(self, pid: int) -> bool:
        return psutil.pid_exists(int(pid))


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "Shell",
    "RemoteShell",
    "LocalShell",
    "CommandResult",
    "SSHSettings",
    "SSH_CONNECTION_FAILED",
]
