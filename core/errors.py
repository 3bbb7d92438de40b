# ============================================================================
# ERROR TAXONOMY
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Foundation - Exception hierarchy
# PURPOSE: Classify multi-host failures so callers can decide what to tolerate
# CREATED: 02 OCT 2026
# ============================================================================
"""
Error Taxonomy

Every failure that crosses a component boundary is one of:

- ConnectivityError: host unreachable (tolerated when partial connect allowed)
- ContentionError: a lock is already held
- ConsistencyError: replicated state disagrees (only ever inferred)
- DataFormatError: unparsable lock / audit / query output
- CommandError: remote command exited non-zero (or timed out)

Best-effort side channels (audit, DNS projection) catch these and log.
Correctness-critical paths (lock writes, registry writes) let them propagate.
"""

from typing import Any, List, Optional


class JijiError(Exception):
    """Base class for all Jiji errors. Carries the host when known."""

    def __init__(self, message: str, host: Optional[str] = None):
        self.host = host
        self.message = message
        super().__init__(f"[{host}] {message}" if host else message)


class ConfigurationError(JijiError):
    """Deploy configuration missing or invalid."""


class ConnectivityError(JijiError):
    """Host could not be reached over SSH."""


class ContentionError(JijiError):
    """
    A lock is already held.

    Attributes:
        conflicts: Per-host lock statuses that caused the contention
    """

    def __init__(
        self,
        message: str,
        conflicts: Optional[List[Any]] = None,
        host: Optional[str] = None,
    ):
        self.conflicts = conflicts or []
        super().__init__(message, host=host)


class ConsistencyError(JijiError):
    """Replicated registry state looks inconsistent (heuristic only)."""


class DataFormatError(JijiError):
    """
    Output could not be parsed.

    Attributes:
        raw: The offending text (truncated)
    """

    def __init__(self, message: str, raw: str = "", host: Optional[str] = None):
        self.raw = raw[:500]
        super().__init__(message, host=host)


class CommandError(JijiError):
    """
    Remote command exited non-zero.

    Attributes:
        command: Command as sent to the host
        exit_code: Exit status (None if the command never completed)
        stderr: Captured standard error
    """

    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        command: str = "",
        exit_code: Optional[int] = None,
        stderr: str = "",
    ):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message, host=host)


class CommandTimeoutError(CommandError):
    """Remote command exceeded its timeout and was terminated."""


class UnsafeValueError(JijiError, ValueError):
    """A value failed allow-list validation before reaching SQL or a shell."""


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "JijiError",
    "ConfigurationError",
    "ConnectivityError",
    "ContentionError",
    "ConsistencyError",
    "DataFormatError",
    "CommandError",
    "CommandTimeoutError",
    "UnsafeValueError",
]
