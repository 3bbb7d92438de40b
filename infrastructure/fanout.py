# ============================================================================
# HOST FANOUT
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Infrastructure - Concurrent multi-host execution
# PURPOSE: Run one operation per host concurrently and partition the outcomes
# LAST_REVIEWED: 12 OCT 2026
# EXPORTS: HostFanout, HostOperation, FanoutResult, HostError, with_retry,
#          retrying, create_error_summary
# DEPENDENCIES: asyncio
# ============================================================================
"""
Host Fanout

The primitive underneath every multi-host operation. Given N per-host
operations it runs them concurrently, waits for ALL of them to settle
(no short-circuit on the first failure) and partitions the outcomes:

    FanoutResult.results         successful outputs, input order
    FanoutResult.succeeded_hosts hosts aligned with results
    FanoutResult.host_errors     [HostError(host, error)], input order

Invariant: len(results) + len(host_errors) == number of operations, and
every input appears in exactly one bucket.

Retry is a separate, optional wrapper (with_retry / retrying) so callers
opt into it per operation.

Usage:
    fanout = HostFanout(max_concurrency=50)
    result = await fanout.map(shells, lambda shell: shell.run("uptime"))
    if not result.all_succeeded:
        logger.warning(result.summary("uptime"))
"""

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import (
    Any, Awaitable, Callable, Generic, Iterable, List, Optional, Sequence,
    Tuple, Type, TypeVar, Union,
)

from core.config.defaults import get_defaults
from core.errors import CommandTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")
I = TypeVar("I")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class HostOperation(Generic[T]):
    """A zero-argument coroutine function bound to the host it targets."""
    host: str
    operation: Callable[[], Awaitable[T]]


@dataclass
class HostError:
    """A failed per-host operation."""
    host: str
    error: BaseException

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__

    def __str__(self) -> str:
        return f"{self.host}: {self.message}"


@dataclass
class FanoutResult(Generic[T]):
    """Partitioned outcome of a fanout."""
    results: List[T] = field(default_factory=list)
    succeeded_hosts: List[str] = field(default_factory=list)
    host_errors: List[HostError] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        return len(self.results) + len(self.host_errors)

    @property
    def success_count(self) -> int:
        return len(self.results)

    @property
    def error_count(self) -> int:
        return len(self.host_errors)

    @property
    def all_succeeded(self) -> bool:
        return not self.host_errors

    @property
    def all_failed(self) -> bool:
        return self.total_count > 0 and not self.results

    @property
    def failed_hosts(self) -> List[str]:
        return [e.host for e in self.host_errors]

    def items(self) -> List[Tuple[str, T]]:
        """(host, result) pairs for the successful operations."""
        return list(zip(self.succeeded_hosts, self.results))

    def summary(self, operation: str) -> str:
        return create_error_summary(self, operation)


def create_error_summary(result: FanoutResult, operation: str) -> str:
    """
    One-line human summary of a fanout.

    Examples:
        "Lock release completed successfully on all 3 target(s)"
        "Lock release failed on all 3 target(s)"
        "Lock release mixed results: 2 succeeded, 1 failed (total: 3)"
    """
    total = result.total_count
    if result.all_succeeded:
        return f"{operation} completed successfully on all {total} target(s)"
    if result.all_failed:
        return f"{operation} failed on all {total} target(s)"
    return (
        f"{operation} mixed results: {result.success_count} succeeded, "
        f"{result.error_count} failed (total: {total})"
    )


# ============================================================================
# FANOUT
# ============================================================================

OperationSpec = Union[HostOperation, Tuple[str, Callable[[], Awaitable[Any]]]]


class HostFanout:
    """
    Concurrent per-host execution.

    Args:
        max_concurrency: Bound on in-flight operations (None = unbounded)
        timeout: Per-operation timeout in seconds; expiry becomes a
                 CommandTimeoutError host error
    """

    def __init__(self, max_concurrency: Optional[int] = None, timeout: Optional[float] = None):
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self.timeout = timeout

    @classmethod
    def from_defaults(cls) -> "HostFanout":
        defaults = get_defaults().fanout
        return cls(max_concurrency=defaults.max_concurrency, timeout=defaults.operation_timeout)

    async def run(self, operations: Sequence[OperationSpec]) -> FanoutResult:
        """
        Run every operation and wait for all of them to settle.

        Args:
            operations: HostOperation instances or (host, callable) tuples

        Returns:
            FanoutResult partitioned by outcome, both buckets in input order
        """
        ops = [op if isinstance(op, HostOperation) else HostOperation(*op) for op in operations]
        if not ops:
            return FanoutResult()

        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        async def _bounded(op: HostOperation):
            if semaphore is None:
                return await self._invoke(op)
            async with semaphore:
                return await self._invoke(op)

        outcomes = await asyncio.gather(*(_bounded(op) for op in ops), return_exceptions=True)

        result: FanoutResult = FanoutResult()
        for op, outcome in zip(ops, outcomes):
            if isinstance(outcome, (KeyboardInterrupt, SystemExit)):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.debug(f"Operation on {op.host} failed: {type(outcome).__name__}: {outcome}")
                result.host_errors.append(HostError(host=op.host, error=outcome))
            else:
                result.results.append(outcome)
                result.succeeded_hosts.append(op.host)
        return result

    async def map(
        self,
        items: Iterable[I],
        fn: Callable[[I], Awaitable[T]],
        host_of: Callable[[I], str] = lambda item: getattr(item, "host", str(item)),
    ) -> FanoutResult:
        """
        Fan fn out over items (typically shells).

        Args:
            items: Per-host inputs
            fn: Coroutine function applied to each item
            host_of: Host name for an item (defaults to item.host)
        """
        return await self.run([
            HostOperation(host=host_of(item), operation=functools.partial(fn, item))
            for item in items
        ])

    async def _invoke(self, op: HostOperation):
        if self.timeout is None:
            return await op.operation()
        try:
            return await asyncio.wait_for(op.operation(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise CommandTimeoutError(f"Operation timed out after {self.timeout}s", host=op.host) from None


# ============================================================================
# RETRY
# ============================================================================

async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Run an operation with exponential backoff.

    Delay before attempt n+1 is base_delay * 2**(n-1), capped at max_delay.
    Only the final failure surfaces.

    Args:
        operation: Zero-argument coroutine function
        max_attempts: Total attempts (default from FanoutDefaults)
        base_delay: First backoff in seconds
        max_delay: Backoff cap in seconds
        retry_on: Exception types worth retrying; others raise immediately
    """
    defaults = get_defaults().fanout
    attempts = max_attempts if max_attempts is not None else defaults.retry_attempts
    base = base_delay if base_delay is not None else defaults.retry_base_delay
    cap = max_delay if max_delay is not None else defaults.retry_max_delay

    for attempt in range(1, max(1, attempts) + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt >= attempts:
                raise
            delay = min(base * (2 ** (attempt - 1)), cap)
            logger.debug(f"Attempt {attempt}/{attempts} failed ({e}), retrying in {delay:.1f}s")
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")


def retrying(
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
):
    """Decorator form of with_retry for coroutine functions."""
    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            return await with_retry(
                lambda: fn(*args, **kwargs),
                max_attempts=max_attempts,
                base_delay=base_delay,
                max_delay=max_delay,
                retry_on=retry_on,
            )
        return wrapper
    return decorator


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "HostFanout",
    "HostOperation",
    "FanoutResult",
    "HostError",
    "with_retry",
    "retrying",
    "create_error_summary",
]
