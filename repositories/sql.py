# ============================================================================
# SQL PARAMETER BINDING
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core - Registry query hardening
# PURPOSE: Render %(name)s placeholders as safe SQLite literals
# CREATED: 05 OCT 2026
# ============================================================================
"""
SQL Parameter Binding

The registry CLI only accepts a complete SQL string, so there is no
server-side parameter binding. Every value that goes into registry SQL
passes through bind_params(), which renders %(name)s placeholders as SQLite
literals:

    str         -> '...' with quotes doubled (NUL rejected)
    bool        -> 1 / 0
    int, float  -> numeric literal (NaN / inf rejected)
    None        -> NULL
    list/tuple  -> comma-separated literals, for IN (...)

Identifiers (table and column names) are never parameters; they are
fixed in repository code.

Usage:
    sql = bind_params(
        "SELECT ip FROM containers WHERE service = %(service)s AND healthy = %(healthy)s",
        {"service": "web", "healthy": True},
    )
"""

import math
import re
from typing import Any, Dict, Mapping

from core.errors import UnsafeValueError

_PLACEHOLDER_RE = re.compile(r"%\((\w+)\)s")


def sql_literal(value: Any) -> str:
    """
    Render one Python value as an SQLite literal.

    Raises:
        UnsafeValueError: For NUL bytes, non-finite floats, empty lists
                          and unsupported types
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise UnsafeValueError(f"Non-finite float not allowed in SQL: {value}")
        return repr(value)
    if isinstance(value, str):
        if "\x00" in value:
            raise UnsafeValueError("NUL byte not allowed in SQL string")
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, (list, tuple)):
        if not value:
            raise UnsafeValueError("Empty list cannot be bound (IN () is invalid)")
        return ", ".join(sql_literal(v) for v in value)
    if hasattr(value, "value") and isinstance(value.value, (str, int)):
        # Enum members
        return sql_literal(value.value)
    raise UnsafeValueError(f"Unsupported SQL parameter type: {type(value).__name__}")


def like_prefix(value: str) -> str:
    """
    Escape a value for use as a LIKE prefix with ESCAPE '\\'.

    The caller's query must say: LIKE %(pattern)s ESCAPE '\\'
    """
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"


def bind_params(query: str, params: Mapping[str, Any] = None) -> str:
    """
    Substitute %(name)s placeholders with SQLite literals.

    Args:
        query: SQL text with %(name)s placeholders
        params: Values by placeholder name

    Returns:
        Complete SQL string

    Raises:
        UnsafeValueError: If a value cannot be rendered safely
        KeyError: If a placeholder has no value
    """
    params = params or {}

    def _substitute(match: "re.Match") -> str:
        name = match.group(1)
        if name not in params:
            raise KeyError(f"Missing SQL parameter: {name}")
        return sql_literal(params[name])

    return _PLACEHOLDER_RE.sub(_substitute, query)


def compact_sql(query: str) -> str:
    """Collapse whitespace so the statement fits on one command line."""
    return " ".join(query.split())


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["bind_params", "sql_literal", "like_prefix", "compact_sql"]
