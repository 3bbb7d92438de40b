# ============================================================================
# AUDIT ENTRY MODEL
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core model - Audit trail entries
# PURPOSE: Line format and parser for the per-host audit log
# LAST_REVIEWED: 10 OCT 2026
# EXPORTS: AuditEntry, AuditFilter, AUDIT_LINE_PATTERN, parse_audit_lines
# DEPENDENCIES: pydantic, re, json
# ============================================================================
"""
Audit Entry Model

Each host keeps one append-only text file. An entry is one line,
optionally followed by an indented details line:

    [2026-10-10T09:12:44.120Z] [SUCCESS ] DEPLOYMENT_LOCK - Lock acquired: deploy v2
        Details: {"hosts":["web-1","web-2"],"acquiredBy":"alice"}

Lines starting with '#' are header comments. The parser also accepts the
aggregated display form with the host in brackets, either right after the
status or right after the action.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from core.contracts import AuditStatus


AUDIT_LINE_PATTERN = re.compile(
    r"^\[(?P<timestamp>[^\]]+)\]\s*"
    r"\[(?P<status>[^\]]+)\]\s*"
    r"(?:\[(?P<host_prefix>[^\]]+)\]\s*)?"
    r"(?P<action>[^\s\[\-]+)\s*"
    r"(?:\[(?P<host>[^\]]+)\]\s*)?"
    r"(?:-\s*(?P<message>.*))?$"
)

DETAILS_PREFIX = "    Details: "
STATUS_WIDTH = 8

_ACTION_UNSAFE = re.compile(r"[^A-Za-z0-9_.:]+")


def parse_timestamp(value: str) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp (or bare YYYY-MM-DD) into an aware datetime.

    Naive values are taken as UTC. Returns None when unparsable.
    """
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_action(action: str) -> str:
    """Collapse anything outside [A-Za-z0-9_.:] to '_' so the line stays parseable."""
    return _ACTION_UNSAFE.sub("_", action.strip()).strip("_").lower() or "unknown"


class AuditEntry(BaseModel):
    """
    A single audit trail entry.

    Use cases:
    - Who deployed / locked / rolled back, and when
    - Cross-host timeline of an operation (aggregated, clock-ordered)
    """
    timestamp: str = Field(..., description="ISO-8601 timestamp")
    status: AuditStatus
    action: str = Field(..., max_length=128)
    host: str = Field(default="", max_length=253)
    message: str = Field(default="", max_length=4000)
    details: Dict[str, Any] = Field(default_factory=dict)
    raw: Optional[str] = Field(default=None, exclude=True)

    model_config = {"frozen": False}

    # ========================================================================
    # Factory Methods
    # ========================================================================

    @classmethod
    def create(
        cls,
        action: str,
        status: AuditStatus,
        message: str = "",
        host: str = "",
        details: Optional[Dict[str, Any]] = None,
        timestamp: Optional[str] = None,
    ) -> "AuditEntry":
        """Create an entry stamped with the current UTC time."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        return cls(
            timestamp=timestamp,
            status=status,
            action=normalize_action(action),
            host=host,
            message=" ".join((message or "").split()),
            details=details or {},
        )

    @classmethod
    def parse(cls, line: str, host: str = "") -> Optional["AuditEntry"]:
        """
        Parse one entry line.

        Args:
            line: Raw line (details lines are not entries)
            host: Host the line was read from; a host embedded in the
                  line takes precedence

        Returns:
            AuditEntry, or None when the line does not match the grammar,
            has an unknown status, or an unparsable timestamp
        """
        match = AUDIT_LINE_PATTERN.match(line.rstrip())
        if not match:
            return None

        try:
            status = AuditStatus(match.group("status").strip().lower())
        except ValueError:
            return None

        timestamp = match.group("timestamp").strip()
        if parse_timestamp(timestamp) is None:
            return None

        return cls(
            timestamp=timestamp,
            status=status,
            action=match.group("action").strip().lower(),
            host=(match.group("host_prefix") or match.group("host") or host).strip(),
            message=(match.group("message") or "").strip(),
            raw=line.rstrip(),
        )

    # ========================================================================
    # Formatting
    # ========================================================================

    @property
    def parsed_timestamp(self) -> datetime:
        parsed = parse_timestamp(self.timestamp)
        if parsed is None:
            raise ValueError(f"Unparsable audit timestamp: {self.timestamp}")
        return parsed

    def format_lines(self) -> List[str]:
        """Render as file lines: the entry line plus an optional details line."""
        status = self.status.value.upper().ljust(STATUS_WIDTH)
        line = f"[{self.timestamp}] [{status}] {self.action.upper()}"
        if self.message:
            line += f" - {self.message}"

        lines = [line]
        if self.details:
            lines.append(f"{DETAILS_PREFIX}{json.dumps(self.details, separators=(',', ':'), default=str)}")
        return lines

    def format_with_host(self) -> str:
        """Entry line with the host inserted after the status (aggregated view)."""
        status = self.status.value.upper().ljust(STATUS_WIDTH)
        line = f"[{self.timestamp}] [{status}] [{self.host}] {self.action.upper()}"
        if self.message:
            line += f" - {self.message}"
        return line


class AuditFilter(BaseModel):
    """
    Entry filter for audit queries.

    All set criteria must match. Action is a case-insensitive substring,
    status an exact match, since/until inclusive bounds.
    """
    action: Optional[str] = None
    status: Optional[AuditStatus] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None

    model_config = {"frozen": False}

    @classmethod
    def build(
        cls,
        action: Optional[str] = None,
        status: Optional[str] = None,
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> "AuditFilter":
        """
        Build a filter from user strings.

        Raises:
            ValueError: On an unknown status or unparsable date
        """
        since_dt = parse_timestamp(since) if since else None
        if since and since_dt is None:
            raise ValueError(f"Invalid --since date: {since}")
        until_dt = parse_timestamp(until) if until else None
        if until and until_dt is None:
            raise ValueError(f"Invalid --until date: {until}")
        return cls(
            action=action.lower() if action else None,
            status=AuditStatus(status.lower()) if status else None,
            since=since_dt,
            until=until_dt,
        )

    def matches(self, entry: AuditEntry) -> bool:
        if self.action and self.action not in entry.action.lower():
            return False
        if self.status and entry.status != self.status:
            return False
        if self.since or self.until:
            ts = entry.parsed_timestamp
            if self.since and ts < self.since:
                return False
            if self.until and ts > self.until:
                return False
        return True


def parse_audit_lines(lines: List[str], host: str = "") -> Tuple[List[AuditEntry], List[str]]:
    """
    Parse raw audit file lines.

    Comment and blank lines are skipped. A details line attaches to the
    entry directly above it.

    Args:
        lines: Raw lines from one host's audit file
        host: Host the lines came from

    Returns:
        (entries, unparsed) - unparsed holds lines that are neither
        entries, details, comments nor blanks
    """
    entries: List[AuditEntry] = []
    unparsed: List[str] = []

    for line in lines:
        if not line.strip() or line.startswith("#"):
            continue

        if line.startswith(DETAILS_PREFIX.rstrip()) or line.lstrip().startswith("Details:"):
            if entries and not entries[-1].details:
                payload = line.split("Details:", 1)[1].strip()
                try:
                    details = json.loads(payload)
                except json.JSONDecodeError:
                    details = {"raw": payload}
                entries[-1].details = details if isinstance(details, dict) else {"value": details}
            continue

        entry = AuditEntry.parse(line, host)
        if entry is None:
            unparsed.append(line)
        else:
            entries.append(entry)

    return entries, unparsed


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "AUDIT_LINE_PATTERN",
    "DETAILS_PREFIX",
    "AuditEntry",
    "AuditFilter",
    "parse_audit_lines",
    "parse_timestamp",
    "normalize_action",
]
