# ============================================================================
# LOCK RECORD MODEL
# ============================================================================
# EPOCH: 1 - CLUSTER COORDINATION
# STATUS: Core model - Per-host deployment lock
# PURPOSE: Wire format and parsed view of the per-host lock file
# LAST_REVIEWED: 10 OCT 2026
# EXPORTS: LockRecord, LockStatus
# DEPENDENCIES: pydantic
# ============================================================================
"""
Lock Record Model

One JSON file per host:

    {
      "locked": true,
      "message": "deploy v2",
      "acquiredAt": "2026-10-10T09:12:44.120Z",
      "acquiredBy": "alice",
      "host": "web-1",
      "pid": 48211,
      "version": "0.4.1"
    }

LockStatus is the parsed, per-host view. Parsing never raises: missing,
unreadable or corrupt content reads as UNLOCKED, and corrupt content is
recorded in parse_error so callers can still surface it.
"""

import json
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, computed_field

from core.contracts import LockState


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class LockRecord(BaseModel):
    """
    Contents of a host's lock file.

    camelCase on the wire, snake_case in Python.
    """
    locked: bool = True
    message: Optional[str] = Field(default=None, max_length=1000)
    acquired_at: Optional[str] = Field(default=None, alias="acquiredAt")
    acquired_by: Optional[str] = Field(default=None, alias="acquiredBy")
    host: Optional[str] = None
    pid: Optional[int] = Field(default=None, ge=0)
    version: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "ignore", "frozen": False}

    @classmethod
    def create(
        cls,
        message: str,
        host: str,
        acquired_by: str,
        pid: int,
        version: str,
    ) -> "LockRecord":
        """Create a fresh, locked record stamped with the current time."""
        return cls(
            locked=True,
            message=message,
            acquired_at=utc_now_iso(),
            acquired_by=acquired_by,
            host=host,
            pid=pid,
            version=version,
        )

    def to_json(self) -> str:
        """Serialize to the on-disk JSON format."""
        return json.dumps(self.model_dump(by_alias=True), indent=2)


class LockStatus(BaseModel):
    """
    Lock state observed on one host.

    Attributes:
        host: Host the status was read from
        state: LOCKED or UNLOCKED
        record: Parsed record when one was found
        parse_error: Set when the file existed but could not be parsed
        error: Set when the host could not be read at all
    """
    host: str
    state: LockState = LockState.UNLOCKED
    record: Optional[LockRecord] = None
    parse_error: Optional[str] = None
    error: Optional[str] = None

    model_config = {"frozen": False}

    @computed_field
    @property
    def locked(self) -> bool:
        return self.state == LockState.LOCKED

    @property
    def message(self) -> Optional[str]:
        return self.record.message if self.record else None

    @property
    def acquired_by(self) -> Optional[str]:
        return self.record.acquired_by if self.record else None

    @property
    def acquired_at(self) -> Optional[str]:
        return self.record.acquired_at if self.record else None

    @classmethod
    def unlocked(
        cls,
        host: str,
        parse_error: Optional[str] = None,
        error: Optional[str] = None,
    ) -> "LockStatus":
        return cls(host=host, state=LockState.UNLOCKED, parse_error=parse_error, error=error)

    @classmethod
    def from_content(cls, host: str, content: str) -> "LockStatus":
        """
        Parse lock file content.

        Args:
            host: Host the content was read from
            content: Raw file content ("" when the file does not exist)

        Returns:
            LockStatus; never raises
        """
        text = (content or "").strip()
        if not text:
            return cls.unlocked(host)

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            return cls.unlocked(host, parse_error=f"invalid JSON: {e.msg} at line {e.lineno}")

        if not isinstance(data, dict):
            return cls.unlocked(host, parse_error=f"expected JSON object, got {type(data).__name__}")

        try:
            record = LockRecord.model_validate(data)
        except ValidationError as e:
            return cls.unlocked(host, parse_error=f"invalid lock record: {e.error_count()} error(s)")

        state = LockState.LOCKED if record.locked else LockState.UNLOCKED
        return cls(host=host, state=state, record=record)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["LockRecord", "LockStatus", "utc_now_iso"]
