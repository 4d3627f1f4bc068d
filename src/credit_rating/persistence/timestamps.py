"""Timestamp helpers shared by repositories."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(value: Any) -> str | None:
    """Render a datetime (or passthrough string) as ISO-8601 UTC with a Z suffix.

    Always carries microseconds so rendered timestamps sort lexically.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    return str(value)
