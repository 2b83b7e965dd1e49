"""Change detection for polled workflows.

A workflow is reported as changed when its reported ``updatedAt`` is strictly
newer than both the trigger-wide ``last_sync`` watermark and the per-workflow
``seen_at`` watermark (the ``updatedAt`` value last emitted for that id).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

__all__ = ["EPOCH_ISO", "parse_timestamp", "should_emit"]

EPOCH_ISO = "1970-01-01T00:00:00.000Z"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Returns None for empty, non-string or unparseable values. Naive values
    are taken as UTC; a bare ``YYYY-MM-DD`` date is midnight UTC.
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        # Offsets at the ends of the datetime range overflow on conversion
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def should_emit(
    updated_at: Optional[str],
    last_sync: Optional[str] = None,
    seen_at: Optional[str] = None,
) -> bool:
    """Return True if a workflow's ``updated_at`` should be emitted.

    Args:
        updated_at: Timestamp reported by the source (may be missing or bad)
        last_sync: End of the last cycle that emitted anything
        seen_at: ``updatedAt`` last emitted for this workflow id

    Missing or unparseable watermarks count as the Unix epoch. A missing or
    unparseable ``updated_at`` never emits.
    """
    if not updated_at:
        return False

    updated = parse_timestamp(updated_at)
    if updated is None:
        return False

    last_sync_dt = parse_timestamp(last_sync or EPOCH_ISO) or EPOCH
    seen_at_dt = parse_timestamp(seen_at or EPOCH_ISO) or EPOCH

    return updated > last_sync_dt and updated > seen_at_dt
