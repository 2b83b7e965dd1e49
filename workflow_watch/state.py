"""Watermark persistence for the workflow trigger.

Each trigger instance owns two watermarks:

- ``lastSync``: end of the most recent cycle that emitted at least one item
- ``seenMap``: workflow id -> the ``updatedAt`` value last emitted for it

They are stored together as one JSON document per trigger instance, so a
restart resumes from where the previous process left off.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from workflow_watch.diff import EPOCH_ISO, parse_timestamp
from workflow_watch.errors import StateError

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_STATE_DIR",
    "JsonFileWatermarkStore",
    "MemoryWatermarkStore",
    "WatermarkState",
    "WatermarkStore",
    "utc_now_iso",
]

# Can be overridden via WORKFLOW_WATCH_STATE_DIR
DEFAULT_STATE_DIR = ".state"


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class WatermarkState:
    """The persisted watermarks of one trigger instance."""

    last_sync: str = EPOCH_ISO
    seen_map: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"lastSync": self.last_sync, "seenMap": dict(self.seen_map)}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "WatermarkState":
        """Build state from stored data, applying defaults for absent fields."""
        if not isinstance(data, Mapping):
            return cls()

        last_sync = data.get("lastSync")
        if not isinstance(last_sync, str) or not last_sync:
            last_sync = EPOCH_ISO

        raw_seen = data.get("seenMap")
        seen_map: Dict[str, str] = {}
        if isinstance(raw_seen, Mapping):
            seen_map = {
                str(key): str(value)
                for key, value in raw_seen.items()
                if value is not None
            }

        return cls(last_sync=last_sync, seen_map=seen_map)

    def seen_at(self, workflow_id: str) -> Optional[str]:
        return self.seen_map.get(workflow_id)

    def advance(
        self,
        records: Iterable[Mapping[str, Any]],
        now_iso: str,
        *,
        advance_last_sync: bool = True,
    ) -> None:
        """Record an emitted batch.

        Every record's ``updatedAt`` becomes its id's seen value. ``lastSync``
        moves to ``now_iso`` unless ``advance_last_sync`` is False or the
        stored value is already later (a clock that stepped backwards).
        """
        for record in records:
            self.seen_map[str(record["id"])] = str(record["updatedAt"])
        if not advance_last_sync:
            return

        current = parse_timestamp(self.last_sync)
        candidate = parse_timestamp(now_iso)
        if candidate is None:
            logger.warning("Ignoring unparseable lastSync candidate %r", now_iso)
            return
        if current is not None and candidate < current:
            logger.warning(
                "Clock is behind lastSync (%s < %s); keeping lastSync", now_iso, self.last_sync
            )
            return
        self.last_sync = now_iso


class WatermarkStore:
    """Durable storage for one trigger's WatermarkState."""

    def load(self) -> WatermarkState:
        raise NotImplementedError

    def save(self, state: WatermarkState) -> None:
        raise NotImplementedError

    def delete(self) -> bool:
        raise NotImplementedError


class MemoryWatermarkStore(WatermarkStore):
    """In-process store; state is lost when the process exits."""

    def __init__(self, initial: Optional[WatermarkState] = None) -> None:
        self._data: Optional[Dict[str, Any]] = initial.to_dict() if initial else None
        self.save_count = 0

    def load(self) -> WatermarkState:
        return WatermarkState.from_dict(self._data)

    def save(self, state: WatermarkState) -> None:
        self._data = state.to_dict()
        self.save_count += 1

    def delete(self) -> bool:
        existed = self._data is not None
        self._data = None
        return existed


class JsonFileWatermarkStore(WatermarkStore):
    """Stores watermarks as ``<state_dir>/<trigger_id>_watermarks.json``.

    Example:
        >>> store = JsonFileWatermarkStore("global-workflow-updated-trigger")
        >>> state = store.load()
        >>> state.last_sync
        '1970-01-01T00:00:00.000Z'
    """

    def __init__(
        self,
        trigger_id: str,
        state_dir: Optional[Union[str, Path]] = None,
    ) -> None:
        if not trigger_id:
            raise ValueError("trigger_id is required")
        self.trigger_id = trigger_id
        self.state_dir = Path(
            state_dir or os.environ.get("WORKFLOW_WATCH_STATE_DIR", DEFAULT_STATE_DIR)
        )

    @property
    def path(self) -> Path:
        safe_id = "".join(c if c.isalnum() or c in "-_." else "_" for c in self.trigger_id)
        return self.state_dir / f"{safe_id}_watermarks.json"

    def load(self) -> WatermarkState:
        path = self.path

        if not path.exists():
            logger.debug("No watermarks found for %s, starting from epoch", self.trigger_id)
            return WatermarkState()

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Invalid watermark file %s, starting from epoch: %s", path, exc)
            return WatermarkState()

        state = WatermarkState.from_dict(data)
        logger.debug(
            "Loaded watermarks for %s: lastSync=%s, %d seen workflows (updated %s)",
            self.trigger_id,
            state.last_sync,
            len(state.seen_map),
            data.get("updated_at", "unknown") if isinstance(data, dict) else "unknown",
        )
        return state

    def save(self, state: WatermarkState) -> None:
        path = self.path
        payload = {
            "trigger_id": self.trigger_id,
            **state.to_dict(),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StateError(
                f"Could not save watermarks for {self.trigger_id}",
                path=str(path),
                cause=exc,
            ) from exc

        logger.debug("Saved watermarks for %s: lastSync=%s", self.trigger_id, state.last_sync)

    def delete(self) -> bool:
        path = self.path

        if path.exists():
            path.unlink()
            logger.info("Deleted watermarks for %s", self.trigger_id)
            return True

        return False

    def age_hours(self) -> Optional[float]:
        """Return hours since the watermarks were last saved.

        Useful for spotting a trigger that has not emitted for a long time.
        """
        path = self.path

        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            updated_at = data.get("updated_at")
            if not updated_at:
                return None

            updated_dt = datetime.fromisoformat(updated_at.replace("Z", "+00:00"))
            delta = datetime.now(timezone.utc) - updated_dt

            return delta.total_seconds() / 3600
        except (OSError, json.JSONDecodeError, AttributeError, ValueError) as exc:
            logger.warning("Could not calculate watermark age for %s: %s", self.trigger_id, exc)
            return None
