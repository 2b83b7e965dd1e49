"""Polling trigger that emits workflows updated since the last check.

Each cycle:

1. lists every workflow from the source API
2. drops workflows whose name matches the exclusion regex
3. keeps those whose ``updatedAt`` is newer than both ``lastSync`` and the
   workflow's own seen value (see ``workflow_watch.diff.should_emit``)
4. optionally attaches the full workflow definition (best effort)
5. emits the batch, then advances the watermarks for the emitted records

A failing cycle is logged and the loop carries on at the next interval.

Example:
    from workflow_watch.config import WatchConfig
    from workflow_watch.sinks import StreamSink
    from workflow_watch.trigger import WorkflowUpdatedTrigger

    trigger = WorkflowUpdatedTrigger.from_config(WatchConfig(), StreamSink())
    trigger.start()
    ...
    trigger.stop()
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import httpx

from workflow_watch.client import WorkflowClient
from workflow_watch.config import WatchConfig
from workflow_watch.diff import should_emit
from workflow_watch.sinks import EmissionSink
from workflow_watch.state import (
    JsonFileWatermarkStore,
    WatermarkState,
    WatermarkStore,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

__all__ = [
    "Candidate",
    "CycleResult",
    "EnrichmentResult",
    "WorkflowUpdatedTrigger",
    "normalize_candidate",
]


@dataclass(frozen=True)
class Candidate:
    """A listed workflow reduced to the fields change detection needs."""

    id: str
    name: str
    updated_at: Optional[str]


@dataclass(frozen=True)
class EnrichmentResult:
    """Outcome of fetching the full definition of one workflow."""

    detail: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, detail: Any) -> "EnrichmentResult":
        return cls(detail=detail)

    @classmethod
    def failure(cls, reason: str) -> "EnrichmentResult":
        return cls(error=reason)


@dataclass
class CycleResult:
    """Summary of one polling cycle."""

    listed: int = 0
    excluded: int = 0
    skipped: int = 0
    emitted: List[Dict[str, Any]] = field(default_factory=list)
    truncated: bool = False
    enrichment_failures: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def emitted_count(self) -> int:
        return len(self.emitted)

    def __str__(self) -> str:
        if self.error:
            return f"Cycle failed: {self.error}"
        return (
            f"listed={self.listed} excluded={self.excluded} skipped={self.skipped} "
            f"emitted={self.emitted_count}{' (truncated)' if self.truncated else ''}"
        )


def normalize_candidate(item: Any) -> Optional[Candidate]:
    """Reduce a raw listing entry to a Candidate.

    Returns None for entries that are not mappings or have no id. The name
    falls back to ``workflow-<id>``; the timestamp is read from ``updatedAt``
    and then ``updated_at``.
    """
    if not isinstance(item, Mapping):
        return None

    raw_id = item.get("id")
    if raw_id is None:
        return None
    workflow_id = str(raw_id)

    name = item.get("name")
    name = f"workflow-{workflow_id}" if name is None else str(name)

    updated_at = item.get("updatedAt")
    if updated_at is None:
        updated_at = item.get("updated_at")

    return Candidate(id=workflow_id, name=name, updated_at=updated_at)


class WorkflowUpdatedTrigger:
    """Emits an item whenever any workflow in the instance has been updated.

    The trigger owns its client, watermark store and sink. Cycles never
    overlap: ``run`` executes one cycle to completion, then waits for the
    configured interval or a stop request.
    """

    def __init__(
        self,
        config: WatchConfig,
        client: WorkflowClient,
        store: WatermarkStore,
        sink: EmissionSink,
        *,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self.config = config
        self.client = client
        self.store = store
        self.sink = sink
        self.clock = clock

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.cycles_run = 0

    @classmethod
    def from_config(
        cls,
        config: WatchConfig,
        sink: EmissionSink,
        *,
        store: Optional[WatermarkStore] = None,
        state_dir: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "WorkflowUpdatedTrigger":
        """Build a trigger with an HTTP client and a JSON file store."""
        client = WorkflowClient(
            config.base_url,
            timeout_ms=config.request_timeout_ms,
            auth=config.auth,
            headers=config.headers,
            max_retries=config.max_retries,
            page_limit=config.page_limit,
            max_pages=config.max_pages,
            transport=transport,
        )
        if store is None:
            store = JsonFileWatermarkStore(config.trigger_id, state_dir=state_dir)
        return cls(config, client, store, sink)

    @property
    def active(self) -> bool:
        return not self._stop_event.is_set()

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> CycleResult:
        """Run one list -> filter -> decide -> enrich -> emit -> persist pass.

        Never raises: failures are logged and reported on the result.
        """
        self.cycles_run += 1
        try:
            result = self._run_cycle()
        except Exception as exc:
            logger.error("[%s] cycle failed: %s", self.config.trigger_id, exc, exc_info=True)
            return CycleResult(error=str(exc) or type(exc).__name__)

        if result.emitted:
            logger.info("[%s] %s", self.config.trigger_id, result)
        else:
            logger.debug("[%s] %s", self.config.trigger_id, result)
        return result

    def _run_cycle(self) -> CycleResult:
        workflows = self.client.list_workflows()
        state = self.store.load()

        result = CycleResult(listed=len(workflows))
        batch, capped = self._collect(workflows, state, result)
        # A page-capped listing hides later pages, the same as a capped scan
        result.truncated = capped or bool(getattr(workflows, "truncated", False))
        if not batch:
            return result

        self.sink.emit(batch)
        result.emitted = batch

        # Deferred and unlisted candidates must stay above lastSync; a
        # truncated cycle only advances seenMap.
        state.advance(batch, self.clock(), advance_last_sync=not result.truncated)
        self.store.save(state)
        return result

    def _collect(
        self,
        workflows: List[Any],
        state: WatermarkState,
        result: CycleResult,
    ) -> Tuple[List[Dict[str, Any]], bool]:
        pattern = self.config.exclude_pattern
        cap = self.config.max_per_cycle
        last_sync = state.last_sync
        batch: List[Dict[str, Any]] = []

        for index, item in enumerate(workflows):
            candidate = normalize_candidate(item)
            if candidate is None:
                result.skipped += 1
                continue

            if pattern is not None and pattern.search(candidate.name):
                result.excluded += 1
                continue

            seen_at = state.seen_at(candidate.id)
            if not should_emit(candidate.updated_at, last_sync, seen_at):
                continue

            logger.debug(
                "Workflow %s (%s) changed: updatedAt=%s lastSync=%s seenAt=%s",
                candidate.id,
                candidate.name,
                candidate.updated_at,
                last_sync,
                seen_at,
            )
            record: Dict[str, Any] = {
                "id": candidate.id,
                "name": candidate.name,
                "updatedAt": candidate.updated_at,
            }

            if self.config.emit_full_workflow:
                enrichment = self.enrich(candidate.id)
                if not enrichment.ok:
                    result.enrichment_failures += 1
                elif enrichment.detail is not None and enrichment.detail != "":
                    record["workflow"] = enrichment.detail

            batch.append(record)
            if cap > 0 and len(batch) >= cap:
                remaining = len(workflows) - index - 1
                if remaining:
                    logger.info(
                        "Reached max_per_cycle limit of %d, %d workflow(s) left for the next cycle",
                        cap,
                        remaining,
                    )
                return batch, remaining > 0

        return batch, False

    def enrich(self, workflow_id: str) -> EnrichmentResult:
        """Fetch the full workflow; failures only drop the detail field."""
        try:
            return EnrichmentResult.success(self.client.get_workflow(workflow_id))
        except Exception as exc:
            logger.warning("Could not fetch full workflow %s: %s", workflow_id, exc)
            return EnrichmentResult.failure(str(exc) or type(exc).__name__)

    # ------------------------------------------------------------------
    # Loop lifecycle
    # ------------------------------------------------------------------

    def run(self, *, max_cycles: Optional[int] = None) -> None:
        """Poll until ``stop`` is called (or ``max_cycles`` have run)."""
        logger.info(
            "[%s] polling %s every %ss",
            self.config.trigger_id,
            self.config.base_url,
            self.config.interval_seconds,
        )
        completed = 0
        while self.active:
            self.run_cycle()
            completed += 1
            if max_cycles is not None and completed >= max_cycles:
                break
            self._stop_event.wait(self.config.interval_seconds)
        logger.info("[%s] stopped after %d cycle(s)", self.config.trigger_id, completed)

    def start(self) -> threading.Thread:
        """Run the polling loop on a background daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run,
            name=f"workflow-watch-{self.config.trigger_id}",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        """Request the loop to exit at the next cycle boundary.

        Returns immediately; in-flight requests finish on their own.
        """
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def close(self) -> None:
        self.stop()
        self.client.close()
        self.sink.close()
