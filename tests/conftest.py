"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from workflow_watch.client import WorkflowListing  # noqa: E402
from workflow_watch.config import WatchConfig  # noqa: E402
from workflow_watch.errors import SourceError  # noqa: E402
from workflow_watch.sinks import CallbackSink  # noqa: E402
from workflow_watch.state import MemoryWatermarkStore, WatermarkState  # noqa: E402
from workflow_watch.trigger import WorkflowUpdatedTrigger  # noqa: E402

FIXED_NOW = "2025-10-29T13:00:00.000Z"


class FakeWorkflowClient:
    """Stands in for WorkflowClient with canned listings and details."""

    def __init__(
        self,
        workflows: Optional[List[Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.workflows: List[Any] = list(workflows or [])
        self.details: Dict[str, Any] = dict(details or {})
        self.list_error: Optional[Exception] = None
        self.listing_truncated = False
        self.detail_errors: Dict[str, Exception] = {}
        self.list_calls = 0
        self.detail_calls: List[str] = []
        self.closed = False

    def list_workflows(self) -> WorkflowListing:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        listing = WorkflowListing(self.workflows)
        listing.truncated = self.listing_truncated
        return listing

    def get_workflow(self, workflow_id: str) -> Any:
        self.detail_calls.append(workflow_id)
        if workflow_id in self.detail_errors:
            raise self.detail_errors[workflow_id]
        if workflow_id not in self.details:
            raise SourceError(f"workflow {workflow_id} not found", status_code=404)
        return self.details[workflow_id]

    def close(self) -> None:
        self.closed = True


class RecordingSink(CallbackSink):
    """Sink that keeps every emitted batch."""

    def __init__(self) -> None:
        self.batches: List[List[Dict[str, Any]]] = []
        super().__init__(self.batches.append)

    @property
    def records(self) -> List[Dict[str, Any]]:
        return [record for batch in self.batches for record in batch]


@pytest.fixture
def fake_client() -> FakeWorkflowClient:
    return FakeWorkflowClient()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_trigger(fake_client, sink):
    """Build a trigger around the fake client, a memory store and a fixed clock."""

    def _make(
        *,
        state: Optional[WatermarkState] = None,
        store: Optional[MemoryWatermarkStore] = None,
        **config_options: Any,
    ) -> WorkflowUpdatedTrigger:
        config_options.setdefault("emit_full_workflow", False)
        config = WatchConfig(**config_options)
        return WorkflowUpdatedTrigger(
            config,
            fake_client,  # type: ignore[arg-type]
            store or MemoryWatermarkStore(state),
            sink,
            clock=lambda: FIXED_NOW,
        )

    return _make
