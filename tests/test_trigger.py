from __future__ import annotations

import threading

import httpx
import pytest

from tests.conftest import FIXED_NOW, FakeWorkflowClient, RecordingSink
from workflow_watch.config import WatchConfig
from workflow_watch.errors import EmissionError, SourceError
from workflow_watch.sinks import EmissionSink
from workflow_watch.state import MemoryWatermarkStore, WatermarkState
from workflow_watch.trigger import (
    EnrichmentResult,
    WorkflowUpdatedTrigger,
    normalize_candidate,
)

LAST_SYNC = "2025-10-29T12:05:00.000Z"


def _wf(workflow_id, updated_at, name=None, key="updatedAt"):
    item = {"id": workflow_id, key: updated_at}
    if name is not None:
        item["name"] = name
    return item


# ---------------------------------------------------------------------------
# Candidate normalization
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("item", [None, "x", {}, {"id": None}, {"name": "no id"}])
def test_unusable_candidates_are_dropped(item) -> None:
    assert normalize_candidate(item) is None


def test_candidate_defaults() -> None:
    candidate = normalize_candidate({"id": 7, "updated_at": "2025-01-01T00:00:00Z"})
    assert candidate is not None
    assert candidate.id == "7"
    assert candidate.name == "workflow-7"
    assert candidate.updated_at == "2025-01-01T00:00:00Z"


def test_empty_string_id_is_kept() -> None:
    candidate = normalize_candidate({"id": "", "updatedAt": "2025-01-01T00:00:00Z"})
    assert candidate is not None
    assert candidate.id == ""
    assert candidate.name == "workflow-"


def test_camel_case_timestamp_wins() -> None:
    candidate = normalize_candidate(
        {"id": "1", "updatedAt": "2025-02-01T00:00:00Z", "updated_at": "2025-01-01T00:00:00Z"}
    )
    assert candidate.updated_at == "2025-02-01T00:00:00Z"


# ---------------------------------------------------------------------------
# Cycle scenarios
# ---------------------------------------------------------------------------


def test_emits_only_items_newer_than_watermarks(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [
        _wf(1, "2025-10-29T12:10:00.000Z", "Changed"),
        _wf(2, LAST_SYNC, "Same as last sync"),
    ]
    store = MemoryWatermarkStore(WatermarkState(last_sync=LAST_SYNC))
    trigger = make_trigger(store=store)

    result = trigger.run_cycle()

    assert result.ok
    assert sink.batches == [
        [{"id": "1", "name": "Changed", "updatedAt": "2025-10-29T12:10:00.000Z"}]
    ]
    state = store.load()
    # lastSync is the wall clock of emission, not the item's timestamp
    assert state.last_sync == FIXED_NOW
    assert state.seen_map == {"1": "2025-10-29T12:10:00.000Z"}


def test_excluded_names_are_never_emitted(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [
        _wf(1, "2099-01-01T00:00:00.000Z", "Backup of invoices"),
        _wf(2, "2099-01-01T00:00:00.000Z", "_scratch"),
        _wf(3, "2099-01-01T00:00:00.000Z", "GLOBAL WORKFLOW UPDATED TRIGGER"),
        _wf(4, "2099-01-01T00:00:00.000Z", "Invoices"),
    ]
    trigger = make_trigger()

    result = trigger.run_cycle()

    assert [record["id"] for record in sink.records] == ["4"]
    assert result.excluded == 3


def test_exclusion_is_unanchored_and_case_insensitive(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [
        _wf(1, "2099-01-01T00:00:00.000Z", "My SECRET flow"),
        _wf(2, "2099-01-01T00:00:00.000Z", "Public flow"),
    ]
    make_trigger(exclude_regex="secret").run_cycle()
    assert [record["id"] for record in sink.records] == ["2"]


def test_listing_failure_leaves_state_untouched(make_trigger, fake_client, sink) -> None:
    fake_client.list_error = SourceError("GET /api/v1/workflows failed")
    initial = WatermarkState(last_sync=LAST_SYNC, seen_map={"1": LAST_SYNC})
    store = MemoryWatermarkStore(initial)
    trigger = make_trigger(store=store)

    result = trigger.run_cycle()

    assert not result.ok
    assert "failed" in result.error
    assert sink.batches == []
    assert store.save_count == 0
    assert store.load() == initial


def test_enrichment_failure_still_emits_without_detail(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [
        _wf("a", "2025-10-29T12:10:00.000Z", "Flaky"),
        _wf("b", "2025-10-29T12:11:00.000Z", "Healthy"),
    ]
    fake_client.detail_errors["a"] = SourceError("timeout")
    fake_client.details["b"] = {"id": "b", "nodes": [{"type": "n8n-nodes-base.set"}]}
    trigger = make_trigger(emit_full_workflow=True)

    result = trigger.run_cycle()

    records = {record["id"]: record for record in sink.records}
    assert "workflow" not in records["a"]
    assert records["b"]["workflow"] == {"id": "b", "nodes": [{"type": "n8n-nodes-base.set"}]}
    assert result.enrichment_failures == 1
    assert fake_client.detail_calls == ["a", "b"]


def test_detail_not_fetched_when_disabled(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [_wf("a", "2025-10-29T12:10:00.000Z", "A")]
    make_trigger(emit_full_workflow=False).run_cycle()
    assert fake_client.detail_calls == []
    assert "workflow" not in sink.records[0]


def test_detail_only_fetched_for_emitted_items(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [
        _wf("old", "2020-01-01T00:00:00.000Z", "Old"),
        _wf("new", "2025-10-29T12:10:00.000Z", "New"),
    ]
    fake_client.details["new"] = {"id": "new"}
    store = MemoryWatermarkStore(WatermarkState(last_sync=LAST_SYNC))
    make_trigger(store=store, emit_full_workflow=True).run_cycle()
    assert fake_client.detail_calls == ["new"]


def test_cap_defers_remaining_items_to_next_cycle(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [
        _wf(1, "2025-10-29T12:10:00.000Z", "First"),
        _wf(2, "2025-10-29T12:20:00.000Z", "Second"),
    ]
    store = MemoryWatermarkStore(WatermarkState(last_sync=LAST_SYNC))
    trigger = make_trigger(store=store, max_per_cycle=1)

    first = trigger.run_cycle()
    assert [record["id"] for record in first.emitted] == ["1"]
    assert first.truncated
    assert store.load().last_sync == LAST_SYNC

    second = trigger.run_cycle()
    assert [record["id"] for record in second.emitted] == ["2"]
    assert not second.truncated
    assert store.load().last_sync == FIXED_NOW

    third = trigger.run_cycle()
    assert third.emitted == []
    assert [record["id"] for record in sink.records] == ["1", "2"]


def test_out_of_range_timestamp_does_not_block_the_cycle(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [
        _wf("good", "2025-10-29T12:10:00.000Z", "Good"),
        _wf("edge", "9999-12-31T23:59:59-01:00", "Edge"),
    ]
    store = MemoryWatermarkStore(WatermarkState(last_sync=LAST_SYNC))

    result = make_trigger(store=store).run_cycle()

    assert result.ok
    assert [record["id"] for record in sink.records] == ["good"]
    assert store.load().last_sync == FIXED_NOW


def test_out_of_range_watermark_counts_as_epoch(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [_wf(1, "2025-10-29T12:10:00.000Z", "A")]
    store = MemoryWatermarkStore(
        WatermarkState(
            last_sync="0001-01-01T00:00:00+01:00",
            seen_map={"1": "0001-01-01T00:00:00+01:00"},
        )
    )

    result = make_trigger(store=store).run_cycle()

    assert result.ok
    assert [record["id"] for record in sink.records] == ["1"]


def test_page_capped_listing_keeps_last_sync(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [_wf(1, "2025-10-29T12:10:00.000Z", "First page")]
    fake_client.listing_truncated = True
    store = MemoryWatermarkStore(WatermarkState(last_sync=LAST_SYNC))
    trigger = make_trigger(store=store)

    result = trigger.run_cycle()

    assert result.truncated
    state = store.load()
    assert state.last_sync == LAST_SYNC
    assert state.seen_map == {"1": "2025-10-29T12:10:00.000Z"}

    # The unfetched page shows up once the listing completes
    fake_client.listing_truncated = False
    fake_client.workflows.append(_wf(2, "2025-10-29T12:20:00.000Z", "Second page"))
    trigger.run_cycle()

    assert [record["id"] for record in sink.records] == ["1", "2"]
    assert store.load().last_sync == FIXED_NOW


def test_max_pages_from_config_defers_unfetched_pages(sink) -> None:
    pages = {
        "": {"data": [_wf(1, "2025-10-29T12:10:00.000Z", "A")], "nextCursor": "p2"},
        "p2": {"data": [_wf(2, "2025-10-29T12:20:00.000Z", "B")], "nextCursor": None},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=pages[request.url.params.get("cursor", "")])

    transport = httpx.MockTransport(handler)
    store = MemoryWatermarkStore(WatermarkState(last_sync=LAST_SYNC))

    def build(max_pages):
        config = WatchConfig(
            base_url="http://n8n.test", emit_full_workflow=False, max_pages=max_pages
        )
        trigger = WorkflowUpdatedTrigger.from_config(
            config, sink, store=store, transport=transport
        )
        trigger.clock = lambda: FIXED_NOW
        return trigger

    capped = build(1)
    assert capped.client.max_pages == 1
    capped.run_cycle()
    capped.close()
    assert store.load().last_sync == LAST_SYNC

    build(10).run_cycle()

    assert [record["id"] for record in sink.records] == ["1", "2"]


def test_zero_cap_is_unlimited(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [_wf(i, "2025-10-29T12:10:00.000Z", f"wf {i}") for i in range(5)]
    make_trigger(max_per_cycle=0).run_cycle()
    assert len(sink.records) == 5


def test_second_cycle_without_changes_emits_nothing(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [
        _wf(1, "2025-10-29T12:10:00.000Z", "A"),
        _wf(2, "2025-10-29T12:11:00.000Z", "B"),
    ]
    store = MemoryWatermarkStore()
    trigger = make_trigger(store=store)

    assert trigger.run_cycle().emitted_count == 2
    assert trigger.run_cycle().emitted_count == 0
    assert len(sink.batches) == 1
    assert store.save_count == 1


def test_later_update_is_emitted_again(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [_wf(1, "2025-10-29T12:10:00.000Z", "A")]
    store = MemoryWatermarkStore()
    trigger = make_trigger(store=store)
    trigger.run_cycle()

    fake_client.workflows = [_wf(1, "2025-10-29T13:30:00.000Z", "A")]
    trigger.run_cycle()

    assert [record["updatedAt"] for record in sink.records] == [
        "2025-10-29T12:10:00.000Z",
        "2025-10-29T13:30:00.000Z",
    ]
    assert store.load().seen_map == {"1": "2025-10-29T13:30:00.000Z"}


def test_empty_cycle_does_not_touch_state(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [_wf(1, None, "No timestamp"), _wf(2, "garbage", "Bad timestamp")]
    store = MemoryWatermarkStore(WatermarkState(last_sync=LAST_SYNC))
    result = make_trigger(store=store).run_cycle()

    assert result.ok
    assert result.emitted == []
    assert sink.batches == []
    assert store.save_count == 0


def test_snake_case_timestamp_and_missing_ids(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [
        None,
        {"name": "no id", "updatedAt": "2025-10-29T12:10:00.000Z"},
        _wf(3, "2025-10-29T12:10:00.000Z", key="updated_at"),
    ]
    result = make_trigger().run_cycle()

    assert result.skipped == 2
    assert sink.records == [
        {"id": "3", "name": "workflow-3", "updatedAt": "2025-10-29T12:10:00.000Z"}
    ]


def test_sink_failure_keeps_watermarks(make_trigger, fake_client) -> None:
    class FailingSink(EmissionSink):
        def emit(self, records):
            raise EmissionError("webhook down")

    fake_client.workflows = [_wf(1, "2025-10-29T12:10:00.000Z", "A")]
    store = MemoryWatermarkStore()
    trigger = WorkflowUpdatedTrigger(
        WatchConfig(emit_full_workflow=False),
        fake_client,
        store,
        FailingSink(),
        clock=lambda: FIXED_NOW,
    )

    result = trigger.run_cycle()

    assert not result.ok
    assert store.save_count == 0


def test_state_is_loaded_per_cycle_from_store(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [_wf(1, "2025-10-29T12:10:00.000Z", "A")]
    store = MemoryWatermarkStore()
    make_trigger(store=store).run_cycle()

    # A fresh trigger on the same store (a restart) does not re-emit
    restarted_sink = RecordingSink()
    restarted = WorkflowUpdatedTrigger(
        WatchConfig(emit_full_workflow=False),
        FakeWorkflowClient(fake_client.workflows),
        store,
        restarted_sink,
        clock=lambda: FIXED_NOW,
    )
    restarted.run_cycle()
    assert restarted_sink.batches == []


def test_enrich_returns_result_type(make_trigger, fake_client) -> None:
    fake_client.details["1"] = {"id": "1"}
    trigger = make_trigger()
    assert trigger.enrich("1") == EnrichmentResult.success({"id": "1"})
    failed = trigger.enrich("missing")
    assert not failed.ok
    assert "not found" in failed.error


# ---------------------------------------------------------------------------
# Loop lifecycle
# ---------------------------------------------------------------------------


def test_run_with_max_cycles(make_trigger, fake_client) -> None:
    trigger = make_trigger()
    trigger.run(max_cycles=1)
    assert fake_client.list_calls == 1


def test_loop_survives_failing_cycles(make_trigger, fake_client) -> None:
    fake_client.list_error = SourceError("down")
    trigger = make_trigger()

    original_run_cycle = trigger.run_cycle

    def run_then_stop():
        result = original_run_cycle()
        if trigger.cycles_run >= 3:
            trigger.stop()
        return result

    trigger.run_cycle = run_then_stop
    trigger._stop_event.wait = lambda timeout=None: trigger._stop_event.is_set()

    trigger.run()

    assert fake_client.list_calls == 3


def test_stop_ends_background_loop(make_trigger, fake_client, sink) -> None:
    fake_client.workflows = [_wf(1, "2025-10-29T12:10:00.000Z", "A")]
    first_cycle_done = threading.Event()
    sink.callback = lambda batch: (sink.batches.append(batch), first_cycle_done.set())
    trigger = make_trigger(interval_seconds=3600)

    thread = trigger.start()
    assert first_cycle_done.wait(5)

    trigger.stop()
    trigger.join(timeout=5)

    assert not thread.is_alive()
    assert not trigger.active
    assert fake_client.list_calls == 1
    assert len(sink.batches) == 1


def test_close_stops_and_closes_collaborators(make_trigger, fake_client) -> None:
    trigger = make_trigger()
    trigger.close()
    assert not trigger.active
    assert fake_client.closed
