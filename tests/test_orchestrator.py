from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import List

import pytest

from lead_reconciler.config import PipelineSettings
from lead_reconciler.models import LeadRow, RenewalRow
from lead_reconciler.normalize import natural_key
from lead_reconciler.orchestrator import BatchOrchestrator, PreconditionError
from lead_reconciler.orchestrator.service import group_by_key, partition
from lead_reconciler.progress import CollectingSink, NotificationKind, ProgressReporter
from lead_reconciler.reconciler import RecordReconciler
from lead_reconciler.store import InMemoryStore, StoreError


def _lead(index: int, **overrides) -> LeadRow:
    values = dict(
        first_name="Pat",
        last_name="Lee",
        zip_code=f"{10000 + index}",
        phones=[f"555-{index:04d}"],
    )
    values.update(overrides)
    return LeadRow(**values)


def _leads(count: int) -> List[LeadRow]:
    return [_lead(index) for index in range(count)]


class FlakyStore(InMemoryStore):
    """Store whose inserts fail a fixed number of times for selected keys."""

    def __init__(self, failing_keys, failures_per_key: int = 1) -> None:
        super().__init__()
        self._remaining = dict.fromkeys(failing_keys, failures_per_key)
        self._guard = threading.Lock()

    def insert(self, record):
        with self._guard:
            remaining = self._remaining.get(record.natural_key, 0)
            if remaining:
                self._remaining[record.natural_key] = remaining - 1
                raise StoreError(f"insert rejected for {record.natural_key}")
        return super().insert(record)


class SlowStore(InMemoryStore):
    """Store that tracks how many lookups are in flight at once."""

    def __init__(self) -> None:
        super().__init__()
        self._guard = threading.Lock()
        self.in_flight = 0
        self.peak = 0

    def find_by_key(self, tenant_id, family, key):
        with self._guard:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            time.sleep(0.01)
            return super().find_by_key(tenant_id, family, key)
        finally:
            with self._guard:
                self.in_flight -= 1


class RetryRecordingStore(InMemoryStore):
    """Store that fails the first insert of selected keys and records the retries."""

    def __init__(self, failing_keys, slow_keys=()) -> None:
        super().__init__()
        self._pending = set(failing_keys)
        self._slow = set(slow_keys)
        self._guard = threading.Lock()
        self.failed_order: List[str] = []
        self.retried: List[str] = []
        self.retry_in_flight = 0
        self.retry_peak = 0

    def insert(self, record):
        key = record.natural_key
        with self._guard:
            first_attempt = key in self._pending
            self._pending.discard(key)
            retrying = not first_attempt and key in set(self.failed_order)
        if first_attempt:
            if key in self._slow:
                time.sleep(0.2)
            with self._guard:
                self.failed_order.append(key)
            raise StoreError(f"insert timed out for {key}")
        if not retrying:
            return super().insert(record)
        with self._guard:
            self.retry_in_flight += 1
            self.retry_peak = max(self.retry_peak, self.retry_in_flight)
            self.retried.append(key)
        try:
            time.sleep(0.01)
            return super().insert(record)
        finally:
            with self._guard:
                self.retry_in_flight -= 1


def _orchestrator(reconciler, settings, sink=None, **kwargs) -> BatchOrchestrator:
    reporter = ProgressReporter(sink or CollectingSink())
    return BatchOrchestrator(reconciler, settings=settings, reporter=reporter, **kwargs)


def test_partition_and_grouping() -> None:
    rows = _leads(5)
    assert [(offset, len(batch)) for offset, batch in partition(rows, 2)] == [(0, 2), (2, 2), (4, 1)]

    duplicate = [_lead(1), _lead(2), _lead(1, phones=["555-9999"]), LeadRow(), LeadRow()]
    groups = group_by_key(10, duplicate)
    assert [[index for index, _ in group] for group in groups] == [[10, 12], [11], [13], [14]]


def test_run_counts_creates_then_updates(reconciler, store, context, fast_settings) -> None:
    orchestrator = _orchestrator(reconciler, fast_settings)
    rows = _leads(25)

    first = orchestrator.run(rows, context, "Agency")
    snapshot = store.to_dict()
    second = orchestrator.run(rows, context, "Agency")

    assert (first.created, first.updated, first.failed) == (25, 0, 0)
    assert (second.created, second.updated, second.failed) == (0, 25, 0)
    assert first.total == second.total == 25
    assert store.to_dict() == snapshot


def test_conflicts_are_counted(reconciler, context, fast_settings) -> None:
    orchestrator = _orchestrator(reconciler, fast_settings)
    rows = _leads(4)

    orchestrator.run(rows, context, "Agency")
    summary = orchestrator.run(rows, replace(context, source_id="source-B"), "Agency")

    assert summary.updated == 4
    assert summary.conflicted == 4


def test_duplicate_keys_in_one_batch_merge_into_one_record(reconciler, store, context, fast_settings) -> None:
    rows = [_lead(1, phones=["555-0001"]), _lead(1, phones=["555-0002"]), _lead(2)]

    summary = _orchestrator(reconciler, fast_settings).run(rows, context, "Agency")

    assert (summary.created, summary.updated) == (2, 1)
    record = store.find_by_key(context.tenant_id, "lead", natural_key(rows[0]))
    assert record.phones == ["555-0001", "555-0002"]


def test_concurrency_is_bounded(context) -> None:
    store = SlowStore()
    orchestrator = _orchestrator(RecordReconciler(store), PipelineSettings(), sleep=lambda seconds: None)

    summary = orchestrator.run(_leads(60), context, "Agency")

    assert summary.created == 60
    assert 1 < store.peak <= 5


def test_transient_failure_recovers_on_retry(context, fast_settings) -> None:
    rows = _leads(10)
    store = FlakyStore([natural_key(rows[3])])
    sink = CollectingSink()

    summary = _orchestrator(RecordReconciler(store), fast_settings, sink).run(rows, context, "Agency")

    assert summary.created == 9
    assert summary.recovered_on_retry == 1
    assert summary.failed == 0
    assert summary.failures == []
    assert len(list(store.records())) == 10
    assert sink.notifications[-1].kind is NotificationKind.SUCCESS
    assert "1 recovered on retry" in sink.notifications[-1].description


def test_permanent_failure_is_reported(context, fast_settings) -> None:
    rows = _leads(10)
    store = FlakyStore([natural_key(rows[7])], failures_per_key=99)
    sink = CollectingSink()

    summary = _orchestrator(RecordReconciler(store), fast_settings, sink).run(rows, context, "Agency")

    assert summary.created == 9
    assert summary.failed == 1
    (failure,) = summary.failures
    assert failure.index == 7
    assert failure.natural_key == natural_key(rows[7])
    assert "insert rejected" in failure.error
    assert sink.notifications[-1].kind is NotificationKind.ERROR
    assert "1 still failed" in sink.notifications[-1].description


def test_pauses_between_batches_and_retries(context) -> None:
    rows = _leads(120)
    store = FlakyStore([natural_key(rows[5]), natural_key(rows[80])], failures_per_key=99)
    slept: List[float] = []
    orchestrator = _orchestrator(RecordReconciler(store), PipelineSettings(), sleep=slept.append)

    summary = orchestrator.run(rows, context, "Agency")

    assert summary.failed == 2
    assert slept == [0.5, 0.5, 0.2]


def test_retry_pass_is_sequential_in_row_order(context, fast_settings) -> None:
    rows = _leads(20)
    slow, fast, later = (natural_key(rows[index]) for index in (2, 5, 15))
    store = RetryRecordingStore(failing_keys=[slow, fast, later], slow_keys=[slow])

    summary = _orchestrator(RecordReconciler(store), fast_settings).run(rows, context, "Agency")

    assert store.failed_order.index(fast) < store.failed_order.index(slow)
    assert store.retried == [slow, fast, later]
    assert store.retry_peak == 1
    assert summary.recovered_on_retry == 3
    assert summary.failed == 0


def test_progress_notifications_for_large_runs(context) -> None:
    sink = CollectingSink()
    settings = PipelineSettings(inter_batch_delay_seconds=0, retry_delay_seconds=0)
    orchestrator = _orchestrator(RecordReconciler(InMemoryStore()), settings, sink)

    orchestrator.run(_leads(250), context, "Agency")

    titles = [notification.title for notification in sink.notifications]
    assert titles == ["Processing 250 leads...", "Processing leads...", "Processing leads...", "Upload Complete"]
    assert [n.description for n in sink.notifications[1:3]] == ["100 of 250 processed", "200 of 250 processed"]


@pytest.mark.parametrize(
    "rows, overrides",
    [
        ([], {}),
        ([LeadRow(first_name="Pat")], {"tenant_id": ""}),
        ([LeadRow(first_name="Pat")], {"source_id": ""}),
        ([LeadRow(first_name="Pat"), RenewalRow(policy_number="P1", renewal_effective_date="2025-01-01")], {}),
    ],
)
def test_preconditions_reject_before_any_work(store, context, fast_settings, reconciler, rows, overrides) -> None:
    sink = CollectingSink()
    orchestrator = _orchestrator(reconciler, fast_settings, sink)

    with pytest.raises(PreconditionError):
        orchestrator.run(rows, replace(context, **overrides), "Agency")

    assert sink.notifications == []
    assert list(store.records()) == []


def test_missing_context_is_rejected(reconciler, fast_settings) -> None:
    with pytest.raises(PreconditionError):
        _orchestrator(reconciler, fast_settings).validate([_lead(1)], None)


def test_completion_hooks_run_even_if_one_fails(reconciler, context, fast_settings) -> None:
    seen: List[str] = []

    def broken(tenant_id: str) -> None:
        raise RuntimeError("cache refresh failed")

    orchestrator = _orchestrator(reconciler, fast_settings, completion_hooks=[broken])
    orchestrator.add_completion_hook(seen.append)

    summary = orchestrator.run(_leads(3), context, "Agency")

    assert summary.created == 3
    assert seen == ["agency-1"]


def test_background_run_returns_summary(reconciler, context, fast_settings) -> None:
    orchestrator = _orchestrator(reconciler, fast_settings)
    try:
        task = orchestrator.start_background(_leads(5), context, "Agency")
        summary = task.result(timeout=10)
    finally:
        orchestrator.shutdown()

    assert task.done()
    assert summary.created == 5


def test_background_preconditions_raise_synchronously(reconciler, context, fast_settings) -> None:
    orchestrator = _orchestrator(reconciler, fast_settings)

    with pytest.raises(PreconditionError):
        orchestrator.start_background([], context, "Agency")


def test_background_fatal_error_notifies(monkeypatch, reconciler, context, fast_settings) -> None:
    sink = CollectingSink()
    orchestrator = _orchestrator(reconciler, fast_settings, sink)

    def explode(offset, batch, ctx):
        raise RuntimeError("backend unavailable")

    monkeypatch.setattr(orchestrator, "_run_batch", explode)
    try:
        task = orchestrator.start_background(_leads(5), context, "Agency")
        with pytest.raises(RuntimeError):
            task.result(timeout=10)
    finally:
        orchestrator.shutdown()

    failure = sink.notifications[-1]
    assert failure.title == "Leads Upload Failed"
    assert failure.description == "backend unavailable"
    assert failure.kind is NotificationKind.ERROR
