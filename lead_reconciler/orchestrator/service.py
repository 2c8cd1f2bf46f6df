"""Batch orchestrator that fans rows out to the reconciler under a concurrency bound."""
from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Tuple

from ..config import PipelineSettings
from ..models import (
    BatchOutcome,
    FailedRow,
    Outcome,
    ParsedRow,
    ReconcileResult,
    ReconciliationError,
    RunSummary,
    UploadContext,
)
from ..normalize import EMPTY_KEY, natural_key
from ..progress import LoggingSink, ProgressReporter
from ..rate_limit import pause

LOGGER = logging.getLogger(__name__)

CompletionHook = Callable[[str], None]
IndexedRow = Tuple[int, ParsedRow]


class PreconditionError(ReconciliationError, ValueError):
    """Raised before a run starts when its input or context is unusable."""


class ReconcilerProtocol(Protocol):
    def reconcile(self, row: ParsedRow, context: UploadContext) -> ReconcileResult:  # pragma: no cover - runtime protocol
        """Insert or merge ``row``; raise on persistence failure."""


class UploadTask:
    """Handle for a run executing in the background."""

    def __init__(self, future: Future[RunSummary]) -> None:
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> RunSummary:
        return self._future.result(timeout=timeout)


def partition(rows: Sequence[ParsedRow], size: int) -> List[Tuple[int, Sequence[ParsedRow]]]:
    """Split ``rows`` into ``(offset, batch)`` pairs of at most ``size`` rows."""

    return [(offset, rows[offset:offset + size]) for offset in range(0, len(rows), size)]


def group_by_key(offset: int, batch: Sequence[ParsedRow]) -> List[List[IndexedRow]]:
    """Group rows sharing a natural key, preserving first-seen order.

    Rows without a key are never grouped with each other.
    """

    groups: "OrderedDict[str, List[IndexedRow]]" = OrderedDict()
    for position, row in enumerate(batch):
        index = offset + position
        key = natural_key(row)
        if key == EMPTY_KEY:
            key = f"#unkeyed-{index}"
        groups.setdefault(key, []).append((index, row))
    return list(groups.values())


class BatchOrchestrator:
    """Runs the reconciler over every row of an upload.

    Rows are processed in fixed-size batches, each fanned out over a bounded
    thread pool, with a pause between batches and a single sequential retry
    pass over failures at the end.
    """

    def __init__(
        self,
        reconciler: ReconcilerProtocol,
        *,
        settings: Optional[PipelineSettings] = None,
        reporter: Optional[ProgressReporter] = None,
        completion_hooks: Iterable[CompletionHook] = (),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._reconciler = reconciler
        self._settings = settings or PipelineSettings()
        self._reporter = reporter or ProgressReporter(
            LoggingSink(),
            progress_threshold=self._settings.progress_threshold,
            progress_interval=self._settings.progress_interval,
        )
        self._completion_hooks: List[CompletionHook] = list(completion_hooks)
        self._sleep = sleep
        self._background: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    @property
    def reporter(self) -> ProgressReporter:
        return self._reporter

    def add_completion_hook(self, hook: CompletionHook) -> None:
        """Register a callback invoked with the tenant id after each completed run."""

        self._completion_hooks.append(hook)

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------
    def validate(self, rows: Sequence[ParsedRow], context: Optional[UploadContext]) -> str:
        """Check run preconditions and return the entity family of ``rows``."""

        if not rows:
            raise PreconditionError("No records provided")
        if context is None:
            raise PreconditionError("An upload context is required")
        missing = context.missing_fields()
        if missing:
            raise PreconditionError(f"Upload context is missing: {', '.join(missing)}")
        families = {getattr(row, "family", None) for row in rows}
        if len(families) != 1 or None in families:
            raise PreconditionError(f"All rows must belong to one entity family, got {sorted(map(str, families))}")
        return families.pop()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def run(self, rows: Sequence[ParsedRow], context: UploadContext, source_label: str) -> RunSummary:
        """Reconcile every row and return the aggregated summary."""

        rows = list(rows)
        family = self.validate(rows, context)
        total = len(rows)
        batches = partition(rows, self._settings.batch_size)
        summary = RunSummary()
        failures: List[BatchOutcome] = []
        processed = 0

        self._reporter.on_start(total, source_label, family)

        for number, (offset, batch) in enumerate(batches, start=1):
            LOGGER.info(
                "Processing %s batch %s/%s: records %s-%s",
                family,
                number,
                len(batches),
                offset + 1,
                offset + len(batch),
            )
            outcomes = self._run_batch(offset, batch, context)
            batch_failures = [outcome for outcome in outcomes if outcome.failed]
            failures.extend(batch_failures)
            self._tally(summary, outcomes)

            previous, processed = processed, processed + len(batch)
            self._reporter.on_progress(processed, total, previous=previous, family=family)
            LOGGER.info(
                "Batch %s complete: %s new, %s merged, %s failed",
                number,
                sum(1 for o in outcomes if o.outcome is Outcome.CREATED),
                sum(1 for o in outcomes if o.outcome is Outcome.UPDATED),
                len(batch_failures),
            )

            if number < len(batches):
                pause(self._settings.inter_batch_delay_seconds, self._sleep)

        if failures:
            self._retry_failures(failures, context, summary)

        LOGGER.info(
            "Run finished for %s: %s created, %s updated, %s failed, %s recovered on retry, %s conflicts (input %s)",
            source_label,
            summary.created,
            summary.updated,
            summary.failed,
            summary.recovered_on_retry,
            summary.conflicted,
            total,
        )
        self._reporter.on_complete(summary, source_label, family)
        self._run_completion_hooks(context.tenant_id)
        return summary

    def start_background(
        self, rows: Sequence[ParsedRow], context: UploadContext, source_label: str
    ) -> UploadTask:
        """Validate synchronously, then run detached from the caller."""

        rows = list(rows)
        family = self.validate(rows, context)
        with self._lock:
            if self._background is None:
                self._background = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reconcile-run")
            future = self._background.submit(self._run_detached, rows, context, source_label, family)
        return UploadTask(future)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._background is not None:
                self._background.shutdown(wait=wait)
                self._background = None

    # ------------------------------------------------------------------
    def _run_detached(
        self, rows: List[ParsedRow], context: UploadContext, source_label: str, family: str
    ) -> RunSummary:
        try:
            return self.run(rows, context, source_label)
        except Exception as exc:
            LOGGER.exception("Fatal error while reconciling upload for %s", source_label)
            self._reporter.on_failure(exc, source_label, family)
            raise

    def _run_batch(self, offset: int, batch: Sequence[ParsedRow], context: UploadContext) -> List[BatchOutcome]:
        groups = group_by_key(offset, batch)
        outcomes: List[BatchOutcome] = []
        with ThreadPoolExecutor(max_workers=self._settings.concurrency_limit) as executor:
            futures = [executor.submit(self._run_group, group, context) for group in groups]
            for future in futures:
                outcomes.extend(future.result())
        outcomes.sort(key=lambda outcome: outcome.index)
        return outcomes

    def _run_group(self, group: List[IndexedRow], context: UploadContext) -> List[BatchOutcome]:
        # Rows sharing a natural key run back to back so each sees the previous write.
        return [self._attempt(index, row, context) for index, row in group]

    def _attempt(self, index: int, row: ParsedRow, context: UploadContext) -> BatchOutcome:
        try:
            result = self._reconciler.reconcile(row, context)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            LOGGER.error("Record %s (%s) failed: %s", index + 1, natural_key(row) or row.display_name(), message)
            return BatchOutcome(index=index, row=row, outcome=Outcome.FAILED, error=message)
        return BatchOutcome(index=index, row=row, outcome=result.outcome, result=result)

    def _retry_failures(self, failures: List[BatchOutcome], context: UploadContext, summary: RunSummary) -> None:
        LOGGER.info("Retrying %s failed records sequentially...", len(failures))
        ordered = sorted(failures, key=lambda outcome: outcome.index)
        for position, failure in enumerate(ordered):
            outcome = self._attempt(failure.index, failure.row, context)
            if outcome.failed:
                summary.failures.append(
                    FailedRow(
                        index=failure.index,
                        row=failure.row,
                        natural_key=natural_key(failure.row),
                        error=outcome.error or "",
                    )
                )
            else:
                summary.recovered_on_retry += 1
                if outcome.result is not None and outcome.result.conflict:
                    summary.conflicted += 1
            if position < len(ordered) - 1:
                pause(self._settings.retry_delay_seconds, self._sleep)
        summary.failed = len(summary.failures)
        LOGGER.info(
            "Retry complete: %s recovered, %s still failed",
            summary.recovered_on_retry,
            summary.failed,
        )

    @staticmethod
    def _tally(summary: RunSummary, outcomes: Iterable[BatchOutcome]) -> None:
        for outcome in outcomes:
            if outcome.outcome is Outcome.CREATED:
                summary.created += 1
            elif outcome.outcome is Outcome.UPDATED:
                summary.updated += 1
            if outcome.result is not None and outcome.result.conflict:
                summary.conflicted += 1

    def _run_completion_hooks(self, tenant_id: str) -> None:
        for hook in self._completion_hooks:
            try:
                hook(tenant_id)
            except Exception:
                LOGGER.exception("Completion hook %r failed for tenant %s", hook, tenant_id)


__all__ = [
    "BatchOrchestrator",
    "CompletionHook",
    "PreconditionError",
    "UploadTask",
    "group_by_key",
    "partition",
]
