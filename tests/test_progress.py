from __future__ import annotations

import logging

from lead_reconciler.models import RENEWAL, RunSummary
from lead_reconciler.progress import (
    CollectingSink,
    LoggingSink,
    Notification,
    NotificationKind,
    ProgressReporter,
    describe_summary,
)


class BrokenSink:
    def notify(self, notification: Notification) -> None:
        raise RuntimeError("toast service down")


def test_start_notification_names_count_and_family() -> None:
    sink = CollectingSink()
    ProgressReporter(sink).on_start(250, "Main Street Agency", RENEWAL)

    (notification,) = sink.notifications
    assert notification.title == "Processing 250 renewals..."
    assert notification.kind is NotificationKind.INFO


def test_progress_only_for_large_inputs_at_interval_marks() -> None:
    sink = CollectingSink()
    reporter = ProgressReporter(sink)

    assert reporter.on_progress(50, 100, previous=0) is False
    assert reporter.on_progress(50, 250, previous=0) is False
    assert reporter.on_progress(100, 250, previous=50) is True
    assert reporter.on_progress(150, 250, previous=100) is False
    assert reporter.on_progress(200, 250, previous=150) is True
    assert reporter.on_progress(250, 250, previous=200) is False

    assert [n.description for n in sink.notifications] == ["100 of 250 processed", "200 of 250 processed"]
    assert sink.notifications[0].title == "Processing leads..."


def test_progress_fires_when_batch_crosses_mark() -> None:
    sink = CollectingSink()

    assert ProgressReporter(sink).on_progress(120, 300, previous=90) is True
    assert sink.notifications[0].description == "120 of 300 processed"


def test_completion_is_success_without_failures() -> None:
    sink = CollectingSink()
    summary = RunSummary(created=3, updated=2)

    ProgressReporter(sink).on_complete(summary, "Agency")

    (notification,) = sink.notifications
    assert notification.title == "Upload Complete"
    assert notification.kind is NotificationKind.SUCCESS
    assert notification.description == "3 new leads, 2 updated -> Agency"


def test_completion_reports_failures_as_error(caplog) -> None:
    sink = CollectingSink()
    summary = RunSummary(created=1, failed=2, recovered_on_retry=1, conflicted=1)

    with caplog.at_level(logging.ERROR):
        ProgressReporter(sink).on_complete(summary, "Agency")

    assert sink.notifications[0].kind is NotificationKind.ERROR
    assert "2 records permanently failed" in caplog.text


def test_describe_summary_mentions_optional_counts() -> None:
    summary = RunSummary(created=1, updated=0, failed=2, recovered_on_retry=3, conflicted=4)

    assert describe_summary(summary, "renewals", "Agency") == (
        "1 new renewals, 0 updated, 3 recovered on retry, 2 still failed, 4 flagged for review -> Agency"
    )


def test_failure_notification_title() -> None:
    sink = CollectingSink()

    ProgressReporter(sink).on_failure(RuntimeError("backend unavailable"), "Agency")

    (notification,) = sink.notifications
    assert notification.title == "Leads Upload Failed"
    assert notification.description == "backend unavailable"
    assert notification.kind is NotificationKind.ERROR


def test_sink_errors_never_escape(caplog) -> None:
    reporter = ProgressReporter(BrokenSink())

    with caplog.at_level(logging.ERROR):
        reporter.on_start(10, "Agency")
        reporter.on_complete(RunSummary(created=10), "Agency")

    assert "Notification sink failed" in caplog.text


def test_logging_sink_uses_error_level_for_errors(caplog) -> None:
    sink = LoggingSink()

    with caplog.at_level(logging.INFO, logger="lead_reconciler.notifications"):
        sink.notify(Notification(title="Upload Complete", description="ok"))
        sink.notify(Notification(title="Leads Upload Failed", description="boom", kind=NotificationKind.ERROR))

    levels = [record.levelno for record in caplog.records]
    assert levels == [logging.INFO, logging.ERROR]
