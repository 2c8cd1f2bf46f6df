"""User-facing start, progress, and completion notifications for reconciliation runs."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Protocol

from .models import LEAD, RENEWAL, RunSummary

LOGGER = logging.getLogger(__name__)

DEFAULT_PROGRESS_THRESHOLD = 100
DEFAULT_PROGRESS_INTERVAL = 100

_NOUNS = {LEAD: "leads", RENEWAL: "renewals"}


class NotificationKind(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    title: str
    description: str = ""
    kind: NotificationKind = NotificationKind.INFO


class NotificationSink(Protocol):
    """Destination for user-facing notifications."""

    def notify(self, notification: Notification) -> None:  # pragma: no cover - runtime protocol
        """Deliver ``notification`` to the user."""


class LoggingSink:
    """Sink that writes notifications to the application log."""

    def __init__(self, logger_name: str = "lead_reconciler.notifications") -> None:
        self._logger = logging.getLogger(logger_name)

    def notify(self, notification: Notification) -> None:
        level = logging.ERROR if notification.kind is NotificationKind.ERROR else logging.INFO
        self._logger.log(level, "%s: %s", notification.title, notification.description)


class CollectingSink:
    """Sink that keeps every notification in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.notifications: List[Notification] = []

    def notify(self, notification: Notification) -> None:
        with self._lock:
            self.notifications.append(notification)


def noun_for(family: str) -> str:
    return _NOUNS.get(family, "records")


def describe_summary(summary: RunSummary, noun: str, label: str) -> str:
    parts = [f"{summary.created} new {noun}", f"{summary.updated} updated"]
    if summary.recovered_on_retry:
        parts.append(f"{summary.recovered_on_retry} recovered on retry")
    if summary.failed:
        parts.append(f"{summary.failed} still failed")
    if summary.conflicted:
        parts.append(f"{summary.conflicted} flagged for review")
    return f"{', '.join(parts)} -> {label}"


class ProgressReporter:
    """Routes run lifecycle events to a :class:`NotificationSink`.

    No method ever raises: delivery problems are logged and dropped so they
    cannot affect reconciliation.
    """

    def __init__(
        self,
        sink: NotificationSink,
        *,
        progress_threshold: int = DEFAULT_PROGRESS_THRESHOLD,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
    ) -> None:
        self._sink = sink
        self._threshold = progress_threshold
        self._interval = max(1, progress_interval)

    def on_start(self, count: int, label: str, family: str = LEAD) -> None:
        self._send(
            Notification(
                title=f"Processing {count} {noun_for(family)}...",
                description=f"Upload to {label} in progress.",
            )
        )

    def on_progress(self, processed: int, total: int, *, previous: int = 0, family: str = LEAD) -> bool:
        """Emit a progress notification when ``processed`` crosses an interval mark.

        Only inputs larger than the threshold report progress, and never at
        zero or at completion. Returns whether a notification was sent.
        """

        if total <= self._threshold or processed <= 0 or processed >= total:
            return False
        if processed // self._interval <= previous // self._interval:
            return False
        self._send(
            Notification(
                title=f"Processing {noun_for(family)}...",
                description=f"{processed} of {total} processed",
            )
        )
        return True

    def on_complete(self, summary: RunSummary, label: str, family: str = LEAD) -> None:
        kind = NotificationKind.SUCCESS if summary.failed == 0 else NotificationKind.ERROR
        self._send(
            Notification(
                title="Upload Complete",
                description=describe_summary(summary, noun_for(family), label),
                kind=kind,
            )
        )
        if summary.failed:
            LOGGER.error("%s records permanently failed for %s", summary.failed, label)

    def on_failure(self, error: BaseException, label: str, family: str = LEAD) -> None:
        self._send(
            Notification(
                title=f"{noun_for(family).capitalize()} Upload Failed",
                description=str(error) or "An error occurred during processing",
                kind=NotificationKind.ERROR,
            )
        )

    def _send(self, notification: Notification) -> None:
        try:
            self._sink.notify(notification)
        except Exception:
            LOGGER.exception("Notification sink failed to deliver %r", notification.title)


__all__ = [
    "CollectingSink",
    "LoggingSink",
    "Notification",
    "NotificationKind",
    "NotificationSink",
    "ProgressReporter",
    "describe_summary",
    "noun_for",
]
