"""Submission of a whole uploaded file: provenance, renewal report windows, and the batch run."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from ..models import RENEWAL, ParsedRow, RecordActivity, RunSummary, UploadBatch, UploadContext
from ..normalize import normalize_date
from ..store import KeyedStore
from .service import BatchOrchestrator

LOGGER = logging.getLogger(__name__)

RENEWAL_TAKEN = "Renewal Taken"
AUTO_PROMOTED_STATUS = "success"
AUTO_PROMOTE_FROM = ("uncontacted", "pending")
AUTO_RESOLVED_REASON = "renewal_taken_dropped"

STATUS_CHANGE_ACTIVITY = "status_change"
AUTO_PROMOTED_SUBJECT = "Auto-resolved: Carrier confirmed renewal"
AUTO_PROMOTED_COMMENTS = 'Record dropped from report with "Renewal Taken" status. Automatically marked as successful.'
SYSTEM_ACTOR = "System"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UploadReport:
    """Result of :meth:`UploadService.submit`."""

    upload: UploadBatch
    summary: RunSummary
    dropped: int = 0
    auto_promoted: int = 0


def date_range(rows: Sequence[ParsedRow]) -> Tuple[Optional[str], Optional[str]]:
    dates = sorted(filter(None, (normalize_date(row.row_date) for row in rows)))
    if not dates:
        return None, None
    return dates[0], dates[-1]


class UploadService:
    """Records provenance for an uploaded file and reconciles its rows.

    Renewal reports describe every policy renewing inside their date window,
    so active renewals in that window that the report no longer lists are
    marked as dropped, and dropped policies the carrier already renewed are
    resolved automatically.
    """

    def __init__(
        self,
        store: KeyedStore,
        orchestrator: BatchOrchestrator,
        *,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._now = now

    def submit(
        self,
        rows: Sequence[ParsedRow],
        context: UploadContext,
        *,
        filename: str,
        source_label: str,
    ) -> UploadReport:
        rows = list(rows)
        family = self._orchestrator.validate(rows, context)
        start, end = date_range(rows)

        batch = UploadBatch(
            tenant_id=context.tenant_id,
            family=family,
            filename=filename,
            record_count=len(rows),
            uploaded_by=context.actor_id,
            uploaded_by_display_name=context.actor_display_name,
            date_range_start=start,
            date_range_end=end,
            created_at=self._now().isoformat(),
        )
        upload_id = self._store.insert_upload(batch)
        batch = replace(batch, id=upload_id)
        context = replace(context, upload_id=upload_id)
        LOGGER.info("Created upload %s for %s (%s rows)", upload_id, filename, len(rows))

        deactivated: List[str] = []
        if family == RENEWAL and start and end:
            deactivated = self._deactivate_window(context.tenant_id, start, end)

        summary = self._orchestrator.run(rows, context, source_label)

        report = UploadReport(upload=batch, summary=summary)
        if family == RENEWAL and start and end:
            report.dropped = self._count_still_dropped(context.tenant_id, deactivated)
            # Runs after the batch so reappearing renewals are already reactivated.
            promoted = self._auto_promote(context.tenant_id)
            self._log_auto_promotions(context.tenant_id, promoted)
            report.auto_promoted = len(promoted)
            LOGGER.info(
                "Renewal upload %s: %s dropped from report, %s auto-promoted",
                upload_id,
                report.dropped,
                report.auto_promoted,
            )
        return report

    def _deactivate_window(self, tenant_id: str, start: str, end: str) -> List[str]:
        deactivated: List[str] = []
        stamp = self._now().isoformat()
        try:
            for record in self._store.scan(tenant_id, RENEWAL):
                effective = record.get("renewal_effective_date")
                if not record.is_active or not effective or not start <= effective <= end:
                    continue
                self._store.update(record.id, {"is_active": False, "dropped_from_report_at": stamp})
                deactivated.append(record.id)
        except Exception:
            LOGGER.exception("Deactivation of renewals between %s and %s failed", start, end)
        else:
            LOGGER.info("Deactivated %s existing renewals between %s and %s", len(deactivated), start, end)
        return deactivated

    def _count_still_dropped(self, tenant_id: str, deactivated: List[str]) -> int:
        if not deactivated:
            return 0
        wanted = set(deactivated)
        try:
            records = self._store.scan(tenant_id, RENEWAL)
        except Exception:
            LOGGER.exception("Could not count dropped renewals")
            return 0
        return sum(1 for record in records if record.id in wanted and not record.is_active)

    def _auto_promote(self, tenant_id: str) -> List[str]:
        promoted: List[str] = []
        try:
            for record in self._store.scan(tenant_id, RENEWAL):
                if (
                    record.is_active
                    or not record.dropped_from_report_at
                    or record.get("renewal_status") != RENEWAL_TAKEN
                    or record.status not in AUTO_PROMOTE_FROM
                ):
                    continue
                self._store.update(
                    record.id,
                    {"status": AUTO_PROMOTED_STATUS, "auto_resolved_reason": AUTO_RESOLVED_REASON},
                )
                promoted.append(record.id)
        except Exception:
            LOGGER.exception("Auto-promotion of dropped renewals failed")
        return promoted

    def _log_auto_promotions(self, tenant_id: str, record_ids: List[str]) -> None:
        if not record_ids:
            return
        stamp = self._now().isoformat()
        activities = [
            RecordActivity(
                tenant_id=tenant_id,
                record_id=record_id,
                activity_type=STATUS_CHANGE_ACTIVITY,
                subject=AUTO_PROMOTED_SUBJECT,
                comments=AUTO_PROMOTED_COMMENTS,
                created_by_display_name=SYSTEM_ACTOR,
                created_at=stamp,
            )
            for record_id in record_ids
        ]
        try:
            self._store.insert_activities(activities)
        except Exception:
            LOGGER.exception("Failed to log %s auto-promotion activities", len(activities))


__all__ = ["UploadReport", "UploadService", "date_range"]
