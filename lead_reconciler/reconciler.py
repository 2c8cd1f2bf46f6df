"""Per-row decision function: insert a new record or merge into an existing one."""
from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Optional

from .identity import IdentityResolver
from .merge import build_patch, clean_phones, insert_fields
from .models import (
    LEAD,
    LEAD_INITIAL_STATUS,
    RENEWAL,
    RENEWAL_INITIAL_STATUS,
    Outcome,
    ParsedRow,
    ReconcileResult,
    ReconciliationError,
    StoredRecord,
    UploadContext,
)
from .normalize import EMPTY_KEY, natural_key
from .store import KeyedStore

LOGGER = logging.getLogger(__name__)

_INITIAL_STATUS = {LEAD: LEAD_INITIAL_STATUS, RENEWAL: RENEWAL_INITIAL_STATUS}


class MissingNaturalKeyError(ReconciliationError):
    """Raised when a row does not yield a usable natural key."""


class RecordReconciler:
    """Reconciles a single parsed row against the keyed store."""

    def __init__(
        self,
        store: KeyedStore,
        identity: Optional[IdentityResolver] = None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._store = store
        self._identity = identity
        self._today = today

    def reconcile(self, row: ParsedRow, context: UploadContext) -> ReconcileResult:
        """Insert or merge ``row``; store errors propagate to the caller."""

        key = natural_key(row)
        if key == EMPTY_KEY:
            raise MissingNaturalKeyError(f"Row {row.display_name()!r} has no usable natural key")

        existing = self._store.find_by_key(context.tenant_id, row.family, key)
        contact_id = self._link_contact(row, context)

        if existing is None:
            record_id = self._store.insert(self._new_record(row, context, key, contact_id))
            LOGGER.debug("Created %s record %s for key %s", row.family, record_id, key)
            return ReconcileResult(outcome=Outcome.CREATED, record_id=record_id)

        patch, conflict = build_patch(
            existing,
            row,
            source_id=context.source_id,
            contact_id=contact_id,
            upload_id=context.upload_id,
        )
        if patch:
            self._store.update(existing.id, patch)
            LOGGER.debug("Updated %s record %s fields %s", row.family, existing.id, sorted(patch))
        return ReconcileResult(
            outcome=Outcome.UPDATED,
            record_id=existing.id,
            changed_fields=tuple(sorted(patch)),
            conflict=conflict,
        )

    def _link_contact(self, row: ParsedRow, context: UploadContext) -> Optional[str]:
        if self._identity is None:
            return None
        phone = row.phones[0] if row.phones else None
        # Contact linkage is an enrichment: a failed lookup leaves the record unlinked.
        return self._identity.try_resolve(
            context.tenant_id,
            row.first_name,
            row.last_name,
            zip_code=row.zip_code,
            phone=phone,
            email=row.email,
        ).or_none()

    def _new_record(
        self,
        row: ParsedRow,
        context: UploadContext,
        key: str,
        contact_id: Optional[str],
    ) -> StoredRecord:
        record = StoredRecord(
            tenant_id=context.tenant_id,
            family=row.family,
            natural_key=key,
            source_id=context.source_id,
            status=_INITIAL_STATUS[row.family],
            phones=clean_phones(row.phones),
            contact_id=contact_id,
            attention=False,
            upload_id=context.upload_id,
            last_upload_id=context.upload_id if row.family == RENEWAL else None,
        )
        record.apply(insert_fields(row))
        if row.family == LEAD and not record.get("lead_received_date"):
            record.apply({"lead_received_date": self._today().isoformat()})
        if row.family == RENEWAL:
            record.apply({"policy_number": row.policy_number, "renewal_effective_date": key.split("|", 1)[1]})
        return record


__all__ = ["MissingNaturalKeyError", "RecordReconciler"]
