"""Field-level merge rules applied when an incoming row matches an existing record."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import (
    LEAD,
    RENEWAL,
    SOURCE_CONFLICT,
    LeadRow,
    ParsedRow,
    RenewalRow,
    StoredRecord,
)
from .normalize import normalize_date, normalize_email, normalize_phone

LOGGER = logging.getLogger(__name__)

Patch = Dict[str, Any]

# Carrier report columns describe the policy as of the latest report, so they
# are refreshed instead of filled.
RENEWAL_REPORT_FIELDS: Tuple[str, ...] = (
    "product_name",
    "product_code",
    "original_year",
    "agent_number",
    "renewal_status",
    "account_type",
    "premium_old",
    "premium_new",
    "premium_change_dollars",
    "premium_change_percent",
    "amount_due",
    "easy_pay",
    "multi_line_indicator",
    "item_count",
    "years_prior_insurance",
    "carrier_status",
)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def merge_phones(existing: Optional[Iterable[str]], incoming: Optional[Iterable[str]]) -> List[str]:
    """Union two phone lists, deduplicating by digits-only form.

    Existing entries are kept verbatim and first; new unique entries are
    appended in incoming order. Entries without digits are dropped from the
    incoming side only.
    """

    merged: List[str] = list(existing or [])
    seen = {normalize_phone(phone) for phone in merged}
    for phone in incoming or []:
        digits = normalize_phone(phone)
        if not digits or digits in seen:
            continue
        merged.append(phone)
        seen.add(digits)
    return merged


def clean_phones(phones: Optional[Iterable[str]]) -> List[str]:
    """Deduplicate a single phone list the same way :func:`merge_phones` does."""

    return merge_phones([], phones)


def enrichment_fields(row: ParsedRow) -> Patch:
    """Scalar attributes that only ever fill gaps on an existing record."""

    fields: Patch = {
        "first_name": row.first_name,
        "last_name": row.last_name,
        "zip_code": row.zip_code,
        "email": normalize_email(row.email),
    }
    if isinstance(row, LeadRow):
        fields["products_interested"] = list(row.products_interested)
        fields["lead_received_date"] = normalize_date(row.lead_date)
    elif isinstance(row, RenewalRow):
        fields["household_key"] = row.household_key
        fields["city"] = row.city
        fields["state"] = row.state
    return fields


def report_fields(row: ParsedRow) -> Patch:
    if not isinstance(row, RenewalRow):
        return {}
    return {name: getattr(row, name) for name in RENEWAL_REPORT_FIELDS}


def fill_gaps(record: StoredRecord, incoming: Patch) -> Patch:
    """Return the subset of ``incoming`` that fills empty values on ``record``.

    A populated existing value is never overwritten.
    """

    return {
        name: value
        for name, value in incoming.items()
        if not is_empty(value) and is_empty(record.get(name))
    }


def ownership_patch(record: StoredRecord, source_id: str) -> Tuple[Patch, bool]:
    """Arbitrate which upstream source owns ``record``.

    Returns the patch and whether a source conflict was flagged.
    """

    if not record.source_id:
        return (
            {
                "source_id": source_id,
                "attention": False,
                "attention_reason": None,
                "conflicting_source_id": None,
            },
            False,
        )
    if record.source_id != source_id:
        return (
            {
                "attention": True,
                "attention_reason": SOURCE_CONFLICT,
                "conflicting_source_id": source_id,
            },
            True,
        )
    return {}, False


def prune_unchanged(record: StoredRecord, patch: Patch) -> Patch:
    return {name: value for name, value in patch.items() if record.get(name) != value}


def build_patch(
    record: StoredRecord,
    row: ParsedRow,
    *,
    source_id: str,
    contact_id: Optional[str] = None,
    upload_id: Optional[str] = None,
) -> Tuple[Patch, bool]:
    """Compute the minimal patch merging ``row`` into ``record``.

    Returns ``(patch, conflict)``. An empty patch means the row is already
    reflected in the record.
    """

    patch: Patch = {}

    if row.phones:
        merged = merge_phones(record.phones, row.phones)
        if len(merged) > len(record.phones):
            patch["phones"] = merged

    patch.update(fill_gaps(record, enrichment_fields(row)))

    ownership, conflict = ownership_patch(record, source_id)
    patch.update(ownership)
    if conflict:
        LOGGER.info(
            "Source conflict on %s record %s: owned by %s, claimed by %s",
            record.family,
            record.id,
            record.source_id,
            source_id,
        )

    if contact_id:
        patch["contact_id"] = contact_id

    if record.family == RENEWAL:
        patch.update({name: value for name, value in report_fields(row).items() if value is not None})
        patch["is_active"] = True
        patch["dropped_from_report_at"] = None
        if upload_id:
            patch["last_upload_id"] = upload_id

    return prune_unchanged(record, patch), conflict


def insert_fields(row: ParsedRow) -> Patch:
    """Attributes written when a row creates a brand-new record."""

    fields = {name: value for name, value in enrichment_fields(row).items() if not is_empty(value)}
    fields.update({name: value for name, value in report_fields(row).items() if value is not None})
    if row.family == LEAD:
        fields.setdefault("products_interested", [])
    return fields


__all__ = [
    "RENEWAL_REPORT_FIELDS",
    "build_patch",
    "clean_phones",
    "enrichment_fields",
    "fill_gaps",
    "insert_fields",
    "is_empty",
    "merge_phones",
    "ownership_patch",
    "prune_unchanged",
    "report_fields",
]
