"""Natural-key derivation and comparison forms used for lookups and deduplication.

Every function here is pure and total: malformed input normalises to an empty
value instead of raising, so a bad row simply misses on lookup.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Optional

from .models import LEAD, RENEWAL

EMPTY_KEY = ""

_UNKNOWN_NAME = "UNKNOWN"
_NO_ZIP = "00000"
_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d", "%m-%d-%Y")


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_phone(raw: Any) -> str:
    """Return the digits of ``raw`` (``""`` for anything without digits)."""

    text = _text(raw)
    if text is None:
        return ""
    return "".join(c for c in text if c.isdigit())


def normalize_email(raw: Any) -> Optional[str]:
    text = _text(raw)
    return text.lower() if text else None


def normalize_name(raw: Any) -> Optional[str]:
    """Collapse whitespace and case-fold a name fragment."""

    text = _text(raw)
    if text is None:
        return None
    return re.sub(r"\s+", " ", text).casefold()


def normalize_zip(raw: Any) -> Optional[str]:
    """Return the first five digits of a postal code, or ``None``."""

    digits = normalize_phone(raw)
    if len(digits) < 5:
        return None
    return digits[:5]


def normalize_date(raw: Any) -> Optional[str]:
    """Return an ISO ``YYYY-MM-DD`` string, or ``None`` when unparseable."""

    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    text = _text(raw)
    if text is None:
        return None
    candidate = text.split("T", 1)[0].split(" ", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _letters(value: Any) -> str:
    text = _text(value)
    if text is None:
        return _UNKNOWN_NAME
    letters = re.sub(r"[^A-Z]", "", text.upper())
    return letters or _UNKNOWN_NAME


def household_key(first_name: Any, last_name: Any, zip_code: Any) -> str:
    """Build the ``LAST_FIRST_ZIP5`` household key."""

    zip_text = _text(zip_code)
    normalized_zip = zip_text[:5] if zip_text else _NO_ZIP
    return f"{_letters(last_name)}_{_letters(first_name)}_{normalized_zip}"


def renewal_key(policy_number: Any, effective_date: Any) -> str:
    """Build the ``POLICY|YYYY-MM-DD`` renewal key, or :data:`EMPTY_KEY`."""

    policy = _text(policy_number)
    when = normalize_date(effective_date)
    if not policy or not when:
        return EMPTY_KEY
    compact = re.sub(r"\s+", "", policy).upper()
    return f"{compact}|{when}"


def natural_key(row: Any) -> str:
    """Return the natural key for a parsed lead or renewal row."""

    family = getattr(row, "family", None)
    if family == LEAD:
        explicit = _text(getattr(row, "household_key", None))
        if explicit:
            return explicit.upper()
        if not _text(getattr(row, "last_name", None)) and not _text(getattr(row, "first_name", None)):
            return EMPTY_KEY
        return household_key(row.first_name, row.last_name, row.zip_code)
    if family == RENEWAL:
        return renewal_key(getattr(row, "policy_number", None), getattr(row, "renewal_effective_date", None))
    return EMPTY_KEY


__all__ = [
    "EMPTY_KEY",
    "household_key",
    "natural_key",
    "normalize_date",
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "normalize_zip",
    "renewal_key",
]
