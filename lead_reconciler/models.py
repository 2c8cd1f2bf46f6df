"""Data models shared by the reconciler, orchestrator, stores, and ingestion helpers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union


LEAD = "lead"
RENEWAL = "renewal"

LEAD_INITIAL_STATUS = "lead"
RENEWAL_INITIAL_STATUS = "uncontacted"

SOURCE_CONFLICT = "source_conflict"


class ReconciliationError(RuntimeError):
    """Base class for errors raised by the reconciliation pipeline."""


# --- Parsed Input Rows ---

@dataclass(slots=True)
class LeadRow:
    """A lead row produced by the spreadsheet parser."""

    family: ClassVar[str] = LEAD

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    zip_code: Optional[str] = None
    phones: List[str] = field(default_factory=list)
    email: Optional[str] = None
    household_key: Optional[str] = None
    products_interested: List[str] = field(default_factory=list)
    lead_date: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def display_name(self) -> str:
        return " ".join(filter(None, [self.first_name, self.last_name])).strip() or "(Unnamed Lead)"

    @property
    def row_date(self) -> Optional[str]:
        return self.lead_date


@dataclass(slots=True)
class RenewalRow:
    """A policy renewal row produced by the carrier report parser."""

    family: ClassVar[str] = RENEWAL

    policy_number: Optional[str] = None
    renewal_effective_date: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    zip_code: Optional[str] = None
    phones: List[str] = field(default_factory=list)
    email: Optional[str] = None
    household_key: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    product_name: Optional[str] = None
    product_code: Optional[str] = None
    original_year: Optional[int] = None
    agent_number: Optional[str] = None
    renewal_status: Optional[str] = None
    account_type: Optional[str] = None
    premium_old: Optional[float] = None
    premium_new: Optional[float] = None
    premium_change_dollars: Optional[float] = None
    premium_change_percent: Optional[float] = None
    amount_due: Optional[float] = None
    easy_pay: Optional[bool] = None
    multi_line_indicator: Optional[str] = None
    item_count: Optional[int] = None
    years_prior_insurance: Optional[int] = None
    carrier_status: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def display_name(self) -> str:
        return self.policy_number or "(No Policy Number)"

    @property
    def row_date(self) -> Optional[str]:
        return self.renewal_effective_date


ParsedRow = Union[LeadRow, RenewalRow]


@dataclass(frozen=True)
class UploadContext:
    """Explicit per-upload context threaded through every pipeline call."""

    tenant_id: str
    source_id: str
    actor_id: str
    actor_display_name: Optional[str] = None
    upload_id: Optional[str] = None

    def missing_fields(self) -> List[str]:
        return [name for name in ("tenant_id", "source_id", "actor_id") if not getattr(self, name)]


# --- Persisted Entities ---

@dataclass
class StoredRecord:
    """A household (lead family) or renewal record keyed by ``(tenant, family, natural_key)``."""

    tenant_id: str
    family: str
    natural_key: str
    source_id: Optional[str] = None
    status: Optional[str] = None
    id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    zip_code: Optional[str] = None
    phones: List[str] = field(default_factory=list)
    email: Optional[str] = None
    contact_id: Optional[str] = None
    attention: bool = False
    attention_reason: Optional[str] = None
    conflicting_source_id: Optional[str] = None
    is_active: bool = True
    dropped_from_report_at: Optional[str] = None
    upload_id: Optional[str] = None
    last_upload_id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Any:
        """Return a column or family attribute by name."""

        if name in _RECORD_COLUMNS:
            return getattr(self, name)
        return self.attributes.get(name)

    def apply(self, patch: Dict[str, Any]) -> None:
        """Apply a field-level patch; unknown names land in :attr:`attributes`."""

        columns = _RECORD_COLUMNS
        for name, value in patch.items():
            if name in {"id", "tenant_id", "family", "natural_key"}:
                raise ValueError(f"Field '{name}' cannot be patched")
            if name in columns:
                setattr(self, name, list(value) if name == "phones" else value)
            else:
                self.attributes[name] = value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredRecord":
        known = {name: data[name] for name in _RECORD_COLUMNS if name in data}
        return cls(**known)


_RECORD_COLUMNS: Tuple[str, ...] = tuple(f.name for f in fields(StoredRecord))


@dataclass
class Contact:
    """Shared identity linked from records of either family."""

    tenant_id: str
    name_key: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class UploadBatch:
    """Provenance of one submitted file."""

    tenant_id: str
    family: str
    filename: str
    record_count: int
    uploaded_by: str
    uploaded_by_display_name: Optional[str] = None
    date_range_start: Optional[str] = None
    date_range_end: Optional[str] = None
    created_at: Optional[str] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class RecordActivity:
    """Timeline entry attached to a stored record."""

    tenant_id: str
    record_id: str
    activity_type: str
    subject: str
    comments: Optional[str] = None
    created_by_display_name: Optional[str] = None
    created_at: Optional[str] = None
    id: Optional[str] = None


# --- Outcomes ---

class Outcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconcileResult:
    """What the reconciler did with a single row."""

    outcome: Outcome
    record_id: Optional[str]
    changed_fields: Tuple[str, ...] = ()
    conflict: bool = False


@dataclass
class BatchOutcome:
    """Per-row result collected by the orchestrator."""

    index: int
    row: ParsedRow
    outcome: Outcome
    result: Optional[ReconcileResult] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILED


@dataclass
class FailedRow:
    """A row that is still failing after the retry pass."""

    index: int
    row: ParsedRow
    natural_key: str
    error: str


@dataclass
class RunSummary:
    """Aggregated counts for a reconciliation run."""

    created: int = 0
    updated: int = 0
    failed: int = 0
    recovered_on_retry: int = 0
    conflicted: int = 0
    failures: List[FailedRow] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.failed + self.recovered_on_retry

    @property
    def clean(self) -> bool:
        return self.failed == 0 and self.recovered_on_retry == 0


__all__ = [
    "LEAD",
    "RENEWAL",
    "LEAD_INITIAL_STATUS",
    "RENEWAL_INITIAL_STATUS",
    "SOURCE_CONFLICT",
    "BatchOutcome",
    "Contact",
    "FailedRow",
    "LeadRow",
    "Outcome",
    "ParsedRow",
    "ReconcileResult",
    "ReconciliationError",
    "RecordActivity",
    "RenewalRow",
    "RunSummary",
    "StoredRecord",
    "UploadBatch",
    "UploadContext",
]
