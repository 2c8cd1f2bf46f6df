"""Reconciliation of bulk lead and renewal uploads against natural-keyed records."""

from . import models  # noqa: F401
from .config import ConfigurationError, PipelineSettings
from .identity import IdentityResolver, Resolution
from .models import (
    BatchOutcome,
    Contact,
    FailedRow,
    LeadRow,
    Outcome,
    ReconcileResult,
    ReconciliationError,
    RecordActivity,
    RenewalRow,
    RunSummary,
    StoredRecord,
    UploadBatch,
    UploadContext,
)
from .orchestrator import BatchOrchestrator, PreconditionError, UploadReport, UploadService, UploadTask
from .progress import CollectingSink, LoggingSink, Notification, NotificationKind, ProgressReporter
from .reconciler import MissingNaturalKeyError, RecordReconciler
from .store import InMemoryStore, StoreError

__all__ = [
    "BatchOrchestrator",
    "BatchOutcome",
    "CollectingSink",
    "ConfigurationError",
    "Contact",
    "FailedRow",
    "IdentityResolver",
    "InMemoryStore",
    "LeadRow",
    "LoggingSink",
    "MissingNaturalKeyError",
    "Notification",
    "NotificationKind",
    "Outcome",
    "PipelineSettings",
    "PreconditionError",
    "ProgressReporter",
    "ReconcileResult",
    "ReconciliationError",
    "RecordActivity",
    "RecordReconciler",
    "RenewalRow",
    "Resolution",
    "RunSummary",
    "StoreError",
    "StoredRecord",
    "UploadBatch",
    "UploadContext",
    "UploadReport",
    "UploadService",
    "UploadTask",
    "ingestion",
    "orchestrator",
]
