"""Batch orchestration of reconciliation runs and upload submissions."""

from .service import BatchOrchestrator, PreconditionError, UploadTask
from .uploads import UploadReport, UploadService

__all__ = ["BatchOrchestrator", "PreconditionError", "UploadReport", "UploadService", "UploadTask"]
