from __future__ import annotations

from datetime import date

import pytest

from lead_reconciler.config import PipelineSettings
from lead_reconciler.identity import IdentityResolver
from lead_reconciler.models import UploadContext
from lead_reconciler.reconciler import RecordReconciler
from lead_reconciler.store import InMemoryStore

TODAY = date(2025, 3, 14)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def context() -> UploadContext:
    return UploadContext(
        tenant_id="agency-1",
        source_id="source-A",
        actor_id="user-1",
        actor_display_name="Pat Producer",
    )


@pytest.fixture
def reconciler(store: InMemoryStore) -> RecordReconciler:
    return RecordReconciler(store, IdentityResolver(store), today=lambda: TODAY)


@pytest.fixture
def fast_settings() -> PipelineSettings:
    return PipelineSettings(
        batch_size=10,
        concurrency_limit=3,
        inter_batch_delay_seconds=0.0,
        retry_delay_seconds=0.0,
    )
