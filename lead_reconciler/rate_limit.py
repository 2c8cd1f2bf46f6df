"""Utilities for pacing the pipeline and rate limiting backend store calls."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .models import Contact, RecordActivity, StoredRecord, UploadBatch


@dataclass
class DelayPolicy:
    """Artificial delay applied after every store call to shed backend load."""

    delay_seconds: float = 0.0


def pause(seconds: float, sleep: Callable[[float], None] = time.sleep) -> None:
    if seconds > 0:
        sleep(seconds)


class RateLimiter:
    """Token bucket style rate limiter enforcing minimum interval between calls."""

    def __init__(self, calls_per_minute: Optional[float]) -> None:
        self._interval = 60.0 / float(calls_per_minute) if calls_per_minute else 0.0
        self._lock = threading.Lock()
        self._next_available = 0.0

    @property
    def interval(self) -> float:
        return self._interval

    def acquire(self) -> None:
        if self._interval <= 0:
            return
        with self._lock:
            now = time.monotonic()
            if now < self._next_available:
                time.sleep(self._next_available - now)
                now = time.monotonic()
            self._next_available = now + self._interval


class RateLimitedStore:
    """Wrapper that enforces rate limiting and delay around every store call."""

    def __init__(
        self,
        store,
        *,
        delay_policy: Optional[DelayPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self._store = store
        self._delay_policy = delay_policy or DelayPolicy()
        self._rate_limiter = rate_limiter or RateLimiter(None)

    @property
    def wrapped(self):
        return self._store

    def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        self._rate_limiter.acquire()
        result = getattr(self._store, method)(*args, **kwargs)
        if self._delay_policy.delay_seconds > 0:
            time.sleep(self._delay_policy.delay_seconds)
        return result

    def find_by_key(self, tenant_id: str, family: str, key: str) -> Optional[StoredRecord]:
        return self._call("find_by_key", tenant_id, family, key)

    def insert(self, record: StoredRecord) -> str:
        return self._call("insert", record)

    def update(self, record_id: str, patch: Dict[str, Any]) -> None:
        self._call("update", record_id, patch)

    def scan(self, tenant_id: str, family: str) -> List[StoredRecord]:
        return self._call("scan", tenant_id, family)

    def insert_upload(self, batch: UploadBatch) -> str:
        return self._call("insert_upload", batch)

    def insert_activities(self, activities: List[RecordActivity]) -> List[str]:
        return self._call("insert_activities", activities)

    def find_contact(self, tenant_id: str, **hints: Any) -> Optional[Contact]:
        return self._call("find_contact", tenant_id, **hints)

    def insert_contact(self, contact: Contact) -> str:
        return self._call("insert_contact", contact)

    def __getattr__(self, item):  # pragma: no cover - simple delegation
        return getattr(self._store, item)


__all__ = ["DelayPolicy", "RateLimitedStore", "RateLimiter", "pause"]
