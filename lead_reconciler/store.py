"""Keyed store interfaces and a thread-safe in-memory implementation."""
from __future__ import annotations

import copy
import json
import logging
import threading
import uuid
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple, Union

from .models import Contact, RecordActivity, ReconciliationError, StoredRecord, UploadBatch

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]
RecordKey = Tuple[str, str, str]


class StoreError(ReconciliationError):
    """Raised when a store read or write fails."""


class KeyedStore(Protocol):
    """Row-level lookup-then-write store keyed by ``(tenant, family, natural_key)``."""

    def find_by_key(self, tenant_id: str, family: str, key: str) -> Optional[StoredRecord]:  # pragma: no cover - protocol
        ...

    def insert(self, record: StoredRecord) -> str:  # pragma: no cover - protocol
        ...

    def update(self, record_id: str, patch: Dict[str, Any]) -> None:  # pragma: no cover - protocol
        ...

    def scan(self, tenant_id: str, family: str) -> List[StoredRecord]:  # pragma: no cover - protocol
        ...

    def insert_upload(self, batch: UploadBatch) -> str:  # pragma: no cover - protocol
        ...

    def insert_activities(self, activities: List[RecordActivity]) -> List[str]:  # pragma: no cover - protocol
        ...


class ContactStore(Protocol):
    """Storage for shared :class:`Contact` identities."""

    def find_contact(
        self,
        tenant_id: str,
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        name_key: Optional[str] = None,
        zip_code: Optional[str] = None,
    ) -> Optional[Contact]:  # pragma: no cover - protocol
        ...

    def insert_contact(self, contact: Contact) -> str:  # pragma: no cover - protocol
        ...


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryStore:
    """Dictionary backed store implementing :class:`KeyedStore` and :class:`ContactStore`.

    Reads return copies so callers never mutate stored state without going
    through :meth:`update`.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: Dict[str, StoredRecord] = {}
        self._index: Dict[RecordKey, str] = {}
        self._contacts: Dict[str, Contact] = {}
        self._uploads: Dict[str, UploadBatch] = {}
        self._activities: Dict[str, RecordActivity] = {}

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------
    def find_by_key(self, tenant_id: str, family: str, key: str) -> Optional[StoredRecord]:
        with self._lock:
            record_id = self._index.get((tenant_id, family, key))
            if record_id is None:
                return None
            return copy.deepcopy(self._records[record_id])

    def insert(self, record: StoredRecord) -> str:
        with self._lock:
            index_key = (record.tenant_id, record.family, record.natural_key)
            if index_key in self._index:
                raise StoreError(
                    f"Duplicate natural key {record.natural_key!r} for tenant {record.tenant_id!r}"
                )
            stored = copy.deepcopy(record)
            stored.id = stored.id or _new_id()
            self._records[stored.id] = stored
            self._index[index_key] = stored.id
            return stored.id

    def update(self, record_id: str, patch: Dict[str, Any]) -> None:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise StoreError(f"Record {record_id!r} does not exist")
            try:
                record.apply(copy.deepcopy(patch))
            except ValueError as exc:
                raise StoreError(str(exc)) from exc

    def scan(self, tenant_id: str, family: str) -> List[StoredRecord]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._records.values()
                if record.tenant_id == tenant_id and record.family == family
            ]

    def get(self, record_id: str) -> Optional[StoredRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def records(self) -> Iterator[StoredRecord]:
        with self._lock:
            snapshot = [copy.deepcopy(record) for record in self._records.values()]
        return iter(snapshot)

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------
    def insert_upload(self, batch: UploadBatch) -> str:
        with self._lock:
            upload_id = batch.id or _new_id()
            self._uploads[upload_id] = replace(batch, id=upload_id)
            return upload_id

    def uploads(self) -> List[UploadBatch]:
        with self._lock:
            return list(self._uploads.values())

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    def insert_activities(self, activities: List[RecordActivity]) -> List[str]:
        with self._lock:
            missing = [a.record_id for a in activities if a.record_id not in self._records]
            if missing:
                raise StoreError(f"Activities reference unknown records: {', '.join(missing)}")
            ids = []
            for activity in activities:
                activity_id = activity.id or _new_id()
                self._activities[activity_id] = replace(activity, id=activity_id)
                ids.append(activity_id)
            return ids

    def activities(self, record_id: Optional[str] = None) -> List[RecordActivity]:
        with self._lock:
            return [a for a in self._activities.values() if record_id is None or a.record_id == record_id]

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------
    def find_contact(
        self,
        tenant_id: str,
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        name_key: Optional[str] = None,
        zip_code: Optional[str] = None,
    ) -> Optional[Contact]:
        with self._lock:
            candidates = [c for c in self._contacts.values() if c.tenant_id == tenant_id]
            for matches in (
                lambda c: bool(email) and c.email == email,
                lambda c: bool(phone) and c.phone == phone,
                lambda c: bool(name_key) and c.name_key == name_key and c.zip_code == zip_code,
            ):
                for contact in candidates:
                    if matches(contact):
                        return copy.deepcopy(contact)
            return None

    def insert_contact(self, contact: Contact) -> str:
        with self._lock:
            contact_id = contact.id or _new_id()
            self._contacts[contact_id] = replace(contact, id=contact_id)
            return contact_id

    def contacts(self) -> List[Contact]:
        with self._lock:
            return list(self._contacts.values())

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "records": [record.to_dict() for record in self._records.values()],
                "contacts": [asdict(contact) for contact in self._contacts.values()],
                "uploads": [asdict(batch) for batch in self._uploads.values()],
                "activities": [asdict(activity) for activity in self._activities.values()],
            }

    def save_snapshot(self, path: PathLike) -> Path:
        """Write the store contents to a JSON file."""

        destination = Path(path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        LOGGER.debug("Saved store snapshot to %s", destination)
        return destination

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryStore":
        store = cls()
        for item in data.get("records", []):
            record = StoredRecord.from_dict(item)
            store.insert(record)
        for item in data.get("contacts", []):
            store.insert_contact(Contact(**item))
        for item in data.get("uploads", []):
            store.insert_upload(UploadBatch(**item))
        if data.get("activities"):
            store.insert_activities([RecordActivity(**item) for item in data["activities"]])
        return store

    @classmethod
    def load_snapshot(cls, path: PathLike) -> "InMemoryStore":
        """Load a store from a JSON snapshot; a missing file yields an empty store."""

        source = Path(path)
        if not source.exists():
            LOGGER.info("Store snapshot %s not found, starting empty", source)
            return cls()
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StoreError(f"Store snapshot '{source}' is not valid JSON: {exc}") from exc
        return cls.from_dict(data)


__all__ = ["ContactStore", "InMemoryStore", "KeyedStore", "StoreError"]
