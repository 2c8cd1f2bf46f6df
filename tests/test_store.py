from __future__ import annotations

from pathlib import Path

import pytest

from lead_reconciler.models import LEAD, Contact, RecordActivity, StoredRecord, UploadBatch
from lead_reconciler.store import InMemoryStore, StoreError


def _record(key: str = "DOE_JANE_90210", tenant: str = "agency-1") -> StoredRecord:
    return StoredRecord(tenant_id=tenant, family=LEAD, natural_key=key, source_id="S1", status="lead")


def test_insert_assigns_id_and_indexes_by_key(store: InMemoryStore) -> None:
    record_id = store.insert(_record())

    found = store.find_by_key("agency-1", LEAD, "DOE_JANE_90210")
    assert found is not None
    assert found.id == record_id
    assert store.find_by_key("agency-2", LEAD, "DOE_JANE_90210") is None
    assert store.find_by_key("agency-1", "renewal", "DOE_JANE_90210") is None


def test_duplicate_key_is_rejected(store: InMemoryStore) -> None:
    store.insert(_record())

    with pytest.raises(StoreError):
        store.insert(_record())

    store.insert(_record(tenant="agency-2"))
    assert len(list(store.records())) == 2


def test_reads_are_copies(store: InMemoryStore) -> None:
    record_id = store.insert(_record())

    found = store.find_by_key("agency-1", LEAD, "DOE_JANE_90210")
    found.phones.append("555-0000")

    assert store.get(record_id).phones == []


def test_update_applies_patch_and_attributes(store: InMemoryStore) -> None:
    record_id = store.insert(_record())

    store.update(record_id, {"email": "jane@example.com", "products_interested": ["Auto"]})

    record = store.get(record_id)
    assert record.email == "jane@example.com"
    assert record.attributes == {"products_interested": ["Auto"]}


def test_update_rejects_unknown_ids_and_key_fields(store: InMemoryStore) -> None:
    record_id = store.insert(_record())

    with pytest.raises(StoreError):
        store.update("missing", {"email": "x@y.com"})
    with pytest.raises(StoreError):
        store.update(record_id, {"natural_key": "OTHER"})


def test_scan_filters_by_tenant_and_family(store: InMemoryStore) -> None:
    store.insert(_record("A_A_00000"))
    store.insert(_record("B_B_00000"))
    store.insert(_record("C_C_00000", tenant="agency-2"))

    keys = sorted(record.natural_key for record in store.scan("agency-1", LEAD))

    assert keys == ["A_A_00000", "B_B_00000"]


def test_find_contact_prefers_email_then_phone_then_name(store: InMemoryStore) -> None:
    by_name = store.insert_contact(Contact(tenant_id="agency-1", name_key="doe|jane", zip_code="90210"))
    by_phone = store.insert_contact(Contact(tenant_id="agency-1", name_key="roe|rick", phone="5551234"))
    by_email = store.insert_contact(Contact(tenant_id="agency-1", name_key="poe|pat", email="p@x.com"))

    assert store.find_contact("agency-1", email="p@x.com", phone="5551234", name_key="doe|jane", zip_code="90210").id == by_email
    assert store.find_contact("agency-1", phone="5551234", name_key="doe|jane", zip_code="90210").id == by_phone
    assert store.find_contact("agency-1", name_key="doe|jane", zip_code="90210").id == by_name
    assert store.find_contact("agency-1", name_key="doe|jane", zip_code="10001") is None


def test_snapshot_round_trip(tmp_path: Path, store: InMemoryStore) -> None:
    record_id = store.insert(_record())
    store.update(record_id, {"phones": ["555-1234"], "lead_received_date": "2025-03-14"})
    store.insert_contact(Contact(tenant_id="agency-1", name_key="doe|jane"))
    store.insert_upload(UploadBatch(tenant_id="agency-1", family=LEAD, filename="leads.csv", record_count=1, uploaded_by="user-1"))
    store.insert_activities([RecordActivity(tenant_id="agency-1", record_id=record_id, activity_type="note", subject="Called")])

    path = store.save_snapshot(tmp_path / "state" / "store.json")
    restored = InMemoryStore.load_snapshot(path)

    assert restored.to_dict() == store.to_dict()
    assert [a.subject for a in restored.activities(record_id)] == ["Called"]


def test_activities_require_existing_records(store: InMemoryStore) -> None:
    record_id = store.insert(_record())
    valid = RecordActivity(tenant_id="agency-1", record_id=record_id, activity_type="note", subject="Called")
    orphan = RecordActivity(tenant_id="agency-1", record_id="missing", activity_type="note", subject="Lost")

    with pytest.raises(StoreError, match="missing"):
        store.insert_activities([valid, orphan])

    assert store.activities() == []
    (activity_id,) = store.insert_activities([valid])
    assert store.activities(record_id)[0].id == activity_id


def test_missing_snapshot_starts_empty(tmp_path: Path) -> None:
    restored = InMemoryStore.load_snapshot(tmp_path / "absent.json")

    assert list(restored.records()) == []


def test_invalid_snapshot_raises_store_error(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(StoreError):
        InMemoryStore.load_snapshot(path)
