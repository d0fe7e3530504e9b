from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend.app.subscriptions import (
    ConcurrencyConflict,
    EntitlementStore,
    InMemoryRecordStore,
    NotFoundError,
    RecordType,
    StoreValidationError,
    iterate_records,
)
from backend.app.subscriptions.repository import parse_datetime


class CountingRecordStore(InMemoryRecordStore):
    def __init__(self) -> None:
        super().__init__()
        self.queries = 0

    def query(self, record_type, *, filters=None, first=250, after=None):
        self.queries += 1
        return super().query(record_type, filters=filters, first=first, after=after)


@pytest.fixture
def record_store() -> CountingRecordStore:
    return CountingRecordStore()


def test_iterate_records_follows_every_page(record_store):
    for index in range(7):
        record_store.create(RecordType.MAGAZINE_ISSUE, {"title": f"Issue {index}"})
    record_store.create(RecordType.PRODUCT, {"title": "not an issue"})

    titles = [record.get("title") for record in iterate_records(record_store, RecordType.MAGAZINE_ISSUE, page_size=3)]

    assert titles == [f"Issue {index}" for index in range(7)]
    assert record_store.queries == 3


def test_filters_match_scalars_and_list_members(record_store):
    record_store.create(RecordType.MAGAZINE_ISSUE, {"associated_products": ["p1", "p2"], "status": "planned"})
    record_store.create(RecordType.MAGAZINE_ISSUE, {"associated_products": ["p3"], "status": "sent"})

    by_product = list(iterate_records(record_store, RecordType.MAGAZINE_ISSUE, filters={"associated_products": "p2"}))
    by_status = list(iterate_records(record_store, RecordType.MAGAZINE_ISSUE, filters={"status": "sent"}))

    assert len(by_product) == 1 and by_product[0].get("status") == "planned"
    assert len(by_status) == 1 and by_status[0].get_list("associated_products") == ["p3"]


def test_update_merges_fields_and_bumps_version(record_store):
    created = record_store.create(RecordType.SUBSCRIPTION, {"subscription_id": "SUB-1", "renewals_amount": 0})

    updated = record_store.update(RecordType.SUBSCRIPTION, created.ref, {"renewals_amount": 1})

    assert updated.version == created.version + 1
    assert updated.get("subscription_id") == "SUB-1"
    assert updated.get("renewals_amount") == 1


def test_stale_version_is_rejected(record_store):
    created = record_store.create(RecordType.SUBSCRIPTION, {"renewals_amount": 0})
    record_store.update(RecordType.SUBSCRIPTION, created.ref, {"renewals_amount": 1})

    with pytest.raises(ConcurrencyConflict):
        record_store.update(
            RecordType.SUBSCRIPTION, created.ref, {"renewals_amount": 5}, expected_version=created.version
        )


def test_update_of_unknown_record_raises(record_store):
    with pytest.raises(NotFoundError):
        record_store.update(RecordType.ORDER, "gid://shopify/Order/404", {"subscriptions": []})


def test_create_rejects_unserialisable_fields_and_duplicate_refs(record_store):
    with pytest.raises(StoreValidationError) as excinfo:
        record_store.create(RecordType.ALERT, {"alert_date": datetime.now(timezone.utc)})
    assert excinfo.value.payload["record_type"] == "magazine_issue_alert"

    record_store.create(RecordType.ORDER, {}, ref="gid://shopify/Order/1")
    with pytest.raises(StoreValidationError):
        record_store.create(RecordType.ORDER, {}, ref="gid://shopify/Order/1")


def test_returned_records_do_not_share_state(record_store):
    created = record_store.create(RecordType.PRODUCT, {"magazine_issues": ["a"]})
    created.data["magazine_issues"].append("b")

    assert record_store.get(RecordType.PRODUCT, created.ref).get_list("magazine_issues") == ["a"]


def test_delivery_ledger(record_store):
    assert not record_store.delivery_seen("delivery-1")
    assert record_store.record_delivery("delivery-1", "orders/paid") is True
    assert record_store.delivery_seen("delivery-1")
    assert record_store.record_delivery("delivery-1", "orders/paid") is False


def test_entitlement_store_reads_legacy_status_labels(record_store):
    record_store.create(
        RecordType.MAGAZINE_ISSUE,
        {"title": "Hiver", "export_date": "2025-03-01", "status": "Envoyé", "associated_products": []},
    )
    store = EntitlementStore(record_store, page_size=10)

    (issue,) = store.list_issues()

    assert issue.status.value == "sent"
    assert issue.export_date == datetime(2025, 3, 1, tzinfo=timezone.utc)


def test_parse_datetime_accepts_zulu_suffix():
    assert parse_datetime("2025-05-01T10:00:00Z") == datetime(2025, 5, 1, 10, tzinfo=timezone.utc)
    assert parse_datetime("") is None


def test_entitlement_store_requires_positive_page_size(record_store):
    with pytest.raises(ValueError):
        EntitlementStore(record_store, page_size=0)
