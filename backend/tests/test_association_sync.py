from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend.app.subscriptions import (
    AssociationSynchronizer,
    EntitlementStore,
    InMemoryRecordStore,
    MagazineIssueRef,
    NotFoundError,
    ProductRef,
    RecordType,
    StoreValidationError,
    TransientError,
)

EXPORT = datetime(2025, 6, 1, tzinfo=timezone.utc)
MAG_A = ProductRef.parse(1001)
MAG_B = ProductRef.parse(1002)
MAG_C = ProductRef.parse(1003)


class CountingRecordStore(InMemoryRecordStore):
    def __init__(self) -> None:
        super().__init__()
        self.updates = 0

    def update(self, record_type, ref, fields, *, expected_version=None):
        self.updates += 1
        return super().update(record_type, ref, fields, expected_version=expected_version)


class FailingProductStore(CountingRecordStore):
    def __init__(self, failing_ref: str, error: Exception) -> None:
        super().__init__()
        self._failing_ref = failing_ref
        self._error = error

    def update(self, record_type, ref, fields, *, expected_version=None):
        if record_type == RecordType.PRODUCT and ref == self._failing_ref:
            raise self._error
        return super().update(record_type, ref, fields, expected_version=expected_version)


def _setup(record_store):
    store = EntitlementStore(record_store, page_size=2)
    for product in (MAG_A, MAG_B, MAG_C):
        record_store.create(RecordType.PRODUCT, {"title": product.legacy_id, "magazine_issues": []}, ref=product.gid)
    return store, AssociationSynchronizer(store)


def _issue(store, *products):
    return store.create_issue(title="Printemps", export_date=EXPORT, associated_products=products).ref


@pytest.fixture
def synced():
    record_store = CountingRecordStore()
    store, sync = _setup(record_store)
    return record_store, store, sync


def test_issue_edit_adds_issue_to_new_products(synced):
    _, store, sync = synced
    issue = _issue(store, MAG_A, MAG_B)

    result = sync.on_issue_edited(issue)

    assert set(result.added) == {MAG_A.gid, MAG_B.gid}
    assert store.get_product(MAG_A).magazine_issues == (issue,)
    assert store.get_product(MAG_B).magazine_issues == (issue,)
    assert store.get_product(MAG_C).magazine_issues == ()


def test_issue_edit_removes_issue_from_dropped_products(synced):
    _, store, sync = synced
    issue = _issue(store, MAG_A, MAG_B)
    other = _issue(store, MAG_A)
    sync.on_issue_edited(issue)
    sync.on_issue_edited(other)

    result = sync.on_issue_edited(issue, [MAG_B])

    assert result.removed == (MAG_A.gid,)
    assert store.get_product(MAG_A).magazine_issues == (other,)
    assert store.get_issue(issue).associated_products == (MAG_B,)


def test_issue_sync_is_idempotent(synced):
    record_store, store, sync = synced
    issue = _issue(store, MAG_A, MAG_C)
    sync.on_issue_edited(issue)
    updates = record_store.updates

    result = sync.on_issue_edited(issue)

    assert not result.changed
    assert record_store.updates == updates
    assert store.get_product(MAG_A).magazine_issues == (issue,)


def test_product_edit_adds_and_removes_product_on_issues(synced):
    _, store, sync = synced
    kept = _issue(store)
    dropped = _issue(store, MAG_A)

    result = sync.on_product_edited(MAG_A, [kept])

    assert result.added == (kept.gid,)
    assert result.removed == (dropped.gid,)
    assert store.get_issue(kept).associated_products == (MAG_A,)
    assert store.get_issue(dropped).associated_products == ()
    assert store.get_product(MAG_A).magazine_issues == (kept,)


def test_product_sync_is_idempotent(synced):
    record_store, store, sync = synced
    issue = _issue(store)
    sync.on_product_edited(MAG_B, [issue])
    updates = record_store.updates

    result = sync.on_product_edited(MAG_B, [issue])

    assert not result.changed
    assert record_store.updates == updates
    assert store.get_issue(issue).associated_products == (MAG_B,)


def test_both_directions_converge(synced):
    record_store, store, sync = synced
    issue = _issue(store, MAG_A)
    sync.on_issue_edited(issue)
    updates = record_store.updates

    result = sync.on_product_edited(MAG_A)

    assert not result.changed
    assert record_store.updates == updates


def test_unknown_counterparts_are_reported_as_failed(synced):
    _, store, sync = synced
    ghost_product = ProductRef.parse(4040)
    ghost_issue = MagazineIssueRef("gid://shopify/Metaobject/4040")
    issue = _issue(store, ghost_product)

    assert sync.on_issue_edited(issue).failed == (ghost_product.gid,)
    assert sync.on_product_edited(MAG_C, [ghost_issue]).failed == (ghost_issue.gid,)


def test_unknown_edited_record_raises(synced):
    _, _, sync = synced

    with pytest.raises(NotFoundError):
        sync.on_issue_edited(MagazineIssueRef("gid://shopify/Metaobject/4040"))
    with pytest.raises(NotFoundError):
        sync.on_product_edited(ProductRef.parse(4040))


def test_one_rejected_product_does_not_block_the_others():
    store, sync = _setup(FailingProductStore(MAG_A.gid, StoreValidationError("invalid metafield")))
    issue = _issue(store, MAG_A, MAG_B)

    result = sync.on_issue_edited(issue)

    assert result.failed == (MAG_A.gid,)
    assert result.added == (MAG_B.gid,)


def test_store_outage_during_sync_propagates():
    store, sync = _setup(FailingProductStore(MAG_A.gid, TransientError("store down")))
    issue = _issue(store, MAG_A)

    with pytest.raises(TransientError):
        sync.on_issue_edited(issue)
