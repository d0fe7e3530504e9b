from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Sequence, Tuple

import pytest

from backend.app.subscriptions import (
    AlertType,
    CustomerRef,
    EntitlementAllocator,
    EntitlementStore,
    InMemoryRecordStore,
    IssueEligibilitySelector,
    LineItem,
    OrderPaidEvent,
    OrderRef,
    OrderType,
    ProductRef,
    RecordType,
    ShortageAlertEmitter,
    SubscriptionLifecycleManager,
    TransientError,
    VariantRef,
)

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)
MAG_A = ProductRef.parse(1001)
MAG_B = ProductRef.parse(1002)
VARIANT_A = VariantRef.parse(2001)
VARIANT_B = VariantRef.parse(2002)
CUSTOMER = CustomerRef.parse(77)
FIRST_ORDER = OrderRef.parse(5001)
RENEWAL_ORDER = OrderRef.parse(5002)
SECOND_RENEWAL_ORDER = OrderRef.parse(5003)


class RacingRecordStore(InMemoryRecordStore):
    """Lets a concurrent renewal win just before each versioned subscription write."""

    def __init__(self, races: int) -> None:
        super().__init__()
        self.races = races

    def update(self, record_type, ref, fields, *, expected_version=None):
        if record_type == RecordType.SUBSCRIPTION and expected_version is not None and self.races:
            self.races -= 1
            current = self.get(record_type, ref)
            super().update(record_type, ref, {"renewals_amount": current.get("renewals_amount") + 1})
        return super().update(record_type, ref, fields, expected_version=expected_version)


class UnavailableRecordStore(InMemoryRecordStore):
    def create(self, record_type, fields, *, ref=None):
        if record_type == RecordType.ISSUE_ENTITLEMENT:
            raise TransientError("store down")
        return super().create(record_type, fields, ref=ref)


class ParallelDeliveryRecordStore(InMemoryRecordStore):
    """Records the pending renewal order from a parallel delivery before the next versioned write."""

    def __init__(self) -> None:
        super().__init__()
        self.pending_order = None

    def update(self, record_type, ref, fields, *, expected_version=None):
        if record_type == RecordType.SUBSCRIPTION and expected_version is not None and self.pending_order:
            order, self.pending_order = self.pending_order, None
            current = self.get(record_type, ref)
            super().update(
                record_type,
                ref,
                {
                    "orders": current.get("orders") + [order.gid],
                    "order": order.gid,
                    "renewals_amount": current.get("renewals_amount") + 1,
                },
            )
        return super().update(record_type, ref, fields, expected_version=expected_version)


def _build(record_store, *, update_attempts: int = 3) -> Tuple[EntitlementStore, SubscriptionLifecycleManager]:
    store = EntitlementStore(record_store, page_size=2)
    clock = lambda: NOW  # noqa: E731
    ids = count(1)
    manager = SubscriptionLifecycleManager(
        store,
        IssueEligibilitySelector(store, clock=clock),
        EntitlementAllocator(store),
        ShortageAlertEmitter(store, clock=clock),
        update_attempts=update_attempts,
        clock=clock,
        id_factory=lambda now: f"SUB-TEST-{next(ids)}",
    )
    return store, manager


def _seed(
    store: EntitlementStore,
    *,
    product: ProductRef = MAG_A,
    variant: VariantRef = VARIANT_A,
    issue_days: Sequence[int] = (10, 20, 30, 40, 50),
    issue_count: str = "3",
    tags: Sequence[str] = ("magazine",),
) -> None:
    store.record_store.create(
        RecordType.PRODUCT, {"title": "Mag", "tags": list(tags), "magazine_issues": []}, ref=product.gid
    )
    store.record_store.create(
        RecordType.PRODUCT_VARIANT, {"product": product.gid, "issue_count": issue_count}, ref=variant.gid
    )
    for days in issue_days:
        store.create_issue(
            title=f"T+{days}",
            export_date=NOW + timedelta(days=days),
            associated_products=[product],
        )


def _paid(order: OrderRef, *items: Tuple[ProductRef, VariantRef]) -> OrderPaidEvent:
    line_items = items or ((MAG_A, VARIANT_A),)
    return OrderPaidEvent(
        order=order,
        customer=CUSTOMER,
        line_items=tuple(LineItem(product=product, variant=variant) for product, variant in line_items),
    )


def _issue_titles(store: EntitlementStore, entitlement_refs) -> list:
    return [store.get_issue(store.get_entitlement(ref).magazine_issue).title for ref in entitlement_refs]


@pytest.fixture
def engine():
    return _build(InMemoryRecordStore())


def test_new_purchase_allocates_earliest_issues(engine):
    store, manager = engine
    _seed(store)

    result = manager.handle_order_paid(_paid(FIRST_ORDER))

    assert result.context == "new_purchase"
    (subscription_ref,) = result.created_subscriptions
    subscription = store.get_subscription(subscription_ref)
    assert subscription.subscription_id == "SUB-TEST-1"
    assert subscription.renewal_count == 0
    assert subscription.orders == (FIRST_ORDER,)
    assert subscription.current_order == FIRST_ORDER
    assert subscription.customer == CUSTOMER
    assert subscription.start_date == NOW.date()
    assert _issue_titles(store, subscription.entitlements) == ["T+10", "T+20", "T+30"]
    assert store.list_alerts() == []


def test_new_purchase_back_links_entitlements_and_tags_the_order(engine):
    store, manager = engine
    _seed(store)

    result = manager.handle_order_paid(_paid(FIRST_ORDER))

    (subscription_ref,) = result.created_subscriptions
    assert store.get_order_subscriptions(FIRST_ORDER) == (subscription_ref,)
    for entitlement in store.list_entitlements(customer=CUSTOMER):
        assert entitlement.subscription == subscription_ref
        assert entitlement.source_order == FIRST_ORDER


def test_new_purchase_with_short_inventory(engine):
    store, manager = engine
    _seed(store, issue_days=(10, 20))

    result = manager.handle_order_paid(_paid(FIRST_ORDER))

    subscription = store.get_subscription(result.created_subscriptions[0])
    assert len(subscription.entitlements) == 2
    (alert,) = store.list_alerts()
    assert alert.alert_type == AlertType.INSUFFICIENT_ISSUES
    assert alert.order_type == OrderType.NEW_ORDER
    assert (alert.required_issues, alert.available_issues) == (3, 2)
    assert result.outcomes[0].alert == alert.ref


def test_new_purchase_without_inventory_still_creates_subscription(engine):
    store, manager = engine
    _seed(store, issue_days=())

    result = manager.handle_order_paid(_paid(FIRST_ORDER))

    subscription = store.get_subscription(result.created_subscriptions[0])
    assert subscription.entitlements == ()
    (alert,) = store.list_alerts()
    assert alert.alert_type == AlertType.NO_ISSUES_AVAILABLE
    assert alert.available_issues == 0


def test_quantity_does_not_multiply_the_issue_count(engine):
    store, manager = engine
    _seed(store)
    event = OrderPaidEvent(
        order=FIRST_ORDER,
        customer=CUSTOMER,
        line_items=(LineItem(product=MAG_A, variant=VARIANT_A, quantity=2),),
    )

    result = manager.handle_order_paid(event)

    assert len(result.outcomes[0].allocated) == 3


def test_renewal_allocates_only_new_issues(engine):
    store, manager = engine
    _seed(store)
    subscription_ref = manager.handle_order_paid(_paid(FIRST_ORDER)).created_subscriptions[0]
    store.set_order_subscriptions(RENEWAL_ORDER, [subscription_ref])

    result = manager.handle_order_paid(_paid(RENEWAL_ORDER))

    assert result.context == "renewal"
    assert result.created_subscriptions == ()
    subscription = store.get_subscription(subscription_ref)
    assert subscription.renewal_count == 1
    assert subscription.orders == (FIRST_ORDER, RENEWAL_ORDER)
    assert subscription.current_order == RENEWAL_ORDER
    assert _issue_titles(store, subscription.entitlements) == ["T+10", "T+20", "T+30", "T+40", "T+50"]
    new_refs = result.outcomes[0].allocated
    assert len(new_refs) == 2
    for ref in new_refs:
        entitlement = store.get_entitlement(ref)
        assert entitlement.source_order == RENEWAL_ORDER
        assert entitlement.subscription == subscription_ref

    (alert,) = store.list_alerts()
    assert alert.alert_type == AlertType.INSUFFICIENT_ISSUES
    assert alert.order_type == OrderType.RENEWAL
    assert (alert.required_issues, alert.available_issues) == (3, 2)
    assert alert.subscription == subscription_ref


def test_renewal_counter_increments_even_without_new_issues(engine):
    store, manager = engine
    _seed(store)
    subscription_ref = manager.handle_order_paid(_paid(FIRST_ORDER)).created_subscriptions[0]
    store.set_order_subscriptions(RENEWAL_ORDER, [subscription_ref])
    manager.handle_order_paid(_paid(RENEWAL_ORDER))
    store.set_order_subscriptions(SECOND_RENEWAL_ORDER, [subscription_ref])

    result = manager.handle_order_paid(_paid(SECOND_RENEWAL_ORDER))

    subscription = store.get_subscription(subscription_ref)
    assert subscription.renewal_count == 2
    assert len(subscription.entitlements) == 5
    assert result.outcomes[0].allocated == ()
    assert store.list_alerts()[-1].alert_type == AlertType.NO_ISSUES_AVAILABLE


def test_source_orders_survive_renewals(engine):
    store, manager = engine
    _seed(store)
    subscription_ref = manager.handle_order_paid(_paid(FIRST_ORDER)).created_subscriptions[0]
    before = {entitlement.ref: entitlement.source_order for entitlement in store.list_entitlements()}
    store.set_order_subscriptions(RENEWAL_ORDER, [subscription_ref])

    manager.handle_order_paid(_paid(RENEWAL_ORDER))

    after = {entitlement.ref: entitlement.source_order for entitlement in store.list_entitlements()}
    for ref, source_order in before.items():
        assert after[ref] == source_order


def test_redelivered_founding_order_is_not_a_renewal(engine):
    store, manager = engine
    _seed(store)
    subscription_ref = manager.handle_order_paid(_paid(FIRST_ORDER)).created_subscriptions[0]

    result = manager.handle_order_paid(_paid(FIRST_ORDER))

    assert result.context == "renewal"
    assert result.outcomes[0].skipped
    subscription = store.get_subscription(subscription_ref)
    assert subscription.renewal_count == 0
    assert len(store.list_entitlements()) == 3


def test_redelivered_renewal_is_counted_once(engine):
    store, manager = engine
    _seed(store, issue_days=(10, 20, 30, 40, 50, 60, 70, 80))
    subscription_ref = manager.handle_order_paid(_paid(FIRST_ORDER)).created_subscriptions[0]
    store.set_order_subscriptions(RENEWAL_ORDER, [subscription_ref])
    manager.handle_order_paid(_paid(RENEWAL_ORDER))

    result = manager.handle_order_paid(_paid(RENEWAL_ORDER))

    assert result.outcomes[0].skipped_reason == "renewal already recorded"
    subscription = store.get_subscription(subscription_ref)
    assert subscription.renewal_count == 1
    assert subscription.orders == (FIRST_ORDER, RENEWAL_ORDER)
    assert len(subscription.entitlements) == 6
    assert len(store.list_entitlements()) == 6


def test_renewal_recorded_by_a_parallel_delivery_is_not_counted_again():
    store, manager = _build(ParallelDeliveryRecordStore())
    _seed(store)
    subscription_ref = manager.handle_order_paid(_paid(FIRST_ORDER)).created_subscriptions[0]
    store.set_order_subscriptions(RENEWAL_ORDER, [subscription_ref])
    store.record_store.pending_order = RENEWAL_ORDER

    result = manager.handle_order_paid(_paid(RENEWAL_ORDER))

    assert not result.outcomes[0].skipped
    subscription = store.get_subscription(subscription_ref)
    assert subscription.renewal_count == 1
    assert subscription.orders == (FIRST_ORDER, RENEWAL_ORDER)


def test_unreadable_issue_of_another_product_does_not_block_purchases(engine):
    store, manager = engine
    _seed(store)
    store.record_store.create(
        RecordType.MAGAZINE_ISSUE,
        {"title": "Archive", "status": "archived", "export_date": "2025-03-01", "associated_products": [MAG_B.gid]},
    )

    result = manager.handle_order_paid(_paid(FIRST_ORDER))

    (subscription_ref,) = result.created_subscriptions
    assert _issue_titles(store, store.get_subscription(subscription_ref).entitlements) == ["T+10", "T+20", "T+30"]


def test_non_magazine_products_are_ignored(engine):
    store, manager = engine
    _seed(store, tags=("book",))

    result = manager.handle_order_paid(_paid(FIRST_ORDER))

    assert result.outcomes[0].skipped
    assert result.created_subscriptions == ()
    assert store.get_order_subscriptions(FIRST_ORDER) == ()
    assert store.list_entitlements() == []


def test_bad_line_item_does_not_stop_the_order(engine):
    store, manager = engine
    _seed(store, product=MAG_A, variant=VARIANT_A, issue_count="", issue_days=(10,))
    _seed(store, product=MAG_B, variant=VARIANT_B, issue_count="2", issue_days=(15, 25))
    unknown = (ProductRef.parse(9999), VariantRef.parse(9999))

    result = manager.handle_order_paid(_paid(FIRST_ORDER, (MAG_A, VARIANT_A), unknown, (MAG_B, VARIANT_B)))

    first, second, third = result.outcomes
    assert first.skipped and "issue_count" in first.skipped_reason
    assert second.skipped
    assert not third.skipped
    assert result.created_subscriptions == (third.subscription,)
    assert _issue_titles(store, third.allocated) == ["T+15", "T+25"]


def test_renewal_without_matching_line_item_is_skipped(engine):
    store, manager = engine
    _seed(store)
    _seed(store, product=MAG_B, variant=VARIANT_B, issue_days=())
    subscription_ref = manager.handle_order_paid(_paid(FIRST_ORDER)).created_subscriptions[0]
    store.set_order_subscriptions(RENEWAL_ORDER, [subscription_ref])

    result = manager.handle_order_paid(_paid(RENEWAL_ORDER, (MAG_B, VARIANT_B)))

    assert result.outcomes[0].skipped
    assert store.get_subscription(subscription_ref).renewal_count == 0


def test_store_outage_fails_the_whole_event():
    store, manager = _build(UnavailableRecordStore())
    _seed(store)

    with pytest.raises(TransientError):
        manager.handle_order_paid(_paid(FIRST_ORDER))


def test_concurrent_renewal_is_retried_on_fresh_state():
    store, manager = _build(RacingRecordStore(races=0))
    _seed(store)
    subscription_ref = manager.handle_order_paid(_paid(FIRST_ORDER)).created_subscriptions[0]
    store.set_order_subscriptions(RENEWAL_ORDER, [subscription_ref])
    store.record_store.races = 1

    result = manager.handle_order_paid(_paid(RENEWAL_ORDER))

    assert not result.outcomes[0].skipped
    subscription = store.get_subscription(subscription_ref)
    assert subscription.renewal_count == 2
    assert len(subscription.entitlements) == 5


def test_renewal_gives_up_after_configured_attempts():
    store, manager = _build(RacingRecordStore(races=0), update_attempts=2)
    _seed(store)
    subscription_ref = manager.handle_order_paid(_paid(FIRST_ORDER)).created_subscriptions[0]
    store.set_order_subscriptions(RENEWAL_ORDER, [subscription_ref])
    store.record_store.races = 5

    result = manager.handle_order_paid(_paid(RENEWAL_ORDER))

    assert result.outcomes[0].skipped
    assert "ConcurrencyConflict" in result.outcomes[0].skipped_reason
    assert store.record_store.races == 3
