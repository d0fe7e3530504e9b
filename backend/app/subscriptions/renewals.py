"""Creation of renewal orders for existing subscriptions."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol

from .exceptions import NotFoundError
from .lifecycle import SubscriptionLifecycleManager
from .models import LineItem, OrderPaidEvent, RecordType, Subscription, SubscriptionStatus
from .refs import CustomerRef, OrderRef, ProductRef, SubscriptionRef, VariantRef
from .repository import EntitlementStore
from .store import RecordStore

logger = logging.getLogger(__name__)


class OrderGateway(Protocol):
    """Creates and completes a one-unit order on behalf of a customer.

    ``completes_orders`` is true when no storefront will report the order as
    paid, so the caller has to run the order-paid flow itself.
    """

    completes_orders: bool

    def create_order(self, *, customer: CustomerRef, product: ProductRef, variant: VariantRef) -> OrderRef:
        ...


class RecordStoreOrderGateway:
    """Writes the order straight into the record store.

    Used when no storefront is attached. No ``orders/paid`` webhook follows,
    so the order counts as paid once it is written.
    """

    completes_orders = True

    def __init__(self, store: RecordStore, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create_order(self, *, customer: CustomerRef, product: ProductRef, variant: VariantRef) -> OrderRef:
        record = self._store.create(
            RecordType.ORDER,
            {
                "customer": customer.gid,
                "line_items": [{"product": product.gid, "variant": variant.gid, "quantity": 1}],
                "completed_at": self._clock().isoformat(),
            },
        )
        return OrderRef(record.ref)


class RenewalOrderService:
    """Places renewal orders that the order-paid flow recognises as renewals."""

    def __init__(
        self,
        store: EntitlementStore,
        gateway: OrderGateway,
        lifecycle: Optional[SubscriptionLifecycleManager] = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._lifecycle = lifecycle

    def list_active_subscriptions(self) -> List[Subscription]:
        subscriptions = self._store.list_subscriptions(status=SubscriptionStatus.SUBSCRIBED)
        return sorted(subscriptions, key=lambda subscription: (subscription.subscription_id, subscription.ref.gid))

    def resolve_customer(self, subscription: Subscription) -> CustomerRef:
        if subscription.customer is not None:
            return subscription.customer
        # Older subscription records only reach their customer through entitlements.
        for ref in subscription.entitlements:
            entitlement = self._store.get_entitlement(ref)
            if entitlement is not None:
                return entitlement.customer
        raise NotFoundError(f"No customer found for subscription {subscription.ref}")

    def create_renewal_order(self, subscription_ref: SubscriptionRef, variant_ref: VariantRef) -> OrderRef:
        subscription = self._store.require_subscription(subscription_ref)
        if not subscription.is_active:
            raise ValueError(f"Subscription {subscription.subscription_id} is cancelled")

        customer = self.resolve_customer(subscription)
        variant_product = self._store.get_variant_product(variant_ref)
        if variant_product is None:
            raise NotFoundError(f"Variant {variant_ref} not found")
        if variant_product != subscription.product:
            raise ValueError(f"Variant {variant_ref} does not belong to product {subscription.product}")

        order = self._gateway.create_order(customer=customer, product=subscription.product, variant=variant_ref)
        self._store.set_order_subscriptions(order, [subscription_ref])
        logger.info(
            "Created renewal order=%s for subscription %s (%s) customer=%s",
            order,
            subscription.subscription_id,
            subscription_ref,
            customer,
        )
        if self._gateway.completes_orders and self._lifecycle is not None:
            self._lifecycle.handle_order_paid(
                OrderPaidEvent(
                    order=order,
                    customer=customer,
                    line_items=(LineItem(product=subscription.product, variant=variant_ref),),
                )
            )
        return order


__all__ = ["OrderGateway", "RecordStoreOrderGateway", "RenewalOrderService"]
