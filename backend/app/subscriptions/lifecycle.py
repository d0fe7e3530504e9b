"""Order-paid processing: new subscriptions and renewals."""
from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from .alerts import ShortageAlertEmitter
from .allocator import EntitlementAllocator
from .exceptions import ConcurrencyConflict, ConfigurationError, NotFoundError, TransientError
from .models import (
    LineItem,
    LineItemOutcome,
    NewPurchase,
    OrderPaidEvent,
    OrderProcessingResult,
    OrderType,
    Renewal,
    Subscription,
    SubscriptionStatus,
    classify_order,
)
from .refs import EntitlementRef, OrderRef, ProductRef, SubscriptionRef
from .repository import EntitlementStore
from .selector import IssueEligibilitySelector

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_uppercase + string.digits


def generate_subscription_id(now: datetime) -> str:
    """Human readable identifier, ``SUB-<epoch millis>-<random>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"SUB-{int(now.timestamp() * 1000)}-{suffix}"


class SubscriptionLifecycleManager:
    """Turns an order-paid event into entitlements, subscriptions and alerts.

    The path is decided once per order: an order that already carries
    subscription references renews them, any other order is a new purchase.
    Line items (and renewed subscriptions) are processed one after another;
    a failure in one is logged and the next one is still processed. Only
    :class:`~.exceptions.TransientError` escapes, so the delivery can be
    retried as a whole.
    """

    def __init__(
        self,
        store: EntitlementStore,
        selector: IssueEligibilitySelector,
        allocator: EntitlementAllocator,
        alerts: ShortageAlertEmitter,
        *,
        magazine_tag: str = "magazine",
        update_attempts: int = 3,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[datetime], str]] = None,
    ) -> None:
        self._store = store
        self._selector = selector
        self._allocator = allocator
        self._alerts = alerts
        self._magazine_tag = magazine_tag
        self._update_attempts = max(1, update_attempts)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or generate_subscription_id

    def handle_order_paid(self, event: OrderPaidEvent) -> OrderProcessingResult:
        context = classify_order(self._store.get_order_subscriptions(event.order))
        logger.info(
            "Processing paid order=%s customer=%s line_items=%d path=%s",
            event.order,
            event.customer,
            len(event.line_items),
            type(context).__name__,
        )

        if isinstance(context, Renewal):
            outcomes = self._process_renewal(event, context)
            return OrderProcessingResult(order=event.order, context="renewal", outcomes=tuple(outcomes))

        outcomes, created = self._process_new_purchase(event, context)
        return OrderProcessingResult(
            order=event.order,
            context="new_purchase",
            outcomes=tuple(outcomes),
            created_subscriptions=tuple(created),
        )

    # New purchases -------------------------------------------------------

    def _process_new_purchase(
        self, event: OrderPaidEvent, context: NewPurchase
    ) -> Tuple[List[LineItemOutcome], List[SubscriptionRef]]:
        outcomes: List[LineItemOutcome] = []
        created: List[SubscriptionRef] = []
        for line_item in event.line_items:
            outcome = self._guarded(
                lambda item=line_item: self._purchase_line_item(event, item),
                description=f"line item variant={line_item.variant} product={line_item.product}",
                product=line_item.product,
            )
            outcomes.append(outcome)
            if outcome.subscription is not None:
                created.append(outcome.subscription)

        if created:
            try:
                self._store.set_order_subscriptions(event.order, created)
            except TransientError:
                raise
            except Exception:
                logger.exception("Failed to tag order=%s with its new subscriptions", event.order)
            else:
                logger.info("Order=%s now references subscriptions %s", event.order, [ref.gid for ref in created])
        return outcomes, created

    def _purchase_line_item(self, event: OrderPaidEvent, line_item: LineItem) -> LineItemOutcome:
        product = self._store.require_product(line_item.product)
        if not product.has_tag(self._magazine_tag):
            logger.debug("Product=%s is not tagged %r, skipping", product.ref, self._magazine_tag)
            return LineItemOutcome(product=line_item.product, skipped_reason="not a magazine product")

        requested = self._selector.issue_count_for(line_item.variant)
        issues = self._selector.select(product.ref, frozenset(), requested)
        alert = self._alerts.emit_if_short(
            OrderType.NEW_ORDER, event.order, event.customer, product.ref, None, requested, len(issues)
        )
        entitlements = self._allocator.allocate(event.customer, issues, event.order)

        now = self._clock()
        subscription = self._store.create_subscription(
            {
                "subscription_id": self._id_factory(now),
                "subscription_status": SubscriptionStatus.SUBSCRIBED.value,
                "products": product.ref.gid,
                "customer": event.customer.gid,
                "order": event.order.gid,
                "orders": [event.order.gid],
                "start_date": now.date().isoformat(),
                "renewals_amount": 0,
                "issue_entitlements": [ref.gid for ref in entitlements],
            }
        )
        self._allocator.link_subscription(entitlements, subscription.ref)
        logger.info(
            "Created subscription %s (%s) for customer=%s with %d entitlements",
            subscription.subscription_id,
            subscription.ref,
            event.customer,
            len(entitlements),
        )
        return LineItemOutcome(
            product=product.ref,
            requested_issues=requested,
            allocated=tuple(entitlements),
            subscription=subscription.ref,
            alert=alert,
        )

    # Renewals ---------------------------------------------------------------

    def _process_renewal(self, event: OrderPaidEvent, context: Renewal) -> List[LineItemOutcome]:
        outcomes: List[LineItemOutcome] = []
        for subscription_ref in context.subscriptions:
            outcome = self._guarded(
                lambda ref=subscription_ref: self._renew_subscription(event, ref),
                description=f"renewal of subscription={subscription_ref}",
                subscription=subscription_ref,
            )
            outcomes.append(outcome)
        return outcomes

    def _renew_subscription(self, event: OrderPaidEvent, subscription_ref: SubscriptionRef) -> LineItemOutcome:
        subscription = self._store.require_subscription(subscription_ref)
        if subscription.founding_order == event.order:
            logger.info(
                "Order=%s founded subscription=%s; treating delivery as a replay",
                event.order,
                subscription_ref,
            )
            return LineItemOutcome(
                product=subscription.product,
                subscription=subscription_ref,
                skipped_reason="order founded this subscription",
            )
        if event.order in subscription.orders:
            logger.info("Renewal by order=%s already recorded on subscription=%s", event.order, subscription_ref)
            return LineItemOutcome(
                product=subscription.product,
                subscription=subscription_ref,
                skipped_reason="renewal already recorded",
            )

        line_item = event.line_item_for(subscription.product)
        if line_item is None:
            raise NotFoundError(f"Order {event.order} has no line item for product {subscription.product}")

        requested = self._selector.issue_count_for(line_item.variant)
        granted = frozenset(self._store.granted_issues(subscription))
        issues = self._selector.select(subscription.product, granted, requested)
        alert = self._alerts.emit_if_short(
            OrderType.RENEWAL,
            event.order,
            event.customer,
            subscription.product,
            subscription_ref,
            requested,
            len(issues),
        )
        entitlements = self._allocator.allocate(event.customer, issues, event.order, subscription_ref)
        updated = self._record_renewal(subscription, event.order, entitlements)
        logger.info(
            "Renewed subscription %s (%s): renewal #%d, %d new entitlements",
            updated.subscription_id,
            updated.ref,
            updated.renewal_count,
            len(entitlements),
        )
        return LineItemOutcome(
            product=subscription.product,
            requested_issues=requested,
            allocated=tuple(entitlements),
            subscription=subscription_ref,
            alert=alert,
        )

    def _record_renewal(
        self,
        subscription: Subscription,
        order: OrderRef,
        entitlements: Sequence[EntitlementRef],
    ) -> Subscription:
        """Read-modify-write the subscription, retrying when a concurrent write wins."""
        current = subscription
        attempt = 1
        while True:
            if order in current.orders:
                logger.info("Order=%s was recorded on subscription=%s by a concurrent delivery", order, current.ref)
                return current
            orders = current.orders + (order,)
            merged = current.entitlements + tuple(ref for ref in entitlements if ref not in current.entitlements)
            renewed = current.model_copy(
                update={
                    "orders": orders,
                    "current_order": order,
                    "renewal_count": current.renewal_count + 1,
                    "entitlements": merged,
                }
            )
            try:
                return self._store.save_subscription(renewed)
            except ConcurrencyConflict:
                logger.warning(
                    "Concurrent update on subscription=%s (attempt %d/%d)",
                    current.ref,
                    attempt,
                    self._update_attempts,
                )
                if attempt == self._update_attempts:
                    raise
                attempt += 1
                current = self._store.require_subscription(current.ref)

    # Failure policy ---------------------------------------------------------

    def _guarded(
        self,
        work: Callable[[], LineItemOutcome],
        *,
        description: str,
        product: Optional[ProductRef] = None,
        subscription: Optional[SubscriptionRef] = None,
    ) -> LineItemOutcome:
        try:
            return work()
        except TransientError:
            raise
        except (ConfigurationError, NotFoundError) as exc:
            logger.warning("Skipping %s: %s", description, exc)
            reason = str(exc)
        except Exception as exc:
            logger.exception("Failed to process %s", description)
            reason = f"{type(exc).__name__}: {exc}"
        return LineItemOutcome(product=product, subscription=subscription, skipped_reason=reason)


__all__ = ["SubscriptionLifecycleManager", "generate_subscription_id"]
