"""Shortage alerts raised when upcoming inventory cannot cover a purchase."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .exceptions import NotFoundError, TransientError
from .models import Alert, AlertStatus, AlertType, OrderType
from .refs import AlertRef, CustomerRef, OrderRef, ProductRef, SubscriptionRef
from .repository import EntitlementStore

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS = {
    AlertStatus.UNRESOLVED: {AlertStatus.RESOLVED, AlertStatus.IGNORED},
}


def shortage_kind(required: int, available: int) -> Optional[AlertType]:
    """Classify a shortfall, or return ``None`` when nothing is missing."""
    if available >= required:
        return None
    if available == 0:
        return AlertType.NO_ISSUES_AVAILABLE
    return AlertType.INSUFFICIENT_ISSUES


class ShortageAlertEmitter:
    """Persists shortage alerts; a failed write never blocks the allocation."""

    def __init__(
        self,
        store: EntitlementStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def emit(
        self,
        kind: AlertType,
        order_type: OrderType,
        order: OrderRef,
        customer: CustomerRef,
        product: ProductRef,
        subscription: Optional[SubscriptionRef],
        required: int,
        available: int,
    ) -> Optional[AlertRef]:
        logger.warning(
            "Issue shortage %s (%s) order=%s product=%s required=%d available=%d",
            kind.value,
            order_type.value,
            order,
            product,
            required,
            available,
        )
        try:
            alert = self._store.create_alert(
                {
                    "alert_type": kind.value,
                    "order_type": order_type.value,
                    "order": order.gid,
                    "customer": customer.gid,
                    "product": product.gid,
                    "subscription": subscription.gid if subscription else None,
                    "required_issues": required,
                    "available_issues": available,
                    "alert_date": self._clock().isoformat(),
                    "status": AlertStatus.UNRESOLVED.value,
                }
            )
        except TransientError:
            raise
        except Exception:
            logger.exception("Failed to persist shortage alert for order=%s product=%s", order, product)
            return None
        return alert.ref

    def emit_if_short(
        self,
        order_type: OrderType,
        order: OrderRef,
        customer: CustomerRef,
        product: ProductRef,
        subscription: Optional[SubscriptionRef],
        required: int,
        available: int,
    ) -> Optional[AlertRef]:
        kind = shortage_kind(required, available)
        if kind is None:
            return None
        return self.emit(kind, order_type, order, customer, product, subscription, required, available)

    def list_alerts(self, *, status: Optional[AlertStatus] = None) -> List[Alert]:
        alerts = self._store.list_alerts(status=status)
        return sorted(alerts, key=lambda alert: alert.alert_date, reverse=True)

    def set_status(self, ref: AlertRef, status: AlertStatus) -> Alert:
        """Apply a staff decision to an alert."""
        alert = self._store.get_alert(ref)
        if alert is None:
            raise NotFoundError(f"Alert {ref} not found")
        if alert.status == status:
            return alert
        if status not in _ALLOWED_TRANSITIONS.get(alert.status, set()):
            raise ValueError(f"Cannot move alert from {alert.status.value} to {status.value}")
        return self._store.set_alert_status(ref, status)


__all__ = ["ShortageAlertEmitter", "shortage_kind"]
