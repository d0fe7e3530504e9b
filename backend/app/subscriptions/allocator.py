"""Creation of issue entitlements for an order."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .exceptions import TransientError
from .refs import CustomerRef, EntitlementRef, MagazineIssueRef, OrderRef, SubscriptionRef
from .repository import EntitlementStore

logger = logging.getLogger(__name__)


class EntitlementAllocator:
    """Creates one Active entitlement per issue, best effort."""

    def __init__(self, store: EntitlementStore) -> None:
        self._store = store

    def allocate(
        self,
        customer: CustomerRef,
        issues: Sequence[MagazineIssueRef],
        order: OrderRef,
        subscription: Optional[SubscriptionRef] = None,
    ) -> List[EntitlementRef]:
        """Create entitlements and return the references that were persisted.

        A failure for one issue is logged and the remaining issues are still
        attempted; the returned list keeps the input order and may be shorter
        than ``issues``.
        """
        created: List[EntitlementRef] = []
        for issue in issues:
            try:
                entitlement = self._store.create_entitlement(
                    customer=customer,
                    issue=issue,
                    source_order=order,
                    subscription=subscription,
                )
            except TransientError:
                raise
            except Exception:
                logger.exception(
                    "Failed to create entitlement customer=%s issue=%s order=%s",
                    customer,
                    issue,
                    order,
                )
                continue
            created.append(entitlement.ref)

        if len(created) < len(issues):
            logger.warning(
                "Created %d of %d entitlements for order=%s customer=%s",
                len(created),
                len(issues),
                order,
                customer,
            )
        else:
            logger.info("Created %d entitlements for order=%s customer=%s", len(created), order, customer)
        return created

    def link_subscription(self, entitlements: Sequence[EntitlementRef], subscription: SubscriptionRef) -> int:
        """Back-link entitlements to a subscription; returns how many were linked."""
        linked = 0
        for ref in entitlements:
            try:
                self._store.attach_subscription(ref, subscription)
            except TransientError:
                raise
            except Exception:
                logger.exception("Failed to link entitlement=%s to subscription=%s", ref, subscription)
                continue
            linked += 1
        return linked


__all__ = ["EntitlementAllocator"]
