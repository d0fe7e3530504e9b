"""Typed data access for issues, entitlements, subscriptions and alerts."""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Type

from .exceptions import NotFoundError
from .models import (
    Alert,
    AlertStatus,
    AlertType,
    EntitlementStatus,
    IssueEntitlement,
    IssueStatus,
    MagazineIssue,
    OrderType,
    Product,
    RecordType,
    Subscription,
    SubscriptionStatus,
)
from .refs import (
    AlertRef,
    CustomerRef,
    EntitlementRef,
    MagazineIssueRef,
    OrderRef,
    ProductRef,
    Ref,
    RefT,
    SubscriptionRef,
    VariantRef,
)
from .store import Record, RecordStore, iterate_records

# Labels written by the merchant admin before statuses were normalised.
_ISSUE_STATUS_ALIASES = {"planifié": IssueStatus.PLANNED, "envoyé": IssueStatus.SENT}
_ENTITLEMENT_STATUS_ALIASES = {
    "actif": EntitlementStatus.ACTIVE,
    "utilisé": EntitlementStatus.USED,
    "expiré": EntitlementStatus.EXPIRED,
}
_SUBSCRIPTION_STATUS_ALIASES = {
    "abonné": SubscriptionStatus.SUBSCRIBED,
    "annulé": SubscriptionStatus.CANCELLED,
}


def parse_datetime(value: object) -> Optional[datetime]:
    """Parse ISO timestamps and bare dates into aware UTC datetimes."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError("Unsupported datetime value")


def _parse_status(value: object, enum_type: Type, aliases: Mapping[str, Any], default: Any) -> Any:
    if not value:
        return default
    text = str(value).strip().lower()
    if text in aliases:
        return aliases[text]
    return enum_type(text)


def _ref(ref_type: Type[RefT], value: object) -> Optional[RefT]:
    if not value:
        return None
    return ref_type.parse(value)  # type: ignore[arg-type]


def _refs(ref_type: Type[RefT], values: Iterable[object]) -> Tuple[RefT, ...]:
    return tuple(ref_type.parse(value) for value in values if value)  # type: ignore[arg-type]


def _gids(refs: Iterable[Ref]) -> List[str]:
    return [ref.gid for ref in refs]


def _record_to_issue(record: Record) -> MagazineIssue:
    return MagazineIssue(
        ref=MagazineIssueRef(record.ref),
        title=record.get("title") or "",
        publication_code=record.get("publication_code") or "",
        export_date=parse_datetime(record.get("export_date")),
        status=_parse_status(record.get("status"), IssueStatus, _ISSUE_STATUS_ALIASES, IssueStatus.PLANNED),
        associated_products=_refs(ProductRef, record.get_list("associated_products")),
    )


def _record_to_product(record: Record) -> Product:
    return Product(
        ref=ProductRef(record.ref),
        title=record.get("title") or "",
        tags=tuple(str(tag) for tag in record.get_list("tags")),
        magazine_issues=_refs(MagazineIssueRef, record.get_list("magazine_issues")),
    )


def _record_to_entitlement(record: Record) -> IssueEntitlement:
    return IssueEntitlement(
        ref=EntitlementRef(record.ref),
        customer=CustomerRef.parse(record.get("customer")),
        magazine_issue=MagazineIssueRef.parse(record.get("magazine_issue")),
        source_order=OrderRef.parse(record.get("source_order")),
        status=_parse_status(
            record.get("status"), EntitlementStatus, _ENTITLEMENT_STATUS_ALIASES, EntitlementStatus.ACTIVE
        ),
        subscription=_ref(SubscriptionRef, record.get("subscription")),
    )


def _record_to_subscription(record: Record) -> Subscription:
    start = record.get("start_date")
    return Subscription(
        ref=SubscriptionRef(record.ref),
        subscription_id=record.get("subscription_id") or "",
        status=_parse_status(
            record.get("subscription_status"),
            SubscriptionStatus,
            _SUBSCRIPTION_STATUS_ALIASES,
            SubscriptionStatus.SUBSCRIBED,
        ),
        product=ProductRef.parse(record.get("products")),
        customer=_ref(CustomerRef, record.get("customer")),
        current_order=_ref(OrderRef, record.get("order")),
        orders=_refs(OrderRef, record.get_list("orders")),
        start_date=date.fromisoformat(start[:10]) if start else None,
        renewal_count=int(record.get("renewals_amount") or 0),
        entitlements=_refs(EntitlementRef, record.get_list("issue_entitlements")),
        version=record.version,
    )


def _subscription_fields(subscription: Subscription) -> Dict[str, Any]:
    return {
        "subscription_id": subscription.subscription_id,
        "subscription_status": subscription.status.value,
        "products": subscription.product.gid,
        "customer": subscription.customer.gid if subscription.customer else None,
        "order": subscription.current_order.gid if subscription.current_order else None,
        "orders": _gids(subscription.orders),
        "start_date": subscription.start_date.isoformat() if subscription.start_date else None,
        "renewals_amount": subscription.renewal_count,
        "issue_entitlements": _gids(subscription.entitlements),
    }


def _record_to_alert(record: Record) -> Alert:
    return Alert(
        ref=AlertRef(record.ref),
        alert_type=AlertType(record.get("alert_type")),
        order_type=OrderType(record.get("order_type")),
        order=OrderRef.parse(record.get("order")),
        customer=CustomerRef.parse(record.get("customer")),
        product=ProductRef.parse(record.get("product")),
        subscription=_ref(SubscriptionRef, record.get("subscription")),
        required_issues=int(record.get("required_issues") or 0),
        available_issues=int(record.get("available_issues") or 0),
        alert_date=parse_datetime(record.get("alert_date")) or record.created_at or datetime.now(timezone.utc),
        status=AlertStatus(record.get("status") or AlertStatus.UNRESOLVED.value),
    )


class EntitlementStore:
    """Repository over a :class:`~.store.RecordStore`.

    Every list operation pages through the full result set, so callers never
    deal with cursors.
    """

    def __init__(self, store: RecordStore, *, page_size: int = 250) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self._store = store
        self._page_size = page_size

    @property
    def record_store(self) -> RecordStore:
        return self._store

    def _iterate(self, record_type: RecordType, filters: Optional[Mapping[str, Any]] = None) -> Iterator[Record]:
        return iterate_records(self._store, record_type, filters=filters, page_size=self._page_size)

    # Magazine issues -----------------------------------------------------

    def get_issue(self, ref: MagazineIssueRef) -> Optional[MagazineIssue]:
        record = self._store.get(RecordType.MAGAZINE_ISSUE, ref.gid)
        return _record_to_issue(record) if record else None

    def iter_issues(
        self, *, on_invalid: Optional[Callable[[Record, Exception], None]] = None
    ) -> Iterator[MagazineIssue]:
        """Yield every issue; records that fail to parse go to ``on_invalid`` when given."""
        for record in self._iterate(RecordType.MAGAZINE_ISSUE):
            if on_invalid is None:
                yield _record_to_issue(record)
                continue
            try:
                issue = _record_to_issue(record)
            except (TypeError, ValueError) as exc:
                on_invalid(record, exc)
                continue
            yield issue

    def list_issues(
        self,
        *,
        product: Optional[ProductRef] = None,
        status: Optional[IssueStatus] = None,
        exported_after: Optional[datetime] = None,
        exported_before: Optional[datetime] = None,
    ) -> List[MagazineIssue]:
        filters = {"associated_products": product.gid} if product else None
        issues = []
        for record in self._iterate(RecordType.MAGAZINE_ISSUE, filters):
            issue = _record_to_issue(record)
            if status is not None and issue.status != status:
                continue
            if exported_after is not None and (issue.export_date is None or issue.export_date <= exported_after):
                continue
            if exported_before is not None and (issue.export_date is None or issue.export_date >= exported_before):
                continue
            issues.append(issue)
        return issues

    def create_issue(
        self,
        *,
        title: str,
        export_date: datetime,
        publication_code: str = "",
        status: IssueStatus = IssueStatus.PLANNED,
        associated_products: Sequence[ProductRef] = (),
    ) -> MagazineIssue:
        record = self._store.create(
            RecordType.MAGAZINE_ISSUE,
            {
                "title": title,
                "publication_code": publication_code,
                "export_date": export_date.isoformat(),
                "status": status.value,
                "associated_products": _gids(associated_products),
            },
        )
        return _record_to_issue(record)

    def set_issue_products(self, ref: MagazineIssueRef, products: Sequence[ProductRef]) -> MagazineIssue:
        record = self._store.update(RecordType.MAGAZINE_ISSUE, ref.gid, {"associated_products": _gids(products)})
        return _record_to_issue(record)

    def issues_referencing_product(self, product: ProductRef) -> List[MagazineIssue]:
        return self.list_issues(product=product)

    # Products and variants ----------------------------------------------

    def get_product(self, ref: ProductRef) -> Optional[Product]:
        record = self._store.get(RecordType.PRODUCT, ref.gid)
        return _record_to_product(record) if record else None

    def require_product(self, ref: ProductRef) -> Product:
        product = self.get_product(ref)
        if product is None:
            raise NotFoundError(f"Product {ref} not found")
        return product

    def set_product_issues(self, ref: ProductRef, issues: Sequence[MagazineIssueRef]) -> Product:
        record = self._store.update(RecordType.PRODUCT, ref.gid, {"magazine_issues": _gids(issues)})
        return _record_to_product(record)

    def products_referencing_issue(self, issue: MagazineIssueRef) -> List[Product]:
        return [
            _record_to_product(record)
            for record in self._iterate(RecordType.PRODUCT, {"magazine_issues": issue.gid})
        ]

    def get_variant_issue_count(self, ref: VariantRef) -> Optional[str]:
        """Return the raw ``issue_count`` attribute of a variant, if any."""
        record = self._store.get(RecordType.PRODUCT_VARIANT, ref.gid)
        if record is None:
            raise NotFoundError(f"Variant {ref} not found")
        value = record.get("issue_count")
        return None if value is None else str(value)

    def get_variant_product(self, ref: VariantRef) -> Optional[ProductRef]:
        record = self._store.get(RecordType.PRODUCT_VARIANT, ref.gid)
        if record is None:
            return None
        return _ref(ProductRef, record.get("product"))

    # Orders ---------------------------------------------------------------

    def get_order_subscriptions(self, ref: OrderRef) -> Tuple[SubscriptionRef, ...]:
        record = self._store.get(RecordType.ORDER, ref.gid)
        if record is None:
            return tuple()
        return _refs(SubscriptionRef, record.get_list("subscriptions"))

    def set_order_subscriptions(self, ref: OrderRef, subscriptions: Sequence[SubscriptionRef]) -> None:
        fields = {"subscriptions": _gids(subscriptions)}
        if self._store.get(RecordType.ORDER, ref.gid) is None:
            # Webhook-only deployments learn about orders from the order-paid event.
            self._store.create(RecordType.ORDER, fields, ref=ref.gid)
            return
        self._store.update(RecordType.ORDER, ref.gid, fields)

    # Entitlements ---------------------------------------------------------

    def create_entitlement(
        self,
        *,
        customer: CustomerRef,
        issue: MagazineIssueRef,
        source_order: OrderRef,
        subscription: Optional[SubscriptionRef] = None,
    ) -> IssueEntitlement:
        fields: Dict[str, Any] = {
            "customer": customer.gid,
            "magazine_issue": issue.gid,
            "source_order": source_order.gid,
            "status": EntitlementStatus.ACTIVE.value,
        }
        if subscription is not None:
            fields["subscription"] = subscription.gid
        record = self._store.create(RecordType.ISSUE_ENTITLEMENT, fields)
        return _record_to_entitlement(record)

    def get_entitlement(self, ref: EntitlementRef) -> Optional[IssueEntitlement]:
        record = self._store.get(RecordType.ISSUE_ENTITLEMENT, ref.gid)
        return _record_to_entitlement(record) if record else None

    def attach_subscription(self, ref: EntitlementRef, subscription: SubscriptionRef) -> IssueEntitlement:
        """Set the subscription back-link; the source order is never rewritten."""
        record = self._store.update(RecordType.ISSUE_ENTITLEMENT, ref.gid, {"subscription": subscription.gid})
        return _record_to_entitlement(record)

    def set_entitlement_status(self, ref: EntitlementRef, status: EntitlementStatus) -> IssueEntitlement:
        record = self._store.update(RecordType.ISSUE_ENTITLEMENT, ref.gid, {"status": status.value})
        return _record_to_entitlement(record)

    def list_entitlements(
        self,
        *,
        issue: Optional[MagazineIssueRef] = None,
        customer: Optional[CustomerRef] = None,
        status: Optional[EntitlementStatus] = None,
        subscription: Optional[SubscriptionRef] = None,
    ) -> List[IssueEntitlement]:
        filters: Dict[str, Any] = {}
        if issue is not None:
            filters["magazine_issue"] = issue.gid
        if customer is not None:
            filters["customer"] = customer.gid
        if subscription is not None:
            filters["subscription"] = subscription.gid
        entitlements = []
        for record in self._iterate(RecordType.ISSUE_ENTITLEMENT, filters or None):
            entitlement = _record_to_entitlement(record)
            if status is not None and entitlement.status != status:
                continue
            entitlements.append(entitlement)
        return entitlements

    def granted_issues(self, subscription: Subscription) -> Tuple[MagazineIssueRef, ...]:
        """Issues already covered by the subscription's entitlement list."""
        granted = []
        for ref in subscription.entitlements:
            entitlement = self.get_entitlement(ref)
            if entitlement is not None:
                granted.append(entitlement.magazine_issue)
        return tuple(granted)

    # Subscriptions --------------------------------------------------------

    def create_subscription(self, subscription_fields: Mapping[str, Any]) -> Subscription:
        record = self._store.create(RecordType.SUBSCRIPTION, subscription_fields)
        return _record_to_subscription(record)

    def get_subscription(self, ref: SubscriptionRef) -> Optional[Subscription]:
        record = self._store.get(RecordType.SUBSCRIPTION, ref.gid)
        return _record_to_subscription(record) if record else None

    def require_subscription(self, ref: SubscriptionRef) -> Subscription:
        subscription = self.get_subscription(ref)
        if subscription is None:
            raise NotFoundError(f"Subscription {ref} not found")
        return subscription

    def save_subscription(self, subscription: Subscription) -> Subscription:
        """Write back a subscription, failing if another writer got there first."""
        record = self._store.update(
            RecordType.SUBSCRIPTION,
            subscription.ref.gid,
            _subscription_fields(subscription),
            expected_version=subscription.version,
        )
        return _record_to_subscription(record)

    def list_subscriptions(self, *, status: Optional[SubscriptionStatus] = None) -> List[Subscription]:
        subscriptions = [_record_to_subscription(record) for record in self._iterate(RecordType.SUBSCRIPTION)]
        if status is not None:
            subscriptions = [subscription for subscription in subscriptions if subscription.status == status]
        return subscriptions

    # Alerts ---------------------------------------------------------------

    def create_alert(self, alert_fields: Mapping[str, Any]) -> Alert:
        record = self._store.create(RecordType.ALERT, alert_fields)
        return _record_to_alert(record)

    def get_alert(self, ref: AlertRef) -> Optional[Alert]:
        record = self._store.get(RecordType.ALERT, ref.gid)
        return _record_to_alert(record) if record else None

    def list_alerts(self, *, status: Optional[AlertStatus] = None) -> List[Alert]:
        filters = {"status": status.value} if status else None
        return [_record_to_alert(record) for record in self._iterate(RecordType.ALERT, filters)]

    def set_alert_status(self, ref: AlertRef, status: AlertStatus, *, expected_version: Optional[int] = None) -> Alert:
        record = self._store.update(
            RecordType.ALERT, ref.gid, {"status": status.value}, expected_version=expected_version
        )
        return _record_to_alert(record)


__all__ = ["EntitlementStore", "parse_datetime"]
