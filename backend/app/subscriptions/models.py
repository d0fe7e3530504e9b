"""Domain models for magazine issues, entitlements, subscriptions and alerts."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .refs import (
    AlertRef,
    CustomerRef,
    EntitlementRef,
    MagazineIssueRef,
    OrderRef,
    ProductRef,
    SubscriptionRef,
    VariantRef,
)


class RecordType(str, Enum):
    """Record kinds held by the backing record store."""

    MAGAZINE_ISSUE = "magazine_issue"
    ISSUE_ENTITLEMENT = "issue_entitlement"
    SUBSCRIPTION = "subscription"
    ALERT = "magazine_issue_alert"
    PRODUCT = "product"
    PRODUCT_VARIANT = "product_variant"
    ORDER = "order"


class IssueStatus(str, Enum):
    PLANNED = "planned"
    SENT = "sent"


class EntitlementStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class SubscriptionStatus(str, Enum):
    SUBSCRIBED = "subscribed"
    CANCELLED = "cancelled"


class AlertType(str, Enum):
    """Why an allocation came up short."""

    NO_ISSUES_AVAILABLE = "no_issues_available"
    INSUFFICIENT_ISSUES = "insufficient_issues"


class OrderType(str, Enum):
    NEW_ORDER = "new_order"
    RENEWAL = "renewal"


class AlertStatus(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"
    IGNORED = "ignored"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MagazineIssue(BaseModel):
    """A single dated release of a magazine."""

    ref: MagazineIssueRef
    title: str = ""
    publication_code: str = ""
    export_date: Optional[datetime] = None
    status: IssueStatus = IssueStatus.PLANNED
    associated_products: Tuple[ProductRef, ...] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)

    @field_validator("export_date")
    @classmethod
    def _aware_export_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_eligible_for(self, product: ProductRef, *, now: datetime) -> bool:
        """Return ``True`` when the issue can still be allocated to ``product`` buyers."""
        if self.status == IssueStatus.SENT:
            return False
        if self.export_date is None or self.export_date <= now:
            return False
        return product in self.associated_products


class IssueEntitlement(BaseModel):
    """A customer's right to receive one issue, sourced from one order."""

    ref: EntitlementRef
    customer: CustomerRef
    magazine_issue: MagazineIssueRef
    source_order: OrderRef
    status: EntitlementStatus = EntitlementStatus.ACTIVE
    subscription: Optional[SubscriptionRef] = None

    model_config = ConfigDict(frozen=True)


class Subscription(BaseModel):
    """Recurring relationship between a customer and a magazine product."""

    ref: SubscriptionRef
    subscription_id: str
    status: SubscriptionStatus = SubscriptionStatus.SUBSCRIBED
    product: ProductRef
    customer: Optional[CustomerRef] = None
    current_order: Optional[OrderRef] = None
    orders: Tuple[OrderRef, ...] = Field(default_factory=tuple)
    start_date: Optional[date] = None
    renewal_count: int = Field(default=0, ge=0)
    entitlements: Tuple[EntitlementRef, ...] = Field(default_factory=tuple)
    version: int = 0

    model_config = ConfigDict(frozen=True)

    @property
    def founding_order(self) -> Optional[OrderRef]:
        return self.orders[0] if self.orders else None

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.SUBSCRIBED


class Alert(BaseModel):
    """Shortage alert raised when fewer issues exist than a purchase requires."""

    ref: AlertRef
    alert_type: AlertType
    order_type: OrderType
    order: OrderRef
    customer: CustomerRef
    product: ProductRef
    subscription: Optional[SubscriptionRef] = None
    required_issues: int = Field(ge=0)
    available_issues: int = Field(ge=0)
    alert_date: datetime = Field(default_factory=_utcnow)
    status: AlertStatus = AlertStatus.UNRESOLVED

    model_config = ConfigDict(frozen=True)


class Product(BaseModel):
    ref: ProductRef
    title: str = ""
    tags: Tuple[str, ...] = Field(default_factory=tuple)
    magazine_issues: Tuple[MagazineIssueRef, ...] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)

    def has_tag(self, tag: str) -> bool:
        wanted = tag.strip().lower()
        return any(existing.strip().lower() == wanted for existing in self.tags)


class LineItem(BaseModel):
    product: ProductRef
    variant: VariantRef
    quantity: int = Field(default=1, ge=0)

    model_config = ConfigDict(frozen=True)


class OrderPaidEvent(BaseModel):
    """Transport-independent form of the ``orders/paid`` webhook."""

    order: OrderRef
    customer: CustomerRef
    line_items: Tuple[LineItem, ...] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)

    def line_item_for(self, product: ProductRef) -> Optional[LineItem]:
        for item in self.line_items:
            if item.product == product:
                return item
        return None


@dataclass(frozen=True)
class NewPurchase:
    """The order carries no subscription references."""


@dataclass(frozen=True)
class Renewal:
    """The order renews the listed subscriptions."""

    subscriptions: Tuple[SubscriptionRef, ...]


OrderContext = Union[NewPurchase, Renewal]


def classify_order(subscription_refs: Tuple[SubscriptionRef, ...]) -> OrderContext:
    """Decide once, at event entry, which lifecycle path an order follows."""
    if subscription_refs:
        return Renewal(subscriptions=tuple(subscription_refs))
    return NewPurchase()


class LineItemOutcome(BaseModel):
    """What happened to one line item or one renewed subscription."""

    product: Optional[ProductRef] = None
    requested_issues: int = 0
    allocated: Tuple[EntitlementRef, ...] = Field(default_factory=tuple)
    subscription: Optional[SubscriptionRef] = None
    alert: Optional[AlertRef] = None
    skipped_reason: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class OrderProcessingResult(BaseModel):
    order: OrderRef
    context: str
    outcomes: Tuple[LineItemOutcome, ...] = Field(default_factory=tuple)
    created_subscriptions: Tuple[SubscriptionRef, ...] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)


class SyncResult(BaseModel):
    """Mutations performed by one association reconciliation pass."""

    added: Tuple[str, ...] = Field(default_factory=tuple)
    removed: Tuple[str, ...] = Field(default_factory=tuple)
    failed: Tuple[str, ...] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)
