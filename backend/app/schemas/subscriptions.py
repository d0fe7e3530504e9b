"""API schemas for the merchant admin endpoints."""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..subscriptions import (
    Alert,
    AlertStatus,
    AlertType,
    IssueStatus,
    MagazineIssue,
    OrderType,
    Subscription,
    SubscriptionStatus,
)


class AlertOut(BaseModel):
    id: str
    alert_type: AlertType = Field(alias="alertType")
    order_type: OrderType = Field(alias="orderType")
    order_id: str = Field(alias="orderId")
    customer_id: str = Field(alias="customerId")
    product_id: str = Field(alias="productId")
    subscription_id: Optional[str] = Field(alias="subscriptionId", default=None)
    required_issues: int = Field(alias="requiredIssues")
    available_issues: int = Field(alias="availableIssues")
    alert_date: datetime = Field(alias="alertDate")
    status: AlertStatus

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertOut":
        return cls(
            id=alert.ref.gid,
            alert_type=alert.alert_type,
            order_type=alert.order_type,
            order_id=alert.order.gid,
            customer_id=alert.customer.gid,
            product_id=alert.product.gid,
            subscription_id=alert.subscription.gid if alert.subscription else None,
            required_issues=alert.required_issues,
            available_issues=alert.available_issues,
            alert_date=alert.alert_date,
            status=alert.status,
        )


class AlertListResponse(BaseModel):
    alerts: List[AlertOut]

    model_config = ConfigDict(populate_by_name=True)


class AlertStatusUpdateRequest(BaseModel):
    status: AlertStatus


class SubscriptionOut(BaseModel):
    id: str
    subscription_id: str = Field(alias="subscriptionId")
    status: SubscriptionStatus
    product_id: str = Field(alias="productId")
    customer_id: Optional[str] = Field(alias="customerId", default=None)
    current_order_id: Optional[str] = Field(alias="currentOrderId", default=None)
    start_date: Optional[date] = Field(alias="startDate", default=None)
    renewal_count: int = Field(alias="renewalCount")
    entitlement_count: int = Field(alias="entitlementCount")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionOut":
        return cls(
            id=subscription.ref.gid,
            subscription_id=subscription.subscription_id,
            status=subscription.status,
            product_id=subscription.product.gid,
            customer_id=subscription.customer.gid if subscription.customer else None,
            current_order_id=subscription.current_order.gid if subscription.current_order else None,
            start_date=subscription.start_date,
            renewal_count=subscription.renewal_count,
            entitlement_count=len(subscription.entitlements),
        )


class SubscriptionListResponse(BaseModel):
    subscriptions: List[SubscriptionOut]


class RenewalOrderRequest(BaseModel):
    subscription_id: str = Field(alias="subscriptionId", min_length=1)
    variant_id: str = Field(alias="variantId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class RenewalOrderResponse(BaseModel):
    order_id: str = Field(alias="orderId")
    subscription_id: str = Field(alias="subscriptionId")

    model_config = ConfigDict(populate_by_name=True)


class IssueOut(BaseModel):
    id: str
    title: str
    publication_code: str = Field(alias="publicationCode")
    export_date: Optional[datetime] = Field(alias="exportDate", default=None)
    status: IssueStatus

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_issue(cls, issue: MagazineIssue) -> "IssueOut":
        return cls(
            id=issue.ref.gid,
            title=issue.title,
            publication_code=issue.publication_code,
            export_date=issue.export_date,
            status=issue.status,
        )


class PlannedIssuesResponse(BaseModel):
    issues: List[IssueOut]


class RecipientListResponse(BaseModel):
    issue_id: str = Field(alias="issueId")
    customers: List[str]

    model_config = ConfigDict(populate_by_name=True)
