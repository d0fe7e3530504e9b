"""Payloads delivered by Shopify webhooks."""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field

from ..subscriptions import (
    CustomerRef,
    LineItem,
    MagazineIssueRef,
    OrderPaidEvent,
    OrderRef,
    ProductRef,
    VariantRef,
)
from ..subscriptions.refs import RefT

ShopifyId = Union[int, str]


def _ref_list(ref_type: Type[RefT], raw: Any) -> List[RefT]:
    """Metafield list values arrive either as JSON text or already decoded."""
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise ValueError(f"Expected a JSON list, got {raw!r}") from exc
    if not isinstance(raw, list):
        raise ValueError(f"Expected a list of references, got {type(raw).__name__}")
    return [ref_type.parse(value) for value in raw if value]


class ShopifyCustomer(BaseModel):
    id: ShopifyId
    admin_graphql_api_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    def to_ref(self) -> CustomerRef:
        return CustomerRef.parse(self.admin_graphql_api_id or self.id)


class ShopifyLineItem(BaseModel):
    product_id: Optional[ShopifyId] = None
    variant_id: Optional[ShopifyId] = None
    quantity: int = Field(default=1, ge=0)

    model_config = ConfigDict(extra="ignore")


class OrderPaidPayload(BaseModel):
    id: ShopifyId
    admin_graphql_api_id: Optional[str] = None
    customer: Optional[ShopifyCustomer] = None
    line_items: List[ShopifyLineItem] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    @property
    def order_ref(self) -> OrderRef:
        return OrderRef.parse(self.admin_graphql_api_id or self.id)

    def to_event(self) -> Optional[OrderPaidEvent]:
        """Return ``None`` for orders placed without a customer."""
        if self.customer is None:
            return None
        # Custom line items carry no product or variant.
        line_items = tuple(
            LineItem(
                product=ProductRef.parse(item.product_id),
                variant=VariantRef.parse(item.variant_id),
                quantity=item.quantity,
            )
            for item in self.line_items
            if item.product_id is not None and item.variant_id is not None
        )
        return OrderPaidEvent(order=self.order_ref, customer=self.customer.to_ref(), line_items=line_items)


class MetaobjectUpdatePayload(BaseModel):
    id: ShopifyId
    admin_graphql_api_id: Optional[str] = None
    type: str = ""
    handle: Optional[str] = None
    field_values: Dict[str, Any] = Field(default_factory=dict, alias="fields")

    model_config = ConfigDict(extra="ignore")

    @property
    def issue_ref(self) -> MagazineIssueRef:
        return MagazineIssueRef.parse(self.admin_graphql_api_id or self.id)

    def associated_products(self) -> Optional[List[ProductRef]]:
        if "associated_products" not in self.field_values:
            return None
        return _ref_list(ProductRef, self.field_values["associated_products"])


class ShopifyMetafield(BaseModel):
    namespace: str
    key: str
    value: Any = None

    model_config = ConfigDict(extra="ignore")


class ProductUpdatePayload(BaseModel):
    id: ShopifyId
    admin_graphql_api_id: Optional[str] = None
    title: Optional[str] = None
    tags: Optional[str] = None
    metafields: List[ShopifyMetafield] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    @property
    def product_ref(self) -> ProductRef:
        return ProductRef.parse(self.admin_graphql_api_id or self.id)

    def magazine_issues(self) -> Optional[List[MagazineIssueRef]]:
        for metafield in self.metafields:
            if metafield.namespace == "custom" and metafield.key == "magazine_issues":
                return _ref_list(MagazineIssueRef, metafield.value)
        return None


class WebhookAck(BaseModel):
    status: str
    detail: Optional[str] = None
    created_subscriptions: List[str] = Field(default_factory=list, alias="createdSubscriptions")
    alerts: List[str] = Field(default_factory=list)
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)
