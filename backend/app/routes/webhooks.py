"""Shopify webhook endpoints feeding the subscription engine."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Type, TypeVar

from fastapi import APIRouter, Header, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ValidationError

from ..schemas.webhooks import MetaobjectUpdatePayload, OrderPaidPayload, ProductUpdatePayload, WebhookAck
from ..services.shopify_auth import verify_webhook_hmac
from ..services.subscriptions import SubscriptionEngine, get_engine, get_engine_config
from ..subscriptions import NotFoundError, TransientError

logger = logging.getLogger("subscriptions")

ORDERS_PAID_TOPIC = "orders/paid"
METAOBJECTS_UPDATE_TOPIC = "metaobjects/update"
PRODUCTS_UPDATE_TOPIC = "products/update"
MAGAZINE_ISSUE_TYPE = "magazine_issue"

PayloadT = TypeVar("PayloadT", bound=BaseModel)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _verified_body(request: Request, signature: Optional[str]) -> bytes:
    body = await request.body()
    config = get_engine_config()
    if config.verifies_requests and not verify_webhook_hmac(body, signature, config.shopify_api_secret):
        logger.warning("Rejected webhook %s with an invalid HMAC", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")
    return body


def _parse(model: Type[PayloadT], body: bytes) -> PayloadT:
    try:
        return model.model_validate_json(body)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@contextmanager
def _redeliverable() -> Iterator[None]:
    """Report store outages as 503 so Shopify retries the delivery."""
    try:
        yield
    except TransientError as exc:
        logger.warning("Webhook processing deferred: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


def _already_processed(engine: SubscriptionEngine, delivery_id: Optional[str]) -> bool:
    if not delivery_id:
        return False
    if engine.record_store.delivery_seen(delivery_id):
        logger.info("Skipping already processed delivery %s", delivery_id)
        return True
    return False


def _mark_processed(engine: SubscriptionEngine, delivery_id: Optional[str], topic: str) -> None:
    if delivery_id:
        engine.record_store.record_delivery(delivery_id, topic)


def handle_order_paid(
    payload: OrderPaidPayload,
    delivery_id: Optional[str] = None,
    *,
    engine: Optional[SubscriptionEngine] = None,
) -> WebhookAck:
    engine = engine or get_engine()
    with _redeliverable():
        if _already_processed(engine, delivery_id):
            return WebhookAck(status="duplicate")

        event = payload.to_event()
        if event is None:
            logger.info("Order %s has no customer, skipping", payload.order_ref)
            ack = WebhookAck(status="ignored", detail="order has no customer")
        else:
            result = engine.lifecycle.handle_order_paid(event)
            ack = WebhookAck(
                status="processed",
                detail=result.context,
                created_subscriptions=[ref.gid for ref in result.created_subscriptions],
                alerts=[outcome.alert.gid for outcome in result.outcomes if outcome.alert is not None],
            )
        _mark_processed(engine, delivery_id, ORDERS_PAID_TOPIC)
    return ack


def handle_metaobject_update(
    payload: MetaobjectUpdatePayload,
    delivery_id: Optional[str] = None,
    *,
    engine: Optional[SubscriptionEngine] = None,
) -> WebhookAck:
    engine = engine or get_engine()
    if payload.type != MAGAZINE_ISSUE_TYPE:
        return WebhookAck(status="ignored", detail=f"metaobject type {payload.type!r}")
    try:
        products = payload.associated_products()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    with _redeliverable():
        if _already_processed(engine, delivery_id):
            return WebhookAck(status="duplicate")
        try:
            result = engine.sync.on_issue_edited(payload.issue_ref, products)
        except NotFoundError as exc:
            logger.warning("Ignoring metaobject update: %s", exc)
            ack = WebhookAck(status="ignored", detail=str(exc))
        else:
            ack = WebhookAck(status="processed", added=list(result.added), removed=list(result.removed))
        _mark_processed(engine, delivery_id, METAOBJECTS_UPDATE_TOPIC)
    return ack


def handle_product_update(
    payload: ProductUpdatePayload,
    delivery_id: Optional[str] = None,
    *,
    engine: Optional[SubscriptionEngine] = None,
) -> WebhookAck:
    engine = engine or get_engine()
    try:
        issues = payload.magazine_issues()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    with _redeliverable():
        if _already_processed(engine, delivery_id):
            return WebhookAck(status="duplicate")
        try:
            result = engine.sync.on_product_edited(payload.product_ref, issues)
        except NotFoundError as exc:
            logger.warning("Ignoring product update: %s", exc)
            ack = WebhookAck(status="ignored", detail=str(exc))
        else:
            ack = WebhookAck(status="processed", added=list(result.added), removed=list(result.removed))
        _mark_processed(engine, delivery_id, PRODUCTS_UPDATE_TOPIC)
    return ack


@router.post("/orders/paid", response_model=WebhookAck)
async def receive_order_paid(
    request: Request,
    x_shopify_hmac_sha256: Optional[str] = Header(None),
    x_shopify_webhook_id: Optional[str] = Header(None),
) -> WebhookAck:
    body = await _verified_body(request, x_shopify_hmac_sha256)
    payload = _parse(OrderPaidPayload, body)
    return await run_in_threadpool(handle_order_paid, payload, x_shopify_webhook_id)


@router.post("/metaobjects/update", response_model=WebhookAck)
async def receive_metaobject_update(
    request: Request,
    x_shopify_hmac_sha256: Optional[str] = Header(None),
    x_shopify_webhook_id: Optional[str] = Header(None),
) -> WebhookAck:
    body = await _verified_body(request, x_shopify_hmac_sha256)
    payload = _parse(MetaobjectUpdatePayload, body)
    return await run_in_threadpool(handle_metaobject_update, payload, x_shopify_webhook_id)


@router.post("/products/update", response_model=WebhookAck)
async def receive_product_update(
    request: Request,
    x_shopify_hmac_sha256: Optional[str] = Header(None),
    x_shopify_webhook_id: Optional[str] = Header(None),
) -> WebhookAck:
    body = await _verified_body(request, x_shopify_hmac_sha256)
    payload = _parse(ProductUpdatePayload, body)
    return await run_in_threadpool(handle_product_update, payload, x_shopify_webhook_id)


__all__ = ["handle_metaobject_update", "handle_order_paid", "handle_product_update", "router"]
