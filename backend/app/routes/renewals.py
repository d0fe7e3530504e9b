"""API routes for placing renewal orders."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..schemas.subscriptions import (
    RenewalOrderRequest,
    RenewalOrderResponse,
    SubscriptionListResponse,
    SubscriptionOut,
)
from ..services.shopify_auth import require_admin_session
from ..services.subscriptions import get_engine
from ..subscriptions import StoreValidationError, SubscriptionRef, TransientError, VariantRef

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


@router.get("", response_model=SubscriptionListResponse)
def list_active_subscriptions(*, session=Depends(require_admin_session)) -> SubscriptionListResponse:
    engine = get_engine()
    try:
        subscriptions = engine.renewals.list_active_subscriptions()
    except TransientError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return SubscriptionListResponse(
        subscriptions=[SubscriptionOut.from_subscription(subscription) for subscription in subscriptions]
    )


@router.post("/renewal-orders", response_model=RenewalOrderResponse, status_code=status.HTTP_201_CREATED)
def create_renewal_order(
    payload: RenewalOrderRequest,
    *,
    session=Depends(require_admin_session),
) -> RenewalOrderResponse:
    engine = get_engine()
    subscription_ref = SubscriptionRef.parse(payload.subscription_id)
    try:
        order = engine.renewals.create_renewal_order(subscription_ref, VariantRef.parse(payload.variant_id))
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StoreValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.payload) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except TransientError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return RenewalOrderResponse(order_id=order.gid, subscription_id=subscription_ref.gid)
