"""API routes for reviewing shortage alerts."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..schemas.subscriptions import AlertListResponse, AlertOut, AlertStatusUpdateRequest
from ..services.shopify_auth import require_admin_session
from ..services.subscriptions import get_engine
from ..subscriptions import AlertRef, AlertStatus, NotFoundError, TransientError

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


@router.get("", response_model=AlertListResponse)
def list_alerts(
    alert_status: Optional[AlertStatus] = Query(None, alias="status"),
    *,
    session=Depends(require_admin_session),
) -> AlertListResponse:
    engine = get_engine()
    try:
        alerts = engine.alerts.list_alerts(status=alert_status)
    except TransientError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return AlertListResponse(alerts=[AlertOut.from_alert(alert) for alert in alerts])


@router.post("/{alert_id}/status", response_model=AlertOut)
def update_alert_status(
    alert_id: str,
    payload: AlertStatusUpdateRequest,
    *,
    session=Depends(require_admin_session),
) -> AlertOut:
    engine = get_engine()
    try:
        alert = engine.alerts.set_status(AlertRef.parse(alert_id), payload.status)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except TransientError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return AlertOut.from_alert(alert)
