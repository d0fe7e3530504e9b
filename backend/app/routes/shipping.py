"""API routes listing shipping recipients per issue."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..schemas.subscriptions import IssueOut, PlannedIssuesResponse, RecipientListResponse
from ..services.shopify_auth import require_admin_session
from ..services.subscriptions import get_engine
from ..subscriptions import MagazineIssueRef, NotFoundError, TransientError

router = APIRouter(prefix="/api/shipping", tags=["shipping"])


@router.get("/issues", response_model=PlannedIssuesResponse)
def list_planned_issues(*, session=Depends(require_admin_session)) -> PlannedIssuesResponse:
    engine = get_engine()
    try:
        issues = engine.shipping.planned_issues()
    except TransientError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return PlannedIssuesResponse(issues=[IssueOut.from_issue(issue) for issue in issues])


@router.get("/issues/{issue_id}/recipients", response_model=RecipientListResponse)
def list_recipients(issue_id: str, *, session=Depends(require_admin_session)) -> RecipientListResponse:
    engine = get_engine()
    issue_ref = MagazineIssueRef.parse(issue_id)
    try:
        customers = engine.shipping.recipients(issue_ref)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except TransientError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return RecipientListResponse(issue_id=issue_ref.gid, customers=[customer.gid for customer in customers])
