"""Who receives which issue."""
from __future__ import annotations

from typing import List

from .exceptions import NotFoundError
from .models import EntitlementStatus, IssueStatus, MagazineIssue
from .refs import CustomerRef, MagazineIssueRef
from .repository import EntitlementStore


class ShippingListService:
    def __init__(self, store: EntitlementStore) -> None:
        self._store = store

    def planned_issues(self) -> List[MagazineIssue]:
        issues = self._store.list_issues(status=IssueStatus.PLANNED)
        return sorted(issues, key=lambda issue: (issue.export_date is None, issue.export_date, issue.ref.gid))

    def recipients(self, issue_ref: MagazineIssueRef) -> List[CustomerRef]:
        """Distinct customers holding an Active entitlement for the issue, first grant first."""
        if self._store.get_issue(issue_ref) is None:
            raise NotFoundError(f"Magazine issue {issue_ref} not found")
        entitlements = self._store.list_entitlements(issue=issue_ref, status=EntitlementStatus.ACTIVE)
        return list(dict.fromkeys(entitlement.customer for entitlement in entitlements))


__all__ = ["ShippingListService"]
