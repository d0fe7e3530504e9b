"""Selection of the upcoming issues a purchase is entitled to."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import AbstractSet, Callable, List, Optional

from .exceptions import ConfigurationError
from .models import MagazineIssue
from .refs import MagazineIssueRef, ProductRef, VariantRef
from .repository import EntitlementStore
from .store import Record

logger = logging.getLogger(__name__)


def _skip_invalid_issue(record: Record, exc: Exception) -> None:
    logger.warning("Ignoring unreadable magazine issue %s: %s", record.ref, exc)


def parse_issue_count(raw: Optional[str], *, variant: Optional[VariantRef] = None) -> int:
    """Validate a variant's ``issue_count`` attribute."""
    label = f"Variant {variant}" if variant else "Variant"
    if raw is None or str(raw).strip() == "":
        raise ConfigurationError(f"{label} has no issue_count")
    try:
        count = int(str(raw).strip())
    except ValueError as exc:
        raise ConfigurationError(f"{label} has a non-numeric issue_count {raw!r}") from exc
    if count < 1:
        raise ConfigurationError(f"{label} has a non-positive issue_count {count}")
    return count


class IssueEligibilitySelector:
    """Picks the next unsent future issues for a product, earliest export date first."""

    def __init__(
        self,
        store: EntitlementStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def issue_count_for(self, variant: VariantRef) -> int:
        return parse_issue_count(self._store.get_variant_issue_count(variant), variant=variant)

    def select(
        self,
        product: ProductRef,
        excluded: AbstractSet[MagazineIssueRef],
        requested: int,
    ) -> List[MagazineIssueRef]:
        """Return at most ``requested`` eligible issue references.

        Eligible issues are not Sent, export strictly after now, list
        ``product`` among their associated products and are not in
        ``excluded``. Ties on export date fall back to the issue gid so the
        allocation is reproducible.
        """
        if requested < 1:
            raise ConfigurationError(f"Requested issue count must be >= 1, got {requested}")

        now = self._clock()
        candidates: List[MagazineIssue] = [
            issue
            for issue in self._store.iter_issues(on_invalid=_skip_invalid_issue)
            if issue.ref not in excluded and issue.is_eligible_for(product, now=now)
        ]
        candidates.sort(key=lambda issue: (issue.export_date, issue.ref.gid))
        selected = [issue.ref for issue in candidates[:requested]]
        logger.debug(
            "Selected %d of %d eligible issues for product=%s (requested %d, excluded %d)",
            len(selected),
            len(candidates),
            product,
            requested,
            len(excluded),
        )
        return selected


__all__ = ["IssueEligibilitySelector", "parse_issue_count"]
