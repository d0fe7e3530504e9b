"""Keeps the issue <-> product association consistent from either side."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .exceptions import NotFoundError, TransientError
from .models import SyncResult
from .refs import MagazineIssueRef, ProductRef
from .repository import EntitlementStore

logger = logging.getLogger(__name__)


class AssociationSynchronizer:
    """Full reconciliation of the two denormalised sides of the relation.

    An issue lists its products in ``associated_products``; a product lists
    its issues in ``magazine_issues``. Each entry point treats the edited side
    as the source of truth and rewrites only the counterpart records whose
    membership is wrong, so replaying the same change mutates nothing. When
    the caller passes the new list explicitly it is written to the edited
    record first.
    """

    def __init__(self, store: EntitlementStore) -> None:
        self._store = store

    def on_issue_edited(
        self,
        issue_ref: MagazineIssueRef,
        products: Optional[Sequence[ProductRef]] = None,
    ) -> SyncResult:
        issue = self._store.get_issue(issue_ref)
        if issue is None:
            raise NotFoundError(f"Magazine issue {issue_ref} not found")
        wanted = list(dict.fromkeys(products if products is not None else issue.associated_products))
        if tuple(wanted) != issue.associated_products:
            self._store.set_issue_products(issue_ref, wanted)
        logger.info("Reconciling issue=%s against %d products", issue_ref, len(wanted))

        added: List[str] = []
        removed: List[str] = []
        failed: List[str] = []

        for product_ref in wanted:
            try:
                product = self._store.get_product(product_ref)
                if product is None:
                    logger.warning("Issue=%s lists unknown product=%s", issue_ref, product_ref)
                    failed.append(product_ref.gid)
                    continue
                if issue_ref in product.magazine_issues:
                    continue
                self._store.set_product_issues(product_ref, product.magazine_issues + (issue_ref,))
                added.append(product_ref.gid)
                logger.info("Added issue=%s to product=%s", issue_ref, product_ref)
            except TransientError:
                raise
            except Exception:
                logger.exception("Failed to add issue=%s to product=%s", issue_ref, product_ref)
                failed.append(product_ref.gid)

        for product in self._store.products_referencing_issue(issue_ref):
            if product.ref in wanted:
                continue
            try:
                remaining = tuple(ref for ref in product.magazine_issues if ref != issue_ref)
                self._store.set_product_issues(product.ref, remaining)
                removed.append(product.ref.gid)
                logger.info("Removed issue=%s from product=%s", issue_ref, product.ref)
            except TransientError:
                raise
            except Exception:
                logger.exception("Failed to remove issue=%s from product=%s", issue_ref, product.ref)
                failed.append(product.ref.gid)

        return SyncResult(added=tuple(added), removed=tuple(removed), failed=tuple(failed))

    def on_product_edited(
        self,
        product_ref: ProductRef,
        issues: Optional[Sequence[MagazineIssueRef]] = None,
    ) -> SyncResult:
        product = self._store.require_product(product_ref)
        wanted = list(dict.fromkeys(issues if issues is not None else product.magazine_issues))
        if tuple(wanted) != product.magazine_issues:
            self._store.set_product_issues(product_ref, wanted)
        logger.info("Reconciling product=%s against %d issues", product_ref, len(wanted))

        added: List[str] = []
        removed: List[str] = []
        failed: List[str] = []

        for issue_ref in wanted:
            try:
                issue = self._store.get_issue(issue_ref)
                if issue is None:
                    logger.warning("Product=%s lists unknown issue=%s", product_ref, issue_ref)
                    failed.append(issue_ref.gid)
                    continue
                if product_ref in issue.associated_products:
                    continue
                self._store.set_issue_products(issue_ref, issue.associated_products + (product_ref,))
                added.append(issue_ref.gid)
                logger.info("Added product=%s to issue=%s", product_ref, issue_ref)
            except TransientError:
                raise
            except Exception:
                logger.exception("Failed to add product=%s to issue=%s", product_ref, issue_ref)
                failed.append(issue_ref.gid)

        for issue in self._store.issues_referencing_product(product_ref):
            if issue.ref in wanted:
                continue
            try:
                remaining = tuple(ref for ref in issue.associated_products if ref != product_ref)
                self._store.set_issue_products(issue.ref, remaining)
                removed.append(issue.ref.gid)
                logger.info("Removed product=%s from issue=%s", product_ref, issue.ref)
            except TransientError:
                raise
            except Exception:
                logger.exception("Failed to remove product=%s from issue=%s", product_ref, issue.ref)
                failed.append(issue.ref.gid)

        return SyncResult(added=tuple(added), removed=tuple(removed), failed=tuple(failed))


__all__ = ["AssociationSynchronizer"]
