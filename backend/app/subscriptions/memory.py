"""In-memory record store suitable for tests and local development."""
from __future__ import annotations

import copy
import json
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Set

from .exceptions import ConcurrencyConflict, NotFoundError, StoreValidationError
from .models import RecordType
from .store import Record, RecordPage, matches_filters

_RESOURCE_BY_TYPE = {
    RecordType.PRODUCT: "Product",
    RecordType.PRODUCT_VARIANT: "ProductVariant",
    RecordType.ORDER: "Order",
}


class InMemoryRecordStore:
    """Dictionary backed :class:`~.store.RecordStore`.

    Records keep insertion order, which is also the pagination order. Field
    values are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._records: Dict[str, Record] = {}
        self._order: List[str] = []
        self._deliveries: Set[str] = set()
        self._next_id = 1

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _new_ref(self, record_type: RecordType) -> str:
        resource = _RESOURCE_BY_TYPE.get(record_type, "Metaobject")
        ref = f"gid://shopify/{resource}/{self._next_id}"
        self._next_id += 1
        return ref

    @staticmethod
    def _check_fields(record_type: RecordType, fields: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            json.dumps(dict(fields))
        except (TypeError, ValueError) as exc:
            raise StoreValidationError(
                f"Fields for {record_type.value} are not JSON serializable",
                user_errors=[{"field": None, "message": str(exc)}],
                record_type=record_type.value,
            ) from exc
        return copy.deepcopy(dict(fields))

    def query(
        self,
        record_type: RecordType,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        first: int = 250,
        after: Optional[str] = None,
    ) -> RecordPage:
        if first < 1:
            raise ValueError("first must be >= 1")
        with self._lock:
            start = int(after) if after else 0
            matching: List[Record] = []
            for position in range(start, len(self._order)):
                record = self._records[self._order[position]]
                if record.record_type != record_type or not matches_filters(record.data, filters):
                    continue
                if len(matching) == first:
                    return RecordPage(records=tuple(matching), next_cursor=str(position))
                matching.append(self._copy(record))
            return RecordPage(records=tuple(matching), next_cursor=None)

    def get(self, record_type: RecordType, ref: str) -> Optional[Record]:
        with self._lock:
            record = self._records.get(str(ref))
            if record is None or record.record_type != record_type:
                return None
            return self._copy(record)

    def create(self, record_type: RecordType, fields: Mapping[str, Any], *, ref: Optional[str] = None) -> Record:
        if not isinstance(record_type, RecordType):
            raise StoreValidationError(f"Unknown record type {record_type!r}")
        data = self._check_fields(record_type, fields)
        with self._lock:
            record_ref = str(ref) if ref else self._new_ref(record_type)
            if record_ref in self._records:
                raise StoreValidationError(
                    f"Record {record_ref} already exists",
                    user_errors=[{"field": "ref", "message": "taken"}],
                    record_type=record_type.value,
                )
            now = self._now()
            record = Record(
                ref=record_ref,
                record_type=record_type,
                data=data,
                version=1,
                created_at=now,
                updated_at=now,
            )
            self._records[record_ref] = record
            self._order.append(record_ref)
            return self._copy(record)

    def update(
        self,
        record_type: RecordType,
        ref: str,
        fields: Mapping[str, Any],
        *,
        expected_version: Optional[int] = None,
    ) -> Record:
        data = self._check_fields(record_type, fields)
        with self._lock:
            current = self._records.get(str(ref))
            if current is None or current.record_type != record_type:
                raise NotFoundError(f"{record_type.value} {ref} not found")
            if expected_version is not None and current.version != expected_version:
                raise ConcurrencyConflict(
                    f"{record_type.value} {ref} is at version {current.version}, expected {expected_version}"
                )
            merged = {**copy.deepcopy(current.data), **data}
            updated = current.model_copy(
                update={"data": merged, "version": current.version + 1, "updated_at": self._now()}
            )
            self._records[str(ref)] = updated
            return self._copy(updated)

    def delivery_seen(self, delivery_id: str) -> bool:
        with self._lock:
            return delivery_id in self._deliveries

    def record_delivery(self, delivery_id: str, topic: str) -> bool:
        with self._lock:
            if delivery_id in self._deliveries:
                return False
            self._deliveries.add(delivery_id)
            return True

    def all(self, record_type: RecordType) -> List[Record]:
        with self._lock:
            return [
                self._copy(self._records[ref])
                for ref in self._order
                if self._records[ref].record_type == record_type
            ]

    @staticmethod
    def _copy(record: Record) -> Record:
        return record.model_copy(update={"data": copy.deepcopy(record.data)})


__all__ = ["InMemoryRecordStore"]
