"""Generic record store capability the engine is written against."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterator, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .models import RecordType


class Record(BaseModel):
    """A stored record: a typed bag of JSON fields with a version counter."""

    ref: str
    record_type: RecordType
    data: Dict[str, Any] = Field(default_factory=dict)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def get_list(self, key: str) -> list:
        value = self.data.get(key)
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]


class RecordPage(BaseModel):
    records: Sequence[Record] = Field(default_factory=tuple)
    next_cursor: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class RecordStore(Protocol):
    """Persistence operations required by the engine.

    Every method is a potential suspension point: concurrent deliveries may
    interleave between any two calls.
    """

    def query(
        self,
        record_type: RecordType,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        first: int = 250,
        after: Optional[str] = None,
    ) -> RecordPage:
        ...

    def get(self, record_type: RecordType, ref: str) -> Optional[Record]:
        ...

    def create(self, record_type: RecordType, fields: Mapping[str, Any], *, ref: Optional[str] = None) -> Record:
        ...

    def update(
        self,
        record_type: RecordType,
        ref: str,
        fields: Mapping[str, Any],
        *,
        expected_version: Optional[int] = None,
    ) -> Record:
        ...

    def delivery_seen(self, delivery_id: str) -> bool:
        ...

    def record_delivery(self, delivery_id: str, topic: str) -> bool:
        ...


def matches_filters(fields: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    """Equality match, or membership for list-valued fields."""
    if not filters:
        return True
    for key, expected in filters.items():
        actual = fields.get(key)
        if isinstance(actual, (list, tuple)):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


def iterate_records(
    store: RecordStore,
    record_type: RecordType,
    *,
    filters: Optional[Mapping[str, Any]] = None,
    page_size: int = 250,
) -> Iterator[Record]:
    """Yield every record matching ``filters``, following cursors until exhausted."""
    cursor: Optional[str] = None
    while True:
        page = store.query(record_type, filters=filters, first=page_size, after=cursor)
        yield from page.records
        if not page.next_cursor or page.next_cursor == cursor:
            return
        cursor = page.next_cursor


__all__ = ["Record", "RecordPage", "RecordStore", "iterate_records", "matches_filters"]
