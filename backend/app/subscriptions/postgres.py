"""PostgreSQL persistence for engine records."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterable, Mapping, Optional
from uuid import uuid4

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .exceptions import ConcurrencyConflict, NotFoundError, StoreValidationError, TransientError
from .models import RecordType
from .store import Record, RecordPage

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


_RESOURCE_BY_TYPE = {
    RecordType.PRODUCT: "Product",
    RecordType.PRODUCT_VARIANT: "ProductVariant",
    RecordType.ORDER: "Order",
}

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS subscription_records (
    seq BIGSERIAL UNIQUE,
    ref TEXT PRIMARY KEY,
    record_type TEXT NOT NULL,
    fields JSONB NOT NULL DEFAULT '{}'::jsonb,
    version INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS subscription_records_type_seq_idx
    ON subscription_records (record_type, seq);
CREATE TABLE IF NOT EXISTS webhook_deliveries (
    delivery_id TEXT PRIMARY KEY,
    topic TEXT NOT NULL,
    processed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    try:
        connection = get_conn()
    except (psycopg2.OperationalError, psycopg2.InterfaceError) as exc:
        raise TransientError(f"Database unavailable: {exc}") from exc
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_record(row: dict) -> Record:
    return Record(
        ref=row["ref"],
        record_type=RecordType(row["record_type"]),
        data=row.get("fields") or {},
        version=int(row["version"]),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


class PostgresRecordStore:
    """Concrete record store persisting engine records as JSONB rows."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        try:
            with managed_connection(self._conn) as (connection, managed):
                cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
                try:
                    yield cursor
                    if managed:
                        connection.commit()
                except Exception:
                    if managed:
                        connection.rollback()
                    raise
                finally:
                    cursor.close()
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as exc:
            raise TransientError(f"Database unavailable: {exc}") from exc
        except psycopg2.DataError as exc:
            raise StoreValidationError(str(exc).strip()) from exc

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute(SCHEMA_SQL)

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
        clauses = ["record_type = %s", "seq > %s"]
        params: list = [record_type.value, int(after) if after else 0]
        for key, value in (filters or {}).items():
            # Scalar equality, or membership when the stored field is a list.
            clauses.append("((fields -> %s::text) = %s::jsonb OR (fields -> %s::text) @> %s::jsonb)")
            params.extend([key, psycopg2.extras.Json(value), key, psycopg2.extras.Json([value])])
        params.append(first + 1)

        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM subscription_records
                WHERE {' AND '.join(clauses)}
                ORDER BY seq ASC
                LIMIT %s
                """,
                params,
            )
            rows = cursor.fetchall() or []

        has_more = len(rows) > first
        rows = rows[:first]
        next_cursor = str(rows[-1]["seq"]) if has_more and rows else None
        return RecordPage(records=tuple(_row_to_record(row) for row in rows), next_cursor=next_cursor)

    def get(self, record_type: RecordType, ref: str) -> Optional[Record]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM subscription_records
                WHERE ref = %s AND record_type = %s
                LIMIT 1
                """,
                (str(ref), record_type.value),
            )
            row = cursor.fetchone()
            return _row_to_record(row) if row else None

    def create(self, record_type: RecordType, fields: Mapping[str, Any], *, ref: Optional[str] = None) -> Record:
        if not isinstance(record_type, RecordType):
            raise StoreValidationError(f"Unknown record type {record_type!r}")
        resource = _RESOURCE_BY_TYPE.get(record_type, "Metaobject")
        record_ref = str(ref) if ref else f"gid://shopify/{resource}/{uuid4().hex}"
        with self._cursor() as cursor:
            try:
                cursor.execute(
                    """
                    INSERT INTO subscription_records (ref, record_type, fields)
                    VALUES (%s, %s, %s)
                    RETURNING *
                    """,
                    (record_ref, record_type.value, psycopg2.extras.Json(dict(fields))),
                )
            except TypeError as exc:
                raise StoreValidationError(
                    f"Fields for {record_type.value} are not JSON serializable",
                    user_errors=[{"field": None, "message": str(exc)}],
                    record_type=record_type.value,
                ) from exc
            except psycopg2.IntegrityError as exc:
                raise StoreValidationError(
                    f"Record {record_ref} already exists",
                    user_errors=[{"field": "ref", "message": "taken"}],
                    record_type=record_type.value,
                ) from exc
            row = cursor.fetchone()
            if not row:
                raise RuntimeError(f"Failed to persist {record_type.value}")
            return _row_to_record(row)

    def update(
        self,
        record_type: RecordType,
        ref: str,
        fields: Mapping[str, Any],
        *,
        expected_version: Optional[int] = None,
    ) -> Record:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE subscription_records
                SET fields = fields || %s::jsonb,
                    version = version + 1,
                    updated_at = NOW()
                WHERE ref = %s
                  AND record_type = %s
                  AND (%s::integer IS NULL OR version = %s::integer)
                RETURNING *
                """,
                (
                    psycopg2.extras.Json(dict(fields)),
                    str(ref),
                    record_type.value,
                    expected_version,
                    expected_version,
                ),
            )
            row = cursor.fetchone()
            if row:
                return _row_to_record(row)

            cursor.execute(
                "SELECT version FROM subscription_records WHERE ref = %s AND record_type = %s",
                (str(ref), record_type.value),
            )
            existing = cursor.fetchone()
        if existing is None:
            raise NotFoundError(f"{record_type.value} {ref} not found")
        raise ConcurrencyConflict(
            f"{record_type.value} {ref} is at version {existing['version']}, expected {expected_version}"
        )

    def delivery_seen(self, delivery_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute("SELECT 1 FROM webhook_deliveries WHERE delivery_id = %s", (delivery_id,))
            return cursor.fetchone() is not None

    def record_delivery(self, delivery_id: str, topic: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO webhook_deliveries (delivery_id, topic)
                VALUES (%s, %s)
                ON CONFLICT (delivery_id) DO NOTHING
                """,
                (delivery_id, topic),
            )
            return cursor.rowcount > 0


__all__ = ["PostgresRecordStore", "SCHEMA_SQL", "managed_connection"]
