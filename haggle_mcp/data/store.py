"""RecordStore protocol and SQLite implementation for HaggleHub records."""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from typing import (
    Any,
    Mapping,
    Protocol,
    runtime_checkable,
)


class StoreError(RuntimeError):
    """Persistence failure or misuse of the record store."""


# Column kinds drive (de)serialization: "json" round-trips lists/dicts,
# "bool" round-trips booleans stored as 0/1.
TABLES: dict[str, dict[str, str]] = {
    "vehicles": {
        "user_id": "text",
        "year": "int",
        "make": "text",
        "model": "text",
        "trim": "text",
        "vin": "text",
        "stock_number": "text",
        "mileage": "int",
        "condition": "text",
        "exterior_color": "text",
        "interior_color": "text",
        "listing_url": "text",
    },
    "dealers": {
        "user_id": "text",
        "name": "text",
        "contact_email": "text",
        "phone": "text",
        "address": "text",
        "website": "text",
        "sales_rep_name": "text",
        "notes": "text",
    },
    "deals": {
        "user_id": "text",
        "vehicle_id": "text",
        "dealer_id": "text",
        "status": "text",
        "purchase_type": "text",
        "asking_price": "real",
        "current_offer": "real",
        "target_price": "real",
        "final_price": "real",
        "otd_asking_price": "real",
        "otd_current_offer": "real",
        "otd_target_price": "real",
        "otd_price": "real",
        "negotiation_mode": "text",
        "buyer_zip_code": "text",
        "estimated_sales_tax": "real",
        "estimated_registration_fee": "real",
        "estimated_doc_fee": "real",
        "estimated_title_fee": "real",
        "estimated_total_fees": "real",
        "fee_calculation_method": "text",
        "manual_fees_override": "bool",
        "last_contact_date": "text",
        "quote_expires": "text",
        "notes": "text",
        "updated_at": "text",
    },
    "messages": {
        "deal_id": "text",
        "dealer_id": "text",
        "user_id": "text",
        "direction": "text",
        "channel": "text",
        "subject": "text",
        "content": "text",
        "sender_email": "text",
        "is_read": "bool",
        "contains_offer": "bool",
        "extracted_price": "real",
    },
    "zip_tax_rates": {
        "zip_code": "text",
        "state": "text",
        "city": "text",
        "sales_tax_rate": "real",
        "registration_base_fee": "real",
        "doc_fee_average": "real",
        "title_fee": "real",
    },
    "insights_cache": {
        "user_id": "text",
        "deal_ids": "json",
        "analysis_data": "json",
        "triggers": "json",
        "cache_expires_at": "text",
    },
    "insight_notifications": {
        "user_id": "text",
        "insight_cache_id": "text",
        "notification_type": "text",
        "title": "text",
        "message": "text",
        "insight_type": "text",
        "is_read": "bool",
    },
}

_ID_PREFIXES = {
    "vehicles": "veh",
    "dealers": "dlr",
    "deals": "deal",
    "messages": "msg",
    "zip_tax_rates": "zip",
    "insights_cache": "ins",
    "insight_notifications": "ntf",
}

_SQL_TYPES = {"text": "TEXT", "int": "INTEGER", "real": "REAL", "bool": "INTEGER", "json": "TEXT"}

_INDEXES = (
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_zip_tax_rates_zip ON zip_tax_rates(zip_code)",
    "CREATE INDEX IF NOT EXISTS idx_deals_user ON deals(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_deals_dealer ON deals(dealer_id)",
    "CREATE INDEX IF NOT EXISTS idx_vehicles_vin ON vehicles(vin)",
    "CREATE INDEX IF NOT EXISTS idx_messages_deal ON messages(deal_id)",
    "CREATE INDEX IF NOT EXISTS idx_insights_cache_user ON insights_cache(user_id, created_at)",
)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@runtime_checkable
class RecordStore(Protocol):
    """Minimal keyed record interface used by the negotiation core."""

    def list(self, table: str, order_by: str | None = None) -> list[dict[str, Any]]: ...
    def filter(
        self, table: str, criteria: Mapping[str, Any], order_by: str | None = None
    ) -> list[dict[str, Any]]: ...
    def get(self, table: str, record_id: str) -> dict[str, Any] | None: ...
    def create(self, table: str, data: Mapping[str, Any]) -> dict[str, Any]: ...
    def update(self, table: str, record_id: str, data: Mapping[str, Any]) -> dict[str, Any]: ...
    def delete(self, table: str, record_id: str) -> bool: ...


class SqliteRecordStore:
    """SQLite-backed record store with WAL mode, one table per record type."""

    def __init__(self, db_path: str = ":memory:") -> None:
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute("PRAGMA temp_store=MEMORY")
            self._create_schema()

    # ── Schema ─────────────────────────────────────────────────────

    def _create_schema(self) -> None:
        for table, columns in TABLES.items():
            column_sql = ",\n".join(
                f"    {name} {_SQL_TYPES[kind]}" for name, kind in columns.items()
            )
            self._conn.execute(
                f"CREATE TABLE IF NOT EXISTS {table} (\n"
                "    id TEXT PRIMARY KEY,\n"
                f"{column_sql},\n"
                "    created_at TEXT NOT NULL\n"
                ")"
            )
        for statement in _INDEXES:
            self._conn.execute(statement)
        self._conn.commit()

    # ── Helpers ────────────────────────────────────────────────────

    @staticmethod
    def _columns(table: str) -> dict[str, str]:
        try:
            return TABLES[table]
        except KeyError:
            raise StoreError(f"Unknown table '{table}'") from None

    def _encode(self, table: str, data: Mapping[str, Any]) -> dict[str, Any]:
        columns = self._columns(table)
        encoded: dict[str, Any] = {}
        for key, value in data.items():
            if key in ("id", "created_at"):
                continue
            kind = columns.get(key)
            if kind is None:
                raise StoreError(f"Unknown column '{key}' for table '{table}'")
            if value is None:
                encoded[key] = None
            elif kind == "json":
                encoded[key] = json.dumps(value)
            elif kind == "bool":
                encoded[key] = 1 if value else 0
            else:
                encoded[key] = value
        return encoded

    def _decode(self, table: str, row: sqlite3.Row) -> dict[str, Any]:
        columns = self._columns(table)
        record = dict(row)
        for key, kind in columns.items():
            value = record.get(key)
            if value is None:
                if kind == "bool":
                    record[key] = False
                continue
            if kind == "json":
                try:
                    record[key] = json.loads(value)
                except (TypeError, json.JSONDecodeError):
                    record[key] = None
            elif kind == "bool":
                record[key] = bool(value)
        return record

    def _order_clause(self, table: str, order_by: str | None) -> str:
        if not order_by:
            return " ORDER BY created_at ASC, rowid ASC"
        descending = order_by.startswith("-")
        column = order_by.lstrip("-")
        if column not in ("id", "created_at") and column not in self._columns(table):
            raise StoreError(f"Cannot order '{table}' by unknown column '{column}'")
        direction = "DESC" if descending else "ASC"
        return f" ORDER BY {column} {direction}, rowid {direction}"

    def _execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    # ── RecordStore API ────────────────────────────────────────────

    def list(self, table: str, order_by: str | None = None) -> list[dict[str, Any]]:
        self._columns(table)
        sql = f"SELECT * FROM {table}" + self._order_clause(table, order_by)
        with self._lock:
            rows = self._execute(sql).fetchall()
        return [self._decode(table, r) for r in rows]

    def filter(
        self, table: str, criteria: Mapping[str, Any], order_by: str | None = None
    ) -> list[dict[str, Any]]:
        """Equality match on every criterion (ANDed); ``None`` matches NULL."""
        columns = self._columns(table)
        clauses: list[str] = []
        params: list[Any] = []
        for key, value in criteria.items():
            if key != "id" and key not in columns:
                raise StoreError(f"Unknown column '{key}' for table '{table}'")
            if value is None:
                clauses.append(f"{key} IS NULL")
                continue
            clauses.append(f"{key} = ?")
            if columns.get(key) == "bool":
                params.append(1 if value else 0)
            elif columns.get(key) == "json":
                params.append(json.dumps(value))
            else:
                params.append(value)
        sql = f"SELECT * FROM {table}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += self._order_clause(table, order_by)
        with self._lock:
            rows = self._execute(sql, params).fetchall()
        return [self._decode(table, r) for r in rows]

    def get(self, table: str, record_id: str) -> dict[str, Any] | None:
        self._columns(table)
        with self._lock:
            row = self._execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return self._decode(table, row) if row is not None else None

    def create(self, table: str, data: Mapping[str, Any]) -> dict[str, Any]:
        encoded = self._encode(table, data)
        record_id = str(data.get("id") or f"{_ID_PREFIXES[table]}_{uuid.uuid4().hex[:12]}")
        encoded["id"] = record_id
        encoded["created_at"] = str(data.get("created_at") or _utc_now_iso())
        keys = list(encoded)
        sql = (
            f"INSERT INTO {table} ({', '.join(keys)}) "
            f"VALUES ({', '.join(['?'] * len(keys))})"
        )
        with self._lock:
            self._execute(sql, [encoded[k] for k in keys])
            self._conn.commit()
            created = self.get(table, record_id)
        assert created is not None
        return created

    def update(self, table: str, record_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        encoded = self._encode(table, data)
        with self._lock:
            if encoded:
                assignments = ", ".join(f"{k} = ?" for k in encoded)
                cursor = self._execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    [*encoded.values(), record_id],
                )
                self._conn.commit()
                if cursor.rowcount == 0:
                    raise StoreError(f"No {table} record with id '{record_id}'")
            updated = self.get(table, record_id)
        if updated is None:
            raise StoreError(f"No {table} record with id '{record_id}'")
        return updated

    def delete(self, table: str, record_id: str) -> bool:
        self._columns(table)
        with self._lock:
            cursor = self._execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            self._conn.commit()
        return cursor.rowcount > 0

    def count(self, table: str) -> int:
        self._columns(table)
        with self._lock:
            row = self._execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        return int(row[0])

    def close(self) -> None:
        with self._lock:
            self._conn.close()
