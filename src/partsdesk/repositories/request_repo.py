from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from psycopg import Connection
from psycopg import errors as pg_errors

from ..domain import PAYMENT_STATUSES, REQUIRED_REQUEST_FIELDS, SparePartRequest, parse_amount
from ..errors import DuplicateKeyError, InvalidInputError, InvalidUpdateError, MissingFieldError
from .request_filter import RequestFilter, build_pagination, build_where

log = logging.getLogger(__name__)

TABLE = "spare_part_requests"

UPDATABLE_COLUMNS: frozenset[str] = frozenset(
    {
        "customer_name",
        "phone_number",
        "email",
        "vehicle_estamra",
        "vin_number",
        "part_name",
        "status",
        "payment_status",
        "price",
        "parts_cost",
        "freight_cost",
        "payment_link",
        "whatsapp_sent",
        "notes",
        "tracking_number",
        "dispatched_on",
    }
)

OPTIONAL_CREATE_COLUMNS: tuple[str, ...] = (
    "status",
    "payment_status",
    "price",
    "parts_cost",
    "freight_cost",
    "payment_link",
    "whatsapp_sent",
    "notes",
)

MONEY_COLUMNS = frozenset({"price", "parts_cost", "freight_cost"})
NULLABLE_TEXT_COLUMNS = frozenset({"payment_link", "notes", "tracking_number"})


def _clean(column: str, value: Any) -> Any:
    """Check one column value before it is bound; returns the value to store."""
    if column in MONEY_COLUMNS:
        return None if value is None else parse_amount(column, value)
    if column == "payment_status":
        if value not in PAYMENT_STATUSES:
            raise InvalidInputError(f"Unknown payment status: {value}")
        return value
    if column == "whatsapp_sent":
        if not isinstance(value, bool):
            raise InvalidInputError("whatsapp_sent must be true or false")
        return value
    if column == "dispatched_on":
        if value is None or isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value)
            except ValueError as e:
                raise InvalidInputError("dispatched_on must be an ISO 8601 timestamp") from e
        raise InvalidInputError("dispatched_on must be an ISO 8601 timestamp")
    if column in NULLABLE_TEXT_COLUMNS:
        if value is not None and not isinstance(value, str):
            raise InvalidInputError(f"{column} must be a string")
        return value
    # customer and order facts, status
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{column} must be a non-empty string")
    return value.strip()

def _rows(cur) -> list[dict]:
    cols = [d.name for d in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]


def _one(cur) -> dict | None:
    row = cur.fetchone()
    if not row:
        return None
    cols = [d.name for d in cur.description]
    return dict(zip(cols, row))


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0))


class SparePartRequestRepository:
    def list(self, conn: Connection, flt: RequestFilter | None = None) -> list[SparePartRequest]:
        flt = flt or RequestFilter()
        where, params = build_where(flt)
        page, page_params = build_pagination(flt)
        cur = conn.execute(
            f"""
            SELECT * FROM {TABLE}
            {where}
            ORDER BY created_at DESC, request_id DESC
            {page};
            """,
            (*params, *page_params),
        )
        return [SparePartRequest.from_row(r) for r in _rows(cur)]

    def get(self, conn: Connection, request_id: str) -> SparePartRequest | None:
        cur = conn.execute(f"SELECT * FROM {TABLE} WHERE request_id = %s;", (request_id,))
        row = _one(cur)
        return SparePartRequest.from_row(row) if row else None

    def create(self, conn: Connection, data: Mapping[str, Any]) -> SparePartRequest:
        for field in REQUIRED_REQUEST_FIELDS:
            value = data.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise MissingFieldError(field)

        columns = list(REQUIRED_REQUEST_FIELDS)
        values = [str(data[c]).strip() for c in REQUIRED_REQUEST_FIELDS]
        for c in OPTIONAL_CREATE_COLUMNS:
            if data.get(c) is not None:
                columns.append(c)
                values.append(_clean(c, data[c]))

        try:
            cur = conn.execute(
                f"""
                INSERT INTO {TABLE}({", ".join(columns)})
                VALUES ({", ".join(["%s"] * len(columns))})
                RETURNING *;
                """,
                tuple(values),
            )
        except pg_errors.UniqueViolation as e:
            raise DuplicateKeyError(f"Request already exists: {data['request_id']}") from e

        created = SparePartRequest.from_row(_one(cur))
        log.info("Created request %s", created.request_id)
        return created

    def update(self, conn: Connection, request_id: str, fields: Mapping[str, Any]) -> SparePartRequest | None:
        if not fields:
            raise InvalidUpdateError("No valid fields to update")
        invalid = sorted(set(fields) - UPDATABLE_COLUMNS)
        if invalid:
            raise InvalidUpdateError(f"Fields cannot be updated: {', '.join(invalid)}")
        cleaned = {c: _clean(c, v) for c, v in fields.items()}

        columns = sorted(fields)
        assignments = ", ".join(f"{c} = %s" for c in columns)
        cur = conn.execute(
            f"""
            UPDATE {TABLE}
            SET {assignments}, updated_at = now()
            WHERE request_id = %s
            RETURNING *;
            """,
            (*(cleaned[c] for c in columns), request_id),
        )
        row = _one(cur)
        if row is None:
            return None
        log.info("Updated request %s: %s", request_id, ", ".join(columns))
        return SparePartRequest.from_row(row)

    def stats(self, conn: Connection) -> dict:
        cur = conn.execute(
            f"""
            SELECT
              COUNT(*) AS total_requests,
              COUNT(CASE WHEN status = 'Pending' THEN 1 END) AS pending_requests,
              COUNT(CASE WHEN payment_status = 'Pending' THEN 1 END) AS pending_payments,
              COUNT(CASE WHEN status = 'Dispatched' THEN 1 END) AS dispatched_orders,
              COALESCE(SUM(price), 0) AS total_revenue,
              COALESCE(SUM(parts_cost), 0) AS parts_revenue,
              COALESCE(SUM(freight_cost), 0) AS freight_revenue,
              COALESCE(AVG(CASE WHEN price > 0 THEN price END), 0) AS average_order_value
            FROM {TABLE};
            """
        )
        row = _one(cur)
        return {
            "total_requests": int(row["total_requests"]),
            "pending_requests": int(row["pending_requests"]),
            "pending_payments": int(row["pending_payments"]),
            "dispatched_orders": int(row["dispatched_orders"]),
            "total_revenue": _money(row["total_revenue"]),
            "parts_revenue": _money(row["parts_revenue"]),
            "freight_revenue": _money(row["freight_revenue"]),
            "average_order_value": _money(row["average_order_value"]),
        }

    def status_distribution(self, conn: Connection) -> dict[str, int]:
        cur = conn.execute(
            f"""
            SELECT status, COUNT(*) AS count
            FROM {TABLE}
            GROUP BY status;
            """
        )
        out: dict[str, int] = {}
        for r in _rows(cur):
            key = str(r["status"]).lower().replace(" ", "_")
            out[key] = out.get(key, 0) + int(r["count"])
        return out
