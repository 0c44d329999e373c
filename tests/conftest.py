from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import NamedTuple

import pytest
from psycopg import errors as pg_errors

from partsdesk.config import AppConfig, DbConfig, MessagingConfig, NotificationConfig, PaymentConfig
from partsdesk.notifications import DeliveryResult, NotificationTemplateEngine, OutboundMessage
from partsdesk.repositories.request_repo import SparePartRequestRepository
from partsdesk.services.payment_service import PaymentSessionGenerator
from partsdesk.services.request_service import RequestService

sqlite3.register_adapter(Decimal, str)
sqlite3.register_adapter(datetime, lambda d: d.isoformat(" "))

SCHEMA = """
CREATE TABLE spare_part_requests (
  request_id       TEXT PRIMARY KEY,
  customer_name    TEXT NOT NULL,
  phone_number     TEXT NOT NULL,
  email            TEXT NOT NULL,
  vehicle_estamra  TEXT NOT NULL,
  vin_number       TEXT NOT NULL,
  part_name        TEXT NOT NULL,
  status           TEXT NOT NULL DEFAULT 'Pending',
  payment_status   TEXT NOT NULL DEFAULT 'Pending',
  price            NUMERIC,
  parts_cost       NUMERIC,
  freight_cost     NUMERIC,
  payment_link     TEXT,
  whatsapp_sent    BOOLEAN NOT NULL DEFAULT 0,
  notes            TEXT,
  tracking_number  TEXT,
  dispatched_on    TEXT,
  created_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now')),
  updated_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")


class _Column(NamedTuple):
    name: str


class SqliteCursor:
    def __init__(self, cur: sqlite3.Cursor) -> None:
        self._cur = cur

    @property
    def description(self) -> list[_Column]:
        return [_Column(d[0]) for d in self._cur.description or ()]

    @property
    def rowcount(self) -> int:
        return self._cur.rowcount

    def fetchone(self):
        return self._cur.fetchone()

    def fetchall(self):
        return self._cur.fetchall()


class SqliteConnection:
    """In-memory SQLite speaking the psycopg calling convention (``%s`` placeholders)."""

    def __init__(self) -> None:
        self._conn = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
        self._conn.create_function("now", 0, _now)
        self._conn.executescript(SCHEMA)
        self.queries: list[tuple[str, tuple]] = []

    def execute(self, query: str, params=()) -> SqliteCursor:
        params = tuple(params)
        self.queries.append((query, params))
        try:
            cur = self._conn.execute(query.replace("%s", "?"), params)
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise pg_errors.UniqueViolation(str(e)) from e
            raise
        return SqliteCursor(cur)

    def close(self) -> None:
        self._conn.close()


class SqliteDb:
    def __init__(self, conn: SqliteConnection) -> None:
        self.conn = conn

    @contextmanager
    def session(self):
        yield self.conn


class RecordingTransport:
    def __init__(self, success: bool = True) -> None:
        self.success = success
        self.sent: list[tuple[str, OutboundMessage]] = []

    def send(self, sender: str, message: OutboundMessage) -> DeliveryResult:
        self.sent.append((sender, message))
        if self.success:
            return DeliveryResult(success=True)
        return DeliveryResult(success=False, error="transport down")


def request_data(request_id: str = "REQ-1", **overrides) -> dict:
    data = {
        "request_id": request_id,
        "customer_name": "Ahmed Al-Rashid",
        "phone_number": "+966551234567",
        "email": "ahmed@example.com",
        "vehicle_estamra": "ABC123",
        "vin_number": "KMHXX00XXXX000001",
        "part_name": "Front brake pads",
    }
    data.update(overrides)
    return data


def insert_row(conn: SqliteConnection, request_id: str, created_at: str, **overrides) -> None:
    row = request_data(request_id, created_at=created_at, updated_at=created_at, **overrides)
    cols = ", ".join(row)
    conn.execute(
        f"INSERT INTO spare_part_requests({cols}) VALUES ({', '.join(['%s'] * len(row))});",
        tuple(row.values()),
    )


@pytest.fixture
def conn():
    c = SqliteConnection()
    yield c
    c.close()


@pytest.fixture
def repo() -> SparePartRequestRepository:
    return SparePartRequestRepository()


@pytest.fixture
def notification_config() -> NotificationConfig:
    return NotificationConfig(
        phone_number="+966500000000",
        display_name="Parts Desk",
        business_name="Spare Parts Center",
        welcome_message="Hi {customer_name}, we got your {part_name} request.",
        payment_message_template="{customer_name}: pay {total_amount} {currency} for {part_name} at {payment_url}",
        dispatch_message_template="{customer_name}, {part_name} shipped ({tracking_number}) for {order_id}",
        is_active=True,
    )


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def make_service(repo, transport):
    def _make(config: NotificationConfig | None = None) -> RequestService:
        notifier = NotificationTemplateEngine(config, transport)
        return RequestService(
            request_repo=repo,
            payments=PaymentSessionGenerator(host="pay.example.com", notifier=notifier),
            notifier=notifier,
        )

    return _make


@pytest.fixture
def app_config():
    def _make(notifications: NotificationConfig | None = None, api_token: str | None = None) -> AppConfig:
        return AppConfig(
            name="PartsDesk",
            log_level="INFO",
            log_file=None,
            api_token=api_token,
            db=DbConfig(url="postgresql://unused"),
            payments=PaymentConfig(),
            messaging=MessagingConfig(simulated_delay=0),
            notifications=notifications,
        )

    return _make
