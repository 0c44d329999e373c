from __future__ import annotations

import math
from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional, get_args

from .errors import InvalidInputError

CURRENCY = "SAR"

RequestStatus = Literal[
    "Pending",
    "Available",
    "Not Available",
    "Payment Sent",
    "Paid",
    "Processing",
    "Dispatched",
    "Cancelled",
]
PaymentStatus = Literal["Pending", "Paid", "Failed", "Expired"]

PAYMENT_STATUSES: tuple[str, ...] = get_args(PaymentStatus)

REQUIRED_REQUEST_FIELDS: tuple[str, ...] = (
    "request_id",
    "customer_name",
    "phone_number",
    "email",
    "vehicle_estamra",
    "vin_number",
    "part_name",
)


def parse_amount(name: str, value: Any) -> Decimal:
    """Accept a finite, non-negative int, float or Decimal and return it as a Decimal."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise InvalidInputError(f"{name} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidInputError(f"{name} must be a finite number")
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    if not amount.is_finite():
        raise InvalidInputError(f"{name} must be a finite number")
    if amount < 0:
        raise InvalidInputError(f"{name} cannot be negative")
    return amount


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "t", "yes"}
    return bool(value)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class SparePartRequest:
    request_id: str
    customer_name: str
    phone_number: str
    email: str
    vehicle_estamra: str
    vin_number: str
    part_name: str
    status: RequestStatus
    payment_status: PaymentStatus
    price: Optional[Decimal]
    parts_cost: Optional[Decimal]
    freight_cost: Optional[Decimal]
    payment_link: Optional[str]
    whatsapp_sent: bool
    notes: Optional[str]
    tracking_number: Optional[str]
    dispatched_on: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: dict) -> "SparePartRequest":
        """Build a request from a column->value row as returned by the store."""
        return cls(
            request_id=row["request_id"],
            customer_name=row["customer_name"],
            phone_number=row["phone_number"],
            email=row["email"],
            vehicle_estamra=row["vehicle_estamra"],
            vin_number=row["vin_number"],
            part_name=row["part_name"],
            status=row["status"],
            payment_status=row["payment_status"],
            price=_as_decimal(row.get("price")),
            parts_cost=_as_decimal(row.get("parts_cost")),
            freight_cost=_as_decimal(row.get("freight_cost")),
            payment_link=row.get("payment_link"),
            whatsapp_sent=_as_bool(row.get("whatsapp_sent", False)),
            notes=row.get("notes"),
            tracking_number=row.get("tracking_number"),
            dispatched_on=_as_datetime(row.get("dispatched_on")),
            created_at=_as_datetime(row["created_at"]),
            updated_at=_as_datetime(row["updated_at"]),
        )

    def to_dict(self) -> dict:
        return {f.name: _jsonable(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class CostBreakdown:
    parts_cost: Decimal
    freight_cost: Decimal
    total_cost: Decimal
    currency: str = CURRENCY

    def to_dict(self) -> dict:
        return {
            "parts_cost": float(self.parts_cost),
            "freight_cost": float(self.freight_cost),
            "total_cost": float(self.total_cost),
            "currency": self.currency,
        }


@dataclass(frozen=True)
class PaymentSession:
    payment_id: str
    payment_url: str
    order_id: str
    created_at: datetime
    expires_at: datetime
    breakdown: CostBreakdown
    message: str

    def to_dict(self) -> dict:
        return {
            "payment_id": self.payment_id,
            "payment_url": self.payment_url,
            "order_id": self.order_id,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "breakdown": self.breakdown.to_dict(),
            "whatsapp_message": self.message,
        }
