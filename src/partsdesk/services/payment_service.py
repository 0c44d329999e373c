from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from ..domain import CURRENCY, CostBreakdown, PaymentSession, parse_amount
from ..errors import MissingFieldError
from ..notifications import NotificationTemplateEngine

log = logging.getLogger(__name__)

SESSION_REQUIRED_FIELDS: tuple[str, ...] = (
    "order_id",
    "customer_name",
    "customer_email",
    "parts_cost",
    "freight_cost",
)


def breakdown(parts_cost: Any, freight_cost: Any) -> CostBreakdown:
    parts = parse_amount("parts_cost", parts_cost)
    freight = parse_amount("freight_cost", freight_cost)
    return CostBreakdown(
        parts_cost=parts,
        freight_cost=freight,
        total_cost=parts + freight,
        currency=CURRENCY,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_payment_id(now: datetime) -> str:
    return f"PAY-{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"


class PaymentSessionGenerator:
    def __init__(
        self,
        *,
        host: str,
        notifier: NotificationTemplateEngine,
        expiry: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.host = host
        self.notifier = notifier
        self.expiry = expiry
        self.clock = clock

    def payment_url(self, payment_id: str) -> str:
        return f"https://{self.host}/pay/{payment_id}"

    def create_session(self, order: Mapping[str, Any]) -> PaymentSession:
        for field in SESSION_REQUIRED_FIELDS:
            value = order.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise MissingFieldError(field)

        costs = breakdown(order["parts_cost"], order["freight_cost"])

        now = self.clock()
        payment_id = new_payment_id(now)
        url = self.payment_url(payment_id)
        message = self.notifier.payment_message(
            str(order["customer_name"]),
            str(order.get("part_name") or ""),
            url,
            costs.total_cost,
            costs.currency,
        )
        log.info("Issued payment session %s for order %s (%s %s)", payment_id, order["order_id"], costs.total_cost, costs.currency)
        return PaymentSession(
            payment_id=payment_id,
            payment_url=url,
            order_id=str(order["order_id"]),
            created_at=now,
            expires_at=now + self.expiry,
            breakdown=costs,
            message=message,
        )
