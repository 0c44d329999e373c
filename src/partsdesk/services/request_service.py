from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from psycopg import Connection

from ..config import AppConfig
from ..domain import REQUIRED_REQUEST_FIELDS, PaymentSession, SparePartRequest
from ..errors import MissingFieldError, NotConfiguredError, NotFoundError, ValidationError
from ..notifications import NotificationTemplateEngine, OutboundMessage, SimulatedTransport, Transport
from ..repositories.request_repo import SparePartRequestRepository
from .payment_service import PaymentSessionGenerator, breakdown

log = logging.getLogger(__name__)

PAYMENT_EVENTS: dict[str, str] = {
    "payment.completed": "Paid",
    "payment.failed": "Failed",
    "payment.expired": "Expired",
}

_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def new_request_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"REQ-{int(time.time() * 1000)}-{suffix}"


@dataclass(frozen=True)
class PaymentLinkResult:
    request: SparePartRequest
    session: PaymentSession
    delivered: bool


@dataclass(frozen=True)
class DispatchResult:
    request: SparePartRequest
    message: str
    delivered: bool


class RequestService:
    def __init__(
        self,
        *,
        request_repo: SparePartRequestRepository,
        payments: PaymentSessionGenerator,
        notifier: NotificationTemplateEngine,
    ) -> None:
        self.request_repo = request_repo
        self.payments = payments
        self.notifier = notifier

    def _require(self, conn: Connection, request_id: str) -> SparePartRequest:
        req = self.request_repo.get(conn, request_id)
        if req is None:
            raise NotFoundError(f"Request not found: {request_id}")
        return req

    def _require_notifier(self, notify: bool) -> None:
        if notify and not self.notifier.is_configured():
            raise NotConfiguredError("WhatsApp is not configured. Please configure your WhatsApp account first.")

    def _deliver(self, to: str, text: str, kind: str) -> bool:
        result = self.notifier.send_message(OutboundMessage(to=to, message=text, kind=kind))
        return result.success

    def get_request(self, conn: Connection, request_id: str) -> SparePartRequest:
        return self._require(conn, request_id)

    def submit_request(self, conn: Connection, data: Mapping[str, Any], *, notify: bool = False) -> SparePartRequest:
        for field in REQUIRED_REQUEST_FIELDS:
            if field == "request_id":
                continue
            value = data.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise MissingFieldError(field)
        self._require_notifier(notify)

        payload = dict(data)
        if not str(payload.get("request_id") or "").strip():
            payload["request_id"] = new_request_id()

        created = self.request_repo.create(conn, payload)
        if not notify:
            return created

        text = self.notifier.welcome_message(created.customer_name, created.part_name)
        if self._deliver(created.phone_number, text, "welcome"):
            return self.request_repo.update(conn, created.request_id, {"whatsapp_sent": True}) or created
        return created

    def update_request(self, conn: Connection, request_id: str, fields: Mapping[str, Any]) -> SparePartRequest:
        updated = self.request_repo.update(conn, request_id, fields)
        if updated is None:
            raise NotFoundError(f"Request not found: {request_id}")
        return updated

    def issue_payment_link(
        self,
        conn: Connection,
        request_id: str,
        *,
        parts_cost: Any,
        freight_cost: Any,
        notify: bool = False,
    ) -> PaymentLinkResult:
        costs = breakdown(parts_cost, freight_cost)
        self._require_notifier(notify)
        req = self._require(conn, request_id)

        session = self.payments.create_session(
            {
                "order_id": req.request_id,
                "customer_name": req.customer_name,
                "customer_email": req.email,
                "customer_phone": req.phone_number,
                "part_name": req.part_name,
                "parts_cost": costs.parts_cost,
                "freight_cost": costs.freight_cost,
            }
        )

        delivered = notify and self._deliver(req.phone_number, session.message, "payment")

        fields: dict[str, Any] = {
            "price": costs.total_cost,
            "parts_cost": costs.parts_cost,
            "freight_cost": costs.freight_cost,
            "payment_link": session.payment_url,
            "payment_status": "Pending",
        }
        if delivered:
            fields["whatsapp_sent"] = True
        updated = self.update_request(conn, request_id, fields)
        return PaymentLinkResult(request=updated, session=session, delivered=delivered)

    def apply_payment_event(self, conn: Connection, request_id: str, event: str) -> SparePartRequest:
        payment_status = PAYMENT_EVENTS.get(event)
        if payment_status is None:
            raise ValidationError(f"Unknown payment event: {event}")
        log.info("Payment event %s for request %s", event, request_id)
        return self.update_request(conn, request_id, {"payment_status": payment_status})

    def dispatch(
        self,
        conn: Connection,
        request_id: str,
        *,
        tracking_number: str,
        notify: bool = False,
    ) -> DispatchResult:
        tracking_number = str(tracking_number or "").strip()
        if not tracking_number:
            raise MissingFieldError("tracking_number")
        self._require_notifier(notify)
        req = self._require(conn, request_id)

        text = self.notifier.dispatch_message(req.customer_name, req.part_name, tracking_number, req.request_id)
        delivered = notify and self._deliver(req.phone_number, text, "dispatch")

        fields: dict[str, Any] = {
            "status": "Dispatched",
            "tracking_number": tracking_number,
            "dispatched_on": datetime.now(timezone.utc),
        }
        if delivered:
            fields["whatsapp_sent"] = True
        updated = self.update_request(conn, request_id, fields)
        return DispatchResult(request=updated, message=text, delivered=delivered)


def build_request_service(cfg: AppConfig, transport: Transport | None = None) -> RequestService:
    notifier = NotificationTemplateEngine(
        cfg.notifications,
        transport or SimulatedTransport(delay=cfg.messaging.simulated_delay),
    )
    payments = PaymentSessionGenerator(
        host=cfg.payments.host,
        notifier=notifier,
        expiry=timedelta(hours=cfg.payments.expiry_hours),
    )
    return RequestService(
        request_repo=SparePartRequestRepository(),
        payments=payments,
        notifier=notifier,
    )
