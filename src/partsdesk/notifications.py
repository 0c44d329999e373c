"""Customer notifications: template rendering and (simulated) delivery.

Three message kinds exist, each with a fixed placeholder set. When an active
``NotificationConfig`` is supplied its templates are used, otherwise the
built-in default prose is produced. Rendering is a total function; delivery is
delegated to a transport and requires a configured sender.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Literal, Mapping, Optional, Protocol
from urllib.parse import quote

from .config import NotificationConfig
from .domain import CURRENCY
from .errors import NotConfiguredError

log = logging.getLogger(__name__)

MessageKind = Literal["welcome", "payment", "dispatch"]

PLACEHOLDERS: dict[str, frozenset[str]] = {
    "welcome": frozenset({"customer_name", "part_name"}),
    "payment": frozenset({"customer_name", "part_name", "payment_url", "total_amount", "currency"}),
    "dispatch": frozenset({"customer_name", "part_name", "tracking_number", "order_id"}),
}

_TOKEN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def render_template(template: str, allowed: frozenset[str], values: Mapping[str, Any]) -> str:
    """Replace every ``{name}`` whose name is allowed and supplied; leave the rest verbatim."""

    def _sub(m: re.Match) -> str:
        name = m.group(1)
        if name in allowed and name in values:
            return str(values[name])
        return m.group(0)

    return _TOKEN.sub(_sub, template)


def format_amount(amount: Any) -> str:
    try:
        return f"{Decimal(str(amount)):.2f}"
    except (InvalidOperation, TypeError, ValueError):
        return str(amount)


@dataclass(frozen=True)
class OutboundMessage:
    to: str
    message: str
    kind: MessageKind


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: Optional[str] = None


class Transport(Protocol):
    def send(self, sender: str, message: OutboundMessage) -> DeliveryResult: ...


class SimulatedTransport:
    def __init__(self, delay: float = 1.0) -> None:
        self.delay = delay

    def send(self, sender: str, message: OutboundMessage) -> DeliveryResult:
        log.info("Sending %s message from %s to %s", message.kind, sender, message.to)
        if self.delay > 0:
            time.sleep(self.delay)
        return DeliveryResult(success=True)


def whatsapp_link(phone_number: str, message: str | None = None) -> str:
    digits = re.sub(r"\D", "", phone_number)
    if message:
        return f"https://wa.me/{digits}?text={quote(message, safe='')}"
    return f"https://wa.me/{digits}"


class NotificationTemplateEngine:
    def __init__(self, config: NotificationConfig | None = None, transport: Transport | None = None) -> None:
        self.config = config
        self.transport = transport or SimulatedTransport()

    def with_config(self, config: NotificationConfig | None) -> "NotificationTemplateEngine":
        return NotificationTemplateEngine(config, self.transport)

    @property
    def _active(self) -> NotificationConfig | None:
        if self.config is not None and self.config.is_active:
            return self.config
        return None

    def is_configured(self) -> bool:
        return self._active is not None and bool(self._active.phone_number)

    def welcome_message(self, customer_name: str, part_name: str) -> str:
        cfg = self._active
        if cfg is None:
            return (
                f"Hello {customer_name}! Thank you for your spare parts request for {part_name}. "
                "We will process it shortly."
            )
        return render_template(
            cfg.welcome_message,
            PLACEHOLDERS["welcome"],
            {"customer_name": customer_name, "part_name": part_name},
        )

    def payment_message(
        self,
        customer_name: str,
        part_name: str,
        payment_url: str,
        total_amount: Any,
        currency: str | None = None,
    ) -> str:
        currency = currency or CURRENCY
        amount = format_amount(total_amount)
        cfg = self._active
        if cfg is None:
            return (
                f"Hello {customer_name}! Your payment link is ready: {payment_url}\n\n"
                f"Order Details:\nPart: {part_name}\nTotal: {amount} {currency}\n\n"
                "Please complete your payment to proceed with your order."
            )
        return render_template(
            cfg.payment_message_template,
            PLACEHOLDERS["payment"],
            {
                "customer_name": customer_name,
                "part_name": part_name,
                "payment_url": payment_url,
                "total_amount": amount,
                "currency": currency,
            },
        )

    def dispatch_message(self, customer_name: str, part_name: str, tracking_number: str, order_id: str) -> str:
        cfg = self._active
        if cfg is None:
            return (
                f"Great news {customer_name}! Your order has been dispatched.\n\n"
                f"Tracking Number: {tracking_number}\nOrder ID: {order_id}\nPart: {part_name}\n"
                "Expected Delivery: 2-3 business days\n\n"
                "Thank you for choosing our service!"
            )
        return render_template(
            cfg.dispatch_message_template,
            PLACEHOLDERS["dispatch"],
            {
                "customer_name": customer_name,
                "part_name": part_name,
                "tracking_number": tracking_number,
                "order_id": order_id,
            },
        )

    def send_message(self, message: OutboundMessage) -> DeliveryResult:
        if not self.is_configured():
            raise NotConfiguredError(
                "WhatsApp is not configured. Please configure your WhatsApp account first."
            )
        result = self.transport.send(self._active.phone_number, message)
        if result.success:
            log.info("Delivered %s message to %s", message.kind, message.to)
        else:
            log.warning("Delivery of %s message to %s failed: %s", message.kind, message.to, result.error)
        return result
