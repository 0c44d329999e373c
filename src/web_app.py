from __future__ import annotations

import hmac
import io
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import psycopg
from flask import Blueprint, Flask, Response, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from partsdesk.config import AppConfig, ConfigError, load_config
from partsdesk.db import Db
from partsdesk.errors import (
    AuthenticationError,
    ConfigurationError,
    MissingFieldError,
    ServiceError,
    StorageError,
    ValidationError,
)
from partsdesk.exporters import export_requests_csv
from partsdesk.logger import setup_logging
from partsdesk.notifications import PLACEHOLDERS, OutboundMessage, whatsapp_link
from partsdesk.reports import dashboard_summary
from partsdesk.repositories.request_filter import RequestFilter
from partsdesk.services.payment_service import breakdown
from partsdesk.services.request_service import RequestService, build_request_service

log = logging.getLogger(__name__)

GENERIC_ERROR = "Internal server error"

api = Blueprint("api", __name__, url_prefix="/api")


@dataclass(frozen=True)
class Runtime:
    db: Db
    service: RequestService
    api_token: str | None = None


def _runtime() -> Runtime:
    return current_app.extensions["partsdesk"]


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def _ok(data: Any = None, message: str | None = None, status: int = 200):
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return jsonify(body), status


def _fail(error: str, status: int):
    return jsonify({"success": False, "error": error}), status


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


@api.before_request
def check_token():
    token = _runtime().api_token
    if not token or request.endpoint == "api.health":
        return None
    supplied = request.headers.get("Authorization", "")
    if not hmac.compare_digest(supplied, f"Bearer {token}"):
        raise AuthenticationError("Invalid or missing API token")
    return None


@api.route("/health")
def health():
    return _ok({"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()})


@api.route("/requests", methods=["GET"])
def requests_list():
    rt = _runtime()
    flt = RequestFilter.from_args(request.args)
    with rt.db.session() as conn:
        rows = rt.service.request_repo.list(conn, flt)
    body = {
        "success": True,
        "data": [r.to_dict() for r in rows],
        "pagination": {"limit": flt.limit, "offset": flt.offset or 0, "count": len(rows)},
    }
    return jsonify(body)


@api.route("/requests", methods=["POST"])
def requests_create():
    rt = _runtime()
    data = _body()
    notify = _flag(data.pop("notify", False))
    with rt.db.session() as conn:
        created = rt.service.submit_request(conn, data, notify=notify)
    return _ok(created.to_dict(), "Request submitted successfully", 201)


@api.route("/requests/<request_id>", methods=["GET"])
def requests_get(request_id: str):
    rt = _runtime()
    with rt.db.session() as conn:
        req = rt.service.get_request(conn, request_id)
    return _ok(req.to_dict())


@api.route("/requests/<request_id>", methods=["PATCH"])
def requests_update(request_id: str):
    rt = _runtime()
    data = _body()
    with rt.db.session() as conn:
        updated = rt.service.update_request(conn, request_id, data)
    return _ok(updated.to_dict(), "Request updated successfully")


@api.route("/requests/<request_id>/payment-link", methods=["POST"])
def requests_payment_link(request_id: str):
    rt = _runtime()
    data = _body()
    with rt.db.session() as conn:
        result = rt.service.issue_payment_link(
            conn,
            request_id,
            parts_cost=data.get("parts_cost"),
            freight_cost=data.get("freight_cost"),
            notify=_flag(data.get("notify", False)),
        )
    return _ok(
        {
            "request": result.request.to_dict(),
            "payment": result.session.to_dict(),
            "whatsapp_sent": result.delivered,
            "whatsapp_link": whatsapp_link(result.request.phone_number, result.session.message),
        },
        "Payment link generated successfully",
    )


@api.route("/requests/<request_id>/dispatch", methods=["POST"])
def requests_dispatch(request_id: str):
    rt = _runtime()
    data = _body()
    with rt.db.session() as conn:
        result = rt.service.dispatch(
            conn,
            request_id,
            tracking_number=data.get("tracking_number"),
            notify=_flag(data.get("notify", False)),
        )
    return _ok(
        {
            "request": result.request.to_dict(),
            "message": result.message,
            "whatsapp_sent": result.delivered,
        },
        "Request dispatched",
    )


@api.route("/dashboard/stats")
def dashboard_stats():
    rt = _runtime()
    with rt.db.session() as conn:
        summary = dashboard_summary(conn, rt.service.request_repo)
    return _ok(_jsonable(summary))


@api.route("/payments/breakdown", methods=["POST"])
def payments_breakdown():
    data = _body()
    return _ok(breakdown(data.get("parts_cost"), data.get("freight_cost")).to_dict())


@api.route("/payments/create", methods=["POST"])
def payments_create():
    session = _runtime().service.payments.create_session(_body())
    return _ok(session.to_dict())


@api.route("/payments/webhook", methods=["POST"])
def payments_webhook():
    rt = _runtime()
    data = _body()
    order_id = data.get("order_id")
    if not order_id:
        raise MissingFieldError("order_id")
    with rt.db.session() as conn:
        updated = rt.service.apply_payment_event(conn, str(order_id), str(data.get("event") or ""))
    return _ok(updated.to_dict(), "Webhook processed successfully")


@api.route("/whatsapp/send", methods=["POST"])
def whatsapp_send():
    data = _body()
    for field in ("to", "message", "type"):
        if not data.get(field):
            raise MissingFieldError(field)
    if data["type"] not in PLACEHOLDERS:
        raise ValidationError("Invalid message type")
    result = _runtime().service.notifier.send_message(
        OutboundMessage(to=str(data["to"]), message=str(data["message"]), kind=data["type"])
    )
    if not result.success:
        return _fail(result.error or "Failed to send WhatsApp message", 500)
    return _ok(message="WhatsApp message sent successfully")


@api.route("/exports/csv")
def exports_csv():
    rt = _runtime()
    flt = RequestFilter.from_args(request.args)
    with rt.db.session() as conn:
        rows = rt.service.request_repo.list(conn, flt)
    buf = io.StringIO()
    export_requests_csv(rows, buf)
    return Response(
        buf.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": 'attachment; filename="spare-parts-requests.csv"'},
    )


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ServiceError)
    def service_error(e: ServiceError):
        if isinstance(e, StorageError):
            log.exception("Storage failure on %s %s", request.method, request.path)
            return _fail(GENERIC_ERROR, e.http_status)
        if isinstance(e, ConfigurationError):
            log.error("Configuration error on %s %s: %s", request.method, request.path, e)
        return _fail(str(e), e.http_status)

    @app.errorhandler(psycopg.Error)
    def storage_error(e: psycopg.Error):
        log.exception("Database error on %s %s", request.method, request.path)
        return _fail(GENERIC_ERROR, 500)

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        if e.code == 404:
            return _fail("API endpoint not found", 404)
        return _fail(e.description or e.name, e.code or 500)

    @app.errorhandler(Exception)
    def unexpected_error(e: Exception):
        log.exception("Unexpected error on %s %s", request.method, request.path)
        return _fail(GENERIC_ERROR, 500)


def create_app(cfg: AppConfig, *, db: Db | None = None, service: RequestService | None = None) -> Flask:
    app = Flask(__name__)
    app.extensions["partsdesk"] = Runtime(
        db=db or Db(cfg.db),
        service=service or build_request_service(cfg),
        api_token=cfg.api_token,
    )
    app.register_blueprint(api)
    register_error_handlers(app)
    return app


if __name__ == "__main__":
    try:
        cfg = load_config("config.toml")
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        raise SystemExit(2)
    setup_logging(cfg.log_level, cfg.log_file)
    create_app(cfg).run(debug=True, host="127.0.0.1", port=5000)
