from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError


class ConfigError(ConfigurationError):
    pass


@dataclass(frozen=True)
class DbConfig:
    host: str = ""
    port: int = 5432
    name: str = ""
    user: str = ""
    password: str = ""
    sslmode: str = "disable"
    url: Optional[str] = None


@dataclass(frozen=True)
class PaymentConfig:
    host: str = "pay.example.com"
    currency: str = "SAR"
    expiry_hours: int = 24


@dataclass(frozen=True)
class MessagingConfig:
    simulated_delay: float = 1.0


@dataclass(frozen=True)
class NotificationConfig:
    phone_number: str
    display_name: str
    business_name: str
    welcome_message: str
    payment_message_template: str
    dispatch_message_template: str
    is_active: bool = True


@dataclass(frozen=True)
class AppConfig:
    name: str
    log_level: str
    log_file: Optional[str]
    api_token: Optional[str]
    db: DbConfig
    payments: PaymentConfig
    messaging: MessagingConfig
    notifications: Optional[NotificationConfig]


def _load_db(db: dict) -> DbConfig:
    url = os.environ.get("DATABASE_URL") or db.get("url")
    if url:
        return DbConfig(url=str(url))
    if not db:
        raise ConfigError("Storage connection string absent: set DATABASE_URL or the [db] table.")
    return DbConfig(
        host=str(db["host"]),
        port=int(db.get("port", 5432)),
        name=str(db["name"]),
        user=str(db["user"]),
        password=str(db["password"]),
        sslmode=str(db.get("sslmode", "disable")),
    )


def load_notification_config(data: dict | None) -> NotificationConfig | None:
    if not data:
        return None
    is_active = data.get("is_active", True)
    if not isinstance(is_active, bool):
        raise ConfigError(f"notifications.is_active must be true or false, got {is_active!r}")
    return NotificationConfig(
        phone_number=str(data.get("phone_number", "")),
        display_name=str(data.get("display_name", "")),
        business_name=str(data.get("business_name", "")),
        welcome_message=str(data["welcome_message"]),
        payment_message_template=str(data["payment_message_template"]),
        dispatch_message_template=str(data["dispatch_message_template"]),
        is_active=is_active,
    )


def load_config(path: str | Path) -> AppConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p.resolve()}")

    try:
        data = tomllib.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        raise ConfigError(f"Failed to read config TOML: {e}") from e

    try:
        app = data.get("app", {})
        payments = data.get("payments", {})
        messaging = data.get("messaging", {})
        return AppConfig(
            name=str(app.get("name", "PartsDesk")),
            log_level=str(app.get("log_level", "INFO")),
            log_file=app.get("log_file") or None,
            api_token=app.get("api_token") or None,
            db=_load_db(data.get("db", {})),
            payments=PaymentConfig(
                host=str(payments.get("host", "pay.example.com")),
                currency=str(payments.get("currency", "SAR")),
                expiry_hours=int(payments.get("expiry_hours", 24)),
            ),
            messaging=MessagingConfig(
                simulated_delay=float(messaging.get("simulated_delay", 1.0)),
            ),
            notifications=load_notification_config(data.get("notifications")),
        )
    except ConfigError:
        raise
    except KeyError as e:
        raise ConfigError(f"Missing config key: {e}") from e
    except Exception as e:
        raise ConfigError(f"Invalid config values: {e}") from e
