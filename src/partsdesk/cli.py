from __future__ import annotations

import logging
from pathlib import Path

import psycopg

from .db import Db
from .errors import NotConfiguredError, NotFoundError, ValidationError
from .exporters import export_requests_csv
from .reports import dashboard_summary
from .repositories.request_filter import RequestFilter
from .services.request_service import RequestService

log = logging.getLogger(__name__)


def _prompt(msg: str) -> str:
    return input(msg).strip()


def _yes(msg: str) -> bool:
    return _prompt(msg).lower() in {"yes", "y", "1", "true"}


def run_cli(db: Db, service: RequestService) -> None:
    repo = service.request_repo

    while True:
        print("\n=== PartsDesk CLI ===")
        print("1) List / search requests")
        print("2) Submit request")
        print("3) Issue payment link")
        print("4) Record payment event")
        print("5) Dispatch request")
        print("6) Dashboard")
        print("7) Export requests CSV")
        print("0) Exit")

        choice = _prompt("> ")
        try:
            if choice == "0":
                return

            elif choice == "1":
                flt = RequestFilter(
                    search=_prompt("search (optional): ") or None,
                    status=_prompt("status (optional, 'all'): ") or None,
                    payment_status=_prompt("payment status (optional, 'all'): ") or None,
                    limit=50,
                )
                with db.session() as conn:
                    rows = repo.list(conn, flt)
                for r in rows:
                    print(
                        f"{r.request_id} {r.created_at:%Y-%m-%d %H:%M} {r.customer_name} "
                        f"part={r.part_name} status={r.status} payment={r.payment_status} price={r.price}"
                    )

            elif choice == "2":
                data = {
                    "request_id": _prompt("request_id (optional): ") or None,
                    "customer_name": _prompt("customer_name: "),
                    "phone_number": _prompt("phone_number: "),
                    "email": _prompt("email: "),
                    "vehicle_estamra": _prompt("vehicle_estamra: "),
                    "vin_number": _prompt("vin_number: "),
                    "part_name": _prompt("part_name: "),
                }
                notify = _yes("send welcome message? (y/n): ")
                with db.session() as conn:
                    created = service.submit_request(conn, data, notify=notify)
                print(f"Created request {created.request_id}")

            elif choice == "3":
                request_id = _prompt("request_id: ")
                parts_cost = float(_prompt("parts cost (SAR): "))
                freight_cost = float(_prompt("freight cost (SAR): "))
                notify = _yes("send payment message? (y/n): ")
                with db.session() as conn:
                    result = service.issue_payment_link(
                        conn,
                        request_id,
                        parts_cost=parts_cost,
                        freight_cost=freight_cost,
                        notify=notify,
                    )
                print(f"Payment link: {result.session.payment_url} (expires {result.session.expires_at:%Y-%m-%d %H:%M} UTC)")
                print(result.session.message)

            elif choice == "4":
                request_id = _prompt("request_id: ")
                event = _prompt("event (payment.completed/payment.failed/payment.expired): ")
                with db.session() as conn:
                    updated = service.apply_payment_event(conn, request_id, event)
                print(f"{updated.request_id} payment_status={updated.payment_status}")

            elif choice == "5":
                request_id = _prompt("request_id: ")
                tracking = _prompt("tracking number: ")
                notify = _yes("send dispatch message? (y/n): ")
                with db.session() as conn:
                    result = service.dispatch(conn, request_id, tracking_number=tracking, notify=notify)
                print(result.message)

            elif choice == "6":
                with db.session() as conn:
                    summary = dashboard_summary(conn, repo)
                for key, value in summary.items():
                    print(f"  {key}: {value}")

            elif choice == "7":
                path = Path(_prompt("output path (spare-parts-requests.csv): ") or "spare-parts-requests.csv")
                with db.session() as conn:
                    rows = repo.list(conn)
                with path.open("w", encoding="utf-8", newline="") as f:
                    n = export_requests_csv(rows, f)
                print(f"Exported {n} requests to {path}")

            else:
                print("Unknown choice.")

        except ValidationError as e:
            print(f"[INPUT ERROR] {e}")
        except NotFoundError as e:
            print(f"[NOT FOUND] {e}")
        except NotConfiguredError as e:
            print(f"[NOT CONFIGURED] {e}")
        except ValueError as e:
            print(f"[VALUE ERROR] {e}")
        except psycopg.Error as e:
            log.exception("Database error in CLI action %s", choice)
            print(f"[DB ERROR] {type(e).__name__}")
