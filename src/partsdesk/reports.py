from __future__ import annotations

from psycopg import Connection

from .repositories.request_repo import SparePartRequestRepository


def dashboard_summary(conn: Connection, request_repo: SparePartRequestRepository) -> dict:
    summary = request_repo.stats(conn)
    summary["status_distribution"] = request_repo.status_distribution(conn)
    return summary
