from __future__ import annotations

import csv
from typing import Iterable, TextIO

from .domain import SparePartRequest

CSV_COLUMNS: tuple[tuple[str, str], ...] = (
    ("request_id", "Request ID"),
    ("created_at", "Date"),
    ("customer_name", "Customer"),
    ("phone_number", "Phone"),
    ("email", "Email"),
    ("vehicle_estamra", "Estamra"),
    ("vin_number", "VIN"),
    ("part_name", "Part"),
    ("status", "Status"),
    ("price", "Price"),
    ("parts_cost", "Parts Cost"),
    ("freight_cost", "Freight Cost"),
    ("payment_status", "Payment Status"),
    ("tracking_number", "Tracking Number"),
)


def export_requests_csv(rows: Iterable[SparePartRequest], out: TextIO) -> int:
    writer = csv.writer(out)
    writer.writerow([label for _, label in CSV_COLUMNS])
    count = 0
    for r in rows:
        values = []
        for attr, _ in CSV_COLUMNS:
            value = getattr(r, attr)
            if attr == "created_at":
                value = value.date().isoformat()
            values.append("" if value is None else value)
        writer.writerow(values)
        count += 1
    return count
