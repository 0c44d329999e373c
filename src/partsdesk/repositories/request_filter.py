from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from ..errors import ValidationError

ALL = "all"

SEARCH_COLUMNS: tuple[str, ...] = (
    "customer_name",
    "vin_number",
    "part_name",
    "request_id",
    "phone_number",
)

# (sql fragment, positional values); fragments only ever name whitelisted columns
Predicate = tuple[str, tuple]


@dataclass(frozen=True)
class RequestFilter:
    search: Optional[str] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    @classmethod
    def from_args(cls, args: Mapping[str, str]) -> "RequestFilter":
        return cls(
            search=(args.get("search") or "").strip() or None,
            status=args.get("status") or None,
            payment_status=args.get("payment_status") or None,
            limit=_parse_int("limit", args.get("limit")),
            offset=_parse_int("offset", args.get("offset")),
        )


def _parse_int(name: str, raw: str | None) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be an integer") from e


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_predicate(search: str | None) -> Predicate | None:
    if not search:
        return None
    pattern = f"%{_escape_like(search.lower())}%"
    clauses = " OR ".join(f"LOWER({col}) LIKE %s ESCAPE '\\'" for col in SEARCH_COLUMNS)
    return f"({clauses})", (pattern,) * len(SEARCH_COLUMNS)


def equals_predicate(column: str, value: str | None) -> Predicate | None:
    if value is None or value == "" or value == ALL:
        return None
    return f"{column} = %s", (value,)


def build_where(flt: RequestFilter) -> tuple[str, list]:
    predicates = [
        p
        for p in (
            search_predicate(flt.search),
            equals_predicate("status", flt.status),
            equals_predicate("payment_status", flt.payment_status),
        )
        if p is not None
    ]
    if not predicates:
        return "", []
    sql = "WHERE " + " AND ".join(frag for frag, _ in predicates)
    params = [v for _, values in predicates for v in values]
    return sql, params


def build_pagination(flt: RequestFilter) -> tuple[str, list]:
    parts: list[str] = []
    params: list = []
    for name, value in (("LIMIT", flt.limit), ("OFFSET", flt.offset)):
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"{name.lower()} must be a non-negative integer")
        parts.append(f"{name} %s")
        params.append(value)
    return " ".join(parts), params
