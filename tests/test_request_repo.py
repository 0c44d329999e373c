from datetime import datetime
from decimal import Decimal

import pytest

from conftest import insert_row, request_data
from partsdesk.errors import DuplicateKeyError, InvalidInputError, InvalidUpdateError, MissingFieldError
from partsdesk.repositories.request_filter import RequestFilter


@pytest.fixture
def seeded(conn):
    insert_row(conn, "REQ-2024-001", "2024-01-15 10:30:00", customer_name="Ahmed Al-Rashid",
               phone_number="+966551234567", part_name="Front brake pads for Hyundai Sonata 2022")
    insert_row(conn, "REQ-2024-002", "2024-01-15 14:20:00", customer_name="Fatima Al-Zahra",
               phone_number="+966559876543", vin_number="KMHXX00XXXX000002",
               part_name="Side mirror assembly - passenger side", status="Available",
               price=450, parts_cost=380, freight_cost=70)
    insert_row(conn, "REQ-2024-003", "2024-01-16 09:00:00", customer_name="Omar Haddad",
               phone_number="+966500001111", part_name="Oil filter", status="Dispatched",
               payment_status="Paid", price=120, parts_cost=100, freight_cost=20)
    return conn


def _ids(rows):
    return [r.request_id for r in rows]


def test_create_applies_defaults(conn, repo):
    created = repo.create(conn, request_data("REQ-1"))
    assert created.request_id == "REQ-1"
    assert created.status == "Pending"
    assert created.payment_status == "Pending"
    assert created.whatsapp_sent is False
    assert created.price is None and created.parts_cost is None and created.freight_cost is None
    assert created.payment_link is None
    assert created.created_at is not None
    assert created.updated_at >= created.created_at


@pytest.mark.parametrize(
    "field", ["request_id", "customer_name", "phone_number", "email", "vehicle_estamra", "vin_number", "part_name"]
)
def test_create_requires_fields(conn, repo, field):
    data = request_data("REQ-1")
    del data[field]
    with pytest.raises(MissingFieldError):
        repo.create(conn, data)
    assert conn.queries == []


def test_create_rejects_duplicate_id(conn, repo):
    repo.create(conn, request_data("REQ-1"))
    with pytest.raises(DuplicateKeyError):
        repo.create(conn, request_data("REQ-1", customer_name="Someone Else"))


def test_get_returns_none_for_unknown(conn, repo):
    assert repo.get(conn, "nope") is None


def test_list_orders_newest_first(seeded, repo):
    rows = repo.list(seeded)
    assert _ids(rows) == ["REQ-2024-003", "REQ-2024-002", "REQ-2024-001"]
    stamps = [r.created_at for r in rows]
    assert stamps == sorted(stamps, reverse=True)


def test_list_status_all_is_no_filter(seeded, repo):
    assert _ids(repo.list(seeded, RequestFilter(status="all"))) == _ids(repo.list(seeded, RequestFilter()))
    assert _ids(repo.list(seeded, RequestFilter(payment_status="all"))) == _ids(repo.list(seeded))


def test_list_filters_by_status_and_payment_status(seeded, repo):
    assert _ids(repo.list(seeded, RequestFilter(status="Available"))) == ["REQ-2024-002"]
    assert _ids(repo.list(seeded, RequestFilter(payment_status="Pending"))) == ["REQ-2024-002", "REQ-2024-001"]
    assert repo.list(seeded, RequestFilter(status="Available", payment_status="Paid")) == []


@pytest.mark.parametrize(
    "search, expected",
    [
        ("fatima", ["REQ-2024-002"]),
        ("MIRROR", ["REQ-2024-002"]),
        ("000002", ["REQ-2024-002"]),
        ("2024-001", ["REQ-2024-001"]),
        ("500001111", ["REQ-2024-003"]),
        ("al-", ["REQ-2024-002", "REQ-2024-001"]),
        ("no such thing", []),
    ],
)
def test_list_search_is_case_insensitive_across_fields(seeded, repo, search, expected):
    assert _ids(repo.list(seeded, RequestFilter(search=search))) == expected


def test_list_search_wildcards_match_literally(seeded, repo):
    assert repo.list(seeded, RequestFilter(search="%")) == []
    assert repo.list(seeded, RequestFilter(search="_")) == []


def test_list_pagination_after_ordering(seeded, repo):
    assert _ids(repo.list(seeded, RequestFilter(limit=2))) == ["REQ-2024-003", "REQ-2024-002"]
    assert _ids(repo.list(seeded, RequestFilter(limit=2, offset=2))) == ["REQ-2024-001"]


def test_update_requires_fields(seeded, repo):
    with pytest.raises(InvalidUpdateError):
        repo.update(seeded, "REQ-2024-001", {})


@pytest.mark.parametrize("field", ["request_id", "created_at", "updated_at", "bogus; DROP TABLE x"])
def test_update_rejects_protected_or_unknown_fields(seeded, repo, field):
    with pytest.raises(InvalidUpdateError):
        repo.update(seeded, "REQ-2024-001", {field: "x"})


def test_update_changes_only_target_field(seeded, repo):
    before = repo.get(seeded, "REQ-2024-002")
    after = repo.update(seeded, "REQ-2024-002", {"status": "Dispatched"})

    assert after.status == "Dispatched"
    assert after.created_at == before.created_at
    assert after.updated_at > before.updated_at
    unchanged = {k: v for k, v in before.to_dict().items() if k not in ("status", "updated_at")}
    assert {k: v for k, v in after.to_dict().items() if k not in ("status", "updated_at")} == unchanged


def test_update_unknown_request_returns_none(seeded, repo):
    assert repo.update(seeded, "REQ-404", {"status": "Dispatched"}) is None


def test_update_money_and_flags(seeded, repo):
    updated = repo.update(
        seeded,
        "REQ-2024-001",
        {"price": Decimal("300.50"), "parts_cost": Decimal("250.50"), "freight_cost": 50, "whatsapp_sent": True},
    )
    assert updated.price == Decimal("300.5")
    assert updated.parts_cost == Decimal("250.5")
    assert updated.freight_cost == Decimal("50")
    assert updated.whatsapp_sent is True


def test_stats(seeded, repo):
    stats = repo.stats(seeded)
    assert stats["total_requests"] == 3
    assert stats["pending_requests"] == 1
    assert stats["pending_payments"] == 2
    assert stats["dispatched_orders"] == 1
    assert stats["total_revenue"] == Decimal("570")
    assert stats["parts_revenue"] == Decimal("480")
    assert stats["freight_revenue"] == Decimal("90")
    assert stats["average_order_value"] == Decimal("285")


def test_stats_on_empty_store(conn, repo):
    stats = repo.stats(conn)
    assert stats["total_requests"] == 0
    assert stats["total_revenue"] == 0
    assert stats["average_order_value"] == 0


def test_average_ignores_zero_prices(seeded, repo):
    repo.update(seeded, "REQ-2024-001", {"price": 0})
    assert repo.stats(seeded)["average_order_value"] == Decimal("285")


def test_status_distribution_normalizes_labels(seeded, repo):
    repo.update(seeded, "REQ-2024-001", {"status": "Not Available"})
    insert_row(seeded, "REQ-2024-004", "2024-01-17 08:00:00", status="not available")
    assert repo.status_distribution(seeded) == {"not_available": 2, "available": 1, "dispatched": 1}


@pytest.mark.parametrize(
    "fields",
    [
        {"price": -50, "parts_cost": -40},
        {"price": "abc"},
        {"freight_cost": float("nan")},
        {"parts_cost": True},
        {"payment_status": "Refunded"},
        {"whatsapp_sent": "yes"},
        {"dispatched_on": "tomorrow"},
        {"dispatched_on": 12},
        {"status": "   "},
        {"customer_name": None},
        {"notes": 42},
    ],
)
def test_update_rejects_bad_values_before_writing(seeded, repo, fields):
    issued = len(seeded.queries)
    with pytest.raises(InvalidInputError):
        repo.update(seeded, "REQ-2024-002", fields)
    assert len(seeded.queries) == issued
    assert repo.stats(seeded)["total_revenue"] == Decimal("570")


def test_update_clears_money_with_none(seeded, repo):
    assert repo.update(seeded, "REQ-2024-002", {"price": None}).price is None


def test_update_parses_dispatch_timestamp(seeded, repo):
    updated = repo.update(seeded, "REQ-2024-002", {"dispatched_on": "2024-01-20T08:15:00"})
    assert updated.dispatched_on == datetime(2024, 1, 20, 8, 15)


@pytest.mark.parametrize(
    "overrides",
    [
        {"freight_cost": -10},
        {"price": "450"},
        {"payment_status": "Refunded"},
        {"whatsapp_sent": 1},
        {"status": ""},
    ],
)
def test_create_rejects_bad_optional_values(conn, repo, overrides):
    with pytest.raises(InvalidInputError):
        repo.create(conn, request_data("REQ-1", **overrides))
    assert conn.queries == []


def test_create_with_optional_values(conn, repo):
    created = repo.create(
        conn,
        request_data("REQ-1", status="Available", payment_status="Paid", price=120, parts_cost=100,
                     freight_cost=Decimal("20"), whatsapp_sent=True, notes="call first"),
    )
    assert (created.status, created.payment_status) == ("Available", "Paid")
    assert created.price == Decimal("120")
    assert created.whatsapp_sent is True
    assert created.notes == "call first"
