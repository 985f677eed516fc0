"""Budget generation, aggregation helpers and the budget API."""

import math
from datetime import date
from types import SimpleNamespace

import pytest

from infra24.app.core.errors import NotFoundError, ValidationFailedError
from infra24.app.services import budget
from infra24.app.services.budget_data import (
    BUDGET_CATEGORIES,
    MONTHLY_BUDGET_PERCENTAGES,
    OOLITE_BUDGET_CONFIG,
    get_budget_config,
    get_category_by_id,
)


def test_thirteen_months_from_september():
    months = budget.generate_budget_months("2025", "oolite", today=date(2025, 8, 1))
    keys = [m["month"] for m in months]
    assert len(keys) == 13
    assert keys[0] == "2025-09"
    assert keys[3] == "2025-12"
    assert keys[4] == "2026-01"
    assert keys[-1] == "2026-09"


def test_monthly_budget_is_floor_of_share():
    months = budget.generate_budget_months("2025", "bakehouse", today=date(2025, 8, 1))
    expected = [math.floor(50000 * pct) for pct in MONTHLY_BUDGET_PERCENTAGES]
    assert [m["budget"] for m in months] == expected


def test_future_months_have_no_planned_items():
    months = budget.generate_budget_months("2025", "bakehouse", today=date(2025, 8, 1))
    assert all(m["line_items"] == [] for m in months)
    assert all(m["spent"] == 0 for m in months)


def test_started_month_gets_items_and_spent_is_capped():
    months = budget.generate_budget_months("2025", "unknown-org", today=date(2025, 9, 15))
    september = months[0]
    assert len(september["line_items"]) == 1
    item = september["line_items"][0]
    assert item["id"] == "2025-09-0"
    assert item["date"] == "2025-09-01"
    assert item["amount"] == 30000
    assert item["source"] == "planned"
    assert september["spent"] == september["budget"] == math.floor(30000 * MONTHLY_BUDGET_PERCENTAGES[0])
    assert months[1]["line_items"] == []


def test_all_planned_items_assigned_once_every_month_started():
    months = budget.generate_budget_months("2025", "oolite", today=date(2026, 12, 31))
    planned = [li for m in months for li in m["line_items"] if li["source"] == "planned"]
    assert len(planned) == len(OOLITE_BUDGET_CONFIG.items)
    assert [li["name"] for li in planned] == [i.name for i in OOLITE_BUDGET_CONFIG.items]
    # three items per month for the first seven months
    assert [len([li for li in m["line_items"] if li["source"] == "planned"]) for m in months[:7]] == [3] * 7


def test_line_item_dates_stay_inside_the_month():
    months = budget.generate_budget_months("2025", "oolite", today=date(2026, 12, 31))
    for m in months:
        for li in m["line_items"]:
            assert li["date"].startswith(m["month"])
            day = int(li["date"][-2:])
            assert 1 <= day <= 31


def test_remaining_items_go_to_last_started_month():
    months = budget.generate_budget_months("2025", "oolite", today=date(2025, 9, 10))
    september = months[0]
    planned = [li for li in september["line_items"] if li["source"] == "planned"]
    assert len(planned) == len(OOLITE_BUDGET_CONFIG.items)
    assert planned[3]["id"] == "2025-09-3"
    assert planned[3]["date"] == "2025-09-20"
    assert september["spent"] == pytest.approx(sum(i.amount for i in OOLITE_BUDGET_CONFIG.items))
    assert september["budget"] >= september["spent"]


def test_scheduled_invoices_land_in_their_month():
    months = budget.generate_budget_months("2025", "oolite", today=date(2025, 8, 1))
    by_month = {m["month"]: m for m in months}
    november = by_month["2025-11"]
    december = by_month["2025-12"]
    assert [li["source"] for li in november["line_items"]] == ["scheduled"]
    assert november["spent"] == 1200
    assert december["spent"] == pytest.approx(360 + 4941)
    assert {li["id"] for li in december["line_items"]} == {"2025-12-touchups", "2025-12-verity-cabling"}


@pytest.mark.parametrize("slug", ["bakehouse", "locust"])
def test_scheduled_invoices_belong_to_oolite_only(slug):
    months = budget.generate_budget_months("2025", slug, today=date(2025, 8, 1))
    assert get_budget_config(slug).scheduled_items == []
    assert all(li["source"] != "scheduled" for m in months for li in m["line_items"])
    by_month = {m["month"]: m for m in months}
    assert by_month["2025-11"]["spent"] == 0
    assert by_month["2025-12"]["spent"] == 0


def test_recorded_items_are_merged():
    row = SimpleNamespace(
        id="rec-1", name="Projector", category="hardware-materials", amount=750.0,
        date="2026-02-14", vendor="B&H", notes=None, image_url=None,
    )
    outside = SimpleNamespace(
        id="rec-2", name="Old invoice", category="audio", amount=99.0,
        date="2024-01-01", vendor=None, notes=None, image_url=None,
    )
    months = budget.generate_budget_months(
        "2025", "bakehouse", today=date(2025, 8, 1), recorded_items=[row, outside]
    )
    february = next(m for m in months if m["month"] == "2026-02")
    assert february["spent"] == 750.0
    assert february["line_items"][0]["source"] == "recorded"
    assert february["line_items"][0]["image_url"].startswith("https://")
    assert budget.total_spent(months) == 750.0


def test_aggregation_helpers():
    months = budget.generate_budget_months("2025", "oolite", today=date(2026, 12, 31))
    breakdown = budget.category_breakdown(months)
    assert [c["id"] for c in breakdown] == [c.id for c in BUDGET_CATEGORIES]
    assert sum(c["total"] for c in breakdown) == pytest.approx(
        sum(li["amount"] for m in months for li in m["line_items"])
    )
    assert sum(c["percentage"] for c in breakdown) == pytest.approx(100, abs=0.6)
    assert budget.category_total(months, "streaming") >= 4941
    assert budget.total_budget(months) == pytest.approx(sum(m["budget"] for m in months))
    totals = budget.monthly_totals(months)
    assert totals[0]["label"] == "September 2025"
    assert totals[0]["remaining"] == pytest.approx(totals[0]["budget"] - totals[0]["spent"])


@pytest.mark.parametrize("amount,expected", [
    (1234.5, "$1,235"),
    (0, "$0"),
    (80000, "$80,000"),
    (999.49, "$999"),
    (-12.5, "-$13"),
])
def test_format_currency(amount, expected):
    assert budget.format_currency(amount) == expected


def test_format_and_parse_month():
    assert budget.format_month("2025-09") == "September 2025"
    assert budget.format_month("2026-01") == "January 2026"
    with pytest.raises(ValidationFailedError):
        budget.parse_month("2025-13")
    with pytest.raises(ValidationFailedError):
        budget.parse_month("Sept 2025")


def test_month_detail():
    months = budget.generate_budget_months("2025", "oolite", today=date(2025, 8, 1))
    detail = budget.month_detail(months, "2025-12")
    assert detail["label"] == "December 2025"
    assert {c["id"] for c in detail["category_breakdown"]} == {"room-build-out", "streaming"}
    with pytest.raises(NotFoundError):
        budget.month_detail(months, "2027-01")
    with pytest.raises(ValidationFailedError):
        budget.month_detail(months, "december")


def test_config_lookup():
    assert get_budget_config("oolite").total_budget == 80000
    assert get_budget_config("bakehouse").total_budget == 50000
    assert get_budget_config("nobody").total_budget == 30000
    assert get_budget_config(None).total_budget == 30000
    assert get_category_by_id("audio").name == "Audio"
    assert get_category_by_id("nope") is None


def test_budget_api_requires_moderator(client, org, make_user):
    _, member_headers = make_user("member@oolite.org", "member", org)
    r = client.get("/api/v1/organizations/oolite/budget", headers=member_headers)
    assert r.status_code == 403

    r = client.get("/api/v1/organizations/oolite/budget")
    assert r.status_code == 401


def test_budget_dashboard(client, org, make_user):
    _, headers = make_user("admin@oolite.org", "org_admin", org)
    r = client.get("/api/v1/organizations/oolite/budget", headers=headers)
    assert r.status_code == 200
    data = r.json()
    assert len(data["months"]) == 13
    assert len(data["categories"]) == 10
    summary = data["summary"]
    assert summary["remaining"] == pytest.approx(summary["total_budget"] - summary["total_spent"])


def test_line_items_crud(client, org, make_user):
    _, headers = make_user("mod@oolite.org", "moderator", org)
    bad = client.post(
        "/api/v1/organizations/oolite/budget/line-items",
        json={"name": "Thing", "category": "snacks", "amount": 10, "date": "2025-10-01"},
        headers=headers,
    )
    assert bad.status_code == 400

    negative = client.post(
        "/api/v1/organizations/oolite/budget/line-items",
        json={"name": "Thing", "category": "audio", "amount": -5, "date": "2025-10-01"},
        headers=headers,
    )
    assert negative.status_code == 422

    r = client.post(
        "/api/v1/organizations/oolite/budget/line-items",
        json={"name": "Shure SM7B", "category": "audio", "amount": 399, "date": "2025-10-03", "vendor": "Sweetwater"},
        headers=headers,
    )
    assert r.status_code == 201
    item = r.json()
    assert item["image_url"].startswith("https://")

    month = client.get("/api/v1/organizations/oolite/budget/monthly/2025-10", headers=headers)
    assert month.status_code == 200
    assert item["id"] in [li["id"] for li in month.json()["line_items"]]

    listed = client.get("/api/v1/organizations/oolite/budget/line-items", headers=headers)
    assert [li["id"] for li in listed.json()] == [item["id"]]

    d = client.delete(f"/api/v1/organizations/oolite/budget/line-items/{item['id']}", headers=headers)
    assert d.status_code == 200
    d = client.delete(f"/api/v1/organizations/oolite/budget/line-items/{item['id']}", headers=headers)
    assert d.status_code == 404


def test_budget_month_errors(client, org, make_user):
    _, headers = make_user("admin2@oolite.org", "org_admin", org)
    assert client.get("/api/v1/organizations/oolite/budget/monthly/2030-01", headers=headers).status_code == 404
    assert client.get("/api/v1/organizations/oolite/budget/monthly/oct", headers=headers).status_code == 400
