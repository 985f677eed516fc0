"""Budget month generation and dashboard aggregation.

Months run from September of the budget year for thirteen months. Planned
config items are spread over the months that have already started, fixed-date
invoices and recorded line items are added on top.
"""

import calendar
import math
import re
import time
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from infra24.app.cache.core import budget_cache_key, get_cached, set_cached
from infra24.app.core.errors import NotFoundError, ValidationFailedError
from infra24.app.core.logging import get_logger
from infra24.app.models.core import BudgetLineItem, Organization
from infra24.app.services.budget_data import (
    BUDGET_CATEGORIES,
    MONTHLY_BUDGET_PERCENTAGES,
    budget_item_image,
    get_budget_config,
)

logger = get_logger("infra24.budget")

START_MONTH = 9
MONTH_COUNT = 13
_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def _money(value: float) -> float:
    return round(value, 2)


def _month_keys(year: str) -> List[str]:
    start_year = int(year)
    keys = []
    for i in range(MONTH_COUNT):
        month_num = START_MONTH + i
        month_year = start_year
        if month_num > 12:
            month_num -= 12
            month_year += 1
        keys.append(f"{month_year}-{month_num:02d}")
    return keys


def _day(month: str, day: int) -> str:
    year, month_num = (int(p) for p in month.split("-"))
    last_day = calendar.monthrange(year, month_num)[1]
    return f"{month}-{min(day, last_day):02d}"


def _line_item(item_id: str, name: str, category: str, amount: float, item_date: str,
               vendor: Optional[str], notes: Optional[str], image_url: Optional[str] = None,
               source: str = "planned") -> Dict[str, Any]:
    return {
        "id": item_id,
        "name": name,
        "category": category,
        "amount": amount,
        "image_url": image_url or budget_item_image(category, name),
        "date": item_date,
        "vendor": vendor,
        "notes": notes,
        "source": source,
    }


def _add_to_month(month: Dict[str, Any], item: Dict[str, Any]) -> None:
    month["line_items"].append(item)
    month["spent"] = _money(month["spent"] + item["amount"])
    month["budget"] = max(month["budget"], month["spent"])


def generate_budget_months(
    year: str = "2025",
    org_slug: str = "oolite",
    today: Optional[date] = None,
    recorded_items: Optional[Iterable[Any]] = None,
) -> List[Dict[str, Any]]:
    """Build the thirteen budget months for an organization.

    `recorded_items` are BudgetLineItem rows (or objects with the same
    attributes) added to the month matching their date.
    """
    today = today or date.today()
    config = get_budget_config(org_slug)
    all_items = config.items
    monthly_budgets = [math.floor(config.total_budget * pct) for pct in MONTHLY_BUDGET_PERCENTAGES]

    months: List[Dict[str, Any]] = []
    item_index = 0
    current = (today.year, today.month)

    for i, month_key in enumerate(_month_keys(year)):
        month_year, month_num = (int(p) for p in month_key.split("-"))
        budget = monthly_budgets[i] if i < len(monthly_budgets) else 200
        line_items: List[Dict[str, Any]] = []
        spent = 0.0

        if (month_year, month_num) <= current:
            per_month = math.ceil(len(all_items) / 9) if i < 7 else math.ceil(len(all_items) / 13)
            assigned = all_items[item_index:item_index + per_month]
            item_index += len(assigned)
            for idx, item in enumerate(assigned):
                line_items.append(
                    _line_item(
                        f"{month_key}-{idx}", item.name, item.category, item.amount,
                        _day(month_key, 1 + idx * 7), item.vendor, item.notes,
                    )
                )
            spent = _money(sum(item.amount for item in assigned))

        months.append({
            "month": month_key,
            "budget": budget,
            "spent": min(spent, budget),
            "line_items": line_items,
        })

    if item_index < len(all_items):
        remaining = all_items[item_index:]
        target = next((m for m in reversed(months) if m["line_items"]), None)
        if target is not None:
            logger.debug(
                f"Assigning {len(remaining)} remaining item(s) to {target['month']} for {org_slug}"
            )
            for idx, item in enumerate(remaining):
                target["line_items"].append(
                    _line_item(
                        f"{target['month']}-{len(target['line_items'])}", item.name,
                        item.category, item.amount, _day(target["month"], 20 + idx),
                        item.vendor, item.notes,
                    )
                )
            target["spent"] = _money(sum(li["amount"] for li in target["line_items"]))
            target["budget"] = max(target["budget"], target["spent"])
        else:
            logger.info(
                f"No started month to hold {len(remaining)} planned item(s) for {org_slug}; dropped"
            )

    by_month = {m["month"]: m for m in months}

    for scheduled in config.scheduled_items:
        month = by_month.get(scheduled.date[:7])
        if month is None:
            continue
        _add_to_month(
            month,
            _line_item(
                scheduled.id, scheduled.name, scheduled.category, scheduled.amount,
                scheduled.date, scheduled.vendor, scheduled.notes,
                budget_item_image(scheduled.category, scheduled.image_hint or scheduled.name),
                source="scheduled",
            ),
        )

    for row in recorded_items or []:
        month = by_month.get(str(row.date)[:7])
        if month is None:
            continue
        _add_to_month(
            month,
            _line_item(
                row.id, row.name, row.category, float(row.amount), str(row.date),
                row.vendor, row.notes, row.image_url, source="recorded",
            ),
        )

    return months


# Aggregation helpers


def total_budget(months: List[Dict[str, Any]]) -> float:
    return _money(sum(m["budget"] for m in months))


def total_spent(months: List[Dict[str, Any]]) -> float:
    return _money(sum(m["spent"] for m in months))


def category_total(months: List[Dict[str, Any]], category_id: str) -> float:
    return _money(sum(
        item["amount"]
        for m in months
        for item in m["line_items"]
        if item["category"] == category_id
    ))


def category_breakdown(months: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Every category with its total and share of everything spent (percent)."""
    item_total = sum(item["amount"] for m in months for item in m["line_items"])
    breakdown = []
    for category in BUDGET_CATEGORIES:
        amount = category_total(months, category.id)
        breakdown.append({
            "id": category.id,
            "name": category.name,
            "color": category.color,
            "total": amount,
            "percentage": round(amount / item_total * 100, 1) if item_total else 0.0,
        })
    return breakdown


def monthly_totals(months: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "month": m["month"],
            "label": format_month(m["month"]),
            "budget": m["budget"],
            "spent": m["spent"],
            "remaining": _money(m["budget"] - m["spent"]),
            "item_count": len(m["line_items"]),
        }
        for m in months
    ]


def format_currency(amount: float) -> str:
    """US dollars without cents, e.g. 1234.5 -> "$1,235"."""
    rounded = Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    sign = "-" if rounded < 0 else ""
    return f"{sign}${abs(int(rounded)):,}"


def parse_month(month: str):
    match = _MONTH_RE.match(month or "")
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValidationFailedError(f"Invalid month '{month}', expected YYYY-MM")
    return int(match.group(1)), int(match.group(2))


def format_month(month: str) -> str:
    """"2025-09" -> "September 2025"."""
    year, month_num = parse_month(month)
    return f"{calendar.month_name[month_num]} {year}"


def summarize(months: List[Dict[str, Any]]) -> Dict[str, Any]:
    budget = total_budget(months)
    spent = total_spent(months)
    return {
        "total_budget": budget,
        "total_spent": spent,
        "remaining": _money(budget - spent),
        "utilization": round(spent / budget * 100, 1) if budget else 0.0,
        "line_item_count": sum(len(m["line_items"]) for m in months),
        "category_breakdown": category_breakdown(months),
    }


def _categories_payload() -> List[Dict[str, str]]:
    return [
        {"id": c.id, "name": c.name, "color": c.color, "description": c.description}
        for c in BUDGET_CATEGORIES
    ]


def recorded_line_items(db: Session, org: Organization) -> List[BudgetLineItem]:
    return (
        db.query(BudgetLineItem)
        .filter(BudgetLineItem.organization_id == org.id)
        .order_by(BudgetLineItem.date)
        .all()
    )


def build_budget_dashboard(db: Session, org: Organization, year: str = "2025",
                           today: Optional[date] = None, use_cache: bool = True) -> Dict[str, Any]:
    """Months, categories and summary for one organization, cached per tenant."""
    key = budget_cache_key(org.slug, year)
    if use_cache and today is None:
        cached = get_cached(key)
        if cached is not None:
            return cached

    start_time = time.time()
    config = get_budget_config(org.slug)
    months = generate_budget_months(
        year=year, org_slug=org.slug, today=today,
        recorded_items=recorded_line_items(db, org),
    )
    dashboard = {
        "organization": org.slug,
        "year": year,
        "description": config.description,
        "planned_total": config.total_budget,
        "months": months,
        "monthly_totals": monthly_totals(months),
        "categories": _categories_payload(),
        "summary": summarize(months),
    }
    logger.debug(
        f"Budget dashboard for {org.slug}/{year} built in {(time.time() - start_time) * 1000:.1f}ms"
    )
    if use_cache and today is None:
        set_cached(key, dashboard)
    return dashboard


def month_detail(months: List[Dict[str, Any]], month: str) -> Dict[str, Any]:
    """One month with its category breakdown; 400 for a malformed key, 404 out of range."""
    parse_month(month)
    for m in months:
        if m["month"] == month:
            return {
                **m,
                "label": format_month(month),
                "remaining": _money(m["budget"] - m["spent"]),
                "category_breakdown": [
                    c for c in category_breakdown([m]) if c["total"] > 0
                ],
            }
    raise NotFoundError(f"Month {month} is outside the budget period")
