"""Aggregations over rows fetched from the reports base view.

Every function here is pure: it takes already-fetched booking rows and
returns plain dictionaries and lists ready for the templates.
"""

from __future__ import annotations

import datetime as dt
from collections import defaultdict
from typing import Iterable

from cleandash.config import SETTINGS

QUICK_FILTERS = (
    "today",
    "yesterday",
    "thisWeek",
    "lastWeek",
    "thisMonth",
    "lastMonth",
    "thisYear",
)


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _area(row: dict) -> str:
    return (row.get("client_area") or "").strip()


def _customer_key(row: dict) -> str:
    return row.get("client_mobile") or row.get("client_name") or ""


def _minutes(value: str) -> int:
    hours, minutes = str(value).split(":")[:2]
    return int(hours) * 60 + int(minutes)


def _month_end(day: dt.date) -> dt.date:
    following = (day.replace(day=28) + dt.timedelta(days=4)).replace(day=1)
    return following - dt.timedelta(days=1)


def resolve_quick_filter(name: str, today: dt.date) -> tuple[dt.date, dt.date]:
    """Return the inclusive date range for a quick filter. Weeks start on Sunday."""

    if name == "today":
        return today, today
    if name == "yesterday":
        yesterday = today - dt.timedelta(days=1)
        return yesterday, yesterday
    week_start = today - dt.timedelta(days=(today.weekday() + 1) % 7)
    if name == "thisWeek":
        return week_start, week_start + dt.timedelta(days=6)
    if name == "lastWeek":
        return week_start - dt.timedelta(days=7), week_start - dt.timedelta(days=1)
    if name == "thisMonth":
        return today.replace(day=1), _month_end(today)
    if name == "lastMonth":
        last_day = today.replace(day=1) - dt.timedelta(days=1)
        return last_day.replace(day=1), last_day
    if name == "thisYear":
        return today.replace(month=1, day=1), today.replace(month=12, day=31)
    raise ValueError(f"Unknown quick filter: {name}")


def search_rows(rows: Iterable[dict], term: str | None, keys: Iterable[str]) -> list[dict]:
    """Case-insensitive substring filter across the given keys."""

    rows = list(rows)
    if not term or not term.strip():
        return rows
    needle = term.strip().lower()
    keys = tuple(keys)
    return [row for row in rows if any(needle in str(row.get(key) or "").lower() for key in keys)]


# ----------------------------------------------------------------------
# Overview
# ----------------------------------------------------------------------
def dashboard_stats(rows: list[dict]) -> dict:
    total_sales = sum(row["final_price"] or 0 for row in rows)
    total_hours = sum(row["duration_hours"] or 0 for row in rows)
    return {
        "total_sales": round(total_sales, 2),
        "total_bookings": len(rows),
        "total_hours": round(total_hours, 2),
        "avg_hourly_rate": round(_ratio(total_sales, total_hours), 2),
        "new_customers": sum(1 for row in rows if row["customer_type"] == "new"),
        "pending_payments": round(
            sum(
                row["final_price"] or 0
                for row in rows
                if row["is_credit_sale"] and row["payment_status"] != "paid"
            ),
            2,
        ),
        "total_discounts": round(sum(row["discount_amount"] or 0 for row in rows), 2),
        "avg_booking_price": round(_ratio(total_sales, len(rows)), 2),
    }


def overview_report(rows: list[dict]) -> dict:
    trend: dict[str, dict] = defaultdict(lambda: {"sales": 0.0, "bookings": 0})
    cleaners: dict[str, dict] = defaultdict(lambda: {"sales": 0.0, "bookings": 0, "hours": 0.0})
    areas: dict[str, dict] = defaultdict(lambda: {"sales": 0.0, "bookings": 0})
    with_materials = 0
    for row in rows:
        price = row["final_price"] or 0
        trend[row["booking_date"]]["sales"] += price
        trend[row["booking_date"]]["bookings"] += 1
        cleaner = cleaners[row["cleaner_name"] or "Unknown"]
        cleaner["sales"] += price
        cleaner["bookings"] += 1
        cleaner["hours"] += row["duration_hours"] or 0
        if row["with_materials"]:
            with_materials += 1
        area = _area(row)
        if area:
            areas[area]["sales"] += price
            areas[area]["bookings"] += 1

    top_cleaners = sorted(
        ({"name": name, **values} for name, values in cleaners.items()),
        key=lambda item: item["sales"],
        reverse=True,
    )[:10]
    by_sales = sorted(
        ({"area": name, **values} for name, values in areas.items()),
        key=lambda item: item["sales"],
        reverse=True,
    )
    return {
        "sales_trend": [{"date": day, **trend[day]} for day in sorted(trend)],
        "top_cleaners": top_cleaners,
        "materials_ratio": [
            {"name": "With Materials", "value": with_materials},
            {"name": "Without Materials", "value": len(rows) - with_materials},
        ],
        "top_areas": by_sales[:10],
        "all_areas": sorted(areas),
    }


def area_stats(rows: list[dict], area: str) -> dict:
    matching = [row for row in rows if _area(row) == area]
    sales = sum(row["final_price"] or 0 for row in matching)
    return {
        "area": area,
        "bookings": len(matching),
        "sales": round(sales, 2),
        "avg_price": round(_ratio(sales, len(matching)), 2),
    }


# ----------------------------------------------------------------------
# Sales
# ----------------------------------------------------------------------
def _sales_bucket() -> dict:
    return {
        "bookings": 0,
        "sales": 0.0,
        "hours": 0.0,
        "with_materials": 0,
        "without_materials": 0,
        "sales_with": 0.0,
        "sales_without": 0.0,
        "hours_with": 0.0,
        "hours_without": 0.0,
    }


def _add_sale(bucket: dict, row: dict) -> None:
    price = row["final_price"] or 0
    hours = row["duration_hours"] or 0
    bucket["bookings"] += 1
    bucket["sales"] += price
    bucket["hours"] += hours
    if row["with_materials"]:
        bucket["with_materials"] += 1
        bucket["sales_with"] += price
        bucket["hours_with"] += hours
    else:
        bucket["without_materials"] += 1
        bucket["sales_without"] += price
        bucket["hours_without"] += hours


def _finish_sale(bucket: dict) -> dict:
    for key in ("sales", "hours", "sales_with", "sales_without", "hours_with", "hours_without"):
        bucket[key] = round(bucket[key], 2)
    bucket["avg_per_hour"] = round(_ratio(bucket["sales"], bucket["hours"]), 2)
    bucket["avg_per_booking"] = round(_ratio(bucket["sales"], bucket["bookings"]), 2)
    bucket["rate_with"] = round(_ratio(bucket["sales_with"], bucket["hours_with"]), 2)
    bucket["rate_without"] = round(_ratio(bucket["sales_without"], bucket["hours_without"]), 2)
    return bucket


def sales_report(rows: list[dict], start: dt.date, end: dt.date) -> dict:
    total = _sales_bucket()
    daily: dict[str, dict] = defaultdict(_sales_bucket)
    by_cleaner: dict[str, dict] = defaultdict(_sales_bucket)
    by_area: dict[str, dict] = defaultdict(_sales_bucket)
    for row in rows:
        _add_sale(total, row)
        _add_sale(daily[row["booking_date"]], row)
        _add_sale(by_cleaner[row["cleaner_name"] or "Unknown"], row)
        if _area(row):
            _add_sale(by_area[_area(row)], row)

    _finish_sale(total)
    days = (end - start).days + 1
    summary = {
        "total_sales": total["sales"],
        "total_bookings": total["bookings"],
        "total_hours": total["hours"],
        "avg_per_day": round(_ratio(total["sales"], days), 2),
        "avg_per_hour": total["avg_per_hour"],
        "avg_per_booking": total["avg_per_booking"],
        "with_materials": total["with_materials"],
        "without_materials": total["without_materials"],
        "avg_per_hour_with": total["rate_with"],
        "avg_per_hour_without": total["rate_without"],
    }

    def ranked(groups: dict[str, dict], label: str) -> list[dict]:
        items = [{label: key, **_finish_sale(values)} for key, values in groups.items()]
        return sorted(items, key=lambda item: item["sales"], reverse=True)

    return {
        "summary": summary,
        "daily": sorted(
            ({"date": key, **_finish_sale(values)} for key, values in daily.items()),
            key=lambda item: item["date"],
            reverse=True,
        ),
        "cleaners": ranked(by_cleaner, "cleaner"),
        "areas": ranked(by_area, "area"),
    }


# ----------------------------------------------------------------------
# Financial
# ----------------------------------------------------------------------
def debt_age_category(days_overdue: int) -> str:
    if days_overdue > 60:
        return "60+ Days"
    if days_overdue > 30:
        return "30-60 Days"
    if days_overdue > 0:
        return "1-30 Days"
    return "Current"


def financial_report(rows: list[dict]) -> dict:
    total_revenue = sum(row["final_price"] or 0 for row in rows)
    cash = [row for row in rows if not row["is_credit_sale"]]
    credit = [row for row in rows if row["is_credit_sale"]]

    def payment_line(label: str, subset: list[dict]) -> dict:
        amount = sum(row["final_price"] or 0 for row in subset)
        return {
            "type": label,
            "count": len(subset),
            "total": round(amount, 2),
            "avg": round(_ratio(amount, len(subset)), 2),
            "percentage": round(_ratio(amount, total_revenue) * 100, 2),
        }

    def revenue_line(label: str, subset: list[dict]) -> dict:
        return {
            "category": label,
            "amount": round(sum(row["final_price"] or 0 for row in subset), 2),
            "count": len(subset),
        }

    discounts: dict[str, dict] = defaultdict(
        lambda: {"total_discount": 0.0, "count": 0, "total_revenue": 0.0}
    )
    for row in rows:
        bucket = discounts[_area(row) or "Unknown"]
        discount = row["discount_amount"] or 0
        bucket["total_revenue"] += row["final_price"] or 0
        if discount > 0:
            bucket["total_discount"] += discount
            bucket["count"] += 1
    discount_rows = []
    for area, values in discounts.items():
        if not values["count"]:
            continue
        discount_rows.append(
            {
                "area": area,
                "total_discount": round(values["total_discount"], 2),
                "count": values["count"],
                "avg_discount": round(_ratio(values["total_discount"], values["count"]), 2),
                "total_revenue": round(values["total_revenue"], 2),
                "discount_percentage": round(
                    _ratio(values["total_discount"], values["total_revenue"] + values["total_discount"])
                    * 100,
                    2,
                ),
            }
        )
    discount_rows.sort(key=lambda item: item["total_discount"], reverse=True)

    debts: dict[str, dict] = {}
    for row in credit:
        if row["payment_status"] == "paid":
            continue
        entry = debts.setdefault(
            _customer_key(row),
            {
                "client_name": row["client_name"],
                "client_mobile": row["client_mobile"],
                "debt": 0.0,
                "bookings": 0,
                "due_date": row["credit_due_date"],
                "days_overdue": 0,
            },
        )
        entry["debt"] += row["final_price"] or 0
        entry["bookings"] += 1
        if (row["debt_age_days"] or 0) >= entry["days_overdue"]:
            entry["days_overdue"] = row["debt_age_days"] or 0
            entry["due_date"] = row["credit_due_date"] or entry["due_date"]
    debt_rows = []
    for entry in debts.values():
        entry["debt"] = round(entry["debt"], 2)
        entry["age_category"] = debt_age_category(entry["days_overdue"])
        debt_rows.append(entry)
    debt_rows.sort(key=lambda item: item["debt"], reverse=True)

    total_discounts = sum(row["discount_amount"] or 0 for row in rows)
    return {
        "payment": [payment_line("Cash Sales", cash), payment_line("Credit Sales", credit)],
        "revenue": [
            revenue_line("With Materials", [row for row in rows if row["with_materials"]]),
            revenue_line("Without Materials", [row for row in rows if not row["with_materials"]]),
            revenue_line("New Customers", [row for row in rows if row["customer_type"] == "new"]),
            revenue_line(
                "Regular Customers", [row for row in rows if row["customer_type"] != "new"]
            ),
        ],
        "discounts": discount_rows,
        "debts": debt_rows,
        "summary": {
            "total_revenue": round(total_revenue, 2),
            "cash_sales": round(sum(row["final_price"] or 0 for row in cash), 2),
            "credit_sales": round(sum(row["final_price"] or 0 for row in credit), 2),
            "outstanding_amount": round(sum(entry["debt"] for entry in debt_rows), 2),
            "total_discounts": round(total_discounts, 2),
            "avg_discount_percent": round(
                _ratio(total_discounts, total_revenue + total_discounts) * 100, 2
            ),
        },
    }


# ----------------------------------------------------------------------
# Hours
# ----------------------------------------------------------------------
def _idle_minutes(day_rows: list[dict]) -> int:
    ordered = sorted(day_rows, key=lambda row: _minutes(row["start_time"]))
    idle = 0
    for previous, current in zip(ordered, ordered[1:]):
        gap = _minutes(current["start_time"]) - _minutes(previous["end_time"])
        if gap > 0:
            idle += gap
    return idle


def hours_report(rows: list[dict], regular_hours: float | None = None) -> dict:
    regular = SETTINGS["regular_daily_hours"] if regular_hours is None else regular_hours
    grouped: dict[str, dict[str, list[dict]]] = defaultdict(lambda: defaultdict(list))
    for row in rows:
        grouped[row["cleaner_name"] or "Unknown"][row["booking_date"]].append(row)

    cleaners = []
    daily = []
    overtime_records = []
    for cleaner, days in grouped.items():
        working = idle = overtime = 0.0
        for day, day_rows in days.items():
            day_hours = sum(row["duration_hours"] or 0 for row in day_rows)
            day_idle = _idle_minutes(day_rows) / 60
            day_overtime = sum(row["overtime_hours"] or 0 for row in day_rows)
            working += day_hours
            idle += day_idle
            overtime += day_overtime
            daily.append(
                {
                    "date": day,
                    "cleaner": cleaner,
                    "bookings": len(day_rows),
                    "working_hours": round(day_hours, 2),
                    "idle_hours": round(day_idle, 2),
                    "overtime_hours": round(day_overtime, 2),
                }
            )
            if day_overtime > 0 or day_hours > regular:
                overtime_records.append(
                    {
                        "date": day,
                        "cleaner": cleaner,
                        "total_hours": round(day_hours, 2),
                        "regular_hours": round(min(day_hours, regular), 2),
                        "overtime_hours": round(
                            day_overtime if day_overtime > 0 else max(0.0, day_hours - regular), 2
                        ),
                    }
                )
        cleaners.append(
            {
                "cleaner": cleaner,
                "working_hours": round(working, 2),
                "idle_hours": round(idle, 2),
                "overtime_hours": round(overtime, 2),
                "working_days": len(days),
                "avg_hours_per_day": round(_ratio(working, len(days)), 2),
                "utilization": round(_ratio(working, working + idle) * 100, 2),
            }
        )

    cleaners.sort(key=lambda item: item["working_hours"], reverse=True)
    daily.sort(key=lambda item: (item["date"], item["cleaner"]), reverse=True)
    overtime_records.sort(key=lambda item: item["overtime_hours"], reverse=True)
    total_working = sum(item["working_hours"] for item in cleaners)
    total_idle = sum(item["idle_hours"] for item in cleaners)
    return {
        "cleaners": cleaners,
        "daily": daily,
        "overtime": overtime_records,
        "summary": {
            "total_working_hours": round(total_working, 2),
            "total_idle_hours": round(total_idle, 2),
            "total_overtime_hours": round(sum(item["overtime_hours"] for item in cleaners), 2),
            "total_cleaners": len(cleaners),
            "total_days": len({row["booking_date"] for row in rows}),
            "avg_utilization": round(_ratio(total_working, total_working + total_idle) * 100, 2),
        },
    }


# ----------------------------------------------------------------------
# Customers
# ----------------------------------------------------------------------
def customer_report(rows: list[dict]) -> dict:
    new_bookings = sum(1 for row in rows if row["customer_type"] == "new")
    returning_bookings = sum(1 for row in rows if row["customer_type"] == "regular")
    counted = new_bookings + returning_bookings
    new_revenue = sum(row["final_price"] or 0 for row in rows if row["customer_type"] == "new")
    returning_revenue = sum(
        row["final_price"] or 0 for row in rows if row["customer_type"] == "regular"
    )

    customers: dict[str, dict] = {}
    areas: dict[str, dict] = defaultdict(
        lambda: {"customers": set(), "new": 0, "returning": 0, "revenue": 0.0, "bookings": 0}
    )
    for row in sorted(rows, key=lambda item: item["booking_date"]):
        key = _customer_key(row)
        price = row["final_price"] or 0
        customer = customers.setdefault(
            key,
            {
                "name": row["client_name"],
                "mobile": row["client_mobile"],
                "area": _area(row) or "Unknown",
                "type": row["customer_type"],
                "total_bookings": 0,
                "total_revenue": 0.0,
                "last_booking_date": row["booking_date"],
            },
        )
        customer["total_bookings"] += 1
        customer["total_revenue"] += price
        customer["last_booking_date"] = row["booking_date"]

        area = areas[_area(row) or "Unknown"]
        area["customers"].add(key)
        area["revenue"] += price
        area["bookings"] += 1
        if row["customer_type"] == "new":
            area["new"] += 1
        else:
            area["returning"] += 1

    customer_rows = []
    for customer in customers.values():
        customer["total_revenue"] = round(customer["total_revenue"], 2)
        customer["avg_booking"] = round(
            _ratio(customer["total_revenue"], customer["total_bookings"]), 2
        )
        customer_rows.append(customer)
    customer_rows.sort(key=lambda item: item["total_revenue"], reverse=True)

    area_rows = [
        {
            "area": name,
            "customers": len(values["customers"]),
            "new": values["new"],
            "returning": values["returning"],
            "revenue": round(values["revenue"], 2),
            "avg_revenue": round(_ratio(values["revenue"], len(values["customers"])), 2),
            "bookings": values["bookings"],
        }
        for name, values in areas.items()
    ]
    area_rows.sort(key=lambda item: item["revenue"], reverse=True)

    total_customers = len(customers)
    total_revenue = sum(row["final_price"] or 0 for row in rows)
    return {
        "overview": [
            {
                "type": "New Customers",
                "count": new_bookings,
                "total_revenue": round(new_revenue, 2),
                "avg_revenue": round(_ratio(new_revenue, new_bookings), 2),
                "percentage": round(_ratio(new_bookings, counted) * 100, 2),
            },
            {
                "type": "Returning Customers",
                "count": returning_bookings,
                "total_revenue": round(returning_revenue, 2),
                "avg_revenue": round(_ratio(returning_revenue, returning_bookings), 2),
                "percentage": round(_ratio(returning_bookings, counted) * 100, 2),
            },
        ],
        "areas": area_rows,
        "customers": customer_rows,
        "summary": {
            "new_customers": new_bookings,
            "returning_customers": returning_bookings,
            "total_customers": total_customers,
            "retention_rate": round(_ratio(returning_bookings, total_customers) * 100, 2),
            "avg_revenue_per_customer": round(_ratio(total_revenue, total_customers), 2),
            "most_active_area": area_rows[0]["area"] if area_rows else "N/A",
        },
    }


__all__ = [
    "QUICK_FILTERS",
    "area_stats",
    "customer_report",
    "dashboard_stats",
    "debt_age_category",
    "financial_report",
    "hours_report",
    "overview_report",
    "resolve_quick_filter",
    "sales_report",
    "search_rows",
]
