# Overview: Dashboard and report aggregations over orders, contacts and products.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
import math
from numbers import Real

from flask import current_app
from sqlalchemy import func, case

from ..extensions import db
from ..models import Order, OrderItem, Customer, Agent, Product
from ..validation import ValidationError
from bizdesk.time_utils import (
    utcnow,
    to_utc_z,
    local_now,
    local_day_range,
    month_window,
    month_bounds,
    year_bounds,
)
from .pricing import round_currency
from .stock_service import stock_summary

# Estimated profit is a fixed share of completed (paid) revenue
PROFIT_RATIO = Decimal("0.3")

STAT_PERIODS = ("day", "week", "month", "quarter", "year")
REVENUE_PERIODS = ("month", "quarter", "year")


@dataclass(frozen=True)
class PeriodChange:
    current: float
    previous: float
    change: float
    change_percent: float
    formatted: str

    def to_dict(self) -> dict:
        return {
            "current": self.current,
            "previous": self.previous,
            "change": self.change,
            "change_percent": self.change_percent,
            "formatted": self.formatted,
        }


def _non_negative(name: str, value):
    if isinstance(value, bool) or not isinstance(value, (Real, Decimal)):
        raise ValidationError(f"{name} must be a number")
    finite = value.is_finite() if isinstance(value, Decimal) else math.isfinite(value)
    if not finite:
        raise ValidationError(f"{name} must be a finite number")
    if value < 0:
        raise ValidationError(f"{name} must be >= 0")
    return value


def _as_decimal(value) -> Decimal:
    # str() keeps floats at their shortest repr instead of the binary expansion
    return value if isinstance(value, Decimal) else Decimal(str(value))


def compute_change(current, previous) -> PeriodChange:
    """
    Period-over-period change of a non-negative metric.

        change         = current - previous
        change_percent = 0    if both are 0
                         100  if previous is 0
                         change / previous * 100 otherwise
        formatted      = "+12.5%" / "-3.0%" (explicit + for non-negative)
    """
    _non_negative("current", current)
    _non_negative("previous", previous)
    if isinstance(current, Decimal) or isinstance(previous, Decimal):
        current, previous = _as_decimal(current), _as_decimal(previous)

    change = current - previous
    if previous == 0:
        percent = 0.0 if current == 0 else 100.0
    else:
        percent = float(_as_decimal(change) / _as_decimal(previous) * 100)

    rounded = Decimal(str(percent)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    if rounded == 0:
        rounded = rounded.copy_abs()
    sign = "+" if rounded >= 0 else ""
    return PeriodChange(
        current=current,
        previous=previous,
        change=change,
        change_percent=percent,
        formatted=f"{sign}{rounded}%",
    )


def _tz() -> str:
    return current_app.config["REPORT_TIMEZONE"]


def _active_orders(start: datetime | None = None, end: datetime | None = None):
    query = db.session.query(Order).filter(Order.status == "active")
    if start is not None:
        query = query.filter(Order.created_at >= start)
    if end is not None:
        query = query.filter(Order.created_at < end)
    return query


def _window_metrics(start: datetime, end: datetime) -> dict:
    revenue, orders = (
        _active_orders(start, end)
        .with_entities(func.coalesce(func.sum(Order.total_amount), 0), func.count(Order.id))
        .one()
    )
    customers = (
        _active_orders(start, end)
        .filter(Order.customer_id.isnot(None))
        .with_entities(func.count(func.distinct(Order.customer_id)))
        .scalar()
    )
    products = (
        db.session.query(func.count(Product.id))
        .filter(Product.created_at >= start, Product.created_at < end)
        .scalar()
    )
    return {
        "revenue": int(revenue or 0),
        "orders": int(orders or 0),
        "customers": int(customers or 0),
        "products": int(products or 0),
    }


def dashboard_cards(now: datetime | None = None) -> dict:
    """
    Current calendar month against the previous one, in the reference zone.

    now: UTC-naive reference instant (defaults to the current time).
    """
    now = now or utcnow()
    tz_name = _tz()

    cur_start, cur_end = month_window(now, tz_name)
    prev_start, prev_end = month_window(now, tz_name, months_back=1)

    current = _window_metrics(cur_start, cur_end)
    previous = _window_metrics(prev_start, prev_end)

    cards = {}
    for key in ("revenue", "orders", "customers", "products"):
        cards[key] = compute_change(current[key], previous[key]).to_dict()

    cards["totals"] = {
        "customers": db.session.query(func.count(Customer.id)).scalar() or 0,
        "agents": db.session.query(func.count(Agent.id)).scalar() or 0,
        "products": db.session.query(func.count(Product.id)).scalar() or 0,
    }
    cards["window"] = {
        "current_start": to_utc_z(cur_start),
        "current_end": to_utc_z(cur_end),
        "previous_start": to_utc_z(prev_start),
        "previous_end": to_utc_z(prev_end),
        "timezone": tz_name,
    }
    return cards


def resolve_period(
    period: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
) -> tuple[datetime | None, datetime | None]:
    """
    Turn (period | start_date, end_date) into a UTC-naive [start, end) window.

    Explicit dates win over a named period. A named period runs from the start
    of the current day/month/quarter/year (or 7 days back for "week") to now.
    """
    if start_date or end_date:
        try:
            return local_day_range(start_date, end_date, _tz())
        except ValueError:
            raise ValidationError("start_date/end_date must be YYYY-MM-DD or ISO-8601")

    if not period:
        return None, None
    if period not in STAT_PERIODS:
        raise ValidationError(f"period must be one of: {', '.join(STAT_PERIODS)}")

    tz_name = _tz()
    now = utcnow()
    local = local_now(tz_name)

    if period == "day":
        start, _ = local_day_range(local.date().isoformat(), None, tz_name)
    elif period == "week":
        start = now - timedelta(days=7)
    elif period == "month":
        start, _ = month_bounds(local.year, local.month, tz_name)
    elif period == "quarter":
        first_month = (local.month - 1) // 3 * 3 + 1
        start, _ = month_bounds(local.year, first_month, tz_name)
    else:
        start, _ = year_bounds(local.year, tz_name)

    return start, now + timedelta(seconds=1)


def _order_totals(start: datetime | None, end: datetime | None) -> dict:
    row = (
        _active_orders(start, end)
        .with_entities(
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_amount), 0),
            func.coalesce(func.sum(case((Order.payment_status == "debt", Order.total_amount), else_=0)), 0),
            func.coalesce(func.sum(case((Order.payment_status == "completed", Order.total_amount), else_=0)), 0),
        )
        .one()
    )
    completed = int(row[3])
    return {
        "total_orders": int(row[0]),
        "total_revenue": int(row[1]),
        "total_debt": int(row[2]),
        "completed_revenue": completed,
        "total_profit": round_currency(Decimal(completed) * PROFIT_RATIO),
    }


def overview(period: str | None = None, start_date: str | None = None, end_date: str | None = None) -> dict:
    start, end = resolve_period(period, start_date, end_date)

    top_customer = top_customers(limit=1, start=start, end=end)
    top_agent = top_agents(limit=1, start=start, end=end)

    return {
        "orders": _order_totals(start, end),
        "products": stock_summary(),
        "customers": {
            "total_customers": db.session.query(func.count(Customer.id)).scalar() or 0,
            "top_customer": top_customer[0] if top_customer else None,
        },
        "agents": {
            "total_agents": db.session.query(func.count(Agent.id)).scalar() or 0,
            "top_agent": top_agent[0] if top_agent else None,
        },
    }


def _revenue_row(label: int, start: datetime, end: datetime) -> dict:
    row = (
        _active_orders(start, end)
        .with_entities(
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_amount), 0),
            func.coalesce(func.sum(case((Order.payment_status == "completed", Order.total_amount), else_=0)), 0),
        )
        .one()
    )
    orders, revenue, completed = int(row[0]), int(row[1]), int(row[2])
    return {
        "period": label,
        "total_orders": orders,
        "total_revenue": revenue,
        "avg_order_value": round_currency(Decimal(revenue) / orders) if orders else 0,
        "completed_revenue": completed,
        "debt_revenue": revenue - completed,
        "profit": round_currency(Decimal(completed) * PROFIT_RATIO),
    }


def revenue_by_period(period: str = "month", year: int | None = None) -> list[dict]:
    """
    Revenue series over active orders (paid and unpaid).

    month:   12 rows for `year`
    quarter: 4 rows for `year`
    year:    `year` and the four years before it
    Periods without orders are reported as zero rows.
    """
    if period not in REVENUE_PERIODS:
        raise ValidationError(f"period must be one of: {', '.join(REVENUE_PERIODS)}")

    tz_name = _tz()
    if year is None:
        year = local_now(tz_name).year

    rows = []
    if period == "month":
        for month in range(1, 13):
            rows.append(_revenue_row(month, *month_bounds(year, month, tz_name)))
    elif period == "quarter":
        for quarter in range(1, 5):
            start, _ = month_bounds(year, quarter * 3 - 2, tz_name)
            _, end = month_bounds(year, quarter * 3, tz_name)
            rows.append(_revenue_row(quarter, start, end))
    else:
        for y in range(year - 4, year + 1):
            rows.append(_revenue_row(y, *year_bounds(y, tz_name)))
    return rows


def top_customers(limit: int = 10, *, start: datetime | None = None, end: datetime | None = None) -> list[dict]:
    total = func.sum(Order.total_amount).label("total_amount")
    rows = (
        _active_orders(start, end)
        .filter(Order.customer_id.isnot(None))
        .with_entities(Order.customer_id, total, func.count(Order.id))
        .group_by(Order.customer_id)
        .order_by(total.desc(), Order.customer_id.asc())
        .limit(limit)
        .all()
    )
    customers = {c.id: c for c in db.session.query(Customer).filter(Customer.id.in_([r[0] for r in rows])).all()}
    return [
        {
            "customer": customers[cid].to_dict() if cid in customers else None,
            "total_amount": int(amount),
            "total_orders": int(count),
        }
        for cid, amount, count in rows
    ]


def top_agents(limit: int = 10, *, start: datetime | None = None, end: datetime | None = None) -> list[dict]:
    total = func.sum(Order.total_amount).label("total_amount")
    rows = (
        _active_orders(start, end)
        .filter(Order.agent_id.isnot(None))
        .with_entities(Order.agent_id, total, func.count(Order.id))
        .group_by(Order.agent_id)
        .order_by(total.desc(), Order.agent_id.asc())
        .limit(limit)
        .all()
    )
    agents = {a.id: a for a in db.session.query(Agent).filter(Agent.id.in_([r[0] for r in rows])).all()}
    return [
        {
            "agent": agents[aid].to_dict() if aid in agents else None,
            "total_amount": int(amount),
            "total_orders": int(count),
        }
        for aid, amount, count in rows
    ]


def top_products(limit: int = 10, *, start: datetime | None = None, end: datetime | None = None) -> list[dict]:
    sold = func.sum(OrderItem.quantity).label("total_sold")
    revenue = func.sum(OrderItem.line_total).label("total_revenue")
    query = (
        db.session.query(OrderItem.product_id, sold, revenue)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(Order.status == "active")
    )
    if start is not None:
        query = query.filter(Order.created_at >= start)
    if end is not None:
        query = query.filter(Order.created_at < end)

    rows = (
        query.group_by(OrderItem.product_id)
        .order_by(revenue.desc(), OrderItem.product_id.asc())
        .limit(limit)
        .all()
    )
    products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_([r[0] for r in rows])).all()}
    return [
        {
            "product": products[pid].to_dict() if pid in products else None,
            "total_sold": int(qty),
            "total_revenue": int(amount),
        }
        for pid, qty, amount in rows
    ]


def debt_report() -> dict:
    """Unpaid (pending + debt) active orders grouped by customer/agent pair, largest first."""
    rows = (
        _active_orders()
        .filter(Order.payment_status.in_(("pending", "debt")))
        .with_entities(
            Order.customer_id,
            Order.agent_id,
            func.max(Order.customer_name),
            func.max(Order.agent_name),
            func.sum(Order.total_amount),
            func.count(Order.id),
            func.min(Order.created_at),
        )
        .group_by(Order.customer_id, Order.agent_id)
        .all()
    )

    entries = [
        {
            "customer_id": customer_id,
            "agent_id": agent_id,
            "customer_name": customer_name,
            "agent_name": agent_name,
            "total_debt": int(amount or 0),
            "order_count": int(count),
            "oldest_order": to_utc_z(oldest),
        }
        for customer_id, agent_id, customer_name, agent_name, amount, count, oldest in rows
    ]
    entries.sort(key=lambda e: e["total_debt"], reverse=True)

    return {
        "total_debt": sum(e["total_debt"] for e in entries),
        "debt_count": len(entries),
        "debt_orders": entries,
    }


def statistics_summary(period: str | None = None, start_date: str | None = None, end_date: str | None = None) -> dict:
    """Totals for the period, top-5 lists and the current year's month-by-month revenue."""
    start, end = resolve_period(period, start_date, end_date)
    totals = _order_totals(start, end)

    revenue_by_month = [
        {"month": row["period"], "revenue": row["total_revenue"], "profit": row["profit"]}
        for row in revenue_by_period("month")
    ]

    return {
        "total_revenue": totals["total_revenue"],
        "total_profit": totals["total_profit"],
        "total_debt": totals["total_debt"],
        "total_orders": totals["total_orders"],
        "top_customers": top_customers(5, start=start, end=end),
        "top_agents": top_agents(5, start=start, end=end),
        "top_products": top_products(5, start=start, end=end),
        "revenue_by_month": revenue_by_month,
    }
