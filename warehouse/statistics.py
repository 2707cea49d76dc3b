"""
Admin dashboard statistics.

Counts, inventory value, supplier spend and per-period charts. The period
picks both the window and the bucket size:

    daily    last 30 days, one bucket per day (YYYY-MM-DD)
    weekly   last 90 days, one bucket per ISO week (YYYY-Www)
    monthly  last 12 months, one bucket per month (YYYY-MM)
    yearly   all time, one bucket per year (YYYY)

An explicit start_date/end_date pair replaces the window and keeps the
buckets. Revenue is the item value of delivered and completed deliveries,
expenses are paid supplier invoices.
"""
import calendar
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from . import models
from .cache import ANALYTICS_CACHE_TTL, cache_result
from .crud.invoices import PAID, PENDING
from .crud.movements import CLOSED_STATUSES
from .errors import ValidationError
from .validators import COMPLETED, DELIVERED, LOW_STOCK, OUT_OF_STOCK

logger = logging.getLogger(__name__)

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
YEARLY = "yearly"
PERIODS = (DAILY, WEEKLY, MONTHLY, YEARLY)

LOW_STOCK_LIST_LIMIT = 10
TOP_EXPENSES_LIMIT = 5
TOP_PRODUCTS_LIMIT = 10

# profit margin (percent) below which the dashboard raises a warning
LOW_MARGIN_PERCENT = 10.0

REVENUE_STATUSES = (DELIVERED, COMPLETED)


def months_ago(moment: datetime, months: int) -> datetime:
    """Same day and time `months` calendar months earlier, clamped to the month's last day."""
    index = moment.year * 12 + moment.month - 1 - months
    year, month = divmod(index, 12)
    day = min(moment.day, calendar.monthrange(year, month + 1)[1])
    return moment.replace(year=year, month=month + 1, day=day)


def date_window(
    period: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Resolve the reporting window.

    Args:
        period: One of PERIODS
        start_date: Custom range start; needs end_date
        end_date: Custom range end; needs start_date
        now: Reference time (default: utcnow)

    Returns:
        (start, end); either bound may be None for an open side

    Raises:
        ValidationError: for an unknown period, a half-open custom range or
            a start after the end
    """
    if period not in PERIODS:
        raise ValidationError(
            f"Invalid period: {period}",
            [{"field": "period", "message": f"must be one of {', '.join(PERIODS)}"}],
        )
    if (start_date is None) != (end_date is None):
        raise ValidationError(
            "start_date and end_date must be given together",
            [{"field": "start_date" if start_date is None else "end_date", "message": "is required"}],
        )
    if start_date is not None:
        if start_date > end_date:
            raise ValidationError(
                "start_date must not be after end_date",
                [{"field": "start_date", "message": "must not be after end_date"}],
            )
        return start_date, end_date

    now = now or datetime.utcnow()
    if period == DAILY:
        return now - timedelta(days=30), None
    if period == WEEKLY:
        return now - timedelta(days=90), None
    if period == YEARLY:
        return None, None
    return months_ago(now, 12), None


def period_key(moment: datetime, period: str) -> str:
    if period == DAILY:
        return moment.strftime("%Y-%m-%d")
    if period == WEEKLY:
        year, week, _ = moment.isocalendar()
        return f"{year}-W{week:02d}"
    if period == YEARLY:
        return str(moment.year)
    return moment.strftime("%Y-%m")


def _within(column, start: Optional[datetime], end: Optional[datetime]) -> list:
    conditions = []
    if start is not None:
        conditions.append(column >= start)
    if end is not None:
        conditions.append(column <= end)
    return conditions


def _percent(part: float, whole: float) -> float:
    return part / whole * 100 if whole else 0.0


def delivery_value(delivery: models.Delivery) -> float:
    """Sum of quantity * unit_price over a delivery's lines, before taxes."""
    return sum(line.get("quantity", 0) * line.get("unit_price", 0.0) for line in delivery.items or [])


def _bucket_sums(rows: Iterable[Tuple[datetime, float]], period: str) -> "OrderedDict[str, float]":
    buckets: "OrderedDict[str, float]" = OrderedDict()
    for moment, amount in sorted(rows, key=lambda row: row[0]):
        key = period_key(moment, period)
        buckets[key] = buckets.get(key, 0.0) + amount
    return buckets


def _overview(db: Session, now: datetime) -> dict:
    items = db.query(models.InventoryItem)
    invoices = db.query(models.SupplierInvoice)
    inventory_value = db.query(
        func.sum(models.InventoryItem.current_stock * models.InventoryItem.buying_price)
    ).scalar() or 0.0
    monthly_expenses = (
        db.query(func.sum(models.SupplierInvoice.total_amount))
        .filter(
            models.SupplierInvoice.status == PAID,
            models.SupplierInvoice.invoice_date >= months_ago(now, 1),
        )
        .scalar()
        or 0.0
    )
    return {
        "inventory": {
            "total_items": items.count(),
            "low_stock_items": items.filter(models.InventoryItem.status == LOW_STOCK).count(),
            "out_of_stock_items": items.filter(models.InventoryItem.status == OUT_OF_STOCK).count(),
            "total_value": round(float(inventory_value), 2),
        },
        "users": {"total": db.query(models.User).count()},
        "invoices": {
            "total": invoices.count(),
            "pending": invoices.filter(models.SupplierInvoice.status == PENDING).count(),
            "monthly_expenses": round(float(monthly_expenses), 2),
        },
    }


def _low_stock_list(db: Session) -> List[dict]:
    items = (
        db.query(models.InventoryItem)
        .filter(models.InventoryItem.status.in_([LOW_STOCK, OUT_OF_STOCK]))
        .order_by(models.InventoryItem.current_stock, models.InventoryItem.id)
        .limit(LOW_STOCK_LIST_LIMIT)
        .all()
    )
    return [
        {
            "id": item.id,
            "name": item.name,
            "sku": item.sku,
            "category": item.category,
            "current_stock": item.current_stock,
            "min_stock": item.min_stock,
            "max_stock": item.max_stock,
        }
        for item in items
    ]


def _top_expenses(db: Session) -> List[dict]:
    invoices = (
        db.query(models.SupplierInvoice)
        .options(selectinload(models.SupplierInvoice.supplier))
        .filter(models.SupplierInvoice.status == PAID)
        .order_by(models.SupplierInvoice.total_amount.desc(), models.SupplierInvoice.id)
        .limit(TOP_EXPENSES_LIMIT)
        .all()
    )
    return [
        {
            "id": invoice.id,
            "invoice_ref": invoice.invoice_ref,
            "supplier_id": invoice.supplier_id,
            "supplier_name": invoice.supplier.name if invoice.supplier else None,
            "total_amount": invoice.total_amount,
            "invoice_date": invoice.invoice_date,
        }
        for invoice in invoices
    ]


def profit_alerts(profit_margin: float, net_profit: float) -> List[dict]:
    alerts = []
    if profit_margin < LOW_MARGIN_PERCENT:
        alerts.append({"type": "warning", "message": "Low profit margin detected", "value": profit_margin})
    if net_profit < 0:
        alerts.append({"type": "critical", "message": "Negative profit detected", "value": net_profit})
    return alerts


def get_financial_metrics(db: Session, period: str, start: Optional[datetime], end: Optional[datetime]) -> dict:
    """
    Revenue against supplier spend over the window.

    Returns:
        dict with total_revenue, total_expenses, net_profit, profit_margin
        (percent of revenue), expenses, revenue_vs_expenses and profit_trend
        (per bucket, in period order) and profit_alerts
    """
    deliveries = (
        db.query(models.Delivery)
        .filter(models.Delivery.status.in_(REVENUE_STATUSES), *_within(models.Delivery.created_at, start, end))
        .all()
    )
    revenue = _bucket_sums(((d.created_at, delivery_value(d)) for d in deliveries), period)

    paid = (
        db.query(models.SupplierInvoice.invoice_date, models.SupplierInvoice.total_amount)
        .filter(models.SupplierInvoice.status == PAID, *_within(models.SupplierInvoice.invoice_date, start, end))
        .all()
    )
    expenses = _bucket_sums(((row[0], row[1]) for row in paid), period)

    total_revenue = sum(revenue.values())
    total_expenses = sum(expenses.values())
    net_profit = total_revenue - total_expenses
    profit_margin = _percent(net_profit, total_revenue)

    combined = []
    for key in sorted(set(revenue) | set(expenses)):
        period_revenue = revenue.get(key, 0.0)
        period_expenses = expenses.get(key, 0.0)
        combined.append({"period": key, "revenue": period_revenue, "expenses": period_expenses})

    return {
        "total_revenue": total_revenue,
        "total_expenses": total_expenses,
        "net_profit": net_profit,
        "profit_margin": profit_margin,
        "expenses": [{"period": key, "total_amount": amount} for key, amount in expenses.items()],
        "revenue_vs_expenses": combined,
        "profit_trend": [
            {
                "period": entry["period"],
                "profit": entry["revenue"] - entry["expenses"],
                "margin": _percent(entry["revenue"] - entry["expenses"], entry["revenue"]),
            }
            for entry in combined
        ],
        "profit_alerts": profit_alerts(profit_margin, net_profit),
    }


def _item_margin(item: models.InventoryItem) -> float:
    return _percent(item.unit_price - item.buying_price, item.unit_price)


def get_product_performance(db: Session, period: str, start: Optional[datetime], end: Optional[datetime]) -> dict:
    """
    Product and category performance.

    top_products ranks items by potential profit, (unit_price - buying_price)
    * current_stock. categories carries item count, stock value and the
    average percent margin. stock_movements and top_movers come from the
    movement journal inside the window; voided and cancelled entries are
    left out and transfers move no net stock.
    """
    items = db.query(models.InventoryItem).order_by(models.InventoryItem.id).all()

    ranked = sorted(items, key=lambda i: (i.unit_price - i.buying_price) * i.current_stock, reverse=True)
    top_products = [
        {
            "id": item.id,
            "name": item.name,
            "sku": item.sku,
            "total_value": item.current_stock * item.buying_price,
            "potential_profit": (item.unit_price - item.buying_price) * item.current_stock,
            "margin": _item_margin(item),
        }
        for item in ranked[:TOP_PRODUCTS_LIMIT]
    ]

    categories: "OrderedDict[str, dict]" = OrderedDict()
    for item in sorted(items, key=lambda i: i.category):
        entry = categories.setdefault(
            item.category, {"category": item.category, "item_count": 0, "total_value": 0.0, "margins": []}
        )
        entry["item_count"] += 1
        entry["total_value"] += item.current_stock * item.buying_price
        entry["margins"].append(_item_margin(item))
    category_rows = []
    for entry in categories.values():
        margins = entry.pop("margins")
        entry["average_margin"] = sum(margins) / len(margins)
        category_rows.append(entry)

    movements = (
        db.query(models.StockMovement)
        .options(selectinload(models.StockMovement.item))
        .filter(
            models.StockMovement.status.notin_(CLOSED_STATUSES),
            *_within(models.StockMovement.created_at, start, end),
        )
        .order_by(models.StockMovement.created_at, models.StockMovement.id)
        .all()
    )
    buckets: "OrderedDict[str, dict]" = OrderedDict()
    shipped: dict = {}
    for movement in movements:
        key = period_key(movement.created_at, period)
        bucket = buckets.setdefault(key, {"period": key, "stock_in": 0, "stock_out": 0, "net": 0})
        if movement.type == "IN":
            bucket["stock_in"] += movement.quantity
            bucket["net"] += movement.quantity
        elif movement.type == "OUT":
            bucket["stock_out"] += movement.quantity
            bucket["net"] -= movement.quantity
            shipped[movement.item_id] = shipped.get(movement.item_id, 0) + movement.quantity

    by_id = {item.id: item for item in items}
    top_movers = [
        {
            "item_id": item_id,
            "sku": by_id[item_id].sku if item_id in by_id else None,
            "name": by_id[item_id].name if item_id in by_id else None,
            "quantity_out": quantity,
        }
        for item_id, quantity in sorted(shipped.items(), key=lambda pair: (-pair[1], pair[0]))[:TOP_PRODUCTS_LIMIT]
    ]

    return {
        "top_products": top_products,
        "categories": category_rows,
        "stock_movements": list(buckets.values()),
        "top_movers": top_movers,
    }


def get_invoice_trends(db: Session, period: str, start: Optional[datetime], end: Optional[datetime]) -> List[dict]:
    """Invoice count and amount per status for every bucket in the window."""
    rows = (
        db.query(models.SupplierInvoice.invoice_date, models.SupplierInvoice.status, models.SupplierInvoice.total_amount)
        .filter(*_within(models.SupplierInvoice.invoice_date, start, end))
        .all()
    )
    trends: dict = {}
    for invoice_date, status, amount in rows:
        key = period_key(invoice_date, period)
        entry = trends.setdefault(key, {}).setdefault(status, {"status": status, "count": 0, "amount": 0.0})
        entry["count"] += 1
        entry["amount"] += amount
    return [
        {"period": key, "statuses": [trends[key][status] for status in sorted(trends[key])]}
        for key in sorted(trends)
    ]


@cache_result("statistics:dashboard", ttl=ANALYTICS_CACHE_TTL)
def get_dashboard(
    db: Session,
    period: str = MONTHLY,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    """
    Everything the admin dashboard shows in one payload.

    Args:
        db: Database session
        period: daily, weekly, monthly or yearly
        start_date: Custom window start (with end_date)
        end_date: Custom window end (with start_date)

    Returns:
        dict with "overview" (inventory, users, invoices and financial totals),
        "alerts" (low stock list, top expenses, profit alerts) and "charts"
        (per-period series, category distribution, product performance and
        invoice trends)

    Raises:
        ValidationError: for an unknown period or a bad custom range
    """
    now = datetime.utcnow()
    start, end = date_window(period, start_date, end_date, now=now)

    overview = _overview(db, now)
    financials = get_financial_metrics(db, period, start, end)
    products = get_product_performance(db, period, start, end)

    overview["financials"] = {
        "total_revenue": financials["total_revenue"],
        "total_expenses": financials["total_expenses"],
        "net_profit": financials["net_profit"],
        "profit_margin": financials["profit_margin"],
    }
    logger.info(f"Dashboard statistics built for period {period} ({start} .. {end})")

    return {
        "period": period,
        "start_date": start,
        "end_date": end,
        "overview": overview,
        "alerts": {
            "low_stock_items": _low_stock_list(db),
            "top_expenses": _top_expenses(db),
            "profit_alerts": financials["profit_alerts"],
        },
        "charts": {
            "stock_movements": products["stock_movements"],
            "expenses": financials["expenses"],
            "category_distribution": [
                {"category": c["category"], "item_count": c["item_count"], "total_value": c["total_value"]}
                for c in products["categories"]
            ],
            "revenue_vs_expenses": financials["revenue_vs_expenses"],
            "profit_trend": financials["profit_trend"],
            "top_products": products["top_products"],
            "top_movers": products["top_movers"],
            "product_performance": [
                {"category": c["category"], "total_value": c["total_value"], "average_margin": c["average_margin"]}
                for c in products["categories"]
            ],
            "trends": get_invoice_trends(db, period, start, end),
        },
    }
