"""
Stock alert engine.

Alerts are computed from the movement journal, never stored:

- LOW_STOCK / EXCESS_STOCK: the summed quantity of an item's movements is
  compared with the minimum/maximum threshold of the item's first movement.
  Quantities are summed as recorded, whatever the movement type.
- EXPIRING: movements whose expiry date falls within EXPIRY_WINDOW.

check_stock_levels() and check_expiry_dates() are the periodic scans; they
only read and publish events.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from . import models
from .cache import REPORT_CACHE_TTL, cache_result
from .events import STOCK_ALERT, STOCK_EXPIRY, EventBus

logger = logging.getLogger(__name__)

LOW_STOCK = "LOW_STOCK"
EXCESS_STOCK = "EXCESS_STOCK"
EXPIRING = "EXPIRING"
ALERT_TYPES = (LOW_STOCK, EXCESS_STOCK, EXPIRING)

EXPIRY_WINDOW = timedelta(days=30)


def _movement_query(
    db: Session,
    item_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    query = db.query(models.StockMovement)
    if item_id is not None:
        query = query.filter(models.StockMovement.item_id == item_id)
    if start_date:
        query = query.filter(models.StockMovement.created_at >= start_date)
    if end_date:
        query = query.filter(models.StockMovement.created_at <= end_date)
    return query


def find_stock_level_alerts(db: Session, **filters) -> List[dict]:
    """
    Compare each item's journal total against its first-seen thresholds.

    A missing threshold disables that side of the comparison.

    Returns:
        One alert dict per violating item, in item id order
    """
    groups: Dict[int, dict] = {}
    movements = (
        _movement_query(db, **filters)
        .order_by(models.StockMovement.created_at, models.StockMovement.id)
        .all()
    )
    for movement in movements:
        group = groups.get(movement.item_id)
        if group is None:
            group = groups[movement.item_id] = {
                "current_stock": 0,
                "minimum_threshold": movement.minimum_threshold,
                "maximum_threshold": movement.maximum_threshold,
            }
        group["current_stock"] += movement.quantity

    now = datetime.utcnow()
    alerts = []
    for item_id in sorted(groups):
        group = groups[item_id]
        minimum, maximum, total = group["minimum_threshold"], group["maximum_threshold"], group["current_stock"]
        if minimum is not None and total < minimum:
            alert_type = LOW_STOCK
            message = f"Stock for item {item_id} is {total}, below the minimum of {minimum}"
        elif maximum is not None and total > maximum:
            alert_type = EXCESS_STOCK
            message = f"Stock for item {item_id} is {total}, above the maximum of {maximum}"
        else:
            continue
        alerts.append({
            "item_id": item_id,
            "type": alert_type,
            "current_stock": total,
            "minimum_threshold": minimum,
            "maximum_threshold": maximum,
            "message": message,
            "timestamp": now,
        })
    return alerts


def find_expiring(db: Session, now: Optional[datetime] = None, **filters) -> List[dict]:
    """Movements whose expiry date is on or before now + EXPIRY_WINDOW."""
    now = now or datetime.utcnow()
    movements = (
        _movement_query(db, **filters)
        .filter(
            models.StockMovement.expiry_date.isnot(None),
            models.StockMovement.expiry_date <= now + EXPIRY_WINDOW,
        )
        .order_by(models.StockMovement.expiry_date)
        .all()
    )
    return [
        {
            "item_id": movement.item_id,
            "movement_id": movement.id,
            "type": EXPIRING,
            "batch_number": movement.batch_number,
            "expiry_date": movement.expiry_date,
            "quantity": movement.quantity,
            "message": f"Batch {movement.batch_number or '-'} of item {movement.item_id} expires {movement.expiry_date.date().isoformat()}",
            "timestamp": now,
        }
        for movement in movements
    ]


def get_stock_alerts(
    db: Session,
    item_id: Optional[int] = None,
    type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> List[dict]:
    """
    Current alerts, optionally narrowed to one item, one type and a movement date range.

    Args:
        db: Database session
        item_id: Only alerts for this item
        type: LOW_STOCK, EXCESS_STOCK or EXPIRING
        start_date: Consider movements created on or after this date
        end_date: Consider movements created on or before this date
    """
    filters = {"item_id": item_id, "start_date": start_date, "end_date": end_date}
    alerts: List[dict] = []
    if type in (None, LOW_STOCK, EXCESS_STOCK):
        alerts.extend(a for a in find_stock_level_alerts(db, **filters) if type is None or a["type"] == type)
    if type in (None, EXPIRING):
        alerts.extend(find_expiring(db, **filters))
    return alerts


def check_stock_levels(db: Session, bus: EventBus) -> List[dict]:
    """Hourly scan: publish a stock:alert event per violating item."""
    alerts = find_stock_level_alerts(db)
    for alert in alerts:
        bus.publish(STOCK_ALERT, alert)
    logger.info(f"Stock level check raised {len(alerts)} alerts")
    return alerts


def check_expiry_dates(db: Session, bus: EventBus) -> List[dict]:
    """Daily scan: publish a stock:expiry event per expiring batch."""
    expiring = find_expiring(db)
    for alert in expiring:
        bus.publish(STOCK_EXPIRY, alert)
    logger.info(f"Expiry check found {len(expiring)} expiring batches")
    return expiring


@cache_result("report:stock", ttl=REPORT_CACHE_TTL)
def generate_stock_report(db: Session) -> List[dict]:
    """
    Per-item journal summary joined with item details.

    Items whose record no longer exists are left out.

    Returns:
        List of {item_id, item, total_quantity, movement_count,
        average_unit_cost, total_value}
    """
    groups: Dict[int, dict] = {}
    for movement in db.query(models.StockMovement).order_by(models.StockMovement.id).all():
        group = groups.setdefault(movement.item_id, {"total_quantity": 0, "movement_count": 0, "costs": [], "total_value": 0.0})
        group["total_quantity"] += movement.quantity
        group["movement_count"] += 1
        if movement.unit_cost is not None:
            group["costs"].append(movement.unit_cost)
        group["total_value"] += movement.quantity * (movement.unit_cost or 0)

    items = {
        item.id: item
        for item in db.query(models.InventoryItem).filter(models.InventoryItem.id.in_(list(groups))).all()
    }

    report = []
    for item_id in sorted(groups):
        item = items.get(item_id)
        if item is None:
            continue
        group = groups[item_id]
        report.append({
            "item_id": item_id,
            "item": {
                "id": item.id,
                "name": item.name,
                "sku": item.sku,
                "category": item.category,
                "current_stock": item.current_stock,
                "status": item.status,
            },
            "total_quantity": group["total_quantity"],
            "movement_count": group["movement_count"],
            "average_unit_cost": sum(group["costs"]) / len(group["costs"]) if group["costs"] else None,
            "total_value": group["total_value"],
        })
    return report
