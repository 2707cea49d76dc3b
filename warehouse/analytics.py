"""
Delivery analytics.

A delivery is in a date range when any of its tracking entries falls in the
range. It is on time when it reached "delivered" within 24 hours of its
first tracking entry. Rates with an empty denominator are reported as 0.0.
"""
import logging
from collections import OrderedDict
from datetime import datetime, time, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session, selectinload

from . import models
from .cache import ANALYTICS_CACHE_TTL, cache_result
from .validators import DELIVERED, FAILED

logger = logging.getLogger(__name__)

ON_TIME_WINDOW = timedelta(hours=24)


def _deliveries_in_range(
    db: Session, start_date: datetime, end_date: datetime, company_id: Optional[int] = None
) -> List[models.Delivery]:
    query = (
        db.query(models.Delivery)
        .options(selectinload(models.Delivery.history))
        .filter(
            models.Delivery.history.any(
                (models.DeliveryTrackingEvent.timestamp >= start_date)
                & (models.DeliveryTrackingEvent.timestamp <= end_date)
            )
        )
    )
    if company_id is not None:
        query = query.filter(models.Delivery.delivery_company_id == company_id)
    return query.order_by(models.Delivery.id).all()


def _started_at(delivery: models.Delivery) -> Optional[datetime]:
    return delivery.history[0].timestamp if delivery.history else None


def is_on_time(delivery: models.Delivery) -> bool:
    """True when actual_delivery_date is within 24h of the first tracking entry."""
    started = _started_at(delivery)
    if not delivery.actual_delivery_date or not started:
        return False
    return delivery.actual_delivery_date <= started + ON_TIME_WINDOW


def delivery_minutes(delivery: models.Delivery) -> Optional[float]:
    started = _started_at(delivery)
    if not delivery.actual_delivery_date or not started:
        return None
    return (delivery.actual_delivery_date - started).total_seconds() / 60


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator else 0.0


@cache_result("analytics:performance", ttl=ANALYTICS_CACHE_TTL)
def get_performance_metrics(db: Session, start_date: datetime, end_date: datetime) -> dict:
    """
    Aggregate delivery performance over a date range.

    Args:
        db: Database session
        start_date: Range start (inclusive)
        end_date: Range end (inclusive)

    Returns:
        dict with total_deliveries, completed_deliveries, failed_deliveries,
        on_time_deliveries, average_delivery_time (minutes), completion_rate
        and on_time_rate
    """
    deliveries = _deliveries_in_range(db, start_date, end_date)

    completed = failed = on_time = 0
    total_minutes = 0.0
    timed = 0
    for delivery in deliveries:
        if delivery.status == DELIVERED:
            completed += 1
            if is_on_time(delivery):
                on_time += 1
            minutes = delivery_minutes(delivery)
            if minutes is not None:
                total_minutes += minutes
                timed += 1
        elif delivery.status == FAILED:
            failed += 1

    return {
        "total_deliveries": len(deliveries),
        "completed_deliveries": completed,
        "failed_deliveries": failed,
        "on_time_deliveries": on_time,
        "average_delivery_time": total_minutes / timed if timed else 0.0,
        "completion_rate": _ratio(completed, len(deliveries)),
        "on_time_rate": _ratio(on_time, completed),
    }


def get_delivery_trends(
    db: Session, start_date: datetime, end_date: datetime, company_id: Optional[int] = None
) -> dict:
    """
    Daily and hourly delivery trends.

    Returns:
        dict with "daily" (date, deliveries, on_time, failed per first-entry day,
        in order of first appearance) and "hourly" (24 buckets counting
        actual_delivery_date hours)
    """
    deliveries = _deliveries_in_range(db, start_date, end_date, company_id)

    daily: "OrderedDict[str, dict]" = OrderedDict()
    for delivery in deliveries:
        started = _started_at(delivery)
        if started is None:
            continue
        key = started.date().isoformat()
        entry = daily.setdefault(key, {"date": key, "deliveries": 0, "on_time": 0, "failed": 0})
        entry["deliveries"] += 1
        if delivery.status == DELIVERED and is_on_time(delivery):
            entry["on_time"] += 1
        elif delivery.status == FAILED:
            entry["failed"] += 1

    hourly = [{"hour": hour, "deliveries": 0} for hour in range(24)]
    for delivery in deliveries:
        if delivery.actual_delivery_date:
            hourly[delivery.actual_delivery_date.hour]["deliveries"] += 1

    return {"daily": list(daily.values()), "hourly": hourly}


def get_daily_stats(db: Session, day: Optional[datetime] = None) -> dict:
    """Count deliveries with activity today, keyed by the date of their first entry."""
    day = day or datetime.utcnow()
    start = datetime.combine(day.date(), time.min)
    end = datetime.combine(day.date(), time.max)

    stats: dict = {}
    for delivery in _deliveries_in_range(db, start, end):
        started = _started_at(delivery)
        if started is not None:
            key = started.date().isoformat()
            stats[key] = stats.get(key, 0) + 1
    return stats


def get_delivery_hotspots(db: Session) -> List[dict]:
    """
    Group delivered deliveries with known coordinates by destination.

    Returns:
        List of {coordinates, delivery_count, average_delivery_time, intensity}
        sorted by delivery_count descending
    """
    groups: dict = {}
    deliveries = (
        db.query(models.Delivery)
        .options(selectinload(models.Delivery.history))
        .filter(models.Delivery.status == DELIVERED)
        .all()
    )
    for delivery in deliveries:
        coordinates = (delivery.delivery_location or {}).get("coordinates")
        if not coordinates:
            continue
        key = tuple(coordinates)
        group = groups.setdefault(key, {"count": 0, "minutes": []})
        group["count"] += 1
        minutes = delivery_minutes(delivery)
        if minutes is not None:
            group["minutes"].append(minutes)

    hotspots = []
    for coordinates, group in groups.items():
        average = sum(group["minutes"]) / len(group["minutes"]) if group["minutes"] else 0.0
        hotspots.append({
            "coordinates": list(coordinates),
            "delivery_count": group["count"],
            "average_delivery_time": average,
            "intensity": group["count"] / (average + 1),
        })
    hotspots.sort(key=lambda h: h["delivery_count"], reverse=True)
    return hotspots
