"""
Route heuristics for deliveries.

Distances are great-circle (haversine) kilometres between [latitude, longitude]
pairs. Ordering is greedy nearest neighbour from the first delivery in input
order, with no backtracking.
"""
import logging
import math
from datetime import datetime, time
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session, selectinload

from . import models
from .geocoding import get_coordinates
from .validators import ROUTABLE_STATUSES

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
# A reported position this close to the destination counts as arriving
ARRIVAL_RADIUS_KM = 0.1
# Consecutive stops further apart than this start a new route
ROUTE_BREAK_KM = 10.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def sort_by_proximity(points: Sequence[Tuple[int, Tuple[float, float]]]) -> List[Tuple[int, Tuple[float, float]]]:
    """
    Order (id, (lat, lng)) pairs by greedy nearest neighbour.

    The first point stays first; each next stop is the closest remaining one.
    Ties keep the earlier point.

    Args:
        points: (id, coordinates) pairs in input order

    Returns:
        The same pairs, reordered
    """
    if len(points) <= 1:
        return list(points)

    ordered = [points[0]]
    remaining = list(points[1:])
    while remaining:
        last_lat, last_lng = ordered[-1][1]
        nearest_index = 0
        shortest = math.inf
        for index, (_, (lat, lng)) in enumerate(remaining):
            distance = haversine_km(last_lat, last_lng, lat, lng)
            if distance < shortest:
                shortest = distance
                nearest_index = index
        ordered.append(remaining.pop(nearest_index))
    return ordered


def route_distance_km(points: Sequence[Tuple[int, Tuple[float, float]]]) -> float:
    total = 0.0
    for (_, a), (_, b) in zip(points, points[1:]):
        total += haversine_km(a[0], a[1], b[0], b[1])
    return total


def optimize_route(db: Session, delivery_ids: List[int]) -> List[models.Delivery]:
    """
    Return the requested deliveries in nearest-neighbour visiting order.

    Unknown ids are skipped. The starting point is the first requested
    delivery that exists.
    """
    found: Dict[int, models.Delivery] = {
        delivery.id: delivery
        for delivery in db.query(models.Delivery)
        .options(selectinload(models.Delivery.history))
        .filter(models.Delivery.id.in_(delivery_ids))
        .all()
    }
    points = [
        (delivery_id, get_coordinates(found[delivery_id].delivery_location))
        for delivery_id in delivery_ids
        if delivery_id in found
    ]
    ordered = sort_by_proximity(points)
    logger.info(f"Optimized route over {len(ordered)} deliveries ({route_distance_km(ordered):.2f} km)")
    return [found[delivery_id] for delivery_id, _ in ordered]


def cluster_routes(db: Session, company_id: int, day: Optional[datetime] = None) -> List[List[dict]]:
    """
    Split a company's active deliveries for a day into routes.

    Deliveries that are assigned, in transit or out for delivery and have a
    tracking entry on that day are walked in id order; a new route starts
    whenever the next stop is more than ROUTE_BREAK_KM from the previous one.

    Returns:
        List of routes, each a list of {id, coordinates, status}
    """
    day = day or datetime.utcnow()
    start = datetime.combine(day.date(), time.min)
    end = datetime.combine(day.date(), time.max)

    deliveries = (
        db.query(models.Delivery)
        .filter(
            models.Delivery.delivery_company_id == company_id,
            models.Delivery.status.in_(ROUTABLE_STATUSES),
            models.Delivery.history.any(
                (models.DeliveryTrackingEvent.timestamp >= start) & (models.DeliveryTrackingEvent.timestamp <= end)
            ),
        )
        .order_by(models.Delivery.id)
        .all()
    )
    if not deliveries:
        return []

    routes: List[List[dict]] = []
    current: List[dict] = []
    previous = get_coordinates(deliveries[0].delivery_location)
    for delivery in deliveries:
        coordinates = get_coordinates(delivery.delivery_location)
        if haversine_km(previous[0], previous[1], coordinates[0], coordinates[1]) > ROUTE_BREAK_KM and current:
            routes.append(current)
            current = []
        current.append({"id": delivery.id, "coordinates": list(coordinates), "status": delivery.status})
        previous = coordinates
    if current:
        routes.append(current)
    return routes
