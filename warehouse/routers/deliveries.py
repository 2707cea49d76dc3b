"""
Delivery endpoints: CRUD, lifecycle, tracking, analytics and routes.

Lifecycle writes publish a delivery event to websocket clients and webhooks.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import analytics, events, models, routing, schemas
from ..crud import deliveries as crud_deliveries
from ..database import get_db
from ..permissions import require_permission

router = APIRouter(prefix="/deliveries", tags=["deliveries"])

DEFAULT_ANALYTICS_DAYS = 30


def _payload(db_delivery: models.Delivery) -> schemas.Delivery:
    return schemas.Delivery.model_validate(db_delivery)


def _date_range(start_date: Optional[datetime], end_date: Optional[datetime]):
    end_date = end_date or datetime.utcnow()
    start_date = start_date or end_date - timedelta(days=DEFAULT_ANALYTICS_DAYS)
    return start_date, end_date


@router.post("", response_model=schemas.Delivery, status_code=status.HTTP_201_CREATED)
async def create_delivery(
    delivery: schemas.DeliveryCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "create")),
):
    """
    Create a pending delivery with a generated invoice number.

    Raises:
        NotFoundError: 404 if the delivery company does not exist
        ConflictError: 409 on an invoice number collision
    """
    result = _payload(crud_deliveries.create_delivery(db, delivery))
    events.bus.publish(events.DELIVERY_CREATED, result)
    return result


@router.get("", response_model=schemas.Page[schemas.Delivery])
def list_deliveries(
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "read")),
):
    return crud_deliveries.get_deliveries(
        db, page=page, limit=limit, search=search, status=status, start_date=start_date, end_date=end_date
    )


@router.post("/bulk", response_model=List[schemas.Delivery], status_code=status.HTTP_201_CREATED)
async def create_deliveries_bulk(
    deliveries: List[schemas.DeliveryCreate],
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "create")),
):
    """Create several deliveries; any failure creates none of them."""
    result = [_payload(d) for d in crud_deliveries.create_deliveries_bulk(db, deliveries)]
    events.bus.publish(events.DELIVERIES_BULK_CREATED, result)
    return result


@router.put("/bulk/update", response_model=List[schemas.Delivery])
async def update_deliveries_bulk(
    updates: List[schemas.DeliveryBulkUpdate],
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "update")),
):
    result = [_payload(d) for d in crud_deliveries.update_deliveries_bulk(db, updates)]
    events.bus.publish(events.DELIVERIES_BULK_UPDATED, result)
    return result


@router.get("/analytics/performance")
def get_performance(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "read")),
):
    """
    Delivery performance over a date range (default: the last 30 days).

    Returns:
        dict: totals, average delivery time in minutes, completion and on-time rates
    """
    start_date, end_date = _date_range(start_date, end_date)
    return analytics.get_performance_metrics(db, start_date, end_date)


@router.get("/analytics/trends")
def get_trends(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    company_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "read")),
):
    start_date, end_date = _date_range(start_date, end_date)
    return analytics.get_delivery_trends(db, start_date, end_date, company_id)


@router.get("/analytics/daily")
def get_daily(
    date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "read")),
):
    return analytics.get_daily_stats(db, date)


@router.get("/analytics/hotspots")
def get_hotspots(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "read")),
):
    return analytics.get_delivery_hotspots(db)


@router.post("/routes/optimize", response_model=List[schemas.Delivery])
def optimize_route(
    body: schemas.RouteRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "read")),
):
    """Order the given deliveries by nearest-neighbour visiting order."""
    return routing.optimize_route(db, body.delivery_ids)


@router.get("/routes", response_model=List[List[schemas.RouteStop]])
def get_routes(
    company_id: int,
    date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "read")),
):
    """Split a company's active deliveries for a day into routes."""
    return routing.cluster_routes(db, company_id, date)


@router.get("/{delivery_id}", response_model=schemas.Delivery)
def get_delivery(
    delivery_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "read")),
):
    db_delivery = crud_deliveries.get_delivery(db, delivery_id)
    if db_delivery is None:
        raise HTTPException(status_code=404, detail="Delivery not found")
    return db_delivery


@router.put("/{delivery_id}", response_model=schemas.Delivery)
async def update_delivery(
    delivery_id: int,
    update: schemas.DeliveryUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "update")),
):
    result = _payload(crud_deliveries.update_delivery(db, delivery_id, update))
    events.bus.publish(events.DELIVERY_UPDATED, result)
    return result


@router.delete("/{delivery_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_delivery(
    delivery_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "delete")),
):
    if not crud_deliveries.delete_delivery(db, delivery_id):
        raise HTTPException(status_code=404, detail="Delivery not found")
    events.bus.publish(events.DELIVERY_DELETED, {"id": delivery_id})
    return None


@router.put("/{delivery_id}/status", response_model=schemas.Delivery)
async def update_status(
    delivery_id: int,
    body: schemas.DeliveryStatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "update")),
):
    """
    Move a delivery to a new status.

    Raises:
        ValidationError: 400 for an unknown status
        InvalidTransitionError: 400 once the delivery is cancelled or voided
    """
    db_delivery = crud_deliveries.update_status(db, delivery_id, body.status, body.notes, body.location)
    result = _payload(db_delivery)
    events.bus.publish(events.DELIVERY_STATUS_UPDATED, result)
    return result


@router.put("/{delivery_id}/location", response_model=schemas.Delivery)
async def update_location(
    delivery_id: int,
    location: schemas.GeoPoint,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "update")),
):
    result = _payload(crud_deliveries.update_location(db, delivery_id, location))
    events.bus.publish(events.DELIVERY_UPDATED, result)
    return result


@router.put("/{delivery_id}/void", response_model=schemas.Delivery)
async def void_delivery(
    delivery_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "update")),
):
    result = _payload(crud_deliveries.void_delivery(db, delivery_id))
    events.bus.publish(events.DELIVERY_VOIDED, result)
    return result


@router.put("/{delivery_id}/proof-of-delivery", response_model=schemas.Delivery)
async def add_proof_of_delivery(
    delivery_id: int,
    proof: schemas.ProofOfDelivery,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("deliveries", "update")),
):
    result = _payload(crud_deliveries.add_proof_of_delivery(db, delivery_id, proof))
    events.bus.publish(events.DELIVERY_PROOF_ADDED, result)
    return result
