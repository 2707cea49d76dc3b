"""
CRUD and lifecycle operations for deliveries.

Every status change appends an entry to the delivery's tracking history;
entering "delivered" stamps actual_delivery_date. Transition rules live in
validators.validate_delivery_transition.
"""
import logging
import math
import random
import string
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from .. import models, notifications, schemas
from ..errors import ConflictError, InvalidTransitionError, NotFoundError
from ..geocoding import get_coordinates
from ..routing import ARRIVAL_RADIUS_KM, haversine_km
from ..validators import (
    ARRIVING,
    COMPLETED,
    DELIVERED,
    IN_TRANSIT,
    PENDING,
    STATUS_FILTER_ALL,
    TERMINAL_STATUSES,
    VOIDED,
    ensure_delivery_transition,
    ensure_required_fields,
    validate_delivery_status,
)

logger = logging.getLogger(__name__)


def generate_invoice_number(now: Optional[datetime] = None) -> str:
    """Build an invoice number of the form INVyymmdd-XXXX."""
    now = now or datetime.utcnow()
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"INV{now:%y%m%d}-{suffix}"


def _query(db: Session):
    return db.query(models.Delivery).options(selectinload(models.Delivery.history))


def get_delivery(db: Session, delivery_id: int) -> Optional[models.Delivery]:
    """
    Retrieve a single delivery with its tracking history.

    Args:
        db: Database session
        delivery_id: ID of the delivery

    Returns:
        Delivery object or None if not found
    """
    return _query(db).filter(models.Delivery.id == delivery_id).first()


def _require_delivery(db: Session, delivery_id: int) -> models.Delivery:
    db_delivery = get_delivery(db, delivery_id)
    if db_delivery is None:
        raise NotFoundError(f"Delivery #{delivery_id} not found")
    return db_delivery


def _require_company(db: Session, company_id: int) -> None:
    if db.get(models.DeliveryCompany, company_id) is None:
        raise NotFoundError("Delivery company not found")


def _add_history(
    db_delivery: models.Delivery,
    status: str,
    notes: Optional[str] = None,
    location: Optional[Dict[str, Any]] = None,
) -> models.DeliveryTrackingEvent:
    event = models.DeliveryTrackingEvent(
        timestamp=datetime.utcnow(),
        status=status,
        notes=notes,
        location=location,
    )
    db_delivery.history.append(event)
    return event


def _set_status(
    db_delivery: models.Delivery,
    status: str,
    notes: Optional[str] = None,
    location: Optional[Dict[str, Any]] = None,
) -> None:
    """Move to a new status, recording history. Callers validate the transition first."""
    db_delivery.status = status
    _add_history(db_delivery, status, notes, location)
    if location:
        db_delivery.current_location = location
    if status == DELIVERED:
        db_delivery.actual_delivery_date = datetime.utcnow()


def _build_delivery(db: Session, delivery: schemas.DeliveryCreate) -> models.Delivery:
    _require_company(db, delivery.delivery_company_id)
    data = delivery.model_dump(mode="json", exclude={"preferred_delivery_date"})
    db_delivery = models.Delivery(
        **data,
        preferred_delivery_date=delivery.preferred_delivery_date,
        invoice_number=generate_invoice_number(),
        status=PENDING,
    )
    _add_history(db_delivery, PENDING, notes="Delivery created")
    return db_delivery


def create_delivery(db: Session, delivery: schemas.DeliveryCreate) -> models.Delivery:
    """
    Create a pending delivery with its first history entry.

    Raises:
        NotFoundError: if the delivery company does not exist
        ConflictError: if the generated invoice number collides
    """
    db_delivery = _build_delivery(db, delivery)
    db.add(db_delivery)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Duplicate invoice number detected. Please try again.")
    logger.info(f"Delivery {db_delivery.id} created ({db_delivery.invoice_number})")
    return get_delivery(db, db_delivery.id)


def create_deliveries_bulk(db: Session, deliveries: List[schemas.DeliveryCreate]) -> List[models.Delivery]:
    """
    Create several deliveries in one transaction.

    Any failure (missing company, duplicate invoice number) rolls back the
    whole batch.
    """
    try:
        db_deliveries = [_build_delivery(db, delivery) for delivery in deliveries]
        db.add_all(db_deliveries)
        db.flush()
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Duplicate invoice number detected. Please try again.")
    except Exception:
        db.rollback()
        raise
    logger.info(f"Created {len(db_deliveries)} deliveries in bulk")
    return [get_delivery(db, d.id) for d in db_deliveries]


def get_deliveries(
    db: Session,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    """
    List deliveries newest first.

    Args:
        search: Case-insensitive match on customer name, email, phone or invoice number
        status: Exact status; "all" disables the filter
        start_date: Created on or after
        end_date: Created on or before

    Returns:
        dict with items, total, page and total_pages
    """
    query = _query(db)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            models.Delivery.customer_name.ilike(pattern),
            models.Delivery.customer_email.ilike(pattern),
            models.Delivery.customer_phone.ilike(pattern),
            models.Delivery.invoice_number.ilike(pattern),
        ))
    if status and status != STATUS_FILTER_ALL:
        query = query.filter(models.Delivery.status == status)
    if start_date:
        query = query.filter(models.Delivery.created_at >= start_date)
    if end_date:
        query = query.filter(models.Delivery.created_at <= end_date)

    total = query.count()
    items = (
        query.order_by(models.Delivery.created_at.desc(), models.Delivery.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {"items": items, "total": total, "page": page, "total_pages": math.ceil(total / limit) if limit else 0}


def _apply_update(db: Session, db_delivery: models.Delivery, update: schemas.DeliveryUpdate) -> bool:
    """Apply a patch in the current transaction. Returns True when the status changed."""
    patch = update.model_dump(mode="json", exclude_unset=True, exclude={"id", "preferred_delivery_date"})
    new_status = patch.pop("status", None)
    status_notes = patch.pop("status_notes", None)
    status_location = patch.pop("status_location", None)
    ensure_required_fields(models.Delivery, patch)

    status_changed = new_status is not None and new_status != db_delivery.status
    if status_changed:
        validate_delivery_status(new_status)
        ensure_delivery_transition(db_delivery.status, new_status)

    if patch.get("delivery_company_id") is not None:
        _require_company(db, patch["delivery_company_id"])

    for key, value in patch.items():
        setattr(db_delivery, key, value)
    if "preferred_delivery_date" in update.model_fields_set:
        db_delivery.preferred_delivery_date = update.preferred_delivery_date

    if status_changed:
        _set_status(db_delivery, new_status, status_notes, status_location)
    return status_changed


def update_delivery(db: Session, delivery_id: int, update: schemas.DeliveryUpdate) -> models.Delivery:
    """
    Update delivery fields; a status change is validated and recorded in history.

    Raises:
        NotFoundError: if the delivery does not exist
        InvalidTransitionError: if the status change is not permitted
    """
    db_delivery = _require_delivery(db, delivery_id)
    status_changed = _apply_update(db, db_delivery, update)
    db.commit()
    db_delivery = get_delivery(db, delivery_id)
    if status_changed:
        notifications.send_status_notification(db_delivery)
    return db_delivery


def update_deliveries_bulk(db: Session, updates: List[schemas.DeliveryBulkUpdate]) -> List[models.Delivery]:
    """
    Apply several updates in one transaction.

    A missing delivery or a refused transition rolls back every update.
    """
    try:
        for update in updates:
            db_delivery = get_delivery(db, update.id)
            if db_delivery is None:
                raise NotFoundError(f"Delivery #{update.id} not found")
            _apply_update(db, db_delivery, update)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Duplicate key in bulk update")
    except Exception:
        db.rollback()
        raise
    return [get_delivery(db, update.id) for update in updates]


def update_status(
    db: Session,
    delivery_id: int,
    status: str,
    notes: Optional[str] = None,
    location: Optional[schemas.GeoPoint] = None,
) -> models.Delivery:
    """
    Move a delivery to a new status.

    Args:
        db: Database session
        delivery_id: ID of the delivery
        status: Target status
        notes: Optional notes for the history entry
        location: Optional position, which also becomes the current location

    Returns:
        The updated delivery

    Raises:
        NotFoundError: if the delivery does not exist
        ValidationError: if the status is unknown
        InvalidTransitionError: if the delivery is cancelled or voided, or completed and not being returned
    """
    validate_delivery_status(status)
    db_delivery = _require_delivery(db, delivery_id)
    ensure_delivery_transition(db_delivery.status, status)

    _set_status(db_delivery, status, notes, location.model_dump(mode="json") if location else None)
    db.commit()
    logger.info(f"Delivery {delivery_id} status -> {status}")

    db_delivery = get_delivery(db, delivery_id)
    notifications.send_status_notification(db_delivery)
    return db_delivery


def void_delivery(db: Session, delivery_id: int) -> models.Delivery:
    """
    Void a delivery.

    Raises:
        NotFoundError: if the delivery does not exist
        InvalidTransitionError: if it is already voided, cancelled or completed
    """
    db_delivery = _require_delivery(db, delivery_id)
    if db_delivery.status == VOIDED:
        raise InvalidTransitionError("Delivery is already voided")
    if db_delivery.status == COMPLETED:
        raise InvalidTransitionError("Cannot void a completed delivery")
    ensure_delivery_transition(db_delivery.status, VOIDED)

    _set_status(db_delivery, VOIDED, notes="Delivery voided")
    db.commit()
    logger.info(f"Delivery {delivery_id} voided")

    db_delivery = get_delivery(db, delivery_id)
    notifications.send_status_notification(db_delivery)
    return db_delivery


def add_proof_of_delivery(db: Session, delivery_id: int, proof: schemas.ProofOfDelivery) -> models.Delivery:
    """
    Attach proof of delivery. Allowed once, and only while the delivery is delivered.

    Raises:
        NotFoundError: if the delivery does not exist
        InvalidTransitionError: if the status is not delivered
        ConflictError: if proof was already recorded
    """
    db_delivery = _require_delivery(db, delivery_id)
    if db_delivery.status != DELIVERED:
        raise InvalidTransitionError("Proof of delivery can only be added to delivered items")
    if db_delivery.proof_of_delivery:
        raise ConflictError("Proof of delivery has already been recorded")

    db_delivery.proof_of_delivery = {**proof.model_dump(mode="json"), "timestamp": datetime.utcnow().isoformat()}
    db.commit()

    db_delivery = get_delivery(db, delivery_id)
    notifications.send_completion_notification(db_delivery)
    return db_delivery


def update_location(db: Session, delivery_id: int, location: schemas.GeoPoint) -> models.Delivery:
    """
    Record the delivery's current position.

    The position is appended to history under the current status. An
    in-transit delivery within ARRIVAL_RADIUS_KM of its destination moves to
    arriving.

    Raises:
        NotFoundError: if the delivery does not exist
        InvalidTransitionError: if the delivery is cancelled or voided
    """
    db_delivery = _require_delivery(db, delivery_id)
    if db_delivery.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(f"Cannot track a {db_delivery.status} delivery")

    position = location.model_dump(mode="json")
    db_delivery.current_location = position
    _add_history(db_delivery, db_delivery.status, location=position)

    arrived = False
    if db_delivery.status == IN_TRANSIT:
        destination = get_coordinates(db_delivery.delivery_location)
        lat, lng = location.coordinates
        if haversine_km(lat, lng, destination[0], destination[1]) <= ARRIVAL_RADIUS_KM:
            # no separate history entry: the position entry above keeps the in_transit status
            db_delivery.status = ARRIVING
            arrived = True
    db.commit()

    db_delivery = get_delivery(db, delivery_id)
    if arrived:
        logger.info(f"Delivery {delivery_id} is arriving")
        notifications.send_status_notification(db_delivery)
    return db_delivery


def delete_delivery(db: Session, delivery_id: int) -> bool:
    """
    Delete a delivery and its tracking history.

    Returns:
        True if deleted, False if not found
    """
    db_delivery = get_delivery(db, delivery_id)
    if db_delivery is None:
        return False
    db.delete(db_delivery)
    db.commit()
    return True
