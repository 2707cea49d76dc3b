"""
CRUD operations for storage locations and their capacity ledger.

used_capacity always stays within [0, capacity]; a change that would leave
that range raises before anything is written.
"""
import logging
import math
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import CapacityExceededError, NegativeCapacityError, NotFoundError, ValidationError
from ..validators import ensure_required_fields, normalize_location_type

logger = logging.getLogger(__name__)


def get_location(db: Session, location_id: int) -> Optional[models.Location]:
    return db.query(models.Location).filter(models.Location.id == location_id).first()


def get_locations(
    db: Session,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    type: Optional[str] = None,
) -> dict:
    """
    List locations, optionally matching name/address and type.

    Returns:
        dict with items, total, page and total_pages
    """
    query = db.query(models.Location)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(models.Location.name.ilike(pattern), models.Location.address.ilike(pattern)))
    if type:
        query = query.filter(models.Location.type == normalize_location_type(type))

    total = query.count()
    items = query.order_by(models.Location.id).offset((page - 1) * limit).limit(limit).all()
    return {"items": items, "total": total, "page": page, "total_pages": math.ceil(total / limit) if limit else 0}


def create_location(db: Session, location: schemas.LocationCreate) -> models.Location:
    """Create an active, empty location."""
    data = location.model_dump()
    data["type"] = normalize_location_type(data["type"])
    db_location = models.Location(**data, status="active", used_capacity=0)
    db.add(db_location)
    db.commit()
    db.refresh(db_location)
    logger.info(f"Location {db_location.id} ({db_location.name}) created with capacity {db_location.capacity}")
    return db_location


def update_location(db: Session, location_id: int, location: schemas.LocationUpdate) -> Optional[models.Location]:
    """
    Update a location's details.

    Returns:
        Updated Location object or None if not found

    Raises:
        ValidationError: for an unknown type or a capacity below what is already used
    """
    db_location = get_location(db, location_id)
    if db_location is None:
        return None

    update_data = location.model_dump(exclude_unset=True)
    ensure_required_fields(models.Location, update_data)
    if "type" in update_data:
        update_data["type"] = normalize_location_type(update_data["type"])
    if update_data.get("capacity") is not None and update_data["capacity"] < db_location.used_capacity:
        raise ValidationError(
            f"Capacity cannot be lower than the used capacity ({db_location.used_capacity})",
            [{"field": "capacity", "message": "below used capacity"}],
        )

    for key, value in update_data.items():
        setattr(db_location, key, value)
    db.commit()
    db.refresh(db_location)
    return db_location


def update_capacity(db: Session, location_id: int, delta: int, in_transaction: bool = False) -> models.Location:
    """
    Apply a signed change to a location's used capacity.

    Args:
        db: Database session
        location_id: ID of the location
        delta: Units to add (positive) or release (negative)
        in_transaction: Flush into the caller's transaction instead of committing

    Returns:
        The updated Location

    Raises:
        NotFoundError: if the location does not exist
        CapacityExceededError: if the new value would exceed capacity
        NegativeCapacityError: if the new value would drop below zero
    """
    db_location = (
        db.query(models.Location)
        .filter(models.Location.id == location_id)
        .with_for_update()
        .first()
    )
    if db_location is None:
        raise NotFoundError(f"Location with ID {location_id} not found")

    new_used = db_location.used_capacity + delta
    error = None
    if new_used > db_location.capacity:
        error = CapacityExceededError("Location capacity exceeded")
    elif new_used < 0:
        error = NegativeCapacityError("Location capacity cannot be negative")
    if error is not None:
        if not in_transaction:
            # release the row lock
            db.rollback()
        raise error

    db_location.used_capacity = new_used
    if in_transaction:
        db.flush()
    else:
        db.commit()
        db.refresh(db_location)
    logger.info(f"Location {location_id} used capacity now {new_used}/{db_location.capacity}")
    return db_location


def delete_location(db: Session, location_id: int) -> bool:
    """
    Delete an empty location.

    Returns:
        True if deleted, False if not found

    Raises:
        ValidationError: while the location still holds stock
    """
    db_location = get_location(db, location_id)
    if db_location is None:
        return False
    if db_location.used_capacity > 0:
        raise ValidationError("Cannot delete location with stored items. Please remove all items first.")
    db.delete(db_location)
    db.commit()
    return True
