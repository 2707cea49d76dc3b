"""
CRUD operations for the stock movement journal.

Movements are created PENDING. Voiding and cancelling only change the status
and stamp who did it; there is no transition guard on those two operations.
"""
import logging
import math
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from .. import models, schemas
from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..validators import ensure_required_fields

logger = logging.getLogger(__name__)

PENDING = "PENDING"
COMPLETED = "COMPLETED"
VOIDED = "VOIDED"
CANCELLED = "CANCELLED"

# A generic update may not revive these
CLOSED_STATUSES = (VOIDED, CANCELLED)


def _query(db: Session):
    return db.query(models.StockMovement).options(
        joinedload(models.StockMovement.item),
        joinedload(models.StockMovement.location),
        joinedload(models.StockMovement.to_location),
    )


def get_movement(db: Session, movement_id: int) -> Optional[models.StockMovement]:
    """
    Retrieve a single movement with its item and locations loaded.

    Args:
        db: Database session
        movement_id: ID of the movement

    Returns:
        StockMovement object or None if not found
    """
    return _query(db).filter(models.StockMovement.id == movement_id).first()


def _check_references(db: Session, data: dict) -> None:
    item_id = data.get("item_id")
    if item_id is not None and db.get(models.InventoryItem, item_id) is None:
        raise NotFoundError(f"Inventory item {item_id} not found")
    for field in ("location_id", "to_location_id"):
        location_id = data.get(field)
        if location_id is not None and db.get(models.Location, location_id) is None:
            raise NotFoundError(f"Location {location_id} not found")


def _build_movement(db: Session, movement: schemas.StockMovementCreate, user_id: Optional[int]) -> models.StockMovement:
    data = movement.model_dump()
    if data["type"] == "TRANSFER" and data.get("to_location_id") is None:
        raise ValidationError(
            "Transfer movements need a destination location",
            [{"field": "to_location_id", "message": "required for TRANSFER"}],
        )
    _check_references(db, data)
    if data.get("total_cost") is None and data.get("unit_cost") is not None:
        data["total_cost"] = data["unit_cost"] * data["quantity"]
    return models.StockMovement(**data, created_by=user_id, status=PENDING)


def create_movement(db: Session, movement: schemas.StockMovementCreate, user_id: Optional[int] = None) -> models.StockMovement:
    """
    Record a new movement in the journal.

    Args:
        db: Database session
        movement: Movement data
        user_id: User recording the movement

    Returns:
        The created movement, with item and locations loaded

    Raises:
        NotFoundError: if the item or a referenced location does not exist
        ValidationError: if a transfer has no destination
    """
    db_movement = _build_movement(db, movement, user_id)
    db.add(db_movement)
    db.commit()
    logger.info(f"Movement {db_movement.id} recorded: {db_movement.type} {db_movement.quantity} of item {db_movement.item_id}")
    return get_movement(db, db_movement.id)


def create_movements_bulk(
    db: Session, movements: List[schemas.StockMovementCreate], user_id: Optional[int] = None
) -> List[models.StockMovement]:
    """Record several movements in one commit; any invalid entry aborts the batch."""
    try:
        db_movements = [_build_movement(db, movement, user_id) for movement in movements]
        db.add_all(db_movements)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Recorded {len(db_movements)} movements in bulk")
    return [get_movement(db, m.id) for m in db_movements]


def get_movements(
    db: Session,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    type: Optional[str] = None,
    status: Optional[str] = None,
    item_id: Optional[int] = None,
    location_id: Optional[int] = None,
    to_location_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    """
    List movements newest first, filtered and paginated.

    Returns:
        dict with items, total, page and total_pages
    """
    query = _query(db)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            models.StockMovement.reason.ilike(pattern),
            models.StockMovement.reference.ilike(pattern),
            models.StockMovement.notes.ilike(pattern),
        ))
    if type:
        query = query.filter(models.StockMovement.type == type)
    if status:
        query = query.filter(models.StockMovement.status == status)
    if item_id is not None:
        query = query.filter(models.StockMovement.item_id == item_id)
    if location_id is not None:
        query = query.filter(models.StockMovement.location_id == location_id)
    if to_location_id is not None:
        query = query.filter(models.StockMovement.to_location_id == to_location_id)
    if start_date:
        query = query.filter(models.StockMovement.created_at >= start_date)
    if end_date:
        query = query.filter(models.StockMovement.created_at <= end_date)

    total = query.count()
    items = (
        query.order_by(models.StockMovement.created_at.desc(), models.StockMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {"items": items, "total": total, "page": page, "total_pages": math.ceil(total / limit) if limit else 0}


def _apply_update(db: Session, db_movement: models.StockMovement, patch: dict) -> None:
    ensure_required_fields(models.StockMovement, patch)
    new_status = patch.get("status")
    if new_status and db_movement.status in CLOSED_STATUSES and new_status != db_movement.status:
        raise InvalidTransitionError(f"Cannot change status of a {db_movement.status.lower()} movement")
    _check_references(db, patch)
    for key, value in patch.items():
        setattr(db_movement, key, value)


def update_movement(db: Session, movement_id: int, movement: schemas.StockMovementUpdate) -> Optional[models.StockMovement]:
    """
    Update an existing movement.

    Args:
        db: Database session
        movement_id: ID of the movement to update
        movement: Fields to change (only provided fields are written)

    Returns:
        Updated movement or None if not found

    Raises:
        InvalidTransitionError: if the update would change the status of a voided or cancelled movement
    """
    db_movement = get_movement(db, movement_id)
    if db_movement is None:
        return None
    _apply_update(db, db_movement, movement.model_dump(exclude_unset=True))
    db.commit()
    return get_movement(db, movement_id)


def update_movements_bulk(db: Session, updates: List[schemas.StockMovementBulkUpdate]) -> List[models.StockMovement]:
    """Apply several updates in one commit; a missing id aborts the batch."""
    try:
        for update in updates:
            db_movement = db.get(models.StockMovement, update.id)
            if db_movement is None:
                raise NotFoundError(f"Stock movement #{update.id} not found")
            _apply_update(db, db_movement, update.model_dump(exclude_unset=True, exclude={"id"}))
        db.commit()
    except Exception:
        db.rollback()
        raise
    return [get_movement(db, update.id) for update in updates]


def delete_movement(db: Session, movement_id: int) -> bool:
    db_movement = db.get(models.StockMovement, movement_id)
    if db_movement is None:
        return False
    db.delete(db_movement)
    db.commit()
    return True


def delete_movements_bulk(db: Session, ids: List[int]) -> int:
    """
    Delete every movement in ids.

    Returns:
        Number of deleted movements

    Raises:
        NotFoundError: if none of the ids existed
    """
    deleted = (
        db.query(models.StockMovement)
        .filter(models.StockMovement.id.in_(ids))
        .delete(synchronize_session=False)
    )
    if deleted == 0:
        db.rollback()
        raise NotFoundError("No stock movements found to delete")
    db.commit()
    return deleted


def void_movement(db: Session, movement_id: int, user_id: Optional[int] = None) -> Optional[models.StockMovement]:
    db_movement = get_movement(db, movement_id)
    if db_movement is None:
        return None
    db_movement.status = VOIDED
    db_movement.voided_at = datetime.utcnow()
    db_movement.voided_by = user_id
    db.commit()
    logger.info(f"Movement {movement_id} voided by user {user_id}")
    return get_movement(db, movement_id)


def cancel_movement(db: Session, movement_id: int, user_id: Optional[int] = None) -> Optional[models.StockMovement]:
    db_movement = get_movement(db, movement_id)
    if db_movement is None:
        return None
    db_movement.status = CANCELLED
    db_movement.cancelled_at = datetime.utcnow()
    db_movement.cancelled_by = user_id
    db.commit()
    logger.info(f"Movement {movement_id} cancelled by user {user_id}")
    return get_movement(db, movement_id)
