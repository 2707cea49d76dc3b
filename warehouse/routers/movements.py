"""
Stock movement journal endpoints.

Every write publishes a movement event to websocket clients and webhooks.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import events, models, schemas
from ..crud import movements as crud_movements
from ..database import get_db
from ..permissions import require_permission

router = APIRouter(prefix="/movements", tags=["movements"])


def _payload(db_movement: models.StockMovement) -> schemas.StockMovement:
    return schemas.StockMovement.model_validate(db_movement)


@router.post("", response_model=schemas.StockMovement, status_code=status.HTTP_201_CREATED)
async def create_movement(
    movement: schemas.StockMovementCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("movements", "create")),
):
    """
    Record a stock movement.

    Raises:
        NotFoundError: 404 if the item or a location does not exist
        ValidationError: 400 for a transfer without a destination
    """
    db_movement = crud_movements.create_movement(db, movement, user_id=current_user.id)
    result = _payload(db_movement)
    events.bus.publish(events.MOVEMENT_CREATED, result)
    return result


@router.get("", response_model=schemas.Page[schemas.StockMovement])
def list_movements(
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
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("movements", "read")),
):
    return crud_movements.get_movements(
        db,
        page=page,
        limit=limit,
        search=search,
        type=type,
        status=status,
        item_id=item_id,
        location_id=location_id,
        to_location_id=to_location_id,
        start_date=start_date,
        end_date=end_date,
    )


@router.post("/bulk", response_model=List[schemas.StockMovement], status_code=status.HTTP_201_CREATED)
async def create_movements_bulk(
    movements: List[schemas.StockMovementCreate],
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("movements", "create")),
):
    db_movements = crud_movements.create_movements_bulk(db, movements, user_id=current_user.id)
    result = [_payload(m) for m in db_movements]
    events.bus.publish(events.MOVEMENTS_BULK_CREATED, result)
    return result


@router.put("/bulk", response_model=List[schemas.StockMovement])
async def update_movements_bulk(
    updates: List[schemas.StockMovementBulkUpdate],
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("movements", "update")),
):
    """Apply several updates; a missing id aborts the whole batch."""
    db_movements = crud_movements.update_movements_bulk(db, updates)
    result = [_payload(m) for m in db_movements]
    events.bus.publish(events.MOVEMENTS_BULK_UPDATED, result)
    return result


@router.delete("/bulk")
async def delete_movements_bulk(
    body: schemas.BulkDelete,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("movements", "delete")),
):
    deleted = crud_movements.delete_movements_bulk(db, body.ids)
    events.bus.publish(events.MOVEMENTS_BULK_DELETED, {"ids": body.ids, "deleted_count": deleted})
    return {"deleted_count": deleted}


@router.get("/{movement_id}", response_model=schemas.StockMovement)
def get_movement(
    movement_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("movements", "read")),
):
    db_movement = crud_movements.get_movement(db, movement_id)
    if db_movement is None:
        raise HTTPException(status_code=404, detail="Movement not found")
    return db_movement


@router.put("/{movement_id}", response_model=schemas.StockMovement)
async def update_movement(
    movement_id: int,
    movement: schemas.StockMovementUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("movements", "update")),
):
    db_movement = crud_movements.update_movement(db, movement_id, movement)
    if db_movement is None:
        raise HTTPException(status_code=404, detail="Movement not found")
    result = _payload(db_movement)
    events.bus.publish(events.MOVEMENT_UPDATED, result)
    return result


@router.delete("/{movement_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_movement(
    movement_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("movements", "delete")),
):
    if not crud_movements.delete_movement(db, movement_id):
        raise HTTPException(status_code=404, detail="Movement not found")
    events.bus.publish(events.MOVEMENT_DELETED, {"id": movement_id})
    return None


@router.put("/{movement_id}/void", response_model=schemas.StockMovement)
async def void_movement(
    movement_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("movements", "update")),
):
    db_movement = crud_movements.void_movement(db, movement_id, user_id=current_user.id)
    if db_movement is None:
        raise HTTPException(status_code=404, detail="Movement not found")
    result = _payload(db_movement)
    events.bus.publish(events.MOVEMENT_VOIDED, result)
    return result


@router.put("/{movement_id}/cancel", response_model=schemas.StockMovement)
async def cancel_movement(
    movement_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("movements", "update")),
):
    db_movement = crud_movements.cancel_movement(db, movement_id, user_id=current_user.id)
    if db_movement is None:
        raise HTTPException(status_code=404, detail="Movement not found")
    result = _payload(db_movement)
    events.bus.publish(events.MOVEMENT_CANCELLED, result)
    return result
