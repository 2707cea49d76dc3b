"""
Storage location endpoints and the capacity ledger.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..crud import locations as crud_locations
from ..database import get_db
from ..permissions import require_permission

router = APIRouter(prefix="/locations", tags=["locations"])


@router.get("", response_model=schemas.Page[schemas.Location])
def list_locations(
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    type: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("locations", "read")),
):
    return crud_locations.get_locations(db, page=page, limit=limit, search=search, type=type)


@router.get("/{location_id}", response_model=schemas.Location)
def get_location(
    location_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("locations", "read")),
):
    db_location = crud_locations.get_location(db, location_id)
    if db_location is None:
        raise HTTPException(status_code=404, detail="Location not found")
    return db_location


@router.post("", response_model=schemas.Location, status_code=status.HTTP_201_CREATED)
def create_location(
    location: schemas.LocationCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("locations", "create")),
):
    return crud_locations.create_location(db, location)


@router.put("/{location_id}", response_model=schemas.Location)
def update_location(
    location_id: int,
    location: schemas.LocationUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("locations", "update")),
):
    db_location = crud_locations.update_location(db, location_id, location)
    if db_location is None:
        raise HTTPException(status_code=404, detail="Location not found")
    return db_location


@router.put("/{location_id}/capacity", response_model=schemas.Location)
def update_capacity(
    location_id: int,
    change: schemas.CapacityChange,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("locations", "update")),
):
    """
    Add (positive delta) or release (negative delta) used capacity.

    Raises:
        CapacityExceededError: 400 when the location would overflow
        NegativeCapacityError: 400 when more would be released than is used
    """
    return crud_locations.update_capacity(db, location_id, change.delta)


@router.delete("/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_location(
    location_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("locations", "delete")),
):
    if not crud_locations.delete_location(db, location_id):
        raise HTTPException(status_code=404, detail="Location not found")
    return None
