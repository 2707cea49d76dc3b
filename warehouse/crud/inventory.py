"""
CRUD operations for inventory items.

Item status is derived from (current_stock, min_stock) on every write that
touches stock. Manual stock edits are mirrored into the movement journal on a
best-effort basis.
"""
import logging
import math
from typing import Optional

from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import ConflictError, NotFoundError
from ..validators import IN_STOCK, LOW_STOCK, OUT_OF_STOCK, ensure_required_fields, stock_status
from . import movements

logger = logging.getLogger(__name__)


def get_inventory_item(db: Session, item_id: int) -> Optional[models.InventoryItem]:
    """
    Retrieve a single inventory item by ID.

    Args:
        db: Database session
        item_id: ID of the inventory item to retrieve

    Returns:
        InventoryItem object or None if not found
    """
    return db.query(models.InventoryItem).filter(models.InventoryItem.id == item_id).first()


def get_inventory_item_by_sku(db: Session, sku: str) -> Optional[models.InventoryItem]:
    return db.query(models.InventoryItem).filter(models.InventoryItem.sku == sku).first()


def get_inventory_items(
    db: Session,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[str] = None,
) -> dict:
    """
    List inventory items with filters and pagination.

    Args:
        db: Database session
        page: 1-based page number
        limit: Page size
        search: Case-insensitive match on name or SKU
        category: Exact category
        status: Exact derived status

    Returns:
        dict with items, total, page and total_pages
    """
    query = db.query(models.InventoryItem)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(models.InventoryItem.name.ilike(pattern), models.InventoryItem.sku.ilike(pattern)))
    if category:
        query = query.filter(models.InventoryItem.category == category)
    if status:
        query = query.filter(models.InventoryItem.status == status)

    total = query.count()
    items = query.order_by(models.InventoryItem.id).offset((page - 1) * limit).limit(limit).all()
    return {"items": items, "total": total, "page": page, "total_pages": math.ceil(total / limit) if limit else 0}


def _record_adjustment(db: Session, item: models.InventoryItem, movement_type: str, quantity: int, reason: str) -> None:
    """Post a journal entry for a stock change; failures are logged, never raised."""
    try:
        movements.create_movement(
            db,
            schemas.StockMovementCreate(
                type=movement_type,
                item_id=item.id,
                quantity=quantity,
                location_id=item.location_id,
                reason=reason,
            ),
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to record '{reason}' movement for item {item.id}: {e}")


def create_inventory_item(db: Session, item: schemas.InventoryItemCreate) -> models.InventoryItem:
    """
    Create a new inventory item.

    Args:
        db: Database session
        item: Inventory item data to create

    Returns:
        Created InventoryItem object

    Raises:
        ConflictError: if the SKU is already in use
    """
    if get_inventory_item_by_sku(db, item.sku):
        raise ConflictError(f"SKU {item.sku} already exists")

    db_item = models.InventoryItem(**item.model_dump(), status=stock_status(item.current_stock, item.min_stock))
    db.add(db_item)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"SKU {item.sku} already exists")
    db.refresh(db_item)
    logger.info(f"Inventory item {db_item.id} ({db_item.sku}) created with stock {db_item.current_stock}")

    if db_item.current_stock > 0:
        _record_adjustment(db, db_item, "IN", db_item.current_stock, "Initial stock")
        db.refresh(db_item)
    return db_item


def update_inventory_item(db: Session, item_id: int, item: schemas.InventoryItemUpdate) -> Optional[models.InventoryItem]:
    """
    Update an existing inventory item.

    The status is recomputed whenever current_stock or min_stock changes. When
    current_stock is part of the update a "Manual stock adjustment" movement is
    posted for the difference.

    Args:
        db: Database session
        item_id: ID of the inventory item to update
        item: Updated item data (only provided fields will be updated)

    Returns:
        Updated InventoryItem object or None if not found

    Raises:
        ConflictError: if the new SKU belongs to another item
        ValidationError: if a required field is set to null
    """
    db_item = get_inventory_item(db, item_id)
    if db_item is None:
        return None

    update_data = item.model_dump(exclude_unset=True)
    ensure_required_fields(models.InventoryItem, update_data)
    if "sku" in update_data and update_data["sku"] != db_item.sku and get_inventory_item_by_sku(db, update_data["sku"]):
        raise ConflictError(f"SKU {update_data['sku']} already exists")

    previous_stock = db_item.current_stock
    if "current_stock" in update_data or "min_stock" in update_data:
        update_data["status"] = stock_status(
            update_data.get("current_stock", db_item.current_stock),
            update_data.get("min_stock", db_item.min_stock),
        )

    for key, value in update_data.items():
        setattr(db_item, key, value)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        if "sku" in update_data:
            raise ConflictError(f"SKU {update_data['sku']} already exists")
        raise
    db.refresh(db_item)

    difference = db_item.current_stock - previous_stock
    if "current_stock" in update_data and difference != 0:
        _record_adjustment(db, db_item, "IN" if difference > 0 else "OUT", abs(difference), "Manual stock adjustment")
        db.refresh(db_item)
    return db_item


def update_stock(db: Session, item_id: int, delta: int) -> models.InventoryItem:
    """
    Atomically add delta to an item's stock and recompute its status.

    The increment and the status are written by a single UPDATE so concurrent
    callers never lose each other's changes.

    Raises:
        NotFoundError: if the item does not exist
    """
    new_stock = models.InventoryItem.current_stock + delta
    updated = (
        db.query(models.InventoryItem)
        .filter(models.InventoryItem.id == item_id)
        .update(
            {
                models.InventoryItem.current_stock: new_stock,
                models.InventoryItem.status: case(
                    (new_stock <= 0, OUT_OF_STOCK),
                    (new_stock <= models.InventoryItem.min_stock, LOW_STOCK),
                    else_=IN_STOCK,
                ),
            },
            synchronize_session=False,
        )
    )
    if updated == 0:
        db.rollback()
        raise NotFoundError(f"Inventory item {item_id} not found")
    db.commit()
    db_item = get_inventory_item(db, item_id)
    db.refresh(db_item)
    return db_item


def update_buying_price(db: Session, item_id: int, buying_price: float) -> models.InventoryItem:
    """
    Overwrite an item's buying price.

    Raises:
        NotFoundError: if the item does not exist
    """
    db_item = get_inventory_item(db, item_id)
    if db_item is None:
        raise NotFoundError(f"Inventory item {item_id} not found")
    db_item.buying_price = buying_price
    db.commit()
    db.refresh(db_item)
    return db_item


def delete_inventory_item(db: Session, item_id: int) -> bool:
    """
    Delete an inventory item and its journal entries.

    Returns:
        True if the item was deleted, False if not found
    """
    db_item = get_inventory_item(db, item_id)
    if db_item is None:
        return False
    db.query(models.StockMovement).filter(models.StockMovement.item_id == item_id).delete(synchronize_session=False)
    db.delete(db_item)
    db.commit()
    return True


def get_inventory_analytics(db: Session) -> dict:
    """Totals, status breakdown and the low stock list."""
    total_items = db.query(func.count(models.InventoryItem.id)).scalar()
    total_quantity = db.query(func.sum(models.InventoryItem.current_stock)).scalar() or 0
    total_value = db.query(
        func.sum(models.InventoryItem.current_stock * models.InventoryItem.buying_price)
    ).scalar() or 0.0

    by_status = dict(
        db.query(models.InventoryItem.status, func.count(models.InventoryItem.id))
        .group_by(models.InventoryItem.status)
        .all()
    )

    low_stock_items = (
        db.query(models.InventoryItem)
        .filter(models.InventoryItem.status.in_([LOW_STOCK, OUT_OF_STOCK]))
        .order_by(models.InventoryItem.current_stock)
        .all()
    )

    return {
        "total_items": total_items,
        "total_quantity": total_quantity,
        "total_value": round(float(total_value), 2),
        "in_stock": by_status.get(IN_STOCK, 0),
        "low_stock": by_status.get(LOW_STOCK, 0),
        "out_of_stock": by_status.get(OUT_OF_STOCK, 0),
        "low_stock_items": [
            {
                "id": item.id,
                "sku": item.sku,
                "name": item.name,
                "current_stock": item.current_stock,
                "min_stock": item.min_stock,
                "status": item.status,
            }
            for item in low_stock_items
        ],
    }
