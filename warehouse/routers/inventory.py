"""
Inventory item endpoints, including CSV export/import and stock analytics.
"""
import csv
import io
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..crud import inventory as crud_inventory
from ..database import get_db
from ..errors import WarehouseError
from ..permissions import require_permission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory", tags=["inventory"])

CSV_COLUMNS = ["id", "sku", "name", "category", "current_stock", "min_stock", "max_stock",
               "buying_price", "unit_price", "status", "created_at"]
IMPORT_FIELDS = ("name", "category", "description", "current_stock", "min_stock", "max_stock",
                 "buying_price", "unit_price", "tax_rate")


@router.get("", response_model=schemas.Page[schemas.InventoryItem])
def list_items(
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("inventory", "read")),
):
    return crud_inventory.get_inventory_items(db, page=page, limit=limit, search=search, category=category, status=status)


@router.get("/analytics")
def get_analytics(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("inventory", "read")),
):
    """
    Get inventory analytics.

    Returns:
        dict: total items and stock, stock value, counts per status and the low stock items
    """
    return crud_inventory.get_inventory_analytics(db)


@router.get("/export/csv")
def export_items_csv(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("inventory", "export")),
):
    """Export every inventory item as CSV."""
    items = crud_inventory.get_inventory_items(db, page=1, limit=10000)["items"]

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_COLUMNS)
    for item in items:
        writer.writerow([
            item.id,
            item.sku,
            item.name,
            item.category,
            item.current_stock,
            item.min_stock,
            item.max_stock,
            item.buying_price,
            item.unit_price,
            item.status,
            item.created_at.isoformat() if item.created_at else "",
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=inventory.csv"},
    )


@router.post("/import/csv")
def import_items_csv(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("inventory", "import")),
):
    """
    Import inventory items from CSV, matching existing items by SKU.

    Expected columns: sku plus any of name, category, description,
    current_stock, min_stock, max_stock, buying_price, unit_price, tax_rate.
    Stock changes on existing items are journalled like manual updates.

    Returns:
        dict: created_count, updated_count, skipped_count and the first errors
    """
    if not file.filename or not file.filename.endswith(".csv"):
        raise HTTPException(status_code=400, detail="File must be a CSV")

    content = file.file.read().decode("utf-8")
    reader = csv.DictReader(io.StringIO(content))

    created_count = 0
    updated_count = 0
    skipped_count = 0
    errors = []

    # row 1 is the header
    for row_num, row in enumerate(reader, start=2):
        sku = (row.get("sku") or "").strip()
        if not sku:
            errors.append(f"Row {row_num}: Missing SKU")
            skipped_count += 1
            continue
        values = {field: row[field].strip() for field in IMPORT_FIELDS if (row.get(field) or "").strip()}

        try:
            existing = crud_inventory.get_inventory_item_by_sku(db, sku)
            if existing:
                crud_inventory.update_inventory_item(db, existing.id, schemas.InventoryItemUpdate(**values))
                updated_count += 1
            else:
                values.setdefault("name", sku)
                values.setdefault("category", "uncategorized")
                crud_inventory.create_inventory_item(db, schemas.InventoryItemCreate(sku=sku, **values))
                created_count += 1
        except PydanticValidationError as e:
            errors.append(f"Row {row_num}: {e.errors()[0]['loc'][-1]}: {e.errors()[0]['msg']}")
            skipped_count += 1
        except WarehouseError as e:
            errors.append(f"Row {row_num}: {e.message}")
            skipped_count += 1

    logger.info(f"CSV import: {created_count} created, {updated_count} updated, {skipped_count} skipped")
    return {
        "created_count": created_count,
        "updated_count": updated_count,
        "skipped_count": skipped_count,
        "errors": errors[:10],
    }


@router.get("/{item_id}", response_model=schemas.InventoryItem)
def get_item(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("inventory", "read")),
):
    db_item = crud_inventory.get_inventory_item(db, item_id)
    if db_item is None:
        raise HTTPException(status_code=404, detail="Inventory item not found")
    return db_item


@router.post("", response_model=schemas.InventoryItem, status_code=status.HTTP_201_CREATED)
def create_item(
    item: schemas.InventoryItemCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("inventory", "create")),
):
    """
    Create an inventory item.

    The item's status is derived from its stock and minimum; any initial stock
    is journalled as an IN movement.
    """
    return crud_inventory.create_inventory_item(db, item)


@router.put("/{item_id}", response_model=schemas.InventoryItem)
def update_item(
    item_id: int,
    item: schemas.InventoryItemUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("inventory", "update")),
):
    db_item = crud_inventory.update_inventory_item(db, item_id, item)
    if db_item is None:
        raise HTTPException(status_code=404, detail="Inventory item not found")
    return db_item


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("inventory", "delete")),
):
    if not crud_inventory.delete_inventory_item(db, item_id):
        raise HTTPException(status_code=404, detail="Inventory item not found")
    return None
