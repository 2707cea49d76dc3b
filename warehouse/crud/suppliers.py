"""
CRUD operations for suppliers.
"""
import logging
import math
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import ConflictError
from ..validators import ensure_required_fields

logger = logging.getLogger(__name__)


def get_supplier(db: Session, supplier_id: int) -> Optional[models.Supplier]:
    return db.query(models.Supplier).filter(models.Supplier.id == supplier_id).first()


def get_supplier_by_email(db: Session, email: str) -> Optional[models.Supplier]:
    return db.query(models.Supplier).filter(models.Supplier.email == email).first()


def get_suppliers(
    db: Session,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    status: Optional[str] = None,
) -> dict:
    """
    List suppliers, optionally matching name, email or contact person.

    Returns:
        dict with items, total, page and total_pages
    """
    query = db.query(models.Supplier)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.Supplier.name.ilike(pattern),
                models.Supplier.email.ilike(pattern),
                models.Supplier.contact_person.ilike(pattern),
            )
        )
    if status:
        query = query.filter(models.Supplier.status == status)

    total = query.count()
    items = query.order_by(models.Supplier.name).offset((page - 1) * limit).limit(limit).all()
    return {"items": items, "total": total, "page": page, "total_pages": math.ceil(total / limit) if limit else 0}


def create_supplier(db: Session, supplier: schemas.SupplierCreate) -> models.Supplier:
    """
    Create a supplier.

    Raises:
        ConflictError: if another supplier already uses the email
    """
    if get_supplier_by_email(db, supplier.email):
        raise ConflictError(f"Supplier with email {supplier.email} already exists")

    db_supplier = models.Supplier(**supplier.model_dump())
    db.add(db_supplier)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Supplier with email {supplier.email} already exists")
    db.refresh(db_supplier)
    logger.info(f"Supplier {db_supplier.id} ({db_supplier.name}) created")
    return db_supplier


def update_supplier(db: Session, supplier_id: int, supplier: schemas.SupplierUpdate) -> Optional[models.Supplier]:
    """
    Update a supplier. Only provided fields change.

    Returns:
        Updated Supplier or None if not found

    Raises:
        ConflictError: if the new email belongs to another supplier
    """
    db_supplier = get_supplier(db, supplier_id)
    if db_supplier is None:
        return None

    update_data = supplier.model_dump(exclude_unset=True)
    ensure_required_fields(models.Supplier, update_data)
    email = update_data.get("email")
    if email and email != db_supplier.email:
        existing = get_supplier_by_email(db, email)
        if existing and existing.id != supplier_id:
            raise ConflictError(f"Supplier with email {email} already exists")

    for key, value in update_data.items():
        setattr(db_supplier, key, value)
    db.commit()
    db.refresh(db_supplier)
    return db_supplier


def delete_supplier(db: Session, supplier_id: int) -> bool:
    db_supplier = get_supplier(db, supplier_id)
    if db_supplier is None:
        return False
    db.delete(db_supplier)
    db.commit()
    logger.info(f"Supplier {supplier_id} deleted")
    return True
