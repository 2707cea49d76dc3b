"""
Supplier invoice endpoints. Creating an invoice receives its goods into stock.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..crud import invoices as crud_invoices
from ..database import get_db
from ..permissions import require_permission

router = APIRouter(prefix="/supplier-invoices", tags=["supplier-invoices"])


@router.post("", response_model=schemas.SupplierInvoice, status_code=status.HTTP_201_CREATED)
def create_invoice(
    invoice: schemas.SupplierInvoiceCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("supplier-invoices", "create")),
):
    """
    Record a supplier invoice.

    Raises:
        ConflictError: 409 for a duplicate invoice reference
        ValidationError: 400 for invalid lines or rates, or if stock could not be updated
    """
    return crud_invoices.create_invoice(db, invoice, user_id=current_user.id)


@router.get("", response_model=schemas.SupplierInvoiceList)
def list_invoices(
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    supplier_id: Optional[int] = None,
    status: Optional[str] = None,
    is_reconciled: Optional[bool] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("supplier-invoices", "read")),
):
    return crud_invoices.get_invoices(
        db,
        page=page,
        limit=limit,
        search=search,
        supplier_id=supplier_id,
        status=status,
        is_reconciled=is_reconciled,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/{invoice_id}", response_model=schemas.SupplierInvoice)
def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("supplier-invoices", "read")),
):
    db_invoice = crud_invoices.get_invoice(db, invoice_id)
    if db_invoice is None:
        raise HTTPException(status_code=404, detail="Supplier invoice not found")
    return db_invoice


@router.put("/{invoice_id}", response_model=schemas.SupplierInvoice)
def update_invoice(
    invoice_id: int,
    invoice: schemas.SupplierInvoiceUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("supplier-invoices", "update")),
):
    db_invoice = crud_invoices.update_invoice(db, invoice_id, invoice, user_id=current_user.id)
    if db_invoice is None:
        raise HTTPException(status_code=404, detail="Supplier invoice not found")
    return db_invoice
