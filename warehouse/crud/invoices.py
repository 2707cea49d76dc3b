"""
CRUD operations for supplier invoices.

Creating an invoice receives its goods: every line increments the item's
stock and overwrites its buying price. Percent rates are stored as given
(15 means 15%).
"""
import logging
import math
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import ConflictError, NotFoundError, ValidationError
from ..validators import ensure_required_fields
from . import inventory

logger = logging.getLogger(__name__)

PENDING = "pending"
PAID = "paid"
CANCELLED = "cancelled"
INVOICE_STATUSES = (PENDING, PAID, CANCELLED)


def get_invoice(db: Session, invoice_id: int) -> Optional[models.SupplierInvoice]:
    return db.query(models.SupplierInvoice).filter(models.SupplierInvoice.id == invoice_id).first()


def get_invoice_by_ref(db: Session, invoice_ref: str) -> Optional[models.SupplierInvoice]:
    return db.query(models.SupplierInvoice).filter(models.SupplierInvoice.invoice_ref == invoice_ref).first()


def calculate_totals(invoice: schemas.SupplierInvoiceCreate) -> dict:
    """
    Price the invoice lines and taxes.

    Returns:
        dict with items (each line plus total_price and tax_amount), subtotal,
        vat_amount, additional_taxes (each plus amount) and total_amount

    Raises:
        ValidationError: for a non-positive quantity or a negative price or rate
    """
    subtotal = 0.0
    items = []
    for line in invoice.items:
        if line.quantity <= 0:
            raise ValidationError(
                f"Invalid quantity for item {line.item_id}",
                [{"field": "items.quantity", "message": "must be greater than 0"}],
            )
        if line.buying_price < 0:
            raise ValidationError(
                f"Invalid buying price for item {line.item_id}",
                [{"field": "items.buying_price", "message": "cannot be negative"}],
            )
        if line.tax_rate < 0:
            raise ValidationError(
                f"Invalid tax rate for item {line.item_id}",
                [{"field": "items.tax_rate", "message": "cannot be negative"}],
            )
        total_price = line.quantity * line.buying_price
        subtotal += total_price
        items.append({**line.model_dump(), "total_price": total_price, "tax_amount": total_price * line.tax_rate / 100})

    if invoice.vat_rate < 0:
        raise ValidationError("VAT rate cannot be negative", [{"field": "vat_rate", "message": "cannot be negative"}])
    vat_amount = subtotal * invoice.vat_rate / 100

    additional_taxes = []
    for tax in invoice.additional_taxes:
        if tax.rate < 0:
            raise ValidationError(
                f"Invalid rate for tax {tax.name}",
                [{"field": "additional_taxes.rate", "message": "cannot be negative"}],
            )
        additional_taxes.append({**tax.model_dump(), "amount": subtotal * tax.rate / 100})

    return {
        "items": items,
        "subtotal": subtotal,
        "vat_amount": vat_amount,
        "additional_taxes": additional_taxes,
        "total_amount": subtotal + vat_amount + sum(t["amount"] for t in additional_taxes),
    }


def create_invoice(
    db: Session, invoice: schemas.SupplierInvoiceCreate, user_id: Optional[int] = None
) -> models.SupplierInvoice:
    """
    Record a supplier invoice and receive its goods into stock.

    The invoice is saved first; if any stock or price update then fails the
    invoice is deleted again. Stock already added for earlier lines stays.

    Args:
        db: Database session
        invoice: Invoice data
        user_id: ID of the creating user

    Returns:
        The saved invoice

    Raises:
        ConflictError: if the invoice reference already exists
        NotFoundError: if the supplier does not exist
        ValidationError: for invalid lines or rates, or when receiving the goods failed
    """
    if get_invoice_by_ref(db, invoice.invoice_ref):
        raise ConflictError(f"Invoice with reference {invoice.invoice_ref} already exists")
    totals = calculate_totals(invoice)
    if db.query(models.Supplier).filter(models.Supplier.id == invoice.supplier_id).first() is None:
        raise NotFoundError(f"Supplier with ID {invoice.supplier_id} not found")

    db_invoice = models.SupplierInvoice(
        invoice_ref=invoice.invoice_ref,
        supplier_id=invoice.supplier_id,
        vat_rate=invoice.vat_rate,
        invoice_date=invoice.invoice_date,
        due_date=invoice.due_date,
        notes=invoice.notes,
        status=PENDING,
        created_by=user_id,
        **totals,
    )
    db.add(db_invoice)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Invoice with reference {invoice.invoice_ref} already exists")
    db.refresh(db_invoice)

    try:
        for line in invoice.items:
            inventory.update_stock(db, line.item_id, line.quantity)
            inventory.update_buying_price(db, line.item_id, line.buying_price)
    except Exception as e:
        db.rollback()
        logger.error(f"Receiving goods for invoice {invoice.invoice_ref} failed, removing it: {e}")
        db.query(models.SupplierInvoice).filter(models.SupplierInvoice.id == db_invoice.id).delete(
            synchronize_session=False
        )
        db.commit()
        raise ValidationError(f"Failed to update inventory: {getattr(e, 'message', e)}")

    logger.info(f"Supplier invoice {db_invoice.invoice_ref} created, total {db_invoice.total_amount:.2f}")
    return db_invoice


def _statistics(invoices: List[models.SupplierInvoice], total_count: int) -> dict:
    return {
        "total_amount": sum(inv.total_amount for inv in invoices),
        "total_vat": sum(inv.vat_amount for inv in invoices),
        "total_additional_taxes": sum(
            sum(tax.get("amount", 0) for tax in (inv.additional_taxes or [])) for inv in invoices
        ),
        "invoices_by_status": {status: sum(1 for inv in invoices if inv.status == status) for status in INVOICE_STATUSES},
        "total_count": total_count,
    }


def get_invoices(
    db: Session,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    supplier_id: Optional[int] = None,
    status: Optional[str] = None,
    is_reconciled: Optional[bool] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    """
    List invoices, newest invoice date first, with statistics.

    The amount statistics cover the returned page; total_count covers every
    match.

    Returns:
        dict with items, total, page, total_pages and statistics
    """
    query = db.query(models.SupplierInvoice)
    if search:
        query = query.filter(models.SupplierInvoice.invoice_ref.ilike(f"%{search}%"))
    if supplier_id is not None:
        query = query.filter(models.SupplierInvoice.supplier_id == supplier_id)
    if status:
        query = query.filter(models.SupplierInvoice.status == status)
    if is_reconciled is not None:
        query = query.filter(models.SupplierInvoice.is_reconciled == is_reconciled)
    if start_date:
        query = query.filter(models.SupplierInvoice.invoice_date >= start_date)
    if end_date:
        query = query.filter(models.SupplierInvoice.invoice_date <= end_date)

    total = query.count()
    items = (
        query.order_by(models.SupplierInvoice.invoice_date.desc(), models.SupplierInvoice.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": items,
        "total": total,
        "page": page,
        "total_pages": math.ceil(total / limit) if limit else 0,
        "statistics": _statistics(items, total),
    }


def update_invoice(
    db: Session, invoice_id: int, invoice: schemas.SupplierInvoiceUpdate, user_id: Optional[int] = None
) -> Optional[models.SupplierInvoice]:
    """
    Update an invoice's status, notes, due date or reconciliation.

    Returns:
        Updated invoice or None if not found

    Raises:
        ValidationError: when changing a cancelled invoice's status, moving a
            paid invoice to anything but cancelled, or changing an already
            reconciled invoice's reconciliation
    """
    db_invoice = get_invoice(db, invoice_id)
    if db_invoice is None:
        return None

    update_data = invoice.model_dump(exclude_unset=True)
    ensure_required_fields(models.SupplierInvoice, update_data)
    new_status = update_data.get("status")
    if new_status and new_status != db_invoice.status:
        if db_invoice.status == CANCELLED:
            raise ValidationError("Cannot update a cancelled invoice")
        if db_invoice.status == PAID and new_status != CANCELLED:
            raise ValidationError("Paid invoice can only be cancelled")

    if update_data.get("is_reconciled") is not None:
        reconcile = update_data.pop("is_reconciled")
        if db_invoice.is_reconciled and reconcile:
            raise ValidationError("Invoice is already reconciled")
        if db_invoice.is_reconciled and not reconcile:
            raise ValidationError("Cannot un-reconcile an invoice")
        if reconcile:
            db_invoice.is_reconciled = True
            db_invoice.reconciled_at = datetime.utcnow()
            db_invoice.reconciled_by = user_id
    else:
        update_data.pop("is_reconciled", None)

    for key, value in update_data.items():
        setattr(db_invoice, key, value)
    db.commit()
    db.refresh(db_invoice)
    logger.info(f"Supplier invoice {db_invoice.invoice_ref} updated")
    return db_invoice
