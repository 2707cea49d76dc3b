"""
CRUD operations for delivery companies.

Name and code are both unique. Listings are ordered by rating (best first),
then by name.
"""
import logging
import math
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import ConflictError, NotFoundError, ValidationError
from ..validators import ensure_required_fields

logger = logging.getLogger(__name__)

MIN_RATING = 0.0
MAX_RATING = 5.0

DUPLICATE_MESSAGE = "A delivery company with this name or code already exists"


def get_company(db: Session, company_id: int) -> Optional[models.DeliveryCompany]:
    return db.query(models.DeliveryCompany).filter(models.DeliveryCompany.id == company_id).first()


def _find_duplicate(db: Session, name: Optional[str], code: Optional[str], exclude_id: Optional[int] = None):
    conditions = []
    if name is not None:
        conditions.append(models.DeliveryCompany.name == name)
    if code is not None:
        conditions.append(models.DeliveryCompany.code == code)
    if not conditions:
        return None
    query = db.query(models.DeliveryCompany).filter(or_(*conditions))
    if exclude_id is not None:
        query = query.filter(models.DeliveryCompany.id != exclude_id)
    return query.first()


def get_companies(
    db: Session,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    min_rating: Optional[float] = None,
    search: Optional[str] = None,
) -> dict:
    """
    List delivery companies.

    Args:
        db: Database session
        page: 1-based page number
        limit: Page size
        status: Only companies with this status
        min_rating: Only companies rated at least this
        search: Case-insensitive match on name, code, contact person or email

    Returns:
        dict with items, total, page and total_pages
    """
    query = db.query(models.DeliveryCompany)
    if status:
        query = query.filter(models.DeliveryCompany.status == status)
    if min_rating is not None:
        query = query.filter(models.DeliveryCompany.rating >= min_rating)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.DeliveryCompany.name.ilike(pattern),
                models.DeliveryCompany.code.ilike(pattern),
                models.DeliveryCompany.contact_person.ilike(pattern),
                models.DeliveryCompany.email.ilike(pattern),
            )
        )

    total = query.count()
    items = (
        query.order_by(models.DeliveryCompany.rating.desc(), models.DeliveryCompany.name.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {"items": items, "total": total, "page": page, "total_pages": math.ceil(total / limit) if limit else 0}


def create_company(db: Session, company: schemas.DeliveryCompanyCreate) -> models.DeliveryCompany:
    """
    Raises:
        ConflictError: if the name or code is taken
    """
    if _find_duplicate(db, company.name, company.code):
        raise ConflictError(DUPLICATE_MESSAGE)

    db_company = models.DeliveryCompany(**company.model_dump())
    db.add(db_company)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(DUPLICATE_MESSAGE)
    db.refresh(db_company)
    logger.info(f"Delivery company {db_company.id} ({db_company.code}) created")
    return db_company


def update_company(
    db: Session, company_id: int, company: schemas.DeliveryCompanyUpdate
) -> Optional[models.DeliveryCompany]:
    db_company = get_company(db, company_id)
    if db_company is None:
        return None

    update_data = company.model_dump(exclude_unset=True)
    ensure_required_fields(models.DeliveryCompany, update_data)
    if _find_duplicate(db, update_data.get("name"), update_data.get("code"), exclude_id=company_id):
        raise ConflictError(DUPLICATE_MESSAGE)

    for key, value in update_data.items():
        setattr(db_company, key, value)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        if "name" in update_data or "code" in update_data:
            raise ConflictError(DUPLICATE_MESSAGE)
        raise
    db.refresh(db_company)
    return db_company


def update_status(db: Session, company_id: int, status: str) -> models.DeliveryCompany:
    db_company = get_company(db, company_id)
    if db_company is None:
        raise NotFoundError(f"Delivery company with ID {company_id} not found")
    db_company.status = status
    db.commit()
    db.refresh(db_company)
    logger.info(f"Delivery company {company_id} status set to {status}")
    return db_company


def update_rating(db: Session, company_id: int, rating: float) -> models.DeliveryCompany:
    """
    Set a company's rating.

    Raises:
        ValidationError: if the rating is outside 0..5
        NotFoundError: if the company does not exist
    """
    if rating < MIN_RATING or rating > MAX_RATING:
        raise ValidationError(
            "Rating must be between 0 and 5",
            [{"field": "rating", "message": "must be between 0 and 5"}],
        )
    db_company = get_company(db, company_id)
    if db_company is None:
        raise NotFoundError(f"Delivery company with ID {company_id} not found")
    db_company.rating = rating
    db.commit()
    db.refresh(db_company)
    return db_company


def delete_company(db: Session, company_id: int) -> bool:
    db_company = get_company(db, company_id)
    if db_company is None:
        return False
    db.delete(db_company)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Delivery company still has deliveries")
    return True
