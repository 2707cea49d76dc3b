"""
Delivery company endpoints.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..crud import delivery_companies as crud_companies
from ..database import get_db
from ..permissions import require_permission

router = APIRouter(prefix="/delivery-companies", tags=["delivery-companies"])


@router.get("", response_model=schemas.Page[schemas.DeliveryCompany])
def list_companies(
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    min_rating: Optional[float] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("delivery-companies", "read")),
):
    """List companies, best rated first."""
    return crud_companies.get_companies(
        db, page=page, limit=limit, status=status, min_rating=min_rating, search=search
    )


@router.get("/{company_id}", response_model=schemas.DeliveryCompany)
def get_company(
    company_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("delivery-companies", "read")),
):
    db_company = crud_companies.get_company(db, company_id)
    if db_company is None:
        raise HTTPException(status_code=404, detail=f"Delivery company with ID {company_id} not found")
    return db_company


@router.post("", response_model=schemas.DeliveryCompany, status_code=status.HTTP_201_CREATED)
def create_company(
    company: schemas.DeliveryCompanyCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("delivery-companies", "create")),
):
    return crud_companies.create_company(db, company)


@router.put("/{company_id}", response_model=schemas.DeliveryCompany)
def update_company(
    company_id: int,
    company: schemas.DeliveryCompanyUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("delivery-companies", "update")),
):
    db_company = crud_companies.update_company(db, company_id, company)
    if db_company is None:
        raise HTTPException(status_code=404, detail=f"Delivery company with ID {company_id} not found")
    return db_company


@router.put("/{company_id}/status", response_model=schemas.DeliveryCompany)
def update_company_status(
    company_id: int,
    body: schemas.CompanyStatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("delivery-companies", "update")),
):
    return crud_companies.update_status(db, company_id, body.status)


@router.put("/{company_id}/rating", response_model=schemas.DeliveryCompany)
def update_company_rating(
    company_id: int,
    body: schemas.CompanyRatingUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("delivery-companies", "update")),
):
    """
    Raises:
        ValidationError: 400 if the rating is outside 0..5
    """
    return crud_companies.update_rating(db, company_id, body.rating)


@router.delete("/{company_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_company(
    company_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("delivery-companies", "delete")),
):
    if not crud_companies.delete_company(db, company_id):
        raise HTTPException(status_code=404, detail=f"Delivery company with ID {company_id} not found")
    return None
