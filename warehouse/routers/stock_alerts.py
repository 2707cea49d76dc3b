"""
Stock alert endpoints. Alerts are computed from the movement journal on each request.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import alerts, models
from ..database import get_db
from ..errors import ValidationError
from ..permissions import require_permission

router = APIRouter(prefix="/stock-alerts", tags=["stock-alerts"])


@router.get("")
def list_alerts(
    item_id: Optional[int] = None,
    type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("stock-movements", "read")),
):
    """
    Current LOW_STOCK, EXCESS_STOCK and EXPIRING alerts.

    Args:
        item_id: Only alerts for this item
        type: Only alerts of this type
        start_date: Only consider movements created on or after this date
        end_date: Only consider movements created on or before this date
    """
    if type is not None and type not in alerts.ALERT_TYPES:
        raise ValidationError(
            f"Unknown alert type {type}",
            [{"field": "type", "message": f"must be one of {', '.join(alerts.ALERT_TYPES)}"}],
        )
    return alerts.get_stock_alerts(db, item_id=item_id, type=type, start_date=start_date, end_date=end_date)


@router.get("/report")
def get_report(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission("reports", "read")),
):
    """Per-item journal totals, average unit cost and stock value."""
    return alerts.generate_stock_report(db)
