"""
Admin dashboard statistics.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, statistics
from ..auth import require_admin
from ..database import get_db

router = APIRouter(prefix="/statistics", tags=["statistics"])


@router.get("/dashboard")
def get_dashboard(
    period: str = statistics.MONTHLY,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    """
    Dashboard overview, alerts and charts. Admins only.

    Args:
        period: daily, weekly, monthly (default) or yearly; sets the window and the chart buckets
        start_date: Custom window start, used together with end_date
        end_date: Custom window end, used together with start_date
    """
    return statistics.get_dashboard(db, period, start_date, end_date)
