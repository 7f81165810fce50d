"""
Staff dashboards.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from khareedo.api.deps import admin_account, ok, paginate, staff_account
from khareedo.core.database import get_db
from khareedo.core.errors import ValidationError
from khareedo.models.user import User
from khareedo.services.dashboards import CRM_SORTS, DATE_RANGES, admin_dashboard, crm_dashboard

router = APIRouter(prefix="/admin", tags=["admin-dashboards"])


@router.get("/admin_dashboard")
def get_admin_dashboard(account: User = Depends(admin_account), db: Session = Depends(get_db)):
    """Overview counts, recent leads, top projects and sales-team performance."""
    return ok(admin_dashboard(db), message="Admin dashboard data fetched successfully")


@router.get("/crm_dashboard")
def get_crm_dashboard(
    date_range: str = Query("past_24_hours", alias="dateRange"),
    sort_by: str = Query("newest_first", alias="sortBy"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    account: User = Depends(staff_account),
    db: Session = Depends(get_db),
):
    """KPIs and lead list for the properties the caller manages."""
    if date_range not in DATE_RANGES and date_range != "all":
        raise ValidationError(f"dateRange must be one of: {', '.join([*DATE_RANGES, 'all'])}")
    if sort_by not in CRM_SORTS:
        raise ValidationError(f"sortBy must be one of: {', '.join(CRM_SORTS)}")

    data, total = crm_dashboard(db, account, date_range, sort_by, page, limit)
    return ok(data, message="CRM Dashboard data fetched successfully", pagination=paginate(total, page, limit))
