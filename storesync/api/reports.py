"""
Reporting endpoints
"""
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storesync.models.base import get_db
from storesync.services.report_service import ReportService

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/overall")
def overall_report(
    org_id: str = Query(...),
    from_date: date = Query(..., alias="from"),
    to_date: date = Query(..., alias="to"),
    group_by: str = Query("day", alias="groupBy", description="day, week or month"),
    db: Session = Depends(get_db),
):
    """Ad spend, revenue, traffic and net cash per bucket."""
    return ReportService(db).get_report(org_id, from_date, to_date, group_by)


@router.get("/facebook-ads")
def facebook_ads_report(
    org_id: str = Query(...),
    from_date: date = Query(..., alias="from"),
    to_date: date = Query(..., alias="to"),
    db: Session = Depends(get_db),
):
    """Per-campaign Facebook totals with derived metrics."""
    return ReportService(db).get_facebook_ads_report(org_id, from_date, to_date)


@router.get("/customers")
def customer_lifecycle(org_id: str = Query(...), db: Session = Depends(get_db)):
    """Lifecycle breakdown of purchased customers."""
    return ReportService(db).get_customer_lifecycle(org_id)
