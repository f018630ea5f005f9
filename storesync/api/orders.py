"""
Order maintenance endpoints
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storesync.api.schemas import RecalculateRepeatRequest
from storesync.models.base import get_db
from storesync.services.upsert_store import UpsertStore

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/recalculate-repeat")
def recalculate_repeat(body: RecalculateRepeatRequest, db: Session = Depends(get_db)):
    """
    Rebuild is_repeat_customer for every order of the tenant, oldest first.

    Run after backfills that load historical orders out of order.
    """
    return {"success": True, **UpsertStore(db).recalculate_repeat_customers(body.org_id)}
