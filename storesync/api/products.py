"""
Product catalog endpoints
"""
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storesync.api.schemas import ProductUpdateRequest
from storesync.exceptions import ValidationError
from storesync.models.base import get_db
from storesync.services.upsert_store import UpsertStore

router = APIRouter(prefix="/products", tags=["products"])


def _product_dict(product) -> dict:
    body = {}
    for column in product.__table__.columns:
        value = getattr(product, column.name)
        if isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        body[column.name] = value
    return body


@router.put("/{product_id}")
def update_product(
    product_id: int,
    body: ProductUpdateRequest,
    org_id: str = Query(...),
    db: Session = Depends(get_db),
):
    """Partial update: only fields present in the body change."""
    changes = body.model_dump(exclude_unset=True)
    if "sku" in changes and not changes["sku"]:
        raise ValidationError("sku cannot be empty", field="sku")
    product = UpsertStore(db).update_product(org_id, product_id, changes)
    return {"success": True, "product": _product_dict(product)}
