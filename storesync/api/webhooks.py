"""
Storefront webhook endpoints

Signature checks run against the raw body, so the payload is read as bytes
before any JSON parsing.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storesync.config import get_settings
from storesync.models.base import get_db
from storesync.services.webhook_service import WebhookService

settings = get_settings()

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _handle(topic: str, request: Request, db: Session) -> dict:
    body = await request.body()
    return WebhookService(db).handle(
        topic,
        shop_domain=request.headers.get(settings.webhook_shop_domain_header),
        header_hmac=request.headers.get(settings.webhook_hmac_header),
        body=body,
    )


@router.post("/shopify/orders")
async def shopify_order_webhook(request: Request, db: Session = Depends(get_db)):
    """orders/create and orders/updated"""
    return await _handle("orders", request, db)


@router.post("/shopify/customers")
async def shopify_customer_webhook(request: Request, db: Session = Depends(get_db)):
    """customers/create and customers/update"""
    return await _handle("customers", request, db)
