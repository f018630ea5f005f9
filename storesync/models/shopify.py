"""
Shopify Data Models

Orders and customers from the storefront, delivered by webhook or backfill.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, Numeric, UniqueConstraint, Index
from datetime import datetime

from storesync.models.base import Base


class ShopifyOrder(Base):
    """
    One checkout.

    `is_repeat_customer` is derived: true iff the tenant holds an earlier order
    with the same email. It is refreshed for every email touched by a write and
    can be rebuilt for the whole tenant with recalculate_repeat_customers().
    """
    __tablename__ = "shopify_orders"
    __table_args__ = (
        UniqueConstraint("org_id", "shopify_id", name="uq_shopify_orders_natural_key"),
        Index("ix_shopify_orders_org_email", "org_id", "email"),
        Index("ix_shopify_orders_org_created", "org_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    shopify_id = Column(String, nullable=False)
    order_number = Column(String, nullable=True)

    # Customer
    email = Column(String, nullable=True)
    customer_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=True)
    fulfillment_status = Column(String, default="unfulfilled")

    # Amounts (store currency)
    currency = Column(String, nullable=True)
    subtotal = Column(Numeric(12, 2), default=0)
    shipping = Column(Numeric(12, 2), default=0)
    tax = Column(Numeric(12, 2), default=0)
    total = Column(Numeric(12, 2), default=0)

    discount_codes = Column(Text, nullable=True)  # comma separated
    skus = Column(Text, nullable=True)  # comma separated
    quantity = Column(Integer, default=0)
    tracking_number = Column(String, nullable=True)
    tags = Column(Text, nullable=True)

    is_repeat_customer = Column(Boolean, default=False)

    synced_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)


class ShopifyCustomer(Base):
    """
    Storefront customer.

    `customer_key` is the lower-cased email when present, otherwise
    "shopify:<id>"; it carries the natural-key constraint.
    """
    __tablename__ = "shopify_customers"
    __table_args__ = (
        UniqueConstraint("org_id", "customer_key", name="uq_shopify_customers_natural_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    customer_key = Column(String, nullable=False)
    shopify_customer_id = Column(String, nullable=True, index=True)

    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    accepts_marketing = Column(Boolean, default=False)

    orders_count = Column(Integer, default=0)
    total_spent = Column(Numeric(12, 2), default=0)
    tags = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=True)
    last_order_at = Column(DateTime, nullable=True)

    synced_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
