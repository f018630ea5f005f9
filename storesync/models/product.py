"""
Product master model

SKU record merging catalog, logistics and pricing attributes.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Numeric, UniqueConstraint
from datetime import datetime

from storesync.models.base import Base


class Product(Base):
    """Product master. Natural key: (org_id, sku)."""
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("org_id", "sku", name="uq_products_natural_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    sku = Column(String, nullable=False)

    # Catalog
    product_name = Column(String, nullable=True)
    brand = Column(String, nullable=True)
    unit_barcode = Column(String, nullable=True)
    asin = Column(String, nullable=True)
    shippo_sku = Column(String, nullable=True)

    # Pack logistics
    pieces_per_pack = Column(Integer, nullable=True)
    pack_weight_kg = Column(Numeric(12, 4), nullable=True)
    pack_length_cm = Column(Numeric(12, 2), nullable=True)
    pack_width_cm = Column(Numeric(12, 2), nullable=True)
    pack_height_cm = Column(Numeric(12, 2), nullable=True)
    unit_cbm = Column(Numeric(12, 6), nullable=True)
    dimensional_weight = Column(Numeric(12, 4), nullable=True)

    # Pricing
    unit_price_usd = Column(Numeric(12, 4), nullable=True)
    unit_price_gbp = Column(Numeric(12, 4), nullable=True)
    pack_cost_gbp = Column(Numeric(12, 4), nullable=True)
    landed_cost = Column(Numeric(12, 4), nullable=True)
    unit_lcogs = Column(Numeric(12, 4), nullable=True)
    dtc_rrp = Column(Numeric(12, 2), nullable=True)
    pp_unit = Column(Numeric(12, 4), nullable=True)
    dtc_rrp_ex_vat = Column(Numeric(12, 2), nullable=True)

    # Master carton
    carton_barcode = Column(String, nullable=True)
    units_per_master_carton = Column(Integer, nullable=True)
    pieces_per_master_carton = Column(Integer, nullable=True)
    gross_weight_kg = Column(Numeric(12, 4), nullable=True)
    carton_width_cm = Column(Numeric(12, 2), nullable=True)
    carton_length_cm = Column(Numeric(12, 2), nullable=True)
    carton_height_cm = Column(Numeric(12, 2), nullable=True)
    carton_cbm = Column(Numeric(12, 6), nullable=True)

    active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
