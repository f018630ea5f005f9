"""
Inventory snapshot models

Daily per-SKU stock position pulled from the fulfillment platform.
"""
from sqlalchemy import Column, Integer, String, Date, DateTime, UniqueConstraint
from datetime import datetime

from storesync.models.base import Base


class InventorySnapshot(Base):
    """
    Stock level for one SKU on one snapshot date.

    Re-running the same day's snapshot overwrites the quantities.
    """
    __tablename__ = "inventory_snapshots"
    __table_args__ = (
        UniqueConstraint("org_id", "snapshot_date", "sku", name="uq_inventory_snapshot_natural_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    snapshot_date = Column(Date, nullable=False, index=True)
    sku = Column(String, nullable=False, index=True)
    product_name = Column(String, nullable=True)

    fulfillable_quantity = Column(Integer, default=0)
    onhand_quantity = Column(Integer, default=0)
    committed_quantity = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
