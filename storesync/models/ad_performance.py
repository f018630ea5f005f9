"""
Advertising performance models

One row per ad per day, shared by every ad platform (facebook, amazon).
"""
from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Numeric, UniqueConstraint, Index
from datetime import datetime

from storesync.models.base import Base


class AdPerformance(Base):
    """
    Daily ad line item.

    Natural key: (org_id, platform, date, campaign, adset, ad). Amazon rows are
    campaign level, so adset/ad are stored as empty strings rather than NULL to
    keep the unique constraint effective.
    """
    __tablename__ = "ad_performance"
    __table_args__ = (
        UniqueConstraint("org_id", "platform", "date", "campaign", "adset", "ad",
                         name="uq_ad_performance_natural_key"),
        Index("ix_ad_performance_org_date", "org_id", "date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    platform = Column(String, nullable=False)  # facebook, amazon

    date = Column(Date, nullable=False)
    campaign = Column(String, nullable=False, default="")
    adset = Column(String, nullable=False, default="")
    ad = Column(String, nullable=False, default="")
    campaign_id = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)

    # Volume
    spend = Column(Numeric(12, 2), default=0)
    impressions = Column(Integer, default=0)
    reach = Column(Integer, default=0)
    frequency = Column(Float, default=0)
    clicks = Column(Integer, default=0)
    purchases = Column(Integer, default=0)
    purchase_value = Column(Numeric(12, 2), default=0)

    # Provider-reported ratios (kept as delivered; reports recompute their own)
    cpc = Column(Float, default=0)
    cpm = Column(Float, default=0)
    ctr = Column(Float, default=0)
    roas = Column(Float, default=0)
    cost_per_purchase = Column(Float, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
