"""
Site analytics models

Stores one row per day of product-analytics metrics (traffic, devices,
channels and the purchase funnel).
"""
from sqlalchemy import Column, Integer, String, Float, Date, DateTime, UniqueConstraint
from datetime import datetime

from storesync.models.base import Base


class DailyAnalytics(Base):
    """Daily site analytics. Natural key: (org_id, date)."""
    __tablename__ = "daily_analytics"
    __table_args__ = (
        UniqueConstraint("org_id", "date", name="uq_daily_analytics_natural_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)

    # Traffic
    unique_visitors = Column(Integer, default=0)
    total_sessions = Column(Integer, default=0)
    pageviews = Column(Integer, default=0)
    bounce_rate = Column(Float, default=0)  # percentage 0-100
    avg_session_duration = Column(Float, default=0)  # seconds

    # Devices
    mobile_sessions = Column(Integer, default=0)
    desktop_sessions = Column(Integer, default=0)
    top_country = Column(String, nullable=True)

    # Channels
    direct_sessions = Column(Integer, default=0)
    organic_sessions = Column(Integer, default=0)
    paid_sessions = Column(Integer, default=0)
    social_sessions = Column(Integer, default=0)

    # Funnel
    product_views = Column(Integer, default=0)
    add_to_cart = Column(Integer, default=0)
    checkout_started = Column(Integer, default=0)
    purchases = Column(Integer, default=0)
    conversion_rate = Column(Float, default=0)  # purchases / unique visitors * 100

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
