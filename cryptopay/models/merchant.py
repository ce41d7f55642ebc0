from datetime import datetime

from sqlalchemy import Column, DateTime, String

from cryptopay.core.plan_limits import TRIAL
from cryptopay.db.base import Base


class Merchant(Base):
    """Subscription state per merchant. Subscription fields are written only by the billing bridge."""

    __tablename__ = "merchants"

    id = Column(String(64), primary_key=True)
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    plan_tier = Column(String(32), nullable=False, default=TRIAL, index=True)
    trial_ends_at = Column(DateTime, nullable=True)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
