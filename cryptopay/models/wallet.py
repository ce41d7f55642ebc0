from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint

from cryptopay.db.base import Base
from cryptopay.models.invoice import _uuid


class Wallet(Base):
    """A merchant's receiving address for one currency on one network."""

    __tablename__ = "wallets"

    id = Column(String(36), primary_key=True, default=_uuid)
    merchant_id = Column(String(64), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False, index=True)
    currency = Column(String(16), nullable=False)
    network = Column(String(32), nullable=False)
    address = Column(String(128), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("merchant_id", "currency", "network", name="wallets_merchant_currency_network_key"),
    )
