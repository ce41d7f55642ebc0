from datetime import datetime

from sqlalchemy import BigInteger, Column, Date, DateTime, ForeignKey, Index, Numeric, String

from cryptopay.db.base import Base
from cryptopay.models.invoice import _uuid


class MerchantUsageMonthly(Base):
    """Confirmed GMV per merchant per calendar month, in integer USD cents."""

    __tablename__ = "merchant_usage_monthly"

    merchant_id = Column(String(64), ForeignKey("merchants.id", ondelete="CASCADE"), primary_key=True)
    month = Column(Date, primary_key=True)  # first day of the month (UTC)
    gmv_cents = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PaymentsLedger(Base):
    """Append-only audit row per confirmed invoice. Never updated or deleted."""

    __tablename__ = "payments_ledger"

    id = Column(String(36), primary_key=True, default=_uuid)
    merchant_id = Column(String(64), ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    invoice_id = Column(String(36), nullable=True, index=True)
    chain = Column(String(32), nullable=True)
    tx_id = Column(String(128), nullable=True)
    currency = Column(String(16), nullable=True)
    amount_crypto = Column(Numeric(38, 18), nullable=True)
    amount_usd_cents = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("payments_ledger_merchant_created_idx", "merchant_id", "created_at"),
    )
