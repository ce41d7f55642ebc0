from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String

from cryptopay.db.base import Base
from cryptopay.models.invoice import _uuid


class Payment(Base):
    """
    A detected on-chain transfer attached to an invoice.

    ``tx_hash`` is unique so retried webhook deliveries cannot create a second
    row; ``confirmations`` is rewritten by every confirmation sweep.
    """

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=_uuid)
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    chain = Column(String(32), nullable=True)
    tx_hash = Column(String(128), nullable=False, unique=True, index=True)
    amount = Column(Numeric(38, 18), nullable=False)
    confirmations = Column(Integer, nullable=False, default=0)
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)
