import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Integer, Numeric, String

from cryptopay.db.base import Base

DRAFT = "draft"
PENDING = "pending"
PAID = "paid"
CONFIRMED = "confirmed"
EXPIRED = "expired"

# Statuses a payment signal is allowed to move forward to "paid".
PAYABLE_STATUSES = (PENDING, DRAFT)
# Statuses shown to buyers as currency alternatives.
SIBLING_STATUSES = (PENDING, PAID, CONFIRMED)
# Reader-side expiry only applies to these.
EXPIRABLE_STATUSES = (PENDING, PAID)


def _uuid() -> str:
    return str(uuid.uuid4())


class Invoice(Base):
    """
    A request for an exact crypto amount, in one currency on one network, to one address.

    ``amount`` and ``currency`` never change after insert. Status only moves
    forward: draft -> pending -> paid -> confirmed, with pending/paid reading as
    expired once ``expires_at`` has passed.
    """

    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=_uuid)
    # Customer-facing handle; generated independently of ``id``.
    public_token = Column(String(36), nullable=False, unique=True, index=True, default=_uuid)

    merchant_id = Column(String(64), nullable=False, index=True)
    amount = Column(Numeric(38, 18), nullable=False)
    currency = Column(String(16), nullable=False)
    network = Column(String(32), nullable=True)
    to_address = Column(String(128), nullable=False)
    reference = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    confirmations_required = Column(Integer, nullable=False, default=1)

    status = Column(String(16), nullable=False, default=PENDING)
    detected_tx_hash = Column(String(128), nullable=True)
    detected_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    # Last confirmation sweep visit; the sweep works least recently checked first.
    last_checked_at = Column(DateTime, nullable=True)

    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("invoices_match_idx", "to_address", "currency", "network", "status"),
        Index("invoices_status_created_idx", "status", "created_at"),
        Index("invoices_status_checked_idx", "status", "last_checked_at"),
    )

    def effective_status(self, now: datetime | None = None) -> str:
        """Status as a reader should present it, applying expiry."""
        now = now or datetime.utcnow()
        if self.status in EXPIRABLE_STATUSES and self.expires_at and self.expires_at <= now:
            return EXPIRED
        return self.status
