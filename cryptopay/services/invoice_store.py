"""
Invoice and payment persistence.

Every status change goes through a guarded UPDATE (``... WHERE status IN
(...)``) so concurrent producers racing on one invoice produce exactly one
visible transition; the loser sees a row count of 0. Callers own the commit.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from cryptopay.core.currencies import format_amount
from cryptopay.core.errors import NotFoundError, ValidationError
from cryptopay.models.invoice import (
    CONFIRMED,
    PAID,
    PAYABLE_STATUSES,
    SIBLING_STATUSES,
    Invoice,
)
from cryptopay.models.payment import Payment


def is_valid_token(token: str) -> bool:
    try:
        uuid.UUID(token)
    except (TypeError, ValueError, AttributeError):
        return False
    return True


def get_invoice_by_token(db: Session, token: str) -> Invoice:
    token = (token or "").strip()
    if not token or not is_valid_token(token):
        raise ValidationError("Invalid token", "invalid_token")
    invoice = db.query(Invoice).filter(Invoice.public_token == token).first()
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def find_payable_invoice(db: Session, to_address: str, currency: str, network: str) -> Optional[Invoice]:
    """
    Most recent pending/draft invoice for an address+currency+network.

    Best-effort: one address can back several open invoices, and the amount
    tolerance check is the only further disambiguation.
    """
    return (
        db.query(Invoice)
        .filter(
            Invoice.to_address == to_address,
            Invoice.currency == currency,
            Invoice.network == network,
            Invoice.status.in_(PAYABLE_STATUSES),
        )
        .order_by(Invoice.created_at.desc())
        .first()
    )


def mark_paid(
    db: Session,
    invoice_id: str,
    tx_hash: Optional[str],
    detected_at: Optional[datetime] = None,
    from_statuses=PAYABLE_STATUSES,
) -> bool:
    updated = (
        db.query(Invoice)
        .filter(Invoice.id == invoice_id, Invoice.status.in_(from_statuses))
        .update(
            {
                Invoice.status: PAID,
                Invoice.detected_tx_hash: tx_hash,
                Invoice.detected_at: detected_at or datetime.utcnow(),
            },
            synchronize_session=False,
        )
    )
    return updated == 1


def mark_confirmed(db: Session, invoice_id: str, confirmed_at: Optional[datetime] = None) -> bool:
    updated = (
        db.query(Invoice)
        .filter(Invoice.id == invoice_id, Invoice.status == PAID)
        .update(
            {Invoice.status: CONFIRMED, Invoice.confirmed_at: confirmed_at or datetime.utcnow()},
            synchronize_session=False,
        )
    )
    return updated == 1


def payment_exists(db: Session, tx_hash: str) -> bool:
    if not tx_hash:
        return False
    return db.query(Payment.id).filter(Payment.tx_hash == tx_hash).first() is not None


def add_payment(
    db: Session,
    invoice_id: str,
    chain: Optional[str],
    tx_hash: Optional[str],
    amount: Decimal,
    confirmations: int = 0,
) -> Payment:
    # Providers sometimes omit the hash; a synthetic id keeps distinct events apart.
    payment = Payment(
        invoice_id=invoice_id,
        chain=chain,
        tx_hash=tx_hash or str(uuid.uuid4()),
        amount=amount,
        confirmations=confirmations,
    )
    db.add(payment)
    db.flush()
    return payment


def update_payment_confirmations(db: Session, invoice_id: str, confirmations: int) -> int:
    return (
        db.query(Payment)
        .filter(Payment.invoice_id == invoice_id)
        .update({Payment.confirmations: confirmations}, synchronize_session=False)
    )


def list_paid_awaiting_confirmation(db: Session, limit: int) -> List[Invoice]:
    """
    Paid invoices with a transaction to check, never-visited first, then least
    recently visited. Invoices that never confirm rotate to the back instead of
    filling every batch.
    """
    return (
        db.query(Invoice)
        .filter(Invoice.status == PAID, Invoice.detected_tx_hash.isnot(None))
        .order_by(Invoice.last_checked_at.asc().nulls_first(), Invoice.created_at.asc())
        .limit(limit)
        .all()
    )


def mark_checked(db: Session, invoice_id: str, checked_at: datetime) -> None:
    (
        db.query(Invoice)
        .filter(Invoice.id == invoice_id)
        .update({Invoice.last_checked_at: checked_at}, synchronize_session=False)
    )


def list_siblings(db: Session, invoice: Invoice) -> List[Invoice]:
    """Invoices for the same merchant, amount and reference, offered as currency alternatives."""
    q = db.query(Invoice).filter(
        Invoice.merchant_id == invoice.merchant_id,
        Invoice.amount == invoice.amount,
        Invoice.status.in_(SIBLING_STATUSES),
    )
    if invoice.reference is None:
        q = q.filter(Invoice.reference.is_(None))
    else:
        q = q.filter(Invoice.reference == invoice.reference)
    return q.order_by(Invoice.created_at.desc()).all()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_public_invoice(invoice: Invoice, now: Optional[datetime] = None) -> dict:
    return {
        "public_token": invoice.public_token,
        "merchant_id": invoice.merchant_id,
        "amount": format_amount(invoice.amount, invoice.currency),
        "currency": invoice.currency,
        "network": invoice.network,
        "to_address": invoice.to_address,
        "reference": invoice.reference,
        "status": invoice.effective_status(now),
        "confirmations_required": invoice.confirmations_required,
        "detected_tx_hash": invoice.detected_tx_hash,
        "created_at": _iso(invoice.created_at),
        "expires_at": _iso(invoice.expires_at),
        "confirmed_at": _iso(invoice.confirmed_at),
    }
