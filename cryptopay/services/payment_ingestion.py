"""
Payment ingestion: the producers that move an invoice from pending to paid.

- ``process_webhook_delivery``: provider push (chain-activity webhook).
- ``submit_receipt``: buyer's wallet reports a transaction signature.

Both only ever move an invoice forward and are safe to re-deliver. The
Solana Pay transaction builder (``cryptopay.services.solana_pay``) never
changes state itself; its completion arrives through ``submit_receipt``.
"""
import hmac
import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from cryptopay.core.currencies import SOLANA, is_evm, quantize_amount
from cryptopay.core.errors import AuthError, StorageError, ValidationError
from cryptopay.models.invoice import PENDING
from cryptopay.services import invoice_store
from cryptopay.services.outcomes import BatchSummary, ItemOutcome
from cryptopay.services.webhook_events import (
    NormalizedPaymentEvent,
    extract_events,
    normalize_event,
)

logger = logging.getLogger(__name__)

# A payment may come in at most 0.5% under the invoice amount.
AMOUNT_TOLERANCE = Decimal("0.005")

BASE58_SIGNATURE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,100}$")
EVM_TX_HASH = re.compile(r"^0x[0-9a-fA-F]{64}$")


def verify_shared_secret(provided: Optional[str], expected: str) -> None:
    if not expected or not provided or not hmac.compare_digest(provided, expected):
        raise AuthError("Unauthorized")


def amount_within_tolerance(detected: Decimal, expected: Decimal) -> bool:
    return detected >= expected * (1 - AMOUNT_TOLERANCE)


def process_event(db: Session, event: NormalizedPaymentEvent, now: Optional[datetime] = None) -> ItemOutcome:
    if not event.is_actionable:
        return ItemOutcome.skipped("missing recipient, currency or amount", event.tx_hash or None)

    if event.tx_hash and invoice_store.payment_exists(db, event.tx_hash):
        return ItemOutcome.skipped("duplicate transaction", event.tx_hash)

    invoice = invoice_store.find_payable_invoice(db, event.to_address, event.currency, event.network)
    if not invoice:
        return ItemOutcome.skipped("no open invoice for address", event.tx_hash or None)

    expected = quantize_amount(invoice.amount, invoice.currency)
    if not amount_within_tolerance(event.amount, expected):
        logger.info(
            f"[Webhook] Underpayment for invoice {invoice.id}: got {event.amount}, expected {expected} "
            f"{invoice.currency}"
        )
        return ItemOutcome.skipped("amount below tolerance", invoice.id)

    try:
        invoice_store.add_payment(db, invoice.id, event.network, event.tx_hash or None, event.amount)
        if not invoice_store.mark_paid(db, invoice.id, event.tx_hash or None, now):
            # Another delivery won the race; drop our payment row with it.
            db.rollback()
            return ItemOutcome.skipped("invoice already paid", invoice.id)
        db.commit()
    except IntegrityError:
        db.rollback()
        return ItemOutcome.skipped("duplicate transaction", event.tx_hash or invoice.id)

    logger.info(f"[Webhook] Invoice {invoice.id} marked paid by tx {event.tx_hash or '<none>'}")
    return ItemOutcome.succeeded(invoice.id)


def process_webhook_delivery(db: Session, body: Any, now: Optional[datetime] = None) -> BatchSummary:
    """
    Apply every event of one delivery independently.

    A failing event is logged and counted; it never stops the rest of the
    delivery. Losing the database connection altogether raises ``StorageError``
    so the provider retries the whole delivery.
    """
    summary = BatchSummary()
    for raw in extract_events(body):
        try:
            summary.add(process_event(db, normalize_event(raw), now))
        except OperationalError as e:
            db.rollback()
            raise StorageError(f"Database unavailable: {e}") from e
        except Exception as e:
            db.rollback()
            logger.exception(f"[Webhook] Failed to process event: {e}")
            summary.add(ItemOutcome.failed(str(e)))

    logger.info(f"[Webhook] Delivery processed: {summary.as_dict()}")
    return summary


def is_valid_signature(signature: str, network: Optional[str]) -> bool:
    if network == SOLANA:
        return bool(BASE58_SIGNATURE.match(signature))
    if is_evm(network):
        return bool(EVM_TX_HASH.match(signature))
    return bool(BASE58_SIGNATURE.match(signature) or EVM_TX_HASH.match(signature))


def submit_receipt(db: Session, token: str, signature: str, now: Optional[datetime] = None) -> dict:
    """
    Mark a pending invoice paid from a client-reported signature.

    The signature is not checked against the chain here; only the
    confirmation sweep can promote the invoice to confirmed, and it will
    never find a bogus signature. Non-pending invoices are left untouched.
    """
    invoice = invoice_store.get_invoice_by_token(db, token)
    signature = (signature or "").strip()
    if not is_valid_signature(signature, invoice.network):
        raise ValidationError("Invalid signature", "invalid_signature")

    if invoice.status != PENDING:
        return {"ok": True, "status": invoice.status}

    try:
        changed = invoice_store.mark_paid(db, invoice.id, signature, now, from_statuses=(PENDING,))
        db.commit()
    except OperationalError as e:
        db.rollback()
        raise StorageError(f"Database unavailable: {e}") from e

    if changed:
        logger.info(f"[Receipt] Invoice {invoice.id} marked paid by client signature {signature}")
    db.refresh(invoice)
    return {"ok": True, "status": invoice.status}
