"""
Confirmation sweep: promotes paid invoices to confirmed once their transaction is final.

Finality policy per network family:
- ``finality`` (Solana): the node's ``finalized`` status is enough.
- ``blocks`` (EVM): confirmations = tip - tx block + 1, written to the payment
  row on every sweep; confirm once it reaches ``confirmations_required``.

A lookup failure skips that invoice until the next sweep. Nothing here ever
moves an invoice backwards.
"""
import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from cryptopay.core.currencies import BLOCKS, FINALITY, network_family
from cryptopay.core.errors import StorageError, UpstreamRpcError
from cryptopay.models.invoice import Invoice
from cryptopay.services import invoice_store
from cryptopay.services.chain_rpc import ChainClients
from cryptopay.services.outcomes import FAILED, BatchSummary, ItemOutcome
from cryptopay.services.price_oracle import PriceOracle
from cryptopay.services.usage_ledger import record_usage

logger = logging.getLogger(__name__)


def confirm_invoice(
    db: Session,
    invoice: Invoice,
    oracle: PriceOracle,
    now: Optional[datetime] = None,
) -> ItemOutcome:
    now = now or datetime.utcnow()
    changed = invoice_store.mark_confirmed(db, invoice.id, now)
    db.commit()
    if not changed:
        return ItemOutcome.skipped("already confirmed", invoice.id)

    db.refresh(invoice)
    logger.info(f"[Confirmations] Invoice {invoice.id} confirmed ({invoice.detected_tx_hash})")
    usage = record_usage(db, invoice, oracle, now)
    if usage.status == FAILED:
        logger.warning(f"[Confirmations] Usage not recorded for invoice {invoice.id}: {usage.reason}")
    return ItemOutcome.succeeded(invoice.id)


def _check_finalized(db: Session, invoice: Invoice, chains: ChainClients, oracle: PriceOracle, now) -> ItemOutcome:
    status = chains.solana().get_signature_status(invoice.detected_tx_hash)
    if not status:
        return ItemOutcome.skipped("signature not found", invoice.id)
    if status.get("err"):
        logger.warning(f"[Confirmations] Transaction for invoice {invoice.id} failed on chain: {status['err']}")
        return ItemOutcome.skipped("transaction failed on chain", invoice.id)
    if status.get("confirmationStatus") != "finalized":
        return ItemOutcome.skipped("not finalized", invoice.id)
    return confirm_invoice(db, invoice, oracle, now)


def _check_block_depth(
    db: Session,
    invoice: Invoice,
    chains: ChainClients,
    oracle: PriceOracle,
    tips: Dict[str, object],
    now,
) -> ItemOutcome:
    network = invoice.network
    client = chains.evm(network)
    if client is None:
        return ItemOutcome.skipped(f"no RPC configured for {network}", invoice.id)

    # One tip lookup per network per sweep; a failed lookup is remembered too.
    if network not in tips:
        try:
            tips[network] = client.get_block_number()
        except UpstreamRpcError as e:
            tips[network] = e
    tip = tips[network]
    if isinstance(tip, UpstreamRpcError):
        raise tip

    receipt = client.get_transaction_receipt(invoice.detected_tx_hash)
    if not receipt or not receipt.get("blockNumber"):
        return ItemOutcome.skipped("receipt not available", invoice.id)
    if receipt.get("status") == "0x0":
        logger.warning(f"[Confirmations] Transaction for invoice {invoice.id} reverted")
        return ItemOutcome.skipped("transaction reverted", invoice.id)

    tx_block = int(receipt["blockNumber"], 16)
    confirmations = max(0, tip - tx_block + 1)
    required = invoice.confirmations_required or 1

    invoice_store.update_payment_confirmations(db, invoice.id, confirmations)
    if confirmations >= required:
        return confirm_invoice(db, invoice, oracle, now)

    db.commit()
    return ItemOutcome.skipped(f"{confirmations}/{required} confirmations", invoice.id)


def sweep_confirmations(
    db: Session,
    chains: ChainClients,
    oracle: PriceOracle,
    batch_size: int = 50,
    now: Optional[datetime] = None,
) -> BatchSummary:
    try:
        invoices = invoice_store.list_paid_awaiting_confirmation(db, batch_size)
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(f"Failed to load paid invoices: {e}") from e

    summary = BatchSummary()
    tips: Dict[str, object] = {}
    visited_at = now or datetime.utcnow()
    for invoice in invoices:
        invoice_id = invoice.id
        family = network_family(invoice.network)
        try:
            if family == FINALITY:
                outcome = _check_finalized(db, invoice, chains, oracle, now)
            elif family == BLOCKS:
                outcome = _check_block_depth(db, invoice, chains, oracle, tips, now)
            else:
                outcome = ItemOutcome.skipped(f"unsupported network {invoice.network}", invoice.id)
        except UpstreamRpcError as e:
            db.rollback()
            logger.warning(f"[Confirmations] RPC lookup failed for invoice {invoice_id}: {e.message}")
            outcome = ItemOutcome.failed(e.message, invoice_id)
        except OperationalError as e:
            db.rollback()
            raise StorageError(f"Database unavailable: {e}") from e
        except Exception as e:
            db.rollback()
            logger.exception(f"[Confirmations] Error checking invoice {invoice_id}: {e}")
            outcome = ItemOutcome.failed(str(e), invoice_id)
        summary.add(outcome)

        # Stamped whatever the outcome, so the next sweep starts with invoices not seen yet.
        try:
            invoice_store.mark_checked(db, invoice_id, visited_at)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to record sweep visit: {e}") from e

    logger.info(
        f"[Confirmations] Sweep done: checked={summary.total} confirmed={summary.succeeded} "
        f"waiting={summary.skipped} failed={summary.failed}"
    )
    return summary


def summary_response(summary: BatchSummary) -> dict:
    return {
        "ok": True,
        "checked": summary.total,
        "confirmed": summary.succeeded,
        "waiting": summary.skipped,
        "failed": summary.failed,
    }
