"""
Monthly GMV accounting and invoice-issuance entitlement.

Usage is recorded once per confirmed invoice: the crypto amount is priced in
USD, added to the merchant's row for the month, and an append-only ledger row
is written. Recording is best-effort; a missing quote or a storage hiccup
leaves usage undercounted rather than blocking the confirmation.
"""
import logging
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cryptopay.core.config import Settings
from cryptopay.core.currencies import quantize_amount
from cryptopay.core.errors import EntitlementError, StorageError
from cryptopay.core.plan_limits import (
    BLOCKED_TIERS,
    DEFAULT_TRIAL_DAYS,
    TRIAL,
    get_gmv_limit_cents,
)
from cryptopay.models.invoice import Invoice
from cryptopay.models.merchant import Merchant
from cryptopay.models.usage import MerchantUsageMonthly, PaymentsLedger
from cryptopay.services.outcomes import ItemOutcome
from cryptopay.services.price_oracle import PriceOracle

logger = logging.getLogger(__name__)


def month_start(moment: datetime) -> date:
    return date(moment.year, moment.month, 1)


def usd_to_cents(amount_usd: Decimal) -> int:
    return int((amount_usd * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_or_create_merchant(db: Session, merchant_id: str, trial_days: int = DEFAULT_TRIAL_DAYS) -> Merchant:
    """
    Return the merchant row, creating a trial merchant if none exists yet.
    Safe under concurrent first requests: the loser of the insert race re-reads.
    """
    merchant = db.query(Merchant).filter(Merchant.id == merchant_id).first()
    if merchant:
        return merchant

    merchant = Merchant(
        id=merchant_id,
        plan_tier=TRIAL,
        trial_ends_at=datetime.utcnow() + timedelta(days=trial_days),
    )
    db.add(merchant)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        merchant = db.query(Merchant).filter(Merchant.id == merchant_id).first()
        if merchant is None:
            raise StorageError(f"Could not create merchant {merchant_id}")
        return merchant
    db.refresh(merchant)
    logger.info(f"[Usage] Created trial merchant {merchant_id}")
    return merchant


def get_month_gmv_cents(db: Session, merchant_id: str, month: date) -> int:
    usage = (
        db.query(MerchantUsageMonthly)
        .filter(
            MerchantUsageMonthly.merchant_id == merchant_id,
            MerchantUsageMonthly.month == month,
        )
        .first()
    )
    return int(usage.gmv_cents or 0) if usage else 0


def check_entitlement(
    db: Session,
    merchant_id: str,
    settings: Settings,
    now: Optional[datetime] = None,
) -> None:
    """
    Raise ``EntitlementError`` if the merchant may not issue a new invoice.

    Order matters: feature flag, missing row, running trial, uncapped tier,
    blocked tier, then the monthly GMV cap.
    """
    if not settings.subscriptions_enabled or not merchant_id:
        return

    now = now or datetime.utcnow()
    try:
        merchant = db.query(Merchant).filter(Merchant.id == merchant_id).first()
    except SQLAlchemyError as e:
        raise StorageError(f"Entitlement lookup failed: {e}") from e

    if merchant is None:
        return
    if merchant.trial_ends_at and merchant.trial_ends_at > now:
        return

    tier = merchant.plan_tier or TRIAL
    if tier in BLOCKED_TIERS:
        raise EntitlementError(
            "Subscription inactive. Please renew to continue creating invoices.",
            EntitlementError.ENTITLEMENT_BLOCKED,
            upgrade_url=settings.billing_portal_url or None,
        )

    limit = get_gmv_limit_cents(tier, settings.gmv_limit_cents)
    if limit is None:
        return

    try:
        gmv_cents = get_month_gmv_cents(db, merchant_id, month_start(now))
    except SQLAlchemyError as e:
        raise StorageError(f"Usage lookup failed: {e}") from e

    if gmv_cents >= limit:
        raise EntitlementError(
            f"Monthly GMV reached ${limit // 100:,}. Upgrade to Pro to continue.",
            EntitlementError.UPGRADE_REQUIRED,
            upgrade_url=settings.billing_portal_url or None,
        )


def record_usage(
    db: Session,
    invoice: Invoice,
    oracle: PriceOracle,
    now: Optional[datetime] = None,
) -> ItemOutcome:
    """
    Add a confirmed invoice's USD value to the merchant's month and append a ledger row.

    Idempotent per invoice: a second call finds the ledger row and skips. The
    monthly total is a read-modify-write, so two sweeps crediting the same
    merchant at the same instant may lose one increment.
    """
    merchant_id = invoice.merchant_id
    currency = (invoice.currency or "").upper()
    amount = quantize_amount(invoice.amount or 0, currency)
    if not merchant_id or not currency or amount <= 0:
        return ItemOutcome.skipped("invoice has no merchant, currency or amount", invoice.id)

    try:
        already = db.query(PaymentsLedger.id).filter(PaymentsLedger.invoice_id == invoice.id).first()
        if already:
            return ItemOutcome.skipped("usage already recorded", invoice.id)

        price = oracle.get_usd_price(currency, pin_stablecoins=True)
        if price is None:
            logger.warning(f"[Usage] No USD quote for {currency}; skipping usage for invoice {invoice.id}")
            return ItemOutcome.skipped("price unavailable", invoice.id)

        usd_cents = usd_to_cents(amount * price)
        get_or_create_merchant(db, merchant_id)

        bucket = month_start(invoice.confirmed_at or now or datetime.utcnow())
        usage = (
            db.query(MerchantUsageMonthly)
            .filter(
                MerchantUsageMonthly.merchant_id == merchant_id,
                MerchantUsageMonthly.month == bucket,
            )
            .first()
        )
        if usage:
            usage.gmv_cents = int(usage.gmv_cents or 0) + usd_cents
        else:
            db.add(MerchantUsageMonthly(merchant_id=merchant_id, month=bucket, gmv_cents=usd_cents))

        db.add(
            PaymentsLedger(
                merchant_id=merchant_id,
                invoice_id=invoice.id,
                chain=invoice.network,
                tx_id=invoice.detected_tx_hash,
                currency=currency,
                amount_crypto=amount,
                amount_usd_cents=usd_cents,
            )
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception(f"[Usage] Failed to record usage for invoice {invoice.id}: {e}")
        return ItemOutcome.failed(str(e), invoice.id)

    logger.info(f"[Usage] Recorded {usd_cents} cents for merchant {merchant_id} (invoice {invoice.id})")
    return ItemOutcome.succeeded(invoice.id)
