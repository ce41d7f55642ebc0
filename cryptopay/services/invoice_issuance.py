"""
Invoice issuance.

Turns a merchant + currency + amount request into a pending invoice with a
fixed crypto amount and destination address. USD-denominated requests are
converted at the oracle's current quote and rounded to the currency's
precision.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cryptopay.core import currencies
from cryptopay.core.config import Settings
from cryptopay.core.errors import (
    ConfigurationError,
    PriceUnavailableError,
    StorageError,
    ValidationError,
)
from cryptopay.models.invoice import PENDING, Invoice
from cryptopay.models.wallet import Wallet
from cryptopay.schemas.invoice import InvoiceCreateRequest
from cryptopay.services.price_oracle import PriceOracle
from cryptopay.services.usage_ledger import check_entitlement, get_or_create_merchant

logger = logging.getLogger(__name__)

# Invoice and payment amounts are stored as Numeric(38, 18).
MAX_AMOUNT = Decimal(10) ** 20


def parse_amount(raw) -> Decimal:
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Invalid amount (a)", "invalid_amount")
    if not amount.is_finite() or amount <= 0 or amount >= MAX_AMOUNT:
        raise ValidationError("Invalid amount (a)", "invalid_amount")
    return amount


def bounded_amount(amount: Decimal, currency: str) -> Decimal:
    """Round to the currency's precision, rejecting what the amount columns cannot hold."""
    if amount >= MAX_AMOUNT:
        raise ValidationError("Invalid amount (a)", "invalid_amount")
    try:
        return currencies.quantize_amount(amount, currency)
    except InvalidOperation:
        raise ValidationError("Invalid amount (a)", "invalid_amount")


def resolve_network(currency: str, requested: Optional[str]) -> str:
    allowed = currencies.SUPPORTED_NETWORKS[currency]
    if not requested:
        return allowed[0]
    network = currencies.normalize_network(requested)
    if network not in allowed:
        raise ValidationError(f"{currency} is not supported on {network}", "unsupported_network")
    return network


def resolve_receiving_address(db: Session, merchant_id: str, currency: str, network: str) -> str:
    wallet = (
        db.query(Wallet)
        .filter(
            Wallet.merchant_id == merchant_id,
            Wallet.currency == currency,
            Wallet.network == network,
        )
        .first()
    )
    if not wallet:
        raise ConfigurationError("Merchant has no wallet for currency", "wallet_missing")
    return wallet.address


def convert_usd(amount_usd: Decimal, currency: str, oracle: PriceOracle) -> Decimal:
    price = oracle.get_usd_price(currency)
    if price is None:
        raise PriceUnavailableError(f"Failed to fetch USD price for {currency}")
    return bounded_amount(amount_usd / price, currency)


def apply_processing_fee(amount: Decimal, currency: str, fee_percent: Decimal) -> Decimal:
    """Fee is added to what the buyer pays; the merchant's share is untouched."""
    if not fee_percent or fee_percent <= 0:
        return amount
    return bounded_amount(amount * (1 + fee_percent / 100), currency)


def create_invoice(
    db: Session,
    request: InvoiceCreateRequest,
    settings: Settings,
    oracle: PriceOracle,
    now: Optional[datetime] = None,
) -> Invoice:
    merchant_id = (request.merchant_id or "").strip()
    currency = (request.currency or "").strip().upper()
    if not merchant_id:
        raise ValidationError("Missing merchant id (m)", "missing_merchant")
    amount = parse_amount(request.amount)
    if not currency:
        raise ValidationError("Missing currency (c)", "missing_currency")
    if not currencies.is_supported(currency):
        raise ValidationError("Unsupported currency", "unsupported_currency")
    network = resolve_network(currency, request.network)

    try:
        # A merchant with no billing record yet is a fresh trial, not a blocked one.
        get_or_create_merchant(db, merchant_id, settings.trial_days)
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(str(e)) from e

    check_entitlement(db, merchant_id, settings, now)

    to_address = resolve_receiving_address(db, merchant_id, currency, network)

    if request.amount_is_usd:
        amount = convert_usd(amount, currency, oracle)
        if amount <= 0:
            raise ValidationError("Amount too small after conversion", "invalid_amount")
    else:
        amount = bounded_amount(amount, currency)
        if amount <= 0:
            raise ValidationError("Invalid amount (a)", "invalid_amount")

    amount = apply_processing_fee(amount, currency, settings.processing_fee_percent)

    now = now or datetime.utcnow()
    expires_at = None
    if settings.invoice_ttl_minutes:
        expires_at = now + timedelta(minutes=settings.invoice_ttl_minutes)

    invoice = Invoice(
        merchant_id=merchant_id,
        amount=amount,
        currency=currency,
        network=network,
        to_address=to_address,
        reference=(request.reference or "").strip() or None,
        customer_email=(request.customer_email or "").strip() or None,
        confirmations_required=currencies.confirmations_required_for(network),
        status=PENDING,
        expires_at=expires_at,
        created_at=now,
    )
    try:
        db.add(invoice)
        db.commit()
        db.refresh(invoice)
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(str(e)) from e

    logger.info(
        f"[Invoice] Created invoice {invoice.id} for merchant {merchant_id}: "
        f"{currencies.format_amount(amount, currency)} {currency} on {network}"
    )
    return invoice


def build_redirect_url(base_url: str, token: str, usd_amount: Optional[str] = None) -> str:
    base = base_url[:-1] if base_url.endswith("/") else base_url
    extra = f"&usd=1&v={usd_amount}" if usd_amount else ""
    return f"{base}/?t={token}{extra}"


def build_billing_redirect_url(base_url: str, code: str) -> str:
    base = base_url[:-1] if base_url.endswith("/") else base_url
    return f"{base}/?billing={code}"
