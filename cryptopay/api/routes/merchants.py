from typing import List

from fastapi import APIRouter, Body, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cryptopay.core import currencies
from cryptopay.core.config import Settings, get_settings
from cryptopay.core.errors import ValidationError
from cryptopay.db.session import get_db
from cryptopay.models.wallet import Wallet
from cryptopay.schemas.invoice import WalletCreate, WalletResponse
from cryptopay.services.invoice_issuance import resolve_network
from cryptopay.services.usage_ledger import get_or_create_merchant

router = APIRouter()


@router.get("/{merchant_id}/wallets", response_model=List[WalletResponse])
def list_wallets(merchant_id: str, db: Session = Depends(get_db)):
    return (
        db.query(Wallet)
        .filter(Wallet.merchant_id == merchant_id)
        .order_by(Wallet.currency, Wallet.network)
        .all()
    )


@router.post("/{merchant_id}/wallets", response_model=WalletResponse)
def upsert_wallet(
    merchant_id: str,
    payload: WalletCreate = Body(...),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Set the receiving address for one currency/network, replacing any previous one."""
    currency = payload.currency.strip().upper()
    if not currencies.is_supported(currency):
        raise ValidationError("Unsupported currency", "unsupported_currency")
    network = resolve_network(currency, payload.network)
    address = payload.address.strip()
    if not address:
        raise ValidationError("Missing address", "missing_address")
    # Webhook matching compares lower-cased EVM addresses.
    if currencies.is_evm(network):
        address = address.lower()

    get_or_create_merchant(db, merchant_id, settings.trial_days)
    wallet = (
        db.query(Wallet)
        .filter(Wallet.merchant_id == merchant_id, Wallet.currency == currency, Wallet.network == network)
        .first()
    )
    if wallet:
        wallet.address = address
    else:
        wallet = Wallet(merchant_id=merchant_id, currency=currency, network=network, address=address)
        db.add(wallet)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("Wallet already exists", "wallet_conflict")
    db.refresh(wallet)
    return wallet
