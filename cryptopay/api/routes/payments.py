"""
Payment producers: provider webhook, buyer receipt, Solana Pay transaction request.
"""
import json
import logging

from fastapi import APIRouter, Body, Depends, Header, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from cryptopay.api.deps import get_chain_clients
from cryptopay.core.config import Settings, get_settings
from cryptopay.core.errors import ValidationError
from cryptopay.db.session import get_db
from cryptopay.services import invoice_store
from cryptopay.services.chain_rpc import ChainClients
from cryptopay.services.payment_ingestion import (
    process_webhook_delivery,
    submit_receipt,
    verify_shared_secret,
)
from cryptopay.services.solana_pay import build_payment_transaction

logger = logging.getLogger(__name__)

router = APIRouter()


class ReceiptRequest(BaseModel):
    t: str = ""
    signature: str = ""


@router.post("/evm-notify")
async def evm_notify(
    request: Request,
    x_webhook_secret: str = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Chain-activity webhook (Alchemy, QuickNode and similar). Authenticated by
    the shared ``x-webhook-secret`` header.
    """
    verify_shared_secret(x_webhook_secret, settings.webhook_secret)

    payload = await request.body()
    try:
        body = json.loads(payload) if payload else []
    except json.JSONDecodeError:
        raise ValidationError("Invalid JSON", "invalid_payload")

    summary = process_webhook_delivery(db, body)
    return {"ok": True, **summary.as_dict()}


@router.post("/solana-receipt")
def solana_receipt(payload: ReceiptRequest = Body(...), db: Session = Depends(get_db)):
    if not payload.t or not payload.signature:
        raise ValidationError("Missing token or signature", "missing_fields")
    return submit_receipt(db, payload.t, payload.signature)


@router.get("/solana-pay")
def solana_pay(
    t: str = Query(""),
    account: str = Query(""),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    chains: ChainClients = Depends(get_chain_clients),
):
    if not account:
        raise ValidationError("Missing account", "missing_account")
    invoice = invoice_store.get_invoice_by_token(db, t)
    return build_payment_transaction(invoice, account, settings, chains.solana())
