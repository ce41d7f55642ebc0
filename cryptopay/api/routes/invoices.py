"""
Invoice issuance and the public invoice view.

``/buy`` is linked from merchant "pay" buttons, so it answers a plain GET
with query parameters as well as a JSON POST.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from cryptopay.api.deps import get_price_oracle
from cryptopay.core.config import Settings, get_settings
from cryptopay.core.errors import EntitlementError
from cryptopay.db.session import get_db
from cryptopay.schemas.invoice import (
    InvoiceCreateRequest,
    InvoiceCreatedResponse,
    PublicInvoiceRequest,
    PublicInvoiceResponse,
)
from cryptopay.services import invoice_store
from cryptopay.services.invoice_issuance import (
    build_billing_redirect_url,
    build_redirect_url,
    create_invoice,
)
from cryptopay.services.price_oracle import PriceOracle

logger = logging.getLogger(__name__)

router = APIRouter()

FALSE_FLAGS = ("0", "false", "no")


def _issue(db: Session, payload: InvoiceCreateRequest, settings: Settings, oracle: PriceOracle):
    base_url = (payload.base_url or "").strip()
    try:
        invoice = create_invoice(db, payload, settings, oracle)
    except EntitlementError as e:
        if base_url:
            logger.info(f"[Invoice] Merchant {payload.merchant_id} blocked ({e.code}), redirecting to billing")
            return RedirectResponse(build_billing_redirect_url(base_url, e.code), status_code=302)
        raise

    if base_url:
        usd_amount = str(payload.amount) if payload.amount_is_usd else None
        return RedirectResponse(build_redirect_url(base_url, invoice.public_token, usd_amount), status_code=302)
    return InvoiceCreatedResponse(public_token=invoice.public_token)


@router.get("/buy", response_model=InvoiceCreatedResponse)
def buy_from_link(
    request: Request,
    m: str = Query(""),
    a: str = Query(""),
    c: str = Query(""),
    r: Optional[str] = Query(None),
    u: Optional[str] = Query(None),
    n: Optional[str] = Query(None),
    e: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    oracle: PriceOracle = Depends(get_price_oracle),
):
    # "usd" is a presence flag: ?usd and ?usd=1 both request conversion.
    usd = request.query_params.get("usd")
    payload = InvoiceCreateRequest(
        merchant_id=m,
        amount=a,
        currency=c,
        reference=r,
        base_url=u,
        amount_is_usd=usd is not None and usd.strip().lower() not in FALSE_FLAGS,
        network=n,
        customer_email=e,
    )
    return _issue(db, payload, settings, oracle)


@router.post("/buy", response_model=InvoiceCreatedResponse)
def buy(
    payload: InvoiceCreateRequest = Body(...),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    oracle: PriceOracle = Depends(get_price_oracle),
):
    return _issue(db, payload, settings, oracle)


def _public_view(db: Session, token: str) -> dict:
    invoice = invoice_store.get_invoice_by_token(db, token)
    siblings = invoice_store.list_siblings(db, invoice)
    return {
        "invoice": invoice_store.serialize_public_invoice(invoice),
        "siblings": [
            {"currency": s.currency, "public_token": s.public_token, "status": s.effective_status()}
            for s in siblings
        ],
    }


@router.get("/invoice-public", response_model=PublicInvoiceResponse)
def get_public_invoice(t: str = Query(""), db: Session = Depends(get_db)):
    return _public_view(db, t)


@router.post("/invoice-public", response_model=PublicInvoiceResponse)
def post_public_invoice(payload: PublicInvoiceRequest = Body(...), db: Session = Depends(get_db)):
    return _public_view(db, payload.t)


@router.get("/prices")
def get_prices(
    symbols: str = Query("ETH,SOL,USDC,USDT"),
    oracle: PriceOracle = Depends(get_price_oracle),
):
    wanted = [s.strip().upper() for s in symbols.split(",") if s.strip()]
    quotes = oracle.get_usd_prices(wanted)
    logos = oracle.get_coin_logos(wanted)
    return {
        "prices": {sym: str(price) for sym, price in quotes.items()},
        "logos": logos,
    }
