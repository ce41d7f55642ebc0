"""
Stripe subscription endpoints. Plan state lands on the merchant row; invoice
issuance reads it through the entitlement check.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from cryptopay.api.deps import get_billing_provider
from cryptopay.core.config import Settings, get_settings
from cryptopay.db.session import get_db
from cryptopay.services.billing_bridge import (
    StripeBillingProvider,
    handle_event,
    open_portal,
    start_subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateSubscriptionRequest(BaseModel):
    merchant_id: str = ""
    plan: str = "basic"
    email: Optional[str] = None


class PortalRequest(BaseModel):
    merchant_id: str = ""
    return_url: Optional[str] = None


@router.post("/create-subscription")
def create_subscription(
    payload: CreateSubscriptionRequest = Body(...),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    provider: StripeBillingProvider = Depends(get_billing_provider),
):
    return start_subscription(db, provider, settings, payload.merchant_id, payload.plan, payload.email)


@router.post("/portal")
def billing_portal(
    payload: PortalRequest = Body(...),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    provider: StripeBillingProvider = Depends(get_billing_provider),
):
    return open_portal(db, provider, settings, payload.merchant_id, payload.return_url)


@router.post("/webhook")
async def billing_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    provider: StripeBillingProvider = Depends(get_billing_provider),
):
    payload = await request.body()
    event = provider.parse_event(payload, request.headers.get("stripe-signature", ""))
    handle_event(db, event, settings)
    return {"received": True}
