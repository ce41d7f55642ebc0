"""
Subscription billing bridge (Stripe).

Mirrors provider-side subscription state onto the merchant row. The core only
reads ``plan_tier`` and ``trial_ends_at``; everything that writes the
subscription fields lives here.
"""
import json
import logging
import uuid
from datetime import datetime
from typing import Optional

import stripe
from sqlalchemy.orm import Session

from cryptopay.core.config import Settings
from cryptopay.core.errors import ConfigurationError, NotFoundError, ValidationError
from cryptopay.core.plan_limits import BASIC_TIER, CANCELED, PAST_DUE, PRO_TIER, TRIAL
from cryptopay.models.merchant import Merchant
from cryptopay.services.usage_ledger import get_or_create_merchant

logger = logging.getLogger(__name__)

TRIAL_PERIOD_DAYS = 30
SUBSCRIPTION_EVENTS = (
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
)


class StripeBillingProvider:
    """
    Thin wrapper over the Stripe SDK.

    The API key is passed on every call rather than set on the ``stripe``
    module, so one process can serve tests and several configurations.
    """

    def __init__(self, api_key: str, webhook_secret: str = ""):
        if not api_key:
            raise ConfigurationError("Stripe not configured", code="billing_not_configured", status_code=500)
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def create_customer(self, merchant_id: str, email: Optional[str] = None) -> str:
        customer = stripe.Customer.create(
            api_key=self.api_key,
            email=email or None,
            metadata={"merchant_id": merchant_id},
        )
        return customer.id

    def resolve_monthly_price(self, price_or_product: str) -> str:
        """Accept a ``price_`` id as-is; for a ``prod_`` id pick its active monthly price."""
        if not price_or_product:
            raise ConfigurationError("Missing price/product id", code="billing_not_configured", status_code=500)
        if not price_or_product.startswith("prod_"):
            return price_or_product

        prices = stripe.Price.list(api_key=self.api_key, product=price_or_product, active=True, limit=20)
        for price in prices.data:
            recurring = getattr(price, "recurring", None)
            if recurring and recurring.get("interval") == "month":
                return price.id
        raise ConfigurationError("No monthly price found for product", code="billing_not_configured", status_code=500)

    def create_subscription(self, customer_id: str, price_id: str, merchant_id: str) -> dict:
        subscription = stripe.Subscription.create(
            api_key=self.api_key,
            customer=customer_id,
            items=[{"price": price_id}],
            trial_period_days=TRIAL_PERIOD_DAYS,
            payment_behavior="default_incomplete",
            expand=["latest_invoice.payment_intent"],
            metadata={"merchant_id": merchant_id},
        )
        client_secret = None
        latest_invoice = getattr(subscription, "latest_invoice", None)
        payment_intent = getattr(latest_invoice, "payment_intent", None) if latest_invoice else None
        if payment_intent is not None and not isinstance(payment_intent, str):
            client_secret = getattr(payment_intent, "client_secret", None)
        return {
            "id": subscription.id,
            "status": subscription.status,
            "trial_end": getattr(subscription, "trial_end", None),
            "current_period_start": getattr(subscription, "current_period_start", None),
            "current_period_end": getattr(subscription, "current_period_end", None),
            "client_secret": client_secret,
        }

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        session = stripe.billing_portal.Session.create(
            api_key=self.api_key,
            customer=customer_id,
            return_url=return_url,
        )
        return session.url

    def parse_event(self, payload: bytes, signature: str) -> dict:
        """Verify the ``stripe-signature`` header and return the event as plain dicts."""
        if not self.webhook_secret:
            raise ConfigurationError("Stripe not configured", code="billing_not_configured", status_code=500)
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature or "", self.webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            raise ValidationError(f"Invalid signature: {e}", code="invalid_signature") from e
        try:
            return json.loads(payload)
        except ValueError as e:
            raise ValidationError("Invalid event payload", code="invalid_payload") from e


def _from_epoch(value) -> Optional[datetime]:
    if value in (None, "", 0):
        return None
    return datetime.utcfromtimestamp(int(value))


def _id_of(value) -> Optional[str]:
    """Stripe references arrive either as an id string or an expanded object."""
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def _tier_matches(configured: str, price_id: Optional[str], product_id: Optional[str]) -> bool:
    if not configured:
        return False
    if configured.startswith("price_"):
        return price_id == configured
    if configured.startswith("prod_"):
        return product_id == configured
    return configured in (price_id, product_id)


def price_to_tier(settings: Settings, price_id: Optional[str], product_id: Optional[str]) -> Optional[str]:
    if _tier_matches(settings.price_pro, price_id, product_id):
        return PRO_TIER
    if _tier_matches(settings.price_basic, price_id, product_id):
        return BASIC_TIER
    return None


def tier_for_subscription_status(status: str, priced_tier: Optional[str], current: Optional[str] = None) -> Optional[str]:
    if status in ("trialing", "active"):
        return priced_tier or BASIC_TIER
    if status in ("past_due", "unpaid"):
        return PAST_DUE
    if status in ("canceled", "incomplete_expired"):
        return CANCELED
    return priced_tier or current


def upsert_merchant_state(
    db: Session,
    merchant_id: Optional[str] = None,
    stripe_customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
    plan_tier: Optional[str] = None,
    trial_ends_at: Optional[datetime] = None,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
) -> Optional[Merchant]:
    """
    Write whichever subscription fields are known onto the merchant row.

    Without a merchant id the row is found by customer id; an unknown customer
    gets a placeholder merchant so later events have somewhere to land.
    """
    merchant = None
    if merchant_id:
        merchant = db.query(Merchant).filter(Merchant.id == merchant_id).first()
    elif stripe_customer_id:
        merchant = db.query(Merchant).filter(Merchant.stripe_customer_id == stripe_customer_id).first()
        if merchant is None:
            merchant_id = str(uuid.uuid4())
            logger.info(f"[Billing] Creating placeholder merchant {merchant_id} for customer {stripe_customer_id}")

    if merchant is None:
        if not merchant_id:
            return None
        merchant = Merchant(id=merchant_id, plan_tier=TRIAL)
        db.add(merchant)

    if stripe_customer_id:
        merchant.stripe_customer_id = stripe_customer_id
    if stripe_subscription_id:
        merchant.stripe_subscription_id = stripe_subscription_id
    if plan_tier:
        merchant.plan_tier = plan_tier
    if trial_ends_at is not None:
        merchant.trial_ends_at = trial_ends_at
    if period_start is not None:
        merchant.current_period_start = period_start
    if period_end is not None:
        merchant.current_period_end = period_end

    db.commit()
    db.refresh(merchant)
    return merchant


def _subscription_price(subscription: dict):
    items = (subscription.get("items") or {}).get("data") or []
    price = (items[0].get("price") or {}) if items else {}
    return price.get("id"), _id_of(price.get("product"))


def handle_event(db: Session, event: dict, settings: Settings) -> Optional[Merchant]:
    event_type = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}
    logger.info(f"[Billing] Received {event_type}")

    if event_type == "checkout.session.completed":
        return upsert_merchant_state(
            db,
            merchant_id=(obj.get("metadata") or {}).get("merchant_id"),
            stripe_customer_id=_id_of(obj.get("customer")),
            stripe_subscription_id=_id_of(obj.get("subscription")),
        )

    if event_type in SUBSCRIPTION_EVENTS:
        customer_id = _id_of(obj.get("customer"))
        current = None
        if customer_id:
            existing = db.query(Merchant).filter(Merchant.stripe_customer_id == customer_id).first()
            current = existing.plan_tier if existing else None
        price_id, product_id = _subscription_price(obj)
        tier = tier_for_subscription_status(
            obj.get("status") or "", price_to_tier(settings, price_id, product_id), current
        )
        return upsert_merchant_state(
            db,
            stripe_customer_id=customer_id,
            stripe_subscription_id=_id_of(obj.get("id")),
            plan_tier=tier,
            trial_ends_at=_from_epoch(obj.get("trial_end")),
            period_start=_from_epoch(obj.get("current_period_start")),
            period_end=_from_epoch(obj.get("current_period_end")),
        )

    if event_type in ("invoice.paid", "invoice.payment_failed"):
        return upsert_merchant_state(
            db,
            stripe_customer_id=_id_of(obj.get("customer")),
            stripe_subscription_id=_id_of(obj.get("subscription")),
            plan_tier=PAST_DUE if event_type == "invoice.payment_failed" else None,
        )

    return None


def start_subscription(
    db: Session,
    provider: StripeBillingProvider,
    settings: Settings,
    merchant_id: str,
    plan: str = "basic",
    email: Optional[str] = None,
) -> dict:
    merchant_id = (merchant_id or "").strip()
    if not merchant_id:
        raise ValidationError("Missing merchant_id")
    if not settings.price_basic:
        raise ConfigurationError("Stripe not configured", code="billing_not_configured", status_code=500)

    merchant = get_or_create_merchant(db, merchant_id, settings.trial_days)
    customer_id = merchant.stripe_customer_id or provider.create_customer(merchant_id, email)

    configured = settings.price_pro if plan == "pro" and settings.price_pro else settings.price_basic
    price_id = provider.resolve_monthly_price(configured)
    subscription = provider.create_subscription(customer_id, price_id, merchant_id)

    upsert_merchant_state(
        db,
        merchant_id=merchant_id,
        stripe_customer_id=customer_id,
        stripe_subscription_id=subscription["id"],
        plan_tier=TRIAL,
        trial_ends_at=_from_epoch(subscription.get("trial_end")),
        period_start=_from_epoch(subscription.get("current_period_start")),
        period_end=_from_epoch(subscription.get("current_period_end")),
    )
    logger.info(f"[Billing] Started {plan} subscription {subscription['id']} for merchant {merchant_id}")
    return {
        "subscription_id": subscription["id"],
        "client_secret": subscription.get("client_secret"),
        "status": subscription.get("status"),
    }


def open_portal(
    db: Session,
    provider: StripeBillingProvider,
    settings: Settings,
    merchant_id: str,
    return_url: Optional[str] = None,
) -> dict:
    merchant_id = (merchant_id or "").strip()
    if not merchant_id:
        raise ValidationError("Missing merchant_id")
    merchant = db.query(Merchant).filter(Merchant.id == merchant_id).first()
    if merchant is None:
        raise NotFoundError("Merchant not found")
    if not merchant.stripe_customer_id:
        raise ConfigurationError("Merchant has no Stripe customer", code="no_billing_customer")

    url = provider.create_portal_session(
        merchant.stripe_customer_id,
        (return_url or "").strip() or settings.billing_portal_url or "https://example.com",
    )
    return {"url": url}
