import json
from datetime import datetime

import pytest

from cryptopay.core.errors import ConfigurationError, NotFoundError
from cryptopay.models import Merchant
from cryptopay.services.billing_bridge import (
    handle_event,
    open_portal,
    price_to_tier,
    start_subscription,
    tier_for_subscription_status,
)
from tests.conftest import MERCHANT_ID, add_merchant


def _subscription_event(status, price_id="price_basic", product_id="prod_x", customer="cus_1", event_type=None):
    return {
        "type": event_type or "customer.subscription.updated",
        "data": {
            "object": {
                "id": "sub_1",
                "customer": customer,
                "status": status,
                "trial_end": None,
                "current_period_start": 1767225600,
                "current_period_end": 1769904000,
                "items": {"data": [{"price": {"id": price_id, "product": product_id}}]},
            }
        },
    }


def test_price_to_tier(settings):
    assert price_to_tier(settings, "price_pro", None) == "pro_tier"
    assert price_to_tier(settings, "price_basic", None) == "basic_tier"
    assert price_to_tier(settings, "price_other", "prod_other") is None

    settings.price_pro = "prod_pro"
    assert price_to_tier(settings, "price_whatever", "prod_pro") == "pro_tier"


@pytest.mark.parametrize(
    "status,expected",
    [
        ("trialing", "basic_tier"),
        ("active", "basic_tier"),
        ("past_due", "past_due"),
        ("unpaid", "past_due"),
        ("canceled", "canceled"),
        ("incomplete_expired", "canceled"),
    ],
)
def test_status_mapping(status, expected):
    assert tier_for_subscription_status(status, None) == expected


def test_subscription_update_sets_tier_and_period(db, settings):
    add_merchant(db, stripe_customer_id="cus_1")

    handle_event(db, _subscription_event("active", price_id="price_pro"), settings)

    merchant = db.get(Merchant, MERCHANT_ID)
    assert merchant.plan_tier == "pro_tier"
    assert merchant.stripe_subscription_id == "sub_1"
    assert merchant.current_period_start == datetime(2026, 1, 1)


def test_subscription_deleted_cancels(db, settings):
    add_merchant(db, plan_tier="basic_tier", stripe_customer_id="cus_1")

    handle_event(db, _subscription_event("canceled", event_type="customer.subscription.deleted"), settings)

    assert db.get(Merchant, MERCHANT_ID).plan_tier == "canceled"


def test_payment_failed_marks_past_due(db, settings):
    add_merchant(db, plan_tier="basic_tier", stripe_customer_id="cus_1")
    event = {"type": "invoice.payment_failed", "data": {"object": {"customer": "cus_1", "subscription": "sub_1"}}}

    handle_event(db, event, settings)

    assert db.get(Merchant, MERCHANT_ID).plan_tier == "past_due"


def test_checkout_completed_links_customer(db, settings):
    add_merchant(db)
    event = {
        "type": "checkout.session.completed",
        "data": {"object": {"customer": "cus_9", "subscription": "sub_9", "metadata": {"merchant_id": MERCHANT_ID}}},
    }

    handle_event(db, event, settings)

    merchant = db.get(Merchant, MERCHANT_ID)
    assert merchant.stripe_customer_id == "cus_9"
    assert merchant.stripe_subscription_id == "sub_9"


def test_unknown_customer_gets_placeholder_merchant(db, settings):
    handle_event(db, _subscription_event("trialing", customer="cus_new"), settings)

    merchant = db.query(Merchant).filter(Merchant.stripe_customer_id == "cus_new").one()
    assert merchant.plan_tier == "basic_tier"


def test_start_subscription(db, settings, billing_provider):
    result = start_subscription(db, billing_provider, settings, MERCHANT_ID, "pro", "owner@shop.test")

    assert result == {"subscription_id": "sub_1", "client_secret": "pi_secret", "status": "trialing"}
    assert billing_provider.customers == [(MERCHANT_ID, "owner@shop.test")]
    assert billing_provider.subscriptions == [("cus_1", "price_pro", MERCHANT_ID)]
    merchant = db.get(Merchant, MERCHANT_ID)
    assert merchant.plan_tier == "trial"
    assert merchant.stripe_customer_id == "cus_1"
    assert merchant.trial_ends_at == datetime(2026, 1, 1)


def test_start_subscription_reuses_customer(db, settings, billing_provider):
    add_merchant(db, stripe_customer_id="cus_existing")

    start_subscription(db, billing_provider, settings, MERCHANT_ID)

    assert billing_provider.customers == []
    assert billing_provider.subscriptions == [("cus_existing", "price_basic", MERCHANT_ID)]


def test_open_portal(db, settings, billing_provider):
    with pytest.raises(NotFoundError):
        open_portal(db, billing_provider, settings, "nobody")

    add_merchant(db)
    with pytest.raises(ConfigurationError):
        open_portal(db, billing_provider, settings, MERCHANT_ID)

    db.get(Merchant, MERCHANT_ID).stripe_customer_id = "cus_1"
    db.commit()
    result = open_portal(db, billing_provider, settings, MERCHANT_ID, "https://app.test/billing")

    assert result["url"].endswith("cus_1")
    assert billing_provider.portal_sessions == [("cus_1", "https://app.test/billing")]


def test_billing_webhook_route(client, db):
    add_merchant(db, stripe_customer_id="cus_1")
    payload = json.dumps(_subscription_event("past_due")).encode()

    resp = client.post("/billing/webhook", content=payload, headers={"stripe-signature": "forged"})
    assert resp.status_code == 400

    resp = client.post("/billing/webhook", content=payload, headers={"stripe-signature": "valid"})
    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    db.expire_all()
    assert db.get(Merchant, MERCHANT_ID).plan_tier == "past_due"


def test_billing_routes(client, db):
    resp = client.post("/billing/create-subscription", json={"merchant_id": MERCHANT_ID, "plan": "basic"})
    assert resp.status_code == 200
    assert resp.json()["subscription_id"] == "sub_1"

    resp = client.post("/billing/portal", json={"merchant_id": MERCHANT_ID})
    assert resp.status_code == 200
    assert resp.json()["url"].startswith("https://billing.stripe.test/")

    assert client.post("/billing/create-subscription", json={}).status_code == 400
