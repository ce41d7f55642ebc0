from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from cryptopay.core.errors import EntitlementError
from cryptopay.models import Merchant, MerchantUsageMonthly, PaymentsLedger
from cryptopay.models.invoice import CONFIRMED
from cryptopay.services.usage_ledger import (
    check_entitlement,
    get_month_gmv_cents,
    month_start,
    record_usage,
    usd_to_cents,
)
from tests.conftest import ETH_ADDRESS, MERCHANT_ID, FakePriceOracle, add_invoice, add_merchant, add_wallet

NOW = datetime(2026, 5, 20, 10, 30)


def _set_usage(db, gmv_cents, month=date(2026, 5, 1)):
    db.add(MerchantUsageMonthly(merchant_id=MERCHANT_ID, month=month, gmv_cents=gmv_cents))
    db.commit()


def test_month_start_and_cents():
    assert month_start(NOW) == date(2026, 5, 1)
    assert usd_to_cents(Decimal("100.005")) == 10001
    assert usd_to_cents(Decimal("99.994")) == 9999


def test_basic_tier_below_cap_is_allowed(db, settings):
    add_merchant(db, plan_tier="basic_tier")
    _set_usage(db, 999_999)
    check_entitlement(db, MERCHANT_ID, settings, NOW)


def test_basic_tier_at_cap_requires_upgrade(db, settings):
    add_merchant(db, plan_tier="basic_tier")
    _set_usage(db, 1_000_000)

    with pytest.raises(EntitlementError) as exc:
        check_entitlement(db, MERCHANT_ID, settings, NOW)
    assert exc.value.code == "upgrade_required"
    assert exc.value.status_code == 402
    assert exc.value.to_dict()["upgrade_url"] == settings.billing_portal_url


def test_previous_month_usage_does_not_count(db, settings):
    add_merchant(db, plan_tier="basic_tier")
    _set_usage(db, 5_000_000, month=date(2026, 4, 1))
    check_entitlement(db, MERCHANT_ID, settings, NOW)


@pytest.mark.parametrize("tier", ["past_due", "canceled"])
def test_inactive_subscription_is_blocked(db, settings, tier):
    add_merchant(db, plan_tier=tier)
    with pytest.raises(EntitlementError) as exc:
        check_entitlement(db, MERCHANT_ID, settings, NOW)
    assert exc.value.code == "entitlement_blocked"


def test_running_trial_and_pro_are_never_capped(db, settings):
    add_merchant(db, plan_tier="canceled", trial_ends_at=NOW + timedelta(days=3))
    add_merchant(db, merchant_id="pro", plan_tier="pro_tier")
    db.add(MerchantUsageMonthly(merchant_id="pro", month=date(2026, 5, 1), gmv_cents=50_000_000))
    db.commit()

    check_entitlement(db, MERCHANT_ID, settings, NOW)
    check_entitlement(db, "pro", settings, NOW)


def test_unknown_merchant_or_disabled_flag_is_allowed(db, settings):
    check_entitlement(db, "nobody", settings, NOW)

    add_merchant(db, plan_tier="canceled")
    settings.subscriptions_enabled = False
    check_entitlement(db, MERCHANT_ID, settings, NOW)


def test_expired_trial_uses_cap(db, settings):
    add_merchant(db, plan_tier="trial", trial_ends_at=NOW - timedelta(days=1))
    _set_usage(db, 1_200_000)
    with pytest.raises(EntitlementError):
        check_entitlement(db, MERCHANT_ID, settings, NOW)


def test_blocked_merchant_is_redirected_to_billing(client, db):
    add_wallet(db, "ETH", ETH_ADDRESS, merchant_id="late-payer")
    merchant = db.get(Merchant, "late-payer")
    merchant.plan_tier = "past_due"
    merchant.trial_ends_at = None
    db.commit()

    resp = client.get(
        "/buy",
        params={"m": "late-payer", "a": "1", "c": "ETH", "u": "https://shop.test"},
        follow_redirects=False,
    )
    assert resp.status_code == 302
    assert resp.headers["location"] == "https://shop.test/?billing=entitlement_blocked"

    resp = client.get("/buy", params={"m": "late-payer", "a": "1", "c": "ETH"})
    assert resp.status_code == 402
    assert resp.json()["code"] == "entitlement_blocked"


def test_record_usage_is_idempotent(db):
    add_merchant(db, plan_tier="basic_tier")
    invoice = add_invoice(
        db,
        amount="0.05",
        status=CONFIRMED,
        detected_tx_hash="0x" + "1" * 64,
        confirmed_at=NOW,
    )
    oracle = FakePriceOracle({"ETH": "3000"})

    first = record_usage(db, invoice, oracle, NOW)
    second = record_usage(db, invoice, oracle, NOW)

    assert first.status == "succeeded"
    assert second.status == "skipped"
    assert db.query(PaymentsLedger).count() == 1
    ledger = db.query(PaymentsLedger).one()
    assert ledger.amount_usd_cents == 15000
    assert ledger.tx_id == invoice.detected_tx_hash
    assert get_month_gmv_cents(db, MERCHANT_ID, date(2026, 5, 1)) == 15000


def test_record_usage_pins_stablecoins(db):
    invoice = add_invoice(db, amount="25.5", currency="USDC", status=CONFIRMED, confirmed_at=NOW)
    outcome = record_usage(db, invoice, FakePriceOracle({"USDC": "0.97"}), NOW)

    assert outcome.status == "succeeded"
    assert get_month_gmv_cents(db, MERCHANT_ID, date(2026, 5, 1)) == 2550


def test_record_usage_without_quote_is_skipped(db):
    add_merchant(db)
    invoice = add_invoice(db, amount="1", status=CONFIRMED, confirmed_at=NOW)

    outcome = record_usage(db, invoice, FakePriceOracle(), NOW)

    assert outcome.status == "skipped"
    assert db.query(PaymentsLedger).count() == 0
