from decimal import Decimal

from cryptopay.core.currencies import quantize_amount
from cryptopay.models import Invoice, MerchantUsageMonthly, Payment, PaymentsLedger
from cryptopay.services.usage_ledger import month_start
from tests.conftest import ETH_ADDRESS, MERCHANT_ID, FakeEvmClient

TX = "0x" + "9" * 64


def test_eth_invoice_from_link_to_confirmed_usage(client, db, chains, oracle):
    # Merchant registers a receiving address, buyer opens a pay link.
    resp = client.post(f"/merchants/{MERCHANT_ID}/wallets", json={"currency": "eth", "address": ETH_ADDRESS.upper().replace("0X", "0x")})
    assert resp.status_code == 200
    assert resp.json()["address"] == ETH_ADDRESS

    resp = client.get("/buy", params={"m": MERCHANT_ID, "a": "0.05", "c": "ETH"})
    token = resp.json()["public_token"]

    # Provider reports a slight overpayment, in wei.
    resp = client.post(
        "/evm-notify",
        json={
            "event": {
                "network": "ETH_MAINNET",
                "activity": [{"toAddress": ETH_ADDRESS, "hash": TX, "value": "50500000000000000", "asset": "ETH"}],
            }
        },
        headers={"x-webhook-secret": "hook-secret"},
    )
    assert resp.json()["succeeded"] == 1

    view = client.get("/invoice-public", params={"t": token}).json()
    assert view["invoice"]["status"] == "paid"
    assert view["invoice"]["detected_tx_hash"] == TX

    # Three blocks deep on ethereum.
    chains.evm_clients["ethereum"] = FakeEvmClient(tip=1002, receipts={TX: {"blockNumber": hex(1000), "status": "0x1"}})
    resp = client.post("/confirmations")
    assert resp.json()["confirmed"] == 1

    invoice = db.query(Invoice).filter(Invoice.public_token == token).one()
    assert invoice.status == "confirmed"
    assert quantize_amount(invoice.amount, "ETH") == Decimal("0.05")

    payment = db.query(Payment).one()
    assert payment.tx_hash == TX
    assert payment.confirmations == 3
    assert quantize_amount(payment.amount, "ETH") == Decimal("0.0505")

    # 0.05 ETH at the fake $2000 quote.
    usage = db.query(MerchantUsageMonthly).one()
    assert usage.month == month_start(invoice.confirmed_at)
    assert usage.gmv_cents == 10000
    assert db.query(PaymentsLedger).one().amount_usd_cents == 10000

    # A late duplicate delivery and another sweep change nothing.
    client.post(
        "/evm-notify",
        json=[{"to": ETH_ADDRESS, "hash": TX, "value": "0.0505"}],
        headers={"x-webhook-secret": "hook-secret"},
    )
    client.post("/confirmations")
    db.expire_all()
    assert db.query(Payment).count() == 1
    assert db.query(PaymentsLedger).count() == 1
    assert db.query(MerchantUsageMonthly).one().gmv_cents == 10000
