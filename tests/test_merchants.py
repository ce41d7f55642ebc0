from tests.conftest import MERCHANT_ID, SOL_ADDRESS


def test_wallet_upsert_and_list(client):
    resp = client.post(f"/merchants/{MERCHANT_ID}/wallets", json={"currency": "usdc", "address": SOL_ADDRESS})
    assert resp.status_code == 200
    assert resp.json()["network"] == "solana"

    resp = client.post(
        f"/merchants/{MERCHANT_ID}/wallets",
        json={"currency": "USDC", "address": "0x" + "AB" * 20, "network": "polygon"},
    )
    assert resp.json()["address"] == "0x" + "ab" * 20

    replacement = "7" * 44
    client.post(f"/merchants/{MERCHANT_ID}/wallets", json={"currency": "USDC", "address": replacement})

    wallets = client.get(f"/merchants/{MERCHANT_ID}/wallets").json()
    assert [(w["network"], w["address"]) for w in wallets] == [
        ("polygon", "0x" + "ab" * 20),
        ("solana", replacement),
    ]


def test_wallet_validation(client):
    assert client.post(f"/merchants/{MERCHANT_ID}/wallets", json={"currency": "DOGE", "address": "x"}).status_code == 400
    assert client.post(
        f"/merchants/{MERCHANT_ID}/wallets", json={"currency": "ETH", "address": "0x1", "network": "solana"}
    ).status_code == 400
    assert client.post(f"/merchants/{MERCHANT_ID}/wallets", json={"currency": "SOL", "address": " "}).status_code == 400


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
