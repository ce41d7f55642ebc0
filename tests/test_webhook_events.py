from decimal import Decimal

from cryptopay.services.webhook_events import extract_events, normalize_amount, normalize_event


def test_normalize_amount_scales_base_units():
    assert normalize_amount("50000000000000000", 18) == Decimal("0.05")
    assert normalize_amount("1500000", 6) == Decimal("1.5")


def test_normalize_amount_keeps_decimal_values():
    assert normalize_amount("0.0505", 18) == Decimal("0.0505")
    assert normalize_amount(0.25, 18) == Decimal("0.25")
    assert normalize_amount("not-a-number", 18) == Decimal(0)
    assert normalize_amount(None) == Decimal(0)


def test_extract_events_envelopes():
    event = {"to": "0xabc", "value": "1"}
    assert extract_events([event, "junk"]) == [event]
    assert extract_events({"events": [event]}) == [event]
    assert extract_events({"activity": [event]}) == [event]
    assert extract_events({"transfers": [event]}) == [event]
    assert extract_events(event) == [event]
    assert extract_events({}) == []
    assert extract_events("nonsense") == []


def test_extract_events_alchemy_pushes_network_down():
    body = {
        "webhookId": "wh_1",
        "event": {
            "network": "MATIC_MAINNET",
            "activity": [
                {"toAddress": "0xabc", "value": 1, "asset": "MATIC"},
                {"toAddress": "0xdef", "value": 2, "asset": "MATIC", "network": "ETH_MAINNET"},
            ],
        },
    }
    events = extract_events(body)
    assert [e["network"] for e in events] == ["MATIC_MAINNET", "ETH_MAINNET"]
    assert normalize_event(events[0]).network == "polygon"


def test_normalize_event_defaults():
    event = normalize_event({"to": "0xABCDEF", "hash": "0x1", "value": "1000000000000000000"})
    assert event.to_address == "0xabcdef"
    assert event.currency == "ETH"
    assert event.network == "ethereum"
    assert event.amount == Decimal(1)
    assert event.is_actionable


def test_normalize_event_token_contract_defaults_to_usdt():
    event = normalize_event(
        {
            "toAddress": "0xabc",
            "transactionHash": "0x2",
            "value": "2500000",
            "rawContract": {"address": "0xdac17f958d2ee523a2206206994597c13d831ec7", "decimals": "0x6"},
        }
    )
    assert event.currency == "USDT"
    assert event.amount == Decimal("2.5")


def test_normalize_event_without_recipient_is_not_actionable():
    event = normalize_event({"hash": "0x3", "value": "1", "asset": "eth"})
    assert event.currency == "ETH"
    assert not event.is_actionable


def test_integer_value_defaults_to_eighteen_decimals():
    event = normalize_event({"to": "0xabc", "hash": "0x1", "value": "1"})
    assert event.amount == Decimal("1e-18")

    event = normalize_event({"to": "0xabc", "hash": "0x1", "value": "2500000000000000000"})
    assert event.amount == Decimal("2.5")
