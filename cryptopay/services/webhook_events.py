"""
Normalizer for chain-activity webhooks (Alchemy, QuickNode and similar).

Providers disagree on envelope and field names. ``extract_events`` unwraps the
known envelopes and ``normalize_event`` maps one raw event onto
``NormalizedPaymentEvent``. Both are pure functions.
"""
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from cryptopay.core.currencies import normalize_network

DEFAULT_DECIMALS = 18

TO_FIELDS = ("to", "toAddress", "to_address")
HASH_FIELDS = ("hash", "txHash", "tx_hash", "transactionHash")
DECIMALS_FIELDS = ("decimals", "tokenDecimals")
VALUE_FIELDS = ("value", "amount", "tokenValue")
ASSET_FIELDS = ("asset", "currency", "symbol")
CONTRACT_FIELDS = ("contractAddress", "contract")
NETWORK_FIELDS = ("network", "chain")
CONFIRMATIONS_FIELDS = ("confirmations",)

ENVELOPE_KEYS = ("events", "activity", "transfers")

_BASE_UNITS = re.compile(r"^\d+$")


@dataclass(frozen=True)
class NormalizedPaymentEvent:
    to_address: str
    tx_hash: str
    amount: Decimal
    currency: str
    network: str
    confirmations: int = 0

    @property
    def is_actionable(self) -> bool:
        return bool(self.to_address and self.currency and self.amount > 0)


def _first(event: dict, fields, default=None):
    for name in fields:
        value = event.get(name)
        if value is not None and value != "":
            return value
    return default


def _int_or(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_amount(value: Any, decimals: Optional[int] = None) -> Decimal:
    """
    Integer strings are base units (wei, token minor units) scaled by
    ``decimals``; other strings and numbers are already whole-unit amounts.
    """
    if value is None or isinstance(value, bool):
        return Decimal(0)
    if isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip()
        try:
            if _BASE_UNITS.match(text) and decimals is not None:
                return Decimal(text).scaleb(-decimals)
            amount = Decimal(text)
        except InvalidOperation:
            return Decimal(0)
    else:
        return Decimal(0)
    return amount if amount.is_finite() else Decimal(0)


def extract_events(body: Any, default_network: Optional[str] = None) -> List[dict]:
    """
    Unwrap a delivery into raw events.

    Accepted shapes: a bare list, ``{"events"|"activity"|"transfers": [...]}``,
    Alchemy's ``{"event": {"network": ..., "activity": [...]}}`` (the outer
    network is pushed into each event) or a single event object.
    """
    if isinstance(body, list):
        return [e for e in body if isinstance(e, dict)]
    if not isinstance(body, dict):
        return []

    inner = body.get("event")
    if isinstance(inner, dict) and isinstance(inner.get("activity"), list):
        network = inner.get("network") or default_network
        events = []
        for e in inner["activity"]:
            if not isinstance(e, dict):
                continue
            if network and not _first(e, NETWORK_FIELDS):
                e = {**e, "network": network}
            events.append(e)
        return events

    for key in ENVELOPE_KEYS:
        value = body.get(key)
        if isinstance(value, list):
            return [e for e in value if isinstance(e, dict)]
    return [body] if body else []


def _parse_decimals(event: dict, raw_contract: dict) -> int:
    value = _first(event, DECIMALS_FIELDS)
    if value is None:
        value = raw_contract.get("decimals")
    # Alchemy sends rawContract.decimals as hex, e.g. "0x12"
    if isinstance(value, str) and value.lower().startswith("0x"):
        try:
            return int(value, 16)
        except ValueError:
            return DEFAULT_DECIMALS
    decimals = _int_or(value, DEFAULT_DECIMALS)
    return decimals if decimals >= 0 else DEFAULT_DECIMALS


def normalize_event(event: dict) -> NormalizedPaymentEvent:
    to_address = str(_first(event, TO_FIELDS, "")).strip().lower()
    tx_hash = str(_first(event, HASH_FIELDS, "")).strip()

    raw_contract = event.get("rawContract") if isinstance(event.get("rawContract"), dict) else {}
    decimals = _parse_decimals(event, raw_contract)
    amount = normalize_amount(_first(event, VALUE_FIELDS), decimals)

    contract = str(_first(event, CONTRACT_FIELDS, raw_contract.get("address") or "")).strip()
    currency_raw = str(_first(event, ASSET_FIELDS, "")).strip()
    if currency_raw:
        currency = currency_raw.upper()
    else:
        currency = "USDT" if contract else "ETH"

    return NormalizedPaymentEvent(
        to_address=to_address,
        tx_hash=tx_hash,
        amount=amount,
        currency=currency,
        network=normalize_network(_first(event, NETWORK_FIELDS)),
        confirmations=max(0, _int_or(_first(event, CONFIRMATIONS_FIELDS), 0)),
    )
