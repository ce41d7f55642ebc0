"""
USD quotes and coin logos from CoinGecko.

Quotes are cached for 30 seconds and logos for 24 hours. The cache object is
owned by the application (``app.state.price_cache``) and handed to each
``PriceOracle``; the HTTP client belongs to the invocation that builds the oracle.
"""
import logging
import threading
import time
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional

import httpx

from cryptopay.core.currencies import STABLECOINS, SYMBOL_TO_COINGECKO_ID

logger = logging.getLogger(__name__)

PRICE_TTL_SECONDS = 30
LOGO_TTL_SECONDS = 24 * 60 * 60


class TTLCache:
    def __init__(self, ttl_seconds: float):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    def get(self, key: str):
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            stored_at, value = entry
            if time.monotonic() - stored_at > self.ttl_seconds:
                self._entries.pop(key, None)
                return None
            return value

    def set(self, key: str, value) -> None:
        with self._lock:
            self._entries[key] = (time.monotonic(), value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class PriceCache:
    def __init__(self, price_ttl: float = PRICE_TTL_SECONDS, logo_ttl: float = LOGO_TTL_SECONDS):
        self.prices = TTLCache(price_ttl)
        self.logos = TTLCache(logo_ttl)


def _unique_symbols(symbols: Iterable[str]) -> list:
    seen = []
    for s in symbols:
        sym = (s or "").strip().upper()
        if sym and sym not in seen:
            seen.append(sym)
    return seen


class PriceOracle:
    def __init__(self, client: httpx.Client, base_url: str, cache: Optional[PriceCache] = None):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.cache = cache or PriceCache()

    def get_usd_prices(self, symbols: Iterable[str]) -> Dict[str, Decimal]:
        """
        Quote every known symbol in one request. Unknown symbols and upstream
        failures are simply absent from the result.
        """
        wanted = _unique_symbols(symbols)
        prices: Dict[str, Decimal] = {}
        missing = []
        for sym in wanted:
            cached = self.cache.prices.get(sym)
            if cached is not None:
                prices[sym] = cached
            elif sym in SYMBOL_TO_COINGECKO_ID:
                missing.append(sym)

        if not missing:
            return prices

        ids = ",".join(SYMBOL_TO_COINGECKO_ID[s] for s in missing)
        try:
            r = self.client.get(
                f"{self.base_url}/simple/price",
                params={"ids": ids, "vs_currencies": "usd"},
            )
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[Prices] Quote request failed for {missing}: {e}")
            return prices

        for sym in missing:
            raw = (data.get(SYMBOL_TO_COINGECKO_ID[sym]) or {}).get("usd")
            price = _to_positive_decimal(raw)
            if price is None:
                continue
            prices[sym] = price
            self.cache.prices.set(sym, price)
        return prices

    def get_usd_price(self, symbol: str, pin_stablecoins: bool = False) -> Optional[Decimal]:
        sym = (symbol or "").upper()
        if pin_stablecoins and sym in STABLECOINS:
            return Decimal("1")
        return self.get_usd_prices([sym]).get(sym)

    def get_coin_logos(self, symbols: Iterable[str]) -> Dict[str, str]:
        wanted = _unique_symbols(symbols)
        logos: Dict[str, str] = {}
        missing = []
        for sym in wanted:
            cached = self.cache.logos.get(sym)
            if cached:
                logos[sym] = cached
            elif sym in SYMBOL_TO_COINGECKO_ID:
                missing.append(sym)

        if not missing:
            return logos

        id_to_symbol = {SYMBOL_TO_COINGECKO_ID[s]: s for s in missing}
        try:
            r = self.client.get(
                f"{self.base_url}/coins/markets",
                params={"vs_currency": "usd", "ids": ",".join(id_to_symbol)},
            )
            r.raise_for_status()
            items = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[Prices] Logo request failed for {missing}: {e}")
            return logos

        for item in items if isinstance(items, list) else []:
            sym = id_to_symbol.get(str(item.get("id") or ""))
            image = str(item.get("image") or "")
            if sym and image:
                logos[sym] = image
                self.cache.logos.set(sym, image)
        return logos


def _to_positive_decimal(value) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not d.is_finite() or d <= 0:
        return None
    return d
