"""
Request-scoped collaborators.

Each request gets its own ``httpx.Client`` (closed when the request ends) and
the clients built on top of it; only the price cache lives on ``app.state``.
Tests replace any of these through ``app.dependency_overrides``.
"""
from typing import Iterator

import httpx
from fastapi import Depends, Request

from cryptopay.core.config import Settings, get_settings
from cryptopay.services.billing_bridge import StripeBillingProvider
from cryptopay.services.chain_rpc import ChainClients
from cryptopay.services.price_oracle import PriceCache, PriceOracle


def get_http_client(settings: Settings = Depends(get_settings)) -> Iterator[httpx.Client]:
    client = httpx.Client(timeout=settings.http_timeout_seconds)
    try:
        yield client
    finally:
        client.close()


def get_price_oracle(
    request: Request,
    http: httpx.Client = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> PriceOracle:
    cache = getattr(request.app.state, "price_cache", None)
    if cache is None:
        cache = request.app.state.price_cache = PriceCache()
    return PriceOracle(http, settings.coingecko_base_url, cache)


def get_chain_clients(
    http: httpx.Client = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> ChainClients:
    return ChainClients(http, settings)


def get_billing_provider(settings: Settings = Depends(get_settings)) -> StripeBillingProvider:
    return StripeBillingProvider(settings.stripe_secret_key, settings.stripe_webhook_secret)
