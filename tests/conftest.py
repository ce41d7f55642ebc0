import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SKIP_STARTUP_MIGRATIONS"] = "1"

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cryptopay.api.deps import (
    get_billing_provider,
    get_chain_clients,
    get_price_oracle,
)
from cryptopay.core import currencies
from cryptopay.core.config import Settings, get_settings
from cryptopay.core.errors import UpstreamRpcError
from cryptopay.db.base import Base
from cryptopay.db.session import get_db
from cryptopay.main import app
from cryptopay.models import Invoice, Merchant, Wallet
from cryptopay.models.invoice import PENDING

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

MERCHANT_ID = "merchant-1"
ETH_ADDRESS = "0x" + "ab" * 20
SOL_ADDRESS = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


class FakePriceOracle:
    def __init__(self, prices=None, logos=None):
        self.prices = {k: Decimal(str(v)) for k, v in (prices or {}).items()}
        self.logos = logos or {}
        self.calls = []

    def get_usd_prices(self, symbols):
        wanted = [s.upper() for s in symbols]
        self.calls.append(wanted)
        return {s: self.prices[s] for s in wanted if s in self.prices}

    def get_usd_price(self, symbol, pin_stablecoins=False):
        sym = symbol.upper()
        if pin_stablecoins and sym in currencies.STABLECOINS:
            return Decimal("1")
        return self.get_usd_prices([sym]).get(sym)

    def get_coin_logos(self, symbols):
        return {s: self.logos[s] for s in symbols if s in self.logos}


class FakeEvmClient:
    def __init__(self, tip=100, receipts=None, fail=False):
        self.tip = tip
        self.receipts = receipts or {}
        self.fail = fail
        self.tip_calls = 0

    def get_block_number(self):
        self.tip_calls += 1
        if self.fail:
            raise UpstreamRpcError("eth_blockNumber timed out")
        return self.tip

    def get_transaction_receipt(self, tx_hash):
        receipt = self.receipts.get(tx_hash)
        if isinstance(receipt, Exception):
            raise receipt
        return receipt


class FakeSolanaClient:
    def __init__(self, statuses=None, blockhash=None, existing_accounts=(), decimals=6):
        self.statuses = statuses or {}
        self.blockhash = blockhash
        self.existing_accounts = set(existing_accounts)
        self.decimals = decimals

    def get_signature_status(self, signature):
        status = self.statuses.get(signature)
        if isinstance(status, Exception):
            raise status
        return status

    def get_latest_blockhash(self, commitment="finalized"):
        return self.blockhash

    def account_exists(self, address):
        return address in self.existing_accounts

    def get_token_decimals(self, mint):
        return self.decimals


class FakeChainClients:
    def __init__(self, evm=None, solana=None):
        self.evm_clients = evm or {}
        self.solana_client = solana or FakeSolanaClient()

    def evm(self, network):
        return self.evm_clients.get(network)

    def solana(self):
        return self.solana_client


class FakeBillingProvider:
    def __init__(self):
        self.customers = []
        self.subscriptions = []
        self.portal_sessions = []
        self.events = {}

    def create_customer(self, merchant_id, email=None):
        self.customers.append((merchant_id, email))
        return f"cus_{len(self.customers)}"

    def resolve_monthly_price(self, price_or_product):
        return price_or_product if price_or_product.startswith("price_") else "price_monthly"

    def create_subscription(self, customer_id, price_id, merchant_id):
        self.subscriptions.append((customer_id, price_id, merchant_id))
        return {
            "id": f"sub_{len(self.subscriptions)}",
            "status": "trialing",
            "trial_end": 1767225600,
            "current_period_start": 1764633600,
            "current_period_end": 1767225600,
            "client_secret": "pi_secret",
        }

    def create_portal_session(self, customer_id, return_url):
        self.portal_sessions.append((customer_id, return_url))
        return f"https://billing.stripe.test/session/{customer_id}"

    def parse_event(self, payload, signature):
        from cryptopay.core.errors import ValidationError
        import json

        if signature != "valid":
            raise ValidationError("Invalid signature", "invalid_signature")
        return json.loads(payload)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return Settings(
        webhook_secret="hook-secret",
        cron_secret="",
        subscriptions_enabled=True,
        gmv_limit_cents=1_000_000,
        trial_days=30,
        billing_portal_url="https://billing.example.com/portal",
        processing_fee_percent=Decimal("0"),
        invoice_ttl_minutes=None,
        usdc_mint=USDC_MINT,
        usdt_mint=USDT_MINT,
        stripe_secret_key="sk_test",
        stripe_webhook_secret="whsec_test",
        price_basic="price_basic",
        price_pro="price_pro",
    )


@pytest.fixture
def oracle():
    return FakePriceOracle({"ETH": "2000", "SOL": "150", "USDC": "1", "USDT": "1"})


@pytest.fixture
def chains():
    return FakeChainClients()


@pytest.fixture
def billing_provider():
    return FakeBillingProvider()


@pytest.fixture
def client(session_factory, settings, oracle, chains, billing_provider):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_price_oracle] = lambda: oracle
    app.dependency_overrides[get_chain_clients] = lambda: chains
    app.dependency_overrides[get_billing_provider] = lambda: billing_provider
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def add_merchant(db, merchant_id=MERCHANT_ID, plan_tier="trial", trial_ends_at=None, **kwargs):
    merchant = Merchant(id=merchant_id, plan_tier=plan_tier, trial_ends_at=trial_ends_at, **kwargs)
    db.add(merchant)
    db.commit()
    return merchant


def add_wallet(db, currency, address, network=None, merchant_id=MERCHANT_ID):
    if db.get(Merchant, merchant_id) is None:
        add_merchant(db, merchant_id, trial_ends_at=datetime.utcnow() + timedelta(days=30))
    wallet = Wallet(
        merchant_id=merchant_id,
        currency=currency,
        network=network or currencies.default_network(currency),
        address=address,
    )
    db.add(wallet)
    db.commit()
    return wallet


def add_invoice(db, amount="1", currency="ETH", network=None, to_address=ETH_ADDRESS, **kwargs):
    network = network or currencies.default_network(currency)
    values = dict(
        merchant_id=MERCHANT_ID,
        amount=Decimal(str(amount)),
        currency=currency,
        network=network,
        to_address=to_address,
        confirmations_required=currencies.confirmations_required_for(network),
        status=PENDING,
    )
    values.update(kwargs)
    invoice = Invoice(**values)
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    return invoice
