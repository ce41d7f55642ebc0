"""
Supported currencies and networks.

Each symbol has a fixed decimal precision (used when converting USD requests
into crypto amounts) and a default network; the network decides how payments
are detected and how finality is checked.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

SOLANA = "solana"
ETHEREUM = "ethereum"
POLYGON = "polygon"
BSC = "bsc"

# "finality": node reports a finalized status (Solana).
# "blocks": confirmations counted from chain tip height (EVM chains).
FINALITY = "finality"
BLOCKS = "blocks"

NETWORK_FAMILY: Dict[str, str] = {
    SOLANA: FINALITY,
    ETHEREUM: BLOCKS,
    POLYGON: BLOCKS,
    BSC: BLOCKS,
}

CONFIRMATIONS_REQUIRED: Dict[str, int] = {
    SOLANA: 1,
    ETHEREUM: 3,
    POLYGON: 30,
    BSC: 15,
}
DEFAULT_CONFIRMATIONS_REQUIRED = 1

# First entry is the default network for the symbol.
SUPPORTED_NETWORKS: Dict[str, List[str]] = {
    "SOL": [SOLANA],
    "USDC": [SOLANA, ETHEREUM, POLYGON],
    "USDT": [SOLANA, ETHEREUM, BSC],
    "ETH": [ETHEREUM],
    "MATIC": [POLYGON],
    "BNB": [BSC],
}

SYMBOL_DECIMALS: Dict[str, int] = {
    "SOL": 6,
    "USDC": 6,
    "USDT": 6,
    "ETH": 8,
    "MATIC": 6,
    "BNB": 8,
}
DEFAULT_DECIMALS = 6

SYMBOL_TO_COINGECKO_ID: Dict[str, str] = {
    "ETH": "ethereum",
    "MATIC": "polygon-pos",
    "BNB": "binancecoin",
    "BTC": "bitcoin",
    "USDT": "tether",
    "USDC": "usd-coin",
    "SOL": "solana",
    "LTC": "litecoin",
}

# Priced at exactly 1.00 USD without asking the oracle.
STABLECOINS = ("USDC", "USDT")

# Webhook providers label networks their own way.
PROVIDER_NETWORK_ALIASES: Dict[str, str] = {
    "eth_mainnet": ETHEREUM,
    "eth-mainnet": ETHEREUM,
    "mainnet": ETHEREUM,
    "matic_mainnet": POLYGON,
    "matic-mainnet": POLYGON,
    "polygon_mainnet": POLYGON,
    "polygon-mainnet": POLYGON,
    "bnb_mainnet": BSC,
    "bnb-mainnet": BSC,
    "bsc_mainnet": BSC,
    "bsc-mainnet": BSC,
    "sol_mainnet": SOLANA,
    "solana-mainnet": SOLANA,
}


def is_supported(symbol: str) -> bool:
    return symbol in SUPPORTED_NETWORKS


def default_network(symbol: str) -> Optional[str]:
    networks = SUPPORTED_NETWORKS.get(symbol)
    return networks[0] if networks else None


def decimals_for(symbol: str) -> int:
    return SYMBOL_DECIMALS.get(symbol, DEFAULT_DECIMALS)


def confirmations_required_for(network: Optional[str]) -> int:
    return CONFIRMATIONS_REQUIRED.get(network or "", DEFAULT_CONFIRMATIONS_REQUIRED)


def network_family(network: Optional[str]) -> Optional[str]:
    return NETWORK_FAMILY.get(network or "")


def is_evm(network: Optional[str]) -> bool:
    return network_family(network) == BLOCKS


def normalize_network(value: Optional[str]) -> str:
    raw = (value or ETHEREUM).strip().lower()
    return PROVIDER_NETWORK_ALIASES.get(raw, raw)


def quantize_amount(amount, symbol: str) -> Decimal:
    """Round to the symbol's precision, half away from zero."""
    step = Decimal(1).scaleb(-decimals_for(symbol))
    return Decimal(str(amount)).quantize(step, rounding=ROUND_HALF_UP)


def format_amount(amount, symbol: str) -> str:
    return f"{quantize_amount(amount, symbol):f}"
