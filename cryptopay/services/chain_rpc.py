"""
Read-only JSON-RPC clients for the chains we watch.

Every call has a bounded timeout (set on the ``httpx.Client``); transport
errors, HTTP errors and JSON-RPC error objects all surface as
``UpstreamRpcError``.
"""
import itertools
import logging
from typing import Any, List, Optional

import httpx

from cryptopay.core.errors import UpstreamRpcError

logger = logging.getLogger(__name__)


class JsonRpcClient:
    def __init__(self, client: httpx.Client, url: str):
        if not url:
            raise UpstreamRpcError("RPC URL is not configured")
        self.client = client
        self.url = url
        self._ids = itertools.count(1)

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        try:
            r = self.client.post(self.url, json=payload)
            r.raise_for_status()
            data = r.json()
        except httpx.TimeoutException as e:
            raise UpstreamRpcError(f"{method} timed out: {e}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamRpcError(f"{method} failed: {e}") from e

        if not isinstance(data, dict):
            raise UpstreamRpcError(f"{method} returned a malformed response")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise UpstreamRpcError(f"{method} error: {message}")
        return data.get("result")


class EvmRpcClient(JsonRpcClient):
    def get_block_number(self) -> int:
        result = self.call("eth_blockNumber")
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise UpstreamRpcError(f"eth_blockNumber returned {result!r}") from e

    def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        """Receipt dict, or None while the transaction is not yet mined."""
        return self.call("eth_getTransactionReceipt", [tx_hash])


class SolanaRpcClient(JsonRpcClient):
    def get_signature_status(self, signature: str) -> Optional[dict]:
        result = self.call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        values = (result or {}).get("value") or []
        return values[0] if values else None

    def get_latest_blockhash(self, commitment: str = "finalized") -> str:
        result = self.call("getLatestBlockhash", [{"commitment": commitment}])
        blockhash = ((result or {}).get("value") or {}).get("blockhash")
        if not blockhash:
            raise UpstreamRpcError("getLatestBlockhash returned no blockhash")
        return blockhash

    def account_exists(self, address: str) -> bool:
        result = self.call("getAccountInfo", [address, {"encoding": "base64"}])
        return bool((result or {}).get("value"))

    def get_token_decimals(self, mint: str) -> int:
        result = self.call("getTokenSupply", [mint])
        decimals = ((result or {}).get("value") or {}).get("decimals")
        if decimals is None:
            raise UpstreamRpcError(f"getTokenSupply returned no decimals for {mint}")
        return int(decimals)


class ChainClients:
    """
    Per-invocation RPC clients, built on demand from settings.

    One ``httpx.Client`` (owned by the caller) is shared by every network.
    """

    def __init__(self, http: httpx.Client, settings):
        self.http = http
        self.settings = settings
        self._evm = {}
        self._solana = None

    def evm(self, network: str) -> Optional[EvmRpcClient]:
        if network not in self._evm:
            url = self.settings.rpc_url_for(network)
            self._evm[network] = EvmRpcClient(self.http, url) if url else None
        return self._evm[network]

    def solana(self) -> SolanaRpcClient:
        if self._solana is None:
            self._solana = SolanaRpcClient(self.http, self.settings.solana_rpc_url)
        return self._solana
