"""Solana JSON-RPC client with fallback support."""
from __future__ import annotations

import itertools
import logging
import ssl
from typing import Any

import aiohttp
import certifi
from solders.pubkey import Pubkey

from ...config import ChainConfig

logger = logging.getLogger(__name__)


class SolanaClient:
    """Reads slots, token balances and account existence.

    Requests go to the last endpoint that answered; on failure the next
    configured endpoint is tried until every one has been attempted once.
    """

    def __init__(self, config: ChainConfig, commitment: str = "confirmed") -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.commitment = commitment
        self.current_rpc_index = 0
        self._request_ids = itertools.count(1)

    def _rotation(self) -> list[int]:
        count = len(self.endpoints)
        return [(self.current_rpc_index + step) % count for step in range(count)]

    async def _post(self, rpc_url: str, payload: dict[str, Any], ssl_context: ssl.SSLContext) -> Any:
        connector = aiohttp.TCPConnector(ssl=ssl_context)
        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.post(
                rpc_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                body = await response.json()
        if "error" in body:
            raise RuntimeError(f"RPC Error: {body['error']}")
        return body.get("result")

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Send one JSON-RPC request, falling back across endpoints."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }
        ssl_context = ssl.create_default_context(cafile=certifi.where())

        failures: list[str] = []
        for rpc_index in self._rotation():
            rpc_url = self.endpoints[rpc_index]
            try:
                result = await self._post(rpc_url, payload, ssl_context)
            except Exception as e:
                failures.append(f"{rpc_url}: {e}")
                logger.warning("%s via %s failed: %s", method, rpc_url, e)
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index
            return result

        last_error = failures[-1] if failures else "no endpoints configured"
        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    def _with_commitment(self, **extra: Any) -> dict[str, Any]:
        return {"commitment": self.commitment, **extra}

    async def get_slot(self) -> int:
        """Current slot; raises when no endpoint answers."""
        return int(await self.rpc_call("getSlot", [self._with_commitment()]))

    async def get_token_account_balance(self, token_account: Pubkey) -> int:
        """Raw token balance in base units; 0 for an account that does not exist yet."""
        try:
            result = await self.rpc_call(
                "getTokenAccountBalance", [str(token_account), self._with_commitment()]
            )
            return int(result["value"]["amount"])
        except Exception as e:
            logger.warning("Token balance for %s unavailable, assuming 0: %s", token_account, e)
            return 0

    async def account_exists(self, address: Pubkey) -> bool:
        try:
            result = await self.rpc_call(
                "getAccountInfo", [str(address), self._with_commitment(encoding="base64")]
            )
        except Exception as e:
            logger.error("Error fetching account %s: %s", address, e)
            return False
        return bool(result and result.get("value"))
