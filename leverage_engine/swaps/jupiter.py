"""Jupiter aggregator swap provider."""
from __future__ import annotations

import base64
import logging
import ssl
from decimal import ROUND_CEILING, Decimal
from typing import Any

import aiohttp
import certifi
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..config import JupiterConfig
from ..errors import SwapUnavailable
from ..leverage.decimals import HUNDRED, mul
from ..models import SwapKind, SwapRequest, SwapResult

logger = logging.getLogger(__name__)


def slippage_bps(slippage_pct: Decimal) -> int:
    """0.5 (percent) -> 50 bps, rounded up."""
    return int(mul(slippage_pct, HUNDRED).to_integral_value(rounding=ROUND_CEILING))


def parse_instruction(raw: dict[str, Any]) -> Instruction:
    """Decode one instruction from the swap-instructions JSON shape."""
    accounts = [
        AccountMeta(
            pubkey=Pubkey.from_string(acc["pubkey"]),
            is_signer=bool(acc.get("isSigner", False)),
            is_writable=bool(acc.get("isWritable", False)),
        )
        for acc in raw.get("accounts", [])
    ]
    return Instruction(
        Pubkey.from_string(raw["programId"]),
        base64.b64decode(raw.get("data", "")),
        accounts,
    )


class JupiterSwapProvider:
    """Exact-in swap instructions from the Jupiter quote and swap-instructions API."""

    def __init__(self, config: JupiterConfig) -> None:
        self.base_url = config.base_url.rstrip("/")
        self.only_direct_routes = config.only_direct_routes
        self.max_accounts = config.max_accounts
        self.timeout = config.timeout

    async def _request(
        self, method: str, path: str, **kwargs: Any
    ) -> dict[str, Any]:
        """Issue one API call; log failures and return an empty dict."""
        url = f"{self.base_url}{path}"
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.request(
                    method,
                    url,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                    **kwargs,
                ) as response:
                    if response.status != 200:
                        logger.error("Jupiter %s %s failed: HTTP %s", method, path, response.status)
                        return {}
                    data = await response.json()
                    if "error" in data:
                        logger.error("Jupiter %s %s error: %s", method, path, data["error"])
                        return {}
                    return data
        except Exception as e:
            logger.error("Error calling Jupiter %s: %s", path, e)
            return {}

    async def get_quote(self, request: SwapRequest) -> dict[str, Any]:
        params = {
            "inputMint": str(request.input_mint),
            "outputMint": str(request.output_mint),
            "amount": str(request.input_amount),
            "slippageBps": str(slippage_bps(request.slippage_pct)),
            "swapMode": "ExactIn",
            "onlyDirectRoutes": "true" if self.only_direct_routes else "false",
            "maxAccounts": str(self.max_accounts),
        }
        return await self._request("GET", "/quote", params=params)

    async def get_swap_instructions(self, request: SwapRequest, owner: Pubkey) -> SwapResult:
        if request.kind != SwapKind.MARKET:
            raise SwapUnavailable(f"Jupiter cannot execute a {request.kind.value} leg")
        if request.input_amount == 0:
            raise SwapUnavailable("Swap input amount is zero")

        quote = await self.get_quote(request)
        if not quote:
            raise SwapUnavailable(
                f"No Jupiter route for {request.input_amount} {request.input_mint} -> {request.output_mint}"
            )
        logger.info(
            "Jupiter quote: %s %s -> %s %s (min %s)",
            quote.get("inAmount"),
            request.input_mint,
            quote.get("outAmount"),
            request.output_mint,
            quote.get("otherAmountThreshold"),
        )

        payload = {
            "quoteResponse": quote,
            "userPublicKey": str(owner),
            "wrapAndUnwrapSol": False,
        }
        data = await self._request("POST", "/swap-instructions", json=payload)
        if not data or not data.get("swapInstruction"):
            raise SwapUnavailable("Jupiter returned no swap instruction")

        raw_instructions = [
            *data.get("setupInstructions", []),
            data["swapInstruction"],
        ]
        if data.get("cleanupInstruction"):
            raw_instructions.append(data["cleanupInstruction"])

        try:
            instructions = tuple(parse_instruction(ix) for ix in raw_instructions)
            tables = tuple(
                Pubkey.from_string(a) for a in data.get("addressLookupTableAddresses", [])
            )
        except (KeyError, ValueError) as e:
            raise SwapUnavailable(f"Malformed Jupiter swap instructions: {e}") from e

        return SwapResult(instructions=instructions, lookup_table_addresses=tables)
