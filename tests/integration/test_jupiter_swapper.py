"""Integration tests for the Jupiter swap provider — quote, instructions and failures."""
from __future__ import annotations

import base64
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from solders.pubkey import Pubkey

from leverage_engine.config import JupiterConfig
from leverage_engine.errors import SwapUnavailable
from leverage_engine.models import SwapKind, SwapRequest
from leverage_engine.swaps.jupiter import JupiterSwapProvider, parse_instruction, slippage_bps

IN_MINT = Pubkey.new_unique()
OUT_MINT = Pubkey.new_unique()
PROGRAM = Pubkey.new_unique()
TABLE = Pubkey.new_unique()


@pytest.fixture()
def swapper() -> JupiterSwapProvider:
    return JupiterSwapProvider(
        JupiterConfig(base_url="https://jup.example.com/v6/", only_direct_routes=True, max_accounts=30)
    )


@pytest.fixture()
def request_() -> SwapRequest:
    return SwapRequest(
        input_amount=1_000_000,
        input_mint=IN_MINT,
        output_mint=OUT_MINT,
        slippage_pct=Decimal("0.5"),
    )


def _raw_ix(tag: bytes) -> dict:
    return {
        "programId": str(PROGRAM),
        "data": base64.b64encode(tag).decode(),
        "accounts": [{"pubkey": str(Pubkey.new_unique()), "isSigner": False, "isWritable": True}],
    }


QUOTE = {"inAmount": "1000000", "outAmount": "6600000", "otherAmountThreshold": "6567000"}
SWAP_INSTRUCTIONS = {
    "setupInstructions": [_raw_ix(b"setup")],
    "swapInstruction": _raw_ix(b"swap"),
    "cleanupInstruction": _raw_ix(b"cleanup"),
    "addressLookupTableAddresses": [str(TABLE)],
}


def _response(status: int = 200, data: dict | None = None) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.json = AsyncMock(return_value=data or {})
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)
    return mock_response


def _mock_session(*responses: AsyncMock) -> AsyncMock:
    """Session whose successive ``request`` calls yield ``responses`` in order."""
    mock_session = AsyncMock()
    mock_session.request = MagicMock(side_effect=list(responses))
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


class TestSlippageBps:
    @pytest.mark.parametrize(
        ("pct", "bps"),
        [(Decimal("0.5"), 50), (Decimal("0"), 0), (Decimal("0.005"), 1), (Decimal("3"), 300)],
    )
    def test_conversion(self, pct: Decimal, bps: int) -> None:
        assert slippage_bps(pct) == bps


class TestParseInstruction:
    def test_decodes_accounts_and_data(self) -> None:
        signer = Pubkey.new_unique()
        ix = parse_instruction(
            {
                "programId": str(PROGRAM),
                "data": base64.b64encode(b"\x01\x02").decode(),
                "accounts": [{"pubkey": str(signer), "isSigner": True, "isWritable": False}],
            }
        )
        assert ix.program_id == PROGRAM
        assert bytes(ix.data) == b"\x01\x02"
        assert ix.accounts[0].pubkey == signer
        assert ix.accounts[0].is_signer
        assert not ix.accounts[0].is_writable


class TestGetSwapInstructions:
    @pytest.mark.asyncio
    async def test_success(self, swapper: JupiterSwapProvider, request_: SwapRequest, owner: Pubkey) -> None:
        mock_session = _mock_session(_response(data=QUOTE), _response(data=SWAP_INSTRUCTIONS))

        with patch("leverage_engine.swaps.jupiter.aiohttp.ClientSession", return_value=mock_session):
            with patch("leverage_engine.swaps.jupiter.aiohttp.TCPConnector"):
                result = await swapper.get_swap_instructions(request_, owner)

        assert [bytes(ix.data) for ix in result.instructions] == [b"setup", b"swap", b"cleanup"]
        assert result.lookup_table_addresses == (TABLE,)

        quote_call, swap_call = mock_session.request.call_args_list
        assert quote_call.args == ("GET", "https://jup.example.com/v6/quote")
        params = quote_call.kwargs["params"]
        assert params["amount"] == "1000000"
        assert params["slippageBps"] == "50"
        assert params["swapMode"] == "ExactIn"
        assert params["onlyDirectRoutes"] == "true"
        assert params["maxAccounts"] == "30"
        assert swap_call.args == ("POST", "https://jup.example.com/v6/swap-instructions")
        assert swap_call.kwargs["json"]["userPublicKey"] == str(owner)
        assert swap_call.kwargs["json"]["quoteResponse"] == QUOTE

    @pytest.mark.asyncio
    async def test_no_route(self, swapper: JupiterSwapProvider, request_: SwapRequest, owner: Pubkey) -> None:
        mock_session = _mock_session(_response(status=400))

        with patch("leverage_engine.swaps.jupiter.aiohttp.ClientSession", return_value=mock_session):
            with patch("leverage_engine.swaps.jupiter.aiohttp.TCPConnector"):
                with pytest.raises(SwapUnavailable, match="No Jupiter route"):
                    await swapper.get_swap_instructions(request_, owner)

    @pytest.mark.asyncio
    async def test_api_error_payload(self, swapper: JupiterSwapProvider, request_: SwapRequest, owner: Pubkey) -> None:
        mock_session = _mock_session(_response(data=QUOTE), _response(data={"error": "simulation failed"}))

        with patch("leverage_engine.swaps.jupiter.aiohttp.ClientSession", return_value=mock_session):
            with patch("leverage_engine.swaps.jupiter.aiohttp.TCPConnector"):
                with pytest.raises(SwapUnavailable, match="no swap instruction"):
                    await swapper.get_swap_instructions(request_, owner)

    @pytest.mark.asyncio
    async def test_malformed_instruction(
        self, swapper: JupiterSwapProvider, request_: SwapRequest, owner: Pubkey
    ) -> None:
        broken = {"swapInstruction": {"data": ""}}
        mock_session = _mock_session(_response(data=QUOTE), _response(data=broken))

        with patch("leverage_engine.swaps.jupiter.aiohttp.ClientSession", return_value=mock_session):
            with patch("leverage_engine.swaps.jupiter.aiohttp.TCPConnector"):
                with pytest.raises(SwapUnavailable, match="Malformed"):
                    await swapper.get_swap_instructions(request_, owner)

    @pytest.mark.asyncio
    async def test_network_error(self, swapper: JupiterSwapProvider, request_: SwapRequest, owner: Pubkey) -> None:
        mock_session = AsyncMock()
        mock_session.request = MagicMock(side_effect=ConnectionError("down"))
        mock_session.__aenter__ = AsyncMock(return_value=mock_session)
        mock_session.__aexit__ = AsyncMock(return_value=None)

        with patch("leverage_engine.swaps.jupiter.aiohttp.ClientSession", return_value=mock_session):
            with patch("leverage_engine.swaps.jupiter.aiohttp.TCPConnector"):
                with pytest.raises(SwapUnavailable):
                    await swapper.get_swap_instructions(request_, owner)

    @pytest.mark.asyncio
    async def test_basket_leg_rejected(self, swapper: JupiterSwapProvider, owner: Pubkey) -> None:
        leg = SwapRequest(1_000, IN_MINT, OUT_MINT, Decimal("0.5"), kind=SwapKind.BASKET_MINT)
        with pytest.raises(SwapUnavailable, match="basket_mint"):
            await swapper.get_swap_instructions(leg, owner)

    @pytest.mark.asyncio
    async def test_zero_amount_rejected(self, swapper: JupiterSwapProvider, owner: Pubkey) -> None:
        with pytest.raises(SwapUnavailable, match="zero"):
            await swapper.get_swap_instructions(
                SwapRequest(0, IN_MINT, OUT_MINT, Decimal("0.5")), owner
            )
