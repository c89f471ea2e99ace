"""Basket share provider protocol — two-token yield baskets."""
from typing import Protocol

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ..models import BasketHoldings, SwapRequest


class BasketShareProvider(Protocol):
    """Abstract interface for baskets whose shares are pooled token pairs."""

    def is_basket_share(self, mint: Pubkey) -> bool: ...

    async def get_holdings(self, share_mint: Pubkey) -> BasketHoldings: ...

    async def get_mint_instructions(
        self, request: SwapRequest, owner: Pubkey
    ) -> list[Instruction]: ...

    async def get_redeem_instructions(
        self, request: SwapRequest, owner: Pubkey
    ) -> list[Instruction]: ...
