"""Swap provider protocol — exact-in swap instructions."""
from typing import Protocol

from solders.pubkey import Pubkey

from ..models import SwapRequest, SwapResult


class SwapProvider(Protocol):
    """Abstract interface for a swap venue."""

    async def get_swap_instructions(
        self, request: SwapRequest, owner: Pubkey
    ) -> SwapResult: ...
