"""Lending protocol interfaces — primitive builder and state reader."""
from typing import Protocol

from solders.pubkey import Pubkey

from ..models import LendingAction, MarketInfo, Position, ReserveInfo


class LendingInstructionBuilder(Protocol):
    """Builds the lending primitives; the engine only orders them."""

    async def build_deposit_and_borrow(
        self,
        owner: Pubkey,
        collateral: ReserveInfo,
        debt: ReserveInfo,
        deposit_lamports: int,
        borrow_lamports: int,
    ) -> LendingAction: ...

    async def build_repay_and_withdraw(
        self,
        owner: Pubkey,
        collateral: ReserveInfo,
        debt: ReserveInfo,
        repay_lamports: int,
        withdraw_lamports: int,
        close_position: bool,
    ) -> LendingAction: ...


class MarketStateReader(Protocol):
    """Reads fresh obligation and reserve state."""

    @property
    def market(self) -> MarketInfo: ...

    async def get_position(
        self, owner: Pubkey, collateral_mint: Pubkey, debt_mint: Pubkey
    ) -> Position: ...

    async def get_reserve(self, mint: Pubkey) -> ReserveInfo: ...
