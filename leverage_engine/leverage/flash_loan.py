"""Flash borrow / flash repay pairing.

The repay instruction must name the borrow's index in the final transaction,
which is only known once every instruction ahead of it is final. Plans are
created without an index and resolved by the assembler.
"""
from __future__ import annotations

import hashlib
import logging
import struct
from dataclasses import replace
from decimal import ROUND_CEILING, Decimal

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..constants import (
    LENDING_MARKET_AUTHORITY_SEED,
    SYSVAR_INSTRUCTIONS_ID,
    TOKEN_PROGRAM_ID,
    U64_MAX,
)
from ..models import FlashLoanPlan, MarketInfo, ReserveInfo
from .decimals import mul, require_non_negative

logger = logging.getLogger(__name__)


def _anchor_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


FLASH_BORROW_DISCRIMINATOR = _anchor_discriminator("flash_borrow_reserve_liquidity")
FLASH_REPAY_DISCRIMINATOR = _anchor_discriminator("flash_repay_reserve_liquidity")


def lending_market_authority(market: Pubkey, program_id: Pubkey) -> Pubkey:
    authority, _bump = Pubkey.find_program_address(
        [LENDING_MARKET_AUTHORITY_SEED, bytes(market)], program_id
    )
    return authority


def flash_loan_fee(amount: int, fee_rate: Decimal) -> int:
    """Fee in lamports: amount * rate, rounded up."""
    rate = require_non_negative(fee_rate, "flash_loan_fee")
    return int(mul(Decimal(amount), rate).to_integral_value(rounding=ROUND_CEILING))


class FlashLoanCoordinator:
    """Builds the flash-borrow / flash-repay pair for one lending market."""

    def __init__(self, market: MarketInfo) -> None:
        self._market = market

    def plan(self, reserve: ReserveInfo, amount: int, destination: Pubkey) -> FlashLoanPlan:
        if amount <= 0:
            raise ValueError(f"Flash loan amount must be positive, got {amount}")
        if amount > U64_MAX:
            raise ValueError(f"Flash loan amount {amount} does not fit in u64")
        plan = FlashLoanPlan(
            reserve=reserve,
            amount=amount,
            fee=flash_loan_fee(amount, reserve.flash_loan_fee),
            destination=destination,
        )
        logger.debug(
            "Flash loan of %s lamports from reserve %s (fee %s)",
            plan.amount,
            reserve.address,
            plan.fee,
        )
        return plan

    @staticmethod
    def resolve(plan: FlashLoanPlan, borrow_instruction_index: int) -> FlashLoanPlan:
        if not 0 <= borrow_instruction_index <= 255:
            raise ValueError(f"Borrow index {borrow_instruction_index} does not fit in u8")
        return replace(plan, borrow_instruction_index=borrow_instruction_index)

    def _accounts(self, owner: Pubkey, plan: FlashLoanPlan) -> list[AccountMeta]:
        market = self._market
        reserve = plan.reserve
        # referrer slots are optional; the program id marks them as absent
        return [
            AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
            AccountMeta(pubkey=market.authority, is_signer=False, is_writable=False),
            AccountMeta(pubkey=market.address, is_signer=False, is_writable=False),
            AccountMeta(pubkey=reserve.address, is_signer=False, is_writable=True),
            AccountMeta(pubkey=reserve.mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=reserve.liquidity_supply, is_signer=False, is_writable=True),
            AccountMeta(pubkey=plan.destination, is_signer=False, is_writable=True),
            AccountMeta(pubkey=reserve.fee_receiver, is_signer=False, is_writable=True),
            AccountMeta(pubkey=market.program_id, is_signer=False, is_writable=False),
            AccountMeta(pubkey=market.program_id, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSVAR_INSTRUCTIONS_ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ]

    def borrow_instruction(self, owner: Pubkey, plan: FlashLoanPlan) -> Instruction:
        data = FLASH_BORROW_DISCRIMINATOR + struct.pack("<Q", plan.amount)
        return Instruction(self._market.program_id, data, self._accounts(owner, plan))

    def repay_instruction(self, owner: Pubkey, plan: FlashLoanPlan) -> Instruction:
        if plan.borrow_instruction_index is None:
            raise ValueError("Flash repay built before the borrow index was resolved")
        data = FLASH_REPAY_DISCRIMINATOR + struct.pack(
            "<QB", plan.amount, plan.borrow_instruction_index
        )
        return Instruction(self._market.program_id, data, self._accounts(owner, plan))
