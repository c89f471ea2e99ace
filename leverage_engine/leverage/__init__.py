"""Leverage math, flash loan coordination and bundle assembly."""
from .assembler import AtomicTxAssembler
from .calcs import (
    adjust_leverage_calcs,
    calculate_multiply_effects,
    deposit_leverage_calcs,
    withdraw_leverage_calcs,
)
from .flash_loan import FlashLoanCoordinator
from .operations import BasketContext, LeverageOperations, OperationResult
from .repay_calcs import repay_with_coll_calcs

__all__ = [
    "AtomicTxAssembler",
    "BasketContext",
    "FlashLoanCoordinator",
    "LeverageOperations",
    "OperationResult",
    "adjust_leverage_calcs",
    "calculate_multiply_effects",
    "deposit_leverage_calcs",
    "repay_with_coll_calcs",
    "withdraw_leverage_calcs",
]
