"""Repay-with-collateral math and interest accrual estimates."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

from ..constants import SLOTS_PER_YEAR
from ..models import Position
from .decimals import (
    BPS,
    CALC_CONTEXT,
    ONE,
    ZERO,
    Number,
    div,
    in_calc_context,
    mul,
    pct_to_fraction,
    require_non_negative,
    require_price,
    round_to_decimals,
    to_decimal,
)

logger = logging.getLogger(__name__)

DEFAULT_INTEREST_MARGIN_BPS = Decimal("1.1")


@dataclass(frozen=True)
class RepayWithCollCalcs:
    repay_amount: Decimal
    coll_to_swap_in: Decimal
    swap_debt_expected_out: Decimal


@in_calc_context
def repay_with_coll_calcs(
    repay_amount: Number,
    price_debt_to_coll: Number,
    slippage_pct: Number,
    flash_loan_fee: Number,
) -> RepayWithCollCalcs:
    """Collateral to sell so the flash-borrowed repayment plus its fee is covered.

    ``repay_amount`` should already carry the interest margin (see
    :func:`interest_adjusted_repay_amount`).
    """
    amount = require_non_negative(repay_amount, "repay_amount")
    p = require_price(price_debt_to_coll, "price_debt_to_coll")
    fee = require_non_negative(flash_loan_fee, "flash_loan_fee")
    slippage = pct_to_fraction(require_non_negative(slippage_pct, "slippage_pct"))

    swap_debt_expected_out = mul(amount, ONE + fee)
    coll_to_swap_in = mul(swap_debt_expected_out, ONE + slippage, p)

    calcs = RepayWithCollCalcs(
        repay_amount=amount,
        coll_to_swap_in=coll_to_swap_in,
        swap_debt_expected_out=swap_debt_expected_out,
    )
    logger.debug("Repay with collateral calcs: %s", calcs)
    return calcs


@in_calc_context
def repay_with_coll_effects(
    position: Position,
    calcs: RepayWithCollCalcs,
    is_closing_position: bool,
) -> Position:
    """Position after the repay, assuming the swap fills at its worst price."""
    borrowed = ZERO if is_closing_position else max(position.borrowed_amount - calcs.repay_amount, ZERO)
    deposited = position.deposited_amount - calcs.coll_to_swap_in
    return Position(
        deposited_amount=max(deposited, ZERO),
        borrowed_amount=borrowed,
        collateral_mint=position.collateral_mint,
        debt_mint=position.debt_mint,
        obligation=position.obligation,
        borrow_cumulative_rate=position.borrow_cumulative_rate,
    )


# ---------------------------------------------------------------------------
# Interest accrual
# ---------------------------------------------------------------------------


@in_calc_context
def estimate_cumulative_borrow_rate(
    cumulative_rate: Number,
    borrow_apr: Number,
    slots_elapsed: int,
) -> Decimal:
    """Compound ``cumulative_rate`` per slot at ``borrow_apr`` for ``slots_elapsed`` slots."""
    rate = to_decimal(cumulative_rate)
    apr = require_non_negative(borrow_apr, "borrow_apr")
    if slots_elapsed <= 0:
        return rate
    per_slot = ONE + div(apr, SLOTS_PER_YEAR)
    return mul(rate, CALC_CONTEXT.power(per_slot, slots_elapsed))


@in_calc_context
def estimate_interest_accrual(
    reserve_cumulative_rate: Number,
    reserve_borrow_apr: Number,
    reserve_last_update_slot: int,
    obligation_cumulative_rate: Number,
    current_slot: int,
) -> Decimal:
    """Ratio of the borrow rate expected at ``current_slot`` to the obligation's snapshot.

    Never below 1: debt only grows between refreshes.
    """
    snapshot = to_decimal(obligation_cumulative_rate)
    if snapshot <= 0:
        return ONE
    estimated = estimate_cumulative_borrow_rate(
        reserve_cumulative_rate,
        reserve_borrow_apr,
        current_slot - reserve_last_update_slot,
    )
    return max(div(estimated, snapshot), ONE)


@in_calc_context
def interest_adjusted_repay_amount(
    amount: Number,
    accrual: Number,
    debt_decimals: int,
    margin_bps: Number = DEFAULT_INTEREST_MARGIN_BPS,
) -> Decimal:
    """Repayment grown by accrued interest and a safety margin, rounded up to mint precision."""
    base = require_non_negative(amount, "amount")
    margin = div(require_non_negative(margin_bps, "margin_bps"), BPS)
    adjusted = mul(base, to_decimal(accrual), ONE + margin)
    return round_to_decimals(adjusted, debt_decimals, ROUND_CEILING)


# ---------------------------------------------------------------------------
# Collateral <-> debt repayment estimates
# ---------------------------------------------------------------------------


@in_calc_context
def estimate_debt_repayment_with_coll(
    coll_amount: Number,
    price_debt_to_coll: Number,
    slippage_pct: Number,
    flash_loan_fee_pct: Number,
) -> Decimal:
    """Debt that ``coll_amount`` of collateral can repay through a flash swap.

    The flash-loan fee is given in percent here, like the slippage.
    """
    coll = require_non_negative(coll_amount, "coll_amount")
    p = require_price(price_debt_to_coll, "price_debt_to_coll")
    slippage = pct_to_fraction(require_non_negative(slippage_pct, "slippage_pct"))
    fee = pct_to_fraction(require_non_negative(flash_loan_fee_pct, "flash_loan_fee_pct"))

    debt_after_swap = div(div(coll, ONE + slippage), p)
    return div(debt_after_swap, ONE + fee)


@in_calc_context
def estimate_coll_needed_for_debt_repayment(
    debt_amount: Number,
    price_debt_to_coll: Number,
    slippage_pct: Number,
    flash_loan_fee_pct: Number,
) -> Decimal:
    """Collateral to sell to repay ``debt_amount``; inverse of the estimate above."""
    debt = require_non_negative(debt_amount, "debt_amount")
    p = require_price(price_debt_to_coll, "price_debt_to_coll")
    slippage = pct_to_fraction(require_non_negative(slippage_pct, "slippage_pct"))
    fee = pct_to_fraction(require_non_negative(flash_loan_fee_pct, "flash_loan_fee_pct"))

    return mul(debt, ONE + fee, ONE + slippage, p)
