"""Leverage math for deposit, withdraw and adjust.

Prices follow one convention throughout:

* ``price_debt_to_coll`` (``p``) is how many collateral tokens one debt token
  is worth;
* ``price_coll_to_debt`` (``q``) is the opposite direction, supplied
  independently by the caller.

Leverage is ``L = coll / (coll - debt * p)``. Writing ``m = (L - 1) / L`` the
position sits at ``L`` exactly when ``debt * p == coll * m``.

Swap erosion is folded in as ``k = (1 + flash_fee) * (1 + slippage)``: a swap
of ``x`` debt tokens is assumed to yield at least ``x * p / (1 + slippage)``
collateral, and a flash loan of ``y`` costs ``y * (1 + flash_fee)`` to repay.
Flash-loan fees are fractions (``0.001`` is 0.1%), slippage is a percent.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from ..errors import InvalidLeverageTarget
from ..models import Direction, MultiplyEffects, Position, PriceQuote
from .decimals import (
    ONE,
    ZERO,
    Number,
    div,
    in_calc_context,
    mul,
    pct_to_fraction,
    require_non_negative,
    require_price,
    to_decimal,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DepositLeverageCalcs:
    """Amounts for opening or increasing a position with a flash-borrowed collateral leg."""

    flash_borrow_in_coll: Decimal
    init_deposit_in_coll: Decimal
    coll_token_to_deposit: Decimal
    debt_token_to_borrow: Decimal
    swap_debt_in: Decimal
    swap_coll_expected_out: Decimal


@dataclass(frozen=True)
class WithdrawLeverageCalcs:
    """Amounts for withdrawing (or closing) while holding leverage constant.

    The debt reserve lends ``flash_borrow_in_debt``; it repays
    ``debt_token_to_repay`` and ``coll_token_to_withdraw`` leaves the obligation.
    ``swap_coll_in`` of it is sold for debt and the rest is the user's.
    """

    flash_borrow_in_debt: Decimal
    debt_token_to_repay: Decimal
    coll_token_to_withdraw: Decimal
    swap_coll_in: Decimal
    swap_debt_expected_out: Decimal
    withdraw_to_user: Decimal
    is_closing_position: bool = False


@dataclass(frozen=True)
class AdjustLeverageCalcs:
    """Deltas that move a position to a new leverage.

    Going up, collateral is flash-borrowed and debt is swapped into it; going
    down, debt is flash-borrowed and withdrawn collateral is swapped into it.
    """

    is_increase: bool
    coll_change: Decimal
    debt_change: Decimal
    flash_borrow: Decimal
    swap_in: Decimal
    swap_expected_out: Decimal

    @property
    def is_noop(self) -> bool:
        return self.coll_change == 0 and self.debt_change == 0


@dataclass(frozen=True)
class PositionChange:
    """Fee-free position deltas; negative means the position shrinks."""

    adjust_deposit: Decimal
    adjust_borrow: Decimal
    is_increase: bool


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_target_leverage(target_leverage: Number | None) -> Decimal:
    if target_leverage is None:
        raise InvalidLeverageTarget("A target leverage is required")
    target = to_decimal(target_leverage)
    if not target.is_finite() or target <= 1:
        raise InvalidLeverageTarget(f"Target leverage must be greater than 1, got {target_leverage}")
    return target


@in_calc_context
def leverage_ratio(target: Decimal) -> Decimal:
    """m = (L - 1) / L."""
    return div(target - ONE, target)


@in_calc_context
def erosion_factor(slippage_pct: Number, flash_loan_fee: Number) -> Decimal:
    fee = require_non_negative(flash_loan_fee, "flash_loan_fee")
    slippage = pct_to_fraction(require_non_negative(slippage_pct, "slippage_pct"))
    return mul(ONE + fee, ONE + slippage)


@in_calc_context
def current_leverage(deposited: Decimal, borrowed: Decimal, price_debt_to_coll: Decimal) -> Decimal:
    """Leverage of an existing position, raising at or past the fully-leveraged boundary."""
    net = deposited - mul(borrowed, price_debt_to_coll)
    if net <= 0:
        raise InvalidLeverageTarget(
            f"Position has no positive net value (deposited={deposited}, borrowed={borrowed})"
        )
    return div(deposited, net)


@in_calc_context
def is_leverage_increase(
    deposited: Number,
    borrowed: Number,
    price_debt_to_coll: Number,
    target_leverage: Number,
) -> bool:
    """True when reaching ``target_leverage`` means adding debt."""
    m = leverage_ratio(require_target_leverage(target_leverage))
    p = require_price(price_debt_to_coll, "price_debt_to_coll")
    return mul(to_decimal(deposited), m) > mul(to_decimal(borrowed), p)


# ---------------------------------------------------------------------------
# Deposit
# ---------------------------------------------------------------------------


@in_calc_context
def deposit_leverage_calcs(
    deposit_amount: Number,
    deposit_is_collateral: bool,
    price_debt_to_coll: Number,
    target_leverage: Number,
    slippage_pct: Number,
    flash_loan_fee: Number,
) -> DepositLeverageCalcs:
    """Size the flash loan, borrow and swap for a leveraged deposit.

    A collateral-side contribution is deposited as-is and the flash borrow
    covers the rest of the final collateral. A debt-side contribution is
    folded into the swap input together with the borrowed debt.
    """
    amount = require_non_negative(deposit_amount, "deposit_amount")
    p = require_price(price_debt_to_coll, "price_debt_to_coll")
    target = require_target_leverage(target_leverage)
    k = erosion_factor(slippage_pct, flash_loan_fee)
    m = leverage_ratio(target)

    if deposit_is_collateral:
        # C = dep * k / (k - m); debt repays the flash leg net of erosion
        coll = div(mul(amount, k), k - m)
        flash = coll - amount
        debt = div(mul(flash, k), p)
        calcs = DepositLeverageCalcs(
            flash_borrow_in_coll=flash,
            init_deposit_in_coll=amount,
            coll_token_to_deposit=coll,
            debt_token_to_borrow=debt,
            swap_debt_in=debt,
            swap_coll_expected_out=flash,
        )
    else:
        coll = div(mul(amount, p), k - m)
        debt = div(mul(coll, m), p)
        calcs = DepositLeverageCalcs(
            flash_borrow_in_coll=coll,
            init_deposit_in_coll=ZERO,
            coll_token_to_deposit=coll,
            debt_token_to_borrow=debt,
            swap_debt_in=debt + amount,
            swap_coll_expected_out=coll,
        )

    logger.debug("Deposit leverage calcs: %s", calcs)
    return calcs


# ---------------------------------------------------------------------------
# Withdraw / close
# ---------------------------------------------------------------------------


@in_calc_context
def withdraw_leverage_calcs(
    deposited: Number,
    borrowed: Number,
    price_debt_to_coll: Number,
    withdraw_amount: Number,
    selected_is_collateral: bool,
    slippage_pct: Number,
    flash_loan_fee: Number,
    is_closing_position: bool = False,
) -> WithdrawLeverageCalcs:
    """Size a withdrawal that keeps the position's current leverage.

    ``withdraw_amount`` is denominated in the selected token. When closing,
    the whole debt is repaid, the whole collateral withdrawn and the leverage
    check is skipped.
    """
    coll0 = require_non_negative(deposited, "deposited")
    debt0 = require_non_negative(borrowed, "borrowed")
    p = require_price(price_debt_to_coll, "price_debt_to_coll")
    fee = require_non_negative(flash_loan_fee, "flash_loan_fee")
    slippage = pct_to_fraction(require_non_negative(slippage_pct, "slippage_pct"))
    k = mul(ONE + fee, ONE + slippage)

    if is_closing_position:
        return _close_calcs(coll0, debt0, p, fee, slippage, k, selected_is_collateral)

    amount = require_non_negative(withdraw_amount, "withdraw_amount")
    leverage = current_leverage(coll0, debt0, p)
    m = leverage_ratio(leverage)
    denominator = mul(p, ONE - mul(k, m))
    if denominator <= 0:
        raise InvalidLeverageTarget(
            f"Leverage {leverage} is too high to unwind with the given fee and slippage"
        )

    if selected_is_collateral:
        debt_change = div(mul(debt0, p) - mul(coll0 - amount, m), denominator)
        swap_in = mul(debt_change, k, p)
        coll_change = swap_in + amount
        expected_out = mul(debt_change, ONE + fee)
    else:
        debt_change = div(
            mul(debt0, p) - mul(coll0, m) + mul(amount, ONE + slippage, m, p), denominator
        )
        coll_change = mul(mul(debt_change, ONE + fee) + amount, ONE + slippage, p)
        swap_in = coll_change
        expected_out = mul(debt_change, ONE + fee) + amount

    if coll_change > coll0 or debt_change > debt0:
        raise InvalidLeverageTarget(
            f"Withdrawing {amount} exceeds the position; close it instead"
        )
    remaining_net = (coll0 - coll_change) - mul(debt0 - debt_change, p)
    if remaining_net < 0:
        raise InvalidLeverageTarget("Withdrawal would leave a negative deposited value")

    calcs = WithdrawLeverageCalcs(
        flash_borrow_in_debt=debt_change,
        debt_token_to_repay=debt_change,
        coll_token_to_withdraw=coll_change,
        swap_coll_in=swap_in,
        swap_debt_expected_out=expected_out,
        withdraw_to_user=amount,
    )
    logger.debug("Withdraw leverage calcs: %s", calcs)
    return calcs


def _close_calcs(
    coll0: Decimal,
    debt0: Decimal,
    p: Decimal,
    fee: Decimal,
    slippage: Decimal,
    k: Decimal,
    selected_is_collateral: bool,
) -> WithdrawLeverageCalcs:
    if selected_is_collateral:
        swap_in = mul(debt0, k, p)
        if swap_in > coll0:
            raise InvalidLeverageTarget(
                "Collateral does not cover the debt plus fees; position cannot be closed"
            )
        expected_out = mul(debt0, ONE + fee)
        to_user = coll0 - swap_in
    else:
        swap_in = coll0
        expected_out = div(coll0, mul(p, ONE + slippage))
        to_user = expected_out - mul(debt0, ONE + fee)
        if to_user < 0:
            raise InvalidLeverageTarget(
                "Collateral does not cover the debt plus fees; position cannot be closed"
            )

    calcs = WithdrawLeverageCalcs(
        flash_borrow_in_debt=debt0,
        debt_token_to_repay=debt0,
        coll_token_to_withdraw=coll0,
        swap_coll_in=swap_in,
        swap_debt_expected_out=expected_out,
        withdraw_to_user=to_user,
        is_closing_position=True,
    )
    logger.debug("Close position calcs: %s", calcs)
    return calcs


# ---------------------------------------------------------------------------
# Adjust
# ---------------------------------------------------------------------------


@in_calc_context
def adjust_leverage_calcs(
    deposited: Number,
    borrowed: Number,
    price_debt_to_coll: Number,
    target_leverage: Number,
    slippage_pct: Number,
    flash_loan_fee: Number,
) -> AdjustLeverageCalcs:
    """Deltas that land the position exactly on ``target_leverage`` after erosion."""
    coll0 = require_non_negative(deposited, "deposited")
    debt0 = require_non_negative(borrowed, "borrowed")
    p = require_price(price_debt_to_coll, "price_debt_to_coll")
    target = require_target_leverage(target_leverage)
    fee = require_non_negative(flash_loan_fee, "flash_loan_fee")
    k = erosion_factor(slippage_pct, fee)
    m = leverage_ratio(target)

    current_leverage(coll0, debt0, p)
    gap = mul(coll0, m) - mul(debt0, p)

    if gap > 0:
        coll_change = div(gap, k - m)
        debt_change = div(mul(coll_change, k), p)
        calcs = AdjustLeverageCalcs(
            is_increase=True,
            coll_change=coll_change,
            debt_change=debt_change,
            flash_borrow=coll_change,
            swap_in=debt_change,
            swap_expected_out=mul(coll_change, ONE + fee),
        )
    elif gap < 0:
        denominator = mul(p, ONE - mul(k, m))
        if denominator <= 0:
            raise InvalidLeverageTarget(
                f"Target leverage {target} is unreachable with the given fee and slippage"
            )
        debt_change = div(-gap, denominator)
        coll_change = mul(debt_change, k, p)
        calcs = AdjustLeverageCalcs(
            is_increase=False,
            coll_change=coll_change,
            debt_change=debt_change,
            flash_borrow=debt_change,
            swap_in=coll_change,
            swap_expected_out=mul(debt_change, ONE + fee),
        )
    else:
        calcs = AdjustLeverageCalcs(
            is_increase=False,
            coll_change=ZERO,
            debt_change=ZERO,
            flash_borrow=ZERO,
            swap_in=ZERO,
            swap_expected_out=ZERO,
        )

    logger.debug("Adjust leverage calcs: %s", calcs)
    return calcs


# ---------------------------------------------------------------------------
# Fee-free estimates
# ---------------------------------------------------------------------------


def _net_in_debt(deposited: Decimal, borrowed: Decimal, q: Decimal) -> Decimal:
    return mul(deposited, q) - borrowed


@in_calc_context
def estimate_deposit_mode(
    deposit_amount: Number,
    deposit_is_collateral: bool,
    price_coll_to_debt: Number,
    target_leverage: Number,
) -> PositionChange:
    """Collateral and debt added by a leveraged deposit, ignoring fees and slippage."""
    amount = require_non_negative(deposit_amount, "deposit_amount")
    q = require_price(price_coll_to_debt, "price_coll_to_debt")
    target = require_target_leverage(target_leverage)

    if deposit_is_collateral:
        adjust_deposit = mul(amount, target)
        adjust_borrow = mul(amount, target - ONE, q)
    else:
        adjust_deposit = div(mul(amount, target), q)
        adjust_borrow = mul(amount, target - ONE)
    return PositionChange(adjust_deposit, adjust_borrow, is_increase=True)


@in_calc_context
def estimate_withdraw_mode(
    withdraw_amount: Number,
    selected_is_collateral: bool,
    deposited: Number,
    borrowed: Number,
    price_coll_to_debt: Number,
) -> PositionChange:
    """Deltas of a fee-free withdrawal at constant leverage."""
    amount = require_non_negative(withdraw_amount, "withdraw_amount")
    coll0 = require_non_negative(deposited, "deposited")
    debt0 = require_non_negative(borrowed, "borrowed")
    q = require_price(price_coll_to_debt, "price_coll_to_debt")

    net = _net_in_debt(coll0, debt0, q)
    if net <= 0:
        raise InvalidLeverageTarget("Position has no positive net value")
    leverage = div(mul(coll0, q), net)
    withdraw_value = mul(amount, q) if selected_is_collateral else amount
    new_net = net - withdraw_value
    if new_net < 0:
        raise InvalidLeverageTarget("Withdrawal would leave a negative deposited value")

    new_coll = div(mul(new_net, leverage), q)
    new_debt = mul(new_net, leverage - ONE)
    return PositionChange(new_coll - coll0, new_debt - debt0, is_increase=False)


@in_calc_context
def estimate_adjust_mode(
    target_leverage: Number,
    deposited: Number,
    borrowed: Number,
    price_coll_to_debt: Number,
) -> PositionChange:
    """Deltas that move a position to ``target_leverage`` at constant net value."""
    target = require_target_leverage(target_leverage)
    coll0 = require_non_negative(deposited, "deposited")
    debt0 = require_non_negative(borrowed, "borrowed")
    q = require_price(price_coll_to_debt, "price_coll_to_debt")

    net = _net_in_debt(coll0, debt0, q)
    if net <= 0:
        raise InvalidLeverageTarget("Position has no positive net value")
    new_coll = div(mul(net, target), q)
    new_debt = mul(net, target - ONE)
    return PositionChange(new_coll - coll0, new_debt - debt0, is_increase=new_coll > coll0)


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------


@in_calc_context
def calculate_multiply_effects(
    direction: Direction,
    position: Position,
    quote: PriceQuote,
    amount: Number = ZERO,
    selected_is_collateral: bool = True,
    target_leverage: Number | None = None,
) -> MultiplyEffects:
    """Post-operation totals for a UI preview; no instructions are built.

    Values are computed in debt-token terms with ``quote.coll_to_debt`` so a
    fresh deposit lands on round numbers. ``net_value`` is in debt tokens.
    Deposit and adjust re-lever the whole position to ``target_leverage``;
    withdraw keeps the current leverage unless a target is given.
    """
    q = require_price(quote.coll_to_debt, "price_coll_to_debt")
    require_price(quote.debt_to_coll, "price_debt_to_coll")
    coll0 = position.deposited_amount
    debt0 = position.borrowed_amount
    net0 = _net_in_debt(coll0, debt0, q)

    if direction == Direction.CLOSE:
        return MultiplyEffects(
            total_deposited=ZERO,
            total_borrowed=ZERO,
            deposit_change=-coll0,
            borrow_change=-debt0,
            net_value=ZERO,
            leverage=None,
        )

    value = require_non_negative(amount, "amount")
    if selected_is_collateral:
        value = mul(value, q)

    if direction == Direction.DEPOSIT:
        target = require_target_leverage(target_leverage)
        new_net = net0 + value
    elif direction == Direction.WITHDRAW:
        if net0 <= 0:
            raise InvalidLeverageTarget("Position has no positive net value")
        if target_leverage is None:
            target = div(mul(coll0, q), net0)
        else:
            target = require_target_leverage(target_leverage)
        new_net = net0 - value
    elif direction == Direction.ADJUST:
        target = require_target_leverage(target_leverage)
        new_net = net0
    else:
        raise ValueError(f"Unknown direction: {direction}")

    if new_net < 0:
        raise InvalidLeverageTarget("Operation would leave a negative deposited value")

    total_deposited = div(mul(new_net, target), q)
    total_borrowed = mul(new_net, target - ONE)
    effects = MultiplyEffects(
        total_deposited=total_deposited,
        total_borrowed=total_borrowed,
        deposit_change=total_deposited - coll0,
        borrow_change=total_borrowed - debt0,
        net_value=new_net,
        leverage=target if new_net > 0 else None,
    )
    logger.debug("Multiply effects for %s: %s", direction.value, effects)
    return effects
