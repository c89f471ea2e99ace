"""Basket-share pricing and leveraged deposits into basket collateral.

A basket share is a claim on two pooled tokens. It cannot be flash-borrowed,
so basket-collateral flows borrow the debt token instead and swap it into
shares before the lending primitives run.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from solders.pubkey import Pubkey

from ..errors import InvalidPrice
from ..models import BasketHoldings, PriceQuote
from .calcs import erosion_factor, leverage_ratio, require_target_leverage
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
)

logger = logging.getLogger(__name__)


def other_token(holdings: BasketHoldings, mint: Pubkey) -> Pubkey:
    """The basket's second underlying, raising if ``mint`` is not an underlying."""
    if mint == holdings.token_a_mint:
        return holdings.token_b_mint
    if mint == holdings.token_b_mint:
        return holdings.token_a_mint
    raise ValueError(f"{mint} is not an underlying of basket {holdings.share_mint}")


def holding_of(holdings: BasketHoldings, mint: Pubkey) -> Decimal:
    if mint == holdings.token_a_mint:
        return holdings.token_a_amount
    if mint == holdings.token_b_mint:
        return holdings.token_b_amount
    raise ValueError(f"{mint} is not an underlying of basket {holdings.share_mint}")


@in_calc_context
def share_value_in(holdings: BasketHoldings, mint: Pubkey, price_mint_in_other: Number) -> Decimal:
    """Value of one share in ``mint``: (own + other / price) / shares issued."""
    price = require_price(price_mint_in_other, "price_mint_in_other")
    if holdings.shares_issued <= 0:
        raise InvalidPrice(f"Basket {holdings.share_mint} has no shares issued")
    own = holding_of(holdings, mint)
    other = holding_of(holdings, other_token(holdings, mint))
    value = div(own + div(other, price), holdings.shares_issued)
    if value <= 0:
        raise InvalidPrice(f"Basket {holdings.share_mint} has no holdings")
    return value


@in_calc_context
def shares_per_token(holdings: BasketHoldings, mint: Pubkey, price_mint_in_other: Number) -> Decimal:
    """How many shares one ``mint`` token buys; the basket's price_debt_to_coll."""
    return div(ONE, share_value_in(holdings, mint, price_mint_in_other))


@in_calc_context
def basket_quote(holdings: BasketHoldings, debt_mint: Pubkey, price_debt_in_other: Number) -> PriceQuote:
    """Share/debt quote from the basket's holdings and shares issued.

    Shares have no oracle feed; only the debt token's price in the other
    underlying is needed.
    """
    value = share_value_in(holdings, debt_mint, price_debt_in_other)
    return PriceQuote(coll_to_debt=value, debt_to_coll=div(ONE, value))


@in_calc_context
def other_value_fraction(holdings: BasketHoldings, mint: Pubkey, price_mint_in_other: Number) -> Decimal:
    """Share of the basket's value held in the token that is not ``mint``."""
    price = require_price(price_mint_in_other, "price_mint_in_other")
    own = holding_of(holdings, mint)
    other_value = div(holding_of(holdings, other_token(holdings, mint)), price)
    total = own + other_value
    if total <= 0:
        return ZERO
    return div(other_value, total)


@dataclass(frozen=True)
class BasketDepositCalcs:
    """Amounts for a leveraged deposit into basket collateral, flash-borrowing debt."""

    flash_borrow_in_debt: Decimal
    init_deposit_in_coll: Decimal
    coll_token_to_deposit: Decimal
    debt_token_to_borrow: Decimal
    swap_debt_in: Decimal
    swap_coll_expected_out: Decimal
    price_debt_to_coll: Decimal


@in_calc_context
def deposit_leverage_basket_calcs(
    deposit_amount: Number,
    deposit_is_collateral: bool,
    holdings: BasketHoldings,
    debt_mint: Pubkey,
    price_debt_in_other: Number,
    target_leverage: Number,
    slippage_pct: Number,
    flash_loan_fee: Number,
) -> BasketDepositCalcs:
    """Size a leveraged deposit where collateral is a basket share.

    The debt token is flash-borrowed, swapped into shares, and the borrow
    against the new collateral repays the flash loan plus its fee.
    """
    amount = require_non_negative(deposit_amount, "deposit_amount")
    target = require_target_leverage(target_leverage)
    fee = require_non_negative(flash_loan_fee, "flash_loan_fee")
    slippage = pct_to_fraction(require_non_negative(slippage_pct, "slippage_pct"))
    k = erosion_factor(slippage_pct, fee)
    m = leverage_ratio(target)
    p = shares_per_token(holdings, debt_mint, price_debt_in_other)

    if deposit_is_collateral:
        coll = div(mul(amount, k), k - m)
        flash = div(mul(coll - amount, ONE + slippage), p)
        swap_in = flash
        swap_out = coll - amount
        init_deposit = amount
    else:
        coll = div(mul(amount, p, ONE + fee), k - m)
        flash = div(mul(coll, ONE + slippage), p) - amount
        swap_in = flash + amount
        swap_out = coll
        init_deposit = ZERO

    calcs = BasketDepositCalcs(
        flash_borrow_in_debt=flash,
        init_deposit_in_coll=init_deposit,
        coll_token_to_deposit=coll,
        debt_token_to_borrow=mul(flash, ONE + fee),
        swap_debt_in=swap_in,
        swap_coll_expected_out=swap_out,
        price_debt_to_coll=p,
    )
    logger.debug("Basket deposit calcs: %s", calcs)
    return calcs
