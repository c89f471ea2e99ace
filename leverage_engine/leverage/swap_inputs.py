"""Map leverage calcs onto swap requests.

Plain pairs become a single market swap. Basket shares are reached in two
legs: into a basket, part of the input is first swapped into the other
underlying and both are then minted into shares; out of a basket, shares are
redeemed and the other underlying's portion is swapped into the target.
"""
from __future__ import annotations

import logging
from decimal import ROUND_FLOOR, Decimal

from solders.pubkey import Pubkey

from ..models import BasketHoldings, SwapKind, SwapPlan, SwapRequest
from .basket import holding_of, other_token, other_value_fraction
from .decimals import ZERO, Number, div, mul, require_non_negative, to_lamports

logger = logging.getLogger(__name__)


def market_swap(
    input_lamports: int,
    input_mint: Pubkey,
    output_mint: Pubkey,
    slippage_pct: Number,
) -> SwapPlan:
    request = SwapRequest(
        input_amount=input_lamports,
        input_mint=input_mint,
        output_mint=output_mint,
        slippage_pct=require_non_negative(slippage_pct, "slippage_pct"),
    )
    return SwapPlan(legs=(request,))


def expected_post_borrow_balance(wallet_balance: int, flash_borrowed: int) -> int:
    """Input-token balance the wallet will hold once the flash borrow lands."""
    return wallet_balance + flash_borrowed


def basket_swap_in(
    input_lamports: int,
    input_mint: Pubkey,
    holdings: BasketHoldings,
    price_input_in_other: Number,
    slippage_pct: Number,
    wallet_balance: int = 0,
    flash_borrowed: int = 0,
) -> SwapPlan:
    """Two legs turning ``input_mint`` into basket shares.

    The first leg converts the other underlying's value fraction of the input;
    the mint leg consumes what is left, and its expected input balance includes
    the flash-borrowed lamports that exist only inside the bundle.
    """
    other = other_token(holdings, input_mint)
    slippage = require_non_negative(slippage_pct, "slippage_pct")
    fraction = other_value_fraction(holdings, input_mint, price_input_in_other)
    to_other = int(mul(Decimal(input_lamports), fraction).to_integral_value(rounding=ROUND_FLOOR))

    legs = []
    if to_other > 0:
        legs.append(
            SwapRequest(
                input_amount=to_other,
                input_mint=input_mint,
                output_mint=other,
                slippage_pct=slippage,
            )
        )
    legs.append(
        SwapRequest(
            input_amount=input_lamports - to_other,
            input_mint=input_mint,
            output_mint=holdings.share_mint,
            slippage_pct=slippage,
            kind=SwapKind.BASKET_MINT,
            expected_input_balance=expected_post_borrow_balance(wallet_balance, flash_borrowed),
        )
    )
    plan = SwapPlan(legs=tuple(legs))
    logger.debug("Basket swap-in plan: %s", plan)
    return plan


def basket_swap_out(
    share_lamports: int,
    share_decimals: int,
    output_mint: Pubkey,
    holdings: BasketHoldings,
    other_decimals: int,
    slippage_pct: Number,
) -> SwapPlan:
    """Two legs turning basket shares into ``output_mint``.

    The redeem leg yields both underlyings pro rata; the market leg swaps the
    other underlying's portion (shares / issued * holding) into the target.
    """
    other = other_token(holdings, output_mint)
    slippage = require_non_negative(slippage_pct, "slippage_pct")

    legs = [
        SwapRequest(
            input_amount=share_lamports,
            input_mint=holdings.share_mint,
            output_mint=output_mint,
            slippage_pct=slippage,
            kind=SwapKind.BASKET_REDEEM,
        )
    ]
    if holdings.shares_issued > 0:
        shares = Decimal(share_lamports).scaleb(-share_decimals)
        other_amount = mul(div(shares, holdings.shares_issued), holding_of(holdings, other))
    else:
        other_amount = ZERO
    other_lamports = to_lamports(other_amount, other_decimals, ROUND_FLOOR)
    if other_lamports > 0:
        legs.append(
            SwapRequest(
                input_amount=other_lamports,
                input_mint=other,
                output_mint=output_mint,
                slippage_pct=slippage,
            )
        )
    plan = SwapPlan(legs=tuple(legs))
    logger.debug("Basket swap-out plan: %s", plan)
    return plan
