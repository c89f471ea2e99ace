"""Decimal helpers — coercion, validation and lamport conversion.

Every amount and price in the engine is a ``decimal.Decimal``. Calc functions
run under :data:`CALC_CONTEXT` (60 significant digits, see
:func:`in_calc_context`) and quantization to a mint's precision always
states its rounding direction:

* ``ROUND_CEILING`` for amounts that must not be under-supplied
  (swap inputs that repay a flash loan, interest-adjusted repayments);
* ``ROUND_FLOOR`` for amounts paid out or borrowed.
"""
from __future__ import annotations

import functools
from decimal import ROUND_CEILING, ROUND_FLOOR, Context, Decimal, InvalidOperation, localcontext
from typing import Any, Callable, TypeVar, Union

from ..errors import InvalidPrice

CALC_CONTEXT = Context(prec=60)

ONE = Decimal(1)
ZERO = Decimal(0)
HUNDRED = Decimal(100)
BPS = Decimal(10_000)

Number = Union[Decimal, int, str, float]

F = TypeVar("F", bound=Callable[..., Any])


def in_calc_context(func: F) -> F:
    """Run ``func`` with :data:`CALC_CONTEXT` as the active decimal context.

    Plain ``+`` and ``-`` inside the body then keep all 60 digits instead of
    rounding to the interpreter default of 28.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        with localcontext(CALC_CONTEXT):
            return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def to_decimal(value: Number) -> Decimal:
    """Coerce ``value`` to ``Decimal`` without binary-float artefacts.

    Floats are routed through ``str`` so ``0.1`` becomes ``Decimal("0.1")``.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise ValueError(f"Not a decimal number: {value!r}") from e


def require_price(value: Number, name: str = "price") -> Decimal:
    """Return ``value`` as Decimal, raising InvalidPrice unless positive and finite."""
    try:
        price = to_decimal(value)
    except ValueError as e:
        raise InvalidPrice(f"{name} is not a number: {value!r}") from e
    if not price.is_finite() or price <= 0:
        raise InvalidPrice(f"{name} must be positive and finite, got {value!r}")
    return price


def require_non_negative(value: Number, name: str) -> Decimal:
    amount = to_decimal(value)
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"{name} must be a non-negative finite amount, got {value!r}")
    return amount


def pct_to_fraction(pct: Number) -> Decimal:
    """0.5 (percent) → 0.005."""
    return CALC_CONTEXT.divide(to_decimal(pct), HUNDRED)


def div(a: Decimal, b: Decimal) -> Decimal:
    return CALC_CONTEXT.divide(a, b)


def mul(*factors: Decimal) -> Decimal:
    result = ONE
    for f in factors:
        result = CALC_CONTEXT.multiply(result, f)
    return result


def round_to_decimals(value: Decimal, decimals: int, rounding: str) -> Decimal:
    """Quantize ``value`` to ``decimals`` places with an explicit rounding mode."""
    return value.quantize(Decimal(1).scaleb(-decimals), rounding=rounding, context=CALC_CONTEXT)


def to_lamports(amount: Decimal, decimals: int, rounding: str = ROUND_FLOOR) -> int:
    """Convert a UI amount to integer base units."""
    scaled = CALC_CONTEXT.multiply(amount, Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=rounding))


def from_lamports(lamports: int, decimals: int) -> Decimal:
    return Decimal(lamports).scaleb(-decimals)


def ceil_lamports(amount: Decimal, decimals: int) -> int:
    return to_lamports(amount, decimals, ROUND_CEILING)


def floor_lamports(amount: Decimal, decimals: int) -> int:
    return to_lamports(amount, decimals, ROUND_FLOOR)
