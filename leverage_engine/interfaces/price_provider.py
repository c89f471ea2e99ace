"""Price provider protocol — pairwise price lookup."""
from decimal import Decimal
from typing import Protocol

from solders.pubkey import Pubkey


class PriceProvider(Protocol):
    """Abstract interface for pairwise prices.

    ``get_price(a, b)`` returns how many units of ``b`` one unit of ``a`` is
    worth. Implementations raise ``PriceUnavailable`` instead of returning zero.
    """

    async def get_price(self, token_a: Pubkey, token_b: Pubkey) -> Decimal: ...
