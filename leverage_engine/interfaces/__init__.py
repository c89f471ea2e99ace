"""Protocol interfaces for the leverage engine collaborators."""
from .basket import BasketShareProvider
from .chain import ChainClient
from .lending import LendingInstructionBuilder, MarketStateReader
from .lookup_table import LookupTableProvider
from .price_provider import PriceProvider
from .swap_provider import SwapProvider

__all__ = [
    "BasketShareProvider",
    "ChainClient",
    "LendingInstructionBuilder",
    "LookupTableProvider",
    "MarketStateReader",
    "PriceProvider",
    "SwapProvider",
]
