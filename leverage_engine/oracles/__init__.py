"""Price providers."""
from .pyth import PythPriceProvider

__all__ = ["PythPriceProvider"]
