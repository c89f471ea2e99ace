"""Swap providers."""
from .jupiter import JupiterSwapProvider

__all__ = ["JupiterSwapProvider"]
