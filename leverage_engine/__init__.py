"""Flash-loan leverage engine for lending markets."""
from .errors import (
    AccountBudgetExceeded,
    InvalidLeverageTarget,
    InvalidPrice,
    LeverageError,
    LookupTableProvisioningError,
    PriceUnavailable,
    SwapUnavailable,
)
from .logging_setup import configure_logging

__all__ = [
    "AccountBudgetExceeded",
    "InvalidLeverageTarget",
    "InvalidPrice",
    "LeverageError",
    "LookupTableProvisioningError",
    "PriceUnavailable",
    "SwapUnavailable",
    "configure_logging",
]
