"""Exception hierarchy for the leverage engine."""
from __future__ import annotations


class LeverageError(Exception):
    """Base class for every error raised by the engine."""


class InvalidPrice(LeverageError, ValueError):
    """A price is zero, negative or not finite."""


class PriceUnavailable(InvalidPrice):
    """The price provider returned no usable price."""


class InvalidLeverageTarget(LeverageError, ValueError):
    """Target leverage <= 1, or the operation would leave the position insolvent."""


class SwapUnavailable(LeverageError):
    """The swap provider could not produce a route for a request."""


class LookupTableProvisioningError(LeverageError):
    """An auxiliary lookup table could not be provisioned; nothing was built."""


class AccountBudgetExceeded(LeverageError):
    """Accounts that cannot be routed through lookup tables exceed the ceiling."""
