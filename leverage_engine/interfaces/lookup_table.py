"""Lookup table provider protocol — auxiliary account reference tables."""
from typing import Protocol, Sequence

from solders.pubkey import Pubkey

from ..models import ProvisionedTable


class LookupTableProvider(Protocol):
    """Creates and fills one lookup table holding ``addresses``."""

    async def provision(
        self, authority: Pubkey, addresses: Sequence[Pubkey]
    ) -> ProvisionedTable: ...
