"""Chain client protocol — ledger RPC abstraction."""
from typing import Protocol

from solders.pubkey import Pubkey


class ChainClient(Protocol):
    """Abstract interface for the ledger reads the engine needs."""

    async def get_slot(self) -> int: ...

    async def get_token_account_balance(self, token_account: Pubkey) -> int: ...

    async def account_exists(self, address: Pubkey) -> bool: ...
