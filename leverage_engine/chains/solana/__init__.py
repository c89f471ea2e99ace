"""Solana RPC client and lookup table provisioning."""
from .client import SolanaClient
from .lookup_tables import SolanaLookupTableProvider

__all__ = ["SolanaClient", "SolanaLookupTableProvider"]
