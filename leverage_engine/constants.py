"""Program ids, well-known mints and ledger limits."""
from __future__ import annotations

from decimal import Decimal

from solders.pubkey import Pubkey

KLEND_PROGRAM_ID = Pubkey.from_string("KLend2g3cP87fffoy8q1mQqGKjrxjC8boSyAYavgmjD")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string(
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
)
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string(
    "ComputeBudget111111111111111111111111111111"
)
ADDRESS_LOOKUP_TABLE_PROGRAM_ID = Pubkey.from_string(
    "AddressLookupTab1e1111111111111111111111111"
)
SYSVAR_INSTRUCTIONS_ID = Pubkey.from_string(
    "Sysvar1nstructions1111111111111111111111111"
)

WRAPPED_SOL_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")

LENDING_MARKET_AUTHORITY_SEED = b"lma"

# Ledger limits
MAX_ACCOUNTS_PER_TRANSACTION = 64
MAX_ADDRESSES_PER_LOOKUP_TABLE = 256
LOOKUP_TABLE_EXTEND_CHUNK = 20

SLOTS_PER_YEAR = Decimal(63_072_000)
U64_MAX = 2**64 - 1
