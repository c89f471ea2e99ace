"""Address lookup table provisioning."""
from __future__ import annotations

import logging
import struct
from typing import Sequence

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ...constants import (
    ADDRESS_LOOKUP_TABLE_PROGRAM_ID,
    LOOKUP_TABLE_EXTEND_CHUNK,
    MAX_ADDRESSES_PER_LOOKUP_TABLE,
    SYSTEM_PROGRAM_ID,
)
from ...interfaces import ChainClient
from ...leverage.assembler import chunked
from ...models import ProvisionedTable

logger = logging.getLogger(__name__)

CREATE_LOOKUP_TABLE = 0
EXTEND_LOOKUP_TABLE = 2


def derive_lookup_table_address(authority: Pubkey, recent_slot: int) -> tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [bytes(authority), struct.pack("<Q", recent_slot)],
        ADDRESS_LOOKUP_TABLE_PROGRAM_ID,
    )


def _table_accounts(table: Pubkey, authority: Pubkey) -> list[AccountMeta]:
    return [
        AccountMeta(pubkey=table, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]


def create_lookup_table_instruction(
    authority: Pubkey, recent_slot: int
) -> tuple[Instruction, Pubkey]:
    """Create instruction (authority pays) and the derived table address."""
    table, bump = derive_lookup_table_address(authority, recent_slot)
    data = struct.pack("<IQB", CREATE_LOOKUP_TABLE, recent_slot, bump)
    return (
        Instruction(ADDRESS_LOOKUP_TABLE_PROGRAM_ID, data, _table_accounts(table, authority)),
        table,
    )


def extend_lookup_table_instruction(
    table: Pubkey, authority: Pubkey, addresses: Sequence[Pubkey]
) -> Instruction:
    data = struct.pack("<IQ", EXTEND_LOOKUP_TABLE, len(addresses)) + b"".join(
        bytes(a) for a in addresses
    )
    return Instruction(ADDRESS_LOOKUP_TABLE_PROGRAM_ID, data, _table_accounts(table, authority))


class SolanaLookupTableProvider:
    """Builds the create and extend units for one fresh lookup table.

    The first unit creates the table and adds the first chunk of
    addresses; every further chunk lands in its own unit. All units must
    confirm before the bundle that references the table is sent.
    """

    def __init__(self, client: ChainClient, chunk_size: int = LOOKUP_TABLE_EXTEND_CHUNK) -> None:
        self.client = client
        self.chunk_size = chunk_size

    async def provision(
        self, authority: Pubkey, addresses: Sequence[Pubkey]
    ) -> ProvisionedTable:
        addresses = tuple(addresses)
        if not addresses:
            raise ValueError("Cannot provision an empty lookup table")
        if len(addresses) > MAX_ADDRESSES_PER_LOOKUP_TABLE:
            raise ValueError(
                f"{len(addresses)} addresses exceed the lookup table capacity "
                f"of {MAX_ADDRESSES_PER_LOOKUP_TABLE}"
            )

        recent_slot = await self.client.get_slot()
        create_ix, table = create_lookup_table_instruction(authority, recent_slot)

        chunks = chunked(addresses, self.chunk_size)
        units: list[tuple[Instruction, ...]] = [
            (create_ix, extend_lookup_table_instruction(table, authority, chunks[0]))
        ]
        for chunk in chunks[1:]:
            units.append((extend_lookup_table_instruction(table, authority, chunk),))

        logger.info(
            "Lookup table %s: %d addresses in %d units (slot %d)",
            table,
            len(addresses),
            len(units),
            recent_slot,
        )
        return ProvisionedTable(address=table, addresses=addresses, units=tuple(units))
