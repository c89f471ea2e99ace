"""Account-provisioning instructions: token accounts, wrapped SOL, compute budget."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from spl.token.instructions import (
    CloseAccountParams,
    SyncNativeParams,
    close_account,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    sync_native,
)

from ..constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    COMPUTE_BUDGET_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    WRAPPED_SOL_MINT,
)
from ..interfaces.chain import ChainClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenAccounts:
    """Associated token accounts for a set of mints plus what creates / closes them."""

    atas: dict[Pubkey, Pubkey]
    create_instructions: tuple[Instruction, ...]
    close_instructions: tuple[Instruction, ...] = ()


def compute_budget_instructions(unit_limit: int, unit_price: int = 0) -> list[Instruction]:
    """Compute unit limit, plus a priority price when one is set."""
    instructions = [set_compute_unit_limit(unit_limit)]
    if unit_price > 0:
        instructions.append(set_compute_unit_price(unit_price))
    return instructions


def associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    return get_associated_token_address(owner, mint)


async def get_atas_with_create_instructions(
    client: ChainClient,
    owner: Pubkey,
    mints: Iterable[Pubkey],
) -> TokenAccounts:
    """Resolve ``owner``'s token accounts, creating the missing ones idempotently.

    Duplicate mints are resolved once, in first-seen order.
    """
    atas: dict[Pubkey, Pubkey] = {}
    create: list[Instruction] = []
    for mint in mints:
        if mint in atas:
            continue
        ata = associated_token_address(owner, mint)
        atas[mint] = ata
        if not await client.account_exists(ata):
            logger.debug("Token account %s for mint %s is missing; creating", ata, mint)
            create.append(create_idempotent_associated_token_account(owner, owner, mint))
    return TokenAccounts(atas=atas, create_instructions=tuple(create))


def wrap_sol_instructions(owner: Pubkey, lamports: int) -> list[Instruction]:
    """Move native SOL into the owner's wrapped-SOL account and resync its balance."""
    wsol_ata = associated_token_address(owner, WRAPPED_SOL_MINT)
    return [
        transfer(TransferParams(from_pubkey=owner, to_pubkey=wsol_ata, lamports=lamports)),
        sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM_ID, account=wsol_ata)),
    ]


def close_wsol_instruction(owner: Pubkey) -> Instruction:
    """Close the temporary wrapped-SOL account, returning its lamports to ``owner``."""
    return close_account(
        CloseAccountParams(
            program_id=TOKEN_PROGRAM_ID,
            account=associated_token_address(owner, WRAPPED_SOL_MINT),
            dest=owner,
            owner=owner,
            signers=[],
        )
    )


def is_compute_budget_instruction(ix: Instruction) -> bool:
    return ix.program_id == COMPUTE_BUDGET_PROGRAM_ID


def remove_budget_and_ata_instructions(
    instructions: Iterable[Instruction],
    provided_atas: Iterable[Pubkey] = (),
) -> list[Instruction]:
    """Drop instructions the bundle already provides.

    Compute-budget instructions always go. Token-account creations go when
    the account is in ``provided_atas``; the bundle's setup phase creates those.
    """
    provided = set(provided_atas)
    kept: list[Instruction] = []
    for ix in instructions:
        if is_compute_budget_instruction(ix):
            continue
        if ix.program_id == ASSOCIATED_TOKEN_PROGRAM_ID and len(ix.accounts) > 1:
            if ix.accounts[1].pubkey in provided:
                continue
        kept.append(ix)
    return kept
