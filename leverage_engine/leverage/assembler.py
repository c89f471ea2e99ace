"""Atomic bundle assembly.

Phases are appended in a fixed order::

    SETUP -> FLASH_BORROW -> [SWAP if swap_first] -> LENDING_OP_A -> IN_BETWEEN
          -> LENDING_OP_B -> [SWAP otherwise] -> FLASH_REPAY -> CLEANUP

The bundle is built in two passes. The first pass lays every phase out with a
placeholder where the flash repay goes; the second pass resolves the borrow's
index from the finished layout and swaps the real repay instruction in.

When the bundle references more distinct accounts than one transaction may
carry, the accounts that can be looked up (non-signers that are not invoked
programs) are moved into lookup tables provisioned in separate preceding
units. Any provisioning failure aborts the build.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence, Union

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ..constants import MAX_ACCOUNTS_PER_TRANSACTION, MAX_ADDRESSES_PER_LOOKUP_TABLE
from ..errors import AccountBudgetExceeded, LookupTableProvisioningError
from ..interfaces.lookup_table import LookupTableProvider
from ..models import (
    BundlePhase,
    FlashLoanPlan,
    InstructionBundle,
    LendingAction,
    Phase,
    ProvisionedTable,
    SwapPlan,
)
from .flash_loan import FlashLoanCoordinator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingFlashRepay:
    """Stands in for the flash repay until the borrow index is known."""

    plan: FlashLoanPlan


Slot = Union[Instruction, PendingFlashRepay]

_SWAP_FIRST_ORDER = (
    Phase.SETUP,
    Phase.FLASH_BORROW,
    Phase.SWAP,
    Phase.LENDING_OP_A,
    Phase.IN_BETWEEN,
    Phase.LENDING_OP_B,
    Phase.FLASH_REPAY,
    Phase.CLEANUP,
)
_SWAP_LAST_ORDER = (
    Phase.SETUP,
    Phase.FLASH_BORROW,
    Phase.LENDING_OP_A,
    Phase.IN_BETWEEN,
    Phase.LENDING_OP_B,
    Phase.SWAP,
    Phase.FLASH_REPAY,
    Phase.CLEANUP,
)


class PhaseLayout:
    """Ordered phase slots; appending a phase out of order raises."""

    def __init__(self, swap_first: bool = False) -> None:
        self._order = _SWAP_FIRST_ORDER if swap_first else _SWAP_LAST_ORDER
        self._phases: list[tuple[Phase, list[Slot]]] = []

    def append(self, phase: Phase, slots: Iterable[Slot]) -> None:
        position = self._order.index(phase)
        if self._phases:
            last = self._order.index(self._phases[-1][0])
            if position < last:
                raise ValueError(
                    f"Phase {phase.value} cannot follow {self._phases[-1][0].value}"
                )
            if position == last:
                self._phases[-1][1].extend(slots)
                return
        self._phases.append((phase, list(slots)))

    def index_of(self, phase: Phase) -> int:
        """Position of the first instruction of ``phase`` in the flattened layout."""
        index = 0
        for p, slots in self._phases:
            if p == phase:
                return index
            index += len(slots)
        raise ValueError(f"Layout has no {phase.value} phase")

    def resolve(self, repay: Instruction) -> tuple[BundlePhase, ...]:
        phases: list[BundlePhase] = []
        for phase, slots in self._phases:
            resolved = tuple(repay if isinstance(s, PendingFlashRepay) else s for s in slots)
            phases.append(BundlePhase(phase=phase, instructions=resolved))
        return tuple(phases)


# ---------------------------------------------------------------------------
# Account budgeting
# ---------------------------------------------------------------------------


def collect_accounts(payer: Pubkey, instructions: Sequence[Instruction]) -> list[Pubkey]:
    """Every distinct key the bundle references, fee payer first."""
    seen: dict[Pubkey, None] = {payer: None}
    for ix in instructions:
        seen.setdefault(ix.program_id, None)
        for meta in ix.accounts:
            seen.setdefault(meta.pubkey, None)
    return list(seen)


def split_lookup_eligible(
    payer: Pubkey, instructions: Sequence[Instruction]
) -> tuple[list[Pubkey], list[Pubkey]]:
    """Partition referenced keys into (static, lookup-eligible)."""
    signers = {payer}
    programs: set[Pubkey] = set()
    for ix in instructions:
        programs.add(ix.program_id)
        for meta in ix.accounts:
            if meta.is_signer:
                signers.add(meta.pubkey)

    static: list[Pubkey] = []
    eligible: list[Pubkey] = []
    for key in collect_accounts(payer, instructions):
        if key in signers or key in programs:
            static.append(key)
        else:
            eligible.append(key)
    return static, eligible


def chunked(keys: Sequence[Pubkey], size: int) -> list[list[Pubkey]]:
    return [list(keys[i:i + size]) for i in range(0, len(keys), size)]


class AtomicTxAssembler:
    """Merges setup, lending primitives, swap and the flash pair into one bundle."""

    def __init__(
        self,
        coordinator: FlashLoanCoordinator,
        lookup_tables: LookupTableProvider | None = None,
        max_accounts: int = MAX_ACCOUNTS_PER_TRANSACTION,
    ) -> None:
        self._coordinator = coordinator
        self._lookup_tables = lookup_tables
        self._max_accounts = max_accounts

    async def assemble(
        self,
        owner: Pubkey,
        flash_loan: FlashLoanPlan,
        setup: Sequence[Instruction],
        lending: LendingAction,
        swap: Sequence[Instruction],
        cleanup: Sequence[Instruction] = (),
        swap_first: bool = False,
        swap_lookup_tables: Sequence[Pubkey] = (),
        swap_plan: SwapPlan | None = None,
    ) -> InstructionBundle:
        layout = PhaseLayout(swap_first=swap_first)
        layout.append(Phase.SETUP, setup)
        layout.append(Phase.FLASH_BORROW, [self._coordinator.borrow_instruction(owner, flash_loan)])
        if swap_first:
            layout.append(Phase.SWAP, swap)
        layout.append(Phase.LENDING_OP_A, [*lending.setup, lending.lending[0]])
        layout.append(Phase.IN_BETWEEN, lending.in_between)
        layout.append(Phase.LENDING_OP_B, [lending.lending[1], *lending.cleanup])
        if not swap_first:
            layout.append(Phase.SWAP, swap)
        layout.append(Phase.FLASH_REPAY, [PendingFlashRepay(flash_loan)])
        layout.append(Phase.CLEANUP, cleanup)

        resolved = self._coordinator.resolve(flash_loan, layout.index_of(Phase.FLASH_BORROW))
        phases = layout.resolve(self._coordinator.repay_instruction(owner, resolved))
        instructions = [ix for p in phases for ix in p.instructions]

        tables = await self._budget_accounts(owner, instructions)
        static = (
            split_lookup_eligible(owner, instructions)[0]
            if tables
            else collect_accounts(owner, instructions)
        )

        bundle = InstructionBundle(
            phases=phases,
            flash_loan=resolved,
            lookup_table_addresses=tuple(t.address for t in tables) + tuple(swap_lookup_tables),
            preparation_units=tuple(unit for t in tables for unit in t.units),
            swap_plan=swap_plan,
            static_accounts=tuple(static),
        )
        logger.info(
            "Assembled bundle: %d instructions, %d static accounts, %d lookup tables (%d provisioned)",
            len(instructions),
            len(static),
            len(bundle.lookup_table_addresses),
            len(tables),
        )
        return bundle

    async def _budget_accounts(
        self, owner: Pubkey, instructions: Sequence[Instruction]
    ) -> list[ProvisionedTable]:
        accounts = collect_accounts(owner, instructions)
        if len(accounts) <= self._max_accounts:
            return []

        static, eligible = split_lookup_eligible(owner, instructions)
        if len(static) > self._max_accounts:
            raise AccountBudgetExceeded(
                f"{len(static)} accounts cannot be looked up; ceiling is {self._max_accounts}"
            )
        if self._lookup_tables is None:
            raise LookupTableProvisioningError(
                f"Bundle references {len(accounts)} accounts (ceiling {self._max_accounts}) "
                "and no lookup table provider is configured"
            )

        logger.info(
            "Bundle references %d accounts (ceiling %d); provisioning lookup tables for %d",
            len(accounts),
            self._max_accounts,
            len(eligible),
        )
        tables: list[ProvisionedTable] = []
        for chunk in chunked(eligible, MAX_ADDRESSES_PER_LOOKUP_TABLE):
            try:
                table = await self._lookup_tables.provision(owner, chunk)
            except Exception as e:
                raise LookupTableProvisioningError(f"Lookup table provisioning failed: {e}") from e
            tables.append(table)
        return tables
