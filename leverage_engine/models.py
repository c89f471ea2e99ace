"""Data models — all frozen (immutable)."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from .errors import InvalidLeverageTarget


# ---------------------------------------------------------------------------
# Market state snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MarketInfo:
    """Lending market identity."""

    program_id: Pubkey
    address: Pubkey
    authority: Pubkey


@dataclass(frozen=True)
class ReserveInfo:
    """Snapshot of one reserve as read from the market state collaborator."""

    address: Pubkey
    mint: Pubkey
    decimals: int
    flash_loan_fee: Decimal  # fraction, 0.001 == 0.1%
    liquidity_supply: Pubkey
    fee_receiver: Pubkey
    symbol: str = ""
    cumulative_borrow_rate: Decimal = Decimal(1)
    borrow_apr: Decimal = Decimal(0)
    last_update_slot: int = 0


@dataclass(frozen=True)
class Position:
    """Collateral/debt amounts of one obligation, in token units (not lamports)."""

    deposited_amount: Decimal
    borrowed_amount: Decimal
    collateral_mint: Pubkey
    debt_mint: Pubkey
    obligation: Pubkey | None = None
    borrow_cumulative_rate: Decimal = Decimal(1)

    def __post_init__(self) -> None:
        if self.deposited_amount < 0 or self.borrowed_amount < 0:
            raise ValueError("Position amounts must be non-negative")

    def net_value_in_coll(self, price_debt_to_coll: Decimal) -> Decimal:
        return self.deposited_amount - self.borrowed_amount * price_debt_to_coll

    def leverage(self, price_debt_to_coll: Decimal) -> Decimal:
        """deposited / (deposited - borrowed), valued in collateral units."""
        if self.deposited_amount == 0:
            return Decimal(1) if self.borrowed_amount == 0 else Decimal(0)
        net = self.net_value_in_coll(price_debt_to_coll)
        if net <= 0:
            raise InvalidLeverageTarget(
                "Leverage is undefined: position is at or beyond the fully-leveraged boundary"
            )
        return self.deposited_amount / net


@dataclass(frozen=True)
class PriceQuote:
    """Both price directions, supplied independently."""

    coll_to_debt: Decimal
    debt_to_coll: Decimal


@dataclass(frozen=True)
class BasketHoldings:
    """Pooled balances behind a yield-bearing basket share, in token units."""

    share_mint: Pubkey
    token_a_mint: Pubkey
    token_b_mint: Pubkey
    token_a_amount: Decimal
    token_b_amount: Decimal
    shares_issued: Decimal


# ---------------------------------------------------------------------------
# Intents
# ---------------------------------------------------------------------------


class Direction(str, enum.Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    ADJUST = "adjust"
    CLOSE = "close"


@dataclass(frozen=True)
class LeverageIntent:
    """What the user asked for; created per call."""

    direction: Direction
    collateral_mint: Pubkey
    debt_mint: Pubkey
    selected_mint: Pubkey
    amount: Decimal | None = None
    target_leverage: Decimal | None = None
    slippage_pct: Decimal | None = None

    def __post_init__(self) -> None:
        if self.selected_mint not in (self.collateral_mint, self.debt_mint):
            raise ValueError("selected_mint must be the collateral or the debt mint")
        if self.direction in (Direction.DEPOSIT, Direction.WITHDRAW):
            if self.amount is None or self.amount <= 0:
                raise ValueError(f"{self.direction.value} requires a positive amount")
        if self.direction in (Direction.DEPOSIT, Direction.ADJUST):
            if self.target_leverage is None:
                raise ValueError(f"{self.direction.value} requires a target leverage")

    @property
    def selected_is_collateral(self) -> bool:
        return self.selected_mint == self.collateral_mint


# ---------------------------------------------------------------------------
# Swaps
# ---------------------------------------------------------------------------


class SwapKind(str, enum.Enum):
    MARKET = "market"
    BASKET_MINT = "basket_mint"
    BASKET_REDEEM = "basket_redeem"


@dataclass(frozen=True)
class SwapRequest:
    """Exact-in / minimum-out swap request. Consumed exactly once."""

    input_amount: int  # lamports of input_mint
    input_mint: Pubkey
    output_mint: Pubkey
    slippage_pct: Decimal
    kind: SwapKind = SwapKind.MARKET
    expected_input_balance: int | None = None

    def __post_init__(self) -> None:
        if self.input_amount < 0:
            raise ValueError("Swap input amount must be non-negative")
        if self.input_mint == self.output_mint:
            raise ValueError("Swap input and output mints must differ")


@dataclass(frozen=True)
class SwapPlan:
    """One or two swap legs, executed in order."""

    legs: tuple[SwapRequest, ...]

    @property
    def input_mint(self) -> Pubkey:
        return self.legs[0].input_mint

    @property
    def output_mint(self) -> Pubkey:
        return self.legs[-1].output_mint


@dataclass(frozen=True)
class SwapResult:
    """Instructions returned by a swap collaborator."""

    instructions: tuple[Instruction, ...]
    lookup_table_addresses: tuple[Pubkey, ...] = ()


# ---------------------------------------------------------------------------
# Flash loans and lending actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FlashLoanPlan:
    """Flash borrow of ``amount`` lamports from ``reserve``.

    ``borrow_instruction_index`` stays ``None`` until the assembler knows the
    borrow's final position in the bundle.
    """

    reserve: ReserveInfo
    amount: int
    fee: int
    destination: Pubkey
    borrow_instruction_index: int | None = None

    @property
    def repay_total(self) -> int:
        return self.amount + self.fee


@dataclass(frozen=True)
class LendingAction:
    """Phase-tagged instructions from the lending-primitive builder."""

    setup: tuple[Instruction, ...]
    lending: tuple[Instruction, Instruction]
    in_between: tuple[Instruction, ...] = ()
    cleanup: tuple[Instruction, ...] = ()

    def __post_init__(self) -> None:
        if len(self.lending) != 2:
            raise ValueError("A lending action carries exactly two primitives")


# ---------------------------------------------------------------------------
# Bundles
# ---------------------------------------------------------------------------


class Phase(str, enum.Enum):
    SETUP = "setup"
    FLASH_BORROW = "flash_borrow"
    SWAP = "swap"
    LENDING_OP_A = "lending_op_a"
    IN_BETWEEN = "in_between"
    LENDING_OP_B = "lending_op_b"
    FLASH_REPAY = "flash_repay"
    CLEANUP = "cleanup"


@dataclass(frozen=True)
class BundlePhase:
    phase: Phase
    instructions: tuple[Instruction, ...]


@dataclass(frozen=True)
class ProvisionedTable:
    """A lookup table and the atomic units that create and fill it."""

    address: Pubkey
    addresses: tuple[Pubkey, ...]
    units: tuple[tuple[Instruction, ...], ...]


@dataclass(frozen=True)
class InstructionBundle:
    """Atomic instruction sequence plus what must land before it."""

    phases: tuple[BundlePhase, ...]
    flash_loan: FlashLoanPlan
    lookup_table_addresses: tuple[Pubkey, ...] = ()
    preparation_units: tuple[tuple[Instruction, ...], ...] = ()
    swap_plan: SwapPlan | None = None
    static_accounts: tuple[Pubkey, ...] = ()

    @property
    def instructions(self) -> list[Instruction]:
        return [ix for p in self.phases for ix in p.instructions]

    def phase(self, phase: Phase) -> tuple[Instruction, ...]:
        for p in self.phases:
            if p.phase == phase:
                return p.instructions
        return ()

    @property
    def flash_borrow_index(self) -> int:
        index = 0
        for p in self.phases:
            if p.phase == Phase.FLASH_BORROW:
                return index
            index += len(p.instructions)
        raise ValueError("Bundle has no flash borrow phase")


@dataclass(frozen=True)
class MultiplyEffects:
    """Position totals after a deposit / withdraw / adjust / close."""

    total_deposited: Decimal
    total_borrowed: Decimal
    deposit_change: Decimal
    borrow_change: Decimal
    net_value: Decimal
    leverage: Decimal | None = None
    notes: tuple[str, ...] = field(default_factory=tuple)
