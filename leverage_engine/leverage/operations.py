"""Leveraged operations: calcs -> swap plan -> lending primitives -> bundle.

Each entry point takes a fresh position and price quote, sizes the operation
with the pure calcs, asks the collaborators for swap and lending instructions
and hands everything to the assembler. Nothing is submitted here.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Sequence

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ..constants import U64_MAX, WRAPPED_SOL_MINT
from ..errors import InvalidLeverageTarget, SwapUnavailable
from ..interfaces.basket import BasketShareProvider
from ..interfaces.chain import ChainClient
from ..interfaces.lending import LendingInstructionBuilder
from ..interfaces.swap_provider import SwapProvider
from ..models import (
    BasketHoldings,
    FlashLoanPlan,
    InstructionBundle,
    LendingAction,
    Position,
    PriceQuote,
    ReserveInfo,
    SwapKind,
    SwapPlan,
    SwapRequest,
    SwapResult,
)
from .assembler import AtomicTxAssembler
from .basket import basket_quote, deposit_leverage_basket_calcs, other_token
from .calcs import (
    AdjustLeverageCalcs,
    adjust_leverage_calcs,
    deposit_leverage_calcs,
    is_leverage_increase,
    withdraw_leverage_calcs,
)
from .decimals import ONE, ceil_lamports, div, floor_lamports, to_decimal
from .flash_loan import FlashLoanCoordinator
from .instructions import (
    TokenAccounts,
    close_wsol_instruction,
    compute_budget_instructions,
    get_atas_with_create_instructions,
    remove_budget_and_ata_instructions,
    wrap_sol_instructions,
)
from .repay_calcs import (
    DEFAULT_INTEREST_MARGIN_BPS,
    estimate_interest_accrual,
    interest_adjusted_repay_amount,
    repay_with_coll_calcs,
)
from .swap_inputs import basket_swap_in, basket_swap_out, market_swap

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BasketContext:
    """Basket collateral: its provider, holdings and the debt token's price in the other underlying."""

    provider: BasketShareProvider
    holdings: BasketHoldings
    price_debt_in_other: Decimal
    other_decimals: int

    def quote(self, debt_mint: Pubkey) -> PriceQuote:
        return basket_quote(self.holdings, debt_mint, self.price_debt_in_other)


@dataclass(frozen=True)
class OperationResult:
    bundle: InstructionBundle
    calcs: Any


class LeverageOperations:
    """Builds leverage bundles against one collateral/debt reserve pair."""

    def __init__(
        self,
        chain: ChainClient,
        swapper: SwapProvider,
        lending: LendingInstructionBuilder,
        coordinator: FlashLoanCoordinator,
        assembler: AtomicTxAssembler,
        compute_unit_limit: int,
        compute_unit_price: int = 0,
    ) -> None:
        self._chain = chain
        self._swapper = swapper
        self._lending = lending
        self._coordinator = coordinator
        self._assembler = assembler
        self._compute_unit_limit = compute_unit_limit
        self._compute_unit_price = compute_unit_price

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _token_accounts(
        self, owner: Pubkey, mints: Sequence[Pubkey]
    ) -> tuple[TokenAccounts, list[Instruction], list[Instruction]]:
        """Token accounts plus the setup and cleanup instructions they need."""
        accounts = await get_atas_with_create_instructions(self._chain, owner, mints)
        setup = compute_budget_instructions(self._compute_unit_limit, self._compute_unit_price)
        setup.extend(accounts.create_instructions)
        cleanup: list[Instruction] = []
        wsol_ata = accounts.atas.get(WRAPPED_SOL_MINT)
        if wsol_ata is not None and any(
            ix.accounts[1].pubkey == wsol_ata for ix in accounts.create_instructions
        ):
            cleanup.append(close_wsol_instruction(owner))
        return accounts, setup, cleanup

    async def _swap_instructions(
        self,
        owner: Pubkey,
        plan: SwapPlan,
        basket: BasketContext | None,
        provided_atas: Sequence[Pubkey],
    ) -> tuple[list[Instruction], tuple[Pubkey, ...]]:
        results = await asyncio.gather(
            *(self._swap_leg(owner, leg, basket) for leg in plan.legs)
        )
        instructions: list[Instruction] = []
        tables: list[Pubkey] = []
        for result in results:
            instructions.extend(remove_budget_and_ata_instructions(result.instructions, provided_atas))
            tables.extend(t for t in result.lookup_table_addresses if t not in tables)
        return instructions, tuple(tables)

    async def _swap_leg(
        self, owner: Pubkey, leg: SwapRequest, basket: BasketContext | None
    ) -> SwapResult:
        if leg.kind == SwapKind.MARKET:
            return await self._swapper.get_swap_instructions(leg, owner)
        if basket is None:
            raise SwapUnavailable(f"{leg.kind.value} leg requested without a basket provider")
        if leg.kind == SwapKind.BASKET_MINT:
            ixs = await basket.provider.get_mint_instructions(leg, owner)
        else:
            ixs = await basket.provider.get_redeem_instructions(leg, owner)
        return SwapResult(instructions=tuple(ixs))

    def _mints(
        self, coll: ReserveInfo, debt: ReserveInfo, basket: BasketContext | None
    ) -> list[Pubkey]:
        mints = [coll.mint, debt.mint]
        if basket is not None:
            mints.append(other_token(basket.holdings, debt.mint))
        return mints

    def _swap_out_plan(
        self,
        coll: ReserveInfo,
        debt: ReserveInfo,
        coll_lamports: int,
        slippage_pct: Decimal,
        basket: BasketContext | None,
    ) -> SwapPlan:
        if basket is None:
            return market_swap(coll_lamports, coll.mint, debt.mint, slippage_pct)
        return basket_swap_out(
            coll_lamports,
            coll.decimals,
            debt.mint,
            basket.holdings,
            basket.other_decimals,
            slippage_pct,
        )

    async def _basket_swap_in_plan(
        self,
        owner: Pubkey,
        accounts: TokenAccounts,
        debt: ReserveInfo,
        input_lamports: int,
        flash_lamports: int,
        slippage_pct: Decimal,
        basket: BasketContext,
    ) -> SwapPlan:
        balance = await self._chain.get_token_account_balance(accounts.atas[debt.mint])
        return basket_swap_in(
            input_lamports,
            debt.mint,
            basket.holdings,
            basket.price_debt_in_other,
            slippage_pct,
            wallet_balance=balance,
            flash_borrowed=flash_lamports,
        )

    # ------------------------------------------------------------------
    # Deposit
    # ------------------------------------------------------------------

    async def deposit(
        self,
        owner: Pubkey,
        coll: ReserveInfo,
        debt: ReserveInfo,
        deposit_amount: Decimal,
        selected_is_collateral: bool,
        quote: PriceQuote,
        target_leverage: Decimal,
        slippage_pct: Decimal,
        basket: BasketContext | None = None,
    ) -> OperationResult:
        """Open or grow a leveraged position from a user contribution."""
        if basket is not None:
            return await self._deposit_into_basket(
                owner, coll, debt, deposit_amount, selected_is_collateral,
                target_leverage, slippage_pct, basket,
            )

        calcs = deposit_leverage_calcs(
            deposit_amount,
            selected_is_collateral,
            quote.debt_to_coll,
            target_leverage,
            slippage_pct,
            coll.flash_loan_fee,
        )
        accounts, setup, cleanup = await self._token_accounts(owner, self._mints(coll, debt, None))

        contribution = coll if selected_is_collateral else debt
        contribution_lamports = floor_lamports(to_decimal(deposit_amount), contribution.decimals)
        if contribution.mint == WRAPPED_SOL_MINT:
            setup.extend(wrap_sol_instructions(owner, contribution_lamports))

        flash = self._coordinator.plan(
            coll,
            floor_lamports(calcs.flash_borrow_in_coll, coll.decimals),
            accounts.atas[coll.mint],
        )
        init_deposit = floor_lamports(calcs.init_deposit_in_coll, coll.decimals)
        borrow = floor_lamports(calcs.debt_token_to_borrow, debt.decimals)
        swap_in = borrow if selected_is_collateral else borrow + contribution_lamports

        plan = market_swap(swap_in, debt.mint, coll.mint, slippage_pct)
        lending, (swap_ixs, swap_tables) = await asyncio.gather(
            self._lending.build_deposit_and_borrow(
                owner, coll, debt, init_deposit + flash.amount, borrow
            ),
            self._swap_instructions(owner, plan, None, list(accounts.atas.values())),
        )
        bundle = await self._assembler.assemble(
            owner, flash, setup, lending, swap_ixs, cleanup,
            swap_first=False, swap_lookup_tables=swap_tables, swap_plan=plan,
        )
        return OperationResult(bundle=bundle, calcs=calcs)

    async def _deposit_into_basket(
        self,
        owner: Pubkey,
        coll: ReserveInfo,
        debt: ReserveInfo,
        deposit_amount: Decimal,
        selected_is_collateral: bool,
        target_leverage: Decimal,
        slippage_pct: Decimal,
        basket: BasketContext,
    ) -> OperationResult:
        calcs = deposit_leverage_basket_calcs(
            deposit_amount,
            selected_is_collateral,
            basket.holdings,
            debt.mint,
            basket.price_debt_in_other,
            target_leverage,
            slippage_pct,
            debt.flash_loan_fee,
        )
        accounts, setup, cleanup = await self._token_accounts(
            owner, self._mints(coll, debt, basket)
        )
        if not selected_is_collateral and debt.mint == WRAPPED_SOL_MINT:
            setup.extend(
                wrap_sol_instructions(owner, floor_lamports(to_decimal(deposit_amount), debt.decimals))
            )

        flash = self._coordinator.plan(
            debt,
            floor_lamports(calcs.flash_borrow_in_debt, debt.decimals),
            accounts.atas[debt.mint],
        )
        swap_in = floor_lamports(calcs.swap_debt_in, debt.decimals)
        plan = await self._basket_swap_in_plan(
            owner, accounts, debt, swap_in, flash.amount, slippage_pct, basket
        )
        lending, (swap_ixs, swap_tables) = await asyncio.gather(
            self._lending.build_deposit_and_borrow(
                owner,
                coll,
                debt,
                floor_lamports(calcs.coll_token_to_deposit, coll.decimals),
                flash.repay_total,
            ),
            self._swap_instructions(owner, plan, basket, list(accounts.atas.values())),
        )
        bundle = await self._assembler.assemble(
            owner, flash, setup, lending, swap_ixs, cleanup,
            swap_first=True, swap_lookup_tables=swap_tables, swap_plan=plan,
        )
        return OperationResult(bundle=bundle, calcs=calcs)

    # ------------------------------------------------------------------
    # Withdraw / close
    # ------------------------------------------------------------------

    async def withdraw(
        self,
        owner: Pubkey,
        coll: ReserveInfo,
        debt: ReserveInfo,
        position: Position,
        withdraw_amount: Decimal,
        selected_is_collateral: bool,
        quote: PriceQuote,
        slippage_pct: Decimal,
        is_closing_position: bool = False,
        current_slot: int | None = None,
        interest_margin_bps: Decimal = DEFAULT_INTEREST_MARGIN_BPS,
        basket: BasketContext | None = None,
    ) -> OperationResult:
        """Withdraw at constant leverage, or unwind the whole position when closing."""
        borrowed = position.borrowed_amount
        if is_closing_position:
            borrowed = await self._interest_adjusted(
                borrowed, debt, position, current_slot, interest_margin_bps
            )

        calcs = withdraw_leverage_calcs(
            position.deposited_amount,
            borrowed,
            quote.debt_to_coll,
            withdraw_amount,
            selected_is_collateral,
            slippage_pct,
            debt.flash_loan_fee,
            is_closing_position=is_closing_position,
        )
        if calcs.flash_borrow_in_debt <= 0:
            raise InvalidLeverageTarget("Position has no debt to unwind; withdraw directly")

        accounts, setup, cleanup = await self._token_accounts(
            owner, self._mints(coll, debt, basket)
        )
        flash = self._coordinator.plan(
            debt,
            ceil_lamports(calcs.flash_borrow_in_debt, debt.decimals),
            accounts.atas[debt.mint],
        )
        swap_in = ceil_lamports(calcs.swap_coll_in, coll.decimals)
        if is_closing_position:
            repay = U64_MAX
            withdraw = floor_lamports(position.deposited_amount, coll.decimals)
            swap_in = min(swap_in, withdraw)
        else:
            repay = flash.amount
            withdraw = swap_in
            if selected_is_collateral:
                withdraw += floor_lamports(calcs.withdraw_to_user, coll.decimals)

        plan = self._swap_out_plan(coll, debt, swap_in, slippage_pct, basket)
        lending, (swap_ixs, swap_tables) = await asyncio.gather(
            self._lending.build_repay_and_withdraw(
                owner, coll, debt, repay, withdraw, is_closing_position
            ),
            self._swap_instructions(owner, plan, basket, list(accounts.atas.values())),
        )
        bundle = await self._assembler.assemble(
            owner, flash, setup, lending, swap_ixs, cleanup,
            swap_first=False, swap_lookup_tables=swap_tables, swap_plan=plan,
        )
        return OperationResult(bundle=bundle, calcs=calcs)

    # ------------------------------------------------------------------
    # Adjust
    # ------------------------------------------------------------------

    async def adjust(
        self,
        owner: Pubkey,
        coll: ReserveInfo,
        debt: ReserveInfo,
        position: Position,
        quote: PriceQuote,
        target_leverage: Decimal,
        slippage_pct: Decimal,
        basket: BasketContext | None = None,
    ) -> OperationResult:
        """Move an existing position to ``target_leverage``."""
        increase = is_leverage_increase(
            position.deposited_amount, position.borrowed_amount, quote.debt_to_coll, target_leverage
        )
        # going up without a basket flash-borrows collateral; every other path borrows debt
        flash_reserve = coll if increase and basket is None else debt
        calcs = adjust_leverage_calcs(
            position.deposited_amount,
            position.borrowed_amount,
            quote.debt_to_coll,
            target_leverage,
            slippage_pct,
            flash_reserve.flash_loan_fee,
        )
        if calcs.is_noop:
            raise InvalidLeverageTarget(f"Position is already at leverage {target_leverage}")

        accounts, setup, cleanup = await self._token_accounts(
            owner, self._mints(coll, debt, basket)
        )
        atas = list(accounts.atas.values())
        if calcs.is_increase:
            flash, lending, plan, swap_first = await self._adjust_up(
                owner, accounts, coll, debt, calcs, slippage_pct, basket
            )
        else:
            flash = self._coordinator.plan(
                debt,
                floor_lamports(calcs.flash_borrow, debt.decimals),
                accounts.atas[debt.mint],
            )
            swap_in = ceil_lamports(calcs.swap_in, coll.decimals)
            plan = self._swap_out_plan(coll, debt, swap_in, slippage_pct, basket)
            lending = await self._lending.build_repay_and_withdraw(
                owner, coll, debt, flash.amount, swap_in, False
            )
            swap_first = False

        swap_ixs, swap_tables = await self._swap_instructions(owner, plan, basket, atas)
        bundle = await self._assembler.assemble(
            owner, flash, setup, lending, swap_ixs, cleanup,
            swap_first=swap_first, swap_lookup_tables=swap_tables, swap_plan=plan,
        )
        return OperationResult(bundle=bundle, calcs=calcs)

    async def _adjust_up(
        self,
        owner: Pubkey,
        accounts: TokenAccounts,
        coll: ReserveInfo,
        debt: ReserveInfo,
        calcs: AdjustLeverageCalcs,
        slippage_pct: Decimal,
        basket: BasketContext | None,
    ) -> tuple[FlashLoanPlan, LendingAction, SwapPlan, bool]:
        if basket is None:
            flash = self._coordinator.plan(
                coll,
                floor_lamports(calcs.flash_borrow, coll.decimals),
                accounts.atas[coll.mint],
            )
            borrow = floor_lamports(calcs.debt_change, debt.decimals)
            plan = market_swap(borrow, debt.mint, coll.mint, slippage_pct)
            lending = await self._lending.build_deposit_and_borrow(
                owner, coll, debt, flash.amount, borrow
            )
            return flash, lending, plan, False

        # Basket shares cannot be flash-borrowed: borrow debt and buy shares first
        flash_debt = div(calcs.debt_change, ONE + debt.flash_loan_fee)
        flash = self._coordinator.plan(
            debt, floor_lamports(flash_debt, debt.decimals), accounts.atas[debt.mint]
        )
        plan = await self._basket_swap_in_plan(
            owner, accounts, debt, flash.amount, flash.amount, slippage_pct, basket
        )
        lending = await self._lending.build_deposit_and_borrow(
            owner,
            coll,
            debt,
            floor_lamports(calcs.coll_change, coll.decimals),
            flash.repay_total,
        )
        return flash, lending, plan, True

    # ------------------------------------------------------------------
    # Repay with collateral
    # ------------------------------------------------------------------

    async def repay_with_collateral(
        self,
        owner: Pubkey,
        coll: ReserveInfo,
        debt: ReserveInfo,
        position: Position,
        repay_amount: Decimal,
        quote: PriceQuote,
        slippage_pct: Decimal,
        is_closing_position: bool,
        current_slot: int | None = None,
        interest_margin_bps: Decimal = DEFAULT_INTEREST_MARGIN_BPS,
        basket: BasketContext | None = None,
    ) -> OperationResult:
        """Repay debt by selling collateral through a flash loan."""
        amount = await self._interest_adjusted(
            to_decimal(repay_amount), debt, position, current_slot, interest_margin_bps
        )
        calcs = repay_with_coll_calcs(amount, quote.debt_to_coll, slippage_pct, debt.flash_loan_fee)
        logger.info(
            "Repay with collateral: repay %s (adjusted from %s), sell up to %s collateral",
            calcs.repay_amount,
            repay_amount,
            calcs.coll_to_swap_in,
        )

        accounts, setup, cleanup = await self._token_accounts(
            owner, self._mints(coll, debt, basket)
        )
        flash = self._coordinator.plan(
            debt,
            floor_lamports(calcs.repay_amount, debt.decimals),
            accounts.atas[debt.mint],
        )
        swap_in = ceil_lamports(calcs.coll_to_swap_in, coll.decimals)
        plan = self._swap_out_plan(coll, debt, swap_in, slippage_pct, basket)
        lending, (swap_ixs, swap_tables) = await asyncio.gather(
            self._lending.build_repay_and_withdraw(
                owner,
                coll,
                debt,
                U64_MAX if is_closing_position else flash.amount,
                swap_in,
                is_closing_position,
            ),
            self._swap_instructions(owner, plan, basket, list(accounts.atas.values())),
        )
        bundle = await self._assembler.assemble(
            owner, flash, setup, lending, swap_ixs, cleanup,
            swap_first=False, swap_lookup_tables=swap_tables, swap_plan=plan,
        )
        return OperationResult(bundle=bundle, calcs=calcs)

    async def _interest_adjusted(
        self,
        amount: Decimal,
        debt: ReserveInfo,
        position: Position,
        current_slot: int | None,
        margin_bps: Decimal,
    ) -> Decimal:
        """``amount`` grown by interest accrued since the obligation's last refresh plus a margin."""
        if current_slot is None:
            current_slot = await self._chain.get_slot()
        accrual = estimate_interest_accrual(
            debt.cumulative_borrow_rate,
            debt.borrow_apr,
            debt.last_update_slot,
            position.borrow_cumulative_rate,
            current_slot,
        )
        return interest_adjusted_repay_amount(amount, accrual, debt.decimals, margin_bps)
