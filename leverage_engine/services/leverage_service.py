"""Leverage orchestration — wires collaborators, reads fresh state, dispatches intents."""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

from solders.pubkey import Pubkey

from ..chains.solana import SolanaClient, SolanaLookupTableProvider
from ..config import AppConfig
from ..errors import InvalidLeverageTarget
from ..interfaces.basket import BasketShareProvider
from ..interfaces.chain import ChainClient
from ..interfaces.lending import LendingInstructionBuilder, MarketStateReader
from ..interfaces.lookup_table import LookupTableProvider
from ..interfaces.price_provider import PriceProvider
from ..interfaces.swap_provider import SwapProvider
from ..leverage.assembler import AtomicTxAssembler
from ..leverage.basket import other_token
from ..leverage.calcs import calculate_multiply_effects
from ..leverage.flash_loan import FlashLoanCoordinator
from ..leverage.operations import BasketContext, LeverageOperations, OperationResult
from ..models import Direction, LeverageIntent, MultiplyEffects, PriceQuote, ReserveInfo
from ..oracles import PythPriceProvider
from ..swaps import JupiterSwapProvider

logger = logging.getLogger(__name__)


class LeverageService:
    """Builds leverage bundles for one lending market from fresh state.

    The lending builder and state reader are protocol specific and always
    injected. Price, swap, chain and lookup table collaborators default to
    the live implementations built from ``config``.

    Typical wiring from an entry point::

        configure_logging("INFO")
        service = LeverageService(load_config(), lending, state)
        result = await service.build_bundle(owner, intent)
    """

    def __init__(
        self,
        config: AppConfig,
        lending: LendingInstructionBuilder,
        state: MarketStateReader,
        prices: PriceProvider | None = None,
        swapper: SwapProvider | None = None,
        chain: ChainClient | None = None,
        lookup_tables: LookupTableProvider | None = None,
        basket: BasketShareProvider | None = None,
    ) -> None:
        self._config = config
        self._leverage = config.leverage
        self._state = state
        self._basket = basket

        self._chain: ChainClient = chain or SolanaClient(config.chain)
        self._prices: PriceProvider = prices or PythPriceProvider(
            config.price_oracle.pyth, config.market
        )
        self._swapper: SwapProvider = swapper or JupiterSwapProvider(config.swap.jupiter)
        tables = lookup_tables or SolanaLookupTableProvider(self._chain)

        coordinator = FlashLoanCoordinator(state.market)
        assembler = AtomicTxAssembler(
            coordinator,
            lookup_tables=tables,
            max_accounts=self._leverage.max_accounts_per_transaction,
        )
        self._operations = LeverageOperations(
            chain=self._chain,
            swapper=self._swapper,
            lending=lending,
            coordinator=coordinator,
            assembler=assembler,
            compute_unit_limit=self._leverage.compute_unit_limit,
            compute_unit_price=self._leverage.compute_unit_price,
        )

    # ------------------------------------------------------------------
    # Fresh state
    # ------------------------------------------------------------------

    async def get_quote(self, collateral_mint: Pubkey, debt_mint: Pubkey) -> PriceQuote:
        """Both price directions, fetched together; either failure aborts."""
        coll_to_debt, debt_to_coll = await asyncio.gather(
            self._prices.get_price(collateral_mint, debt_mint),
            self._prices.get_price(debt_mint, collateral_mint),
        )
        quote = PriceQuote(coll_to_debt=coll_to_debt, debt_to_coll=debt_to_coll)
        logger.info(
            "Price quote %s/%s: %s (inverse %s)",
            collateral_mint,
            debt_mint,
            quote.coll_to_debt,
            quote.debt_to_coll,
        )
        return quote

    def _token_decimals(self, mint: Pubkey) -> int:
        symbol = self._config.market.symbol_for_mint(str(mint))
        if symbol is None:
            raise ValueError(f"No token configured for mint {mint}")
        return self._config.market.tokens[symbol].decimals

    async def _basket_context(
        self, collateral_mint: Pubkey, debt_mint: Pubkey
    ) -> BasketContext | None:
        if self._basket is None or not self._basket.is_basket_share(collateral_mint):
            return None
        holdings = await self._basket.get_holdings(collateral_mint)
        other = other_token(holdings, debt_mint)
        price = await self._prices.get_price(debt_mint, other)
        return BasketContext(
            provider=self._basket,
            holdings=holdings,
            price_debt_in_other=price,
            other_decimals=self._token_decimals(other),
        )

    async def _pricing(
        self, collateral_mint: Pubkey, debt_mint: Pubkey
    ) -> tuple[PriceQuote, BasketContext | None]:
        """Oracle quote for plain collateral; basket shares are priced from their holdings."""
        basket = await self._basket_context(collateral_mint, debt_mint)
        if basket is None:
            return await self.get_quote(collateral_mint, debt_mint), None
        quote = basket.quote(debt_mint)
        logger.info(
            "Basket quote %s/%s from holdings: %s (inverse %s)",
            collateral_mint,
            debt_mint,
            quote.coll_to_debt,
            quote.debt_to_coll,
        )
        return quote, basket

    def _slippage(self, slippage_pct: Decimal | None) -> Decimal:
        return self._leverage.default_slippage_pct if slippage_pct is None else slippage_pct

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def build_bundle(self, owner: Pubkey, intent: LeverageIntent) -> OperationResult:
        """Read fresh reserves, position and prices, then build one bundle."""
        coll, debt = await asyncio.gather(
            self._state.get_reserve(intent.collateral_mint),
            self._state.get_reserve(intent.debt_mint),
        )
        quote, basket = await self._pricing(intent.collateral_mint, intent.debt_mint)
        slippage = self._slippage(intent.slippage_pct)

        logger.info(
            "Building %s bundle for %s (%s/%s)",
            intent.direction.value,
            owner,
            coll.symbol or coll.mint,
            debt.symbol or debt.mint,
        )

        if intent.direction == Direction.DEPOSIT:
            return await self._operations.deposit(
                owner,
                coll,
                debt,
                deposit_amount=intent.amount,
                selected_is_collateral=intent.selected_is_collateral,
                quote=quote,
                target_leverage=intent.target_leverage,
                slippage_pct=slippage,
                basket=basket,
            )

        position = await self._state.get_position(owner, intent.collateral_mint, intent.debt_mint)

        if intent.direction == Direction.ADJUST:
            return await self._operations.adjust(
                owner,
                coll,
                debt,
                position=position,
                quote=quote,
                target_leverage=intent.target_leverage,
                slippage_pct=slippage,
                basket=basket,
            )

        if intent.direction in (Direction.WITHDRAW, Direction.CLOSE):
            closing = intent.direction == Direction.CLOSE
            amount = intent.amount
            if closing:
                amount = position.deposited_amount
            return await self._operations.withdraw(
                owner,
                coll,
                debt,
                position=position,
                withdraw_amount=amount,
                selected_is_collateral=intent.selected_is_collateral,
                quote=quote,
                slippage_pct=slippage,
                is_closing_position=closing,
                interest_margin_bps=self._leverage.repay_interest_margin_bps,
                basket=basket,
            )

        raise ValueError(f"Unknown direction: {intent.direction}")

    async def repay_with_collateral(
        self,
        owner: Pubkey,
        collateral_mint: Pubkey,
        debt_mint: Pubkey,
        repay_amount: Decimal,
        is_closing_position: bool = False,
        slippage_pct: Decimal | None = None,
    ) -> OperationResult:
        coll, debt = await asyncio.gather(
            self._state.get_reserve(collateral_mint),
            self._state.get_reserve(debt_mint),
        )
        position = await self._state.get_position(owner, collateral_mint, debt_mint)
        if position.borrowed_amount <= 0:
            raise InvalidLeverageTarget("Position has no debt to repay")
        quote, basket = await self._pricing(collateral_mint, debt_mint)
        return await self._operations.repay_with_collateral(
            owner,
            coll,
            debt,
            position=position,
            repay_amount=repay_amount,
            quote=quote,
            slippage_pct=self._slippage(slippage_pct),
            is_closing_position=is_closing_position,
            interest_margin_bps=self._leverage.repay_interest_margin_bps,
            basket=basket,
        )

    async def preview(self, owner: Pubkey, intent: LeverageIntent) -> MultiplyEffects:
        """Post-operation totals for ``intent`` without building instructions."""
        position, (quote, _) = await asyncio.gather(
            self._state.get_position(owner, intent.collateral_mint, intent.debt_mint),
            self._pricing(intent.collateral_mint, intent.debt_mint),
        )
        return calculate_multiply_effects(
            intent.direction,
            position,
            quote,
            amount=intent.amount or Decimal(0),
            selected_is_collateral=intent.selected_is_collateral,
            target_leverage=intent.target_leverage,
        )
