"""Integration tests for the leverage service — fresh state reads and intent dispatch."""
from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from leverage_engine.config import AppConfig
from leverage_engine.constants import U64_MAX, WRAPPED_SOL_MINT
from leverage_engine.errors import InvalidLeverageTarget, PriceUnavailable
from leverage_engine.models import (
    BasketHoldings,
    Direction,
    LendingAction,
    LeverageIntent,
    MarketInfo,
    Phase,
    Position,
    ReserveInfo,
    SwapKind,
    SwapResult,
)
from leverage_engine.services import LeverageService


def _ix(tag: bytes) -> Instruction:
    return Instruction(
        Pubkey.new_unique(),
        tag,
        [AccountMeta(pubkey=Pubkey.new_unique(), is_signer=False, is_writable=True)],
    )


def _action(*_args, **_kwargs) -> LendingAction:
    return LendingAction(setup=(), lending=(_ix(b"first"), _ix(b"second")))


@pytest.fixture()
def state(
    market_info: MarketInfo,
    sol_reserve: ReserveInfo,
    usdc_reserve: ReserveInfo,
    sol_usdc_position: Position,
) -> MagicMock:
    reserves = {sol_reserve.mint: sol_reserve, usdc_reserve.mint: usdc_reserve}
    state = MagicMock()
    state.market = market_info
    state.get_reserve = AsyncMock(side_effect=lambda mint: reserves[mint])
    state.get_position = AsyncMock(return_value=sol_usdc_position)
    return state


@pytest.fixture()
def lending() -> MagicMock:
    lending = MagicMock()
    lending.build_deposit_and_borrow = AsyncMock(side_effect=_action)
    lending.build_repay_and_withdraw = AsyncMock(side_effect=_action)
    return lending


@pytest.fixture()
def prices(sol_reserve: ReserveInfo) -> AsyncMock:
    def price(token_a: Pubkey, token_b: Pubkey) -> Decimal:
        return Decimal(150) if token_a == sol_reserve.mint else Decimal(1) / Decimal(150)

    prices = AsyncMock()
    prices.get_price = AsyncMock(side_effect=price)
    return prices


@pytest.fixture()
def chain() -> AsyncMock:
    chain = AsyncMock()
    chain.account_exists = AsyncMock(return_value=True)
    chain.get_slot = AsyncMock(return_value=100)
    chain.get_token_account_balance = AsyncMock(return_value=0)
    return chain


@pytest.fixture()
def swapper() -> AsyncMock:
    swapper = AsyncMock()
    swapper.get_swap_instructions = AsyncMock(return_value=SwapResult(instructions=(_ix(b"route"),)))
    return swapper


@pytest.fixture()
def service(
    sample_app_config: AppConfig,
    lending: MagicMock,
    state: MagicMock,
    prices: AsyncMock,
    swapper: AsyncMock,
    chain: AsyncMock,
) -> LeverageService:
    return LeverageService(
        sample_app_config,
        lending,
        state,
        prices=prices,
        swapper=swapper,
        chain=chain,
        lookup_tables=AsyncMock(),
    )


def _intent(direction: Direction, sol: ReserveInfo, usdc: ReserveInfo, **kwargs):
    return LeverageIntent(
        direction=direction,
        collateral_mint=sol.mint,
        debt_mint=usdc.mint,
        selected_mint=kwargs.pop("selected_mint", sol.mint),
        **kwargs,
    )


class TestGetQuote:
    @pytest.mark.asyncio
    async def test_both_directions(
        self, service: LeverageService, sol_reserve: ReserveInfo, usdc_reserve: ReserveInfo
    ) -> None:
        quote = await service.get_quote(sol_reserve.mint, usdc_reserve.mint)
        assert quote.coll_to_debt == 150
        assert quote.debt_to_coll == Decimal(1) / Decimal(150)

    @pytest.mark.asyncio
    async def test_price_failure_aborts(
        self,
        service: LeverageService,
        prices: AsyncMock,
        lending: MagicMock,
        sol_reserve: ReserveInfo,
        usdc_reserve: ReserveInfo,
    ) -> None:
        prices.get_price = AsyncMock(side_effect=PriceUnavailable("stale"))
        intent = _intent(
            Direction.DEPOSIT, sol_reserve, usdc_reserve,
            amount=Decimal(1), target_leverage=Decimal(2),
        )
        with pytest.raises(PriceUnavailable):
            await service.build_bundle(Pubkey.new_unique(), intent)
        lending.build_deposit_and_borrow.assert_not_awaited()


class TestBuildBundle:
    @pytest.mark.asyncio
    async def test_deposit_skips_position_read(
        self,
        service: LeverageService,
        state: MagicMock,
        lending: MagicMock,
        swapper: AsyncMock,
        sol_reserve: ReserveInfo,
        usdc_reserve: ReserveInfo,
    ) -> None:
        intent = _intent(
            Direction.DEPOSIT, sol_reserve, usdc_reserve,
            amount=Decimal(1), target_leverage=Decimal(2),
        )
        result = await service.build_bundle(Pubkey.new_unique(), intent)

        state.get_position.assert_not_awaited()
        lending.build_deposit_and_borrow.assert_awaited_once()
        (request, _), _ = swapper.get_swap_instructions.await_args
        # default slippage from config: 0.5%
        assert request.slippage_pct == Decimal("0.5")
        assert result.bundle.flash_loan.reserve == sol_reserve

    @pytest.mark.asyncio
    async def test_intent_slippage_wins(
        self,
        service: LeverageService,
        swapper: AsyncMock,
        sol_reserve: ReserveInfo,
        usdc_reserve: ReserveInfo,
    ) -> None:
        intent = _intent(
            Direction.DEPOSIT, sol_reserve, usdc_reserve,
            amount=Decimal(1), target_leverage=Decimal(2), slippage_pct=Decimal("1"),
        )
        await service.build_bundle(Pubkey.new_unique(), intent)
        (request, _), _ = swapper.get_swap_instructions.await_args
        assert request.slippage_pct == Decimal("1")

    @pytest.mark.asyncio
    async def test_adjust_reads_position(
        self,
        service: LeverageService,
        state: MagicMock,
        sol_reserve: ReserveInfo,
        usdc_reserve: ReserveInfo,
    ) -> None:
        owner = Pubkey.new_unique()
        intent = _intent(Direction.ADJUST, sol_reserve, usdc_reserve, target_leverage=Decimal(3))
        result = await service.build_bundle(owner, intent)

        state.get_position.assert_awaited_once_with(owner, sol_reserve.mint, usdc_reserve.mint)
        assert result.calcs.is_increase

    @pytest.mark.asyncio
    async def test_withdraw(
        self,
        service: LeverageService,
        lending: MagicMock,
        sol_reserve: ReserveInfo,
        usdc_reserve: ReserveInfo,
    ) -> None:
        intent = _intent(Direction.WITHDRAW, sol_reserve, usdc_reserve, amount=Decimal(1))
        result = await service.build_bundle(Pubkey.new_unique(), intent)

        args = lending.build_repay_and_withdraw.await_args.args
        assert args[3] == result.bundle.flash_loan.amount
        assert args[5] is False

    @pytest.mark.asyncio
    async def test_close(
        self,
        service: LeverageService,
        lending: MagicMock,
        sol_reserve: ReserveInfo,
        usdc_reserve: ReserveInfo,
    ) -> None:
        intent = _intent(Direction.CLOSE, sol_reserve, usdc_reserve)
        result = await service.build_bundle(Pubkey.new_unique(), intent)

        args = lending.build_repay_and_withdraw.await_args.args
        assert args[3] == U64_MAX
        assert args[4] == 10_000_000_000
        assert args[5] is True
        assert result.bundle.phase(Phase.FLASH_REPAY)


class TestRepayWithCollateral:
    @pytest.mark.asyncio
    async def test_repay(
        self,
        service: LeverageService,
        lending: MagicMock,
        sol_reserve: ReserveInfo,
        usdc_reserve: ReserveInfo,
    ) -> None:
        result = await service.repay_with_collateral(
            Pubkey.new_unique(), sol_reserve.mint, usdc_reserve.mint, Decimal(100)
        )
        assert result.bundle.flash_loan.reserve == usdc_reserve
        assert lending.build_repay_and_withdraw.await_args.args[3] == 100_011_000

    @pytest.mark.asyncio
    async def test_no_debt(
        self,
        service: LeverageService,
        state: MagicMock,
        sol_reserve: ReserveInfo,
        usdc_reserve: ReserveInfo,
    ) -> None:
        state.get_position = AsyncMock(
            return_value=Position(Decimal(10), Decimal(0), sol_reserve.mint, usdc_reserve.mint)
        )
        with pytest.raises(InvalidLeverageTarget, match="no debt"):
            await service.repay_with_collateral(
                Pubkey.new_unique(), sol_reserve.mint, usdc_reserve.mint, Decimal(100)
            )


class TestPreview:
    @pytest.mark.asyncio
    async def test_deposit_preview(
        self, service: LeverageService, sol_reserve: ReserveInfo, usdc_reserve: ReserveInfo
    ) -> None:
        intent = _intent(
            Direction.DEPOSIT, sol_reserve, usdc_reserve,
            amount=Decimal(1), target_leverage=Decimal(2),
        )
        effects = await service.preview(Pubkey.new_unique(), intent)
        assert effects.deposit_change > 0
        assert effects.borrow_change > 0
        assert effects.total_deposited > 10


class TestBasketCollateral:
    @pytest.fixture()
    def share_reserve(self) -> ReserveInfo:
        return ReserveInfo(
            address=Pubkey.new_unique(),
            mint=Pubkey.new_unique(),
            decimals=6,
            flash_loan_fee=Decimal("0.001"),
            liquidity_supply=Pubkey.new_unique(),
            fee_receiver=Pubkey.new_unique(),
            symbol="kUSDC-SOL",
        )

    @pytest.fixture()
    def basket(self, share_reserve: ReserveInfo, usdc_reserve: ReserveInfo) -> MagicMock:
        """1500 USDC and 10 SOL behind 100 shares: 30 USDC a share at 150."""
        basket = MagicMock()
        basket.is_basket_share = MagicMock(side_effect=lambda mint: mint == share_reserve.mint)
        basket.get_holdings = AsyncMock(
            return_value=BasketHoldings(
                share_mint=share_reserve.mint,
                token_a_mint=usdc_reserve.mint,
                token_b_mint=WRAPPED_SOL_MINT,
                token_a_amount=Decimal(1500),
                token_b_amount=Decimal(10),
                shares_issued=Decimal(100),
            )
        )
        basket.get_mint_instructions = AsyncMock(return_value=[_ix(b"mint")])
        basket.get_redeem_instructions = AsyncMock(return_value=[_ix(b"redeem")])
        return basket

    @pytest.fixture()
    def basket_service(
        self,
        sample_app_config: AppConfig,
        lending: MagicMock,
        state: MagicMock,
        prices: AsyncMock,
        swapper: AsyncMock,
        chain: AsyncMock,
        basket: MagicMock,
        share_reserve: ReserveInfo,
        usdc_reserve: ReserveInfo,
    ) -> LeverageService:
        reserves = {share_reserve.mint: share_reserve, usdc_reserve.mint: usdc_reserve}
        state.get_reserve = AsyncMock(side_effect=lambda mint: reserves[mint])
        state.get_position = AsyncMock(
            return_value=Position(
                Decimal(10), Decimal(100), share_reserve.mint, usdc_reserve.mint,
                borrow_cumulative_rate=Decimal("1.2"),
            )
        )
        # shares have no oracle feed
        oracle = prices.get_price.side_effect

        def price(token_a: Pubkey, token_b: Pubkey) -> Decimal:
            if share_reserve.mint in (token_a, token_b):
                raise PriceUnavailable("no feed for basket share")
            return oracle(token_a, token_b)

        prices.get_price = AsyncMock(side_effect=price)
        return LeverageService(
            sample_app_config,
            lending,
            state,
            prices=prices,
            swapper=swapper,
            chain=chain,
            lookup_tables=AsyncMock(),
            basket=basket,
        )

    @pytest.mark.asyncio
    async def test_deposit_prices_shares_from_holdings(
        self,
        basket_service: LeverageService,
        basket: MagicMock,
        prices: AsyncMock,
        share_reserve: ReserveInfo,
        usdc_reserve: ReserveInfo,
    ) -> None:
        intent = LeverageIntent(
            direction=Direction.DEPOSIT,
            collateral_mint=share_reserve.mint,
            debt_mint=usdc_reserve.mint,
            selected_mint=usdc_reserve.mint,
            amount=Decimal(30),
            target_leverage=Decimal(2),
        )
        result = await basket_service.build_bundle(Pubkey.new_unique(), intent)

        basket.get_holdings.assert_awaited_once_with(share_reserve.mint)
        prices.get_price.assert_awaited_once_with(usdc_reserve.mint, WRAPPED_SOL_MINT)
        assert result.bundle.flash_loan.reserve == usdc_reserve
        assert result.bundle.swap_plan.legs[-1].kind == SwapKind.BASKET_MINT

    @pytest.mark.asyncio
    async def test_repay_sized_from_holdings(
        self,
        basket_service: LeverageService,
        prices: AsyncMock,
        share_reserve: ReserveInfo,
        usdc_reserve: ReserveInfo,
    ) -> None:
        result = await basket_service.repay_with_collateral(
            Pubkey.new_unique(), share_reserve.mint, usdc_reserve.mint, Decimal(10)
        )
        prices.get_price.assert_awaited_once_with(usdc_reserve.mint, WRAPPED_SOL_MINT)
        # 10.0011 USDC * 1.001 * 1.005 at 30 USDC a share
        assert abs(result.calcs.coll_to_swap_in - Decimal("0.3353719")) < Decimal("1e-6")
        assert result.bundle.swap_plan.legs[0].kind == SwapKind.BASKET_REDEEM

    @pytest.mark.asyncio
    async def test_adjust_reads_holdings_not_share_feed(
        self,
        basket_service: LeverageService,
        share_reserve: ReserveInfo,
        usdc_reserve: ReserveInfo,
    ) -> None:
        intent = LeverageIntent(
            direction=Direction.ADJUST,
            collateral_mint=share_reserve.mint,
            debt_mint=usdc_reserve.mint,
            selected_mint=share_reserve.mint,
            target_leverage=Decimal("1.2"),
        )
        result = await basket_service.build_bundle(Pubkey.new_unique(), intent)
        assert not result.calcs.is_increase
        assert result.bundle.swap_plan.legs[0].kind == SwapKind.BASKET_REDEEM
