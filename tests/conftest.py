"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from decimal import Decimal
from pathlib import Path

import pytest
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from leverage_engine.config import (
    AppConfig,
    ChainConfig,
    JupiterConfig,
    LeverageConfig,
    MarketConfig,
    PriceOracleConfig,
    PythConfig,
    SwapConfig,
    TokenConfig,
)
from leverage_engine.constants import KLEND_PROGRAM_ID, WRAPPED_SOL_MINT
from leverage_engine.leverage.flash_loan import lending_market_authority
from leverage_engine.models import LendingAction, MarketInfo, Position, PriceQuote, ReserveInfo

USDC_MINT = Pubkey.from_string("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")
JITOSOL_MINT = Pubkey.from_string("J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn")
MARKET_ADDRESS = Pubkey.from_string("7u3HeHxYDLhnCoErrtycNokbQYbWGzLs6JSDqGAv5PfF")


LENDING_PROGRAM = Pubkey.new_unique()


def _lending_ix(tag: bytes) -> Instruction:
    return Instruction(
        LENDING_PROGRAM,
        tag,
        [AccountMeta(pubkey=Pubkey.new_unique(), is_signer=False, is_writable=True)],
    )


@pytest.fixture()
def lending_action() -> LendingAction:
    """One instruction per lending slot, tagged by its role in ``data``."""
    return LendingAction(
        setup=(_lending_ix(b"lending-setup"),),
        lending=(_lending_ix(b"op-a"), _lending_ix(b"op-b")),
        in_between=(_lending_ix(b"between"),),
        cleanup=(_lending_ix(b"lending-cleanup"),),
    )


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_market_config() -> MarketConfig:
    return MarketConfig(
        program_id=str(KLEND_PROGRAM_ID),
        address=str(MARKET_ADDRESS),
        tokens={
            "SOL": TokenConfig(mint=str(WRAPPED_SOL_MINT), decimals=9),
            "USDC": TokenConfig(mint=str(USDC_MINT), decimals=6),
            "JITOSOL": TokenConfig(mint=str(JITOSOL_MINT), decimals=9),
        },
    )


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
    )


@pytest.fixture()
def sample_pyth_config() -> PythConfig:
    return PythConfig(
        hermes_url="https://hermes.pyth.network/v2/updates/price/latest",
        feeds={"SOL": "abc123", "USDC": "0xDEF456", "JITOSOL": "ghi789"},
    )


@pytest.fixture()
def sample_app_config(
    sample_market_config: MarketConfig,
    sample_chain_config: ChainConfig,
    sample_pyth_config: PythConfig,
) -> AppConfig:
    return AppConfig(
        market=sample_market_config,
        leverage=LeverageConfig(
            default_slippage_pct=Decimal("0.5"),
            repay_interest_margin_bps=Decimal("1.1"),
            max_accounts_per_transaction=64,
            compute_unit_limit=1_000_000,
            compute_unit_price=0,
        ),
        chain=sample_chain_config,
        price_oracle=PriceOracleConfig(provider="pyth", pyth=sample_pyth_config),
        swap=SwapConfig(provider="jupiter", jupiter=JupiterConfig(base_url="https://jup.example.com/v6")),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    market:
      program_id: "{KLEND_PROGRAM_ID}"
      address: "{MARKET_ADDRESS}"
      tokens:
        SOL: {{mint: "{WRAPPED_SOL_MINT}", decimals: 9}}
        USDC: {{mint: "{USDC_MINT}", decimals: 6}}
    leverage:
      default_slippage_pct: 0.3
      repay_interest_margin_bps: "1.1"
      max_accounts_per_transaction: 48
      compute_unit_limit: 1000000
      compute_unit_price: 5000
    chain:
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    price_oracle:
      provider: pyth
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {{SOL: "aaa", USDC: "bbb"}}
    swap:
      provider: jupiter
      jupiter:
        base_url: "https://jup.example.com/v6"
        only_direct_routes: true
        max_accounts: 30
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# Market fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def market_info() -> MarketInfo:
    return MarketInfo(
        program_id=KLEND_PROGRAM_ID,
        address=MARKET_ADDRESS,
        authority=lending_market_authority(MARKET_ADDRESS, KLEND_PROGRAM_ID),
    )


@pytest.fixture()
def owner() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture()
def sol_reserve() -> ReserveInfo:
    return ReserveInfo(
        address=Pubkey.new_unique(),
        mint=WRAPPED_SOL_MINT,
        decimals=9,
        flash_loan_fee=Decimal("0.001"),
        liquidity_supply=Pubkey.new_unique(),
        fee_receiver=Pubkey.new_unique(),
        symbol="SOL",
    )


@pytest.fixture()
def jitosol_reserve() -> ReserveInfo:
    return ReserveInfo(
        address=Pubkey.new_unique(),
        mint=JITOSOL_MINT,
        decimals=9,
        flash_loan_fee=Decimal("0.001"),
        liquidity_supply=Pubkey.new_unique(),
        fee_receiver=Pubkey.new_unique(),
        symbol="JITOSOL",
    )


@pytest.fixture()
def usdc_reserve() -> ReserveInfo:
    return ReserveInfo(
        address=Pubkey.new_unique(),
        mint=USDC_MINT,
        decimals=6,
        flash_loan_fee=Decimal("0.001"),
        liquidity_supply=Pubkey.new_unique(),
        fee_receiver=Pubkey.new_unique(),
        symbol="USDC",
        cumulative_borrow_rate=Decimal("1.2"),
        borrow_apr=Decimal(0),
        last_update_slot=100,
    )


@pytest.fixture()
def sol_usdc_quote() -> PriceQuote:
    """1 SOL = 150 USDC."""
    return PriceQuote(coll_to_debt=Decimal(150), debt_to_coll=Decimal(1) / Decimal(150))


@pytest.fixture()
def sol_usdc_position() -> Position:
    """10 SOL deposited, 750 USDC borrowed: leverage 2 at 150."""
    return Position(
        deposited_amount=Decimal(10),
        borrowed_amount=Decimal(750),
        collateral_mint=WRAPPED_SOL_MINT,
        debt_mint=USDC_MINT,
        borrow_cumulative_rate=Decimal("1.2"),
    )
