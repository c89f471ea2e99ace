"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .constants import KLEND_PROGRAM_ID, MAX_ACCOUNTS_PER_TRANSACTION

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenConfig:
    mint: str = ""
    decimals: int = 9


@dataclass(frozen=True)
class MarketConfig:
    program_id: str = str(KLEND_PROGRAM_ID)
    address: str = ""
    tokens: dict[str, TokenConfig] = field(default_factory=dict)

    def symbol_for_mint(self, mint: str) -> str | None:
        for symbol, token in self.tokens.items():
            if token.mint == mint:
                return symbol
        return None


@dataclass(frozen=True)
class LeverageConfig:
    default_slippage_pct: Decimal = Decimal("0.5")
    repay_interest_margin_bps: Decimal = Decimal("1.1")
    max_accounts_per_transaction: int = MAX_ACCOUNTS_PER_TRANSACTION
    compute_unit_limit: int = 1_400_000
    compute_unit_price: int = 0


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceOracleConfig:
    provider: str = "pyth"
    pyth: PythConfig = field(default_factory=PythConfig)


@dataclass(frozen=True)
class JupiterConfig:
    base_url: str = "https://quote-api.jup.ag/v6"
    only_direct_routes: bool = False
    max_accounts: int = 40
    timeout: int = 10


@dataclass(frozen=True)
class SwapConfig:
    provider: str = "jupiter"
    jupiter: JupiterConfig = field(default_factory=JupiterConfig)


@dataclass(frozen=True)
class AppConfig:
    market: MarketConfig = field(default_factory=MarketConfig)
    leverage: LeverageConfig = field(default_factory=LeverageConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)
    swap: SwapConfig = field(default_factory=SwapConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


def _to_decimal(value: Any, name: str) -> Decimal:
    # str() first so YAML floats never leak binary artefacts into amounts
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"{name} is not a decimal number: {value!r}") from e


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_market(raw: dict[str, Any]) -> MarketConfig:
    tokens: dict[str, TokenConfig] = {}
    for symbol, tok in raw.get("tokens", {}).items():
        tokens[symbol] = TokenConfig(
            mint=tok.get("mint", ""),
            decimals=int(tok.get("decimals", 9)),
        )
    return MarketConfig(
        program_id=raw.get("program_id", str(KLEND_PROGRAM_ID)),
        address=raw.get("address", ""),
        tokens=tokens,
    )


def _build_leverage(raw: dict[str, Any]) -> LeverageConfig:
    return LeverageConfig(
        default_slippage_pct=_to_decimal(
            raw.get("default_slippage_pct", "0.5"), "default_slippage_pct"
        ),
        repay_interest_margin_bps=_to_decimal(
            raw.get("repay_interest_margin_bps", "1.1"), "repay_interest_margin_bps"
        ),
        max_accounts_per_transaction=int(
            raw.get("max_accounts_per_transaction", MAX_ACCOUNTS_PER_TRANSACTION)
        ),
        compute_unit_limit=int(raw.get("compute_unit_limit", 1_400_000)),
        compute_unit_price=int(raw.get("compute_unit_price", 0)),
    )


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=tuple(raw.get("rpc_endpoints", [])),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
    )


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    pyth_raw = raw.get("pyth", {})
    return PriceOracleConfig(
        provider=raw.get("provider", "pyth"),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=dict(pyth_raw.get("feeds", {})),
        ),
    )


def _build_swap(raw: dict[str, Any]) -> SwapConfig:
    jup = raw.get("jupiter", {})
    return SwapConfig(
        provider=raw.get("provider", "jupiter"),
        jupiter=JupiterConfig(
            base_url=jup.get("base_url", JupiterConfig.base_url),
            only_direct_routes=bool(jup.get("only_direct_routes", False)),
            max_accounts=int(jup.get("max_accounts", 40)),
            timeout=int(jup.get("timeout", 10)),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        market=_build_market(raw.get("market", {})),
        leverage=_build_leverage(raw.get("leverage", {})),
        chain=_build_chain(raw.get("chain", {})),
        price_oracle=_build_price_oracle(raw.get("price_oracle", {})),
        swap=_build_swap(raw.get("swap", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.market.address:
        raise ValueError("Lending market address must be configured")
    if not cfg.market.program_id:
        raise ValueError("Lending program id must be configured")

    for symbol, token in cfg.market.tokens.items():
        if not token.mint:
            raise ValueError(f"Token '{symbol}' has no mint")
        if token.decimals < 0:
            raise ValueError(f"Token '{symbol}' has negative decimals")

    slippage = cfg.leverage.default_slippage_pct
    if not (0 <= slippage < 100):
        raise ValueError(f"default_slippage_pct must be in [0, 100), got {slippage}")
    if cfg.leverage.repay_interest_margin_bps < 0:
        raise ValueError("repay_interest_margin_bps must be non-negative")
    if cfg.leverage.max_accounts_per_transaction <= 0:
        raise ValueError("max_accounts_per_transaction must be positive")

    if not cfg.chain.rpc_endpoints:
        raise ValueError("At least one RPC endpoint must be configured")

    for symbol in cfg.price_oracle.pyth.feeds:
        if symbol not in cfg.market.tokens:
            raise ValueError(f"Price feed '{symbol}' references unknown token")
