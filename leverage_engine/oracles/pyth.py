"""Pyth Network price provider."""
from __future__ import annotations

import logging
import ssl
from decimal import Decimal
from typing import Any

import aiohttp
import certifi
from solders.pubkey import Pubkey

from ..config import MarketConfig, PythConfig
from ..errors import PriceUnavailable
from ..leverage.decimals import div

logger = logging.getLogger(__name__)


def normalize_feed_id(feed_id: str) -> str:
    """Hermes returns bare lowercase hex; configs often carry a ``0x`` prefix."""
    return str(feed_id).lower().removeprefix("0x")


def parse_price(item: dict[str, Any]) -> Decimal:
    """``price * 10**expo`` from one Hermes ``parsed`` entry, without float rounding."""
    price_data = item.get("price", {})
    return Decimal(int(price_data.get("price", 0))).scaleb(int(price_data.get("expo", 0)))


class PythPriceProvider:
    """USD prices from Pyth Hermes; pair prices are the ratio of two USD prices."""

    def __init__(self, config: PythConfig, market: MarketConfig) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = dict(config.feeds)
        self._market = market

    def _symbols_by_feed(self, symbols: list[str] | None) -> dict[str, list[str]]:
        index: dict[str, list[str]] = {}
        for symbol, feed_id in self.price_feeds.items():
            if symbols is None or symbol in symbols:
                index.setdefault(normalize_feed_id(feed_id), []).append(symbol)
        return index

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, Decimal]:
        """Fetch current USD prices from Pyth Network.

        Args:
            symbols: Optional list of symbols to fetch. If None, fetches all
                     configured feeds.

        Returns an empty mapping when the request fails; callers decide
        whether a missing price is fatal.
        """
        by_feed = self._symbols_by_feed(symbols)
        if not by_feed:
            return {}

        params = [("ids[]", feed_id) for feed_id in sorted(by_feed)]
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(self.hermes_url, params=params) as response:
                    if response.status != 200:
                        logger.error("Error fetching prices from Pyth: HTTP %s", response.status)
                        return {}
                    data = await response.json()
        except Exception as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return {}

        prices: dict[str, Decimal] = {}
        for item in data.get("parsed", []):
            for symbol in by_feed.get(normalize_feed_id(item.get("id", "")), []):
                prices[symbol] = parse_price(item)

        logger.info(
            "Fetched %d Pyth prices: %s",
            len(prices),
            ", ".join(f"{s}=${p}" for s, p in sorted(prices.items())),
        )
        return prices

    def _symbol(self, mint: Pubkey) -> str:
        symbol = self._market.symbol_for_mint(str(mint))
        if symbol is None:
            raise PriceUnavailable(f"No token configured for mint {mint}")
        if symbol not in self.price_feeds:
            raise PriceUnavailable(f"No Pyth feed configured for {symbol}")
        return symbol

    async def get_price(self, token_a: Pubkey, token_b: Pubkey) -> Decimal:
        """Units of ``token_b`` one ``token_a`` is worth, from their USD prices."""
        symbol_a = self._symbol(token_a)
        symbol_b = self._symbol(token_b)
        prices = await self.fetch_prices([symbol_a, symbol_b])

        price_a = prices.get(symbol_a)
        price_b = prices.get(symbol_b)
        if not price_a or not price_b or price_a <= 0 or price_b <= 0:
            raise PriceUnavailable(f"No usable price for {symbol_a}/{symbol_b}")
        return div(price_a, price_b)
