"""
Price Oracle Client

USD price of the wallet-chain asset, used to cap auto payouts.

Sources:
- coingecko: simple-price endpoint, {coin_id: {usd: price}}
- exchange: last ticker price through ccxt

Prices are cached in memory for a short TTL.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

import aiohttp
import ccxt.async_support as ccxt
from loguru import logger

from .config import PriceOracleConfig
from .errors import PriceFetchFailed


class PriceOracleClient:
    """
    USD price oracle

    get_usd_price() either returns a Decimal or raises PriceFetchFailed;
    the settlement engine turns the failure into a typed outcome.
    """

    def __init__(
        self,
        source: str = 'coingecko',
        url: str = 'https://api.coingecko.com/api/v3/simple/price',
        coin_id: str = 'wagerr',
        exchange: str = 'kucoin',
        symbol: str = 'WGR/USDT',
        timeout_seconds: float = 15.0,
        cache_ttl_seconds: int = 60
    ):
        """
        Initialize price oracle

        Args:
            source: 'coingecko' or 'exchange'
            url: Simple-price endpoint
            coin_id: CoinGecko coin id
            exchange: ccxt exchange id for the exchange source
            symbol: Market symbol for the exchange source
            timeout_seconds: Request timeout
            cache_ttl_seconds: Price cache TTL (0 disables caching)
        """
        self.source = source
        self.url = url
        self.coin_id = coin_id
        self.exchange_id = exchange
        self.symbol = symbol
        self.timeout_seconds = timeout_seconds
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)

        self._cached_price: Optional[Decimal] = None
        self._cached_at: Optional[datetime] = None

    @classmethod
    def from_config(cls, config: PriceOracleConfig) -> 'PriceOracleClient':
        return cls(
            source=config.source,
            url=config.url,
            coin_id=config.coin_id,
            exchange=config.exchange,
            symbol=config.symbol,
            timeout_seconds=config.timeout_seconds,
            cache_ttl_seconds=config.cache_ttl_seconds,
        )

    def _get_cached_price(self) -> Optional[Decimal]:
        if self._cached_price is None or self._cached_at is None:
            return None
        if datetime.now() - self._cached_at >= self.cache_ttl:
            return None
        return self._cached_price

    async def _fetch_json(self) -> dict:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        params = {'ids': self.coin_id, 'vs_currencies': 'usd'}
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self.url, params=params) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)

    async def _fetch_coingecko_price(self):
        try:
            data = await self._fetch_json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise PriceFetchFailed(f"Price request failed: {e}") from e

        try:
            return data[self.coin_id]['usd']
        except (KeyError, TypeError) as e:
            raise PriceFetchFailed(f"No USD price for {self.coin_id} in response") from e

    async def _fetch_exchange_price(self):
        exchange_class = getattr(ccxt, self.exchange_id, None)
        if exchange_class is None:
            raise PriceFetchFailed(f"Unknown exchange: {self.exchange_id}")

        exchange = exchange_class({
            'enableRateLimit': True,
            'timeout': int(self.timeout_seconds * 1000),
        })
        try:
            ticker = await exchange.fetch_ticker(self.symbol)
            return ticker.get('last')
        except ccxt.BaseError as e:
            raise PriceFetchFailed(f"Ticker fetch failed on {self.exchange_id}: {e}") from e
        finally:
            await exchange.close()

    async def get_usd_price(self) -> Decimal:
        """
        Get the USD price

        Returns:
            Price as Decimal

        Raises:
            PriceFetchFailed: No usable price
        """
        cached = self._get_cached_price()
        if cached is not None:
            return cached

        if self.source == 'exchange':
            raw = await self._fetch_exchange_price()
        else:
            raw = await self._fetch_coingecko_price()

        if raw is None or isinstance(raw, bool):
            raise PriceFetchFailed(f"No USD price for {self.coin_id}")
        try:
            price = Decimal(str(raw))
        except InvalidOperation as e:
            raise PriceFetchFailed(f"Invalid USD price: {raw!r}") from e
        if not price.is_finite():
            raise PriceFetchFailed(f"Invalid USD price: {raw!r}")

        self._cached_price = price
        self._cached_at = datetime.now()
        logger.debug(f"USD price ({self.source}): {price}")
        return price
