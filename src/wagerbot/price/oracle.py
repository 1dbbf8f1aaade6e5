"""USD price oracle - Coinbase spot with CoinGecko fallback."""

from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation

import httpx

from wagerbot.engine.parsing import round_down_native
from wagerbot.errors import BackendError

log = logging.getLogger(__name__)

COINBASE_URL = "https://api.coinbase.com/v2/prices/{symbol}-USD/spot"
COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
COINGECKO_IDS = {"LTC": "litecoin", "BTC": "bitcoin", "SOL": "solana"}


class PriceOracle:
    """Caches one USD price per network for ``cache_ttl_s`` seconds.

    A fresh price deviating from the cached one by more than
    ``max_deviation_pct`` percent is rejected and the cached price kept.
    """

    def __init__(
        self,
        cache_ttl_s: int = 300,
        max_deviation_pct: int = 25,
        timeout: int = 10,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._ttl = cache_ttl_s
        self._max_deviation = Decimal(max_deviation_pct) / 100
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=5))
        self._cache: dict[str, tuple[Decimal, float]] = {}

    async def close(self) -> None:
        await self._client.aclose()

    async def _coinbase(self, network: str) -> Decimal:
        resp = await self._client.get(COINBASE_URL.format(symbol=network.upper()))
        resp.raise_for_status()
        return Decimal(str(resp.json()["data"]["amount"]))

    async def _coingecko(self, network: str) -> Decimal:
        coin_id = COINGECKO_IDS.get(network.upper())
        if coin_id is None:
            raise BackendError(f"no CoinGecko id for {network}")
        resp = await self._client.get(COINGECKO_URL, params={"ids": coin_id, "vs_currencies": "usd"})
        resp.raise_for_status()
        return Decimal(str(resp.json()[coin_id]["usd"]))

    async def _fetch(self, network: str) -> Decimal:
        try:
            return await self._coinbase(network)
        except (httpx.HTTPError, KeyError, ValueError, InvalidOperation) as exc:
            log.warning("Coinbase price for %s failed, trying CoinGecko: %s", network, exc)
        try:
            return await self._coingecko(network)
        except (httpx.HTTPError, KeyError, ValueError, InvalidOperation) as exc:
            raise BackendError(f"price unavailable for {network}: {exc}") from exc

    async def get_price(self, network: str) -> Decimal:
        network = network.upper()
        cached = self._cache.get(network)
        if cached and time.monotonic() - cached[1] < self._ttl:
            return cached[0]

        price = await self._fetch(network)
        if price <= 0:
            raise BackendError(f"non-positive price for {network}: {price}")
        if cached:
            deviation = abs(price - cached[0]) / cached[0]
            if deviation > self._max_deviation:
                log.error(
                    "Price deviation for %s: %s -> %s (%.1f%%), keeping cached price",
                    network, cached[0], price, float(deviation * 100),
                )
                return cached[0]
        self._cache[network] = (price, time.monotonic())
        log.debug("Price %s = $%s", network, price)
        return price

    async def prefetch(self, network: str) -> None:
        try:
            await self.get_price(network)
        except Exception as exc:
            log.warning("Price prefetch for %s failed: %s", network, exc)

    async def convert_usd_to_native(self, amount: Decimal, network: str) -> Decimal:
        price = await self.get_price(network)
        return round_down_native(amount / price)
