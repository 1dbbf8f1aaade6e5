"""Fixed USD prices - offline PriceFeed for verification runs."""

from __future__ import annotations

from decimal import Decimal

from wagerbot.engine.parsing import round_down_native
from wagerbot.errors import BackendError


class FixedPriceFeed:
    """Implements PriceFeed from a static ``{network: usd_price}`` table."""

    def __init__(self, prices: dict[str, Decimal] | None = None) -> None:
        self._prices = {k.upper(): Decimal(v) for k, v in (prices or {}).items()}

    async def get_price(self, network: str) -> Decimal:
        price = self._prices.get(network.upper())
        if price is None or price <= 0:
            raise BackendError(f"no fixed price for {network}")
        return price

    async def prefetch(self, network: str) -> None:
        pass

    async def convert_usd_to_native(self, amount: Decimal, network: str) -> Decimal:
        return round_down_native(amount / await self.get_price(network))

    async def close(self) -> None:
        pass
