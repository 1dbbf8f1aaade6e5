"""PriceFeed protocol - USD spot prices for a network's native asset."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol


class PriceFeed(Protocol):

    async def get_price(self, network: str) -> Decimal:
        ...

    async def prefetch(self, network: str) -> None:
        """Warm the cache. Never raises."""
        ...

    async def convert_usd_to_native(self, amount: Decimal, network: str) -> Decimal:
        ...

    async def close(self) -> None:
        ...
