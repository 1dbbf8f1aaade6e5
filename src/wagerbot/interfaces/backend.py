"""TransferBackend protocol - address validation, conversion and broadcast."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from wagerbot.models.records import TransferResult


class TransferBackend(Protocol):
    """Moves value to a recipient address on a given network."""

    async def validate_address(self, address: str, network: str) -> bool:
        ...

    async def convert_usd_to_native(self, amount_usd: Decimal, network: str) -> Decimal:
        ...

    async def send(
        self, address: str, amount_usd: Decimal, network: str, channel_id: str,
    ) -> TransferResult:
        """Broadcast a transfer. Never raises for backend-side failures."""
        ...

    async def get_confirmations(self, tx_id: str, network: str) -> int:
        """Confirmations seen for ``tx_id``; 0 while unconfirmed."""
        ...

    async def get_payout_address(self, network: str) -> str | None:
        ...

    async def get_balance(self, network: str) -> Decimal:
        ...

    async def close(self) -> None:
        ...
