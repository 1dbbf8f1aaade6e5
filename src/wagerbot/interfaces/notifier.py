"""Notifier protocol - out-of-band audit and alert messages."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol


class Notifier(Protocol):
    """Alerts never affect control flow; implementations swallow their own errors."""

    async def offer_claimed(self, channel_id: str, participant_id: str, amount: Decimal) -> None:
        ...

    async def payment_sent(
        self, channel_id: str, amount: Decimal, tx_id: str, network: str,
    ) -> None:
        ...

    async def game_result(self, channel_id: str, winner: str, scores: dict[str, int]) -> None:
        ...

    async def alert(self, title: str, detail: str) -> None:
        ...

    async def close(self) -> None:
        ...
