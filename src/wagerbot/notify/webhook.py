"""Discord-webhook notifier for audit events and alerts."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

import httpx

log = logging.getLogger(__name__)

BLUE = 0x3498DB
YELLOW = 0xF1C40F
GREEN = 0x2ECC71
RED = 0xE74C3C
PURPLE = 0x9B59B6


class WebhookNotifier:
    """Posts embeds to a webhook URL. Failures are logged and dropped."""

    def __init__(self, url: str, timeout: int = 10, client: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=5))

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, title: str, description: str, color: int, fields: list[dict] | None = None) -> None:
        payload = {
            "embeds": [{
                "title": title,
                "description": description,
                "color": color,
                "fields": fields or [],
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }]
        }
        try:
            resp = await self._client.post(self._url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            log.warning("Webhook post failed (%s): %s", title, exc)

    async def offer_claimed(self, channel_id: str, participant_id: str, amount: Decimal) -> None:
        await self._post(
            "Offer claimed", f"<@{participant_id}> offered ${amount}", YELLOW,
            [{"name": "Channel", "value": f"<#{channel_id}>", "inline": True}],
        )

    async def payment_sent(self, channel_id: str, amount: Decimal, tx_id: str, network: str) -> None:
        await self._post(
            "Payment sent", f"${amount} ({network})", PURPLE,
            [
                {"name": "Channel", "value": f"<#{channel_id}>", "inline": True},
                {"name": "TX", "value": f"`{tx_id}`", "inline": False},
            ],
        )

    async def game_result(self, channel_id: str, winner: str, scores: dict[str, int]) -> None:
        won = winner == "us"
        await self._post(
            "Game won" if won else "Game lost",
            f"{scores.get('us', 0)} - {scores.get('them', 0)}",
            GREEN if won else RED,
            [{"name": "Channel", "value": f"<#{channel_id}>", "inline": True}],
        )

    async def alert(self, title: str, detail: str) -> None:
        await self._post(f"Alert: {title}", detail[:2000], RED)


class NullNotifier:
    """Used when no webhook is configured."""

    async def offer_claimed(self, channel_id: str, participant_id: str, amount: Decimal) -> None:
        pass

    async def payment_sent(self, channel_id: str, amount: Decimal, tx_id: str, network: str) -> None:
        pass

    async def game_result(self, channel_id: str, winner: str, scores: dict[str, int]) -> None:
        pass

    async def alert(self, title: str, detail: str) -> None:
        log.warning("ALERT %s: %s", title, detail)

    async def close(self) -> None:
        pass
