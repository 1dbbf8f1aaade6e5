"""Dry-run backend - validates addresses locally and never moves value."""

from __future__ import annotations

import logging
import re
import secrets
from decimal import Decimal

from wagerbot.interfaces.price import PriceFeed
from wagerbot.models.config import ADDRESS_PATTERNS
from wagerbot.models.records import TransferResult

log = logging.getLogger(__name__)


class DryRunBackend:
    """Implements TransferBackend with regex validation and fake tx ids."""

    def __init__(
        self,
        payout_addresses: dict[str, str] | None = None,
        address_patterns: dict[str, str] | None = None,
        price: PriceFeed | None = None,
        balance: Decimal = Decimal("0"),
    ) -> None:
        self._payout = {k.upper(): v for k, v in (payout_addresses or {}).items()}
        self._patterns = {
            k.upper(): re.compile(v) for k, v in (address_patterns or ADDRESS_PATTERNS).items()
        }
        self._price = price
        self._balance = balance
        self.sent: list[tuple[str, Decimal, str, str]] = []

    async def validate_address(self, address: str, network: str) -> bool:
        pattern = self._patterns.get(network.upper())
        return bool(pattern and pattern.fullmatch(address))

    async def convert_usd_to_native(self, amount_usd: Decimal, network: str) -> Decimal:
        if self._price is None:
            return amount_usd
        return await self._price.convert_usd_to_native(amount_usd, network)

    async def send(
        self, address: str, amount_usd: Decimal, network: str, channel_id: str,
    ) -> TransferResult:
        tx_id = f"dryrun_{secrets.token_hex(8)}"
        self.sent.append((address, amount_usd, network, channel_id))
        log.info("[dry run] %s $%s to %s (%s)", network, amount_usd, address, tx_id)
        return TransferResult(success=True, tx_id=tx_id)

    async def get_confirmations(self, tx_id: str, network: str) -> int:
        return 1

    async def get_payout_address(self, network: str) -> str | None:
        return self._payout.get(network.upper())

    async def get_balance(self, network: str) -> Decimal:
        return self._balance

    async def close(self) -> None:
        pass
