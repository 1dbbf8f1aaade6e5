"""Wallet-daemon backend - JSON-RPC to a bitcoind/litecoind-compatible wallet."""

from __future__ import annotations

import itertools
import logging
from decimal import Decimal

import httpx

from wagerbot.errors import BackendError
from wagerbot.interfaces.price import PriceFeed
from wagerbot.models.records import TransferResult

log = logging.getLogger(__name__)


class WalletRPCBackend:
    """Implements TransferBackend over ``validateaddress`` / ``getbalance`` / ``sendtoaddress``.

    USD amounts are converted with the price feed; the wallet balance is
    checked before every send. Failures come back as ``TransferResult(success=False)``.
    """

    def __init__(
        self,
        rpc_url: str,
        price: PriceFeed,
        rpc_user: str = "",
        rpc_password: str = "",
        payout_addresses: dict[str, str] | None = None,
        timeout: int = 30,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = rpc_url
        self._price = price
        self._payout = {k.upper(): v for k, v in (payout_addresses or {}).items()}
        auth = httpx.BasicAuth(rpc_user, rpc_password) if rpc_user else None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10), auth=auth,
        )
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, *params):
        payload = {"jsonrpc": "1.0", "id": next(self._ids), "method": method, "params": list(params)}
        try:
            resp = await self._client.post(self._url, json=payload)
        except httpx.HTTPError as exc:
            raise BackendError(f"{method}: {exc}") from exc
        try:
            body = resp.json()
        except ValueError as exc:
            raise BackendError(f"{method}: HTTP {resp.status_code}, non-JSON body") from exc
        if body.get("error"):
            err = body["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise BackendError(f"{method}: {message}")
        if resp.status_code >= 400:
            raise BackendError(f"{method}: HTTP {resp.status_code}")
        return body.get("result")

    async def validate_address(self, address: str, network: str) -> bool:
        try:
            result = await self._call("validateaddress", address)
        except BackendError as exc:
            log.warning("validateaddress failed: %s", exc)
            return False
        return bool(result and result.get("isvalid"))

    async def convert_usd_to_native(self, amount_usd: Decimal, network: str) -> Decimal:
        return await self._price.convert_usd_to_native(amount_usd, network)

    async def get_balance(self, network: str) -> Decimal:
        result = await self._call("getbalance")
        return Decimal(str(result))

    async def get_payout_address(self, network: str) -> str | None:
        if network.upper() in self._payout:
            return self._payout[network.upper()]
        try:
            address = await self._call("getnewaddress")
        except BackendError as exc:
            log.warning("getnewaddress failed: %s", exc)
            return None
        self._payout[network.upper()] = address
        return address

    async def send(
        self, address: str, amount_usd: Decimal, network: str, channel_id: str,
    ) -> TransferResult:
        try:
            native = await self.convert_usd_to_native(amount_usd, network)
            if native <= 0:
                return TransferResult(success=False, error="converted amount is zero")
            balance = await self.get_balance(network)
            if balance < native:
                return TransferResult(
                    success=False, amount_native=native,
                    error=f"insufficient balance ({balance} < {native} {network})",
                )
            tx_id = await self._call("sendtoaddress", address, float(native), f"wager {channel_id}")
        except BackendError as exc:
            log.warning("Wallet send for %s failed: %s", channel_id, exc)
            return TransferResult(success=False, error=str(exc))

        log.info("Sent %s %s ($%s) to %s: %s", native, network, amount_usd, address, tx_id)
        return TransferResult(success=True, tx_id=str(tx_id), amount_native=native)

    async def get_confirmations(self, tx_id: str, network: str) -> int:
        result = await self._call("gettransaction", tx_id)
        return int((result or {}).get("confirmations", 0))
