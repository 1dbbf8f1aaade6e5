"""Discord transport - REST via httpx, gateway events via an aiohttp websocket."""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime

import aiohttp
import httpx

from wagerbot.errors import TransportError
from wagerbot.interfaces.transport import ChannelHandler, MessageHandler, ReadyHandler
from wagerbot.models.config import DiscordConfig
from wagerbot.models.events import ChannelInfo, ChatMessage, Identity

log = logging.getLogger(__name__)

# Gateway opcodes
OP_DISPATCH = 0
OP_HEARTBEAT = 1
OP_IDENTIFY = 2
OP_RECONNECT = 7
OP_INVALID_SESSION = 9
OP_HELLO = 10
OP_HEARTBEAT_ACK = 11

# GUILDS | GUILD_MESSAGES | DIRECT_MESSAGES | MESSAGE_CONTENT
INTENTS = (1 << 0) | (1 << 9) | (1 << 12) | (1 << 15)

DM_CHANNEL_TYPES = {1, 3}


def _timestamp(iso: str) -> float:
    return datetime.fromisoformat(iso.replace("Z", "+00:00")).timestamp()


class DiscordTransport:
    """Implements ChatTransport against the Discord API.

    REST calls retry on HTTP 429 after ``retry_after``, up to
    ``request_retries`` attempts. Gateway drops reconnect with backoff; after
    ``max_reconnects`` consecutive failures the transport closes as failed.
    """

    def __init__(self, config: DiscordConfig, client: httpx.AsyncClient | None = None) -> None:
        self._cfg = config
        self._client = client or httpx.AsyncClient(
            base_url=config.api_base,
            headers={"Authorization": f"Bot {config.token}"},
            timeout=httpx.Timeout(30, connect=10),
        )
        self._identity = Identity("", "")
        self._channels: dict[str, ChannelInfo] = {}
        self._message_handlers: list[MessageHandler] = []
        self._created_handlers: list[ChannelHandler] = []
        self._deleted_handlers: list[ChannelHandler] = []
        self._ready_handlers: list[ReadyHandler] = []
        self._gateway_task: asyncio.Task | None = None
        self._handler_tasks: set[asyncio.Task] = set()
        self._inboxes: dict[str, asyncio.Queue[dict]] = {}
        self._closed = asyncio.Event()
        self._seq: int | None = None
        self.failed = False

    @property
    def self_identity(self) -> Identity:
        return self._identity

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def on_channel_created(self, handler: ChannelHandler) -> None:
        self._created_handlers.append(handler)

    def on_channel_deleted(self, handler: ChannelHandler) -> None:
        self._deleted_handlers.append(handler)

    def on_ready(self, handler: ReadyHandler) -> None:
        self._ready_handlers.append(handler)

    # ── REST ───────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        for attempt in range(1, self._cfg.request_retries + 1):
            try:
                resp = await self._client.request(method, path, **kwargs)
            except httpx.HTTPError as exc:
                raise TransportError(f"{method} {path}: {exc}") from exc
            if resp.status_code == 429 and attempt < self._cfg.request_retries:
                retry_after = float(resp.json().get("retry_after", 1.0))
                log.warning("Rate limited on %s, retrying in %.2fs", path, retry_after)
                await asyncio.sleep(retry_after)
                continue
            if resp.status_code >= 400:
                raise TransportError(f"{method} {path}: HTTP {resp.status_code}")
            return resp
        raise TransportError(f"{method} {path}: rate limited after {self._cfg.request_retries} attempts")

    async def send(self, channel_id: str, content: str, reply_to: str | None = None) -> str:
        payload: dict = {"content": content}
        if reply_to:
            payload["message_reference"] = {"message_id": reply_to, "fail_if_not_exists": False}
        resp = await self._request("POST", f"/channels/{channel_id}/messages", json=payload)
        return str(resp.json()["id"])

    async def typing(self, channel_id: str) -> None:
        await self._request("POST", f"/channels/{channel_id}/typing")

    async def fetch_history(
        self, channel_id: str, before: str | None = None, limit: int = 100,
    ) -> list[ChatMessage]:
        params: dict = {"limit": min(limit, 100)}
        if before:
            params["before"] = before
        resp = await self._request("GET", f"/channels/{channel_id}/messages", params=params)
        info = await self.channel_info(channel_id)
        return [self._to_message(raw, info) for raw in resp.json()]

    async def channel_info(self, channel_id: str) -> ChannelInfo | None:
        if channel_id in self._channels:
            return self._channels[channel_id]
        try:
            resp = await self._request("GET", f"/channels/{channel_id}")
        except TransportError as exc:
            log.warning("Channel lookup for %s failed: %s", channel_id, exc)
            return None
        info = self._to_channel(resp.json())
        self._channels[channel_id] = info
        return info

    # ── Conversion ─────────────────────────────────────────

    @staticmethod
    def _to_channel(raw: dict) -> ChannelInfo:
        return ChannelInfo(
            channel_id=str(raw["id"]),
            name=raw.get("name") or "",
            is_direct=raw.get("type") in DM_CHANNEL_TYPES,
            guild_id=raw.get("guild_id"),
        )

    @staticmethod
    def _to_message(raw: dict, info: ChannelInfo | None) -> ChatMessage:
        author = raw.get("author", {})
        return ChatMessage(
            message_id=str(raw["id"]),
            channel_id=str(raw["channel_id"]),
            author_id=str(author.get("id", "")),
            content=raw.get("content", ""),
            timestamp=_timestamp(raw["timestamp"]),
            channel_name=info.name if info else "",
            author_name=author.get("username", ""),
            author_is_bot=bool(author.get("bot", False)),
            is_direct=info.is_direct if info else raw.get("guild_id") is None,
            mentions=[str(m["id"]) for m in raw.get("mentions", [])],
        )

    # ── Gateway ────────────────────────────────────────────

    async def connect(self) -> None:
        if self._gateway_task is None:
            self._gateway_task = asyncio.create_task(self._gateway_loop())

    async def wait_closed(self) -> bool:
        await self._closed.wait()
        return self.failed

    async def close(self) -> None:
        if self._gateway_task:
            self._gateway_task.cancel()
            try:
                await self._gateway_task
            except asyncio.CancelledError:
                pass
            self._gateway_task = None
        for task in list(self._handler_tasks):
            task.cancel()
        self._inboxes.clear()
        await self._client.aclose()
        self._closed.set()

    async def _gateway_loop(self) -> None:
        failures = 0
        async with aiohttp.ClientSession() as http:
            while True:
                try:
                    await self._run_session(http)
                    failures = 0
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    failures += 1
                    log.warning(
                        "Gateway connection lost (%d/%d): %s", failures, self._cfg.max_reconnects, exc,
                    )
                if failures >= self._cfg.max_reconnects:
                    log.error("Gateway reconnect limit reached, giving up")
                    self.failed = True
                    self._closed.set()
                    return
                await asyncio.sleep(min(60.0, 2 ** failures + random.uniform(0, 1)))

    async def _run_session(self, http: aiohttp.ClientSession) -> None:
        async with http.ws_connect(self._cfg.gateway_url, heartbeat=None) as ws:
            hello = await ws.receive_json()
            if hello.get("op") != OP_HELLO:
                raise TransportError(f"expected HELLO, got op {hello.get('op')}")
            interval = hello["d"]["heartbeat_interval"] / 1000
            heartbeat = asyncio.create_task(self._heartbeat(ws, interval))
            try:
                await ws.send_json({
                    "op": OP_IDENTIFY,
                    "d": {
                        "token": self._cfg.token,
                        "intents": INTENTS,
                        "properties": {"os": "linux", "browser": "wagerbot", "device": "wagerbot"},
                    },
                })
                async for frame in ws:
                    if frame.type != aiohttp.WSMsgType.TEXT:
                        if frame.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.ERROR):
                            raise TransportError(f"gateway closed: {frame.data}")
                        continue
                    payload = frame.json()
                    op = payload.get("op")
                    if payload.get("s") is not None:
                        self._seq = payload["s"]
                    if op == OP_DISPATCH:
                        self._dispatch(payload.get("t"), payload.get("d") or {})
                    elif op == OP_HEARTBEAT:
                        await ws.send_json({"op": OP_HEARTBEAT, "d": self._seq})
                    elif op in (OP_RECONNECT, OP_INVALID_SESSION):
                        raise TransportError(f"gateway asked to reconnect (op {op})")
                raise TransportError("gateway stream ended")
            finally:
                heartbeat.cancel()

    async def _heartbeat(self, ws: aiohttp.ClientWebSocketResponse, interval: float) -> None:
        await asyncio.sleep(interval * random.random())
        while True:
            await ws.send_json({"op": OP_HEARTBEAT, "d": self._seq})
            await asyncio.sleep(interval)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    def _dispatch(self, event: str | None, data: dict) -> None:
        if event == "READY":
            user = data.get("user", {})
            self._identity = Identity(str(user.get("id", "")), user.get("username", ""))
            log.info("Gateway ready as %s (%s)", self._identity.username, self._identity.user_id)
            for handler in self._ready_handlers:
                self._spawn(handler())
        elif event == "MESSAGE_CREATE":
            self._enqueue_message(data)
        elif event == "CHANNEL_CREATE":
            info = self._to_channel(data)
            self._channels[info.channel_id] = info
            for handler in self._created_handlers:
                self._spawn(handler(info))
        elif event == "CHANNEL_DELETE":
            info = self._to_channel(data)
            self._channels.pop(info.channel_id, None)
            for handler in self._deleted_handlers:
                self._spawn(handler(info))

    def _enqueue_message(self, data: dict) -> None:
        """Queue a message behind earlier ones from the same channel.

        Each channel with pending messages has one worker, so a slow
        channel lookup never lets a later message overtake an earlier one.
        """
        channel_id = str(data["channel_id"])
        inbox = self._inboxes.get(channel_id)
        if inbox is None:
            inbox = self._inboxes[channel_id] = asyncio.Queue()
            self._spawn(self._drain_inbox(channel_id, inbox))
        inbox.put_nowait(data)

    async def _drain_inbox(self, channel_id: str, inbox: asyncio.Queue) -> None:
        while True:
            data = await inbox.get()
            try:
                await self._deliver_message(data)
            except Exception as exc:
                log.error("Delivering message in %s failed: %s", channel_id, exc, exc_info=True)
            if inbox.empty():
                self._inboxes.pop(channel_id, None)
                return

    async def _deliver_message(self, data: dict) -> None:
        info = await self.channel_info(str(data["channel_id"]))
        msg = self._to_message(data, info)
        for handler in self._message_handlers:
            await handler(msg)
