"""In-memory transport - used by ``wagerbot verify`` and the test suite."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass

from wagerbot.engine.clock import Clock
from wagerbot.errors import TransportError
from wagerbot.interfaces.transport import ChannelHandler, MessageHandler, ReadyHandler
from wagerbot.models.events import ChannelInfo, ChatMessage, Identity

log = logging.getLogger(__name__)


@dataclass
class SentMessage:
    message_id: str
    channel_id: str
    content: str
    reply_to: str | None
    timestamp: float


class MemoryTransport:
    """Records every outbound message with the clock time it was sent.

    Inbound events are injected with :meth:`deliver`; channel history holds
    both injected and sent messages so recovery can page through it.
    """

    def __init__(self, clock: Clock, self_id: str = "900000000000000001", self_name: str = "wagerbot") -> None:
        self._clock = clock
        self._identity = Identity(self_id, self_name)
        self._ids = itertools.count(1)
        self.channels: dict[str, ChannelInfo] = {}
        self.history: dict[str, list[ChatMessage]] = {}
        self.sent: list[SentMessage] = []
        self.typing_calls: list[str] = []
        self.fail_sends = 0
        self.fail_typing = False
        self._message_handlers: list[MessageHandler] = []
        self._created_handlers: list[ChannelHandler] = []
        self._deleted_handlers: list[ChannelHandler] = []
        self._ready_handlers: list[ReadyHandler] = []
        self._closed = asyncio.Event()
        self.failed = False

    @property
    def self_identity(self) -> Identity:
        return self._identity

    def _next_id(self) -> str:
        return str(1_000_000 + next(self._ids))

    # ── Registration ───────────────────────────────────────

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def on_channel_created(self, handler: ChannelHandler) -> None:
        self._created_handlers.append(handler)

    def on_channel_deleted(self, handler: ChannelHandler) -> None:
        self._deleted_handlers.append(handler)

    def on_ready(self, handler: ReadyHandler) -> None:
        self._ready_handlers.append(handler)

    async def connect(self) -> None:
        for handler in self._ready_handlers:
            await handler()

    async def wait_closed(self) -> bool:
        await self._closed.wait()
        return self.failed

    async def close(self) -> None:
        self._closed.set()

    # ── Test helpers ───────────────────────────────────────

    def add_channel(self, channel_id: str, name: str, is_direct: bool = False) -> ChannelInfo:
        info = ChannelInfo(channel_id=channel_id, name=name, is_direct=is_direct)
        self.channels[channel_id] = info
        self.history.setdefault(channel_id, [])
        return info

    def make_message(
        self,
        channel_id: str,
        author_id: str,
        content: str,
        author_name: str = "",
        author_is_bot: bool = False,
        mentions: list[str] | None = None,
        message_id: str | None = None,
        timestamp: float | None = None,
    ) -> ChatMessage:
        info = self.channels.get(channel_id) or self.add_channel(channel_id, channel_id)
        return ChatMessage(
            message_id=message_id or self._next_id(),
            channel_id=channel_id,
            author_id=author_id,
            content=content,
            timestamp=self._clock.now() if timestamp is None else timestamp,
            channel_name=info.name,
            author_name=author_name or author_id,
            author_is_bot=author_is_bot,
            is_direct=info.is_direct,
            mentions=list(mentions or []),
        )

    def record(self, msg: ChatMessage) -> None:
        """Append to channel history without delivering (a message missed while offline)."""
        self.history.setdefault(msg.channel_id, []).append(msg)

    async def deliver(self, msg: ChatMessage) -> None:
        self.record(msg)
        await self.dispatch(msg)

    async def dispatch(self, msg: ChatMessage) -> None:
        """Hand ``msg`` to the handlers again without recording it (a gateway re-delivery)."""
        for handler in self._message_handlers:
            await handler(msg)

    async def create_channel(self, channel_id: str, name: str) -> None:
        info = self.add_channel(channel_id, name)
        for handler in self._created_handlers:
            await handler(info)

    async def delete_channel(self, channel_id: str) -> None:
        info = self.channels.pop(channel_id, None) or ChannelInfo(channel_id)
        for handler in self._deleted_handlers:
            await handler(info)

    def transcript(self, channel_id: str) -> list[str]:
        return [m.content for m in self.sent if m.channel_id == channel_id]

    def restarted(self) -> MemoryTransport:
        """A fresh connection over the same channels and history, with no handlers."""
        clone = MemoryTransport(self._clock, self._identity.user_id, self._identity.username)
        clone.channels = self.channels
        clone.history = self.history
        clone.sent = self.sent
        clone._ids = self._ids
        return clone

    # ── ChatTransport ──────────────────────────────────────

    async def send(self, channel_id: str, content: str, reply_to: str | None = None) -> str:
        if self.fail_sends > 0:
            self.fail_sends -= 1
            raise TransportError(f"send to {channel_id} failed")
        message_id = self._next_id()
        now = self._clock.now()
        self.sent.append(SentMessage(message_id, channel_id, content, reply_to, now))
        info = self.channels.get(channel_id)
        self.record(
            ChatMessage(
                message_id=message_id,
                channel_id=channel_id,
                author_id=self._identity.user_id,
                content=content,
                timestamp=now,
                channel_name=info.name if info else "",
                author_name=self._identity.username,
            )
        )
        return message_id

    async def typing(self, channel_id: str) -> None:
        self.typing_calls.append(channel_id)
        if self.fail_typing:
            raise TransportError("typing failed")

    async def fetch_history(
        self, channel_id: str, before: str | None = None, limit: int = 100,
    ) -> list[ChatMessage]:
        messages = sorted(self.history.get(channel_id, []), key=lambda m: m.timestamp, reverse=True)
        if before is not None:
            ids = [m.message_id for m in messages]
            if before in ids:
                messages = messages[ids.index(before) + 1:]
        return messages[: min(limit, 100)]

    async def channel_info(self, channel_id: str) -> ChannelInfo | None:
        return self.channels.get(channel_id)
