"""ChatTransport protocol - send/receive/fetch-history against a chat service."""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol

from wagerbot.models.events import ChannelInfo, ChatMessage, Identity

MessageHandler = Callable[[ChatMessage], Awaitable[object]]
ChannelHandler = Callable[[ChannelInfo], Awaitable[object]]
ReadyHandler = Callable[[], Awaitable[object]]


class ChatTransport(Protocol):
    """The chat-client collaborator consumed by the engine."""

    @property
    def self_identity(self) -> Identity:
        """Our own user id and name, known once connected."""
        ...

    def on_message(self, handler: MessageHandler) -> None:
        ...

    def on_channel_created(self, handler: ChannelHandler) -> None:
        ...

    def on_channel_deleted(self, handler: ChannelHandler) -> None:
        ...

    def on_ready(self, handler: ReadyHandler) -> None:
        ...

    async def connect(self) -> None:
        """Open the connection; returns once event delivery has started."""
        ...

    async def wait_closed(self) -> bool:
        """Block until the transport stops. Returns True if it failed."""
        ...

    async def close(self) -> None:
        ...

    async def send(self, channel_id: str, content: str, reply_to: str | None = None) -> str:
        """Post a message, optionally as a reply. Returns the new message id."""
        ...

    async def typing(self, channel_id: str) -> None:
        ...

    async def fetch_history(
        self, channel_id: str, before: str | None = None, limit: int = 100,
    ) -> list[ChatMessage]:
        """Newest-first page of messages older than ``before``."""
        ...

    async def channel_info(self, channel_id: str) -> ChannelInfo | None:
        ...
