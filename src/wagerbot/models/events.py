"""Inbound chat events as delivered by a transport."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ChatMessage:
    """A single inbound chat message."""

    message_id: str
    channel_id: str
    author_id: str
    content: str
    timestamp: float  # epoch seconds
    channel_name: str = ""
    author_name: str = ""
    author_is_bot: bool = False
    is_direct: bool = False
    mentions: list[str] = field(default_factory=list)


@dataclass
class ChannelInfo:
    """Channel metadata as reported by the transport."""

    channel_id: str
    name: str = ""
    is_direct: bool = False
    guild_id: str | None = None


@dataclass
class Identity:
    """Our own identity on the chat service."""

    user_id: str
    username: str = ""
