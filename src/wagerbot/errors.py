"""Exception hierarchy shared by all wagerbot components."""

from __future__ import annotations


class WagerbotError(Exception):
    """Base class for every error raised by wagerbot."""


class ConfigError(WagerbotError):
    """Configuration failed startup validation."""


class TransportError(WagerbotError):
    """The chat transport failed to send, fetch or connect."""


class BackendError(WagerbotError):
    """A value-transfer or price backend call failed."""


class PersistenceError(WagerbotError):
    """Writing or reading the state snapshot failed."""


class IllegalTransition(WagerbotError):
    """A session state change that is not in the allowed-transitions table."""

    def __init__(self, channel_id: str, from_state: str, to_state: str, reason: str = "") -> None:
        self.channel_id = channel_id
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        super().__init__(f"{channel_id}: {from_state} -> {to_state} refused ({reason or 'not allowed'})")
