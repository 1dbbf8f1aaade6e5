"""Channel classifier - decides what a channel may be used for."""

from __future__ import annotations

import logging

from wagerbot.models.config import ChannelConfig
from wagerbot.models.records import ChannelClass, ChannelKind

log = logging.getLogger(__name__)

DIRECT = ChannelClass(ChannelKind.DIRECT)
EXCLUDED = ChannelClass(ChannelKind.EXCLUDED)
SESSION = ChannelClass(ChannelKind.SESSION, allow_value_transfer=True)
PUBLIC = ChannelClass(ChannelKind.PUBLIC, allow_offer_match=True)
UNKNOWN = ChannelClass(ChannelKind.UNKNOWN)


def _matches_any(name: str, patterns: list[str]) -> bool:
    lowered = name.lower()
    return any(p.lower() in lowered for p in patterns if p)


class ChannelClassifier:
    """Maps a channel to ``(kind, allow_offer_match, allow_value_transfer)``.

    Rules, first match wins:
    1. Direct/private channel -> DIRECT
    2. Blocklisted id or excluded name -> EXCLUDED
    3. Name contains a session token -> SESSION (value transfer only)
    4. Monitored id, or no monitored list -> PUBLIC (offer matching only)
    5. Anything else -> UNKNOWN

    Offer matching and value transfer never apply to the same channel.
    """

    def __init__(self, config: ChannelConfig) -> None:
        self._cfg = config

    def is_session_like(self, channel_name: str) -> bool:
        return _matches_any(channel_name, self._cfg.session_name_patterns)

    def classify(self, channel_id: str, channel_name: str = "", is_direct: bool = False) -> ChannelClass:
        if is_direct:
            return DIRECT
        if channel_id in self._cfg.blocklisted_channel_ids:
            return EXCLUDED
        if _matches_any(channel_name, self._cfg.excluded_name_patterns):
            return EXCLUDED
        if self.is_session_like(channel_name):
            return SESSION
        if not self._cfg.monitored_channel_ids or channel_id in self._cfg.monitored_channel_ids:
            return PUBLIC
        return UNKNOWN
