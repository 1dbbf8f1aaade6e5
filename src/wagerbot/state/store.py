"""SessionStore - owns every Session and the pending-offer index."""

from __future__ import annotations

import asyncio
import logging

from wagerbot.engine.locks import KeyedLocks
from wagerbot.models.records import PendingOffer
from wagerbot.models.session import Session, SessionState

log = logging.getLogger(__name__)


class SessionStore:
    """Keyed map channel_id -> Session plus participant_id -> PendingOffer.

    Methods are synchronous, so lookup/insert/remove never interleave with
    other tasks. Long-running work holds only the per-channel lock.
    """

    def __init__(self, pending_offer_ttl_s: int = 86400) -> None:
        self._sessions: dict[str, Session] = {}
        self._pending: dict[str, PendingOffer] = {}
        self._locks = KeyedLocks()
        self._ttl = pending_offer_ttl_s

    # ── Sessions ───────────────────────────────────────────

    def lock(self, channel_id: str) -> asyncio.Lock:
        return self._locks.get(channel_id)

    def get(self, channel_id: str) -> Session | None:
        return self._sessions.get(channel_id)

    def create(self, channel_id: str, now: float, channel_name: str = "") -> Session:
        if channel_id in self._sessions:
            raise ValueError(f"session already exists for channel {channel_id}")
        session = Session(
            channel_id=channel_id,
            state=SessionState.AWAITING_PARTICIPANT,
            created_at=now,
            updated_at=now,
            channel_name=channel_name,
        )
        self._sessions[channel_id] = session
        log.info("Session created for channel %s (%s)", channel_id, channel_name)
        return session

    def remove(self, channel_id: str) -> Session | None:
        session = self._sessions.pop(channel_id, None)
        if session is not None:
            self._locks.discard(channel_id)
            log.info("Session removed for channel %s", channel_id)
        return session

    def all(self) -> list[Session]:
        return list(self._sessions.values())

    def active(self) -> list[Session]:
        return [s for s in self._sessions.values() if not s.is_terminal]

    def has_active_session_for(self, participant_id: str) -> bool:
        return any(s.participant_id == participant_id for s in self.active())

    def __len__(self) -> int:
        return len(self._sessions)

    # ── Pending offers ─────────────────────────────────────

    def store_pending_offer(self, offer: PendingOffer) -> None:
        """Insert or overwrite the pending offer for ``offer.participant_id``."""
        self._pending[offer.participant_id] = offer

    def get_pending_offer(self, participant_id: str, now: float) -> PendingOffer | None:
        offer = self._pending.get(participant_id)
        if offer is None:
            return None
        if now - offer.created_at > self._ttl:
            del self._pending[participant_id]
            return None
        return offer

    def consume_pending_offer(self, participant_id: str) -> PendingOffer | None:
        return self._pending.pop(participant_id, None)

    def recent_offers(self, now: float) -> list[PendingOffer]:
        return [o for o in self._pending.values() if now - o.created_at <= self._ttl]

    def purge_expired_offers(self, now: float) -> int:
        expired = [p for p, o in self._pending.items() if now - o.created_at > self._ttl]
        for participant_id in expired:
            del self._pending[participant_id]
        return len(expired)

    # ── Snapshot ───────────────────────────────────────────

    def snapshot(self) -> dict:
        return {
            "sessions": [s.to_dict() for s in self._sessions.values()],
            "pending_offers": [o.to_dict() for o in self._pending.values()],
        }

    def restore(self, data: dict) -> None:
        self._sessions = {}
        self._pending = {}
        for raw in data.get("sessions", []):
            session = Session.from_dict(raw)
            self._sessions[session.channel_id] = session
        for raw in data.get("pending_offers", []):
            offer = PendingOffer.from_dict(raw)
            self._pending[offer.participant_id] = offer
