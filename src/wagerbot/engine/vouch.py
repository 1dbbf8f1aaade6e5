"""VouchPoster - posts the one-time acknowledgement for a won session."""

from __future__ import annotations

import asyncio
import logging

from wagerbot.engine.clock import Clock
from wagerbot.engine.queue import OutboundQueue
from wagerbot.interfaces.activity import ActivityLog
from wagerbot.models.config import BotConfig
from wagerbot.models.session import Winner
from wagerbot.state.ledger import IdempotencyLedger
from wagerbot.state.persistence import PersistenceStore
from wagerbot.state.store import SessionStore

log = logging.getLogger(__name__)


class VouchPoster:
    """At most one vouch per session channel across the lifetime of the store.

    The durable vouch bit is set and persisted before sending, under a
    per-channel lock. A failed send clears the bit so a later attempt may retry.
    """

    def __init__(
        self,
        config: BotConfig,
        store: SessionStore,
        ledger: IdempotencyLedger,
        queue: OutboundQueue,
        persistence: PersistenceStore,
        clock: Clock,
        activity: ActivityLog | None = None,
    ) -> None:
        self._cfg = config
        self._store = store
        self._ledger = ledger
        self._queue = queue
        self._persistence = persistence
        self._clock = clock
        self._activity = activity
        self._tasks: set[asyncio.Task] = set()

    @property
    def delay_s(self) -> float:
        if self._cfg.verification_mode:
            return 0.0
        return self._cfg.game.vouch_delay_ms / 1000

    def schedule(self, channel_id: str) -> asyncio.Task:
        task = asyncio.create_task(self._delayed(channel_id, self.delay_s))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

    async def wait_idle(self) -> None:
        """Wait for every scheduled vouch to finish."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def _delayed(self, channel_id: str, delay_s: float) -> None:
        if delay_s > 0:
            await self._clock.sleep(delay_s)
        try:
            await self.post(channel_id)
        except Exception as exc:
            log.error("Vouch for %s failed: %s", channel_id, exc, exc_info=True)

    def _render(self, amount: str, opponent_id: str, coordinator_id: str | None) -> str:
        return (
            self._cfg.templates.vouch.replace("{amount}", amount)
            .replace("{opponent}", f"<@{opponent_id}>")
            .replace("{coordinator}", f"<@{coordinator_id}>" if coordinator_id else "MM")
        )

    async def post(self, channel_id: str) -> bool:
        vouch_channel = self._cfg.channels.vouch_channel_id
        if not vouch_channel:
            log.warning("Vouch channel not configured")
            return False
        session = self._store.get(channel_id)
        if session is None or session.winner != Winner.US:
            log.debug("No won session for %s, no vouch", channel_id)
            return False
        if not session.participant_id:
            log.warning("Cannot vouch for %s: participant unknown", channel_id)
            return False

        async with self._ledger.vouch_lock(channel_id):
            if self._ledger.is_vouched(channel_id):
                log.debug("Vouch for %s already posted", channel_id)
                return False
            self._ledger.mark_vouched(channel_id)
            await self._persistence.save()

            text = self._render(f"{session.offer_amount:.2f}", session.participant_id, session.coordinator_id)
            try:
                await self._queue.send(vouch_channel, text)
            except Exception as exc:
                log.warning("Vouch send for %s failed, will retry later: %s", channel_id, exc)
                self._ledger.unmark_vouched(channel_id)
                await self._persistence.save()
                return False

            session.acknowledged = True
            await self._persistence.save()

        log.info("Vouch posted for %s", channel_id)
        if self._activity:
            await self._activity.log_activity(
                "vouch_posted", f"Vouch posted for {channel_id}",
                channel_id=channel_id, amount=str(session.offer_amount),
            )
        return True
