"""AutoAdvertiser - periodic promotional posts in the public channels."""

from __future__ import annotations

import asyncio
import logging
import random

from wagerbot.engine.clock import Clock
from wagerbot.engine.queue import OutboundQueue
from wagerbot.interfaces.activity import ActivityLog
from wagerbot.models.config import BotConfig
from wagerbot.state.store import SessionStore

log = logging.getLogger(__name__)


class AutoAdvertiser:
    """Posts one of the configured promo lines every ``interval_s`` (+/- jitter).

    Disabled unless ``advert.enabled`` is set. A round is skipped while
    ``max_active_sessions`` or more sessions are open.
    """

    def __init__(
        self,
        config: BotConfig,
        store: SessionStore,
        queue: OutboundQueue,
        clock: Clock,
        activity: ActivityLog | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._cfg = config
        self._store = store
        self._queue = queue
        self._clock = clock
        self._activity = activity
        self._rng = rng or random.Random()
        self._task: asyncio.Task | None = None

    @property
    def channel_ids(self) -> list[str]:
        return self._cfg.advert.channel_ids or self._cfg.channels.monitored_channel_ids

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_delay(self) -> float:
        advert = self._cfg.advert
        jitter = self._rng.uniform(-advert.jitter_s, advert.jitter_s) if advert.jitter_s > 0 else 0.0
        return max(0.0, advert.interval_s + jitter)

    async def advertise(self) -> str | None:
        """Run one round. Returns the channel posted to, or None when skipped."""
        advert = self._cfg.advert
        active = len(self._store.active())
        if active >= advert.max_active_sessions:
            log.debug("Skipping advert, %d sessions active", active)
            return None
        channels = self.channel_ids
        if not channels or not advert.messages:
            return None

        channel_id = self._rng.choice(channels)
        text = self._rng.choice(advert.messages)
        if not self._cfg.verification_mode:
            game = self._cfg.game
            await self._clock.sleep(self._rng.uniform(game.human_delay_min_ms, game.human_delay_max_ms) / 1000)
        await self._queue.send(channel_id, text)
        log.info("Advert posted in %s", channel_id)
        if self._activity:
            await self._activity.log_activity("advert_posted", text, channel_id=channel_id)
        return channel_id

    def start(self) -> None:
        if not self._cfg.advert.enabled:
            log.info("Auto-advertising disabled")
            return
        if not self.channel_ids:
            log.warning("Auto-advertising enabled but no channels configured")
            return
        if self._task is None:
            log.info("Auto-advertising every %ds", self._cfg.advert.interval_s)
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while True:
            await self._clock.sleep(self.next_delay())
            try:
                await self.advertise()
            except Exception as exc:
                log.error("Advert failed: %s", exc, exc_info=True)
