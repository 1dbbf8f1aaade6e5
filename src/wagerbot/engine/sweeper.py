"""SessionSweeper - idle cancellation, purge of finished sessions, payment confirmation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from wagerbot.engine.clock import Clock
from wagerbot.engine.transfers import TransferExecutor
from wagerbot.interfaces.activity import ActivityLog
from wagerbot.models.config import StorageConfig
from wagerbot.models.session import SessionState
from wagerbot.state.machine import CRITICAL_STATES, PRE_PAYMENT_STATES, try_transition
from wagerbot.state.persistence import PersistenceStore
from wagerbot.state.store import SessionStore

log = logging.getLogger(__name__)


@dataclass
class SweepReport:
    cancelled: list[str] = field(default_factory=list)
    purged: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)
    expired_offers: int = 0
    confirmed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.cancelled or self.purged or self.expired_offers or self.confirmed)


class SessionSweeper:
    """Cancels idle pre-payment sessions, purges finished ones and confirms broadcast payments.

    Sessions past the payment step are never cancelled automatically; they
    only produce a warning.
    """

    def __init__(
        self,
        config: StorageConfig,
        store: SessionStore,
        persistence: PersistenceStore,
        clock: Clock,
        activity: ActivityLog | None = None,
        transfers: TransferExecutor | None = None,
    ) -> None:
        self._cfg = config
        self._store = store
        self._persistence = persistence
        self._clock = clock
        self._activity = activity
        self._transfers = transfers
        self._task: asyncio.Task | None = None

    async def sweep(self) -> SweepReport:
        report = SweepReport()
        now = self._clock.now()
        for session in self._store.all():
            channel_id = session.channel_id
            lock = self._store.lock(channel_id)
            if lock.locked():
                continue
            idle = now - max(session.updated_at, session.last_message_at)

            if session.state == SessionState.CANCELLED or (
                session.state == SessionState.COMPLETE and now - session.updated_at > self._cfg.complete_grace_s
            ):
                self._store.remove(channel_id)
                report.purged.append(channel_id)
            elif session.state in PRE_PAYMENT_STATES and idle > self._cfg.idle_horizon_s:
                async with lock:
                    if session.payment_locked or session.payment_tx:
                        continue
                    if try_transition(session, SessionState.CANCELLED, "idle_timeout", now):
                        report.cancelled.append(channel_id)
            elif session.state in CRITICAL_STATES and idle > self._cfg.idle_horizon_s:
                log.warning(
                    "Session %s idle for %ds in %s, needs attention",
                    channel_id, int(idle), session.state.value,
                )
                report.stale.append(channel_id)

        report.expired_offers = self._store.purge_expired_offers(now)
        if self._transfers is not None:
            report.confirmed = await self._transfers.confirm_broadcasts()

        if report.changed:
            log.info(
                "Sweep: %d cancelled, %d purged, %d expired offers, %d confirmed",
                len(report.cancelled), len(report.purged), report.expired_offers, len(report.confirmed),
            )
            await self._persistence.save()
            if self._activity:
                for channel_id in report.cancelled:
                    await self._activity.log_activity(
                        "session_cancelled", "Cancelled after idle timeout", channel_id=channel_id,
                    )
                for channel_id in report.purged:
                    await self._activity.log_activity(
                        "session_purged", "Finished session purged", channel_id=channel_id,
                    )
        return report

    def start(self) -> None:
        if self._task is None:
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
            await asyncio.sleep(self._cfg.sweep_interval_s)
            try:
                await self.sweep()
            except Exception as exc:
                log.error("Sweeper error: %s", exc, exc_info=True)
