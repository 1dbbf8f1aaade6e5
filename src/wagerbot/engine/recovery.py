"""Recovery - replays history missed while the process was down."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from wagerbot.engine.router import Router
from wagerbot.engine.vouch import VouchPoster
from wagerbot.interfaces.activity import ActivityLog
from wagerbot.interfaces.transport import ChatTransport
from wagerbot.models.events import ChatMessage
from wagerbot.models.records import IntentState
from wagerbot.models.session import SessionState, Winner
from wagerbot.state.ledger import IdempotencyLedger
from wagerbot.state.machine import try_transition
from wagerbot.state.store import SessionStore

log = logging.getLogger(__name__)

PAGE_LIMIT = 100


@dataclass
class RecoveryReport:
    sessions: int = 0
    replayed: int = 0
    failed_channels: list[str] = field(default_factory=list)
    vouches_scheduled: int = 0


class Recovery:
    """For each active session, fetch messages newer than the last one handled
    and replay them through the router in timestamp order. Won sessions that
    still owe a vouch get one scheduled.
    """

    def __init__(
        self,
        transport: ChatTransport,
        router: Router,
        store: SessionStore,
        ledger: IdempotencyLedger,
        vouches: VouchPoster,
        activity: ActivityLog | None = None,
    ) -> None:
        self._transport = transport
        self._router = router
        self._store = store
        self._ledger = ledger
        self._vouches = vouches
        self._activity = activity

    async def fetch_missed(self, channel_id: str, since: float) -> list[ChatMessage]:
        """Messages with timestamp > ``since``, oldest first."""
        missed: list[ChatMessage] = []
        before: str | None = None
        while True:
            page = await self._transport.fetch_history(channel_id, before=before, limit=PAGE_LIMIT)
            if not page:
                break
            reached = False
            for msg in page:
                if msg.timestamp <= since:
                    reached = True
                else:
                    missed.append(msg)
            if reached or len(page) < PAGE_LIMIT:
                break
            before = min(page, key=lambda m: m.timestamp).message_id
        missed.sort(key=lambda m: m.timestamp)
        return missed

    async def run(self) -> RecoveryReport:
        report = RecoveryReport()
        for session in self._store.active():
            report.sessions += 1
            since = session.last_message_at or session.updated_at
            try:
                missed = await self.fetch_missed(session.channel_id, since)
            except Exception as exc:
                log.warning("History fetch for %s failed: %s", session.channel_id, exc)
                report.failed_channels.append(session.channel_id)
                continue
            for msg in missed:
                await self._router.replay(msg)
                report.replayed += 1
            if missed:
                log.info("Replayed %d missed messages in %s", len(missed), session.channel_id)

        for session in self._store.all():
            if (
                session.state == SessionState.COMPLETE
                and session.winner == Winner.US
                and not self._ledger.is_vouched(session.channel_id)
            ):
                self._vouches.schedule(session.channel_id)
                report.vouches_scheduled += 1

        log.info(
            "Recovery: %d sessions, %d messages replayed, %d vouches owed",
            report.sessions, report.replayed, report.vouches_scheduled,
        )
        if self._activity:
            await self._activity.log_activity(
                "recovery",
                f"{report.sessions} sessions, {report.replayed} replayed, "
                f"{report.vouches_scheduled} vouches owed",
            )
        return report


def reconcile_payment_locks(store: SessionStore, ledger: IdempotencyLedger, now: float) -> list[str]:
    """Resolve sessions persisted mid-transfer.

    A locked session whose intent reached BROADCAST or CONFIRMED with a tx id
    completes its move to TRANSFER_SENT. Anything else has its lock cleared
    and stays retryable. Returns the channel ids that were touched.
    """
    touched: list[str] = []
    for session in store.all():
        if not session.payment_locked:
            continue
        touched.append(session.channel_id)
        intent = ledger.get_intent(session.payment_intent_id) if session.payment_intent_id else None
        session.payment_locked = False
        if (
            intent is not None
            and intent.state in (IntentState.BROADCAST, IntentState.CONFIRMED)
            and intent.tx
        ):
            session.payment_tx = intent.tx
            session.payment_address = intent.address
            if session.state == SessionState.AWAITING_ADDRESS:
                try_transition(session, SessionState.TRANSFER_SENT, "reconciled_on_startup", now)
            log.info("Session %s: transfer %s reconciled from ledger", session.channel_id, intent.tx)
        else:
            log.warning(
                "Session %s: payment lock cleared, intent %s left retryable",
                session.channel_id, intent.state.value if intent else "missing",
            )
    return touched
