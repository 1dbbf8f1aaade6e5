"""SessionHandler - serializes each channel's events and executes step effects."""

from __future__ import annotations

import logging
import random

from wagerbot.engine import steps
from wagerbot.engine.clock import Clock
from wagerbot.engine.effects import (
    Notify,
    Pause,
    Prefetch,
    ScheduleVouch,
    Send,
    StepContext,
    StepResult,
    Transfer,
)
from wagerbot.engine.linking import match_offer
from wagerbot.engine.queue import OutboundQueue
from wagerbot.engine.transfers import TransferExecutor
from wagerbot.engine.vouch import VouchPoster
from wagerbot.interfaces.activity import ActivityLog
from wagerbot.interfaces.notifier import Notifier
from wagerbot.interfaces.price import PriceFeed
from wagerbot.interfaces.transport import ChatTransport
from wagerbot.models.config import BotConfig
from wagerbot.models.events import ChannelInfo, ChatMessage
from wagerbot.models.records import PendingOffer
from wagerbot.models.session import Session, SessionState
from wagerbot.policy.classifier import ChannelClassifier
from wagerbot.state.persistence import PersistenceStore
from wagerbot.state.store import SessionStore

log = logging.getLogger(__name__)


class SessionHandler:
    """Per-channel mutex around the pure step functions.

    Messages in one channel are handled strictly in arrival order; different
    channels proceed independently. Effects run while the channel lock is held.
    """

    def __init__(
        self,
        config: BotConfig,
        store: SessionStore,
        persistence: PersistenceStore,
        queue: OutboundQueue,
        transfers: TransferExecutor,
        vouches: VouchPoster,
        transport: ChatTransport,
        clock: Clock,
        classifier: ChannelClassifier,
        activity: ActivityLog | None = None,
        notifier: Notifier | None = None,
        price: PriceFeed | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._cfg = config
        self._store = store
        self._persistence = persistence
        self._queue = queue
        self._transfers = transfers
        self._vouches = vouches
        self._transport = transport
        self._clock = clock
        self._classifier = classifier
        self._activity = activity
        self._notifier = notifier
        self._price = price
        self._rng = rng or random.Random()

    async def _context(self) -> StepContext:
        identity = self._transport.self_identity
        return StepContext(
            config=self._cfg,
            self_id=identity.user_id,
            self_name=identity.username,
            now=self._clock.now(),
            payout_address=await self._transfers.payout_address(),
        )

    # ── Inbound ────────────────────────────────────────────

    async def handle(self, msg: ChatMessage) -> bool:
        """Apply ``msg`` to its channel's session, creating one if the linking rule allows."""
        async with self._store.lock(msg.channel_id):
            ctx = await self._context()
            session = self._store.get(msg.channel_id)
            created = session is None
            if session is None:
                history_before = 0
                session, result = self._open_from_message(msg, ctx)
                if session is None:
                    return False
            else:
                history_before = len(session.history)
                self._late_link(session, msg, ctx)
                result = steps.step(session, msg, ctx)

            session.last_message_at = max(session.last_message_at, msg.timestamp)
            await self._apply(session, result.effects, ctx)
            await self._record(session, history_before, created)
            if result.changed or created:
                await self._persistence.save()
            return result.handled

    async def on_channel_created(self, info: ChannelInfo) -> bool:
        """Proactively open a session when a new session channel matches a recent offer."""
        if info.is_direct or not self._classifier.is_session_like(info.name):
            return False
        async with self._store.lock(info.channel_id):
            if self._store.get(info.channel_id) is not None:
                return False
            now = self._clock.now()
            offer = match_offer(info.name, self._linkable_offers(now), now)
            if offer is None:
                log.debug("New channel %s matched no pending offer", info.name)
                return False
            ctx = await self._context()
            session = self._store.create(info.channel_id, now, info.name)
            self._store.consume_pending_offer(offer.participant_id)
            result = steps.open_session(session, ctx, offer)
            await self._apply(session, result.effects, ctx)
            await self._record(session, 0, True)
            await self._persistence.save()
            return True

    async def on_channel_deleted(self, info: ChannelInfo) -> bool:
        async with self._store.lock(info.channel_id):
            session = self._store.remove(info.channel_id)
        if session is None:
            return False
        if self._activity:
            await self._activity.log_activity(
                "session_purged", f"Channel deleted in state {session.state.value}",
                channel_id=info.channel_id,
            )
        await self._persistence.save()
        return True

    # ── Creation ───────────────────────────────────────────

    def _linkable_offers(self, now: float) -> list[PendingOffer]:
        return [
            o for o in self._store.recent_offers(now)
            if not self._store.has_active_session_for(o.participant_id)
        ]

    def _late_link(self, session: Session, msg: ChatMessage, ctx: StepContext) -> None:
        """Link the offer of a participant who joins a session opened without one."""
        if (
            session.state != SessionState.AWAITING_PARTICIPANT
            or session.offer_id is not None
            or msg.author_is_bot
            or msg.author_id == ctx.self_id
            or steps.is_coordinator(session, msg.author_id, ctx)
        ):
            return
        offer = self._store.get_pending_offer(msg.author_id, ctx.now)
        if offer is None:
            return
        self._store.consume_pending_offer(offer.participant_id)
        steps.link_offer(session, offer)
        log.info("Linked %s to offer %s on first message", session.channel_id, offer.offer_id)

    def _open_from_message(
        self, msg: ChatMessage, ctx: StepContext,
    ) -> tuple[Session | None, StepResult | None]:
        is_coordinator = msg.author_id in self._cfg.channels.coordinator_ids
        offer = None if is_coordinator else self._store.get_pending_offer(msg.author_id, ctx.now)
        if offer is None:
            offer = match_offer(msg.channel_name, self._linkable_offers(ctx.now), ctx.now)
        if offer is None and not is_coordinator:
            log.debug("No offer links %s to channel %s", msg.author_id, msg.channel_name)
            return None, None

        session = self._store.create(msg.channel_id, ctx.now, msg.channel_name)
        if offer is not None:
            self._store.consume_pending_offer(offer.participant_id)
        result = steps.open_session(session, ctx, offer, msg.author_id, msg.content)
        return session, result

    # ── Effects ────────────────────────────────────────────

    async def _pause(self, pause: Pause) -> None:
        if pause == Pause.NONE or self._cfg.verification_mode:
            return
        game = self._cfg.game
        if pause == Pause.ACTION:
            low, high = game.action_delay_min_ms, game.action_delay_max_ms
        else:
            low, high = game.human_delay_min_ms, game.human_delay_max_ms
        await self._clock.sleep(self._rng.uniform(low, high) / 1000)

    async def _apply(self, session: Session, effects: list, ctx: StepContext) -> None:
        for effect in effects:
            if isinstance(effect, Send):
                await self._pause(effect.pause)
                try:
                    await self._queue.send(effect.channel_id, effect.content, effect.reply_to)
                except Exception as exc:
                    log.warning("Send in %s failed: %s", effect.channel_id, exc)
                    if effect.requests_roll and session.turn_state is not None:
                        # the next turn prompt must be able to ask again
                        session.turn_state.roll_requested = False
            elif isinstance(effect, Transfer):
                follow_up = await self._transfers.execute(session, effect, ctx)
                await self._apply(session, follow_up, ctx)
            elif isinstance(effect, ScheduleVouch):
                self._vouches.schedule(effect.channel_id)
            elif isinstance(effect, Prefetch):
                if self._price is not None:
                    await self._price.prefetch(effect.network)
            elif isinstance(effect, Notify):
                if self._notifier is not None and effect.kind == "game_result":
                    await self._notifier.game_result(
                        session.channel_id, effect.detail["winner"], effect.detail["scores"],
                    )

    async def _record(self, session: Session, history_before: int, created: bool) -> None:
        if self._activity is None:
            return
        if created:
            await self._activity.log_activity(
                "session_created",
                f"Session opened (participant {session.participant_id or '?'})",
                channel_id=session.channel_id,
                amount=str(session.offer_amount),
            )
        for entry in session.history[history_before:]:
            await self._activity.log_activity(
                "transition",
                f"{entry.from_state.value} -> {entry.to_state.value} ({entry.reason})",
                channel_id=session.channel_id,
            )
