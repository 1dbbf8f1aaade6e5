"""OfferHandler - answers public-channel wager advertisements."""

from __future__ import annotations

import logging
import random
from decimal import Decimal

from wagerbot.engine import parsing
from wagerbot.engine.clock import Clock
from wagerbot.engine.queue import OutboundQueue
from wagerbot.interfaces.activity import ActivityLog
from wagerbot.interfaces.notifier import Notifier
from wagerbot.models.config import BotConfig
from wagerbot.models.events import ChatMessage
from wagerbot.models.records import PendingOffer
from wagerbot.state.store import SessionStore

log = logging.getLogger(__name__)


class OfferHandler:
    """Claims ``<amount> v|vs <amount>`` offers, at most once per participant per cooldown.

    The cooldown and the processing flag are checked and set synchronously,
    before the first await, so concurrent offers from one participant race
    for a single claim.
    """

    def __init__(
        self,
        config: BotConfig,
        store: SessionStore,
        queue: OutboundQueue,
        clock: Clock,
        self_id: str = "",
        activity: ActivityLog | None = None,
        notifier: Notifier | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._cfg = config
        self._store = store
        self._queue = queue
        self._clock = clock
        self.self_id = self_id
        self._activity = activity
        self._notifier = notifier
        self._rng = rng or random.Random()
        self._cooldown_until: dict[str, float] = {}
        self._processing: set[str] = set()
        self._last_template: int | None = None

    def on_cooldown(self, participant_id: str) -> bool:
        return self._cooldown_until.get(participant_id, float("-inf")) > self._clock.monotonic()

    def _claim(self, participant_id: str) -> bool:
        if participant_id in self._processing or self.on_cooldown(participant_id):
            return False
        self._cooldown_until[participant_id] = (
            self._clock.monotonic() + self._cfg.offers.offer_cooldown_ms / 1000
        )
        self._processing.add(participant_id)
        return True

    def _pick_template(self) -> str:
        templates = self._cfg.templates.offer
        choices = [i for i in range(len(templates)) if i != self._last_template] or [0]
        index = self._rng.choice(choices)
        self._last_template = index
        return templates[index]

    def _vary_case(self, text: str) -> str:
        style = self._rng.randrange(3)
        if style == 1:
            return text.lower()
        if style == 2:
            return text[:1].upper() + text[1:]
        return text

    def render(self, offer: PendingOffer) -> str:
        text = self._vary_case(self._pick_template())
        return text.replace("{ours}", f"${offer.our_amount}").replace(
            "{theirs}", f"${parsing.to_cents(offer.offer_amount)}"
        )

    async def handle(self, msg: ChatMessage) -> bool:
        """Returns True when the message was claimed as an offer."""
        cfg = self._cfg.offers
        amounts = parsing.parse_offer(msg.content, cfg.offer_pattern)
        if amounts is None:
            return False
        theirs, other = amounts
        if theirs != other:
            log.debug("Ignoring asymmetric offer %s v %s from %s", theirs, other, msg.author_id)
            return False
        if theirs > cfg.offer_max_amount or theirs < cfg.offer_min_amount:
            log.debug("Ignoring offer %s from %s outside bounds", theirs, msg.author_id)
            return False
        if msg.author_id == self.self_id:
            return False
        if self._store.has_active_session_for(msg.author_id):
            log.info("Offer ignored: %s already has an active session", msg.author_id)
            return False
        if not self._claim(msg.author_id):
            log.info("Offer ignored: %s on cooldown or in flight", msg.author_id)
            return False

        try:
            return await self._respond(msg, theirs)
        finally:
            self._processing.discard(msg.author_id)

    async def _respond(self, msg: ChatMessage, theirs: Decimal) -> bool:
        cfg = self._cfg.offers
        offer = PendingOffer(
            participant_id=msg.author_id,
            participant_name=msg.author_name,
            offer_amount=parsing.to_cents(theirs),
            our_amount=parsing.compute_our_amount(theirs, cfg.tax_rate),
            source_channel_id=msg.channel_id,
            offer_id=parsing.make_offer_id(msg.author_id, msg.timestamp),
            created_at=self._clock.now(),
        )
        self._store.store_pending_offer(offer)
        reply = self.render(offer)

        if not self._cfg.verification_mode:
            delay_ms = self._rng.uniform(cfg.min_reply_delay_ms, cfg.max_reply_delay_ms)
            await self._clock.sleep(delay_ms / 1000)

        try:
            await self._queue.send(msg.channel_id, reply, reply_to=msg.message_id)
        except Exception as exc:
            log.warning("Offer reply to %s failed: %s", msg.author_id, exc)
            return True
        # Replies to one participant stay a full cooldown apart
        self._cooldown_until[msg.author_id] = max(
            self._cooldown_until.get(msg.author_id, 0.0),
            self._clock.monotonic() + cfg.offer_cooldown_ms / 1000,
        )

        log.info(
            "Offer claimed: %s offered %s, we answered %s in %s",
            msg.author_id, offer.offer_amount, offer.our_amount, msg.channel_id,
        )
        if self._activity:
            await self._activity.log_activity(
                "offer_claimed",
                f"{msg.author_id}: {offer.offer_amount} v {offer.our_amount}",
                channel_id=msg.channel_id,
                amount=str(offer.offer_amount),
            )
        if self._notifier:
            await self._notifier.offer_claimed(msg.channel_id, msg.author_id, offer.offer_amount)
        return True
