"""Router - the single inbox every chat event passes through."""

from __future__ import annotations

import logging

from wagerbot.engine import parsing
from wagerbot.engine.offers import OfferHandler
from wagerbot.engine.queue import OutboundQueue
from wagerbot.engine.sessions import SessionHandler
from wagerbot.interfaces.activity import ActivityLog
from wagerbot.interfaces.backend import TransferBackend
from wagerbot.interfaces.notifier import Notifier
from wagerbot.interfaces.transport import ChatTransport
from wagerbot.models.config import BotConfig
from wagerbot.models.events import ChatMessage
from wagerbot.models.records import ChannelKind
from wagerbot.policy.classifier import ChannelClassifier
from wagerbot.state.ledger import IdempotencyLedger
from wagerbot.state.machine import GAME_STATES
from wagerbot.state.store import SessionStore

log = logging.getLogger(__name__)

# Routing outcomes
DUPLICATE = "DUPLICATE"
IGNORE_SELF = "IGNORE_SELF"
IGNORE_BOT = "IGNORE_BOT"
IGNORE_EXCLUDED = "IGNORE_EXCLUDED"
IGNORE_DIRECT = "IGNORE_DIRECT"
WALLET = "WALLET"
SESSION = "SESSION"
OFFER = "OFFER"
SESSION_INIT = "SESSION_INIT"
UNROUTED = "UNROUTED"
ERROR = "ERROR"


class Router:
    """Dedupe -> per-message mutex -> classify -> filter -> dispatch.

    At most one dispatch per message id. Nothing raised by a handler escapes
    :meth:`route`; the message counts as consumed either way.
    """

    def __init__(
        self,
        config: BotConfig,
        ledger: IdempotencyLedger,
        store: SessionStore,
        classifier: ChannelClassifier,
        offers: OfferHandler,
        sessions: SessionHandler,
        transport: ChatTransport,
        queue: OutboundQueue,
        backend: TransferBackend,
        activity: ActivityLog | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._cfg = config
        self._ledger = ledger
        self._store = store
        self._classifier = classifier
        self._offers = offers
        self._sessions = sessions
        self._transport = transport
        self._queue = queue
        self._backend = backend
        self._activity = activity
        self._notifier = notifier
        self._inflight: set[str] = set()

    async def route(self, msg: ChatMessage) -> str:
        """Handle one live event. Returns the routing outcome."""
        return await self._guarded(msg, replay=False)

    async def replay(self, msg: ChatMessage) -> str:
        """Handle one recovered history event (existing sessions only)."""
        return await self._guarded(msg, replay=True)

    async def _guarded(self, msg: ChatMessage, replay: bool) -> str:
        if msg.message_id in self._inflight or not self._ledger.mark_processed(msg.message_id):
            log.debug("Duplicate delivery of %s ignored", msg.message_id)
            return DUPLICATE
        self._inflight.add(msg.message_id)
        try:
            outcome = await self._dispatch(msg, replay)
        except Exception as exc:
            log.error(
                "Handler error for message %s in %s: %s",
                msg.message_id, msg.channel_id, exc, exc_info=True,
            )
            if self._notifier:
                await self._notifier.alert(
                    "Router error", f"message {msg.message_id} in {msg.channel_id}: {exc}",
                )
            return ERROR
        finally:
            self._inflight.discard(msg.message_id)

        if outcome in (SESSION, OFFER, SESSION_INIT, WALLET):
            log.info(
                "Route %s: channel=%s author=%s%s",
                outcome, msg.channel_id, msg.author_id, " (replay)" if replay else "",
            )
        else:
            log.debug("Route %s: channel=%s author=%s", outcome, msg.channel_id, msg.author_id)
        return outcome

    def _is_game_result(self, msg: ChatMessage) -> bool:
        session = self._store.get(msg.channel_id)
        if session is None or session.state not in GAME_STATES:
            return False
        return parsing.parse_dice_result(msg.content, self._cfg.game.dice_result_pattern) is not None

    async def _dispatch(self, msg: ChatMessage, replay: bool) -> str:
        cls = self._classifier.classify(msg.channel_id, msg.channel_name, msg.is_direct)
        self_id = self._transport.self_identity.user_id

        # Filters
        if msg.author_id == self_id:
            if not self._is_game_result(msg):
                return IGNORE_SELF
        elif msg.author_is_bot:
            if msg.author_id not in self._cfg.game.dice_bot_ids or not self._is_game_result(msg):
                return IGNORE_BOT

        if msg.content.strip().lower() == self._cfg.channels.wallet_command.lower():
            if cls.kind == ChannelKind.DIRECT and not replay:
                await self._reply_wallet(msg)
                return WALLET
        if cls.kind == ChannelKind.EXCLUDED:
            return IGNORE_EXCLUDED
        if cls.kind == ChannelKind.DIRECT:
            return IGNORE_DIRECT

        # Existing session has priority
        if self._store.get(msg.channel_id) is not None:
            await self._sessions.handle(msg)
            return SESSION
        if replay:
            return UNROUTED

        if cls.allow_offer_match and await self._offers.handle(msg):
            return OFFER

        if cls.kind == ChannelKind.SESSION and await self._sessions.handle(msg):
            return SESSION_INIT
        return UNROUTED

    async def _reply_wallet(self, msg: ChatMessage) -> None:
        network = self._cfg.payments.network
        address = await self._backend.get_payout_address(network)
        text = f"{network}: `{address}`" if address else f"No {network} payout address configured."
        try:
            await self._queue.send(msg.channel_id, text, reply_to=msg.message_id)
        except Exception as exc:
            log.warning("Wallet reply in %s failed: %s", msg.channel_id, exc)
