"""Invariant suite behind ``wagerbot verify``.

Every check drives a complete SessionDaemon over the in-memory transport, a
virtual clock and the dry-run backend, so no network is touched and delays
cost no wall time.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Awaitable, Callable

from wagerbot.backends.dry_run import DryRunBackend
from wagerbot.daemon import SessionDaemon
from wagerbot.engine.clock import VirtualClock
from wagerbot.interfaces.backend import TransferBackend
from wagerbot.interfaces.notifier import Notifier
from wagerbot.models.config import BotConfig
from wagerbot.models.events import ChatMessage
from wagerbot.models.session import SessionState, Winner
from wagerbot.price.fixed import FixedPriceFeed
from wagerbot.state.machine import TERMINAL_STATES, history_is_valid
from wagerbot.storage.sqlite import SQLiteActivityLog
from wagerbot.transport.memory import MemoryTransport

log = logging.getLogger(__name__)

SELF_ID = "900000000000000001"
SELF_NAME = "wagerbot"
COORDINATOR_ID = "200000000000000001"
DICE_BOT_ID = "400000000000000001"
VOUCH_CHANNEL = "500000000000000001"
PUBLIC_CHANNEL = "600000000000000001"
PAYOUT_ADDRESS = "LQ3B5Y3kh7cWz9gvYpnBtVQ8YcnUk5oTqA"
PARTICIPANT_ADDRESS = "LZ2K8yTdq5XgH8Lq4x9bJr7nZpY3cVw6Mt"
FIXED_PRICES = {"LTC": Decimal("80"), "BTC": Decimal("60000"), "SOL": Decimal("150")}


class VerificationFailure(Exception):
    pass


@dataclass
class CheckResult:
    name: str
    passed: bool
    detail: str = ""


def expect(condition: bool, message: str) -> None:
    if not condition:
        raise VerificationFailure(message)


def verification_config(delays: bool = False) -> BotConfig:
    """Default config with fixed actors. ``delays`` keeps human-like pauses on."""
    cfg = BotConfig()
    cfg.verification_mode = not delays
    cfg.payments.enable_live_transfers = False
    cfg.payments.payout_addresses = {"LTC": PAYOUT_ADDRESS}
    cfg.channels.coordinator_ids = [COORDINATOR_ID]
    cfg.channels.vouch_channel_id = VOUCH_CHANNEL
    cfg.game.dice_bot_ids = [DICE_BOT_ID]
    cfg.storage.activity_db_path = ":memory:"
    return cfg


class Harness:
    """One daemon lifetime over a MemoryTransport."""

    def __init__(
        self,
        state_dir: Path,
        delays: bool = False,
        transport: MemoryTransport | None = None,
        clock: VirtualClock | None = None,
        cfg: BotConfig | None = None,
        backend: TransferBackend | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.state_dir = state_dir
        self.delays = delays
        self.cfg = cfg or verification_config(delays)
        self.backend = backend or DryRunBackend(
            self.cfg.payments.payout_addresses, self.cfg.payments.address_patterns_by_network,
        )
        self.notifier = notifier
        self.clock = clock or VirtualClock()
        self.transport = transport or MemoryTransport(self.clock, SELF_ID, SELF_NAME)
        self.transport.add_channel(PUBLIC_CHANNEL, "wagers")
        self.transport.add_channel(VOUCH_CHANNEL, "vouches")
        self.daemon = SessionDaemon(
            self.cfg,
            transport=self.transport,
            clock=self.clock,
            backend=self.backend,
            activity=SQLiteActivityLog(":memory:"),
            price=FixedPriceFeed(FIXED_PRICES),
            notifier=notifier,
            state_path=str(state_dir / "state.json"),
        )

    async def __aenter__(self) -> Harness:
        await self.daemon.start()
        await self.daemon.wait_recovered()
        await self.settle()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.daemon.shutdown()

    async def settle(self) -> None:
        await self.daemon.queue.drain()
        await self.daemon.vouches.wait_idle()
        await self.daemon.queue.drain()

    async def restart(self) -> Harness:
        """Stop this daemon and build a new one over the same state file and history."""
        await self.daemon.shutdown()
        self.clock.advance(60)
        return Harness(
            self.state_dir, self.delays, self.transport.restarted(), self.clock,
            self.cfg, self.backend, self.notifier,
        )

    async def say(self, channel_id: str, author_id: str, content: str, **kwargs) -> ChatMessage:
        self.clock.advance(1)
        msg = self.transport.make_message(channel_id, author_id, content, **kwargs)
        await self.transport.deliver(msg)
        await self.settle()
        return msg

    async def redeliver(self, msg: ChatMessage) -> None:
        await self.transport.dispatch(msg)
        await self.settle()

    def session(self, channel_id: str):
        return self.daemon.store.get(channel_id)

    # ── Scripted flow ──────────────────────────────────────

    async def open_ticket(self, channel_id: str, participant_id: str, name: str, amount: int) -> None:
        await self.say(PUBLIC_CHANNEL, participant_id, f"anyone {amount}v{amount}?", author_name=name)
        self.transport.add_channel(channel_id, f"ticket-{name}")
        await self.say(channel_id, participant_id, "hey, here for the dice game", author_name=name)

    async def to_transfer(self, channel_id: str, participant_id: str, name: str, amount: int) -> ChatMessage:
        await self.open_ticket(channel_id, participant_id, name, amount)
        await self.say(channel_id, COORDINATOR_ID, f"{amount}v{amount} confirmed, send your addresses")
        return await self.say(channel_id, COORDINATOR_ID, PARTICIPANT_ADDRESS)

    async def to_game(self, channel_id: str, participant_id: str, name: str, amount: int) -> None:
        await self.to_transfer(channel_id, participant_id, name, amount)
        await self.say(channel_id, COORDINATOR_ID, "both paid, gl")
        await self.say(channel_id, COORDINATOR_ID, f"dice ft5 <@{SELF_ID}> first", mentions=[SELF_ID])

    async def roll_pair(self, channel_id: str, participant_id: str, ours: int, theirs: int) -> None:
        await self.say(
            channel_id, DICE_BOT_ID, f"<@{SELF_ID}> rolled a {ours}",
            author_is_bot=True, mentions=[SELF_ID],
        )
        await self.say(
            channel_id, DICE_BOT_ID, f"<@{participant_id}> rolled a {theirs}",
            author_is_bot=True, mentions=[participant_id],
        )


def sent_in(transport: MemoryTransport, channel_id: str) -> list[str]:
    return transport.transcript(channel_id)


def check_outbound_spacing(transport: MemoryTransport, min_gap_ms: int) -> None:
    stamps = [m.timestamp for m in transport.sent]
    for earlier, later in zip(stamps, stamps[1:]):
        expect(
            later - earlier >= min_gap_ms / 1000 - 1e-9,
            f"outbound messages {later - earlier:.3f}s apart, expected >= {min_gap_ms}ms",
        )


def check_histories(harness: Harness) -> None:
    for session in harness.daemon.store.all():
        expect(history_is_valid(session), f"history of {session.channel_id} is not a valid path")
        for i, entry in enumerate(session.history[:-1]):
            expect(
                entry.to_state not in TERMINAL_STATES,
                f"{session.channel_id} moved on after {entry.to_state.value} (entry {i})",
            )


# ── Scenarios ──────────────────────────────────────────────


async def single_snipe(state_dir: Path) -> str:
    async with Harness(state_dir, delays=True) as h:
        first = await h.say(PUBLIC_CHANNEL, "300000000000000001", "anyone 10v10?", author_name="alice")
        replies = [m for m in h.transport.sent if m.channel_id == PUBLIC_CHANNEL]
        expect(len(replies) == 1, f"expected one reply, got {len(replies)}")
        delay = replies[0].timestamp - first.timestamp
        expect(delay >= 2.0, f"reply after {delay:.3f}s, expected >= 2s")
        expect(replies[0].reply_to == first.message_id, "reply does not reference the offer")
        offer = h.daemon.store.get_pending_offer("300000000000000001", h.clock.now())
        expect(offer is not None, "no PendingOffer recorded")
        expect(
            offer.offer_amount == Decimal("10.00") and offer.our_amount == Decimal("10.50"),
            f"PendingOffer terms {offer.offer_amount} v {offer.our_amount}",
        )
        await h.say(PUBLIC_CHANNEL, "300000000000000001", "anyone 10v10?", author_name="alice")
        replies = [m for m in h.transport.sent if m.channel_id == PUBLIC_CHANNEL]
        expect(len(replies) == 1, "second offer inside the cooldown got a reply")
        return f"reply after {delay:.2f}s"


async def parallel_sessions(state_dir: Path) -> str:
    async with Harness(state_dir) as h:
        actors = [
            ("700000000000000001", "300000000000000011", "bob", 10),
            ("700000000000000002", "300000000000000012", "carol", 20),
            ("700000000000000003", "300000000000000013", "dave", 30),
        ]
        for _, participant, name, amount in actors:
            await h.say(PUBLIC_CHANNEL, participant, f"{amount}v{amount} anyone", author_name=name)
        for channel, _, name, _ in actors:
            h.transport.add_channel(channel, f"ticket-{name}")
        await asyncio.gather(*(
            h.transport.deliver(
                h.transport.make_message(channel, participant, f"here for {amount}", author_name=name)
            )
            for channel, participant, name, amount in actors
        ))
        await h.settle()
        for channel, participant, name, amount in actors:
            session = h.session(channel)
            expect(session is not None, f"no session for {name}")
            expect(
                session.state == SessionState.AWAITING_COORDINATOR,
                f"{name} session in {session.state.value}",
            )
            expect(session.participant_id == participant, f"{name} session linked to {session.participant_id}")
            expect(session.offer_amount == Decimal(amount), f"{name} session has offer {session.offer_amount}")
            others = [p for c, p, _, _ in actors if c != channel]
            for text in sent_in(h.transport, channel):
                expect(not any(p in text for p in others), f"another participant leaked into {name}'s channel")
        return "3 independent sessions"


async def crash_recovery(state_dir: Path) -> str:
    channel, participant = "700000000000000010", "300000000000000020"
    async with Harness(state_dir) as h:
        await h.to_game(channel, participant, "erin", 10)
        for ours, theirs in ((6, 1), (6, 1), (1, 6)):
            await h.roll_pair(channel, participant, ours, theirs)
        session = h.session(channel)
        expect(session.state == SessionState.GAME_IN_PROGRESS, f"session in {session.state.value}")
        expect(session.turn_state.scores == {"us": 2, "them": 1}, f"scores {session.turn_state.scores}")
        before_store = h.daemon.store.snapshot()
        before_ledger = h.daemon.ledger.snapshot()
        h2 = await h.restart()

    async with h2:
        expect(h2.daemon.store.snapshot() == before_store, "sessions differ after reload")
        expect(h2.daemon.ledger.snapshot() == before_ledger, "ledger differs after reload")
        session = h2.session(channel)
        expect(session.state == SessionState.GAME_IN_PROGRESS, f"reloaded in {session.state.value}")
        expect(session.turn_state.scores == {"us": 2, "them": 1}, f"reloaded scores {session.turn_state.scores}")
        await h2.roll_pair(channel, participant, 5, 2)
        expect(session.turn_state.scores == {"us": 3, "them": 1}, f"scores after resume {session.turn_state.scores}")
        check_outbound_spacing(h2.transport, h2.cfg.queue.min_outbound_gap_ms)
        return "resumed at 2-1, next pair resolved"


async def terms_mismatch(state_dir: Path) -> str:
    channel, participant = "700000000000000020", "300000000000000030"
    async with Harness(state_dir) as h:
        await h.open_ticket(channel, participant, "frank", 20)
        session = h.session(channel)
        expect(session.state == SessionState.AWAITING_COORDINATOR, f"session in {session.state.value}")
        history_len = len(session.history)
        before = len(sent_in(h.transport, channel))
        await h.say(channel, COORDINATOR_ID, "Confirm 50v50")
        replies = sent_in(h.transport, channel)[before:]
        expect(session.state == SessionState.AWAITING_COORDINATOR, "mismatch changed state")
        expect(len(session.history) == history_len, "mismatch recorded a transition")
        expect(len(replies) == 1, f"expected one reply, got {len(replies)}")
        expect("20" in replies[0] and "50" in replies[0], f"reply lacks both amounts: {replies[0]!r}")
        return replies[0]


async def double_send(state_dir: Path) -> str:
    channel, participant = "700000000000000030", "300000000000000040"
    async with Harness(state_dir) as h:
        address_msg = await h.to_transfer(channel, participant, "grace", 10)
        session = h.session(channel)
        expect(session.state == SessionState.TRANSFER_SENT, f"session in {session.state.value}")
        tx = session.payment_tx
        outbound = len(h.transport.sent)

        await h.redeliver(address_msg)
        await h.say(channel, COORDINATOR_ID, PARTICIPANT_ADDRESS)
        expect(len(h.daemon.ledger.intents()) == 1, f"{len(h.daemon.ledger.intents())} intents recorded")
        expect(session.payment_tx == tx, "payment tx was replaced")
        expect(not session.payment_locked, "payment lock left set")
        expect(len(h.transport.sent) == outbound, "duplicate address produced traffic")
        snapshot = h.daemon.store.snapshot()
        h2 = await h.restart()

    async with h2:
        outbound = len(h2.transport.sent)
        await h2.redeliver(address_msg)
        expect(len(h2.transport.sent) == outbound, "re-delivery after restart produced traffic")
        expect(h2.daemon.store.snapshot() == snapshot, "re-delivery after restart changed state")
        expect(len(h2.daemon.ledger.intents()) == 1, "re-delivery after restart recorded an intent")
        return f"one transfer ({tx})"


async def vouch_dedupe(state_dir: Path) -> str:
    channel, participant = "700000000000000040", "300000000000000050"
    async with Harness(state_dir) as h:
        await h.to_game(channel, participant, "heidi", 10)
        for _ in range(5):
            await h.roll_pair(channel, participant, 6, 1)
        session = h.session(channel)
        expect(session.state == SessionState.COMPLETE, f"session in {session.state.value}")
        expect(session.winner == Winner.US, f"winner {session.winner.value}")
        await h.daemon.vouches.post(channel)
        await h.daemon.vouches.post(channel)
        await h.settle()
        expect(len(sent_in(h.transport, VOUCH_CHANNEL)) == 1, "vouch posted more than once")
        expect(session.acknowledged, "session not marked acknowledged")
        check_histories(h)
        h2 = await h.restart()

    async with h2:
        await h2.daemon.vouches.post(channel)
        await h2.settle()
        vouches = sent_in(h2.transport, VOUCH_CHANNEL)
        expect(len(vouches) == 1, f"{len(vouches)} vouches across restarts")
        return vouches[0]


# ── Invariants ─────────────────────────────────────────────


async def duplicate_delivery(state_dir: Path) -> str:
    async with Harness(state_dir) as h:
        h.clock.advance(1)
        msg = h.transport.make_message(PUBLIC_CHANNEL, "300000000000000060", "5v5 dice?", author_name="ivan")
        await asyncio.gather(h.transport.deliver(msg), h.transport.deliver(msg), h.redeliver(msg))
        await h.settle()
        replies = [m for m in h.transport.sent if m.reply_to == msg.message_id]
        expect(len(replies) == 1, f"{len(replies)} replies to one message id")
        return "one reply"


async def offer_boundaries(state_dir: Path) -> str:
    async with Harness(state_dir) as h:
        cooldown = h.cfg.offers.offer_cooldown_ms / 1000
        await h.say(PUBLIC_CHANNEL, "300000000000000070", "100v100", author_name="judy")
        await h.say(PUBLIC_CHANNEL, "300000000000000071", "100.01v100.01", author_name="ken")
        offers = {m.reply_to for m in h.transport.sent}
        expect(len(offers) == 1, "offer above the maximum was answered")

        participant = "300000000000000072"
        first = await h.say(PUBLIC_CHANNEL, participant, "10v10", author_name="leo")
        replied = [m for m in h.transport.sent if m.reply_to == first.message_id]
        expect(len(replied) == 1, "first offer not answered")
        h.clock.advance_to(replied[0].timestamp + cooldown - 1)
        msg = h.transport.make_message(PUBLIC_CHANNEL, participant, "10v10", author_name="leo")
        await h.transport.deliver(msg)
        await h.settle()
        expect(not any(m.reply_to == msg.message_id for m in h.transport.sent), "answered inside cooldown")
        h.clock.advance_to(replied[0].timestamp + cooldown)
        msg = h.transport.make_message(PUBLIC_CHANNEL, participant, "10v10", author_name="leo")
        await h.transport.deliver(msg)
        await h.settle()
        expect(any(m.reply_to == msg.message_id for m in h.transport.sent), "not answered once cooldown expired")

        replies = [m for m in h.transport.sent if m.channel_id == PUBLIC_CHANNEL]
        check_outbound_spacing(h.transport, h.cfg.queue.min_outbound_gap_ms)
        return f"{len(replies)} replies, spacing held"


Check = Callable[[Path], Awaitable[str]]

CHECKS: list[tuple[str, Check]] = [
    ("single_snipe", single_snipe),
    ("parallel_sessions", parallel_sessions),
    ("crash_recovery", crash_recovery),
    ("terms_mismatch", terms_mismatch),
    ("double_send_protection", double_send),
    ("vouch_dedupe", vouch_dedupe),
    ("duplicate_delivery", duplicate_delivery),
    ("offer_boundaries", offer_boundaries),
]


async def run_verification(only: list[str] | None = None) -> list[CheckResult]:
    """Run every check (or those named in ``only``) and collect the results."""
    results: list[CheckResult] = []
    with tempfile.TemporaryDirectory(prefix="wagerbot-verify-") as tmp:
        for name, check in CHECKS:
            if only and name not in only:
                continue
            state_dir = Path(tmp) / name
            try:
                detail = await check(state_dir)
            except VerificationFailure as exc:
                results.append(CheckResult(name, False, str(exc)))
            except Exception as exc:
                log.error("Check %s crashed: %s", name, exc, exc_info=True)
                results.append(CheckResult(name, False, f"{type(exc).__name__}: {exc}"))
            else:
                results.append(CheckResult(name, True, detail))
    return results
