"""Tests 82-86: Startup reconciliation and replay of missed history."""

from __future__ import annotations

from wagerbot.engine.recovery import Recovery, reconcile_payment_locks
from wagerbot.errors import TransportError
from wagerbot.models.records import IntentState
from wagerbot.models.session import SessionState
from wagerbot.verification import Harness

from tests.conftest import (
    COORDINATOR_ID,
    PARTICIPANT_ID,
    SELF_ID,
    TICKET_CHANNEL,
    VOUCH_CHANNEL,
)
from tests.factories import NOW, make_intent, make_session


# ── Test 82: Paging through history (Tier 1) ──────────────────────


async def test_fetch_missed_pages_until_cutoff(transport, store, ledger):
    for i in range(250):
        transport.record(
            transport.make_message(TICKET_CHANNEL, PARTICIPANT_ID, f"m{i}", timestamp=NOW + i)
        )
    recovery = Recovery(transport, None, store, ledger, None)
    missed = await recovery.fetch_missed(TICKET_CHANNEL, NOW + 100)
    assert [m.content for m in missed] == [f"m{i}" for i in range(101, 250)]


async def test_fetch_missed_empty_channel(transport, store, ledger):
    recovery = Recovery(transport, None, store, ledger, None)
    assert await recovery.fetch_missed(TICKET_CHANNEL, NOW) == []


async def test_history_failure_is_reported(transport, store, ledger, monkeypatch):
    store.restore({"sessions": [make_session(SessionState.AWAITING_ADDRESS).to_dict()]})

    async def broken(*args, **kwargs):
        raise TransportError("history unavailable")

    monkeypatch.setattr(transport, "fetch_history", broken)
    report = await Recovery(transport, None, store, ledger, None).run()
    assert report.failed_channels == [TICKET_CHANNEL]
    assert report.replayed == 0


# ── Test 83: Payment locks left by a crash (Tier 1) ───────────────


def test_reconcile_payment_locks(store, ledger):
    store.restore({
        "sessions": [
            make_session(
                SessionState.AWAITING_ADDRESS, channel_id="c1",
                payment_locked=True, payment_intent_id="i1",
            ).to_dict(),
            make_session(
                SessionState.AWAITING_ADDRESS, channel_id="c2",
                payment_locked=True, payment_intent_id="i2",
            ).to_dict(),
            make_session(SessionState.AWAITING_ADDRESS, channel_id="c3").to_dict(),
        ]
    })
    ledger.restore({
        "payment_intents": [
            make_intent("i1", IntentState.BROADCAST, channel_id="c1", tx="tx9").to_dict(),
            make_intent("i2", IntentState.PENDING, channel_id="c2").to_dict(),
        ]
    })

    assert reconcile_payment_locks(store, ledger, NOW) == ["c1", "c2"]

    broadcast = store.get("c1")
    assert broadcast.state == SessionState.TRANSFER_SENT
    assert broadcast.payment_tx == "tx9"
    assert broadcast.history[-1].reason == "reconciled_on_startup"

    pending = store.get("c2")
    assert pending.state == SessionState.AWAITING_ADDRESS
    assert not pending.payment_locked
    assert pending.payment_tx is None
    assert ledger.can_send("i2").can_send


# ── Test 84: Missed messages are replayed (Tier 1) ────────────────


async def test_missed_confirmation_replayed_after_restart(tmp_path, mock_notifier):
    channel, participant = "700000000000000101", "300000000000000101"
    async with Harness(tmp_path, notifier=mock_notifier) as h:
        await h.to_transfer(channel, participant, "mallory", 10)
        assert h.session(channel).state == SessionState.TRANSFER_SENT
        h2 = await h.restart()

    h2.clock.advance(5)
    missed = h2.transport.make_message(channel, COORDINATOR_ID, "both paid, gl")
    h2.transport.record(missed)

    async with h2:
        session = h2.session(channel)
        assert session.state == SessionState.AWAITING_GAME_START
        assert session.last_message_at == missed.timestamp
        assert h2.daemon.ledger.is_processed(missed.message_id)
        assert h2.transport.transcript(channel)[-1] == "Confirm"


# ── Test 85: Owed vouches are posted after restart (Tier 1) ───────


async def test_owed_vouch_posted_on_recovery(tmp_path, mock_notifier):
    channel, participant = "700000000000000103", "300000000000000103"
    async with Harness(tmp_path, notifier=mock_notifier) as h:
        await h.to_game(channel, participant, "niaj", 10)
        h.cfg.channels.vouch_channel_id = ""
        for _ in range(5):
            await h.roll_pair(channel, participant, 6, 1)
        assert h.session(channel).state == SessionState.COMPLETE
        assert not h.daemon.ledger.is_vouched(channel)
        h.cfg.channels.vouch_channel_id = VOUCH_CHANNEL
        h2 = await h.restart()

    async with h2:
        assert len(h2.transport.transcript(VOUCH_CHANNEL)) == 1
        assert h2.daemon.ledger.is_vouched(channel)
        assert h2.session(channel).acknowledged


# ── Test 86: Own messages in history are skipped (Tier 1) ─────────


async def test_own_messages_not_replayed_into_sessions(tmp_path, mock_notifier):
    channel, participant = "700000000000000104", "300000000000000104"
    async with Harness(tmp_path, notifier=mock_notifier) as h:
        await h.to_transfer(channel, participant, "olivia", 10)
        history_len = len(h.session(channel).history)
        h2 = await h.restart()

    h2.transport.record(h2.transport.make_message(channel, SELF_ID, "both paid, gl"))
    async with h2:
        assert len(h2.session(channel).history) == history_len
