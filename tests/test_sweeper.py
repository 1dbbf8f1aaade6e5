"""Tests 78-81, 134: Idle cancellation, purge of finished sessions, payment confirmation."""

from __future__ import annotations

import pytest

from wagerbot.engine.sweeper import SessionSweeper
from wagerbot.engine.transfers import TransferExecutor
from wagerbot.models.records import IntentState
from wagerbot.models.session import SessionState, Winner

from tests.factories import NOW, make_intent, make_offer, make_session

S = SessionState


@pytest.fixture
def sweeper(test_config, store, persistence, clock, activity):
    return SessionSweeper(test_config.storage, store, persistence, clock, activity)


def seed(store, *sessions):
    store.restore({"sessions": [s.to_dict() for s in sessions]})


# ── Test 78: Idle pre-payment sessions (Tier 1) ───────────────────


async def test_idle_pre_payment_cancelled(sweeper, store, clock, activity):
    seed(store, make_session(S.AWAITING_COORDINATOR, channel_id="c1"))
    clock.advance(3601)
    report = await sweeper.sweep()
    assert report.cancelled == ["c1"]
    session = store.get("c1")
    assert session.state == S.CANCELLED
    assert session.history[-1].reason == "idle_timeout"
    entries = await activity.get_channel_activity("c1")
    assert [e.event_type for e in entries] == ["session_cancelled"]


async def test_recent_activity_keeps_session(sweeper, store, clock):
    seed(store, make_session(S.AWAITING_ADDRESS, channel_id="c1"))
    store.get("c1").last_message_at = NOW + 3000
    clock.advance(3601)
    report = await sweeper.sweep()
    assert report.cancelled == []
    assert store.get("c1").state == S.AWAITING_ADDRESS


async def test_locked_payment_never_cancelled(sweeper, store, clock):
    seed(store, make_session(S.AWAITING_ADDRESS, channel_id="c1", payment_locked=True))
    clock.advance(7200)
    report = await sweeper.sweep()
    assert report.cancelled == []


async def test_session_under_lock_is_skipped(sweeper, store, clock):
    seed(store, make_session(S.AWAITING_COORDINATOR, channel_id="c1"))
    clock.advance(3601)
    async with store.lock("c1"):
        report = await sweeper.sweep()
    assert report.cancelled == []


# ── Test 79: Post-payment sessions only warn (Tier 1) ─────────────


async def test_post_payment_sessions_reported_stale(sweeper, store, clock):
    seed(store, make_session(S.GAME_IN_PROGRESS, channel_id="c1"))
    clock.advance(7200)
    report = await sweeper.sweep()
    assert report.stale == ["c1"]
    assert store.get("c1").state == S.GAME_IN_PROGRESS


# ── Test 80: Purging (Tier 1) ─────────────────────────────────────


async def test_cancelled_purged_next_sweep(sweeper, store):
    seed(store, make_session(S.CANCELLED, channel_id="c1"))
    report = await sweeper.sweep()
    assert report.purged == ["c1"]
    assert store.get("c1") is None


async def test_complete_purged_after_grace(sweeper, store, clock, persistence):
    seed(store, make_session(S.COMPLETE, channel_id="c1", winner=Winner.US))
    clock.advance(3600)
    assert (await sweeper.sweep()).purged == []
    clock.advance(86400)
    assert (await sweeper.sweep()).purged == ["c1"]
    assert persistence.saves >= 1


# ── Test 81: Expired offers (Tier 1) ──────────────────────────────


async def test_expired_offers_purged(sweeper, store, clock):
    store.store_pending_offer(make_offer(created_at=NOW))
    clock.advance(86401)
    report = await sweeper.sweep()
    assert report.expired_offers == 1
    assert store.recent_offers(clock.now()) == []


# ── Test 134: Sweeps confirm broadcast payments (Tier 1) ──────────


async def test_sweep_confirms_broadcasts(test_config, store, ledger, persistence, clock, activity, mock_backend):
    transfers = TransferExecutor(test_config, ledger, mock_backend, persistence, clock, activity)
    sweeper = SessionSweeper(test_config.storage, store, persistence, clock, activity, transfers)
    ledger.restore({"payment_intents": [make_intent(state=IntentState.BROADCAST, tx="tx-live").to_dict()]})

    mock_backend.confirmations = 0
    report = await sweeper.sweep()
    assert report.confirmed == []
    assert not report.changed

    mock_backend.confirmations = 3
    report = await sweeper.sweep()
    assert report.confirmed == ["intent-1"]
    assert ledger.get_intent("intent-1").state == IntentState.CONFIRMED
    assert persistence.saves >= 1
