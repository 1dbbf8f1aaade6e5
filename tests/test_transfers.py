"""Tests 66-75, 132: TransferExecutor gates, write-ahead recording and outcomes."""

from __future__ import annotations

from decimal import Decimal

import pytest

from wagerbot.engine.effects import Send, Transfer
from wagerbot.engine.transfers import TransferExecutor
from wagerbot.models.records import IntentState
from wagerbot.models.session import SessionState
from wagerbot.state.persistence import read_snapshot

from tests.conftest import (
    COORDINATOR_ID,
    OUTSIDER_ID,
    PARTICIPANT_ADDRESS,
    make_context,
    make_test_config,
)
from tests.factories import make_session, next_id
from tests.mocks import MockBackend


def live_config(**payments):
    cfg = make_test_config()
    cfg.payments.enable_live_transfers = True
    for name, value in payments.items():
        setattr(cfg.payments, name, value)
    return cfg


def transfer(session, sender_id: str = COORDINATOR_ID, address: str = PARTICIPANT_ADDRESS) -> Transfer:
    return Transfer(
        channel_id=session.channel_id,
        address=address,
        amount_usd=session.our_amount,
        message_id=next_id(),
        sender_id=sender_id,
    )


@pytest.fixture
def session(store):
    store.restore({"sessions": [make_session(SessionState.AWAITING_ADDRESS).to_dict()]})
    return store.get("700000000000000001")


@pytest.fixture
def build(ledger, persistence, clock, activity, mock_notifier):
    """Factory for an executor over a given config and backend."""

    def _build(cfg, backend):
        return TransferExecutor(cfg, ledger, backend, persistence, clock, activity, mock_notifier)

    return _build


# ── Test 66: Dry run (Tier 1) ─────────────────────────────────────


async def test_dry_run_records_without_sending(build, session, ledger, mock_backend, mock_notifier, activity):
    cfg = make_test_config()
    executor = build(cfg, mock_backend)
    follow_up = await executor.execute(session, transfer(session), make_context(cfg))

    assert mock_backend.send_calls == []
    assert session.state == SessionState.TRANSFER_SENT
    assert session.payment_tx.startswith("dryrun_")
    intent = ledger.get_intent(session.payment_intent_id)
    assert intent.state == IntentState.CONFIRMED
    assert intent.dry_run
    assert ledger.daily_spend_today() == Decimal("0")
    assert "dry-run" in follow_up[0].content
    assert mock_notifier.payment_calls == []
    entries = await activity.get_channel_activity(session.channel_id)
    assert [e.event_type for e in entries] == ["transfer_dry_run"]


# ── Test 67: Live transfer (Tier 1) ───────────────────────────────


async def test_live_transfer(build, session, ledger, mock_backend, mock_notifier):
    cfg = live_config()
    executor = build(cfg, mock_backend)
    follow_up = await executor.execute(session, transfer(session), make_context(cfg))

    assert mock_backend.send_calls == [(PARTICIPANT_ADDRESS, Decimal("10.50"), "LTC", session.channel_id)]
    assert session.payment_tx == "tx0001"
    assert not session.payment_locked
    assert ledger.get_intent(session.payment_intent_id).state == IntentState.BROADCAST
    assert ledger.daily_spend_today() == Decimal("0")
    assert ledger.committed_spend_today() == Decimal("10.50")
    assert follow_up[0].content == "Sent $10.50. TX: tx0001"
    assert mock_notifier.payment_calls == [(session.channel_id, Decimal("10.50"), "tx0001", "LTC")]


async def test_intent_persisted_before_broadcast(build, session, persistence, mock_backend):
    cfg = live_config()
    seen = {}

    def inspect_snapshot():
        data = read_snapshot(persistence.path)
        seen["session"] = data["sessions"][0]
        seen["intents"] = data["payment_intents"]

    mock_backend.on_send = inspect_snapshot
    await build(cfg, mock_backend).execute(session, transfer(session), make_context(cfg))

    assert seen["session"]["payment_locked"] is True
    assert seen["session"]["payment_tx"] is None
    assert [i["state"] for i in seen["intents"]] == ["PENDING"]


# ── Test 68: Address validation (Tier 1) ──────────────────────────


async def test_invalid_address_replies_without_gating(build, session, ledger):
    cfg = live_config()
    backend = MockBackend(valid=False)
    [reply] = await build(cfg, backend).execute(session, transfer(session), make_context(cfg))
    assert reply.content == "That doesn't look like a valid LTC address."
    assert ledger.intents() == []
    assert backend.send_calls == []


# ── Test 69: Quiet refusals (Tier 1) ──────────────────────────────


async def test_untrusted_sender_is_silent(build, session, mock_backend):
    cfg = live_config()
    result = await build(cfg, mock_backend).execute(
        session, transfer(session, sender_id=OUTSIDER_ID), make_context(cfg),
    )
    assert result == []
    assert mock_backend.send_calls == []


async def test_already_paid_is_silent(build, mock_backend):
    cfg = live_config()
    session = make_session(SessionState.AWAITING_ADDRESS, payment_tx="tx-old")
    assert await build(cfg, mock_backend).execute(session, transfer(session), make_context(cfg)) == []
    assert mock_backend.send_calls == []


async def test_same_message_acts_once(build, session, mock_backend):
    cfg = live_config()
    executor = build(cfg, mock_backend)
    effect = transfer(session)
    await executor.execute(session, effect, make_context(cfg))
    assert await executor.execute(session, effect, make_context(cfg)) == []
    assert len(mock_backend.send_calls) == 1


# ── Test 70: Visible refusals (Tier 1) ────────────────────────────


@pytest.mark.parametrize(
    "payments, expected",
    [
        ({"max_payment_per_tx_usd": Decimal("10.00")}, "per-payment limit"),
        ({"min_payment_usd": Decimal("20.00")}, "below the minimum"),
        ({"self_addresses": [PARTICIPANT_ADDRESS]}, "belongs to me"),
        ({"address_allowlist": ["LQ3B5Y3kh7cWz9gvYpnBtVQ8YcnUk5oTqA"]}, "allow-list"),
    ],
)
async def test_gate_refusals(build, session, mock_backend, activity, payments, expected):
    cfg = live_config(**payments)
    [reply] = await build(cfg, mock_backend).execute(session, transfer(session), make_context(cfg))
    assert isinstance(reply, Send)
    assert reply.content.startswith("Can't send this payment: ")
    assert expected in reply.content
    assert mock_backend.send_calls == []
    assert not session.payment_locked
    entries = await activity.get_channel_activity(session.channel_id)
    assert [e.event_type for e in entries] == ["transfer_refused"]


async def test_daily_limit(build, store, mock_backend):
    cfg = live_config(max_daily_usd=Decimal("15.00"))
    executor = build(cfg, mock_backend)
    store.restore({
        "sessions": [
            make_session(SessionState.AWAITING_ADDRESS, channel_id="c1").to_dict(),
            make_session(SessionState.AWAITING_ADDRESS, channel_id="c2").to_dict(),
        ]
    })
    first, second = store.get("c1"), store.get("c2")

    await executor.execute(first, transfer(first), make_context(cfg))
    [reply] = await executor.execute(second, transfer(second), make_context(cfg))
    assert "daily payment limit" in reply.content
    assert len(mock_backend.send_calls) == 1


# ── Test 71: Failures leave the session retryable (Tier 1) ────────


async def test_failure_then_retry_reuses_intent(build, session, ledger):
    cfg = live_config()
    backend = MockBackend(succeed=False, error="insufficient balance")
    executor = build(cfg, backend)

    [reply] = await executor.execute(session, transfer(session), make_context(cfg))
    assert reply.content.startswith("Payment failed: insufficient balance")
    assert session.state == SessionState.AWAITING_ADDRESS
    assert not session.payment_locked
    intent_id = session.payment_intent_id
    assert ledger.get_intent(intent_id).state == IntentState.FAILED

    backend.succeed = True
    await executor.execute(session, transfer(session), make_context(cfg))
    assert session.payment_intent_id == intent_id
    assert session.payment_tx == "tx0002"
    assert [i.intent_id for i in ledger.intents()] == [intent_id]
    assert ledger.get_intent(intent_id).state == IntentState.BROADCAST


async def test_backend_exception_is_contained(build, session, ledger):
    cfg = live_config()
    [reply] = await build(cfg, MockBackend(raises=True)).execute(
        session, transfer(session), make_context(cfg),
    )
    assert "wallet unreachable" in reply.content
    assert ledger.get_intent(session.payment_intent_id).failure == "wallet unreachable"


async def test_alert_after_repeated_failures(build, session, mock_notifier):
    cfg = live_config()
    executor = build(cfg, MockBackend(succeed=False))
    await executor.execute(session, transfer(session), make_context(cfg))
    assert mock_notifier.alerts == []
    await executor.execute(session, transfer(session), make_context(cfg))
    assert [title for title, _ in mock_notifier.alerts] == ["Repeated transfer failure"]


# ── Test 72: Payout address lookup (Tier 1) ───────────────────────


async def test_payout_address_cached(build, mock_backend):
    executor = build(make_test_config(), mock_backend)
    assert await executor.payout_address() == mock_backend.payout_address
    mock_backend.payout_address = "changed"
    assert await executor.payout_address() != "changed"


# ── Test 132: Broadcasts wait for confirmation (Tier 1) ───────────


async def test_broadcast_confirmed_by_backend(build, session, ledger, mock_backend, activity):
    cfg = live_config(min_confirmations=2)
    executor = build(cfg, mock_backend)
    await executor.execute(session, transfer(session), make_context(cfg))
    intent_id = session.payment_intent_id

    mock_backend.confirmations = 1
    assert await executor.confirm_broadcasts() == []
    assert ledger.get_intent(intent_id).state == IntentState.BROADCAST
    assert ledger.can_send(intent_id).reason == "broadcast"

    mock_backend.confirmations = 2
    assert await executor.confirm_broadcasts() == [intent_id]
    assert mock_backend.confirmation_calls == ["tx0001", "tx0001"]
    assert ledger.get_intent(intent_id).state == IntentState.CONFIRMED
    assert ledger.daily_spend_today() == Decimal("10.50")
    assert ledger.committed_spend_today() == Decimal("10.50")
    entries = await activity.get_channel_activity(session.channel_id)
    assert "transfer_confirmed" in [e.event_type for e in entries]

    assert await executor.confirm_broadcasts() == []


async def test_confirmation_lookup_failure_keeps_broadcast(build, session, ledger, mock_backend):
    cfg = live_config()
    executor = build(cfg, mock_backend)
    await executor.execute(session, transfer(session), make_context(cfg))

    mock_backend.raises = True
    assert await executor.confirm_broadcasts() == []
    assert ledger.get_intent(session.payment_intent_id).state == IntentState.BROADCAST
    assert ledger.daily_spend_today() == Decimal("0")
