"""Tests 92-97, 128, 136: End-to-end session lifecycles through the daemon."""

from __future__ import annotations

import asyncio

from wagerbot.models.session import SessionState, Winner
from wagerbot.state.machine import history_is_valid

from tests.conftest import (
    COORDINATOR_ID,
    PARTICIPANT_ADDRESS,
    PAYOUT_ADDRESS,
    PUBLIC_CHANNEL,
    SELF_ID,
    VOUCH_CHANNEL,
)

S = SessionState


# ── Test 92: Full winning game (Tier 2) ───────────────────────────


async def test_full_game_win(harness, mock_notifier):
    h = harness
    channel, participant = "700000000000000301", "300000000000000301"
    await h.to_game(channel, participant, "peggy", 10)
    session = h.session(channel)
    assert session.state == S.GAME_IN_PROGRESS
    assert session.payment_tx.startswith("dryrun_")

    for _ in range(5):
        await h.roll_pair(channel, participant, 6, 1)

    assert session.state == S.COMPLETE
    assert session.winner == Winner.US
    assert history_is_valid(session)
    transcript = h.transport.transcript(channel)
    assert f"`{PAYOUT_ADDRESS}`" in transcript
    assert any("dry-run payment" in t for t in transcript)
    assert len(h.transport.transcript(VOUCH_CHANNEL)) == 1
    assert session.acknowledged
    assert mock_notifier.result_calls == [(channel, "us", {"us": 5, "them": 0})]


async def test_full_game_loss_has_no_vouch(harness, mock_notifier):
    h = harness
    channel, participant = "700000000000000302", "300000000000000302"
    await h.to_game(channel, participant, "quinn", 10)
    for _ in range(5):
        await h.roll_pair(channel, participant, 1, 6)
    session = h.session(channel)
    assert session.winner == Winner.THEM
    assert h.transport.transcript(channel)[-1] == h.cfg.templates.loss
    assert h.transport.transcript(VOUCH_CHANNEL) == []


async def test_activity_records_transitions(harness):
    h = harness
    channel, participant = "700000000000000303", "300000000000000303"
    await h.to_transfer(channel, participant, "rupert", 10)
    entries = await h.daemon.activity.get_channel_activity(channel)
    kinds = [e.event_type for e in entries]
    assert kinds[0] == "session_created"
    assert "transfer_dry_run" in kinds
    assert any("AWAITING_ADDRESS -> TRANSFER_SENT" in e.message for e in entries)


# ── Test 93: Proactive channel creation (Tier 1) ──────────────────


async def test_channel_created_links_offer(harness):
    h = harness
    participant = "300000000000000304"
    await h.say(PUBLIC_CHANNEL, participant, "25v25 anyone", author_name="sybil")
    await h.transport.create_channel("700000000000000304", "ticket-sybil")
    await h.settle()

    session = h.session("700000000000000304")
    assert session.state == S.AWAITING_COORDINATOR
    assert session.participant_id == participant
    assert session.source_channel_id == PUBLIC_CHANNEL
    assert h.daemon.store.get_pending_offer(participant, h.clock.now()) is None


async def test_channel_created_without_offer(harness):
    h = harness
    await h.transport.create_channel("700000000000000305", "ticket-trent")
    assert h.session("700000000000000305") is None


# ── Test 94: Channel deletion (Tier 1) ────────────────────────────


async def test_channel_deleted_removes_session(harness):
    h = harness
    channel = "700000000000000306"
    await h.open_ticket(channel, "300000000000000306", "uma", 10)
    assert h.session(channel) is not None
    await h.transport.delete_channel(channel)
    assert h.session(channel) is None
    entries = await h.daemon.activity.get_channel_activity(channel)
    assert entries[-1].event_type == "session_purged"


# ── Test 95: Coordinator opens the ticket (Tier 1) ────────────────


async def test_coordinator_created_session(harness):
    h = harness
    channel, participant = "700000000000000307", "300000000000000307"
    h.transport.add_channel(channel, "ticket-7781")
    await h.say(channel, COORDINATOR_ID, "new ticket 20v20")
    session = h.session(channel)
    assert session.state == S.AWAITING_PARTICIPANT
    assert session.coordinator_id == COORDINATOR_ID
    assert str(session.our_amount) == "21.00"

    await h.say(channel, participant, "hi, i'm here", author_name="victor")
    assert session.participant_id == participant
    assert session.state == S.AWAITING_ADDRESS

    await h.say(channel, COORDINATOR_ID, PARTICIPANT_ADDRESS)
    assert session.state == S.TRANSFER_SENT


# ── Test 136: Offer linked when the participant shows up (Tier 1) ──


async def test_participant_offer_linked_on_first_message(harness):
    h = harness
    channel, participant = "700000000000000311", "300000000000000311"
    await h.say(PUBLIC_CHANNEL, participant, "anyone 10v10?", author_name="zane")
    assert h.daemon.store.get_pending_offer(participant, h.clock.now()) is not None

    h.transport.add_channel(channel, "ticket-7781")
    await h.say(channel, COORDINATOR_ID, "new ticket")
    session = h.session(channel)
    assert session.state == S.AWAITING_PARTICIPANT
    assert session.offer_amount <= 0

    await h.say(channel, participant, "hi, i'm here", author_name="zane")
    assert session.participant_id == participant
    assert str(session.offer_amount) == "10.00"
    assert str(session.our_amount) == "10.50"
    assert session.offer_id is not None
    assert session.source_channel_id == PUBLIC_CHANNEL
    assert session.state == S.AWAITING_ADDRESS
    assert h.daemon.store.get_pending_offer(participant, h.clock.now()) is None

    await h.say(channel, COORDINATOR_ID, PARTICIPANT_ADDRESS)
    assert session.state == S.TRANSFER_SENT


# ── Test 96: Cancellation (Tier 1) ────────────────────────────────


async def test_cancelled_session_goes_quiet(harness):
    h = harness
    channel, participant = "700000000000000308", "300000000000000308"
    await h.open_ticket(channel, participant, "wendy", 10)
    await h.say(channel, participant, "nvm cancel")
    session = h.session(channel)
    assert session.state == S.CANCELLED
    outbound = len(h.transport.sent)
    await h.say(channel, COORDINATOR_ID, PARTICIPANT_ADDRESS)
    assert len(h.transport.sent) == outbound


# ── Test 97: Per-channel ordering (Tier 1) ────────────────────────


async def test_messages_in_one_channel_apply_in_order(harness):
    h = harness
    channel, participant = "700000000000000309", "300000000000000309"
    await h.open_ticket(channel, participant, "xavier", 10)
    h.clock.advance(1)
    confirm = h.transport.make_message(channel, COORDINATOR_ID, "10v10 confirmed")
    address = h.transport.make_message(channel, COORDINATOR_ID, PARTICIPANT_ADDRESS)
    await asyncio.gather(h.transport.deliver(confirm), h.transport.deliver(address))
    await h.settle()
    assert h.session(channel).state == S.TRANSFER_SENT


# ── Test 128: Failed roll request is asked again (Tier 1) ─────────


async def test_failed_roll_command_is_retried_on_next_prompt(harness):
    h = harness
    channel, participant = "700000000000000310", "300000000000000310"
    await h.to_transfer(channel, participant, "yara", 10)
    await h.say(channel, COORDINATOR_ID, "both paid, gl")

    h.transport.fail_sends = 1
    await h.say(channel, COORDINATOR_ID, f"dice ft5 <@{SELF_ID}> first", mentions=[SELF_ID])
    session = h.session(channel)
    assert session.state == S.GAME_IN_PROGRESS
    assert session.turn_state.roll_requested is False
    assert h.cfg.game.dice_command_token not in h.transport.transcript(channel)

    await h.say(channel, participant, "your turn, go", author_name="yara")
    assert h.transport.transcript(channel)[-1] == h.cfg.game.dice_command_token
    assert session.turn_state.roll_requested is True
