"""Per-state session logic.

Each step takes a session, an inbound message and a StepContext, mutates the
session through the state machine and returns the effects to execute. Steps
never perform I/O; the SessionHandler runs the effects.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable

from wagerbot.engine import game, parsing
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
from wagerbot.models.events import ChatMessage
from wagerbot.models.records import PendingOffer
from wagerbot.models.session import Session, SessionState, Winner
from wagerbot.policy.gates import is_trusted_sender
from wagerbot.state.machine import try_transition

log = logging.getLogger(__name__)

S = SessionState

CONFIRM_TOKEN = "Confirm"
RESET_KEYWORD = "reset"
TERMS_TOLERANCE = Decimal("0.01")


# ── Helpers ────────────────────────────────────────────────


def is_coordinator(session: Session, author_id: str, ctx: StepContext) -> bool:
    if session.coordinator_id is not None:
        return author_id == session.coordinator_id
    return author_id in ctx.config.channels.coordinator_ids


def is_party(session: Session, msg: ChatMessage, ctx: StepContext) -> bool:
    return is_coordinator(session, msg.author_id, ctx) or (
        session.participant_id is not None and msg.author_id == session.participant_id
    )


def _money(amount: Decimal) -> str:
    return f"{parsing.to_cents(amount)}"


def _set_terms(session: Session, offer: Decimal, ctx: StepContext) -> None:
    session.offer_amount = parsing.to_cents(offer)
    session.our_amount = parsing.compute_our_amount(offer, ctx.config.offers.tax_rate)
    session.needs_clarification = False
    log.info(
        "Session %s terms set: %s v %s", session.channel_id, session.offer_amount, session.our_amount,
    )


def _stated_terms(content: str, ctx: StepContext) -> tuple[Decimal, Decimal] | None:
    return parsing.parse_offer(content, ctx.config.offers.offer_pattern)


def _terms_mismatch(session: Session, stated: tuple[Decimal, Decimal]) -> bool:
    """Whether stated amounts disagree with the session's known terms."""
    if session.offer_amount <= 0:
        return False
    known = (session.offer_amount, session.our_amount)
    return any(all(abs(side - k) > TERMS_TOLERANCE for k in known) for side in stated)


def _mismatch_reply(session: Session, msg: ChatMessage, stated: tuple[Decimal, Decimal]) -> Send:
    posted = " v ".join(_money(a) for a in stated)
    return Send(
        session.channel_id,
        f"Terms mismatch: this ticket was agreed at ${_money(session.offer_amount)} "
        f"but {posted} was posted. Please confirm the correct amount.",
        reply_to=msg.message_id,
    )


def _move(session: Session, to_state: SessionState, reason: str, ctx: StepContext, result: StepResult) -> bool:
    if try_transition(session, to_state, reason, ctx.now):
        result.changed = True
        return True
    return False


# ── Creation ───────────────────────────────────────────────


def link_offer(session: Session, offer: PendingOffer) -> None:
    """Attach a pending offer's participant and, if none are known yet, its terms."""
    session.participant_id = offer.participant_id
    session.participant_name = offer.participant_name
    session.source_channel_id = offer.source_channel_id
    session.offer_id = offer.offer_id
    if session.offer_amount <= 0:
        session.offer_amount = offer.offer_amount
        session.our_amount = offer.our_amount
        session.needs_clarification = False


def open_session(
    session: Session,
    ctx: StepContext,
    offer: PendingOffer | None,
    author_id: str | None = None,
    content: str = "",
) -> StepResult:
    """Link a freshly created session to its offer and advance as far as known facts allow."""
    result = StepResult(handled=True, changed=True)
    if offer is not None:
        link_offer(session, offer)
    else:
        session.needs_clarification = True

    author_is_coordinator = author_id is not None and author_id in ctx.config.channels.coordinator_ids
    if author_is_coordinator:
        session.coordinator_id = author_id
        if session.offer_amount <= 0 and (stated := _stated_terms(content, ctx)):
            _set_terms(session, stated[0], ctx)

    if session.participant_id is None:
        log.info("Session %s waiting for its participant", session.channel_id)
        return result

    _move(session, S.AWAITING_COORDINATOR, "linked_offer" if offer else "participant_opened", ctx, result)
    if author_is_coordinator:
        if _move(session, S.AWAITING_ADDRESS, "coordinator_opened", ctx, result):
            result.effects.append(Prefetch(ctx.config.payments.network))
    return result


# ── Cancellation ───────────────────────────────────────────


def _cancel(session: Session, msg: ChatMessage, keyword: str, ctx: StepContext, result: StepResult) -> None:
    if keyword == RESET_KEYWORD:
        if session.state == S.AWAITING_ADDRESS and not (session.payment_tx or session.payment_locked):
            _move(session, S.AWAITING_COORDINATOR, "reset", ctx, result)
            text = "Received. Ticket state reset, waiting for confirmation."
        elif session.state in (S.AWAITING_PARTICIPANT, S.AWAITING_COORDINATOR):
            text = "Received. Ticket state reset, waiting for confirmation."
        else:
            text = "Can't reset this ticket, the payment has already been sent."
        result.effects.append(Send(session.channel_id, text, reply_to=msg.message_id))
        return

    if _move(session, S.CANCELLED, f"cancelled:{keyword}", ctx, result):
        result.effects.append(
            Send(session.channel_id, "Received. Ticket cancelled.", reply_to=msg.message_id)
        )


# ── States ─────────────────────────────────────────────────


def _awaiting_participant(session: Session, msg: ChatMessage, ctx: StepContext, result: StepResult) -> None:
    if is_coordinator(session, msg.author_id, ctx):
        if session.coordinator_id is None:
            session.coordinator_id = msg.author_id
            result.changed = True
        if session.offer_amount <= 0 and (stated := _stated_terms(msg.content, ctx)):
            _set_terms(session, stated[0], ctx)
            result.changed = True
        return

    if msg.author_is_bot or msg.author_id == ctx.self_id:
        return

    session.participant_id = msg.author_id
    session.participant_name = msg.author_name
    result.changed = True
    if not _move(session, S.AWAITING_COORDINATOR, "participant_joined", ctx, result):
        return
    if session.coordinator_id is not None:
        if _move(session, S.AWAITING_ADDRESS, "coordinator_present", ctx, result):
            result.effects.append(Prefetch(ctx.config.payments.network))


def _awaiting_coordinator(session: Session, msg: ChatMessage, ctx: StepContext, result: StepResult) -> None:
    if not is_coordinator(session, msg.author_id, ctx):
        return

    stated = _stated_terms(msg.content, ctx)
    if stated and session.offer_amount <= 0:
        _set_terms(session, stated[0], ctx)
        result.changed = True
    elif stated and _terms_mismatch(session, stated):
        result.effects.append(_mismatch_reply(session, msg, stated))
        return

    session.coordinator_id = msg.author_id
    result.changed = True
    if _move(session, S.AWAITING_ADDRESS, "coordinator_confirmed", ctx, result):
        result.effects.append(Send(session.channel_id, CONFIRM_TOKEN))
        result.effects.append(Prefetch(ctx.config.payments.network))


def _awaiting_address(session: Session, msg: ChatMessage, ctx: StepContext, result: StepResult) -> None:
    cfg = ctx.config
    if not is_trusted_sender(cfg.payments, session, msg.author_id, cfg.channels.trusted_sender_ids):
        return

    stated = _stated_terms(msg.content, ctx)
    if stated and session.offer_amount <= 0:
        _set_terms(session, stated[0], ctx)
        result.changed = True

    network = cfg.payments.network
    address = parsing.extract_address(msg.content, network, cfg.payments.address_patterns_by_network)
    if address is None:
        if stated is None and (len(msg.content) > 20 or "address" in msg.content.lower()):
            result.effects.append(
                Send(
                    session.channel_id,
                    f"Please post the {network} address on its own line so I can send.",
                    reply_to=msg.message_id,
                )
            )
        return

    result.effects.append(
        Transfer(
            channel_id=session.channel_id,
            address=address,
            amount_usd=session.our_amount,
            message_id=msg.message_id,
            sender_id=msg.author_id,
        )
    )


def _transfer_sent(session: Session, msg: ChatMessage, ctx: StepContext, result: StepResult) -> None:
    if not is_coordinator(session, msg.author_id, ctx):
        return
    confirmed = parsing.is_payment_confirmation(msg.content, ctx.config.game.payment_confirm_phrases)
    start = parsing.parse_game_start(msg.content, ctx.self_id, ctx.self_name)
    if not (confirmed or start):
        return

    stated = _stated_terms(msg.content, ctx)
    if stated and _terms_mismatch(session, stated):
        result.effects.append(_mismatch_reply(session, msg, stated))
        return

    if not _move(session, S.AWAITING_GAME_START, "payment_confirmed", ctx, result):
        return
    result.effects.append(Send(session.channel_id, CONFIRM_TOKEN))
    if start:
        _start_game(session, start, ctx, result)


def _awaiting_game_start(session: Session, msg: ChatMessage, ctx: StepContext, result: StepResult) -> None:
    if not is_coordinator(session, msg.author_id, ctx):
        return
    start = parsing.parse_game_start(msg.content, ctx.self_id, ctx.self_name)
    if start:
        _start_game(session, start, ctx, result)


def _start_game(session: Session, start: parsing.GameStart, ctx: StepContext, result: StepResult) -> None:
    cfg = ctx.config.game
    session.turn_state = game.new_turn_state(
        start.wins_needed or cfg.wins_needed, cfg.bot_wins_ties, start.bot_goes_first,
    )
    if not _move(session, S.GAME_IN_PROGRESS, "game_started", ctx, result):
        session.turn_state = None
        return
    if start.bot_goes_first:
        _request_roll(session, ctx, result)


def _request_roll(session: Session, ctx: StepContext, result: StepResult) -> None:
    session.turn_state.roll_requested = True
    result.changed = True
    result.effects.append(Send(
        session.channel_id, ctx.config.game.dice_command_token, pause=Pause.ACTION, requests_roll=True,
    ))


def _roll_side(session: Session, msg: ChatMessage, ctx: StepContext) -> str | None:
    """Whose roll a dice-result message reports, if anyone's."""
    if msg.author_id == ctx.self_id:
        return game.US
    if msg.author_id in ctx.config.game.dice_bot_ids:
        if parsing.mentions_user(msg.content, ctx.self_id, msg.mentions):
            return game.US
        if ctx.self_name and ctx.self_name.lower() in msg.content.lower():
            return game.US
        return game.THEM
    if session.participant_id is not None and msg.author_id == session.participant_id:
        return game.THEM
    return None


def _game_in_progress(session: Session, msg: ChatMessage, ctx: StepContext, result: StepResult) -> None:
    turn = session.turn_state
    value = parsing.parse_dice_result(msg.content, ctx.config.game.dice_result_pattern)
    side = _roll_side(session, msg, ctx) if value is not None else None

    if value is not None and side is not None:
        resolved = game.record_roll(turn, side, value)
        result.changed = True
        if resolved is None:
            if side == game.THEM and turn.last_us_roll is None and not turn.roll_requested:
                _request_roll(session, ctx, result)
            return
        result.effects.append(Send(session.channel_id, game.scoreboard(resolved, turn)))
        winner = game.game_winner(turn)
        if winner != Winner.NONE:
            _complete(session, winner, ctx, result)
        elif turn.bot_goes_first:
            _request_roll(session, ctx, result)
        return

    if msg.author_id == ctx.self_id or msg.author_is_bot:
        return
    if not is_party(session, msg, ctx):
        return
    if parsing.has_turn_trigger(msg.content, ctx.config.game.turn_trigger_tokens):
        if turn.last_us_roll is None and not turn.roll_requested:
            _request_roll(session, ctx, result)


def _complete(session: Session, winner: Winner, ctx: StepContext, result: StepResult) -> None:
    session.winner = winner
    if not _move(session, S.COMPLETE, "game_over", ctx, result):
        session.winner = Winner.NONE
        return
    turn = session.turn_state
    result.effects.append(
        Notify("game_result", {"winner": winner.value, "scores": dict(turn.scores)})
    )
    templates = ctx.config.templates
    if winner == Winner.US:
        text = (
            templates.win.replace("{amount}", _money(session.offer_amount))
            .replace("{network}", ctx.config.payments.network)
        )
        result.effects.append(Send(session.channel_id, text, pause=Pause.HUMAN))
        if ctx.payout_address:
            result.effects.append(Send(session.channel_id, f"`{ctx.payout_address}`", pause=Pause.HUMAN))
        result.effects.append(ScheduleVouch(session.channel_id))
    else:
        result.effects.append(Send(session.channel_id, templates.loss, pause=Pause.HUMAN))


StepFn = Callable[[Session, ChatMessage, StepContext, StepResult], None]

STATE_STEPS: dict[SessionState, StepFn] = {
    S.AWAITING_PARTICIPANT: _awaiting_participant,
    S.AWAITING_COORDINATOR: _awaiting_coordinator,
    S.AWAITING_ADDRESS: _awaiting_address,
    S.TRANSFER_SENT: _transfer_sent,
    S.AWAITING_GAME_START: _awaiting_game_start,
    S.GAME_IN_PROGRESS: _game_in_progress,
}


def step(session: Session, msg: ChatMessage, ctx: StepContext) -> StepResult:
    """Apply one inbound message to ``session``."""
    result = StepResult(handled=True)
    if session.is_terminal:
        return result

    if is_party(session, msg, ctx):
        keyword = parsing.find_cancellation(msg.content, ctx.config.channels.cancellation_keywords)
        if keyword:
            _cancel(session, msg, keyword, ctx, result)
            return result

    STATE_STEPS[session.state](session, msg, ctx, result)
    return result


# ── Transfer outcomes ──────────────────────────────────────


def transfer_succeeded(
    session: Session, tx_id: str, address: str, dry_run: bool, ctx: StepContext,
) -> list:
    session.payment_tx = tx_id
    session.payment_address = address
    session.payment_locked = False
    result = StepResult()
    if not _move(session, S.TRANSFER_SENT, "dry_run_transfer" if dry_run else "transfer_sent", ctx, result):
        return []
    amount = _money(session.our_amount)
    if dry_run:
        text = (
            f"Live transfers are disabled. Recorded a dry-run payment of ${amount} "
            f"to `{address}` (ref {tx_id})."
        )
    else:
        text = (
            ctx.config.templates.payment_sent.replace("{amount}", amount).replace("{txid}", tx_id)
        )
    return [Send(session.channel_id, text)]


def transfer_failed(session: Session, error: str, message_id: str, ctx: StepContext) -> list:
    session.payment_locked = False
    bounded = error if len(error) <= 120 else error[:117] + "..."
    return [
        Send(
            session.channel_id,
            f"Payment failed: {bounded}. Post the address again to retry.",
            reply_to=message_id,
        )
    ]
