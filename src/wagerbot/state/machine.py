"""Session state machine: allowed transitions, per-state invariants, history."""

from __future__ import annotations

import logging

from wagerbot.errors import IllegalTransition
from wagerbot.models.session import Session, SessionState, Transition, Winner

log = logging.getLogger(__name__)

S = SessionState

ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    S.AWAITING_PARTICIPANT: frozenset({S.AWAITING_COORDINATOR, S.CANCELLED}),
    S.AWAITING_COORDINATOR: frozenset({S.AWAITING_ADDRESS, S.CANCELLED}),
    # AWAITING_COORDINATOR is the reset back-edge, only legal before any transfer
    S.AWAITING_ADDRESS: frozenset({S.TRANSFER_SENT, S.AWAITING_COORDINATOR, S.CANCELLED}),
    S.TRANSFER_SENT: frozenset({S.AWAITING_GAME_START, S.CANCELLED}),
    S.AWAITING_GAME_START: frozenset({S.GAME_IN_PROGRESS, S.CANCELLED}),
    S.GAME_IN_PROGRESS: frozenset({S.COMPLETE, S.CANCELLED}),
    S.COMPLETE: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset({S.COMPLETE, S.CANCELLED})
PRE_PAYMENT_STATES = frozenset({S.AWAITING_PARTICIPANT, S.AWAITING_COORDINATOR, S.AWAITING_ADDRESS})
GAME_STATES = frozenset({S.AWAITING_GAME_START, S.GAME_IN_PROGRESS})
CRITICAL_STATES = frozenset({S.TRANSFER_SENT, S.AWAITING_GAME_START, S.GAME_IN_PROGRESS})


def can_transition(from_state: SessionState, to_state: SessionState) -> bool:
    return to_state in ALLOWED_TRANSITIONS[from_state]


def invariant_violation(session: Session, state: SessionState) -> str | None:
    """Return a description of the invariant ``session`` breaks in ``state``, if any."""
    if state == S.AWAITING_COORDINATOR and not session.participant_id:
        return "participant_id required"
    if state == S.AWAITING_ADDRESS and not session.coordinator_id:
        return "coordinator_id required"
    if state == S.TRANSFER_SENT and not (
        session.payment_tx or (session.payment_locked and session.payment_intent_id)
    ):
        return "payment_tx required"
    if state == S.GAME_IN_PROGRESS and session.turn_state is None:
        return "turn_state required"
    if state == S.COMPLETE and session.winner == Winner.NONE:
        return "winner required"
    if state == S.AWAITING_COORDINATOR and session.state == S.AWAITING_ADDRESS and (
        session.payment_tx or session.payment_locked
    ):
        return "reset after transfer"
    return None


def transition(session: Session, to_state: SessionState, reason: str, now: float) -> None:
    """Move ``session`` to ``to_state`` and append to its history.

    Raises IllegalTransition (leaving the session untouched) when the edge is
    not allowed or the target state's invariants do not hold.
    """
    from_state = session.state
    if not can_transition(from_state, to_state):
        raise IllegalTransition(session.channel_id, from_state.value, to_state.value, reason)
    problem = invariant_violation(session, to_state)
    if problem:
        raise IllegalTransition(session.channel_id, from_state.value, to_state.value, problem)

    session.state = to_state
    session.updated_at = now
    session.history.append(Transition(from_state, to_state, reason, now))
    log.info(
        "Session %s: %s -> %s (%s)", session.channel_id, from_state.value, to_state.value, reason,
    )


def try_transition(session: Session, to_state: SessionState, reason: str, now: float) -> bool:
    """Like :func:`transition` but logs and returns False on refusal."""
    try:
        transition(session, to_state, reason, now)
    except IllegalTransition as exc:
        log.error("Illegal transition refused: %s", exc)
        return False
    return True


def history_is_valid(session: Session) -> bool:
    """Whether the history is a connected path through the allowed transitions."""
    expected = S.AWAITING_PARTICIPANT
    for entry in session.history:
        if entry.from_state != expected or not can_transition(entry.from_state, entry.to_state):
            return False
        expected = entry.to_state
    return expected == session.state
