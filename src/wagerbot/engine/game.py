"""Dice game bookkeeping: recording rolls, resolving rounds, formatting."""

from __future__ import annotations

import logging

from wagerbot.models.session import Round, TurnState, Winner

log = logging.getLogger(__name__)

DICE_FACES = {1: "⚀", 2: "⚁", 3: "⚂", 4: "⚃", 5: "⚄", 6: "⚅"}

US = "us"
THEM = "them"
TIE = "tie"


def new_turn_state(wins_needed: int, bot_wins_ties: bool, bot_goes_first: bool) -> TurnState:
    return TurnState(
        wins_needed=wins_needed,
        bot_wins_ties=bot_wins_ties,
        bot_goes_first=bot_goes_first,
    )


def record_roll(turn: TurnState, side: str, value: int) -> Round | None:
    """Buffer one side's roll; resolve the round once both sides have rolled.

    A second roll by the same side within an open round is ignored.
    """
    if side == US:
        if turn.last_us_roll is not None:
            log.debug("Ignoring extra roll for us (%d)", value)
            return None
        turn.last_us_roll = value
        turn.roll_requested = False
    else:
        if turn.last_them_roll is not None:
            log.debug("Ignoring extra roll for them (%d)", value)
            return None
        turn.last_them_roll = value

    if turn.last_us_roll is None or turn.last_them_roll is None:
        return None

    us, them = turn.last_us_roll, turn.last_them_roll
    if us > them:
        winner = US
    elif them > us:
        winner = THEM
    else:
        winner = US if turn.bot_wins_ties else TIE

    if winner != TIE:
        turn.scores[winner] += 1
    result = Round(us=us, them=them, winner=winner)
    turn.rounds.append(result)
    turn.last_us_roll = None
    turn.last_them_roll = None
    return result


def game_winner(turn: TurnState) -> Winner:
    if turn.scores[US] >= turn.wins_needed:
        return Winner.US
    if turn.scores[THEM] >= turn.wins_needed:
        return Winner.THEM
    return Winner.NONE


def format_die(value: int) -> str:
    return f"{DICE_FACES.get(value, '?')} **{value}**"


def scoreboard(result: Round, turn: TurnState) -> str:
    verdict = {US: "I win!", THEM: "You win!", TIE: "Tie!"}[result.winner]
    return (
        f"{format_die(result.us)} vs {format_die(result.them)} - {verdict} "
        f"(**{turn.scores[US]}** - **{turn.scores[THEM]}**)"
    )
