"""Session model: one per conversation channel."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class SessionState(str, Enum):
    """Exhaustive set of session states."""

    AWAITING_PARTICIPANT = "AWAITING_PARTICIPANT"
    AWAITING_COORDINATOR = "AWAITING_COORDINATOR"
    AWAITING_ADDRESS = "AWAITING_ADDRESS"
    TRANSFER_SENT = "TRANSFER_SENT"
    AWAITING_GAME_START = "AWAITING_GAME_START"
    GAME_IN_PROGRESS = "GAME_IN_PROGRESS"
    COMPLETE = "COMPLETE"
    CANCELLED = "CANCELLED"


class Winner(str, Enum):
    US = "us"
    THEM = "them"
    NONE = "none"


@dataclass
class Round:
    """One resolved dice round."""

    us: int
    them: int
    winner: str  # "us" | "them" | "tie"

    def to_dict(self) -> dict:
        return {"us": self.us, "them": self.them, "winner": self.winner}


@dataclass
class TurnState:
    """Game sub-record of a session."""

    wins_needed: int = 5
    bot_wins_ties: bool = True
    bot_goes_first: bool = False
    scores: dict[str, int] = field(default_factory=lambda: {"us": 0, "them": 0})
    rounds: list[Round] = field(default_factory=list)
    last_us_roll: int | None = None
    last_them_roll: int | None = None
    roll_requested: bool = False

    def to_dict(self) -> dict:
        return {
            "wins_needed": self.wins_needed,
            "bot_wins_ties": self.bot_wins_ties,
            "bot_goes_first": self.bot_goes_first,
            "scores": dict(self.scores),
            "rounds": [r.to_dict() for r in self.rounds],
            "last_us_roll": self.last_us_roll,
            "last_them_roll": self.last_them_roll,
            "roll_requested": self.roll_requested,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TurnState:
        return cls(
            wins_needed=int(data.get("wins_needed", 5)),
            bot_wins_ties=bool(data.get("bot_wins_ties", True)),
            bot_goes_first=bool(data.get("bot_goes_first", False)),
            scores={"us": int(data["scores"]["us"]), "them": int(data["scores"]["them"])},
            rounds=[Round(**r) for r in data.get("rounds", [])],
            last_us_roll=data.get("last_us_roll"),
            last_them_roll=data.get("last_them_roll"),
            roll_requested=bool(data.get("roll_requested", False)),
        )


@dataclass
class Transition:
    """One entry in a session's append-only history."""

    from_state: SessionState
    to_state: SessionState
    reason: str
    ts: float

    def to_dict(self) -> dict:
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "reason": self.reason,
            "ts": self.ts,
        }


@dataclass
class Session:
    """Per-channel wager session."""

    channel_id: str
    state: SessionState = SessionState.AWAITING_PARTICIPANT
    created_at: float = 0.0
    updated_at: float = 0.0
    last_message_at: float = 0.0
    channel_name: str = ""
    participant_id: str | None = None
    participant_name: str = ""
    coordinator_id: str | None = None
    offer_amount: Decimal = Decimal("0")
    our_amount: Decimal = Decimal("0")
    source_channel_id: str | None = None
    offer_id: str | None = None
    needs_clarification: bool = False
    payment_address: str | None = None
    payment_intent_id: str | None = None
    payment_locked: bool = False
    payment_tx: str | None = None
    turn_state: TurnState | None = None
    winner: Winner = Winner.NONE
    acknowledged: bool = False
    history: list[Transition] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in (SessionState.COMPLETE, SessionState.CANCELLED)

    def to_dict(self) -> dict:
        return {
            "channel_id": self.channel_id,
            "state": self.state.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "last_message_at": self.last_message_at,
            "channel_name": self.channel_name,
            "participant_id": self.participant_id,
            "participant_name": self.participant_name,
            "coordinator_id": self.coordinator_id,
            "offer_amount": str(self.offer_amount),
            "our_amount": str(self.our_amount),
            "source_channel_id": self.source_channel_id,
            "offer_id": self.offer_id,
            "needs_clarification": self.needs_clarification,
            "payment_address": self.payment_address,
            "payment_intent_id": self.payment_intent_id,
            "payment_locked": self.payment_locked,
            "payment_tx": self.payment_tx,
            "turn_state": self.turn_state.to_dict() if self.turn_state else None,
            "winner": self.winner.value,
            "acknowledged": self.acknowledged,
            "history": [t.to_dict() for t in self.history],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Session:
        turn = data.get("turn_state")
        return cls(
            channel_id=data["channel_id"],
            state=SessionState(data["state"]),
            created_at=float(data.get("created_at", 0.0)),
            updated_at=float(data.get("updated_at", 0.0)),
            last_message_at=float(data.get("last_message_at", 0.0)),
            channel_name=data.get("channel_name", ""),
            participant_id=data.get("participant_id"),
            participant_name=data.get("participant_name", ""),
            coordinator_id=data.get("coordinator_id"),
            offer_amount=Decimal(data.get("offer_amount", "0")),
            our_amount=Decimal(data.get("our_amount", "0")),
            source_channel_id=data.get("source_channel_id"),
            offer_id=data.get("offer_id"),
            needs_clarification=bool(data.get("needs_clarification", False)),
            payment_address=data.get("payment_address"),
            payment_intent_id=data.get("payment_intent_id"),
            payment_locked=bool(data.get("payment_locked", False)),
            payment_tx=data.get("payment_tx"),
            turn_state=TurnState.from_dict(turn) if turn else None,
            winner=Winner(data.get("winner", "none")),
            acknowledged=bool(data.get("acknowledged", False)),
            history=[
                Transition(
                    from_state=SessionState(t["from_state"]),
                    to_state=SessionState(t["to_state"]),
                    reason=t.get("reason", ""),
                    ts=float(t["ts"]),
                )
                for t in data.get("history", [])
            ],
        )
