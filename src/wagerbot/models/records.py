"""Internal record types for routing, offers, payments and the audit log."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class ChannelKind(str, Enum):
    """Classification of a channel by the routing policy."""

    PUBLIC = "public"
    SESSION = "session"
    DIRECT = "direct"
    EXCLUDED = "excluded"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ChannelClass:
    """Result of channel classification."""

    kind: ChannelKind
    allow_offer_match: bool = False
    allow_value_transfer: bool = False


@dataclass
class PendingOffer:
    """An advertised wager we answered, awaiting its session channel."""

    participant_id: str
    offer_amount: Decimal
    our_amount: Decimal
    source_channel_id: str
    offer_id: str
    created_at: float
    participant_name: str = ""

    def to_dict(self) -> dict:
        return {
            "participant_id": self.participant_id,
            "participant_name": self.participant_name,
            "offer_amount": str(self.offer_amount),
            "our_amount": str(self.our_amount),
            "source_channel_id": self.source_channel_id,
            "offer_id": self.offer_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PendingOffer:
        return cls(
            participant_id=data["participant_id"],
            participant_name=data.get("participant_name", ""),
            offer_amount=Decimal(data["offer_amount"]),
            our_amount=Decimal(data["our_amount"]),
            source_channel_id=data["source_channel_id"],
            offer_id=data["offer_id"],
            created_at=float(data["created_at"]),
        )


class IntentState(str, Enum):
    """Lifecycle of a value-transfer intent."""

    PENDING = "PENDING"
    BROADCAST = "BROADCAST"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


@dataclass
class PaymentIntent:
    """A durable record of one value-transfer attempt."""

    intent_id: str
    state: IntentState
    address: str
    amount: Decimal  # USD
    channel_id: str
    created_at: float
    updated_at: float
    tx: str | None = None
    failure: str | None = None
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {
            "intent_id": self.intent_id,
            "state": self.state.value,
            "address": self.address,
            "amount": str(self.amount),
            "channel_id": self.channel_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "tx": self.tx,
            "failure": self.failure,
            "dry_run": self.dry_run,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PaymentIntent:
        return cls(
            intent_id=data["intent_id"],
            state=IntentState(data["state"]),
            address=data["address"],
            amount=Decimal(data["amount"]),
            channel_id=data["channel_id"],
            created_at=float(data["created_at"]),
            updated_at=float(data["updated_at"]),
            tx=data.get("tx"),
            failure=data.get("failure"),
            dry_run=bool(data.get("dry_run", False)),
        )


@dataclass
class CanSendResult:
    """Answer of the ledger to 'may this intent be broadcast?'."""

    can_send: bool
    reason: str
    existing_tx: str | None = None


@dataclass
class GateResult:
    """Result of evaluating the payment gates."""

    passed: bool
    reason: str  # "ok", "untrusted_sender", "message_already_acted", ...
    dry_run: bool = False


@dataclass
class TransferResult:
    """Result of a value-transfer backend call."""

    success: bool
    tx_id: str | None = None
    error: str | None = None
    amount_native: Decimal | None = None


@dataclass
class ActivityRecord:
    """A single activity log entry."""

    id: int
    event_type: str
    channel_id: str | None
    amount: str | None  # decimal as text
    message: str
    created_at: str
