"""Effect values produced by session steps and executed by the session driver."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from wagerbot.models.config import BotConfig


class Pause(str, Enum):
    """Human-like delay applied before a send."""

    NONE = "none"
    ACTION = "action"
    HUMAN = "human"


@dataclass
class Send:
    channel_id: str
    content: str
    reply_to: str | None = None
    pause: Pause = Pause.NONE
    requests_roll: bool = False


@dataclass
class Transfer:
    channel_id: str
    address: str
    amount_usd: Decimal
    message_id: str
    sender_id: str


@dataclass
class ScheduleVouch:
    channel_id: str


@dataclass
class Prefetch:
    network: str


@dataclass
class Notify:
    kind: str  # "game_result"
    detail: dict = field(default_factory=dict)


Effect = Send | Transfer | ScheduleVouch | Prefetch | Notify


@dataclass
class StepResult:
    handled: bool = True
    changed: bool = False
    effects: list[Effect] = field(default_factory=list)


@dataclass
class StepContext:
    """Everything a step needs besides the session and the message."""

    config: BotConfig
    self_id: str
    self_name: str
    now: float
    payout_address: str | None = None
