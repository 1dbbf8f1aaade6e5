"""IdempotencyLedger - processed-message dedupe, payment intents, vouch bits."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from decimal import Decimal

from wagerbot.engine.clock import Clock
from wagerbot.engine.locks import KeyedLocks
from wagerbot.models.records import CanSendResult, IntentState, PaymentIntent

log = logging.getLogger(__name__)


def make_intent_id(channel_id: str, address: str, amount: Decimal) -> str:
    digest = hashlib.sha256(f"{channel_id}:{address}:{amount}".encode("utf-8")).hexdigest()
    return digest[:16]


class IdempotencyLedger:
    """Exactly-once bookkeeping.

    - processed inbound message ids: bounded LRU, in memory only
    - payment intents: PENDING -> BROADCAST -> CONFIRMED, any -> FAILED,
      FAILED/PENDING -> PENDING on explicit retry
    - transfer messages: inbound message id -> intent id it triggered (durable)
    - daily spend: date -> sum of confirmed non-dry-run amounts (durable)
    - vouches: channel id -> time the vouch was posted (durable)
    """

    def __init__(self, clock: Clock, processed_cap: int = 1000) -> None:
        self._clock = clock
        self._cap = processed_cap
        self._processed: OrderedDict[str, None] = OrderedDict()
        self._intents: dict[str, PaymentIntent] = {}
        self._transfer_messages: dict[str, str] = {}
        self._daily_spend: dict[str, Decimal] = {}
        self._vouches: dict[str, float] = {}
        self._vouch_locks = KeyedLocks()

    @staticmethod
    def _day_of(ts: float) -> str:
        return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")

    def _today(self) -> str:
        return self._day_of(self._clock.now())

    # ── Processed messages ─────────────────────────────────

    def mark_processed(self, message_id: str) -> bool:
        """Insert ``message_id``; False if it was already present."""
        if message_id in self._processed:
            self._processed.move_to_end(message_id)
            return False
        self._processed[message_id] = None
        while len(self._processed) > self._cap:
            self._processed.popitem(last=False)
        return True

    def is_processed(self, message_id: str) -> bool:
        return message_id in self._processed

    @property
    def processed_count(self) -> int:
        return len(self._processed)

    # ── Payment intents ────────────────────────────────────

    def get_intent(self, intent_id: str) -> PaymentIntent | None:
        return self._intents.get(intent_id)

    def intents(self) -> list[PaymentIntent]:
        return list(self._intents.values())

    def record_intent(
        self,
        intent_id: str,
        address: str,
        amount: Decimal,
        channel_id: str,
        dry_run: bool = False,
    ) -> bool:
        if intent_id in self._intents:
            log.debug("Intent %s already recorded", intent_id)
            return False
        now = self._clock.now()
        self._intents[intent_id] = PaymentIntent(
            intent_id=intent_id,
            state=IntentState.PENDING,
            address=address,
            amount=amount,
            channel_id=channel_id,
            created_at=now,
            updated_at=now,
            dry_run=dry_run,
        )
        return True

    def retry_intent(self, intent_id: str, address: str, amount: Decimal, dry_run: bool = False) -> bool:
        """FAILED (or stale PENDING) -> PENDING with the latest address/amount."""
        intent = self._intents.get(intent_id)
        if intent is None or intent.state not in (IntentState.FAILED, IntentState.PENDING):
            return False
        intent.state = IntentState.PENDING
        intent.address = address
        intent.amount = amount
        intent.failure = None
        intent.dry_run = dry_run
        intent.updated_at = self._clock.now()
        return True

    def record_broadcast(self, intent_id: str, tx: str) -> bool:
        intent = self._intents.get(intent_id)
        if intent is None or intent.state != IntentState.PENDING:
            log.warning("record_broadcast: intent %s not PENDING", intent_id)
            return False
        intent.state = IntentState.BROADCAST
        intent.tx = tx
        intent.updated_at = self._clock.now()
        return True

    def record_confirmed(self, intent_id: str) -> bool:
        intent = self._intents.get(intent_id)
        if intent is None or intent.state != IntentState.BROADCAST:
            log.warning("record_confirmed: intent %s not BROADCAST", intent_id)
            return False
        intent.state = IntentState.CONFIRMED
        intent.updated_at = self._clock.now()
        if not intent.dry_run:
            today = self._today()
            self._daily_spend[today] = self._daily_spend.get(today, Decimal("0")) + intent.amount
        return True

    def record_failed(self, intent_id: str, reason: str) -> bool:
        intent = self._intents.get(intent_id)
        if intent is None:
            return False
        intent.state = IntentState.FAILED
        intent.failure = reason
        intent.updated_at = self._clock.now()
        return True

    def can_send(self, intent_id: str) -> CanSendResult:
        intent = self._intents.get(intent_id)
        if intent is None:
            return CanSendResult(True, "new")
        if intent.state in (IntentState.BROADCAST, IntentState.CONFIRMED):
            return CanSendResult(False, intent.state.value.lower(), existing_tx=intent.tx)
        if intent.state == IntentState.FAILED:
            return CanSendResult(True, "retry_after_failure")
        return CanSendResult(True, "pending")

    def daily_spend_today(self) -> Decimal:
        return self._daily_spend.get(self._today(), Decimal("0"))

    def awaiting_confirmation(self) -> list[PaymentIntent]:
        return [i for i in self._intents.values() if i.state == IntentState.BROADCAST]

    def committed_spend_today(self) -> Decimal:
        """Confirmed spend plus live broadcasts from today still waiting on confirmation."""
        today = self._today()
        in_flight = sum(
            (
                i.amount for i in self.awaiting_confirmation()
                if not i.dry_run and self._day_of(i.updated_at) == today
            ),
            Decimal("0"),
        )
        return self.daily_spend_today() + in_flight

    # ── Transfer messages ──────────────────────────────────

    def mark_transfer_message(self, message_id: str, intent_id: str) -> None:
        self._transfer_messages[message_id] = intent_id

    def transfer_message_seen(self, message_id: str) -> bool:
        return message_id in self._transfer_messages

    # ── Vouches ────────────────────────────────────────────

    def vouch_lock(self, channel_id: str) -> asyncio.Lock:
        return self._vouch_locks.get(channel_id)

    def is_vouched(self, channel_id: str) -> bool:
        return channel_id in self._vouches

    def mark_vouched(self, channel_id: str) -> None:
        self._vouches[channel_id] = self._clock.now()

    def unmark_vouched(self, channel_id: str) -> None:
        self._vouches.pop(channel_id, None)

    # ── Snapshot ───────────────────────────────────────────

    def snapshot(self) -> dict:
        return {
            "payment_intents": [i.to_dict() for i in self._intents.values()],
            "transfer_messages": dict(self._transfer_messages),
            "daily_spend": {day: str(total) for day, total in self._daily_spend.items()},
            "vouches": dict(self._vouches),
        }

    def restore(self, data: dict) -> None:
        self._intents = {}
        for raw in data.get("payment_intents", []):
            intent = PaymentIntent.from_dict(raw)
            self._intents[intent.intent_id] = intent
        self._transfer_messages = dict(data.get("transfer_messages", {}))
        self._daily_spend = {
            day: Decimal(total) for day, total in data.get("daily_spend", {}).items()
        }
        self._vouches = {ch: float(ts) for ch, ts in data.get("vouches", {}).items()}
