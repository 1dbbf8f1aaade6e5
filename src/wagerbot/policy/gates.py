"""Payment gates - every check that must pass before value leaves the wallet."""

from __future__ import annotations

import logging
from decimal import Decimal

from wagerbot.models.config import PaymentConfig
from wagerbot.models.records import GateResult
from wagerbot.models.session import Session
from wagerbot.state.ledger import IdempotencyLedger

log = logging.getLogger(__name__)


def is_trusted_sender(
    config: PaymentConfig, session: Session, sender_id: str, trusted_sender_ids: list[str],
) -> bool:
    """Whether ``sender_id`` may drive the address step of ``session``."""
    if session.coordinator_id is not None and sender_id == session.coordinator_id:
        return True
    if config.address_sender_policy == "trusted":
        return sender_id in trusted_sender_ids
    return False


class PaymentGates:
    """Evaluates the six payment gates in order, failing on the first.

    1. Live transfers switch (off -> the transfer is recorded as a dry run,
       the remaining gates still apply)
    2. Sender is trusted for the address step
    3. The inbound message has not already been acted upon
    4. No payment_tx, no payment_locked, ledger allows the intent
    5. min_payment_usd <= amount <= max_payment_per_tx_usd
    6. Address is not ours / is allow-listed; daily spend stays within max_daily_usd
    """

    def __init__(
        self,
        config: PaymentConfig,
        ledger: IdempotencyLedger,
        trusted_sender_ids: list[str] | None = None,
    ) -> None:
        self._cfg = config
        self._ledger = ledger
        self._trusted = list(trusted_sender_ids or [])

    def evaluate(
        self,
        session: Session,
        sender_id: str,
        message_id: str,
        address: str,
        amount: Decimal,
        intent_id: str,
    ) -> GateResult:
        # 1. Live switch
        dry_run = not self._cfg.enable_live_transfers

        # 2. Sender
        if not is_trusted_sender(self._cfg, session, sender_id, self._trusted):
            return GateResult(False, "untrusted_sender", dry_run)

        # 3. Message-level idempotency
        if self._ledger.transfer_message_seen(message_id):
            return GateResult(False, "message_already_acted", dry_run)

        # 4. Session-level and intent-level idempotency
        if session.payment_tx:
            return GateResult(False, "already_paid", dry_run)
        if session.payment_locked:
            return GateResult(False, "payment_locked", dry_run)
        check = self._ledger.can_send(intent_id)
        if not check.can_send:
            return GateResult(False, f"intent_{check.reason}", dry_run)

        # 5. Amount bounds
        if amount < self._cfg.min_payment_usd:
            return GateResult(False, "below_min_payment", dry_run)
        if amount > self._cfg.max_payment_per_tx_usd:
            return GateResult(False, "above_max_per_tx", dry_run)

        # 6. Recipient and daily budget
        if address in self._cfg.self_addresses:
            return GateResult(False, "self_address", dry_run)
        if self._cfg.address_allowlist and address not in self._cfg.address_allowlist:
            return GateResult(False, "address_not_allowlisted", dry_run)
        if not dry_run and self._ledger.committed_spend_today() + amount > self._cfg.max_daily_usd:
            return GateResult(False, "daily_limit", dry_run)

        return GateResult(True, "dry_run" if dry_run else "ok", dry_run)
