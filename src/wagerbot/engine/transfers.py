"""TransferExecutor - validates, gates, records and broadcasts a session payment."""

from __future__ import annotations

import logging
import secrets

from wagerbot.engine import steps
from wagerbot.engine.clock import Clock
from wagerbot.engine.effects import Send, StepContext, Transfer
from wagerbot.interfaces.activity import ActivityLog
from wagerbot.interfaces.backend import TransferBackend
from wagerbot.interfaces.notifier import Notifier
from wagerbot.models.config import BotConfig
from wagerbot.models.records import GateResult, TransferResult
from wagerbot.models.session import Session
from wagerbot.policy.gates import PaymentGates
from wagerbot.state.ledger import IdempotencyLedger, make_intent_id
from wagerbot.state.persistence import PersistenceStore

log = logging.getLogger(__name__)

# Gate failures that mean "already handled / not yours", answered with silence
QUIET_REFUSALS = {"untrusted_sender", "message_already_acted", "already_paid", "payment_locked"}

REFUSAL_TEXT = {
    "below_min_payment": "the amount is below the minimum payment",
    "above_max_per_tx": "the amount is above the per-payment limit",
    "self_address": "that address belongs to me",
    "address_not_allowlisted": "that address is not on the allow-list",
    "daily_limit": "the daily payment limit has been reached",
}

ALERT_AFTER_FAILURES = 2


class TransferExecutor:
    """Runs one Transfer effect.

    Order: validate address -> gates -> record intent + lock + persist ->
    backend broadcast (or dry run) -> ledger update -> session update.
    Backend errors never propagate; they leave the session retryable.
    """

    def __init__(
        self,
        config: BotConfig,
        ledger: IdempotencyLedger,
        backend: TransferBackend,
        persistence: PersistenceStore,
        clock: Clock,
        activity: ActivityLog | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._cfg = config
        self._ledger = ledger
        self._backend = backend
        self._persistence = persistence
        self._clock = clock
        self._activity = activity
        self._notifier = notifier
        self._gates = PaymentGates(config.payments, ledger, config.channels.trusted_sender_ids)
        self._failures: dict[str, int] = {}
        self._payout: str | None = None

    async def payout_address(self) -> str | None:
        if self._payout is None:
            try:
                self._payout = await self._backend.get_payout_address(self._cfg.payments.network)
            except Exception as exc:
                log.warning("Payout address lookup failed: %s", exc)
        return self._payout

    async def confirm_broadcasts(self) -> list[str]:
        """Move broadcast intents to CONFIRMED once the backend reports enough confirmations.

        Returns the confirmed intent ids. Callers persist.
        """
        network = self._cfg.payments.network
        needed = self._cfg.payments.min_confirmations
        confirmed: list[str] = []
        for intent in self._ledger.awaiting_confirmation():
            if not intent.dry_run:
                try:
                    seen = await self._backend.get_confirmations(intent.tx, network)
                except Exception as exc:
                    log.warning("Confirmation check for %s failed: %s", intent.tx, exc)
                    continue
                if seen < needed:
                    log.debug("Intent %s has %d/%d confirmations", intent.intent_id, seen, needed)
                    continue
            if not self._ledger.record_confirmed(intent.intent_id):
                continue
            confirmed.append(intent.intent_id)
            log.info("Transfer %s confirmed for %s", intent.tx, intent.channel_id)
            if self._activity:
                await self._activity.log_activity(
                    "transfer_confirmed", f"Confirmed ${intent.amount} to {intent.address}: {intent.tx}",
                    channel_id=intent.channel_id, amount=str(intent.amount),
                )
        return confirmed

    async def execute(self, session: Session, effect: Transfer, ctx: StepContext) -> list:
        network = self._cfg.payments.network
        try:
            valid = await self._backend.validate_address(effect.address, network)
        except Exception as exc:
            log.warning("Address validation error for %s: %s", effect.address, exc)
            valid = False
        if not valid:
            log.debug("Rejected invalid %s address %s", network, effect.address)
            return [
                Send(
                    session.channel_id,
                    f"That doesn't look like a valid {network} address.",
                    reply_to=effect.message_id,
                )
            ]

        intent_id = session.payment_intent_id or make_intent_id(
            session.channel_id, effect.address, effect.amount_usd,
        )
        gate = self._gates.evaluate(
            session, effect.sender_id, effect.message_id, effect.address,
            effect.amount_usd, intent_id,
        )
        if not gate.passed:
            return await self._refuse(session, effect, gate)

        # Record + lock + persist before anything leaves the process
        if self._ledger.get_intent(intent_id) is None:
            self._ledger.record_intent(
                intent_id, effect.address, effect.amount_usd, session.channel_id, dry_run=gate.dry_run,
            )
        else:
            self._ledger.retry_intent(intent_id, effect.address, effect.amount_usd, dry_run=gate.dry_run)
        self._ledger.mark_transfer_message(effect.message_id, intent_id)
        session.payment_intent_id = intent_id
        session.payment_address = effect.address
        session.payment_locked = True
        await self._persistence.save()

        log.info(
            "Sending $%s to %s for %s (intent %s%s)",
            effect.amount_usd, effect.address, session.channel_id, intent_id,
            ", dry run" if gate.dry_run else "",
        )
        if gate.dry_run:
            result = TransferResult(success=True, tx_id=f"dryrun_{secrets.token_hex(8)}")
        else:
            try:
                result = await self._backend.send(
                    effect.address, effect.amount_usd, network, session.channel_id,
                )
            except Exception as exc:
                log.warning("Backend send raised for %s: %s", session.channel_id, exc)
                result = TransferResult(success=False, error=str(exc))

        if result.success and result.tx_id:
            return await self._succeeded(session, effect, intent_id, result, gate.dry_run, ctx)
        return await self._failed(session, effect, intent_id, result, ctx)

    async def _succeeded(
        self,
        session: Session,
        effect: Transfer,
        intent_id: str,
        result: TransferResult,
        dry_run: bool,
        ctx: StepContext,
    ) -> list:
        self._ledger.record_broadcast(intent_id, result.tx_id)
        if dry_run:
            # dry runs never reach a chain
            self._ledger.record_confirmed(intent_id)
        self._failures.pop(intent_id, None)
        follow_up = steps.transfer_succeeded(session, result.tx_id, effect.address, dry_run, ctx)
        await self._persistence.save()

        if self._activity:
            await self._activity.log_activity(
                "transfer_dry_run" if dry_run else "transfer_sent",
                f"{'Dry run' if dry_run else 'Sent'} ${effect.amount_usd} to {effect.address}: {result.tx_id}",
                channel_id=session.channel_id,
                amount=str(effect.amount_usd),
            )
        if self._notifier and not dry_run:
            await self._notifier.payment_sent(
                session.channel_id, effect.amount_usd, result.tx_id, self._cfg.payments.network,
            )
        return follow_up

    async def _failed(
        self,
        session: Session,
        effect: Transfer,
        intent_id: str,
        result: TransferResult,
        ctx: StepContext,
    ) -> list:
        reason = (result.error or "unknown error")[:200]
        self._ledger.record_failed(intent_id, reason)
        follow_up = steps.transfer_failed(session, reason, effect.message_id, ctx)
        await self._persistence.save()

        count = self._failures.get(intent_id, 0) + 1
        self._failures[intent_id] = count
        log.warning("Transfer failed for %s (attempt %d): %s", session.channel_id, count, reason)
        if self._activity:
            await self._activity.log_activity(
                "transfer_failed", f"Transfer failed: {reason}",
                channel_id=session.channel_id, amount=str(effect.amount_usd),
            )
        if self._notifier and count >= ALERT_AFTER_FAILURES:
            await self._notifier.alert(
                "Repeated transfer failure",
                f"{session.channel_id}: {count} failed attempts, last error: {reason}",
            )
        return follow_up

    async def _refuse(self, session: Session, effect: Transfer, gate: GateResult) -> list:
        if gate.reason in QUIET_REFUSALS or gate.reason.startswith("intent_"):
            log.debug("Transfer gate %s for %s, ignoring", gate.reason, session.channel_id)
            return []
        log.info("Transfer refused for %s: %s", session.channel_id, gate.reason)
        if self._activity:
            await self._activity.log_activity(
                "transfer_refused", f"Gate refused: {gate.reason}",
                channel_id=session.channel_id, amount=str(effect.amount_usd),
            )
        detail = REFUSAL_TEXT.get(gate.reason, gate.reason)
        return [
            Send(
                session.channel_id,
                f"Can't send this payment: {detail}.",
                reply_to=effect.message_id,
            )
        ]
