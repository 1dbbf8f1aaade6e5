"""Main daemon - wires all components together."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from wagerbot.backends.dry_run import DryRunBackend
from wagerbot.backends.wallet_rpc import WalletRPCBackend
from wagerbot.engine.advertiser import AutoAdvertiser
from wagerbot.engine.clock import Clock, SystemClock
from wagerbot.engine.offers import OfferHandler
from wagerbot.engine.queue import OutboundQueue
from wagerbot.engine.recovery import Recovery, reconcile_payment_locks
from wagerbot.engine.router import Router
from wagerbot.engine.sessions import SessionHandler
from wagerbot.engine.sweeper import SessionSweeper
from wagerbot.engine.transfers import TransferExecutor
from wagerbot.engine.vouch import VouchPoster
from wagerbot.interfaces.activity import ActivityLog
from wagerbot.interfaces.backend import TransferBackend
from wagerbot.interfaces.notifier import Notifier
from wagerbot.interfaces.price import PriceFeed
from wagerbot.interfaces.transport import ChatTransport
from wagerbot.models.config import BotConfig
from wagerbot.models.events import ChannelInfo, ChatMessage
from wagerbot.notify.webhook import NullNotifier, WebhookNotifier
from wagerbot.policy.classifier import ChannelClassifier
from wagerbot.price.oracle import PriceOracle
from wagerbot.state.ledger import IdempotencyLedger
from wagerbot.state.persistence import PersistenceStore
from wagerbot.state.store import SessionStore
from wagerbot.storage.sqlite import SQLiteActivityLog
from wagerbot.transport.discord import DiscordTransport

log = logging.getLogger(__name__)


class SessionDaemon:
    """Chat-channel wagering session engine.

    Routes inbound chat events to the offer and session handlers, persists
    state, sweeps idle sessions and replays missed history after a restart.
    Collaborators may be injected; anything omitted is built from ``cfg``.
    """

    def __init__(
        self,
        cfg: BotConfig,
        transport: ChatTransport | None = None,
        clock: Clock | None = None,
        backend: TransferBackend | None = None,
        activity: ActivityLog | None = None,
        price: PriceFeed | None = None,
        notifier: Notifier | None = None,
        state_path: str | None = None,
    ) -> None:
        self._cfg = cfg
        self._stop_event = asyncio.Event()
        self._started = False
        self._accepting = False
        self._inflight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._recovered = asyncio.Event()

        self.transport = transport or DiscordTransport(cfg.discord)
        self.clock = clock or SystemClock()

        # Core components
        self.price = price or PriceOracle(
            cfg.price.cache_ttl_s, cfg.price.max_price_deviation_pct, cfg.price.timeout,
        )
        self.notifier = notifier or self._build_notifier()
        self.activity = activity or SQLiteActivityLog(cfg.storage.activity_db_path)
        self.backend = backend or self._build_backend()

        self.store = SessionStore(cfg.offers.pending_offer_ttl_s)
        self.ledger = IdempotencyLedger(self.clock, cfg.storage.processed_message_cap)
        self.persistence = PersistenceStore(
            state_path or cfg.storage.state_path, self.store, self.ledger, self.clock, self.notifier,
        )
        self.queue = OutboundQueue(
            self.transport, self.clock,
            cfg.queue.min_outbound_gap_ms, cfg.queue.max_outbound_gap_ms,
            jitter=not cfg.verification_mode,
        )
        self.classifier = ChannelClassifier(cfg.channels)

        # Handlers
        self.transfers = TransferExecutor(
            cfg, self.ledger, self.backend, self.persistence, self.clock, self.activity, self.notifier,
        )
        self.vouches = VouchPoster(
            cfg, self.store, self.ledger, self.queue, self.persistence, self.clock, self.activity,
        )
        self.offers = OfferHandler(
            cfg, self.store, self.queue, self.clock,
            activity=self.activity, notifier=self.notifier,
        )
        self.sessions = SessionHandler(
            cfg, self.store, self.persistence, self.queue, self.transfers, self.vouches,
            self.transport, self.clock, self.classifier,
            activity=self.activity, notifier=self.notifier, price=self.price,
        )
        self.router = Router(
            cfg, self.ledger, self.store, self.classifier, self.offers, self.sessions,
            self.transport, self.queue, self.backend, self.activity, self.notifier,
        )
        self.sweeper = SessionSweeper(
            cfg.storage, self.store, self.persistence, self.clock, self.activity, self.transfers,
        )
        self.advertiser = AutoAdvertiser(cfg, self.store, self.queue, self.clock, self.activity)
        self.recovery = Recovery(
            self.transport, self.router, self.store, self.ledger, self.vouches, self.activity,
        )
        self._recovery_task: asyncio.Task | None = None

    def _build_notifier(self) -> Notifier:
        if self._cfg.webhook_url:
            return WebhookNotifier(self._cfg.webhook_url)
        return NullNotifier()

    def _build_backend(self) -> TransferBackend:
        pay = self._cfg.payments
        if pay.enable_live_transfers and self._cfg.wallet.rpc_url:
            return WalletRPCBackend(
                self._cfg.wallet.rpc_url,
                self.price,
                self._cfg.wallet.rpc_user,
                self._cfg.wallet.rpc_password,
                pay.payout_addresses,
                self._cfg.wallet.timeout,
            )
        return DryRunBackend(pay.payout_addresses, pay.address_patterns_by_network, self.price)

    # ── Lifecycle ──────────────────────────────────────────

    async def start(self) -> None:
        """Restore state, start background tasks and connect the transport."""
        cfg = self._cfg
        log.info("Starting wagerbot")
        log.info("  Network:        %s", cfg.payments.network)
        log.info("  Live transfers: %s", cfg.payments.enable_live_transfers)
        log.info("  Verification:   %s", cfg.verification_mode)
        log.info("  State:          %s", self.persistence.path)

        await self.activity.initialize()
        self.persistence.load()
        touched = reconcile_payment_locks(self.store, self.ledger, self.clock.now())
        if touched:
            log.warning("Reconciled %d payment locks from the last run", len(touched))
            await self.persistence.save()

        self.queue.start()
        self.persistence.start_autosave(cfg.storage.autosave_interval_s)
        self.sweeper.start()
        self.advertiser.start()

        self.transport.on_message(self._on_message)
        self.transport.on_channel_created(self._on_channel_created)
        self.transport.on_channel_deleted(self._on_channel_deleted)
        self.transport.on_ready(self._on_ready)
        self._accepting = True
        await self.transport.connect()

        self._started = True
        await self.activity.log_activity("daemon_started", "Daemon started")

    async def run(self) -> int:
        """Run until stopped or the transport gives up. Returns the exit code."""
        await self.start()
        closed = asyncio.create_task(self.transport.wait_closed())
        stopped = asyncio.create_task(self._stop_event.wait())
        try:
            await asyncio.wait({closed, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()
        failed = closed.done() and not closed.cancelled() and closed.result()
        if not closed.done():
            closed.cancel()
        await self.shutdown()
        if failed:
            log.error("Transport could not be re-established")
            return 1
        return 0

    async def stop(self) -> None:
        """Signal the daemon to stop gracefully."""
        log.info("Stop requested")
        self._stop_event.set()

    async def shutdown(self) -> None:
        if not self._started:
            return
        self._started = False
        self._accepting = False
        if self._recovery_task and not self._recovery_task.done():
            self._recovery_task.cancel()
            await asyncio.gather(self._recovery_task, return_exceptions=True)
        self._recovered.set()
        # handlers already running may still queue replies and touch state
        await self._idle.wait()
        await self.sweeper.stop()
        await self.advertiser.stop()
        await self.persistence.stop_autosave()
        await self.vouches.stop()
        await self.queue.stop()
        await self.persistence.save()
        await self.activity.log_activity("daemon_stopped", "Daemon stopped")
        await self.transport.close()
        await self.activity.close()
        await self.backend.close()
        await self.price.close()
        await self.notifier.close()
        log.info("Daemon shut down cleanly")

    # ── Transport callbacks ────────────────────────────────

    @contextlib.asynccontextmanager
    async def _inbound(self, what: str):
        """Track an inbound event. Yields False when it should be dropped."""
        if not self._accepting:
            log.debug("Not accepting events, dropped %s", what)
            yield False
            return
        self._inflight += 1
        self._idle.clear()
        try:
            # live traffic waits for the replay of older history
            await self._recovered.wait()
            yield self._accepting
        finally:
            self._inflight -= 1
            if self._inflight == 0:
                self._idle.set()

    async def _on_message(self, msg: ChatMessage) -> None:
        async with self._inbound(f"message {msg.message_id}") as accepted:
            if accepted:
                await self.router.route(msg)

    async def _on_channel_created(self, info: ChannelInfo) -> None:
        async with self._inbound(f"channel create {info.channel_id}") as accepted:
            if not accepted:
                return
            try:
                await self.sessions.on_channel_created(info)
            except Exception as exc:
                log.error("Channel create handling for %s failed: %s", info.channel_id, exc, exc_info=True)

    async def _on_channel_deleted(self, info: ChannelInfo) -> None:
        async with self._inbound(f"channel delete {info.channel_id}") as accepted:
            if not accepted:
                return
            try:
                await self.sessions.on_channel_deleted(info)
            except Exception as exc:
                log.error("Channel delete handling for %s failed: %s", info.channel_id, exc, exc_info=True)

    async def _on_ready(self) -> None:
        identity = self.transport.self_identity
        self.offers.self_id = identity.user_id
        log.info("Connected as %s (%s)", identity.username, identity.user_id)
        self._recovered.clear()
        self._recovery_task = asyncio.create_task(self._recover())

    async def wait_recovered(self) -> None:
        """Wait for the post-connect recovery pass to finish."""
        if self._recovery_task is not None:
            await asyncio.gather(self._recovery_task, return_exceptions=True)

    async def _recover(self) -> None:
        try:
            await self.recovery.run()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("Recovery failed: %s", exc, exc_info=True)
            await self.notifier.alert("Recovery failed", str(exc))
        finally:
            self._recovered.set()


async def run_daemon(cfg: BotConfig) -> int:
    """Entry point for running the daemon."""
    daemon = SessionDaemon(cfg)

    loop = asyncio.get_running_loop()

    def _signal_handler():
        asyncio.ensure_future(daemon.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    return await daemon.run()
