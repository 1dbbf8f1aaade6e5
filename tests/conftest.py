"""Shared fixtures for wagerbot tests."""

from __future__ import annotations

import random

import pytest
from pytest_metadata.plugin import metadata_key

from wagerbot.engine.clock import VirtualClock
from wagerbot.engine.effects import StepContext
from wagerbot.engine.queue import OutboundQueue
from wagerbot.models.config import BotConfig
from wagerbot.state.ledger import IdempotencyLedger
from wagerbot.state.persistence import PersistenceStore
from wagerbot.state.store import SessionStore
from wagerbot.storage.sqlite import SQLiteActivityLog
from wagerbot.transport.memory import MemoryTransport
from wagerbot.verification import Harness

from tests.mocks import MockBackend, MockNotifier, MockPriceFeed

SELF_ID = "900000000000000001"
SELF_NAME = "wagerbot"
COORDINATOR_ID = "200000000000000001"
PARTICIPANT_ID = "300000000000000001"
PARTICIPANT_NAME = "alice"
OUTSIDER_ID = "300000000000000099"
DICE_BOT_ID = "400000000000000001"
VOUCH_CHANNEL = "500000000000000001"
PUBLIC_CHANNEL = "600000000000000001"
TICKET_CHANNEL = "700000000000000001"

PAYOUT_ADDRESS = "LQ3B5Y3kh7cWz9gvYpnBtVQ8YcnUk5oTqA"
PARTICIPANT_ADDRESS = "LZ2K8yTdq5XgH8Lq4x9bJr7nZpY3cVw6Mt"


# ── Report metadata ─────────────────────────────────────────────


def pytest_configure(config):
    """Add the simulated actors to the HTML report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Network"] = "LTC (dry run)"
    meta["Transport"] = "in-memory"
    meta["Bot Account"] = SELF_ID
    meta["Coordinator"] = COORDINATOR_ID


def pytest_html_results_summary(prefix, summary, postfix):
    """Inject the simulated channel layout into the report summary."""
    prefix.append(
        '<div style="margin:8px 0;padding:10px;background:#f8f9fa;border:1px solid #dee2e6;'
        'border-radius:4px;font-family:monospace;font-size:13px;">'
        "<strong>Simulated channels</strong><br/>"
        f"Public offers: {PUBLIC_CHANNEL}<br/>"
        f"Ticket: {TICKET_CHANNEL}<br/>"
        f"Vouches: {VOUCH_CHANNEL}"
        "</div>"
    )


def make_test_config(**overrides) -> BotConfig:
    """Build a BotConfig suitable for testing."""
    defaults = dict(
        verification_mode=True,
        webhook_url="",
    )
    defaults.update(overrides)
    cfg = BotConfig(**defaults)
    cfg.payments.payout_addresses = {"LTC": PAYOUT_ADDRESS}
    cfg.channels.coordinator_ids = [COORDINATOR_ID]
    cfg.channels.vouch_channel_id = VOUCH_CHANNEL
    cfg.game.dice_bot_ids = [DICE_BOT_ID]
    cfg.storage.activity_db_path = ":memory:"
    cfg.discord.token = "test-token"
    return cfg


def make_context(cfg: BotConfig, now: float = 1_700_000_000.0) -> StepContext:
    return StepContext(
        config=cfg, self_id=SELF_ID, self_name=SELF_NAME, now=now, payout_address=PAYOUT_ADDRESS,
    )


@pytest.fixture
def test_config():
    """Default BotConfig for tests."""
    return make_test_config()


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def transport(clock):
    """MemoryTransport with the public and vouch channels registered."""
    t = MemoryTransport(clock, SELF_ID, SELF_NAME)
    t.add_channel(PUBLIC_CHANNEL, "wagers")
    t.add_channel(VOUCH_CHANNEL, "vouches")
    t.add_channel(TICKET_CHANNEL, f"ticket-{PARTICIPANT_NAME}")
    return t


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def ledger(clock):
    return IdempotencyLedger(clock)


@pytest.fixture
def persistence(tmp_path, store, ledger, clock, mock_notifier):
    return PersistenceStore(tmp_path / "state.json", store, ledger, clock, mock_notifier)


@pytest.fixture
async def queue(transport, clock):
    """Started OutboundQueue with fixed 2s spacing."""
    q = OutboundQueue(transport, clock, 2000, 2500, jitter=False)
    q.start()
    yield q
    await q.stop()


@pytest.fixture
async def activity():
    """Initialized in-memory SQLiteActivityLog."""
    log = SQLiteActivityLog(":memory:")
    await log.initialize()
    yield log
    await log.close()


@pytest.fixture
def mock_backend():
    return MockBackend(payout_address=PAYOUT_ADDRESS)


@pytest.fixture
def mock_notifier():
    return MockNotifier()


@pytest.fixture
def mock_price():
    return MockPriceFeed()


@pytest.fixture
def rng():
    return random.Random(7)


@pytest.fixture
async def harness(tmp_path, mock_notifier):
    """Started daemon over the in-memory transport with the dry-run backend."""
    async with Harness(tmp_path, notifier=mock_notifier) as h:
        yield h
