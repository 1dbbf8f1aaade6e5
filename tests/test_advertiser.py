"""Tests 137-139: Periodic promotional posts."""

from __future__ import annotations

import asyncio
import random

import pytest

from wagerbot.engine.advertiser import AutoAdvertiser
from wagerbot.engine.clock import SystemClock
from wagerbot.models.session import SessionState
from wagerbot.verification import Harness

from tests.conftest import PUBLIC_CHANNEL, make_test_config
from tests.factories import make_session


@pytest.fixture
def advert_config():
    cfg = make_test_config()
    cfg.advert.enabled = True
    cfg.advert.interval_s = 300
    cfg.advert.jitter_s = 0
    cfg.advert.messages = ["Waiting for wagers!", "dice ft5, open a ticket"]
    cfg.channels.monitored_channel_ids = [PUBLIC_CHANNEL]
    return cfg


def build(cfg, store, queue, clock, activity=None, seed=1):
    return AutoAdvertiser(cfg, store, queue, clock, activity, rng=random.Random(seed))


async def wait_for_sends(transport, count: int) -> None:
    for _ in range(500):
        if len(transport.sent) >= count:
            return
        await asyncio.sleep(0)


# ── Test 137: One advert round (Tier 1) ───────────────────────────


async def test_posts_a_configured_message(advert_config, store, queue, clock, transport, activity):
    advertiser = build(advert_config, store, queue, clock, activity)
    assert await advertiser.advertise() == PUBLIC_CHANNEL
    [sent] = transport.sent
    assert sent.channel_id == PUBLIC_CHANNEL
    assert sent.content in advert_config.advert.messages
    recent = await activity.get_recent_activity()
    assert recent[0].event_type == "advert_posted"


async def test_explicit_channels_override_monitored(advert_config, store, queue, clock, transport):
    transport.add_channel("600000000000000777", "promos")
    advert_config.advert.channel_ids = ["600000000000000777"]
    advertiser = build(advert_config, store, queue, clock)
    assert await advertiser.advertise() == "600000000000000777"


async def test_skips_while_busy(advert_config, store, queue, clock, transport):
    store.restore({"sessions": [
        make_session(SessionState.AWAITING_ADDRESS, channel_id=f"70000000000000090{i}").to_dict()
        for i in range(3)
    ]})
    advertiser = build(advert_config, store, queue, clock)
    assert await advertiser.advertise() is None
    assert transport.sent == []

    store.remove("700000000000000900")
    assert await advertiser.advertise() == PUBLIC_CHANNEL


async def test_finished_sessions_do_not_count(advert_config, store, queue, clock, transport):
    store.restore({"sessions": [
        make_session(SessionState.COMPLETE, channel_id=f"70000000000000091{i}").to_dict()
        for i in range(3)
    ]})
    assert await build(advert_config, store, queue, clock).advertise() == PUBLIC_CHANNEL


# ── Test 138: Scheduling (Tier 1) ─────────────────────────────────


async def test_loop_posts_every_interval(advert_config, store, queue, clock, transport):
    advertiser = build(advert_config, store, queue, clock)
    start = clock.now()
    advertiser.start()
    assert advertiser.running
    try:
        await wait_for_sends(transport, 2)
    finally:
        await advertiser.stop()
    assert not advertiser.running

    first, second = transport.sent[:2]
    assert first.timestamp - start == pytest.approx(300)
    # the queue's spacing shares the clock
    assert second.timestamp - first.timestamp >= 300


def test_jitter_stays_within_window(advert_config, store, clock):
    advert_config.advert.jitter_s = 2.0
    advertiser = AutoAdvertiser(advert_config, store, None, clock, rng=random.Random(5))
    delays = [advertiser.next_delay() for _ in range(50)]
    assert all(298.0 <= d <= 302.0 for d in delays)
    assert len(set(delays)) > 1


# ── Test 139: Disabled by default (Tier 1) ────────────────────────


async def test_disabled_by_default(store, queue, clock, transport):
    cfg = make_test_config()
    cfg.channels.monitored_channel_ids = [PUBLIC_CHANNEL]
    assert cfg.advert.enabled is False
    advertiser = build(cfg, store, queue, clock)
    advertiser.start()
    assert not advertiser.running
    await advertiser.stop()


async def test_enabled_without_channels_does_not_start(advert_config, store, queue, clock):
    advert_config.channels.monitored_channel_ids = []
    advertiser = build(advert_config, store, queue, clock)
    advertiser.start()
    assert not advertiser.running


async def test_daemon_runs_advertiser(advert_config, tmp_path):
    async with Harness(tmp_path, clock=SystemClock(), cfg=advert_config) as h:
        assert h.daemon.advertiser.running
    assert not h.daemon.advertiser.running
