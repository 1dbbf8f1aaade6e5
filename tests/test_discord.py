"""Tests 113-116, 129: Discord REST calls and gateway event dispatch."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from wagerbot.errors import TransportError
from wagerbot.models.config import DiscordConfig
from wagerbot.transport.discord import DiscordTransport

API = "https://discord.test/api/v10"


class FakeDiscord:
    """REST handler for httpx.MockTransport with queued per-path responses."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def queue(self, method: str, path: str, *responses: httpx.Response) -> None:
        self.routes.setdefault((method, "/api/v10" + path), []).extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        pending = self.routes.get((request.method, request.url.path))
        if not pending:
            return httpx.Response(404, json={"message": "Unknown"})
        return pending.pop(0) if len(pending) > 1 else pending[0]


@pytest.fixture
def discord():
    return FakeDiscord()


@pytest.fixture
async def transport(discord):
    client = httpx.AsyncClient(base_url=API, transport=httpx.MockTransport(discord))
    t = DiscordTransport(DiscordConfig(token="t", api_base=API, request_retries=3), client=client)
    yield t
    await t.close()


# ── Test 113: Sending (Tier 1) ────────────────────────────────────


async def test_send_with_reply(transport, discord):
    discord.queue("POST", "/channels/c1/messages", httpx.Response(200, json={"id": "m42"}))
    assert await transport.send("c1", "hello", reply_to="m1") == "m42"
    body = json.loads(discord.requests[0].content)
    assert body == {
        "content": "hello",
        "message_reference": {"message_id": "m1", "fail_if_not_exists": False},
    }


async def test_rate_limit_retried(transport, discord):
    discord.queue(
        "POST", "/channels/c1/messages",
        httpx.Response(429, json={"retry_after": 0}),
        httpx.Response(200, json={"id": "m43"}),
    )
    assert await transport.send("c1", "hello") == "m43"
    assert len(discord.requests) == 2


async def test_rate_limit_exhausted(transport, discord):
    discord.queue("POST", "/channels/c1/typing", httpx.Response(429, json={"retry_after": 0}))
    with pytest.raises(TransportError):
        await transport.typing("c1")
    assert len(discord.requests) == 3


async def test_http_error_raises(transport, discord):
    discord.queue("POST", "/channels/c1/messages", httpx.Response(403, json={"message": "Missing Access"}))
    with pytest.raises(TransportError, match="403"):
        await transport.send("c1", "hello")


# ── Test 114: History and channel lookup (Tier 1) ─────────────────


async def test_fetch_history(transport, discord):
    discord.queue("GET", "/channels/c1", httpx.Response(200, json={"id": "c1", "name": "ticket-alice", "type": 0, "guild_id": "g1"}))
    discord.queue("GET", "/channels/c1/messages", httpx.Response(200, json=[
        {
            "id": "m2", "channel_id": "c1", "content": "<@900> rolled a 5",
            "timestamp": "2024-01-01T00:00:05.000000+00:00",
            "author": {"id": "400", "username": "dicebot", "bot": True},
            "mentions": [{"id": "900"}],
        },
        {
            "id": "m1", "channel_id": "c1", "content": "hi",
            "timestamp": "2024-01-01T00:00:00.000000+00:00",
            "author": {"id": "300", "username": "alice"},
        },
    ]))
    messages = await transport.fetch_history("c1", before="m9", limit=500)

    assert [m.message_id for m in messages] == ["m2", "m1"]
    assert messages[0].author_is_bot and messages[0].mentions == ["900"]
    assert messages[0].timestamp - messages[1].timestamp == 5.0
    assert messages[1].channel_name == "ticket-alice"
    assert not messages[1].is_direct
    history_request = discord.requests[0]
    assert history_request.url.params["limit"] == "100"
    assert history_request.url.params["before"] == "m9"


async def test_channel_info_cached_and_failure(transport, discord):
    discord.queue("GET", "/channels/d1", httpx.Response(200, json={"id": "d1", "type": 1}))
    info = await transport.channel_info("d1")
    assert info.is_direct
    assert await transport.channel_info("d1") is info
    assert len(discord.requests) == 1
    assert await transport.channel_info("missing") is None


# ── Test 115: Gateway dispatch (Tier 1) ───────────────────────────


async def test_ready_sets_identity(transport):
    ready = []

    async def on_ready():
        ready.append(transport.self_identity)

    transport.on_ready(on_ready)
    transport._dispatch("READY", {"user": {"id": "900", "username": "wagerbot"}})
    await asyncio.gather(*transport._handler_tasks)
    assert transport.self_identity.user_id == "900"
    assert ready[0].username == "wagerbot"


async def test_channel_and_message_events(transport):
    created, deleted, received = [], [], []

    async def on_created(info):
        created.append(info)

    async def on_deleted(info):
        deleted.append(info)

    async def on_message(msg):
        received.append(msg)

    transport.on_channel_created(on_created)
    transport.on_channel_deleted(on_deleted)
    transport.on_message(on_message)

    transport._dispatch("CHANNEL_CREATE", {"id": "c7", "name": "ticket-bob", "type": 0, "guild_id": "g1"})
    await asyncio.gather(*transport._handler_tasks)
    transport._dispatch("MESSAGE_CREATE", {
        "id": "m1", "channel_id": "c7", "content": "10v10",
        "timestamp": "2024-01-01T00:00:00+00:00", "author": {"id": "300", "username": "bob"},
    })
    await asyncio.gather(*transport._handler_tasks)
    transport._dispatch("CHANNEL_DELETE", {"id": "c7", "name": "ticket-bob", "type": 0})
    await asyncio.gather(*transport._handler_tasks)

    assert created[0].name == "ticket-bob"
    assert received[0].channel_name == "ticket-bob"
    assert received[0].author_name == "bob"
    assert deleted[0].channel_id == "c7"


# ── Test 116: Close (Tier 1) ──────────────────────────────────────


async def test_close_marks_closed(discord):
    client = httpx.AsyncClient(base_url=API, transport=httpx.MockTransport(discord))
    t = DiscordTransport(DiscordConfig(token="t", api_base=API), client=client)
    await t.close()
    assert await t.wait_closed() is False


# ── Test 129: Per-channel delivery order (Tier 1) ─────────────────


async def test_slow_channel_lookup_keeps_message_order():
    gate = asyncio.Event()
    lookups = []

    async def handler(request: httpx.Request) -> httpx.Response:
        lookups.append(request.url.path)
        if len(lookups) == 1:
            await gate.wait()
        return httpx.Response(200, json={"id": "c9", "name": "ticket-carol", "type": 0})

    client = httpx.AsyncClient(base_url=API, transport=httpx.MockTransport(handler))
    t = DiscordTransport(DiscordConfig(token="t", api_base=API), client=client)
    received = []

    async def on_message(msg):
        received.append(msg.message_id)

    t.on_message(on_message)
    for message_id in ("m1", "m2"):
        t._dispatch("MESSAGE_CREATE", {
            "id": message_id, "channel_id": "c9", "content": message_id,
            "timestamp": "2024-01-01T00:00:00+00:00", "author": {"id": "300", "username": "carol"},
        })
    for _ in range(5):
        await asyncio.sleep(0)
    assert received == []

    gate.set()
    await asyncio.gather(*t._handler_tasks)
    assert received == ["m1", "m2"]
    assert len(lookups) == 1
    await t.close()
