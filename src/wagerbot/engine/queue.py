"""OutboundQueue - the single, rate-limited egress for every outbound message."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field

from wagerbot.engine.clock import Clock
from wagerbot.errors import TransportError
from wagerbot.interfaces.transport import ChatTransport

log = logging.getLogger(__name__)


@dataclass
class OutboundItem:
    channel_id: str
    content: str
    reply_to: str | None
    future: asyncio.Future = field(repr=False)


class OutboundQueue:
    """Global FIFO drained by one dispatcher task.

    Before each send the dispatcher waits until ``min_gap_ms`` (plus random
    jitter up to ``max_gap_ms - min_gap_ms``) has elapsed since the previous
    send, then attempts a typing indicator. A failed send rejects only that
    caller's future; the queue moves on.
    """

    def __init__(
        self,
        transport: ChatTransport,
        clock: Clock,
        min_gap_ms: int = 2000,
        max_gap_ms: int = 2500,
        jitter: bool = True,
        rng: random.Random | None = None,
    ) -> None:
        self._transport = transport
        self._clock = clock
        self._min_gap = min_gap_ms / 1000
        self._max_gap = max(max_gap_ms, min_gap_ms) / 1000
        self._jitter = jitter
        self._rng = rng or random.Random()
        self._queue: asyncio.Queue[OutboundItem] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._stopped = False
        self._last_send: float | None = None
        self.sent_count = 0
        self.failed_count = 0

    def start(self) -> None:
        if self._stopped:
            return
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Refuse new items, drain pending ones, then stop the dispatcher."""
        self._stopped = True
        if self._task is None:
            return
        await self.drain()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def drain(self) -> None:
        """Block until every queued item has been dispatched."""
        if not self._queue.empty() and (self._task is None or self._task.done()):
            self._task = asyncio.create_task(self._run())
        await self._queue.join()

    def submit(self, channel_id: str, content: str, reply_to: str | None = None) -> asyncio.Future:
        """Enqueue without waiting. The future resolves to the sent message id.

        Raises TransportError once the queue has been stopped.
        """
        if self._stopped:
            raise TransportError(f"Outbound queue stopped, dropping message to {channel_id}")
        self.start()
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(OutboundItem(channel_id, content, reply_to, future))
        return future

    async def send(self, channel_id: str, content: str, reply_to: str | None = None) -> str:
        """Enqueue and wait for the transport to accept the message."""
        return await self.submit(channel_id, content, reply_to)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _gap(self) -> float:
        if not self._jitter or self._max_gap <= self._min_gap:
            return self._min_gap
        return self._min_gap + self._rng.uniform(0, self._max_gap - self._min_gap)

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._dispatch(item)
            finally:
                self._queue.task_done()

    async def _dispatch(self, item: OutboundItem) -> None:
        if item.future.done():
            return
        if self._last_send is not None:
            wait = self._gap() - (self._clock.monotonic() - self._last_send)
            if wait > 0:
                await self._clock.sleep(wait)

        try:
            await self._transport.typing(item.channel_id)
        except Exception as exc:
            log.debug("Typing indicator failed in %s: %s", item.channel_id, exc)

        try:
            message_id = await self._transport.send(item.channel_id, item.content, item.reply_to)
        except Exception as exc:
            self.failed_count += 1
            log.warning("Send to %s failed: %s", item.channel_id, exc)
            if not item.future.done():
                item.future.set_exception(exc)
            return
        finally:
            self._last_send = self._clock.monotonic()

        self.sent_count += 1
        if not item.future.done():
            item.future.set_result(message_id)
