"""PersistenceStore - crash-safe JSON snapshot of sessions and the ledger."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

from wagerbot.engine.clock import Clock
from wagerbot.errors import PersistenceError
from wagerbot.interfaces.notifier import Notifier
from wagerbot.state.ledger import IdempotencyLedger
from wagerbot.state.store import SessionStore

log = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def write_atomic(path: Path, blob: str) -> None:
    """Write ``blob`` to ``<path>.tmp``, fsync, then rename over ``path``."""
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(blob)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError as exc:
        raise PersistenceError(f"snapshot write to {path} failed: {exc}") from exc


def read_snapshot(path: Path) -> dict | None:
    """Parsed snapshot, or None when missing or unreadable."""
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        log.error("Snapshot %s unreadable, starting fresh: %s", path, exc)
        return None
    if not isinstance(data, dict):
        log.error("Snapshot %s malformed, starting fresh", path)
        return None
    return data


class PersistenceStore:
    """Serializes SessionStore + IdempotencyLedger into a single file.

    A failed write keeps state in memory, marks the store dirty and is
    retried by the next autosave.
    """

    def __init__(
        self,
        path: str | Path,
        store: SessionStore,
        ledger: IdempotencyLedger,
        clock: Clock,
        notifier: Notifier | None = None,
    ) -> None:
        self._path = Path(path).expanduser()
        self._store = store
        self._ledger = ledger
        self._clock = clock
        self._notifier = notifier
        self._lock = asyncio.Lock()
        self._autosave_task: asyncio.Task | None = None
        self.dirty = False
        self.saves = 0

    @property
    def path(self) -> Path:
        return self._path

    def snapshot(self) -> dict:
        data = {"version": SNAPSHOT_VERSION, "saved_at": self._clock.now()}
        data.update(self._store.snapshot())
        data.update(self._ledger.snapshot())
        return data

    async def save(self) -> bool:
        async with self._lock:
            blob = json.dumps(self.snapshot(), indent=2, sort_keys=True)
            try:
                await asyncio.to_thread(write_atomic, self._path, blob)
            except PersistenceError as exc:
                self.dirty = True
                log.error("Persist failed, keeping state in memory: %s", exc)
                if self._notifier is not None:
                    await self._notifier.alert("Persistence failure", str(exc))
                return False
            self.dirty = False
            self.saves += 1
            return True

    def load(self) -> bool:
        """Restore from disk. Returns False on a fresh start."""
        data = read_snapshot(self._path)
        if data is None:
            log.info("No usable snapshot at %s, fresh start", self._path)
            return False
        try:
            self._store.restore(data)
            self._ledger.restore(data)
        except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
            log.error("Snapshot %s has invalid records, starting fresh: %s", self._path, exc)
            self._store.restore({})
            self._ledger.restore({})
            return False
        log.info(
            "Restored %d sessions and %d intents from %s",
            len(self._store), len(self._ledger.intents()), self._path,
        )
        return True

    # ── Autosave ───────────────────────────────────────────

    def start_autosave(self, interval_s: float) -> None:
        if self._autosave_task is None:
            self._autosave_task = asyncio.create_task(self._autosave_loop(interval_s))

    async def stop_autosave(self) -> None:
        if self._autosave_task:
            self._autosave_task.cancel()
            try:
                await self._autosave_task
            except asyncio.CancelledError:
                pass
            self._autosave_task = None

    async def _autosave_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                await self.save()
            except Exception as exc:
                log.error("Autosave error: %s", exc, exc_info=True)
