"""ActivityLog protocol - append-only audit trail."""

from __future__ import annotations

from typing import Protocol

from wagerbot.models.records import ActivityRecord


class ActivityLog(Protocol):

    async def initialize(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def log_activity(
        self,
        event_type: str,
        message: str,
        channel_id: str | None = None,
        amount: str | None = None,
    ) -> None:
        ...

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        ...

    async def get_channel_activity(self, channel_id: str) -> list[ActivityRecord]:
        ...
