"""Read-only queue projections polled by the mobile client."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from gymqueue_shared.cache import AsyncTTLCache
from gymqueue_shared.models.equipment_queue import QueueEntry, QueueStatus
from gymqueue_shared.repositories.equipment_queue import QueueStore

logger = logging.getLogger(__name__)


@dataclass
class PositionView:
    in_queue: bool
    total_in_queue: int
    queue_id: int | None = None
    position: int | None = None
    status: QueueStatus | None = None
    joined_at: datetime | None = None
    notified_at: datetime | None = None
    expires_at: datetime | None = None
    estimated_wait_minutes: int | None = None


@dataclass
class QueueListingEntry:
    queue_id: int
    member_id: str
    member_name: str
    position: int
    status: QueueStatus
    joined_at: datetime
    expires_at: datetime | None = None


@dataclass
class QueueView:
    equipment_id: str
    queue_length: int
    entries: list[QueueListingEntry] = field(default_factory=list)


def _queue_key(equipment_id: str) -> str:
    return f"queue:{equipment_id}"


class QueueQueryService:
    """Projections over the store. No side effects."""

    def __init__(
        self,
        store: QueueStore,
        *,
        estimated_minutes_per_member: int = 30,
        cache: AsyncTTLCache | None = None,
    ) -> None:
        self.store = store
        self.estimated_minutes_per_member = estimated_minutes_per_member
        self.cache = cache

    def estimate_wait(self, entry: QueueEntry) -> int:
        """Rough minutes until the member's turn; zero once notified."""
        if entry.status is QueueStatus.NOTIFIED:
            return 0
        return entry.position * self.estimated_minutes_per_member

    async def get_position(self, equipment_id: str, member_id: str) -> PositionView:
        """Member's place in line plus the current queue length."""
        active = await self.store.list_active(equipment_id)
        entry = next((e for e in active if e.member_id == member_id), None)
        if entry is None:
            return PositionView(in_queue=False, total_in_queue=len(active))
        return PositionView(
            in_queue=True,
            total_in_queue=len(active),
            queue_id=entry.id,
            position=entry.position,
            status=entry.status,
            joined_at=entry.joined_at,
            notified_at=entry.notified_at,
            expires_at=entry.expires_at,
            estimated_wait_minutes=self.estimate_wait(entry),
        )

    async def get_queue(self, equipment_id: str) -> QueueView:
        """Ordered active entries with display fields (short-TTL cached)."""
        if self.cache is None:
            return await self._load_queue(equipment_id)
        return await self.cache.get_or_load(
            _queue_key(equipment_id), lambda: self._load_queue(equipment_id)
        )

    async def _load_queue(self, equipment_id: str) -> QueueView:
        active = await self.store.list_active(equipment_id)
        return QueueView(
            equipment_id=equipment_id,
            queue_length=len(active),
            entries=[
                QueueListingEntry(
                    queue_id=e.id,
                    member_id=e.member_id,
                    member_name=e.member_name,
                    position=e.position,
                    status=e.status,
                    joined_at=e.joined_at,
                    expires_at=e.expires_at,
                )
                for e in active
            ],
        )

    async def get_history(self, member_id: str, limit: int = 50) -> list[QueueEntry]:
        """All of a member's entries, newest first."""
        return await self.store.list_member_history(member_id, limit)

    def invalidate(self, equipment_id: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(_queue_key(equipment_id))
