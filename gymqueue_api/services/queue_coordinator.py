"""Equipment queue coordinator: join, leave, claim, promotion and expiry.

Every mutation runs inside ``store.locked(equipment_id)``: read the active
list, apply the transition, fix up positions, commit. Notifications go out
only after the lock is released, through the fire-and-forget dispatcher.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from gymqueue_shared.errors import (
    AlreadyQueued,
    ClaimWindowExpired,
    NotInQueue,
    NotYourTurn,
    QueueFull,
)
from gymqueue_shared.models.equipment_queue import QueueEntry, QueueStatus
from gymqueue_shared.repositories.equipment_queue import QueueStore, QueueTransaction

from .notifications import NotificationDispatcher
from .queue_query import PositionView, QueueQueryService

logger = logging.getLogger(__name__)

DEFAULT_CLAIM_WINDOW = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class JoinResult:
    entry: QueueEntry
    position: int
    queue_length: int
    estimated_wait_minutes: int


@dataclass
class SweepResult:
    expired: list[QueueEntry] = field(default_factory=list)
    promoted: list[QueueEntry] = field(default_factory=list)


class QueueCoordinator:
    """Business logic for the per-equipment waitlist."""

    def __init__(
        self,
        store: QueueStore,
        dispatcher: NotificationDispatcher,
        query: QueueQueryService,
        *,
        claim_window: timedelta = DEFAULT_CLAIM_WINDOW,
        max_queue_length: int = 0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if claim_window <= timedelta(0):
            raise ValueError("claim_window must be positive")
        self.store = store
        self.dispatcher = dispatcher
        self.query = query
        self.claim_window = claim_window
        self.max_queue_length = max_queue_length
        self._now = clock

    # ------------------------------------------------------------------
    # Member operations
    # ------------------------------------------------------------------

    async def join(
        self, equipment_id: str, member_id: str, member_name: str | None = None
    ) -> JoinResult:
        """Append the member to the back of the queue as WAITING.

        Joining never promotes, even on an empty queue: promotion only follows
        an equipment-freed signal.
        """
        now = self._now()
        async with self.store.locked(equipment_id) as tx:
            if await tx.find_active_by_member(equipment_id, member_id):
                raise AlreadyQueued()
            active = await tx.list_active(equipment_id)
            if self.max_queue_length and len(active) >= self.max_queue_length:
                raise QueueFull(f"Queue is full (max {self.max_queue_length} people)")
            entry = await tx.insert(
                equipment_id, member_id, member_name or member_id, len(active) + 1, now
            )

        self.query.invalidate(equipment_id)
        logger.info(f"Member {member_id} joined queue for {equipment_id} at position {entry.position}")
        return JoinResult(
            entry=entry,
            position=entry.position,
            queue_length=len(active) + 1,
            estimated_wait_minutes=self.query.estimate_wait(entry),
        )

    async def leave(self, equipment_id: str, member_id: str) -> QueueEntry:
        """Move the member's active entry to LEFT and close the gap.

        Never promotes. When a NOTIFIED member leaves, the next WAITING entry
        waits for the following equipment-freed signal.
        """
        now = self._now()
        async with self.store.locked(equipment_id) as tx:
            entry = await tx.find_active_by_member(equipment_id, member_id)
            if entry is None:
                raise NotInQueue()
            left = await tx.update_status(entry.id, QueueStatus.LEFT, at=now)
            await tx.shift_positions_after(equipment_id, entry.position)

        self.query.invalidate(equipment_id)
        logger.info(
            f"Member {member_id} left queue for {equipment_id} "
            f"(was {entry.status.value} at position {entry.position})"
        )
        return left

    async def claim(self, equipment_id: str, member_id: str) -> QueueEntry:
        """Confirm use of the equipment before the claim window closes.

        The deadline is checked here directly; a late claim fails even if the
        sweep has not expired the entry yet.
        """
        now = self._now()
        async with self.store.locked(equipment_id) as tx:
            entry = await tx.find_active_by_member(equipment_id, member_id)
            if entry is None:
                raise NotInQueue()
            if entry.status is QueueStatus.WAITING:
                raise NotYourTurn(f"It is not your turn yet (position {entry.position})")
            if entry.is_claim_expired(now):
                raise ClaimWindowExpired()
            claimed = await tx.update_status(entry.id, QueueStatus.CLAIMED, at=now)
            await tx.shift_positions_after(equipment_id, entry.position)

        self.query.invalidate(equipment_id)
        logger.info(f"Member {member_id} claimed {equipment_id}")
        return claimed

    async def position(self, equipment_id: str, member_id: str) -> PositionView:
        return await self.query.get_position(equipment_id, member_id)

    # ------------------------------------------------------------------
    # Signals and background work
    # ------------------------------------------------------------------

    async def on_resource_freed(self, equipment_id: str) -> QueueEntry | None:
        """Notify the head of the queue that the equipment is free.

        Idempotent: an empty queue or an already-NOTIFIED head is a no-op, so
        duplicate freed signals are harmless.
        """
        now = self._now()
        async with self.store.locked(equipment_id) as tx:
            promoted = await self._promote_head(tx, equipment_id, now)

        if promoted is None:
            logger.debug(f"Equipment {equipment_id} freed, nobody to promote")
            return None
        self.query.invalidate(equipment_id)
        self._announce_turn(promoted)
        return promoted

    async def sweep_expired(self) -> SweepResult:
        """Expire lapsed claims and hand each turn to the next in line."""
        now = self._now()
        result = SweepResult()
        for equipment_id in await self.store.list_expired_equipment(now):
            try:
                expired, promoted = await self._expire_equipment(equipment_id, now)
            except Exception as e:
                logger.exception(f"Sweep failed for equipment {equipment_id}: {e}")
                continue

            if not expired:
                continue
            self.query.invalidate(equipment_id)
            for entry in expired:
                logger.info(f"Claim by {entry.member_id} on {equipment_id} expired")
                self.dispatcher.expired(entry.member_id, equipment_id)
            result.expired.extend(expired)
            if promoted is not None:
                self._announce_turn(promoted)
                result.promoted.append(promoted)
        return result

    async def _expire_equipment(
        self, equipment_id: str, now: datetime
    ) -> tuple[list[QueueEntry], QueueEntry | None]:
        expired: list[QueueEntry] = []
        promoted = None
        async with self.store.locked(equipment_id) as tx:
            # Stops at an empty queue or a live holder
            while True:
                active = await tx.list_active(equipment_id)
                holder = next((e for e in active if e.status is QueueStatus.NOTIFIED), None)
                if holder is None or not holder.is_claim_expired(now):
                    break
                expired.append(await tx.update_status(holder.id, QueueStatus.EXPIRED, at=now))
                await tx.shift_positions_after(equipment_id, holder.position)
                promoted = await self._promote_head(tx, equipment_id, now)
                if promoted is None:
                    break
        return expired, promoted

    async def _promote_head(
        self, tx: QueueTransaction, equipment_id: str, now: datetime
    ) -> QueueEntry | None:
        active = await tx.list_active(equipment_id)
        if not active or any(e.status is QueueStatus.NOTIFIED for e in active):
            return None
        return await tx.update_status(
            active[0].id,
            QueueStatus.NOTIFIED,
            at=now,
            expires_at=now + self.claim_window,
        )

    def _announce_turn(self, entry: QueueEntry) -> None:
        logger.info(
            f"Member {entry.member_id} notified for {entry.equipment_id}, "
            f"claim by {entry.expires_at.isoformat() if entry.expires_at else '?'}"
        )
        if entry.expires_at is not None:
            self.dispatcher.your_turn(entry.member_id, entry.equipment_id, entry.expires_at)
