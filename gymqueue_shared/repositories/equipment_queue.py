"""Repository for the equipment_queue_entries table.

Mutations happen inside ``locked(equipment_id)``, which opens a transaction and
takes a transaction-scoped advisory lock keyed on the equipment id. Two
operations on the same equipment are therefore serialized across every API
process; operations on different equipment never wait on each other.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import Protocol

import asyncpg

from gymqueue_shared.errors import AlreadyQueued, NotInQueue
from gymqueue_shared.models.equipment_queue import QueueEntry, QueueStatus, check_transition

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, equipment_id, member_id, member_name, position, status, "
    "joined_at, notified_at, expires_at, resolved_at"
)

_ACTIVE = "status IN ('WAITING', 'NOTIFIED')"

# First key of the two-int advisory lock form, keeps our locks apart from
# anything else that takes advisory locks on the same database.
ADVISORY_LOCK_NAMESPACE = 7301


class QueueTransaction(Protocol):
    """Operations available while holding one equipment's queue lock."""

    async def list_active(self, equipment_id: str) -> list[QueueEntry]: ...

    async def find_active_by_member(
        self, equipment_id: str, member_id: str
    ) -> QueueEntry | None: ...

    async def insert(
        self,
        equipment_id: str,
        member_id: str,
        member_name: str,
        position: int,
        joined_at: datetime,
    ) -> QueueEntry: ...

    async def update_status(
        self,
        entry_id: int,
        new_status: QueueStatus,
        *,
        at: datetime,
        expires_at: datetime | None = None,
    ) -> QueueEntry: ...

    async def shift_positions_after(self, equipment_id: str, position: int) -> int: ...


class QueueStore(Protocol):
    """Durable storage of queue entries."""

    def locked(self, equipment_id: str) -> AbstractAsyncContextManager[QueueTransaction]: ...

    async def list_active(self, equipment_id: str) -> list[QueueEntry]: ...

    async def list_expired_equipment(self, now: datetime) -> list[str]: ...

    async def list_member_history(self, member_id: str, limit: int = 50) -> list[QueueEntry]: ...


class _PgQueueTransaction:
    """SQL operations bound to one locked connection."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self.conn = conn

    async def list_active(self, equipment_id: str) -> list[QueueEntry]:
        rows = await self.conn.fetch(
            f"SELECT {_COLUMNS} FROM equipment_queue_entries "
            f"WHERE equipment_id = $1 AND {_ACTIVE} "
            "ORDER BY joined_at ASC, id ASC",
            equipment_id,
        )
        return [QueueEntry(**dict(row)) for row in rows]

    async def find_active_by_member(self, equipment_id: str, member_id: str) -> QueueEntry | None:
        row = await self.conn.fetchrow(
            f"SELECT {_COLUMNS} FROM equipment_queue_entries "
            f"WHERE equipment_id = $1 AND member_id = $2 AND {_ACTIVE}",
            equipment_id,
            member_id,
        )
        if not row:
            return None
        return QueueEntry(**dict(row))

    async def insert(
        self,
        equipment_id: str,
        member_id: str,
        member_name: str,
        position: int,
        joined_at: datetime,
    ) -> QueueEntry:
        """Insert a WAITING entry. Raises AlreadyQueued on an active duplicate."""
        if await self.find_active_by_member(equipment_id, member_id):
            raise AlreadyQueued()
        try:
            row = await self.conn.fetchrow(
                f"""
                INSERT INTO equipment_queue_entries
                    (equipment_id, member_id, member_name, position, status, joined_at)
                VALUES ($1, $2, $3, $4, 'WAITING', $5)
                RETURNING {_COLUMNS}
                """,
                equipment_id,
                member_id,
                member_name,
                position,
                joined_at,
            )
        except asyncpg.UniqueViolationError:
            raise AlreadyQueued() from None
        return QueueEntry(**dict(row))

    async def update_status(
        self,
        entry_id: int,
        new_status: QueueStatus,
        *,
        at: datetime,
        expires_at: datetime | None = None,
    ) -> QueueEntry:
        """Apply a state-machine transition. Raises InvalidTransition if illegal."""
        current = await self.conn.fetchval(
            "SELECT status FROM equipment_queue_entries WHERE id = $1 FOR UPDATE",
            entry_id,
        )
        if current is None:
            raise NotInQueue(f"Queue entry {entry_id} not found")
        check_transition(QueueStatus(current), new_status)

        notified_at = at if new_status is QueueStatus.NOTIFIED else None
        resolved_at = at if new_status.is_terminal else None
        if new_status is not QueueStatus.NOTIFIED:
            expires_at = None

        row = await self.conn.fetchrow(
            f"""
            UPDATE equipment_queue_entries SET
                status      = $2,
                notified_at = COALESCE($3, notified_at),
                expires_at  = $4,
                resolved_at = $5
            WHERE id = $1
            RETURNING {_COLUMNS}
            """,
            entry_id,
            new_status.value,
            notified_at,
            expires_at,
            resolved_at,
        )
        return QueueEntry(**dict(row))

    async def shift_positions_after(self, equipment_id: str, position: int) -> int:
        """Move every active entry behind ``position`` up one place. Returns rows moved."""
        result = await self.conn.execute(
            "UPDATE equipment_queue_entries SET position = position - 1 "
            f"WHERE equipment_id = $1 AND {_ACTIVE} AND position > $2",
            equipment_id,
            position,
        )
        # result is like "UPDATE N"
        return int(result.split()[-1])


class EquipmentQueueRepository:
    """asyncpg-backed QueueStore."""

    def __init__(self, pool: asyncpg.Pool, *, lock_timeout: float = 5.0) -> None:
        self.pool = pool
        self.lock_timeout = lock_timeout

    @asynccontextmanager
    async def locked(self, equipment_id: str) -> AsyncIterator[QueueTransaction]:
        """Serialize queue mutations for one equipment id.

        Everything done through the yielded transaction commits together or
        not at all.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                timeout_ms = int(self.lock_timeout * 1000)
                await conn.execute(f"SET LOCAL lock_timeout = {timeout_ms}")
                await conn.execute(
                    "SELECT pg_advisory_xact_lock($1, hashtext($2))",
                    ADVISORY_LOCK_NAMESPACE,
                    equipment_id,
                )
                yield _PgQueueTransaction(conn)

    async def list_active(self, equipment_id: str) -> list[QueueEntry]:
        """Active entries (WAITING + NOTIFIED) ordered by join time."""
        async with self.pool.acquire() as conn:
            return await _PgQueueTransaction(conn).list_active(equipment_id)

    async def list_expired_equipment(self, now: datetime) -> list[str]:
        """Equipment ids whose NOTIFIED holder is past the claim deadline."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT DISTINCT equipment_id FROM equipment_queue_entries "
                "WHERE status = 'NOTIFIED' AND expires_at < $1",
                now,
            )
            return [row["equipment_id"] for row in rows]

    async def list_member_history(self, member_id: str, limit: int = 50) -> list[QueueEntry]:
        """Every entry of a member, newest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM equipment_queue_entries "
                "WHERE member_id = $1 "
                "ORDER BY joined_at DESC, id DESC LIMIT $2",
                member_id,
                limit,
            )
            return [QueueEntry(**dict(row)) for row in rows]
