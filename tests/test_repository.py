"""asyncpg queue repository driven through a stub connection and pool."""

from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

import asyncpg
import pytest

from gymqueue_shared.errors import AlreadyQueued, InvalidTransition, NotInQueue
from gymqueue_shared.models import QueueStatus
from gymqueue_shared.repositories import EquipmentQueueRepository
from gymqueue_shared.repositories.equipment_queue import (
    ADVISORY_LOCK_NAMESPACE,
    _PgQueueTransaction,
)

NOW = datetime(2026, 3, 2, 18, 0, tzinfo=UTC)
RACK = "squat-rack-1"


def _row(**overrides):
    row = {
        "id": 1,
        "equipment_id": RACK,
        "member_id": "alice",
        "member_name": "Alice",
        "position": 1,
        "status": "WAITING",
        "joined_at": NOW,
        "notified_at": None,
        "expires_at": None,
        "resolved_at": None,
    }
    row.update(overrides)
    return row


class StubConnection:
    """Returns queued results per method; an exception in the queue is raised."""

    def __init__(self, *, fetch=None, fetchrow=None, fetchval=None, execute=None):
        self.results = {
            "fetch": list(fetch or []),
            "fetchrow": list(fetchrow or []),
            "fetchval": list(fetchval or []),
            "execute": list(execute or []),
        }
        self.calls: list[tuple[str, str, tuple]] = []
        self.transaction_errors: list[BaseException | None] = []

    async def _next(self, method, sql, args, default):
        self.calls.append((method, sql, args))
        queue = self.results[method]
        result = queue.pop(0) if queue else default
        if isinstance(result, BaseException):
            raise result
        return result

    async def fetch(self, sql, *args):
        return await self._next("fetch", sql, args, [])

    async def fetchrow(self, sql, *args):
        return await self._next("fetchrow", sql, args, None)

    async def fetchval(self, sql, *args):
        return await self._next("fetchval", sql, args, None)

    async def execute(self, sql, *args):
        return await self._next("execute", sql, args, "SELECT 1")

    @asynccontextmanager
    async def transaction(self):
        try:
            yield
        except BaseException as e:
            self.transaction_errors.append(e)
            raise
        self.transaction_errors.append(None)

    def sql(self, method):
        return [sql for m, sql, _ in self.calls if m == method]


class StubPool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


# ----------------------------------------------------------------------
# insert
# ----------------------------------------------------------------------


async def test_insert_returns_waiting_entry():
    conn = StubConnection(fetchrow=[None, _row(id=7, position=3)])

    entry = await _PgQueueTransaction(conn).insert(RACK, "alice", "Alice", 3, NOW)

    assert entry.id == 7
    assert entry.status is QueueStatus.WAITING
    _, sql, args = conn.calls[-1]
    assert "INSERT INTO equipment_queue_entries" in sql
    assert args == (RACK, "alice", "Alice", 3, NOW)


async def test_insert_with_active_entry_raises_already_queued():
    conn = StubConnection(fetchrow=[_row()])

    with pytest.raises(AlreadyQueued):
        await _PgQueueTransaction(conn).insert(RACK, "alice", "Alice", 2, NOW)

    assert not any("INSERT" in sql for sql in conn.sql("fetchrow"))


async def test_unique_violation_maps_to_already_queued():
    conn = StubConnection(
        fetchrow=[None, asyncpg.UniqueViolationError("uq_equipment_queue_active_member")]
    )

    with pytest.raises(AlreadyQueued):
        await _PgQueueTransaction(conn).insert(RACK, "alice", "Alice", 1, NOW)


# ----------------------------------------------------------------------
# update_status
# ----------------------------------------------------------------------


async def test_update_status_missing_row_raises_not_in_queue():
    conn = StubConnection(fetchval=[None])

    with pytest.raises(NotInQueue):
        await _PgQueueTransaction(conn).update_status(99, QueueStatus.LEFT, at=NOW)

    assert conn.sql("fetchrow") == []


async def test_update_status_rejects_illegal_transition_without_writing():
    conn = StubConnection(fetchval=["CLAIMED"])

    with pytest.raises(InvalidTransition):
        await _PgQueueTransaction(conn).update_status(1, QueueStatus.NOTIFIED, at=NOW)

    assert "FOR UPDATE" in conn.sql("fetchval")[0]
    assert conn.sql("fetchrow") == []


async def test_update_status_to_notified_sets_deadline():
    deadline = NOW + timedelta(minutes=5)
    conn = StubConnection(
        fetchval=["WAITING"],
        fetchrow=[_row(status="NOTIFIED", notified_at=NOW, expires_at=deadline)],
    )

    entry = await _PgQueueTransaction(conn).update_status(
        1, QueueStatus.NOTIFIED, at=NOW, expires_at=deadline
    )

    assert entry.status is QueueStatus.NOTIFIED
    _, _, args = conn.calls[-1]
    assert args == (1, "NOTIFIED", NOW, deadline, None)


async def test_update_status_to_terminal_clears_deadline_and_resolves():
    conn = StubConnection(fetchval=["NOTIFIED"], fetchrow=[_row(status="LEFT", resolved_at=NOW)])

    await _PgQueueTransaction(conn).update_status(
        1, QueueStatus.LEFT, at=NOW, expires_at=NOW + timedelta(minutes=5)
    )

    _, _, args = conn.calls[-1]
    assert args == (1, "LEFT", None, None, NOW)


# ----------------------------------------------------------------------
# positions and reads
# ----------------------------------------------------------------------


@pytest.mark.parametrize(("tag", "moved"), [("UPDATE 3", 3), ("UPDATE 0", 0)])
async def test_shift_positions_after_reports_rows_moved(tag, moved):
    conn = StubConnection(execute=[tag])

    assert await _PgQueueTransaction(conn).shift_positions_after(RACK, 2) == moved

    _, sql, args = conn.calls[-1]
    assert "position = position - 1" in sql
    assert args == (RACK, 2)


async def test_list_active_orders_by_join_time_then_id():
    conn = StubConnection(fetch=[[_row(id=1), _row(id=2, member_id="bob", position=2)]])

    entries = await _PgQueueTransaction(conn).list_active(RACK)

    assert [e.member_id for e in entries] == ["alice", "bob"]
    assert "ORDER BY joined_at ASC, id ASC" in conn.sql("fetch")[0]


async def test_list_expired_equipment_uses_strict_deadline():
    conn = StubConnection(fetch=[[{"equipment_id": RACK}]])
    repo = EquipmentQueueRepository(StubPool(conn))

    assert await repo.list_expired_equipment(NOW) == [RACK]

    _, sql, args = conn.calls[-1]
    assert "expires_at < $1" in sql
    assert args == (NOW,)


async def test_list_member_history_passes_limit():
    conn = StubConnection(fetch=[[_row(status="LEFT")]])
    repo = EquipmentQueueRepository(StubPool(conn))

    history = await repo.list_member_history("alice", limit=5)

    assert history[0].status is QueueStatus.LEFT
    _, sql, args = conn.calls[-1]
    assert "ORDER BY joined_at DESC" in sql
    assert args == ("alice", 5)


# ----------------------------------------------------------------------
# locked
# ----------------------------------------------------------------------


async def test_locked_takes_equipment_advisory_lock_in_transaction():
    conn = StubConnection()
    repo = EquipmentQueueRepository(StubPool(conn), lock_timeout=2.5)

    async with repo.locked(RACK) as tx:
        assert isinstance(tx, _PgQueueTransaction)

    set_timeout, lock = conn.calls[0], conn.calls[1]
    assert set_timeout[1] == "SET LOCAL lock_timeout = 2500"
    assert "pg_advisory_xact_lock" in lock[1]
    assert lock[2] == (ADVISORY_LOCK_NAMESPACE, RACK)
    assert conn.transaction_errors == [None]


async def test_locked_rolls_back_on_error():
    conn = StubConnection()
    repo = EquipmentQueueRepository(StubPool(conn))

    with pytest.raises(NotInQueue):
        async with repo.locked(RACK):
            raise NotInQueue()

    assert isinstance(conn.transaction_errors[0], NotInQueue)
