"""Data models for the equipment_queue_entries table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from gymqueue_shared.errors import InvalidTransition


class QueueStatus(str, Enum):
    """Lifecycle of a queue entry."""

    WAITING = "WAITING"
    NOTIFIED = "NOTIFIED"
    CLAIMED = "CLAIMED"
    EXPIRED = "EXPIRED"
    LEFT = "LEFT"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = frozenset({QueueStatus.WAITING, QueueStatus.NOTIFIED})
TERMINAL_STATUSES = frozenset({QueueStatus.CLAIMED, QueueStatus.EXPIRED, QueueStatus.LEFT})

ALLOWED_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.WAITING: frozenset({QueueStatus.NOTIFIED, QueueStatus.LEFT}),
    QueueStatus.NOTIFIED: frozenset(
        {QueueStatus.CLAIMED, QueueStatus.EXPIRED, QueueStatus.LEFT}
    ),
    QueueStatus.CLAIMED: frozenset(),
    QueueStatus.EXPIRED: frozenset(),
    QueueStatus.LEFT: frozenset(),
}


def check_transition(current: QueueStatus, new: QueueStatus) -> None:
    """Raise InvalidTransition unless ``current -> new`` is a legal move."""
    if new not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(f"Cannot move queue entry from {current.value} to {new.value}")


@dataclass
class QueueEntry:
    """Equipment queue entry record."""

    id: int
    equipment_id: str
    member_id: str
    member_name: str
    position: int
    status: QueueStatus
    joined_at: datetime
    notified_at: datetime | None = None
    expires_at: datetime | None = None
    resolved_at: datetime | None = None

    def __post_init__(self) -> None:
        # asyncpg hands back the raw TEXT column
        if not isinstance(self.status, QueueStatus):
            self.status = QueueStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def is_claim_expired(self, now: datetime) -> bool:
        """True once a NOTIFIED entry is past its claim deadline."""
        return (
            self.status is QueueStatus.NOTIFIED
            and self.expires_at is not None
            and now > self.expires_at
        )
