"""Shared data models for the equipment queue service."""

from .equipment_queue import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    QueueEntry,
    QueueStatus,
    check_transition,
)

__all__ = [
    "ACTIVE_STATUSES",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "QueueEntry",
    "QueueStatus",
    "check_transition",
]
