"""Repository layer for the equipment queue service."""

from .equipment_queue import (
    EquipmentQueueRepository,
    QueueStore,
    QueueTransaction,
)

__all__ = [
    "EquipmentQueueRepository",
    "QueueStore",
    "QueueTransaction",
]
