"""Background work: the periodic expiry sweep and the equipment-freed listener."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .queue_coordinator import QueueCoordinator

logger = logging.getLogger(__name__)

EQUIPMENT_FREED_CHANNEL = "equipment_freed"

CoordinatorFactory = Callable[[], QueueCoordinator | None]


async def run_sweep_once(coordinator: QueueCoordinator) -> None:
    result = await coordinator.sweep_expired()
    if result.expired:
        logger.info(
            f"Sweep expired {len(result.expired)} claim(s), promoted {len(result.promoted)}"
        )


async def sweep_loop(coordinator_factory: CoordinatorFactory, interval: int) -> None:
    """Run ``sweep_expired`` every *interval* seconds until cancelled.

    The factory returns None while the database is not connected; that
    iteration is skipped.
    """
    logger.info(f"Expiry sweep started (interval={interval}s)")
    while True:
        await asyncio.sleep(interval)
        coordinator = coordinator_factory()
        if coordinator is None:
            logger.debug("Sweep skipped, database not ready")
            continue
        try:
            await run_sweep_once(coordinator)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Expiry sweep failed: {e}")


def make_equipment_freed_handler(coordinator_factory: CoordinatorFactory):
    """Build the LISTEN callback for ``equipment_freed`` signals.

    The payload is the bare equipment id. Delivery is at-least-once, which is
    fine because ``on_resource_freed`` is idempotent.
    """

    async def on_equipment_freed(payload: str) -> None:
        equipment_id = payload.strip()
        if not equipment_id:
            logger.warning("Ignoring equipment_freed signal with empty payload")
            return
        coordinator = coordinator_factory()
        if coordinator is None:
            logger.warning(f"Dropping equipment_freed for {equipment_id}, database not ready")
            return
        await coordinator.on_resource_freed(equipment_id)

    return on_equipment_freed
