"""Internal signal routes for other gym systems.

The access-control system calls ``/freed`` when equipment is released; ops
tooling can force a sweep. Both need the ``X-Internal-Key`` header.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from gymqueue_api.core.dependencies import get_queue_coordinator, require_internal_key
from gymqueue_api.core.envelope import ApiResponse
from gymqueue_api.services import QueueCoordinator
from gymqueue_shared.errors import QueueError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(require_internal_key)],
)


class FreedResponse(BaseModel):
    promoted: bool
    entry_id: int | None = None
    member_id: str | None = None
    expires_at: datetime | None = None


class SweepResponse(BaseModel):
    expired: int
    promoted: int


@router.post("/equipment/{equipment_id}/freed", response_model=ApiResponse[FreedResponse])
async def equipment_freed(
    equipment_id: str,
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
) -> ApiResponse[FreedResponse]:
    """Equipment became available; notify the head of its queue."""
    try:
        promoted = await coordinator.on_resource_freed(equipment_id)
    except QueueError:
        raise
    except Exception as e:
        logger.exception(f"Failed to handle equipment freed signal: {e}")
        raise HTTPException(status_code=500, detail="Failed to process signal") from None
    if promoted is None:
        return ApiResponse(data=FreedResponse(promoted=False))
    return ApiResponse(
        data=FreedResponse(
            promoted=True,
            entry_id=promoted.id,
            member_id=promoted.member_id,
            expires_at=promoted.expires_at,
        )
    )


@router.post("/queue/sweep", response_model=ApiResponse[SweepResponse])
async def sweep_now(
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
) -> ApiResponse[SweepResponse]:
    """Run the expiry sweep immediately."""
    try:
        result = await coordinator.sweep_expired()
    except QueueError:
        raise
    except Exception as e:
        logger.exception(f"Manual sweep failed: {e}")
        raise HTTPException(status_code=500, detail="Sweep failed") from None
    logger.info(f"Manual sweep: expired={len(result.expired)}, promoted={len(result.promoted)}")
    return ApiResponse(data=SweepResponse(expired=len(result.expired), promoted=len(result.promoted)))
