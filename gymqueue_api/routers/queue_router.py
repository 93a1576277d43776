"""Equipment queue API routes (member-facing)."""

import logging
from dataclasses import asdict
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from gymqueue_api.core.dependencies import (
    get_current_member,
    get_query_service,
    get_queue_coordinator,
)
from gymqueue_api.core.envelope import ApiResponse
from gymqueue_api.services import Member, QueueCoordinator, QueueQueryService
from gymqueue_shared.errors import QueueError
from gymqueue_shared.models import QueueEntry, QueueStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["equipment-queue"])


# ============================================
# Response Models
# ============================================


class JoinResponse(BaseModel):
    entry_id: int
    position: int
    queue_length: int
    status: QueueStatus
    estimated_wait_minutes: int


class EntryResponse(BaseModel):
    entry_id: int
    equipment_id: str
    status: QueueStatus
    position: int
    joined_at: datetime
    notified_at: datetime | None = None
    expires_at: datetime | None = None
    resolved_at: datetime | None = None

    @classmethod
    def from_entry(cls, entry: QueueEntry) -> "EntryResponse":
        return cls(
            entry_id=entry.id,
            equipment_id=entry.equipment_id,
            status=entry.status,
            position=entry.position,
            joined_at=entry.joined_at,
            notified_at=entry.notified_at,
            expires_at=entry.expires_at,
            resolved_at=entry.resolved_at,
        )


class PositionResponse(BaseModel):
    in_queue: bool
    total_in_queue: int
    queue_id: int | None = None
    position: int | None = None
    status: QueueStatus | None = None
    joined_at: datetime | None = None
    notified_at: datetime | None = None
    expires_at: datetime | None = None
    estimated_wait_minutes: int | None = None


class QueueListingEntryResponse(BaseModel):
    queue_id: int
    member_id: str
    member_name: str
    position: int
    status: QueueStatus
    joined_at: datetime
    expires_at: datetime | None = None


class QueueListingResponse(BaseModel):
    equipment_id: str
    queue_length: int
    entries: list[QueueListingEntryResponse]


# ============================================
# Queue Endpoints
# ============================================


@router.post("/equipment/{equipment_id}/queue", response_model=ApiResponse[JoinResponse])
async def join_queue(
    equipment_id: str,
    member: Member = Depends(get_current_member),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
) -> ApiResponse[JoinResponse]:
    """Join the waitlist for a piece of equipment."""
    try:
        result = await coordinator.join(equipment_id, member.member_id, member.display_name)
    except QueueError:
        raise
    except Exception as e:
        logger.exception(f"Failed to join queue: {e}")
        raise HTTPException(status_code=500, detail="Failed to join queue") from None
    return ApiResponse(
        data=JoinResponse(
            entry_id=result.entry.id,
            position=result.position,
            queue_length=result.queue_length,
            status=result.entry.status,
            estimated_wait_minutes=result.estimated_wait_minutes,
        )
    )


@router.delete("/equipment/{equipment_id}/queue/me", response_model=ApiResponse[EntryResponse])
async def leave_queue(
    equipment_id: str,
    member: Member = Depends(get_current_member),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
) -> ApiResponse[EntryResponse]:
    """Leave the waitlist, whether still waiting or already notified."""
    try:
        entry = await coordinator.leave(equipment_id, member.member_id)
    except QueueError:
        raise
    except Exception as e:
        logger.exception(f"Failed to leave queue: {e}")
        raise HTTPException(status_code=500, detail="Failed to leave queue") from None
    return ApiResponse(data=EntryResponse.from_entry(entry))


@router.post("/equipment/{equipment_id}/queue/claim", response_model=ApiResponse[EntryResponse])
async def claim_equipment(
    equipment_id: str,
    member: Member = Depends(get_current_member),
    coordinator: QueueCoordinator = Depends(get_queue_coordinator),
) -> ApiResponse[EntryResponse]:
    """Claim the equipment after being notified that it is free."""
    try:
        entry = await coordinator.claim(equipment_id, member.member_id)
    except QueueError:
        raise
    except Exception as e:
        logger.exception(f"Failed to claim equipment: {e}")
        raise HTTPException(status_code=500, detail="Failed to claim equipment") from None
    return ApiResponse(data=EntryResponse.from_entry(entry))


@router.get(
    "/equipment/{equipment_id}/queue/position", response_model=ApiResponse[PositionResponse]
)
async def get_position(
    equipment_id: str,
    member: Member = Depends(get_current_member),
    query: QueueQueryService = Depends(get_query_service),
) -> ApiResponse[PositionResponse]:
    """Current position of the caller; polled by the client countdown screen."""
    try:
        view = await query.get_position(equipment_id, member.member_id)
    except Exception as e:
        logger.exception(f"Failed to get queue position: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch queue position") from None
    return ApiResponse(data=PositionResponse(**asdict(view)))


@router.get("/equipment/{equipment_id}/queue", response_model=ApiResponse[QueueListingResponse])
async def get_queue(
    equipment_id: str,
    query: QueueQueryService = Depends(get_query_service),
) -> ApiResponse[QueueListingResponse]:
    """Ordered list of active entries for the equipment."""
    try:
        view = await query.get_queue(equipment_id)
    except Exception as e:
        logger.exception(f"Failed to get equipment queue: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch equipment queue") from None
    return ApiResponse(data=QueueListingResponse(**asdict(view)))


@router.get("/members/me/queue-history", response_model=ApiResponse[list[EntryResponse]])
async def get_queue_history(
    limit: int = Query(default=50, ge=1, le=200),
    member: Member = Depends(get_current_member),
    query: QueueQueryService = Depends(get_query_service),
) -> ApiResponse[list[EntryResponse]]:
    """The caller's queue entries, newest first, including finished ones."""
    try:
        entries = await query.get_history(member.member_id, limit)
    except Exception as e:
        logger.exception(f"Failed to get queue history: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch queue history") from None
    return ApiResponse(data=[EntryResponse.from_entry(e) for e in entries])
