"""
Tutor Availability API Endpoints

GET    /api/v1/tutor/availability            - Caller's own slots (tutor)
POST   /api/v1/tutor/availability            - Publish a slot (tutor)
PATCH  /api/v1/tutor/availability/{slot_id}  - Edit an owned slot (tutor)
DELETE /api/v1/tutor/availability/{slot_id}  - Remove an owned slot (tutor)
GET    /api/v1/tutors/{tutor_id}/availability - Active slots of a tutor
"""
import uuid
from datetime import time
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, status
from pydantic import BaseModel, Field

from tutorbook.api.auth import CurrentUser, get_current_user, require_roles
from tutorbook.api.schemas import AvailabilityRead
from tutorbook.models.user import UserRole
from tutorbook.services.availability_service import get_availability_service

router = APIRouter(prefix="/api/v1", tags=["availability"])


class AvailabilityCreate(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0=Sunday .. 6=Saturday")
    start_time: time
    end_time: time
    is_recurring: bool = True
    is_active: bool = True


class AvailabilityUpdate(BaseModel):
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_recurring: Optional[bool] = None
    is_active: Optional[bool] = None


@router.get("/tutor/availability", response_model=List[AvailabilityRead])
async def list_own_availability(
    user: CurrentUser = Depends(require_roles([UserRole.TUTOR])),
):
    """List the calling tutor's availability slots."""
    return await get_availability_service().list_for_tutor(user.id)


@router.post(
    "/tutor/availability",
    response_model=AvailabilityRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_availability(
    payload: AvailabilityCreate,
    user: CurrentUser = Depends(require_roles([UserRole.TUTOR])),
):
    return await get_availability_service().create_slot(
        user.id,
        payload.day_of_week,
        payload.start_time,
        payload.end_time,
        is_recurring=payload.is_recurring,
        is_active=payload.is_active,
    )


@router.patch("/tutor/availability/{slot_id}", response_model=AvailabilityRead)
async def update_availability(
    payload: AvailabilityUpdate,
    slot_id: uuid.UUID = Path(..., description="Availability slot id"),
    user: CurrentUser = Depends(require_roles([UserRole.TUTOR])),
):
    return await get_availability_service().update_slot(
        slot_id, user.id, payload.model_dump(exclude_unset=True)
    )


@router.delete("/tutor/availability/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_availability(
    slot_id: uuid.UUID = Path(..., description="Availability slot id"),
    user: CurrentUser = Depends(require_roles([UserRole.TUTOR])),
):
    await get_availability_service().delete_slot(slot_id, user.id)


@router.get("/tutors/{tutor_id}/availability", response_model=List[AvailabilityRead])
async def list_tutor_availability(
    tutor_id: uuid.UUID = Path(..., description="Tutor user id"),
    user: CurrentUser = Depends(get_current_user),
):
    """Active slots a student can pick a proposal window from."""
    return await get_availability_service().list_for_tutor(tutor_id, active_only=True)
