"""
Tutoring Session API Endpoints

GET  /api/v1/tutoring-sessions                    - Sessions visible to the caller
POST /api/v1/tutoring-sessions/group              - Schedule a group session (tutor)
GET  /api/v1/tutoring-sessions/{id}               - Session detail
GET  /api/v1/tutoring-sessions/{id}/attendance    - Group attendance rows
POST /api/v1/tutoring-sessions/{id}/attendees     - Register a student on a group session (tutor)
POST /api/v1/tutoring-sessions/{id}/join          - Join (reserves wallet minutes)
POST /api/v1/tutoring-sessions/{id}/end           - Complete an in-progress session
POST /api/v1/tutoring-sessions/{id}/postpone      - Postpone (late = missed + charge)
POST /api/v1/tutoring-sessions/{id}/cancel        - Cancel without charge
"""
import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import BaseModel, Field

from tutorbook.api.auth import CurrentUser, get_current_user, require_roles
from tutorbook.api.schemas import AttendanceRead, SessionRead
from tutorbook.models.user import UserRole
from tutorbook.services.attendance_ledger import get_attendance_ledger
from tutorbook.services.session_lifecycle import get_session_lifecycle

router = APIRouter(prefix="/api/v1/tutoring-sessions", tags=["sessions"])


class GroupSessionCreate(BaseModel):
    course_id: uuid.UUID
    scheduled_start_time: datetime
    scheduled_end_time: datetime
    student_ids: List[uuid.UUID] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=2000)


class AttendeeCreate(BaseModel):
    student_id: uuid.UUID


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


@router.get("", response_model=List[SessionRead])
async def list_sessions(
    status_filter: Optional[str] = Query(None, alias="status"),
    user: CurrentUser = Depends(get_current_user),
):
    return await get_session_lifecycle().list_for_user(user.id, user.role, status_filter)


@router.post("/group", response_model=SessionRead, status_code=status.HTTP_201_CREATED)
async def create_group_session(
    payload: GroupSessionCreate,
    user: CurrentUser = Depends(require_roles([UserRole.TUTOR])),
):
    return await get_attendance_ledger().create_group_session(
        tutor_id=user.id,
        course_id=payload.course_id,
        start=payload.scheduled_start_time,
        end=payload.scheduled_end_time,
        student_ids=payload.student_ids,
        notes=payload.notes,
    )


@router.get("/{session_id}", response_model=SessionRead)
async def get_session(
    session_id: uuid.UUID = Path(..., description="Session id"),
    user: CurrentUser = Depends(get_current_user),
):
    return await get_session_lifecycle().get(session_id, user.id, user.role)


@router.get("/{session_id}/attendance", response_model=List[AttendanceRead])
async def get_attendance(
    session_id: uuid.UUID = Path(..., description="Session id"),
    user: CurrentUser = Depends(get_current_user),
):
    # Visibility follows the session itself
    await get_session_lifecycle().get(session_id, user.id, user.role)
    return await get_attendance_ledger().list_for_session(session_id)


@router.post("/{session_id}/attendees", response_model=AttendanceRead, status_code=status.HTTP_201_CREATED)
async def register_attendee(
    payload: AttendeeCreate,
    session_id: uuid.UUID = Path(..., description="Session id"),
    user: CurrentUser = Depends(require_roles([UserRole.TUTOR])),
):
    return await get_attendance_ledger().register_attendee(session_id, payload.student_id, user.id)


@router.post("/{session_id}/join", response_model=SessionRead)
async def join_session(
    session_id: uuid.UUID = Path(..., description="Session id"),
    user: CurrentUser = Depends(get_current_user),
):
    """
    Join a session.

    A student's first join reserves the full scheduled minutes from their
    wallet (402 if the balance is short); repeat joins are no-ops.
    """
    return await get_session_lifecycle().join(session_id, user.id)


@router.post("/{session_id}/end", response_model=SessionRead)
async def end_session(
    session_id: uuid.UUID = Path(..., description="Session id"),
    user: CurrentUser = Depends(get_current_user),
):
    return await get_session_lifecycle().end(session_id, user.id)


@router.post("/{session_id}/postpone", response_model=SessionRead)
async def postpone_session(
    payload: Optional[ReasonRequest] = None,
    session_id: uuid.UUID = Path(..., description="Session id"),
    user: CurrentUser = Depends(get_current_user),
):
    return await get_session_lifecycle().postpone(
        session_id, user.id, reason=payload.reason if payload else None
    )


@router.post("/{session_id}/cancel", response_model=SessionRead)
async def cancel_session(
    payload: Optional[ReasonRequest] = None,
    session_id: uuid.UUID = Path(..., description="Session id"),
    user: CurrentUser = Depends(get_current_user),
):
    return await get_session_lifecycle().cancel(
        session_id, user.id, reason=payload.reason if payload else None
    )
