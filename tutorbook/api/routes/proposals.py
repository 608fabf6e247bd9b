"""
Session Proposal API Endpoints

POST  /api/v1/session-proposals               - Propose a session (student)
GET   /api/v1/session-proposals/student       - Caller's proposals (student)
GET   /api/v1/session-proposals/tutor         - Proposals addressed to caller (tutor)
GET   /api/v1/session-proposals/{id}          - Proposal detail (its student, tutor or staff)
PATCH /api/v1/session-proposals/{id}/approve  - Approve and schedule (tutor)
PATCH /api/v1/session-proposals/{id}/reject   - Decline (tutor)
"""
import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import BaseModel, Field

from tutorbook.api.auth import CurrentUser, get_current_user, require_roles
from tutorbook.api.schemas import ProposalRead, SessionRead
from tutorbook.models.user import UserRole
from tutorbook.services.proposal_workflow import get_proposal_workflow

router = APIRouter(prefix="/api/v1/session-proposals", tags=["proposals"])


class ProposalCreate(BaseModel):
    tutor_id: uuid.UUID
    course_id: uuid.UUID
    proposed_start_time: datetime
    proposed_end_time: datetime
    student_message: Optional[str] = Field(None, max_length=2000)


class ProposalResponse(BaseModel):
    tutor_response: Optional[str] = Field(None, max_length=2000)


class ApprovalResult(BaseModel):
    proposal: ProposalRead
    session: SessionRead


@router.post("", response_model=ProposalRead, status_code=status.HTTP_201_CREATED)
async def create_proposal(
    payload: ProposalCreate,
    user: CurrentUser = Depends(require_roles([UserRole.STUDENT])),
):
    """
    Propose a session window to a tutor.

    Rejected with 422 if the window is not a positive multiple of 15 minutes
    and with 409 if the tutor is already booked.
    """
    return await get_proposal_workflow().propose(
        student_id=user.id,
        tutor_id=payload.tutor_id,
        course_id=payload.course_id,
        start=payload.proposed_start_time,
        end=payload.proposed_end_time,
        student_message=payload.student_message,
    )


@router.get("/student", response_model=List[ProposalRead])
async def list_student_proposals(
    status_filter: Optional[str] = Query(None, alias="status"),
    user: CurrentUser = Depends(require_roles([UserRole.STUDENT])),
):
    return await get_proposal_workflow().list_for_student(user.id, status_filter)


@router.get("/tutor", response_model=List[ProposalRead])
async def list_tutor_proposals(
    status_filter: Optional[str] = Query(None, alias="status"),
    user: CurrentUser = Depends(require_roles([UserRole.TUTOR])),
):
    return await get_proposal_workflow().list_for_tutor(user.id, status_filter)


@router.get("/{proposal_id}", response_model=ProposalRead)
async def get_proposal(
    proposal_id: uuid.UUID = Path(..., description="Proposal id"),
    user: CurrentUser = Depends(get_current_user),
):
    return await get_proposal_workflow().get(proposal_id, user.id, user.role)


@router.patch("/{proposal_id}/approve", response_model=ApprovalResult)
async def approve_proposal(
    payload: Optional[ProposalResponse] = None,
    proposal_id: uuid.UUID = Path(..., description="Proposal id"),
    user: CurrentUser = Depends(require_roles([UserRole.TUTOR])),
):
    proposal, session = await get_proposal_workflow().approve(
        proposal_id,
        user.id,
        response_text=payload.tutor_response if payload else None,
    )
    return ApprovalResult(
        proposal=ProposalRead.model_validate(proposal),
        session=SessionRead.model_validate(session),
    )


@router.patch("/{proposal_id}/reject", response_model=ProposalRead)
async def reject_proposal(
    payload: Optional[ProposalResponse] = None,
    proposal_id: uuid.UUID = Path(..., description="Proposal id"),
    user: CurrentUser = Depends(require_roles([UserRole.TUTOR])),
):
    return await get_proposal_workflow().reject(
        proposal_id,
        user.id,
        response_text=payload.tutor_response if payload else None,
    )
