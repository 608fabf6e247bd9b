"""Pydantic response models shared by the scheduling routers"""
import uuid
from datetime import datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict


class AvailabilityRead(BaseModel):
    id: uuid.UUID
    tutor_id: uuid.UUID
    day_of_week: int
    start_time: time
    end_time: time
    is_recurring: bool
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ProposalRead(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    tutor_id: uuid.UUID
    course_id: uuid.UUID
    proposed_start_time: datetime
    proposed_end_time: datetime
    status: str
    student_message: Optional[str] = None
    tutor_response: Optional[str] = None
    responded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SessionRead(BaseModel):
    id: uuid.UUID
    tutor_id: uuid.UUID
    student_id: Optional[uuid.UUID] = None
    course_id: uuid.UUID
    proposal_id: Optional[uuid.UUID] = None
    scheduled_start_time: datetime
    scheduled_end_time: datetime
    scheduled_minutes: Optional[int] = None
    status: str
    is_group_session: bool
    tutor_join_time: Optional[datetime] = None
    student_join_time: Optional[datetime] = None
    tutor_late: bool
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    reserved_minutes: int
    billable_minutes: Optional[int] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceRead(BaseModel):
    id: uuid.UUID
    session_id: uuid.UUID
    student_id: uuid.UUID
    join_time: Optional[datetime] = None
    leave_time: Optional[datetime] = None
    attended: bool
    reserved_minutes: int
    consumed_minutes: int

    model_config = ConfigDict(from_attributes=True)


class WalletRead(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    course_id: uuid.UUID
    purchased_minutes: int
    consumed_minutes: int
    balance_minutes: int
    status: str

    model_config = ConfigDict(from_attributes=True)


class WalletTransactionRead(BaseModel):
    id: uuid.UUID
    wallet_id: uuid.UUID
    kind: str
    minutes: int
    session_id: Optional[uuid.UUID] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class NotificationRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    type: str
    title: str
    message: str
    link: Optional[str] = None
    related_id: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
