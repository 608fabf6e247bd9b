"""
Session Access Resolution

Derives the caller's role in the context of one tutoring session once per
operation. Handlers consume the resulting SessionAccess instead of branching
on account roles.
"""
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.errors import ForbiddenError
from tutorbook.models.tutoring_session import TutoringSession, SessionAttendance


class SessionRole(str, Enum):
    TUTOR = "tutor"
    STUDENT_1TO1 = "student_1to1"
    GROUP_ATTENDEE = "group_attendee"
    NONE = "none"


@dataclass
class SessionAccess:
    role: SessionRole
    user_id: uuid.UUID
    attendance: Optional[SessionAttendance] = None

    @property
    def is_participant(self) -> bool:
        return self.role is not SessionRole.NONE

    def require_participant(self) -> "SessionAccess":
        if not self.is_participant:
            raise ForbiddenError("You are not a participant in this session")
        return self

    def require_tutor(self, action: str) -> "SessionAccess":
        if self.role is not SessionRole.TUTOR:
            raise ForbiddenError(f"Only the tutor can {action} a group session")
        return self


async def resolve_session_access(
    db: AsyncSession,
    session: TutoringSession,
    user_id: uuid.UUID,
) -> SessionAccess:
    if session.tutor_id == user_id:
        return SessionAccess(SessionRole.TUTOR, user_id)

    if not session.is_group_session:
        if session.student_id == user_id:
            return SessionAccess(SessionRole.STUDENT_1TO1, user_id)
        return SessionAccess(SessionRole.NONE, user_id)

    result = await db.execute(
        select(SessionAttendance).where(
            SessionAttendance.session_id == session.id,
            SessionAttendance.student_id == user_id,
        )
    )
    attendance = result.scalar_one_or_none()
    if attendance is not None:
        return SessionAccess(SessionRole.GROUP_ATTENDEE, user_id, attendance)
    return SessionAccess(SessionRole.NONE, user_id)
