"""
Double-Booking Check

A tutor may hold at most one confirmed (scheduled/in_progress) session at any
moment. The check runs when a proposal is created and again when it is
approved. No lock is held between the two runs: two proposals approved in
close succession can both pass before either session row is visible to the
other transaction. That race is accepted; the second check narrows it to the
approval transactions themselves.
"""
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.errors import ConflictError
from tutorbook.models.tutoring_session import TutoringSession, SessionStatus

logger = logging.getLogger(__name__)


def _overlap_clause(start: datetime, end: datetime):
    # Half-open [start, end) intersection; back-to-back windows do not collide
    existing_start = TutoringSession.scheduled_start_time
    existing_end = TutoringSession.scheduled_end_time
    return or_(
        and_(existing_start <= start, start < existing_end),
        and_(existing_start < end, end <= existing_end),
        and_(start <= existing_start, existing_end <= end),
    )


async def find_conflicts(
    db: AsyncSession,
    tutor_id: uuid.UUID,
    start: datetime,
    end: datetime,
    exclude_session_id: Optional[uuid.UUID] = None,
) -> List[TutoringSession]:
    """Confirmed sessions of the tutor overlapping [start, end)"""
    query = select(TutoringSession).where(
        TutoringSession.tutor_id == tutor_id,
        TutoringSession.status.in_(SessionStatus.CONFIRMED),
        _overlap_clause(start, end),
    )
    if exclude_session_id is not None:
        query = query.where(TutoringSession.id != exclude_session_id)

    result = await db.execute(query)
    return list(result.scalars().all())


async def ensure_tutor_free(
    db: AsyncSession,
    tutor_id: uuid.UUID,
    start: datetime,
    end: datetime,
    exclude_session_id: Optional[uuid.UUID] = None,
) -> None:
    """Raise ConflictError if the tutor is already booked in the window"""
    conflicts = await find_conflicts(db, tutor_id, start, end, exclude_session_id)
    if conflicts:
        logger.info(
            f"Double-booking refused for tutor {tutor_id} "
            f"[{start.isoformat()}, {end.isoformat()}): {len(conflicts)} conflicting session(s)"
        )
        raise ConflictError(
            "Tutor already has a session booked during this time",
            {"conflicting_session_ids": [str(s.id) for s in conflicts]},
        )
