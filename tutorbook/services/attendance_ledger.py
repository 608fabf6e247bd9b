"""
Session Attendance Ledger (group sessions)

A group session is one TutoringSession row shared by its registered students.
Each student's join/leave times and minute reservation live on their own
SessionAttendance row, which plays the part the session row plays for a 1:1
reservation.
"""
import logging
import uuid
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.database import AsyncSessionLocal
from tutorbook.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from tutorbook.models.tutoring_session import TutoringSession, SessionAttendance, SessionStatus
from tutorbook.models.user import Course, User, UserRole
from tutorbook.services import wallet_ledger
from tutorbook.services.booking_guard import ensure_tutor_free
from tutorbook.services.notifications import NotificationService, get_notification_service, notice
from tutorbook.timeutils import (
    BOOKING_GRANULARITY_MINUTES,
    ceil_minutes,
    is_valid_booking_length,
    scheduled_minutes_for,
    to_naive_utc,
    utcnow,
)

logger = logging.getLogger(__name__)


async def list_attendance(db: AsyncSession, session_id: uuid.UUID) -> List[SessionAttendance]:
    result = await db.execute(
        select(SessionAttendance)
        .where(SessionAttendance.session_id == session_id)
        .order_by(SessionAttendance.created_at, SessionAttendance.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def reserve_for_attendee(
    db: AsyncSession,
    session: TutoringSession,
    attendance: SessionAttendance,
    scheduled_minutes: int,
    now: datetime,
) -> bool:
    """
    Reserve the attendee's minutes on first join.

    Returns False when the row already holds a reservation (repeat join).
    The marker is claimed with a conditional UPDATE; an insufficient wallet
    raises and rolls the claim back with the caller's transaction.
    """
    result = await db.execute(
        update(SessionAttendance)
        .where(
            SessionAttendance.id == attendance.id,
            SessionAttendance.reserved_minutes == 0,
        )
        .values(
            reserved_minutes=scheduled_minutes,
            join_time=now,
            leave_time=None,
            attended=True,
        )
        .returning(SessionAttendance.id)
        .execution_options(synchronize_session=False)
    )
    if result.first() is None:
        logger.info(
            f"Attendee {attendance.student_id} already holds a reservation "
            f"for session {session.id}"
        )
        return False

    await wallet_ledger.reserve_minutes(
        db,
        attendance.student_id,
        session.course_id,
        scheduled_minutes,
        session_id=session.id,
    )
    logger.info(
        f"Attendee {attendance.student_id} joined group session {session.id}, "
        f"reserved {scheduled_minutes} minutes"
    )
    return True


async def close_out(db: AsyncSession, session: TutoringSession, now: datetime) -> int:
    """
    Stamp every attendee still present when the session ends.

    consumed_minutes = min(time since their join, their reservation). This is
    reconciliation only; the wallet was charged at join. Returns the number
    of rows stamped.
    """
    stamped = 0
    for attendance in await list_attendance(db, session.id):
        if attendance.join_time is None or attendance.leave_time is not None:
            continue
        attendance.leave_time = now
        attendance.consumed_minutes = min(
            ceil_minutes(attendance.join_time, now),
            attendance.reserved_minutes,
        )
        stamped += 1
    logger.info(f"Closed out {stamped} attendee(s) for group session {session.id}")
    return stamped


async def charge_no_shows(
    db: AsyncSession,
    session: TutoringSession,
    charge_minutes: int,
) -> List[uuid.UUID]:
    """
    Apply the late-postponement fee to every registered attendee.

    Attendees who already reserved minutes get the excess refunded so their
    total charge equals the fee. Returns the charged student ids.
    """
    charged = []
    for attendance in await list_attendance(db, session.id):
        if attendance.reserved_minutes > 0:
            excess = attendance.reserved_minutes - charge_minutes
            if excess > 0:
                await wallet_ledger.refund_minutes(
                    db,
                    attendance.student_id,
                    session.course_id,
                    excess,
                    session_id=session.id,
                    note="Reservation reduced to late-postponement fee",
                )
                attendance.reserved_minutes = charge_minutes
        else:
            await wallet_ledger.deduct_minutes(
                db,
                attendance.student_id,
                session.course_id,
                charge_minutes,
                session_id=session.id,
                note="Late postponement of group session",
            )
        charged.append(attendance.student_id)
    return charged


async def refund_reservations(db: AsyncSession, session: TutoringSession) -> int:
    """Return every attendee reservation of a session that never started"""
    refunded = 0
    for attendance in await list_attendance(db, session.id):
        if attendance.reserved_minutes <= 0:
            continue
        await wallet_ledger.refund_minutes(
            db,
            attendance.student_id,
            session.course_id,
            attendance.reserved_minutes,
            session_id=session.id,
            note="Session cancelled before start",
        )
        refunded += attendance.reserved_minutes
        attendance.reserved_minutes = 0
        attendance.attended = False
    return refunded


class AttendanceLedger:
    """Group session creation and attendee registration"""

    def __init__(
        self,
        session_factory=AsyncSessionLocal,
        notifier: Optional[NotificationService] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or get_notification_service()

    async def create_group_session(
        self,
        tutor_id: uuid.UUID,
        course_id: uuid.UUID,
        start: datetime,
        end: datetime,
        student_ids: Sequence[uuid.UUID],
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TutoringSession:
        """
        Schedule a group session and register its attendees.

        Raises:
            ValidationError: bad window, non-group course or over capacity
            NotFoundError: unknown course or student
            ForbiddenError: course belongs to another tutor
            ConflictError: tutor already booked in the window
        """
        now = now or utcnow()
        start, end = to_naive_utc(start), to_naive_utc(end)
        if not is_valid_booking_length(start, end):
            raise ValidationError(
                f"Session length must be a positive multiple of {BOOKING_GRANULARITY_MINUTES} minutes"
            )
        if start <= now:
            raise ValidationError("Cannot schedule a session in the past")

        unique_students = list(dict.fromkeys(student_ids))
        if not unique_students:
            raise ValidationError("A group session needs at least one registered student")

        async with self.session_factory() as db:
            async with db.begin():
                course = await db.get(Course, course_id)
                if course is None:
                    raise NotFoundError(f"Course {course_id} not found")
                if course.tutor_id != tutor_id:
                    raise ForbiddenError("Only the course tutor can schedule its group sessions")
                if not course.is_group:
                    raise ValidationError("Course does not run group sessions")
                if course.max_enrollment and len(unique_students) > course.max_enrollment:
                    raise ValidationError(
                        f"Group sessions for this course are limited to {course.max_enrollment} students",
                        {"requested": len(unique_students)},
                    )
                for student_id in unique_students:
                    student = await db.get(User, student_id)
                    if student is None or student.role != UserRole.STUDENT:
                        raise NotFoundError(f"Student {student_id} not found")

                await ensure_tutor_free(db, tutor_id, start, end)

                session = TutoringSession(
                    tutor_id=tutor_id,
                    student_id=None,
                    course_id=course_id,
                    scheduled_start_time=start,
                    scheduled_end_time=end,
                    scheduled_minutes=scheduled_minutes_for(start, end),
                    status=SessionStatus.SCHEDULED,
                    is_group_session=True,
                    reserved_minutes=0,
                    tutor_late=False,
                    notes=notes,
                )
                db.add(session)
                await db.flush()

                for student_id in unique_students:
                    db.add(SessionAttendance(session_id=session.id, student_id=student_id))

        logger.info(
            f"Group session {session.id} scheduled for tutor {tutor_id} "
            f"with {len(unique_students)} attendee(s)"
        )
        await self.notifier.send_all([
            notice(
                student_id,
                "group_session_scheduled",
                "Group session scheduled",
                f"You are registered for a group session on {start.strftime('%Y-%m-%d %H:%M')} UTC",
                link="/calendar",
                related_id=session.id,
            )
            for student_id in unique_students
        ])
        return session

    async def register_attendee(
        self,
        session_id: uuid.UUID,
        student_id: uuid.UUID,
        tutor_id: uuid.UUID,
    ) -> SessionAttendance:
        """
        Add a student to a scheduled group session (no-op if already registered).

        Raises:
            NotFoundError: unknown session or student
            ForbiddenError: caller is not the session's tutor
            InvalidStateError: session is no longer scheduled
            ValidationError: not a group session or already at capacity
        """
        async with self.session_factory() as db:
            async with db.begin():
                session = await db.get(TutoringSession, session_id)
                if session is None:
                    raise NotFoundError(f"Session {session_id} not found")
                if session.tutor_id != tutor_id:
                    raise ForbiddenError("Only the session tutor can register attendees")
                if not session.is_group_session:
                    raise ValidationError("Attendees can only be registered on group sessions")
                if session.status != SessionStatus.SCHEDULED:
                    raise InvalidStateError(
                        f"Cannot register attendees on a {session.status} session",
                        {"status": session.status},
                    )
                student = await db.get(User, student_id)
                if student is None or student.role != UserRole.STUDENT:
                    raise NotFoundError(f"Student {student_id} not found")

                rows = await list_attendance(db, session_id)
                attendance = next((row for row in rows if row.student_id == student_id), None)
                if attendance is not None:
                    return attendance

                course = await db.get(Course, session.course_id)
                if course is not None and course.max_enrollment and len(rows) >= course.max_enrollment:
                    raise ValidationError(
                        f"Group sessions for this course are limited to {course.max_enrollment} students",
                        {"registered": len(rows)},
                    )
                attendance = SessionAttendance(session_id=session_id, student_id=student_id)
                db.add(attendance)

        logger.info(f"Tutor {tutor_id} registered student {student_id} on group session {session_id}")
        return attendance

    async def list_for_session(self, session_id: uuid.UUID) -> List[SessionAttendance]:
        async with self.session_factory() as db:
            return await list_attendance(db, session_id)


# Global ledger instance
_ledger: Optional[AttendanceLedger] = None


def get_attendance_ledger() -> AttendanceLedger:
    """Get or create global AttendanceLedger instance."""
    global _ledger
    if _ledger is None:
        _ledger = AttendanceLedger()
    return _ledger
