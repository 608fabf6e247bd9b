"""
Tutoring Session State Machine

    scheduled -> in_progress -> completed
    scheduled -> postponed                (>= 120 minutes before start)
    scheduled -> missed                   (late postponement, no-show fee)
    scheduled | in_progress -> cancelled

Billing policy: the student's wallet is charged the full scheduled minutes
when the student joins (reservation-at-join). Ending a session only
finalizes billable_minutes; it never touches the wallet.

Every mutating operation runs its read-check-write sequence inside one
transaction. Reservation markers (reserved_minutes on the session row for 1:1
sessions, on the attendance row for group sessions) are claimed by
conditional UPDATEs, so concurrent or retried joins reserve exactly once.
"""
import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.database import AsyncSessionLocal
from tutorbook.errors import ForbiddenError, InvalidStateError, NotFoundError
from tutorbook.models.tutoring_session import TutoringSession, SessionAttendance, SessionStatus
from tutorbook.models.user import UserRole
from tutorbook.services import attendance_ledger, wallet_ledger
from tutorbook.services.access import SessionAccess, SessionRole, resolve_session_access
from tutorbook.services.notifications import NotificationService, get_notification_service, notice
from tutorbook.timeutils import ceil_minutes, minutes_between, scheduled_minutes_for, utcnow

logger = logging.getLogger(__name__)

# Tutor joining later than this after the scheduled start is flagged late
TUTOR_LATE_GRACE_MINUTES = 10

# Postponing closer than this to the start is treated as a no-show
LATE_POSTPONE_WINDOW_MINUTES = 120
NO_SHOW_CHARGE_RATE = 0.5

# Joining opens this long before the scheduled start
JOIN_WINDOW_MINUTES = 15


def no_show_charge(scheduled_minutes: int) -> int:
    """Late-postponement fee: half the scheduled minutes, rounded up"""
    return math.ceil(scheduled_minutes * NO_SHOW_CHARGE_RATE)


def billable_minutes_for(session: TutoringSession, ended_at: datetime) -> int:
    """
    Minutes to bill when a session ends, capped at the scheduled minutes.

    Duration runs from the actual start. A session that started within the
    tutor grace period after the scheduled start is billed from the
    scheduled start.
    """
    scheduled = session.scheduled_minutes or scheduled_minutes_for(
        session.scheduled_start_time, session.scheduled_end_time
    )
    billing_start = session.actual_start_time or session.scheduled_start_time
    grace_end = session.scheduled_start_time + timedelta(minutes=TUTOR_LATE_GRACE_MINUTES)
    if session.scheduled_start_time < billing_start <= grace_end:
        billing_start = session.scheduled_start_time

    return min(ceil_minutes(billing_start, ended_at), scheduled)


class SessionLifecycle:
    def __init__(
        self,
        session_factory=AsyncSessionLocal,
        notifier: Optional[NotificationService] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or get_notification_service()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(
        self,
        session_id: uuid.UUID,
        user_id: uuid.UUID,
        user_role: Optional[str] = None,
    ) -> TutoringSession:
        async with self.session_factory() as db:
            session = await db.get(TutoringSession, session_id)
            if session is None:
                raise NotFoundError(f"Session {session_id} not found")
            if user_role not in UserRole.STAFF:
                access = await resolve_session_access(db, session, user_id)
                access.require_participant()
            return session

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        user_role: str,
        status: Optional[str] = None,
    ) -> List[TutoringSession]:
        """Sessions visible to the caller, soonest first"""
        async with self.session_factory() as db:
            query = select(TutoringSession)
            if user_role == UserRole.TUTOR:
                query = query.where(TutoringSession.tutor_id == user_id)
            elif user_role not in UserRole.STAFF:
                attending = select(SessionAttendance.session_id).where(
                    SessionAttendance.student_id == user_id
                )
                query = query.where(
                    or_(
                        TutoringSession.student_id == user_id,
                        TutoringSession.id.in_(attending),
                    )
                )
            if status:
                query = query.where(TutoringSession.status == status)
            result = await db.execute(query.order_by(TutoringSession.scheduled_start_time))
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def join(
        self,
        session_id: uuid.UUID,
        user_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> TutoringSession:
        """
        Record a participant joining.

        Students (1:1 or group attendee) reserve the full scheduled minutes
        from their wallet on first join; repeat joins return the current
        state unchanged. The tutor's join is timestamped and flagged late
        after the grace period. A 1:1 session starts once both sides have
        joined; a group session starts when the tutor joins.

        Raises:
            NotFoundError, ForbiddenError, InvalidStateError,
            InsufficientFundsError
        """
        now = now or utcnow()

        async with self.session_factory() as db:
            async with db.begin():
                session = await self._load_for_update(db, session_id)
                access = (await resolve_session_access(db, session, user_id)).require_participant()

                if session.status not in SessionStatus.JOINABLE:
                    raise InvalidStateError(
                        f"Cannot join a session that is {session.status}",
                        {"status": session.status},
                    )
                self._check_join_window(session, now)
                scheduled = session.scheduled_minutes or scheduled_minutes_for(
                    session.scheduled_start_time, session.scheduled_end_time
                )

                if access.role is SessionRole.TUTOR:
                    await self._record_tutor_join(db, session, scheduled, now)
                elif access.role is SessionRole.STUDENT_1TO1:
                    await self._reserve_for_student(db, session, scheduled, now)
                else:
                    await attendance_ledger.reserve_for_attendee(
                        db, session, access.attendance, scheduled, now
                    )

                await self._start_if_ready(db, session, now)
                await db.refresh(session)

        return session

    async def end(
        self,
        session_id: uuid.UUID,
        user_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> TutoringSession:
        """
        Complete an in-progress session and finalize billable minutes.

        No wallet mutation happens here; group attendees still present are
        stamped with their leave time and consumed minutes.
        """
        now = now or utcnow()

        async with self.session_factory() as db:
            async with db.begin():
                session = await self._load_for_update(db, session_id)
                access = (await resolve_session_access(db, session, user_id)).require_participant()
                if session.is_group_session:
                    access.require_tutor("end")

                if session.status != SessionStatus.IN_PROGRESS:
                    raise InvalidStateError(
                        f"Only in-progress sessions can be ended (session is {session.status})",
                        {"status": session.status},
                    )

                if session.scheduled_minutes is None:
                    session.scheduled_minutes = scheduled_minutes_for(
                        session.scheduled_start_time, session.scheduled_end_time
                    )
                session.billable_minutes = billable_minutes_for(session, now)
                session.actual_end_time = now
                session.status = SessionStatus.COMPLETED

                if session.is_group_session:
                    await attendance_ledger.close_out(db, session, now)

        logger.info(
            f"Session {session_id} completed by {access.role.value}: "
            f"billable={session.billable_minutes}/{session.scheduled_minutes} minutes"
        )
        return session

    async def postpone(
        self,
        session_id: uuid.UUID,
        user_id: uuid.UUID,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TutoringSession:
        """
        Postpone a scheduled session.

        Fewer than 120 minutes before the start this is a no-show: each
        affected student is charged ceil(50% of scheduled minutes) and the
        session becomes missed. Otherwise the session becomes postponed at
        no charge.
        """
        now = now or utcnow()
        notices = []

        async with self.session_factory() as db:
            async with db.begin():
                session = await self._load_for_update(db, session_id)
                access = (await resolve_session_access(db, session, user_id)).require_participant()
                if session.is_group_session:
                    access.require_tutor("postpone")

                if session.status != SessionStatus.SCHEDULED:
                    raise InvalidStateError(
                        f"Only scheduled sessions can be postponed (session is {session.status})",
                        {"status": session.status},
                    )

                if session.scheduled_minutes is None:
                    session.scheduled_minutes = scheduled_minutes_for(
                        session.scheduled_start_time, session.scheduled_end_time
                    )
                minutes_until_start = minutes_between(now, session.scheduled_start_time)

                if minutes_until_start < LATE_POSTPONE_WINDOW_MINUTES:
                    charge = no_show_charge(session.scheduled_minutes)
                    if session.is_group_session:
                        await attendance_ledger.charge_no_shows(db, session, charge)
                    else:
                        await self._charge_student_no_show(db, session, charge)
                    session.status = SessionStatus.MISSED
                    session.billable_minutes = charge
                    logger.info(
                        f"Session {session_id} postponed {minutes_until_start:.0f} minutes before start; "
                        f"marked missed with {charge} minute charge"
                    )
                else:
                    session.status = SessionStatus.POSTPONED
                    logger.info(f"Session {session_id} postponed without charge")

                session.notes = self._append_note(session.notes, "Postponed", reason)
                notices = await self._notify_others(
                    db,
                    session,
                    access,
                    "session_postponed",
                    "Session postponed",
                    self._change_message(session, "postponed", reason),
                )

        await self.notifier.send_all(notices)
        return session

    async def cancel(
        self,
        session_id: uuid.UUID,
        user_id: uuid.UUID,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TutoringSession:
        """
        Cancel a scheduled or in-progress session without charge.

        Reservations made at join are refunded when the session never
        started; an in-progress session keeps its reservations.
        """
        now = now or utcnow()
        notices = []

        async with self.session_factory() as db:
            async with db.begin():
                session = await self._load_for_update(db, session_id)
                access = (await resolve_session_access(db, session, user_id)).require_participant()
                if session.is_group_session:
                    access.require_tutor("cancel")

                if session.status not in SessionStatus.CONFIRMED:
                    raise InvalidStateError(
                        f"Cannot cancel a session that is {session.status}",
                        {"status": session.status},
                    )

                if session.status == SessionStatus.SCHEDULED:
                    await self._refund_unstarted(db, session)

                session.status = SessionStatus.CANCELLED
                session.notes = self._append_note(session.notes, "Cancelled", reason)
                notices = await self._notify_others(
                    db,
                    session,
                    access,
                    "session_cancelled",
                    "Session cancelled",
                    self._change_message(session, "cancelled", reason),
                )

        logger.info(f"Session {session_id} cancelled by {access.role.value}")
        await self.notifier.send_all(notices)
        return session

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_for_update(self, db: AsyncSession, session_id: uuid.UUID) -> TutoringSession:
        result = await db.execute(
            select(TutoringSession)
            .where(TutoringSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def _check_join_window(self, session: TutoringSession, now: datetime) -> None:
        opens_at = session.scheduled_start_time - timedelta(minutes=JOIN_WINDOW_MINUTES)
        if now < opens_at:
            raise InvalidStateError(
                f"Joining opens {JOIN_WINDOW_MINUTES} minutes before the session starts",
                {"opens_at": opens_at.isoformat()},
            )
        if session.status == SessionStatus.SCHEDULED and now > session.scheduled_end_time:
            raise InvalidStateError("Session time has passed")

    async def _record_tutor_join(
        self,
        db: AsyncSession,
        session: TutoringSession,
        scheduled: int,
        now: datetime,
    ) -> None:
        if session.tutor_join_time is not None:
            return
        late = minutes_between(session.scheduled_start_time, now) > TUTOR_LATE_GRACE_MINUTES
        await db.execute(
            update(TutoringSession)
            .where(
                TutoringSession.id == session.id,
                TutoringSession.tutor_join_time.is_(None),
            )
            .values(tutor_join_time=now, tutor_late=late, scheduled_minutes=scheduled)
            .execution_options(synchronize_session=False)
        )
        if late:
            logger.warning(f"Tutor {session.tutor_id} joined session {session.id} late")
        else:
            logger.info(f"Tutor {session.tutor_id} joined session {session.id}")

    async def _reserve_for_student(
        self,
        db: AsyncSession,
        session: TutoringSession,
        scheduled: int,
        now: datetime,
    ) -> None:
        # Claim the reservation marker first; zero rows means already joined
        result = await db.execute(
            update(TutoringSession)
            .where(
                TutoringSession.id == session.id,
                TutoringSession.reserved_minutes == 0,
            )
            .values(
                reserved_minutes=scheduled,
                student_join_time=now,
                scheduled_minutes=scheduled,
            )
            .returning(TutoringSession.id)
            .execution_options(synchronize_session=False)
        )
        if result.first() is None:
            logger.info(f"Student {session.student_id} already joined session {session.id}")
            return

        await wallet_ledger.reserve_minutes(
            db,
            session.student_id,
            session.course_id,
            scheduled,
            session_id=session.id,
        )
        logger.info(
            f"Student {session.student_id} joined session {session.id}, "
            f"reserved {scheduled} minutes"
        )

    async def _start_if_ready(self, db: AsyncSession, session: TutoringSession, now: datetime) -> None:
        # Evaluated in SQL so a join committed by a concurrent request counts
        result = await db.execute(
            update(TutoringSession)
            .where(
                TutoringSession.id == session.id,
                TutoringSession.status == SessionStatus.SCHEDULED,
                TutoringSession.tutor_join_time.is_not(None),
                or_(
                    TutoringSession.is_group_session.is_(True),
                    and_(
                        TutoringSession.is_group_session.is_(False),
                        TutoringSession.student_join_time.is_not(None),
                    ),
                ),
            )
            .values(status=SessionStatus.IN_PROGRESS, actual_start_time=now)
            .returning(TutoringSession.id)
            .execution_options(synchronize_session=False)
        )
        if result.first() is not None:
            logger.info(f"Session {session.id} is now in progress")

    async def _charge_student_no_show(
        self,
        db: AsyncSession,
        session: TutoringSession,
        charge: int,
    ) -> None:
        if session.reserved_minutes > 0:
            # Already paid in full at join; bring the total down to the fee
            excess = session.reserved_minutes - charge
            if excess > 0:
                await wallet_ledger.refund_minutes(
                    db,
                    session.student_id,
                    session.course_id,
                    excess,
                    session_id=session.id,
                    note="Reservation reduced to late-postponement fee",
                )
                session.reserved_minutes = charge
            return

        await wallet_ledger.deduct_minutes(
            db,
            session.student_id,
            session.course_id,
            charge,
            session_id=session.id,
            note="Late postponement",
        )

    async def _refund_unstarted(self, db: AsyncSession, session: TutoringSession) -> None:
        if session.is_group_session:
            refunded = await attendance_ledger.refund_reservations(db, session)
        elif session.reserved_minutes > 0:
            refunded = session.reserved_minutes
            await wallet_ledger.refund_minutes(
                db,
                session.student_id,
                session.course_id,
                refunded,
                session_id=session.id,
                note="Session cancelled before start",
            )
            session.reserved_minutes = 0
        else:
            refunded = 0

        if refunded:
            logger.info(f"Refunded {refunded} reserved minutes for cancelled session {session.id}")

    async def _notify_others(
        self,
        db: AsyncSession,
        session: TutoringSession,
        access: SessionAccess,
        type: str,
        title: str,
        message: str,
    ) -> List[Dict[str, Any]]:
        if access.role is not SessionRole.TUTOR:
            recipients = [session.tutor_id]
        elif session.is_group_session:
            recipients = [
                attendance.student_id
                for attendance in await attendance_ledger.list_attendance(db, session.id)
            ]
        else:
            recipients = [session.student_id]

        return [
            notice(recipient, type, title, message, link="/calendar", related_id=session.id)
            for recipient in recipients
            if recipient is not None and recipient != access.user_id
        ]

    @staticmethod
    def _change_message(session: TutoringSession, verb: str, reason: Optional[str]) -> str:
        message = (
            f"The session on {session.scheduled_start_time.strftime('%Y-%m-%d %H:%M')} UTC "
            f"was {verb}"
        )
        if session.status == SessionStatus.MISSED:
            message = f"{message} too close to its start and was marked missed"
        if reason:
            message = f"{message}. Reason: {reason}"
        return message

    @staticmethod
    def _append_note(notes: Optional[str], label: str, reason: Optional[str]) -> Optional[str]:
        if not reason:
            return notes
        entry = f"{label}: {reason}"
        return f"{notes}\n{entry}" if notes else entry


# Global lifecycle instance
_lifecycle: Optional[SessionLifecycle] = None


def get_session_lifecycle() -> SessionLifecycle:
    """Get or create global SessionLifecycle instance."""
    global _lifecycle
    if _lifecycle is None:
        _lifecycle = SessionLifecycle()
    return _lifecycle
