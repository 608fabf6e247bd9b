"""
Session Proposal Workflow

Students propose a session window to a course's tutor; the tutor approves or
rejects it exactly once. Approval flips the proposal and creates the
TutoringSession in the same transaction.
"""
import logging
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.database import AsyncSessionLocal
from tutorbook.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from tutorbook.models.proposal import SessionProposal, ProposalStatus
from tutorbook.models.tutoring_session import TutoringSession, SessionStatus
from tutorbook.models.user import Course, User, UserRole
from tutorbook.services.booking_guard import ensure_tutor_free
from tutorbook.services.notifications import NotificationService, get_notification_service, notice
from tutorbook.timeutils import (
    BOOKING_GRANULARITY_MINUTES,
    is_valid_booking_length,
    scheduled_minutes_for,
    to_naive_utc,
    utcnow,
)

logger = logging.getLogger(__name__)


def validate_proposal_window(start: datetime, end: datetime, now: datetime) -> None:
    """
    Raises:
        ValidationError: if the window is not a positive multiple of 15
            minutes or starts in the past
    """
    if not is_valid_booking_length(start, end):
        raise ValidationError(
            f"Session length must be a positive multiple of {BOOKING_GRANULARITY_MINUTES} minutes",
            {"start": start.isoformat(), "end": end.isoformat()},
        )
    if start <= now:
        raise ValidationError("Cannot schedule a session in the past", {"start": start.isoformat()})


class ProposalWorkflow:
    def __init__(
        self,
        session_factory=AsyncSessionLocal,
        notifier: Optional[NotificationService] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or get_notification_service()

    async def propose(
        self,
        student_id: uuid.UUID,
        tutor_id: uuid.UUID,
        course_id: uuid.UUID,
        start: datetime,
        end: datetime,
        student_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SessionProposal:
        """
        Create a pending proposal.

        Raises:
            ValidationError: malformed window or course/tutor mismatch
            NotFoundError: unknown tutor or course
            ConflictError: tutor already booked in the window
        """
        now = now or utcnow()
        start, end = to_naive_utc(start), to_naive_utc(end)
        validate_proposal_window(start, end, now)

        async with self.session_factory() as db:
            async with db.begin():
                student = await db.get(User, student_id)
                if student is None:
                    raise NotFoundError(f"Student {student_id} not found")
                await self._require_tutor_course(db, tutor_id, course_id)
                await ensure_tutor_free(db, tutor_id, start, end)

                proposal = SessionProposal(
                    student_id=student_id,
                    tutor_id=tutor_id,
                    course_id=course_id,
                    proposed_start_time=start,
                    proposed_end_time=end,
                    status=ProposalStatus.PENDING,
                    student_message=student_message,
                )
                db.add(proposal)

        logger.info(
            f"Proposal {proposal.id} created: student={student_id} tutor={tutor_id} "
            f"[{start.isoformat()}, {end.isoformat()})"
        )
        await self.notifier.send_all([
            notice(
                tutor_id,
                "session_proposal",
                "New session proposal",
                f"{student.display_name} proposed a session on "
                f"{start.strftime('%Y-%m-%d %H:%M')} UTC",
                link="/tutor/proposals",
                related_id=proposal.id,
            )
        ])
        return proposal

    async def approve(
        self,
        proposal_id: uuid.UUID,
        tutor_id: uuid.UUID,
        response_text: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[SessionProposal, TutoringSession]:
        """
        Approve a pending proposal and create its scheduled session.

        The double-booking check is re-run inside the approval transaction;
        a conflict rolls back the status change.
        """
        now = now or utcnow()

        async with self.session_factory() as db:
            async with db.begin():
                proposal = await self._pending_for_tutor(db, proposal_id, tutor_id)
                if proposal.proposed_start_time <= now:
                    raise InvalidStateError("Proposed start time has already passed")

                await self._transition(db, proposal, ProposalStatus.APPROVED, response_text, now)
                await ensure_tutor_free(
                    db, tutor_id, proposal.proposed_start_time, proposal.proposed_end_time
                )

                session = TutoringSession(
                    tutor_id=proposal.tutor_id,
                    student_id=proposal.student_id,
                    course_id=proposal.course_id,
                    proposal_id=proposal.id,
                    scheduled_start_time=proposal.proposed_start_time,
                    scheduled_end_time=proposal.proposed_end_time,
                    scheduled_minutes=scheduled_minutes_for(
                        proposal.proposed_start_time, proposal.proposed_end_time
                    ),
                    status=SessionStatus.SCHEDULED,
                    is_group_session=False,
                    reserved_minutes=0,
                    tutor_late=False,
                )
                db.add(session)
                await db.flush()
                await db.refresh(proposal)

        logger.info(f"Proposal {proposal_id} approved; session {session.id} scheduled")
        await self.notifier.send_all([
            notice(
                proposal.student_id,
                "session_approved",
                "Session approved",
                f"Your session on {proposal.proposed_start_time.strftime('%Y-%m-%d %H:%M')} UTC "
                f"was approved",
                link="/calendar",
                related_id=session.id,
            )
        ])
        return proposal, session

    async def reject(
        self,
        proposal_id: uuid.UUID,
        tutor_id: uuid.UUID,
        response_text: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SessionProposal:
        now = now or utcnow()

        async with self.session_factory() as db:
            async with db.begin():
                proposal = await self._pending_for_tutor(db, proposal_id, tutor_id)
                await self._transition(db, proposal, ProposalStatus.REJECTED, response_text, now)
                await db.refresh(proposal)

        logger.info(f"Proposal {proposal_id} rejected by tutor {tutor_id}")
        message = "Your session proposal was declined"
        if response_text:
            message = f"{message}: {response_text}"
        await self.notifier.send_all([
            notice(
                proposal.student_id,
                "session_rejected",
                "Session proposal declined",
                message,
                link="/student/scheduling",
                related_id=proposal.id,
            )
        ])
        return proposal

    async def get(
        self,
        proposal_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
        user_role: Optional[str] = None,
    ) -> SessionProposal:
        """Load a proposal; when a viewer is given, only its student, tutor or staff may see it"""
        async with self.session_factory() as db:
            proposal = await db.get(SessionProposal, proposal_id)
            if proposal is None:
                raise NotFoundError(f"Proposal {proposal_id} not found")
            if (
                user_id is not None
                and user_role not in UserRole.STAFF
                and user_id not in (proposal.student_id, proposal.tutor_id)
            ):
                raise ForbiddenError("You are not a party to this proposal")
            return proposal

    async def list_for_student(
        self,
        student_id: uuid.UUID,
        status: Optional[str] = None,
    ) -> List[SessionProposal]:
        return await self._list(SessionProposal.student_id == student_id, status)

    async def list_for_tutor(
        self,
        tutor_id: uuid.UUID,
        status: Optional[str] = None,
    ) -> List[SessionProposal]:
        return await self._list(SessionProposal.tutor_id == tutor_id, status)

    async def _list(self, criterion, status: Optional[str]) -> List[SessionProposal]:
        async with self.session_factory() as db:
            query = select(SessionProposal).where(criterion)
            if status:
                query = query.where(SessionProposal.status == status)
            result = await db.execute(query.order_by(SessionProposal.created_at.desc()))
            return list(result.scalars().all())

    async def _require_tutor_course(
        self,
        db: AsyncSession,
        tutor_id: uuid.UUID,
        course_id: uuid.UUID,
    ) -> None:
        tutor = await db.get(User, tutor_id)
        if tutor is None or tutor.role != UserRole.TUTOR:
            raise NotFoundError(f"Tutor {tutor_id} not found")
        course = await db.get(Course, course_id)
        if course is None:
            raise NotFoundError(f"Course {course_id} not found")
        if course.tutor_id != tutor_id:
            raise ValidationError(
                "Course is not taught by this tutor",
                {"course_id": str(course_id), "tutor_id": str(tutor_id)},
            )

    async def _pending_for_tutor(
        self,
        db: AsyncSession,
        proposal_id: uuid.UUID,
        tutor_id: uuid.UUID,
    ) -> SessionProposal:
        result = await db.execute(
            select(SessionProposal).where(SessionProposal.id == proposal_id).with_for_update()
        )
        proposal = result.scalar_one_or_none()
        if proposal is None:
            raise NotFoundError(f"Proposal {proposal_id} not found")
        if proposal.tutor_id != tutor_id:
            raise ForbiddenError("Only the addressed tutor can respond to this proposal")
        if proposal.status != ProposalStatus.PENDING:
            raise InvalidStateError(
                f"Proposal is already {proposal.status}",
                {"status": proposal.status},
            )
        return proposal

    async def _transition(
        self,
        db: AsyncSession,
        proposal: SessionProposal,
        new_status: str,
        response_text: Optional[str],
        now: datetime,
    ) -> None:
        # Conditional write: a concurrent response leaves zero rows to update
        result = await db.execute(
            update(SessionProposal)
            .where(
                SessionProposal.id == proposal.id,
                SessionProposal.status == ProposalStatus.PENDING,
            )
            .values(status=new_status, tutor_response=response_text, responded_at=now)
            .returning(SessionProposal.id)
            .execution_options(synchronize_session=False)
        )
        if result.first() is None:
            raise InvalidStateError("Proposal is no longer pending")


# Global workflow instance
_workflow: Optional[ProposalWorkflow] = None


def get_proposal_workflow() -> ProposalWorkflow:
    """Get or create global ProposalWorkflow instance."""
    global _workflow
    if _workflow is None:
        _workflow = ProposalWorkflow()
    return _workflow
