"""TutoringSession and SessionAttendance models - Session lifecycle records"""
from sqlalchemy import (
    Column, String, Integer, Boolean, Text, DateTime, ForeignKey,
    CheckConstraint, UniqueConstraint, Index, Uuid,
)
from sqlalchemy.sql import func
import uuid

from tutorbook.database import Base


class SessionStatus:
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    POSTPONED = "postponed"
    MISSED = "missed"
    CANCELLED = "cancelled"

    # Statuses that hold the tutor's time slot
    CONFIRMED = (SCHEDULED, IN_PROGRESS)
    JOINABLE = (SCHEDULED, IN_PROGRESS)


class TutoringSession(Base):
    """
    A scheduled tutoring session.

    1:1 sessions carry the student and the minute reservation on this row;
    group sessions leave student_id empty and track each attendee in
    session_attendance.
    """

    __tablename__ = "tutoring_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tutor_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    proposal_id = Column(
        Uuid,
        ForeignKey("session_proposals.id", ondelete="SET NULL"),
        unique=True,
        nullable=True,
    )
    scheduled_start_time = Column(DateTime(), nullable=False)
    scheduled_end_time = Column(DateTime(), nullable=False)
    scheduled_minutes = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default=SessionStatus.SCHEDULED)
    is_group_session = Column(Boolean, nullable=False, default=False)

    tutor_join_time = Column(DateTime(), nullable=True)
    student_join_time = Column(DateTime(), nullable=True)
    tutor_late = Column(Boolean, nullable=False, default=False)
    actual_start_time = Column(DateTime(), nullable=True)
    actual_end_time = Column(DateTime(), nullable=True)

    # Minutes deducted from the 1:1 student's wallet at join
    reserved_minutes = Column(Integer, nullable=False, default=0)
    # Final charged minutes
    billable_minutes = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("reserved_minutes >= 0", name="session_reserved_non_negative"),
        CheckConstraint(
            "billable_minutes IS NULL OR scheduled_minutes IS NULL "
            "OR billable_minutes <= scheduled_minutes",
            name="session_billable_within_schedule",
        ),
        Index("idx_tutoring_sessions_tutor_status", "tutor_id", "status"),
        Index("idx_tutoring_sessions_student", "student_id"),
        Index("idx_tutoring_sessions_start", "scheduled_start_time"),
    )

    def __repr__(self):
        return (
            f"<TutoringSession(id={self.id}, tutor={self.tutor_id}, "
            f"status={self.status}, group={self.is_group_session})>"
        )


class SessionAttendance(Base):
    """Per-student attendance for a group session"""

    __tablename__ = "session_attendance"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(
        Uuid,
        ForeignKey("tutoring_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    join_time = Column(DateTime(), nullable=True)
    leave_time = Column(DateTime(), nullable=True)
    attended = Column(Boolean, nullable=False, default=False)
    reserved_minutes = Column(Integer, nullable=False, default=0)
    consumed_minutes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="uq_attendance_session_student"),
        CheckConstraint("reserved_minutes >= 0", name="attendance_reserved_non_negative"),
        CheckConstraint("consumed_minutes >= 0", name="attendance_consumed_non_negative"),
        Index("idx_attendance_student", "student_id"),
    )

    def __repr__(self):
        return (
            f"<SessionAttendance(session={self.session_id}, student={self.student_id}, "
            f"reserved={self.reserved_minutes})>"
        )
