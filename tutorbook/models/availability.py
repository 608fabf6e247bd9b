"""TutorAvailability model - Recurring weekly time windows published by tutors"""
from sqlalchemy import Column, Integer, Boolean, Time, DateTime, ForeignKey, CheckConstraint, Index, Uuid
from sqlalchemy.sql import func
import uuid

from tutorbook.database import Base


class TutorAvailability(Base):
    """Weekly availability slot (0=Sunday .. 6=Saturday)"""

    __tablename__ = "tutor_availability"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tutor_id = Column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    day_of_week = Column(
        Integer,
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6"),
        nullable=False,
    )
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_recurring = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="availability_window_check"),
        Index("idx_availability_tutor_day", "tutor_id", "day_of_week"),
    )

    def __repr__(self):
        return (
            f"<TutorAvailability(id={self.id}, tutor={self.tutor_id}, "
            f"day={self.day_of_week}, {self.start_time}-{self.end_time})>"
        )
