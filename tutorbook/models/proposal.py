"""SessionProposal model - Student-initiated session requests"""
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.sql import func
import uuid

from tutorbook.database import Base


class ProposalStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SessionProposal(Base):
    """Proposed session window; transitions out of pending exactly once"""

    __tablename__ = "session_proposals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tutor_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    proposed_start_time = Column(DateTime(), nullable=False)
    proposed_end_time = Column(DateTime(), nullable=False)
    status = Column(String(20), nullable=False, default=ProposalStatus.PENDING)
    student_message = Column(Text, nullable=True)
    tutor_response = Column(Text, nullable=True)
    responded_at = Column(DateTime(), nullable=True)
    created_at = Column(DateTime(), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_proposals_tutor_status", "tutor_id", "status"),
        Index("idx_proposals_student", "student_id"),
    )

    def __repr__(self):
        return f"<SessionProposal(id={self.id}, tutor={self.tutor_id}, status={self.status})>"
