"""SQLAlchemy ORM Models for the Tutorbook scheduling schema"""
from tutorbook.models.user import User, Course, UserRole
from tutorbook.models.availability import TutorAvailability
from tutorbook.models.proposal import SessionProposal, ProposalStatus
from tutorbook.models.tutoring_session import TutoringSession, SessionAttendance, SessionStatus
from tutorbook.models.hour_wallet import HourWallet, WalletTransaction, TransactionKind
from tutorbook.models.notification import Notification

__all__ = [
    "User",
    "Course",
    "UserRole",
    "TutorAvailability",
    "SessionProposal",
    "ProposalStatus",
    "TutoringSession",
    "SessionAttendance",
    "SessionStatus",
    "HourWallet",
    "WalletTransaction",
    "TransactionKind",
    "Notification",
]
