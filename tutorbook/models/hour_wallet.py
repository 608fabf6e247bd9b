"""HourWallet and WalletTransaction models - Purchased vs consumed tutoring minutes"""
from sqlalchemy import (
    Column, String, Integer, Text, DateTime, ForeignKey,
    CheckConstraint, UniqueConstraint, Index, Uuid,
)
from sqlalchemy.sql import func
import uuid

from tutorbook.database import Base


class TransactionKind:
    PURCHASE = "purchase"
    RESERVATION = "reservation"
    NO_SHOW_CHARGE = "no_show_charge"
    REFUND = "refund"


class HourWallet(Base):
    """Minute balance for one student in one course"""

    __tablename__ = "hour_wallets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    purchased_minutes = Column(Integer, nullable=False, default=0)
    consumed_minutes = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("student_id", "course_id", name="uq_wallet_student_course"),
        CheckConstraint("purchased_minutes >= 0", name="wallet_purchased_non_negative"),
        CheckConstraint("consumed_minutes >= 0", name="wallet_consumed_non_negative"),
        Index("idx_wallets_student", "student_id"),
    )

    @property
    def balance_minutes(self) -> int:
        return self.purchased_minutes - self.consumed_minutes

    def __repr__(self):
        return (
            f"<HourWallet(student={self.student_id}, course={self.course_id}, "
            f"balance={self.balance_minutes})>"
        )


class WalletTransaction(Base):
    """Append-only history of wallet mutations"""

    __tablename__ = "wallet_transactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    wallet_id = Column(
        Uuid,
        ForeignKey("hour_wallets.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind = Column(String(30), nullable=False)  # purchase/reservation/no_show_charge/refund
    minutes = Column(Integer, nullable=False)
    session_id = Column(
        Uuid,
        ForeignKey("tutoring_sessions.id", ondelete="SET NULL"),
        nullable=True,
    )
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_wallet_transactions_wallet", "wallet_id", "created_at"),
    )

    def __repr__(self):
        return f"<WalletTransaction(wallet={self.wallet_id}, kind={self.kind}, minutes={self.minutes})>"
