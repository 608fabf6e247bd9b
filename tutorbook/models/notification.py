"""Notification model - In-app notifications for users"""
from sqlalchemy import Column, String, Boolean, Text, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.sql import func
import uuid

from tutorbook.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String(500), nullable=True)
    related_id = Column(String(100), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_notifications_user", "user_id", "is_read"),
    )

    def __repr__(self):
        return f"<Notification(user={self.user_id}, type={self.type})>"
