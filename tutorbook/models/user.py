"""User and Course models - collaborator tables referenced by the scheduling core"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.sql import func
import uuid

from tutorbook.database import Base


class UserRole:
    """Roles resolved by the authentication layer"""

    STUDENT = "student"
    PARENT = "parent"
    TUTOR = "tutor"
    MANAGER = "manager"
    ADMIN = "admin"

    ALL = (STUDENT, PARENT, TUTOR, MANAGER, ADMIN)
    STAFF = (MANAGER, ADMIN)


class User(Base):
    """Platform user (student, parent, tutor, manager or admin)"""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.STUDENT)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_users_role", "role"),
    )

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class Course(Base):
    """Course taught by a single tutor; group courses host group sessions"""

    __tablename__ = "courses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(200), nullable=False)
    tutor_id = Column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_group = Column(Boolean, nullable=False, default=False)
    max_enrollment = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_courses_tutor", "tutor_id"),
    )

    def __repr__(self):
        return f"<Course(id={self.id}, title={self.title})>"
