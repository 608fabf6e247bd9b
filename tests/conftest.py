"""
Shared test fixtures

Tests run against a throwaway SQLite database (aiosqlite driver). The
environment is set before any tutorbook import so the engine binds to it.
"""
import os
import tempfile
import uuid
from datetime import datetime
from pathlib import Path

_DB_DIR = tempfile.mkdtemp(prefix="tutorbook-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_DB_DIR) / 'test.db'}"
os.environ["API_TOKEN"] = "test_token"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from tutorbook.database import AsyncSessionLocal, drop_db, init_db
from tutorbook.models.tutoring_session import TutoringSession, SessionStatus
from tutorbook.models.user import Course, User, UserRole
from tutorbook.services import wallet_ledger
from tutorbook.timeutils import scheduled_minutes_for

API_TOKEN = "test_token"

# Fixed reference day for service tests; times are naive UTC
DAY = datetime(2030, 1, 7)


def at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return DAY.replace(hour=hour, minute=minute, second=second)


@pytest.fixture(autouse=True)
async def fresh_schema():
    """Recreate every table around each test"""
    await drop_db()
    await init_db()
    yield
    await drop_db()


async def create_user(role: str, first_name: str = "Test", last_name: str = None) -> User:
    async with AsyncSessionLocal() as db:
        user = User(
            email=f"{role}-{uuid.uuid4().hex[:8]}@example.com",
            first_name=first_name,
            last_name=last_name or role.title(),
            role=role,
        )
        db.add(user)
        await db.commit()
        return user


async def create_course(tutor: User, is_group: bool = False, max_enrollment: int = None) -> Course:
    async with AsyncSessionLocal() as db:
        course = Course(
            title="Group Algebra" if is_group else "Physics",
            tutor_id=tutor.id,
            is_group=is_group,
            max_enrollment=max_enrollment,
        )
        db.add(course)
        await db.commit()
        return course


async def fund_wallet(student: User, course: Course, minutes: int):
    async with AsyncSessionLocal() as db:
        async with db.begin():
            await wallet_ledger.add_minutes(db, student.id, course.id, minutes)


async def current_balance(student: User, course: Course) -> int:
    async with AsyncSessionLocal() as db:
        return await wallet_ledger.balance(db, student.id, course.id)


async def create_session(
    tutor: User,
    student: User,
    course: Course,
    start: datetime,
    end: datetime,
    status: str = SessionStatus.SCHEDULED,
) -> TutoringSession:
    """Insert a 1:1 session directly, bypassing the proposal workflow"""
    async with AsyncSessionLocal() as db:
        session = TutoringSession(
            tutor_id=tutor.id,
            student_id=student.id,
            course_id=course.id,
            scheduled_start_time=start,
            scheduled_end_time=end,
            scheduled_minutes=scheduled_minutes_for(start, end),
            status=status,
            is_group_session=False,
            reserved_minutes=0,
            tutor_late=False,
        )
        db.add(session)
        await db.commit()
        return session


async def load_session(session_id) -> TutoringSession:
    async with AsyncSessionLocal() as db:
        return await db.get(TutoringSession, session_id)


@pytest.fixture
async def tutor():
    return await create_user(UserRole.TUTOR, "Tina")


@pytest.fixture
async def student():
    return await create_user(UserRole.STUDENT, "Sam")


@pytest.fixture
async def manager():
    return await create_user(UserRole.MANAGER, "Morgan")


@pytest.fixture
async def course(tutor):
    return await create_course(tutor)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {API_TOKEN}", "X-User-Id": str(user.id)}
