"""
Integration tests for group sessions

Tests group scheduling, per-attendee reservations, close-out when the tutor
ends the session and tutor-only transitions.
"""

import asyncio
import pytest

from conftest import at, create_course, create_user, current_balance, fund_wallet
from tutorbook.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from tutorbook.models.tutoring_session import SessionStatus
from tutorbook.models.user import UserRole
from tutorbook.services.attendance_ledger import AttendanceLedger
from tutorbook.services.session_lifecycle import SessionLifecycle
from tutorbook.services.wallet_ledger import WalletLedger

pytestmark = pytest.mark.integration

NOW = at(8)


@pytest.fixture
async def group_course(tutor):
    return await create_course(tutor, is_group=True, max_enrollment=4)


@pytest.fixture
async def attendees(group_course):
    students = [
        await create_user(UserRole.STUDENT, name) for name in ("Ana", "Ben", "Cid")
    ]
    for student in students:
        await fund_wallet(student, group_course, 120)
    return students


@pytest.fixture
async def group_session(tutor, group_course, attendees):
    """A 15:00-16:00 group session with three registered attendees"""
    return await AttendanceLedger().create_group_session(
        tutor.id,
        group_course.id,
        at(15),
        at(16),
        [student.id for student in attendees],
        notes="Exam prep",
        now=NOW,
    )


@pytest.mark.asyncio
async def test_create_registers_attendees(group_session, attendees):
    assert group_session.is_group_session
    assert group_session.student_id is None
    assert group_session.scheduled_minutes == 60

    rows = await AttendanceLedger().list_for_session(group_session.id)
    assert sorted(row.student_id for row in rows) == sorted(s.id for s in attendees)
    assert all(row.reserved_minutes == 0 and row.join_time is None for row in rows)


@pytest.mark.asyncio
async def test_create_rejects_non_group_course(tutor, course, student):
    with pytest.raises(ValidationError):
        await AttendanceLedger().create_group_session(
            tutor.id, course.id, at(15), at(16), [student.id], now=NOW
        )


@pytest.mark.asyncio
async def test_create_rejects_over_capacity(tutor, group_course):
    students = [await create_user(UserRole.STUDENT, f"S{i}") for i in range(5)]

    with pytest.raises(ValidationError):
        await AttendanceLedger().create_group_session(
            tutor.id, group_course.id, at(15), at(16), [s.id for s in students], now=NOW
        )


@pytest.mark.asyncio
async def test_create_rejects_other_tutors_course(group_course, student):
    other_tutor = await create_user(UserRole.TUTOR, "Otto")

    with pytest.raises(ForbiddenError):
        await AttendanceLedger().create_group_session(
            other_tutor.id, group_course.id, at(15), at(16), [student.id], now=NOW
        )


@pytest.mark.asyncio
async def test_create_rejects_unknown_student(tutor, group_course, manager):
    with pytest.raises(NotFoundError):
        await AttendanceLedger().create_group_session(
            tutor.id, group_course.id, at(15), at(16), [manager.id], now=NOW
        )


@pytest.mark.asyncio
async def test_create_respects_double_booking(group_session, tutor, group_course, attendees):
    with pytest.raises(ConflictError):
        await AttendanceLedger().create_group_session(
            tutor.id, group_course.id, at(15, 30), at(16, 30), [attendees[0].id], now=NOW
        )


@pytest.mark.asyncio
async def test_group_scenario_two_of_three_attend(group_session, tutor, group_course, attendees):
    lifecycle = SessionLifecycle()
    ana, ben, cid = attendees

    started = await lifecycle.join(group_session.id, tutor.id, now=at(15))
    assert started.status == SessionStatus.IN_PROGRESS

    await lifecycle.join(group_session.id, ana.id, now=at(15))
    await lifecycle.join(group_session.id, ben.id, now=at(15))
    assert await current_balance(ana, group_course) == 60
    assert await current_balance(ben, group_course) == 60

    ended = await lifecycle.end(group_session.id, tutor.id, now=at(16))
    assert ended.status == SessionStatus.COMPLETED
    assert ended.billable_minutes == 60

    rows = {row.student_id: row for row in await AttendanceLedger().list_for_session(group_session.id)}
    assert rows[ana.id].consumed_minutes == 60
    assert rows[ana.id].leave_time == at(16)
    assert rows[ben.id].consumed_minutes == 60
    assert rows[cid.id].join_time is None
    assert rows[cid.id].consumed_minutes == 0
    assert rows[cid.id].attended is False

    assert await current_balance(ana, group_course) == 60
    assert await current_balance(cid, group_course) == 120


@pytest.mark.asyncio
async def test_late_attendee_consumes_time_present(group_session, tutor, attendees):
    lifecycle = SessionLifecycle()
    ana = attendees[0]

    await lifecycle.join(group_session.id, tutor.id, now=at(15))
    await lifecycle.join(group_session.id, ana.id, now=at(15, 25))
    await lifecycle.end(group_session.id, tutor.id, now=at(16))

    rows = {row.student_id: row for row in await AttendanceLedger().list_for_session(group_session.id)}
    assert rows[ana.id].reserved_minutes == 60
    assert rows[ana.id].consumed_minutes == 35


@pytest.mark.asyncio
async def test_attendee_rejoin_reserves_once(group_session, tutor, group_course, attendees):
    lifecycle = SessionLifecycle()
    ana = attendees[0]

    await lifecycle.join(group_session.id, ana.id, now=at(14, 50))
    await lifecycle.join(group_session.id, ana.id, now=at(14, 55))

    assert await current_balance(ana, group_course) == 60


@pytest.mark.asyncio
async def test_concurrent_attendee_joins_reserve_once(group_session, group_course, attendees):
    lifecycle = SessionLifecycle()
    ana = attendees[0]

    await asyncio.gather(
        *(lifecycle.join(group_session.id, ana.id, now=at(14, 55)) for _ in range(3))
    )

    rows = {row.student_id: row for row in await AttendanceLedger().list_for_session(group_session.id)}
    assert rows[ana.id].reserved_minutes == group_session.scheduled_minutes == 60
    assert await current_balance(ana, group_course) == 120 - 60

    ledger = WalletLedger()
    wallet = (await ledger.list_wallets(student_id=ana.id))[0]
    kinds = [txn.kind for txn in await ledger.list_transactions(wallet.id)]
    assert kinds.count("reservation") == 1


@pytest.mark.asyncio
async def test_attendee_cannot_end_or_cancel(group_session, tutor, attendees):
    lifecycle = SessionLifecycle()
    ana = attendees[0]
    await lifecycle.join(group_session.id, tutor.id, now=at(15))
    await lifecycle.join(group_session.id, ana.id, now=at(15))

    with pytest.raises(ForbiddenError):
        await lifecycle.end(group_session.id, ana.id, now=at(15, 30))
    with pytest.raises(ForbiddenError):
        await lifecycle.cancel(group_session.id, ana.id, now=at(15, 30))


@pytest.mark.asyncio
async def test_unregistered_student_cannot_join(group_session, group_course):
    outsider = await create_user(UserRole.STUDENT, "Olive")

    with pytest.raises(ForbiddenError):
        await SessionLifecycle().join(group_session.id, outsider.id, now=at(15))


@pytest.mark.asyncio
async def test_late_postpone_charges_every_attendee(group_session, tutor, group_course, attendees):
    session = await SessionLifecycle().postpone(group_session.id, tutor.id, now=at(14))

    assert session.status == SessionStatus.MISSED
    assert session.billable_minutes == 30
    for student in attendees:
        assert await current_balance(student, group_course) == 90


@pytest.mark.asyncio
async def test_cancel_refunds_attendee_reservations(group_session, tutor, group_course, attendees):
    lifecycle = SessionLifecycle()
    ana = attendees[0]
    await lifecycle.join(group_session.id, ana.id, now=at(14, 50))
    assert await current_balance(ana, group_course) == 60

    session = await lifecycle.cancel(group_session.id, tutor.id, now=at(14, 55))

    assert session.status == SessionStatus.CANCELLED
    assert await current_balance(ana, group_course) == 120


@pytest.mark.asyncio
async def test_register_attendee_is_idempotent(group_session, tutor, attendees):
    ledger = AttendanceLedger()
    newcomer = await create_user(UserRole.STUDENT, "Dee")

    first = await ledger.register_attendee(group_session.id, newcomer.id, tutor.id)
    second = await ledger.register_attendee(group_session.id, newcomer.id, tutor.id)

    assert first.id == second.id
    assert len(await ledger.list_for_session(group_session.id)) == 4


@pytest.mark.asyncio
async def test_register_attendee_requires_session_tutor(group_session, attendees):
    other_tutor = await create_user(UserRole.TUTOR, "Otto")
    newcomer = await create_user(UserRole.STUDENT, "Dee")

    with pytest.raises(ForbiddenError):
        await AttendanceLedger().register_attendee(group_session.id, newcomer.id, other_tutor.id)
    with pytest.raises(ForbiddenError):
        await AttendanceLedger().register_attendee(group_session.id, newcomer.id, attendees[0].id)


@pytest.mark.asyncio
async def test_register_attendee_respects_capacity(group_session, tutor):
    ledger = AttendanceLedger()
    await ledger.register_attendee(group_session.id, (await create_user(UserRole.STUDENT, "Dee")).id, tutor.id)

    with pytest.raises(ValidationError):
        await ledger.register_attendee(
            group_session.id, (await create_user(UserRole.STUDENT, "Eve")).id, tutor.id
        )


@pytest.mark.asyncio
async def test_register_attendee_rejects_non_students_and_closed_sessions(group_session, tutor, manager):
    ledger = AttendanceLedger()
    with pytest.raises(NotFoundError):
        await ledger.register_attendee(group_session.id, manager.id, tutor.id)

    await SessionLifecycle().cancel(group_session.id, tutor.id, now=at(9))
    newcomer = await create_user(UserRole.STUDENT, "Dee")
    with pytest.raises(InvalidStateError):
        await ledger.register_attendee(group_session.id, newcomer.id, tutor.id)


@pytest.mark.asyncio
async def test_attendee_sees_group_session_in_listing(group_session, attendees):
    ana = attendees[0]

    sessions = await SessionLifecycle().list_for_user(ana.id, ana.role)

    assert [s.id for s in sessions] == [group_session.id]
