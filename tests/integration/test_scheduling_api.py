"""
Integration tests for the HTTP API

Tests authentication, role checks, error envelopes and the main request
flows through the FastAPI application.
"""

import pytest
from datetime import timedelta
from httpx import ASGITransport, AsyncClient

from conftest import API_TOKEN, auth_headers, create_course, create_session, create_user, fund_wallet
from main import app
from tutorbook.models.user import UserRole
from tutorbook.timeutils import utcnow

pytestmark = pytest.mark.integration


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def tomorrow_at(hour: int, minute: int = 0):
    return (utcnow() + timedelta(days=1)).replace(hour=hour, minute=minute, second=0, microsecond=0)


def proposal_body(tutor, course, start, minutes=60):
    return {
        "tutor_id": str(tutor.id),
        "course_id": str(course.id),
        "proposed_start_time": start.isoformat(),
        "proposed_end_time": (start + timedelta(minutes=minutes)).isoformat(),
        "student_message": "Can we cover chapter 3?",
    }


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_token_rejected(client):
    response = await client.get("/api/v1/tutoring-sessions")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_001"


@pytest.mark.asyncio
async def test_invalid_token_rejected(client, student):
    response = await client.get(
        "/api/v1/tutoring-sessions",
        headers={"Authorization": "Bearer wrong", "X-User-Id": str(student.id)},
    )

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_002"


@pytest.mark.asyncio
async def test_missing_user_header_rejected(client):
    response = await client.get(
        "/api/v1/tutoring-sessions",
        headers={"Authorization": f"Bearer {API_TOKEN}"},
    )

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_003"


@pytest.mark.asyncio
async def test_propose_and_approve_flow(client, student, tutor, course):
    start = tomorrow_at(10)

    created = await client.post(
        "/api/v1/session-proposals",
        json=proposal_body(tutor, course, start, minutes=45),
        headers=auth_headers(student),
    )
    assert created.status_code == 201
    proposal = created.json()
    assert proposal["status"] == "pending"

    pending = await client.get("/api/v1/session-proposals/tutor", headers=auth_headers(tutor))
    assert [p["id"] for p in pending.json()] == [proposal["id"]]

    approved = await client.patch(
        f"/api/v1/session-proposals/{proposal['id']}/approve",
        json={"tutor_response": "Works for me"},
        headers=auth_headers(tutor),
    )
    assert approved.status_code == 200
    body = approved.json()
    assert body["proposal"]["status"] == "approved"
    assert body["session"]["status"] == "scheduled"
    assert body["session"]["scheduled_minutes"] == 45

    sessions = await client.get("/api/v1/tutoring-sessions", headers=auth_headers(student))
    assert [s["id"] for s in sessions.json()] == [body["session"]["id"]]


@pytest.mark.asyncio
async def test_student_cannot_approve(client, student, tutor, course):
    created = await client.post(
        "/api/v1/session-proposals",
        json=proposal_body(tutor, course, tomorrow_at(10)),
        headers=auth_headers(student),
    )

    response = await client.patch(
        f"/api/v1/session-proposals/{created.json()['id']}/approve",
        headers=auth_headers(student),
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_unaligned_proposal_is_422(client, student, tutor, course):
    response = await client.post(
        "/api/v1/session-proposals",
        json=proposal_body(tutor, course, tomorrow_at(10), minutes=50),
        headers=auth_headers(student),
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_double_booking_is_409(client, student, tutor, course):
    start = tomorrow_at(10)
    await create_session(tutor, student, course, start, start + timedelta(hours=1))

    response = await client.post(
        "/api/v1/session-proposals",
        json=proposal_body(tutor, course, start + timedelta(minutes=30)),
        headers=auth_headers(student),
    )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "DOUBLE_BOOKING"


@pytest.mark.asyncio
async def test_join_with_insufficient_hours_is_402(client, student, tutor, course):
    await fund_wallet(student, course, 30)
    start = utcnow().replace(second=0, microsecond=0) + timedelta(minutes=5)
    session = await create_session(tutor, student, course, start, start + timedelta(hours=1))

    response = await client.post(
        f"/api/v1/tutoring-sessions/{session.id}/join",
        headers=auth_headers(student),
    )

    assert response.status_code == 402
    error = response.json()["error"]
    assert error["code"] == "INSUFFICIENT_FUNDS"
    assert error["details"]["shortfall_minutes"] == 30


@pytest.mark.asyncio
async def test_join_reserves_wallet_minutes(client, student, tutor, course):
    await fund_wallet(student, course, 90)
    start = utcnow().replace(second=0, microsecond=0) + timedelta(minutes=5)
    session = await create_session(tutor, student, course, start, start + timedelta(hours=1))

    response = await client.post(
        f"/api/v1/tutoring-sessions/{session.id}/join",
        headers=auth_headers(student),
    )
    assert response.status_code == 200
    assert response.json()["reserved_minutes"] == 60

    wallets = await client.get("/api/v1/hour-wallets", headers=auth_headers(student))
    assert wallets.json()[0]["balance_minutes"] == 30


@pytest.mark.asyncio
async def test_end_scheduled_session_is_400(client, student, tutor, course):
    start = tomorrow_at(10)
    session = await create_session(tutor, student, course, start, start + timedelta(hours=1))

    response = await client.post(
        f"/api/v1/tutoring-sessions/{session.id}/end",
        headers=auth_headers(tutor),
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_STATE"


@pytest.mark.asyncio
async def test_cancel_with_reason(client, student, tutor, course):
    start = tomorrow_at(10)
    session = await create_session(tutor, student, course, start, start + timedelta(hours=1))

    response = await client.post(
        f"/api/v1/tutoring-sessions/{session.id}/cancel",
        json={"reason": "Travelling"},
        headers=auth_headers(student),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["notes"] == "Cancelled: Travelling"


@pytest.mark.asyncio
async def test_manager_adds_minutes(client, manager, student, course):
    response = await client.post(
        "/api/v1/hour-wallets",
        json={"student_id": str(student.id), "course_id": str(course.id), "minutes": 120},
        headers=auth_headers(manager),
    )

    assert response.status_code == 201
    wallet = response.json()
    assert wallet["balance_minutes"] == 120

    history = await client.get(
        f"/api/v1/hour-wallets/{wallet['id']}/transactions",
        headers=auth_headers(student),
    )
    assert [txn["kind"] for txn in history.json()] == ["purchase"]


@pytest.mark.asyncio
async def test_add_minutes_limits_and_roles(client, manager, student, course):
    body = {"student_id": str(student.id), "course_id": str(course.id), "minutes": 10}

    too_small = await client.post("/api/v1/hour-wallets", json=body, headers=auth_headers(manager))
    assert too_small.status_code == 422

    body["minutes"] = 60
    as_student = await client.post("/api/v1/hour-wallets", json=body, headers=auth_headers(student))
    assert as_student.status_code == 403


@pytest.mark.asyncio
async def test_allocation_mismatch_is_422(client, manager, student, course):
    response = await client.post(
        "/api/v1/hour-wallets/allocate",
        json={
            "student_id": str(student.id),
            "total_hours": 4,
            "allocations": {str(course.id): 3},
        },
        headers=auth_headers(manager),
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_other_students_wallet_forbidden(client, student, course, tutor):
    await fund_wallet(student, course, 60)
    other = await create_user(UserRole.STUDENT, "Olive")
    own = await client.get("/api/v1/hour-wallets", headers=auth_headers(student))
    wallet_id = own.json()[0]["id"]

    response = await client.get(f"/api/v1/hour-wallets/{wallet_id}", headers=auth_headers(other))

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_availability_crud(client, tutor, student):
    created = await client.post(
        "/api/v1/tutor/availability",
        json={"day_of_week": 1, "start_time": "09:00:00", "end_time": "12:00:00"},
        headers=auth_headers(tutor),
    )
    assert created.status_code == 201
    slot_id = created.json()["id"]

    updated = await client.patch(
        f"/api/v1/tutor/availability/{slot_id}",
        json={"end_time": "13:00:00"},
        headers=auth_headers(tutor),
    )
    assert updated.status_code == 200
    assert updated.json()["end_time"] == "13:00:00"

    public = await client.get(f"/api/v1/tutors/{tutor.id}/availability", headers=auth_headers(student))
    assert [slot["id"] for slot in public.json()] == [slot_id]

    as_student = await client.post(
        "/api/v1/tutor/availability",
        json={"day_of_week": 1, "start_time": "09:00:00", "end_time": "12:00:00"},
        headers=auth_headers(student),
    )
    assert as_student.status_code == 403

    deleted = await client.delete(f"/api/v1/tutor/availability/{slot_id}", headers=auth_headers(tutor))
    assert deleted.status_code == 204


@pytest.mark.asyncio
async def test_proposal_detail_visible_to_parties_only(client, student, tutor, manager, course):
    created = await client.post(
        "/api/v1/session-proposals",
        json=proposal_body(tutor, course, tomorrow_at(10)),
        headers=auth_headers(student),
    )
    proposal_id = created.json()["id"]

    for viewer in (student, tutor, manager):
        response = await client.get(f"/api/v1/session-proposals/{proposal_id}", headers=auth_headers(viewer))
        assert response.status_code == 200
        assert response.json()["status"] == "pending"

    outsider = await create_user(UserRole.STUDENT, "Olive")
    hidden = await client.get(f"/api/v1/session-proposals/{proposal_id}", headers=auth_headers(outsider))
    assert hidden.status_code == 403

    # Fixed paths still resolve ahead of the id route
    mine = await client.get("/api/v1/session-proposals/student", headers=auth_headers(student))
    assert [p["id"] for p in mine.json()] == [proposal_id]


@pytest.mark.asyncio
async def test_tutor_registers_group_attendee(client, tutor, student):
    group_course = await create_course(tutor, is_group=True, max_enrollment=3)
    start = tomorrow_at(15)
    created = await client.post(
        "/api/v1/tutoring-sessions/group",
        json={
            "course_id": str(group_course.id),
            "scheduled_start_time": start.isoformat(),
            "scheduled_end_time": (start + timedelta(hours=1)).isoformat(),
            "student_ids": [str(student.id)],
        },
        headers=auth_headers(tutor),
    )
    assert created.status_code == 201
    session_id = created.json()["id"]
    newcomer = await create_user(UserRole.STUDENT, "Dee")

    as_student = await client.post(
        f"/api/v1/tutoring-sessions/{session_id}/attendees",
        json={"student_id": str(newcomer.id)},
        headers=auth_headers(student),
    )
    assert as_student.status_code == 403

    registered = await client.post(
        f"/api/v1/tutoring-sessions/{session_id}/attendees",
        json={"student_id": str(newcomer.id)},
        headers=auth_headers(tutor),
    )
    assert registered.status_code == 201
    assert registered.json()["student_id"] == str(newcomer.id)
    assert registered.json()["reserved_minutes"] == 0

    attendance = await client.get(
        f"/api/v1/tutoring-sessions/{session_id}/attendance",
        headers=auth_headers(newcomer),
    )
    assert attendance.status_code == 200
    assert len(attendance.json()) == 2


@pytest.mark.asyncio
async def test_my_notifications(client, student, tutor, course):
    start = tomorrow_at(10)
    session = await create_session(tutor, student, course, start, start + timedelta(hours=1))
    await client.post(
        f"/api/v1/tutoring-sessions/{session.id}/cancel",
        json={"reason": "Travelling"},
        headers=auth_headers(student),
    )

    response = await client.get("/api/v1/notifications/me", headers=auth_headers(tutor))
    assert response.status_code == 200
    notifications = response.json()
    assert [n["type"] for n in notifications] == ["session_cancelled"]
    assert notifications[0]["is_read"] is False
    assert notifications[0]["related_id"] == str(session.id)

    unread = await client.get(
        "/api/v1/notifications/me", params={"unread_only": "true"}, headers=auth_headers(tutor)
    )
    assert len(unread.json()) == 1

    own = await client.get("/api/v1/notifications/me", headers=auth_headers(student))
    assert own.json() == []
