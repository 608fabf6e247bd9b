"""
Unit tests for billing policy calculations

Tests the late-postponement fee, billable minute computation, allocation
validation and session access helpers.
"""

import uuid
import pytest
from datetime import datetime, timedelta

from tutorbook.errors import ForbiddenError, InsufficientFundsError, ValidationError
from tutorbook.models.tutoring_session import TutoringSession
from tutorbook.services.access import SessionAccess, SessionRole
from tutorbook.services.session_lifecycle import billable_minutes_for, no_show_charge
from tutorbook.services.wallet_ledger import validate_allocation

START = datetime(2030, 1, 7, 13, 0)


def make_session(minutes: int = 45, actual_start: datetime = None) -> TutoringSession:
    return TutoringSession(
        tutor_id=uuid.uuid4(),
        student_id=uuid.uuid4(),
        course_id=uuid.uuid4(),
        scheduled_start_time=START,
        scheduled_end_time=START + timedelta(minutes=minutes),
        scheduled_minutes=minutes,
        actual_start_time=actual_start,
    )


class TestNoShowCharge:
    """Late postponement costs half the scheduled minutes, rounded up"""

    @pytest.mark.parametrize("scheduled,expected", [(60, 30), (45, 23), (90, 45), (15, 8)])
    def test_half_rounded_up(self, scheduled, expected):
        assert no_show_charge(scheduled) == expected


class TestBillableMinutes:
    def test_start_within_grace_bills_from_scheduled_start(self):
        session = make_session(45, actual_start=START + timedelta(minutes=3))
        assert billable_minutes_for(session, START + timedelta(minutes=40)) == 40

    def test_late_start_bills_from_actual_start(self):
        session = make_session(60, actual_start=START + timedelta(minutes=20))
        assert billable_minutes_for(session, START + timedelta(minutes=50)) == 30

    def test_early_start_bills_from_actual_start(self):
        session = make_session(60, actual_start=START - timedelta(minutes=5))
        assert billable_minutes_for(session, START + timedelta(minutes=20)) == 25

    def test_capped_at_scheduled_minutes(self):
        session = make_session(45, actual_start=START)
        assert billable_minutes_for(session, START + timedelta(minutes=90)) == 45

    def test_partial_minute_rounds_up(self):
        session = make_session(60, actual_start=START + timedelta(minutes=30))
        ended = START + timedelta(minutes=40, seconds=10)
        assert billable_minutes_for(session, ended) == 11


class TestAllocationValidation:
    def test_matching_total_accepted(self):
        validate_allocation(10.0, {uuid.uuid4(): 6.5, uuid.uuid4(): 3.5})

    def test_drift_within_tolerance_accepted(self):
        validate_allocation(10.0, {uuid.uuid4(): 6.333, uuid.uuid4(): 3.662})

    def test_mismatch_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_allocation(10.0, {uuid.uuid4(): 6.0, uuid.uuid4(): 3.5})
        assert exc_info.value.details["allocated_hours"] == 9.5

    def test_non_positive_part_rejected(self):
        with pytest.raises(ValidationError):
            validate_allocation(5.0, {uuid.uuid4(): 5.0, uuid.uuid4(): 0})

    def test_empty_rejected(self):
        with pytest.raises(ValidationError):
            validate_allocation(5.0, {})


class TestInsufficientFunds:
    def test_shortfall_reported(self):
        error = InsufficientFundsError(required=60, available=20)
        assert error.shortfall == 40
        assert error.to_dict()["details"] == {
            "required_minutes": 60,
            "available_minutes": 20,
            "shortfall_minutes": 40,
        }
        assert error.to_dict()["code"] == "INSUFFICIENT_FUNDS"


class TestSessionAccess:
    def test_non_participant_rejected(self):
        access = SessionAccess(SessionRole.NONE, uuid.uuid4())
        assert not access.is_participant
        with pytest.raises(ForbiddenError):
            access.require_participant()

    def test_attendee_fails_tutor_check(self):
        access = SessionAccess(SessionRole.GROUP_ATTENDEE, uuid.uuid4())
        with pytest.raises(ForbiddenError):
            access.require_tutor("end")

    def test_tutor_passes_tutor_check(self):
        access = SessionAccess(SessionRole.TUTOR, uuid.uuid4())
        assert access.require_tutor("cancel") is access
