"""
Tutor Availability Store

Recurring weekly windows published by tutors. Only the owning tutor may
create, edit or delete a slot; students read a tutor's active slots when
choosing a proposal window.
"""
import logging
import uuid
from datetime import time
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from tutorbook.database import AsyncSessionLocal
from tutorbook.errors import ForbiddenError, NotFoundError, ValidationError
from tutorbook.models.availability import TutorAvailability
from tutorbook.models.user import User, UserRole

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("day_of_week", "start_time", "end_time", "is_recurring", "is_active")


def _validate_window(day_of_week: int, start_time: time, end_time: time) -> None:
    if day_of_week < 0 or day_of_week > 6:
        raise ValidationError("day_of_week must be between 0 and 6", {"day_of_week": day_of_week})
    if start_time >= end_time:
        raise ValidationError(
            "Availability start must be before its end",
            {"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
        )


class AvailabilityService:
    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def create_slot(
        self,
        tutor_id: uuid.UUID,
        day_of_week: int,
        start_time: time,
        end_time: time,
        is_recurring: bool = True,
        is_active: bool = True,
    ) -> TutorAvailability:
        _validate_window(day_of_week, start_time, end_time)

        async with self.session_factory() as db:
            async with db.begin():
                tutor = await db.get(User, tutor_id)
                if tutor is None or tutor.role != UserRole.TUTOR:
                    raise ForbiddenError("Only tutors can publish availability")

                slot = TutorAvailability(
                    tutor_id=tutor_id,
                    day_of_week=day_of_week,
                    start_time=start_time,
                    end_time=end_time,
                    is_recurring=is_recurring,
                    is_active=is_active,
                )
                db.add(slot)

        logger.info(
            f"Tutor {tutor_id} published availability day={day_of_week} "
            f"{start_time.isoformat()}-{end_time.isoformat()}"
        )
        return slot

    async def update_slot(
        self,
        slot_id: uuid.UUID,
        tutor_id: uuid.UUID,
        changes: Dict[str, Any],
    ) -> TutorAvailability:
        async with self.session_factory() as db:
            async with db.begin():
                slot = await self._owned_slot(db, slot_id, tutor_id)

                for field, value in changes.items():
                    if field in EDITABLE_FIELDS and value is not None:
                        setattr(slot, field, value)

                _validate_window(slot.day_of_week, slot.start_time, slot.end_time)

        logger.info(f"Tutor {tutor_id} updated availability {slot_id}")
        return slot

    async def delete_slot(self, slot_id: uuid.UUID, tutor_id: uuid.UUID) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                slot = await self._owned_slot(db, slot_id, tutor_id)
                await db.delete(slot)
        logger.info(f"Tutor {tutor_id} deleted availability {slot_id}")

    async def list_for_tutor(
        self,
        tutor_id: uuid.UUID,
        active_only: bool = False,
    ) -> List[TutorAvailability]:
        async with self.session_factory() as db:
            query = select(TutorAvailability).where(TutorAvailability.tutor_id == tutor_id)
            if active_only:
                query = query.where(TutorAvailability.is_active.is_(True))
            result = await db.execute(
                query.order_by(TutorAvailability.day_of_week, TutorAvailability.start_time)
            )
            return list(result.scalars().all())

    async def _owned_slot(self, db, slot_id: uuid.UUID, tutor_id: uuid.UUID) -> TutorAvailability:
        slot = await db.get(TutorAvailability, slot_id)
        if slot is None:
            raise NotFoundError(f"Availability slot {slot_id} not found")
        if slot.tutor_id != tutor_id:
            raise ForbiddenError("You can only modify your own availability")
        return slot


# Global service instance
_service: Optional[AvailabilityService] = None


def get_availability_service() -> AvailabilityService:
    """Get or create global AvailabilityService instance."""
    global _service
    if _service is None:
        _service = AvailabilityService()
    return _service
