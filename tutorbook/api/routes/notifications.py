"""
Notification API Endpoints

GET /api/v1/notifications/me  - Caller's in-app notifications, newest first
"""
from typing import List

from fastapi import APIRouter, Depends, Query

from tutorbook.api.auth import CurrentUser, get_current_user
from tutorbook.api.schemas import NotificationRead
from tutorbook.services.notifications import get_notification_service

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.get("/me", response_model=List[NotificationRead])
async def list_my_notifications(
    unread_only: bool = Query(False, description="Only return unread notifications"),
    user: CurrentUser = Depends(get_current_user),
):
    return await get_notification_service().list_for_user(user.id, unread_only=unread_only)
