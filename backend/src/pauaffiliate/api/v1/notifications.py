"""Notification API v1 endpoints."""

from fastapi import APIRouter, Depends, Query

from pauaffiliate.auth.middleware import require_auth
from pauaffiliate.auth.models import UserAccount
from pauaffiliate.notifications.models import NotificationRecord
from pauaffiliate.notifications.service import notification_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationRecord])
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    user: UserAccount = Depends(require_auth),
):
    """The current user's notifications, newest first."""
    return notification_service.get_notifications(user.id, unread_only=unread_only, limit=limit)
