from fastapi import APIRouter, Depends, Query
from typing import Optional

from admission_desk.core.security import get_current_admin
from admission_desk.core.services import AdmissionServices, get_services
from admission_desk.models.notification import Notification, NotificationPage, NotificationType

router = APIRouter()


@router.get("", response_model=NotificationPage)
def get_notifications(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    is_read: Optional[bool] = None,
    type: Optional[NotificationType] = None,
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    """The shared admin inbox, newest first."""
    notifications = services.notifications.list(limit=limit, offset=offset, is_read=is_read, type=type)
    return NotificationPage(
        count=len(notifications),
        unread_count=services.notifications.unread_count(),
        notifications=notifications,
    )


@router.get("/unread-count")
def get_unread_count(
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    return {"count": services.notifications.unread_count()}


@router.put("/read-all")
def mark_all_notifications_read(
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    """Mark every notification as read for the whole admin team."""
    count = services.notifications.mark_all_read()
    return {"message": f"Marked {count} notifications as read", "marked_count": count}


@router.put("/{notif_id}/read", response_model=Notification)
def mark_notification_read(
    notif_id: str,
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    return services.notifications.mark_read(notif_id)


@router.delete("/{notif_id}")
def delete_notification(
    notif_id: str,
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    services.notifications.delete(notif_id)
    return {"message": "Notification deleted"}
