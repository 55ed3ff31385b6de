from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from enum import Enum


class NotificationType(str, Enum):
    ADMISSION = "admission"
    CONTACT = "contact"
    PAYMENT = "payment"
    SYSTEM = "system"
    OTHER = "other"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Notification(BaseModel):
    id: str
    type: NotificationType
    title: str
    message: str
    link: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    related_id: Optional[str] = None
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: datetime


class NotificationPage(BaseModel):
    count: int
    unread_count: int
    notifications: list[Notification]
