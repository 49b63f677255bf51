"""Domain models and DTOs."""

from src.domain.chat import ChatMessage, ChatTimeline, DeliveryState, MessageKind
from src.domain.events import (
    ApplicationDecided,
    ChatPosted,
    CollectorOffline,
    DomainEvent,
    EmergencyAlert,
    NotificationIssued,
    SystemNotice,
    TaskAssigned,
    TaskStatusChanged,
)
from src.domain.notification import Notification, NotificationDraft, NotificationPriority, NotificationType
from src.domain.task import PickupTask, ReportStatus, ReportSummary, TaskStatus, TaskStatusChange
from src.domain.user import Identity, UserProfile, UserRole, UserStatus, UserSummary


__all__ = [
    "ApplicationDecided",
    "ChatMessage",
    "ChatPosted",
    "ChatTimeline",
    "CollectorOffline",
    "DeliveryState",
    "DomainEvent",
    "EmergencyAlert",
    "Identity",
    "MessageKind",
    "Notification",
    "NotificationDraft",
    "NotificationIssued",
    "NotificationPriority",
    "NotificationType",
    "PickupTask",
    "ReportStatus",
    "ReportSummary",
    "SystemNotice",
    "TaskAssigned",
    "TaskStatus",
    "TaskStatusChange",
    "TaskStatusChanged",
    "UserProfile",
    "UserRole",
    "UserStatus",
    "UserSummary",
]
