"""
Database models for the shared public schema
"""
from .organization import Organization
from .user import User, Session, UserRole
from .email import (
    EmailTemplate,
    EmailLog,
    EmailQueue,
    EmailSuppression,
    EmailLogStatus,
    EmailQueueStatus,
    SuppressionReason,
)
from .notification import NotificationTemplate, NotificationDelivery, DeliveryStatus

__all__ = [
    "Organization",
    "User",
    "Session",
    "UserRole",
    "EmailTemplate",
    "EmailLog",
    "EmailQueue",
    "EmailSuppression",
    "EmailLogStatus",
    "EmailQueueStatus",
    "SuppressionReason",
    "NotificationTemplate",
    "NotificationDelivery",
    "DeliveryStatus",
]
