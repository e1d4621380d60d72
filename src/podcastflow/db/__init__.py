"""
Database module for PodcastFlow Pro
Shared public-schema models; tenant tables live in podcastflow.tenancy
"""
from .engine import SessionLocal, get_db, get_engine, set_engine, dispose_engine
from .base import Base
from .models import (
    Organization,
    User,
    Session,
    EmailTemplate,
    EmailLog,
    EmailQueue,
    EmailSuppression,
    NotificationTemplate,
    NotificationDelivery,
)

__all__ = [
    "SessionLocal",
    "get_db",
    "get_engine",
    "set_engine",
    "dispose_engine",
    "Base",
    "Organization",
    "User",
    "Session",
    "EmailTemplate",
    "EmailLog",
    "EmailQueue",
    "EmailSuppression",
    "NotificationTemplate",
    "NotificationDelivery",
]
