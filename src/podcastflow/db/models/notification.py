"""
Database models for event notifications
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base, JSONType


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class NotificationTemplate(Base):
    """
    Subject/body template for one notification event type

    organization_id NULL with is_default set is the platform default.
    """
    __tablename__ = "notification_templates"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    channel = Column(String(20), nullable=False, default="email")
    subject = Column(String(500), nullable=False)
    body_html = Column(Text, nullable=False)
    body_text = Column(Text, nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_notification_templates_lookup", "event_type", "organization_id", "channel"),
    )


class NotificationDelivery(Base):
    """
    Tracks one notification to one recipient
    The idempotency key prevents the same event reaching a recipient twice
    """
    __tablename__ = "notification_deliveries"

    id = Column(Integer, primary_key=True, index=True)
    idempotency_key = Column(String(64), unique=True, nullable=False, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    event_payload = Column(JSONType, nullable=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    recipient_email = Column(String, nullable=False)
    channel = Column(String(20), nullable=False, default="email")
    status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    queue_id = Column(Integer, ForeignKey("email_queue.id", ondelete="SET NULL"), nullable=True, index=True)
    sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    queue_entry = relationship("EmailQueue", back_populates="deliveries")

    __table_args__ = (
        Index("idx_notification_deliveries_org_created", "organization_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<NotificationDelivery(id={self.id}, event_type={self.event_type}, "
            f"recipient_email={self.recipient_email}, status={self.status})>"
        )
