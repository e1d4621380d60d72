"""
Email models: templates, per-recipient send log, outbound queue and suppression list
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base, JSONType


class EmailLogStatus(str, enum.Enum):
    PENDING = "pending"
    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"
    COMPLAINED = "complained"
    SUPPRESSED = "suppressed"


class EmailQueueStatus(str, enum.Enum):
    """Queue lifecycle: pending -> processing -> sent | failed; cancelled from pending"""
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SuppressionReason(str, enum.Enum):
    BOUNCE = "bounce"
    COMPLAINT = "complaint"
    MANUAL = "manual"
    UNSUBSCRIBE = "unsubscribe"


class EmailTemplate(Base):
    """
    Email template keyed by name

    organization_id NULL marks a platform template; is_system_default marks the
    one used when an organization has no override.
    """
    __tablename__ = "email_templates"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(String(500), nullable=True)
    subject = Column(String(500), nullable=False)
    html_content = Column(Text, nullable=False)
    text_content = Column(Text, nullable=False)
    variables = Column(JSONType, nullable=True)  # list of variable names
    category = Column(String(50), nullable=False, default="system")
    is_active = Column(Boolean, default=True, nullable=False)
    is_system_default = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("key", "organization_id", name="uq_email_templates_key_org"),
    )


class EmailLog(Base):
    """One row per recipient per send attempt"""
    __tablename__ = "email_logs"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    recipient = Column(String, nullable=False, index=True)
    from_address = Column(String, nullable=False)
    subject = Column(String(500), nullable=False)
    template_key = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default=EmailLogStatus.PENDING.value, index=True)
    provider = Column(String(20), nullable=True)
    provider_message_id = Column(String, nullable=True, index=True)
    error_message = Column(Text, nullable=True)
    extra_metadata = Column(JSONType, nullable=True)

    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_email_logs_org_created", "organization_id", "created_at"),
    )


class EmailQueue(Base):
    """
    Outbound email queue polled by the queue worker

    Rows are either rendered at enqueue time (subject/html_body/text_body set)
    or rendered from template_key + template_data when processed.
    """
    __tablename__ = "email_queue"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    recipient = Column(String, nullable=False)
    template_key = Column(String(100), nullable=True)
    template_data = Column(JSONType, nullable=True)
    subject = Column(String(500), nullable=True)
    html_body = Column(Text, nullable=True)
    text_body = Column(Text, nullable=True)

    priority = Column(Integer, nullable=False, default=5)  # 1 (highest) .. 10
    scheduled_for = Column(DateTime, nullable=False, default=datetime.utcnow)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=EmailQueueStatus.PENDING.value)
    email_log_id = Column(Integer, ForeignKey("email_logs.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    email_log = relationship("EmailLog")
    deliveries = relationship("NotificationDelivery", back_populates="queue_entry")

    __table_args__ = (
        Index("idx_email_queue_status_scheduled", "status", "scheduled_for"),
        Index("idx_email_queue_priority", "priority"),
    )

    def __repr__(self):
        return (
            f"<EmailQueue(id={self.id}, recipient={self.recipient}, "
            f"status={self.status}, attempts={self.attempts})>"
        )


class EmailSuppression(Base):
    """Addresses that must never be sent to"""
    __tablename__ = "email_suppressions"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    reason = Column(String(20), nullable=False, default=SuppressionReason.MANUAL.value)
    source = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
