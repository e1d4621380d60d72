"""
Notification dispatcher

Turns a platform event into queued emails: resolves recipients from the
organization's role matrix, drops suppressed addresses, renders the event's
template and records one NotificationDelivery plus one EmailQueue row per
recipient. Delivery itself happens in the queue worker.
"""
import enum
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models import (
    DeliveryStatus,
    NotificationDelivery,
    NotificationTemplate,
    Organization,
    User,
)
from ..exceptions import TenantError
from .email_service import get_suppressed, normalize_email, queue_email
from .email_templates import RenderedTemplate, common_template_data, html_to_text, render_string

logger = logging.getLogger(__name__)


class NotificationEventType(str, enum.Enum):
    # Campaign workflow
    CAMPAIGN_CREATED = "campaign_created"
    CAMPAIGN_STATUS_CHANGED = "campaign_status_changed"
    CAMPAIGN_APPROVAL_REQUESTED = "campaign_approval_requested"
    CAMPAIGN_APPROVED = "campaign_approved"
    CAMPAIGN_REJECTED = "campaign_rejected"
    # Scheduling and inventory
    SCHEDULE_SAVED = "schedule_saved"
    SCHEDULE_COMMITTED = "schedule_committed"
    SCHEDULE_COMMIT_FAILED = "schedule_commit_failed"
    INVENTORY_RESERVED = "inventory_reserved"
    INVENTORY_RELEASED = "inventory_released"
    INVENTORY_CONFLICT_DETECTED = "inventory_conflict_detected"
    # Approvals
    TALENT_APPROVAL_REQUESTED = "talent_approval_requested"
    TALENT_APPROVAL_GRANTED = "talent_approval_granted"
    TALENT_APPROVAL_DENIED = "talent_approval_denied"
    PRODUCER_APPROVAL_REQUESTED = "producer_approval_requested"
    PRODUCER_APPROVAL_GRANTED = "producer_approval_granted"
    PRODUCER_APPROVAL_DENIED = "producer_approval_denied"
    # Billing
    INVOICE_GENERATED = "invoice_generated"
    PREBILL_GENERATED = "prebill_generated"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_OVERDUE = "payment_overdue"
    # Integrations
    YOUTUBE_QUOTA_THRESHOLD_REACHED = "youtube_quota_threshold_reached"
    YOUTUBE_QUOTA_RESET = "youtube_quota_reset"
    MEGAPHONE_SYNC_FAILED = "megaphone_sync_failed"
    MEGAPHONE_SYNC_RECOVERED = "megaphone_sync_recovered"
    # Manual
    TEST_EMAIL = "test_email"


E = NotificationEventType

DEFAULT_RECIPIENT_MATRIX: Dict[str, List[str]] = {
    E.CAMPAIGN_CREATED.value: ["admin", "sales"],
    E.CAMPAIGN_STATUS_CHANGED.value: ["admin", "sales"],
    E.CAMPAIGN_APPROVAL_REQUESTED.value: ["admin"],
    E.CAMPAIGN_APPROVED.value: ["admin", "sales"],
    E.CAMPAIGN_REJECTED.value: ["admin", "sales"],
    E.SCHEDULE_SAVED.value: ["admin", "producer"],
    E.SCHEDULE_COMMITTED.value: ["admin", "producer", "sales"],
    E.SCHEDULE_COMMIT_FAILED.value: ["admin", "producer"],
    E.INVENTORY_RESERVED.value: ["admin", "producer"],
    E.INVENTORY_RELEASED.value: ["admin", "producer"],
    E.INVENTORY_CONFLICT_DETECTED.value: ["admin", "producer"],
    E.TALENT_APPROVAL_REQUESTED.value: ["talent"],
    E.TALENT_APPROVAL_GRANTED.value: ["admin", "producer", "sales"],
    E.TALENT_APPROVAL_DENIED.value: ["admin", "producer", "sales"],
    E.PRODUCER_APPROVAL_REQUESTED.value: ["producer"],
    E.PRODUCER_APPROVAL_GRANTED.value: ["admin", "sales"],
    E.PRODUCER_APPROVAL_DENIED.value: ["admin", "sales"],
    E.INVOICE_GENERATED.value: ["admin", "sales"],
    E.PREBILL_GENERATED.value: ["admin", "sales"],
    E.PAYMENT_RECEIVED.value: ["admin"],
    E.PAYMENT_OVERDUE.value: ["admin"],
    E.YOUTUBE_QUOTA_THRESHOLD_REACHED.value: ["admin"],
    E.YOUTUBE_QUOTA_RESET.value: ["admin"],
    E.MEGAPHONE_SYNC_FAILED.value: ["admin"],
    E.MEGAPHONE_SYNC_RECOVERED.value: ["admin"],
    E.TEST_EMAIL.value: [],
}

# (subject, html body) used when no stored template exists
DEFAULT_TEMPLATES: Dict[str, Tuple[str, str]] = {
    E.CAMPAIGN_CREATED.value: (
        "New Campaign Created: {{campaignName}}",
        '<h2>New Campaign Created</h2><p>A new campaign "{{campaignName}}" has been created by {{createdBy}}.</p>'
        '<p>Status: {{status}}</p><p><a href="{{viewUrl}}">View Campaign</a></p>',
    ),
    E.CAMPAIGN_STATUS_CHANGED.value: (
        "Campaign Status Update: {{campaignName}}",
        '<h2>Campaign Status Changed</h2><p>Campaign "{{campaignName}}" status changed from {{oldStatus}} '
        'to {{newStatus}}.</p><p><a href="{{viewUrl}}">View Campaign</a></p>',
    ),
    E.CAMPAIGN_APPROVAL_REQUESTED.value: (
        "Approval Required: {{campaignName}}",
        '<h2>Campaign Approval Required</h2><p>Campaign "{{campaignName}}" requires your approval.</p>'
        '<p>Requested by: {{requestedBy}}</p><p><a href="{{approveUrl}}">Review and Approve</a></p>',
    ),
    E.CAMPAIGN_APPROVED.value: (
        "Campaign Approved: {{campaignName}}",
        '<h2>Campaign Approved</h2><p>Campaign "{{campaignName}}" has been approved by {{approvedBy}}.</p>'
        '<p><a href="{{viewUrl}}">View Campaign</a></p>',
    ),
    E.CAMPAIGN_REJECTED.value: (
        "Campaign Rejected: {{campaignName}}",
        '<h2>Campaign Rejected</h2><p>Campaign "{{campaignName}}" has been rejected by {{rejectedBy}}.</p>'
        '<p>Reason: {{reason}}</p><p><a href="{{viewUrl}}">View Campaign</a></p>',
    ),
    E.SCHEDULE_SAVED.value: (
        "Schedule Saved: {{campaignName}}",
        '<h2>Schedule Saved</h2><p>Schedule for campaign "{{campaignName}}" has been saved.</p>'
        "<p>{{spotCount}} spots scheduled.</p>",
    ),
    E.SCHEDULE_COMMITTED.value: (
        "Schedule Committed: {{campaignName}}",
        '<h2>Schedule Committed</h2><p>Schedule for campaign "{{campaignName}}" has been committed to '
        "inventory.</p><p>{{spotCount}} spots reserved.</p>",
    ),
    E.SCHEDULE_COMMIT_FAILED.value: (
        "Schedule Commit Failed: {{campaignName}}",
        '<h2>Schedule Commit Failed</h2><p>Failed to commit schedule for campaign "{{campaignName}}".</p>'
        "<p>Error: {{error}}</p>",
    ),
    E.INVENTORY_RESERVED.value: (
        "Inventory Reserved: {{showName}}",
        '<h2>Inventory Reserved</h2><p>{{spotCount}} spots reserved for show "{{showName}}".</p>'
        "<p>Date range: {{startDate}} - {{endDate}}</p>",
    ),
    E.INVENTORY_RELEASED.value: (
        "Inventory Released: {{showName}}",
        '<h2>Inventory Released</h2><p>{{spotCount}} spots released for show "{{showName}}".</p>',
    ),
    E.INVENTORY_CONFLICT_DETECTED.value: (
        "Inventory Conflict: {{showName}}",
        '<h2>Inventory Conflict Detected</h2><p>Conflict detected for show "{{showName}}" on {{date}}.</p>'
        "<p>{{conflictDetails}}</p>",
    ),
    E.TALENT_APPROVAL_REQUESTED.value: (
        "Talent Approval Required: {{campaignName}}",
        '<h2>Talent Approval Required</h2><p>Your approval is required for campaign "{{campaignName}}".</p>'
        '<p><a href="{{approveUrl}}">Review and Approve</a></p>',
    ),
    E.TALENT_APPROVAL_GRANTED.value: (
        "Talent Approved: {{campaignName}}",
        '<h2>Talent Approval Granted</h2><p>Talent has approved campaign "{{campaignName}}".</p>',
    ),
    E.TALENT_APPROVAL_DENIED.value: (
        "Talent Denied: {{campaignName}}",
        '<h2>Talent Approval Denied</h2><p>Talent has denied campaign "{{campaignName}}".</p>'
        "<p>Reason: {{reason}}</p>",
    ),
    E.PRODUCER_APPROVAL_REQUESTED.value: (
        "Producer Approval Required: {{campaignName}}",
        '<h2>Producer Approval Required</h2><p>Your approval is required for campaign "{{campaignName}}".</p>'
        '<p><a href="{{approveUrl}}">Review and Approve</a></p>',
    ),
    E.PRODUCER_APPROVAL_GRANTED.value: (
        "Producer Approved: {{campaignName}}",
        '<h2>Producer Approval Granted</h2><p>Producer has approved campaign "{{campaignName}}".</p>',
    ),
    E.PRODUCER_APPROVAL_DENIED.value: (
        "Producer Denied: {{campaignName}}",
        '<h2>Producer Approval Denied</h2><p>Producer has denied campaign "{{campaignName}}".</p>'
        "<p>Reason: {{reason}}</p>",
    ),
    E.INVOICE_GENERATED.value: (
        "Invoice Generated: {{invoiceNumber}}",
        "<h2>Invoice Generated</h2><p>Invoice {{invoiceNumber}} for {{amount}} has been generated.</p>"
        '<p>Due date: {{dueDate}}</p><p><a href="{{viewUrl}}">View Invoice</a></p>',
    ),
    E.PREBILL_GENERATED.value: (
        "Pre-bill Generated: {{prebillNumber}}",
        "<h2>Pre-bill Generated</h2><p>Pre-bill {{prebillNumber}} for {{amount}} has been generated.</p>"
        '<p><a href="{{viewUrl}}">View Pre-bill</a></p>',
    ),
    E.PAYMENT_RECEIVED.value: (
        "Payment Received: {{invoiceNumber}}",
        "<h2>Payment Received</h2><p>Payment of {{amount}} received for invoice {{invoiceNumber}}.</p>",
    ),
    E.PAYMENT_OVERDUE.value: (
        "Payment Overdue: {{invoiceNumber}}",
        "<h2>Payment Overdue</h2><p>Payment for invoice {{invoiceNumber}} ({{amount}}) is overdue.</p>"
        "<p>Days overdue: {{daysOverdue}}</p>",
    ),
    E.YOUTUBE_QUOTA_THRESHOLD_REACHED.value: (
        "YouTube API Quota Warning",
        "<h2>YouTube Quota Threshold Reached</h2><p>YouTube API quota has reached {{percentage}}% of daily "
        "limit.</p><p>Current usage: {{current}} / {{limit}}</p>",
    ),
    E.YOUTUBE_QUOTA_RESET.value: (
        "YouTube API Quota Reset",
        "<h2>YouTube Quota Reset</h2><p>YouTube API quota has been reset for the new day.</p>"
        "<p>New limit: {{limit}}</p>",
    ),
    E.MEGAPHONE_SYNC_FAILED.value: (
        "Megaphone Sync Failed",
        "<h2>Megaphone Sync Failed</h2><p>Failed to sync with Megaphone.</p><p>Error: {{error}}</p>",
    ),
    E.MEGAPHONE_SYNC_RECOVERED.value: (
        "Megaphone Sync Recovered",
        "<h2>Megaphone Sync Recovered</h2><p>Megaphone sync has been restored.</p>",
    ),
    E.TEST_EMAIL.value: (
        "Test Email from PodcastFlow Pro",
        "<h2>Test Email</h2><p>This is a test email from PodcastFlow Pro.</p>",
    ),
}

NOTIFICATION_LAYOUT = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="UTF-8">
    <style>
      body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
      .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
      .header {{ background-color: #2196F3; color: white; padding: 20px; border-radius: 8px 8px 0 0; }}
      .content {{ background-color: #f9f9f9; padding: 30px; border: 1px solid #ddd; border-top: none; }}
    </style>
  </head>
  <body>
    <div class="container">
      <div class="header"><h1>{platform}</h1></div>
      <div class="content">{body}</div>
    </div>
  </body>
</html>"""


@dataclass
class NotificationEvent:
    type: str
    organization_id: int
    data: Dict[str, Any] = field(default_factory=dict)
    recipient_overrides: Optional[List[str]] = None
    priority: int = 5


@dataclass
class DispatchResult:
    event_type: str
    idempotency_key: str
    queued: int = 0
    duplicates: int = 0
    suppressed: int = 0
    recipients: List[str] = field(default_factory=list)
    delivery_ids: List[int] = field(default_factory=list)


def compute_idempotency_key(event: NotificationEvent) -> str:
    """Stable key over organization, event type and payload"""
    payload = json.dumps(event.data or {}, sort_keys=True, default=str)
    raw = f"{event.organization_id}:{event.type}:{payload}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def recipient_key(event_key: str, email: str) -> str:
    return hashlib.sha256(f"{event_key}:{normalize_email(email)}".encode("utf-8")).hexdigest()


def get_recipient_roles(organization: Organization, event_type: str) -> List[str]:
    """Roles receiving an event; the organization's matrix overrides the default per event"""
    matrix = organization.email_settings.get("recipient_matrix") or {}
    if event_type in matrix:
        return list(matrix[event_type] or [])
    return list(DEFAULT_RECIPIENT_MATRIX.get(event_type, []))


def resolve_recipients(db: Session, event: NotificationEvent, organization: Organization) -> List[User]:
    """
    Explicit overrides win but only reach members of the organization;
    otherwise every active user holding one of the event's roles
    """
    query = db.query(User).filter(
        User.organization_id == organization.id,
        User.is_active.is_(True),
    )

    if event.recipient_overrides:
        wanted = {normalize_email(e) for e in event.recipient_overrides}
        users = query.filter(func.lower(User.email).in_(wanted)).all()
        outsiders = wanted - {normalize_email(u.email) for u in users}
        if outsiders:
            logger.warning(
                f"Ignoring {len(outsiders)} override recipients outside organization {organization.id}"
            )
        return users

    roles = get_recipient_roles(organization, event.type)
    if not roles:
        return []
    return query.filter(User.role.in_(roles)).order_by(User.id).all()


def render_notification(db: Session, event: NotificationEvent) -> RenderedTemplate:
    """Org template, then platform default, then the built-in subject/body"""
    template = db.query(NotificationTemplate).filter(
        NotificationTemplate.organization_id == event.organization_id,
        NotificationTemplate.event_type == event.type,
        NotificationTemplate.channel == "email",
        NotificationTemplate.is_active.is_(True),
    ).first()

    if template is None:
        template = db.query(NotificationTemplate).filter(
            NotificationTemplate.organization_id.is_(None),
            NotificationTemplate.event_type == event.type,
            NotificationTemplate.channel == "email",
            NotificationTemplate.is_default.is_(True),
            NotificationTemplate.is_active.is_(True),
        ).first()

    if template is not None:
        subject, body_html, body_text = template.subject, template.body_html, template.body_text
    else:
        subject, body_html = DEFAULT_TEMPLATES.get(
            event.type, ("Notification from PodcastFlow Pro", "<p>{{content}}</p>")
        )
        body_text = None

    data = {**(event.data or {}), **common_template_data()}
    body = render_string(body_html, data, escape=True)
    return RenderedTemplate(
        subject=render_string(subject, data).strip(),
        html=NOTIFICATION_LAYOUT.format(platform=data["platformName"], body=body),
        text=render_string(body_text, data) if body_text else html_to_text(body),
    )


def _delivery_exists(db: Session, key: str) -> bool:
    return db.query(NotificationDelivery.id).filter(NotificationDelivery.idempotency_key == key).first() is not None


def _queue_delivery(
    db: Session,
    event: NotificationEvent,
    organization: Organization,
    user: User,
    key: str,
    rendered: RenderedTemplate,
) -> NotificationDelivery:
    entry = queue_email(
        db,
        recipient=user.email,
        data=event.data,
        organization_id=organization.id,
        priority=event.priority,
        rendered=rendered,
        user_id=user.id,
        commit=False,
    )
    delivery = NotificationDelivery(
        idempotency_key=key,
        event_type=event.type,
        event_payload=event.data,
        organization_id=organization.id,
        recipient_id=user.id,
        recipient_email=user.email,
        channel="email",
        status=DeliveryStatus.QUEUED.value,
        attempts=0,
        queue_id=entry.id,
    )
    db.add(delivery)
    db.flush()
    return delivery


def dispatch(db: Session, event: NotificationEvent) -> DispatchResult:
    """
    Queue an event's notification for every eligible recipient

    A recipient that already holds a delivery for the same event (same
    organization, type and payload) is skipped, so re-dispatching an event
    never emails anyone twice.

    Raises:
        ValueError: unknown event type or invalid priority
        TenantError: organization missing or inactive
    """
    if event.type not in DEFAULT_RECIPIENT_MATRIX:
        raise ValueError(f"Unknown notification event type: {event.type}")
    if not 1 <= event.priority <= 10:
        raise ValueError(f"Priority must be between 1 and 10 (got {event.priority})")

    organization = db.get(Organization, event.organization_id)
    if organization is None or not organization.is_active:
        raise TenantError(f"Organization {event.organization_id} not found")

    event_key = compute_idempotency_key(event)
    result = DispatchResult(event_type=event.type, idempotency_key=event_key)

    recipients = resolve_recipients(db, event, organization)
    if not recipients:
        logger.info(f"No recipients for event {event.type} in organization {organization.id}")
        return result

    suppressed = get_suppressed(db, [u.email for u in recipients])
    deliverable = []
    for user in recipients:
        if normalize_email(user.email) in suppressed:
            result.suppressed += 1
        else:
            deliverable.append(user)

    if not deliverable:
        logger.info(f"All recipients suppressed for event {event.type}")
        return result

    rendered = render_notification(db, event)

    for user in deliverable:
        key = recipient_key(event_key, user.email)
        if _delivery_exists(db, key):
            result.duplicates += 1
            continue

        # A concurrent dispatch of the same event can insert the key after
        # the check; the unique index turns that into a duplicate here.
        try:
            with db.begin_nested():
                delivery = _queue_delivery(db, event, organization, user, key, rendered)
        except IntegrityError:
            logger.info(f"Delivery {key[:12]} for {event.type} already recorded by another dispatch")
            result.duplicates += 1
            continue

        result.queued += 1
        result.recipients.append(user.email)
        result.delivery_ids.append(delivery.id)

    db.commit()
    logger.info(
        f"Dispatched {event.type} for organization {organization.id}: "
        f"{result.queued} queued, {result.duplicates} duplicates, {result.suppressed} suppressed"
    )
    return result
