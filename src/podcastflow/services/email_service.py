"""
Email send path: organization settings, suppression list, per-recipient logs
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from email.utils import formataddr
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from ..config import config
from ..db.models import (
    EmailLog,
    EmailLogStatus,
    EmailQueue,
    EmailQueueStatus,
    EmailSuppression,
    Organization,
    SuppressionReason,
)
from ..exceptions import EmailProviderError
from .email_provider import EmailMessage, EmailProvider, get_email_provider
from .email_templates import RenderedTemplate, get_template, render_template
from .metrics import record_email_result

logger = logging.getLogger(__name__)

ALL_SUPPRESSED = "ALL_SUPPRESSED"


@dataclass
class SendResult:
    message_id: str
    provider: str
    log_ids: List[int] = field(default_factory=list)
    suppressed: List[str] = field(default_factory=list)


def normalize_email(address: str) -> str:
    return (address or "").strip().lower()


def get_suppressed(db: Session, addresses: Iterable[str]) -> Set[str]:
    """Return the subset of addresses (normalized) on the suppression list"""
    normalized = {normalize_email(a) for a in addresses if a}
    if not normalized:
        return set()
    rows = db.query(EmailSuppression.email).filter(EmailSuppression.email.in_(normalized)).all()
    return {row[0] for row in rows}


def add_suppression(
    db: Session,
    email: str,
    reason: str = SuppressionReason.MANUAL.value,
    source: Optional[str] = None,
) -> EmailSuppression:
    if reason not in {r.value for r in SuppressionReason}:
        raise ValueError(f"Invalid suppression reason: {reason}")

    address = normalize_email(email)
    suppression = db.query(EmailSuppression).filter(EmailSuppression.email == address).first()
    if suppression is None:
        suppression = EmailSuppression(email=address, reason=reason, source=source)
        db.add(suppression)
    else:
        suppression.reason = reason
        suppression.source = source
    db.commit()
    db.refresh(suppression)
    logger.info(f"Suppressed {address} ({reason})")
    return suppression


def remove_suppression(db: Session, email: str) -> bool:
    deleted = db.query(EmailSuppression).filter(EmailSuppression.email == normalize_email(email)).delete()
    db.commit()
    return deleted > 0


def _apply_org_settings(message: EmailMessage, organization: Optional[Organization]) -> EmailMessage:
    settings = organization.email_settings if organization else {}

    from_address = message.from_address or config.EMAIL_FROM_ADDRESS
    if settings.get("from_name") and "<" not in from_address:
        from_address = formataddr((settings["from_name"], from_address))

    html_body = message.html_body
    text_body = message.text_body
    footer = settings.get("email_footer")
    if footer:
        html_body = f'{html_body}<div style="margin-top: 20px; font-size: 12px; color: #666;">{footer}</div>'
        if text_body:
            text_body = f"{text_body}\n\n{footer}"

    return replace(
        message,
        from_address=from_address,
        reply_to=message.reply_to or settings.get("reply_to"),
        html_body=html_body,
        text_body=text_body,
    )


def send_email(
    db: Session,
    message: EmailMessage,
    organization_id: Optional[int] = None,
    template_key: Optional[str] = None,
    user_id: Optional[int] = None,
    provider: Optional[EmailProvider] = None,
) -> SendResult:
    """
    Send a message through the configured provider

    Suppressed recipients are dropped and logged as 'suppressed'; every other
    recipient gets an EmailLog row that ends as 'sent' or 'failed'.

    Raises:
        EmailProviderError: every recipient is suppressed (ALL_SUPPRESSED),
            or the provider failed
    """
    provider = provider or get_email_provider()
    organization = db.get(Organization, organization_id) if organization_id else None
    message = _apply_org_settings(message, organization)

    suppressed = get_suppressed(db, message.to)
    allowed = [r for r in message.to if normalize_email(r) not in suppressed]
    blocked = [r for r in message.to if normalize_email(r) in suppressed]

    def new_log(recipient: str, status: str) -> EmailLog:
        return EmailLog(
            organization_id=organization_id,
            user_id=user_id,
            recipient=recipient,
            from_address=message.from_address,
            subject=message.subject,
            template_key=template_key,
            status=status,
            provider=provider.name,
        )

    for recipient in blocked:
        db.add(new_log(recipient, EmailLogStatus.SUPPRESSED.value))
    if blocked:
        logger.info(f"Skipping suppressed recipients: {', '.join(blocked)}")
        record_email_result(provider.name, "suppressed", len(blocked))

    if not allowed:
        db.commit()
        raise EmailProviderError(ALL_SUPPRESSED)

    logs = [new_log(recipient, EmailLogStatus.SENDING.value) for recipient in allowed]
    db.add_all(logs)
    db.flush()

    try:
        result = provider.send(replace(message, to=allowed))
    except Exception as e:
        for log in logs:
            log.status = EmailLogStatus.FAILED.value
            log.error_message = str(e)
        db.commit()
        record_email_result(provider.name, "failed", len(logs))
        logger.error(f"Email '{message.subject}' to {', '.join(allowed)} failed: {e}")
        if isinstance(e, EmailProviderError):
            raise
        raise EmailProviderError(str(e)) from e

    sent_at = datetime.utcnow()
    for log in logs:
        log.status = EmailLogStatus.SENT.value
        log.provider_message_id = result.message_id
        log.sent_at = sent_at
    db.commit()
    record_email_result(provider.name, "sent", len(logs))

    return SendResult(
        message_id=result.message_id,
        provider=result.provider,
        log_ids=[log.id for log in logs],
        suppressed=blocked,
    )


def send_template_email(
    db: Session,
    template_key: str,
    to: List[str],
    data: Optional[Dict[str, Any]] = None,
    organization_id: Optional[int] = None,
    user_id: Optional[int] = None,
    provider: Optional[EmailProvider] = None,
) -> SendResult:
    """Resolve, render and send a template"""
    template = get_template(db, template_key, organization_id)
    rendered = render_template(template, data)
    message = EmailMessage(
        to=to,
        subject=rendered.subject,
        html_body=rendered.html,
        text_body=rendered.text,
        tags={"template": template_key},
    )
    return send_email(
        db,
        message,
        organization_id=organization_id,
        template_key=template_key,
        user_id=user_id,
        provider=provider,
    )


def queue_email(
    db: Session,
    recipient: str,
    template_key: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
    organization_id: Optional[int] = None,
    priority: int = 5,
    scheduled_for: Optional[datetime] = None,
    rendered: Optional[RenderedTemplate] = None,
    user_id: Optional[int] = None,
    commit: bool = True,
) -> EmailQueue:
    """
    Add a message to the outbound queue

    Args:
        recipient: Destination address
        template_key: Template rendered at send time (unless rendered is given)
        data: Template variables
        priority: 1 (first) to 10 (last)
        scheduled_for: Earliest send time (default now)
        rendered: Pre-rendered subject/html/text
        commit: Commit the session (False when the caller owns the transaction)

    Raises:
        ValueError: invalid priority, or neither template_key nor rendered given
    """
    if not 1 <= priority <= 10:
        raise ValueError(f"Priority must be between 1 and 10 (got {priority})")
    if not template_key and rendered is None:
        raise ValueError("Either template_key or rendered content is required")

    entry = EmailQueue(
        organization_id=organization_id,
        user_id=user_id,
        recipient=recipient,
        template_key=template_key,
        template_data=data or {},
        subject=rendered.subject if rendered else None,
        html_body=rendered.html if rendered else None,
        text_body=rendered.text if rendered else None,
        priority=priority,
        scheduled_for=scheduled_for or datetime.utcnow(),
        attempts=0,
        status=EmailQueueStatus.PENDING.value,
    )
    db.add(entry)
    if commit:
        db.commit()
        db.refresh(entry)
    else:
        db.flush()

    logger.info(f"Queued email {entry.id} to {recipient} (priority {priority})")
    return entry
