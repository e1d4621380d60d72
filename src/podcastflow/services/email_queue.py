"""
Email queue worker

Polls the email_queue table for due pending messages. Each claimed message
moves pending -> processing -> sent | failed; a failed attempt goes back to
pending with a growing delay until EMAIL_QUEUE_MAX_ATTEMPTS is reached.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pybars import PybarsError
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import config
from ..db.models import (
    DeliveryStatus,
    EmailQueue,
    EmailQueueStatus,
    NotificationDelivery,
)
from ..exceptions import EmailProviderError, TemplateNotFoundError
from .email_provider import EmailMessage, EmailProvider, get_email_provider
from .email_service import ALL_SUPPRESSED, send_email
from .email_templates import get_template, render_template
from .metrics import Timer, record_queue_outcome

logger = logging.getLogger(__name__)

# Messages left in 'processing' longer than this belong to a dead worker
STALE_PROCESSING_MINUTES = 15


def _is_permanent(error: Exception) -> bool:
    """Errors a retry cannot fix"""
    if isinstance(error, (TemplateNotFoundError, PybarsError)):
        return True
    return isinstance(error, EmailProviderError) and str(error) == ALL_SUPPRESSED


def _claim_batch(db: Session, batch_size: int) -> List[EmailQueue]:
    now = datetime.utcnow()
    query = (
        db.query(EmailQueue)
        .filter(
            EmailQueue.status == EmailQueueStatus.PENDING.value,
            EmailQueue.scheduled_for <= now,
        )
        .order_by(EmailQueue.priority.asc(), EmailQueue.scheduled_for.asc(), EmailQueue.id.asc())
        .limit(batch_size)
    )
    # Concurrent workers skip each other's rows instead of blocking
    if db.get_bind().dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)

    entries = query.all()
    for entry in entries:
        entry.status = EmailQueueStatus.PROCESSING.value
        entry.attempts = (entry.attempts or 0) + 1
        entry.last_attempt_at = now
    db.commit()
    return entries


def _build_message(db: Session, entry: EmailQueue) -> EmailMessage:
    if entry.subject and entry.html_body:
        return EmailMessage(
            to=[entry.recipient],
            subject=entry.subject,
            html_body=entry.html_body,
            text_body=entry.text_body,
            tags={"queue_id": str(entry.id)},
        )

    template = get_template(db, entry.template_key, entry.organization_id)
    rendered = render_template(template, entry.template_data or {})
    return EmailMessage(
        to=[entry.recipient],
        subject=rendered.subject,
        html_body=rendered.html,
        text_body=rendered.text,
        tags={"queue_id": str(entry.id), "template": entry.template_key},
    )


def _update_deliveries(db: Session, entry: EmailQueue, **values) -> None:
    db.query(NotificationDelivery).filter(NotificationDelivery.queue_id == entry.id).update(
        values, synchronize_session=False
    )


def _deliver(db: Session, entry: EmailQueue, provider: EmailProvider) -> str:
    """
    Attempt one claimed message

    Returns:
        'sent', 'retried' or 'failed'
    """
    try:
        message = _build_message(db, entry)
        result = send_email(
            db,
            message,
            organization_id=entry.organization_id,
            template_key=entry.template_key,
            user_id=entry.user_id,
            provider=provider,
        )
    except Exception as e:
        db.rollback()
        return _record_failure(db, entry, e)

    now = datetime.utcnow()
    entry.status = EmailQueueStatus.SENT.value
    entry.email_log_id = result.log_ids[0] if result.log_ids else None
    entry.last_error = None
    _update_deliveries(
        db,
        entry,
        status=DeliveryStatus.SENT.value,
        attempts=entry.attempts,
        sent_at=now,
        last_error=None,
    )
    db.commit()
    logger.info(f"Queue message {entry.id} sent to {entry.recipient}")
    return "sent"


def _record_failure(db: Session, entry: EmailQueue, error: Exception) -> str:
    entry.last_error = str(error)[:2000]

    if entry.attempts < config.EMAIL_QUEUE_MAX_ATTEMPTS and not _is_permanent(error):
        delay = timedelta(seconds=entry.attempts * config.EMAIL_QUEUE_RETRY_DELAY_SECONDS)
        entry.status = EmailQueueStatus.PENDING.value
        entry.scheduled_for = datetime.utcnow() + delay
        _update_deliveries(db, entry, attempts=entry.attempts, last_error=entry.last_error)
        db.commit()
        logger.warning(
            f"Queue message {entry.id} attempt {entry.attempts} failed, retrying in "
            f"{int(delay.total_seconds())}s: {error}"
        )
        return "retried"

    entry.status = EmailQueueStatus.FAILED.value
    _update_deliveries(
        db,
        entry,
        status=DeliveryStatus.FAILED.value,
        attempts=entry.attempts,
        last_error=entry.last_error,
    )
    db.commit()
    logger.error(f"Queue message {entry.id} failed permanently after {entry.attempts} attempts: {error}")
    return "failed"


def release_stale(db: Session, older_than_minutes: int = STALE_PROCESSING_MINUTES) -> int:
    """Return messages stuck in 'processing' to the queue (or fail them if out of attempts)"""
    cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
    stale = db.query(EmailQueue).filter(
        EmailQueue.status == EmailQueueStatus.PROCESSING.value,
        EmailQueue.last_attempt_at < cutoff,
    ).all()

    for entry in stale:
        entry.last_error = entry.last_error or "Worker stopped while processing"
        if entry.attempts >= config.EMAIL_QUEUE_MAX_ATTEMPTS:
            entry.status = EmailQueueStatus.FAILED.value
            _update_deliveries(db, entry, status=DeliveryStatus.FAILED.value, last_error=entry.last_error)
        else:
            entry.status = EmailQueueStatus.PENDING.value

    if stale:
        db.commit()
        logger.warning(f"Released {len(stale)} stale processing messages")
    return len(stale)


def process_queue(
    db: Session,
    batch_size: Optional[int] = None,
    provider: Optional[EmailProvider] = None,
) -> Dict[str, int]:
    """
    Process one batch of due messages

    Args:
        db: Database session
        batch_size: Maximum messages to claim (default EMAIL_QUEUE_BATCH_SIZE)
        provider: Transport override (default: configured provider)

    Returns:
        Counts: processed, sent, retried, failed
    """
    stats = {"processed": 0, "sent": 0, "retried": 0, "failed": 0}
    provider = provider or get_email_provider()

    with Timer("email_queue_batch_duration_seconds"):
        release_stale(db)
        entries = _claim_batch(db, batch_size or config.EMAIL_QUEUE_BATCH_SIZE)

        for entry in entries:
            outcome = _deliver(db, entry, provider)
            stats["processed"] += 1
            stats[outcome] += 1

    for outcome in ("sent", "retried", "failed"):
        record_queue_outcome(outcome, stats[outcome])

    if stats["processed"]:
        logger.info(
            f"Email queue batch: {stats['processed']} processed, {stats['sent']} sent, "
            f"{stats['retried']} retried, {stats['failed']} failed"
        )
    return stats


def cancel(db: Session, queue_id: int) -> bool:
    """
    Cancel a pending message

    Returns:
        False if the message is missing or no longer pending
    """
    entry = db.get(EmailQueue, queue_id)
    if entry is None or entry.status != EmailQueueStatus.PENDING.value:
        return False

    entry.status = EmailQueueStatus.CANCELLED.value
    _update_deliveries(db, entry, status=DeliveryStatus.SKIPPED.value)
    db.commit()
    logger.info(f"Cancelled queue message {queue_id}")
    return True


def retry_failed(db: Session, organization_id: Optional[int] = None) -> int:
    """Put failed messages back in the queue with a fresh attempt budget"""
    query = db.query(EmailQueue).filter(EmailQueue.status == EmailQueueStatus.FAILED.value)
    if organization_id is not None:
        query = query.filter(EmailQueue.organization_id == organization_id)

    now = datetime.utcnow()
    entries = query.all()
    for entry in entries:
        entry.status = EmailQueueStatus.PENDING.value
        entry.attempts = 0
        entry.scheduled_for = now
        _update_deliveries(db, entry, status=DeliveryStatus.QUEUED.value, attempts=0)
    db.commit()

    if entries:
        logger.info(f"Requeued {len(entries)} failed messages")
    return len(entries)


def list_queue(
    db: Session,
    organization_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[EmailQueue]:
    query = db.query(EmailQueue)
    if organization_id is not None:
        query = query.filter(EmailQueue.organization_id == organization_id)
    if status:
        query = query.filter(EmailQueue.status == status)
    return query.order_by(EmailQueue.created_at.desc(), EmailQueue.id.desc()).offset(offset).limit(limit).all()


def get_queue_stats(db: Session, organization_id: Optional[int] = None) -> Dict[str, Any]:
    """Counts per status plus how many pending messages are due now"""
    query = db.query(EmailQueue.status, func.count(EmailQueue.id))
    if organization_id is not None:
        query = query.filter(EmailQueue.organization_id == organization_id)
    counts = {status.value: 0 for status in EmailQueueStatus}
    for status, count in query.group_by(EmailQueue.status).all():
        counts[status] = count

    due_query = db.query(func.count(EmailQueue.id), func.min(EmailQueue.scheduled_for)).filter(
        EmailQueue.status == EmailQueueStatus.PENDING.value,
        EmailQueue.scheduled_for <= datetime.utcnow(),
    )
    if organization_id is not None:
        due_query = due_query.filter(EmailQueue.organization_id == organization_id)
    due_count, oldest_due = due_query.one()

    return {
        "by_status": counts,
        "total": sum(counts.values()),
        "due": due_count or 0,
        "oldest_due_at": oldest_due.isoformat() if oldest_due else None,
    }


def purge_sent(db: Session, older_than_days: Optional[int] = None) -> int:
    """Delete sent and cancelled messages older than the retention window"""
    days = older_than_days if older_than_days is not None else config.EMAIL_QUEUE_RETENTION_DAYS
    cutoff = datetime.utcnow() - timedelta(days=days)

    purgeable = db.query(EmailQueue.id).filter(
        EmailQueue.status.in_([EmailQueueStatus.SENT.value, EmailQueueStatus.CANCELLED.value]),
        EmailQueue.updated_at < cutoff,
    )
    ids = [row[0] for row in purgeable.all()]
    if not ids:
        return 0

    db.query(NotificationDelivery).filter(NotificationDelivery.queue_id.in_(ids)).update(
        {"queue_id": None}, synchronize_session=False
    )
    deleted = db.query(EmailQueue).filter(EmailQueue.id.in_(ids)).delete(synchronize_session=False)
    db.commit()
    logger.info(f"Purged {deleted} queue messages older than {days} days")
    return deleted
