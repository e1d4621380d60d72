"""
Scheduled Jobs Service
Background jobs: email queue polling, queue purge and expired-session cleanup
"""
import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import config
from ..db.engine import SessionLocal, get_engine
from ..db.models import Session as UserSession
from . import email_queue

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    """
    Get or create the background scheduler instance

    Returns:
        BackgroundScheduler instance
    """
    global _scheduler

    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            job_defaults={
                "coalesce": True,  # Combine missed runs
                "max_instances": 1,  # Never overlap queue batches
                "misfire_grace_time": 300,
            }
        )

    return _scheduler


def register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(
        func=run_email_queue_job,
        trigger=IntervalTrigger(seconds=config.EMAIL_QUEUE_POLL_SECONDS),
        id="email_queue",
        name="Process email queue",
        replace_existing=True,
    )
    logger.info(f"Registered email queue job (every {config.EMAIL_QUEUE_POLL_SECONDS}s)")

    scheduler.add_job(
        func=run_queue_purge_job,
        trigger=CronTrigger(hour=2, minute=30),
        id="email_queue_purge",
        name="Purge sent queue messages",
        replace_existing=True,
    )
    logger.info("Registered queue purge job (daily at 2:30 AM)")

    scheduler.add_job(
        func=run_session_cleanup_job,
        trigger=CronTrigger(hour=3, minute=0),
        id="session_cleanup",
        name="Expired Session Cleanup",
        replace_existing=True,
    )
    logger.info("Registered session cleanup job (daily at 3 AM)")


def start_scheduler():
    """Start the background scheduler and register all jobs"""
    scheduler = get_scheduler()

    if scheduler.running:
        logger.warning("Scheduler already running")
        return

    register_jobs(scheduler)
    scheduler.start()
    logger.info("Background scheduler started")


def stop_scheduler():
    """Stop the background scheduler"""
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")
    _scheduler = None


def run_email_queue_job() -> dict:
    """Claim and deliver one batch of due queue messages"""
    get_engine()
    db = SessionLocal()
    try:
        return email_queue.process_queue(db, batch_size=config.EMAIL_QUEUE_BATCH_SIZE)
    except Exception as e:
        logger.error(f"Email queue job failed: {e}", exc_info=True)
        db.rollback()
        return {"processed": 0, "sent": 0, "retried": 0, "failed": 0, "error": str(e)}
    finally:
        db.close()


def run_queue_purge_job() -> int:
    get_engine()
    db = SessionLocal()
    try:
        return email_queue.purge_sent(db, config.EMAIL_QUEUE_RETENTION_DAYS)
    except Exception as e:
        logger.error(f"Queue purge job failed: {e}", exc_info=True)
        db.rollback()
        return 0
    finally:
        db.close()


def run_session_cleanup_job() -> int:
    """
    Session cleanup job - removes sessions past their expiry

    Returns:
        Number of sessions deleted
    """
    get_engine()
    db = SessionLocal()
    try:
        deleted = db.query(UserSession).filter(
            UserSession.expires_at < datetime.utcnow()
        ).delete(synchronize_session=False)
        db.commit()
        logger.info(f"Session cleanup removed {deleted} expired sessions")
        return deleted
    except Exception as e:
        logger.error(f"Session cleanup job failed: {e}", exc_info=True)
        db.rollback()
        return 0
    finally:
        db.close()
