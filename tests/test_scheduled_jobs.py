"""
Tests for background scheduler jobs
"""
from datetime import datetime, timedelta
from unittest.mock import patch

from apscheduler.schedulers.background import BackgroundScheduler

from podcastflow.db import EmailQueue
from podcastflow.db.models import Session as UserSession
from podcastflow.services import scheduled_jobs
from podcastflow.services.email_service import queue_email
from podcastflow.services.email_templates import RenderedTemplate


class TestRegisterJobs:
    def test_registers_all_jobs(self):
        scheduler = BackgroundScheduler()

        scheduled_jobs.register_jobs(scheduler)

        assert {job.id for job in scheduler.get_jobs()} == {
            "email_queue",
            "email_queue_purge",
            "session_cleanup",
        }

    def test_register_twice_replaces(self):
        scheduler = BackgroundScheduler()
        scheduled_jobs.register_jobs(scheduler)
        scheduled_jobs.register_jobs(scheduler)
        assert len(scheduler.get_jobs()) == 3

    def test_stop_without_start(self):
        scheduled_jobs.stop_scheduler()
        assert scheduled_jobs._scheduler is None


class TestEmailQueueJob:
    def test_processes_due_messages(self, db, dev_provider):
        queue_email(db, "ann@example.com", rendered=RenderedTemplate("Hi", "<p>Hi</p>", "Hi"))

        stats = scheduled_jobs.run_email_queue_job()

        assert stats["sent"] == 1
        assert dev_provider.sent[0].to == ["ann@example.com"]
        db.expire_all()
        assert db.query(EmailQueue).one().status == "sent"

    def test_errors_reported_not_raised(self, db):
        with patch.object(scheduled_jobs.email_queue, "process_queue", side_effect=RuntimeError("boom")):
            stats = scheduled_jobs.run_email_queue_job()

        assert stats["processed"] == 0
        assert stats["error"] == "boom"


class TestQueuePurgeJob:
    def test_purges_old_sent_messages(self, db):
        entry = queue_email(db, "ann@example.com", rendered=RenderedTemplate("Hi", "<p>Hi</p>", "Hi"))
        entry.status = "sent"
        entry.updated_at = datetime.utcnow() - timedelta(days=365)
        db.commit()

        assert scheduled_jobs.run_queue_purge_job() == 1
        db.expire_all()
        assert db.query(EmailQueue).count() == 0


class TestSessionCleanupJob:
    def test_removes_expired_sessions(self, db, make_user):
        user = make_user("ann@acme.test")
        db.add(UserSession(user_id=user.id, token_hash="expired", expires_at=datetime.utcnow() - timedelta(hours=1)))
        db.add(UserSession(user_id=user.id, token_hash="live", expires_at=datetime.utcnow() + timedelta(hours=1)))
        db.commit()

        assert scheduled_jobs.run_session_cleanup_job() == 1
        db.expire_all()
        assert [s.token_hash for s in db.query(UserSession).all()] == ["live"]
