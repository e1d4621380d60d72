"""
Tests for the email send path, suppression list and enqueueing
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import Mock

from podcastflow.db import EmailLog, EmailQueue, EmailSuppression
from podcastflow.exceptions import EmailProviderError
from podcastflow.services.email_provider import EmailMessage
from podcastflow.services.email_service import (
    ALL_SUPPRESSED,
    add_suppression,
    get_suppressed,
    queue_email,
    remove_suppression,
    send_email,
    send_template_email,
)
from podcastflow.services.email_templates import RenderedTemplate
from podcastflow.services.metrics import get_metrics_collector


def _message(to):
    return EmailMessage(to=to, subject="Hello", html_body="<p>Hello</p>", text_body="Hello")


class TestSuppressionList:
    def test_add_normalizes(self, db):
        add_suppression(db, "  Ann@Example.COM ", "bounce", source="ses")

        row = db.query(EmailSuppression).one()
        assert row.email == "ann@example.com"
        assert row.reason == "bounce"
        assert get_suppressed(db, ["ANN@example.com", "bob@example.com"]) == {"ann@example.com"}

    def test_add_twice_updates(self, db):
        add_suppression(db, "ann@example.com", "bounce")
        add_suppression(db, "ann@example.com", "complaint")

        assert db.query(EmailSuppression).count() == 1
        assert db.query(EmailSuppression).one().reason == "complaint"

    def test_invalid_reason(self, db):
        with pytest.raises(ValueError):
            add_suppression(db, "ann@example.com", "annoyed")

    def test_remove(self, db):
        add_suppression(db, "ann@example.com")
        assert remove_suppression(db, "ANN@example.com") is True
        assert remove_suppression(db, "ann@example.com") is False

    def test_empty_lookup(self, db):
        assert get_suppressed(db, []) == set()


class TestSendEmail:
    def test_success_logs_each_recipient(self, db, dev_provider):
        result = send_email(db, _message(["ann@example.com", "bob@example.com"]), template_key="custom")

        assert result.provider == "dev"
        assert len(result.log_ids) == 2
        logs = db.query(EmailLog).order_by(EmailLog.id).all()
        assert [log.recipient for log in logs] == ["ann@example.com", "bob@example.com"]
        assert all(log.status == "sent" for log in logs)
        assert all(log.provider_message_id == result.message_id for log in logs)
        assert all(log.template_key == "custom" for log in logs)
        assert get_metrics_collector().get_counter("emails_total", {"provider": "dev", "status": "sent"}) == 2

    def test_suppressed_recipients_dropped(self, db, dev_provider):
        add_suppression(db, "bob@example.com", "bounce")

        result = send_email(db, _message(["ann@example.com", "Bob@example.com"]))

        assert dev_provider.sent[0].to == ["ann@example.com"]
        assert result.suppressed == ["Bob@example.com"]
        statuses = {log.recipient: log.status for log in db.query(EmailLog).all()}
        assert statuses == {"ann@example.com": "sent", "Bob@example.com": "suppressed"}

    def test_all_suppressed(self, db, dev_provider):
        add_suppression(db, "ann@example.com", "complaint")

        with pytest.raises(EmailProviderError) as exc_info:
            send_email(db, _message(["ann@example.com"]))

        assert str(exc_info.value) == ALL_SUPPRESSED
        assert len(dev_provider.sent) == 0
        assert db.query(EmailLog).one().status == "suppressed"

    def test_provider_failure_marks_logs_failed(self, db):
        provider = Mock()
        provider.name = "ses"
        provider.send.side_effect = EmailProviderError("SES send failed: throttled")

        with pytest.raises(EmailProviderError):
            send_email(db, _message(["ann@example.com"]), provider=provider)

        log = db.query(EmailLog).one()
        assert log.status == "failed"
        assert "throttled" in log.error_message

    def test_unexpected_error_wrapped(self, db):
        provider = Mock()
        provider.name = "smtp"
        provider.send.side_effect = RuntimeError("socket closed")

        with pytest.raises(EmailProviderError, match="socket closed"):
            send_email(db, _message(["ann@example.com"]), provider=provider)

    def test_organization_settings_applied(self, db, dev_provider, organization):
        organization.settings = {"email_settings": {
            "from_name": "Acme Media",
            "reply_to": "hello@acme.test",
            "email_footer": "Acme Media, 1 Main St",
        }}
        db.commit()

        send_email(db, _message(["ann@example.com"]), organization_id=organization.id)

        sent = dev_provider.sent[0]
        assert sent.from_address == "Acme Media <noreply@podcastflow.pro>"
        assert sent.reply_to == "hello@acme.test"
        assert sent.html_body.endswith("Acme Media, 1 Main St</div>")
        assert sent.text_body == "Hello\n\nAcme Media, 1 Main St"
        assert db.query(EmailLog).one().organization_id == organization.id

    def test_send_template_email(self, db, dev_provider):
        send_template_email(
            db,
            "password-reset",
            ["ann@example.com"],
            {"userName": "Ann", "resetLink": "https://app.test/reset/xyz"},
        )

        sent = dev_provider.sent[0]
        assert sent.subject == "Reset your PodcastFlow Pro password"
        assert "https://app.test/reset/xyz" in sent.html_body
        assert sent.tags == {"template": "password-reset"}
        assert db.query(EmailLog).one().template_key == "password-reset"


class TestQueueEmail:
    def test_template_entry(self, db, organization):
        entry = queue_email(
            db,
            "ann@example.com",
            template_key="password-reset",
            data={"userName": "Ann"},
            organization_id=organization.id,
            priority=2,
        )

        stored = db.get(EmailQueue, entry.id)
        assert stored.status == "pending"
        assert stored.attempts == 0
        assert stored.priority == 2
        assert stored.template_data == {"userName": "Ann"}
        assert stored.subject is None
        assert stored.scheduled_for <= datetime.utcnow()

    def test_rendered_entry(self, db):
        entry = queue_email(db, "ann@example.com", rendered=RenderedTemplate("Subj", "<p>h</p>", "h"))
        assert (entry.subject, entry.html_body, entry.text_body) == ("Subj", "<p>h</p>", "h")

    def test_scheduled_for(self, db):
        later = datetime.utcnow() + timedelta(hours=2)
        entry = queue_email(db, "ann@example.com", template_key="notification", scheduled_for=later)
        assert entry.scheduled_for == later

    @pytest.mark.parametrize("priority", [0, 11, -1])
    def test_priority_bounds(self, db, priority):
        with pytest.raises(ValueError):
            queue_email(db, "ann@example.com", template_key="notification", priority=priority)

    def test_content_required(self, db):
        with pytest.raises(ValueError):
            queue_email(db, "ann@example.com")

    def test_no_commit_leaves_transaction_open(self, db):
        entry = queue_email(db, "ann@example.com", template_key="notification", commit=False)
        assert entry.id is not None
        db.rollback()
        assert db.query(EmailQueue).count() == 0
