"""
Tests for event notification dispatch
"""
import pytest

from podcastflow.db import EmailQueue, NotificationDelivery, NotificationTemplate, Organization
from podcastflow.exceptions import TenantError
from podcastflow.services import notification_dispatcher
from podcastflow.services.email_service import add_suppression
from podcastflow.services.notification_dispatcher import (
    DEFAULT_RECIPIENT_MATRIX,
    NotificationEvent,
    NotificationEventType,
    compute_idempotency_key,
    dispatch,
    get_recipient_roles,
    recipient_key,
    render_notification,
)

CAMPAIGN_DATA = {
    "campaignId": "camp_1",
    "campaignName": "Spring Push",
    "createdBy": "Ann",
    "status": "draft",
    "viewUrl": "https://app.test/campaigns/camp_1",
}


def _event(organization, event_type="campaign_created", data=None, **kwargs):
    return NotificationEvent(
        type=event_type,
        organization_id=organization.id,
        data=dict(CAMPAIGN_DATA if data is None else data),
        **kwargs,
    )


@pytest.fixture
def team(make_user):
    return {
        "admin": make_user("admin@acme.test", role="admin"),
        "sales": make_user("sales@acme.test", role="sales"),
        "producer": make_user("producer@acme.test", role="producer"),
        "talent": make_user("talent@acme.test", role="talent"),
    }


class TestIdempotencyKeys:
    def test_stable_for_same_payload(self, organization):
        first = _event(organization, data={"a": 1, "b": 2})
        second = _event(organization, data={"b": 2, "a": 1})
        assert compute_idempotency_key(first) == compute_idempotency_key(second)

    def test_differs_by_payload_type_and_org(self, organization):
        base = compute_idempotency_key(_event(organization, data={"a": 1}))
        assert base != compute_idempotency_key(_event(organization, data={"a": 2}))
        assert base != compute_idempotency_key(_event(organization, "campaign_approved", data={"a": 1}))
        other_org = NotificationEvent(type="campaign_created", organization_id=organization.id + 1, data={"a": 1})
        assert base != compute_idempotency_key(other_org)

    def test_recipient_key_normalizes_email(self):
        assert recipient_key("k", "Ann@Example.com ") == recipient_key("k", "ann@example.com")
        assert len(recipient_key("k", "ann@example.com")) == 64


class TestRecipientRoles:
    def test_default_matrix(self, organization):
        assert get_recipient_roles(organization, "campaign_created") == ["admin", "sales"]

    def test_organization_override(self, db, organization):
        organization.settings = {"email_settings": {"recipient_matrix": {"campaign_created": ["producer"]}}}
        db.commit()

        assert get_recipient_roles(organization, "campaign_created") == ["producer"]
        assert get_recipient_roles(organization, "payment_overdue") == ["admin"]

    def test_every_event_type_has_matrix_entry(self):
        assert set(DEFAULT_RECIPIENT_MATRIX) == {e.value for e in NotificationEventType}


class TestDispatch:
    def test_queues_for_matrix_roles(self, db, organization, team):
        result = dispatch(db, _event(organization))

        assert result.queued == 2
        assert sorted(result.recipients) == ["admin@acme.test", "sales@acme.test"]

        deliveries = db.query(NotificationDelivery).all()
        assert len(deliveries) == 2
        assert all(d.status == "queued" and d.queue_id for d in deliveries)
        assert all(d.event_payload == CAMPAIGN_DATA for d in deliveries)

        entries = db.query(EmailQueue).all()
        assert len(entries) == 2
        assert all(e.subject == "New Campaign Created: Spring Push" for e in entries)
        assert all(e.organization_id == organization.id for e in entries)

    def test_redispatch_is_idempotent(self, db, organization, team):
        dispatch(db, _event(organization))
        again = dispatch(db, _event(organization))

        assert again.queued == 0
        assert again.duplicates == 2
        assert db.query(NotificationDelivery).count() == 2
        assert db.query(EmailQueue).count() == 2

    def test_concurrent_insert_counted_as_duplicate(self, db, organization, team, monkeypatch):
        dispatch(db, _event(organization))
        # Another worker recorded the deliveries between the lookup and the insert
        monkeypatch.setattr(notification_dispatcher, "_delivery_exists", lambda db, key: False)

        again = dispatch(db, _event(organization))

        assert again.queued == 0
        assert again.duplicates == 2
        assert db.query(NotificationDelivery).count() == 2
        assert db.query(EmailQueue).count() == 2

    def test_new_recipient_gets_existing_event(self, db, organization, team, make_user):
        dispatch(db, _event(organization))
        make_user("sales2@acme.test", role="sales")

        again = dispatch(db, _event(organization))

        assert again.queued == 1
        assert again.recipients == ["sales2@acme.test"]

    def test_inactive_users_skipped(self, db, organization, team, make_user):
        make_user("former@acme.test", role="admin", is_active=False)
        result = dispatch(db, _event(organization))
        assert "former@acme.test" not in result.recipients

    def test_suppressed_recipients_counted(self, db, organization, team):
        add_suppression(db, "sales@acme.test", "bounce")

        result = dispatch(db, _event(organization))

        assert result.queued == 1
        assert result.suppressed == 1
        assert result.recipients == ["admin@acme.test"]

    def test_other_organizations_never_notified(self, db, organization, team, make_user):
        other = Organization(slug="beta", name="Beta", is_active=True)
        db.add(other)
        db.commit()
        make_user("admin@beta.test", role="admin", org=other)

        result = dispatch(db, _event(organization))

        assert "admin@beta.test" not in result.recipients

    def test_recipient_overrides_limited_to_members(self, db, organization, team, make_user):
        other = Organization(slug="beta", name="Beta", is_active=True)
        db.add(other)
        db.commit()
        make_user("outsider@beta.test", role="admin", org=other)

        result = dispatch(db, _event(
            organization,
            "test_email",
            data={},
            recipient_overrides=["TALENT@acme.test", "outsider@beta.test"],
        ))

        assert result.recipients == ["talent@acme.test"]

    def test_event_without_roles(self, db, organization, team):
        result = dispatch(db, _event(organization, "test_email", data={}))
        assert result.queued == 0
        assert db.query(EmailQueue).count() == 0

    def test_priority_carried_to_queue(self, db, organization, team):
        dispatch(db, _event(organization, priority=1))
        assert {e.priority for e in db.query(EmailQueue).all()} == {1}

    def test_unknown_event_type(self, db, organization):
        with pytest.raises(ValueError, match="Unknown notification event type"):
            dispatch(db, _event(organization, "campaign_exploded"))

    def test_invalid_priority(self, db, organization):
        with pytest.raises(ValueError):
            dispatch(db, _event(organization, priority=0))

    def test_missing_organization(self, db):
        with pytest.raises(TenantError):
            dispatch(db, NotificationEvent(type="campaign_created", organization_id=9999))

    def test_inactive_organization(self, db, organization, team):
        organization.is_active = False
        db.commit()
        with pytest.raises(TenantError):
            dispatch(db, _event(organization))


class TestRenderNotification:
    def test_builtin_template(self, db, organization):
        rendered = render_notification(db, _event(organization))

        assert rendered.subject == "New Campaign Created: Spring Push"
        assert "PodcastFlow Pro" in rendered.html
        assert 'A new campaign "Spring Push" has been created by Ann.' in rendered.text

    def test_payload_html_escaped(self, db, organization):
        data = dict(CAMPAIGN_DATA, campaignName="<script>alert(1)</script>")
        rendered = render_notification(db, _event(organization, data=data))
        assert "<script>" not in rendered.html
        assert "&lt;script&gt;" in rendered.html

    def test_organization_template_wins(self, db, organization):
        db.add(NotificationTemplate(
            organization_id=None,
            event_type="campaign_created",
            subject="Default: {{campaignName}}",
            body_html="<p>default</p>",
            is_default=True,
        ))
        db.add(NotificationTemplate(
            organization_id=organization.id,
            event_type="campaign_created",
            subject="Acme: {{campaignName}}",
            body_html="<p>{{campaignName}} by {{createdBy}}</p>",
            body_text="{{campaignName}} / {{createdBy}}",
        ))
        db.commit()

        rendered = render_notification(db, _event(organization))

        assert rendered.subject == "Acme: Spring Push"
        assert rendered.text == "Spring Push / Ann"

    def test_platform_default_template(self, db, organization):
        db.add(NotificationTemplate(
            organization_id=None,
            event_type="campaign_created",
            subject="Default: {{campaignName}}",
            body_html="<p>default</p>",
            is_default=True,
        ))
        db.commit()

        assert render_notification(db, _event(organization)).subject == "Default: Spring Push"
