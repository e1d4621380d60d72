"""
Tests for email template lookup and rendering
"""
import pytest
from datetime import datetime

from podcastflow.db import EmailTemplate
from podcastflow.exceptions import TemplateNotFoundError
from podcastflow.services.email_templates import (
    BUILTIN_TEMPLATES,
    ResolvedTemplate,
    get_template,
    html_to_text,
    preview_template,
    render_string,
    render_template,
    save_template,
    validate_template,
)


def _stored(key, organization_id=None, subject="Stored subject", is_system_default=False, is_active=True):
    return EmailTemplate(
        key=key,
        organization_id=organization_id,
        name="Stored",
        subject=subject,
        html_content="<p>{{userName}}</p>",
        text_content="{{userName}}",
        category="system",
        is_active=is_active,
        is_system_default=is_system_default,
    )


class TestRenderString:
    def test_placeholders(self):
        assert render_string("Hi {{name}}, {{count}} new", {"name": "Ann", "count": 3}) == "Hi Ann, 3 new"

    def test_missing_variable_renders_empty(self):
        assert render_string("Hi {{name}}!", {}) == "Hi !"

    def test_dotted_path(self):
        data = {"campaign": {"advertiser": {"name": "Coffee Co"}}}
        assert render_string("{{campaign.advertiser.name}}", data) == "Coffee Co"

    def test_escaping(self):
        data = {"name": "<b>Ann</b> & co"}
        assert render_string("{{name}}", data, escape=True) == "&lt;b&gt;Ann&lt;/b&gt; &amp; co"
        assert render_string("{{name}}", data) == "<b>Ann</b> & co"

    def test_triple_braces_never_escaped(self):
        assert render_string("{{{body}}}", {"body": "<p>x</p>"}, escape=True) == "<p>x</p>"

    def test_if_block(self):
        source = "{{#if overdue}}Overdue{{/if}}Invoice"
        assert render_string(source, {"overdue": True}) == "OverdueInvoice"
        assert render_string(source, {"overdue": False}) == "Invoice"

    def test_if_else(self):
        source = "{{#if subject}}{{subject}}{{else}}Default{{/if}}"
        assert render_string(source, {"subject": "Custom"}) == "Custom"
        assert render_string(source, {}) == "Default"

    def test_nested_if(self):
        source = "{{#if a}}A{{#if b}}B{{/if}}{{/if}}"
        assert render_string(source, {"a": 1, "b": 1}) == "AB"
        assert render_string(source, {"a": 1}) == "A"
        assert render_string(source, {"b": 1}) == ""

    def test_none_renders_empty(self):
        assert render_string("[{{empty}}]", {"empty": None}) == "[]"

    def test_each_block(self):
        source = "<ul>{{#each items}}<li>{{this}}</li>{{/each}}</ul>"
        assert render_string(source, {"items": ["a", "b"]}) == "<ul><li>a</li><li>b</li></ul>"
        assert render_string(source, {"items": []}) == "<ul></ul>"

    def test_raw_value_is_not_expanded_again(self):
        data = {"body": "{{supportEmail}}", "supportEmail": "ops@example.com"}
        assert render_string("{{{body}}}", data) == "{{supportEmail}}"
        assert render_string("{{body}}", data) == "{{supportEmail}}"

    def test_text_render_unescaped(self):
        assert render_string("{{name}}", {"name": "A & B"}) == "A & B"

    def test_empty_source(self):
        assert render_string("", {"a": 1}) == ""
        assert render_string(None, {}) == ""


class TestHelpers:
    def test_format_currency(self):
        assert render_string("{{formatCurrency amount}}", {"amount": 1234.5}) == "$1,234.50"
        assert render_string("{{formatCurrency amount}}", {"amount": "-12"}) == "-$12.00"
        assert render_string("{{formatCurrency amount}}", {"amount": "n/a"}) == ""

    def test_format_date(self):
        assert render_string("{{formatDate due}}", {"due": "2026-03-05"}) == "3/5/2026"
        assert render_string("{{formatDate due}}", {"due": datetime(2026, 11, 30, 9, 15)}) == "11/30/2026"
        assert render_string("{{formatDate due}}", {}) == ""

    def test_capitalize(self):
        assert render_string("{{capitalize status}}", {"status": "live"}) == "Live"

    def test_if_equals(self):
        source = '{{#ifEquals status "live"}}On air{{else}}Off air{{/ifEquals}}'
        assert render_string(source, {"status": "live"}) == "On air"
        assert render_string(source, {"status": "draft"}) == "Off air"

    def test_if_equals_compares_numbers_as_text(self):
        source = "{{#ifEquals count target}}match{{/ifEquals}}"
        assert render_string(source, {"count": 3, "target": "3"}) == "match"
        assert render_string(source, {"count": 4, "target": "3"}) == ""

    def test_validate_rejects_unclosed_block(self):
        with pytest.raises(ValueError):
            validate_template("Hi {{#if name}}")
        validate_template("Hi {{#if name}}{{name}}{{/if}}")


class TestGetTemplate:
    def test_builtin_fallback(self, db):
        template = get_template(db, "password-reset")
        assert template.source == "builtin"
        assert template.subject == BUILTIN_TEMPLATES["password-reset"]["subject"]

    def test_system_default_beats_builtin(self, db):
        db.add(_stored("password-reset", subject="System subject", is_system_default=True))
        db.commit()

        template = get_template(db, "password-reset")

        assert template.source == "system"
        assert template.subject == "System subject"

    def test_organization_override_wins(self, db, organization):
        db.add(_stored("password-reset", subject="System subject", is_system_default=True))
        db.add(_stored("password-reset", organization_id=organization.id, subject="Org subject"))
        db.commit()

        assert get_template(db, "password-reset", organization.id).subject == "Org subject"
        assert get_template(db, "password-reset").subject == "System subject"

    def test_inactive_override_ignored(self, db, organization):
        db.add(_stored("password-reset", organization_id=organization.id, is_active=False))
        db.commit()

        assert get_template(db, "password-reset", organization.id).source == "builtin"

    def test_custom_key_without_builtin(self, db, organization):
        db.add(_stored("quarterly-report", organization_id=organization.id))
        db.commit()

        assert get_template(db, "quarterly-report", organization.id).source == "organization"
        with pytest.raises(TemplateNotFoundError):
            get_template(db, "quarterly-report")

    def test_unknown_key(self, db):
        with pytest.raises(TemplateNotFoundError) as exc_info:
            get_template(db, "does-not-exist")
        assert exc_info.value.key == "does-not-exist"


class TestRenderTemplate:
    def test_html_escaped_text_raw(self):
        template = ResolvedTemplate(
            key="custom",
            subject="  Hello {{name}}  ",
            html_content="<p>{{name}}</p>",
            text_content="{{name}}",
        )

        rendered = render_template(template, {"name": "A & B"})

        assert rendered.subject == "Hello A & B"
        assert rendered.html == "<p>A &amp; B</p>"
        assert rendered.text == "A & B"

    def test_platform_variables_added(self):
        template = ResolvedTemplate(
            key="custom",
            subject="{{platformName}}",
            html_content="{{currentYear}}",
            text_content="{{supportEmail}}",
        )

        rendered = render_template(template)

        assert rendered.subject == "PodcastFlow Pro"
        assert rendered.html == str(datetime.utcnow().year)
        assert rendered.text == "support@podcastflow.pro"

    def test_builtin_invitation(self, db):
        template = get_template(db, "user-invitation")

        rendered = render_template(template, {
            "userName": "Ann",
            "organizationName": "Acme",
            "role": "sales",
            "inviteLink": "https://app.test/invite/abc",
        })

        assert "Acme" in rendered.subject
        assert "https://app.test/invite/abc" in rendered.html
        assert "{{" not in rendered.html
        assert "Hi Ann," in rendered.text


class TestSaveTemplate:
    def test_creates_override(self, db, organization):
        template = save_template(
            db,
            organization_id=organization.id,
            key="password-reset",
            subject="Reset now",
            html_content="<p>Reset <b>here</b></p>",
        )

        assert template.id is not None
        assert template.is_system_default is False
        assert template.name == "Password Reset"
        assert template.text_content == "Reset here"
        assert get_template(db, "password-reset", organization.id).subject == "Reset now"

    def test_updates_existing_override(self, db, organization):
        first = save_template(db, organization.id, "password-reset", "One", "<p>1</p>")
        second = save_template(db, organization.id, "password-reset", "Two", "<p>2</p>", text_content="2")

        assert first.id == second.id
        assert db.query(EmailTemplate).count() == 1
        assert second.subject == "Two"

    def test_new_key_gets_generated_name(self, db, organization):
        template = save_template(db, organization.id, "quarterly-report", "Q", "<p>q</p>")
        assert template.name == "Quarterly Report"
        assert template.category == "general"

    def test_invalid_template_not_saved(self, db, organization):
        with pytest.raises(ValueError):
            save_template(db, organization.id, "password-reset", "Reset", "<p>{{#if link}}open</p>")
        assert db.query(EmailTemplate).count() == 0


class TestPreview:
    def test_uses_sample_data(self, db):
        rendered = preview_template(get_template(db, "user-invitation"))
        assert "Acme Podcasts" in rendered.subject

    def test_caller_sample_data(self, db):
        rendered = preview_template(get_template(db, "user-invitation"), {"organizationName": "Beta"})
        assert "Beta" in rendered.subject


class TestHtmlToText:
    def test_strips_tags_and_blank_lines(self):
        assert html_to_text("<h2>Title</h2>\n\n<p>Body &amp; more</p>") == "Title\nBody & more"
