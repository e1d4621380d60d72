"""
Email template lookup and rendering

Lookup order for a template key: the organization's active override, then
the active system default, then the built-in template shipped with the
service. Templates are Handlebars: {{variable}} (dotted paths allowed),
{{{variable}}} for unescaped HTML, {{#if}}/{{else}}, {{#each}} and the
formatDate, formatCurrency, capitalize and ifEquals helpers.
"""
import html
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pybars import Compiler, PybarsError
from sqlalchemy.orm import Session

from ..config import config
from ..db.models import EmailTemplate
from ..exceptions import TemplateNotFoundError

logger = logging.getLogger(__name__)

TAG = re.compile(r"<[^>]+>")


@dataclass
class ResolvedTemplate:
    """A template from any source, detached from the session"""
    key: str
    subject: str
    html_content: str
    text_content: str
    variables: List[str] = field(default_factory=list)
    name: Optional[str] = None
    category: str = "system"
    source: str = "builtin"  # 'organization', 'system' or 'builtin'
    id: Optional[int] = None
    organization_id: Optional[int] = None

    @classmethod
    def from_model(cls, template: EmailTemplate, source: str) -> "ResolvedTemplate":
        return cls(
            key=template.key,
            subject=template.subject,
            html_content=template.html_content,
            text_content=template.text_content,
            variables=list(template.variables or []),
            name=template.name,
            category=template.category,
            source=source,
            id=template.id,
            organization_id=template.organization_id,
        )


@dataclass
class RenderedTemplate:
    subject: str
    html: str
    text: str


def _layout(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .button {{ display: inline-block; padding: 10px 20px; background-color: #1976d2; color: white; text-decoration: none; border-radius: 4px; }}
        .footer {{ margin-top: 40px; font-size: 12px; color: #666; }}
    </style>
</head>
<body>
    <div class="container">
        <h2>{title}</h2>
        {body}
        <div class="footer">
            <p>&copy; {{{{currentYear}}}} {{{{platformName}}}} &middot; {{{{supportEmail}}}}</p>
        </div>
    </div>
</body>
</html>"""


BUILTIN_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "user-invitation": {
        "name": "User Invitation",
        "category": "system",
        "subject": "You've been invited to join {{organizationName}} on PodcastFlow Pro",
        "html_content": _layout(
            "Welcome to PodcastFlow Pro!",
            """<p>Hi {{userName}},</p>
        <p>You've been invited to join <strong>{{organizationName}}</strong> as {{role}}.</p>
        <p><a href="{{inviteLink}}" class="button">Accept Invitation</a></p>
        <p>This invitation will expire in 7 days.</p>""",
        ),
        "text_content": (
            "Hi {{userName}},\n\n"
            "You've been invited to join {{organizationName}} on PodcastFlow Pro as {{role}}.\n\n"
            "Accept the invitation: {{inviteLink}}\n\n"
            "This invitation will expire in 7 days.\n"
        ),
        "variables": ["userName", "organizationName", "role", "inviteLink"],
    },
    "password-reset": {
        "name": "Password Reset",
        "category": "system",
        "subject": "Reset your PodcastFlow Pro password",
        "html_content": _layout(
            "Reset your password",
            """<p>Hi {{userName}},</p>
        <p>We received a request to reset your password.</p>
        <p><a href="{{resetLink}}" class="button">Reset Password</a></p>
        <p>If you didn't request this, you can ignore this email.</p>""",
        ),
        "text_content": (
            "Hi {{userName}},\n\n"
            "We received a request to reset your password.\n"
            "Reset it here: {{resetLink}}\n\n"
            "If you didn't request this, you can ignore this email.\n"
        ),
        "variables": ["userName", "resetLink"],
    },
    "task-assignment": {
        "name": "Task Assignment",
        "category": "notification",
        "subject": "New task assigned: {{taskTitle}}",
        "html_content": _layout(
            "New Task Assignment",
            """<p>Hi {{assigneeName}},</p>
        <p>You have been assigned <strong>{{taskTitle}}</strong>.</p>
        <p><strong>Due Date:</strong> {{dueDate}}<br><strong>Priority:</strong> {{priority}}</p>
        {{#if description}}<p>{{description}}</p>{{/if}}
        <p><a href="{{taskLink}}" class="button">View Task</a></p>""",
        ),
        "text_content": (
            "Hi {{assigneeName}},\n\n"
            "Task: {{taskTitle}}\nDue Date: {{dueDate}}\nPriority: {{priority}}\n"
            "{{#if description}}Description: {{description}}\n{{/if}}"
            "\nView task: {{taskLink}}\n"
        ),
        "variables": ["assigneeName", "taskTitle", "dueDate", "priority", "description", "taskLink"],
    },
    "campaign-status-update": {
        "name": "Campaign Status Update",
        "category": "notification",
        "subject": "Campaign {{campaignName}} is now {{newStatus}}",
        "html_content": _layout(
            "Campaign Status Update",
            """<p>Hi {{userName}},</p>
        <p>Campaign <strong>{{campaignName}}</strong> moved from {{previousStatus}} to <strong>{{newStatus}}</strong>.</p>
        {{#if updatedBy}}<p>Updated by {{updatedBy}}</p>{{/if}}
        <p><a href="{{campaignLink}}" class="button">View Campaign</a></p>""",
        ),
        "text_content": (
            "Hi {{userName}},\n\n"
            "Campaign {{campaignName}} moved from {{previousStatus}} to {{newStatus}}.\n"
            "{{#if updatedBy}}Updated by {{updatedBy}}\n{{/if}}"
            "\nView campaign: {{campaignLink}}\n"
        ),
        "variables": ["userName", "campaignName", "previousStatus", "newStatus", "updatedBy", "campaignLink"],
    },
    "payment-reminder": {
        "name": "Payment Reminder",
        "category": "billing",
        "subject": "{{#if isOverdue}}Overdue{{else}}Upcoming{{/if}} Payment Reminder - Invoice #{{invoiceNumber}}",
        "html_content": _layout(
            "Payment Reminder",
            """<p>Hi {{clientName}},</p>
        <p>Invoice <strong>#{{invoiceNumber}}</strong> for {{amountDue}} is
        {{#if isOverdue}}{{daysOverdue}} days overdue{{else}}due on {{dueDate}}{{/if}}.</p>
        <p><a href="{{paymentLink}}" class="button">Pay Now</a></p>""",
        ),
        "text_content": (
            "Hi {{clientName}},\n\n"
            "Invoice #{{invoiceNumber}} for {{amountDue}} is "
            "{{#if isOverdue}}{{daysOverdue}} days overdue{{else}}due on {{dueDate}}{{/if}}.\n\n"
            "Pay now: {{paymentLink}}\n"
        ),
        "variables": ["clientName", "invoiceNumber", "amountDue", "dueDate", "isOverdue", "daysOverdue", "paymentLink"],
    },
    "approval-request": {
        "name": "Approval Request",
        "category": "notification",
        "subject": "Approval needed: {{approvalType}}",
        "html_content": _layout(
            "Approval Needed",
            """<p>Hi {{approverName}},</p>
        <p>{{requesterName}} requested your approval for <strong>{{itemTitle}}</strong>.</p>
        {{#if deadline}}<p>Please respond by {{deadline}}.</p>{{/if}}
        <p><a href="{{detailsLink}}" class="button">Review</a></p>""",
        ),
        "text_content": (
            "Hi {{approverName}},\n\n"
            "{{requesterName}} requested your approval for {{itemTitle}}.\n"
            "{{#if deadline}}Please respond by {{deadline}}.\n{{/if}}"
            "\nReview: {{detailsLink}}\n"
        ),
        "variables": ["approverName", "requesterName", "approvalType", "itemTitle", "deadline", "detailsLink"],
    },
    "notification": {
        "name": "Notification",
        "category": "general",
        "subject": "{{#if subject}}{{subject}}{{else}}Notification from PodcastFlow Pro{{/if}}",
        "html_content": _layout("Notification", "<p>{{content}}</p>"),
        "text_content": "{{content}}\n",
        "variables": ["subject", "content"],
    },
}

SAMPLE_DATA: Dict[str, Dict[str, Any]] = {
    "user-invitation": {
        "userName": "John Doe",
        "organizationName": "Acme Podcasts",
        "role": "sales",
        "inviteLink": "https://app.podcastflow.pro/invite/sample-token",
    },
    "task-assignment": {
        "assigneeName": "Jane Smith",
        "taskTitle": "Review Q3 Campaign Performance",
        "dueDate": "2025-09-30",
        "priority": "High",
        "description": "Please review the Q3 campaign metrics and prepare a summary report.",
        "taskLink": "https://app.podcastflow.pro/tasks/123",
    },
}


def builtin_template(key: str) -> Optional[ResolvedTemplate]:
    definition = BUILTIN_TEMPLATES.get(key)
    if definition is None:
        return None
    return ResolvedTemplate(key=key, source="builtin", **definition)


def get_template(db: Session, key: str, organization_id: Optional[int] = None) -> ResolvedTemplate:
    """
    Find the template to use for a key

    Args:
        db: Database session
        key: Template key (e.g. "user-invitation")
        organization_id: Organization whose override takes precedence

    Returns:
        ResolvedTemplate with source 'organization', 'system' or 'builtin'

    Raises:
        TemplateNotFoundError: no template exists for the key anywhere
    """
    if organization_id is not None:
        org_template = db.query(EmailTemplate).filter(
            EmailTemplate.key == key,
            EmailTemplate.organization_id == organization_id,
            EmailTemplate.is_active.is_(True),
        ).first()
        if org_template:
            return ResolvedTemplate.from_model(org_template, "organization")

    system_template = db.query(EmailTemplate).filter(
        EmailTemplate.key == key,
        EmailTemplate.organization_id.is_(None),
        EmailTemplate.is_system_default.is_(True),
        EmailTemplate.is_active.is_(True),
    ).first()
    if system_template:
        return ResolvedTemplate.from_model(system_template, "system")

    template = builtin_template(key)
    if template is None:
        raise TemplateNotFoundError(key)
    return template


def _format_date(this, value, *args):
    if not value:
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if isinstance(value, (datetime, date)):
        return f"{value.month}/{value.day}/{value.year}"
    return str(value)


def _format_currency(this, amount, *args):
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return ""
    formatted = f"${abs(value):,.2f}"
    return f"-{formatted}" if value < 0 else formatted


def _capitalize(this, value, *args):
    text = "" if value is None else str(value)
    return text[:1].upper() + text[1:]


def _if_equals(this, options, left, right):
    if left == right or (left is not None and right is not None and str(left) == str(right)):
        return options["fn"](this)
    return options["inverse"](this)


HELPERS = {
    "formatDate": _format_date,
    "formatCurrency": _format_currency,
    "capitalize": _capitalize,
    "ifEquals": _if_equals,
}

_compiler = Compiler()
_compiler_lock = threading.Lock()


@lru_cache(maxsize=512)
def compile_template(source: str):
    """
    Compile Handlebars source (cached per source string)

    Raises:
        PybarsError: the source is not a valid template
    """
    with _compiler_lock:
        return _compiler.compile(source)


def render_string(source: str, data: Dict[str, Any], escape: bool = False) -> str:
    """
    Render one Handlebars template string

    Args:
        source: Template text ({{var}}, {{{raw}}}, {{#if}}, {{#each}}, helpers)
        data: Variables; missing ones render as empty strings
        escape: Keep HTML escaping of {{variable}} output; plain-text
            renders (subjects, text bodies) come back unescaped
    """
    if not source:
        return ""

    rendered = str(compile_template(source)(data, helpers=HELPERS))
    return rendered if escape else html.unescape(rendered)


def validate_template(source: str) -> None:
    """Raise ValueError when the source does not compile"""
    if not source:
        return
    try:
        compile_template(source)
    except PybarsError as e:
        raise ValueError(f"Invalid template: {e}") from e


def common_template_data() -> Dict[str, Any]:
    return {
        "currentYear": datetime.utcnow().year,
        "platformName": config.PLATFORM_NAME,
        "supportEmail": config.SUPPORT_EMAIL,
    }


def render_template(template: ResolvedTemplate, data: Optional[Dict[str, Any]] = None) -> RenderedTemplate:
    """Render subject, HTML and text with the platform variables added"""
    render_data = {**(data or {}), **common_template_data()}
    return RenderedTemplate(
        subject=render_string(template.subject, render_data).strip(),
        html=render_string(template.html_content, render_data, escape=True),
        text=render_string(template.text_content, render_data),
    )


def html_to_text(body: str) -> str:
    """Crude plain-text fallback: strip tags and collapse blank runs"""
    text = TAG.sub("", body or "")
    text = html.unescape(text)
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def save_template(
    db: Session,
    organization_id: int,
    key: str,
    subject: str,
    html_content: str,
    text_content: Optional[str] = None,
    name: Optional[str] = None,
    category: Optional[str] = None,
    variables: Optional[List[str]] = None,
    is_active: bool = True,
) -> EmailTemplate:
    """
    Create or update an organization's override for a template key

    Raises:
        ValueError: subject, HTML or text is not a valid template
    """
    for source in (subject, html_content, text_content):
        validate_template(source)

    template = db.query(EmailTemplate).filter(
        EmailTemplate.key == key,
        EmailTemplate.organization_id == organization_id,
    ).first()

    fallback = builtin_template(key)
    values = {
        "name": name or (fallback.name if fallback else key.replace("-", " ").title()),
        "subject": subject,
        "html_content": html_content,
        "text_content": text_content if text_content is not None else html_to_text(html_content),
        "category": category or (fallback.category if fallback else "general"),
        "variables": variables if variables is not None else (fallback.variables if fallback else []),
        "is_active": is_active,
    }

    if template is None:
        template = EmailTemplate(
            key=key,
            organization_id=organization_id,
            is_system_default=False,
            **values,
        )
        db.add(template)
        logger.info(f"Created template override {key} for organization {organization_id}")
    else:
        for attr, value in values.items():
            setattr(template, attr, value)
        logger.info(f"Updated template override {key} for organization {organization_id}")

    db.commit()
    db.refresh(template)
    return template


def preview_template(template: ResolvedTemplate, sample_data: Optional[Dict[str, Any]] = None) -> RenderedTemplate:
    """Render with caller-supplied or canned sample data"""
    data = sample_data if sample_data is not None else SAMPLE_DATA.get(template.key, {
        "content": "This is a sample notification message.",
        "userName": "Sample User",
    })
    return render_template(template, data)
