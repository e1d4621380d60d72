#!/usr/bin/env python
"""
Seed platform email and notification templates
Inserts the built-in email templates as system defaults and the built-in
notification subjects/bodies as default notification templates. Existing rows
are left untouched.

Usage:
    python scripts/seed_email_templates.py [--dry-run]
"""
import sys
import logging
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from podcastflow.db import EmailTemplate, NotificationTemplate
from podcastflow.db.engine import SessionLocal, get_engine
from podcastflow.services.email_templates import BUILTIN_TEMPLATES
from podcastflow.services.notification_dispatcher import DEFAULT_TEMPLATES

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def seed_templates(dry_run: bool = False) -> dict:
    stats = {"email_created": 0, "email_skipped": 0, "notification_created": 0, "notification_skipped": 0}

    get_engine()
    db = SessionLocal()
    try:
        for key, template in BUILTIN_TEMPLATES.items():
            exists = db.query(EmailTemplate).filter(
                EmailTemplate.key == key,
                EmailTemplate.organization_id.is_(None),
            ).first()
            if exists:
                stats["email_skipped"] += 1
                continue

            logger.info(f"{'[DRY RUN] Would create' if dry_run else 'Creating'} email template {key}")
            stats["email_created"] += 1
            if not dry_run:
                db.add(EmailTemplate(
                    key=key,
                    organization_id=None,
                    name=template["name"],
                    subject=template["subject"],
                    html_content=template["html_content"],
                    text_content=template["text_content"],
                    variables=template.get("variables"),
                    category=template.get("category", "system"),
                    is_active=True,
                    is_system_default=True,
                ))

        for event_type, (subject, body_html) in DEFAULT_TEMPLATES.items():
            exists = db.query(NotificationTemplate).filter(
                NotificationTemplate.event_type == event_type,
                NotificationTemplate.organization_id.is_(None),
                NotificationTemplate.channel == "email",
            ).first()
            if exists:
                stats["notification_skipped"] += 1
                continue

            logger.info(f"{'[DRY RUN] Would create' if dry_run else 'Creating'} notification template {event_type}")
            stats["notification_created"] += 1
            if not dry_run:
                db.add(NotificationTemplate(
                    organization_id=None,
                    event_type=event_type,
                    channel="email",
                    subject=subject,
                    body_html=body_html,
                    is_default=True,
                    is_active=True,
                ))

        if not dry_run:
            db.commit()
        return stats
    except Exception as e:
        logger.error(f"Error seeding templates: {e}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Seed platform email and notification templates")
    parser.add_argument('--dry-run', action='store_true', help='Report only, make no changes')
    args = parser.parse_args()

    stats = seed_templates(dry_run=args.dry_run)

    logger.info("=" * 60)
    logger.info(f"Mode: {'DRY RUN' if args.dry_run else 'LIVE'}")
    logger.info(f"Email templates created: {stats['email_created']} (skipped {stats['email_skipped']})")
    logger.info(
        f"Notification templates created: {stats['notification_created']} "
        f"(skipped {stats['notification_skipped']})"
    )
    logger.info("=" * 60)


if __name__ == "__main__":
    main()
