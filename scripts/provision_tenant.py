#!/usr/bin/env python
"""
Provision a tenant organization
Creates the organizations row (if missing) and its org_<slug> schema with tenant tables

Usage:
    python scripts/provision_tenant.py --slug acme --name "Acme Media" [--dry-run]
"""
import sys
import logging
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from podcastflow.db import Organization
from podcastflow.db.engine import SessionLocal
from podcastflow.exceptions import InvalidTenantError
from podcastflow.tenancy import create_organization_schema
from podcastflow.tenancy.schema import ensure_schema_available, schema_table_count

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def provision(slug: str, name: str, dry_run: bool = False) -> dict:
    """
    Ensure the organization exists and its schema is provisioned

    Returns:
        Dictionary with organization id, schema name and table count

    Raises:
        InvalidTenantError: invalid slug, or its schema name belongs to another organization
    """
    schema_name = ensure_schema_available(slug)

    db = SessionLocal()
    try:
        organization = db.query(Organization).filter(Organization.slug == slug).first()
        if organization is None:
            if dry_run:
                logger.info(f"[DRY RUN] Would create organization '{name}' ({slug})")
            else:
                organization = Organization(slug=slug, name=name, is_active=True, settings={})
                db.add(organization)
                db.commit()
                db.refresh(organization)
                logger.info(f"Created organization {organization.id} ({slug})")
        else:
            logger.info(f"Organization {organization.id} ({slug}) already exists")

        if dry_run:
            logger.info(f"[DRY RUN] Would create schema {schema_name}")
            return {"organization_id": organization.id if organization else None, "schema": schema_name, "tables": 0}

        create_organization_schema(slug)
        tables = schema_table_count(slug)
        logger.info(f"Schema {schema_name} has {tables} tables")
        return {"organization_id": organization.id, "schema": schema_name, "tables": tables}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Provision a tenant organization schema")
    parser.add_argument('--slug', required=True, help='Organization slug (lowercase, digits, - and _)')
    parser.add_argument('--name', help='Organization display name (defaults to the slug)')
    parser.add_argument('--dry-run', action='store_true', help='Report only, make no changes')
    args = parser.parse_args()

    try:
        result = provision(args.slug, args.name or args.slug, dry_run=args.dry_run)
    except InvalidTenantError as e:
        logger.error(str(e))
        sys.exit(2)
    except Exception as e:
        logger.error(f"Provisioning failed: {e}", exc_info=True)
        sys.exit(1)

    logger.info("=" * 60)
    logger.info(f"Organization: {result['organization_id']}")
    logger.info(f"Schema: {result['schema']}")
    logger.info(f"Tables: {result['tables']}")
    logger.info("=" * 60)


if __name__ == "__main__":
    main()
