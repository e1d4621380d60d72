"""
Tenant resolver: maps an authenticated session to its organization and schema
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..auth import get_auth_token, validate_session
from ..db import get_db
from ..db.models import Organization, UserRole
from ..exceptions import InvalidTenantError, TenantAccessDenied
from ..logging_config import set_current_tenant
from .schema import get_schema_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    user_id: int
    organization_id: int
    organization_slug: str
    schema_name: str
    role: str
    is_master: bool

    def has_role(self, *roles: str) -> bool:
        return self.is_master or self.role in roles


def resolve_tenant(db: Session, token: Optional[str]) -> Optional[TenantContext]:
    """
    Resolve a session token to a tenant context

    Args:
        db: Database session for the public schema
        token: Raw session token from cookie or bearer header

    Returns:
        TenantContext, or None when the session, user or organization is
        missing or inactive
    """
    user = validate_session(db, token) if token else None
    if user is None:
        return None
    if not user.is_active:
        logger.info(f"Inactive user {user.id} attempted tenant access")
        return None
    if user.organization_id is None:
        logger.warning(f"User {user.id} has no organization")
        return None

    organization = db.query(Organization).filter(Organization.id == user.organization_id).first()
    if organization is None or not organization.is_active:
        logger.warning(f"Organization {user.organization_id} for user {user.id} is missing or inactive")
        return None

    try:
        schema_name = get_schema_name(organization.slug)
    except InvalidTenantError as e:
        logger.error(f"Organization {organization.id} has an unusable slug: {e}")
        return None

    return TenantContext(
        user_id=user.id,
        organization_id=organization.id,
        organization_slug=organization.slug,
        schema_name=schema_name,
        role=user.role,
        is_master=user.role == UserRole.MASTER.value,
    )


async def get_tenant_context(
    token: Optional[str] = Depends(get_auth_token),
    db: Session = Depends(get_db),
) -> TenantContext:
    """
    FastAPI dependency: 401 unless the caller resolves to a tenant

    Async so the tenant set for logging lives in the request context that
    sync route handlers copy into the threadpool.
    """
    context = await run_in_threadpool(resolve_tenant, db, token)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    set_current_tenant(context.organization_slug)
    return context


def validate_tenant_access(context: TenantContext, target_organization_id: int) -> bool:
    """
    Check that a caller may act on another organization's data

    Masters may reach any tenant; the access is logged. Everyone else is
    limited to their own organization.

    Raises:
        TenantAccessDenied: non-master caller targeting a different organization
    """
    if context.organization_id == target_organization_id:
        return True

    if context.is_master:
        logger.info(
            f"Master user {context.user_id} accessing organization {target_organization_id} "
            f"from {context.organization_id}"
        )
        return True

    logger.warning(
        f"Denied cross-tenant access: user {context.user_id} (org {context.organization_id}) "
        f"-> org {target_organization_id}"
    )
    raise TenantAccessDenied(context.user_id, target_organization_id)


def require_roles(*roles: str):
    """Dependency factory restricting a route to the given roles (masters always pass)"""

    def dependency(context: TenantContext = Depends(get_tenant_context)) -> TenantContext:
        if not context.has_role(*roles):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return context

    return dependency
