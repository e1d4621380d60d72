"""
Notification API routes: dispatch events, inspect deliveries, manage email settings
"""
import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .db import get_db
from .db.models import NotificationDelivery, Organization, UserRole
from .exceptions import TenantError
from .services.notification_dispatcher import (
    DEFAULT_RECIPIENT_MATRIX,
    NotificationEvent,
    dispatch,
)
from .tenancy.resolver import TenantContext, get_tenant_context, require_roles, validate_tenant_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

ASSIGNABLE_ROLES = {r.value for r in UserRole} - {UserRole.MASTER.value}


class DispatchRequest(BaseModel):
    event_type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    recipient_overrides: Optional[List[str]] = None
    priority: int = Field(5, ge=1, le=10)
    organization_id: Optional[int] = None


class EmailSettingsUpdate(BaseModel):
    reply_to: Optional[str] = None
    email_footer: Optional[str] = None
    from_name: Optional[str] = None
    recipient_matrix: Optional[Dict[str, List[str]]] = None


class DeliveryResponse(BaseModel):
    id: int
    event_type: str
    recipient_email: str
    status: str
    attempts: int
    last_error: Optional[str] = None
    queue_id: Optional[int] = None
    created_at: Any
    sent_at: Any = None

    model_config = {"from_attributes": True}


@router.post("/dispatch")
def dispatch_event(
    payload: DispatchRequest,
    context: TenantContext = Depends(require_roles("admin")),
    db: Session = Depends(get_db),
):
    organization_id = payload.organization_id or context.organization_id
    validate_tenant_access(context, organization_id)

    event = NotificationEvent(
        type=payload.event_type,
        organization_id=organization_id,
        data=payload.data,
        recipient_overrides=payload.recipient_overrides,
        priority=payload.priority,
    )
    try:
        result = dispatch(db, event)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TenantError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return asdict(result)


@router.get("/deliveries", response_model=List[DeliveryResponse])
def list_deliveries(
    status_filter: Optional[str] = Query(None, alias="status"),
    event_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    query = db.query(NotificationDelivery).filter(
        NotificationDelivery.organization_id == context.organization_id
    )
    if status_filter:
        query = query.filter(NotificationDelivery.status == status_filter)
    if event_type:
        query = query.filter(NotificationDelivery.event_type == event_type)
    return query.order_by(NotificationDelivery.id.desc()).offset(offset).limit(limit).all()


def _settings_response(organization: Organization) -> Dict[str, Any]:
    email_settings = organization.email_settings
    overrides = email_settings.get("recipient_matrix") or {}
    return {
        "reply_to": email_settings.get("reply_to"),
        "email_footer": email_settings.get("email_footer"),
        "from_name": email_settings.get("from_name"),
        "recipient_matrix": {**DEFAULT_RECIPIENT_MATRIX, **overrides},
        "overridden_events": sorted(overrides),
    }


@router.get("/settings")
def get_settings(context: TenantContext = Depends(get_tenant_context), db: Session = Depends(get_db)):
    organization = db.get(Organization, context.organization_id)
    return _settings_response(organization)


@router.put("/settings")
def update_settings(
    payload: EmailSettingsUpdate,
    context: TenantContext = Depends(require_roles("admin")),
    db: Session = Depends(get_db),
):
    if payload.recipient_matrix is not None:
        for event_type, roles in payload.recipient_matrix.items():
            if event_type not in DEFAULT_RECIPIENT_MATRIX:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown event type: {event_type}")
            invalid = set(roles) - ASSIGNABLE_ROLES
            if invalid:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Invalid roles for {event_type}: {', '.join(sorted(invalid))}",
                )

    organization = db.get(Organization, context.organization_id)
    settings = dict(organization.settings or {})
    email_settings = dict(settings.get("email_settings") or {})
    email_settings.update(payload.model_dump(exclude_unset=True))
    settings["email_settings"] = email_settings

    # Reassign so the JSON column change is tracked
    organization.settings = settings
    db.commit()
    db.refresh(organization)

    logger.info(f"Updated email settings for organization {organization.id}")
    return _settings_response(organization)
