"""
Email API routes: outbound queue, templates and suppression list
"""
import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from .db import get_db
from .db.models import EmailQueue, EmailQueueStatus, SuppressionReason
from .exceptions import TemplateNotFoundError
from .services import email_queue
from .services.email_service import add_suppression, queue_email, remove_suppression
from .services.email_templates import (
    ResolvedTemplate,
    get_template,
    preview_template,
    save_template,
    validate_template,
)
from .tenancy.resolver import TenantContext, get_tenant_context, require_roles, validate_tenant_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/email", tags=["email"])


class QueueEmailRequest(BaseModel):
    recipient: EmailStr
    template_key: str
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(5, ge=1, le=10)
    scheduled_for: Optional[datetime] = None


class QueueEntryResponse(BaseModel):
    id: int
    organization_id: Optional[int] = None
    recipient: str
    template_key: Optional[str] = None
    subject: Optional[str] = None
    priority: int
    status: str
    attempts: int
    scheduled_for: datetime
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    email_log_id: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TemplateUpdate(BaseModel):
    subject: str = Field(..., min_length=1, max_length=500)
    html_content: str = Field(..., min_length=1)
    text_content: Optional[str] = None
    name: Optional[str] = None
    category: Optional[str] = None
    variables: Optional[List[str]] = None
    is_active: bool = True


class TemplatePreviewRequest(BaseModel):
    sample_data: Optional[Dict[str, Any]] = None
    subject: Optional[str] = None
    html_content: Optional[str] = None
    text_content: Optional[str] = None


class SuppressionRequest(BaseModel):
    email: EmailStr
    reason: SuppressionReason = SuppressionReason.MANUAL


# Queue

@router.post("/queue", response_model=QueueEntryResponse, status_code=status.HTTP_201_CREATED)
def enqueue(
    payload: QueueEmailRequest,
    context: TenantContext = Depends(require_roles("admin", "sales", "producer")),
    db: Session = Depends(get_db),
):
    try:
        get_template(db, payload.template_key, context.organization_id)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return queue_email(
        db,
        recipient=payload.recipient,
        template_key=payload.template_key,
        data=payload.data,
        organization_id=context.organization_id,
        priority=payload.priority,
        scheduled_for=payload.scheduled_for,
        user_id=context.user_id,
    )


@router.get("/queue", response_model=List[QueueEntryResponse])
def list_queue(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return email_queue.list_queue(
        db,
        organization_id=context.organization_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )


@router.get("/queue/stats")
def queue_stats(
    scope: str = Query("organization", pattern="^(organization|all)$"),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    if scope == "all" and not context.is_master:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    organization_id = None if scope == "all" else context.organization_id
    return email_queue.get_queue_stats(db, organization_id)


@router.post("/queue/process")
def process_queue_now(
    batch_size: Optional[int] = Query(None, ge=1, le=500),
    context: TenantContext = Depends(require_roles("admin")),
    db: Session = Depends(get_db),
):
    """Run one worker batch immediately instead of waiting for the scheduler"""
    logger.info(f"Manual queue run requested by user {context.user_id}")
    return email_queue.process_queue(db, batch_size=batch_size)


@router.post("/queue/retry-failed")
def retry_failed(context: TenantContext = Depends(require_roles("admin")), db: Session = Depends(get_db)):
    return {"requeued": email_queue.retry_failed(db, context.organization_id)}


@router.post("/queue/{queue_id}/cancel")
def cancel_queued(
    queue_id: int,
    context: TenantContext = Depends(require_roles("admin", "sales", "producer")),
    db: Session = Depends(get_db),
):
    entry = db.get(EmailQueue, queue_id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Queue entry not found")
    validate_tenant_access(context, entry.organization_id)

    if not email_queue.cancel(db, queue_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Only {EmailQueueStatus.PENDING.value} messages can be cancelled",
        )
    return {"success": True, "id": queue_id, "status": EmailQueueStatus.CANCELLED.value}


# Templates

def _template_response(template: ResolvedTemplate) -> Dict[str, Any]:
    return asdict(template)


@router.get("/templates/{key}")
def read_template(key: str, context: TenantContext = Depends(get_tenant_context), db: Session = Depends(get_db)):
    try:
        return _template_response(get_template(db, key, context.organization_id))
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.put("/templates/{key}")
def update_template(
    key: str,
    payload: TemplateUpdate,
    context: TenantContext = Depends(require_roles("admin")),
    db: Session = Depends(get_db),
):
    try:
        template = save_template(db, organization_id=context.organization_id, key=key, **payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _template_response(ResolvedTemplate.from_model(template, "organization"))


@router.post("/templates/{key}/preview")
def preview(
    key: str,
    payload: TemplatePreviewRequest,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Render the stored template, or unsaved content when supplied"""
    if payload.subject is not None and payload.html_content is not None:
        try:
            for source in (payload.subject, payload.html_content, payload.text_content):
                validate_template(source)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        template = ResolvedTemplate(
            key=key,
            subject=payload.subject,
            html_content=payload.html_content,
            text_content=payload.text_content or "",
            source="draft",
        )
    else:
        try:
            template = get_template(db, key, context.organization_id)
        except TemplateNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return asdict(preview_template(template, payload.sample_data))


# Suppression list

@router.post("/suppressions", status_code=status.HTTP_201_CREATED)
def suppress(
    payload: SuppressionRequest,
    context: TenantContext = Depends(require_roles("admin")),
    db: Session = Depends(get_db),
):
    suppression = add_suppression(db, payload.email, payload.reason.value, source=f"user:{context.user_id}")
    return {"email": suppression.email, "reason": suppression.reason}


@router.delete("/suppressions")
def unsuppress(
    email: str = Query(..., min_length=3),
    context: TenantContext = Depends(require_roles("admin")),
    db: Session = Depends(get_db),
):
    if not remove_suppression(db, email):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Address is not suppressed")
    return {"success": True}
