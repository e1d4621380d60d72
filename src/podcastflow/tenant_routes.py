"""
Tenant-scoped API routes: campaigns, shows, advertisers
All data is read from and written to the caller's organization schema
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .config import config
from .db import get_db
from .db.models import User
from .exceptions import ShowHasOrdersError, TenantError
from .services.notification_dispatcher import NotificationEvent, NotificationEventType, dispatch
from .tenancy import models
from .tenancy.resolver import TenantContext, get_tenant_context, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["tenant"])


class CampaignCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    advertiser_id: str
    agency_id: Optional[str] = None
    start_date: datetime
    end_date: datetime
    budget: Optional[float] = Field(None, ge=0)
    target_impressions: int = Field(0, ge=0)
    status: str = "draft"


class ShowCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    host: Optional[str] = None
    category: Optional[str] = None
    release_frequency: Optional[str] = None


class AdvertiserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    industry: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    agency_id: Optional[str] = None


def _notify(db: Session, event: NotificationEvent) -> None:
    """Notifications never fail the request that triggered them"""
    try:
        dispatch(db, event)
    except (ValueError, TenantError) as e:
        logger.warning(f"Notification {event.type} not dispatched: {e}")
    except Exception as e:
        db.rollback()
        logger.error(f"Notification {event.type} dispatch failed: {e}", exc_info=True)


# Campaigns

@router.get("/campaigns")
def list_campaigns(
    status_filter: Optional[str] = Query(None, alias="status"),
    advertiser_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    context: TenantContext = Depends(get_tenant_context),
):
    where = {}
    if status_filter:
        where["status"] = {"in": status_filter.split(",")} if "," in status_filter else status_filter
    if advertiser_id:
        where["advertiser_id"] = advertiser_id

    rows = models.campaigns.find_many(
        context.organization_slug,
        where=where,
        order_by={"created_at": "desc"},
        limit=limit,
        offset=offset,
    )
    total = models.campaigns.count(context.organization_slug, where)
    return {"campaigns": rows, "total": total}


@router.get("/campaigns/{campaign_id}")
def get_campaign(campaign_id: str, context: TenantContext = Depends(get_tenant_context)):
    campaign = models.campaigns.find_unique(context.organization_slug, campaign_id)
    if campaign is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    return campaign


@router.post("/campaigns", status_code=status.HTTP_201_CREATED)
def create_campaign(
    payload: CampaignCreate,
    context: TenantContext = Depends(require_roles("admin", "sales")),
    db: Session = Depends(get_db),
):
    if payload.end_date < payload.start_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end_date must be after start_date")
    if models.advertisers.find_unique(context.organization_slug, payload.advertiser_id) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Advertiser not found")

    campaign = models.campaigns.create(
        context.organization_slug,
        {**payload.model_dump(), "created_by": str(context.user_id)},
    )

    creator = db.get(User, context.user_id)
    _notify(db, NotificationEvent(
        type=NotificationEventType.CAMPAIGN_CREATED.value,
        organization_id=context.organization_id,
        data={
            "campaignId": campaign["id"],
            "campaignName": campaign["name"],
            "createdBy": creator.name or creator.email,
            "status": campaign["status"],
            "viewUrl": f"{config.APP_BASE_URL}/campaigns/{campaign['id']}",
        },
    ))
    return campaign


# Shows

@router.get("/shows")
def list_shows(
    include_inactive: bool = False,
    context: TenantContext = Depends(get_tenant_context),
):
    where = {} if include_inactive else {"is_active": True}
    rows = models.shows.find_many(context.organization_slug, where=where, order_by={"name": "asc"})
    return {"shows": rows}


@router.post("/shows", status_code=status.HTTP_201_CREATED)
def create_show(
    payload: ShowCreate,
    context: TenantContext = Depends(require_roles("admin", "producer")),
):
    return models.shows.create(
        context.organization_slug,
        {**payload.model_dump(), "created_by": str(context.user_id)},
    )


@router.delete("/shows/{show_id}")
def delete_show(show_id: str, context: TenantContext = Depends(require_roles("admin"))):
    try:
        deleted = models.shows.delete(context.organization_slug, show_id)
    except ShowHasOrdersError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "SHOW_HAS_ORDERS", "message": str(e), "order_count": e.order_count},
        )
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Show not found")
    return {"success": True}


# Advertisers

@router.get("/advertisers")
def list_advertisers(context: TenantContext = Depends(get_tenant_context)):
    rows = models.advertisers.find_many(
        context.organization_slug,
        where={"is_active": True},
        order_by={"name": "asc"},
    )
    return {"advertisers": rows}


@router.post("/advertisers", status_code=status.HTTP_201_CREATED)
def create_advertiser(
    payload: AdvertiserCreate,
    context: TenantContext = Depends(require_roles("admin", "sales")),
):
    return models.advertisers.create(
        context.organization_slug,
        {**payload.model_dump(), "created_by": str(context.user_id)},
    )
