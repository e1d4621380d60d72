"""
Tenant-scoped tables

These tables carry no schema of their own: they are created inside each
org_<slug> schema and resolved through the connection's search_path.
"""
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

tenant_metadata = MetaData()


advertisers = Table(
    "advertisers",
    tenant_metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String, nullable=False),
    Column("industry", String, nullable=True),
    Column("contact_email", String, nullable=True),
    Column("contact_phone", String, nullable=True),
    Column("agency_id", String(64), ForeignKey("agencies.id", ondelete="SET NULL"), nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_by", String, nullable=True),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("updated_at", DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
)

agencies = Table(
    "agencies",
    tenant_metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String, nullable=False),
    Column("contact_email", String, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("updated_at", DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
)

campaigns = Table(
    "campaigns",
    tenant_metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String, nullable=False),
    Column("advertiser_id", String(64), ForeignKey("advertisers.id"), nullable=False, index=True),
    Column("agency_id", String(64), ForeignKey("agencies.id", ondelete="SET NULL"), nullable=True),
    Column("start_date", DateTime, nullable=False),
    Column("end_date", DateTime, nullable=False),
    Column("budget", Float, nullable=True),
    Column("spent", Float, nullable=False, default=0),
    Column("impressions", Integer, nullable=False, default=0),
    Column("target_impressions", Integer, nullable=False, default=0),
    Column("probability", Integer, nullable=False, default=10),
    Column("status", String(32), nullable=False, default="draft", index=True),
    Column("created_by", String, nullable=True),
    Column("updated_by", String, nullable=True),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("updated_at", DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
)

shows = Table(
    "shows",
    tenant_metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String, nullable=False),
    Column("description", Text, nullable=True),
    Column("host", String, nullable=True),
    Column("category", String, nullable=True),
    Column("release_frequency", String, nullable=True),
    Column("revenue_sharing_type", String, nullable=True),
    Column("revenue_sharing_percentage", Float, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_by", String, nullable=True),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("updated_at", DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
)

episodes = Table(
    "episodes",
    tenant_metadata,
    Column("id", String(64), primary_key=True),
    Column("show_id", String(64), ForeignKey("shows.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("title", String, nullable=False),
    Column("episode_number", Integer, nullable=True),
    Column("air_date", DateTime, nullable=True),
    Column("duration_seconds", Integer, nullable=True),
    Column("status", String(32), nullable=False, default="draft"),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("updated_at", DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
)

orders = Table(
    "orders",
    tenant_metadata,
    Column("id", String(64), primary_key=True),
    Column("order_number", String(64), nullable=False, unique=True),
    Column("campaign_id", String(64), ForeignKey("campaigns.id"), nullable=False, index=True),
    Column("show_id", String(64), ForeignKey("shows.id"), nullable=True, index=True),
    Column("advertiser_id", String(64), ForeignKey("advertisers.id"), nullable=False),
    Column("total_amount", Float, nullable=False, default=0),
    Column("status", String(32), nullable=False, default="draft"),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("updated_at", DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
)
