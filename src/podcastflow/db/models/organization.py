"""
Organization (tenant) model
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime

from ..base import Base, JSONType


class Organization(Base):
    """
    Tenant organization

    Each organization owns a PostgreSQL schema named org_<slug> holding its
    campaigns, shows, episodes and orders.
    """
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    # {"email_settings": {"reply_to", "email_footer", "from_name", "recipient_matrix"}}
    settings = Column(JSONType, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    users = relationship("User", back_populates="organization")

    @property
    def email_settings(self) -> dict:
        return (self.settings or {}).get("email_settings") or {}

    def __repr__(self):
        return f"<Organization(id={self.id}, slug={self.slug})>"
