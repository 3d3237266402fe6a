"""
Organization model - the top-level tenant.
"""

import uuid
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base
from ..config import settings


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    currency = Column(String(3), nullable=False, default=lambda: settings.DEFAULT_CURRENCY)
    market = Column(String(50), nullable=False, default=lambda: settings.DEFAULT_MARKET)

    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    owner = relationship("User", foreign_keys=[owner_id])
    workspaces = relationship(
        "Workspace", back_populates="organization", order_by="Workspace.id"
    )
    members = relationship(
        "OrganizationUser",
        back_populates="organization",
        cascade="all, delete-orphan",
    )
    plan_associations = relationship(
        "OrganizationPlan",
        back_populates="organization",
        order_by="OrganizationPlan.id",
    )
    overrides = relationship(
        "OrganizationFeatureOverride",
        back_populates="organization",
        cascade="all, delete-orphan",
    )

    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def is_owned_by(self, user) -> bool:
        return user is not None and self.owner_id == user.id

    def has_onboarding_billing_locale(self) -> bool:
        """True while currency and market still carry the onboarding defaults."""
        return (
            self.currency == settings.DEFAULT_CURRENCY
            and self.market == settings.DEFAULT_MARKET
        )

    def membership_for(self, user) -> Optional["OrganizationUser"]:
        for membership in self.members:
            if membership.user_id == user.id:
                return membership
        return None

    def __repr__(self):
        return f"<Organization(id={self.id}, slug='{self.slug}')>"
