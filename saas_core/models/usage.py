"""
Usage ledger models: per-period counters, per-workspace allocations and
organization-level feature overrides.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import Enum as SQLEnum

from ..database import Base
from .enums import UsagePeriod, enum_values
from .plan import UNLIMITED


class UsageTracking(Base):
    __tablename__ = "usage_tracking"
    __table_args__ = (
        # period_key folds the nullable workspace/period columns into one
        # non-null value so the uniqueness check also covers org-level and
        # lifetime counters
        UniqueConstraint("organization_id", "period_key", name="uq_usage_tracking_period"),
        CheckConstraint("current_usage >= 0", name="ck_usage_tracking_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=True, index=True)
    feature = Column(String(100), nullable=False, index=True)
    current_usage = Column(Integer, nullable=False, default=0)
    period_type = Column(
        SQLEnum(UsagePeriod, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=UsagePeriod.LIFETIME,
    )
    period_starts_at = Column(DateTime, nullable=True)
    period_ends_at = Column(DateTime, nullable=True)
    period_key = Column(String(255), nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @staticmethod
    def build_period_key(
        feature: str,
        workspace_id: Optional[int],
        period_type: UsagePeriod,
        period_starts_at: Optional[datetime],
    ) -> str:
        starts = period_starts_at.isoformat() if period_starts_at else "-"
        return f"{workspace_id or 0}:{feature}:{UsagePeriod(period_type).value}:{starts}"

    def is_active(self, now: datetime) -> bool:
        if self.period_type == UsagePeriod.LIFETIME:
            return True
        return self.period_ends_at is None or self.period_ends_at > now

    def __repr__(self):
        return f"<UsageTracking(organization_id={self.organization_id}, workspace_id={self.workspace_id}, feature='{self.feature}', usage={self.current_usage})>"


class WorkspaceFeatureLimit(Base):
    """Slice of an organization's pooled limit allocated to one workspace."""
    __tablename__ = "workspace_feature_limits"
    __table_args__ = (
        UniqueConstraint("workspace_id", "feature", name="uq_workspace_feature_limits_workspace_feature"),
    )

    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    feature = Column(String(100), nullable=False)
    allocated = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    workspace = relationship("Workspace", back_populates="feature_limits")

    def is_unlimited(self) -> bool:
        return self.allocated == UNLIMITED

    def get_remaining(self, used: int) -> Optional[int]:
        if self.is_unlimited():
            return None
        return max(0, self.allocated - used)

    def get_usage_percentage(self, used: int) -> float:
        if self.is_unlimited() or self.allocated == 0:
            return 0.0
        return min(100.0, used / self.allocated * 100)

    def allows(self, used: int, required: int) -> bool:
        if self.is_unlimited():
            return True
        return used + required <= self.allocated


class OrganizationFeatureOverride(Base):
    """Ad-hoc exception that replaces a plan limit for one organization."""
    __tablename__ = "organization_feature_overrides"
    __table_args__ = (
        UniqueConstraint("organization_id", "feature", name="uq_organization_feature_overrides_org_feature"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    feature = Column(String(100), nullable=False)
    value = Column(String(255), nullable=False)
    reason = Column(Text, nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    organization = relationship("Organization", back_populates="overrides")

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now
