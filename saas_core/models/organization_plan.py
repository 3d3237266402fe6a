"""
OrganizationPlan - time-bounded association between an organization and a plan.

Rows are history: they are never physically deleted. Detaching a plan sets
status=cancelled and ends_at. Rows are written only by EntitlementService.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, Numeric, ForeignKey, JSON, and_, or_
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import Enum as SQLEnum

from ..database import Base
from .enums import BillingCycle, OrganizationPlanStatus, enum_values


class OrganizationPlan(Base):
    __tablename__ = "organization_plans"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    status = Column(
        SQLEnum(OrganizationPlanStatus, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=OrganizationPlanStatus.ACTIVE,
        index=True,
    )
    is_revoked = Column(Boolean, nullable=False, default=False)
    revoked_at = Column(DateTime, nullable=True)
    revoked_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    started_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=True)
    trial_start = Column(DateTime, nullable=True)
    trial_end = Column(DateTime, nullable=True)

    billing_cycle = Column(
        SQLEnum(BillingCycle, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=BillingCycle.MONTHLY,
    )
    quantity = Column(Integer, nullable=False, default=1)

    # Charging metadata reported by the payment collaborator
    charging_price = Column(Numeric(10, 2), nullable=True)
    charging_currency = Column(String(3), nullable=True)
    purchase_uuid = Column(String(100), nullable=True)
    checkout_uuid = Column(String(100), nullable=True)
    price_uuid = Column(String(100), nullable=True)
    extra = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    organization = relationship("Organization", back_populates="plan_associations")
    plan = relationship("Plan")

    @classmethod
    def active_filter(cls, now: datetime):
        """SQL criteria matching is_active(now)."""
        return and_(
            cls.is_revoked.is_(False),
            cls.status == OrganizationPlanStatus.ACTIVE,
            cls.started_at <= now,
            or_(cls.ends_at.is_(None), cls.ends_at > now),
        )

    def is_active(self, now: datetime) -> bool:
        if self.is_revoked:
            return False
        if self.status != OrganizationPlanStatus.ACTIVE:
            return False
        if self.started_at is None or self.started_at > now:
            return False
        return self.ends_at is None or self.ends_at > now

    def add_note(self, note: str) -> None:
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    def cancel(self, now: datetime, note: Optional[str] = None) -> None:
        self.status = OrganizationPlanStatus.CANCELLED
        self.ends_at = now
        if note:
            self.add_note(note)

    def __repr__(self):
        return f"<OrganizationPlan(id={self.id}, organization_id={self.organization_id}, plan_id={self.plan_id}, status={self.status})>"
