"""
Plan catalog models: Plan, PlanLimit, PlanFeature.

Limit values are stored as strings. For ``limit``-typed features "-1" means
unlimited; anything non-numeric is a catalog data bug that is logged and
treated as "no limit defined".
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import Enum as SQLEnum

from ..config import settings
from ..database import Base
from .enums import BillingCycle, LimitType, TrackingScope, UsagePeriod, enum_values

logger = logging.getLogger(__name__)

UNLIMITED = -1


def parse_limit_value(
    value: Optional[str],
    limit_type: Any,
    feature: str,
    context: Optional[Dict[str, Any]] = None,
) -> Optional[int]:
    """
    Parse a stored limit value.

    Args:
        value: Raw stored value
        limit_type: LimitType (or its string value) of the feature
        feature: Feature key, for logging
        context: Extra identifiers included in the data-integrity log line

    Returns:
        -1 for unlimited, a non-negative int, or None when the feature is not
        limit-typed or the value is malformed
    """
    if limit_type != LimitType.LIMIT:
        return None
    if value is None:
        return None

    raw = str(value).strip()
    if raw == str(UNLIMITED):
        return UNLIMITED

    try:
        parsed = int(raw)
    except (TypeError, ValueError):
        logger.error(
            f"Invalid limit value for feature '{feature}': {value!r} is not numeric "
            f"(context={context or {}})"
        )
        return None

    if parsed < 0:
        logger.error(
            f"Invalid limit value for feature '{feature}': {parsed} is negative "
            f"(context={context or {}})"
        )
        return None
    return parsed


def parse_boolean_value(value: Optional[str]) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    slug = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    max_price = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=False, default=lambda: settings.DEFAULT_CURRENCY)
    market = Column(String(50), nullable=False, default=lambda: settings.DEFAULT_MARKET)
    billing_cycle = Column(
        SQLEnum(BillingCycle, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=BillingCycle.MONTHLY,
    )
    priority = Column(Integer, nullable=False, default=0)
    group = Column(String(100), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    limits = relationship("PlanLimit", back_populates="plan", cascade="all, delete-orphan")

    def is_free(self) -> bool:
        """Only the free slug is the free tier; zero-price promos are not."""
        return self.slug == settings.FREE_PLAN_SLUG

    def limit_record(self, feature: str) -> Optional["PlanLimit"]:
        for limit in self.limits:
            if limit.feature == feature:
                return limit
        return None

    def get_limit(self, feature: str) -> Optional[int]:
        record = self.limit_record(feature)
        if record is None:
            return None
        return record.parsed_value(context={"plan_id": self.id, "plan_slug": self.slug})

    def has_unlimited_usage(self, feature: str) -> bool:
        return self.get_limit(feature) == UNLIMITED

    def is_within_limit(self, feature: str, current_usage: int) -> bool:
        """Strictly below the limit; usage equal to the limit is already at capacity."""
        limit = self.get_limit(feature)
        if limit is None or limit == UNLIMITED:
            return True
        return current_usage < limit

    def get_limit_usage_percentage(self, feature: str, current_usage: int) -> float:
        limit = self.get_limit(feature)
        if limit is None or limit == UNLIMITED:
            return 0.0
        if limit == 0:
            return 100.0
        return min(100.0, current_usage / limit * 100)

    def __repr__(self):
        return f"<Plan(id={self.id}, slug='{self.slug}', priority={self.priority})>"


class PlanLimit(Base):
    __tablename__ = "plan_limits"
    __table_args__ = (
        UniqueConstraint("plan_id", "feature", name="uq_plan_limits_plan_feature"),
    )

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False, index=True)
    feature = Column(String(100), nullable=False, index=True)
    value = Column(String(255), nullable=True)
    type = Column(
        SQLEnum(LimitType, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=LimitType.LIMIT,
    )
    tracking_scope = Column(
        SQLEnum(TrackingScope, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=TrackingScope.ORGANIZATION,
    )

    plan = relationship("Plan", back_populates="limits")

    def parsed_value(self, context: Optional[Dict[str, Any]] = None) -> Optional[int]:
        ctx = {"plan_limit_id": self.id}
        ctx.update(context or {})
        return parse_limit_value(self.value, self.type, self.feature, ctx)

    def __repr__(self):
        return f"<PlanLimit(plan_id={self.plan_id}, feature='{self.feature}', value='{self.value}')>"


class PlanFeature(Base):
    """Feature catalog metadata; carries no numeric limit of its own."""
    __tablename__ = "plan_features"

    id = Column(Integer, primary_key=True, index=True)
    feature = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    type = Column(
        SQLEnum(LimitType, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=LimitType.LIMIT,
    )
    tracking_scope = Column(
        SQLEnum(TrackingScope, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=TrackingScope.ORGANIZATION,
    )
    period = Column(
        SQLEnum(UsagePeriod, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=UsagePeriod.LIFETIME,
    )
    display_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    def is_boolean(self) -> bool:
        return self.type == LimitType.BOOLEAN

    def __repr__(self):
        return f"<PlanFeature(feature='{self.feature}', type={self.type}, period={self.period})>"
