"""
Plan Catalog Service - read access to plans, features and per-plan limits.
"""

import logging
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from ..clock import Clock, utc_now
from ..models.enums import LimitType, TrackingScope
from ..models.organization_plan import OrganizationPlan
from ..models.plan import Plan, PlanFeature, PlanLimit
from .caching_service import CacheStore, OrganizationCache, get_cache_store

logger = logging.getLogger(__name__)

PlanRef = Union[Plan, str]


class PlanCatalogService:
    """Lookups over the read-mostly plan catalog"""

    def __init__(self, db: Session, cache_store: Optional[CacheStore] = None, clock: Clock = utc_now):
        self.db = db
        self.cache_store = cache_store or get_cache_store()
        self.clock = clock

    def get_plan(self, plan: Optional[PlanRef]) -> Optional[Plan]:
        """Resolve a Plan instance or slug. Unknown slugs resolve to None."""
        if plan is None:
            return None
        if isinstance(plan, Plan):
            return plan
        return self.db.query(Plan).filter(Plan.slug == plan).first()

    def list_plans(self, active_only: bool = True) -> List[Plan]:
        query = self.db.query(Plan)
        if active_only:
            query = query.filter(Plan.is_active.is_(True))
        return query.order_by(Plan.priority.asc(), Plan.id.asc()).all()

    def list_plan_group(self, group: str) -> List[Plan]:
        """Billing-cycle variants of one tier"""
        return (
            self.db.query(Plan)
            .filter(Plan.group == group, Plan.is_active.is_(True))
            .order_by(Plan.priority.asc())
            .all()
        )

    def get_feature(self, feature: str) -> Optional[PlanFeature]:
        return self.db.query(PlanFeature).filter(PlanFeature.feature == feature).first()

    def list_features(self, active_only: bool = True) -> List[PlanFeature]:
        query = self.db.query(PlanFeature)
        if active_only:
            query = query.filter(PlanFeature.is_active.is_(True))
        return query.order_by(PlanFeature.display_order.asc(), PlanFeature.id.asc()).all()

    def get_limit(self, plan: PlanRef, feature: str) -> Optional[int]:
        """
        Numeric limit of a plan for a feature.

        Returns:
            -1 for unlimited, the limit, or None when the plan is unknown, the
            feature is not defined, is boolean-typed, or holds a malformed value
        """
        resolved = self.get_plan(plan)
        if resolved is None:
            return None
        return resolved.get_limit(feature)

    def has_unlimited_usage(self, plan: PlanRef, feature: str) -> bool:
        resolved = self.get_plan(plan)
        return resolved is not None and resolved.has_unlimited_usage(feature)

    def is_within_limit(self, plan: PlanRef, feature: str, current_usage: int) -> bool:
        resolved = self.get_plan(plan)
        if resolved is None:
            return True
        return resolved.is_within_limit(feature, current_usage)

    def get_limit_usage_percentage(self, plan: PlanRef, feature: str, current_usage: int) -> float:
        resolved = self.get_plan(plan)
        if resolved is None:
            return 0.0
        return resolved.get_limit_usage_percentage(feature, current_usage)

    def upsert_limit(
        self,
        plan: Plan,
        feature: str,
        value: str,
        limit_type: LimitType = LimitType.LIMIT,
        tracking_scope: TrackingScope = TrackingScope.ORGANIZATION,
    ) -> PlanLimit:
        """Create or update a plan limit and evict every organization currently on the plan."""
        record = (
            self.db.query(PlanLimit)
            .filter(PlanLimit.plan_id == plan.id, PlanLimit.feature == feature)
            .first()
        )
        if record is None:
            record = PlanLimit(plan_id=plan.id, feature=feature)
            self.db.add(record)
        record.value = str(value)
        record.type = limit_type
        record.tracking_scope = tracking_scope
        self.db.flush()

        now = self.clock()
        organization_ids = {
            org_id
            for (org_id,) in self.db.query(OrganizationPlan.organization_id)
            .filter(
                OrganizationPlan.plan_id == plan.id,
                OrganizationPlan.active_filter(now),
            )
            .distinct()
            .all()
        }
        for organization_id in organization_ids:
            OrganizationCache(self.cache_store, organization_id).evict_plan_state()

        self.db.commit()
        self.db.refresh(plan)
        logger.info(
            f"Plan limit updated: plan={plan.slug} feature={feature} value={value} "
            f"({len(organization_ids)} organizations evicted)"
        )
        return record
