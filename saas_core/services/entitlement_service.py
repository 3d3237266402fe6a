"""
Entitlement Service - plan attachment, current plan, trial state and
organization-wide limits.

This service is the only writer of OrganizationPlan rows. Each write runs in
one transaction with the organization row locked, and evicts the
organization's cached plan state before the commit.
"""

import logging
import sys
import warnings
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import func, not_
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..clock import Clock, utc_now
from ..config import settings
from ..exceptions import ConcurrencyConflictError
from ..models.enums import BillingCycle, LimitType, OrganizationPlanStatus
from ..models.organization import Organization
from ..models.organization_plan import OrganizationPlan
from ..models.plan import Plan, UNLIMITED, parse_boolean_value, parse_limit_value
from ..models.usage import OrganizationFeatureOverride
from ..models.workspace import Workspace
from .caching_service import CacheStore, OrganizationCache, PlanCacheKey, get_cache_store
from .plan_catalog_service import PlanCatalogService, PlanRef

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_FEATURE = "api_rate_limit"
WORKSPACES_FEATURE = "workspaces"
DEFAULT_WORKSPACE_LIMIT = 1


@dataclass
class TrialInfo:
    is_active: bool = False
    is_expired: bool = False
    days_remaining: Optional[int] = None
    ends_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "is_active": self.is_active,
            "is_expired": self.is_expired,
            "days_remaining": self.days_remaining,
            "ends_at": self.ends_at,
        }


def _days_between(now: datetime, then: datetime) -> int:
    """Whole days from now to then, truncated toward zero (negative once past)."""
    return int((then - now).total_seconds() / 86400)


class EntitlementService:
    """
    Resolve what an organization is entitled to.

    Args:
        db: Request-scoped session
        cache_store: Cache backing the memoized reads (defaults to the process store)
        clock: Time source
    """

    def __init__(
        self,
        db: Session,
        cache_store: Optional[CacheStore] = None,
        clock: Clock = utc_now,
        catalog: Optional[PlanCatalogService] = None,
    ):
        self.db = db
        self.cache_store = cache_store or get_cache_store()
        self.clock = clock
        self.catalog = catalog or PlanCatalogService(db, self.cache_store, clock)

    def cache_for(self, organization: Organization) -> OrganizationCache:
        return OrganizationCache(self.cache_store, organization.id)

    # ------------------------------------------------------------------
    # Authoritative reads (never cached)
    # ------------------------------------------------------------------

    def get_active_associations(self, organization: Organization) -> List[OrganizationPlan]:
        """Active associations, best first: priority, then most recently started."""
        now = self.clock()
        return (
            self.db.query(OrganizationPlan)
            .join(Plan, Plan.id == OrganizationPlan.plan_id)
            .filter(
                OrganizationPlan.organization_id == organization.id,
                OrganizationPlan.active_filter(now),
            )
            .order_by(
                Plan.priority.desc(),
                OrganizationPlan.started_at.desc(),
                OrganizationPlan.id.desc(),
            )
            .all()
        )

    def get_current_association(self, organization: Organization) -> Optional[OrganizationPlan]:
        associations = self.get_active_associations(organization)
        return associations[0] if associations else None

    def is_on_plan(self, organization: Organization, plan: PlanRef) -> bool:
        """Re-validate against the association table; use before irreversible actions."""
        resolved = self.catalog.get_plan(plan)
        if resolved is None:
            return False
        return any(a.plan_id == resolved.id for a in self.get_active_associations(organization))

    # ------------------------------------------------------------------
    # Cached reads
    # ------------------------------------------------------------------

    def get_current_plan(self, organization: Organization) -> Optional[Plan]:
        def compute() -> Optional[int]:
            association = self.get_current_association(organization)
            return association.plan_id if association else None

        plan_id = self.cache_for(organization).remember(
            PlanCacheKey.CURRENT_PLAN, settings.CACHE_TTL_CURRENT_PLAN, compute
        )
        if plan_id is None:
            return None
        return self.db.get(Plan, plan_id)

    def has_active_plan(self, organization: Organization) -> bool:
        def compute() -> bool:
            now = self.clock()
            count = (
                self.db.query(func.count(OrganizationPlan.id))
                .filter(
                    OrganizationPlan.organization_id == organization.id,
                    OrganizationPlan.active_filter(now),
                )
                .scalar()
            )
            return bool(count)

        return bool(self.cache_for(organization).remember(
            PlanCacheKey.HAS_ACTIVE_PLAN, settings.CACHE_TTL_HAS_ACTIVE_PLAN, compute
        ))

    def get_active_plans(self, organization: Organization) -> List[Plan]:
        def compute() -> List[int]:
            seen: List[int] = []
            for association in self.get_active_associations(organization):
                if association.plan_id not in seen:
                    seen.append(association.plan_id)
            return seen

        plan_ids = self.cache_for(organization).remember(
            PlanCacheKey.ACTIVE_PLANS, settings.CACHE_TTL_ACTIVE_PLANS, compute
        )
        if not plan_ids:
            return []
        plans = {p.id: p for p in self.db.query(Plan).filter(Plan.id.in_(plan_ids)).all()}
        return [plans[pid] for pid in plan_ids if pid in plans]

    # ------------------------------------------------------------------
    # Plan writes
    # ------------------------------------------------------------------

    def _lock_organization(self, organization: Organization) -> Organization:
        return (
            self.db.query(Organization)
            .filter(Organization.id == organization.id)
            .with_for_update()
            .one()
        )

    def _write(self, organization: Organization, operation: Callable[[Organization], T]) -> T:
        """Run a plan write under the organization lock, evict, then commit."""
        try:
            locked = self._lock_organization(organization)
            result = operation(locked)
            self.db.flush()
            self.cache_for(locked).evict_plan_state()
            self.db.commit()
            return result
        except (OperationalError, IntegrityError) as e:
            self.db.rollback()
            logger.warning(f"Plan write for organization {organization.id} lost a race: {e}")
            raise ConcurrencyConflictError(
                f"Concurrent plan change for organization {organization.id}; retry the operation"
            ) from e

    def attach_plan(
        self, organization: Organization, plan: PlanRef, **attributes: Any
    ) -> Optional[OrganizationPlan]:
        """
        Attach a plan to an organization.

        The free tier is a singleton and never coexists with a paid plan:
        attaching free is skipped when any plan is active, attaching a paid
        plan cancels the active free association.

        Args:
            organization: Target organization
            plan: Plan instance or slug
            **attributes: OrganizationPlan column overrides (trial dates,
                billing cycle, purchase identifiers, ...)

        Returns:
            The new association, or None when the plan is unknown or the
            attachment was skipped by a business rule
        """
        resolved = self.catalog.get_plan(plan)
        if resolved is None:
            logger.error(f"Cannot attach plan {plan!r} to organization {organization.id}: plan not found")
            return None

        association = self._write(
            organization, lambda locked: self._attach_locked(locked, resolved, attributes)
        )
        if association is not None:
            logger.info(
                f"Plan attached: organization={organization.id} plan={resolved.slug} "
                f"association={association.id}"
            )
        return association

    def _attach_locked(
        self, organization: Organization, plan: Plan, attributes: Dict[str, Any]
    ) -> Optional[OrganizationPlan]:
        now = self.clock()
        active = self.get_active_associations(organization)

        if plan.is_free():
            if any(a.plan.is_free() for a in active):
                logger.info(f"Organization {organization.id} already has an active free plan; skipping")
                return None
            if active:
                logger.info(f"Organization {organization.id} has an active paid plan; free plan not attached")
                return None
        else:
            for association in active:
                if association.plan.is_free():
                    association.cancel(now, "Replaced by paid plan")
            if organization.has_onboarding_billing_locale():
                organization.currency = plan.currency
                organization.market = plan.market

        values: Dict[str, Any] = {
            "user_id": organization.owner_id,
            "status": OrganizationPlanStatus.ACTIVE,
            "is_revoked": False,
            "started_at": now,
            "quantity": 1,
            "billing_cycle": BillingCycle.MONTHLY,
        }
        values.update(attributes)
        association = OrganizationPlan(organization_id=organization.id, plan_id=plan.id, **values)
        self.db.add(association)
        return association

    def detach_plan(self, organization: Organization, plan: PlanRef, reason: Optional[str] = None) -> int:
        """Cancel every active association to ``plan``. Returns the number cancelled."""
        resolved = self.catalog.get_plan(plan)
        if resolved is None:
            logger.error(f"Cannot detach plan {plan!r} from organization {organization.id}: plan not found")
            return 0

        def operation(locked: Organization) -> int:
            now = self.clock()
            cancelled = 0
            for association in self.get_active_associations(locked):
                if association.plan_id == resolved.id:
                    association.cancel(now, reason or "Plan detached")
                    cancelled += 1
            return cancelled

        cancelled = self._write(organization, operation)
        logger.info(f"Plan detached: organization={organization.id} plan={resolved.slug} cancelled={cancelled}")
        return cancelled

    def revoke_plan(
        self,
        association: OrganizationPlan,
        revoked_by: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> OrganizationPlan:
        def operation(locked: Organization) -> OrganizationPlan:
            now = self.clock()
            association.is_revoked = True
            association.revoked_at = now
            association.revoked_by = revoked_by
            association.cancel(now, reason or "Plan revoked")
            return association

        self._write(association.organization, operation)
        logger.info(
            f"Plan revoked: organization={association.organization_id} association={association.id} "
            f"revoked_by={revoked_by}"
        )
        return association

    def change_plan(
        self, organization: Organization, plan: PlanRef, **attributes: Any
    ) -> Optional[OrganizationPlan]:
        """Cancel all active associations and attach ``plan`` in one transaction."""
        resolved = self.catalog.get_plan(plan)
        if resolved is None:
            logger.error(f"Cannot change organization {organization.id} to plan {plan!r}: plan not found")
            return None

        def operation(locked: Organization) -> Optional[OrganizationPlan]:
            now = self.clock()
            for association in self.get_active_associations(locked):
                association.cancel(now, f"Changed to plan {resolved.slug}")
            self.db.flush()
            return self._attach_locked(locked, resolved, attributes)

        association = self._write(organization, operation)
        if association is not None:
            logger.info(f"Plan changed: organization={organization.id} plan={resolved.slug}")
        return association

    def expire_trial_plans(self, dry_run: bool = False) -> List[int]:
        """
        Expire free-tier associations whose trial has ended.

        Returns:
            Ids of the associations expired (or that would be, in dry-run mode)
        """
        now = self.clock()
        expiring = (
            self.db.query(OrganizationPlan)
            .join(Plan, Plan.id == OrganizationPlan.plan_id)
            .filter(
                Plan.slug == settings.FREE_PLAN_SLUG,
                OrganizationPlan.status == OrganizationPlanStatus.ACTIVE,
                OrganizationPlan.is_revoked.is_(False),
                OrganizationPlan.trial_end.isnot(None),
                OrganizationPlan.trial_end <= now,
            )
            .order_by(OrganizationPlan.id)
            .all()
        )

        expired_ids: List[int] = []
        for association in expiring:
            organization = association.organization
            if dry_run:
                logger.info(
                    f"[dry-run] Would expire trial association {association.id} "
                    f"for organization {association.organization_id}"
                )
                expired_ids.append(association.id)
                continue

            def operation(locked: Organization, association=association) -> None:
                association.status = OrganizationPlanStatus.EXPIRED
                association.is_revoked = True
                association.revoked_at = now
                association.ends_at = now
                association.add_note("Trial period expired")

            self._write(organization, operation)
            expired_ids.append(association.id)
            logger.info(
                f"Trial expired: organization={association.organization_id} association={association.id}"
            )
            if not self.get_active_associations(organization):
                logger.warning(f"Organization {organization.id} has no active plan after trial expiry")

        return expired_ids

    # ------------------------------------------------------------------
    # Trial
    # ------------------------------------------------------------------

    def get_trial_info(self, organization: Organization) -> TrialInfo:
        now = self.clock()
        current_plan = self.get_current_plan(organization)

        if current_plan is None:
            lapsed = (
                self.db.query(OrganizationPlan)
                .filter(
                    OrganizationPlan.organization_id == organization.id,
                    not_(OrganizationPlan.active_filter(now)),
                )
                .order_by(OrganizationPlan.updated_at.desc(), OrganizationPlan.id.desc())
                .first()
            )
            if lapsed is None or lapsed.trial_end is None:
                return TrialInfo()
            # A lapsed plan always reads as an expired trial, even when
            # cancelled before trial_end
            return TrialInfo(
                is_active=False,
                is_expired=True,
                days_remaining=_days_between(now, lapsed.trial_end),
                ends_at=lapsed.trial_end,
            )

        association = next(
            (a for a in self.get_active_associations(organization) if a.plan_id == current_plan.id),
            None,
        )
        if association is None or association.trial_start is None or association.trial_end is None:
            return TrialInfo()

        return TrialInfo(
            is_active=association.trial_start < now < association.trial_end,
            is_expired=association.trial_end < now,
            days_remaining=_days_between(now, association.trial_end),
            ends_at=association.trial_end,
        )

    def is_in_trial(self, organization: Organization) -> bool:
        return self.get_trial_info(organization).is_active

    def is_trial_expired(self, organization: Organization) -> bool:
        return self.get_trial_info(organization).is_expired

    def get_trial_days_remaining(self, organization: Organization) -> Optional[int]:
        return self.get_trial_info(organization).days_remaining

    # ------------------------------------------------------------------
    # Limits and features
    # ------------------------------------------------------------------

    def get_active_override(
        self, organization: Organization, feature: str
    ) -> Optional[OrganizationFeatureOverride]:
        override = (
            self.db.query(OrganizationFeatureOverride)
            .filter(
                OrganizationFeatureOverride.organization_id == organization.id,
                OrganizationFeatureOverride.feature == feature,
            )
            .first()
        )
        if override is None or not override.is_active(self.clock()):
            return None
        return override

    def get_effective_limit(self, organization: Organization, feature: str) -> Optional[int]:
        """
        Organization-wide limit for a feature.

        An active override replaces the plan-derived limit outright. Without
        one, limits of all active plans are merged: unlimited wins, additive
        features are summed, all others take the maximum.
        """

        def compute() -> Optional[int]:
            override = self.get_active_override(organization, feature)
            if override is not None:
                feature_config = self.catalog.get_feature(feature)
                if feature_config is None:
                    logger.error(
                        f"Override {override.id} for organization {organization.id} references "
                        f"unknown feature '{feature}'"
                    )
                    return None
                return parse_limit_value(
                    override.value,
                    feature_config.type,
                    feature,
                    {"organization_id": organization.id, "override_id": override.id},
                )

            limits: List[int] = []
            for plan in self.get_active_plans(organization):
                record = plan.limit_record(feature)
                if record is None:
                    continue
                parsed = record.parsed_value(
                    context={"organization_id": organization.id, "plan_slug": plan.slug}
                )
                if parsed is not None:
                    limits.append(parsed)

            if not limits:
                return None
            if UNLIMITED in limits:
                return UNLIMITED
            if feature in settings.ADDITIVE_FEATURES:
                return sum(limits)
            return max(limits)

        return self.cache_for(organization).remember(
            PlanCacheKey.EFFECTIVE_LIMIT, settings.CACHE_TTL_LIMITS, compute, feature
        )

    def get_limit_type(self, organization: Organization, feature: str) -> Optional[LimitType]:
        """Type of the record that governs ``feature``, or None when nothing defines it."""
        if self.get_active_override(organization, feature) is not None:
            feature_config = self.catalog.get_feature(feature)
            return LimitType(feature_config.type) if feature_config else None
        for plan in self.get_active_plans(organization):
            record = plan.limit_record(feature)
            if record is not None:
                return LimitType(record.type)
        return None

    def has_feature(self, organization: Organization, feature: str) -> bool:
        def compute() -> bool:
            override = self.get_active_override(organization, feature)
            if override is not None:
                feature_config = self.catalog.get_feature(feature)
                if feature_config is None:
                    return False
                return _value_grants_feature(override.value, feature_config.type, feature)

            for plan in self.get_active_plans(organization):
                record = plan.limit_record(feature)
                if record is not None and _value_grants_feature(record.value, record.type, feature):
                    return True
            return False

        return bool(self.cache_for(organization).remember(
            PlanCacheKey.HAS_FEATURE, settings.CACHE_TTL_LIMITS, compute, feature
        ))

    def set_override(
        self,
        organization: Organization,
        feature: str,
        value: str,
        reason: Optional[str] = None,
        approved_by: Optional[int] = None,
        expires_at: Optional[datetime] = None,
    ) -> OrganizationFeatureOverride:
        override = (
            self.db.query(OrganizationFeatureOverride)
            .filter(
                OrganizationFeatureOverride.organization_id == organization.id,
                OrganizationFeatureOverride.feature == feature,
            )
            .first()
        )
        if override is None:
            override = OrganizationFeatureOverride(organization_id=organization.id, feature=feature)
            self.db.add(override)
        override.value = str(value)
        override.reason = reason
        override.approved_by = approved_by
        override.expires_at = expires_at
        self.db.flush()
        self.cache_for(organization).evict_plan_state()
        self.db.commit()
        logger.info(f"Feature override set: organization={organization.id} feature={feature} value={value}")
        return override

    def remove_override(self, organization: Organization, feature: str) -> bool:
        removed = (
            self.db.query(OrganizationFeatureOverride)
            .filter(
                OrganizationFeatureOverride.organization_id == organization.id,
                OrganizationFeatureOverride.feature == feature,
            )
            .delete(synchronize_session=False)
        )
        self.cache_for(organization).evict_plan_state()
        self.db.commit()
        return bool(removed)

    # ------------------------------------------------------------------
    # Rate limits
    # ------------------------------------------------------------------

    def get_rate_limit(self, organization: Organization, limit_type: str = "api") -> int:
        """Absolute request budget from the current plan, else the configured base."""
        plan = self.get_current_plan(organization)
        if plan is None:
            return settings.rate_limit_attempts(limit_type)

        rate_limit = plan.get_limit(RATE_LIMIT_FEATURE)
        if rate_limit is not None:
            return sys.maxsize if rate_limit == UNLIMITED else rate_limit
        return settings.rate_limit_attempts(limit_type)

    def get_rate_limit_multiplier(self, organization: Organization) -> float:
        """Deprecated: derived from get_rate_limit(); kept for older callers."""
        warnings.warn(
            "get_rate_limit_multiplier() is deprecated; use get_rate_limit()",
            DeprecationWarning,
            stacklevel=2,
        )
        plan = self.get_current_plan(organization)
        if plan is None:
            return 1.0

        rate_limit = plan.get_limit(RATE_LIMIT_FEATURE)
        if rate_limit is not None and rate_limit > 0:
            return float(rate_limit / settings.rate_limit_attempts("api"))
        return float(settings.PLAN_RATE_LIMIT_MULTIPLIERS.get(plan.slug, 1))

    # ------------------------------------------------------------------
    # Workspace quota
    # ------------------------------------------------------------------

    def count_workspaces(self, organization: Organization) -> int:
        return (
            self.db.query(func.count(Workspace.id))
            .filter(Workspace.organization_id == organization.id, Workspace.deleted_at.is_(None))
            .scalar()
        ) or 0

    def has_reached_workspace_limit(self, organization: Organization) -> bool:
        count = self.count_workspaces(organization)
        if self.get_current_plan(organization) is None:
            return count >= DEFAULT_WORKSPACE_LIMIT

        limit = self.get_effective_limit(organization, WORKSPACES_FEATURE)
        if limit is None or limit == UNLIMITED:
            return False
        return count >= limit


def _value_grants_feature(value: Optional[str], limit_type, feature: str) -> bool:
    if limit_type == LimitType.BOOLEAN:
        return parse_boolean_value(value)
    parsed = parse_limit_value(value, limit_type, feature)
    return parsed is not None and (parsed == UNLIMITED or parsed > 0)
