"""
Usage Service - per-feature, per-period consumption counters.

Counters are only ever changed with single SQL UPDATE statements
(``current_usage = current_usage + n``) so concurrent writers cannot lose
updates. A counter row is created lazily on first use in a period; a new
period gets a new row and old rows are left untouched.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..clock import Clock, utc_now
from ..config import settings
from ..exceptions import ConcurrencyConflictError
from ..models.enums import LimitType, OrganizationPlanStatus, TrackingScope, UsagePeriod
from ..models.membership import OrganizationUser
from ..models.organization import Organization
from ..models.organization_plan import OrganizationPlan
from ..models.plan import UNLIMITED
from ..models.usage import UsageTracking, WorkspaceFeatureLimit
from ..models.workspace import Workspace
from .caching_service import CacheStore, PlanCacheKey, get_cache_store
from .entitlement_service import EntitlementService

logger = logging.getLogger(__name__)

TEAM_MEMBERS_FEATURE = "team_members"


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _end_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=23, minute=59, second=59, microsecond=999999)


def _add_years(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        # Feb 29 -> Feb 28
        return moment.replace(year=moment.year + years, day=28)


class UsageService:
    """
    Usage ledger for one database session.

    Args:
        db: Request-scoped session
        cache_store: Cache for short-lived usage reads
        clock: Time source
        entitlements: Entitlement resolver used for limit checks
    """

    def __init__(
        self,
        db: Session,
        cache_store: Optional[CacheStore] = None,
        clock: Clock = utc_now,
        entitlements: Optional[EntitlementService] = None,
    ):
        self.db = db
        self.cache_store = cache_store or get_cache_store()
        self.clock = clock
        self.entitlements = entitlements or EntitlementService(db, self.cache_store, clock)

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------

    def get_yearly_anchor(self, organization: Organization) -> datetime:
        """Start of day of the earliest active plan start; today when there is none."""

        def compute() -> str:
            earliest = (
                self.db.query(func.min(OrganizationPlan.started_at))
                .filter(
                    OrganizationPlan.organization_id == organization.id,
                    OrganizationPlan.status == OrganizationPlanStatus.ACTIVE,
                    OrganizationPlan.is_revoked.is_(False),
                )
                .scalar()
            )
            return _start_of_day(earliest or self.clock()).isoformat()

        anchor = self.entitlements.cache_for(organization).remember(
            PlanCacheKey.YEARLY_ANCHOR, settings.CACHE_TTL_YEARLY_ANCHOR, compute
        )
        return datetime.fromisoformat(anchor)

    def get_period_bounds(
        self, organization: Organization, period: UsagePeriod
    ) -> Tuple[Optional[datetime], Optional[datetime]]:
        now = self.clock()
        period = UsagePeriod(period)
        if period is UsagePeriod.DAILY:
            return _start_of_day(now), _end_of_day(now)
        if period is UsagePeriod.WEEKLY:
            start = _start_of_day(now - timedelta(days=now.weekday()))
            return start, _end_of_day(start + timedelta(days=6))
        if period is UsagePeriod.MONTHLY:
            start = _start_of_day(now.replace(day=1))
            next_month = (start + timedelta(days=32)).replace(day=1)
            return start, next_month - timedelta(microseconds=1)
        if period is UsagePeriod.YEARLY:
            anchor = self.get_yearly_anchor(organization)
            # Roll the anchor forward so the window contains now
            while _add_years(anchor, 1) <= now:
                anchor = _add_years(anchor, 1)
            return anchor, _add_years(anchor, 1)
        return None, None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _active_rows(self, organization: Organization, feature: str, workspace: Optional[Workspace]):
        now = self.clock()
        query = self.db.query(UsageTracking).filter(
            UsageTracking.organization_id == organization.id,
            UsageTracking.feature == feature,
            or_(
                UsageTracking.period_type == UsagePeriod.LIFETIME,
                UsageTracking.period_ends_at.is_(None),
                UsageTracking.period_ends_at > now,
            ),
        )
        if workspace is None:
            # Organization scope is the pool: every workspace's rows count
            return query
        return query.filter(UsageTracking.workspace_id == workspace.id)

    def _count_usage(self, organization: Organization, feature: str, workspace: Optional[Workspace]) -> int:
        if feature == TEAM_MEMBERS_FEATURE:
            members = (
                self.db.query(func.count(OrganizationUser.id))
                .filter(OrganizationUser.organization_id == organization.id)
                .scalar()
            ) or 0
            manual = (
                self._active_rows(organization, feature, None)
                .filter(UsageTracking.period_type == UsagePeriod.LIFETIME)
                .with_entities(func.coalesce(func.sum(UsageTracking.current_usage), 0))
                .scalar()
            ) or 0
            return int(members) + int(manual)

        total = (
            self._active_rows(organization, feature, workspace)
            .with_entities(func.coalesce(func.sum(UsageTracking.current_usage), 0))
            .scalar()
        )
        return int(total or 0)

    def get_current_usage(
        self, organization: Organization, feature: str, workspace: Optional[Workspace] = None
    ) -> int:
        """Units consumed in the current period; without a workspace, the organization-wide total."""
        scope = workspace.id if workspace is not None else "org"
        return int(self.entitlements.cache_for(organization).remember(
            PlanCacheKey.USAGE,
            settings.CACHE_TTL_USAGE,
            lambda: self._count_usage(organization, feature, workspace),
            feature,
            scope,
        ))

    def get_workspace_limit(self, workspace: Workspace, feature: str) -> Optional[WorkspaceFeatureLimit]:
        return (
            self.db.query(WorkspaceFeatureLimit)
            .filter(
                WorkspaceFeatureLimit.workspace_id == workspace.id,
                WorkspaceFeatureLimit.feature == feature,
            )
            .first()
        )

    def can_use(
        self,
        organization: Organization,
        feature: str,
        required: int = 1,
        workspace: Optional[Workspace] = None,
    ) -> bool:
        """Whether ``required`` more units fit under the organization (or workspace) limit."""
        return self._fits(organization, feature, required, workspace, self.get_current_usage)

    def _fits(
        self,
        organization: Organization,
        feature: str,
        required: int,
        workspace: Optional[Workspace],
        read_usage: Callable[[Organization, str, Optional[Workspace]], int],
    ) -> bool:
        limit_type = self.entitlements.get_limit_type(organization, feature)
        if limit_type is None:
            return False
        if limit_type is LimitType.BOOLEAN:
            return self.entitlements.has_feature(organization, feature)

        limit = self.entitlements.get_effective_limit(organization, feature)
        if limit is None or limit == UNLIMITED:
            return True

        if workspace is not None:
            allocation = self.get_workspace_limit(workspace, feature)
            if allocation is not None:
                used = read_usage(organization, feature, workspace)
                return allocation.allows(used, required)

        return read_usage(organization, feature, workspace) + required <= limit

    def get_remaining_usage(
        self, organization: Organization, feature: str, workspace: Optional[Workspace] = None
    ) -> Optional[int]:
        limit = self.entitlements.get_effective_limit(organization, feature)
        if limit is None or limit == UNLIMITED:
            return None
        return max(0, limit - self.get_current_usage(organization, feature, workspace))

    def get_usage_percentage(
        self, organization: Organization, feature: str, workspace: Optional[Workspace] = None
    ) -> float:
        limit = self.entitlements.get_effective_limit(organization, feature)
        if limit is None or limit == UNLIMITED or limit == 0:
            return 0.0
        return min(100.0, self.get_current_usage(organization, feature, workspace) / limit * 100)

    def get_usage_summary(
        self, organization: Organization, workspace: Optional[Workspace] = None
    ) -> Dict[str, Dict[str, Any]]:
        """Per-feature limit/usage overview across all active plans."""
        features: Dict[str, Any] = {}
        for plan in self.entitlements.get_active_plans(organization):
            for record in plan.limits:
                features.setdefault(record.feature, record)

        summary: Dict[str, Dict[str, Any]] = {}
        for feature, record in features.items():
            feature_config = self.entitlements.catalog.get_feature(feature)
            if feature_config is None or not feature_config.is_active:
                continue

            context_workspace = workspace if record.tracking_scope == TrackingScope.WORKSPACE else None
            limit = self.entitlements.get_effective_limit(organization, feature)
            current = self.get_current_usage(organization, feature, context_workspace)
            summary[feature] = {
                "name": feature_config.name,
                "type": LimitType(record.type).value,
                "tracking_scope": TrackingScope(record.tracking_scope).value,
                "limit": limit,
                "current": current,
                "remaining": None if limit is None or limit == UNLIMITED else max(0, limit - current),
                "percentage": self.get_usage_percentage(organization, feature, context_workspace),
                "has_feature": self.entitlements.has_feature(organization, feature),
            }
        return summary

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _find_or_create_row(
        self,
        organization: Organization,
        feature: str,
        period: UsagePeriod,
        workspace: Optional[Workspace],
    ) -> UsageTracking:
        starts_at, ends_at = self.get_period_bounds(organization, period)
        workspace_id = workspace.id if workspace is not None else None
        period_key = UsageTracking.build_period_key(feature, workspace_id, period, starts_at)

        def lookup() -> Optional[UsageTracking]:
            return (
                self.db.query(UsageTracking)
                .filter(
                    UsageTracking.organization_id == organization.id,
                    UsageTracking.period_key == period_key,
                )
                .first()
            )

        row = lookup()
        if row is not None:
            return row

        savepoint = self.db.begin_nested()
        try:
            row = UsageTracking(
                organization_id=organization.id,
                workspace_id=workspace_id,
                feature=feature,
                current_usage=0,
                period_type=period,
                period_starts_at=starts_at,
                period_ends_at=ends_at,
                period_key=period_key,
            )
            self.db.add(row)
            savepoint.commit()
        except IntegrityError:
            # Another writer created the row first
            savepoint.rollback()
            row = lookup()
            if row is None:
                raise
        return row

    def increment_usage(
        self,
        organization: Organization,
        feature: str,
        amount: int = 1,
        workspace: Optional[Workspace] = None,
    ) -> bool:
        """
        Consume ``amount`` units of ``feature``.

        Returns:
            False when the amount is not positive, the feature is unknown or the
            limit would be exceeded; True once the counter was incremented
        """
        if amount <= 0:
            return False

        try:
            # Consumers of one organization are serialized until commit, and
            # the limit is checked against uncached usage under that lock
            self._lock_organization(organization)
            if not self._fits(organization, feature, amount, workspace, self._count_usage):
                self.db.rollback()
                return False

            feature_config = self.entitlements.catalog.get_feature(feature)
            if feature_config is None:
                logger.error(f"Cannot track usage for unknown feature '{feature}' (organization {organization.id})")
                self.db.rollback()
                return False

            row = self._find_or_create_row(organization, feature, UsagePeriod(feature_config.period), workspace)
            self.db.query(UsageTracking).filter(UsageTracking.id == row.id).update(
                {UsageTracking.current_usage: UsageTracking.current_usage + amount},
                synchronize_session=False,
            )
            self._evict(organization, feature, workspace)
            self.db.commit()
        except OperationalError as e:
            self.db.rollback()
            logger.warning(f"Usage write for organization {organization.id} lost a race: {e}")
            raise ConcurrencyConflictError(
                f"Concurrent usage change for organization {organization.id}; retry the operation"
            ) from e
        logger.debug(f"Usage incremented: organization={organization.id} feature={feature} amount={amount}")
        return True

    def decrement_usage(
        self,
        organization: Organization,
        feature: str,
        amount: int = 1,
        workspace: Optional[Workspace] = None,
    ) -> bool:
        """Release ``amount`` units. Never drives a counter below zero."""
        if amount <= 0:
            return False
        feature_config = self.entitlements.catalog.get_feature(feature)
        if feature_config is None:
            return False

        query = self.db.query(UsageTracking.id).filter(
            UsageTracking.organization_id == organization.id,
            UsageTracking.feature == feature,
        )
        if workspace is None:
            query = query.filter(UsageTracking.workspace_id.is_(None))
        else:
            query = query.filter(UsageTracking.workspace_id == workspace.id)
        if feature_config.period != UsagePeriod.LIFETIME:
            query = query.filter(UsageTracking.period_ends_at > self.clock())

        row_id = query.order_by(UsageTracking.id.desc()).limit(1).scalar()
        if row_id is None:
            return False

        updated = self.db.query(UsageTracking).filter(
            UsageTracking.id == row_id,
            UsageTracking.current_usage >= amount,
        ).update(
            {UsageTracking.current_usage: UsageTracking.current_usage - amount},
            synchronize_session=False,
        )
        self._evict(organization, feature, workspace)
        self.db.commit()
        return bool(updated)

    def _lock_organization(self, organization: Organization) -> None:
        self.db.query(Organization.id).filter(Organization.id == organization.id).with_for_update().one()

    def _evict(self, organization: Organization, feature: str, workspace: Optional[Workspace]) -> None:
        self.entitlements.cache_for(organization).evict_feature(
            feature, workspace.id if workspace is not None else None
        )

    # ------------------------------------------------------------------
    # Workspace allocations
    # ------------------------------------------------------------------

    def allocate_to_workspace(
        self, organization: Organization, workspace: Workspace, feature: str, allocated: int
    ) -> WorkspaceFeatureLimit:
        allocation = self.get_workspace_limit(workspace, feature)
        if allocation is None:
            allocation = WorkspaceFeatureLimit(
                workspace_id=workspace.id, organization_id=organization.id, feature=feature
            )
            self.db.add(allocation)
        allocation.allocated = allocated
        self.db.commit()
        logger.info(
            f"Workspace allocation set: organization={organization.id} workspace={workspace.id} "
            f"feature={feature} allocated={allocated}"
        )
        return allocation

    def get_workspace_remaining(self, organization: Organization, workspace: Workspace, feature: str) -> Optional[int]:
        allocation = self.get_workspace_limit(workspace, feature)
        if allocation is None:
            return None
        return allocation.get_remaining(self.get_current_usage(organization, feature, workspace))

    def get_workspace_usage_percentage(self, organization: Organization, workspace: Workspace, feature: str) -> float:
        allocation = self.get_workspace_limit(workspace, feature)
        if allocation is None:
            return 0.0
        return allocation.get_usage_percentage(self.get_current_usage(organization, feature, workspace))
