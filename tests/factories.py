"""
Test data factories for creating model instances with factory_boy.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

import factory
from factory import LazyAttribute, Sequence, SubFactory
from faker import Faker
from sqlalchemy.orm import Session

from saas_core.models import (
    BillingCycle,
    LimitType,
    Organization,
    OrganizationFeatureOverride,
    OrganizationPlan,
    OrganizationPlanStatus,
    OrganizationRole,
    OrganizationUser,
    Plan,
    PlanFeature,
    PlanLimit,
    TrackingScope,
    UsagePeriod,
    UsageTracking,
    User,
    Workspace,
    WorkspaceFeatureLimit,
    WorkspaceRole,
    WorkspaceUser,
)

fake = Faker()

PLAN_START = datetime(2025, 1, 1)


class BaseFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Base factory class for SQLAlchemy models"""

    class Meta:
        abstract = True
        sqlalchemy_session_persistence = "commit"


class UserFactory(BaseFactory):
    class Meta:
        model = User

    name = factory.LazyFunction(fake.name)
    email = Sequence(lambda n: f"user{n}@example.com")


class OrganizationFactory(BaseFactory):
    class Meta:
        model = Organization

    name = factory.LazyFunction(fake.company)
    slug = Sequence(lambda n: f"organization-{n}")
    owner = SubFactory(UserFactory)


class WorkspaceFactory(BaseFactory):
    class Meta:
        model = Workspace

    organization = SubFactory(OrganizationFactory)
    name = Sequence(lambda n: f"Workspace {n}")
    slug = Sequence(lambda n: f"workspace-{n}")


class OrganizationUserFactory(BaseFactory):
    class Meta:
        model = OrganizationUser

    organization = SubFactory(OrganizationFactory)
    user = SubFactory(UserFactory)
    role = OrganizationRole.MEMBER


class WorkspaceUserFactory(BaseFactory):
    class Meta:
        model = WorkspaceUser

    workspace = SubFactory(WorkspaceFactory)
    user = SubFactory(UserFactory)
    role = WorkspaceRole.VIEWER


class PlanFactory(BaseFactory):
    class Meta:
        model = Plan

    slug = Sequence(lambda n: f"plan-{n}")
    name = LazyAttribute(lambda o: o.slug.replace("-", " ").title())
    price = Decimal("10.00")
    currency = "NPR"
    market = "nepal"
    billing_cycle = BillingCycle.MONTHLY
    priority = 100
    is_active = True


class PlanLimitFactory(BaseFactory):
    class Meta:
        model = PlanLimit

    plan = SubFactory(PlanFactory)
    feature = "team_members"
    value = "5"
    type = LimitType.LIMIT
    tracking_scope = TrackingScope.ORGANIZATION


class PlanFeatureFactory(BaseFactory):
    class Meta:
        model = PlanFeature

    feature = Sequence(lambda n: f"feature_{n}")
    name = LazyAttribute(lambda o: o.feature.replace("_", " ").title())
    type = LimitType.LIMIT
    tracking_scope = TrackingScope.ORGANIZATION
    period = UsagePeriod.LIFETIME
    is_active = True


class OrganizationPlanFactory(BaseFactory):
    class Meta:
        model = OrganizationPlan

    organization = SubFactory(OrganizationFactory)
    plan = SubFactory(PlanFactory)
    status = OrganizationPlanStatus.ACTIVE
    is_revoked = False
    started_at = PLAN_START
    billing_cycle = BillingCycle.MONTHLY
    quantity = 1


class UsageTrackingFactory(BaseFactory):
    class Meta:
        model = UsageTracking

    feature = "unique_visitors"
    current_usage = 0
    period_type = UsagePeriod.LIFETIME
    period_key = LazyAttribute(
        lambda o: UsageTracking.build_period_key(o.feature, o.workspace_id, o.period_type, o.period_starts_at)
    )
    workspace_id = None
    period_starts_at = None
    period_ends_at = None


class WorkspaceFeatureLimitFactory(BaseFactory):
    class Meta:
        model = WorkspaceFeatureLimit

    feature = "connections_per_workspace"
    allocated = 1


class OrganizationFeatureOverrideFactory(BaseFactory):
    class Meta:
        model = OrganizationFeatureOverride

    feature = "workspaces"
    value = "10"
    reason = "Sales exception"


ALL_FACTORIES = (
    UserFactory,
    OrganizationFactory,
    WorkspaceFactory,
    OrganizationUserFactory,
    WorkspaceUserFactory,
    PlanFactory,
    PlanLimitFactory,
    PlanFeatureFactory,
    OrganizationPlanFactory,
    UsageTrackingFactory,
    WorkspaceFeatureLimitFactory,
    OrganizationFeatureOverrideFactory,
)


def _bind(db: Optional[Session]) -> None:
    # SubFactories use their own session, so bind every factory together
    if db:
        for factory_cls in ALL_FACTORIES:
            factory_cls._meta.sqlalchemy_session = db


def create_user(db: Session = None, **kwargs) -> User:
    """Create a test user"""
    _bind(db)
    return UserFactory(**kwargs)


def create_organization(db: Session = None, owner: User = None, **kwargs) -> Organization:
    """Create an organization together with its owner membership"""
    _bind(db)
    owner = owner or UserFactory()
    organization = OrganizationFactory(owner=owner, **kwargs)
    OrganizationUserFactory(organization=organization, user=owner, role=OrganizationRole.OWNER)
    return organization


def create_workspace(db: Session = None, organization: Organization = None, **kwargs) -> Workspace:
    """Create a workspace (in a new organization unless one is given)"""
    _bind(db)
    organization = organization or create_organization(db)
    return WorkspaceFactory(organization=organization, **kwargs)


def add_organization_member(
    db: Session = None,
    organization: Organization = None,
    user: User = None,
    role: OrganizationRole = OrganizationRole.MEMBER,
) -> User:
    """Add a (new, unless given) user to the organization and return the user"""
    _bind(db)
    user = user or UserFactory()
    OrganizationUserFactory(organization=organization, user=user, role=role)
    return user


def add_workspace_member(
    db: Session = None,
    workspace: Workspace = None,
    user: User = None,
    role: WorkspaceRole = WorkspaceRole.VIEWER,
) -> WorkspaceUser:
    _bind(db)
    return WorkspaceUserFactory(workspace=workspace, user=user or UserFactory(), role=role)


def create_feature(db: Session = None, **kwargs) -> PlanFeature:
    _bind(db)
    return PlanFeatureFactory(**kwargs)


def create_plan(
    db: Session = None,
    limits: Optional[Dict[str, str]] = None,
    boolean_limits: Optional[Dict[str, str]] = None,
    workspace_limits: Optional[Dict[str, str]] = None,
    **kwargs,
) -> Plan:
    """
    Create a plan with its limit rows.

    limits are limit-typed, boolean_limits boolean-typed, workspace_limits
    limit-typed with workspace tracking scope.
    """
    _bind(db)
    plan = PlanFactory(**kwargs)
    for feature, value in (limits or {}).items():
        PlanLimitFactory(plan=plan, feature=feature, value=value)
    for feature, value in (boolean_limits or {}).items():
        PlanLimitFactory(plan=plan, feature=feature, value=value, type=LimitType.BOOLEAN)
    for feature, value in (workspace_limits or {}).items():
        PlanLimitFactory(plan=plan, feature=feature, value=value, tracking_scope=TrackingScope.WORKSPACE)
    if db:
        db.refresh(plan)
    return plan


def create_free_plan(db: Session = None, **kwargs) -> Plan:
    kwargs.setdefault("slug", "free")
    kwargs.setdefault("price", Decimal("0"))
    kwargs.setdefault("priority", 997)
    kwargs.setdefault("billing_cycle", BillingCycle.LIFETIME)
    return create_plan(db, **kwargs)


def create_subscription(
    db: Session = None, organization: Organization = None, plan: Plan = None, **kwargs
) -> OrganizationPlan:
    """Create an OrganizationPlan row directly, bypassing the entitlement rules"""
    _bind(db)
    return OrganizationPlanFactory(organization=organization, plan=plan, **kwargs)


def create_usage(db: Session = None, organization: Organization = None, **kwargs) -> UsageTracking:
    _bind(db)
    return UsageTrackingFactory(organization_id=organization.id, **kwargs)


def create_override(db: Session = None, organization: Organization = None, **kwargs) -> OrganizationFeatureOverride:
    _bind(db)
    return OrganizationFeatureOverrideFactory(organization=organization, **kwargs)


def create_workspace_allocation(
    db: Session = None, workspace: Workspace = None, **kwargs
) -> WorkspaceFeatureLimit:
    _bind(db)
    return WorkspaceFeatureLimitFactory(
        workspace=workspace, organization_id=workspace.organization_id, **kwargs
    )
