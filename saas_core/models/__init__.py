"""
Database models for the tenancy and entitlement core.
"""

from .enums import (
    OrganizationRole,
    WorkspaceRole,
    OrganizationPlanStatus,
    BillingCycle,
    LimitType,
    TrackingScope,
    UsagePeriod,
)
from .user import User
from .organization import Organization
from .workspace import Workspace
from .membership import OrganizationUser, WorkspaceUser
from .plan import Plan, PlanLimit, PlanFeature, UNLIMITED, parse_limit_value, parse_boolean_value
from .organization_plan import OrganizationPlan
from .usage import UsageTracking, WorkspaceFeatureLimit, OrganizationFeatureOverride

__all__ = [
    "OrganizationRole",
    "WorkspaceRole",
    "OrganizationPlanStatus",
    "BillingCycle",
    "LimitType",
    "TrackingScope",
    "UsagePeriod",
    "User",
    "Organization",
    "Workspace",
    "OrganizationUser",
    "WorkspaceUser",
    "Plan",
    "PlanLimit",
    "PlanFeature",
    "UNLIMITED",
    "parse_limit_value",
    "parse_boolean_value",
    "OrganizationPlan",
    "UsageTracking",
    "WorkspaceFeatureLimit",
    "OrganizationFeatureOverride",
]
