"""
Default plan catalog: plans, feature metadata and per-plan limits.

Seeding is an upsert keyed by slug/feature, so it can run on every deploy.
"""

import logging
from decimal import Decimal
from typing import Dict, List

from sqlalchemy.orm import Session

from .models.enums import BillingCycle, LimitType, TrackingScope, UsagePeriod
from .models.plan import Plan, PlanFeature, PlanLimit

logger = logging.getLogger(__name__)

DEFAULT_PLANS: List[Dict] = [
    {
        "slug": "free",
        "name": "Free",
        "description": "Free plan with basic features",
        "price": Decimal("0"),
        "max_price": Decimal("0"),
        "billing_cycle": BillingCycle.LIFETIME,
        "priority": 997,
        "group": "free",
    },
    {
        "slug": "early-bird-lifetime",
        "name": "Early Bird",
        "description": "Special early bird offer",
        "price": Decimal("0"),
        "max_price": Decimal("0"),
        "billing_cycle": BillingCycle.LIFETIME,
        "priority": 998,
        "group": "early_bird",
    },
    {
        "slug": "starter-yearly",
        "name": "Starter",
        "description": "Perfect for small teams getting started",
        "price": Decimal("299.00"),
        "max_price": Decimal("349.00"),
        "billing_cycle": BillingCycle.YEARLY,
        "priority": 999,
        "group": "starter",
    },
    {
        "slug": "pro-yearly",
        "name": "Pro",
        "description": "Advanced features for growing teams",
        "price": Decimal("499.00"),
        "max_price": Decimal("599.00"),
        "billing_cycle": BillingCycle.YEARLY,
        "priority": 1000,
        "group": "pro",
    },
    {
        "slug": "business-yearly",
        "name": "Business",
        "description": "Complete solution for large organizations",
        "price": Decimal("999.00"),
        "max_price": Decimal("1199.00"),
        "billing_cycle": BillingCycle.YEARLY,
        "priority": 1001,
        "group": "business",
    },
]

DEFAULT_FEATURES: List[Dict] = [
    {"feature": "team_members", "name": "Team Members", "category": "team",
     "description": "Number of team members per organization"},
    {"feature": "workspaces", "name": "Workspaces", "category": "organization",
     "description": "Number of workspaces per organization"},
    {"feature": "connections_per_workspace", "name": "Connections per Workspace", "category": "connections",
     "description": "Number of external service connections per workspace",
     "tracking_scope": TrackingScope.WORKSPACE},
    {"feature": "api_rate_limit", "name": "API Rate Limit", "category": "api",
     "description": "API requests per minute"},
    {"feature": "unique_visitors", "name": "Monthly Active Users", "category": "usage",
     "description": "Number of monthly active users", "period": UsagePeriod.MONTHLY},
    {"feature": "data_retention_days", "name": "Data Retention", "category": "storage",
     "description": "Days of data retention"},
    {"feature": "priority_support", "name": "Priority Support", "category": "support",
     "description": "Access to priority customer support", "type": LimitType.BOOLEAN},
]

DEFAULT_LIMITS: Dict[str, Dict[str, str]] = {
    "free": {
        "team_members": "5",
        "workspaces": "1",
        "connections_per_workspace": "1",
        "api_rate_limit": "60",
        "unique_visitors": "1000",
        "data_retention_days": "7",
        "priority_support": "false",
    },
    "early-bird-lifetime": {
        "team_members": "-1",
        "workspaces": "-1",
        "connections_per_workspace": "-1",
        "api_rate_limit": "600",
        "unique_visitors": "100000",
        "data_retention_days": "90",
        "priority_support": "true",
    },
    "starter-yearly": {
        "team_members": "10",
        "workspaces": "3",
        "connections_per_workspace": "3",
        "api_rate_limit": "120",
        "unique_visitors": "10000",
        "data_retention_days": "30",
        "priority_support": "false",
    },
    "pro-yearly": {
        "team_members": "50",
        "workspaces": "10",
        "connections_per_workspace": "10",
        "api_rate_limit": "300",
        "unique_visitors": "50000",
        "data_retention_days": "90",
        "priority_support": "true",
    },
    "business-yearly": {
        "team_members": "-1",
        "workspaces": "-1",
        "connections_per_workspace": "-1",
        "api_rate_limit": "600",
        "unique_visitors": "-1",
        "data_retention_days": "365",
        "priority_support": "true",
    },
}


def seed_plan_catalog(db: Session) -> Dict[str, Plan]:
    """Insert or update the default catalog. Returns plans keyed by slug."""
    features: Dict[str, PlanFeature] = {}
    for order, data in enumerate(DEFAULT_FEATURES, start=1):
        feature = db.query(PlanFeature).filter(PlanFeature.feature == data["feature"]).first()
        if feature is None:
            feature = PlanFeature(feature=data["feature"])
            db.add(feature)
        feature.name = data["name"]
        feature.description = data["description"]
        feature.category = data["category"]
        feature.type = data.get("type", LimitType.LIMIT)
        feature.tracking_scope = data.get("tracking_scope", TrackingScope.ORGANIZATION)
        feature.period = data.get("period", UsagePeriod.LIFETIME)
        feature.display_order = order
        feature.is_active = True
        features[feature.feature] = feature

    plans: Dict[str, Plan] = {}
    for data in DEFAULT_PLANS:
        plan = db.query(Plan).filter(Plan.slug == data["slug"]).first()
        if plan is None:
            plan = Plan(slug=data["slug"])
            db.add(plan)
        for key, value in data.items():
            setattr(plan, key, value)
        plan.is_active = True
        plans[plan.slug] = plan
    db.flush()

    for slug, limits in DEFAULT_LIMITS.items():
        plan = plans[slug]
        for feature_key, value in limits.items():
            feature = features[feature_key]
            record = plan.limit_record(feature_key)
            if record is None:
                record = PlanLimit(plan_id=plan.id, feature=feature_key)
                plan.limits.append(record)
            record.value = value
            record.type = feature.type
            record.tracking_scope = feature.tracking_scope

    db.commit()
    logger.info(f"Plan catalog seeded: {len(plans)} plans, {len(features)} features")
    return plans
