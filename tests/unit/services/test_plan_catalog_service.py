"""
Tests for PlanCatalogService
"""
import pytest
from sqlalchemy.orm import Session

from saas_core.models import LimitType, TrackingScope
from saas_core.services.entitlement_service import EntitlementService
from saas_core.services.plan_catalog_service import PlanCatalogService
from tests.factories import create_feature, create_organization, create_plan


@pytest.fixture
def catalog(db_session: Session, memory_cache, frozen_clock):
    return PlanCatalogService(db_session, cache_store=memory_cache, clock=frozen_clock)


@pytest.mark.unit
class TestPlanLookup:

    def test_get_plan_by_slug_or_instance(self, db_session, catalog):
        plan = create_plan(db_session, slug="starter-yearly")

        assert catalog.get_plan("starter-yearly") is plan
        assert catalog.get_plan(plan) is plan
        assert catalog.get_plan("missing") is None
        assert catalog.get_plan(None) is None

    def test_list_plans_by_priority(self, db_session, catalog):
        pro = create_plan(db_session, priority=1000)
        starter = create_plan(db_session, priority=999)
        create_plan(db_session, priority=500, is_active=False)

        assert catalog.list_plans() == [starter, pro]
        assert len(catalog.list_plans(active_only=False)) == 3

    def test_list_plan_group(self, db_session, catalog):
        yearly = create_plan(db_session, group="starter", priority=999)
        monthly = create_plan(db_session, group="starter", priority=998)
        create_plan(db_session, group="pro")

        assert catalog.list_plan_group("starter") == [monthly, yearly]
        assert catalog.list_plan_group("enterprise") == []


@pytest.mark.unit
class TestFeatures:

    def test_get_feature(self, db_session, catalog):
        feature = create_feature(db_session, feature="workspaces")

        assert catalog.get_feature("workspaces") is feature
        assert catalog.get_feature("missing") is None

    def test_list_features(self, db_session, catalog):
        second = create_feature(db_session, display_order=2)
        first = create_feature(db_session, display_order=1)
        hidden = create_feature(db_session, display_order=0, is_active=False)

        assert catalog.list_features() == [first, second]
        assert catalog.list_features(active_only=False) == [hidden, first, second]


@pytest.mark.unit
class TestPlanLimits:

    @pytest.fixture
    def plan(self, db_session):
        return create_plan(
            db_session,
            slug="starter-yearly",
            limits={"workspaces": "3", "unique_visitors": "-1", "broken": "lots"},
            boolean_limits={"priority_support": "false"},
        )

    def test_get_limit(self, catalog, plan):
        assert catalog.get_limit("starter-yearly", "workspaces") == 3
        assert catalog.get_limit(plan, "unique_visitors") == -1
        assert catalog.get_limit(plan, "priority_support") is None
        assert catalog.get_limit(plan, "broken") is None
        assert catalog.get_limit(plan, "missing") is None
        assert catalog.get_limit("missing", "workspaces") is None

    def test_has_unlimited_usage(self, catalog, plan):
        assert catalog.has_unlimited_usage(plan, "unique_visitors")
        assert not catalog.has_unlimited_usage(plan, "workspaces")
        assert not catalog.has_unlimited_usage("missing", "unique_visitors")

    def test_is_within_limit(self, catalog, plan):
        assert catalog.is_within_limit(plan, "workspaces", 2)
        assert not catalog.is_within_limit(plan, "workspaces", 3)
        assert catalog.is_within_limit(plan, "unique_visitors", 10 ** 9)
        assert catalog.is_within_limit(plan, "missing", 100)
        assert catalog.is_within_limit("missing", "workspaces", 100)

    def test_usage_percentage(self, catalog, plan):
        assert catalog.get_limit_usage_percentage(plan, "workspaces", 0) == 0.0
        assert catalog.get_limit_usage_percentage(plan, "workspaces", 6) == 100.0
        assert catalog.get_limit_usage_percentage(plan, "unique_visitors", 50) == 0.0
        assert catalog.get_limit_usage_percentage("missing", "workspaces", 1) == 0.0


@pytest.mark.unit
class TestUpsertLimit:

    def test_creates_and_updates(self, db_session, catalog):
        plan = create_plan(db_session)

        created = catalog.upsert_limit(plan, "exports", "5")
        updated = catalog.upsert_limit(plan, "exports", "-1")

        assert created.id == updated.id
        assert plan.get_limit("exports") == -1

    def test_type_and_scope(self, db_session, catalog):
        plan = create_plan(db_session)

        record = catalog.upsert_limit(
            plan, "connections_per_workspace", "4", tracking_scope=TrackingScope.WORKSPACE
        )
        flag = catalog.upsert_limit(plan, "priority_support", "true", limit_type=LimitType.BOOLEAN)

        assert record.tracking_scope == TrackingScope.WORKSPACE
        assert flag.type == LimitType.BOOLEAN

    def test_subscribed_organizations_are_evicted(self, db_session, catalog, memory_cache, frozen_clock):
        plan = create_plan(db_session, limits={"workspaces": "3"})
        organization = create_organization(db_session)
        entitlements = EntitlementService(db_session, memory_cache, frozen_clock, catalog=catalog)
        entitlements.attach_plan(organization, plan)
        assert entitlements.get_effective_limit(organization, "workspaces") == 3

        catalog.upsert_limit(plan, "workspaces", "8")

        assert entitlements.get_effective_limit(organization, "workspaces") == 8
