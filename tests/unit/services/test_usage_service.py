"""
Tests for UsageService: counters, period windows, limit checks and
workspace allocations.
"""
import logging
from datetime import datetime

import pytest
from sqlalchemy.orm import Session

from saas_core.models import LimitType, TrackingScope, UsagePeriod, UsageTracking
from saas_core.services.usage_service import UsageService
from tests.factories import (
    add_organization_member,
    create_feature,
    create_organization,
    create_plan,
    create_subscription,
    create_usage,
    create_workspace,
)


@pytest.fixture
def service(db_session: Session, memory_cache, frozen_clock):
    return UsageService(db_session, cache_store=memory_cache, clock=frozen_clock)


@pytest.fixture
def organization(db_session: Session):
    return create_organization(db_session, name="Acme")


@pytest.fixture
def catalog(db_session: Session):
    """Feature metadata for the features used below"""
    return {
        "unique_visitors": create_feature(db_session, feature="unique_visitors", period=UsagePeriod.MONTHLY),
        "exports": create_feature(db_session, feature="exports"),
        "team_members": create_feature(db_session, feature="team_members"),
        "connections_per_workspace": create_feature(
            db_session, feature="connections_per_workspace", tracking_scope=TrackingScope.WORKSPACE
        ),
        "priority_support": create_feature(db_session, feature="priority_support", type=LimitType.BOOLEAN),
    }


@pytest.fixture
def subscribed(db_session: Session, service, organization, catalog):
    """Organization on a plan with small limits"""
    plan = create_plan(
        db_session,
        limits={"unique_visitors": "3", "exports": "-1", "team_members": "3"},
        boolean_limits={"priority_support": "true"},
        workspace_limits={"connections_per_workspace": "10"},
    )
    service.entitlements.attach_plan(organization, plan)
    return organization


def _rows(db_session: Session, organization, feature):
    return (
        db_session.query(UsageTracking)
        .filter(UsageTracking.organization_id == organization.id, UsageTracking.feature == feature)
        .order_by(UsageTracking.id)
        .all()
    )


@pytest.mark.unit
class TestIncrementUsage:

    def test_increment_within_limit(self, service, subscribed):
        assert service.increment_usage(subscribed, "unique_visitors", 2)
        assert service.get_current_usage(subscribed, "unique_visitors") == 2

        assert not service.increment_usage(subscribed, "unique_visitors", 2)
        assert service.get_current_usage(subscribed, "unique_visitors") == 2

        assert service.increment_usage(subscribed, "unique_visitors")
        assert service.get_current_usage(subscribed, "unique_visitors") == 3
        assert not service.can_use(subscribed, "unique_visitors")

    def test_one_row_per_period(self, db_session, service, subscribed, now):
        service.increment_usage(subscribed, "unique_visitors")
        service.increment_usage(subscribed, "unique_visitors")

        rows = _rows(db_session, subscribed, "unique_visitors")
        assert len(rows) == 1
        assert rows[0].current_usage == 2
        assert rows[0].period_type == UsagePeriod.MONTHLY
        assert rows[0].period_starts_at == datetime(2025, 6, 1)

    def test_non_positive_amount_is_rejected(self, service, subscribed):
        assert not service.increment_usage(subscribed, "unique_visitors", 0)
        assert not service.increment_usage(subscribed, "unique_visitors", -1)

    def test_undefined_feature_is_not_usable(self, service, subscribed):
        assert not service.can_use(subscribed, "undefined")
        assert not service.increment_usage(subscribed, "undefined")

    def test_limit_without_feature_metadata(self, db_session, service, organization, caplog):
        service.entitlements.attach_plan(organization, create_plan(db_session, limits={"mystery": "5"}))

        with caplog.at_level(logging.ERROR):
            assert not service.increment_usage(organization, "mystery")
        assert "unknown feature" in caplog.text

    def test_unlimited_feature(self, service, subscribed):
        for _ in range(5):
            assert service.increment_usage(subscribed, "exports", 100)
        assert service.get_current_usage(subscribed, "exports") == 500
        assert service.get_remaining_usage(subscribed, "exports") is None
        assert service.get_usage_percentage(subscribed, "exports") == 0.0

    def test_boolean_feature(self, service, subscribed):
        assert service.can_use(subscribed, "priority_support")

    def test_no_plan_means_nothing_is_usable(self, service, organization, catalog):
        assert not service.can_use(organization, "unique_visitors")
        assert not service.increment_usage(organization, "unique_visitors")

    def test_increment_evicts_cached_usage(self, service, subscribed):
        assert service.get_current_usage(subscribed, "unique_visitors") == 0

        service.increment_usage(subscribed, "unique_visitors")

        assert service.get_current_usage(subscribed, "unique_visitors") == 1

    def test_limit_is_checked_against_committed_usage(self, db_session, service, subscribed):
        assert service.increment_usage(subscribed, "unique_visitors", 2)
        assert service.get_current_usage(subscribed, "unique_visitors") == 2

        # Another writer takes the last unit; the cached read still says 2
        db_session.query(UsageTracking).filter(
            UsageTracking.organization_id == subscribed.id,
            UsageTracking.feature == "unique_visitors",
        ).update({UsageTracking.current_usage: UsageTracking.current_usage + 1}, synchronize_session=False)
        db_session.commit()
        assert service.can_use(subscribed, "unique_visitors")

        assert not service.increment_usage(subscribed, "unique_visitors")

        db_session.expire_all()
        assert [r.current_usage for r in _rows(db_session, subscribed, "unique_visitors")] == [3]

    def test_increment_locks_the_organization(self, service, subscribed, monkeypatch):
        locked = []
        lock = service._lock_organization
        monkeypatch.setattr(service, "_lock_organization", lambda org: locked.append(org.id) or lock(org))

        assert service.increment_usage(subscribed, "unique_visitors")
        assert not service.increment_usage(subscribed, "unique_visitors", 5)

        assert locked == [subscribed.id, subscribed.id]


@pytest.mark.unit
class TestDecrementUsage:

    def test_decrement(self, service, subscribed):
        service.increment_usage(subscribed, "unique_visitors", 3)

        assert service.decrement_usage(subscribed, "unique_visitors", 2)
        assert service.get_current_usage(subscribed, "unique_visitors") == 1

    def test_never_below_zero(self, db_session, service, subscribed):
        service.increment_usage(subscribed, "unique_visitors", 1)

        assert not service.decrement_usage(subscribed, "unique_visitors", 5)
        assert service.get_current_usage(subscribed, "unique_visitors") == 1
        assert _rows(db_session, subscribed, "unique_visitors")[0].current_usage == 1

    def test_nothing_to_decrement(self, service, subscribed):
        assert not service.decrement_usage(subscribed, "unique_visitors")
        assert not service.decrement_usage(subscribed, "unique_visitors", 0)
        assert not service.decrement_usage(subscribed, "undefined")


@pytest.mark.unit
class TestPeriods:

    def test_daily_bounds(self, service, organization):
        start, end = service.get_period_bounds(organization, UsagePeriod.DAILY)

        assert start == datetime(2025, 6, 15)
        assert end == datetime(2025, 6, 15, 23, 59, 59, 999999)

    def test_weekly_bounds_start_on_monday(self, service, organization):
        start, end = service.get_period_bounds(organization, UsagePeriod.WEEKLY)

        assert start == datetime(2025, 6, 9)
        assert start.weekday() == 0
        assert end == datetime(2025, 6, 15, 23, 59, 59, 999999)

    def test_monthly_bounds(self, service, organization):
        start, end = service.get_period_bounds(organization, "monthly")

        assert start == datetime(2025, 6, 1)
        assert end == datetime(2025, 6, 30, 23, 59, 59, 999999)

    def test_lifetime_is_unbounded(self, service, organization):
        assert service.get_period_bounds(organization, UsagePeriod.LIFETIME) == (None, None)

    def test_yearly_anchor_rolls_forward(self, db_session, service, organization):
        create_subscription(
            db_session, organization=organization, plan=create_plan(db_session), started_at=datetime(2024, 3, 10, 10, 30)
        )

        assert service.get_yearly_anchor(organization) == datetime(2024, 3, 10)
        assert service.get_period_bounds(organization, UsagePeriod.YEARLY) == (
            datetime(2025, 3, 10),
            datetime(2026, 3, 10),
        )

    def test_yearly_anchor_without_plan_is_today(self, service, organization):
        assert service.get_period_bounds(organization, UsagePeriod.YEARLY) == (
            datetime(2025, 6, 15),
            datetime(2026, 6, 15),
        )

    def test_new_period_starts_from_zero(self, db_session, service, subscribed, frozen_clock):
        service.increment_usage(subscribed, "unique_visitors", 3)
        assert not service.can_use(subscribed, "unique_visitors")

        frozen_clock.set(datetime(2025, 7, 2, 9, 0))
        # Cached usage lives until its TTL; drop it as the TTL would
        service.entitlements.cache_for(subscribed).evict_plan_state()

        assert service.get_current_usage(subscribed, "unique_visitors") == 0
        assert service.increment_usage(subscribed, "unique_visitors")
        rows = _rows(db_session, subscribed, "unique_visitors")
        assert [r.current_usage for r in rows] == [3, 1]
        assert rows[1].period_starts_at == datetime(2025, 7, 1)


@pytest.mark.unit
class TestTeamMembers:

    def test_members_are_counted(self, db_session, service, subscribed):
        add_organization_member(db_session, organization=subscribed)
        add_organization_member(db_session, organization=subscribed)

        assert service.get_current_usage(subscribed, "team_members") == 3
        assert not service.can_use(subscribed, "team_members")

    def test_manual_lifetime_rows_are_added(self, db_session, service, subscribed):
        create_usage(db_session, organization=subscribed, feature="team_members", current_usage=1)

        assert service.get_current_usage(subscribed, "team_members") == 2
        assert service.can_use(subscribed, "team_members")
        assert not service.can_use(subscribed, "team_members", required=2)


@pytest.mark.unit
class TestWorkspaceAllocations:

    def test_allocation_caps_workspace_usage(self, db_session, service, subscribed):
        workspace = create_workspace(db_session, organization=subscribed)
        allocation = service.allocate_to_workspace(subscribed, workspace, "connections_per_workspace", 2)

        assert allocation.allocated == 2
        assert service.increment_usage(subscribed, "connections_per_workspace", workspace=workspace)
        assert service.increment_usage(subscribed, "connections_per_workspace", workspace=workspace)
        assert not service.increment_usage(subscribed, "connections_per_workspace", workspace=workspace)

        assert service.get_current_usage(subscribed, "connections_per_workspace", workspace) == 2
        assert service.get_workspace_remaining(subscribed, workspace, "connections_per_workspace") == 0
        assert service.get_workspace_usage_percentage(subscribed, workspace, "connections_per_workspace") == 100.0

    def test_workspace_counters_are_separate(self, db_session, service, subscribed):
        first = create_workspace(db_session, organization=subscribed)
        second = create_workspace(db_session, organization=subscribed)

        service.increment_usage(subscribed, "connections_per_workspace", 4, workspace=first)
        service.increment_usage(subscribed, "connections_per_workspace", 1, workspace=second)

        assert service.get_current_usage(subscribed, "connections_per_workspace", first) == 4
        assert service.get_current_usage(subscribed, "connections_per_workspace", second) == 1
        assert service.get_current_usage(subscribed, "connections_per_workspace") == 5

    def test_organization_usage_pools_workspaces(self, db_session, service, subscribed):
        first = create_workspace(db_session, organization=subscribed)
        second = create_workspace(db_session, organization=subscribed)
        assert service.get_current_usage(subscribed, "unique_visitors") == 0

        assert service.increment_usage(subscribed, "unique_visitors", 2, workspace=first)
        assert service.increment_usage(subscribed, "unique_visitors", 1, workspace=second)

        assert service.get_current_usage(subscribed, "unique_visitors") == 3
        assert service.get_remaining_usage(subscribed, "unique_visitors") == 0
        assert service.get_usage_percentage(subscribed, "unique_visitors") == 100.0
        assert not service.can_use(subscribed, "unique_visitors")
        assert not service.increment_usage(subscribed, "unique_visitors")

    def test_decrement_targets_the_workspace_row(self, db_session, service, subscribed):
        workspace = create_workspace(db_session, organization=subscribed)
        service.increment_usage(subscribed, "unique_visitors", 2, workspace=workspace)
        service.increment_usage(subscribed, "unique_visitors", 1)

        assert service.decrement_usage(subscribed, "unique_visitors", 2, workspace=workspace)

        assert service.get_current_usage(subscribed, "unique_visitors", workspace) == 0
        assert service.get_current_usage(subscribed, "unique_visitors") == 1

    def test_reallocation_updates_existing_row(self, db_session, service, subscribed):
        workspace = create_workspace(db_session, organization=subscribed)
        service.allocate_to_workspace(subscribed, workspace, "connections_per_workspace", 2)
        service.allocate_to_workspace(subscribed, workspace, "connections_per_workspace", 5)

        assert service.get_workspace_limit(workspace, "connections_per_workspace").allocated == 5
        assert service.get_workspace_remaining(subscribed, workspace, "connections_per_workspace") == 5

    def test_no_allocation(self, db_session, service, subscribed):
        workspace = create_workspace(db_session, organization=subscribed)

        assert service.get_workspace_remaining(subscribed, workspace, "connections_per_workspace") is None
        assert service.get_workspace_usage_percentage(subscribed, workspace, "connections_per_workspace") == 0.0


@pytest.mark.unit
class TestUsageSummary:

    def test_summary(self, service, subscribed):
        service.increment_usage(subscribed, "unique_visitors", 2)

        summary = service.get_usage_summary(subscribed)

        assert set(summary) == {
            "unique_visitors", "exports", "team_members", "connections_per_workspace", "priority_support"
        }
        visitors = summary["unique_visitors"]
        assert visitors["limit"] == 3
        assert visitors["current"] == 2
        assert visitors["remaining"] == 1
        assert visitors["percentage"] == pytest.approx(200 / 3)
        assert visitors["has_feature"] is True
        assert summary["exports"]["remaining"] is None
        assert summary["priority_support"]["type"] == "boolean"
        assert summary["connections_per_workspace"]["tracking_scope"] == "workspace"

    def test_inactive_features_are_hidden(self, db_session, service, subscribed, catalog):
        catalog["exports"].is_active = False
        db_session.commit()

        assert "exports" not in service.get_usage_summary(subscribed)

    def test_remaining_and_percentage(self, service, subscribed):
        service.increment_usage(subscribed, "unique_visitors", 1)

        assert service.get_remaining_usage(subscribed, "unique_visitors") == 2
        assert service.get_usage_percentage(subscribed, "unique_visitors") == pytest.approx(100 / 3)
        assert service.get_remaining_usage(subscribed, "undefined") is None
