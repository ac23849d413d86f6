"""Tests for the composed analytics views."""

from datetime import date, timedelta

import pytest

from src.domains.analytics.models import (
    FairnessLevel,
    InsightType,
    TrendDirection,
    WeeklyActivity,
)
from src.domains.analytics.service import (
    TurnAnalyticsService,
    consistency_score,
    week_over_week_change,
)
from src.domains.turns.errors import GroupNotFound
from src.domains.turns.models import TurnStatus
from src.shared.cache import InMemoryCache
from tests.conftest import NOW, make_turn


def _week(total: int) -> WeeklyActivity:
    return WeeklyActivity(week_start=date(2026, 3, 9), week_end=date(2026, 3, 15), total_turns=total)


class TestHelpers:
    def test_consistency_score(self):
        assert consistency_score([4, 4, 4, 4]) == 1.0
        assert consistency_score([1, 3]) == pytest.approx(0.5)
        assert consistency_score([0, 10]) == 0.0
        assert consistency_score([]) == 1.0
        assert consistency_score([0, 0]) == 1.0

    def test_week_over_week_change(self):
        assert week_over_week_change([_week(4), _week(2)]) == -50.0
        assert week_over_week_change([_week(0), _week(5)]) == 0.0
        assert week_over_week_change([_week(5)]) is None


class TestTurnAnalyticsService:
    @pytest.fixture
    def cache(self):
        return InMemoryCache()

    @pytest.fixture
    def service(self, repository, cache, clock):
        return TurnAnalyticsService(repository, cache, clock=clock)

    def _rotate(self, repository, days, seconds=60):
        users = ["alice", "bob", "carol"]
        for i in range(days):
            repository.add_turn(
                make_turn(users[i % 3], NOW - timedelta(days=i + 1), duration_seconds=seconds)
            )

    def test_group_analytics_bundle(self, repository, service, group):
        self._rotate(repository, 6)
        repository.add_turn(make_turn("alice", NOW - timedelta(minutes=5), status=TurnStatus.ACTIVE))

        analytics = service.get_group_analytics(group.id)
        assert analytics.total_turns == 7
        assert analytics.active_turns == 1
        assert analytics.average_session_duration == 60.0
        assert set(analytics.duration_percentiles) == {50, 75, 90, 95, 99}
        assert analytics.fairness_metrics.total_members == 3
        assert len(analytics.weekly_activity) == 12
        assert len(analytics.membership_trends) == 12

    def test_group_analytics_cached_and_cleared(self, repository, service, group):
        first = service.get_group_analytics(group.id)
        self._rotate(repository, 3)

        assert service.get_group_analytics(group.id).total_turns == first.total_turns
        assert service.clear_cache(group.id) > 0
        assert service.get_group_analytics(group.id).total_turns == 3

    def test_cache_hit_keeps_numeric_percentile_keys(self, repository, service, group):
        self._rotate(repository, 3)
        service.get_group_analytics(group.id)
        cached = service.get_group_analytics(group.id)
        assert 50 in cached.duration_percentiles
        assert "50" not in cached.duration_percentiles

    def test_clear_cache_is_scoped(self, repository, service, cache, group):
        service.get_group_fairness(group.id)
        service.percentiles.calculate_group_percentiles("group-2", [50])
        service.clear_cache(group.id)
        assert len(cache) == 1

    def test_unknown_group(self, service):
        with pytest.raises(GroupNotFound):
            service.get_group_analytics("missing")

    def test_insights_for_quiet_group(self, service, group):
        assert service.get_group_insights(group.id).insights == []

    def test_fairness_warning(self, repository, service, group):
        for i in range(6):
            repository.add_turn(make_turn("alice", NOW - timedelta(days=i + 1)))
        types = {i.type for i in service.get_group_insights(group.id).insights}
        assert InsightType.FAIRNESS_WARNING in types

    def test_duration_alert(self, repository, service, group):
        self._rotate(repository, 3, seconds=2 * 3600)
        insights = service.get_group_insights(group.id)
        alert = next(i for i in insights.insights if i.type == InsightType.DURATION_ALERT)
        assert alert.data["p95_duration"] == 7200.0
        assert insights.insight_count == len(insights.insights)

    def test_peak_usage_insight(self, repository, service, group):
        self._rotate(repository, 12)
        types = {i.type for i in service.get_group_insights(group.id).insights}
        assert InsightType.PEAK_USAGE in types

    def test_activity_surge(self, repository, service, group):
        repository.add_turn(make_turn("alice", NOW - timedelta(days=7)))
        for hours in range(1, 4):
            repository.add_turn(make_turn("bob", NOW - timedelta(hours=hours)))
        insight = next(
            i
            for i in service.get_group_insights(group.id).insights
            if i.type == InsightType.ACTIVITY_SURGE
        )
        assert insight.data["percent_change"] == 200.0

    def _weeks(self, repository, previous, current):
        for i in range(previous):
            repository.add_turn(make_turn("alice", NOW - timedelta(days=7, hours=i)))
        for i in range(current):
            repository.add_turn(make_turn("bob", NOW - timedelta(hours=i + 1)))

    def test_activity_decline(self, repository, service, group):
        self._weeks(repository, previous=10, current=2)
        insight = next(
            i
            for i in service.get_group_insights(group.id).insights
            if i.type == InsightType.ACTIVITY_DECLINE
        )
        assert insight.data["percent_change"] == -80.0
        assert insight.data["previous_week_turns"] == 10
        assert insight.data["current_week_turns"] == 2

    def test_halved_activity_is_not_a_decline(self, repository, service, group):
        self._weeks(repository, previous=4, current=2)
        types = {i.type for i in service.get_group_insights(group.id).insights}
        assert InsightType.ACTIVITY_DECLINE not in types
        assert InsightType.ACTIVITY_SURGE not in types

    def test_performance_metrics(self, repository, service, group):
        self._rotate(repository, 6)
        metrics = service.get_performance_metrics(group.id)

        assert metrics.efficiency.avg_turn_duration == 60.0
        assert metrics.efficiency.p95_turn_duration == 60.0
        assert metrics.fairness.fairness_level == FairnessLevel.EXCELLENT
        assert metrics.fairness.distribution_balance is True
        assert metrics.engagement.active_members_ratio == 1.0

    def test_user_trends(self, repository, service):
        repository.add_turn(make_turn("alice", NOW - timedelta(days=1), duration_seconds=120))
        repository.add_turn(
            make_turn("alice", NOW - timedelta(days=2), status=TurnStatus.SKIPPED)
        )

        trends = service.get_user_trends("alice", days=7)
        assert trends.total_turns == 2
        assert trends.completion_rate == 0.5
        assert trends.average_response_time == 2.0
        assert set(trends.duration_percentiles) == {50, 95, 99}
        assert trends.turns_trend() == TrendDirection.STABLE

    def test_user_cache_cleared_separately(self, repository, service):
        service.get_user_trends("alice", days=7)
        repository.add_turn(make_turn("alice", NOW - timedelta(days=1)))
        assert service.get_user_trends("alice", days=7).total_turns == 0

        service.clear_user_cache("alice")
        assert service.get_user_trends("alice", days=7).total_turns == 1

    def test_fresh_cache_is_shared_by_every_calculator(self, repository, cache, clock, group):
        service = TurnAnalyticsService(repository, cache, clock=clock)
        calls = [
            lambda: service.percentiles.calculate_group_percentiles(group.id, [50]),
            lambda: service.fairness.calculate_group_fairness(group.id),
            lambda: service.historical.get_weekly_activity(group.id, weeks=1),
            lambda: service.get_group_analytics(group.id),
        ]
        for call in calls:
            before = len(cache)
            call()
            assert len(cache) > before
