"""Tests for weekly, monthly, peak-time and user trend rollups."""

from datetime import UTC, date, datetime, timedelta

import pytest

from src.domains.analytics.historical import (
    HistoricalAggregator,
    day_of_week,
    iso_week,
    month_bounds,
    peak_usage,
    user_trend_series,
    week_bounds,
)
from src.domains.turns.models import TurnStatus
from src.shared.cache import InMemoryCache
from tests.conftest import NOW, FrozenClock, make_turn


class TestCalendarHelpers:
    def test_week_bounds_monday_to_sunday(self):
        start, end = week_bounds(date(2026, 3, 18))
        assert start == datetime(2026, 3, 16, tzinfo=UTC)
        assert end == datetime(2026, 3, 22, 23, 59, 59, 999999, tzinfo=UTC)

    def test_month_bounds_wrap_year(self):
        start, end = month_bounds(2026, 12)
        assert start == datetime(2026, 12, 1, tzinfo=UTC)
        assert end.date() == date(2026, 12, 31)

    def test_iso_week_label(self):
        assert iso_week(NOW) == "2026-W12"

    def test_day_of_week_starts_sunday(self):
        assert day_of_week(NOW) == 3
        assert day_of_week(datetime(2026, 3, 22, tzinfo=UTC)) == 0


class TestPeakUsage:
    def test_busiest_hour_and_day(self):
        turns = [
            make_turn("alice", datetime(2026, 3, 16, 9, 15, tzinfo=UTC)),
            make_turn("bob", datetime(2026, 3, 17, 9, 45, tzinfo=UTC)),
            make_turn("carol", datetime(2026, 3, 17, 14, 0, tzinfo=UTC)),
        ]
        result = peak_usage(turns, NOW - timedelta(days=30), NOW, 30)

        assert result.peak_hour.hour == 9
        assert result.peak_hour.hour_label == "09:00"
        assert result.peak_hour.turn_count == 2
        assert result.peak_day.day_name == "Tuesday"
        assert [b.hour for b in result.hourly_distribution] == [9, 14]
        assert result.analysis_period.total_days == 30

    def test_no_turns(self):
        result = peak_usage([], NOW - timedelta(days=7), NOW, 7)
        assert result.peak_hour is None
        assert result.peak_day is None
        assert result.hourly_distribution == []


class TestUserTrendSeries:
    def test_daily_buckets_cover_period(self):
        start = NOW - timedelta(days=6)
        series = user_trend_series([], start, NOW)
        assert len(series.daily_activity) == 7
        assert series.daily_activity[0].day == start.date()
        assert series.summary.total_turns == 0

    def test_response_time_in_whole_minutes(self):
        turns = [
            make_turn("alice", NOW - timedelta(days=1), duration_seconds=90),
            make_turn("alice", NOW - timedelta(days=2), duration_seconds=150),
            make_turn("alice", NOW - timedelta(days=3), status=TurnStatus.SKIPPED),
        ]
        series = user_trend_series(turns, NOW - timedelta(days=7), NOW)
        assert series.summary.average_response_time == 1.5
        assert series.summary.completed_turns == 2
        assert series.summary.skipped_turns == 1

    def test_weekly_completion_rates(self):
        turns = [
            make_turn("alice", datetime(2026, 3, 16, 9, tzinfo=UTC)),
            make_turn("alice", datetime(2026, 3, 17, 9, tzinfo=UTC), status=TurnStatus.SKIPPED),
            make_turn("alice", datetime(2026, 3, 10, 9, tzinfo=UTC)),
        ]
        series = user_trend_series(turns, NOW - timedelta(days=14), NOW)
        rates = {r.week: r for r in series.completion_rates}
        assert rates["2026-W12"].completion_rate == 50.0
        assert rates["2026-W11"].completion_rate == 100.0
        assert [w.turns for w in series.weekly_trends][-2:] == [1, 2]


class TestHistoricalAggregator:
    @pytest.fixture
    def aggregator(self, repository, clock):
        return HistoricalAggregator(repository, InMemoryCache(), clock=clock)

    def test_weekly_activity(self, repository, aggregator, group):
        repository.add_turn(make_turn("alice", NOW - timedelta(hours=1), duration_seconds=120))
        repository.add_turn(
            make_turn("bob", NOW - timedelta(hours=2), status=TurnStatus.SKIPPED)
        )
        repository.add_turn(make_turn("carol", NOW - timedelta(days=7)))

        weeks = aggregator.get_weekly_activity(group.id, weeks=2)
        assert [w.week_start.isoformat() for w in weeks] == ["2026-03-09", "2026-03-16"]
        assert weeks[0].total_turns == 1
        assert weeks[1].total_turns == 2
        assert weeks[1].completed_turns == 1
        assert weeks[1].skipped_turns == 1
        assert weeks[1].unique_participants == 2
        assert weeks[1].average_duration == 90.0

    def test_monthly_activity(self, repository, aggregator, group):
        repository.add_turn(make_turn("alice", datetime(2026, 2, 10, tzinfo=UTC)))
        repository.add_turn(make_turn("bob", datetime(2026, 3, 1, tzinfo=UTC), duration_seconds=30))

        months = aggregator.get_monthly_activity(group.id, months=3)
        assert [m.month for m in months] == ["2026-01", "2026-02", "2026-03"]
        assert months[2].month_name == "March 2026"
        assert [m.total_turns for m in months] == [0, 1, 1]
        assert months[2].total_duration == 30.0

    def test_monthly_activity_crosses_year(self, repository, group):
        clock = FrozenClock(datetime(2026, 2, 5, tzinfo=UTC))
        aggregator = HistoricalAggregator(repository, clock=clock)
        months = aggregator.get_monthly_activity(group.id, months=3)
        assert [m.month for m in months] == ["2025-12", "2026-01", "2026-02"]

    def test_membership_trends(self, repository, aggregator, group):
        repository.add_turn(make_turn("alice", NOW - timedelta(hours=1)))
        trends = aggregator.get_membership_trends(group.id, weeks=1)
        assert trends[0].total_members == 3
        assert trends[0].active_members == 1
        assert trends[0].engagement_rate == pytest.approx(33.33)

    def test_peak_usage_window(self, repository, aggregator, group):
        repository.add_turn(make_turn("alice", NOW - timedelta(days=3)))
        repository.add_turn(make_turn("bob", NOW - timedelta(days=40)))
        result = aggregator.get_peak_usage_times(group.id, days=30)
        assert sum(b.turn_count for b in result.hourly_distribution) == 1

    def test_user_trends(self, repository, aggregator):
        repository.add_turn(make_turn("alice", NOW - timedelta(days=1)))
        repository.add_turn(make_turn("alice", NOW - timedelta(days=2), group_id="group-2"))
        repository.add_turn(make_turn("bob", NOW - timedelta(days=1)))

        series = aggregator.get_user_trends("alice", days=7)
        assert series.summary.total_turns == 2
        assert len(series.daily_activity) == 8

    def test_results_cached_until_cleared(self, repository, aggregator, group):
        assert aggregator.get_weekly_activity(group.id, weeks=1)[0].total_turns == 0
        repository.add_turn(make_turn("alice", NOW - timedelta(hours=1)))
        assert aggregator.get_weekly_activity(group.id, weeks=1)[0].total_turns == 0

        aggregator.clear_cache(group.id)
        assert aggregator.get_weekly_activity(group.id, weeks=1)[0].total_turns == 1

    def test_cached_series_roll_over_at_week_boundary(self, repository, group):
        clock = FrozenClock(datetime(2026, 3, 22, 23, 0, tzinfo=UTC))
        aggregator = HistoricalAggregator(repository, InMemoryCache(), clock=clock)
        assert aggregator.get_weekly_activity(group.id, weeks=1)[0].week_start == date(2026, 3, 16)

        clock.advance(hours=2)
        assert aggregator.get_weekly_activity(group.id, weeks=1)[0].week_start == date(2026, 3, 23)

    def test_cached_series_roll_over_at_month_boundary(self, repository, group):
        clock = FrozenClock(datetime(2026, 3, 31, 23, 0, tzinfo=UTC))
        aggregator = HistoricalAggregator(repository, InMemoryCache(), clock=clock)
        assert aggregator.get_monthly_activity(group.id, months=1)[0].month == "2026-03"

        clock.advance(hours=2)
        assert aggregator.get_monthly_activity(group.id, months=1)[0].month == "2026-04"
