"""Time-windowed rollups over turn history.

Weeks run Monday through Sunday and all bucketing happens in UTC. Every
series is returned oldest first.
"""

from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, date, datetime, time, timedelta

import structlog

from src.domains.turns.models import Turn, TurnStatus
from src.domains.turns.repository import TurnRepository
from src.shared.cache import AnalyticsCache, NullCache, cache_key

from .config import AnalyticsConfig, default_config
from .models import (
    AnalysisPeriod,
    CompletionRate,
    DailyActivity,
    DailyBucket,
    DurationTrend,
    HourlyBucket,
    MembershipTrend,
    MonthlyActivity,
    PeakUsage,
    UserTrendSeries,
    UserTrendSummary,
    WeeklyActivity,
    WeeklyTrend,
)

logger = structlog.get_logger()

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


# --- Helpers ---


def _durations(turns: Iterable[Turn]) -> list[float]:
    return [(t.ended_at - t.started_at).total_seconds() for t in turns if t.ended_at is not None]


def average_duration(turns: Iterable[Turn]) -> float:
    durations = _durations(turns)
    return round(sum(durations) / len(durations), 2) if durations else 0.0


def total_duration(turns: Iterable[Turn]) -> float:
    return float(sum(_durations(turns)))


def _count(turns: Iterable[Turn], status: TurnStatus) -> int:
    return sum(1 for t in turns if t.status == status)


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def week_bounds(day: date) -> tuple[datetime, datetime]:
    monday = day - timedelta(days=day.weekday())
    start = _start_of_day(monday)
    return start, start + timedelta(days=7) - timedelta(microseconds=1)


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    start = datetime(year, month, 1, tzinfo=UTC)
    following = datetime(year + month // 12, month % 12 + 1, 1, tzinfo=UTC)
    return start, following - timedelta(microseconds=1)


def iso_week(moment: datetime) -> str:
    year, week, _ = moment.isocalendar()
    return f"{year}-W{week:02d}"


def day_of_week(moment: datetime) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def _in_range(turns: Iterable[Turn], start: datetime, end: datetime) -> list[Turn]:
    return [t for t in turns if start <= t.started_at <= end]


class HistoricalAggregator:
    """Weekly, monthly, peak-time and trend series with a 1 hour cache."""

    def __init__(
        self,
        repository: TurnRepository,
        cache: AnalyticsCache | None = None,
        config: AnalyticsConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._cache = cache if cache is not None else NullCache()
        self._config = config or default_config
        self._clock = clock or (lambda: datetime.now(UTC))

    def _anchor(self) -> str:
        """Day the rolling windows end on; part of every series key."""
        return self._clock().date().isoformat()

    # --- Group series ---

    def get_weekly_activity(self, group_id: str, weeks: int | None = None) -> list[WeeklyActivity]:
        weeks = weeks or self._config.windows.weekly_activity_weeks
        key = cache_key("weekly_activity", "group", group_id, "weeks", weeks, self._anchor())

        def compute() -> list:
            today = self._clock().date()
            first, _ = week_bounds(today - timedelta(weeks=weeks - 1))
            turns = self._repository.list_group_turns(group_id, start=first)

            rows = []
            for offset in range(weeks - 1, -1, -1):
                start, end = week_bounds(today - timedelta(weeks=offset))
                week_turns = _in_range(turns, start, end)
                rows.append(
                    WeeklyActivity(
                        week_start=start.date(),
                        week_end=end.date(),
                        total_turns=len(week_turns),
                        completed_turns=_count(week_turns, TurnStatus.COMPLETED),
                        skipped_turns=_count(week_turns, TurnStatus.SKIPPED),
                        active_turns=_count(week_turns, TurnStatus.ACTIVE),
                        average_duration=average_duration(week_turns),
                        unique_participants=len({t.user_id for t in week_turns}),
                    ).model_dump(mode="json")
                )
            return rows

        cached = self._cache.remember(key, self._config.ttl.historical, compute)
        return [WeeklyActivity.model_validate(row) for row in cached]

    def get_monthly_activity(
        self, group_id: str, months: int | None = None
    ) -> list[MonthlyActivity]:
        months = months or self._config.windows.monthly_activity_months
        key = cache_key("monthly_activity", "group", group_id, "months", months, self._anchor())

        def compute() -> list:
            now = self._clock()
            # Month index counted from year 0 so subtraction wraps years.
            current = now.year * 12 + now.month - 1
            rows = []
            for offset in range(months - 1, -1, -1):
                year, month_index = divmod(current - offset, 12)
                start, end = month_bounds(year, month_index + 1)
                month_turns = self._repository.list_group_turns(group_id, start=start, end=end)
                rows.append(
                    MonthlyActivity(
                        month=start.strftime("%Y-%m"),
                        month_name=start.strftime("%B %Y"),
                        total_turns=len(month_turns),
                        completed_turns=_count(month_turns, TurnStatus.COMPLETED),
                        skipped_turns=_count(month_turns, TurnStatus.SKIPPED),
                        active_turns=_count(month_turns, TurnStatus.ACTIVE),
                        average_duration=average_duration(month_turns),
                        unique_participants=len({t.user_id for t in month_turns}),
                        total_duration=total_duration(month_turns),
                    ).model_dump(mode="json")
                )
            return rows

        cached = self._cache.remember(key, self._config.ttl.historical, compute)
        return [MonthlyActivity.model_validate(row) for row in cached]

    def get_peak_usage_times(self, group_id: str, days: int | None = None) -> PeakUsage:
        """Busiest hour of day and day of week over the last ``days`` days."""
        days = days or self._config.windows.peak_usage_days
        key = cache_key("peak_usage", "group", group_id, "days", days, self._anchor())

        def compute() -> dict:
            now = self._clock()
            start = now - timedelta(days=days)
            turns = self._repository.list_group_turns(group_id, start=start)
            return peak_usage(turns, start, now, days).model_dump(mode="json")

        return PeakUsage.model_validate(
            self._cache.remember(key, self._config.ttl.historical, compute)
        )

    def get_membership_trends(
        self, group_id: str, weeks: int | None = None
    ) -> list[MembershipTrend]:
        """Enrolled versus participating members per week."""
        weeks = weeks or self._config.windows.membership_trend_weeks
        key = cache_key("membership_trends", "group", group_id, "weeks", weeks, self._anchor())

        def compute() -> list:
            group = self._repository.get_group(group_id)
            today = self._clock().date()
            first, _ = week_bounds(today - timedelta(weeks=weeks - 1))
            turns = self._repository.list_group_turns(group_id, start=first)

            rows = []
            for offset in range(weeks - 1, -1, -1):
                start, end = week_bounds(today - timedelta(weeks=offset))
                enrolled = sum(1 for m in group.active_members() if m.joined_at <= end)
                participating = len({t.user_id for t in _in_range(turns, start, end)})
                rows.append(
                    MembershipTrend(
                        week_start=start.date(),
                        week_end=end.date(),
                        total_members=enrolled,
                        active_members=participating,
                        engagement_rate=round(participating / enrolled * 100, 2)
                        if enrolled > 0
                        else 0.0,
                    ).model_dump(mode="json")
                )
            return rows

        cached = self._cache.remember(key, self._config.ttl.historical, compute)
        return [MembershipTrend.model_validate(row) for row in cached]

    # --- User series ---

    def get_user_trends(self, user_id: str, days: int | None = None) -> UserTrendSeries:
        """Daily and weekly activity of one user across all of their groups."""
        days = days or self._config.windows.user_trend_days
        key = cache_key("user_trends", "user", user_id, "days", days, self._anchor())

        def compute() -> dict:
            end = self._clock()
            start = end - timedelta(days=days)
            turns = self._repository.list_user_turns(user_id, start=start, end=end)
            return user_trend_series(turns, start, end).model_dump(mode="json")

        return UserTrendSeries.model_validate(
            self._cache.remember(key, self._config.ttl.historical, compute)
        )

    # --- Invalidation ---

    def clear_cache(self, group_id: str) -> int:
        return sum(
            self._cache.forget_pattern(cache_key(metric, "group", group_id, "*"))
            for metric in ("weekly_activity", "monthly_activity", "peak_usage", "membership_trends")
        )

    def clear_user_cache(self, user_id: str) -> int:
        return self._cache.forget_pattern(cache_key("user_trends", "user", user_id, "*"))


# --- Pure builders ---


def peak_usage(turns: Sequence[Turn], start: datetime, end: datetime, days: int) -> PeakUsage:
    by_hour: dict[int, list[Turn]] = {}
    by_day: dict[int, list[Turn]] = {}
    for turn in turns:
        moment = turn.started_at.astimezone(UTC)
        by_hour.setdefault(moment.hour, []).append(turn)
        by_day.setdefault(day_of_week(moment), []).append(turn)

    hourly = [
        HourlyBucket(
            hour=hour,
            hour_label=f"{hour:02d}:00",
            turn_count=len(bucket),
            average_duration=average_duration(bucket),
        )
        for hour, bucket in sorted(by_hour.items())
    ]
    daily = [
        DailyBucket(
            day_of_week=dow,
            day_name=DAY_NAMES[dow],
            turn_count=len(bucket),
            average_duration=average_duration(bucket),
        )
        for dow, bucket in sorted(by_day.items())
    ]

    return PeakUsage(
        hourly_distribution=hourly,
        daily_distribution=daily,
        peak_hour=max(hourly, key=lambda b: b.turn_count, default=None),
        peak_day=max(daily, key=lambda b: b.turn_count, default=None),
        analysis_period=AnalysisPeriod(
            start_date=start.date(), end_date=end.date(), total_days=days
        ),
    )


def user_trend_series(turns: Sequence[Turn], start: datetime, end: datetime) -> UserTrendSeries:
    ordered = sorted(turns, key=lambda t: t.started_at)

    daily = []
    day = start.date()
    while day <= end.date():
        day_start = _start_of_day(day)
        bucket = _in_range(ordered, day_start, day_start + timedelta(days=1, microseconds=-1))
        daily.append(
            DailyActivity(
                day=day,
                turns=len(bucket),
                completed=_count(bucket, TurnStatus.COMPLETED),
                skipped=_count(bucket, TurnStatus.SKIPPED),
                average_duration=average_duration(bucket),
            )
        )
        day += timedelta(days=1)

    weekly = []
    week_start, week_end = week_bounds(start.date())
    while week_start <= end:
        bucket = _in_range(ordered, week_start, week_end)
        weekly.append(
            WeeklyTrend(
                week_start=week_start.date(),
                week_end=week_end.date(),
                turns=len(bucket),
                completed=_count(bucket, TurnStatus.COMPLETED),
                skipped=_count(bucket, TurnStatus.SKIPPED),
                average_duration=average_duration(bucket),
            )
        )
        week_start += timedelta(weeks=1)
        week_end += timedelta(weeks=1)

    by_week: dict[str, list[Turn]] = {}
    for turn in ordered:
        by_week.setdefault(iso_week(turn.started_at.astimezone(UTC)), []).append(turn)

    completion_rates = []
    duration_trends = []
    for week, bucket in by_week.items():
        completed = _count(bucket, TurnStatus.COMPLETED)
        finished = completed + _count(bucket, TurnStatus.SKIPPED)
        completion_rates.append(
            CompletionRate(
                week=week,
                completion_rate=round(completed / finished * 100, 2) if finished else 0.0,
                total_turns=finished,
                completed_turns=completed,
            )
        )
        duration_trends.append(
            DurationTrend(
                week=week,
                average_duration=average_duration(bucket),
                total_duration=total_duration(bucket),
                turn_count=len(bucket),
            )
        )

    # Whole minutes from start to completion, completed turns only.
    response_minutes = [
        (t.ended_at - t.started_at).total_seconds() // 60
        for t in ordered
        if t.status == TurnStatus.COMPLETED and t.ended_at is not None
    ]

    return UserTrendSeries(
        daily_activity=daily,
        weekly_trends=weekly,
        completion_rates=completion_rates,
        duration_trends=duration_trends,
        summary=UserTrendSummary(
            total_turns=len(ordered),
            completed_turns=_count(ordered, TurnStatus.COMPLETED),
            skipped_turns=_count(ordered, TurnStatus.SKIPPED),
            average_response_time=round(sum(response_minutes) / len(response_minutes), 2)
            if response_minutes
            else 0.0,
            period_start=start.date(),
            period_end=end.date(),
        ),
    )
