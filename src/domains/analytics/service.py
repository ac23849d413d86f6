"""Analytics orchestration: group bundle, insights and performance views."""

import math
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

import numpy as np
import structlog

from src.domains.turns.models import TurnStatus
from src.domains.turns.repository import TurnRepository
from src.shared.cache import AnalyticsCache, NullCache, cache_key

from .config import AnalyticsConfig, default_config
from .fairness import FairnessScorer
from .historical import HistoricalAggregator
from .models import (
    EfficiencyMetrics,
    EngagementMetrics,
    FairnessMetrics,
    FairnessSummary,
    GroupAnalytics,
    GroupInsights,
    Insight,
    InsightSeverity,
    InsightType,
    PercentileMap,
    PerformanceMetrics,
    TrendData,
    WeeklyActivity,
)
from .percentiles import PercentileCalculator, restore_percentile_keys

logger = structlog.get_logger()


def consistency_score(weekly_totals: Sequence[float]) -> float:
    """max(0, 1 - CV) of weekly turn totals; 1.0 without enough data."""
    if len(weekly_totals) < 2:
        return 1.0
    values = np.asarray(weekly_totals, dtype=float)
    mean = float(values.mean())
    if mean == 0:
        return 1.0
    cv = math.sqrt(float(np.var(values))) / mean
    return max(0.0, 1.0 - cv)


def week_over_week_change(weeks: Sequence[WeeklyActivity]) -> float | None:
    """Percent change between the last two weeks, 0 when the earlier one is empty."""
    if len(weeks) < 2:
        return None
    previous, current = weeks[-2].total_turns, weeks[-1].total_turns
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100


def _date_param(value: datetime | None) -> str | None:
    return value.date().isoformat() if value is not None else None


class TurnAnalyticsService:
    """Composes percentiles, fairness and historical rollups into group views."""

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

        self.percentiles = PercentileCalculator(repository, self._cache, self._config)
        self.fairness = FairnessScorer(repository, self._cache, self._config, self._clock)
        self.historical = HistoricalAggregator(repository, self._cache, self._config, self._clock)

    # --- Group views ---

    def get_group_analytics(
        self, group_id: str, start: datetime | None = None, end: datetime | None = None
    ) -> GroupAnalytics:
        key = cache_key(
            "comprehensive", "group", group_id, _date_param(start), _date_param(end)
        )

        def compute() -> dict:
            # Raises GroupNotFound before any rollup runs.
            self._repository.get_group(group_id)
            turns = self._repository.list_group_turns(group_id, start=start, end=end)
            completed = [
                t for t in turns if t.status == TurnStatus.COMPLETED and t.ended_at is not None
            ]
            completed_seconds = sum((t.ended_at - t.started_at).total_seconds() for t in completed)
            windows = self._config.windows

            bundle = GroupAnalytics(
                group_id=group_id,
                duration_percentiles=self.percentiles.calculate_group_percentiles(
                    group_id, self._config.group_percentiles, start, end
                ),
                fairness_metrics=self.fairness.calculate_group_fairness(group_id),
                weekly_activity=self.historical.get_weekly_activity(
                    group_id, windows.weekly_activity_weeks
                ),
                membership_trends=self.historical.get_membership_trends(
                    group_id, windows.membership_trend_weeks
                ),
                peak_usage_times=self.historical.get_peak_usage_times(
                    group_id, windows.peak_usage_days
                ),
                average_session_duration=round(completed_seconds / len(completed), 2)
                if completed
                else 0.0,
                total_turns=len(turns),
                active_turns=sum(1 for t in turns if t.status == TurnStatus.ACTIVE),
                generated_at=self._clock(),
            )
            return bundle.model_dump(mode="json")

        data = self._cache.remember(key, self._config.ttl.service, compute)
        analytics = GroupAnalytics.model_validate(data)
        analytics.duration_percentiles = restore_percentile_keys(data["duration_percentiles"])
        return analytics

    def get_group_fairness(self, group_id: str) -> FairnessMetrics:
        return self.fairness.calculate_group_fairness(group_id)

    def calculate_duration_percentiles(
        self,
        group_id: str,
        percentiles: Sequence[int | float] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> PercentileMap:
        return self.percentiles.calculate_group_percentiles(group_id, percentiles, start, end)

    def get_group_insights(self, group_id: str) -> GroupInsights:
        """Threshold rules over fairness, durations, activity and peak usage."""
        key = cache_key("insights", "group", group_id)

        def compute() -> dict:
            self._repository.get_group(group_id)
            insights = self._build_insights(group_id)
            logger.info("group_insights_generated", group_id=group_id, count=len(insights))
            return GroupInsights(
                group_id=group_id,
                insights=insights,
                insight_count=len(insights),
                generated_at=self._clock(),
            ).model_dump(mode="json")

        return GroupInsights.model_validate(
            self._cache.remember(key, self._config.ttl.service, compute)
        )

    def get_performance_metrics(self, group_id: str) -> PerformanceMetrics:
        key = cache_key("performance", "group", group_id)

        def compute() -> dict:
            group = self._repository.get_group(group_id)
            stats = self.percentiles.get_detailed_duration_stats(group_id)
            fairness = self.fairness.calculate_group_fairness(group_id)
            recent = self.historical.get_weekly_activity(
                group_id, self._config.windows.recent_activity_weeks
            )

            weekly_totals = [w.total_turns for w in recent]
            weekly_rates = [
                w.completed_turns / w.total_turns * 100 if w.total_turns > 0 else 0.0
                for w in recent
            ]

            return PerformanceMetrics(
                group_id=group_id,
                efficiency=EfficiencyMetrics(
                    avg_turn_duration=stats.mean,
                    median_turn_duration=stats.median,
                    p95_turn_duration=stats.percentiles.get(95, 0.0),
                    completion_rate=round(sum(weekly_rates) / len(weekly_rates), 2)
                    if weekly_rates
                    else 0.0,
                ),
                fairness=FairnessSummary(
                    fairness_score=fairness.fairness_score,
                    fairness_level=fairness.fairness_level(),
                    distribution_balance=fairness.is_balanced(
                        self._config.fairness.balanced_threshold
                    ),
                ),
                engagement=EngagementMetrics(
                    avg_weekly_turns=round(sum(weekly_totals) / len(weekly_totals), 1)
                    if weekly_totals
                    else 0.0,
                    active_members_ratio=self._active_members_ratio(
                        group_id, len(group.active_members())
                    ),
                    consistency_score=consistency_score(weekly_totals),
                ),
                calculated_at=self._clock(),
            ).model_dump(mode="json")

        return PerformanceMetrics.model_validate(
            self._cache.remember(key, self._config.ttl.service, compute)
        )

    # --- User views ---

    def get_user_trends(self, user_id: str, days: int | None = None) -> TrendData:
        days = days or self._config.windows.user_trend_days
        key = cache_key("trend_data", "user", user_id, "days", days)

        def compute() -> dict:
            end = self._clock()
            start = end - timedelta(days=days)
            series = self.historical.get_user_trends(user_id, days)
            summary = series.summary
            return TrendData(
                user_id=user_id,
                daily_activity=series.daily_activity,
                weekly_trends=series.weekly_trends,
                completion_rates=series.completion_rates,
                duration_trends=series.duration_trends,
                duration_percentiles=self.percentiles.calculate_user_percentiles(
                    user_id, self._config.default_percentiles, start, end
                ),
                average_response_time=summary.average_response_time,
                total_turns=summary.total_turns,
                completed_turns=summary.completed_turns,
                skipped_turns=summary.skipped_turns,
                completion_rate=round(summary.completed_turns / summary.total_turns, 3)
                if summary.total_turns
                else 0.0,
                period_start=start,
                period_end=end,
            ).model_dump(mode="json")

        data = self._cache.remember(key, self._config.ttl.service, compute)
        trends = TrendData.model_validate(data)
        trends.duration_percentiles = restore_percentile_keys(data["duration_percentiles"])
        return trends

    # --- Invalidation ---

    def clear_cache(self, group_id: str) -> int:
        """Drop every cached analytics entry for one group."""
        removed = self._cache.forget_scope("group", group_id)
        logger.info("analytics_cache_cleared", scope="group", group_id=group_id, removed=removed)
        return removed

    def clear_user_cache(self, user_id: str) -> int:
        removed = self._cache.forget_scope("user", user_id)
        logger.info("analytics_cache_cleared", scope="user", user_id=user_id, removed=removed)
        return removed

    # --- Internals ---

    def _build_insights(self, group_id: str) -> list[Insight]:
        thresholds = self._config.insights
        fairness = self.fairness.calculate_group_fairness(group_id)
        stats = self.percentiles.get_detailed_duration_stats(group_id)
        peak = self.historical.get_peak_usage_times(group_id, self._config.windows.peak_usage_days)
        recent = self.historical.get_weekly_activity(
            group_id, self._config.windows.recent_activity_weeks
        )

        insights = []

        if fairness.fairness_score < thresholds.fairness_warning_below:
            insights.append(
                Insight(
                    type=InsightType.FAIRNESS_WARNING,
                    title="Uneven Turn Distribution",
                    description="Some members have significantly more or fewer turns than others.",
                    severity=InsightSeverity.MEDIUM,
                    data={
                        "fairness_score": fairness.fairness_score,
                        "imbalanced_members": len(fairness.imbalanced_members),
                    },
                )
            )

        p95 = stats.percentiles.get(95, 0.0)
        if stats.count > 0 and p95 > thresholds.long_duration_p95_seconds:
            insights.append(
                Insight(
                    type=InsightType.DURATION_ALERT,
                    title="Long Turn Durations Detected",
                    description="95% of turns exceed 1 hour, which may indicate stuck sessions.",
                    severity=InsightSeverity.HIGH,
                    data={"p95_duration": p95, "avg_duration": stats.mean},
                )
            )

        change = week_over_week_change(recent)
        if change is not None:
            data = {
                "percent_change": round(change, 1),
                "previous_week_turns": recent[-2].total_turns,
                "current_week_turns": recent[-1].total_turns,
            }
            if change < thresholds.activity_decline_percent:
                insights.append(
                    Insight(
                        type=InsightType.ACTIVITY_DECLINE,
                        title="Significant Activity Decline",
                        description="Turn activity has decreased significantly in the past week.",
                        severity=InsightSeverity.MEDIUM,
                        data=data,
                    )
                )
            elif change > thresholds.activity_surge_percent:
                insights.append(
                    Insight(
                        type=InsightType.ACTIVITY_SURGE,
                        title="Activity Surge Detected",
                        description="Turn activity has increased significantly in the past week.",
                        severity=InsightSeverity.INFO,
                        data=data,
                    )
                )

        if peak.peak_hour is not None and peak.peak_hour.turn_count > thresholds.peak_hour_min_turns:
            insights.append(
                Insight(
                    type=InsightType.PEAK_USAGE,
                    title="Peak Usage Pattern Identified",
                    description=f"Most activity occurs around {peak.peak_hour.hour_label}.",
                    severity=InsightSeverity.INFO,
                    data={
                        "peak_hour": peak.peak_hour.hour,
                        "peak_hour_turns": peak.peak_hour.turn_count,
                    },
                )
            )

        return insights

    def _active_members_ratio(self, group_id: str, member_count: int) -> float:
        if member_count == 0:
            return 0.0
        since = self._clock() - timedelta(weeks=1)
        recent = self._repository.list_group_turns(group_id, start=since)
        return round(len({t.user_id for t in recent}) / member_count, 3)
