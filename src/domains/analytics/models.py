"""Pydantic models for turn analytics results."""

from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_serializer

# Requested percentile (0-100) -> value
PercentileMap = dict[int | float, float]

# --- Enums ---


class FairnessLevel(StrEnum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    VERY_POOR = "very_poor"


class ImbalanceType(StrEnum):
    OVERSHARE = "overshare"
    UNDERSHARE = "undershare"


class ImbalanceSeverity(StrEnum):
    SEVERE = "severe"
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"


class TrendDirection(StrEnum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class InsightType(StrEnum):
    FAIRNESS_WARNING = "fairness_warning"
    DURATION_ALERT = "duration_alert"
    ACTIVITY_DECLINE = "activity_decline"
    ACTIVITY_SURGE = "activity_surge"
    PEAK_USAGE = "peak_usage"


class InsightSeverity(StrEnum):
    INFO = "info"
    MEDIUM = "medium"
    HIGH = "high"


# --- Durations ---


class DurationStats(BaseModel):
    count: int = 0
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    std_dev: float = 0.0
    percentiles: PercentileMap = Field(default_factory=dict)


# --- Fairness ---


class MemberTurnCounts(BaseModel):
    user_id: str
    name: str | None = None
    total_turns: int = 0
    completed_turns: int = 0
    skipped_turns: int = 0
    completion_rate: float = 0.0


class MemberDistribution(MemberTurnCounts):
    share_percentage: float = 0.0
    deviation_percentage: float = 0.0
    expected_turns: float = 0.0


class ImbalancedMember(BaseModel):
    user_id: str
    name: str | None = None
    total_turns: int
    expected_turns: float
    deviation_percentage: float
    type: ImbalanceType
    severity: ImbalanceSeverity


class FairnessMetrics(BaseModel):
    fairness_score: float = Field(ge=0, le=1)
    distribution_variance: float = Field(ge=0)
    gini_coefficient: float = Field(ge=0)
    member_distribution: list[MemberDistribution] = Field(default_factory=list)
    imbalanced_members: list[ImbalancedMember] = Field(default_factory=list)
    total_members: int = 0
    calculated_at: datetime

    @field_serializer("fairness_score", "distribution_variance", "gini_coefficient")
    def _round3(self, value: float) -> float:
        return round(value, 3)

    def is_balanced(self, threshold: float = 0.7) -> bool:
        return self.fairness_score >= threshold

    def fairness_level(self) -> FairnessLevel:
        if self.fairness_score >= 0.9:
            return FairnessLevel.EXCELLENT
        if self.fairness_score >= 0.7:
            return FairnessLevel.GOOD
        if self.fairness_score >= 0.5:
            return FairnessLevel.FAIR
        if self.fairness_score >= 0.3:
            return FairnessLevel.POOR
        return FairnessLevel.VERY_POOR


class FairnessSnapshot(BaseModel):
    week_start: date
    week_end: date
    fairness_score: float
    total_turns: int
    active_members: int


# --- Historical rollups ---


class WeeklyActivity(BaseModel):
    week_start: date
    week_end: date
    total_turns: int = 0
    completed_turns: int = 0
    skipped_turns: int = 0
    active_turns: int = 0
    average_duration: float = 0.0
    unique_participants: int = 0


class MonthlyActivity(BaseModel):
    month: str  # YYYY-MM
    month_name: str  # e.g. "March 2026"
    total_turns: int = 0
    completed_turns: int = 0
    skipped_turns: int = 0
    active_turns: int = 0
    average_duration: float = 0.0
    unique_participants: int = 0
    total_duration: float = 0.0


class HourlyBucket(BaseModel):
    hour: int = Field(ge=0, le=23)
    hour_label: str
    turn_count: int
    average_duration: float


class DailyBucket(BaseModel):
    day_of_week: int = Field(ge=0, le=6)  # 0 = Sunday
    day_name: str
    turn_count: int
    average_duration: float


class AnalysisPeriod(BaseModel):
    start_date: date
    end_date: date
    total_days: int


class PeakUsage(BaseModel):
    hourly_distribution: list[HourlyBucket] = Field(default_factory=list)
    daily_distribution: list[DailyBucket] = Field(default_factory=list)
    peak_hour: HourlyBucket | None = None
    peak_day: DailyBucket | None = None
    analysis_period: AnalysisPeriod


class MembershipTrend(BaseModel):
    week_start: date
    week_end: date
    total_members: int
    active_members: int
    engagement_rate: float


# --- User trends ---


class DailyActivity(BaseModel):
    day: date
    turns: int = 0
    completed: int = 0
    skipped: int = 0
    average_duration: float = 0.0


class WeeklyTrend(BaseModel):
    week_start: date
    week_end: date
    turns: int = 0
    completed: int = 0
    skipped: int = 0
    average_duration: float = 0.0


class CompletionRate(BaseModel):
    week: str  # ISO week, YYYY-Www
    completion_rate: float
    total_turns: int
    completed_turns: int


class DurationTrend(BaseModel):
    week: str
    average_duration: float
    total_duration: float
    turn_count: int


class UserTrendSummary(BaseModel):
    total_turns: int = 0
    completed_turns: int = 0
    skipped_turns: int = 0
    average_response_time: float = 0.0  # minutes
    period_start: date
    period_end: date


class UserTrendSeries(BaseModel):
    daily_activity: list[DailyActivity] = Field(default_factory=list)
    weekly_trends: list[WeeklyTrend] = Field(default_factory=list)
    completion_rates: list[CompletionRate] = Field(default_factory=list)
    duration_trends: list[DurationTrend] = Field(default_factory=list)
    summary: UserTrendSummary


class TrendData(BaseModel):
    """A user's activity trends across all of their groups."""

    user_id: str
    daily_activity: list[DailyActivity] = Field(default_factory=list)
    weekly_trends: list[WeeklyTrend] = Field(default_factory=list)
    completion_rates: list[CompletionRate] = Field(default_factory=list)
    duration_trends: list[DurationTrend] = Field(default_factory=list)
    duration_percentiles: PercentileMap = Field(default_factory=dict)
    average_response_time: float = 0.0
    total_turns: int = 0
    completed_turns: int = 0
    skipped_turns: int = 0
    completion_rate: float = 0.0
    period_start: datetime
    period_end: datetime

    def turns_trend(self) -> TrendDirection:
        """Direction of the last two weeks' turn counts (+-2 is noise)."""
        if len(self.weekly_trends) < 2:
            return TrendDirection.STABLE
        previous, latest = self.weekly_trends[-2:]
        change = latest.turns - previous.turns
        if change > 2:
            return TrendDirection.INCREASING
        if change < -2:
            return TrendDirection.DECREASING
        return TrendDirection.STABLE


# --- Composite views ---


class GroupAnalytics(BaseModel):
    group_id: str
    duration_percentiles: PercentileMap = Field(default_factory=dict)
    fairness_metrics: FairnessMetrics
    weekly_activity: list[WeeklyActivity] = Field(default_factory=list)
    membership_trends: list[MembershipTrend] = Field(default_factory=list)
    peak_usage_times: PeakUsage
    average_session_duration: float = 0.0
    total_turns: int = 0
    active_turns: int = 0
    generated_at: datetime


class Insight(BaseModel):
    type: InsightType
    title: str
    description: str
    severity: InsightSeverity
    data: dict[str, Any] = Field(default_factory=dict)


class GroupInsights(BaseModel):
    group_id: str
    insights: list[Insight] = Field(default_factory=list)
    insight_count: int = 0
    generated_at: datetime


class EfficiencyMetrics(BaseModel):
    avg_turn_duration: float = 0.0
    median_turn_duration: float = 0.0
    p95_turn_duration: float = 0.0
    completion_rate: float = 0.0  # percent


class FairnessSummary(BaseModel):
    fairness_score: float
    fairness_level: FairnessLevel
    distribution_balance: bool


class EngagementMetrics(BaseModel):
    avg_weekly_turns: float = 0.0
    active_members_ratio: float = 0.0
    consistency_score: float = 1.0


class PerformanceMetrics(BaseModel):
    group_id: str
    efficiency: EfficiencyMetrics
    fairness: FairnessSummary
    engagement: EngagementMetrics
    calculated_at: datetime
