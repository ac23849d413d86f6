"""Analytics configuration: cache lifetimes, windows and insight thresholds."""

import os
from dataclasses import dataclass, field


@dataclass
class CacheTTLConfig:
    """Seconds each analytics result stays cached."""

    percentiles: int = 3600
    fairness: int = 1800
    historical: int = 3600
    # Composite results (group bundle, insights, performance, user trends)
    service: int = 1800


@dataclass
class WindowConfig:
    """Default look-back windows."""

    weekly_activity_weeks: int = 12
    monthly_activity_months: int = 6
    membership_trend_weeks: int = 12
    fairness_trend_weeks: int = 8
    peak_usage_days: int = 30
    user_trend_days: int = 30
    # Weeks considered by insights and the performance view
    recent_activity_weeks: int = 4


@dataclass
class InsightThresholds:
    """When the insight rules fire."""

    fairness_warning_below: float = 0.5
    long_duration_p95_seconds: float = 3600.0
    activity_decline_percent: float = -50.0
    activity_surge_percent: float = 100.0
    peak_hour_min_turns: int = 10


@dataclass
class FairnessConfig:
    # |deviation from expected share| above this (percent) marks a member imbalanced
    imbalance_threshold_percent: float = 30.0
    # score >= this counts as balanced
    balanced_threshold: float = 0.7


@dataclass
class AnalyticsConfig:
    """Top-level analytics configuration."""

    ttl: CacheTTLConfig = field(default_factory=CacheTTLConfig)
    windows: WindowConfig = field(default_factory=WindowConfig)
    insights: InsightThresholds = field(default_factory=InsightThresholds)
    fairness: FairnessConfig = field(default_factory=FairnessConfig)

    default_percentiles: tuple[float, ...] = (50, 95, 99)
    group_percentiles: tuple[float, ...] = (50, 75, 90, 95, 99)
    detailed_percentiles: tuple[float, ...] = (25, 50, 75, 90, 95, 99)

    def __post_init__(self) -> None:
        for name in ("percentiles", "fairness", "historical", "service"):
            if getattr(self.ttl, name) <= 0:
                raise ValueError(f"Cache TTL '{name}' must be positive")
        for percentiles in (
            self.default_percentiles,
            self.group_percentiles,
            self.detailed_percentiles,
        ):
            if any(p < 0 or p > 100 for p in percentiles):
                raise ValueError(f"Percentiles must be within 0-100, got {percentiles}")

    @classmethod
    def from_env(cls) -> "AnalyticsConfig":
        """Load config with environment variable overrides (ANALYTICS_ prefix)."""
        config = cls()

        if v := os.getenv("ANALYTICS_PERCENTILE_TTL"):
            config.ttl.percentiles = int(v)
        if v := os.getenv("ANALYTICS_FAIRNESS_TTL"):
            config.ttl.fairness = int(v)
        if v := os.getenv("ANALYTICS_HISTORICAL_TTL"):
            config.ttl.historical = int(v)
        if v := os.getenv("ANALYTICS_SERVICE_TTL"):
            config.ttl.service = int(v)
        if v := os.getenv("ANALYTICS_FAIRNESS_WARNING_BELOW"):
            config.insights.fairness_warning_below = float(v)
        if v := os.getenv("ANALYTICS_LONG_DURATION_P95_SECONDS"):
            config.insights.long_duration_p95_seconds = float(v)

        config.__post_init__()
        return config


default_config = AnalyticsConfig()
