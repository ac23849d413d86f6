"""Turn duration percentiles and descriptive statistics."""

import math
from collections.abc import Iterable, Sequence
from datetime import datetime

import numpy as np
import structlog

from src.domains.turns.models import HISTORY_STATUSES, Turn
from src.domains.turns.repository import TurnRepository
from src.shared.cache import AnalyticsCache, NullCache, cache_key

from .config import AnalyticsConfig, default_config
from .models import DurationStats, PercentileMap

logger = structlog.get_logger()


def turn_durations(turns: Iterable[Turn]) -> list[float]:
    """Durations in seconds of finished (completed or skipped) turns."""
    return [
        (t.ended_at - t.started_at).total_seconds()
        for t in turns
        if t.status in HISTORY_STATUSES and t.ended_at is not None
    ]


def calculate_percentiles(
    durations: Sequence[float], percentiles: Iterable[int | float]
) -> PercentileMap:
    """Linear-interpolated percentiles over ``durations``.

    index = p/100 * (n-1); an integral index returns that value, otherwise the
    two neighbours are interpolated. Empty input maps every percentile to 0.
    """
    requested = list(percentiles)
    if not durations:
        return {p: 0.0 for p in requested}

    ordered = sorted(durations)
    last = len(ordered) - 1
    result: PercentileMap = {}
    for p in requested:
        index = p / 100 * last
        lower = math.floor(index)
        if index == lower:
            result[p] = float(ordered[lower])
        else:
            upper = math.ceil(index)
            fraction = index - lower
            result[p] = ordered[lower] + fraction * (ordered[upper] - ordered[lower])
    return result


def duration_stats(
    durations: Sequence[float], percentiles: Iterable[int | float] = (25, 50, 75, 90, 95, 99)
) -> DurationStats:
    """Count, min/max, mean, median, sample standard deviation and percentiles."""
    if not durations:
        return DurationStats()

    values = np.asarray(durations, dtype=float)
    std_dev = float(np.std(values, ddof=1)) if len(values) > 1 else 0.0
    return DurationStats(
        count=len(values),
        min=float(values.min()),
        max=float(values.max()),
        mean=round(float(values.mean()), 2),
        median=calculate_percentiles(durations, [50])[50],
        std_dev=round(std_dev, 2),
        percentiles=calculate_percentiles(durations, percentiles),
    )


def restore_percentile_keys(data: dict) -> PercentileMap:
    """Turn JSON string keys ("50", "99.9") back into numbers."""
    restored: PercentileMap = {}
    for key, value in data.items():
        number = float(key)
        restored[int(number) if number.is_integer() else number] = value
    return restored


def _date_param(value: datetime | None) -> str | None:
    return value.date().isoformat() if value is not None else None


class PercentileCalculator:
    """Group and user scoped duration percentiles with read-through caching."""

    def __init__(
        self,
        repository: TurnRepository,
        cache: AnalyticsCache | None = None,
        config: AnalyticsConfig | None = None,
    ) -> None:
        self._repository = repository
        self._cache = cache if cache is not None else NullCache()
        self._config = config or default_config

    def calculate_group_percentiles(
        self,
        group_id: str,
        percentiles: Sequence[int | float] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> PercentileMap:
        requested = list(percentiles or self._config.default_percentiles)
        key = cache_key(
            "percentiles",
            "group",
            group_id,
            ",".join(str(p) for p in requested),
            _date_param(start),
            _date_param(end),
        )

        def compute() -> dict:
            durations = self.group_durations(group_id, start, end)
            return calculate_percentiles(durations, requested)

        return restore_percentile_keys(
            self._cache.remember(key, self._config.ttl.percentiles, compute)
        )

    def calculate_user_percentiles(
        self,
        user_id: str,
        percentiles: Sequence[int | float] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> PercentileMap:
        requested = list(percentiles or self._config.default_percentiles)
        key = cache_key(
            "percentiles",
            "user",
            user_id,
            ",".join(str(p) for p in requested),
            _date_param(start),
            _date_param(end),
        )

        def compute() -> dict:
            durations = turn_durations(
                self._repository.list_user_turns(
                    user_id, statuses=HISTORY_STATUSES, start=start, end=end
                )
            )
            return calculate_percentiles(durations, requested)

        return restore_percentile_keys(
            self._cache.remember(key, self._config.ttl.percentiles, compute)
        )

    def get_detailed_duration_stats(
        self,
        group_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> DurationStats:
        """Detailed stats for a group's finished turns. Not cached."""
        durations = self.group_durations(group_id, start, end)
        return duration_stats(durations, self._config.detailed_percentiles)

    def group_durations(
        self, group_id: str, start: datetime | None = None, end: datetime | None = None
    ) -> list[float]:
        return turn_durations(
            self._repository.list_group_turns(
                group_id, statuses=HISTORY_STATUSES, start=start, end=end
            )
        )

    def clear_group_cache(self, group_id: str) -> int:
        return self._cache.forget_pattern(cache_key("percentiles", "group", group_id, "*"))

    def clear_user_cache(self, user_id: str) -> int:
        return self._cache.forget_pattern(cache_key("percentiles", "user", user_id, "*"))
