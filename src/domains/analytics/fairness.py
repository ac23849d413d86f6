"""Turn distribution fairness across a group's active members.

The fairness score maps the coefficient of variation of per-member turn
counts onto (0, 1] with exp(-2 * CV): an even split scores 1.0, and the score
falls as turns concentrate on fewer members. The Gini coefficient is reported
alongside it for the same distribution.
"""

import math
from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime, timedelta

import numpy as np
import structlog

from src.domains.turns.models import Group, Turn, TurnStatus
from src.domains.turns.repository import TurnRepository
from src.shared.cache import AnalyticsCache, NullCache, cache_key

from .config import AnalyticsConfig, default_config
from .models import (
    FairnessMetrics,
    FairnessSnapshot,
    ImbalancedMember,
    ImbalanceSeverity,
    ImbalanceType,
    MemberDistribution,
    MemberTurnCounts,
)

logger = structlog.get_logger()


# --- Pure scoring functions ---


def distribution_variance(counts: Sequence[float]) -> float:
    """Population variance of per-member turn counts."""
    if not counts:
        return 0.0
    return float(np.var(np.asarray(counts, dtype=float)))


def fairness_score(counts: Sequence[float]) -> float:
    if not counts or sum(counts) == 0:
        return 1.0
    mean = float(np.mean(counts))
    if mean == 0:
        return 1.0
    cv = math.sqrt(distribution_variance(counts)) / mean
    return max(0.0, math.exp(-2 * cv))


def gini_coefficient(counts: Sequence[float]) -> float:
    """Sum of |x_i - x_j| over all pairs divided by 2 * n^2 * mean."""
    if not counts or sum(counts) == 0:
        return 0.0
    values = np.asarray(counts, dtype=float)
    n = len(values)
    pairwise = np.abs(values[:, None] - values[None, :]).sum()
    return float(pairwise / (2 * n * n * values.mean()))


def build_member_distribution(members: Sequence[MemberTurnCounts]) -> list[MemberDistribution]:
    total = sum(m.total_turns for m in members)
    expected = total / len(members) if members else 0.0

    distribution = []
    for member in members:
        share = round(member.total_turns / total * 100, 2) if total > 0 else 0.0
        deviation = (
            round((member.total_turns - expected) / expected * 100, 2) if expected > 0 else 0.0
        )
        distribution.append(
            MemberDistribution(
                **member.model_dump(),
                share_percentage=share,
                deviation_percentage=deviation,
                expected_turns=round(expected, 1),
            )
        )
    return distribution


def imbalance_severity(deviation_percentage: float) -> ImbalanceSeverity:
    deviation = abs(deviation_percentage)
    if deviation >= 80:
        return ImbalanceSeverity.SEVERE
    if deviation >= 50:
        return ImbalanceSeverity.HIGH
    if deviation >= 30:
        return ImbalanceSeverity.MODERATE
    return ImbalanceSeverity.LOW


def identify_imbalanced_members(
    distribution: Sequence[MemberDistribution], threshold_percent: float = 30.0
) -> list[ImbalancedMember]:
    return [
        ImbalancedMember(
            user_id=m.user_id,
            name=m.name,
            total_turns=m.total_turns,
            expected_turns=m.expected_turns,
            deviation_percentage=m.deviation_percentage,
            type=ImbalanceType.OVERSHARE
            if m.deviation_percentage > 0
            else ImbalanceType.UNDERSHARE,
            severity=imbalance_severity(m.deviation_percentage),
        )
        for m in distribution
        if abs(m.deviation_percentage) > threshold_percent
    ]


def member_turn_counts(group: Group, turns: Sequence[Turn]) -> list[MemberTurnCounts]:
    """Per active member counts over ``turns`` (all statuses count toward total)."""
    counts = []
    for member in group.active_members():
        own = [t for t in turns if t.user_id == member.user_id]
        completed = sum(1 for t in own if t.status == TurnStatus.COMPLETED)
        skipped = sum(1 for t in own if t.status == TurnStatus.SKIPPED)
        counts.append(
            MemberTurnCounts(
                user_id=member.user_id,
                name=member.name,
                total_turns=len(own),
                completed_turns=completed,
                skipped_turns=skipped,
                completion_rate=round(completed / len(own), 3) if own else 0.0,
            )
        )
    return counts


def _week_bounds(day: date) -> tuple[datetime, datetime]:
    """Monday 00:00 through the following Sunday 23:59:59.999999, UTC."""
    monday = day - timedelta(days=day.weekday())
    start = datetime(monday.year, monday.month, monday.day, tzinfo=UTC)
    return start, start + timedelta(days=7) - timedelta(microseconds=1)


class FairnessScorer:
    """Group fairness metrics with a 30 minute read-through cache."""

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

    def calculate_group_fairness(self, group_id: str) -> FairnessMetrics:
        key = cache_key("fairness", "group", group_id)

        def compute() -> dict:
            group = self._repository.get_group(group_id)
            turns = self._repository.list_group_turns(group_id)
            return self.score(group, turns).model_dump(mode="json")

        return FairnessMetrics.model_validate(
            self._cache.remember(key, self._config.ttl.fairness, compute)
        )

    def score(self, group: Group, turns: Sequence[Turn]) -> FairnessMetrics:
        """Fairness metrics for ``group`` over ``turns`` without caching."""
        counts = member_turn_counts(group, turns)
        totals = [m.total_turns for m in counts]
        distribution = build_member_distribution(counts)
        imbalanced = identify_imbalanced_members(
            distribution, self._config.fairness.imbalance_threshold_percent
        )

        metrics = FairnessMetrics(
            fairness_score=fairness_score(totals),
            distribution_variance=distribution_variance(totals),
            gini_coefficient=gini_coefficient(totals),
            member_distribution=distribution,
            imbalanced_members=imbalanced,
            total_members=len(counts),
            calculated_at=self._clock(),
        )
        logger.debug(
            "group_fairness_scored",
            group_id=group.id,
            fairness_score=round(metrics.fairness_score, 3),
            imbalanced=len(imbalanced),
        )
        return metrics

    def get_fairness_trend(self, group_id: str, weeks: int | None = None) -> list[FairnessSnapshot]:
        """Weekly fairness for the ``weeks`` full weeks before this one, oldest first."""
        weeks = weeks or self._config.windows.fairness_trend_weeks
        key = cache_key("fairness_trend", "group", group_id, "weeks", weeks)

        def compute() -> list:
            group = self._repository.get_group(group_id)
            today = self._clock().date()
            snapshots = []
            for offset in range(weeks, 0, -1):
                start, end = _week_bounds(today - timedelta(weeks=offset))
                turns = self._repository.list_group_turns(group_id, start=start, end=end)
                counts = member_turn_counts(group, turns)
                totals = [m.total_turns for m in counts]
                snapshots.append(
                    FairnessSnapshot(
                        week_start=start.date(),
                        week_end=end.date(),
                        fairness_score=round(fairness_score(totals), 3),
                        total_turns=sum(totals),
                        active_members=len(counts),
                    ).model_dump(mode="json")
                )
            return snapshots

        cached = self._cache.remember(key, self._config.ttl.fairness, compute)
        return [FairnessSnapshot.model_validate(s) for s in cached]

    def clear_cache(self, group_id: str) -> int:
        removed = self._cache.forget_pattern(cache_key("fairness", "group", group_id))
        removed += self._cache.forget_pattern(cache_key("fairness_trend", "group", group_id, "*"))
        return removed
