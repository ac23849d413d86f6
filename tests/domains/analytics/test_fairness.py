"""Tests for turn distribution fairness scoring."""

from datetime import datetime, timedelta

import pytest

from src.domains.analytics.fairness import (
    FairnessScorer,
    build_member_distribution,
    distribution_variance,
    fairness_score,
    gini_coefficient,
    identify_imbalanced_members,
    imbalance_severity,
    member_turn_counts,
)
from src.domains.analytics.models import FairnessLevel, ImbalanceSeverity, ImbalanceType
from src.domains.turns.models import TurnStatus
from src.shared.cache import InMemoryCache
from tests.conftest import NOW, make_group, make_turn


def _turns(counts: dict[str, int], start: datetime = NOW - timedelta(days=1), group_id="group-1"):
    turns = []
    for user_id, count in counts.items():
        for i in range(count):
            turns.append(make_turn(user_id, start - timedelta(hours=i), group_id=group_id))
    return turns


class TestScoringFunctions:
    def test_even_split_is_perfectly_fair(self):
        assert fairness_score([5, 5, 5]) == 1.0
        assert gini_coefficient([5, 5, 5]) == 0.0
        assert distribution_variance([5, 5, 5]) == 0.0

    def test_concentrated_split(self):
        assert fairness_score([0, 0, 10]) < 0.1
        assert gini_coefficient([0, 0, 10]) == pytest.approx(2 / 3)

    def test_no_turns_is_fair(self):
        assert fairness_score([]) == 1.0
        assert fairness_score([0, 0]) == 1.0
        assert gini_coefficient([]) == 0.0

    def test_population_variance(self):
        assert distribution_variance([1, 2, 3]) == pytest.approx(2 / 3)

    def test_score_decreases_with_imbalance(self):
        assert fairness_score([4, 5, 6]) > fairness_score([2, 5, 8]) > fairness_score([0, 5, 10])

    @pytest.mark.parametrize(
        "deviation,expected",
        [
            (85, ImbalanceSeverity.SEVERE),
            (-80, ImbalanceSeverity.SEVERE),
            (-55, ImbalanceSeverity.HIGH),
            (35, ImbalanceSeverity.MODERATE),
            (10, ImbalanceSeverity.LOW),
        ],
    )
    def test_imbalance_severity(self, deviation, expected):
        assert imbalance_severity(deviation) == expected


class TestDistribution:
    def test_shares_and_deviation(self):
        group = make_group(["alice", "bob", "carol"])
        counts = member_turn_counts(group, _turns({"alice": 6, "bob": 3}))
        distribution = {m.user_id: m for m in build_member_distribution(counts)}

        assert distribution["alice"].share_percentage == pytest.approx(66.67)
        assert distribution["alice"].expected_turns == 3.0
        assert distribution["alice"].deviation_percentage == 100.0
        assert distribution["bob"].deviation_percentage == 0.0
        assert distribution["carol"].deviation_percentage == -100.0

    def test_imbalanced_members(self):
        group = make_group(["alice", "bob", "carol"])
        distribution = build_member_distribution(
            member_turn_counts(group, _turns({"alice": 6, "bob": 3}))
        )
        imbalanced = {m.user_id: m for m in identify_imbalanced_members(distribution)}

        assert set(imbalanced) == {"alice", "carol"}
        assert imbalanced["alice"].type == ImbalanceType.OVERSHARE
        assert imbalanced["carol"].type == ImbalanceType.UNDERSHARE
        assert imbalanced["carol"].severity == ImbalanceSeverity.SEVERE

    def test_counts_include_every_status(self):
        group = make_group(["alice"])
        turns = [
            make_turn("alice", NOW),
            make_turn("alice", NOW, status=TurnStatus.SKIPPED),
            make_turn("alice", NOW, status=TurnStatus.ACTIVE),
        ]
        (counts,) = member_turn_counts(group, turns)
        assert counts.total_turns == 3
        assert counts.completed_turns == 1
        assert counts.skipped_turns == 1
        assert counts.completion_rate == pytest.approx(0.333)

    def test_departed_members_excluded(self):
        group = make_group(["alice", "bob"])
        group.members[1].is_active = False
        counts = member_turn_counts(group, _turns({"alice": 1, "bob": 5}))
        assert [c.user_id for c in counts] == ["alice"]


class TestFairnessScorer:
    @pytest.fixture
    def scorer(self, repository, clock):
        return FairnessScorer(repository, InMemoryCache(), clock=clock)

    def test_group_fairness(self, repository, scorer, group):
        for turn in _turns({"alice": 2, "bob": 2, "carol": 2}):
            repository.add_turn(turn)

        metrics = scorer.calculate_group_fairness(group.id)
        assert metrics.fairness_score == 1.0
        assert metrics.total_members == 3
        assert metrics.imbalanced_members == []
        assert metrics.fairness_level() == FairnessLevel.EXCELLENT
        assert metrics.is_balanced()

    def test_only_counts_turns_in_this_group(self, repository, scorer, group):
        for turn in _turns({"alice": 1, "bob": 1, "carol": 1}):
            repository.add_turn(turn)
        for turn in _turns({"alice": 20}, group_id="group-2"):
            repository.add_turn(turn)

        assert scorer.calculate_group_fairness(group.id).fairness_score == 1.0

    def test_cached_until_cleared(self, repository, scorer, group):
        before = scorer.calculate_group_fairness(group.id)
        for turn in _turns({"alice": 9}):
            repository.add_turn(turn)

        assert scorer.calculate_group_fairness(group.id).fairness_score == before.fairness_score
        scorer.clear_cache(group.id)
        after = scorer.calculate_group_fairness(group.id)
        assert after.fairness_score < 0.5
        assert after.fairness_level() == FairnessLevel.VERY_POOR

    def test_weekly_trend(self, repository, scorer, group):
        # Monday 2026-03-09 belongs to the last full week before NOW
        last_week = datetime(2026, 3, 10, 9, 0, tzinfo=NOW.tzinfo)
        for turn in _turns({"alice": 1, "bob": 1, "carol": 1}, start=last_week):
            repository.add_turn(turn)
        for turn in _turns({"alice": 4}, start=NOW - timedelta(hours=1)):
            repository.add_turn(turn)

        trend = scorer.get_fairness_trend(group.id, weeks=2)
        assert [s.week_start.isoformat() for s in trend] == ["2026-03-02", "2026-03-09"]
        assert trend[0].total_turns == 0
        assert trend[0].fairness_score == 1.0
        assert trend[1].total_turns == 3
        assert trend[1].fairness_score == 1.0
        assert trend[1].active_members == 3
