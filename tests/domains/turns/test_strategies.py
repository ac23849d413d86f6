"""Unit tests for the built-in turn assignment strategies."""

from datetime import timedelta

import pytest

from src.domains.turns.config import WeightedStrategyConfig
from src.domains.turns.errors import InvalidConfiguration
from src.domains.turns.models import TurnStatus
from src.domains.turns.strategies import (
    RandomTurnStrategy,
    RoundRobinTurnStrategy,
    WeightedTurnStrategy,
)
from src.domains.turns.strategies.weighted import completion_weight, skip_weight, time_weight
from tests.conftest import NOW, make_group, make_turn


class TestRoundRobin:
    @pytest.fixture
    def strategy(self) -> RoundRobinTurnStrategy:
        return RoundRobinTurnStrategy()

    def test_no_turns_returns_first_in_order(self, strategy):
        group = make_group(["alice", "bob", "carol"])
        assert strategy.get_next_user(group, []).user_id == "alice"

    def test_cycles_through_members_and_wraps(self, strategy):
        group = make_group(["alice", "bob", "carol"])
        turns = []
        expected = ["bob", "carol", "alice", "bob"]
        for i, (user, following) in enumerate(
            zip(["alice", "bob", "carol", "alice"], expected, strict=True)
        ):
            turns.append(make_turn(user, NOW + timedelta(minutes=i)))
            assert strategy.get_next_user(group, turns).user_id == following

    def test_cycle_complete_without_reset_returns_none(self, strategy):
        group = make_group(["alice", "bob"])
        turns = [make_turn("alice", NOW), make_turn("bob", NOW + timedelta(minutes=1))]
        result = strategy.get_next_user(group, turns, {"reset_on_cycle_complete": False})
        assert result is None

    def test_skipped_turn_advances_rotation(self, strategy):
        group = make_group(["alice", "bob", "carol"])
        turns = [make_turn("alice", NOW, status=TurnStatus.SKIPPED)]
        assert strategy.get_next_user(group, turns).user_id == "bob"

    def test_expired_turns_are_not_history(self, strategy):
        group = make_group(["alice", "bob", "carol"])
        turns = [
            make_turn("alice", NOW),
            make_turn("bob", NOW + timedelta(minutes=1), status=TurnStatus.EXPIRED),
        ]
        assert strategy.get_next_user(group, turns).user_id == "bob"

    def test_last_user_left_group_restarts_cycle(self, strategy):
        group = make_group(["alice", "bob", "carol"])
        turns = [make_turn("dave", NOW)]
        assert strategy.get_next_user(group, turns).user_id == "alice"

    def test_inactive_members_are_skipped(self, strategy):
        group = make_group(["alice", "bob", "carol"])
        group.members[1].is_active = False
        turns = [make_turn("alice", NOW)]
        assert strategy.get_next_user(group, turns).user_id == "carol"

    def test_no_active_members_returns_none(self, strategy):
        assert strategy.get_next_user(make_group([]), []) is None

    def test_tied_turn_order_rotates_by_user_id(self, strategy):
        group = make_group(["bob", "alice", "carol"])
        for member in group.members:
            member.turn_order = 1
        assert strategy.get_next_user(group, []).user_id == "alice"
        turns = [make_turn("alice", NOW)]
        assert strategy.get_next_user(group, turns).user_id == "bob"
        turns.append(make_turn("bob", NOW + timedelta(minutes=1)))
        assert strategy.get_next_user(group, turns).user_id == "carol"

    def test_does_not_mutate_inputs(self, strategy):
        group = make_group(["alice", "bob"])
        turns = [make_turn("alice", NOW)]
        before = (group.model_dump(), [t.model_dump() for t in turns])
        strategy.get_next_user(group, turns)
        assert (group.model_dump(), [t.model_dump() for t in turns]) == before


class TestRandom:
    @pytest.fixture
    def strategy(self) -> RandomTurnStrategy:
        return RandomTurnStrategy()

    def test_same_seed_same_selection(self, strategy):
        group = make_group([f"user-{i}" for i in range(10)])
        picks = {strategy.get_next_user(group, [], {"seed": 1234}).user_id for _ in range(20)}
        assert len(picks) == 1

    def test_different_seeds_vary(self, strategy):
        group = make_group([f"user-{i}" for i in range(10)])
        picks = {strategy.get_next_user(group, [], {"seed": seed}).user_id for seed in range(50)}
        assert len(picks) > 1

    def test_excludes_user_with_active_turn(self, strategy):
        group = make_group(["alice", "bob"])
        turns = [make_turn("alice", NOW, status=TurnStatus.ACTIVE)]
        for seed in range(20):
            assert strategy.get_next_user(group, turns, {"seed": seed}).user_id == "bob"

    def test_exclusion_can_be_disabled(self, strategy):
        group = make_group(["alice"])
        turns = [make_turn("alice", NOW, status=TurnStatus.ACTIVE)]
        assert strategy.get_next_user(group, turns, {"exclude_current_user": False}) is not None
        assert strategy.get_next_user(group, turns) is None

    def test_per_call_config_leaves_base_untouched(self, strategy):
        group = make_group(["alice", "bob"])
        strategy.get_next_user(group, [], {"seed": 7})
        assert strategy.get_configuration()["seed"] is None

    def test_set_configuration_merges(self, strategy):
        strategy.set_configuration({"seed": 3})
        strategy.set_configuration({"exclude_current_user": False})
        assert strategy.get_configuration() == {"seed": 3, "exclude_current_user": False}

    @pytest.mark.parametrize(
        "options", [{"seed": "abc"}, {"exclude_current_user": "yes"}, {"colour": "red"}]
    )
    def test_invalid_configuration_rejected(self, strategy, options):
        with pytest.raises(InvalidConfiguration):
            strategy.set_configuration(options)
        assert strategy.get_configuration()["seed"] is None


class TestWeightFactors:
    def test_never_had_turn_is_full_time_weight(self):
        assert time_weight(None, NOW, 1.0) == 1.0

    def test_inside_cooldown_is_zero(self):
        assert time_weight(NOW - timedelta(minutes=30), NOW, 1.0) == 0.0

    def test_normalized_over_a_day(self):
        assert time_weight(NOW - timedelta(hours=12), NOW, 1.0) == pytest.approx(0.5)
        assert time_weight(NOW - timedelta(hours=48), NOW, 1.0) == 1.0

    def test_neutral_without_history(self):
        assert completion_weight(0, 0) == 0.5
        assert skip_weight(0, 0) == 0.5

    def test_rates(self):
        assert completion_weight(3, 1) == pytest.approx(0.75)
        assert skip_weight(3, 1) == pytest.approx(0.75)


class TestWeighted:
    @pytest.fixture
    def strategy(self) -> WeightedTurnStrategy:
        return WeightedTurnStrategy()

    def test_prefers_member_without_history(self, strategy):
        group = make_group(["alice", "bob"])
        turns = [make_turn("alice", NOW - timedelta(hours=2))]
        assert strategy.get_next_user(group, turns, now=NOW).user_id == "bob"

    def test_prefers_reliable_member_when_times_match(self, strategy):
        group = make_group(["alice", "bob"])
        long_ago = NOW - timedelta(days=3)
        turns = [
            make_turn("alice", long_ago, status=TurnStatus.SKIPPED),
            make_turn("alice", long_ago + timedelta(minutes=5), status=TurnStatus.SKIPPED),
            make_turn("bob", long_ago),
            make_turn("bob", long_ago + timedelta(minutes=5)),
        ]
        assert strategy.get_next_user(group, turns, now=NOW).user_id == "bob"

    def test_equal_scores_pick_first_in_order(self, strategy):
        group = make_group(["alice", "bob", "carol"])
        assert strategy.get_next_user(group, [], now=NOW).user_id == "alice"

    def test_score_breakdown(self, strategy):
        group = make_group(["alice", "bob"])
        turns = [make_turn("alice", NOW - timedelta(minutes=10))]
        weights = {w.user_id: w for w in strategy.score_members(group, turns, now=NOW)}
        assert weights["alice"].time_weight == 0.0
        assert weights["alice"].completion_weight == 1.0
        assert weights["bob"].time_weight == 1.0
        assert weights["bob"].score == pytest.approx(0.4 + 0.3 * 0.5 + 0.3 * 0.5)

    def test_custom_weights_per_call(self, strategy):
        group = make_group(["alice", "bob"])
        long_ago = NOW - timedelta(days=3)
        turns = [
            make_turn("alice", long_ago),
            make_turn("bob", long_ago, status=TurnStatus.SKIPPED),
        ]
        config = {"time_weight": 0, "completion_weight": 0, "skip_weight": 1}
        assert strategy.get_next_user(group, turns, config, now=NOW).user_id == "alice"

    def test_excludes_member_with_active_turn(self, strategy):
        group = make_group(["alice", "bob"])
        turns = [make_turn("alice", NOW, status=TurnStatus.ACTIVE)]
        assert strategy.get_next_user(group, turns, now=NOW).user_id == "bob"

    def test_negative_weight_rejected(self, strategy):
        with pytest.raises(InvalidConfiguration):
            strategy.resolve_configuration({"time_weight": -0.1})

    def test_resolved_config_is_immutable(self, strategy):
        config = strategy.resolve_configuration({"time_weight": 0.5})
        assert isinstance(config, WeightedStrategyConfig)
        with pytest.raises(AttributeError):
            config.time_weight = 0.9  # type: ignore[misc]
