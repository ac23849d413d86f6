"""Weighted multi-factor turn assignment.

Each eligible member gets a combined score from three factors computed over
their finished (completed or skipped) turns in the group:

- time: hours since their last finished turn, normalized over 24h. Members
  who never had a turn get the maximum 1.0; anyone inside the
  ``min_hours_since_turn`` cool-down gets 0.
- completion: completed / finished, neutral 0.5 without history.
- skip: 1 - skipped / finished, neutral 0.5 without history.

The member with the highest score wins. On equal scores the first member in
``(turn_order, user_id)`` order wins.
"""

from collections.abc import Sequence
from datetime import UTC, datetime

from pydantic import BaseModel

from ..config import WeightedStrategyConfig
from ..models import HISTORY_STATUSES, Group, Membership, Turn, TurnStatus
from .base import TurnStrategy

NEUTRAL_WEIGHT = 0.5
FULL_WEIGHT_HOURS = 24.0


class MemberWeight(BaseModel):
    user_id: str
    time_weight: float
    completion_weight: float
    skip_weight: float
    score: float


def time_weight(
    last_finished_at: datetime | None, now: datetime, min_hours_since_turn: float
) -> float:
    if last_finished_at is None:
        return 1.0
    hours = (now - last_finished_at).total_seconds() / 3600
    if hours < min_hours_since_turn:
        return 0.0
    return min(1.0, hours / FULL_WEIGHT_HOURS)


def completion_weight(completed: int, skipped: int) -> float:
    finished = completed + skipped
    if finished == 0:
        return NEUTRAL_WEIGHT
    return completed / finished


def skip_weight(completed: int, skipped: int) -> float:
    finished = completed + skipped
    if finished == 0:
        return NEUTRAL_WEIGHT
    return 1.0 - skipped / finished


class WeightedTurnStrategy(TurnStrategy[WeightedStrategyConfig]):
    name = "weighted"
    description = (
        "Assigns turns based on weighted factors: time since last turn, "
        "completion rate, and skip frequency"
    )
    config_class = WeightedStrategyConfig

    def _select(
        self,
        group: Group,
        turns: Sequence[Turn],
        config: WeightedStrategyConfig,
        now: datetime | None,
    ) -> Membership | None:
        eligible = self._eligible(group, turns)
        if not eligible:
            return None

        weights = self._score(eligible, turns, config, now or datetime.now(UTC))

        best_member, best_score = None, float("-inf")
        for member, weight in zip(eligible, weights, strict=True):
            if weight.score > best_score:
                best_member, best_score = member, weight.score
        return best_member

    def score_members(
        self,
        group: Group,
        turns: Sequence[Turn],
        config: WeightedStrategyConfig | None = None,
        now: datetime | None = None,
    ) -> list[MemberWeight]:
        """Per-member weight breakdown, in the order members are considered."""
        cfg = config or self.resolve_configuration()
        return self._score(self._eligible(group, turns), turns, cfg, now or datetime.now(UTC))

    def _eligible(self, group: Group, turns: Sequence[Turn]) -> list[Membership]:
        active_user = self._active_turn_user(turns)
        return [m for m in group.active_members() if m.user_id != active_user]

    def _score(
        self,
        members: list[Membership],
        turns: Sequence[Turn],
        config: WeightedStrategyConfig,
        now: datetime,
    ) -> list[MemberWeight]:
        results = []
        for member in members:
            finished = [
                t for t in turns if t.user_id == member.user_id and t.status in HISTORY_STATUSES
            ]
            completed = sum(1 for t in finished if t.status == TurnStatus.COMPLETED)
            skipped = len(finished) - completed
            last = max(finished, key=self._last_touched, default=None)

            tw = time_weight(
                last.updated_at if last else None, now, config.min_hours_since_turn
            )
            cw = completion_weight(completed, skipped)
            sw = skip_weight(completed, skipped)

            results.append(
                MemberWeight(
                    user_id=member.user_id,
                    time_weight=tw,
                    completion_weight=cw,
                    skip_weight=sw,
                    score=(
                        tw * config.time_weight
                        + cw * config.completion_weight
                        + sw * config.skip_weight
                    ),
                )
            )
        return results
