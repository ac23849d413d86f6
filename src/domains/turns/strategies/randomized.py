"""Random turn assignment."""

import random
from collections.abc import Sequence
from datetime import datetime

from ..config import RandomStrategyConfig
from ..models import Group, Membership, Turn
from .base import TurnStrategy


class RandomTurnStrategy(TurnStrategy[RandomStrategyConfig]):
    name = "random"
    description = "Randomly selects the next user from eligible group members"
    config_class = RandomStrategyConfig

    def _select(
        self,
        group: Group,
        turns: Sequence[Turn],
        config: RandomStrategyConfig,
        now: datetime | None,
    ) -> Membership | None:
        eligible = group.active_members()

        if config.exclude_current_user:
            active_user = self._active_turn_user(turns)
            if active_user is not None:
                eligible = [m for m in eligible if m.user_id != active_user]

        if not eligible:
            return None

        # A generator per call: seeded draws stay reproducible even when
        # several groups are evaluated concurrently.
        rng = random.Random(config.seed)
        return eligible[rng.randrange(len(eligible))]
