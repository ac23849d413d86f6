"""Round-robin turn assignment by membership ``turn_order``."""

from collections.abc import Sequence
from datetime import datetime

from ..config import RoundRobinStrategyConfig
from ..models import HISTORY_STATUSES, Group, Membership, Turn
from .base import TurnStrategy


class RoundRobinTurnStrategy(TurnStrategy[RoundRobinStrategyConfig]):
    """Cycles through active members in ascending ``turn_order``.

    Members sharing a ``turn_order`` are ordered by user id, so the cycle is
    deterministic even when the ordering column has duplicates.
    """

    name = "round_robin"
    description = "Cycles through group members in order based on their turn_order"
    config_class = RoundRobinStrategyConfig

    def _select(
        self,
        group: Group,
        turns: Sequence[Turn],
        config: RoundRobinStrategyConfig,
        now: datetime | None,
    ) -> Membership | None:
        members = group.active_members()
        if not members:
            return None

        finished = [t for t in turns if t.status in HISTORY_STATUSES]
        if not finished:
            return members[0]

        last_turn = max(finished, key=self._last_touched)

        position = next(
            (i for i, m in enumerate(members) if m.user_id == last_turn.user_id), None
        )
        if position is None:
            # Previous user left the group, restart the cycle
            return members[0]

        # Next in sequence: the first member after the last one in the
        # (turn_order, user_id) ordering. With unique turn orders this is the
        # first member with a strictly greater turn_order.
        if position + 1 < len(members):
            return members[position + 1]

        if config.reset_on_cycle_complete:
            return members[0]
        return None
