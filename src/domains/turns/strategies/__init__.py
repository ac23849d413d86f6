"""Built-in turn assignment strategies."""

from .base import TurnStrategy
from .randomized import RandomTurnStrategy
from .round_robin import RoundRobinTurnStrategy
from .weighted import WeightedTurnStrategy


def builtin_strategies() -> list[TurnStrategy]:
    """Fresh instances of every built-in strategy."""
    return [RandomTurnStrategy(), RoundRobinTurnStrategy(), WeightedTurnStrategy()]


__all__ = [
    "RandomTurnStrategy",
    "RoundRobinTurnStrategy",
    "TurnStrategy",
    "WeightedTurnStrategy",
    "builtin_strategies",
]
