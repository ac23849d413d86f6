"""Turn assignment coordinator: strategy registry and dispatch."""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

import structlog

from .errors import UnknownStrategy
from .models import Group, Membership, Turn
from .repository import TurnRepository
from .strategies import TurnStrategy, builtin_strategies

logger = structlog.get_logger()

DEFAULT_STRATEGY = "random"


class TurnAssignmentCoordinator:
    """Resolves a group's preferred strategy and asks it for the next member.

    Strategies are looked up by name. The registry starts with the built-in
    ``random``, ``round_robin`` and ``weighted`` strategies and accepts any
    other ``TurnStrategy`` at runtime.

    If a non-default strategy raises while selecting, the coordinator retries
    once with the default strategy so a faulty strategy cannot block turn
    progression. Failures of the default strategy propagate.
    """

    def __init__(
        self,
        repository: TurnRepository,
        default_strategy: str = DEFAULT_STRATEGY,
        strategies: Sequence[TurnStrategy] | None = None,
    ) -> None:
        self._repository = repository
        self._strategies: dict[str, TurnStrategy] = {}
        for strategy in strategies if strategies is not None else builtin_strategies():
            self.register_strategy(strategy)
        self._default_strategy = DEFAULT_STRATEGY
        self.set_default_strategy(default_strategy)

    @property
    def default_strategy(self) -> str:
        return self._default_strategy

    def register_strategy(self, strategy: TurnStrategy) -> "TurnAssignmentCoordinator":
        self._strategies[strategy.name] = strategy
        logger.debug("turn_strategy_registered", strategy=strategy.name)
        return self

    def get_strategy(self, name: str) -> TurnStrategy:
        try:
            return self._strategies[name]
        except KeyError:
            raise UnknownStrategy(name) from None

    def has_strategy(self, name: str) -> bool:
        return name in self._strategies

    def available_strategies(self) -> list[dict[str, Any]]:
        return [strategy.describe() for strategy in self._strategies.values()]

    def set_default_strategy(self, name: str) -> "TurnAssignmentCoordinator":
        if name not in self._strategies:
            raise UnknownStrategy(name)
        self._default_strategy = name
        return self

    def get_next_user(
        self,
        group: Group,
        turns: Sequence[Turn] | None = None,
        now: datetime | None = None,
    ) -> Membership | None:
        """Next member for ``group`` using its preferred strategy and config."""
        name = group.preferred_strategy or self._default_strategy
        return self.get_next_user_with_strategy(
            group, name, config=group.strategy_config, turns=turns, now=now
        )

    def get_next_user_with_strategy(
        self,
        group: Group,
        name: str,
        config: Mapping[str, Any] | None = None,
        turns: Sequence[Turn] | None = None,
        now: datetime | None = None,
    ) -> Membership | None:
        """Run strategy ``name`` for ``group`` with per-call ``config``.

        Raises:
            UnknownStrategy: ``name`` is not registered.
            InvalidConfiguration: ``config`` is not valid for the strategy.
        """
        strategy = self.get_strategy(name)
        resolved = strategy.resolve_configuration(config)

        if turns is None:
            turns = self._repository.list_group_turns(group.id)

        try:
            return strategy.get_next_user(group, turns, resolved, now=now)
        except Exception:
            if name == self._default_strategy:
                raise
            logger.warning(
                "turn_strategy_failed_falling_back",
                group_id=group.id,
                strategy=name,
                fallback=self._default_strategy,
                exc_info=True,
            )
            return self.get_next_user_with_strategy(
                group, self._default_strategy, turns=turns, now=now
            )
