"""Abstract base class for turn assignment strategies."""

import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Generic, TypeVar

from ..models import Group, Membership, Turn, TurnStatus

ConfigT = TypeVar("ConfigT")


class TurnStrategy(ABC, Generic[ConfigT]):
    """Base class for all turn assignment strategies.

    A strategy maps a group, its memberships and its turn history to the
    member who should act next, or ``None`` when nobody is eligible. It must
    not mutate any of its inputs.

    Each instance keeps a base configuration. ``set_configuration`` merges
    into it; per-call overrides passed to ``get_next_user`` are resolved into
    a separate immutable config and never touch the shared base, so one
    instance can serve concurrent requests for different groups.
    """

    name: str
    description: str
    config_class: type[ConfigT]

    def __init__(self, config: Mapping[str, Any] | None = None) -> None:
        self._lock = threading.Lock()
        self._config: dict[str, Any] = self.config_class().as_dict()  # type: ignore[attr-defined]
        if config:
            self.set_configuration(config)

    def get_configuration(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._config)

    def set_configuration(self, config: Mapping[str, Any]) -> "TurnStrategy[ConfigT]":
        """Merge ``config`` into the base configuration.

        New keys overwrite, all other keys are retained. The merged result is
        validated before it is stored.
        """
        with self._lock:
            merged = {**self._config, **config}
            self.config_class.from_mapping(merged)  # type: ignore[attr-defined]
            self._config = merged
        return self

    def resolve_configuration(self, overrides: Mapping[str, Any] | None = None) -> ConfigT:
        """Build the immutable config for one call: base merged with overrides."""
        with self._lock:
            merged = {**self._config, **(overrides or {})}
        return self.config_class.from_mapping(merged)  # type: ignore[attr-defined]

    def get_next_user(
        self,
        group: Group,
        turns: Sequence[Turn],
        config: Mapping[str, Any] | ConfigT | None = None,
        now: datetime | None = None,
    ) -> Membership | None:
        """Pick the next member for ``group`` given its turn history."""
        if not isinstance(config, self.config_class):
            config = self.resolve_configuration(config)  # type: ignore[arg-type]
        return self._select(group, turns, config, now)

    @abstractmethod
    def _select(
        self,
        group: Group,
        turns: Sequence[Turn],
        config: ConfigT,
        now: datetime | None,
    ) -> Membership | None:
        """Strategy-specific selection over a resolved config."""
        ...

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "configuration": self.get_configuration(),
        }

    # --- Shared helpers ---

    @staticmethod
    def _active_turn_user(turns: Sequence[Turn]) -> str | None:
        for turn in turns:
            if turn.status == TurnStatus.ACTIVE:
                return turn.user_id
        return None

    @staticmethod
    def _last_touched(turn: Turn) -> tuple[datetime, datetime, datetime]:
        """Sort key for "most recently updated" with stable fallbacks."""
        return (turn.updated_at, turn.ended_at or turn.started_at, turn.started_at)
