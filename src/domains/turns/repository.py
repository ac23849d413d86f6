"""Persistence boundary for groups and turns.

The lifecycle manager, the coordinator and the analytics engine only talk to
storage through ``TurnRepository``. Two operations carry the concurrency
guarantees the turn lifecycle depends on:

- ``create_active_turn`` is a conditional insert. It raises
  ``TurnAlreadyActive`` when the group already has an active turn, including
  when another request won a race between the caller's check and the insert.
- ``transition_turn`` is a compare-and-set on ``status == active``. It raises
  ``TurnNotActive`` when the turn has already reached a terminal state.
"""

import threading
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from .errors import GroupNotFound, TurnAlreadyActive, TurnNotActive, TurnNotFound
from .history import TurnHistory
from .models import Group, Turn, TurnStatus, TurnSummary, utcnow


class TurnRepository(Protocol):
    def get_group(self, group_id: str) -> Group: ...

    def save_group(self, group: Group) -> Group: ...

    def update_group(self, group_id: str, changes: dict[str, Any]) -> Group: ...

    def append_history(
        self, group_id: str, entry: TurnSummary, capacity: int, current_user_id: str | None
    ) -> Group: ...

    def get_turn(self, turn_id: str) -> Turn: ...

    def find_active_turn(self, group_id: str) -> Turn | None: ...

    def create_active_turn(self, turn: Turn) -> Turn: ...

    def transition_turn(self, turn_id: str, changes: dict[str, Any]) -> Turn: ...

    def list_group_turns(
        self,
        group_id: str,
        statuses: Iterable[TurnStatus] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Turn]: ...

    def list_user_turns(
        self,
        user_id: str,
        statuses: Iterable[TurnStatus] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Turn]: ...

    def find_stale_turns(self, cutoff: datetime) -> list[Turn]: ...


def _matches(
    turn: Turn,
    statuses: frozenset[TurnStatus] | None,
    start: datetime | None,
    end: datetime | None,
) -> bool:
    if statuses is not None and turn.status not in statuses:
        return False
    if start is not None and turn.started_at < start:
        return False
    if end is not None and turn.started_at > end:
        return False
    return True


class InMemoryTurnRepository:
    """Thread-safe in-process repository.

    Models are copied on the way in and out so callers never share mutable
    state with the store. Used by tests and single-process deployments.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._groups: dict[str, Group] = {}
        self._turns: dict[str, Turn] = {}

    # --- Groups ---

    def get_group(self, group_id: str) -> Group:
        with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                raise GroupNotFound(group_id)
            return group.model_copy(deep=True)

    def save_group(self, group: Group) -> Group:
        with self._lock:
            self._groups[group.id] = group.model_copy(deep=True)
            return group

    def update_group(self, group_id: str, changes: dict[str, Any]) -> Group:
        with self._lock:
            current = self._groups.get(group_id)
            if current is None:
                raise GroupNotFound(group_id)
            updated = current.model_copy(deep=True, update=changes)
            self._groups[group_id] = updated
            return updated.model_copy(deep=True)

    def append_history(
        self, group_id: str, entry: TurnSummary, capacity: int, current_user_id: str | None
    ) -> Group:
        with self._lock:
            current = self._groups.get(group_id)
            if current is None:
                raise GroupNotFound(group_id)
            history = TurnHistory(current.turn_history, capacity=capacity)
            history.append(entry)
            return self.update_group(
                group_id,
                {"turn_history": history.entries(), "current_user_id": current_user_id},
            )

    # --- Turns ---

    def get_turn(self, turn_id: str) -> Turn:
        with self._lock:
            turn = self._turns.get(turn_id)
            if turn is None:
                raise TurnNotFound(turn_id)
            return turn.model_copy(deep=True)

    def find_active_turn(self, group_id: str) -> Turn | None:
        with self._lock:
            for turn in self._turns.values():
                if turn.group_id == group_id and turn.status == TurnStatus.ACTIVE:
                    return turn.model_copy(deep=True)
            return None

    def create_active_turn(self, turn: Turn) -> Turn:
        with self._lock:
            if self.find_active_turn(turn.group_id) is not None:
                raise TurnAlreadyActive()
            stored = turn.model_copy(deep=True, update={"status": TurnStatus.ACTIVE})
            self._turns[stored.id] = stored
            return stored.model_copy(deep=True)

    def transition_turn(self, turn_id: str, changes: dict[str, Any]) -> Turn:
        with self._lock:
            current = self._turns.get(turn_id)
            if current is None:
                raise TurnNotFound(turn_id)
            if current.status != TurnStatus.ACTIVE:
                raise TurnNotActive()
            updated = current.model_copy(
                deep=True, update={"updated_at": utcnow(), **changes}
            )
            self._turns[turn_id] = updated
            return updated.model_copy(deep=True)

    def list_group_turns(
        self,
        group_id: str,
        statuses: Iterable[TurnStatus] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Turn]:
        wanted = frozenset(statuses) if statuses is not None else None
        with self._lock:
            return sorted(
                (
                    t.model_copy(deep=True)
                    for t in self._turns.values()
                    if t.group_id == group_id and _matches(t, wanted, start, end)
                ),
                key=lambda t: (t.started_at, t.id),
            )

    def list_user_turns(
        self,
        user_id: str,
        statuses: Iterable[TurnStatus] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Turn]:
        wanted = frozenset(statuses) if statuses is not None else None
        with self._lock:
            return sorted(
                (
                    t.model_copy(deep=True)
                    for t in self._turns.values()
                    if t.user_id == user_id and _matches(t, wanted, start, end)
                ),
                key=lambda t: (t.started_at, t.id),
            )

    def find_stale_turns(self, cutoff: datetime) -> list[Turn]:
        with self._lock:
            return sorted(
                (
                    t.model_copy(deep=True)
                    for t in self._turns.values()
                    if t.status == TurnStatus.ACTIVE and t.started_at < cutoff
                ),
                key=lambda t: (t.started_at, t.id),
            )

    def add_turn(self, turn: Turn) -> Turn:
        """Store a turn as-is, bypassing lifecycle guards. Used to seed history."""
        with self._lock:
            self._turns[turn.id] = turn.model_copy(deep=True)
            return turn
