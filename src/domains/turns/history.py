"""Bounded turn history kept on each group."""

from collections import deque
from collections.abc import Iterable, Iterator

from .models import TurnSummary

DEFAULT_HISTORY_CAPACITY = 100


class TurnHistory:
    """Fixed-capacity ring buffer of turn summaries, oldest first.

    Appending past capacity evicts the oldest entry.
    """

    def __init__(
        self,
        entries: Iterable[TurnSummary] = (),
        capacity: int = DEFAULT_HISTORY_CAPACITY,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"History capacity must be positive, got {capacity}")
        self._buffer: deque[TurnSummary] = deque(entries, maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._buffer.maxlen or 0

    def append(self, entry: TurnSummary) -> None:
        self._buffer.append(entry)

    def extend(self, entries: Iterable[TurnSummary]) -> None:
        self._buffer.extend(entries)

    def latest(self) -> TurnSummary | None:
        return self._buffer[-1] if self._buffer else None

    def entries(self) -> list[TurnSummary]:
        return list(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def __iter__(self) -> Iterator[TurnSummary]:
        return iter(self._buffer)
