"""Half-open intervals and a map keyed by non-overlapping intervals."""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Generic, Iterator, TypeVar

from kcmacho.errors import verify

V = TypeVar("V")


@dataclass(frozen=True)
class Interval:
    """The half-open range ``[lower, upper)``."""

    lower: int
    upper: int

    def __post_init__(self) -> None:
        verify(self.lower <= self.upper, "start <= end")

    def overlaps(self, other: Interval) -> bool:
        """True if the two intervals share any point."""
        return (
            (other.lower <= self.lower < other.upper)
            or (other.lower < self.upper <= other.upper)
            or (self.lower <= other.lower < self.upper)
            or (self.lower < other.upper <= self.upper)
        )

    def __str__(self) -> str:
        return f"[{self.lower},{self.upper})"


class IntervalMap(Generic[V]):
    """Map from intervals to values, ordered by descending lower bound.

    Lookups find the entry with the greatest lower bound not above the key's
    lower bound, and succeed when that entry overlaps the key.
    """

    def __init__(self) -> None:
        self._lowers: list[int] = []
        self._entries: dict[int, tuple[Interval, V]] = {}

    def _candidate(self, interval: Interval) -> tuple[Interval, V] | None:
        index = bisect.bisect_right(self._lowers, interval.lower) - 1
        if index < 0:
            return None
        return self._entries[self._lowers[index]]

    def insert(self, interval: Interval, value: V) -> None:
        """Add *interval* -> *value*; raise ValueError on a detected overlap.

        An entry whose lower bound equals an existing one is ignored.
        """
        entry = self._candidate(interval)
        if entry is not None and entry[0].overlaps(interval):
            raise ValueError(
                f"existing interval {entry[0]} overlaps with provided interval {interval}"
            )
        if interval.lower in self._entries:
            return
        bisect.insort(self._lowers, interval.lower)
        self._entries[interval.lower] = (interval, value)

    def find(self, key: int | Interval) -> tuple[Interval, V] | None:
        """Return the ``(interval, value)`` entry holding *key*, or None."""
        if not isinstance(key, Interval):
            key = Interval(key, key + 1)
        entry = self._candidate(key)
        if entry is None or not entry[0].overlaps(key):
            return None
        return entry

    def __len__(self) -> int:
        return len(self._lowers)

    def __iter__(self) -> Iterator[tuple[Interval, V]]:
        for lower in reversed(self._lowers):
            yield self._entries[lower]