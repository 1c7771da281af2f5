"""Sorted sparse rating lists.

Every entity (user or item) owns one `SortedRatingList`: its ratings kept in
strictly increasing order of the counterpart's dense index. Indices and values
live in two parallel python lists so that positional reads are O(1) and lookups
by counterpart index are a binary search.
"""
from __future__ import annotations

from bisect import bisect_left
from typing import Iterator, NamedTuple

import numpy as np


class Rating(NamedTuple):
    index: int
    value: float


class SortedRatingList:
    """Ratings of one entity, sorted by counterpart index, no duplicates."""

    __slots__ = ("_indices", "_values")

    def __init__(self) -> None:
        self._indices: list[int] = []
        self._values: list[float] = []

    def __len__(self) -> int:
        return len(self._indices)

    def __iter__(self) -> Iterator[Rating]:
        for index, value in zip(self._indices, self._values):
            yield Rating(index, value)

    def __repr__(self) -> str:
        body = ", ".join(f"({i}, {v})" for i, v in zip(self._indices, self._values))
        return f"SortedRatingList([{body}])"

    def add(self, index: int, value: float) -> bool:
        """Upsert a rating.

        Returns True when a new rating was inserted, False when the value of an
        existing rating at the same counterpart index was overwritten.
        """
        index = int(index)
        pos = bisect_left(self._indices, index)
        if pos < len(self._indices) and self._indices[pos] == index:
            self._values[pos] = float(value)
            return False

        self._indices.insert(pos, index)
        self._values.insert(pos, float(value))
        return True

    def find(self, index: int) -> int:
        """Position of `index` in the list, or -1 when it is not rated."""
        pos = bisect_left(self._indices, int(index))
        if pos < len(self._indices) and self._indices[pos] == index:
            return pos
        return -1

    def _check(self, pos: int) -> int:
        if pos < 0 or pos >= len(self._indices):
            raise IndexError(f"rating position {pos} out of range [0, {len(self._indices)})")
        return pos

    def index_at(self, pos: int) -> int:
        return self._indices[self._check(pos)]

    def rating_at(self, pos: int) -> float:
        return self._values[self._check(pos)]

    def get(self, index: int, default: float = float("nan")) -> float:
        pos = self.find(index)
        return default if pos == -1 else self._values[pos]

    @property
    def indices(self) -> list[int]:
        """Counterpart indices (read-only view by convention)."""
        return self._indices

    @property
    def values(self) -> list[float]:
        return self._values

    def as_arrays(self) -> tuple[np.ndarray, np.ndarray]:
        return (
            np.asarray(self._indices, dtype=np.int64),
            np.asarray(self._values, dtype=np.float64),
        )
