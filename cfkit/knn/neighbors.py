from __future__ import annotations

import heapq
import logging
import math

import numpy as np

from ..process import run_partitioned


logger = logging.getLogger(__name__)

NO_NEIGHBOR = -1


def select_top_k(similarities: np.ndarray, k: int) -> np.ndarray:
    """Indices of the `k` largest similarities, best first.

    Entries equal to -inf (no similarity) or NaN are never selected. Ties keep
    the lowest index first. When fewer than `k` candidates exist the trailing
    slots hold -1; consumers stop at the first -1.
    """
    if int(k) < 1:
        raise ValueError(f"k must be >= 1, got {k}")
    k = int(k)

    values = np.asarray(similarities, dtype=np.float64)
    candidates = np.flatnonzero(~np.isnan(values) & (values != -math.inf))

    if candidates.size > k:
        # Bounded heap: O(n log k). Key orders by similarity, then by lower index.
        chosen = heapq.nlargest(k, candidates.tolist(), key=lambda i: (values[i], -i))
    else:
        chosen = sorted(candidates.tolist(), key=lambda i: (-values[i], i))

    out = np.full(k, NO_NEIGHBOR, dtype=np.int64)
    out[: len(chosen)] = chosen
    return out


class _NeighborTask:
    def __init__(self, similarities: np.ndarray, k: int) -> None:
        self.similarities = similarities
        self.k = k
        self.neighbors = np.empty((0, k), dtype=np.int64)

    def setup(self) -> None:
        self.neighbors = np.full((self.similarities.shape[0], self.k), NO_NEIGHBOR, dtype=np.int64)

    def step(self, row: int) -> None:
        self.neighbors[row] = select_top_k(self.similarities[row], self.k)

    def teardown(self) -> None:
        pass


def select_neighbors(similarities: np.ndarray, k: int, num_workers: int | None = None) -> np.ndarray:
    """Top-k neighbor list for every row of a similarity matrix, shape (rows, k)."""
    if int(k) < 1:
        raise ValueError(f"k must be >= 1, got {k}")
    task = _NeighborTask(np.asarray(similarities, dtype=np.float64), int(k))
    run_partitioned(range(task.similarities.shape[0]), task, num_workers)
    logger.info("Selected neighbors: rows=%d k=%d", task.neighbors.shape[0], int(k))
    return task.neighbors
