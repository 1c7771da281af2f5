"""Similarity between sparse rating vectors.

All metrics share one skeleton: `merge_join` walks two sorted rating lists with
two cursors and keeps only the counterparts rated by both ("common" ratings).
A metric is any object callable as ``metric(active, other, common) -> float``,
optionally with a ``prepare(model, side)`` hook run once before a batch of
comparisons (it may read global state such as the rating range).

Conventions shared by every metric:
- no common ratings -> ``-inf`` ("no similarity")
- a zero denominator -> ``-inf``, never a division by zero
- an entity compared with itself is stored as ``-inf`` by the engine
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol, Sequence

import numpy as np

from ..process import run_partitioned
from ..store import DataModel, Entity, Side, SortedRatingList


logger = logging.getLogger(__name__)

NO_SIMILARITY = float("-inf")


@dataclass(frozen=True)
class CommonRatings:
    """Ratings of two entities over the counterparts both have rated."""

    indices: np.ndarray
    active: np.ndarray
    other: np.ndarray

    @property
    def count(self) -> int:
        return int(self.indices.shape[0])


def merge_join(a: SortedRatingList, b: SortedRatingList) -> CommonRatings:
    """Two-cursor merge of two sorted rating lists, O(len(a) + len(b))."""
    a_idx, a_val = a.indices, a.values
    b_idx, b_val = b.indices, b.values
    n, m = len(a_idx), len(b_idx)

    indices: list[int] = []
    ra: list[float] = []
    rb: list[float] = []

    i = j = 0
    while i < n and j < m:
        x = a_idx[i]
        y = b_idx[j]
        if x < y:
            i += 1
        elif x > y:
            j += 1
        else:
            indices.append(x)
            ra.append(a_val[i])
            rb.append(b_val[j])
            i += 1
            j += 1

    return CommonRatings(
        np.asarray(indices, dtype=np.int64),
        np.asarray(ra, dtype=np.float64),
        np.asarray(rb, dtype=np.float64),
    )


class SimilarityMetric(Protocol):
    def __call__(self, active: Entity, other: Entity, common: CommonRatings) -> float: ...


def _rating_range(model: DataModel) -> float:
    diff = model.max_rating - model.min_rating
    return diff if math.isfinite(diff) and diff > 0 else float("nan")


class Cosine:
    name = "cosine"

    def __call__(self, active: Entity, other: Entity, common: CommonRatings) -> float:
        if common.count == 0:
            return NO_SIMILARITY
        den = math.sqrt(float(np.dot(common.active, common.active))) * math.sqrt(float(np.dot(common.other, common.other)))
        if den == 0:
            return NO_SIMILARITY
        return float(np.dot(common.active, common.other)) / den


class AdjustedCosine:
    """Cosine over ratings centred by each common counterpart's average rating."""

    name = "adjusted_cosine"

    def __init__(self) -> None:
        self._averages = np.empty(0)

    def prepare(self, model: DataModel, side: Side) -> None:
        self._averages = np.asarray([e.rating_average for e in model.counterparts(side)], dtype=np.float64)

    def __call__(self, active: Entity, other: Entity, common: CommonRatings) -> float:
        if common.count == 0:
            return NO_SIMILARITY
        avg = self._averages[common.indices]
        fa = common.active - avg
        ft = common.other - avg
        den_a = float(np.dot(fa, fa))
        den_t = float(np.dot(ft, ft))
        if den_a == 0 or den_t == 0:
            return NO_SIMILARITY
        return float(np.dot(fa, ft)) / math.sqrt(den_a * den_t)


class Correlation:
    """Pearson correlation centred by each entity's own rating average.

    With ``rescaled=True`` the coefficient is mapped from [-1, 1] to [0, 1].
    """

    name = "correlation"

    def __init__(self, rescaled: bool = False) -> None:
        self.rescaled = bool(rescaled)

    def __call__(self, active: Entity, other: Entity, common: CommonRatings) -> float:
        if common.count == 0:
            return NO_SIMILARITY
        t = common.active - active.rating_average
        o = common.other - other.rating_average
        den_a = float(np.dot(t, t))
        den_t = float(np.dot(o, o))
        if den_a == 0 or den_t == 0:
            return NO_SIMILARITY
        corr = float(np.dot(t, o)) / math.sqrt(den_a * den_t)
        return (corr + 1.0) / 2.0 if self.rescaled else corr


class CorrelationConstrained:
    """Pearson correlation centred by a fixed median instead of the entity averages."""

    name = "correlation_constrained"

    def __init__(self, median: float) -> None:
        self.median = float(median)

    def __call__(self, active: Entity, other: Entity, common: CommonRatings) -> float:
        if common.count == 0:
            return NO_SIMILARITY
        fa = common.active - self.median
        ft = common.other - self.median
        den_a = float(np.dot(fa, fa))
        den_t = float(np.dot(ft, ft))
        if den_a == 0 or den_t == 0:
            return NO_SIMILARITY
        return float(np.dot(fa, ft)) / math.sqrt(den_a * den_t)


def _mean_squared_difference(common: CommonRatings, max_diff: float) -> float:
    diff = (common.active - common.other) / max_diff
    return float(np.dot(diff, diff)) / common.count


class MSD:
    """1 - mean squared difference of the common ratings, scaled by the rating range."""

    name = "msd"

    def __init__(self) -> None:
        self._max_diff = float("nan")

    def prepare(self, model: DataModel, side: Side) -> None:
        self._max_diff = _rating_range(model)

    def __call__(self, active: Entity, other: Entity, common: CommonRatings) -> float:
        if common.count == 0 or not self._max_diff > 0:
            return NO_SIMILARITY
        return 1.0 - _mean_squared_difference(common, self._max_diff)


class JMSD:
    """Jaccard overlap times (1 - MSD)."""

    name = "jmsd"

    def __init__(self) -> None:
        self._max_diff = float("nan")

    def prepare(self, model: DataModel, side: Side) -> None:
        self._max_diff = _rating_range(model)

    def __call__(self, active: Entity, other: Entity, common: CommonRatings) -> float:
        n = common.count
        if n == 0 or not self._max_diff > 0:
            return NO_SIMILARITY
        jaccard = n / (active.number_of_ratings + other.number_of_ratings - n)
        return jaccard * (1.0 - _mean_squared_difference(common, self._max_diff))


class CJMSD:
    """Coverage of the other entity times Jaccard times (1 - MSD)."""

    name = "cjmsd"

    def __init__(self) -> None:
        self._max_diff = float("nan")
        self._num_counterparts = 0

    def prepare(self, model: DataModel, side: Side) -> None:
        self._max_diff = _rating_range(model)
        self._num_counterparts = len(model.counterparts(side))

    def __call__(self, active: Entity, other: Entity, common: CommonRatings) -> float:
        n = common.count
        if n == 0 or not self._max_diff > 0 or self._num_counterparts == 0:
            return NO_SIMILARITY
        jaccard = n / (active.number_of_ratings + other.number_of_ratings - n)
        coverage = (other.number_of_ratings - n) / self._num_counterparts
        return coverage * jaccard * (1.0 - _mean_squared_difference(common, self._max_diff))


class Jaccard:
    name = "jaccard"

    def __call__(self, active: Entity, other: Entity, common: CommonRatings) -> float:
        n = common.count
        if n == 0:
            return NO_SIMILARITY
        return n / (active.number_of_ratings + other.number_of_ratings - n)


class SpearmanRank:
    """1 - 6 * sum(d^2) / (n * (n^2 - 1)) over the common rating differences."""

    name = "spearman_rank"

    def __call__(self, active: Entity, other: Entity, common: CommonRatings) -> float:
        n = common.count
        den = n * (n * n - 1.0)
        if n == 0 or den == 0:
            return NO_SIMILARITY
        diff = common.active - common.other
        return 1.0 - (6.0 * float(np.dot(diff, diff))) / den


class Singularities:
    """MSD-style agreement weighted by how rare each rating class is per counterpart.

    Common ratings fall in three groups: both relevant, both not relevant, mixed.
    Each group contributes ``(1 - d^2) * s1 * s2`` averaged over the group, where
    ``s`` is the singularity (1 - share of the population giving that class) of
    the counterpart. The result is the mean of the three group scores.
    """

    name = "singularities"

    def __init__(self, relevant_ratings: Iterable[float], not_relevant_ratings: Iterable[float]) -> None:
        self.relevant = frozenset(float(r) for r in relevant_ratings)
        self.not_relevant = frozenset(float(r) for r in not_relevant_ratings)
        self._max_diff = float("nan")
        self._sing_relevant = np.empty(0)
        self._sing_not_relevant = np.empty(0)

    def prepare(self, model: DataModel, side: Side) -> None:
        self._max_diff = _rating_range(model)
        population = len(model.entities(side))
        counterparts = model.counterparts(side)

        self._sing_relevant = np.ones(len(counterparts), dtype=np.float64)
        self._sing_not_relevant = np.ones(len(counterparts), dtype=np.float64)
        if population == 0:
            return
        for c in counterparts:
            n_rel = sum(1 for v in c.ratings.values if v in self.relevant)
            n_not = sum(1 for v in c.ratings.values if v in self.not_relevant)
            self._sing_relevant[c.index] = 1.0 - n_rel / population
            self._sing_not_relevant[c.index] = 1.0 - n_not / population

    def __call__(self, active: Entity, other: Entity, common: CommonRatings) -> float:
        if common.count == 0 or not self._max_diff > 0:
            return NO_SIMILARITY

        sums = [0.0, 0.0, 0.0]
        counts = [0, 0, 0]
        for idx, ra, rt in zip(common.indices.tolist(), common.active.tolist(), common.other.tolist()):
            d = (ra - rt) / self._max_diff
            agreement = 1.0 - d * d
            if ra in self.relevant and rt in self.relevant:
                s = self._sing_relevant[idx]
                sums[0] += agreement * s * s
                counts[0] += 1
            elif ra in self.not_relevant and rt in self.not_relevant:
                s = self._sing_not_relevant[idx]
                sums[1] += agreement * s * s
                counts[1] += 1
            else:
                sums[2] += agreement * self._sing_relevant[idx] * self._sing_not_relevant[idx]
                counts[2] += 1

        groups = [s / c if c else 0.0 for s, c in zip(sums, counts)]
        return float(sum(groups)) / 3.0


class PIP:
    """Proximity-Impact-Popularity, summed over the common ratings."""

    name = "pip"

    def __init__(self) -> None:
        self._min = self._max = self._median = float("nan")
        self._averages = np.empty(0)

    def prepare(self, model: DataModel, side: Side) -> None:
        self._min = model.min_rating
        self._max = model.max_rating
        self._median = (self._max + self._min) / 2.0
        self._averages = np.asarray([e.rating_average for e in model.counterparts(side)], dtype=np.float64)

    def __call__(self, active: Entity, other: Entity, common: CommonRatings) -> float:
        if common.count == 0:
            return NO_SIMILARITY

        median = self._median
        span = 2.0 * (self._max - self._min) + 1.0
        total = 0.0
        for idx, ra, rt in zip(common.indices.tolist(), common.active.tolist(), common.other.tolist()):
            agreement = not ((ra > median and rt < median) or (ra < median and rt > median))

            d = abs(ra - rt) if agreement else 2.0 * abs(ra - rt)
            proximity = (span - d) ** 2

            im = (abs(ra - median) + 1.0) * (abs(rt - median) + 1.0)
            impact = im if agreement else 1.0 / im

            avg = self._averages[idx]
            popularity = 1.0
            if (ra > avg and rt > avg) or (ra < avg and rt < avg):
                popularity = 1.0 + (((ra + rt) / 2.0) - avg) ** 2

            total += proximity * impact * popularity
        return total


METRICS: dict[str, Callable[..., SimilarityMetric]] = {
    "cosine": Cosine,
    "adjusted_cosine": AdjustedCosine,
    "correlation": Correlation,
    "correlation_constrained": CorrelationConstrained,
    "msd": MSD,
    "jmsd": JMSD,
    "cjmsd": CJMSD,
    "jaccard": Jaccard,
    "spearman_rank": SpearmanRank,
    "singularities": Singularities,
    "pip": PIP,
}


def build_metric(name: str, **params: object) -> SimilarityMetric:
    try:
        factory = METRICS[name]
    except KeyError:
        raise KeyError(f"Unknown similarity metric: {name!r} (known: {sorted(METRICS)})") from None
    return factory(**params)


class _RowTask:
    """Fills one similarity row per active entity."""

    def __init__(self, engine: "SimilarityEngine", rows: int) -> None:
        self.engine = engine
        self.rows = rows
        self.matrix = np.empty((0, 0))

    def setup(self) -> None:
        self.engine.prepare()
        n = len(self.engine.model.entities(self.engine.side))
        self.matrix = np.full((self.rows, n), NO_SIMILARITY, dtype=np.float64)

    def step(self, item: tuple[int, Entity]) -> None:
        row, active = item
        self.engine.fill_row(active, self.matrix[row])

    def teardown(self) -> None:
        pass


class SimilarityEngine:
    """Dense similarity rows between active entities and every training entity of a side.

    ``side="user"`` compares users over the items they rated; ``side="item"``
    compares items over the users who rated them.
    """

    def __init__(self, model: DataModel, metric: SimilarityMetric, side: Side = "user") -> None:
        self.model = model
        self.metric = metric
        self.side = side
        # Validates `side`.
        model.entities(side)

    def prepare(self) -> None:
        prepare = getattr(self.metric, "prepare", None)
        if prepare is not None:
            prepare(self.model, self.side)

    def similarity(self, active: Entity, other: Entity) -> float:
        return self.metric(active, other, merge_join(active.ratings, other.ratings))

    def fill_row(self, active: Entity, out: np.ndarray) -> None:
        for other in self.model.entities(self.side):
            if other.index == active.index:
                out[other.index] = NO_SIMILARITY
            else:
                out[other.index] = self.similarity(active, other)

    def compute_rows(self, entities: Sequence[Entity], num_workers: int | None = None) -> np.ndarray:
        """Row ``r`` holds the similarities of ``entities[r]`` with every entity of the side."""
        task = _RowTask(self, len(entities))
        run_partitioned(list(enumerate(entities)), task, num_workers)
        return task.matrix

    def compute(self, num_workers: int | None = None) -> np.ndarray:
        """Similarity matrix indexed by [test entity index, entity index]."""
        test_entities = self.model.test_entities(self.side)
        logger.info(
            "Computing %s similarities: side=%s rows=%d cols=%d",
            _metric_name(self.metric),
            self.side,
            len(test_entities),
            len(self.model.entities(self.side)),
        )
        return self.compute_rows(test_entities, num_workers)


def _metric_name(metric: SimilarityMetric) -> str:
    return str(getattr(metric, "name", type(metric).__name__))
