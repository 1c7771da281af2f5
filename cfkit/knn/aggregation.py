"""Neighbor rating aggregation.

An aggregation policy is a plain function::

    policy(neighbors: NeighborRatings, target_average: float, ctx: AggregationContext) -> float

receiving the ratings of the qualifying neighbors (those that rated the target
counterpart), their similarities and rating averages. A policy returns NaN
when it cannot produce a prediction; it never turns "no neighbor" into 0.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable

import numpy as np

from ..store import DataModel, Entity, Side, TestEntity
from .neighbors import NO_NEIGHBOR


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationContext:
    """Run-wide values computed once before predicting."""

    sim_min: float
    sim_max: float
    min_rating: float
    max_rating: float

    def weights(self, similarities: np.ndarray) -> np.ndarray:
        """Min-max normalized similarities; NaN weights when the range is empty or undefined."""
        span = self.sim_max - self.sim_min
        if not span > 0:
            return np.full(similarities.shape, np.nan, dtype=np.float64)
        return (similarities - self.sim_min) / span


@dataclass(frozen=True)
class NeighborRatings:
    ratings: np.ndarray
    similarities: np.ndarray
    averages: np.ndarray

    @property
    def count(self) -> int:
        return int(self.ratings.shape[0])


AggregationPolicy = Callable[[NeighborRatings, float, AggregationContext], float]


def mean(neighbors: NeighborRatings, target_average: float, ctx: AggregationContext) -> float:
    if neighbors.count == 0:
        return float("nan")
    return float(np.mean(neighbors.ratings))


def weighted_mean(neighbors: NeighborRatings, target_average: float, ctx: AggregationContext) -> float:
    if neighbors.count == 0:
        return float("nan")
    w = ctx.weights(neighbors.similarities)
    den = float(np.sum(w))
    if not den > 0:
        return float("nan")
    return float(np.dot(w, neighbors.ratings)) / den


def deviation_from_mean(neighbors: NeighborRatings, target_average: float, ctx: AggregationContext) -> float:
    """Target average plus the weighted mean deviation of the neighbors, clamped to the rating range.

    A target without training ratings has no average and yields NaN.
    """
    if neighbors.count == 0 or math.isnan(target_average):
        return float("nan")
    w = ctx.weights(neighbors.similarities)
    den = float(np.sum(w))
    if not den > 0:
        return float("nan")
    deviation = float(np.dot(w, neighbors.ratings - neighbors.averages)) / den
    prediction = target_average + deviation
    return min(max(prediction, ctx.min_rating), ctx.max_rating)


AGGREGATIONS: dict[str, AggregationPolicy] = {
    "mean": mean,
    "weighted_mean": weighted_mean,
    "deviation_from_mean": deviation_from_mean,
}


def get_aggregation(name: str) -> AggregationPolicy:
    try:
        return AGGREGATIONS[name]
    except KeyError:
        raise KeyError(f"Unknown aggregation approach: {name!r} (known: {sorted(AGGREGATIONS)})") from None


def similarity_bounds(similarities: np.ndarray) -> tuple[float, float]:
    """Min and max finite similarity, ignoring -inf/NaN sentinels; NaN when none exist."""
    values = np.asarray(similarities, dtype=np.float64)
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        return float("nan"), float("nan")
    return float(finite.min()), float(finite.max())


class PredictionAggregator:
    """Folds the neighbors' ratings on a target counterpart into one prediction.

    `similarities` and `neighbors` are indexed by test entity index (rows) and
    entity index (columns), as produced by `SimilarityEngine.compute` and
    `select_neighbors`.
    """

    def __init__(
        self,
        model: DataModel,
        similarities: np.ndarray,
        neighbors: np.ndarray,
        policy: AggregationPolicy,
        side: Side = "user",
    ) -> None:
        self.model = model
        self.similarities = similarities
        self.neighbors = neighbors
        self.policy = policy
        self.side = side
        self.context: AggregationContext | None = None

    def prepare(self) -> AggregationContext:
        sim_min, sim_max = similarity_bounds(self.similarities)
        self.context = AggregationContext(
            sim_min=sim_min,
            sim_max=sim_max,
            min_rating=self.model.min_rating,
            max_rating=self.model.max_rating,
        )
        logger.debug("Aggregation context: %s", self.context)
        return self.context

    def neighbor_ratings(self, test_entity: TestEntity, target_index: int) -> NeighborRatings:
        entities: list[Entity] = self.model.entities(self.side)
        row = test_entity.test_index
        sims = self.similarities[row]

        ratings: list[float] = []
        weights: list[float] = []
        averages: list[float] = []
        for n in self.neighbors[row].tolist():
            if n == NO_NEIGHBOR:
                break
            neighbor = entities[n]
            pos = neighbor.find(target_index)
            if pos == -1:
                continue
            ratings.append(neighbor.rating_at(pos))
            weights.append(float(sims[n]))
            averages.append(neighbor.rating_average)

        return NeighborRatings(
            np.asarray(ratings, dtype=np.float64),
            np.asarray(weights, dtype=np.float64),
            np.asarray(averages, dtype=np.float64),
        )

    def predict(self, test_entity: TestEntity, target_index: int) -> float:
        ctx = self.context if self.context is not None else self.prepare()
        return self.policy(self.neighbor_ratings(test_entity, target_index), test_entity.rating_average, ctx)

    def predict_code(self, test_entity: TestEntity, counterpart_code: str) -> float:
        if self.side == "user":
            target_index = self.model.item_index(counterpart_code)
        else:
            target_index = self.model.user_index(counterpart_code)
        return self.predict(test_entity, target_index)

    def predict_held_out(self, test_entity: TestEntity) -> np.ndarray:
        """Predictions aligned with `test_entity.test_ratings`."""
        return np.asarray(
            [self.predict(test_entity, idx) for idx in test_entity.test_ratings.indices],
            dtype=np.float64,
        )
