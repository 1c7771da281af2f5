from __future__ import annotations

import logging

import numpy as np

from ..recommender import held_out_predictions
from ..store import DataModel, Entity, Side, TestEntity
from ..utils import log_elapsed
from .aggregation import AggregationPolicy, PredictionAggregator, get_aggregation
from .neighbors import select_neighbors
from .similarity import SimilarityEngine, SimilarityMetric, build_metric


logger = logging.getLogger(__name__)


class KNNRecommender:
    """Neighborhood collaborative filtering.

    ``side="user"``: neighbors of a test user are the most similar users, and a
    prediction aggregates their ratings on the target item.
    ``side="item"``: neighbors of a test item are the most similar items, and a
    prediction aggregates the target user's ratings on those items.

    `fit` owns the run buffers: a similarity matrix and a neighbor matrix, both
    indexed by test entity index. Refitting replaces them wholesale.
    """

    def __init__(
        self,
        model: DataModel,
        *,
        k: int,
        metric: SimilarityMetric | str,
        aggregation: AggregationPolicy | str = "deviation_from_mean",
        side: Side = "user",
        num_workers: int | None = None,
    ) -> None:
        if int(k) < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        self.model = model
        self.k = int(k)
        self.metric = build_metric(metric) if isinstance(metric, str) else metric
        self.aggregation = get_aggregation(aggregation) if isinstance(aggregation, str) else aggregation
        self.side = side
        self.num_workers = num_workers

        # Validates `side`.
        model.entities(side)

        self.similarities: np.ndarray | None = None
        self.neighbors: np.ndarray | None = None
        self._aggregator: PredictionAggregator | None = None

    def __repr__(self) -> str:
        return (
            f"KNNRecommender(side={self.side}, k={self.k}, "
            f"metric={getattr(self.metric, 'name', type(self.metric).__name__)}, "
            f"aggregation={getattr(self.aggregation, '__name__', repr(self.aggregation))})"
        )

    def fit(self) -> None:
        with log_elapsed(logger, f"Fitting {self!r}"):
            engine = SimilarityEngine(self.model, self.metric, self.side)
            similarities = engine.compute(self.num_workers)
            neighbors = select_neighbors(similarities, self.k, self.num_workers)

            aggregator = PredictionAggregator(self.model, similarities, neighbors, self.aggregation, self.side)
            aggregator.prepare()

        self.similarities = similarities
        self.neighbors = neighbors
        self._aggregator = aggregator

    @property
    def aggregator(self) -> PredictionAggregator:
        if self._aggregator is None:
            raise RuntimeError("KNNRecommender is not fitted; call fit() first")
        return self._aggregator

    def _test_entity(self, entities: list[Entity], index: int, what: str) -> TestEntity:
        entity = entities[index]
        if not isinstance(entity, TestEntity):
            raise KeyError(f"{what} index {index} has no fitted neighbors (not a test {what})")
        return entity

    def predict(self, user_index: int, item_index: int) -> float:
        if self.side == "user":
            test_user = self._test_entity(self.model.users, user_index, "user")
            return self.aggregator.predict(test_user, item_index)
        test_item = self._test_entity(self.model.items, item_index, "item")
        return self.aggregator.predict(test_item, user_index)

    def predict_test_user(self, test_user: TestEntity) -> np.ndarray:
        if self.side == "user":
            return self.aggregator.predict_held_out(test_user)
        return held_out_predictions(self, test_user)


def user_knn(
    model: DataModel,
    *,
    k: int,
    metric: SimilarityMetric | str,
    aggregation: AggregationPolicy | str = "deviation_from_mean",
    num_workers: int | None = None,
) -> KNNRecommender:
    return KNNRecommender(model, k=k, metric=metric, aggregation=aggregation, side="user", num_workers=num_workers)


def item_knn(
    model: DataModel,
    *,
    k: int,
    metric: SimilarityMetric | str,
    aggregation: AggregationPolicy | str = "weighted_mean",
    num_workers: int | None = None,
) -> KNNRecommender:
    return KNNRecommender(model, k=k, metric=metric, aggregation=aggregation, side="item", num_workers=num_workers)
