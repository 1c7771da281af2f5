"""Top-N recommendation measures.

The recommendation list of a test user is the top `number_of_recommendations`
positions of its prediction vector, chosen with the same selector as the
neighbor lists, so NaN predictions are never recommended. Positions refer to
``test_user.test_ratings``.
"""
from __future__ import annotations

import math

import numpy as np

from ..knn.neighbors import NO_NEIGHBOR, select_top_k
from ..knn.similarity import Cosine, SimilarityEngine
from ..store import DataModel, TestEntity


def recommended_positions(predictions: np.ndarray, number_of_recommendations: int) -> list[int]:
    top = select_top_k(predictions, number_of_recommendations)
    return [int(p) for p in top if p != NO_NEIGHBOR]


def _relevant_hits(ratings: list[float], positions: list[int], threshold: float) -> int:
    return sum(1 for p in positions if ratings[p] >= threshold)


class Precision:
    name = "precision"

    def __init__(self, number_of_recommendations: int, relevant_threshold: float) -> None:
        self.number_of_recommendations = int(number_of_recommendations)
        self.relevant_threshold = float(relevant_threshold)

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        positions = recommended_positions(predictions, self.number_of_recommendations)
        if not positions:
            return float("nan")
        ratings = test_user.test_ratings.values
        return _relevant_hits(ratings, positions, self.relevant_threshold) / len(positions)


class Recall:
    name = "recall"

    def __init__(self, number_of_recommendations: int, relevant_threshold: float) -> None:
        self.number_of_recommendations = int(number_of_recommendations)
        self.relevant_threshold = float(relevant_threshold)

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        ratings = test_user.test_ratings.values
        relevant = sum(1 for r in ratings if r >= self.relevant_threshold)
        if relevant == 0:
            return float("nan")
        positions = recommended_positions(predictions, self.number_of_recommendations)
        return _relevant_hits(ratings, positions, self.relevant_threshold) / relevant


class F1:
    """Harmonic mean of precision and recall; 0 when both are 0."""

    name = "f1"

    def __init__(self, number_of_recommendations: int, relevant_threshold: float) -> None:
        self.precision = Precision(number_of_recommendations, relevant_threshold)
        self.recall = Recall(number_of_recommendations, relevant_threshold)

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        p = self.precision(test_user, predictions)
        r = self.recall(test_user, predictions)
        if math.isnan(p) or math.isnan(r):
            return float("nan")
        if p + r == 0:
            return 0.0
        return 2.0 * p * r / (p + r)


def _dcg(ratings: list[float], positions: list[int]) -> float:
    return sum((2.0 ** ratings[p] - 1.0) / math.log2(rank + 2) for rank, p in enumerate(positions))


class NDCG:
    """DCG of the recommended list over the DCG of the best possible list."""

    name = "ndcg"

    def __init__(self, number_of_recommendations: int) -> None:
        self.number_of_recommendations = int(number_of_recommendations)

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        ratings = test_user.test_ratings.values
        ideal = recommended_positions(np.asarray(ratings, dtype=np.float64), self.number_of_recommendations)
        idcg = _dcg(ratings, ideal)
        if idcg == 0:
            return float("nan")
        positions = recommended_positions(predictions, self.number_of_recommendations)
        return _dcg(ratings, positions) / idcg


class Novelty:
    """Mean self-information, -log2(popularity), of the recommended items.

    Items without training ratings are skipped.
    """

    name = "novelty"

    def __init__(self, number_of_recommendations: int) -> None:
        self.number_of_recommendations = int(number_of_recommendations)
        self._model: DataModel | None = None

    def prepare(self, model: DataModel) -> None:
        self._model = model

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        if self._model is None:
            raise RuntimeError("Novelty.prepare(model) must run before scoring")
        total_ratings = self._model.number_of_ratings
        if total_ratings == 0:
            return float("nan")

        items = self._model.items
        item_indices = test_user.test_ratings.indices
        info = []
        for p in recommended_positions(predictions, self.number_of_recommendations):
            n = items[item_indices[p]].number_of_ratings
            if n > 0:
                info.append(-math.log2(n / total_ratings))
        return float(np.mean(info)) if info else float("nan")


class Diversity:
    """Mean pairwise cosine similarity between the recommended items.

    Similarities are merge-joined on demand for the recommended pairs only.
    Item pairs without common raters are skipped.
    """

    name = "diversity"

    def __init__(self, number_of_recommendations: int) -> None:
        self.number_of_recommendations = int(number_of_recommendations)
        self._engine: SimilarityEngine | None = None

    def prepare(self, model: DataModel) -> None:
        self._engine = SimilarityEngine(model, Cosine(), side="item")
        self._engine.prepare()

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        if self._engine is None:
            raise RuntimeError("Diversity.prepare(model) must run before scoring")

        items = self._engine.model.items
        item_indices = test_user.test_ratings.indices
        recommended = [items[item_indices[p]] for p in recommended_positions(predictions, self.number_of_recommendations)]

        # Cosine is symmetric: each unordered pair once.
        sims = []
        for a, first in enumerate(recommended):
            for second in recommended[a + 1 :]:
                sim = self._engine.similarity(first, second)
                if not math.isinf(sim):
                    sims.append(sim)
        return float(np.mean(sims)) if sims else float("nan")
