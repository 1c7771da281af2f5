"""Neighborhood-based collaborative filtering.

Core idea:
- Compare every test entity with every training entity of the same side (similarity matrix)
- Keep the k most similar ones per test entity (neighbor matrix)
- Aggregate the neighbors' ratings on a target counterpart into one prediction
"""
from __future__ import annotations

from .aggregation import AGGREGATIONS, AggregationContext, NeighborRatings, PredictionAggregator, get_aggregation
from .neighbors import NO_NEIGHBOR, select_neighbors, select_top_k
from .recommender import KNNRecommender, item_knn, user_knn
from .similarity import METRICS, NO_SIMILARITY, CommonRatings, SimilarityEngine, build_metric, merge_join

__all__ = [
    "AGGREGATIONS",
    "AggregationContext",
    "CommonRatings",
    "KNNRecommender",
    "METRICS",
    "NO_NEIGHBOR",
    "NO_SIMILARITY",
    "NeighborRatings",
    "PredictionAggregator",
    "SimilarityEngine",
    "build_metric",
    "get_aggregation",
    "item_knn",
    "merge_join",
    "select_neighbors",
    "select_top_k",
    "user_knn",
]
