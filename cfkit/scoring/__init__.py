from __future__ import annotations

from typing import Any, Callable

from .harness import QualityMeasure, ScoreFunction, ScoreSummary, compute_score, compute_user_scores, summarize_scores
from .prediction import MAE, MSE, MSLE, R2, RMSE, Coverage, MaxError, Perfect
from .recommendation import F1, NDCG, Diversity, Novelty, Precision, Recall


MEASURES: dict[str, Callable[..., ScoreFunction]] = {
    "mae": MAE,
    "mse": MSE,
    "rmse": RMSE,
    "msle": MSLE,
    "max": MaxError,
    "perfect": Perfect,
    "r2": R2,
    "coverage": Coverage,
    "precision": Precision,
    "recall": Recall,
    "f1": F1,
    "ndcg": NDCG,
    "novelty": Novelty,
    "diversity": Diversity,
}


def build_measure(name: str, **params: Any) -> ScoreFunction:
    try:
        factory = MEASURES[name]
    except KeyError:
        raise KeyError(f"Unknown quality measure: {name!r} (known: {sorted(MEASURES)})") from None
    return factory(**params)


__all__ = [
    "Coverage",
    "Diversity",
    "F1",
    "MAE",
    "MEASURES",
    "MSE",
    "MSLE",
    "MaxError",
    "NDCG",
    "Novelty",
    "Perfect",
    "Precision",
    "QualityMeasure",
    "R2",
    "RMSE",
    "Recall",
    "ScoreFunction",
    "ScoreSummary",
    "build_measure",
    "compute_score",
    "compute_user_scores",
    "summarize_scores",
]
