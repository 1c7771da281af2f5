"""Prediction error measures.

Each measure compares a test user's held-out ratings with the predictions for
them, skipping NaN predictions. A user with no usable prediction scores NaN.
"""
from __future__ import annotations

import math

import numpy as np

from ..store import TestEntity


def _observed(test_user: TestEntity, predictions: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """(ratings, predictions) restricted to the positions with a prediction."""
    ratings = np.asarray(test_user.test_ratings.values, dtype=np.float64)
    preds = np.asarray(predictions, dtype=np.float64)
    if preds.shape != ratings.shape:
        raise ValueError(
            f"predictions for test user {test_user.code!r} have shape {preds.shape}, expected {ratings.shape}"
        )
    mask = ~np.isnan(preds)
    return ratings[mask], preds[mask]


class MAE:
    name = "mae"

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        ratings, preds = _observed(test_user, predictions)
        if ratings.size == 0:
            return float("nan")
        return float(np.mean(np.abs(preds - ratings)))


class MSE:
    name = "mse"

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        ratings, preds = _observed(test_user, predictions)
        if ratings.size == 0:
            return float("nan")
        diff = preds - ratings
        return float(np.dot(diff, diff)) / ratings.size


class RMSE:
    name = "rmse"

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        mse = MSE()(test_user, predictions)
        return float("nan") if math.isnan(mse) else math.sqrt(mse)


class MSLE:
    """Root of the mean squared difference of log(1 + rating)."""

    name = "msle"

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        ratings, preds = _observed(test_user, predictions)
        if ratings.size == 0:
            return float("nan")
        diff = np.log1p(ratings) - np.log1p(preds)
        return math.sqrt(float(np.dot(diff, diff)) / ratings.size)


class MaxError:
    name = "max"

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        ratings, preds = _observed(test_user, predictions)
        if ratings.size == 0:
            return float("nan")
        return float(np.max(np.abs(preds - ratings)))


class Perfect:
    """Share of predictions within `threshold` of the real rating."""

    name = "perfect"

    def __init__(self, threshold: float) -> None:
        self.threshold = float(threshold)

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        ratings, preds = _observed(test_user, predictions)
        if ratings.size == 0:
            return float("nan")
        hits = int(np.count_nonzero(np.abs(preds - ratings) <= self.threshold))
        return hits / ratings.size


class R2:
    """Coefficient of determination against the user's held-out rating average."""

    name = "r2"

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        ratings, preds = _observed(test_user, predictions)
        if ratings.size < 2:
            return float("nan")
        num = float(np.sum((ratings - preds) ** 2))
        den = float(np.sum((ratings - test_user.test_rating_average) ** 2))
        if den == 0:
            return float("nan")
        return 1.0 - num / den


class Coverage:
    """Share of held-out ratings that received a prediction."""

    name = "coverage"

    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float:
        total = test_user.number_of_test_ratings
        if total == 0:
            return float("nan")
        preds = np.asarray(predictions, dtype=np.float64)
        return int(np.count_nonzero(~np.isnan(preds))) / total
