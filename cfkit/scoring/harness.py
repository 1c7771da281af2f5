"""Per-test-user scoring and the aggregate quality measure.

A score function is any callable ``score_fn(test_user, predictions) -> float``
where `predictions` is aligned with ``test_user.test_ratings``. It returns NaN
when the score is undefined for that user; such users are excluded from the
aggregate. A score function may expose ``prepare(model)``, run once before a
scoring pass.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

import numpy as np
import pandas as pd

from ..process import run_partitioned
from ..recommender import Recommender
from ..store import DataModel, TestEntity


logger = logging.getLogger(__name__)

Z_95 = 1.96
Z_99 = 2.58


class ScoreFunction(Protocol):
    def __call__(self, test_user: TestEntity, predictions: np.ndarray) -> float: ...


@dataclass(frozen=True)
class ScoreSummary:
    mean: float
    std: float
    count: int

    @property
    def standard_error(self) -> float:
        if self.count == 0 or math.isnan(self.std):
            return float("nan")
        return self.std / math.sqrt(self.count)

    @property
    def ci95(self) -> float:
        return Z_95 * self.standard_error

    @property
    def ci99(self) -> float:
        return Z_99 * self.standard_error


def summarize_scores(scores: Sequence[float] | np.ndarray) -> ScoreSummary:
    """Mean and sample standard deviation over the non-NaN scores."""
    values = np.asarray(scores, dtype=np.float64)
    valid = values[~np.isnan(values)]
    n = int(valid.size)
    mean = float(np.mean(valid)) if n > 0 else float("nan")
    std = float(np.std(valid, ddof=1)) if n > 1 else float("nan")
    return ScoreSummary(mean=mean, std=std, count=n)


def score_name(score_fn: ScoreFunction) -> str:
    return str(getattr(score_fn, "name", None) or getattr(score_fn, "__name__", type(score_fn).__name__))


PredictFunction = Callable[[TestEntity], np.ndarray]


class _ScoreTask:
    def __init__(self, model: DataModel, predict_fn: PredictFunction, score_fn: ScoreFunction) -> None:
        self.model = model
        self.predict_fn = predict_fn
        self.score_fn = score_fn
        self.scores = np.empty(0)

    def setup(self) -> None:
        prepare = getattr(self.score_fn, "prepare", None)
        if prepare is not None:
            prepare(self.model)
        self.scores = np.full(self.model.number_of_test_users, np.nan, dtype=np.float64)

    def step(self, test_user: TestEntity) -> None:
        self.scores[test_user.test_index] = self.score_fn(test_user, self.predict_fn(test_user))

    def teardown(self) -> None:
        pass


def compute_user_scores(
    model: DataModel,
    predict_fn: PredictFunction,
    score_fn: ScoreFunction,
    num_workers: int | None = None,
) -> np.ndarray:
    """Score of every test user, indexed by test user index; NaN where undefined."""
    task = _ScoreTask(model, predict_fn, score_fn)
    run_partitioned(model.test_users, task, num_workers)
    return task.scores


def compute_score(
    model: DataModel,
    predict_fn: PredictFunction,
    score_fn: ScoreFunction,
    num_workers: int | None = None,
) -> float:
    """Mean of the defined per-test-user scores; NaN when no user has one."""
    return summarize_scores(compute_user_scores(model, predict_fn, score_fn, num_workers)).mean


class QualityMeasure:
    """Scores a fitted recommender over every test user.

    `get_score` recomputes the per-user score vector on each call; the
    accessors below read the result of the last call.
    """

    def __init__(self, recommender: Recommender, score_fn: ScoreFunction, *, name: str | None = None) -> None:
        self.recommender = recommender
        self.score_fn = score_fn
        self.name = name or score_name(score_fn)
        self._scores: np.ndarray | None = None
        self._summary: ScoreSummary | None = None

    def __repr__(self) -> str:
        return f"QualityMeasure(name={self.name!r})"

    def get_score(self, num_threads: int | None = None) -> float:
        scores = compute_user_scores(
            self.recommender.model, self.recommender.predict_test_user, self.score_fn, num_threads
        )

        self._scores = scores
        self._summary = summarize_scores(scores)
        logger.info(
            "%s: score=%.6f std=%.6f evaluated=%d/%d",
            self.name,
            self._summary.mean,
            self._summary.std,
            self._summary.count,
            scores.shape[0],
        )
        return self._summary.mean

    @property
    def summary(self) -> ScoreSummary:
        if self._summary is None:
            raise RuntimeError(f"{self.name}: get_score() has not been called")
        return self._summary

    @property
    def user_scores(self) -> np.ndarray:
        """Per-test-user scores indexed by test user index; NaN where undefined."""
        if self._scores is None:
            raise RuntimeError(f"{self.name}: get_score() has not been called")
        return self._scores

    def standard_deviation(self) -> float:
        return self.summary.std

    def confidence_margin_95(self) -> float:
        return self.summary.ci95

    def confidence_margin_99(self) -> float:
        return self.summary.ci99

    def to_frame(self) -> pd.DataFrame:
        """Per-test-user scores as a DataFrame: test_user_index, user_code, <name>."""
        scores = self.user_scores
        test_users = self.recommender.model.test_users
        return pd.DataFrame(
            {
                "test_user_index": [u.test_index for u in test_users],
                "user_code": [u.code for u in test_users],
                self.name: scores,
            }
        )
