from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest

from cfkit.knn.similarity import Cosine, SimilarityEngine
from cfkit.process import PartitionError
from cfkit.scoring import (
    F1,
    MAE,
    MSE,
    MSLE,
    NDCG,
    R2,
    RMSE,
    Coverage,
    Diversity,
    MaxError,
    Novelty,
    Perfect,
    Precision,
    QualityMeasure,
    Recall,
    build_measure,
    compute_score,
    summarize_scores,
)
from cfkit.store import DataModel, TestEntity


class FixedRecommender:
    """Returns canned held-out predictions per test user code."""

    def __init__(self, model: DataModel, predictions: dict[str, list[float]]) -> None:
        self.model = model
        self.predictions = predictions

    def fit(self) -> None:
        pass

    def predict(self, user_index: int, item_index: int) -> float:
        raise NotImplementedError

    def predict_test_user(self, test_user: TestEntity) -> np.ndarray:
        return np.asarray(self.predictions[test_user.code], dtype=np.float64)


def _test_user(ratings: list[float]) -> TestEntity:
    model = DataModel.from_ratings([], [("u", f"i{n}", r) for n, r in enumerate(ratings)])
    return model.get_test_user(0)


def test_summary_excludes_nan() -> None:
    s = summarize_scores([float("nan"), 1.0, 3.0])
    assert s.mean == pytest.approx(2.0)
    assert s.count == 2
    assert s.std == pytest.approx(math.sqrt(2.0))
    assert s.ci95 == pytest.approx(1.96)
    assert s.ci99 == pytest.approx(2.58)


def test_summary_of_undefined_scores() -> None:
    s = summarize_scores([float("nan")])
    assert s.count == 0
    assert math.isnan(s.mean)
    assert math.isnan(s.std)
    assert math.isnan(s.ci95)


def test_prediction_errors_skip_missing_predictions() -> None:
    user = _test_user([5.0, 4.0, 3.0])
    preds = np.array([np.nan, 3.0, 6.0])

    assert MAE()(user, preds) == pytest.approx(2.0)
    assert MSE()(user, preds) == pytest.approx(5.0)
    assert RMSE()(user, preds) == pytest.approx(math.sqrt(5.0))
    assert MaxError()(user, preds) == pytest.approx(3.0)
    assert Perfect(1.0)(user, preds) == pytest.approx(0.5)
    assert Coverage()(user, preds) == pytest.approx(2.0 / 3.0)
    expected_msle = math.sqrt(((math.log(5.0) - math.log(4.0)) ** 2 + (math.log(4.0) - math.log(7.0)) ** 2) / 2)
    assert MSLE()(user, preds) == pytest.approx(expected_msle)


def test_prediction_errors_without_predictions_are_nan() -> None:
    user = _test_user([5.0, 4.0])
    preds = np.array([np.nan, np.nan])
    for measure in (MAE(), MSE(), RMSE(), MSLE(), MaxError(), Perfect(0.5), R2()):
        assert math.isnan(measure(user, preds))
    assert Coverage()(user, preds) == 0.0


def test_r2() -> None:
    user = _test_user([1.0, 3.0, 5.0])
    assert R2()(user, np.array([1.0, 3.0, 5.0])) == pytest.approx(1.0)
    assert R2()(user, np.array([2.0, 3.0, 4.0])) == pytest.approx(1.0 - 2.0 / 8.0)
    assert math.isnan(R2()(user, np.array([2.0, np.nan, np.nan])))


def test_prediction_length_mismatch() -> None:
    with pytest.raises(ValueError):
        MAE()(_test_user([5.0, 4.0]), np.array([1.0]))


def test_top_n_measures() -> None:
    user = _test_user([5.0, 1.0, 4.0])
    preds = np.array([4.5, 4.0, 1.0])

    assert Precision(2, 4.0)(user, preds) == pytest.approx(0.5)
    assert Recall(2, 4.0)(user, preds) == pytest.approx(0.5)
    assert F1(2, 4.0)(user, preds) == pytest.approx(0.5)

    dcg = 31.0 + 1.0 / math.log2(3)
    idcg = 31.0 + 15.0 / math.log2(3)
    assert NDCG(2)(user, preds) == pytest.approx(dcg / idcg)
    assert NDCG(3)(user, np.array([5.0, 1.0, 4.0])) == pytest.approx(1.0)


def test_top_n_measures_undefined_cases() -> None:
    user = _test_user([2.0, 1.0])
    assert math.isnan(Precision(2, 4.0)(user, np.array([np.nan, np.nan])))
    assert math.isnan(Recall(2, 4.0)(user, np.array([3.0, 2.0])))
    assert math.isnan(F1(2, 4.0)(user, np.array([3.0, 2.0])))
    assert F1(1, 2.0)(_test_user([1.0, 2.0]), np.array([5.0, 1.0])) == 0.0

    zero_gain = _test_user([0.0, 0.0])
    assert math.isnan(NDCG(2)(zero_gain, np.array([1.0, 2.0])))


def test_nan_predictions_are_never_recommended() -> None:
    user = _test_user([5.0, 1.0, 4.0])
    assert Precision(3, 4.0)(user, np.array([np.nan, 2.0, np.nan])) == 0.0


def test_novelty(small_model: DataModel) -> None:
    novelty = Novelty(5)
    novelty.prepare(small_model)
    u1 = small_model.test_users[0]
    # I4 has 2 of the 11 training ratings
    assert novelty(u1, np.array([3.0])) == pytest.approx(-math.log2(2.0 / 11.0))
    assert math.isnan(novelty(u1, np.array([np.nan])))


def test_diversity_is_mean_pairwise_item_similarity() -> None:
    train = [("U2", "I1", 3.0), ("U2", "I3", 2.0), ("U3", "I1", 5.0), ("U3", "I3", 4.0)]
    test = [("U1", "I1", 4.0), ("U1", "I3", 2.0)]
    model = DataModel.from_ratings(train, test)

    diversity = Diversity(2)
    diversity.prepare(model)
    u1 = model.test_users[0]

    engine = SimilarityEngine(model, Cosine(), side="item")
    expected = engine.similarity(model.items[0], model.items[1])
    assert diversity(u1, np.array([4.0, 3.0])) == pytest.approx(expected)
    # a single recommended item has no pairs
    assert math.isnan(diversity(u1, np.array([4.0, np.nan])))


def test_diversity_skips_pairs_without_common_raters() -> None:
    train = [
        ("U2", "I1", 4.0), ("U2", "I2", 2.0),
        ("U3", "I2", 1.0), ("U3", "I3", 2.0),
        ("U4", "I2", 3.0), ("U4", "I3", 5.0),
    ]
    test = [("U1", "I1", 4.0), ("U1", "I2", 2.0), ("U1", "I3", 3.0)]
    model = DataModel.from_ratings(train, test)

    diversity = Diversity(3)
    diversity.prepare(model)
    # I1-I2 share only U2 (cosine 1), I2-I3 share U3 and U4, I1-I3 share nobody
    expected = (1.0 + 17.0 / math.sqrt(10.0 * 29.0)) / 2.0
    assert diversity(model.test_users[0], np.array([3.0, 2.0, 1.0])) == pytest.approx(expected)


def test_unprepared_measures_refuse_to_score(small_model: DataModel) -> None:
    u1 = small_model.test_users[0]
    with pytest.raises(RuntimeError):
        Novelty(2)(u1, np.array([1.0]))
    with pytest.raises(RuntimeError):
        Diversity(2)(u1, np.array([1.0]))


def _many_test_users(n: int) -> DataModel:
    rng = np.random.default_rng(11)
    test = []
    for u in range(n):
        for i in range(4):
            test.append((f"u{u}", f"i{i}", float(rng.integers(1, 6))))
    return DataModel.from_ratings([], test)


def test_harness_is_worker_count_independent() -> None:
    model = _many_test_users(25)
    rng = np.random.default_rng(5)
    predictions = {
        u.code: [float("nan") if rng.random() < 0.2 else float(rng.uniform(1, 5)) for _ in range(4)]
        for u in model.test_users
    }
    rec = FixedRecommender(model, predictions)

    serial = QualityMeasure(rec, MAE())
    parallel = QualityMeasure(rec, MAE())
    assert serial.get_score(1) == pytest.approx(parallel.get_score(8))
    np.testing.assert_allclose(serial.user_scores, parallel.user_scores)
    assert serial.standard_deviation() == pytest.approx(parallel.standard_deviation())
    assert serial.confidence_margin_95() == pytest.approx(parallel.confidence_margin_95())
    assert serial.confidence_margin_99() > serial.confidence_margin_95()


def test_harness_mean_over_defined_users() -> None:
    model = DataModel.from_ratings([], [("a", "x", 3.0), ("b", "x", 3.0), ("c", "x", 3.0)])
    rec = FixedRecommender(model, {"a": [float("nan")], "b": [4.0], "c": [6.0]})

    measure = QualityMeasure(rec, MAE())
    assert measure.get_score(2) == pytest.approx(2.0)
    assert measure.summary.count == 2

    frame = measure.to_frame()
    assert isinstance(frame, pd.DataFrame)
    assert list(frame.columns) == ["test_user_index", "user_code", "mae"]
    assert frame["user_code"].tolist() == ["a", "b", "c"]
    assert math.isnan(frame["mae"].iloc[0])


def test_harness_surfaces_recommender_failures() -> None:
    model = DataModel.from_ratings([], [("a", "x", 3.0), ("b", "x", 3.0)])
    rec = FixedRecommender(model, {"a": [1.0]})
    with pytest.raises(PartitionError) as excinfo:
        QualityMeasure(rec, MAE()).get_score(2)
    assert isinstance(excinfo.value.__cause__, KeyError)


def test_accessors_before_scoring() -> None:
    model = DataModel.from_ratings([], [("a", "x", 3.0)])
    measure = QualityMeasure(FixedRecommender(model, {"a": [3.0]}), MAE())
    with pytest.raises(RuntimeError):
        measure.standard_deviation()


def test_measure_registry() -> None:
    assert isinstance(build_measure("precision", number_of_recommendations=3, relevant_threshold=4.0), Precision)
    with pytest.raises(KeyError):
        build_measure("auc")


def test_compute_score_with_plain_functions() -> None:
    model = DataModel.from_ratings([], [("a", "x", 2.0), ("a", "y", 4.0), ("b", "x", 1.0)])

    def predict(test_user: TestEntity) -> np.ndarray:
        return np.full(test_user.number_of_test_ratings, 3.0)

    assert compute_score(model, predict, MAE(), num_workers=2) == pytest.approx(1.5)
