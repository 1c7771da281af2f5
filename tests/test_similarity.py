from __future__ import annotations

import itertools
import math

import numpy as np
import pytest

from cfkit.knn.similarity import (
    METRICS,
    NO_SIMILARITY,
    PIP,
    Cosine,
    Jaccard,
    JMSD,
    MSD,
    SimilarityEngine,
    SpearmanRank,
    build_metric,
    merge_join,
)
from cfkit.store import DataModel, SortedRatingList


def _ratings(pairs: list[tuple[int, float]]) -> SortedRatingList:
    out = SortedRatingList()
    for index, value in pairs:
        out.add(index, value)
    return out


def test_merge_join_keeps_common_indices_only() -> None:
    a = _ratings([(0, 1.0), (2, 2.0), (5, 3.0), (9, 4.0)])
    b = _ratings([(1, 5.0), (2, 4.0), (9, 1.0)])
    common = merge_join(a, b)
    assert common.indices.tolist() == [2, 9]
    assert common.active.tolist() == [2.0, 4.0]
    assert common.other.tolist() == [4.0, 1.0]
    assert common.count == 2


def test_cosine_on_identical_overlap_is_one(small_model: DataModel) -> None:
    engine = SimilarityEngine(small_model, Cosine())
    u1, u2 = small_model.users[0], small_model.users[1]
    assert engine.similarity(u1, u2) == pytest.approx(1.0)


def test_jaccard_and_msd_values(small_model: DataModel) -> None:
    u1, u2 = small_model.users[0], small_model.users[1]

    assert SimilarityEngine(small_model, Jaccard()).similarity(u1, u2) == pytest.approx(0.75)

    msd = SimilarityEngine(small_model, MSD())
    msd.prepare()
    assert msd.similarity(u1, u2) == pytest.approx(1.0)

    jmsd = SimilarityEngine(small_model, JMSD())
    jmsd.prepare()
    assert jmsd.similarity(u1, u2) == pytest.approx(0.75)


@pytest.mark.parametrize("name", ["cosine", "correlation", "msd", "jaccard"])
def test_symmetric_metrics(small_model: DataModel, name: str) -> None:
    engine = SimilarityEngine(small_model, build_metric(name))
    engine.prepare()
    for a, b in itertools.permutations(small_model.users, 2):
        assert engine.similarity(a, b) == pytest.approx(engine.similarity(b, a))


@pytest.mark.parametrize("name", sorted(set(METRICS) - {"correlation_constrained", "singularities"}))
def test_no_common_ratings_means_no_similarity(name: str) -> None:
    m = DataModel.from_ratings([("a", "x", 1.0), ("a", "y", 2.0), ("b", "z", 5.0)])
    engine = SimilarityEngine(m, build_metric(name))
    engine.prepare()
    assert engine.similarity(m.users[0], m.users[1]) == NO_SIMILARITY


def test_parameterised_metrics_build_from_registry() -> None:
    m = DataModel.from_ratings([("a", "x", 1.0), ("b", "y", 5.0)])
    for metric in (
        build_metric("correlation_constrained", median=3.0),
        build_metric("singularities", relevant_ratings=[4, 5], not_relevant_ratings=[1, 2, 3]),
    ):
        engine = SimilarityEngine(m, metric)
        engine.prepare()
        assert engine.similarity(m.users[0], m.users[1]) == NO_SIMILARITY


def test_unknown_metric_name() -> None:
    with pytest.raises(KeyError):
        build_metric("euclidean")


def test_spearman_single_common_rating() -> None:
    m = DataModel.from_ratings([("a", "x", 1.0), ("b", "x", 5.0)])
    engine = SimilarityEngine(m, SpearmanRank())
    assert engine.similarity(m.users[0], m.users[1]) == NO_SIMILARITY


def test_pip_rewards_agreement(small_model: DataModel) -> None:
    engine = SimilarityEngine(small_model, PIP())
    engine.prepare()
    u1, u2, u3 = small_model.users
    assert engine.similarity(u1, u2) > engine.similarity(u1, u3)


def test_compute_rows_for_test_users(small_model: DataModel) -> None:
    sims = SimilarityEngine(small_model, Cosine()).compute(num_workers=2)
    assert sims.shape == (1, 3)
    assert sims[0, 0] == NO_SIMILARITY
    assert sims[0, 1] == pytest.approx(1.0)
    expected = 27.0 / (math.sqrt(29.0) * math.sqrt(42.0))
    assert sims[0, 2] == pytest.approx(expected)


def test_item_side_compares_items_over_users(small_model: DataModel) -> None:
    sims = SimilarityEngine(small_model, Cosine(), side="item").compute(num_workers=1)
    assert sims.shape == (1, 4)
    assert sims[0, 0] == NO_SIMILARITY
    # I4 vs I3: both rated by U2 and U3, (1, 2) vs (2, 4)
    assert sims[0, 3] == pytest.approx(1.0)


def test_compute_is_worker_count_independent(small_model: DataModel) -> None:
    engine = SimilarityEngine(small_model, build_metric("adjusted_cosine"), side="item")
    one = engine.compute_rows(small_model.items, 1)
    many = engine.compute_rows(small_model.items, 8)
    np.testing.assert_array_equal(one, many)
