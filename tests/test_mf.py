from __future__ import annotations

import math

import numpy as np
import pytest

torch = pytest.importorskip("torch")

from cfkit.config import MFConfig  # noqa: E402
from cfkit.mf import BiasedMF, MFRecommender  # noqa: E402
from cfkit.mf.recommender import training_arrays  # noqa: E402
from cfkit.scoring import MAE, QualityMeasure  # noqa: E402
from cfkit.store import DataModel  # noqa: E402


CFG = MFConfig(embed_dim=4, epochs=3, batch_size=4, lr=5e-2, random_state=0)


def test_training_arrays_cover_every_rating(small_model: DataModel) -> None:
    users, items, ratings = training_arrays(small_model)
    assert users.shape == items.shape == ratings.shape == (11,)
    assert set(users.tolist()) == {0, 1, 2}
    assert float(ratings.sum()) == pytest.approx(31.0)


def test_model_output_shape() -> None:
    net = BiasedMF(3, 5, embed_dim=2)
    out = net(torch.tensor([0, 2]), torch.tensor([4, 1]))
    assert out.shape == (2,)


def test_model_starts_from_the_global_mean() -> None:
    torch.manual_seed(0)
    net = BiasedMF(2, 2, embed_dim=2, global_mean=3.5)
    with torch.no_grad():
        out = net(torch.tensor([0, 1]), torch.tensor([1, 0]))
    np.testing.assert_allclose(out.numpy(), [3.5, 3.5], atol=1e-2)


def test_model_clamps_to_rating_range() -> None:
    net = BiasedMF(2, 2, embed_dim=2, global_mean=9.0, rating_range=(1.0, 5.0))
    with torch.no_grad():
        out = net(torch.tensor([0, 1]), torch.tensor([0, 1]))
    np.testing.assert_array_equal(out.numpy(), [5.0, 5.0])
    with pytest.raises(ValueError):
        BiasedMF(2, 2, rating_range=(5.0, 1.0))


def test_predictions_are_clamped_to_rating_range(small_model: DataModel) -> None:
    rec = MFRecommender(small_model, CFG, device="cpu")
    rec.fit()

    preds = rec.predict_test_user(small_model.test_users[0])
    assert preds.shape == (1,)
    assert 1.0 <= preds[0] <= 5.0
    assert rec.predict(0, 0) == pytest.approx(float(preds[0]), rel=1e-5)
    for u in range(3):
        for i in range(4):
            assert 1.0 <= rec.predict(u, i) <= 5.0


def test_fit_is_reproducible(small_model: DataModel) -> None:
    a = MFRecommender(small_model, CFG, device="cpu")
    b = MFRecommender(small_model, CFG, device="cpu")
    a.fit()
    b.fit()
    np.testing.assert_allclose(
        a.predict_test_user(small_model.test_users[0]),
        b.predict_test_user(small_model.test_users[0]),
        rtol=1e-5,
    )


def test_scored_by_the_harness(small_model: DataModel) -> None:
    rec = MFRecommender(small_model, CFG, device="cpu")
    rec.fit()
    score = QualityMeasure(rec, MAE()).get_score(num_threads=2)
    assert math.isfinite(score)


def test_unfitted_and_empty(small_model: DataModel) -> None:
    with pytest.raises(RuntimeError):
        MFRecommender(small_model, CFG, device="cpu").predict(0, 0)
    with pytest.raises(ValueError):
        MFRecommender(DataModel.from_ratings([]), CFG, device="cpu").fit()
