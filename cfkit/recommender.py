"""The contract shared by every algorithm the scoring harness can evaluate."""
from __future__ import annotations

from typing import Protocol

import numpy as np

from .store import DataModel, TestEntity


class Recommender(Protocol):
    model: DataModel

    def fit(self) -> None: ...

    def predict(self, user_index: int, item_index: int) -> float: ...

    def predict_test_user(self, test_user: TestEntity) -> np.ndarray: ...


def held_out_predictions(recommender: Recommender, test_user: TestEntity) -> np.ndarray:
    """Predict every held-out rating of `test_user`, aligned with `test_user.test_ratings`."""
    user_index = test_user.index
    return np.asarray(
        [recommender.predict(user_index, item_index) for item_index in test_user.test_ratings.indices],
        dtype=np.float64,
    )
