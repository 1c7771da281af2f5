from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from .store import DataModel


logger = logging.getLogger(__name__)

RATING_COLUMNS: Tuple[str, ...] = ("userId", "itemId", "rating")


@dataclass(frozen=True)
class RatingsSplit:
    train: pd.DataFrame
    test: pd.DataFrame


def validate_ratings(ratings: pd.DataFrame, *, name: str = "ratings") -> None:
    """Check that a ratings frame carries the (userId, itemId, rating) columns."""
    missing = [c for c in RATING_COLUMNS if c not in ratings.columns]
    if missing:
        raise ValueError(f"{name} missing columns: {missing}")


def read_ratings_csv(path: Path | str, *, sep: str = ",") -> pd.DataFrame:
    """Read a (userId, itemId, rating) CSV.

    Codes are read as strings: they are opaque to the data model and may carry
    leading zeros.
    """
    ratings = pd.read_csv(
        path,
        sep=sep,
        dtype={"userId": "string", "itemId": "string", "rating": "float64"},
    )
    validate_ratings(ratings, name=str(path))
    return ratings


def iter_triples(ratings: pd.DataFrame) -> Iterator[tuple[str, str, float]]:
    validate_ratings(ratings)
    users = ratings["userId"].astype(str).to_numpy()
    items = ratings["itemId"].astype(str).to_numpy()
    values = ratings["rating"].astype("float64").to_numpy()
    for u, i, r in zip(users, items, values):
        yield u, i, float(r)


def datamodel_from_frames(train: pd.DataFrame, test: pd.DataFrame | None = None) -> DataModel:
    test_triples = iter_triples(test) if test is not None else ()
    return DataModel.from_ratings(iter_triples(train), test_triples)


def random_split(
    ratings: pd.DataFrame,
    *,
    test_users_ratio: float = 0.2,
    test_ratings_ratio: float = 0.2,
    random_state: int = 42,
) -> RatingsSplit:
    """Hold out part of the ratings of a random subset of users.

    A `test_users_ratio` fraction of users become test users; for each of them a
    `test_ratings_ratio` fraction of their ratings is moved to the test split.
    Users with a single rating keep it in training.
    """
    validate_ratings(ratings)
    if not 0.0 < test_users_ratio <= 1.0:
        raise ValueError(f"test_users_ratio must be in (0, 1], got {test_users_ratio}")
    if not 0.0 < test_ratings_ratio < 1.0:
        raise ValueError(f"test_ratings_ratio must be in (0, 1), got {test_ratings_ratio}")

    df = ratings[list(RATING_COLUMNS)].dropna(subset=["userId", "itemId"]).reset_index(drop=True)
    user_ids = np.asarray(sorted(df["userId"].astype(str).unique()))

    if test_users_ratio >= 1.0:
        test_users = user_ids
    else:
        _, test_users = train_test_split(user_ids, test_size=float(test_users_ratio), random_state=int(random_state))
    test_users_set = set(test_users.tolist())

    test_rows: list[int] = []
    for uid, grp in df.groupby(df["userId"].astype(str), sort=True):
        if uid not in test_users_set or len(grp) < 2:
            continue
        _, held_out = train_test_split(
            grp.index.to_numpy(),
            test_size=float(test_ratings_ratio),
            random_state=int(random_state),
        )
        test_rows.extend(held_out.tolist())

    test_mask = df.index.isin(test_rows)
    split = RatingsSplit(train=df[~test_mask].reset_index(drop=True), test=df[test_mask].reset_index(drop=True))
    logger.info(
        "Random split: ratings=%d train=%d test=%d test_users=%d",
        len(df),
        len(split.train),
        len(split.test),
        split.test["userId"].nunique(),
    )
    return split
