from __future__ import annotations

import pytest

from cfkit.store import Rating, SortedRatingList


def test_upserts_keep_indices_sorted_and_unique() -> None:
    ratings = SortedRatingList()
    for index, value in [(7, 1.0), (2, 3.0), (9, 4.0), (2, 5.0), (0, 2.0), (7, 2.5)]:
        ratings.add(index, value)

    assert ratings.indices == [0, 2, 7, 9]
    assert ratings.values == [2.0, 5.0, 2.5, 4.0]
    assert all(a < b for a, b in zip(ratings.indices, ratings.indices[1:]))


def test_add_reports_insert_vs_overwrite() -> None:
    ratings = SortedRatingList()
    assert ratings.add(3, 1.0) is True
    assert ratings.add(3, 4.0) is False
    assert len(ratings) == 1
    assert ratings.get(3) == 4.0


def test_find_and_positional_access() -> None:
    ratings = SortedRatingList()
    ratings.add(5, 3.0)
    ratings.add(1, 2.0)

    assert ratings.find(5) == 1
    assert ratings.find(4) == -1
    assert ratings.index_at(0) == 1
    assert ratings.rating_at(1) == 3.0
    assert list(ratings) == [Rating(1, 2.0), Rating(5, 3.0)]


@pytest.mark.parametrize("pos", [-1, 2, 10])
def test_out_of_range_positions_raise(pos: int) -> None:
    ratings = SortedRatingList()
    ratings.add(0, 1.0)
    ratings.add(1, 1.0)

    with pytest.raises(IndexError):
        ratings.rating_at(pos)
    with pytest.raises(IndexError):
        ratings.index_at(pos)


def test_as_arrays_dtypes() -> None:
    ratings = SortedRatingList()
    ratings.add(2, 4.5)
    indices, values = ratings.as_arrays()
    assert indices.dtype.kind == "i"
    assert values.dtype.kind == "f"
    assert indices.tolist() == [2]
    assert values.tolist() == [4.5]
