from __future__ import annotations

import logging
import math
from typing import Iterable, Literal, Tuple

from .ratings import SortedRatingList


logger = logging.getLogger(__name__)

Side = Literal["user", "item"]
RatingTriple = Tuple[str, str, float]


def other_side(side: Side) -> Side:
    if side == "user":
        return "item"
    if side == "item":
        return "user"
    raise ValueError(f"side must be 'user' or 'item', got {side!r}")


class Entity:
    """A user or an item: immutable code, dense index and training ratings.

    `ratings` is keyed by the counterpart's dense index (item index for a user,
    user index for an item).
    """

    __slots__ = ("code", "index", "ratings", "_average", "_std")

    def __init__(self, code: str, index: int) -> None:
        self.code = str(code)
        self.index = int(index)
        self.ratings = SortedRatingList()
        self._average: float | None = None
        self._std: float | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, index={self.index}, ratings={len(self.ratings)})"

    def add_rating(self, counterpart_index: int, value: float) -> bool:
        self._average = None
        self._std = None
        return self.ratings.add(counterpart_index, value)

    @property
    def number_of_ratings(self) -> int:
        return len(self.ratings)

    def find(self, counterpart_index: int) -> int:
        return self.ratings.find(counterpart_index)

    def counterpart_at(self, pos: int) -> int:
        return self.ratings.index_at(pos)

    def rating_at(self, pos: int) -> float:
        return self.ratings.rating_at(pos)

    @property
    def rating_average(self) -> float:
        """Mean training rating; NaN when the entity has no training ratings."""
        if self._average is None:
            values = self.ratings.values
            self._average = math.fsum(values) / len(values) if values else float("nan")
        return self._average

    @property
    def rating_std(self) -> float:
        """Sample standard deviation of the training ratings (0 for <=1 rating)."""
        if self._std is None:
            values = self.ratings.values
            if len(values) <= 1:
                self._std = 0.0 if values else float("nan")
            else:
                avg = self.rating_average
                self._std = math.sqrt(math.fsum((v - avg) ** 2 for v in values) / (len(values) - 1))
        return self._std


class TestEntity(Entity):
    """An entity with held-out ratings.

    `test_index` is the position among test users/items; `index` is shared with
    the training space so a test user is also a (possibly rating-less) user.
    """

    __test__ = False  # not a pytest class

    __slots__ = ("test_index", "test_ratings")

    def __init__(self, code: str, index: int, test_index: int) -> None:
        super().__init__(code, index)
        self.test_index = int(test_index)
        self.test_ratings = SortedRatingList()

    def add_test_rating(self, counterpart_index: int, value: float) -> bool:
        return self.test_ratings.add(counterpart_index, value)

    @property
    def number_of_test_ratings(self) -> int:
        return len(self.test_ratings)

    @property
    def test_rating_average(self) -> float:
        values = self.test_ratings.values
        return math.fsum(values) / len(values) if values else float("nan")


class _Totals:
    """Running count/sum/min/max of a rating stream, overwrite-aware."""

    __slots__ = ("count", "total", "min", "max", "stale")

    def __init__(self) -> None:
        self.count = 0
        self.total = 0.0
        self.min = math.inf
        self.max = -math.inf
        self.stale = False

    def update(self, value: float, previous: float | None) -> None:
        if previous is None:
            self.count += 1
            self.total += value
        else:
            self.total += value - previous
            # An overwritten extreme may no longer be present; rescan before the next read.
            if previous != value and (previous == self.min or previous == self.max):
                self.stale = True
        if self.stale:
            return
        # NaN never compares, so it is ignored here.
        if value < self.min:
            self.min = value
        if value > self.max:
            self.max = value

    def rescan(self, values: Iterable[float]) -> None:
        self.min = math.inf
        self.max = -math.inf
        for value in values:
            if value < self.min:
                self.min = value
            if value > self.max:
                self.max = value
        self.stale = False

    @property
    def average(self) -> float:
        return self.total / self.count if self.count else float("nan")


class DataModel:
    """Index tables and rating lists for users, items, test users and test items.

    Build with `DataModel.from_ratings(train, test)`. Test entities are created
    first, so test users/items occupy the lowest indices of the user/item
    spaces, then training ratings add whatever users/items are new. Duplicate
    (user, item) pairs are upserted: the last value wins.
    """

    def __init__(self) -> None:
        self.users: list[Entity] = []
        self.items: list[Entity] = []
        self.test_users: list[TestEntity] = []
        self.test_items: list[TestEntity] = []

        self._user_by_code: dict[str, int] = {}
        self._item_by_code: dict[str, int] = {}
        self._test_user_by_code: dict[str, int] = {}
        self._test_item_by_code: dict[str, int] = {}

        self._train = _Totals()
        self._test = _Totals()

    @classmethod
    def from_ratings(
        cls,
        train: Iterable[RatingTriple],
        test: Iterable[RatingTriple] = (),
    ) -> "DataModel":
        train = list(train)
        test = list(test)

        model = cls()

        # First pass: assign indices.
        for user_code, item_code, _ in test:
            model._resolve_test_user(str(user_code))
            model._resolve_test_item(str(item_code))
        for user_code, item_code, _ in train:
            model._resolve_user(str(user_code))
            model._resolve_item(str(item_code))

        # Second pass: fill rating lists.
        for user_code, item_code, rating in test:
            model.add_test_rating(user_code, item_code, rating)
        for user_code, item_code, rating in train:
            model.add_rating(user_code, item_code, rating)
        model._refresh_extremes()

        logger.info(
            "DataModel built: users=%d items=%d test_users=%d test_items=%d ratings=%d test_ratings=%d",
            model.number_of_users,
            model.number_of_items,
            model.number_of_test_users,
            model.number_of_test_items,
            model.number_of_ratings,
            model.number_of_test_ratings,
        )
        return model

    # ----- index resolution -----

    def _resolve_user(self, code: str) -> Entity:
        idx = self._user_by_code.get(code)
        if idx is not None:
            return self.users[idx]
        user = Entity(code, len(self.users))
        self.users.append(user)
        self._user_by_code[code] = user.index
        return user

    def _resolve_item(self, code: str) -> Entity:
        idx = self._item_by_code.get(code)
        if idx is not None:
            return self.items[idx]
        item = Entity(code, len(self.items))
        self.items.append(item)
        self._item_by_code[code] = item.index
        return item

    def _resolve_test_user(self, code: str) -> TestEntity:
        idx = self._test_user_by_code.get(code)
        if idx is not None:
            return self.test_users[idx]
        user = _promote(self.users, self._user_by_code, code, len(self.test_users))
        self.test_users.append(user)
        self._test_user_by_code[code] = user.test_index
        return user

    def _resolve_test_item(self, code: str) -> TestEntity:
        idx = self._test_item_by_code.get(code)
        if idx is not None:
            return self.test_items[idx]
        item = _promote(self.items, self._item_by_code, code, len(self.test_items))
        self.test_items.append(item)
        self._test_item_by_code[code] = item.test_index
        return item

    # ----- mutation -----

    def add_rating(self, user_code: str, item_code: str, rating: float) -> None:
        """Upsert a training rating, creating the user/item when unseen."""
        user = self._resolve_user(str(user_code))
        item = self._resolve_item(str(item_code))
        value = float(rating)

        pos = user.find(item.index)
        previous = user.rating_at(pos) if pos != -1 else None

        user.add_rating(item.index, value)
        item.add_rating(user.index, value)
        self._train.update(value, previous)

    def add_test_rating(self, user_code: str, item_code: str, rating: float) -> None:
        """Upsert a held-out rating. Test ratings are keyed by the shared user/item indices."""
        user = self._resolve_test_user(str(user_code))
        item = self._resolve_test_item(str(item_code))
        value = float(rating)

        pos = user.test_ratings.find(item.index)
        previous = user.test_ratings.rating_at(pos) if pos != -1 else None

        user.add_test_rating(item.index, value)
        item.add_test_rating(user.index, value)
        self._test.update(value, previous)

    def _refresh_extremes(self) -> None:
        """Recompute min/max from the rating lists after an extreme was overwritten."""
        if self._train.stale:
            self._train.rescan(v for user in self.users for v in user.ratings.values)
        if self._test.stale:
            self._test.rescan(v for user in self.test_users for v in user.test_ratings.values)

    # ----- lookups -----

    def user_index(self, code: str) -> int:
        return self._user_by_code[str(code)]

    def item_index(self, code: str) -> int:
        return self._item_by_code[str(code)]

    def test_user_index(self, code: str) -> int:
        return self._test_user_by_code[str(code)]

    def test_item_index(self, code: str) -> int:
        return self._test_item_by_code[str(code)]

    def has_user(self, code: str) -> bool:
        return str(code) in self._user_by_code

    def has_item(self, code: str) -> bool:
        return str(code) in self._item_by_code

    def get_user(self, index: int) -> Entity:
        return self.users[_checked(index, len(self.users), "user")]

    def get_item(self, index: int) -> Entity:
        return self.items[_checked(index, len(self.items), "item")]

    def get_test_user(self, test_index: int) -> TestEntity:
        return self.test_users[_checked(test_index, len(self.test_users), "test user")]

    def get_test_item(self, test_index: int) -> TestEntity:
        return self.test_items[_checked(test_index, len(self.test_items), "test item")]

    def entities(self, side: Side) -> list[Entity]:
        """Training entities of one side: users for "user", items for "item"."""
        if side == "user":
            return self.users
        if side == "item":
            return self.items
        raise ValueError(f"side must be 'user' or 'item', got {side!r}")

    def counterparts(self, side: Side) -> list[Entity]:
        """Entities on the other side of the ratings: items for "user", users for "item"."""
        return self.entities(other_side(side))

    def test_entities(self, side: Side) -> list[TestEntity]:
        if side == "user":
            return self.test_users
        if side == "item":
            return self.test_items
        raise ValueError(f"side must be 'user' or 'item', got {side!r}")

    # ----- global scalars -----

    @property
    def number_of_users(self) -> int:
        return len(self.users)

    @property
    def number_of_items(self) -> int:
        return len(self.items)

    @property
    def number_of_test_users(self) -> int:
        return len(self.test_users)

    @property
    def number_of_test_items(self) -> int:
        return len(self.test_items)

    @property
    def number_of_ratings(self) -> int:
        return self._train.count

    @property
    def number_of_test_ratings(self) -> int:
        return self._test.count

    @property
    def min_rating(self) -> float:
        self._refresh_extremes()
        return self._train.min

    @property
    def max_rating(self) -> float:
        self._refresh_extremes()
        return self._train.max

    @property
    def rating_average(self) -> float:
        return self._train.average

    @property
    def min_test_rating(self) -> float:
        self._refresh_extremes()
        return self._test.min

    @property
    def max_test_rating(self) -> float:
        self._refresh_extremes()
        return self._test.max

    @property
    def test_rating_average(self) -> float:
        return self._test.average

    def __repr__(self) -> str:
        return (
            f"DataModel(users={self.number_of_users}, items={self.number_of_items}, "
            f"test_users={self.number_of_test_users}, test_items={self.number_of_test_items}, "
            f"ratings={self.number_of_ratings}, test_ratings={self.number_of_test_ratings}, "
            f"min_rating={self.min_rating}, max_rating={self.max_rating})"
        )


def _promote(entities: list[Entity], by_code: dict[str, int], code: str, test_index: int) -> TestEntity:
    """Return a TestEntity for `code`, keeping the training index when one exists."""
    idx = by_code.get(code)
    if idx is None:
        entity = TestEntity(code, len(entities), test_index)
        entities.append(entity)
        by_code[code] = entity.index
        return entity

    # A training entity that later receives held-out ratings keeps its index and ratings.
    previous = entities[idx]
    entity = TestEntity(code, idx, test_index)
    entity.ratings = previous.ratings
    entities[idx] = entity
    return entity


def _checked(index: int, size: int, what: str) -> int:
    if index < 0 or index >= size:
        raise IndexError(f"{what} index {index} out of range [0, {size})")
    return index
