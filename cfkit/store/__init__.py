from __future__ import annotations

from .datamodel import DataModel, Entity, Side, TestEntity, other_side
from .ratings import Rating, SortedRatingList

__all__ = ["DataModel", "Entity", "Rating", "Side", "SortedRatingList", "TestEntity", "other_side"]
