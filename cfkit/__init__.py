"""Collaborative-filtering evaluation toolkit.

Core pieces:
- A sparse, index-aligned rating store (`cfkit.store`)
- A fixed-stride parallel runner (`cfkit.process`)
- KNN similarity, neighbor selection and rating aggregation (`cfkit.knn`)
- A parallel scoring harness reducing per-user scores (`cfkit.scoring`)
"""
from __future__ import annotations

from .store import DataModel

__all__ = ["DataModel"]
