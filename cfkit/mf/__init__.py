"""Matrix-factorization recommender (PyTorch).

Core idea:
- Learn user and item embeddings plus biases from the training ratings
- Predict a rating as their dot product plus biases, starting from the mean rating
"""
from __future__ import annotations

from .model import BiasedMF
from .recommender import MFRecommender

__all__ = ["BiasedMF", "MFRecommender"]
