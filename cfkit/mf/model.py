from __future__ import annotations

import torch
import torch.nn as nn


class BiasedMF(nn.Module):
    """Rating model: global bias + user bias + item bias + dot(user_emb, item_emb).

    The global bias starts at the training mean rating so the other terms learn
    residuals from it. With `rating_range` set, outputs are clamped to
    ``[low, high]``; gradients stop flowing through clamped outputs.
    """

    def __init__(
        self,
        n_users: int,
        n_items: int,
        *,
        embed_dim: int = 32,
        global_mean: float = 0.0,
        rating_range: tuple[float, float] | None = None,
    ) -> None:
        super().__init__()
        if rating_range is not None and not rating_range[0] <= rating_range[1]:
            raise ValueError(f"rating_range must be (low, high) with low <= high, got {rating_range}")

        self.user_factors = nn.Embedding(int(n_users), int(embed_dim))
        self.item_factors = nn.Embedding(int(n_items), int(embed_dim))
        self.user_bias = nn.Embedding(int(n_users), 1)
        self.item_bias = nn.Embedding(int(n_items), 1)
        self.global_bias = nn.Parameter(torch.tensor([float(global_mean)]))
        self.rating_range = None if rating_range is None else (float(rating_range[0]), float(rating_range[1]))

        nn.init.normal_(self.user_factors.weight, std=0.02)
        nn.init.normal_(self.item_factors.weight, std=0.02)
        nn.init.zeros_(self.user_bias.weight)
        nn.init.zeros_(self.item_bias.weight)

    def extra_repr(self) -> str:
        return f"rating_range={self.rating_range}"

    def forward(self, user_idx: torch.Tensor, item_idx: torch.Tensor) -> torch.Tensor:
        interaction = (self.user_factors(user_idx) * self.item_factors(item_idx)).sum(dim=1)
        out = self.global_bias + self.user_bias(user_idx).squeeze(1) + self.item_bias(item_idx).squeeze(1) + interaction
        if self.rating_range is not None:
            out = out.clamp(min=self.rating_range[0], max=self.rating_range[1])
        return out
