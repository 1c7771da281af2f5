from __future__ import annotations

import logging

import numpy as np
import torch
from torch.utils.data import DataLoader, Dataset

from ..config import MFConfig
from ..store import DataModel, TestEntity
from .model import BiasedMF


logger = logging.getLogger(__name__)


class RatingsDataset(Dataset):
    def __init__(self, user_idx: np.ndarray, item_idx: np.ndarray, rating: np.ndarray) -> None:
        self.user_idx = user_idx.astype(np.int64, copy=False)
        self.item_idx = item_idx.astype(np.int64, copy=False)
        self.rating = rating.astype(np.float32, copy=False)

    def __len__(self) -> int:
        return int(len(self.user_idx))

    def __getitem__(self, i: int) -> dict[str, torch.Tensor]:
        return {
            "users": torch.tensor(self.user_idx[i], dtype=torch.long),
            "items": torch.tensor(self.item_idx[i], dtype=torch.long),
            "ratings": torch.tensor(self.rating[i], dtype=torch.float32),
        }


def training_arrays(model: DataModel) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """(user index, item index, rating) columns of every training rating."""
    users: list[int] = []
    items: list[int] = []
    ratings: list[float] = []
    for user in model.users:
        users.extend([user.index] * user.number_of_ratings)
        items.extend(user.ratings.indices)
        ratings.extend(user.ratings.values)
    return (
        np.asarray(users, dtype=np.int64),
        np.asarray(items, dtype=np.int64),
        np.asarray(ratings, dtype=np.float32),
    )


def device_from_str(device: str | None) -> torch.device:
    if device is None:
        if torch.cuda.is_available():
            return torch.device("cuda")
        if getattr(torch.backends, "mps", None) is not None and torch.backends.mps.is_available():
            return torch.device("mps")
        return torch.device("cpu")
    return torch.device(str(device))


class MFRecommender:
    """Biased matrix factorization trained with Adam on the training ratings.

    Predictions are clamped to the training rating range. Test users and items
    share the index space of the training ones, so every held-out pair has an
    embedding; entities without training ratings keep their initial one.
    """

    def __init__(self, model: DataModel, cfg: MFConfig | None = None, *, device: str | None = None) -> None:
        self.model = model
        self.cfg = cfg or MFConfig()
        self.device = device_from_str(device)
        self.net: BiasedMF | None = None

    def __repr__(self) -> str:
        return f"MFRecommender(embed_dim={self.cfg.embed_dim}, epochs={self.cfg.epochs}, device={self.device})"

    def fit(self) -> None:
        cfg = self.cfg
        users, items, ratings = training_arrays(self.model)
        if ratings.size == 0:
            raise ValueError("MFRecommender.fit: the data model has no training ratings")

        torch.manual_seed(int(cfg.random_state))
        net = BiasedMF(
            self.model.number_of_users,
            self.model.number_of_items,
            embed_dim=int(cfg.embed_dim),
            global_mean=float(ratings.mean()),
            rating_range=(self.model.min_rating, self.model.max_rating),
        )
        net = net.to(self.device)

        generator = torch.Generator().manual_seed(int(cfg.random_state))
        loader = DataLoader(
            RatingsDataset(users, items, ratings),
            batch_size=int(cfg.batch_size),
            shuffle=True,
            num_workers=0,
            generator=generator,
        )
        optimizer = torch.optim.Adam(net.parameters(), lr=float(cfg.lr), weight_decay=float(cfg.weight_decay))
        loss_fn = torch.nn.MSELoss()

        logger.info(
            "MF training on device=%s users=%d items=%d ratings=%d epochs=%d batch_size=%d",
            self.device,
            self.model.number_of_users,
            self.model.number_of_items,
            ratings.size,
            int(cfg.epochs),
            int(cfg.batch_size),
        )
        net.train()
        for epoch in range(int(cfg.epochs)):
            total_loss = 0.0
            n = 0
            for batch in loader:
                u = batch["users"].to(self.device)
                i = batch["items"].to(self.device)
                r = batch["ratings"].to(self.device)

                loss = loss_fn(net(u, i), r)
                optimizer.zero_grad(set_to_none=True)
                loss.backward()
                optimizer.step()

                bs = int(u.shape[0])
                total_loss += float(loss.item()) * bs
                n += bs

            logger.info("MF epoch=%d train_rmse=%.4f", epoch + 1, float(np.sqrt(total_loss / max(1, n))))

        net.eval()
        self.net = net

    def _predict_many(self, user_idx: np.ndarray, item_idx: np.ndarray) -> np.ndarray:
        if self.net is None:
            raise RuntimeError("MFRecommender is not fitted; call fit() first")
        if user_idx.size == 0:
            return np.empty(0, dtype=np.float64)
        with torch.no_grad():
            u = torch.as_tensor(user_idx, dtype=torch.long, device=self.device)
            i = torch.as_tensor(item_idx, dtype=torch.long, device=self.device)
            out = self.net(u, i)
        return out.detach().cpu().numpy().astype(np.float64)

    def predict(self, user_index: int, item_index: int) -> float:
        self.model.get_user(user_index)
        self.model.get_item(item_index)
        return float(self._predict_many(np.asarray([user_index]), np.asarray([item_index]))[0])

    def predict_test_user(self, test_user: TestEntity) -> np.ndarray:
        items = np.asarray(test_user.test_ratings.indices, dtype=np.int64)
        users = np.full(items.shape, test_user.index, dtype=np.int64)
        return self._predict_many(users, items)
