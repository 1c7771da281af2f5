from __future__ import annotations

import logging
import os
import random
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

import numpy as np


@dataclass(frozen=True)
class ReproducibilityConfig:
    seed: int = 42
    deterministic: bool = True


def setup_logging(level: int | str = "INFO") -> None:
    """Configure stdlib logging with a consistent, project-wide format."""
    root_logger = logging.getLogger()
    if root_logger.handlers:
        # Already configured (tests, notebooks, repeated CLI calls): only adjust the level.
        root_logger.setLevel(level)
        return

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@contextmanager
def log_elapsed(log: logging.Logger, what: str) -> Iterator[None]:
    """Log `what` with its wall-clock duration once the block completes."""
    t0 = time.perf_counter()
    yield
    log.info("%s done in %.2fs", what, time.perf_counter() - t0)


def set_global_seed(cfg: ReproducibilityConfig) -> None:
    """Seed python, numpy and (when installed) torch RNGs.

    KNN runs are deterministic on their own; the seed matters for the random
    train/test split and for matrix-factorization training.
    """
    random.seed(cfg.seed)
    np.random.seed(cfg.seed)

    try:
        import torch
    except ImportError:
        torch = None

    if torch is not None:
        torch.manual_seed(cfg.seed)
        if cfg.deterministic:
            torch.use_deterministic_algorithms(True, warn_only=True)

    os.environ["PYTHONHASHSEED"] = str(cfg.seed)
