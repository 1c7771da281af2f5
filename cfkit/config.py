from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .knn.aggregation import AGGREGATIONS
from .knn.similarity import METRICS
from .scoring import MEASURES


@dataclass(frozen=True)
class KNNConfig:
    side: str = "user"
    k: int = 20
    metric: str = "jmsd"
    metric_params: dict[str, Any] = field(default_factory=dict)
    aggregation: str = "deviation_from_mean"


@dataclass(frozen=True)
class MFConfig:
    embed_dim: int = 32
    epochs: int = 5
    batch_size: int = 1024
    lr: float = 1e-2
    weight_decay: float = 0.0
    random_state: int = 42


@dataclass(frozen=True)
class EvaluationConfig:
    num_workers: int | None = None
    number_of_recommendations: int = 10
    relevant_threshold: float = 4.0
    perfect_threshold: float = 0.5
    measures: tuple[str, ...] = ("mae", "rmse", "coverage", "precision", "recall")


@dataclass(frozen=True)
class ExperimentConfig:
    knn: KNNConfig = field(default_factory=KNNConfig)
    mf: MFConfig = field(default_factory=MFConfig)
    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)
    seed: int = 42
    log_level: str = "INFO"


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"config section '{key}' must be a mapping, got {type(value).__name__}")
    return value


def _build(cls: type, values: dict[str, Any], section: str) -> Any:
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"config section '{section}' has unknown keys: {sorted(unknown)}")
    return cls(**values)


def validate_config(cfg: ExperimentConfig) -> None:
    knn = cfg.knn
    if knn.side not in ("user", "item"):
        raise ValueError(f"knn.side must be 'user' or 'item', got {knn.side!r}")
    if int(knn.k) < 1:
        raise ValueError(f"knn.k must be >= 1, got {knn.k}")
    if knn.metric not in METRICS:
        raise ValueError(f"knn.metric {knn.metric!r} is not one of {sorted(METRICS)}")
    if knn.aggregation not in AGGREGATIONS:
        raise ValueError(f"knn.aggregation {knn.aggregation!r} is not one of {sorted(AGGREGATIONS)}")

    ev = cfg.evaluation
    if ev.num_workers is not None and int(ev.num_workers) < 1:
        raise ValueError(f"evaluation.num_workers must be >= 1, got {ev.num_workers}")
    if int(ev.number_of_recommendations) < 1:
        raise ValueError(f"evaluation.number_of_recommendations must be >= 1, got {ev.number_of_recommendations}")
    unknown = [m for m in ev.measures if m not in MEASURES]
    if unknown:
        raise ValueError(f"evaluation.measures has unknown names {unknown} (known: {sorted(MEASURES)})")


def config_from_dict(raw: dict[str, Any]) -> ExperimentConfig:
    if not isinstance(raw, dict):
        raise ValueError("config must be a mapping")

    evaluation = dict(_section(raw, "evaluation"))
    if "measures" in evaluation:
        evaluation["measures"] = tuple(str(m) for m in evaluation["measures"])

    top_level = {k: v for k, v in raw.items() if k not in ("knn", "mf", "evaluation")}
    cfg = _build(
        ExperimentConfig,
        {
            "knn": _build(KNNConfig, _section(raw, "knn"), "knn"),
            "mf": _build(MFConfig, _section(raw, "mf"), "mf"),
            "evaluation": _build(EvaluationConfig, evaluation, "evaluation"),
            **top_level,
        },
        "<root>",
    )
    validate_config(cfg)
    return cfg


def load_config(path: Path | str) -> ExperimentConfig:
    """Read an experiment config from YAML; absent sections keep their defaults."""
    raw = yaml.safe_load(Path(path).read_text())
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: config must be a mapping")
    return config_from_dict(raw)
