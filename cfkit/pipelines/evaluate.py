from __future__ import annotations

import argparse
import dataclasses
import logging
from pathlib import Path

import pandas as pd

from ..config import EvaluationConfig, ExperimentConfig, load_config, validate_config
from ..data import datamodel_from_frames, random_split, read_ratings_csv
from ..knn import KNNRecommender, build_metric
from ..recommender import Recommender
from ..scoring import QualityMeasure, ScoreFunction, build_measure
from ..store import DataModel
from ..utils import ReproducibilityConfig, set_global_seed, setup_logging


logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = ["measure", "score", "std", "ci95", "ci99", "evaluated"]


def build_recommender(
    datamodel: DataModel,
    cfg: ExperimentConfig,
    *,
    algorithm: str = "knn",
    device: str | None = None,
) -> Recommender:
    if algorithm == "knn":
        knn = cfg.knn
        return KNNRecommender(
            datamodel,
            k=int(knn.k),
            metric=build_metric(knn.metric, **knn.metric_params),
            aggregation=knn.aggregation,
            side=knn.side,
            num_workers=cfg.evaluation.num_workers,
        )
    if algorithm == "mf":
        # torch is only needed for this algorithm.
        from ..mf import MFRecommender

        return MFRecommender(datamodel, cfg.mf, device=device)
    raise ValueError(f"algorithm must be 'knn' or 'mf', got {algorithm!r}")


def build_measures(ev: EvaluationConfig) -> list[ScoreFunction]:
    n = int(ev.number_of_recommendations)
    threshold = float(ev.relevant_threshold)
    params = {
        "perfect": {"threshold": float(ev.perfect_threshold)},
        "precision": {"number_of_recommendations": n, "relevant_threshold": threshold},
        "recall": {"number_of_recommendations": n, "relevant_threshold": threshold},
        "f1": {"number_of_recommendations": n, "relevant_threshold": threshold},
        "ndcg": {"number_of_recommendations": n},
        "novelty": {"number_of_recommendations": n},
        "diversity": {"number_of_recommendations": n},
    }
    return [build_measure(name, **params.get(name, {})) for name in ev.measures]


def score_recommender(recommender: Recommender, ev: EvaluationConfig) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Summary table (one row per measure) and per-test-user scores (one column per measure)."""
    rows = []
    per_user: pd.DataFrame | None = None
    for score_fn in build_measures(ev):
        measure = QualityMeasure(recommender, score_fn)
        measure.get_score(ev.num_workers)
        summary = measure.summary
        rows.append(
            {
                "measure": measure.name,
                "score": summary.mean,
                "std": summary.std,
                "ci95": summary.ci95,
                "ci99": summary.ci99,
                "evaluated": summary.count,
            }
        )
        frame = measure.to_frame()
        per_user = frame if per_user is None else per_user.merge(frame, on=["test_user_index", "user_code"])

    if per_user is None:
        per_user = pd.DataFrame(columns=["test_user_index", "user_code"])
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS), per_user


def evaluate(
    datamodel: DataModel,
    cfg: ExperimentConfig,
    *,
    algorithm: str = "knn",
    device: str | None = None,
) -> pd.DataFrame:
    """Fit the configured recommender on `datamodel` and score it with every configured measure."""
    validate_config(cfg)
    set_global_seed(ReproducibilityConfig(seed=int(cfg.seed)))

    recommender = build_recommender(datamodel, cfg, algorithm=algorithm, device=device)
    logger.info("Evaluating %r on %r", recommender, datamodel)
    recommender.fit()

    summary, _ = score_recommender(recommender, cfg.evaluation)
    return summary


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Fit a collaborative-filtering recommender and score it on held-out ratings.")
    p.add_argument("--train", type=Path, required=True, help="Ratings CSV with userId,itemId,rating columns")
    p.add_argument("--test", type=Path, default=None, help="Held-out ratings CSV; default: random split of --train")
    p.add_argument("--config", type=Path, default=None, help="Experiment config YAML; default: built-in defaults")
    p.add_argument("--sep", type=str, default=",", help="CSV field separator")
    p.add_argument("--algorithm", choices=("knn", "mf"), default="knn")
    p.add_argument("--device", type=str, default=None, help="cpu/cuda/mps for --algorithm mf; default auto")
    p.add_argument("--test-users-ratio", type=float, default=0.2)
    p.add_argument("--test-ratings-ratio", type=float, default=0.2)
    p.add_argument("--k", type=int, default=None, help="Override knn.k")
    p.add_argument("--metric", type=str, default=None, help="Override knn.metric")
    p.add_argument("--workers", type=int, default=None, help="Override evaluation.num_workers")
    p.add_argument("--scores-out", type=Path, default=None, help="Write per-test-user scores to this CSV")
    return p


def _apply_overrides(cfg: ExperimentConfig, args: argparse.Namespace) -> ExperimentConfig:
    knn = cfg.knn
    if args.k is not None:
        knn = dataclasses.replace(knn, k=int(args.k))
    if args.metric is not None:
        knn = dataclasses.replace(knn, metric=str(args.metric))
    ev = cfg.evaluation
    if args.workers is not None:
        ev = dataclasses.replace(ev, num_workers=int(args.workers))
    return dataclasses.replace(cfg, knn=knn, evaluation=ev)


def main(argv: list[str] | None = None) -> None:
    args = build_arg_parser().parse_args(argv)
    cfg = load_config(args.config) if args.config is not None else ExperimentConfig()
    cfg = _apply_overrides(cfg, args)
    validate_config(cfg)
    setup_logging(cfg.log_level)

    ratings = read_ratings_csv(args.train, sep=args.sep)
    if args.test is not None:
        train, test = ratings, read_ratings_csv(args.test, sep=args.sep)
    else:
        split = random_split(
            ratings,
            test_users_ratio=float(args.test_users_ratio),
            test_ratings_ratio=float(args.test_ratings_ratio),
            random_state=int(cfg.seed),
        )
        train, test = split.train, split.test

    datamodel = datamodel_from_frames(train, test)
    set_global_seed(ReproducibilityConfig(seed=int(cfg.seed)))
    recommender = build_recommender(datamodel, cfg, algorithm=args.algorithm, device=args.device)
    recommender.fit()
    summary, per_user = score_recommender(recommender, cfg.evaluation)

    print("\n=== Quality Measures ===")
    print(summary.to_string(index=False))

    if args.scores_out is not None:
        out = Path(args.scores_out)
        out.parent.mkdir(parents=True, exist_ok=True)
        per_user.to_csv(out, index=False)
        logger.info("Per-test-user scores written to %s", out)


if __name__ == "__main__":
    main()
