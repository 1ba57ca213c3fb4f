"""
Training script:
- Reads an ARFF file (or generates a separable toy set)
- Range-normalizes the features once
- Trains logistic regression by batch gradient descent on the chosen
  backend (sequential scalar pass or SIMT kernels)
- Reports the bias weight per iteration and the elapsed time
- Evaluates on the training set, saves weights, metrics and the cost curve
"""

from __future__ import annotations
import argparse
import json
import os
import time
from dataclasses import asdict, dataclass, field

import numpy as np
import matplotlib.pyplot as plt
from sklearn.metrics import (
    accuracy_score,
    precision_score,
    recall_score,
    f1_score,
    roc_auc_score,
)

from .backends import GradientBackend, make_backend
from .model_scratch import InitStrategy, init_weights, predict_proba
from .normalize import normalize
from .table import FeatureTable, load_arff, make_separable


DEFAULT_ARFF = "Dataset/train/train-first1000.arff"
STOPPING_RULES = ("auto", "cost-delta", "max-iter")


@dataclass
class TrainConfig:
    alpha: float = 50.0
    max_iter: int = 200
    cost_threshold: float = 1.0
    stopping: str = "auto"
    init: str = InitStrategy.ZERO.value
    track_cost: bool = False
    verbose: bool = True


@dataclass
class TrainResult:
    weights: np.ndarray
    iterations: int
    stopped_by: str
    elapsed: float
    history: dict[str, list[float]] = field(default_factory=lambda: {"cost": []})

    @property
    def bias(self) -> float:
        return float(self.weights[-1])


class Trainer:
    """
    Batch gradient descent driver. Iteration 1 always runs; after that the
    loop continues while iterations < max_iter and, under the cost-delta
    rule, the summed cost dropped by more than cost_threshold.
    """

    def __init__(self, backend: GradientBackend, config: TrainConfig | None = None):
        self.backend = backend
        self.config = config or TrainConfig()
        if self.config.stopping not in STOPPING_RULES:
            raise ValueError(f"unknown stopping rule {self.config.stopping!r}, expected one of {STOPPING_RULES}")
        if self.config.max_iter < 1:
            raise ValueError("max_iter must be at least 1")

    @property
    def stopping(self) -> str:
        if self.config.stopping == "auto":
            return self.backend.default_stopping
        return self.config.stopping

    def fit(self, table: FeatureTable, weights: np.ndarray | None = None) -> TrainResult:
        cfg = self.config
        rule = self.stopping
        want_cost = cfg.track_cost or rule == "cost-delta"
        if weights is None:
            weights = init_weights(table.num_features, cfg.init)

        history: dict[str, list[float]] = {"cost": []}
        cost_prev = 0.0
        delta = 0.0
        iteration = 0
        stopped_by = "max-iter"

        start = time.perf_counter()
        self.backend.start(table, weights)
        try:
            while True:
                cost = self.backend.step(cfg.alpha, want_cost=want_cost)
                iteration += 1
                if cost is not None:
                    history["cost"].append(cost)
                    delta = cost_prev - cost
                    cost_prev = cost

                if cfg.verbose:
                    bias = self.backend.current_bias()
                    line = f"iter {iteration:4d} bias {bias:.6f}"
                    if cost is not None:
                        line += f" cost {cost:.6f}"
                    print(line)

                if iteration >= cfg.max_iter:
                    break
                if rule == "cost-delta" and iteration > 1 and not delta > cfg.cost_threshold:
                    stopped_by = "cost-delta"
                    break
        finally:
            weights = self.backend.finish()
        elapsed = time.perf_counter() - start

        if cfg.verbose:
            print(f"Time taken is {elapsed:.2f} seconds.")
        return TrainResult(
            weights=weights,
            iterations=iteration,
            stopped_by=stopped_by,
            elapsed=elapsed,
            history=history,
        )


# ----- small metric container for easy JSON dump -----
@dataclass
class Metrics:
    accuracy: float
    precision: float
    recall: float
    f1: float
    roc_auc: float | None


def compute_metrics(y_true: np.ndarray, y_prob: np.ndarray, threshold: float = 0.5) -> Metrics:
    """Compute common classification metrics at a given threshold."""
    y_pred = (y_prob >= threshold).astype(int)
    try:
        roc = roc_auc_score(y_true, y_prob)
    except ValueError:
        roc = None  # single class present
    return Metrics(
        accuracy=accuracy_score(y_true, y_pred),
        precision=precision_score(y_true, y_pred, zero_division=0),
        recall=recall_score(y_true, y_pred, zero_division=0),
        f1=f1_score(y_true, y_pred, zero_division=0),
        roc_auc=roc,
    )


def plot_cost(history: dict[str, list[float]], path: str) -> None:
    """Save the per-iteration summed cost to `path`."""
    plt.figure()
    plt.plot(range(1, len(history["cost"]) + 1), history["cost"])
    plt.xlabel("iteration"); plt.ylabel("cost"); plt.title("Training Cost")
    plt.tight_layout()
    plt.savefig(path, dpi=160)
    plt.close()


def main(argv: list[str] | None = None) -> None:
    # ---- CLI args ----
    ap = argparse.ArgumentParser(description="Logistic regression by batch gradient descent (scalar or SIMT).")
    ap.add_argument("--arff", default=DEFAULT_ARFF, help="Path to the training ARFF file")
    ap.add_argument("--synthetic", type=int, default=None, metavar="N",
                    help="Train on N generated, linearly separable instances instead of --arff")
    ap.add_argument("--alpha", type=float, default=50.0)
    ap.add_argument("--max-iter", type=int, default=200)
    ap.add_argument("--cost-threshold", type=float, default=1.0)
    ap.add_argument("--backend", choices=["scalar", "parallel"], default="parallel")
    ap.add_argument("--device", choices=["auto", "cuda", "emulated"], default="auto")
    ap.add_argument("--stopping", choices=list(STOPPING_RULES), default="auto")
    ap.add_argument("--init", choices=[s.value for s in InitStrategy], default=InitStrategy.ZERO.value)
    ap.add_argument("--freeze-bias", action="store_true", help="Never update the bias weight")
    ap.add_argument("--track-cost", action="store_true", help="Record the cost every iteration")
    ap.add_argument("--threshold", type=float, default=0.5)
    ap.add_argument("--artifacts", default="artifacts")
    ap.add_argument("--quiet", action="store_true")
    args = ap.parse_args(argv)

    os.makedirs(args.artifacts, exist_ok=True)

    # ---- Load + normalize ----
    if args.synthetic is not None:
        table = make_separable(args.synthetic)
    else:
        table = load_arff(args.arff)
    normalize(table)

    # ---- Train ----
    backend = make_backend(args.backend, device=args.device, update_bias=not args.freeze_bias)
    config = TrainConfig(
        alpha=args.alpha,
        max_iter=args.max_iter,
        cost_threshold=args.cost_threshold,
        stopping=args.stopping,
        init=args.init,
        track_cost=args.track_cost,
        verbose=not args.quiet,
    )
    result = Trainer(backend, config).fit(table)

    # ---- Evaluate on the training set ----
    y_prob = predict_proba(result.weights, table.matrix())
    metrics = compute_metrics(table.labels, y_prob, args.threshold)
    print("\nTraining set:", asdict(metrics))

    # ---- Save artifacts ----
    np.save(os.path.join(args.artifacts, "weights.npy"), result.weights)
    meta = {
        "bias": result.bias,
        "threshold": float(args.threshold),
        "feature_names": [a.name for a in table.attrs],
        "class_values": table.class_values,
        "backend": backend.name,
        "iterations": result.iterations,
        "stopped_by": result.stopped_by,
        "elapsed_seconds": result.elapsed,
        "config": asdict(config),
        "metrics": asdict(metrics),
    }
    with open(os.path.join(args.artifacts, "meta.json"), "w") as f:
        json.dump(meta, f, indent=2)

    if result.history["cost"]:
        plot_cost(result.history, os.path.join(args.artifacts, "cost.png"))


if __name__ == "__main__":
    main()
