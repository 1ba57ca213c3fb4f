"""
Model state and the sequential (scalar) logistic-regression pass.

- sigmoid: logistic activation (no clipping; inputs are range-normalized)
- instance_cost: -log(h) for label 1, -log(1 - h) for label 0
- init_weights: zero / one / uninitialized-bytes starting points
- ModelState: weight vector + per-iteration scratch buffers
- compute_cost_and_gradients: one full sequential pass over the instances
- predict_proba / predict_label: inference helpers

Shapes (convention used here):
- X: (m, n)    -> m instances, n features (row-major buffer view)
- y: (m,)      -> binary labels {0,1}
- W: (n + 1,)  -> weights, W[n] is the bias
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum

import numpy as np


class InitStrategy(str, Enum):
    ZERO = "zero"
    ONE = "one"
    UNINITIALIZED_BYTES = "uninitialized-bytes"


def sigmoid(z: np.ndarray | float) -> np.ndarray | float:
    return 1.0 / (1.0 + np.exp(-z))


def instance_cost(h: np.ndarray | float, y: np.ndarray | int) -> np.ndarray | float:
    """Per-instance log-loss, split on the label as the scalar trainer reports it."""
    return np.where(y == 1, -np.log(h), -np.log(1.0 - h))


def init_weights(num_features: int, strategy: InitStrategy | str = InitStrategy.ZERO) -> np.ndarray:
    """
    Weight vector of length num_features + 1.

    `uninitialized-bytes` reproduces a memset of the byte 0x01 over the
    float64 storage: every weight becomes the double whose eight bytes are
    all 0x01 (about 7.7e-304), not 1.0.
    """
    strategy = InitStrategy(strategy)
    size = num_features + 1
    if strategy is InitStrategy.ZERO:
        return np.zeros(size, dtype=np.float64)
    if strategy is InitStrategy.ONE:
        return np.ones(size, dtype=np.float64)
    return np.frombuffer(b"\x01" * (8 * size), dtype=np.float64).copy()


@dataclass
class ModelState:
    """
    Weights plus the iteration-scoped scratch buffers.

    grad[:n] is the batch-gradient accumulator, grad[n] the bias gradient.
    """
    weights: np.ndarray
    diff: np.ndarray
    grad: np.ndarray

    @classmethod
    def create(
        cls,
        num_features: int,
        num_instances: int,
        strategy: InitStrategy | str = InitStrategy.ZERO,
    ) -> "ModelState":
        return cls(
            weights=init_weights(num_features, strategy),
            diff=np.zeros(num_instances, dtype=np.float64),
            grad=np.zeros(num_features + 1, dtype=np.float64),
        )

    @property
    def num_features(self) -> int:
        return self.weights.shape[0] - 1

    @property
    def bias(self) -> float:
        return float(self.weights[-1])


def compute_cost_and_gradients(
    W: np.ndarray,
    X: np.ndarray,
    y: np.ndarray,
    diff: np.ndarray | None = None,
    grad: np.ndarray | None = None,
) -> tuple[float, np.ndarray, np.ndarray]:
    """
    One sequential pass: for every instance j compute h_j, diff_j = h_j - y_j
    and its cost, accumulating grad_i += diff_j * x_{j,i} as it goes.

    Weights are read only; the caller applies the step after the pass.

    Returns:
        cost: float, summed over instances
        grad: (n + 1,) with grad[n] = sum(diff)
        diff: (m,)
    """
    m, n = X.shape
    if W.shape != (n + 1,):
        raise ValueError(f"weights must have length {n + 1}, got {W.shape}")
    diff = np.empty(m, dtype=np.float64) if diff is None else diff
    grad = np.empty(n + 1, dtype=np.float64) if grad is None else grad
    grad[:] = 0.0

    cost = 0.0
    for j in range(m):
        x = X[j]
        score = W[n] + x @ W[:n]
        h = 1.0 / (1.0 + np.exp(-score))
        d = h - y[j]
        diff[j] = d
        cost += -np.log(h) if y[j] == 1 else -np.log(1.0 - h)
        grad[:n] += d * x
        grad[n] += d

    return float(cost), grad, diff


def predict_proba(W: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Return probabilities P(y=1|x) for each row in X."""
    return sigmoid(X @ W[:-1] + W[-1])  # (m,)


def predict_label(W: np.ndarray, X: np.ndarray, threshold: float = 0.5) -> np.ndarray:
    """Return 0/1 predictions using given threshold."""
    return (predict_proba(W, X) >= threshold).astype(int)
