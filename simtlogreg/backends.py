"""
Gradient backends: the two execution strategies behind one interface.

GradientBackend
- compute_gradient(weights, table) -> (grad, diff)   stateless, one pass
- start(table, weights)   one-time setup before the loop
- step(alpha, want_cost)  one activation + one weight update, returns cost
- current_weights()       weights as of the last completed step
- current_bias()          bias only; what the per-iteration progress line reads
- finish()                synchronize, read back, tear down

grad has length num_features + 1; its last entry is sum(diff), the bias
gradient. `update_bias=False` keeps the bias at its initial value.
"""

from __future__ import annotations
import numpy as np

from .geometry import LaunchGeometry
from .model_scratch import ModelState, compute_cost_and_gradients, instance_cost
from .session import DeviceSession, open_session
from .table import FeatureTable


class GradientBackend:
    name = "backend"
    default_stopping = "max-iter"

    def __init__(self, update_bias: bool = True):
        self.update_bias = update_bias

    def compute_gradient(self, weights: np.ndarray, table: FeatureTable) -> tuple[np.ndarray, np.ndarray]:
        raise NotImplementedError

    def start(self, table: FeatureTable, weights: np.ndarray) -> None:
        raise NotImplementedError

    def step(self, alpha: float, want_cost: bool = False) -> float | None:
        raise NotImplementedError

    def current_weights(self) -> np.ndarray:
        raise NotImplementedError

    def current_bias(self) -> float:
        return float(self.current_weights()[-1])

    def finish(self) -> np.ndarray:
        raise NotImplementedError


class ScalarBackend(GradientBackend):
    """Sequential pass over instances, then a batch update."""
    name = "scalar"
    default_stopping = "cost-delta"

    def __init__(self, update_bias: bool = True):
        super().__init__(update_bias)
        self.table: FeatureTable | None = None
        self.state: ModelState | None = None

    def compute_gradient(self, weights, table):
        _, grad, diff = compute_cost_and_gradients(np.asarray(weights, dtype=np.float64), table.matrix(), table.labels)
        return grad, diff

    def start(self, table, weights):
        self.table = table
        self.state = ModelState.create(table.num_features, table.num_instances)
        self.state.weights[:] = weights

    def step(self, alpha, want_cost=False):
        table, state = self.table, self.state
        cost, grad, _ = compute_cost_and_gradients(
            state.weights, table.matrix(), table.labels, state.diff, state.grad
        )
        n = table.num_features
        scale = alpha / table.num_instances
        state.weights[:n] -= scale * grad[:n]
        if self.update_bias:
            state.weights[n] -= scale * grad[n]
        return cost

    def current_weights(self):
        return self.state.weights.copy()

    def finish(self):
        weights = self.state.weights.copy()
        self.table = self.state = None
        return weights


class ParallelBackend(GradientBackend):
    """
    Activation and weight-update kernels on a SIMT device session.

    Buffers are transferred once in start(); iterations only enqueue
    kernels. Reading the cost or the weights mid-run costs a device->host
    copy and is done only on request.
    """
    name = "parallel"
    default_stopping = "max-iter"

    def __init__(self, device: str = "auto", update_bias: bool = True, **session_kwargs):
        super().__init__(update_bias)
        self.device = device
        self.session_kwargs = session_kwargs
        self.table: FeatureTable | None = None
        self.session: DeviceSession | None = None

    def open(self, geometry: LaunchGeometry) -> DeviceSession:
        return open_session(geometry, device=self.device, **self.session_kwargs)

    def compute_gradient(self, weights, table):
        # scale 0 leaves the weights alone, so the bias block can always run
        geometry = LaunchGeometry.plan(table.num_instances, table.num_features, update_bias=True)
        with self.open(geometry) as session:
            session.acquire(table, np.asarray(weights, dtype=np.float64))
            session.activate()
            session.update(0.0)
            session.synchronize()
            return session.read_grad(), session.read_diff()

    def start(self, table, weights):
        geometry = LaunchGeometry.plan(table.num_instances, table.num_features, update_bias=self.update_bias)
        self.table = table
        self.session = self.open(geometry)
        self.session.acquire(table, np.asarray(weights, dtype=np.float64))

    def step(self, alpha, want_cost=False):
        session = self.session
        session.activate()
        session.update(alpha / self.table.num_instances)
        if not want_cost:
            return None
        diff = session.read_diff()
        h = diff + self.table.labels
        return float(np.sum(instance_cost(h, self.table.labels)))

    def current_weights(self):
        return self.session.read_weights()

    def current_bias(self):
        return self.session.read_bias()

    def finish(self):
        session = self.session
        try:
            session.synchronize()
            weights = session.read_weights()
        finally:
            session.release()
            self.session = self.table = None
        return weights


def make_backend(name: str, device: str = "auto", update_bias: bool = True, **kwargs) -> GradientBackend:
    if name == "scalar":
        return ScalarBackend(update_bias=update_bias)
    if name == "parallel":
        return ParallelBackend(device=device, update_bias=update_bias, **kwargs)
    raise ValueError(f"unknown backend {name!r} (expected scalar or parallel)")
