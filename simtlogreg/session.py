"""
Device sessions: explicit owners of the execution queue and the
device-resident training buffers.

Lifecycle:
    session.acquire(table, weights)   # allocate + one-time transfers
    session.activate(); session.update(scale)   # per iteration, same queue
    session.read_bias()               # optional, one-slot read for progress
    session.synchronize()             # host blocks until all work retired
    weights = session.read_weights()
    session.release()

Both kernels of an iteration are enqueued on one in-order queue, so the
update always sees the diff written by the activation of the same
iteration without a host-side wait in between.
"""

from __future__ import annotations
import numpy as np
import numba
from numba import cuda
from numba.cuda.cudadrv.driver import CudaAPIError

from . import simt
from .cuda_kernels import activation_kernel, weight_update_kernel
from .errors import LaunchFailure, ResourceExhaustion, SimtError
from .geometry import LaunchGeometry
from .table import FeatureTable


class DeviceSession:
    name = "device"

    def __init__(self, geometry: LaunchGeometry):
        self.geometry = geometry
        self.acquired = False

    def __enter__(self) -> "DeviceSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def _require_acquired(self) -> None:
        if not self.acquired:
            raise RuntimeError(f"{self.name} session used before acquire() or after release()")

    def _check_table(self, table: FeatureTable, weights: np.ndarray) -> None:
        geo = self.geometry
        if (table.num_instances, table.num_features) != (geo.num_instances, geo.num_features):
            raise ValueError(
                f"table is {table.num_instances}x{table.num_features}, "
                f"geometry was planned for {geo.num_instances}x{geo.num_features}"
            )
        if weights.shape != (geo.num_features + 1,):
            raise ValueError(f"weights must have length {geo.num_features + 1}, got {weights.shape}")
        table.build_transposed()

    def acquire(self, table: FeatureTable, weights: np.ndarray) -> None:
        raise NotImplementedError

    def activate(self) -> None:
        raise NotImplementedError

    def update(self, scale: float) -> None:
        raise NotImplementedError

    def synchronize(self) -> None:
        raise NotImplementedError

    def read_weights(self) -> np.ndarray:
        raise NotImplementedError

    def read_bias(self) -> float:
        raise NotImplementedError

    def read_diff(self) -> np.ndarray:
        raise NotImplementedError

    def read_grad(self) -> np.ndarray:
        raise NotImplementedError

    def release(self) -> None:
        raise NotImplementedError


class EmulatedSession(DeviceSession):
    """
    Runs the kernels in simt.py on the host. The queue is program order.
    `memory_limit` (bytes) models a device that cannot hold the buffers.
    """
    name = "emulated"

    def __init__(self, geometry: LaunchGeometry, memory_limit: int | None = None):
        super().__init__(geometry)
        self.memory_limit = memory_limit
        self.allocated = 0
        self.buffers: dict[str, np.ndarray] = {}

    def _alloc(self, key: str, host: np.ndarray | None = None, shape=None, dtype=np.float64) -> None:
        nbytes = host.nbytes if host is not None else int(np.prod(shape)) * np.dtype(dtype).itemsize
        if self.memory_limit is not None and self.allocated + nbytes > self.memory_limit:
            raise ResourceExhaustion(
                f"cannot allocate {nbytes} bytes for {key!r}: "
                f"{self.allocated} of {self.memory_limit} bytes in use"
            )
        self.buffers[key] = host.copy() if host is not None else np.zeros(shape, dtype=dtype)
        self.allocated += nbytes

    def acquire(self, table: FeatureTable, weights: np.ndarray) -> None:
        self._check_table(table, weights)
        geo = self.geometry
        try:
            self._alloc("features", table.features)
            self._alloc("features_t", table.features_t)
            self._alloc("labels", table.labels)
            self._alloc("weights", np.asarray(weights, dtype=np.float64))
            self._alloc("diff", shape=(geo.num_instances,))
            self._alloc("grad", shape=(geo.num_features + 1,))
        except ResourceExhaustion:
            self.release()
            raise
        self.acquired = True

    def activate(self) -> None:
        self._require_acquired()
        geo, b = self.geometry, self.buffers
        simt.activation_kernel(
            geo.act_grid, geo.act_block,
            b["weights"], b["features"], b["labels"], b["diff"],
            geo.num_instances, geo.num_features,
        )

    def update(self, scale: float) -> None:
        self._require_acquired()
        geo, b = self.geometry, self.buffers
        simt.weight_update_kernel(
            geo.upd_grid, geo.upd_block,
            b["weights"], b["features_t"], b["diff"], b["grad"], scale,
            geo.num_instances, geo.num_features, geo.num_chunks, geo.chunk_size,
        )

    def synchronize(self) -> None:
        self._require_acquired()

    def read_weights(self) -> np.ndarray:
        self._require_acquired()
        return self.buffers["weights"].copy()

    def read_bias(self) -> float:
        self._require_acquired()
        return float(self.buffers["weights"][-1])

    def read_diff(self) -> np.ndarray:
        self._require_acquired()
        return self.buffers["diff"].copy()

    def read_grad(self) -> np.ndarray:
        self._require_acquired()
        return self.buffers["grad"].copy()

    def release(self) -> None:
        self.buffers.clear()
        self.allocated = 0
        self.acquired = False


class CudaSession(DeviceSession):
    """Buffers and a dedicated stream on a CUDA device via numba.cuda."""
    name = "cuda"

    def __init__(self, geometry: LaunchGeometry, device_id: int | None = None):
        super().__init__(geometry)
        self.device_id = device_id
        self.stream = None
        self.d_features = self.d_features_t = self.d_labels = None
        self.d_weights = self.d_diff = self.d_grad = None

    def acquire(self, table: FeatureTable, weights: np.ndarray) -> None:
        self._check_table(table, weights)
        geo = self.geometry
        try:
            if self.device_id is not None:
                cuda.select_device(self.device_id)
            self.stream = cuda.stream()
            self.d_features = cuda.to_device(table.features, stream=self.stream)
            self.d_features_t = cuda.to_device(table.features_t, stream=self.stream)
            self.d_labels = cuda.to_device(table.labels, stream=self.stream)
            self.d_weights = cuda.to_device(np.asarray(weights, dtype=np.float64), stream=self.stream)
            self.d_diff = cuda.device_array(geo.num_instances, dtype=np.float64, stream=self.stream)
            self.d_grad = cuda.device_array(geo.num_features + 1, dtype=np.float64, stream=self.stream)
            self.stream.synchronize()
        except CudaAPIError as e:
            self.release()
            raise ResourceExhaustion(f"device allocation/transfer failed: {e}") from e
        self.acquired = True

    def activate(self) -> None:
        self._require_acquired()
        geo = self.geometry
        try:
            activation_kernel[geo.act_grid, geo.act_block, self.stream](
                self.d_weights, self.d_features, self.d_labels, self.d_diff,
                geo.num_instances, geo.num_features,
            )
        except CudaAPIError as e:
            raise LaunchFailure(f"activation kernel launch failed: {e}") from e

    def update(self, scale: float) -> None:
        self._require_acquired()
        geo = self.geometry
        try:
            weight_update_kernel[geo.upd_grid, geo.upd_block, self.stream](
                self.d_weights, self.d_features_t, self.d_diff, self.d_grad, float(scale),
                geo.num_instances, geo.num_features, geo.num_chunks, geo.chunk_size,
            )
        except CudaAPIError as e:
            raise LaunchFailure(f"weight-update kernel launch failed: {e}") from e

    def synchronize(self) -> None:
        self._require_acquired()
        try:
            self.stream.synchronize()
        except CudaAPIError as e:
            raise LaunchFailure(f"kernel execution failed: {e}") from e

    def _read(self, d_array) -> np.ndarray:
        self._require_acquired()
        host = d_array.copy_to_host(stream=self.stream)
        self.synchronize()
        return host

    def read_weights(self) -> np.ndarray:
        return self._read(self.d_weights)

    def read_bias(self) -> float:
        return float(self._read(self.d_weights[-1:])[0])

    def read_diff(self) -> np.ndarray:
        return self._read(self.d_diff)

    def read_grad(self) -> np.ndarray:
        return self._read(self.d_grad)

    def release(self) -> None:
        # device arrays are freed when their last reference goes away
        self.d_features = self.d_features_t = self.d_labels = None
        self.d_weights = self.d_diff = self.d_grad = None
        self.stream = None
        self.acquired = False


def cuda_usable() -> bool:
    # the simulator has no warp shuffles
    return not numba.config.ENABLE_CUDASIM and cuda.is_available()


def open_session(geometry: LaunchGeometry, device: str = "auto", **kwargs) -> DeviceSession:
    """device: 'auto' (CUDA when usable, else emulated), 'cuda' or 'emulated'."""
    if device == "auto":
        device = "cuda" if cuda_usable() else "emulated"
    if device == "cuda":
        if not cuda_usable():
            raise SimtError("no usable CUDA device")
        return CudaSession(geometry, **kwargs)
    if device == "emulated":
        return EmulatedSession(geometry, **kwargs)
    raise ValueError(f"unknown device {device!r} (expected auto, cuda or emulated)")
