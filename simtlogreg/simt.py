"""
SIMT execution model on the host, vectorized with numpy.

Lanes live on the last array axis, blocks on the leading axes. A warp is a
contiguous group of WARP_SIZE lanes; `shfl_down` moves register values
between lanes of the same warp exactly as the hardware intrinsic does
(lanes whose source is outside the warp keep their own value). Barriers
are implicit between vectorized statements.

The kernels take the same flat buffers and launch configuration as their
CUDA counterparts in cuda_kernels.py.
"""

from __future__ import annotations
import numpy as np

from .errors import DataShapeViolation, LaunchFailure
from .geometry import MAX_GROUP_WIDTH, WARP_SIZE, chunk_bounds, instance_id


def shfl_down(values: np.ndarray, offset: int) -> np.ndarray:
    """values: (..., WARP_SIZE). Lane l receives lane l + offset when it exists."""
    out = values.copy()
    out[..., :WARP_SIZE - offset] = values[..., offset:]
    return out


def warp_reduce(values: np.ndarray) -> np.ndarray:
    """Butterfly sum over the last axis (one warp); lane 0 ends with the total."""
    offset = WARP_SIZE // 2
    while offset > 0:
        values = values + shfl_down(values, offset)
        offset //= 2
    return values


def block_reduce(values: np.ndarray) -> np.ndarray:
    """
    Two-level block sum over the last axis.

    1. each warp reduces its 32 lanes with shuffles
    2. lane 0 of warp w writes shared[w]; barrier
    3. warp 0 reduces the (at most 32) shared slots

    values: (..., width) with width <= MAX_GROUP_WIDTH. Returns (...).
    """
    width = values.shape[-1]
    if width > MAX_GROUP_WIDTH:
        raise DataShapeViolation(f"cannot reduce {width} lanes in one group (max {MAX_GROUP_WIDTH})")
    padded_width = -(-width // WARP_SIZE) * WARP_SIZE
    if padded_width != width:
        pad = [(0, 0)] * (values.ndim - 1) + [(0, padded_width - width)]
        values = np.pad(values, pad)

    num_warps = padded_width // WARP_SIZE
    warps = values.reshape(values.shape[:-1] + (num_warps, WARP_SIZE))
    partial = warp_reduce(warps)[..., 0]

    shared = np.zeros(values.shape[:-1] + (WARP_SIZE,), dtype=values.dtype)
    shared[..., :num_warps] = partial
    return warp_reduce(shared)[..., 0]


def reduce_sum(values) -> float:
    """Sum of at most MAX_GROUP_WIDTH values through one emulated block."""
    values = np.asarray(values, dtype=np.float64)
    if values.ndim != 1 or values.size == 0:
        raise ValueError("reduce_sum expects a non-empty 1-D array")
    return float(block_reduce(values))


def check_launch(grid, block: int) -> None:
    dims = grid if isinstance(grid, tuple) else (grid,)
    if any(d < 1 for d in dims):
        raise LaunchFailure(f"invalid grid dimensions {dims}")
    if not 0 < block <= MAX_GROUP_WIDTH:
        raise LaunchFailure(f"block width {block} outside 1..{MAX_GROUP_WIDTH}")
    if block % WARP_SIZE:
        raise LaunchFailure(f"block width {block} is not a multiple of the warp size")


def activation_kernel(
    grid: tuple[int, int],
    block: int,
    weights: np.ndarray,
    features: np.ndarray,
    labels: np.ndarray,
    diff: np.ndarray,
    num_instances: int,
    num_features: int,
) -> None:
    """diff[j] = sigmoid(bias + sum_i w_i x_{j,i}) - label[j], one block per instance."""
    check_launch(grid, block)
    grid_x, grid_y = grid
    X = features.reshape(num_instances, num_features)
    width = min(block, num_features)

    for block_y in range(grid_y):
        ids = instance_id(np.arange(grid_x), block_y, grid_x)
        ids = ids[ids < num_instances]
        if ids.size == 0:
            continue
        lanes = np.zeros((ids.size, block), dtype=np.float64)
        lanes[:, :width] = weights[:width] * X[ids, :width]
        score = block_reduce(lanes) + weights[num_features]
        diff[ids] = 1.0 / (1.0 + np.exp(-score)) - labels[ids]


def weight_update_kernel(
    grid: int,
    block: int,
    weights: np.ndarray,
    features_t: np.ndarray,
    diff: np.ndarray,
    grad: np.ndarray,
    scale: float,
    num_instances: int,
    num_features: int,
    num_chunks: int,
    chunk_size: int,
) -> None:
    """
    grad[i] = sum_j diff[j] * x_{j,i};  weights[i] -= scale * grad[i].

    One block per weight; block `num_features` (when launched) is the bias,
    whose feature value is 1. Lanes sum contiguous chunks of the transposed
    buffer row.
    """
    check_launch(grid, block)
    Xt = features_t.reshape(num_features, num_instances)
    rows = Xt[:min(grid, num_features)] * diff
    if grid > num_features:
        rows = np.vstack([rows, diff[np.newaxis, :]])

    lanes = np.zeros((grid, block), dtype=np.float64)
    for lane in range(min(block, num_chunks)):
        start, end = chunk_bounds(lane, num_chunks, chunk_size, num_instances)
        lanes[:, lane] = rows[:, start:end].sum(axis=1)

    totals = block_reduce(lanes)
    grad[:grid] = totals
    weights[:grid] -= scale * totals
