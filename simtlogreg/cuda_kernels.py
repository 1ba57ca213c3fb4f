"""
CUDA kernels (numba.cuda) for the activation and weight-update steps.

Both kernels reduce per-lane partial sums in two levels: a shuffle-down
butterfly inside each warp, then warp 0 re-reduces the per-warp partials
staged in a 32-slot shared buffer. Launch with block widths that are
multiples of WARP_SIZE (see geometry.LaunchGeometry).
"""

from __future__ import annotations
import math

from numba import cuda, float64

from .geometry import WARP_SIZE, chunk_bounds, instance_id


FULL_MASK = 0xFFFFFFFF

_instance_id = cuda.jit(device=True)(instance_id)
_chunk_bounds = cuda.jit(device=True)(chunk_bounds)


@cuda.jit(device=True)
def warp_reduce(val):
    offset = WARP_SIZE // 2
    while offset > 0:
        val += cuda.shfl_down_sync(FULL_MASK, val, offset)
        offset //= 2
    return val


@cuda.jit(device=True)
def block_reduce(val, shared):
    """Sum `val` over the block; the result is valid in thread 0 only."""
    lane = cuda.threadIdx.x % WARP_SIZE
    warp = cuda.threadIdx.x // WARP_SIZE

    val = warp_reduce(val)
    if lane == 0:
        shared[warp] = val
    cuda.syncthreads()

    val = 0.0
    if cuda.threadIdx.x < cuda.blockDim.x // WARP_SIZE:
        val = shared[lane]
    if warp == 0:
        val = warp_reduce(val)
    cuda.syncthreads()
    return val


@cuda.jit
def activation_kernel(weights, features, labels, diff, num_instances, num_features):
    shared = cuda.shared.array(WARP_SIZE, dtype=float64)

    j = _instance_id(cuda.blockIdx.x, cuda.blockIdx.y, cuda.gridDim.x)
    if j >= num_instances:
        return  # whole block leaves together

    i = cuda.threadIdx.x
    partial = 0.0
    if i < num_features:
        partial = weights[i] * features[j * num_features + i]

    total = block_reduce(partial, shared)
    if i == 0:
        score = total + weights[num_features]
        diff[j] = 1.0 / (1.0 + math.exp(-score)) - labels[j]


@cuda.jit
def weight_update_kernel(weights, features_t, diff, grad, scale,
                         num_instances, num_features, num_chunks, chunk_size):
    shared = cuda.shared.array(WARP_SIZE, dtype=float64)

    i = cuda.blockIdx.x
    lane = cuda.threadIdx.x
    partial = 0.0
    if lane < num_chunks:
        start, end = _chunk_bounds(lane, num_chunks, chunk_size, num_instances)
        if i < num_features:
            row = i * num_instances
            for j in range(start, end):
                partial += diff[j] * features_t[row + j]
        else:
            # bias block
            for j in range(start, end):
                partial += diff[j]

    total = block_reduce(partial, shared)
    if lane == 0:
        grad[i] = total
        weights[i] -= scale * total
