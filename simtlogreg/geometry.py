"""
Launch geometry for the two training kernels.

Activation: one block per instance, one lane per feature. Blocks form a
2-D grid once num_instances exceeds MAX_GROUP_WIDTH along x; the linear
instance id is block_x + block_y * grid_x and out-of-range blocks exit.

Weight update: one block per feature (plus one for the bias when it is
trained), one lane per contiguous chunk of instances. The last chunk
absorbs the remainder.

`instance_id` and `chunk_bounds` are plain scalar functions so the same
index math is compiled into the CUDA kernels and replayed on the host by
`dry_run`.
"""

from __future__ import annotations
from dataclasses import dataclass

import numpy as np

from .errors import DataShapeViolation


WARP_SIZE = 32
MAX_GROUP_WIDTH = 1024


def round_up_to_warp(n: int) -> int:
    return max(WARP_SIZE, -(-n // WARP_SIZE) * WARP_SIZE)


def instance_id(block_x, block_y, grid_x):
    return block_x + block_y * grid_x


def chunk_bounds(lane, num_chunks, chunk_size, total):
    start = lane * chunk_size
    end = start + chunk_size
    if lane == num_chunks - 1:
        end = total
    return start, end


@dataclass(frozen=True)
class LaunchGeometry:
    num_instances: int
    num_features: int
    # activation kernel
    act_grid: tuple[int, int]
    act_block: int
    # weight-update kernel
    upd_grid: int
    upd_block: int
    num_chunks: int
    chunk_size: int
    update_bias: bool

    @classmethod
    def plan(cls, num_instances: int, num_features: int, update_bias: bool = True) -> "LaunchGeometry":
        """Size both launches once per training run; rejects shapes a block cannot hold."""
        if num_instances < 1 or num_features < 1:
            raise DataShapeViolation(
                f"need at least one instance and one feature, got {num_instances}x{num_features}"
            )
        if num_features > MAX_GROUP_WIDTH:
            raise DataShapeViolation(
                f"{num_features} features exceed the maximum group width of {MAX_GROUP_WIDTH}"
            )

        grid_x = min(num_instances, MAX_GROUP_WIDTH)
        grid_y = -(-num_instances // grid_x)

        num_chunks = min(num_instances, MAX_GROUP_WIDTH)
        return cls(
            num_instances=num_instances,
            num_features=num_features,
            act_grid=(grid_x, grid_y),
            act_block=round_up_to_warp(num_features),
            upd_grid=num_features + 1 if update_bias else num_features,
            upd_block=round_up_to_warp(num_chunks),
            num_chunks=num_chunks,
            chunk_size=num_instances // num_chunks,
            update_bias=update_bias,
        )

    @property
    def is_2d(self) -> bool:
        return self.act_grid[1] > 1


def dry_run(geo: LaunchGeometry) -> tuple[np.ndarray, np.ndarray]:
    """
    Replay both launches without doing arithmetic, counting how often each
    element is visited by a working lane.

    Returns:
        act_visits: (num_instances, num_features) counts from the activation grid
        upd_visits: (upd_grid, num_instances) counts from the update grid
    """
    n, f = geo.num_instances, geo.num_features
    act_visits = np.zeros((n, f), dtype=np.int64)
    grid_x, grid_y = geo.act_grid
    lanes = np.arange(geo.act_block)
    working_lanes = lanes[lanes < f]
    for block_y in range(grid_y):
        ids = instance_id(np.arange(grid_x), block_y, grid_x)
        ids = ids[ids < n]
        np.add.at(act_visits, np.ix_(ids, working_lanes), 1)

    # every update block walks the same chunk layout
    lane_cover = np.zeros(n, dtype=np.int64)
    for lane in range(geo.upd_block):
        if lane < geo.num_chunks:
            start, end = chunk_bounds(lane, geo.num_chunks, geo.chunk_size, n)
            lane_cover[start:end] += 1
    upd_visits = np.zeros((geo.upd_grid, n), dtype=np.int64)
    for block in range(geo.upd_grid):
        upd_visits[block] += lane_cover

    return act_visits, upd_visits
