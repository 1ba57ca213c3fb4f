"""
Range normalization applied once, in place, before training:

    x' = (x - mean) / (max - min)

Constant features (max == min) keep their original values. When the table
carries a transposed buffer, the same value is written to both layouts in
one pass.
"""

from __future__ import annotations
from .table import FeatureTable


def normalize(table: FeatureTable, force: bool = False) -> FeatureTable:
    """
    Normalize `table` in place using its load-time statistics.

    Statistics are not recomputed, so a second pass uses stale values and
    corrupts the data; it is refused unless `force=True`.
    """
    if table.normalized and not force:
        raise ValueError("Feature table is already normalized; pass force=True to apply again.")

    X = table.matrix()
    Xt = table.matrix_t() if table.features_t is not None else None

    for i, attr in enumerate(table.attrs):
        value_range = attr.max - attr.min
        if value_range == 0.0:
            continue
        column = (X[:, i] - attr.mean) / value_range
        X[:, i] = column
        if Xt is not None:
            Xt[i, :] = column

    table.normalized = True
    return table
