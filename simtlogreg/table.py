"""
Feature table: loads a labeled ARFF file into flat training buffers.

- load_arff: header parsing + data block via pandas.read_csv
- table_from_arrays: wrap in-memory (X, y) arrays
- make_separable: synthetic, linearly separable toy dataset

Buffer layout (both flat float64 arrays):
- features:   row-major,    instance j / feature i at j*num_features + i
- features_t: column-major, instance j / feature i at i*num_instances + j
"""

from __future__ import annotations
import io
import os
import re
import shlex
from dataclasses import dataclass, field

import numpy as np
import pandas as pd


NUMERIC_TYPES = ("NUMERIC", "REAL", "INTEGER")


@dataclass(frozen=True)
class NumericAttr:
    name: str
    min: float
    max: float
    mean: float
    std: float = 0.0


@dataclass
class FeatureTable:
    num_instances: int
    num_features: int
    features: np.ndarray
    labels: np.ndarray
    attrs: list[NumericAttr]
    class_values: list[str] = field(default_factory=lambda: ["0", "1"])
    features_t: np.ndarray | None = None
    normalized: bool = False

    def matrix(self) -> np.ndarray:
        """(num_instances, num_features) view of the row-major buffer."""
        return self.features.reshape(self.num_instances, self.num_features)

    def matrix_t(self) -> np.ndarray:
        """(num_features, num_instances) view of the column-major buffer."""
        if self.features_t is None:
            raise ValueError("Transposed buffer has not been built.")
        return self.features_t.reshape(self.num_features, self.num_instances)

    def build_transposed(self) -> np.ndarray:
        """Fill features_t from the row-major buffer (no-op if it already exists)."""
        if self.features_t is None:
            self.features_t = np.ascontiguousarray(self.matrix().T).reshape(-1)
        return self.features_t


def compute_stats(X: np.ndarray, names: list[str]) -> list[NumericAttr]:
    """Per-column min/max/mean/std over the full instance set."""
    if X.shape[0] == 0:
        raise ValueError("Cannot compute feature statistics of an empty table.")
    return [
        NumericAttr(
            name=name,
            min=float(X[:, i].min()),
            max=float(X[:, i].max()),
            mean=float(X[:, i].mean()),
            std=float(X[:, i].std()),
        )
        for i, name in enumerate(names)
    ]


def table_from_arrays(
    X: np.ndarray,
    y: np.ndarray,
    names: list[str] | None = None,
    class_values: list[str] | None = None,
    transposed: bool = True,
) -> FeatureTable:
    """Build a FeatureTable (with statistics) from an (m, n) matrix and 0/1 labels."""
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y)
    if X.ndim != 2:
        raise ValueError(f"X must be 2-D, got shape {X.shape}")
    if y.shape != (X.shape[0],):
        raise ValueError(f"y must have shape ({X.shape[0]},), got {y.shape}")
    if not np.isin(y, (0, 1)).all():
        raise ValueError("Labels must be 0 or 1.")

    m, n = X.shape
    names = names or [f"x{i}" for i in range(n)]
    table = FeatureTable(
        num_instances=m,
        num_features=n,
        features=np.ascontiguousarray(X).reshape(-1).copy(),
        labels=y.astype(np.int64),
        attrs=compute_stats(X, names),
        class_values=list(class_values or ["0", "1"]),
    )
    if transposed:
        table.build_transposed()
    return table


def make_separable(
    num_instances: int = 100,
    num_features: int = 2,
    seed: int | None = 0,
    margin: float = 0.5,
    low: float = 0.0,
    high: float = 10.0,
) -> FeatureTable:
    """
    Linearly separable toy data: label = 1 when x0 > x1 (+ remaining features
    are noise). Points within `margin` of the boundary are re-drawn.
    """
    if num_features < 2:
        raise ValueError("make_separable needs at least 2 features.")
    rng = np.random.default_rng(seed)
    rows: list[np.ndarray] = []
    while len(rows) < num_instances:
        x = rng.uniform(low, high, size=num_features)
        if abs(x[0] - x[1]) >= margin:
            rows.append(x)
    X = np.vstack(rows)
    y = (X[:, 0] > X[:, 1]).astype(int)
    return table_from_arrays(X, y)


# ----- ARFF -----

_ATTR_RE = re.compile(r"^@attribute\s+(?P<rest>.+)$", re.IGNORECASE)


def _split_attribute(rest: str) -> tuple[str, str]:
    """Split '<name> <type>' where name may be quoted and type may be '{a, b}'."""
    rest = rest.strip()
    if rest[0] in "'\"":
        quote = rest[0]
        end = rest.index(quote, 1)
        return rest[1:end], rest[end + 1:].strip()
    parts = re.split(r"\s+", rest, maxsplit=1)
    if len(parts) != 2:
        raise ValueError(f"attribute declaration without a type: {rest!r}")
    return parts[0], parts[1].strip()


def _parse_nominal(kind: str) -> list[str]:
    body = kind[kind.index("{") + 1: kind.rindex("}")]
    lexer = shlex.shlex(body, posix=True)
    lexer.whitespace = ","
    lexer.whitespace_split = True
    return [v.strip() for v in lexer if v.strip()]


def load_arff(path: str, transposed: bool = True) -> FeatureTable:
    """
    Read an ARFF file with numeric attributes and exactly one nominal
    (binary) class attribute. Class values map to 0/1 in declaration order.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"ARFF file not found: {path}")

    with open(path, encoding="utf-8") as f:
        lines = f.read().splitlines()

    names: list[str] = []
    class_idx: int | None = None
    class_values: list[str] = []
    data_start: int | None = None

    for lineno, raw in enumerate(lines):
        line = raw.strip()
        if not line or line.startswith("%"):
            continue
        upper = line.upper()
        if upper.startswith("@RELATION"):
            continue
        if upper.startswith("@DATA"):
            data_start = lineno + 1
            break
        m = _ATTR_RE.match(line)
        if m is None:
            raise ValueError(f"{path}:{lineno + 1}: unexpected header line: {line!r}")
        name, kind = _split_attribute(m.group("rest"))
        if kind.startswith("{"):
            if class_idx is not None:
                raise ValueError(f"{path}: more than one nominal attribute ({names[class_idx]!r}, {name!r})")
            class_values = _parse_nominal(kind)
            if len(class_values) != 2:
                raise ValueError(f"{path}: class attribute {name!r} must have exactly 2 values, got {class_values}")
            class_idx = len(names)
        elif kind.upper() not in NUMERIC_TYPES:
            raise ValueError(f"{path}: unsupported attribute type {kind!r} for {name!r}")
        names.append(name)

    if data_start is None:
        raise ValueError(f"{path}: missing @DATA section")
    if class_idx is None:
        raise ValueError(f"{path}: no nominal class attribute declared")

    block = "\n".join(lines[data_start:])
    try:
        df = pd.read_csv(
            io.StringIO(block),
            header=None,
            comment="%",
            skipinitialspace=True,
            skip_blank_lines=True,
            na_values=["?"],
            keep_default_na=False,
            quotechar="'",
            dtype={class_idx: str},
        )
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"{path}: empty data block") from e
    except pd.errors.ParserError as e:
        raise ValueError(f"{path}: malformed data block: {e}") from e

    if df.shape[1] != len(names):
        raise ValueError(f"{path}: data rows have {df.shape[1]} fields, {len(names)} attributes declared")
    df.columns = names

    if df.isna().any().any():
        raise ValueError(f"{path}: missing values or short rows in data block")

    raw_labels = df.pop(names[class_idx]).str.strip().str.strip('"')
    unknown = sorted(set(raw_labels) - set(class_values))
    if unknown:
        raise ValueError(f"{path}: class values {unknown} not declared in {class_values}")
    y = raw_labels.map({v: i for i, v in enumerate(class_values)}).to_numpy()

    try:
        X = df.to_numpy(dtype=np.float64)
    except ValueError as e:
        raise ValueError(f"{path}: non-numeric value in a numeric attribute: {e}") from e

    feat_names = [n for i, n in enumerate(names) if i != class_idx]
    return table_from_arrays(X, y, names=feat_names, class_values=class_values, transposed=transposed)
