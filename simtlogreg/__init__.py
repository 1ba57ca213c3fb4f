"""Logistic regression by batch gradient descent: scalar and SIMT backends."""

from .backends import GradientBackend, ParallelBackend, ScalarBackend, make_backend
from .errors import DataShapeViolation, LaunchFailure, ResourceExhaustion, SimtError
from .geometry import LaunchGeometry
from .model_scratch import InitStrategy, ModelState
from .normalize import normalize
from .table import FeatureTable, NumericAttr, load_arff, make_separable, table_from_arrays
