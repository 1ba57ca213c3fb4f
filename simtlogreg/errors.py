"""
Error taxonomy for the parallel training engine.

- ResourceExhaustion: device allocation or host->device transfer failed
- LaunchFailure:      a kernel launch was rejected (bad geometry / arguments)
- DataShapeViolation: the data does not fit one execution group (> 1024 lanes)

Training halts on the first one of these; nothing is retried.
"""

from __future__ import annotations


class SimtError(RuntimeError):
    """Base class for device-side failures."""


class ResourceExhaustion(SimtError):
    pass


class LaunchFailure(SimtError):
    pass


class DataShapeViolation(SimtError, ValueError):
    """Raised before launch when a reduction would need more than 1024 lanes."""
