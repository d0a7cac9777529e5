"""Exceptions raised by the heatmap loss layer.

All errors reflect caller misuse rather than transient conditions; they are
raised before any loss or gradient is computed and are never retried.
"""

from __future__ import annotations


class HeatmapLossError(Exception):
    """Base class for heatmap loss errors."""


class ShapeMismatch(HeatmapLossError, ValueError):
    """Prediction and target disagree on their shapes."""


class UninitializedBuffer(HeatmapLossError, RuntimeError):
    """``backward`` was called before the difference buffer was shaped."""


class EmptyInput(HeatmapLossError, ValueError):
    """The input has no elements, so the loss cannot be normalized."""
