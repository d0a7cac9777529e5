"""Top-level package for heatmaploss.

This package provides a squared-error loss layer for dense multi-channel
heatmaps, its autograd integration, an optional diagnostic visualizer, and an
inspection script that runs the layer on saved or synthetic tensors.

Shared defaults are exposed from ``heatmaploss.constants``.
"""

from .constants import DEFAULT_VISUALIZE_CHANNEL, GRADIENT_SCALE, VISUALIZATION_SIZE

__all__ = [
    "DEFAULT_VISUALIZE_CHANNEL",
    "GRADIENT_SCALE",
    "VISUALIZATION_SIZE",
]
