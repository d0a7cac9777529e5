"""Global constants used across heatmaploss.

Attributes:
    GRADIENT_SCALE (float):
        Multiplier applied to ``prediction - target`` in the backward pass.
        The legacy layer omits both the factor of 2 from the derivative of the
        squared term and the normalization used by the forward pass, so the
        default is ``1.0``.
    DEFAULT_VISUALIZE_CHANNEL (int):
        Heatmap channel rendered by the diagnostic visualizer by default.
    VISUALIZATION_SIZE (int):
        Side length in pixels of the square diagnostic canvas.
"""

GRADIENT_SCALE: float = 1.0

DEFAULT_VISUALIZE_CHANNEL: int = 0

VISUALIZATION_SIZE: int = 256
