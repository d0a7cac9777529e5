"""Squared-error loss layer for dense multi-channel heatmaps.

The layer follows an explicit forward/backward protocol instead of relying on
autograd:

- ``reshape`` validates prediction/target shapes and sizes the difference
  buffer.
- ``forward`` accumulates ``(prediction - target)^2`` over every element and
  divides by ``N * C * H * W``.
- ``backward`` writes ``prediction - target`` into the difference buffer and
  hands copies of it back as the gradients.

The backward pass keeps the legacy convention: no factor of 2 and no
normalization (see ``heatmaploss.constants.GRADIENT_SCALE``). The target
gradient is the same difference, not negated, and is only produced when the
target is declared trainable.

Example:
    >>> layer = HeatmapLoss()
    >>> loss = layer.forward(pred, target)
    >>> grad_pred, _ = layer.backward(pred, target)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields, replace
from typing import TYPE_CHECKING, Any, Literal, Mapping, Optional, Tuple

import torch

from heatmaploss.constants import (
    DEFAULT_VISUALIZE_CHANNEL,
    GRADIENT_SCALE,
    VISUALIZATION_SIZE,
)

from .errors import EmptyInput, ShapeMismatch, UninitializedBuffer
from .shape import HeatmapShape, as_heatmap_tensor, validate_shapes

if TYPE_CHECKING:
    from heatmaploss.visualization import DiagnosticVisualizer

logger = logging.getLogger(__name__)

Indexing = Literal["row_major", "reference"]


@dataclass
class HeatmapLossConfig:
    """Configuration bound to a ``HeatmapLoss`` at construction.

    Attributes:
        visualize: Hand per-image diagnostic frames to the visualizer after
            each forward pass.
        visualize_channel: Heatmap channel shown by the visualizer.
        indexing: ``"row_major"`` flattens ``row * width + col``.
            ``"reference"`` reproduces the legacy ``row * height + col``
            formula, which only matches row-major order for square heatmaps.
        gradient_scale: Multiplier applied to ``prediction - target`` in the
            backward pass.
        target_is_trainable: Also return a gradient for the target.
        visualization_size: Side length of the diagnostic canvas in pixels.
    """

    visualize: bool = False
    visualize_channel: int = DEFAULT_VISUALIZE_CHANNEL
    indexing: Indexing = "row_major"
    gradient_scale: float = GRADIENT_SCALE
    target_is_trainable: bool = False
    visualization_size: int = VISUALIZATION_SIZE

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.indexing not in ("row_major", "reference"):
            raise ValueError("indexing must be one of: 'row_major', 'reference'")
        if self.visualize_channel < 0:
            raise ValueError("visualize_channel must be non-negative")
        if self.visualization_size <= 0:
            raise ValueError("visualization_size must be positive")

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "HeatmapLossConfig":
        """Build a config from a mapping, ignoring unknown keys."""

        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in dict(values).items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DifferenceBuffer:
    """Scratch tensor holding ``prediction - target``.

    Allocated on reshape and overwritten by every backward pass. The buffer
    belongs to exactly one layer and is never handed out directly.
    """

    def __init__(self) -> None:
        self.data: Optional[torch.Tensor] = None
        self.shape: Optional[HeatmapShape] = None

    @property
    def initialized(self) -> bool:
        return self.data is not None

    def reshape(
        self,
        shape: HeatmapShape,
        dtype: torch.dtype = torch.float32,
        device: torch.device | str | None = None,
    ) -> None:
        self.data = torch.empty(shape.as_tuple(), dtype=dtype, device=device)
        self.shape = shape

    def compute(self, prediction: torch.Tensor, target: torch.Tensor) -> torch.Tensor:
        """Overwrite the buffer with ``prediction - target`` and return it.

        Raises:
            UninitializedBuffer: If the buffer was never shaped, or was shaped
                for a different tensor shape.
        """

        if self.data is None or self.shape is None:
            raise UninitializedBuffer(
                "difference buffer is not allocated; reshape must precede backward"
            )
        shape = HeatmapShape.of(prediction, "prediction")
        if shape != self.shape:
            raise UninitializedBuffer(
                f"difference buffer is shaped for {self.shape.as_tuple()} but "
                f"prediction is {shape.as_tuple()}; reshape must precede backward"
            )
        dtype = torch.promote_types(prediction.dtype, target.dtype)
        if self.data.dtype != dtype or self.data.device != prediction.device:
            self.reshape(shape, dtype=dtype, device=prediction.device)
        torch.sub(
            prediction.detach().to(dtype),
            target.detach().to(dtype=dtype, device=prediction.device),
            out=self.data,
        )
        return self.data


def _reference_flat_indices(shape: HeatmapShape, device: torch.device) -> torch.Tensor:
    """Flat indices produced by the legacy ``row * height + col`` formula."""

    n, c, h, w = shape.as_tuple()
    img = torch.arange(n, device=device).view(n, 1, 1, 1) * shape.image_size
    ch = torch.arange(c, device=device).view(1, c, 1, 1) * shape.channel_size
    row = torch.arange(h, device=device).view(1, 1, h, 1) * h
    col = torch.arange(w, device=device).view(1, 1, 1, w)
    return (img + ch + row + col).reshape(-1)


class HeatmapLoss:
    """Heatmap squared-error loss with an explicit forward/backward protocol.

    A single instance must not be called from several threads at once: the
    difference buffer is overwritten in place. Separate instances share no
    state: the layer keeps its own copy of ``cfg``.
    """

    def __init__(
        self,
        cfg: Optional[HeatmapLossConfig] = None,
        visualizer: Optional["DiagnosticVisualizer"] = None,
    ) -> None:
        self.cfg = replace(cfg) if cfg is not None else HeatmapLossConfig()
        self.visualizer = visualizer
        self.diff = DifferenceBuffer()
        self.shape: Optional[HeatmapShape] = None
        self.last_raw_loss: Optional[float] = None

    def configure(
        self, visualize: bool = False, visualize_channel: int = DEFAULT_VISUALIZE_CHANNEL
    ) -> None:
        """Enable or disable the diagnostic visualization.

        Rebinds ``self.cfg`` to an updated copy; the config the layer was built
        from is left untouched.
        """

        if visualize_channel < 0:
            raise ValueError("visualize_channel must be non-negative")
        self.cfg = replace(
            self.cfg, visualize=bool(visualize), visualize_channel=int(visualize_channel)
        )

    def reshape(self, prediction: Any, target: Any) -> HeatmapShape:
        """Validate shapes and size the difference buffer after ``prediction``.

        Raises:
            ShapeMismatch: If prediction and target cannot be compared, or if
                the reference indexing would address past the end of the
                tensor.
        """

        prediction = as_heatmap_tensor(prediction)
        target = as_heatmap_tensor(target)
        shape = validate_shapes(prediction, target)
        if self.cfg.indexing == "reference" and shape.height > shape.width:
            raise ShapeMismatch(
                "reference indexing requires height <= width, got "
                f"height={shape.height} width={shape.width}"
            )
        if self.diff.shape != shape:
            dtype = torch.promote_types(prediction.dtype, target.dtype)
            self.diff.reshape(shape, dtype=dtype, device=prediction.device)
        self.shape = shape
        logger.debug("reshaped difference buffer to %s", shape.as_tuple())
        return shape

    def _aligned(
        self, prediction: torch.Tensor, target: torch.Tensor, shape: HeatmapShape
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """Return prediction/target values in the order the loss visits them."""

        if self.cfg.indexing == "row_major":
            return prediction, target
        idx = _reference_flat_indices(shape, prediction.device)
        p = prediction.reshape(-1).index_select(0, idx).view(shape.as_tuple())
        t = target.reshape(-1).index_select(0, idx).view(shape.as_tuple())
        return p, t

    def forward(
        self, prediction: Any, target: Any, display: Optional[Any] = None
    ) -> torch.Tensor:
        """Compute the normalized squared-error loss.

        Args:
            prediction: Network output ``[N, C, H, W]``.
            target: Ground-truth heatmaps ``[N, C, H, W]``.
            display: Optional auxiliary tensor ``[N, C', H', W']`` shown by
                the visualizer next to the heatmaps.

        Returns:
            0-d tensor holding ``sum((p - t)^2) / (N * C * H * W)`` in the
            promoted floating dtype of prediction and target.

        Raises:
            ShapeMismatch: If the shapes disagree.
            EmptyInput: If the tensors have no elements.
        """

        prediction = as_heatmap_tensor(prediction).detach()
        target = as_heatmap_tensor(target).detach()
        shape = validate_shapes(prediction, target)
        if shape != self.shape:
            self.reshape(prediction, target)
        logger.debug(
            "prediction size: %d %d %d", shape.height, shape.width, shape.num_channels
        )
        if shape.count == 0:
            raise EmptyInput(
                f"cannot normalize loss over empty input of shape {shape.as_tuple()}"
            )

        dtype = torch.promote_types(prediction.dtype, target.dtype)
        prediction = prediction.to(dtype)
        target = target.to(dtype=dtype, device=prediction.device)
        p, t = self._aligned(prediction, target, shape)
        squared = (p - t) ** 2
        raw = float(squared.sum(dtype=torch.float64))
        self.last_raw_loss = raw
        loss = raw / shape.count
        logger.debug("total loss: %s", raw)
        logger.debug("total normalized loss: %s", loss)

        if self.cfg.visualize:
            self._visualize(p, t, squared, shape, display)

        return torch.tensor(loss, dtype=dtype, device=prediction.device)

    __call__ = forward

    def backward(
        self, prediction: Any, target: Any
    ) -> Tuple[torch.Tensor, Optional[torch.Tensor]]:
        """Compute gradients with respect to prediction (and target).

        Returns:
            ``(grad_prediction, grad_target)`` where ``grad_prediction`` is
            ``gradient_scale * (prediction - target)`` and ``grad_target`` is an
            identical copy when ``target_is_trainable`` is set, else ``None``.

        Raises:
            UninitializedBuffer: If no reshape preceded this call, or the shape
                changed since.
            ShapeMismatch: If the shapes disagree.
        """

        if not self.diff.initialized:
            raise UninitializedBuffer(
                "difference buffer is not allocated; reshape must precede backward"
            )
        prediction = as_heatmap_tensor(prediction)
        target = as_heatmap_tensor(target)
        validate_shapes(prediction, target)
        diff = self.diff.compute(prediction, target)

        scale = float(self.cfg.gradient_scale)
        grad_prediction = diff.clone() if scale == 1.0 else diff * scale
        grad_target = grad_prediction.clone() if self.cfg.target_is_trainable else None
        return grad_prediction, grad_target

    def _visualize(
        self,
        prediction: torch.Tensor,
        target: torch.Tensor,
        squared: torch.Tensor,
        shape: HeatmapShape,
        display: Optional[Any],
    ) -> None:
        channel = self.cfg.visualize_channel
        if channel >= shape.num_channels:
            logger.warning(
                "visualize_channel %d out of range for %d channels; skipping visualization",
                channel,
                shape.num_channels,
            )
            return
        from heatmaploss.visualization import DiagnosticFrame, DiagnosticVisualizer, WindowSink

        if self.visualizer is None:
            self.visualizer = DiagnosticVisualizer(
                size=self.cfg.visualization_size,
                sinks=[WindowSink()],
            )
        disp = as_heatmap_tensor(display).detach() if display is not None else None
        per_image = squared.sum(dim=(1, 2, 3), dtype=torch.float64)
        for i in range(shape.num_images):
            frame = DiagnosticFrame(
                image_index=i,
                channel=channel,
                prediction=prediction[i, channel],
                target=target[i, channel],
                squared_diff=squared[i, channel],
                raw_loss=float(per_image[i]),
                display=disp[i] if disp is not None and i < disp.shape[0] else None,
            )
            self.visualizer.observe(frame)
