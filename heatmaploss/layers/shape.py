"""Shape helpers for 4-D heatmap tensors ``[N, C, H, W]``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import torch

from .errors import ShapeMismatch


@dataclass(frozen=True)
class HeatmapShape:
    """Shape of a heatmap tensor indexed by (image, channel, row, column)."""

    num_images: int
    num_channels: int
    height: int
    width: int

    @classmethod
    def of(cls, tensor: torch.Tensor, name: str = "tensor") -> "HeatmapShape":
        """Describe ``tensor``, which must be 4-D.

        Raises:
            ShapeMismatch: If ``tensor`` does not have exactly four dimensions.
        """

        if tensor.dim() != 4:
            raise ShapeMismatch(
                f"{name} must be 4-D [N, C, H, W], got shape {tuple(tensor.shape)}"
            )
        n, c, h, w = (int(s) for s in tensor.shape)
        return cls(num_images=n, num_channels=c, height=h, width=w)

    @property
    def channel_size(self) -> int:
        return self.height * self.width

    @property
    def image_size(self) -> int:
        return self.num_channels * self.channel_size

    @property
    def count(self) -> int:
        return self.num_images * self.image_size

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.num_images, self.num_channels, self.height, self.width)


def as_heatmap_tensor(value: Any) -> torch.Tensor:
    """Convert an array-like (tensor, numpy array, nested list) to a tensor.

    Anything that is not already a tensor goes through ``torch.as_tensor``.
    Integer and boolean data is promoted to ``float32`` so the loss is never
    computed in integer arithmetic.
    """

    t = value if isinstance(value, torch.Tensor) else torch.as_tensor(value)
    if not t.is_floating_point():
        t = t.to(torch.float32)
    return t


def validate_shapes(prediction: torch.Tensor, target: torch.Tensor) -> HeatmapShape:
    """Check that prediction and target can be compared elementwise.

    Channels, height, and width must agree. The number of images must agree
    as well: a target with fewer images than the prediction cannot cover it.

    Args:
        prediction: Network output ``[N, C, H, W]``.
        target: Ground-truth heatmaps ``[N, C, H, W]``.

    Returns:
        The validated shape of ``prediction``.

    Raises:
        ShapeMismatch: On any disagreement.
    """

    pred_shape = HeatmapShape.of(prediction, "prediction")
    tgt_shape = HeatmapShape.of(target, "target")
    for field in ("num_channels", "height", "width", "num_images"):
        p = getattr(pred_shape, field)
        t = getattr(tgt_shape, field)
        if p != t:
            raise ShapeMismatch(
                f"{field} differs between prediction ({p}) and target ({t}); "
                f"shapes {pred_shape.as_tuple()} vs {tgt_shape.as_tuple()}"
            )
    return pred_shape
