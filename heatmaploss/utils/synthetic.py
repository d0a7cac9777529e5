"""Synthetic Gaussian heatmaps for inspection runs and tests.

Heatmap generation:
- Uses an isotropic Gaussian with standard deviation ``sigma`` (in heatmap
  pixels), centered at a ``(x, y)`` coordinate per image and channel.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import torch


def gaussian_2d(width: int, height: int, cx: float, cy: float, sigma: float) -> torch.Tensor:
    """Create a 2D Gaussian heatmap.

    Args:
        width: Heatmap width (W).
        height: Heatmap height (H).
        cx: Center x in heatmap pixel coordinates.
        cy: Center y in heatmap pixel coordinates.
        sigma: Standard deviation of the Gaussian (in pixels).

    Returns:
        Tensor of shape ``[H, W]``.
    """

    xs = torch.arange(width, dtype=torch.float32)
    ys = torch.arange(height, dtype=torch.float32)
    yy, xx = torch.meshgrid(ys, xs, indexing="ij")
    return torch.exp(-((xx - cx) ** 2 + (yy - cy) ** 2) / (2.0 * sigma * sigma))


def make_heatmaps(
    centers: Sequence[Sequence[Tuple[float, float]]],
    height: int,
    width: int,
    sigma: float = 2.0,
) -> torch.Tensor:
    """Stack Gaussian heatmaps into a ``[N, C, H, W]`` tensor.

    Args:
        centers: ``centers[n][c]`` is the ``(x, y)`` peak of image ``n``,
            channel ``c``. Every image must list the same number of channels.
        height: Heatmap height.
        width: Heatmap width.
        sigma: Gaussian sigma in heatmap pixels.
    """

    images = []
    for per_image in centers:
        images.append(
            torch.stack([gaussian_2d(width, height, cx, cy, sigma) for cx, cy in per_image], dim=0)
        )
    return torch.stack(images, dim=0)


def synthetic_pair(
    num_images: int,
    num_channels: int,
    height: int,
    width: int,
    sigma: float = 2.0,
    jitter: float = 3.0,
    generator: Optional[torch.Generator] = None,
) -> Tuple[torch.Tensor, torch.Tensor]:
    """Build a ``(prediction, target)`` pair of Gaussian heatmaps.

    Target peaks are drawn uniformly inside the heatmap; prediction peaks are
    the target peaks shifted by up to ``jitter`` pixels in each direction.
    """

    u = torch.rand(num_images, num_channels, 2, generator=generator)
    tgt = u * torch.tensor([width - 1, height - 1], dtype=torch.float32)
    shift = (torch.rand(num_images, num_channels, 2, generator=generator) * 2.0 - 1.0) * jitter
    pred = tgt + shift

    def _centers(xy: torch.Tensor):
        return [[(float(x), float(y)) for x, y in per_image] for per_image in xy]

    target = make_heatmaps(_centers(tgt), height, width, sigma)
    prediction = make_heatmaps(_centers(pred), height, width, sigma)
    return prediction, target
