"""Logging and image utilities for heatmaploss.

Provides a lightweight scalar logger (CSV + optional TensorBoard) and helpers
that turn heatmaps and display tensors into PIL images for the diagnostic
visualizer. Each logger instance writes to a run-specific subdirectory to
avoid collisions across runs.
"""

from __future__ import annotations

import csv
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import torch
from PIL import Image

try:  # Optional TensorBoard
    from torch.utils.tensorboard import SummaryWriter  # type: ignore
except Exception:  # pragma: no cover - optional
    SummaryWriter = None  # type: ignore[assignment]


@dataclass
class LoggerConfig:
    """Configuration for the scalar logger.

    Attributes:
        log_dir: Root directory where run logs are stored.
        run_id: Optional identifier used to create a per-run subdirectory.
        use_tensorboard: If True and available, also log to TensorBoard.
    """

    log_dir: str
    run_id: Optional[str] = None
    use_tensorboard: bool = False


class Logger:
    """Minimal scalar logger writing CSV and optionally TensorBoard."""

    def __init__(self, cfg: LoggerConfig) -> None:
        base_dir = Path(cfg.log_dir)
        base_dir.mkdir(parents=True, exist_ok=True)

        base_name = cfg.run_id or time.strftime("run-%Y%m%d-%H%M%S")
        run_dir = base_dir / base_name
        suffix = 1
        while run_dir.exists():
            run_dir = base_dir / f"{base_name}-{suffix:02d}"
            suffix += 1

        self.dir = run_dir
        self.dir.mkdir(parents=True, exist_ok=True)
        self.csv_path = self.dir / "scalars.csv"
        with self.csv_path.open("w", newline="") as f:
            csv.writer(f).writerow(["step", "tag", "value"])
        self.tb = None
        if cfg.use_tensorboard and SummaryWriter is not None:
            self.tb = SummaryWriter(self.dir.as_posix())

    def log_scalar(self, tag: str, value: float, step: int) -> None:
        """Log a scalar value to CSV and optionally TensorBoard.

        Args:
            tag: Scalar name (e.g., ``"loss/normalized"``).
            value: Numeric value.
            step: Global step.
        """

        with self.csv_path.open("a", newline="") as f:
            csv.writer(f).writerow([step, tag, value])

        if self.tb is not None:
            self.tb.add_scalar(tag, value, step)

    def close(self) -> None:
        if self.tb is not None:
            self.tb.flush()
            self.tb.close()


def _normalize_to_uint8(arr: np.ndarray) -> np.ndarray:
    """Min-max normalize an array to ``uint8``; constant arrays map to 0."""

    arr = arr.astype(np.float32)
    lo, hi = float(arr.min()), float(arr.max())
    scaled = (arr - lo) / (hi - lo + 1e-8)
    return (scaled * 255.0).round().astype(np.uint8)


def heatmap_to_pil(
    hm: torch.Tensor, size: Optional[Tuple[int, int]] = None, colormap: Optional[str] = None
) -> Image.Image:
    """Convert a 2-D heatmap ``[H, W]`` to an RGB PIL image.

    Args:
        hm: Heatmap tensor; leading singleton dimensions are squeezed.
        size: Optional output size ``(W, H)``; bilinear resize when given.
        colormap: Optional matplotlib colormap name (e.g. ``"jet"``). Without
            it the heatmap is rendered as grayscale.
    """

    arr = hm.detach().cpu().float().numpy()
    while arr.ndim > 2:
        arr = arr[0]
    x = _normalize_to_uint8(arr)
    if colormap is not None:
        import matplotlib  # type: ignore

        colored = matplotlib.colormaps[colormap](x.astype(np.float32) / 255.0)[:, :, :3]
        img = Image.fromarray((colored * 255.0).astype(np.uint8), mode="RGB")
    else:
        img = Image.fromarray(x, mode="L").convert("RGB")
    if size is not None:
        img = img.resize(size, Image.BILINEAR)
    return img


def tensor_to_pil(
    img: torch.Tensor, channel: int = 0, size: Optional[Tuple[int, int]] = None
) -> Image.Image:
    """Convert a display tensor ``[C, H, W]`` to an RGB PIL image.

    Three-channel tensors are treated as RGB: values above 1 are assumed to be
    in ``0..255``, otherwise in ``0..1``. Any other channel count is rendered
    as grayscale from plane ``channel``.
    """

    x = img.detach().cpu().float()
    if x.ndim == 2:
        x = x.unsqueeze(0)
    if x.shape[0] == 3:
        if float(x.max()) > 1.0:
            x = x / 255.0
        x = (x.clamp(0.0, 1.0) * 255.0).round().byte()
        out = Image.fromarray(x.permute(1, 2, 0).numpy(), mode="RGB")
    else:
        if not 0 <= channel < x.shape[0]:
            channel = 0
        out = Image.fromarray(_normalize_to_uint8(x[channel].numpy()), mode="L").convert("RGB")
    if size is not None:
        out = out.resize(size, Image.BILINEAR)
    return out


def save_image(img: Image.Image, path: Path) -> None:
    """Save a PIL image as PNG, creating parent directories."""

    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path)

