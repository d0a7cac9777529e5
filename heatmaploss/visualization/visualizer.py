"""Diagnostic visualization for the heatmap loss layer.

The visualizer is a side observer: the loss layer hands it one
``DiagnosticFrame`` per image after the loss has been computed, and nothing it
does feeds back into the loss or gradient. Rendering produces

- an overlay of the predicted heatmap with a green marker at the target peak
  and a red marker at the predicted peak,
- the auxiliary display tensor re-rendered with the same two markers,
- grayscale panels of the prediction, target, and squared difference.

Rendered frames are dispatched to sinks (save to disk, show in a window).
Failures while rendering or dispatching are logged and ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import torch
from PIL import Image, ImageDraw

from heatmaploss.constants import VISUALIZATION_SIZE
from heatmaploss.utils.logging import heatmap_to_pil, save_image, tensor_to_pil

logger = logging.getLogger(__name__)

TARGET_COLOR = (0, 255, 0)
PREDICTION_COLOR = (255, 0, 0)
TARGET_RADIUS = 5
PREDICTION_RADIUS = 3


def find_peak(hm: torch.Tensor) -> Tuple[int, int]:
    """Locate the maximum of a 2-D heatmap.

    Ties resolve to the first maximum in row-major scan order.

    Args:
        hm: Heatmap of shape ``[H, W]``.

    Returns:
        ``(row, col)`` of the peak.
    """

    if hm.dim() != 2:
        raise ValueError(f"expected a 2-D heatmap, got shape {tuple(hm.shape)}")
    if hm.numel() == 0:
        raise ValueError("cannot locate the peak of an empty heatmap")
    w = hm.shape[1]
    idx = int(hm.detach().reshape(-1).argmax())
    return idx // w, idx % w


def peak_locations(hm: torch.Tensor) -> torch.Tensor:
    """Peak ``(row, col)`` for every image and channel of ``[N, C, H, W]``.

    Returns:
        Long tensor of shape ``[N, C, 2]``.
    """

    n, c, _, w = hm.shape
    flat = hm.detach().reshape(n, c, -1)
    idx = flat.argmax(dim=2)
    return torch.stack([idx // w, idx % w], dim=2)


@dataclass
class DiagnosticFrame:
    """Per-image, per-channel slices observed during one forward pass."""

    image_index: int
    channel: int
    prediction: torch.Tensor
    target: torch.Tensor
    squared_diff: torch.Tensor
    raw_loss: float
    display: Optional[torch.Tensor] = None

    @property
    def target_peak(self) -> Tuple[int, int]:
        return find_peak(self.target)

    @property
    def prediction_peak(self) -> Tuple[int, int]:
        return find_peak(self.prediction)


@dataclass
class DiagnosticRender:
    """Images rendered for one ``DiagnosticFrame``.

    Attributes:
        frame: The frame that was rendered.
        overlay: Prediction heatmap with both peak markers.
        panels: Grayscale ``prediction``, ``target`` and ``diff`` panels.
        display: Display tensor with both peak markers, when one was given.
        target_marker: Target peak in canvas pixels ``(x, y)``.
        prediction_marker: Predicted peak in canvas pixels ``(x, y)``.
    """

    frame: DiagnosticFrame
    overlay: Image.Image
    panels: Dict[str, Image.Image]
    display: Optional[Image.Image]
    target_marker: Tuple[int, int]
    prediction_marker: Tuple[int, int]


VisualizationSink = Callable[[DiagnosticRender], None]


def _to_canvas(peak: Tuple[int, int], shape: Tuple[int, int], size: int) -> Tuple[int, int]:
    """Map a ``(row, col)`` heatmap cell to the center of its canvas region."""

    row, col = peak
    h, w = shape
    x = int((col + 0.5) * size / w)
    y = int((row + 0.5) * size / h)
    return x, y


def _draw_marker(img: Image.Image, xy: Tuple[int, int], radius: int, color) -> None:
    x, y = xy
    ImageDraw.Draw(img).ellipse((x - radius, y - radius, x + radius, y + radius), fill=color)


class DiagnosticVisualizer:
    """Render diagnostic frames and dispatch them to sinks."""

    def __init__(
        self, size: int = VISUALIZATION_SIZE, sinks: Sequence[VisualizationSink] = ()
    ) -> None:
        self.size = int(size)
        self.sinks: List[VisualizationSink] = list(sinks)

    def render(self, frame: DiagnosticFrame) -> DiagnosticRender:
        canvas = (self.size, self.size)
        hm_shape = (int(frame.prediction.shape[0]), int(frame.prediction.shape[1]))
        target_xy = _to_canvas(frame.target_peak, hm_shape, self.size)
        pred_xy = _to_canvas(frame.prediction_peak, hm_shape, self.size)
        logger.debug(
            "image %d channel %d: raw loss %s, target peak %s, prediction peak %s",
            frame.image_index,
            frame.channel,
            frame.raw_loss,
            frame.target_peak,
            frame.prediction_peak,
        )

        panels = {
            "prediction": heatmap_to_pil(frame.prediction, canvas),
            "target": heatmap_to_pil(frame.target, canvas),
            "diff": heatmap_to_pil(frame.squared_diff, canvas),
        }
        overlay = panels["prediction"].copy()
        _draw_marker(overlay, target_xy, TARGET_RADIUS, TARGET_COLOR)
        _draw_marker(overlay, pred_xy, PREDICTION_RADIUS, PREDICTION_COLOR)

        display = None
        if frame.display is not None:
            display = tensor_to_pil(frame.display, channel=frame.channel, size=canvas)
            _draw_marker(display, target_xy, TARGET_RADIUS, TARGET_COLOR)
            _draw_marker(display, pred_xy, PREDICTION_RADIUS, PREDICTION_COLOR)

        return DiagnosticRender(
            frame=frame,
            overlay=overlay,
            panels=panels,
            display=display,
            target_marker=target_xy,
            prediction_marker=pred_xy,
        )

    def observe(self, frame: DiagnosticFrame) -> Optional[DiagnosticRender]:
        """Render ``frame`` and hand it to every sink.

        Returns:
            The render, or ``None`` if rendering failed. Sink failures are
            logged and do not stop the remaining sinks.
        """

        try:
            render = self.render(frame)
        except Exception:
            logger.warning("failed to render diagnostic frame %d", frame.image_index, exc_info=True)
            return None
        for sink in self.sinks:
            try:
                sink(render)
            except Exception:
                logger.warning("visualization sink %r failed", sink, exc_info=True)
        return render


@dataclass
class DirectorySink:
    """Save every render as PNG files under ``root``.

    Files are named ``<prefix>-<call:05d>-img<index>-<panel>.png``.
    """

    root: Path
    prefix: str = "frame"
    calls: int = field(default=0, init=False)

    def __call__(self, render: DiagnosticRender) -> None:
        stem = f"{self.prefix}-{self.calls:05d}-img{render.frame.image_index}"
        self.calls += 1
        root = Path(self.root)
        save_image(render.overlay, root / f"{stem}-overlay.png")
        if render.display is not None:
            save_image(render.display, root / f"{stem}-display.png")
        for name, img in render.panels.items():
            save_image(img, root / f"{stem}-{name}.png")


class WindowSink:
    """Show renders in a matplotlib window.

    With ``block=True`` the call waits until the window is closed, which pauses
    the caller for manual inspection.
    """

    def __init__(self, block: bool = True) -> None:
        self.block = block

    def __call__(self, render: DiagnosticRender) -> None:
        import matplotlib.pyplot as plt  # type: ignore

        images = [("overlay", render.overlay)]
        if render.display is not None:
            images.append(("display", render.display))
        fig, axes = plt.subplots(1, len(images), figsize=(4 * len(images), 4), squeeze=False)
        for ax, (title, img) in zip(axes[0], images):
            ax.imshow(img)
            ax.set_title(f"{title} (image {render.frame.image_index})")
            ax.axis("off")
        plt.show(block=self.block)
        if self.block:
            plt.close(fig)
