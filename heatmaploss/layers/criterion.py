"""Autograd integration for ``HeatmapLoss``.

``HeatmapLossFunction`` routes ``loss.backward()`` through the layer's own
backward pass, so a PyTorch training loop sees exactly the layer's gradient
convention (scaled by the incoming gradient of the loss).
"""

from __future__ import annotations

from typing import Any, Optional

import torch
import torch.nn as nn
from torch.autograd import Function

from .heatmap_loss import HeatmapLoss, HeatmapLossConfig


class HeatmapLossFunction(Function):
    """Autograd bridge around ``HeatmapLoss.forward`` / ``HeatmapLoss.backward``.

    Backward re-sizes the layer's difference buffer from the saved tensors, so
    several forward passes with different shapes may run before their
    ``backward()`` calls.
    """

    @staticmethod
    def forward(ctx, prediction, target, layer, display=None):
        ctx.layer = layer
        ctx.save_for_backward(prediction, target)
        return layer.forward(prediction, target, display)

    @staticmethod
    def backward(ctx, grad_output):
        prediction, target = ctx.saved_tensors
        ctx.layer.reshape(prediction, target)
        grad_prediction, grad_target = ctx.layer.backward(prediction, target)
        if ctx.needs_input_grad[0]:
            grad_prediction = (grad_prediction * grad_output).to(prediction.dtype)
        else:
            grad_prediction = None
        if grad_target is not None and ctx.needs_input_grad[1]:
            grad_target = (grad_target * grad_output).to(target.dtype)
        else:
            grad_target = None
        return grad_prediction, grad_target, None, None


class HeatmapMSELoss(nn.Module):
    """Criterion module wrapping a ``HeatmapLoss`` layer.

    The forward value is the normalized mean squared error; the gradient that
    reaches ``prediction`` is ``gradient_scale * (prediction - target)``.
    """

    def __init__(self, cfg: Optional[HeatmapLossConfig] = None) -> None:
        super().__init__()
        self.layer = HeatmapLoss(cfg)

    @property
    def cfg(self) -> HeatmapLossConfig:
        return self.layer.cfg

    def forward(
        self,
        pred: torch.Tensor,
        target: torch.Tensor,
        display: Optional[Any] = None,
    ) -> torch.Tensor:
        """Compute the loss.

        Args:
            pred: Predicted heatmaps ``[N, C, H, W]``.
            target: Target heatmaps ``[N, C, H, W]``.
            display: Optional auxiliary tensor for the visualizer.

        Returns:
            Scalar loss tensor connected to the autograd graph.
        """

        return HeatmapLossFunction.apply(pred, target, self.layer, display)


def build_heatmap_loss(cfg: Optional[HeatmapLossConfig] = None) -> nn.Module:
    """Factory to build a heatmap loss criterion.

    Args:
        cfg: Loss configuration. Defaults to ``HeatmapLossConfig()``.

    Returns:
        An ``HeatmapMSELoss`` module.
    """

    return HeatmapMSELoss(cfg if cfg is not None else HeatmapLossConfig())
