# heatmaploss/layers/__init__.py
"""
Loss layer package for heatmaploss.

Includes the heatmap loss layer, its autograd criterion, shape helpers, and
errors. Lazily exposes symbols at package top-level to reduce import time.
"""

from __future__ import annotations

import importlib
import threading
from typing import TYPE_CHECKING, Any

__all__ = [
    # layer
    "HeatmapLoss",
    "HeatmapLossConfig",
    "DifferenceBuffer",
    # criterion
    "HeatmapLossFunction",
    "HeatmapMSELoss",
    "build_heatmap_loss",
    # shapes
    "HeatmapShape",
    "as_heatmap_tensor",
    "validate_shapes",
    # errors
    "HeatmapLossError",
    "ShapeMismatch",
    "UninitializedBuffer",
    "EmptyInput",
]

# name -> "relative.module.path:attribute" mapping
_lazy_specs: dict[str, str] = {
    # layer
    "HeatmapLoss": ".heatmap_loss:HeatmapLoss",
    "HeatmapLossConfig": ".heatmap_loss:HeatmapLossConfig",
    "DifferenceBuffer": ".heatmap_loss:DifferenceBuffer",
    # criterion
    "HeatmapLossFunction": ".criterion:HeatmapLossFunction",
    "HeatmapMSELoss": ".criterion:HeatmapMSELoss",
    "build_heatmap_loss": ".criterion:build_heatmap_loss",
    # shapes
    "HeatmapShape": ".shape:HeatmapShape",
    "as_heatmap_tensor": ".shape:as_heatmap_tensor",
    "validate_shapes": ".shape:validate_shapes",
    # errors
    "HeatmapLossError": ".errors:HeatmapLossError",
    "ShapeMismatch": ".errors:ShapeMismatch",
    "UninitializedBuffer": ".errors:UninitializedBuffer",
    "EmptyInput": ".errors:EmptyInput",
}

_lazy_cache: dict[str, Any] = {}
_lazy_lock = threading.RLock()


def __getattr__(name: str) -> Any:
    obj = _lazy_cache.get(name)
    if obj is not None:
        return obj

    spec = _lazy_specs.get(name)
    if spec is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    mod_path, attr = spec.split(":")
    with _lazy_lock:
        # Double-check under lock
        obj = _lazy_cache.get(name)
        if obj is not None:
            return obj
        mod = importlib.import_module(mod_path, __name__)
        obj = getattr(mod, attr)
        _lazy_cache[name] = obj
        globals()[name] = obj
        return obj


def __dir__():
    return sorted(set(list(globals().keys()) + __all__))


if TYPE_CHECKING:
    from .criterion import HeatmapLossFunction, HeatmapMSELoss, build_heatmap_loss
    from .errors import EmptyInput, HeatmapLossError, ShapeMismatch, UninitializedBuffer
    from .heatmap_loss import DifferenceBuffer, HeatmapLoss, HeatmapLossConfig
    from .shape import HeatmapShape, as_heatmap_tensor, validate_shapes
