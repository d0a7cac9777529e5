"""Inspection script for the heatmap loss layer.

Builds config, loads prediction/target (and optional display) tensors from
disk or synthesizes Gaussian heatmaps, runs one forward and backward pass,
logs scalars, optionally renders diagnostics, and prints a summary.

Usage:
    python -m heatmaploss.scripts.inspect_loss --prediction pred.pt --target gt.pt \
        --visualize loss.visualize_channel=2
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import numpy as np
import torch

from heatmaploss.layers import HeatmapLoss, HeatmapLossError
from heatmaploss.utils.config import add_config_cli_arguments, build_cfg, loss_config_from_cfg
from heatmaploss.utils.logging import Logger, LoggerConfig
from heatmaploss.utils.synthetic import synthetic_pair
from heatmaploss.visualization import (
    DiagnosticVisualizer,
    DirectorySink,
    WindowSink,
    peak_locations,
)

logger = logging.getLogger(__name__)


def parse_args(argv: list[str]) -> tuple[argparse.Namespace, list[str]]:
    parser = argparse.ArgumentParser(description="Heatmap loss inspection entrypoint")
    add_config_cli_arguments(parser)
    parser.add_argument("--prediction", type=str, default=None,
                        help="Prediction tensor (.pt or .npy)")
    parser.add_argument("--target", type=str, default=None,
                        help="Target tensor (.pt or .npy)")
    parser.add_argument("--display", type=str, default=None,
                        help="Optional display tensor shown under the markers")
    parser.add_argument("--visualize", action="store_true",
                        help="Render diagnostics for loss.visualize_channel")
    parser.add_argument("--show", action="store_true",
                        help="Also show diagnostics in a blocking window")
    known, unknown = parser.parse_known_args(argv)
    return known, unknown


def load_tensor(path: str | Path) -> torch.Tensor:
    """Load a tensor from a ``.npy`` file or a ``torch.save`` file."""

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Tensor file not found: {path}")
    if path.suffix == ".npy":
        return torch.from_numpy(np.load(path))
    obj = torch.load(path, map_location="cpu")
    if not isinstance(obj, torch.Tensor):
        raise ValueError(f"{path} does not contain a tensor")
    return obj


def main(argv: list[str] | None = None) -> int:
    import sys

    if argv is None:
        argv = sys.argv[1:]

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(level=logging.INFO)

    args, overrides = parse_args(argv)
    cfg = build_cfg(
        loss_name=args.loss_name,
        overrides=overrides,
        seed=args.seed,
        output_dir=args.output_dir,
        dry_run=args.dry_run,
    )
    loss_cfg = loss_config_from_cfg(cfg)
    if args.visualize:
        loss_cfg = replace(loss_cfg, visualize=True)

    if (args.prediction is None) != (args.target is None):
        print("--prediction and --target must be given together.")
        return 1
    display: Optional[torch.Tensor] = None
    if args.prediction is not None:
        prediction = load_tensor(args.prediction)
        target = load_tensor(args.target)
    else:
        syn = cfg.inspect.get("synthetic", {})
        gen = torch.Generator().manual_seed(int(cfg.runtime.seed))
        prediction, target = synthetic_pair(
            num_images=int(syn.get("num_images", 1)),
            num_channels=int(syn.get("num_channels", 1)),
            height=int(syn.get("height", 64)),
            width=int(syn.get("width", 64)),
            sigma=float(syn.get("sigma", 2.0)),
            jitter=float(syn.get("jitter", 3.0)),
            generator=gen,
        )
    if args.display is not None:
        display = load_tensor(args.display)

    run_logger: Optional[Logger] = None
    visualizer = None
    if not args.dry_run:
        run_logger = Logger(
            LoggerConfig(
                log_dir=str(cfg.runtime.log_dir),
                run_id=str(cfg.runtime.run_id),
                use_tensorboard=bool(cfg.inspect.get("use_tensorboard", False)),
            )
        )
    if loss_cfg.visualize:
        sinks = []
        if run_logger is not None:
            sinks.append(DirectorySink(run_logger.dir / "visualizations"))
        if args.show:
            sinks.append(WindowSink(block=True))
        visualizer = DiagnosticVisualizer(size=loss_cfg.visualization_size, sinks=sinks)

    layer = HeatmapLoss(loss_cfg, visualizer=visualizer)
    try:
        loss = layer.forward(prediction, target, display)
        grad_prediction, grad_target = layer.backward(prediction, target)
    except HeatmapLossError as e:
        print(f"Heatmap loss failed: {e}")
        if run_logger is not None:
            run_logger.close()
        return 1

    pred_peaks = peak_locations(prediction).to(torch.float32)
    tgt_peaks = peak_locations(target).to(torch.float32)
    peak_dist = float(torch.linalg.norm(pred_peaks - tgt_peaks, dim=-1).mean())
    grad_abs_mean = float(grad_prediction.abs().mean())

    if run_logger is not None:
        run_logger.log_scalar("loss/normalized", float(loss), 0)
        run_logger.log_scalar("loss/raw", float(layer.last_raw_loss), 0)
        run_logger.log_scalar("grad/abs_mean", grad_abs_mean, 0)
        run_logger.log_scalar("peaks/mean_distance", peak_dist, 0)
        run_logger.close()
        logger.info("Wrote inspection outputs to %s", run_logger.dir)

    print(
        f"shape={tuple(prediction.shape)} loss={float(loss):.6f} "
        f"raw={layer.last_raw_loss:.6f} grad_abs_mean={grad_abs_mean:.6f} "
        f"peak_dist={peak_dist:.3f} target_grad={'yes' if grad_target is not None else 'no'}"
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
