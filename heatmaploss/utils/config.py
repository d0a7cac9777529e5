"""Configuration utilities for heatmaploss.

This module builds an OmegaConf configuration by loading a YAML file from
`configs/loss/`, applying CLI dotlist overrides, and attaching a `runtime`
section with the seed and resolved output directories.

Example:
    >>> from heatmaploss.utils.config import build_cfg, loss_config_from_cfg
    >>> cfg = build_cfg(loss_name="default", dry_run=True)
    >>> loss_cfg = loss_config_from_cfg(cfg)

Notes:
    - Uses OmegaConf for hierarchical configuration.
    - Directory creation can be skipped via `dry_run=True`.
"""

from __future__ import annotations

import argparse
import os
import random
import time
from pathlib import Path
from typing import Iterable, Optional

import torch
from omegaconf import DictConfig, OmegaConf

from heatmaploss.layers.heatmap_loss import HeatmapLossConfig


# ------------------------------
# Internal utilities
# ------------------------------

# Simple cache for YAML configs to avoid repeated file I/O
_yaml_cache: dict[tuple[str, str], DictConfig] = {}


def _project_root() -> Path:
    """Return the repository root (`heatmaploss/utils/config.py` -> root)."""

    return Path(__file__).resolve().parents[2]


def _configs_dir() -> Path:
    return _project_root() / "configs"


def _load_yaml(category: str, name: str) -> DictConfig:
    """Load a YAML config from `configs/<category>/<name>.yaml`.

    Raises:
        FileNotFoundError: If the expected YAML file does not exist.
    """

    cache_key = (category, name)
    if cache_key in _yaml_cache:
        return _yaml_cache[cache_key]

    path = _configs_dir() / category / f"{name}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    config = OmegaConf.load(path)
    _yaml_cache[cache_key] = config
    return config


def _seed_all(seed: int) -> None:
    random.seed(seed)
    os.environ["PYTHONHASHSEED"] = str(seed)
    torch.manual_seed(seed)


def build_cfg(
    loss_name: str = "default",
    overrides: Optional[Iterable[str]] = None,
    seed: Optional[int] = None,
    output_dir: Optional[str] = None,
    dry_run: bool = False,
) -> DictConfig:
    """Build a configuration using OmegaConf.

    Args:
        loss_name: Base name of the YAML in ``configs/loss``.
        overrides: Dotlist overrides like ``["loss.indexing=reference"]``.
        seed: Optional RNG seed override.
        output_dir: Optional output directory root override.
        dry_run: If True, skip directory creation.

    Returns:
        DictConfig: A merged configuration with sections ``loss``,
            ``inspect``, and ``runtime``.
    """

    cfg = OmegaConf.merge(OmegaConf.create({"loss": {}, "inspect": {}}), _load_yaml("loss", loss_name))

    if overrides:
        dot = OmegaConf.from_dotlist(list(overrides))
        cfg = OmegaConf.merge(cfg, dot)

    # Seed preference order: explicit arg -> inspect.seed -> default
    resolved_seed = int(seed) if seed is not None else int(cfg.inspect.get("seed", 42))

    root = _project_root()
    out_root = (
        Path(output_dir)
        if output_dir is not None
        else Path(cfg.inspect.get("output_dir", root / "outputs"))
    )
    log_dir = Path(cfg.inspect.get("log_dir", out_root / "logs"))

    run_ts = time.strftime("%Y%m%d-%H%M%S")
    runtime = {
        "seed": resolved_seed,
        "project_root": str(root),
        "output_root": str(out_root),
        "log_dir": str(log_dir),
        "timestamp": run_ts,
        "run_id": f"run-{run_ts}-s{resolved_seed}",
    }
    cfg = OmegaConf.merge(cfg, OmegaConf.create({"runtime": runtime}))

    _seed_all(resolved_seed)

    if not dry_run:
        for p in (out_root, log_dir):
            Path(p).mkdir(parents=True, exist_ok=True)

    return cfg


def loss_config_from_cfg(cfg: DictConfig) -> HeatmapLossConfig:
    """Convert the ``loss`` section of ``cfg`` into a ``HeatmapLossConfig``."""

    section = OmegaConf.to_container(cfg.get("loss", {}), resolve=True) or {}
    return HeatmapLossConfig.from_dict(section)


def add_config_cli_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    """Attach common configuration CLI arguments to a parser."""

    parser.add_argument("--loss", dest="loss_name", default="default", type=str,
                        help="Loss config name in configs/loss (without .yaml)")
    parser.add_argument("--seed", dest="seed", default=None, type=int,
                        help="Seed override (if omitted, uses config/default)")
    parser.add_argument("--output-dir", dest="output_dir", default=None, type=str,
                        help="Output root directory override")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true",
                        help="Build cfg and run without writing files")
    return parser
