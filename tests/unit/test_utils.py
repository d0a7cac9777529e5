"""Unit tests for heatmaploss utility functions."""

import pytest
import torch
from PIL import Image

from heatmaploss.utils.config import build_cfg, loss_config_from_cfg
from heatmaploss.utils.logging import Logger, LoggerConfig, heatmap_to_pil, tensor_to_pil
from heatmaploss.utils.synthetic import gaussian_2d, make_heatmaps, synthetic_pair


class TestConfigUtils:
    """Test configuration utility functions."""

    def test_build_cfg_with_default_parameters(self):
        cfg = build_cfg(dry_run=True)

        assert "loss" in cfg
        assert "inspect" in cfg
        assert "runtime" in cfg
        assert cfg.loss.indexing == "row_major"
        assert cfg.runtime.seed == 42
        assert "run_id" in cfg.runtime

    def test_build_cfg_with_seed(self):
        cfg = build_cfg(seed=123, dry_run=True)
        assert cfg.runtime.seed == 123
        assert "s123" in cfg.runtime.run_id

    def test_build_cfg_with_overrides(self):
        overrides = ["loss.visualize_channel=2", "loss.gradient_scale=2.0"]
        cfg = build_cfg(overrides=overrides, dry_run=True)
        assert cfg.loss.visualize_channel == 2
        assert cfg.loss.gradient_scale == 2.0

    def test_build_cfg_output_dir(self, temp_dir):
        cfg = build_cfg(output_dir=str(temp_dir / "out"))
        assert (temp_dir / "out").exists()
        assert (temp_dir / "out" / "logs").exists()
        assert cfg.runtime.log_dir == str(temp_dir / "out" / "logs")

    def test_build_cfg_nonexistent_config(self):
        with pytest.raises(FileNotFoundError):
            build_cfg(loss_name="nonexistent", dry_run=True)

    def test_reference_config(self):
        loss_cfg = loss_config_from_cfg(build_cfg(loss_name="reference", dry_run=True))
        assert loss_cfg.indexing == "reference"
        assert loss_cfg.target_is_trainable is True

    def test_invalid_override_is_rejected(self):
        cfg = build_cfg(overrides=["loss.indexing=diagonal"], dry_run=True)
        with pytest.raises(ValueError):
            loss_config_from_cfg(cfg)


class TestLoggingUtils:
    """Test logging utility functions."""

    def test_logger_creation(self, temp_dir):
        logger = Logger(LoggerConfig(log_dir=str(temp_dir), run_id="test_run"))
        assert logger.dir.exists()
        assert logger.dir.name == "test_run"
        assert logger.csv_path.exists()

    def test_logger_run_dirs_do_not_collide(self, temp_dir):
        first = Logger(LoggerConfig(log_dir=str(temp_dir), run_id="same"))
        second = Logger(LoggerConfig(log_dir=str(temp_dir), run_id="same"))
        assert first.dir != second.dir
        assert second.dir.name == "same-01"

    def test_logger_scalar_logging(self, temp_dir):
        logger = Logger(LoggerConfig(log_dir=str(temp_dir)))
        logger.log_scalar("loss/normalized", 3.5, 0)
        logger.log_scalar("loss/raw", 14.0, 0)
        logger.close()

        lines = logger.csv_path.read_text().splitlines()
        assert lines[0] == "step,tag,value"
        assert "0,loss/normalized,3.5" in lines
        assert "0,loss/raw,14.0" in lines

    def test_logger_auto_run_id(self, temp_dir):
        logger = Logger(LoggerConfig(log_dir=str(temp_dir)))
        assert logger.dir.name.startswith("run-")

    def test_heatmap_to_pil(self):
        img = heatmap_to_pil(gaussian_2d(8, 6, 2.0, 3.0, 1.0), size=(32, 24))
        assert isinstance(img, Image.Image)
        assert img.mode == "RGB"
        assert img.size == (32, 24)

    def test_heatmap_to_pil_colormap(self):
        img = heatmap_to_pil(gaussian_2d(8, 8, 4.0, 4.0, 1.0), colormap="jet")
        assert img.size == (8, 8)
        r, g, b = img.getpixel((4, 4))
        assert r > b

    def test_tensor_to_pil_unit_range_rgb(self):
        img = tensor_to_pil(torch.ones(3, 4, 5))
        assert img.size == (5, 4)
        assert img.getpixel((0, 0)) == (255, 255, 255)

    def test_tensor_to_pil_grayscale_channel(self):
        x = torch.zeros(2, 4, 4)
        x[1, 0, 0] = 1.0
        img = tensor_to_pil(x, channel=1)
        assert img.getpixel((0, 0)) == (255, 255, 255)
        assert img.getpixel((1, 1)) == (0, 0, 0)


class TestSyntheticHeatmaps:
    """Test Gaussian heatmap generation."""

    def test_gaussian_peak(self):
        g = gaussian_2d(10, 8, 3.0, 5.0, 2.0)
        assert g.shape == (8, 10)
        assert float(g[5, 3]) == pytest.approx(1.0)
        assert float(g.max()) == pytest.approx(1.0)

    def test_make_heatmaps_shape(self):
        hms = make_heatmaps([[(1, 1), (2, 2), (3, 3)]] * 2, height=5, width=6)
        assert hms.shape == (2, 3, 5, 6)

    def test_synthetic_pair_is_seeded(self):
        a = synthetic_pair(2, 3, 16, 20, generator=torch.Generator().manual_seed(7))
        b = synthetic_pair(2, 3, 16, 20, generator=torch.Generator().manual_seed(7))
        assert a[0].shape == (2, 3, 16, 20)
        assert torch.equal(a[0], b[0])
        assert torch.equal(a[1], b[1])
