"""Pytest configuration and fixtures for heatmaploss testing."""

import os
import tempfile
from pathlib import Path

import matplotlib
import pytest
import torch

matplotlib.use("Agg")

from heatmaploss.layers import HeatmapLoss, HeatmapLossConfig  # noqa: E402
from heatmaploss.utils.synthetic import make_heatmaps  # noqa: E402


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def small_pair():
    """The 1x1x2x2 example: prediction [[1,2],[3,4]] against all ones."""
    prediction = torch.tensor([[[[1.0, 2.0], [3.0, 4.0]]]])
    target = torch.ones(1, 1, 2, 2)
    return prediction, target


@pytest.fixture
def random_pair():
    """A seeded random prediction/target pair of shape [2, 3, 8, 8]."""
    gen = torch.Generator().manual_seed(0)
    prediction = torch.rand(2, 3, 8, 8, generator=gen)
    target = torch.rand(2, 3, 8, 8, generator=gen)
    return prediction, target


@pytest.fixture
def gaussian_pair():
    """Gaussian heatmaps with known, distinct peaks for 2 images x 2 channels."""
    target = make_heatmaps([[(3, 4), (10, 2)], [(7, 7), (1, 12)]], height=16, width=16, sigma=1.5)
    prediction = make_heatmaps([[(5, 4), (10, 3)], [(7, 9), (2, 12)]], height=16, width=16, sigma=1.5)
    return prediction, target


@pytest.fixture
def layer():
    """A default heatmap loss layer."""
    return HeatmapLoss()


@pytest.fixture
def trainable_target_layer():
    """A layer that also returns a gradient for the target."""
    return HeatmapLoss(HeatmapLossConfig(target_is_trainable=True))


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up environment variables for testing."""
    os.environ["CUDA_VISIBLE_DEVICES"] = ""
    yield
    os.environ.pop("CUDA_VISIBLE_DEVICES", None)
