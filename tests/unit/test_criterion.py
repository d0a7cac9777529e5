"""Unit tests for the autograd criterion wrapping the loss layer."""

import pytest
import torch
import torch.nn as nn

from heatmaploss.layers import (
    HeatmapLossConfig,
    HeatmapMSELoss,
    ShapeMismatch,
    build_heatmap_loss,
)


class TestHeatmapMSELoss:
    """Test gradients delivered through ``loss.backward()``."""

    def test_build_default(self):
        criterion = build_heatmap_loss()
        assert isinstance(criterion, HeatmapMSELoss)
        assert isinstance(criterion, nn.Module)
        assert criterion.cfg.indexing == "row_major"

    def test_build_with_config(self):
        criterion = build_heatmap_loss(HeatmapLossConfig(indexing="reference"))
        assert criterion.cfg.indexing == "reference"

    def test_forward_value(self, small_pair):
        prediction, target = small_pair
        loss = HeatmapMSELoss()(prediction, target)
        assert float(loss) == pytest.approx(3.5)

    def test_prediction_gradient_is_difference(self, random_pair):
        prediction, target = random_pair
        prediction = prediction.clone().requires_grad_(True)
        loss = HeatmapMSELoss()(prediction, target)
        loss.backward()
        assert torch.allclose(prediction.grad, prediction.detach() - target)

    def test_upstream_gradient_is_multiplied_in(self, small_pair):
        prediction, target = small_pair
        prediction = prediction.clone().requires_grad_(True)
        loss = HeatmapMSELoss()(prediction, target)
        (0.5 * loss).backward()
        expected = torch.tensor([[[[0.0, 0.5], [1.0, 1.5]]]])
        assert torch.allclose(prediction.grad, expected)

    def test_gradient_flows_to_upstream_parameters(self, random_pair):
        x, target = random_pair
        weight = torch.tensor(2.0, requires_grad=True)
        prediction = weight * x
        HeatmapMSELoss()(prediction, target).backward()
        expected = ((prediction.detach() - target) * x).sum()
        assert float(weight.grad) == pytest.approx(float(expected), rel=1e-5)

    def test_target_gradient_omitted_by_default(self, small_pair):
        prediction, target = small_pair
        prediction = prediction.clone().requires_grad_(True)
        target = target.clone().requires_grad_(True)
        HeatmapMSELoss()(prediction, target).backward()
        assert target.grad is None
        assert prediction.grad is not None

    def test_trainable_target_receives_same_gradient(self, small_pair):
        prediction, target = small_pair
        prediction = prediction.clone().requires_grad_(True)
        target = target.clone().requires_grad_(True)
        criterion = HeatmapMSELoss(HeatmapLossConfig(target_is_trainable=True))
        criterion(prediction, target).backward()
        assert torch.equal(target.grad, prediction.grad)
        assert torch.equal(target.grad, torch.tensor([[[[0.0, 1.0], [2.0, 3.0]]]]))

    def test_optimizer_step_reduces_loss(self):
        gen = torch.Generator().manual_seed(3)
        target = torch.rand(2, 1, 6, 6, generator=gen)
        param = nn.Parameter(torch.zeros(2, 1, 6, 6))
        criterion = HeatmapMSELoss()
        opt = torch.optim.SGD([param], lr=0.5)
        first = float(criterion(param, target))
        for _ in range(5):
            opt.zero_grad()
            criterion(param, target).backward()
            opt.step()
        assert float(criterion(param, target)) < first

    def test_shape_mismatch_propagates(self):
        with pytest.raises(ShapeMismatch):
            HeatmapMSELoss()(torch.zeros(1, 1, 2, 2, requires_grad=True), torch.zeros(1, 1, 3, 3))

    def test_backward_after_forward_on_other_shape(self, small_pair, random_pair):
        criterion = HeatmapMSELoss()
        p1, t1 = small_pair
        p2, t2 = random_pair
        p1 = p1.clone().requires_grad_(True)
        p2 = p2.clone().requires_grad_(True)
        loss1 = criterion(p1, t1)
        loss2 = criterion(p2, t2)
        loss1.backward()
        loss2.backward()
        assert torch.equal(p1.grad, p1.detach() - t1)
        assert torch.allclose(p2.grad, p2.detach() - t2)

    def test_criteria_built_from_one_config_are_independent(self):
        cfg = HeatmapLossConfig()
        first = HeatmapMSELoss(cfg)
        second = HeatmapMSELoss(cfg)
        first.layer.configure(visualize=True, visualize_channel=2)
        assert first.cfg.visualize_channel == 2
        assert second.cfg == HeatmapLossConfig()
        assert cfg.visualize is False
