"""
torch.optim Adapter Convergence Tests
=====================================

Uses a quadratic objective f(x) = ||x - target||^2 which every reasonable
optimizer should be able to minimize, run through ``WeightDecayedAdamW`` in an
ordinary PyTorch training loop.

Run with:
    pytest tests/test_optimizers.py -v
"""

import pytest
import torch
from torch import nn

from wdadam import WeightDecayedAdamW, exclude_bias_and_norm, get_schedule


# ---------------------------------------------------------------------------
# Test fixtures
# ---------------------------------------------------------------------------


class QuadraticModel(nn.Module):
    """A simple model whose loss is ||param - target||^2."""

    def __init__(self, dim: int = 10):
        super().__init__()
        self.param = nn.Parameter(torch.randn(dim))

    def forward(self, target: torch.Tensor) -> torch.Tensor:
        return ((self.param - target) ** 2).sum()


class MatrixQuadraticModel(nn.Module):
    """A 2D parameter plus a bias: loss = ||W - target||_F^2 + ||b||^2."""

    def __init__(self, rows: int = 8, cols: int = 8):
        super().__init__()
        self.weight = nn.Parameter(torch.randn(rows, cols))
        self.bias = nn.Parameter(torch.randn(cols))

    def forward(self, target: torch.Tensor) -> torch.Tensor:
        return ((self.weight - target) ** 2).sum() + (self.bias ** 2).sum()


# Bias-correction settings that follow the schedule (compounding collapses the rate).
CONVERGING_SETTINGS = [
    {"bias_correction": False},
    {"bias_correction": True, "bias_correction_mode": "scheduled"},
    {"bias_correction": True, "bias_correction_mode": "scheduled", "max_grad_norm": 1.0},
]


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------


def _check_convergence(
    model: nn.Module,
    target: torch.Tensor,
    steps: int = 500,
    tol: float = 0.1,
    **opt_kwargs,
):
    """Run the optimizer for `steps` iterations and check convergence."""
    optimizer = WeightDecayedAdamW(model.parameters(), **opt_kwargs)

    initial_loss = None
    for _ in range(steps):
        optimizer.zero_grad()
        loss = model(target)
        if initial_loss is None:
            initial_loss = loss.item()
        loss.backward()
        optimizer.step()

    final_loss = model(target).item()
    assert final_loss < tol, (
        f"{opt_kwargs}: final loss {final_loss:.6f} > tolerance {tol}. "
        f"Initial loss was {initial_loss:.6f}."
    )
    assert final_loss < initial_loss * 0.01, (
        f"{opt_kwargs}: loss only decreased from {initial_loss:.6f} to {final_loss:.6f}. "
        f"Expected at least 100x reduction."
    )
    return optimizer


# ---------------------------------------------------------------------------
# Convergence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("settings", CONVERGING_SETTINGS)
def test_quadratic_convergence(settings: dict):
    torch.manual_seed(42)
    model = QuadraticModel(dim=10)
    target = torch.randn(10)

    _check_convergence(model, target, steps=500, tol=0.1, lr=0.05, weight_decay=0.0, **settings)


@pytest.mark.parametrize("settings", CONVERGING_SETTINGS)
def test_matrix_quadratic_convergence(settings: dict):
    torch.manual_seed(42)
    model = MatrixQuadraticModel(rows=8, cols=8)
    target = torch.randn(8, 8)

    _check_convergence(model, target, steps=500, tol=0.5, lr=0.05, weight_decay=0.0, **settings)


def test_compounding_mode_stalls():
    """The historical compounding correction drives the rate to ~0 within a few steps."""
    torch.manual_seed(42)
    model = QuadraticModel(dim=10)
    target = torch.randn(10)
    optimizer = WeightDecayedAdamW(model.parameters(), lr=0.05, weight_decay=0.0)

    initial_loss = model(target).item()
    for _ in range(200):
        optimizer.zero_grad()
        model(target).backward()
        optimizer.step()

    assert model(target).item() > initial_loss * 0.5
    assert optimizer.param_groups[0]["lr"] < 1e-6


def test_weight_decay_effect():
    """Weight decay shrinks parameters when the loss gives no gradient."""
    torch.manual_seed(42)
    model = QuadraticModel(dim=10)
    optimizer = WeightDecayedAdamW(
        model.parameters(), lr=0.01, weight_decay=0.1, bias_correction=False,
    )

    initial_norm = model.param.data.norm().item()
    for _ in range(100):
        optimizer.zero_grad()
        optimizer.step()
    final_norm = model.param.data.norm().item()

    assert final_norm < initial_norm, (
        f"weight decay did not shrink parameters. Norm: {initial_norm:.4f} -> {final_norm:.4f}"
    )


def test_excluded_parameters_are_not_decayed():
    torch.manual_seed(0)
    model = MatrixQuadraticModel(rows=2, cols=3)
    bias_before = model.bias.detach().clone()
    weight_before = model.weight.detach().clone()
    optimizer = WeightDecayedAdamW(
        model.parameters(), lr=0.01, weight_decay=0.5, bias_correction=False,
        exclude_from_weight_decay=exclude_bias_and_norm,
    )
    for _ in range(10):
        optimizer.zero_grad()
        optimizer.step()

    assert torch.equal(model.bias.detach(), bias_before)
    assert model.weight.detach().norm() < weight_before.norm()


# ---------------------------------------------------------------------------
# torch.optim integration
# ---------------------------------------------------------------------------


def test_step_with_closure_returns_loss():
    torch.manual_seed(0)
    model = QuadraticModel(dim=4)
    target = torch.zeros(4)
    optimizer = WeightDecayedAdamW(model.parameters(), lr=0.01)

    def closure():
        optimizer.zero_grad()
        loss = model(target)
        loss.backward()
        return loss

    loss = optimizer.step(closure)
    assert isinstance(loss, torch.Tensor)
    assert optimizer.adam.step == 1


def test_group_lr_reports_effective_rate():
    model = QuadraticModel(dim=4)
    schedule = get_schedule("linear_decay", base=0.1, slope=0.1)
    optimizer = WeightDecayedAdamW(model.parameters(), lr=schedule, bias_correction=False)
    assert optimizer.param_groups[0]["lr"] == pytest.approx(0.1)

    for _ in range(3):
        model(torch.zeros(4)).backward()
        optimizer.step()
    assert optimizer.param_groups[0]["lr"] == pytest.approx(0.1 * 0.7)


def test_add_param_group_after_construction_raises():
    optimizer = WeightDecayedAdamW(QuadraticModel(dim=2).parameters())
    with pytest.raises(RuntimeError):
        optimizer.add_param_group({"params": [nn.Parameter(torch.zeros(1))]})


def test_state_dict_resume():
    torch.manual_seed(1)
    model_a = QuadraticModel(dim=5)
    model_b = QuadraticModel(dim=5)
    model_b.load_state_dict(model_a.state_dict())
    target = torch.randn(5)
    kwargs = dict(lr=0.05, bias_correction_mode="scheduled")

    opt_a = WeightDecayedAdamW(model_a.parameters(), **kwargs)
    for _ in range(3):
        opt_a.zero_grad()
        model_a(target).backward()
        opt_a.step()

    model_b.load_state_dict(model_a.state_dict())
    opt_b = WeightDecayedAdamW(model_b.parameters(), **kwargs)
    opt_b.load_state_dict(opt_a.state_dict())

    for model, opt in ((model_a, opt_a), (model_b, opt_b)):
        opt.zero_grad()
        model(target).backward()
        opt.step()
    assert torch.equal(model_a.param.detach(), model_b.param.detach())


def test_invalid_hyperparameters_raise():
    params = QuadraticModel(dim=2).parameters
    with pytest.raises(ValueError):
        WeightDecayedAdamW(params(), lr=-1.0)
    with pytest.raises(ValueError):
        WeightDecayedAdamW(params(), betas=(1.5, 0.999))
