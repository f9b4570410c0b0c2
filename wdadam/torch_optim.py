"""
torch.optim Adapter
===================

``WeightDecayedAdamW`` runs ``WeightDecayedAdam`` behind the standard
``torch.optim.Optimizer`` interface, so it drops into an ordinary PyTorch
loop:

    optimizer = WeightDecayedAdamW(model.parameters(), lr=1e-3)
    for batch in loader:
        optimizer.zero_grad()
        loss_fn(model(batch)).backward()
        optimizer.step()

All parameters form one tree: the global-norm clip and the hyperparameters
apply to every param group alike, and the effective learning rate is written
back into each group's ``"lr"`` after every step for logging. A parameter whose
``.grad`` is ``None`` contributes a zero gradient (its weight decay still
applies). Pass a schedule callable as ``lr`` instead of using a
``torch.optim.lr_scheduler``; writes to ``group["lr"]`` are ignored.
"""

from __future__ import annotations

from typing import Any

import torch
from torch.optim.optimizer import Optimizer

from wdadam.adam import WeightDecayedAdam
from wdadam.model import ExcludeFn, ParameterModel
from wdadam.schedules import ScheduleLike, as_schedule


class WeightDecayedAdamW(Optimizer):
    """Weight-decayed Adam over all parameters as a single tree.

    Args:
        params: Iterable of parameters or param groups.
        lr: Learning rate, or a ``step -> rate`` schedule.
        weight_decay: Weight decay rate added to the normalized update.
        betas: (beta1, beta2), each in [0, 1].
        eps: Term added to the denominator for numerical stability.
        max_grad_norm: Clip the full gradient tree to this global norm.
        bias_correction: Apply the Adam bias-correction factor to the rate.
        bias_correction_mode: ``"compounding"`` (historical) or ``"scheduled"``.
        exclude_from_weight_decay: Predicate ``(index, param) -> bool``; see
            ``wdadam.model.exclude_bias_and_norm``.
    """

    def __init__(
        self,
        params,
        lr: ScheduleLike = 1e-3,
        weight_decay: float = 0.01,
        betas: tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-6,
        max_grad_norm: float | None = None,
        bias_correction: bool = True,
        bias_correction_mode: str = "compounding",
        exclude_from_weight_decay: ExcludeFn | None = None,
    ):
        schedule = as_schedule(lr)
        initial_lr = schedule(0)
        if initial_lr < 0.0:
            raise ValueError(f"Invalid learning rate: {initial_lr}")

        defaults = dict(
            lr=initial_lr, betas=betas, eps=eps, weight_decay=weight_decay,
            max_grad_norm=max_grad_norm, bias_correction=bias_correction,
        )
        self.adam: WeightDecayedAdam | None = None
        super().__init__(params, defaults)

        self.model = ParameterModel(
            [p for group in self.param_groups for p in group["params"]],
            exclude_from_weight_decay=exclude_from_weight_decay,
        )
        self.adam = WeightDecayedAdam(
            self.model,
            schedule,
            weight_decay_rate=weight_decay,
            use_bias_correction=bias_correction,
            beta1=betas[0],
            beta2=betas[1],
            epsilon=eps,
            max_gradient_global_norm=max_grad_norm,
            bias_correction_mode=bias_correction_mode,
        )

    def add_param_group(self, param_group: dict[str, Any]) -> None:
        if self.adam is not None:
            raise RuntimeError(
                "WeightDecayedAdamW keeps one fixed parameter tree; "
                "pass every param group to the constructor."
            )
        super().add_param_group(param_group)

    @torch.no_grad()
    def step(self, closure=None):
        """Perform a single optimization step.

        Args:
            closure: Optional callable that re-evaluates the model and
                returns the loss.
        """
        loss = None
        if closure is not None:
            with torch.enable_grad():
                loss = closure()

        self.adam.update(self.model, self.model.gradient())

        for group in self.param_groups:
            group["lr"] = self.adam.learning_rate
        return loss

    def state_dict(self) -> dict[str, Any]:
        return self.adam.state_dict()

    def load_state_dict(self, state_dict: dict[str, Any]) -> None:
        self.adam.load_state_dict(state_dict)
        for group in self.param_groups:
            group["lr"] = self.adam.learning_rate
