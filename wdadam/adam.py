"""
Weight-Decayed Adam
===================
Paper: "Adam: A Method for Stochastic Optimization" (Kingma & Ba, 2014)
       https://arxiv.org/abs/1412.6980v8
       "Decoupled Weight Decay Regularization" (Loshchilov & Hutter, 2017)
       https://arxiv.org/abs/1711.05101

Core idea:
    Adam with the weight-decay term added to the *normalized* update rather
    than to the gradient, the variant used to pre-train BERT-style text
    models. The optimizer works on whole ``TangentVector`` trees, so the
    global-norm clip and the moments see the model as one flat vector.

Update rule (one call to ``update``, in this order):
    g     = clip_by_global_norm(g, max_norm)      # only if max_norm is set
    t     = t + 1                                 # re-derives lr, see below
    m     = beta1 * m + (1 - beta1) * g
    v     = beta2 * v + (1 - beta2) * g * g
    denom = sqrt(v) + eps
    delta = m / denom + wd * regularization(theta)
    theta = theta - lr * delta

Learning rate at step t:
    no bias correction:           lr_t = schedule(t)
    "scheduled" bias correction:  lr_t = schedule(t) * sqrt(1 - beta2^t) / (1 - beta1^t)
    "compounding" (default):      lr_t = lr_{t-1} * sqrt(1 - beta2^t) / (1 - beta1^t)

    "compounding" is the historical behavior and is kept for compatibility:
    each step multiplies the *previous* rate by the correction factor, so the
    factors pile up over the run and the rate decays towards zero instead of
    following the schedule. "scheduled" is textbook Adam bias correction.

Hyperparameters:
    weight_decay_rate:          Decoupled weight decay (typical: 0.01)
    beta1, beta2:               Moment decay rates in [0, 1] (typical: 0.9, 0.999)
    epsilon:                    Denominator floor (typical: 1e-6)
    max_gradient_global_norm:   Clip threshold on the whole gradient tree (optional)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Optional

import numpy as np
import torch

from wdadam.model import Regularizable
from wdadam.schedules import Schedule, ScheduleLike, as_schedule
from wdadam.tangent import TangentVector

logger = logging.getLogger(__name__)

BIAS_CORRECTION_MODES = ("compounding", "scheduled")


def bias_correction_factor(beta1: float, beta2: float, step: int) -> float:
    """``sqrt(1 - beta2^step) / (1 - beta1^step)``; degenerate inputs give inf/nan."""
    with np.errstate(divide="ignore", invalid="ignore"):
        numerator = np.sqrt(1.0 - np.power(np.float64(beta2), step))
        denominator = 1.0 - np.power(np.float64(beta1), step)
        return float(numerator / denominator)


@dataclass(frozen=True)
class AdamHyperparameters:
    """Immutable, validated hyperparameters of one optimizer instance."""

    weight_decay_rate: float = 0.01
    use_bias_correction: bool = True
    beta1: float = 0.9
    beta2: float = 0.999
    epsilon: float = 1e-6
    max_gradient_global_norm: Optional[float] = None
    bias_correction_mode: str = "compounding"

    def __post_init__(self):
        if not 0.0 <= self.beta1 <= 1.0:
            raise ValueError(f"Invalid beta1: {self.beta1}")
        if not 0.0 <= self.beta2 <= 1.0:
            raise ValueError(f"Invalid beta2: {self.beta2}")
        if self.weight_decay_rate < 0.0:
            raise ValueError(f"Invalid weight_decay_rate: {self.weight_decay_rate}")
        if self.max_gradient_global_norm is not None and self.max_gradient_global_norm <= 0.0:
            raise ValueError(
                f"Invalid max_gradient_global_norm: {self.max_gradient_global_norm}"
            )
        if self.bias_correction_mode not in BIAS_CORRECTION_MODES:
            available = ", ".join(BIAS_CORRECTION_MODES)
            raise ValueError(
                f"Unknown bias_correction_mode '{self.bias_correction_mode}'. "
                f"Available: {available}"
            )


class WeightDecayedAdam:
    """Adam with decoupled weight decay over a tree of parameters.

    One instance belongs to one training run and is not thread-safe: the
    moments and step counter are mutated without locking.

    Args:
        model: The ``Regularizable`` model; only used to size the moments.
        scheduled_learning_rate: ``step -> rate`` callable (a float means a
            constant rate).
        weight_decay_rate: Weight decay coefficient.
        use_bias_correction: Apply the Adam bias-correction factor to the rate.
        beta1: Decay rate of the first moment.
        beta2: Decay rate of the second moment.
        epsilon: Added to ``sqrt(v)`` in the denominator.
        max_gradient_global_norm: Clip the direction to this global norm.
        bias_correction_mode: ``"compounding"`` or ``"scheduled"`` (see module
            docstring).

    Raises:
        ValueError: If ``beta1`` or ``beta2`` is outside [0, 1], or another
            hyperparameter is out of range.
    """

    def __init__(
        self,
        model: Regularizable,
        scheduled_learning_rate: ScheduleLike,
        weight_decay_rate: float = 0.01,
        use_bias_correction: bool = True,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-6,
        max_gradient_global_norm: float | None = None,
        bias_correction_mode: str = "compounding",
    ):
        self.hyperparameters = AdamHyperparameters(
            weight_decay_rate=float(weight_decay_rate),
            use_bias_correction=bool(use_bias_correction),
            beta1=float(beta1),
            beta2=float(beta2),
            epsilon=float(epsilon),
            max_gradient_global_norm=(
                None if max_gradient_global_norm is None else float(max_gradient_global_norm)
            ),
            bias_correction_mode=bias_correction_mode,
        )
        self.scheduled_learning_rate: Schedule = as_schedule(scheduled_learning_rate)
        self._step = 0
        self.learning_rate = float(self.scheduled_learning_rate(0))
        self.first_moments = model.zero_tangent_vector()
        self.second_moments = model.zero_tangent_vector()

        logger.debug(f"Created {self!r} over {len(self.first_moments)} parameter leaves")

    # ------------------------------------------------------------------
    # Step / learning rate
    # ------------------------------------------------------------------

    @property
    def step(self) -> int:
        return self._step

    def set_step(self, step: int) -> float:
        """Assign the step counter and re-derive the learning rate from it.

        Returns:
            The new effective learning rate.
        """
        if step < 0:
            raise ValueError(f"Invalid step: {step}")
        hp = self.hyperparameters
        self._step = int(step)

        if not hp.use_bias_correction:
            self.learning_rate = float(self.scheduled_learning_rate(self._step))
        elif hp.bias_correction_mode == "compounding":
            self.learning_rate *= bias_correction_factor(hp.beta1, hp.beta2, self._step)
        else:
            self.learning_rate = float(self.scheduled_learning_rate(self._step)) * (
                bias_correction_factor(hp.beta1, hp.beta2, self._step)
            )
        return self.learning_rate

    def advance_step(self) -> float:
        return self.set_step(self._step + 1)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    @torch.no_grad()
    def update(self, model: Regularizable, direction: TangentVector) -> None:
        """Apply one optimization step to ``model`` along ``direction``.

        Args:
            model: Model whose parameters are moved in place.
            direction: Gradient tree shaped like the model's parameters.

        Raises:
            TreeStructureError: If ``direction`` or the model's regularization
                value does not match the moments' layout. The step counter has
                already advanced when this happens; nothing is rolled back.
        """
        hp = self.hyperparameters

        if hp.max_gradient_global_norm is not None:
            clipped = direction.clipped_by_global_norm(hp.max_gradient_global_norm)
            if clipped is not direction:
                logger.debug(
                    f"Step {self._step + 1}: clipped gradient global norm "
                    f"{direction.global_norm():.4g} -> {hp.max_gradient_global_norm:.4g}"
                )
            direction = clipped

        self.advance_step()

        self.first_moments = (
            self.first_moments.scaled(hp.beta1) + direction.scaled(1 - hp.beta1)
        )
        self.second_moments = (
            self.second_moments.scaled(hp.beta2)
            + (direction * direction).scaled(1 - hp.beta2)
        )
        denominator = self.second_moments.sqrt().adding(hp.epsilon)
        weight_decay = model.regularization_value().scaled(hp.weight_decay_rate)
        delta = self.first_moments / denominator + weight_decay
        model.move(along=delta.scaled(-self.learning_rate))

    # ------------------------------------------------------------------
    # Relocation and checkpoints
    # ------------------------------------------------------------------

    @classmethod
    def copying(cls, other: "WeightDecayedAdam", device: torch.device | str) -> "WeightDecayedAdam":
        """Copy ``other`` verbatim, with its moment trees placed on ``device``."""
        new = cls.__new__(cls)
        new.hyperparameters = other.hyperparameters
        new.scheduled_learning_rate = other.scheduled_learning_rate
        new._step = other._step
        new.learning_rate = other.learning_rate
        new.first_moments = other.first_moments.to(device)
        new.second_moments = other.second_moments.to(device)
        logger.info(f"Copied optimizer state at step {new._step} to {device}")
        return new

    def to(self, device: torch.device | str) -> "WeightDecayedAdam":
        return type(self).copying(self, device)

    def state_dict(self) -> dict[str, Any]:
        """Checkpointable state; tensors are cloned, safe to ``torch.save``."""
        return {
            "step": self._step,
            "learning_rate": self.learning_rate,
            "first_moments": [l.clone() for l in self.first_moments.leaves],
            "second_moments": [l.clone() for l in self.second_moments.leaves],
            "hyperparameters": asdict(self.hyperparameters),
        }

    def load_state_dict(self, state_dict: dict[str, Any]) -> None:
        """Restore a checkpoint taken from an optimizer over the same model.

        Hyperparameters stay those given at construction; a checkpoint with
        different ones is loaded with a warning.

        Raises:
            TreeStructureError: If the saved moments do not fit this model.
        """
        first = self.first_moments.with_leaves(state_dict["first_moments"])
        second = self.second_moments.with_leaves(state_dict["second_moments"])

        saved = state_dict.get("hyperparameters")
        if saved is not None and saved != asdict(self.hyperparameters):
            logger.warning(
                f"Checkpoint hyperparameters {saved} differ from "
                f"{asdict(self.hyperparameters)}; keeping the current ones"
            )

        self._step = int(state_dict["step"])
        self.learning_rate = float(state_dict["learning_rate"])
        self.first_moments = first.clone()
        self.second_moments = second.clone()
        logger.info(f"Restored optimizer state at step {self._step}")

    def __repr__(self) -> str:
        hp = self.hyperparameters
        return (
            f"WeightDecayedAdam(step={self._step}, learning_rate={self.learning_rate:.6g}, "
            f"beta1={hp.beta1}, beta2={hp.beta2}, epsilon={hp.epsilon}, "
            f"weight_decay_rate={hp.weight_decay_rate}, "
            f"bias_correction={hp.bias_correction_mode if hp.use_bias_correction else 'off'})"
        )
