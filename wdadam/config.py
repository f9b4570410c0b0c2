"""
Optimizer configuration loaded from YAML.

Example file::

    optimizer:
      weight_decay_rate: 0.01
      use_bias_correction: true
      bias_correction_mode: scheduled
      beta1: 0.9
      beta2: 0.999
      epsilon: 1.0e-6
      max_gradient_global_norm: 1.0
      schedule:
        name: linear_warmup
        warmup_steps: 100
        base: {name: constant, value: 1.0e-3}

The ``optimizer:`` wrapper is optional; a bare mapping of the same keys works.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from wdadam.adam import WeightDecayedAdam
from wdadam.model import Regularizable
from wdadam.schedules import Schedule, as_schedule


@dataclass
class OptimizerConfig:
    weight_decay_rate: float = 0.01
    use_bias_correction: bool = True
    bias_correction_mode: str = "compounding"
    beta1: float = 0.9
    beta2: float = 0.999
    epsilon: float = 1e-6
    max_gradient_global_norm: Optional[float] = None
    schedule: dict[str, Any] = field(
        default_factory=lambda: {"name": "constant", "value": 1e-3}
    )

    def __post_init__(self):
        # PyYAML reads exponents without a dot ("1e-6") as strings.
        for name in ("weight_decay_rate", "beta1", "beta2", "epsilon"):
            setattr(self, name, float(getattr(self, name)))
        if self.max_gradient_global_norm is not None:
            self.max_gradient_global_norm = float(self.max_gradient_global_norm)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OptimizerConfig":
        data = data.get("optimizer", data)
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown optimizer config keys: {', '.join(sorted(unknown))}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "OptimizerConfig":
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    def build_schedule(self) -> Schedule:
        return as_schedule(dict(self.schedule))

    def build(self, model: Regularizable) -> WeightDecayedAdam:
        """Construct the optimizer for ``model``; hyperparameters are validated here."""
        return WeightDecayedAdam(
            model,
            self.build_schedule(),
            weight_decay_rate=self.weight_decay_rate,
            use_bias_correction=self.use_bias_correction,
            beta1=self.beta1,
            beta2=self.beta2,
            epsilon=self.epsilon,
            max_gradient_global_norm=self.max_gradient_global_norm,
            bias_correction_mode=self.bias_correction_mode,
        )

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)
