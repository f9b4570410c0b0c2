"""
wdadam - Weight-Decayed Adam over parameter trees
=================================================

Adam with decoupled weight decay, optional global-norm gradient clipping and
two bias-correction modes, written against a small tangent-vector algebra so
it works on any tree of tensors.

Usage:
    from wdadam import ParameterModel, WeightDecayedAdam

    model = ParameterModel(net)
    opt = WeightDecayedAdam(model, scheduled_learning_rate=1e-3)
    loss.backward()
    opt.update(model, model.gradient())

    # or, inside a standard PyTorch loop
    from wdadam import WeightDecayedAdamW
    opt = WeightDecayedAdamW(net.parameters(), lr=1e-3, bias_correction_mode="scheduled")
"""

from wdadam.adam import AdamHyperparameters, WeightDecayedAdam, bias_correction_factor
from wdadam.config import OptimizerConfig
from wdadam.model import ParameterModel, Regularizable, exclude_bias_and_norm
from wdadam.schedules import (
    SCHEDULE_REGISTRY,
    ConstantSchedule,
    LinearDecaySchedule,
    LinearWarmupSchedule,
    get_schedule,
    list_schedules,
)
from wdadam.tangent import TangentVector, TreeStructureError
from wdadam.torch_optim import WeightDecayedAdamW
