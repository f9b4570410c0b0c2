"""
Models seen by the optimizer
============================

``WeightDecayedAdam`` knows nothing about layers. It only asks a model for
three things, captured by the ``Regularizable`` protocol:

    zero_tangent_vector()     zeros shaped like the trainable parameters
    regularization_value()    penalty gradient (e.g. the weights for L2)
    move(along=delta)         params += delta, in place

``ParameterModel`` adapts an ``nn.Module``, a mapping of named tensors, or a
plain list of tensors to that protocol, and also reads the current gradients
as a ``TangentVector`` so a PyTorch training loop can feed ``update``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Callable, Iterable, Protocol, runtime_checkable

import torch
from torch import Tensor, nn

from wdadam.tangent import TangentVector


@runtime_checkable
class Regularizable(Protocol):
    def zero_tangent_vector(self) -> TangentVector: ...

    def regularization_value(self) -> TangentVector: ...

    def move(self, along: TangentVector) -> None: ...


ExcludeFn = Callable[[str, Tensor], bool]


def exclude_bias_and_norm(name: str, param: Tensor) -> bool:
    """Skip weight decay for biases and 1-D scale parameters (LayerNorm, BatchNorm)."""
    return name.endswith("bias") or param.ndim <= 1


class ParameterModel:
    """Expose a set of tensors as a ``Regularizable`` model.

    Args:
        parameters: An ``nn.Module`` (its trainable named parameters are used),
            a mapping from name to tensor, or an iterable of tensors.
        exclude_from_weight_decay: Optional predicate ``(name, param) -> bool``.
            Excluded parameters contribute zeros to ``regularization_value``.
            Unnamed parameters are named by their position.
    """

    def __init__(
        self,
        parameters: nn.Module | Mapping[str, Tensor] | Iterable[Tensor],
        exclude_from_weight_decay: ExcludeFn | None = None,
    ):
        if isinstance(parameters, nn.Module):
            tree = {n: p for n, p in parameters.named_parameters() if p.requires_grad}
        elif isinstance(parameters, Mapping):
            tree = dict(parameters)
        else:
            tree = list(parameters)

        if isinstance(tree, dict):
            names = list(tree.keys())
            params = list(tree.values())
        else:
            names = [str(i) for i in range(len(tree))]
            params = tree

        self._tree = tree
        self._names = names
        self._params = params
        self._decayed = [
            exclude_from_weight_decay is None or not exclude_from_weight_decay(n, p)
            for n, p in zip(names, params)
        ]

    @property
    def parameters(self) -> list[Tensor]:
        return list(self._params)

    @property
    def names(self) -> list[str]:
        return list(self._names)

    def _vector(self, leaves: list[Tensor]) -> TangentVector:
        if isinstance(self._tree, dict):
            return TangentVector(dict(zip(self._names, leaves)))
        return TangentVector(leaves)

    def values(self) -> TangentVector:
        """Detached copy of the current parameter values."""
        return self._vector([p.detach().clone() for p in self._params])

    def zero_tangent_vector(self) -> TangentVector:
        return self._vector([torch.zeros_like(p) for p in self._params])

    def regularization_value(self) -> TangentVector:
        """L2 penalty gradient: the weights themselves, zeros where excluded."""
        return self._vector([
            p.detach() if decayed else torch.zeros_like(p)
            for p, decayed in zip(self._params, self._decayed)
        ])

    def gradient(self) -> TangentVector:
        """Current ``.grad`` of every parameter; missing gradients read as zeros."""
        return self._vector([
            p.grad.detach() if p.grad is not None else torch.zeros_like(p)
            for p in self._params
        ])

    @torch.no_grad()
    def move(self, along: TangentVector) -> None:
        self._vector(self._params).check_compatible(along)
        for p, delta in zip(self._params, along.leaves):
            p.add_(delta.to(p.device))

    def __len__(self) -> int:
        return len(self._params)

    def __repr__(self) -> str:
        return f"ParameterModel(parameters={len(self._params)})"
